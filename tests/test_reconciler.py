"""Test the reconciliation engine, the flag and the reconciliation worker."""

from datetime import timedelta

import pytest
from sqlalchemy.exc import IntegrityError

from dns_engine.core.errors import PersistenceError
from dns_engine.core.models import DnsRecordType
from dns_engine.core.schemas import RecordCreate, RecordPatch
from dns_engine.providers.base import ProviderRecordSet
from dns_engine.providers.memory import InMemoryDnsProvider
from dns_engine.reconciler.engine import ReconciliationEngine
from dns_engine.reconciler.worker import ReconciliationWorker


ROOT = "example.com"


def create(record_service, subdomain, value, record_type=DnsRecordType.A, owner="alice"):
    return record_service.create_record(owner, RecordCreate(type=record_type, subdomain=subdomain, value=value))


class TestReconciliationFlag:

    def test_starts_clear(self, flag):
        assert not flag.is_needed()
        assert flag.generation() == 0
        assert flag.last_reconciled_at() is None

    def test_mark_bumps_generation(self, flag):
        assert flag.mark_needed() == 1
        assert flag.mark_needed() == 2
        assert flag.is_needed()

    def test_clear_with_current_generation(self, flag, clock):
        generation = flag.mark_needed()

        assert flag.clear(generation)
        assert not flag.is_needed()
        assert flag.last_reconciled_at() == clock.now

    def test_clear_with_stale_generation(self, flag):
        seen = flag.mark_needed()
        flag.mark_needed()

        assert not flag.clear(seen)
        assert flag.is_needed()

    def test_mark_retries_after_losing_first_insert(self, state_repository, monkeypatch):
        bump = state_repository._bump
        calls = []

        def racing_bump(session):
            calls.append(session)
            if len(calls) == 1:
                raise IntegrityError("INSERT INTO reconciliation_state", {}, Exception("UNIQUE constraint failed"))
            return bump(session)

        monkeypatch.setattr(state_repository, "_bump", racing_bump)

        assert state_repository.mark_needed() == 1
        assert len(calls) == 2

    def test_mark_gives_up_after_second_conflict(self, state_repository, monkeypatch):
        calls = []

        def conflicting_bump(session):
            calls.append(session)
            raise IntegrityError("INSERT INTO reconciliation_state", {}, Exception("UNIQUE constraint failed"))

        monkeypatch.setattr(state_repository, "_bump", conflicting_bump)

        with pytest.raises(PersistenceError):
            state_repository.mark_needed()
        assert len(calls) == 2


class TestReconciliationEngine:

    # -------------------------
    # CONVERGENCE
    # -------------------------

    def test_empty_pass(self, reconciler, provider, flag):
        result = reconciler.reconcile()

        assert result.succeeded
        assert result.applied == []
        assert result.flag_cleared
        assert flag.last_reconciled_at() is not None

    def test_creates_record_sets(self, reconciler, record_service, provider, flag, alice):
        create(record_service, "www", "192.0.2.1")
        create(record_service, "www", "192.0.2.2")
        create(record_service, "docs", "pages.example.net", DnsRecordType.CNAME)

        result = reconciler.reconcile()

        assert result.succeeded
        assert len(result.applied) == 2
        assert provider.lookup("www.alice.example.com", "A").values == ("192.0.2.1", "192.0.2.2")
        assert provider.lookup("docs.alice.example.com", "CNAME").values == ("pages.example.net",)
        assert not flag.is_needed()

    def test_second_pass_is_a_no_op(self, reconciler, record_service, provider, alice):
        create(record_service, "www", "192.0.2.1")
        reconciler.reconcile()
        calls = list(provider.calls)

        result = reconciler.reconcile()

        assert result.applied == []
        assert provider.calls == calls

    def test_update_and_delete(self, reconciler, record_service, provider, alice):
        www = create(record_service, "www", "192.0.2.1")
        api = create(record_service, "api", "192.0.2.2")
        reconciler.reconcile()

        record_service.update_record("alice", www.id, RecordPatch(value="192.0.2.9"))
        record_service.delete_record("alice", api.id)
        reconciler.reconcile()

        assert provider.lookup("www.alice.example.com", "A").values == ("192.0.2.9",)
        assert provider.lookup("api.alice.example.com", "A") is None
        assert provider.calls[-2:] == [
            ("delete", "api.alice.example.com", "A"),
            ("update", "www.alice.example.com", "A"),
        ]

    def test_removes_out_of_band_records(self, reconciler, provider):
        provider.seed(ProviderRecordSet.build("stray.bob.example.com", "A", ["192.0.2.7"]))

        reconciler.reconcile()

        assert provider.lookup("stray.bob.example.com", "A") is None

    def test_repairs_drifted_values(self, reconciler, record_service, provider, alice):
        create(record_service, "www", "192.0.2.1")
        reconciler.reconcile()
        provider.seed(ProviderRecordSet.build("www.alice.example.com", "A", ["203.0.113.1"]))

        reconciler.reconcile()

        assert provider.lookup("www.alice.example.com", "A").values == ("192.0.2.1",)

    def test_operator_records_are_untouched(self, reconciler, provider):
        operator = [
            ProviderRecordSet.build("example.com", "A", ["192.0.2.100"]),
            ProviderRecordSet.build("example.com", "MX", ["10 mail.example.com"]),
            ProviderRecordSet.build("www.example.com", "CNAME", ["example.com"]),
            ProviderRecordSet.build("deep.alice.example.com", "NS", ["ns1.example.net"]),
        ]
        for record_set in operator:
            provider.seed(record_set)

        result = reconciler.reconcile()

        assert result.applied == []
        assert provider.all_records() == sorted(operator, key=lambda r: r.key)

    # -------------------------
    # FAILURES
    # -------------------------

    def test_partial_failure_keeps_flag(self, reconciler, record_service, provider, flag, alice):
        create(record_service, "good", "192.0.2.1")
        create(record_service, "bad", "192.0.2.2")
        provider.fail_on.add(("create", "bad.alice.example.com"))

        result = reconciler.reconcile()

        assert not result.succeeded
        assert [m.record_set.name for m in result.applied] == ["good.alice.example.com"]
        assert [m.record_set.name for m, _ in result.failed] == ["bad.alice.example.com"]
        assert flag.is_needed()

        provider.fail_on.clear()
        retry = reconciler.reconcile()

        assert [m.record_set.name for m in retry.applied] == ["bad.alice.example.com"]
        assert retry.flag_cleared
        assert not flag.is_needed()

    def test_listing_failure(self, reconciler, record_service, provider, flag, alice):
        create(record_service, "www", "192.0.2.1")
        provider.fail_listing = True

        result = reconciler.reconcile()

        assert result.error is not None
        assert not result.succeeded
        assert provider.calls == []
        assert flag.is_needed()

    def test_mutation_during_pass_keeps_flag(self, record_repository, record_service, flag, alice):
        """A record written while the pass runs is picked up by the next pass."""

        class MutatingProvider(InMemoryDnsProvider):
            def create_record(self, record_set):
                super().create_record(record_set)
                if record_set.name == "first.alice.example.com":
                    create(record_service, "late", "192.0.2.50")

        provider = MutatingProvider()
        engine = ReconciliationEngine(records=record_repository, provider=provider, flag=flag, root_domain=ROOT)
        create(record_service, "first", "192.0.2.1")

        result = engine.reconcile()

        assert result.succeeded
        assert not result.flag_cleared
        assert flag.is_needed()
        assert provider.lookup("late.alice.example.com", "A") is None

        engine.reconcile()

        assert provider.lookup("late.alice.example.com", "A").values == ("192.0.2.50",)
        assert not flag.is_needed()


class TestReconciliationWorker:

    @pytest.fixture
    def worker(self, reconciler, flag, record_service, clock):
        return ReconciliationWorker(
            engine=reconciler,
            flag=flag,
            record_service=record_service,
            poll_interval=1,
            force_interval=3600,
            sweep_interval=600,
            clock=clock,
        )

    def test_first_cycle_forces_a_pass(self, worker):
        assert worker.run_cycle() is not None

    def test_idle_when_flag_clear(self, worker):
        worker.run_cycle()

        assert worker.run_cycle() is None

    def test_runs_when_flagged(self, worker, record_service, provider, alice):
        worker.run_cycle()
        create(record_service, "www", "192.0.2.1")

        result = worker.run_cycle()

        assert result is not None and result.succeeded
        assert provider.lookup("www.alice.example.com", "A") is not None

    def test_forced_pass_after_interval(self, worker, clock):
        worker.run_cycle()
        clock.advance(3600)

        assert worker.run_cycle() is not None

    def test_sweep_purges_and_syncs(self, worker, record_service, provider, alice, clock):
        create(record_service, "www", "192.0.2.1")
        worker.run_cycle()
        assert provider.lookup("www.alice.example.com", "A") is not None

        clock.advance(timedelta(days=200).total_seconds())
        worker.run_cycle()

        assert record_service.list_records("alice") == []
        assert provider.lookup("www.alice.example.com", "A") is None
