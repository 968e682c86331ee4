"""Test record service rules: validation, quota, CNAME uniqueness, expiry, flag."""

from datetime import datetime

import pytest

from dns_engine.core.errors import (
    DeactivatedAccountError,
    DuplicateRecordError,
    QuotaExceededError,
    RecordNotFound,
    RecordValidationError,
    UserNotFound,
)
from dns_engine.core.models import DnsRecord, DnsRecordType, record_expiry
from dns_engine.core.schemas import RecordCreate, RecordPatch
from dns_engine.records.service import RecordService


def a_record(subdomain="www", value="192.0.2.10", **kwargs):
    return RecordCreate(type=DnsRecordType.A, subdomain=subdomain, value=value, **kwargs)


def cname(subdomain="docs", value="pages.example.net"):
    return RecordCreate(type=DnsRecordType.CNAME, subdomain=subdomain, value=value)


class TestCreateRecord:
    """Test record creation."""

    def test_create_record(self, record_service, alice, clock):
        record = record_service.create_record("alice", a_record(description="web"))

        assert record.id is not None
        assert record.username == "alice"
        assert record.subdomain == "www"
        assert record.description == "web"
        assert record.created_at == clock.now
        assert record.expires_at == datetime(2026, 7, 15, 12, 0, 0)

    def test_create_normalizes_subdomain(self, record_service, alice):
        record = record_service.create_record("alice", a_record(subdomain=" WWW.Api. "))
        assert record.subdomain == "www.api"

    def test_create_sets_flag(self, record_service, flag, alice):
        assert not flag.is_needed()

        record_service.create_record("alice", a_record())

        assert flag.is_needed()
        assert flag.generation() == 1

    def test_invalid_value_is_rejected(self, record_service, record_repository, flag, alice):
        with pytest.raises(RecordValidationError):
            record_service.create_record("alice", a_record(value="not-an-ip"))

        assert record_repository.list(owner="alice", exclude_acme_challenge=False) == []
        assert not flag.is_needed()

    def test_invalid_subdomain_is_rejected(self, record_service, alice):
        with pytest.raises(RecordValidationError):
            record_service.create_record("alice", a_record(subdomain="-bad-"))

    def test_challenge_subdomain_is_reserved(self, record_service, alice):
        data = RecordCreate(type=DnsRecordType.TXT, subdomain="_acme-challenge", value="x")

        with pytest.raises(RecordValidationError):
            record_service.create_record("alice", data)

    def test_mx_and_aaaa_values(self, record_service, alice):
        mx = record_service.create_record(
            "alice", RecordCreate(type=DnsRecordType.MX, subdomain="mail", value="10 mx.example.net")
        )
        aaaa = record_service.create_record(
            "alice", RecordCreate(type=DnsRecordType.AAAA, subdomain="v6", value="2001:db8::1")
        )

        assert mx.value == "10 mx.example.net"
        assert aaaa.value == "2001:db8::1"

    def test_deactivated_owner_cannot_create(self, record_service, user_service, alice):
        user_service.deactivate("alice")

        with pytest.raises(DeactivatedAccountError):
            record_service.create_record("alice", a_record())

        assert record_service.list_records("alice") == []

    # -------------------------
    # CNAME
    # -------------------------

    def test_duplicate_cname_is_rejected(self, record_service, alice):
        record_service.create_record("alice", cname())

        with pytest.raises(DuplicateRecordError):
            record_service.create_record("alice", cname(value="other.example.net"))

        assert len(record_service.list_records("alice")) == 1

    def test_same_cname_subdomain_for_other_owner(self, record_service, alice, bob):
        record_service.create_record("alice", cname())
        record_service.create_record("bob", cname())

        assert len(record_service.list_records("bob")) == 1

    def test_multiple_a_records_share_subdomain(self, record_service, alice):
        record_service.create_record("alice", a_record(value="192.0.2.10"))
        record_service.create_record("alice", a_record(value="192.0.2.11"))

        assert len(record_service.list_records("alice")) == 2

    def test_store_rejects_cname_race(self, record_repository, alice):
        """Two writers past the pre-check: the unique index stops the second."""
        record_repository.create(DnsRecord("alice", DnsRecordType.CNAME, "docs", "a.example.net"))

        with pytest.raises(DuplicateRecordError):
            record_repository.create(DnsRecord("alice", DnsRecordType.CNAME, "docs", "b.example.net"))

    def test_store_rejects_update_into_taken_cname(self, record_repository, alice):
        record_repository.create(DnsRecord("alice", DnsRecordType.CNAME, "docs", "a.example.net"))
        other = record_repository.create(DnsRecord("alice", DnsRecordType.A, "docs", "192.0.2.10"))

        with pytest.raises(DuplicateRecordError):
            record_repository.update(other.id, {"type": DnsRecordType.CNAME, "value": "b.example.net"})

    def test_unknown_owner_is_not_found(self, record_service, record_repository, flag):
        with pytest.raises(UserNotFound):
            record_service.create_record("ghost", cname())

        assert record_repository.list(owner="ghost", exclude_acme_challenge=False) == []
        assert not flag.is_needed()

    def test_store_rejects_records_for_unknown_owner(self, record_repository):
        with pytest.raises(UserNotFound):
            record_repository.create(DnsRecord("ghost", DnsRecordType.A, "www", "192.0.2.10"))

    # -------------------------
    # QUOTA
    # -------------------------

    def test_quota(self, record_repository, gate, flag, clock, alice):
        service = RecordService(record_repository, gate, flag, record_limit=2, clock=clock)
        service.create_record("alice", a_record(subdomain="one"))
        service.create_record("alice", a_record(subdomain="two"))

        with pytest.raises(QuotaExceededError):
            service.create_record("alice", a_record(subdomain="three"))

        assert service.count_records("alice") == 2

    def test_challenge_records_do_not_count(self, record_repository, gate, flag, clock, alice):
        service = RecordService(record_repository, gate, flag, record_limit=1, clock=clock)
        service.ensure_challenge_record("alice", "token-1")
        service.ensure_challenge_record("alice", "token-2")

        service.create_record("alice", a_record())

        assert service.count_records("alice") == 1


class TestUpdateRecord:
    """Test updates and renewals."""

    def test_update_resets_expiry(self, record_service, alice, clock):
        record = record_service.create_record("alice", a_record())
        clock.advance(days=30)

        updated = record_service.update_record("alice", record.id, RecordPatch(value="192.0.2.99"))

        assert updated.value == "192.0.2.99"
        assert updated.updated_at == clock.now
        assert updated.expires_at == record_expiry(clock.now)

    def test_update_validates_merged_record(self, record_service, alice):
        record = record_service.create_record("alice", a_record())

        # A value is no longer an IPv4 address once the type changes
        with pytest.raises(RecordValidationError):
            record_service.update_record("alice", record.id, RecordPatch(type=DnsRecordType.AAAA))

        assert record_service.get_record("alice", record.id).type == DnsRecordType.A

    def test_update_into_duplicate_cname(self, record_service, alice):
        record_service.create_record("alice", cname(subdomain="docs"))
        other = record_service.create_record("alice", cname(subdomain="blog"))

        with pytest.raises(DuplicateRecordError):
            record_service.update_record("alice", other.id, RecordPatch(subdomain="docs"))

    def test_cname_update_keeps_its_own_subdomain(self, record_service, alice):
        record = record_service.create_record("alice", cname())

        updated = record_service.update_record("alice", record.id, RecordPatch(value="new.example.net"))

        assert updated.value == "new.example.net"

    def test_update_sets_flag(self, record_service, flag, alice):
        record = record_service.create_record("alice", a_record())
        flag.clear(flag.generation())

        record_service.update_record("alice", record.id, RecordPatch(description="changed"))

        assert flag.is_needed()

    def test_update_other_owners_record(self, record_service, alice, bob):
        record = record_service.create_record("alice", a_record())

        with pytest.raises(RecordNotFound):
            record_service.update_record("bob", record.id, RecordPatch(value="192.0.2.1"))

    def test_renew_extends_expiry_without_flag(self, record_service, flag, alice, clock):
        record = record_service.create_record("alice", a_record())
        flag.clear(flag.generation())
        clock.advance(days=100)

        renewed = record_service.renew_record("alice", record.id)

        assert renewed.expires_at == record_expiry(clock.now)
        assert renewed.value == record.value
        assert not flag.is_needed()

    def test_deactivated_owner_cannot_update_or_renew(self, record_service, user_service, alice):
        record = record_service.create_record("alice", a_record())
        user_service.deactivate("alice")

        with pytest.raises(DeactivatedAccountError):
            record_service.update_record("alice", record.id, RecordPatch(value="192.0.2.1"))
        with pytest.raises(DeactivatedAccountError):
            record_service.renew_record("alice", record.id)


class TestDeleteRecord:
    """Test deletion and expiry."""

    def test_delete_sets_flag(self, record_service, flag, alice):
        record = record_service.create_record("alice", a_record())
        flag.clear(flag.generation())

        record_service.delete_record("alice", record.id)

        assert flag.is_needed()
        assert record_service.list_records("alice") == []

    def test_delete_missing_record(self, record_service, alice):
        with pytest.raises(RecordNotFound):
            record_service.delete_record("alice", 999)

    def test_deactivated_owner_cannot_delete(self, record_service, user_service, alice):
        record = record_service.create_record("alice", a_record())
        user_service.deactivate("alice")

        with pytest.raises(DeactivatedAccountError):
            record_service.delete_record("alice", record.id)

    def test_purge_expired(self, record_service, flag, alice, clock):
        record_service.create_record("alice", a_record(subdomain="old"))
        clock.advance(days=60)
        record_service.create_record("alice", a_record(subdomain="new"))
        flag.clear(flag.generation())

        # Past the first record's expiry only
        clock.now = datetime(2026, 7, 20)
        purged = record_service.purge_expired()

        assert purged == 1
        assert [r.subdomain for r in record_service.list_records("alice")] == ["new"]
        assert flag.is_needed()

    def test_purge_nothing_leaves_flag_alone(self, record_service, flag, alice):
        record_service.create_record("alice", a_record())
        flag.clear(flag.generation())

        assert record_service.purge_expired() == 0
        assert not flag.is_needed()


class TestChallengeRecords:
    """Test the challenge TXT records used by certificate issuance."""

    def test_ensure_is_idempotent(self, record_service, record_repository, alice):
        first = record_service.ensure_challenge_record("alice", "token-1")
        again = record_service.ensure_challenge_record("alice", "token-1")

        assert first.id == again.id
        assert len(record_repository.find_challenge_records("alice")) == 1

    def test_hidden_from_listing(self, record_service, alice):
        record_service.ensure_challenge_record("alice", "token-1")
        record_service.create_record("alice", a_record())

        listed = record_service.list_records("alice")

        assert [r.subdomain for r in listed] == ["www"]

    def test_remove(self, record_service, record_repository, flag, alice):
        record_service.ensure_challenge_record("alice", "token-1")
        record_service.ensure_challenge_record("alice", "token-2")
        flag.clear(flag.generation())

        assert record_service.remove_challenge_records("alice") == 2
        assert record_repository.find_challenge_records("alice") == []
        assert flag.is_needed()


def test_expiry_uses_calendar_months():
    assert record_expiry(datetime(2026, 8, 31), 6) == datetime(2027, 2, 28)
    assert record_expiry(datetime(2026, 1, 15, 9, 30), 6) == datetime(2026, 7, 15, 9, 30)
