#tests/conftest.py

"""Pytest configuration and fixtures."""

from datetime import datetime, timedelta
from typing import Dict, List, Optional

import pytest
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from dns_engine.certificates.acme_client import (
    CHALLENGE_VALID,
    AcmeChallenge,
    AcmeClient,
    AcmeOrder,
    IssuedCertificate,
)
from dns_engine.certificates.service import CertificateService, register_certificate_stages
from dns_engine.certificates.stages import DnsWaitStage, FinalizationStage, OrderCreationStage
from dns_engine.certificates.verifier import ChallengeVerifier, challenge_record_name
from dns_engine.core.events import InMemoryEventEmitter
from dns_engine.infrastructure.sql.database import (
    enable_sqlite_foreign_keys,
    get_session_factory,
    init_db,
)
from dns_engine.infrastructure.sql.job_repository import SqlJobRepository
from dns_engine.infrastructure.sql.repository import (
    SqlCertificateRepository,
    SqlChallengeRepository,
    SqlDnsRecordRepository,
    SqlReconciliationStateRepository,
    SqlUserRepository,
)
from dns_engine.jobs.queue import JobQueue
from dns_engine.jobs.retry import RetryPolicy
from dns_engine.providers.memory import InMemoryDnsProvider
from dns_engine.reconciler.engine import ReconciliationEngine
from dns_engine.reconciler.flag import ReconciliationFlag
from dns_engine.records.service import RecordService
from dns_engine.users.service import UserGate, UserService


ROOT_DOMAIN = "example.com"


# ============================================
# Clock
# ============================================

class FakeClock:
    """Controllable naive-UTC clock."""

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float = 0, **kwargs) -> datetime:
        self.now = self.now + timedelta(seconds=seconds, **kwargs)
        return self.now


@pytest.fixture
def clock():
    return FakeClock(datetime(2026, 1, 15, 12, 0, 0))


# ============================================
# Database
# ============================================

@pytest.fixture
def test_engine():
    """Fresh in-memory SQLite database per test."""
    engine = enable_sqlite_foreign_keys(
        create_engine(
            "sqlite://",
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    )
    init_db(engine)

    yield engine

    engine.dispose()


@pytest.fixture
def test_session_factory(test_engine):
    return get_session_factory(test_engine)


# ============================================
# Repositories
# ============================================

@pytest.fixture
def record_repository(test_session_factory):
    return SqlDnsRecordRepository(test_session_factory)


@pytest.fixture
def user_repository(test_session_factory):
    return SqlUserRepository(test_session_factory)


@pytest.fixture
def certificate_repository(test_session_factory):
    return SqlCertificateRepository(test_session_factory)


@pytest.fixture
def challenge_repository(test_session_factory):
    return SqlChallengeRepository(test_session_factory)


@pytest.fixture
def state_repository(test_session_factory):
    return SqlReconciliationStateRepository(test_session_factory)


@pytest.fixture
def job_repository(test_session_factory):
    return SqlJobRepository(test_session_factory)


# ============================================
# Services
# ============================================

@pytest.fixture
def flag(state_repository, clock):
    return ReconciliationFlag(state_repository, clock=clock)


@pytest.fixture
def gate(user_repository):
    return UserGate(user_repository)


@pytest.fixture
def record_service(record_repository, gate, flag, clock):
    return RecordService(record_repository, gate, flag, clock=clock)


@pytest.fixture
def user_service(user_repository, gate, record_service, clock):
    return UserService(user_repository, gate, record_service=record_service, clock=clock)


@pytest.fixture
def alice(user_service):
    return user_service.create_user("alice", "alice@example.org", "Alice", "Liddell")


@pytest.fixture
def bob(user_service):
    return user_service.create_user("bob", "bob@example.org", "Bob", "Builder")


@pytest.fixture
def events():
    return InMemoryEventEmitter()


# ============================================
# DNS provider and reconciliation
# ============================================

@pytest.fixture
def provider():
    return InMemoryDnsProvider()


@pytest.fixture
def reconciler(record_repository, provider, flag):
    return ReconciliationEngine(
        records=record_repository,
        provider=provider,
        flag=flag,
        root_domain=ROOT_DOMAIN,
    )


# ============================================
# ACME / DNS fakes
# ============================================

class FakeAcmeClient(AcmeClient):
    """
    Scriptable CA.

    ``create_order_errors`` / ``finalize_errors`` are raised (and consumed)
    in order before the call succeeds. ``challenge_statuses`` overrides the
    status returned per challenge URL.
    """

    def __init__(self, clock: FakeClock):
        self._clock = clock
        self.orders_created = 0
        self.finalized: List[str] = []
        self.validated: List[str] = []
        self.create_order_errors: List[Exception] = []
        self.finalize_errors: List[Exception] = []
        self.challenge_statuses: Dict[str, str] = {}

    def create_order(self, domains, private_key_pem):
        if self.create_order_errors:
            raise self.create_order_errors.pop(0)

        assert "PRIVATE KEY" in private_key_pem
        self.orders_created += 1
        n = self.orders_created
        return AcmeOrder(
            order_url=f"https://ca.test/order/{n}",
            challenges=tuple(
                AcmeChallenge(
                    domain=domain,
                    challenge_key=f"key-{n}-{i}",
                    challenge_url=f"https://ca.test/chall/{n}/{i}",
                )
                for i, domain in enumerate(domains)
            ),
        )

    def validate_challenge(self, challenge_url):
        self.validated.append(challenge_url)
        return self.challenge_statuses.get(challenge_url, CHALLENGE_VALID)

    def finalize(self, order_url, domains, private_key_pem):
        if self.finalize_errors:
            raise self.finalize_errors.pop(0)

        assert private_key_pem and "PRIVATE KEY" in private_key_pem
        self.finalized.append(order_url)
        now = self._clock()
        return IssuedCertificate(
            certificate_pem=f"-----BEGIN CERTIFICATE-----\n{domains[0]}\n-----END CERTIFICATE-----\n",
            valid_from=now,
            valid_to=now + timedelta(days=90),
        )


class ProviderBackedVerifier(ChallengeVerifier):
    """Answers from what the in-memory provider currently serves, like live DNS would."""

    def __init__(self, provider: InMemoryDnsProvider):
        self._provider = provider
        self.lookup_error: Optional[Exception] = None
        self.lookups: List[str] = []

    def verify(self, domain, challenge_key):
        name = challenge_record_name(domain)
        self.lookups.append(name)
        if self.lookup_error is not None:
            raise self.lookup_error

        record_set = self._provider.lookup(name, "TXT")
        return record_set is not None and challenge_key in record_set.values


@pytest.fixture
def acme(clock):
    return FakeAcmeClient(clock)


@pytest.fixture
def verifier(provider):
    return ProviderBackedVerifier(provider)


# ============================================
# Queue and pipeline
# ============================================

ORDER_POLICY = RetryPolicy(max_attempts=3, base_delay=10, factor=3, max_delay=600)
DNS_WAIT_POLICY = RetryPolicy(max_attempts=4, base_delay=10, factor=3, max_delay=600)
FINALIZE_POLICY = RetryPolicy(max_attempts=3, base_delay=10, factor=3, max_delay=600)


@pytest.fixture
def stage_args(certificate_repository, challenge_repository, record_service, gate, acme, verifier, events, clock):
    return dict(
        certificates=certificate_repository,
        challenges=challenge_repository,
        record_service=record_service,
        gate=gate,
        acme=acme,
        verifier=verifier,
        events=events,
        verify_dns=True,
        clock=clock,
    )


@pytest.fixture
def queue(job_repository, clock):
    return JobQueue(job_repository, lease_seconds=60, clock=clock)


@pytest.fixture
def certificate_service(certificate_repository, challenge_repository, gate, queue, record_service, events, clock):
    return CertificateService(
        certificates=certificate_repository,
        challenges=challenge_repository,
        gate=gate,
        queue=queue,
        record_service=record_service,
        root_domain=ROOT_DOMAIN,
        events=events,
        clock=clock,
    )


@pytest.fixture
def stages(stage_args):
    return {
        "order": OrderCreationStage(**stage_args),
        "wait": DnsWaitStage(**stage_args),
        "finalize": FinalizationStage(**stage_args),
    }


@pytest.fixture
def pipeline(queue, stages, certificate_service):
    """Queue with the certificate stages registered."""
    register_certificate_stages(
        queue,
        order_stage=stages["order"],
        dns_wait_stage=stages["wait"],
        finalize_stage=stages["finalize"],
        service=certificate_service,
        order_policy=ORDER_POLICY,
        dns_wait_policy=DNS_WAIT_POLICY,
        finalize_policy=FINALIZE_POLICY,
    )
    return queue
