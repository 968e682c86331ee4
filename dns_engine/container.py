#dns_engine/container.py

"""Dependency injection container - wires all services together."""

from functools import lru_cache

from dns_engine.config import settings

from dns_engine.infrastructure.sql.database import get_session_factory
from dns_engine.infrastructure.sql.job_repository import SqlJobRepository
from dns_engine.infrastructure.sql.repository import (
    SqlCertificateRepository,
    SqlChallengeRepository,
    SqlDnsRecordRepository,
    SqlReconciliationStateRepository,
    SqlUserRepository,
)

from dns_engine.core.events import LoggingEventEmitter, MultiEventEmitter
from dns_engine.certificates.acme_client import LetsEncryptClient
from dns_engine.certificates.service import CertificateService, register_certificate_stages
from dns_engine.certificates.stages import DnsWaitStage, FinalizationStage, OrderCreationStage
from dns_engine.certificates.verifier import DnsChallengeVerifier
from dns_engine.jobs.queue import JobQueue
from dns_engine.jobs.retry import RetryPolicy
from dns_engine.providers.base import DnsProvider
from dns_engine.providers.memory import InMemoryDnsProvider
from dns_engine.providers.route53 import Route53DnsProvider
from dns_engine.reconciler.engine import ReconciliationEngine
from dns_engine.reconciler.flag import ReconciliationFlag
from dns_engine.records.service import RecordService
from dns_engine.users.service import UserGate, UserService


# Everything is built on first use so importing this module never touches
# the database or the network.


# ============================================
# REPOSITORIES
# ============================================

@lru_cache
def session_factory():
    return get_session_factory()


@lru_cache
def record_repository() -> SqlDnsRecordRepository:
    return SqlDnsRecordRepository(session_factory())


@lru_cache
def user_repository() -> SqlUserRepository:
    return SqlUserRepository(session_factory())


@lru_cache
def certificate_repository() -> SqlCertificateRepository:
    return SqlCertificateRepository(session_factory())


@lru_cache
def challenge_repository() -> SqlChallengeRepository:
    return SqlChallengeRepository(session_factory())


@lru_cache
def job_repository() -> SqlJobRepository:
    return SqlJobRepository(session_factory())


# ============================================
# EVENTS
# ============================================

@lru_cache
def emitters() -> MultiEventEmitter:
    return MultiEventEmitter([
        LoggingEventEmitter(),
    ])


# ============================================
# EXTERNAL COLLABORATORS
# ============================================

@lru_cache
def dns_provider() -> DnsProvider:
    if settings.dns_provider == "route53":
        return Route53DnsProvider(
            hosted_zone_id=settings.aws_route53_hosted_zone_id,
            region=settings.aws_region,
            ttl=settings.record_ttl,
        )
    if settings.dns_provider == "memory":
        return InMemoryDnsProvider()
    raise ValueError(f"Unknown DNS provider: {settings.dns_provider}")


@lru_cache
def acme_client() -> LetsEncryptClient:
    return LetsEncryptClient(
        directory_url=settings.acme_directory_url,
        account_key_path=settings.acme_account_key_path,
        contact_email=settings.acme_contact_email,
        poll_attempts=settings.acme_poll_attempts,
        poll_delay=settings.acme_poll_delay,
    )


@lru_cache
def challenge_verifier() -> DnsChallengeVerifier:
    return DnsChallengeVerifier(
        nameservers=settings.nameservers,
        timeout=settings.dns_lookup_timeout,
    )


# ============================================
# SERVICES
# ============================================

@lru_cache
def reconciliation_flag() -> ReconciliationFlag:
    return ReconciliationFlag(SqlReconciliationStateRepository(session_factory()))


@lru_cache
def user_gate() -> UserGate:
    return UserGate(user_repository())


@lru_cache
def record_service() -> RecordService:
    return RecordService(
        record_repository(),
        user_gate(),
        reconciliation_flag(),
        record_limit=settings.user_dns_record_limit,
        validity_months=settings.record_validity_months,
    )


@lru_cache
def user_service() -> UserService:
    return UserService(user_repository(), user_gate(), record_service=record_service())


@lru_cache
def reconciliation_engine() -> ReconciliationEngine:
    return ReconciliationEngine(
        records=record_repository(),
        provider=dns_provider(),
        flag=reconciliation_flag(),
        root_domain=settings.root_domain,
        ttl=settings.record_ttl,
    )


def _retry_policy(max_attempts: int) -> RetryPolicy:
    return RetryPolicy(
        max_attempts=max_attempts,
        base_delay=settings.retry_base_delay,
        factor=settings.retry_backoff_factor,
        max_delay=settings.retry_max_delay,
    )


@lru_cache
def job_queue() -> JobQueue:
    """Queue with the three certificate stages registered."""
    queue = JobQueue(job_repository(), lease_seconds=settings.job_lease_seconds)

    stage_args = dict(
        certificates=certificate_repository(),
        challenges=challenge_repository(),
        record_service=record_service(),
        gate=user_gate(),
        acme=acme_client(),
        verifier=challenge_verifier(),
        events=emitters(),
        verify_dns=settings.verify_dns,
    )
    register_certificate_stages(
        queue,
        order_stage=OrderCreationStage(**stage_args),
        dns_wait_stage=DnsWaitStage(**stage_args),
        finalize_stage=FinalizationStage(**stage_args),
        service=_certificate_service(queue),
        order_policy=_retry_policy(settings.order_max_attempts),
        dns_wait_policy=_retry_policy(settings.dns_wait_max_attempts),
        finalize_policy=_retry_policy(settings.finalize_max_attempts),
    )
    return queue


def _certificate_service(queue: JobQueue) -> CertificateService:
    return CertificateService(
        certificates=certificate_repository(),
        challenges=challenge_repository(),
        gate=user_gate(),
        queue=queue,
        record_service=record_service(),
        root_domain=settings.root_domain,
        events=emitters(),
    )


@lru_cache
def certificate_service() -> CertificateService:
    return _certificate_service(job_queue())
