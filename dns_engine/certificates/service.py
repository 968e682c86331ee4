# dns_engine/certificates/service.py
"""Certificate service - issuance requests, lookups and the pipeline failure hook."""

import logging
from datetime import datetime
from typing import Any, Callable, List, Optional

from dns_engine.certificates.stages import DnsWaitStage, FinalizationStage, OrderCreationStage
from dns_engine.core.errors import CertificateNotFound, InvalidStateTransition, JobConcurrencyError
from dns_engine.core.events import EventEmitter, NullEventEmitter
from dns_engine.core.events_model import CertificateEvent
from dns_engine.core.models import Certificate, CertificateStatus, Challenge, utcnow
from dns_engine.core.repository import CertificateRepository, ChallengeRepository
from dns_engine.core.schemas import (
    DNS_WAIT_STAGE,
    FINALIZE_STAGE,
    ORDER_STAGE,
    DnsWaitPayload,
    FinalizationPayload,
    OrderCreationPayload,
)
from dns_engine.core.state_machine import CertificateStateMachine
from dns_engine.jobs.queue import JobQueue
from dns_engine.jobs.retry import RetryPolicy
from dns_engine.users.service import UserGate

logger = logging.getLogger(__name__)


class CertificateService:

    def __init__(
        self,
        *,
        certificates: CertificateRepository,
        challenges: ChallengeRepository,
        gate: UserGate,
        queue: JobQueue,
        record_service,
        root_domain: str,
        events: Optional[EventEmitter] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._certificates = certificates
        self._challenges = challenges
        self._gate = gate
        self._queue = queue
        self._records = record_service
        self._root_domain = root_domain.lower()
        self._events = events or NullEventEmitter()
        self._clock = clock

    # -------------------------
    # REQUEST
    # -------------------------

    def request_certificate(self, username: str) -> Certificate:
        """
        Start issuance for ``<username>.<root domain>`` and its wildcard.

        Returns the in-flight certificate instead when one exists.
        """
        self._gate.ensure_active(username)

        in_flight = self._certificates.find_in_flight(username)
        if in_flight is not None:
            logger.info(f"[certificates] {username} already has certificate {in_flight.id} in flight")
            return in_flight

        now = self._clock()
        certificate = self._certificates.create(Certificate(
            username=username,
            root_domain=f"{username}.{self._root_domain}",
            created_at=now,
            updated_at=now,
        ))
        self._events.emit([CertificateEvent.certificate_requested(certificate)])

        self._queue.enqueue(ORDER_STAGE, OrderCreationPayload(
            certificate_id=certificate.id,
            root_domain=certificate.root_domain,
            username=username,
            domains=certificate.domains,
        ))
        logger.info(f"[certificates] requested certificate {certificate.id} for {certificate.root_domain}")
        return certificate

    # -------------------------
    # READ
    # -------------------------

    def get_certificate(self, username: str, certificate_id: int) -> Certificate:
        certificate = self._certificates.get(certificate_id)
        if certificate is None or certificate.username != username:
            raise CertificateNotFound(f"Certificate {certificate_id} not found")
        return certificate

    def list_certificates(self, username: str) -> List[Certificate]:
        return self._certificates.list_for_user(username)

    def list_challenges(self, username: str, certificate_id: int) -> List[Challenge]:
        self.get_certificate(username, certificate_id)
        return self._challenges.list_for_certificate(certificate_id)

    # -------------------------
    # FAILURE
    # -------------------------

    def fail_certificate(self, payload: Any, reason: str) -> Optional[Certificate]:
        """Queue failure hook: the pipeline gave up on this certificate."""
        certificate_id = payload["certificate_id"] if isinstance(payload, dict) else payload.certificate_id

        certificate = self._certificates.get(certificate_id)
        if certificate is None:
            logger.warning(f"[certificates] failure for unknown certificate {certificate_id}: {reason}")
            return None
        if certificate.is_finished:
            return certificate

        previous = CertificateEvent.certificate_failed(certificate, reason)
        try:
            CertificateStateMachine.transition(certificate, CertificateStatus.FAILED, reason=reason, now=self._clock())
            self._certificates.update(certificate)
        except (InvalidStateTransition, JobConcurrencyError) as e:
            logger.error(f"[certificates] could not mark certificate {certificate_id} failed: {e}")
            raise

        self._events.emit([previous])
        self._records.remove_challenge_records(certificate.username)
        logger.warning(f"[certificates] ❌ certificate {certificate_id} failed: {reason}")
        return certificate


def register_certificate_stages(
    queue: JobQueue,
    *,
    order_stage: OrderCreationStage,
    dns_wait_stage: DnsWaitStage,
    finalize_stage: FinalizationStage,
    service: CertificateService,
    order_policy: Optional[RetryPolicy] = None,
    dns_wait_policy: Optional[RetryPolicy] = None,
    finalize_policy: Optional[RetryPolicy] = None,
) -> None:
    """Wire the three issuance stages into the queue."""
    queue.register(
        ORDER_STAGE,
        order_stage,
        retry_policy=order_policy,
        payload_model=OrderCreationPayload,
        on_failure=service.fail_certificate,
    )
    queue.register(
        DNS_WAIT_STAGE,
        dns_wait_stage,
        retry_policy=dns_wait_policy,
        payload_model=DnsWaitPayload,
        on_failure=service.fail_certificate,
    )
    queue.register(
        FINALIZE_STAGE,
        finalize_stage,
        retry_policy=finalize_policy,
        payload_model=FinalizationPayload,
        on_failure=service.fail_certificate,
    )
