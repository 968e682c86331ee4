# dns_engine/certificates/stages.py
"""
Certificate issuance stages.

Each stage is a queue handler keyed by certificate id. Stages only share
state through certificate/challenge rows and the payload of the next job,
and every stage is safe to re-run from scratch.
"""

import logging
from datetime import datetime
from typing import Callable, Optional, Tuple

from dns_engine.certificates.acme_client import (
    AcmeClient,
    CHALLENGE_INVALID,
    CHALLENGE_VALID,
    generate_private_key_pem,
)
from dns_engine.certificates.verifier import ChallengeVerifier, all_verified
from dns_engine.core.errors import ChallengeLookupError, TransientProviderFault, UnrecoverableFault
from dns_engine.core.events import EventEmitter, NullEventEmitter
from dns_engine.core.events_model import CertificateEvent
from dns_engine.core.models import Certificate, CertificateStatus, Challenge, utcnow
from dns_engine.core.repository import CertificateRepository, ChallengeRepository
from dns_engine.core.schemas import (
    DNS_WAIT_STAGE,
    FINALIZE_STAGE,
    CertificateJobBase,
    DnsWaitPayload,
    FinalizationPayload,
    OrderCreationPayload,
)
from dns_engine.core.state_machine import CertificateStateMachine
from dns_engine.jobs.models import StageOutcome
from dns_engine.users.service import UserGate

logger = logging.getLogger(__name__)


def fault_outcome(stage: str, error: Exception) -> StageOutcome:
    """Map a CA/DNS fault onto a stage outcome."""
    if isinstance(error, UnrecoverableFault):
        return StageOutcome.terminal(f"{stage}: {error}")
    return StageOutcome.retryable(f"{stage}: {error}")


class CertificateStage:
    """Shared wiring and entry checks for the three stages."""

    name = "certificate"

    def __init__(
        self,
        *,
        certificates: CertificateRepository,
        challenges: ChallengeRepository,
        record_service,
        gate: UserGate,
        acme: AcmeClient,
        verifier: Optional[ChallengeVerifier] = None,
        events: Optional[EventEmitter] = None,
        verify_dns: bool = True,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.certificates = certificates
        self.challenges = challenges
        self.records = record_service
        self.gate = gate
        self.acme = acme
        self.verifier = verifier
        self.events = events or NullEventEmitter()
        self.verify_dns = verify_dns
        self._clock = clock

    def _enter(self, payload: CertificateJobBase) -> Tuple[Optional[Certificate], Optional[StageOutcome]]:
        """
        Load the certificate and decide whether the stage should run at all.

        Finished certificates complete quietly with no successor; a deactivated
        owner ends the pipeline.
        """
        certificate = self.certificates.get(payload.certificate_id)
        if certificate is None:
            return None, StageOutcome.terminal(f"Certificate {payload.certificate_id} not found")

        if certificate.is_finished:
            logger.info(
                f"[stage:{self.name}] certificate {certificate.id} already {certificate.status.value}, nothing to do"
            )
            return certificate, StageOutcome.completed()

        if self.gate.is_deactivated(certificate.username):
            return certificate, StageOutcome.terminal(f"Account {certificate.username} is deactivated")

        return certificate, None

    def _advance(self, certificate: Certificate, status: CertificateStatus) -> Certificate:
        if certificate.status == status:
            return certificate
        CertificateStateMachine.transition(certificate, status, now=self._clock())
        self.certificates.update(certificate)
        logger.info(f"[stage:{self.name}] certificate {certificate.id} -> {status.value}")
        return certificate

    @staticmethod
    def _base_fields(certificate: Certificate) -> dict:
        return {
            "certificate_id": certificate.id,
            "root_domain": certificate.root_domain,
            "username": certificate.username,
        }


class OrderCreationStage(CertificateStage):
    """Stage A: open the ACME order, store its challenges, publish the TXT records."""

    name = "order"

    def __call__(self, payload: OrderCreationPayload) -> StageOutcome:
        certificate, outcome = self._enter(payload)
        if outcome:
            return outcome

        if certificate.status not in (CertificateStatus.ORDERING, CertificateStatus.CHALLENGES_PROVISIONED):
            # A later stage already owns this certificate
            return StageOutcome.completed()

        if certificate.order_url:
            challenges = self.challenges.list_for_certificate(certificate.id)
            logger.info(f"[stage:order] reusing order {certificate.order_url}")
        else:
            private_key_pem = generate_private_key_pem()
            try:
                order = self.acme.create_order(payload.domains, private_key_pem)
            except (TransientProviderFault, UnrecoverableFault) as e:
                return fault_outcome(self.name, e)

            challenges = self.certificates.save_order(
                certificate.id,
                order.order_url,
                private_key_pem,
                [
                    Challenge(
                        certificate_id=certificate.id,
                        domain=c.domain,
                        challenge_key=c.challenge_key,
                        challenge_url=c.challenge_url,
                        created_at=self._clock(),
                    )
                    for c in order.challenges
                ],
            )
            # save_order bumped the row version
            certificate = self.certificates.get(certificate.id)

        if not challenges:
            return StageOutcome.terminal(f"Order for certificate {certificate.id} has no challenges")

        for challenge in challenges:
            self.records.ensure_challenge_record(certificate.username, challenge.challenge_key)

        was_ordering = certificate.status == CertificateStatus.ORDERING
        certificate = self._advance(certificate, CertificateStatus.CHALLENGES_PROVISIONED)
        if was_ordering:
            self.events.emit([CertificateEvent.challenges_provisioned(certificate, len(challenges))])

        return StageOutcome.completed(
            next_stage=DNS_WAIT_STAGE,
            next_payload=DnsWaitPayload(**self._base_fields(certificate)),
        )


class DnsWaitStage(CertificateStage):
    """Stage B: wait until every challenge TXT record resolves in live DNS."""

    name = "wait-dns"

    def __call__(self, payload: DnsWaitPayload) -> StageOutcome:
        certificate, outcome = self._enter(payload)
        if outcome:
            return outcome

        if certificate.status == CertificateStatus.ORDERING:
            return StageOutcome.retryable(f"Certificate {certificate.id} has no provisioned challenges yet")

        if certificate.status == CertificateStatus.CHALLENGES_PROVISIONED:
            challenges = self.challenges.list_for_certificate(certificate.id)
            if not challenges:
                return StageOutcome.terminal(f"Certificate {certificate.id} has no challenges")

            if self.verify_dns:
                try:
                    if not all_verified(challenges, self.verifier):
                        return StageOutcome.retryable("Challenge records not visible in DNS yet")
                except ChallengeLookupError as e:
                    return StageOutcome.retryable(f"DNS lookup failed: {e}")
            else:
                logger.info(f"[stage:wait-dns] live DNS verification disabled, certificate {certificate.id}")

            self.challenges.mark_verified(certificate.id)
            certificate = self._advance(certificate, CertificateStatus.VERIFYING)
            self.events.emit([CertificateEvent.challenges_verified(certificate)])

        return StageOutcome.completed(
            next_stage=FINALIZE_STAGE,
            next_payload=FinalizationPayload(order_url=certificate.order_url, **self._base_fields(certificate)),
        )


class FinalizationStage(CertificateStage):
    """Stage C: have the CA validate the challenges, then finalize and store the certificate."""

    name = "finalize"

    def __call__(self, payload: FinalizationPayload) -> StageOutcome:
        certificate = self.certificates.get(payload.certificate_id)
        if certificate is not None and certificate.status == CertificateStatus.ISSUED:
            # Re-entry after issuance only repeats the cleanup
            self.records.remove_challenge_records(certificate.username)
            return StageOutcome.completed()

        certificate, outcome = self._enter(payload)
        if outcome:
            return outcome

        if certificate.status != CertificateStatus.VERIFYING:
            return StageOutcome.retryable(
                f"Certificate {certificate.id} is {certificate.status.value}, not ready to finalize"
            )

        for challenge in self.challenges.list_for_certificate(certificate.id):
            try:
                status = self.acme.validate_challenge(challenge.challenge_url)
            except (TransientProviderFault, UnrecoverableFault) as e:
                return fault_outcome(self.name, e)

            if status == CHALLENGE_INVALID:
                return StageOutcome.terminal(f"CA rejected the challenge for {challenge.domain}")
            if status != CHALLENGE_VALID:
                return StageOutcome.retryable(f"Challenge for {challenge.domain} is {status}")

        try:
            issued = self.acme.finalize(payload.order_url, certificate.domains, certificate.private_key_pem)
        except (TransientProviderFault, UnrecoverableFault) as e:
            return fault_outcome(self.name, e)

        certificate.certificate_pem = issued.certificate_pem
        certificate.valid_from = issued.valid_from
        certificate.valid_to = issued.valid_to
        certificate = self._advance(certificate, CertificateStatus.ISSUED)
        self.events.emit([CertificateEvent.certificate_issued(certificate)])

        self.records.remove_challenge_records(certificate.username)
        return StageOutcome.completed()
