#dns_engine/core/state_machine.py

from datetime import datetime
from typing import Optional

from dns_engine.core.errors import InvalidStateTransition
from dns_engine.core.models import Certificate, CertificateStatus, utcnow


ALLOWED_TRANSITIONS = {
    CertificateStatus.ORDERING: {
        CertificateStatus.CHALLENGES_PROVISIONED,
        CertificateStatus.FAILED,
    },
    CertificateStatus.CHALLENGES_PROVISIONED: {
        CertificateStatus.VERIFYING,
        CertificateStatus.FAILED,
    },
    CertificateStatus.VERIFYING: {
        CertificateStatus.ISSUED,
        CertificateStatus.FAILED,
    },
}


class CertificateStateMachine:
    @staticmethod
    def can_transition(current: CertificateStatus, new_status: CertificateStatus) -> bool:
        return current == new_status or new_status in ALLOWED_TRANSITIONS.get(current, set())

    @staticmethod
    def transition(
        certificate: Certificate,
        new_status: CertificateStatus,
        *,
        reason: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Certificate:
        now = now or utcnow()

        current = certificate.status

        # Re-running a stage lands on the status it already set
        if current == new_status:
            return certificate

        allowed = ALLOWED_TRANSITIONS.get(current, set())
        if new_status not in allowed:
            raise InvalidStateTransition(
                f"Cannot transition certificate {certificate.id} from {current.value} to {new_status.value}"
            )

        if new_status == CertificateStatus.FAILED:
            certificate.failure_reason = reason

        certificate.status = new_status
        certificate.updated_at = now
        certificate.version += 1
        return certificate
