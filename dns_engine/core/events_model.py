"""Event models for certificate issuance."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict

from dns_engine.core.models import Certificate, utcnow


@dataclass
class CertificateEvent:
    """Base certificate event."""

    event_type: str
    certificate_id: int
    username: str
    timestamp: datetime = field(default_factory=utcnow)
    metadata: Dict[str, Any] = field(default_factory=dict)

    @staticmethod
    def certificate_requested(certificate: Certificate):
        return CertificateEvent(
            event_type="certificate.requested",
            certificate_id=certificate.id,
            username=certificate.username,
            metadata={
                "root_domain": certificate.root_domain,
            }
        )

    @staticmethod
    def challenges_provisioned(certificate: Certificate, challenge_count: int):
        return CertificateEvent(
            event_type="certificate.challenges_provisioned",
            certificate_id=certificate.id,
            username=certificate.username,
            metadata={
                "order_url": certificate.order_url,
                "challenges": challenge_count,
            }
        )

    @staticmethod
    def challenges_verified(certificate: Certificate):
        return CertificateEvent(
            event_type="certificate.verified",
            certificate_id=certificate.id,
            username=certificate.username,
            metadata={
                "root_domain": certificate.root_domain,
            }
        )

    @staticmethod
    def certificate_issued(certificate: Certificate):
        return CertificateEvent(
            event_type="certificate.issued",
            certificate_id=certificate.id,
            username=certificate.username,
            metadata={
                "valid_from": certificate.valid_from.isoformat() if certificate.valid_from else None,
                "valid_to": certificate.valid_to.isoformat() if certificate.valid_to else None,
            }
        )

    @staticmethod
    def certificate_failed(certificate: Certificate, reason: str):
        return CertificateEvent(
            event_type="certificate.failed",
            certificate_id=certificate.id,
            username=certificate.username,
            metadata={
                "error_message": reason,
                "previous_status": certificate.status.value,
            }
        )
