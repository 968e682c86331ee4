"""Core domain models (business logic)."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import NamedTuple, Optional

from dateutil.relativedelta import relativedelta


ACME_CHALLENGE_SUBDOMAIN = "_acme-challenge"

# Records live for this many months after creation or their last update/renewal
RECORD_VALIDITY_MONTHS = 6


def utcnow() -> datetime:
    """Naive UTC timestamp, the format every table column stores."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def record_expiry(now: Optional[datetime] = None, months: int = RECORD_VALIDITY_MONTHS) -> datetime:
    return (now or utcnow()) + relativedelta(months=months)


class DnsRecordType(Enum):
    """Record types users may manage."""

    A = "A"
    AAAA = "AAAA"
    CNAME = "CNAME"
    MX = "MX"
    TXT = "TXT"


@dataclass
class DnsRecord:
    """A user-owned DNS record. The record store is the source of truth."""

    username: str
    type: DnsRecordType
    subdomain: str
    value: str

    id: Optional[int] = None

    # Optional metadata shown to the owner
    ports: Optional[str] = None
    course: Optional[str] = None
    description: Optional[str] = None

    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    expires_at: datetime = field(default_factory=record_expiry)


class RecordTuple(NamedTuple):
    """Minimal projection used to diff the store against the provider."""

    username: str
    subdomain: str
    type: DnsRecordType
    value: str


@dataclass
class User:
    username: str
    email: str
    first_name: str = ""
    last_name: str = ""
    deactivated_at: Optional[datetime] = None
    created_at: datetime = field(default_factory=utcnow)

    @property
    def is_deactivated(self) -> bool:
        return self.deactivated_at is not None


class CertificateStatus(Enum):
    """Certificate issuance state machine."""

    ORDERING = "ordering"
    CHALLENGES_PROVISIONED = "challenges-provisioned"
    VERIFYING = "verifying"
    ISSUED = "issued"
    FAILED = "failed"


TERMINAL_CERTIFICATE_STATES = frozenset({CertificateStatus.ISSUED, CertificateStatus.FAILED})


@dataclass
class Certificate:
    """A certificate for ``<owner>.<root domain>`` and its wildcard."""

    username: str
    root_domain: str

    id: Optional[int] = None
    status: CertificateStatus = CertificateStatus.ORDERING

    # ACME order
    order_url: Optional[str] = None
    private_key_pem: Optional[str] = None

    # Result
    certificate_pem: Optional[str] = None
    valid_from: Optional[datetime] = None
    valid_to: Optional[datetime] = None
    failure_reason: Optional[str] = None

    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    # Optimistic concurrency
    version: int = 0

    @property
    def domains(self) -> list[str]:
        return [self.root_domain, f"*.{self.root_domain}"]

    @property
    def is_finished(self) -> bool:
        return self.status in TERMINAL_CERTIFICATE_STATES


@dataclass
class Challenge:
    """One DNS-01 challenge of a certificate order."""

    certificate_id: int
    domain: str
    challenge_key: str
    challenge_url: str

    id: Optional[int] = None
    verified: bool = False
    created_at: datetime = field(default_factory=utcnow)
