#dns_engine/core/validation.py
import ipaddress
import re

from dns_engine.core.models import ACME_CHALLENGE_SUBDOMAIN, DnsRecord, DnsRecordType
from dns_engine.core.errors import RecordValidationError


_LABEL_RE = re.compile(r"^(?!-)[a-z0-9_-]{1,63}(?<!-)$")
_HOSTNAME_LABEL_RE = re.compile(r"^(?!-)[a-z0-9-]{1,63}(?<!-)$")

MAX_TXT_LENGTH = 1024
MAX_METADATA_LENGTH = 512


def _is_hostname(value: str) -> bool:
    name = value.rstrip(".").lower()
    if not name or len(name) > 253:
        return False
    return all(_HOSTNAME_LABEL_RE.match(label) for label in name.split("."))


def validate_subdomain(subdomain: str) -> None:
    if not subdomain:
        raise RecordValidationError("subdomain is required")

    if len(subdomain) > 190:
        raise RecordValidationError("subdomain is too long")

    for label in subdomain.split("."):
        if not _LABEL_RE.match(label):
            raise RecordValidationError(f"invalid subdomain label: {label!r}")


def validate_value(record_type: DnsRecordType, value: str) -> None:
    if not value:
        raise RecordValidationError("value is required")

    if record_type == DnsRecordType.A:
        try:
            ipaddress.IPv4Address(value)
        except ValueError:
            raise RecordValidationError(f"{value!r} is not an IPv4 address")

    elif record_type == DnsRecordType.AAAA:
        try:
            ipaddress.IPv6Address(value)
        except ValueError:
            raise RecordValidationError(f"{value!r} is not an IPv6 address")

    elif record_type == DnsRecordType.CNAME:
        if not _is_hostname(value):
            raise RecordValidationError(f"{value!r} is not a valid hostname")

    elif record_type == DnsRecordType.MX:
        # "<preference> <exchange>" or just the exchange
        parts = value.split()
        if len(parts) == 2 and parts[0].isdigit():
            exchange = parts[1]
        elif len(parts) == 1:
            exchange = parts[0]
        else:
            raise RecordValidationError(f"{value!r} is not a valid MX value")
        if not _is_hostname(exchange):
            raise RecordValidationError(f"{exchange!r} is not a valid mail exchange")

    elif record_type == DnsRecordType.TXT:
        if len(value) > MAX_TXT_LENGTH:
            raise RecordValidationError("TXT value is too long")


def validate_record(record: DnsRecord, *, allow_reserved: bool = False) -> None:
    """Validate a record before it is written to the store."""
    # -------------------------
    # Identity
    # -------------------------
    if not record.username:
        raise RecordValidationError("username is required")

    if not isinstance(record.type, DnsRecordType):
        raise RecordValidationError(f"unsupported record type: {record.type!r}")

    # -------------------------
    # Name
    # -------------------------
    validate_subdomain(record.subdomain)

    if not allow_reserved and record.subdomain.split(".")[0] == ACME_CHALLENGE_SUBDOMAIN:
        raise RecordValidationError(
            f"{ACME_CHALLENGE_SUBDOMAIN} is reserved for certificate challenges"
        )

    # -------------------------
    # Data
    # -------------------------
    validate_value(record.type, record.value)

    for name in ("ports", "course", "description"):
        text = getattr(record, name)
        if text is not None and len(text) > MAX_METADATA_LENGTH:
            raise RecordValidationError(f"{name} is too long")
