"""DNS provider contract and the record-set shape shared with the reconciler."""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Iterable, List, Tuple


# Record types the reconciler owns on the provider. NS/SOA and anything else are never touched.
MANAGED_TYPES = frozenset({"A", "AAAA", "CNAME", "MX", "TXT"})

DEFAULT_MX_PREFERENCE = 10


@dataclass(frozen=True)
class ProviderRecordSet:
    """
    All values the provider serves for one (name, type).

    ``name`` is the lower-cased FQDN without the trailing dot; ``values``
    is kept sorted so two sets compare equal regardless of provider order.
    """

    name: str
    type: str
    values: Tuple[str, ...]
    ttl: int = 60

    @classmethod
    def build(cls, name: str, record_type: str, values: Iterable[str], ttl: int = 60) -> "ProviderRecordSet":
        record_type = record_type.upper()
        normalized = {normalize_value(record_type, v) for v in values}
        return cls(
            name=normalize_name(name),
            type=record_type,
            values=tuple(sorted(normalized)),
            ttl=ttl,
        )

    @property
    def key(self) -> Tuple[str, str]:
        return self.name, self.type


def normalize_name(name: str) -> str:
    return name.strip().rstrip(".").lower()


def normalize_value(record_type: str, value: str) -> str:
    """Canonical value form, so store values and provider values compare equal."""
    value = value.strip()
    if record_type == "CNAME":
        return value.rstrip(".").lower()
    if record_type == "MX":
        parts = value.split()
        if len(parts) == 1:
            parts = [str(DEFAULT_MX_PREFERENCE), parts[0]]
        return f"{int(parts[0])} {parts[1].rstrip('.').lower()}"
    if record_type in ("A", "AAAA"):
        return value.lower()
    return value


def is_managed(name: str, record_type: str, zone: str) -> bool:
    """
    True for record sets the reconciler may create, change or delete.

    Only ``<sub>.<owner>.<zone>`` and deeper are user space; the apex and
    names one label below it belong to the operator.
    """
    if record_type.upper() not in MANAGED_TYPES:
        return False

    name = normalize_name(name)
    zone = normalize_name(zone)
    if not name.endswith("." + zone):
        return False

    relative = name[: -(len(zone) + 1)]
    return len(relative.split(".")) >= 2


class DnsProvider(ABC):
    """
    Authoritative DNS the reconciler drives toward the record store.

    Every call either succeeds or raises ProviderError.
    """

    @abstractmethod
    def list_managed_records(self, zone: str) -> List[ProviderRecordSet]:
        """Record sets in the zone for which ``is_managed`` holds."""
        pass

    @abstractmethod
    def create_record(self, record_set: ProviderRecordSet) -> None:
        pass

    @abstractmethod
    def update_record(self, record_set: ProviderRecordSet) -> None:
        """Replace all values of an existing (name, type)."""
        pass

    @abstractmethod
    def delete_record(self, record_set: ProviderRecordSet) -> None:
        """Delete a record set. ``record_set`` is what the provider currently serves."""
        pass
