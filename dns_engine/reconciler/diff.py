"""Diff engine: compare the record store snapshot with provider record sets."""

from collections import defaultdict
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Tuple

from dns_engine.core.models import RecordTuple
from dns_engine.providers.base import ProviderRecordSet


CREATE = "create"
UPDATE = "update"
DELETE = "delete"


@dataclass(frozen=True)
class Mutation:
    """One provider write. ``previous`` is what the provider served before an update."""

    action: str
    record_set: ProviderRecordSet
    previous: Optional[ProviderRecordSet] = None

    def describe(self) -> str:
        return f"{self.action} {self.record_set.name} {self.record_set.type}"


@dataclass
class DiffResult:
    """Mutations that take the provider from its current state to the store's.

    - ``creates``: (name, type) only in the store
    - ``updates``: (name, type) in both with different values
    - ``deletes``: (name, type) only on the provider
    """

    creates: List[Mutation] = field(default_factory=list)
    updates: List[Mutation] = field(default_factory=list)
    deletes: List[Mutation] = field(default_factory=list)
    unchanged: int = 0

    @property
    def mutations(self) -> List[Mutation]:
        # Deletes first free up names (a CNAME replacing an A) before creates land
        return self.deletes + self.updates + self.creates

    @property
    def has_changes(self) -> bool:
        return bool(self.creates or self.updates or self.deletes)

    @property
    def summary(self) -> str:
        parts = []
        if self.creates:
            parts.append(f"+{len(self.creates)} create")
        if self.updates:
            parts.append(f"~{len(self.updates)} update")
        if self.deletes:
            parts.append(f"-{len(self.deletes)} delete")
        return ", ".join(parts) if parts else "No changes"


def record_fqdn(record: RecordTuple, root_domain: str) -> str:
    return f"{record.subdomain}.{record.username}.{root_domain}".lower()


def build_desired(
    snapshot: Iterable[RecordTuple],
    root_domain: str,
    ttl: int = 60,
) -> Dict[Tuple[str, str], ProviderRecordSet]:
    """Group store tuples into record sets keyed by (FQDN, type)."""
    grouped: Dict[Tuple[str, str], List[str]] = defaultdict(list)
    for record in snapshot:
        grouped[(record_fqdn(record, root_domain), record.type.value)].append(record.value)

    desired = {}
    for (name, record_type), values in grouped.items():
        record_set = ProviderRecordSet.build(name, record_type, values, ttl=ttl)
        desired[record_set.key] = record_set
    return desired


def compute_diff(
    desired: Dict[Tuple[str, str], ProviderRecordSet],
    current: Iterable[ProviderRecordSet],
) -> DiffResult:
    """Compute the provider mutations from ``current`` to ``desired``."""
    result = DiffResult()
    current_by_key = {r.key: r for r in current}

    for key, target in sorted(desired.items()):
        existing = current_by_key.get(key)
        if existing is None:
            result.creates.append(Mutation(CREATE, target))
        elif existing.values != target.values:
            result.updates.append(Mutation(UPDATE, target, previous=existing))
        else:
            result.unchanged += 1

    for key, existing in sorted(current_by_key.items()):
        if key not in desired:
            result.deletes.append(Mutation(DELETE, existing))

    return result
