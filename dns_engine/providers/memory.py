"""In-memory DNS provider for development and tests."""

import logging
import threading
from typing import Dict, List, Optional, Set, Tuple

from dns_engine.core.errors import ProviderError
from dns_engine.providers.base import DnsProvider, ProviderRecordSet, is_managed, normalize_name

logger = logging.getLogger(__name__)


class InMemoryDnsProvider(DnsProvider):
    """
    Keeps record sets in a dict.

    ``fail_on`` holds (operation, name) pairs that raise ProviderError, and
    ``fail_listing`` makes ``list_managed_records`` raise. ``calls`` logs
    every successful mutation as (operation, name, type).
    """

    def __init__(self, record_sets: Optional[List[ProviderRecordSet]] = None):
        self._records: Dict[Tuple[str, str], ProviderRecordSet] = {}
        self._lock = threading.Lock()
        self.calls: List[Tuple[str, str, str]] = []
        self.fail_on: Set[Tuple[str, str]] = set()
        self.fail_listing = False

        for record_set in record_sets or []:
            self._records[record_set.key] = record_set

    # -------------------------
    # Test helpers
    # -------------------------

    def seed(self, record_set: ProviderRecordSet) -> None:
        """Put a record set in place without logging a call."""
        with self._lock:
            self._records[record_set.key] = record_set

    def all_records(self) -> List[ProviderRecordSet]:
        with self._lock:
            return sorted(self._records.values(), key=lambda r: r.key)

    def lookup(self, name: str, record_type: str) -> Optional[ProviderRecordSet]:
        with self._lock:
            return self._records.get((normalize_name(name), record_type.upper()))

    def _check(self, operation: str, name: str) -> None:
        if (operation, name) in self.fail_on:
            raise ProviderError(f"Injected {operation} failure for {name}")

    # -------------------------
    # DnsProvider
    # -------------------------

    def list_managed_records(self, zone: str) -> List[ProviderRecordSet]:
        if self.fail_listing:
            raise ProviderError("Injected listing failure")
        with self._lock:
            return [r for r in self._records.values() if is_managed(r.name, r.type, zone)]

    def create_record(self, record_set: ProviderRecordSet) -> None:
        self._check("create", record_set.name)
        with self._lock:
            if record_set.key in self._records:
                raise ProviderError(f"Record set {record_set.name} {record_set.type} already exists")
            self._records[record_set.key] = record_set
            self.calls.append(("create", record_set.name, record_set.type))
        logger.debug(f"[memory-dns] create {record_set.name} {record_set.type} {record_set.values}")

    def update_record(self, record_set: ProviderRecordSet) -> None:
        self._check("update", record_set.name)
        with self._lock:
            if record_set.key not in self._records:
                raise ProviderError(f"Record set {record_set.name} {record_set.type} does not exist")
            self._records[record_set.key] = record_set
            self.calls.append(("update", record_set.name, record_set.type))
        logger.debug(f"[memory-dns] update {record_set.name} {record_set.type} {record_set.values}")

    def delete_record(self, record_set: ProviderRecordSet) -> None:
        self._check("delete", record_set.name)
        with self._lock:
            if self._records.pop(record_set.key, None) is None:
                raise ProviderError(f"Record set {record_set.name} {record_set.type} does not exist")
            self.calls.append(("delete", record_set.name, record_set.type))
        logger.debug(f"[memory-dns] delete {record_set.name} {record_set.type}")
