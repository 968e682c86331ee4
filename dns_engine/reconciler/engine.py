"""Reconciliation engine - converges the DNS provider to the record store."""

import logging
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

from dns_engine.core.errors import ProviderError
from dns_engine.core.repository import DnsRecordRepository
from dns_engine.providers.base import DnsProvider
from dns_engine.reconciler.diff import CREATE, DELETE, Mutation, build_desired, compute_diff
from dns_engine.reconciler.flag import ReconciliationFlag

logger = logging.getLogger(__name__)


@dataclass
class ReconcileResult:
    """Outcome of one pass."""

    applied: List[Mutation] = field(default_factory=list)
    failed: List[Tuple[Mutation, str]] = field(default_factory=list)
    error: Optional[str] = None
    flag_cleared: bool = False

    @property
    def succeeded(self) -> bool:
        return self.error is None and not self.failed

    @property
    def summary(self) -> str:
        if self.error:
            return f"aborted: {self.error}"
        return f"{len(self.applied)} applied, {len(self.failed)} failed"


class ReconciliationEngine:
    """
    Full-table diff of the record store against the provider's managed records.

    Each pass fetches both sides fresh, so a pass after a successful one
    finds nothing to do.
    """

    def __init__(
        self,
        *,
        records: DnsRecordRepository,
        provider: DnsProvider,
        flag: ReconciliationFlag,
        root_domain: str,
        ttl: int = 60,
    ):
        self._records = records
        self._provider = provider
        self._flag = flag
        self._root_domain = root_domain.lower()
        self._ttl = ttl

    def reconcile(self) -> ReconcileResult:
        result = ReconcileResult()

        # Read before the snapshot so any later mark survives the clear
        generation = self._flag.generation()

        snapshot = self._records.full_snapshot()
        try:
            current = self._provider.list_managed_records(self._root_domain)
        except ProviderError as e:
            result.error = str(e)
            logger.error(f"[reconciler] Listing provider records failed: {e}")
            return result

        diff = compute_diff(build_desired(snapshot, self._root_domain, self._ttl), current)
        logger.info(
            f"[reconciler] {len(snapshot)} store records, {len(current)} provider record sets: {diff.summary}"
        )

        for mutation in diff.mutations:
            try:
                self._apply(mutation)
                result.applied.append(mutation)
            except ProviderError as e:
                logger.warning(f"[reconciler] {mutation.describe()} failed: {e}")
                result.failed.append((mutation, str(e)))
            except Exception as e:
                logger.error(f"[reconciler] {mutation.describe()} raised: {e}", exc_info=True)
                result.failed.append((mutation, str(e)))

        if result.failed:
            logger.warning(f"[reconciler] ❌ {len(result.failed)} mutation(s) failed; flag left set")
            return result

        result.flag_cleared = self._flag.clear(generation)
        logger.info(f"[reconciler] ✅ Pass complete ({result.summary})")
        return result

    def _apply(self, mutation: Mutation) -> None:
        if mutation.action == CREATE:
            self._provider.create_record(mutation.record_set)
        elif mutation.action == DELETE:
            self._provider.delete_record(mutation.record_set)
        else:
            self._provider.update_record(mutation.record_set)
