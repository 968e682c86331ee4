"""Reconciliation-needed flag backed by the reconciliation_state row."""

import logging
from datetime import datetime
from typing import Callable, Optional

from dns_engine.core.models import utcnow
from dns_engine.core.repository import ReconciliationStateRepository

logger = logging.getLogger(__name__)


class ReconciliationFlag:
    """
    Versioned flag shared by every process.

    Each mark bumps a generation counter. The reconciler reads the generation
    before a pass and clears with compare-and-clear, so a mark that lands
    mid-pass keeps the flag set for the next pass.
    """

    def __init__(
        self,
        repository: ReconciliationStateRepository,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._repo = repository
        self._clock = clock

    def mark_needed(self) -> int:
        generation = self._repo.mark_needed()
        logger.debug(f"[flag] marked (generation {generation})")
        return generation

    def is_needed(self) -> bool:
        needed, _, _ = self._repo.read()
        return needed

    def generation(self) -> int:
        _, generation, _ = self._repo.read()
        return generation

    def last_reconciled_at(self) -> Optional[datetime]:
        _, _, last = self._repo.read()
        return last

    def clear(self, generation: int) -> bool:
        """Clear only if nothing marked the flag since ``generation`` was read."""
        cleared = self._repo.clear(generation, self._clock())
        if not cleared:
            logger.info(f"[flag] not cleared: generation moved past {generation}")
        return cleared
