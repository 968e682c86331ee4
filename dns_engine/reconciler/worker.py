# dns_engine/reconciler/worker.py
"""
Reconciliation worker - polls the reconciliation flag and runs passes.

Runs as a separate process. Rapid record mutations coalesce into one pass
because the flag is only looked at once per poll interval.
"""

import logging
import signal
import threading
from datetime import datetime, timedelta
from typing import Callable, Optional

from dns_engine.core.models import utcnow
from dns_engine.reconciler.engine import ReconcileResult, ReconciliationEngine
from dns_engine.reconciler.flag import ReconciliationFlag

logger = logging.getLogger(__name__)


class ReconciliationWorker:
    """
    Background loop:
    - sweeps expired records every ``sweep_interval`` seconds
    - reconciles when the flag is set
    - forces a pass when the last one is older than ``force_interval``
      (repairs drift made directly on the provider)
    """

    def __init__(
        self,
        *,
        engine: ReconciliationEngine,
        flag: ReconciliationFlag,
        record_service=None,
        poll_interval: float = 5.0,
        force_interval: float = 3600.0,
        sweep_interval: float = 3600.0,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.engine = engine
        self.flag = flag
        self.record_service = record_service
        self.poll_interval = poll_interval
        self.force_interval = force_interval
        self.sweep_interval = sweep_interval
        self._clock = clock

        self._last_sweep: Optional[datetime] = None
        self._stop_event = threading.Event()

    def start(self) -> None:
        """Run until SIGINT/SIGTERM."""
        logger.info("=" * 80)
        logger.info("🔄 RECONCILIATION WORKER STARTED")
        logger.info("=" * 80)
        logger.info(f"Poll interval: {self.poll_interval}s")
        logger.info(f"Forced pass every: {self.force_interval}s")
        logger.info(f"Expiry sweep every: {self.sweep_interval}s")
        logger.info("Press Ctrl+C to stop")
        logger.info("=" * 80)

        signal.signal(signal.SIGINT, self._signal_handler)
        signal.signal(signal.SIGTERM, self._signal_handler)

        while not self._stop_event.is_set():
            try:
                self.run_cycle()
            except Exception as e:
                logger.error(f"[reconciler] Error in cycle: {e}", exc_info=True)

            self._stop_event.wait(self.poll_interval)

        logger.info("Reconciliation worker stopped")

    def stop(self) -> None:
        self._stop_event.set()

    def _signal_handler(self, signum, frame):
        logger.info(f"Received signal {signum}, stopping after the current cycle...")
        self.stop()

    def run_cycle(self) -> Optional[ReconcileResult]:
        """One poll. Returns the pass result, or None when no pass was due."""
        now = self._clock()

        self._sweep_if_due(now)

        needed, forced = self.flag.is_needed(), self._force_due(now)
        if not needed and not forced:
            logger.debug("[reconciler] Flag clear, nothing to do")
            return None

        if forced and not needed:
            logger.info("[reconciler] Running forced pass")
        return self.engine.reconcile()

    def _force_due(self, now: datetime) -> bool:
        last = self.flag.last_reconciled_at()
        if last is None:
            return True
        return now - last >= timedelta(seconds=self.force_interval)

    def _sweep_if_due(self, now: datetime) -> None:
        if self.record_service is None:
            return
        if self._last_sweep is not None and now - self._last_sweep < timedelta(seconds=self.sweep_interval):
            return

        self._last_sweep = now
        purged = self.record_service.purge_expired(now)
        if purged:
            logger.info(f"[reconciler] Purged {purged} expired record(s)")
