# dns_engine/run_reconciler.py
"""Run the reconciliation worker: keeps the DNS provider in sync and purges expired records."""

import logging
import sys

from dns_engine import container
from dns_engine.config import settings
from dns_engine.reconciler.worker import ReconciliationWorker

# Setup logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)

logger = logging.getLogger(__name__)


def main():
    """Main entry point."""
    logger.info(f"Starting reconciliation worker for {settings.root_domain} ({settings.dns_provider})")

    worker = ReconciliationWorker(
        engine=container.reconciliation_engine(),
        flag=container.reconciliation_flag(),
        record_service=container.record_service(),
        poll_interval=settings.reconcile_poll_interval,
        force_interval=settings.reconcile_force_interval,
        sweep_interval=settings.expiry_sweep_interval,
    )

    try:
        worker.start()
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
    except Exception as e:
        logger.error(f"Fatal error: {e}", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
