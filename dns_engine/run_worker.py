# dns_engine/run_worker.py
"""Run the stage worker that drives certificate issuance."""

import logging
import signal
import sys
import threading

from dns_engine import container
from dns_engine.config import settings
from dns_engine.jobs.worker import StageWorker

# Setup logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)

logger = logging.getLogger(__name__)

_shutdown = threading.Event()


def signal_handler(sig, frame):
    """Handle Ctrl+C / SIGTERM gracefully."""
    logger.info("🛑 Shutting down stage worker...")
    _shutdown.set()


def main():
    """Main entry point."""
    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    worker = StageWorker(
        worker_id=settings.worker_id,
        queue=container.job_queue(),
        poll_interval=settings.worker_poll_interval,
        max_slots=settings.worker_max_slots,
    )

    logger.info("=" * 80)
    logger.info("🚀 DNS ENGINE STAGE WORKER")
    logger.info("=" * 80)
    logger.info(f"Worker ID: {worker.worker_id}")
    logger.info(f"Environment: {settings.environment}")
    logger.info(f"Live DNS verification: {'on' if settings.verify_dns else 'off'}")
    logger.info(f"ACME directory: {settings.acme_directory_url}")
    logger.info("")
    logger.info("Press Ctrl+C to stop")
    logger.info("=" * 80)

    try:
        worker.start()
        _shutdown.wait()
    except Exception as e:
        logger.error(f"Fatal error: {e}", exc_info=True)
        sys.exit(1)
    finally:
        worker.stop()

    logger.info("Stage worker stopped")


if __name__ == "__main__":
    main()
