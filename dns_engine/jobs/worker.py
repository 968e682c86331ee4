# dns_engine/jobs/worker.py
"""Stage worker - claims queued stage jobs and runs them in slot threads."""

import logging
import threading
from typing import Dict, Optional
from uuid import UUID

from dns_engine.core.errors import JobLeaseError
from dns_engine.jobs.models import StageJob
from dns_engine.jobs.queue import JobQueue
from dns_engine.jobs.slots import SlotManager

logger = logging.getLogger(__name__)


class StageWorker:
    """
    Claims due jobs from the queue into free slots and runs each in its own thread.

    Leases of running jobs are renewed every poll. On stop, running jobs are
    left to finish; anything abandoned is reclaimed once its lease expires.
    """

    def __init__(
        self,
        *,
        worker_id: str,
        queue: JobQueue,
        poll_interval: float = 2.0,
        max_slots: int = 4,
    ):
        self.worker_id = worker_id
        self.queue = queue
        self.poll_interval = poll_interval

        self.slots = SlotManager(max_slots)
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

        # Track running jobs: {job_id: (job, thread)}
        self._running: Dict[UUID, tuple] = {}
        self._running_lock = threading.Lock()

    def start(self) -> None:
        logger.info(f"[worker {self.worker_id}] 🚀 Starting stage worker")
        logger.info(f"[worker] Stages: {', '.join(self.queue.stages)}")
        logger.info(f"[worker] Max slots: {self.slots.total_slots()}")
        logger.info(f"[worker] Poll interval: {self.poll_interval}s")
        logger.info(f"[worker] Lease duration: {self.queue.lease_seconds}s")

        self._thread = threading.Thread(target=self._run_loop, daemon=True)
        self._thread.start()

    def stop(self, wait_for_jobs: bool = True) -> None:
        logger.info(f"[worker {self.worker_id}] Stopping stage worker")
        self._stop_event.set()
        if self._thread:
            self._thread.join()
        if wait_for_jobs:
            for _, thread in self.running_jobs():
                thread.join()

    def running_jobs(self) -> list:
        with self._running_lock:
            return list(self._running.values())

    def _run_loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                self.tick()
            except Exception as e:
                logger.error(f"[worker] Error in main loop: {e}", exc_info=True)

            self._stop_event.wait(self.poll_interval)

    def tick(self) -> int:
        """One poll: renew leases, then fill free slots. Returns jobs started."""
        self._renew_running_leases()

        started = 0
        while not self._stop_event.is_set():
            slot = self.slots.reserve()
            if slot is None:
                break

            try:
                job = self.queue.claim(self.worker_id)
            except Exception:
                self.slots.release(slot)
                raise

            if job is None:
                self.slots.release(slot)
                break

            self.slots.bind(slot, job.job_id)
            thread = threading.Thread(
                target=self._execute_in_thread,
                args=(job,),
                daemon=True,
            )
            with self._running_lock:
                self._running[job.job_id] = (job, thread)
            thread.start()
            started += 1
            logger.info(f"[worker] Started {job.stage} job {job.job_id} in slot {slot.slot_id}")

        return started

    def _renew_running_leases(self) -> None:
        for job, _ in self.running_jobs():
            try:
                self.queue.renew_lease(job, self.worker_id)
            except JobLeaseError:
                # The job finishes on its own; its outcome will be rejected
                logger.warning(f"[worker] Lost lease for {job.job_id}")
            except Exception as e:
                logger.error(f"[worker] Error renewing lease for {job.job_id}: {e}")

    def _execute_in_thread(self, job: StageJob) -> None:
        try:
            self.queue.process(job, self.worker_id)
        except Exception as e:
            logger.error(f"[worker] [{job.job_id}] ❌ Failed: {e}", exc_info=True)
        finally:
            slot = self.slots.find_slot_by_job(job.job_id)
            if slot:
                self.slots.release(slot)
            with self._running_lock:
                self._running.pop(job.job_id, None)
