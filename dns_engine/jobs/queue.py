# dns_engine/jobs/queue.py
"""Database-backed stage queue: registration, dispatch and outcome handling."""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Type, Union

from pydantic import BaseModel, ValidationError

from dns_engine.core.errors import JobLeaseError
from dns_engine.core.models import utcnow
from dns_engine.core.repository import JobRepository
from dns_engine.jobs.models import OutcomeKind, StageJob, StageOutcome
from dns_engine.jobs.retry import RetryPolicy

logger = logging.getLogger(__name__)


StageHandler = Callable[[Any], StageOutcome]
FailureHook = Callable[[Any, str], None]


@dataclass
class StageRegistration:
    stage: str
    handler: StageHandler
    retry_policy: RetryPolicy
    payload_model: Optional[Type[BaseModel]] = None
    on_failure: Optional[FailureHook] = None


class JobQueue:
    """
    Generic stage queue.

    Handlers return a StageOutcome; the queue turns it into a handoff,
    a backoff or a terminal failure. The queue knows nothing about what
    the stages do.
    """

    def __init__(
        self,
        repository: JobRepository,
        *,
        lease_seconds: int = 120,
        default_policy: Optional[RetryPolicy] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._repo = repository
        self.lease_seconds = lease_seconds
        self._default_policy = default_policy or RetryPolicy()
        self._clock = clock
        self._registrations: Dict[str, StageRegistration] = {}

    # -------------------------
    # REGISTRATION
    # -------------------------

    def register(
        self,
        stage: str,
        handler: StageHandler,
        *,
        retry_policy: Optional[RetryPolicy] = None,
        payload_model: Optional[Type[BaseModel]] = None,
        on_failure: Optional[FailureHook] = None,
    ) -> None:
        if stage in self._registrations:
            raise ValueError(f"Stage {stage} already registered")

        self._registrations[stage] = StageRegistration(
            stage=stage,
            handler=handler,
            retry_policy=retry_policy or self._default_policy,
            payload_model=payload_model,
            on_failure=on_failure,
        )
        logger.debug(f"[queue] registered stage {stage}")

    @property
    def stages(self) -> List[str]:
        return list(self._registrations)

    # -------------------------
    # ENQUEUE
    # -------------------------

    def enqueue(
        self,
        stage: str,
        payload: Union[BaseModel, Dict[str, Any]],
        run_after: Optional[datetime] = None,
    ) -> StageJob:
        registration = self._registrations.get(stage)
        policy = registration.retry_policy if registration else self._default_policy

        data = payload.model_dump(mode="json") if isinstance(payload, BaseModel) else dict(payload)
        now = self._clock()
        job = StageJob(
            stage=stage,
            payload=data,
            max_attempts=policy.max_attempts,
            run_after=run_after or now,
            created_at=now,
        )
        self._repo.create(job)
        logger.info(f"[queue] enqueued {stage} job {job.job_id}")
        return job

    # -------------------------
    # DISPATCH
    # -------------------------

    def claim(self, worker_id: str) -> Optional[StageJob]:
        return self._repo.claim_next(
            self.stages,
            worker_id,
            self.lease_seconds,
            self._clock(),
        )

    def renew_lease(self, job: StageJob, worker_id: str) -> None:
        self._repo.renew_lease(job.job_id, worker_id, self.lease_seconds, self._clock())

    def run_pending(self, worker_id: str, max_jobs: int = 1000) -> int:
        """Process due jobs in this thread until none are left. Returns the number processed."""
        processed = 0
        while processed < max_jobs:
            job = self.claim(worker_id)
            if job is None:
                break
            self.process(job, worker_id)
            processed += 1
        return processed

    def process(self, job: StageJob, worker_id: str) -> StageOutcome:
        """Run the handler for a claimed job and record what happened."""
        registration = self._registrations.get(job.stage)
        if registration is None:
            outcome = StageOutcome.terminal(f"No handler registered for stage {job.stage}")
            self._repo.fail(job.job_id, worker_id, outcome.reason, self._clock())
            logger.error(f"[queue] {outcome.reason} (job {job.job_id})")
            return outcome

        try:
            payload = (
                registration.payload_model.model_validate(job.payload)
                if registration.payload_model
                else job.payload
            )
        except ValidationError as e:
            outcome = StageOutcome.terminal(f"Invalid {job.stage} payload: {e}")
            self._fail(job, worker_id, registration, job.payload, outcome.reason)
            return outcome

        # Crash-reclaimed jobs may arrive past their budget
        if job.attempts > job.max_attempts:
            outcome = StageOutcome.terminal(
                f"{job.stage} abandoned after {job.max_attempts} attempts"
            )
            self._fail(job, worker_id, registration, payload, outcome.reason)
            return outcome

        logger.info(f"[queue] running {job.stage} job {job.job_id} (attempt {job.attempts}/{job.max_attempts})")
        try:
            outcome = registration.handler(payload)
        except Exception as e:
            logger.error(f"[queue] {job.stage} job {job.job_id} raised: {e}", exc_info=True)
            outcome = StageOutcome.retryable(f"Unexpected error: {e}")

        self._apply(job, worker_id, registration, payload, outcome)
        return outcome

    def _apply(
        self,
        job: StageJob,
        worker_id: str,
        registration: StageRegistration,
        payload: Any,
        outcome: StageOutcome,
    ) -> None:
        now = self._clock()

        try:
            if outcome.kind == OutcomeKind.COMPLETED:
                # Successor is enqueued before this job completes
                if outcome.next_stage:
                    self.enqueue(outcome.next_stage, outcome.next_payload or {})
                self._repo.complete(job.job_id, worker_id, now)
                logger.info(f"[queue] ✅ {job.stage} job {job.job_id} completed")
                return

            if outcome.kind == OutcomeKind.RETRYABLE:
                if job.attempts >= job.max_attempts:
                    reason = f"{outcome.reason} (gave up after {job.attempts} attempts)"
                    self._fail(job, worker_id, registration, payload, reason)
                    return

                run_after = registration.retry_policy.next_run(job.attempts, now)
                self._repo.reschedule(job.job_id, worker_id, run_after, outcome.reason)
                logger.info(
                    f"[queue] {job.stage} job {job.job_id} retry "
                    f"{job.attempts}/{job.max_attempts} at {run_after.isoformat()}: {outcome.reason}"
                )
                return

            self._fail(job, worker_id, registration, payload, outcome.reason)
        except JobLeaseError as e:
            # Another worker reclaimed the job; its run owns the outcome now
            logger.warning(f"[queue] lost lease on {job.stage} job {job.job_id}: {e}")

    def _fail(
        self,
        job: StageJob,
        worker_id: str,
        registration: StageRegistration,
        payload: Any,
        reason: str,
    ) -> None:
        self._repo.fail(job.job_id, worker_id, reason, self._clock())
        logger.warning(f"[queue] ❌ {job.stage} job {job.job_id} failed: {reason}")

        if registration.on_failure is None:
            return
        try:
            registration.on_failure(payload, reason)
        except Exception as e:
            logger.error(f"[queue] failure hook for {job.stage} job {job.job_id} raised: {e}", exc_info=True)
