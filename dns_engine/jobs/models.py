"""Job queue models: persisted stage jobs and stage outcomes."""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Dict, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel

from dns_engine.core.models import utcnow


class JobState(Enum):
    """Stage job state machine."""

    QUEUED = "QUEUED"
    RUNNING = "RUNNING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


@dataclass
class StageJob:
    """One unit of stage work. Rows are the only channel between stages."""

    # Identity
    stage: str
    payload: Dict[str, Any]
    job_id: UUID = field(default_factory=uuid4)

    # State
    state: JobState = JobState.QUEUED

    # Retry
    attempts: int = 0
    max_attempts: int = 5
    run_after: datetime = field(default_factory=utcnow)
    last_error: Optional[str] = None

    # Lease management
    lease_owner: Optional[str] = None
    lease_expires_at: Optional[datetime] = None

    # Lifecycle timestamps
    created_at: datetime = field(default_factory=utcnow)
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None

    # Optimistic concurrency
    version: int = 0

    def claim(self, worker_id: str, lease_seconds: int, now: Optional[datetime] = None) -> None:
        """QUEUED (or RUNNING with an expired lease) -> RUNNING."""
        now = now or utcnow()
        if self.state == JobState.RUNNING:
            if self.lease_expires_at and self.lease_expires_at > now:
                raise ValueError(f"Job {self.job_id} is leased by {self.lease_owner}")
        elif self.state != JobState.QUEUED:
            raise ValueError(f"Cannot claim job from {self.state.value} state")

        self.state = JobState.RUNNING
        self.lease_owner = worker_id
        self.lease_expires_at = now + timedelta(seconds=lease_seconds)
        self.started_at = now
        self.attempts += 1
        self.version += 1


class OutcomeKind(Enum):
    COMPLETED = "completed"
    RETRYABLE = "retryable"
    TERMINAL = "terminal"


@dataclass(frozen=True)
class StageOutcome:
    """
    What a stage handler returns.

    RETRYABLE is requeued with backoff until attempts run out.
    TERMINAL fails the job immediately, bypassing the retry policy.
    COMPLETED may name the stage to enqueue next.
    """

    kind: OutcomeKind
    reason: str = ""
    next_stage: Optional[str] = None
    next_payload: Optional[BaseModel] = None

    @classmethod
    def completed(cls, next_stage: Optional[str] = None, next_payload: Optional[BaseModel] = None):
        return cls(OutcomeKind.COMPLETED, next_stage=next_stage, next_payload=next_payload)

    @classmethod
    def retryable(cls, reason: str):
        return cls(OutcomeKind.RETRYABLE, reason=reason)

    @classmethod
    def terminal(cls, reason: str):
        return cls(OutcomeKind.TERMINAL, reason=reason)
