# dns_engine/jobs/retry.py
"""Retry policy for stage jobs with exponential backoff."""

from dataclasses import dataclass
from datetime import datetime, timedelta


@dataclass(frozen=True)
class RetryPolicy:
    """
    Per-stage retry budget.

    With the defaults the delays run 10s, 30s, 90s, ... capped at max_delay.
    """

    max_attempts: int = 5
    base_delay: float = 10.0
    factor: float = 3.0
    max_delay: float = 600.0

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.base_delay < 0 or self.max_delay < 0:
            raise ValueError("delays must not be negative")

    def delay_for(self, attempt: int) -> float:
        """Seconds to wait after the given (1-based) failed attempt."""
        attempt = max(attempt, 1)
        return min(self.base_delay * (self.factor ** (attempt - 1)), self.max_delay)

    def next_run(self, attempt: int, now: datetime) -> datetime:
        return now + timedelta(seconds=self.delay_for(attempt))

    def exhausted(self, attempts: int) -> bool:
        return attempts >= self.max_attempts
