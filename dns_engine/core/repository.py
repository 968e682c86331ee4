# dns_engine/core/repository.py

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Tuple
from uuid import UUID

from dns_engine.core.models import Certificate, Challenge, DnsRecord, RecordTuple, User
from dns_engine.jobs.models import JobState, StageJob


class DnsRecordRepository(ABC):
    """
    Persistence contract for the record store.
    """

    @abstractmethod
    def get(self, record_id: int) -> Optional[DnsRecord]:
        raise NotImplementedError

    @abstractmethod
    def list(
        self,
        owner: Optional[str] = None,
        exclude_acme_challenge: bool = True,
    ) -> List[DnsRecord]:
        """
        List records ordered by subdomain, type, value.
        Challenge TXT records are excluded unless asked for.
        """
        raise NotImplementedError

    @abstractmethod
    def count(self, owner: str) -> int:
        """Count owner's records, challenge TXT records excluded."""
        raise NotImplementedError

    @abstractmethod
    def cname_exists(self, owner: str, subdomain: str, exclude_id: Optional[int] = None) -> bool:
        raise NotImplementedError

    @abstractmethod
    def create(self, record: DnsRecord) -> DnsRecord:
        """
        Persist a new record.
        Must raise DuplicateRecordError when the CNAME uniqueness constraint fires.
        """
        raise NotImplementedError

    @abstractmethod
    def update(self, record_id: int, changes: Dict[str, Any]) -> DnsRecord:
        raise NotImplementedError

    @abstractmethod
    def delete(self, record_id: int) -> DnsRecord:
        raise NotImplementedError

    @abstractmethod
    def list_expired(self, now: datetime) -> List[DnsRecord]:
        raise NotImplementedError

    @abstractmethod
    def find_challenge_records(self, owner: str) -> List[DnsRecord]:
        raise NotImplementedError

    @abstractmethod
    def full_snapshot(self) -> List[RecordTuple]:
        """
        Every record in the store, reduced to (owner, subdomain, type, value).
        Ground truth for reconciliation.
        """
        raise NotImplementedError


class UserRepository(ABC):

    @abstractmethod
    def get(self, username: str) -> Optional[User]:
        raise NotImplementedError

    @abstractmethod
    def create(self, user: User) -> User:
        raise NotImplementedError

    @abstractmethod
    def get_by_email(self, email: str) -> Optional[User]:
        raise NotImplementedError

    @abstractmethod
    def set_deactivated(self, username: str, deactivated_at: Optional[datetime]) -> User:
        raise NotImplementedError

    @abstractmethod
    def delete_by_email(self, email: str) -> User:
        raise NotImplementedError


class CertificateRepository(ABC):

    @abstractmethod
    def create(self, certificate: Certificate) -> Certificate:
        raise NotImplementedError

    @abstractmethod
    def get(self, certificate_id: int) -> Optional[Certificate]:
        raise NotImplementedError

    @abstractmethod
    def update(self, certificate: Certificate) -> None:
        """
        Persist updated certificate.
        Must enforce optimistic concurrency on ``version``.
        """
        raise NotImplementedError

    @abstractmethod
    def list_for_user(self, username: str) -> List[Certificate]:
        raise NotImplementedError

    @abstractmethod
    def find_in_flight(self, username: str) -> Optional[Certificate]:
        raise NotImplementedError

    @abstractmethod
    def save_order(
        self,
        certificate_id: int,
        order_url: str,
        private_key_pem: str,
        challenges: List[Challenge],
    ) -> List[Challenge]:
        """
        Atomically store the order and its challenges.
        """
        raise NotImplementedError


class ChallengeRepository(ABC):

    @abstractmethod
    def list_for_certificate(self, certificate_id: int) -> List[Challenge]:
        raise NotImplementedError

    @abstractmethod
    def mark_verified(self, certificate_id: int) -> int:
        raise NotImplementedError


class ReconciliationStateRepository(ABC):
    """
    Versioned reconciliation-needed flag.
    """

    @abstractmethod
    def mark_needed(self) -> int:
        """Set the flag and bump the generation. Returns the new generation."""
        raise NotImplementedError

    @abstractmethod
    def read(self) -> Tuple[bool, int, Optional[datetime]]:
        """Return (needed, generation, last_reconciled_at)."""
        raise NotImplementedError

    @abstractmethod
    def clear(self, generation: int, now: datetime) -> bool:
        """
        Clear the flag only if the generation is still ``generation``.
        Returns True if cleared.
        """
        raise NotImplementedError


class JobRepository(ABC):
    """
    Persistence contract for the stage job queue.
    """

    @abstractmethod
    def create(self, job: StageJob) -> StageJob:
        raise NotImplementedError

    @abstractmethod
    def get(self, job_id: UUID) -> Optional[StageJob]:
        raise NotImplementedError

    @abstractmethod
    def claim_next(
        self,
        stages: Iterable[str],
        worker_id: str,
        lease_seconds: int,
        now: datetime,
    ) -> Optional[StageJob]:
        """
        Atomically claim one due job: QUEUED with run_after <= now,
        or RUNNING whose lease has expired (crashed worker).
        """
        raise NotImplementedError

    @abstractmethod
    def complete(self, job_id: UUID, worker_id: str, now: datetime) -> None:
        raise NotImplementedError

    @abstractmethod
    def reschedule(self, job_id: UUID, worker_id: str, run_after: datetime, error: str) -> None:
        raise NotImplementedError

    @abstractmethod
    def fail(self, job_id: UUID, worker_id: str, error: str, now: datetime) -> None:
        raise NotImplementedError

    @abstractmethod
    def renew_lease(self, job_id: UUID, worker_id: str, lease_seconds: int, now: datetime) -> None:
        raise NotImplementedError

    @abstractmethod
    def list_by_state(self, state: JobState, stage: Optional[str] = None, limit: int = 100) -> List[StageJob]:
        raise NotImplementedError
