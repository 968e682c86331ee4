#dns_engine/infrastructure/sql/job_repository.py

"""Stage job queue on SQLAlchemy."""

import logging
from datetime import datetime, timedelta
from typing import Iterable, List, Optional
from uuid import UUID

from sqlalchemy import and_, or_, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from dns_engine.core.errors import JobConcurrencyError, JobLeaseError
from dns_engine.core.repository import JobRepository
from dns_engine.infrastructure.sql.database import get_session_factory
from dns_engine.infrastructure.sql.models import StageJobORM
from dns_engine.jobs.models import JobState, StageJob

logger = logging.getLogger(__name__)


# ============================================
# Mapping Functions
# ============================================

def orm_to_domain(orm: StageJobORM) -> StageJob:
    """Convert ORM model to domain model."""
    return StageJob(
        job_id=orm.job_id,
        stage=orm.stage,
        payload=orm.payload,
        state=orm.state,
        attempts=orm.attempts,
        max_attempts=orm.max_attempts,
        run_after=orm.run_after,
        last_error=orm.last_error,
        lease_owner=orm.lease_owner,
        lease_expires_at=orm.lease_expires_at,
        created_at=orm.created_at,
        started_at=orm.started_at,
        finished_at=orm.finished_at,
        version=orm.version,
    )


def domain_to_orm(job: StageJob) -> StageJobORM:
    """Convert domain model to ORM model."""
    return StageJobORM(
        job_id=job.job_id,
        stage=job.stage,
        payload=job.payload,
        state=job.state,
        attempts=job.attempts,
        max_attempts=job.max_attempts,
        run_after=job.run_after,
        last_error=job.last_error,
        lease_owner=job.lease_owner,
        lease_expires_at=job.lease_expires_at,
        created_at=job.created_at,
        started_at=job.started_at,
        finished_at=job.finished_at,
        version=job.version,
    )


class SqlJobRepository(JobRepository):
    """Job queue with row locks, leases and a version guard on claim."""

    def __init__(self, session_factory: Optional[sessionmaker] = None):
        self._session_factory = session_factory or get_session_factory()

    def _get_session(self) -> Session:
        return self._session_factory()

    # -------------------------
    # CREATE
    # -------------------------

    def create(self, job: StageJob) -> StageJob:
        session = self._get_session()
        try:
            session.add(domain_to_orm(job))
            session.commit()
            logger.debug(f"[sql] enqueue {job.stage} job {job.job_id}")
            return job
        except SQLAlchemyError as e:
            session.rollback()
            raise JobConcurrencyError(f"Failed to enqueue job: {e}") from e
        finally:
            session.close()

    # -------------------------
    # READ
    # -------------------------

    def get(self, job_id: UUID) -> Optional[StageJob]:
        session = self._get_session()
        try:
            orm = session.get(StageJobORM, job_id)
            return orm_to_domain(orm) if orm else None
        finally:
            session.close()

    def list_by_state(self, state: JobState, stage: Optional[str] = None, limit: int = 100) -> List[StageJob]:
        session = self._get_session()
        try:
            query = session.query(StageJobORM).filter(StageJobORM.state == state)
            if stage:
                query = query.filter(StageJobORM.stage == stage)
            rows = query.order_by(StageJobORM.created_at.asc()).limit(limit).all()
            return [orm_to_domain(orm) for orm in rows]
        finally:
            session.close()

    # -------------------------
    # CLAIM
    # -------------------------

    def claim_next(
        self,
        stages: Iterable[str],
        worker_id: str,
        lease_seconds: int,
        now: datetime,
    ) -> Optional[StageJob]:
        stages = list(stages)
        if not stages:
            return None

        session = self._get_session()
        try:
            candidate = session.query(StageJobORM).filter(
                StageJobORM.stage.in_(stages),
                or_(
                    and_(StageJobORM.state == JobState.QUEUED, StageJobORM.run_after <= now),
                    # Worker died mid-stage; the job is up for grabs again
                    and_(StageJobORM.state == JobState.RUNNING, StageJobORM.lease_expires_at <= now),
                ),
            ).order_by(
                StageJobORM.run_after.asc(),
                StageJobORM.created_at.asc(),
            ).with_for_update(skip_locked=True).first()

            if candidate is None:
                return None

            job = orm_to_domain(candidate)
            if job.state == JobState.RUNNING:
                logger.warning(
                    f"[sql] reclaiming {job.stage} job {job.job_id} "
                    f"from {job.lease_owner} (lease expired {job.lease_expires_at})"
                )
            previous_version = job.version
            job.claim(worker_id, lease_seconds, now=now)

            result = session.execute(
                update(StageJobORM)
                .where(
                    StageJobORM.job_id == job.job_id,
                    StageJobORM.version == previous_version,
                )
                .values(
                    state=job.state,
                    lease_owner=job.lease_owner,
                    lease_expires_at=job.lease_expires_at,
                    started_at=job.started_at,
                    attempts=job.attempts,
                    version=job.version,
                )
            )
            if result.rowcount != 1:
                session.rollback()
                logger.debug(f"[sql] claim {job.job_id} by {worker_id} -> lost race")
                return None

            session.commit()
            logger.debug(f"[sql] claim {job.job_id} by {worker_id} -> attempt {job.attempts}")
            return job
        except SQLAlchemyError as e:
            session.rollback()
            raise JobConcurrencyError(f"Failed to claim job: {e}") from e
        finally:
            session.close()

    def _owned(self, session: Session, job_id: UUID, worker_id: str) -> StageJobORM:
        orm = session.query(StageJobORM).filter(
            StageJobORM.job_id == job_id
        ).with_for_update().first()

        if not orm:
            raise JobLeaseError(f"Job {job_id} not found")

        if orm.state != JobState.RUNNING:
            raise JobLeaseError(f"Job not in RUNNING state (current: {orm.state.value})")

        # An expired lease still counts while nobody else has reclaimed the job
        if orm.lease_owner != worker_id:
            raise JobLeaseError(f"Job owned by {orm.lease_owner}")

        return orm

    def _finish(self, job_id: UUID, worker_id: str, apply, action: str) -> None:
        session = self._get_session()
        try:
            orm = self._owned(session, job_id, worker_id)
            apply(orm)
            orm.version += 1
            session.commit()
            logger.debug(f"[sql] {action} {job_id} -> {orm.state.value}")
        except JobLeaseError:
            session.rollback()
            raise
        except SQLAlchemyError as e:
            session.rollback()
            raise JobLeaseError(f"Failed to {action} job {job_id}: {e}") from e
        finally:
            session.close()

    # -------------------------
    # FINISH
    # -------------------------

    def complete(self, job_id: UUID, worker_id: str, now: datetime) -> None:
        def apply(orm: StageJobORM) -> None:
            orm.state = JobState.COMPLETED
            orm.finished_at = now
            orm.lease_owner = None
            orm.lease_expires_at = None

        self._finish(job_id, worker_id, apply, "complete")

    def reschedule(self, job_id: UUID, worker_id: str, run_after: datetime, error: str) -> None:
        def apply(orm: StageJobORM) -> None:
            orm.state = JobState.QUEUED
            orm.run_after = run_after
            orm.last_error = error
            orm.lease_owner = None
            orm.lease_expires_at = None

        self._finish(job_id, worker_id, apply, "reschedule")

    def fail(self, job_id: UUID, worker_id: str, error: str, now: datetime) -> None:
        def apply(orm: StageJobORM) -> None:
            orm.state = JobState.FAILED
            orm.last_error = error
            orm.finished_at = now
            orm.lease_owner = None
            orm.lease_expires_at = None

        self._finish(job_id, worker_id, apply, "fail")

    # -------------------------
    # RENEW LEASE
    # -------------------------

    def renew_lease(self, job_id: UUID, worker_id: str, lease_seconds: int, now: datetime) -> None:
        def apply(orm: StageJobORM) -> None:
            orm.lease_expires_at = now + timedelta(seconds=lease_seconds)

        self._finish(job_id, worker_id, apply, "renew_lease")
