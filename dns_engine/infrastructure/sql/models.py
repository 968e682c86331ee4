#dns_engine/infrastructure/sql/models.py
"""SQLAlchemy ORM models for database tables."""

from uuid import uuid4

from sqlalchemy import (
    Boolean, Column, DateTime, Enum as SQLEnum, ForeignKey, Index, Integer, JSON, String, Text, Uuid, text
)
from sqlalchemy.orm import relationship

from dns_engine.core.models import CertificateStatus, DnsRecordType, utcnow
from dns_engine.infrastructure.sql.database import Base
from dns_engine.jobs.models import JobState

# Matched against driver messages when a record write is rejected
CNAME_UNIQUE_INDEX = "uq_dns_records_cname_owner_subdomain"


class UserORM(Base):
    """Account owning records and certificates."""

    __tablename__ = "users"

    username = Column(String(64), primary_key=True)
    email = Column(String(255), nullable=False, unique=True)
    first_name = Column(String(255), nullable=False, default="")
    last_name = Column(String(255), nullable=False, default="")
    deactivated_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    def __repr__(self) -> str:
        return f"<UserORM(username={self.username}, deactivated={self.deactivated_at is not None})>"


class DnsRecordORM(Base):
    """
    Record store - ground truth for the DNS provider.

    Indexes:
    - Composite index on (username, subdomain) for owner listings
    - Partial unique index: one CNAME per (username, subdomain)
    - Index on expires_at for the expiry sweep
    """

    __tablename__ = "dns_records"

    id = Column(Integer, primary_key=True, autoincrement=True)
    username = Column(
        String(64),
        ForeignKey("users.username", ondelete="CASCADE"),
        nullable=False,
    )

    type = Column(SQLEnum(DnsRecordType, name="dns_record_type"), nullable=False)
    subdomain = Column(String(190), nullable=False)
    value = Column(String(1024), nullable=False)

    # Metadata
    ports = Column(Text, nullable=True)
    course = Column(Text, nullable=True)
    description = Column(Text, nullable=True)

    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow)
    expires_at = Column(DateTime, nullable=False, index=True)

    __table_args__ = (
        Index("ix_dns_records_owner_subdomain", "username", "subdomain"),
        # Check-then-write is racy, so the store itself rejects a second CNAME
        Index(
            CNAME_UNIQUE_INDEX,
            "username",
            "subdomain",
            unique=True,
            postgresql_where=text("type = 'CNAME'"),
            sqlite_where=text("type = 'CNAME'"),
        ),
    )

    def __repr__(self) -> str:
        return (
            f"<DnsRecordORM(id={self.id}, {self.subdomain}.{self.username} "
            f"{self.type.value if self.type else None} {self.value})>"
        )


class CertificateORM(Base):
    """Certificate issuance state."""

    __tablename__ = "certificates"

    id = Column(Integer, primary_key=True, autoincrement=True)
    username = Column(
        String(64),
        ForeignKey("users.username", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    root_domain = Column(String(253), nullable=False)

    status = Column(
        SQLEnum(CertificateStatus, name="certificate_status"),
        nullable=False,
        default=CertificateStatus.ORDERING,
        index=True,
    )

    # ACME order
    order_url = Column(Text, nullable=True)
    private_key_pem = Column(Text, nullable=True)

    # Result
    certificate_pem = Column(Text, nullable=True)
    valid_from = Column(DateTime, nullable=True)
    valid_to = Column(DateTime, nullable=True)
    failure_reason = Column(Text, nullable=True)

    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow)

    # Optimistic concurrency
    version = Column(Integer, nullable=False, default=0)

    challenges = relationship(
        "ChallengeORM",
        back_populates="certificate",
        cascade="all, delete-orphan",
        order_by="ChallengeORM.id",
    )

    def __repr__(self) -> str:
        return f"<CertificateORM(id={self.id}, root_domain={self.root_domain}, status={self.status.value})>"


class ChallengeORM(Base):
    """DNS-01 challenge of a certificate order. Kept for audit."""

    __tablename__ = "challenges"

    id = Column(Integer, primary_key=True, autoincrement=True)
    certificate_id = Column(
        Integer,
        ForeignKey("certificates.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    domain = Column(String(253), nullable=False)
    challenge_key = Column(String(255), nullable=False)
    challenge_url = Column(Text, nullable=False)
    verified = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    certificate = relationship("CertificateORM", back_populates="challenges")


class StageJobORM(Base):
    """
    Stage job queue.

    Indexes:
    - Composite index on (state, run_after) for finding due work
    - Index on lease_expires_at for crash recovery
    """

    __tablename__ = "stage_jobs"

    job_id = Column(Uuid, primary_key=True, default=uuid4)
    stage = Column(String(64), nullable=False, index=True)
    payload = Column(JSON, nullable=False)

    state = Column(
        SQLEnum(JobState, name="job_state"),
        nullable=False,
        default=JobState.QUEUED,
    )

    # Retry
    attempts = Column(Integer, nullable=False, default=0)
    max_attempts = Column(Integer, nullable=False, default=5)
    run_after = Column(DateTime, nullable=False, default=utcnow)
    last_error = Column(Text, nullable=True)

    # Lease management
    lease_owner = Column(String(255), nullable=True)
    lease_expires_at = Column(DateTime, nullable=True, index=True)

    # Lifecycle timestamps
    created_at = Column(DateTime, nullable=False, default=utcnow)
    started_at = Column(DateTime, nullable=True)
    finished_at = Column(DateTime, nullable=True)

    # Optimistic concurrency
    version = Column(Integer, nullable=False, default=0)

    __table_args__ = (
        Index("ix_stage_jobs_due_lookup", "state", "run_after"),
    )

    def __repr__(self) -> str:
        return (
            f"<StageJobORM(job_id={self.job_id}, stage={self.stage}, "
            f"state={self.state.value}, attempts={self.attempts})>"
        )


class ReconciliationStateORM(Base):
    """Single-row reconciliation-needed flag with a generation counter."""

    __tablename__ = "reconciliation_state"

    id = Column(Integer, primary_key=True)
    needed = Column(Boolean, nullable=False, default=False)
    generation = Column(Integer, nullable=False, default=0)
    last_reconciled_at = Column(DateTime, nullable=True)
    updated_at = Column(DateTime, nullable=False, default=utcnow)
