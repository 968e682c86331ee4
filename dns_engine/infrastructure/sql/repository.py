#dns_engine/infrastructure/sql/repository.py

"""SQLAlchemy implementations of the record, user, certificate and flag stores."""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import and_, not_, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from dns_engine.core.errors import (
    CertificateNotFound,
    DnsEngineError,
    DuplicateRecordError,
    JobConcurrencyError,
    PersistenceError,
    RecordNotFound,
    UserNotFound,
)
from dns_engine.core.models import (
    ACME_CHALLENGE_SUBDOMAIN,
    Certificate,
    Challenge,
    DnsRecord,
    DnsRecordType,
    RecordTuple,
    TERMINAL_CERTIFICATE_STATES,
    User,
    utcnow,
)
from dns_engine.core.repository import (
    CertificateRepository,
    ChallengeRepository,
    DnsRecordRepository,
    ReconciliationStateRepository,
    UserRepository,
)
from dns_engine.infrastructure.sql.database import get_session_factory
from dns_engine.infrastructure.sql.models import (
    CNAME_UNIQUE_INDEX,
    CertificateORM,
    ChallengeORM,
    DnsRecordORM,
    ReconciliationStateORM,
    UserORM,
)

logger = logging.getLogger(__name__)

# Only the single row with this key is ever used
FLAG_ROW_ID = 1

_RECORD_FIELDS = {"type", "subdomain", "value", "ports", "course", "description", "updated_at", "expires_at"}


def record_write_error(error: IntegrityError, owner: str, subdomain: str) -> DnsEngineError:
    """Map a rejected record write to the constraint that rejected it."""
    message = str(error.orig)
    lowered = message.lower()

    if "foreign key" in lowered:
        return UserNotFound(f"User {owner} not found")
    # PostgreSQL names the index, SQLite lists its columns
    if CNAME_UNIQUE_INDEX in message or "unique constraint failed: dns_records.username, dns_records.subdomain" in lowered:
        return DuplicateRecordError(f"A CNAME record already exists for {subdomain}.{owner}")
    return PersistenceError(f"Record write rejected: {message}")


# ============================================
# Mapping Functions
# ============================================

def record_to_domain(orm: DnsRecordORM) -> DnsRecord:
    """Convert ORM model to domain model."""
    return DnsRecord(
        id=orm.id,
        username=orm.username,
        type=orm.type,
        subdomain=orm.subdomain,
        value=orm.value,
        ports=orm.ports,
        course=orm.course,
        description=orm.description,
        created_at=orm.created_at,
        updated_at=orm.updated_at,
        expires_at=orm.expires_at,
    )


def record_to_orm(record: DnsRecord) -> DnsRecordORM:
    """Convert domain model to ORM model."""
    return DnsRecordORM(
        id=record.id,
        username=record.username,
        type=record.type,
        subdomain=record.subdomain,
        value=record.value,
        ports=record.ports,
        course=record.course,
        description=record.description,
        created_at=record.created_at,
        updated_at=record.updated_at,
        expires_at=record.expires_at,
    )


def user_to_domain(orm: UserORM) -> User:
    return User(
        username=orm.username,
        email=orm.email,
        first_name=orm.first_name,
        last_name=orm.last_name,
        deactivated_at=orm.deactivated_at,
        created_at=orm.created_at,
    )


def certificate_to_domain(orm: CertificateORM) -> Certificate:
    return Certificate(
        id=orm.id,
        username=orm.username,
        root_domain=orm.root_domain,
        status=orm.status,
        order_url=orm.order_url,
        private_key_pem=orm.private_key_pem,
        certificate_pem=orm.certificate_pem,
        valid_from=orm.valid_from,
        valid_to=orm.valid_to,
        failure_reason=orm.failure_reason,
        created_at=orm.created_at,
        updated_at=orm.updated_at,
        version=orm.version,
    )


def challenge_to_domain(orm: ChallengeORM) -> Challenge:
    return Challenge(
        id=orm.id,
        certificate_id=orm.certificate_id,
        domain=orm.domain,
        challenge_key=orm.challenge_key,
        challenge_url=orm.challenge_url,
        verified=orm.verified,
        created_at=orm.created_at,
    )


def _challenge_filter():
    return and_(
        DnsRecordORM.type == DnsRecordType.TXT,
        DnsRecordORM.subdomain == ACME_CHALLENGE_SUBDOMAIN,
    )


class _SqlRepository:
    """Session handling shared by every SQL repository."""

    def __init__(self, session_factory: Optional[sessionmaker] = None):
        """
        Args:
            session_factory: SQLAlchemy session factory. If None, uses the default production factory.
        """
        self._session_factory = session_factory or get_session_factory()

    def _get_session(self) -> Session:
        return self._session_factory()


# ============================================
# Record Store
# ============================================

class SqlDnsRecordRepository(_SqlRepository, DnsRecordRepository):
    """Record store on SQLAlchemy."""

    def get(self, record_id: int) -> Optional[DnsRecord]:
        session = self._get_session()
        try:
            orm = session.get(DnsRecordORM, record_id)
            return record_to_domain(orm) if orm else None
        finally:
            session.close()

    def list(
        self,
        owner: Optional[str] = None,
        exclude_acme_challenge: bool = True,
    ) -> List[DnsRecord]:
        session = self._get_session()
        try:
            query = session.query(DnsRecordORM)
            if owner is not None:
                query = query.filter(DnsRecordORM.username == owner)
            if exclude_acme_challenge:
                query = query.filter(not_(_challenge_filter()))

            rows = query.order_by(
                DnsRecordORM.subdomain.asc(),
                DnsRecordORM.type.asc(),
                DnsRecordORM.value.asc(),
            ).all()
            return [record_to_domain(orm) for orm in rows]
        finally:
            session.close()

    def count(self, owner: str) -> int:
        session = self._get_session()
        try:
            return session.query(DnsRecordORM).filter(
                DnsRecordORM.username == owner,
                not_(_challenge_filter()),
            ).count()
        finally:
            session.close()

    def cname_exists(self, owner: str, subdomain: str, exclude_id: Optional[int] = None) -> bool:
        session = self._get_session()
        try:
            query = session.query(DnsRecordORM.id).filter(
                DnsRecordORM.username == owner,
                DnsRecordORM.subdomain == subdomain,
                DnsRecordORM.type == DnsRecordType.CNAME,
            )
            if exclude_id is not None:
                query = query.filter(DnsRecordORM.id != exclude_id)
            return query.first() is not None
        finally:
            session.close()

    def create(self, record: DnsRecord) -> DnsRecord:
        session = self._get_session()
        try:
            orm = record_to_orm(record)
            session.add(orm)
            session.commit()
            logger.debug(f"[sql] create record {orm.id} {record.subdomain}.{record.username} {record.type.value}")
            return record_to_domain(orm)
        except IntegrityError as e:
            session.rollback()
            raise record_write_error(e, record.username, record.subdomain) from e
        except SQLAlchemyError as e:
            session.rollback()
            raise PersistenceError(f"Failed to create record: {e}") from e
        finally:
            session.close()

    def update(self, record_id: int, changes: Dict[str, Any]) -> DnsRecord:
        unknown = set(changes) - _RECORD_FIELDS
        if unknown:
            raise ValueError(f"Cannot update record fields: {sorted(unknown)}")

        session = self._get_session()
        owner, subdomain = "", changes.get("subdomain", "")
        try:
            orm = session.query(DnsRecordORM).filter(
                DnsRecordORM.id == record_id
            ).with_for_update().first()
            if orm is None:
                raise RecordNotFound(f"Record {record_id} not found")

            owner = orm.username
            subdomain = changes.get("subdomain", orm.subdomain)
            for name, value in changes.items():
                setattr(orm, name, value)

            session.commit()
            logger.debug(f"[sql] update record {record_id} -> {sorted(changes)}")
            return record_to_domain(orm)
        except RecordNotFound:
            session.rollback()
            raise
        except IntegrityError as e:
            session.rollback()
            raise record_write_error(e, owner, subdomain) from e
        except SQLAlchemyError as e:
            session.rollback()
            raise PersistenceError(f"Failed to update record {record_id}: {e}") from e
        finally:
            session.close()

    def delete(self, record_id: int) -> DnsRecord:
        session = self._get_session()
        try:
            orm = session.get(DnsRecordORM, record_id)
            if orm is None:
                raise RecordNotFound(f"Record {record_id} not found")

            record = record_to_domain(orm)
            session.delete(orm)
            session.commit()
            logger.debug(f"[sql] delete record {record_id}")
            return record
        except RecordNotFound:
            session.rollback()
            raise
        except SQLAlchemyError as e:
            session.rollback()
            raise PersistenceError(f"Failed to delete record {record_id}: {e}") from e
        finally:
            session.close()

    def list_expired(self, now: datetime) -> List[DnsRecord]:
        session = self._get_session()
        try:
            rows = session.query(DnsRecordORM).filter(
                DnsRecordORM.expires_at < now
            ).order_by(DnsRecordORM.expires_at.asc()).all()
            return [record_to_domain(orm) for orm in rows]
        finally:
            session.close()

    def find_challenge_records(self, owner: str) -> List[DnsRecord]:
        session = self._get_session()
        try:
            rows = session.query(DnsRecordORM).filter(
                DnsRecordORM.username == owner,
                _challenge_filter(),
            ).order_by(DnsRecordORM.id.asc()).all()
            return [record_to_domain(orm) for orm in rows]
        finally:
            session.close()

    def full_snapshot(self) -> List[RecordTuple]:
        session = self._get_session()
        try:
            rows = session.query(
                DnsRecordORM.username,
                DnsRecordORM.subdomain,
                DnsRecordORM.type,
                DnsRecordORM.value,
            ).all()
            return [RecordTuple(*row) for row in rows]
        finally:
            session.close()


# ============================================
# Users
# ============================================

class SqlUserRepository(_SqlRepository, UserRepository):

    def get(self, username: str) -> Optional[User]:
        session = self._get_session()
        try:
            orm = session.get(UserORM, username)
            return user_to_domain(orm) if orm else None
        finally:
            session.close()

    def create(self, user: User) -> User:
        session = self._get_session()
        try:
            orm = UserORM(
                username=user.username,
                email=user.email,
                first_name=user.first_name,
                last_name=user.last_name,
                deactivated_at=user.deactivated_at,
                created_at=user.created_at,
            )
            session.add(orm)
            session.commit()
            return user_to_domain(orm)
        except IntegrityError as e:
            session.rollback()
            raise PersistenceError(f"User {user.username} or email {user.email} already exists") from e
        finally:
            session.close()

    def get_by_email(self, email: str) -> Optional[User]:
        session = self._get_session()
        try:
            orm = session.query(UserORM).filter(UserORM.email == email).first()
            return user_to_domain(orm) if orm else None
        finally:
            session.close()

    def set_deactivated(self, username: str, deactivated_at: Optional[datetime]) -> User:
        session = self._get_session()
        try:
            orm = session.get(UserORM, username)
            if orm is None:
                raise UserNotFound(f"User {username} not found")
            orm.deactivated_at = deactivated_at
            session.commit()
            return user_to_domain(orm)
        except UserNotFound:
            session.rollback()
            raise
        except SQLAlchemyError as e:
            session.rollback()
            raise PersistenceError(f"Failed to update user {username}: {e}") from e
        finally:
            session.close()

    def delete_by_email(self, email: str) -> User:
        session = self._get_session()
        try:
            orm = session.query(UserORM).filter(UserORM.email == email).first()
            if orm is None:
                raise UserNotFound(f"No user with email {email}")

            user = user_to_domain(orm)
            # Records go with the account even where the engine ignores ON DELETE
            session.query(DnsRecordORM).filter(
                DnsRecordORM.username == orm.username
            ).delete(synchronize_session=False)
            session.delete(orm)
            session.commit()
            return user
        except UserNotFound:
            session.rollback()
            raise
        except SQLAlchemyError as e:
            session.rollback()
            raise PersistenceError(f"Failed to delete user {email}: {e}") from e
        finally:
            session.close()


# ============================================
# Certificates & Challenges
# ============================================

class SqlCertificateRepository(_SqlRepository, CertificateRepository):

    def create(self, certificate: Certificate) -> Certificate:
        session = self._get_session()
        try:
            orm = CertificateORM(
                username=certificate.username,
                root_domain=certificate.root_domain,
                status=certificate.status,
                order_url=certificate.order_url,
                private_key_pem=certificate.private_key_pem,
                created_at=certificate.created_at,
                updated_at=certificate.updated_at,
                version=certificate.version,
            )
            session.add(orm)
            session.commit()
            logger.debug(f"[sql] create certificate {orm.id} for {certificate.root_domain}")
            return certificate_to_domain(orm)
        except SQLAlchemyError as e:
            session.rollback()
            raise PersistenceError(f"Failed to create certificate: {e}") from e
        finally:
            session.close()

    def get(self, certificate_id: int) -> Optional[Certificate]:
        session = self._get_session()
        try:
            orm = session.get(CertificateORM, certificate_id)
            return certificate_to_domain(orm) if orm else None
        finally:
            session.close()

    def update(self, certificate: Certificate) -> None:
        """Update with optimistic locking: the row must still be at version - 1."""
        session = self._get_session()
        try:
            current = session.query(CertificateORM).filter(
                and_(
                    CertificateORM.id == certificate.id,
                    CertificateORM.version == certificate.version - 1,
                )
            ).with_for_update().first()

            if not current:
                raise JobConcurrencyError(
                    f"Update failed for certificate {certificate.id} - concurrent modification"
                )

            current.status = certificate.status
            current.order_url = certificate.order_url
            current.private_key_pem = certificate.private_key_pem
            current.certificate_pem = certificate.certificate_pem
            current.valid_from = certificate.valid_from
            current.valid_to = certificate.valid_to
            current.failure_reason = certificate.failure_reason
            current.updated_at = certificate.updated_at
            current.version = certificate.version

            session.commit()
            logger.debug(f"[sql] update certificate {certificate.id} -> {certificate.status.value}")
        except JobConcurrencyError:
            session.rollback()
            raise
        except SQLAlchemyError as e:
            session.rollback()
            raise PersistenceError(f"Update failed: {e}") from e
        finally:
            session.close()

    def list_for_user(self, username: str) -> List[Certificate]:
        session = self._get_session()
        try:
            rows = session.query(CertificateORM).filter(
                CertificateORM.username == username
            ).order_by(CertificateORM.created_at.desc(), CertificateORM.id.desc()).all()
            return [certificate_to_domain(orm) for orm in rows]
        finally:
            session.close()

    def find_in_flight(self, username: str) -> Optional[Certificate]:
        session = self._get_session()
        try:
            orm = session.query(CertificateORM).filter(
                CertificateORM.username == username,
                CertificateORM.status.notin_(list(TERMINAL_CERTIFICATE_STATES)),
            ).order_by(CertificateORM.id.desc()).first()
            return certificate_to_domain(orm) if orm else None
        finally:
            session.close()

    def save_order(
        self,
        certificate_id: int,
        order_url: str,
        private_key_pem: str,
        challenges: List[Challenge],
    ) -> List[Challenge]:
        session = self._get_session()
        try:
            orm = session.query(CertificateORM).filter(
                CertificateORM.id == certificate_id
            ).with_for_update().first()
            if orm is None:
                raise CertificateNotFound(f"Certificate {certificate_id} not found")

            # A concurrent run already stored an order; keep the first one
            if orm.order_url:
                existing = [challenge_to_domain(c) for c in orm.challenges]
                session.rollback()
                return existing

            orm.order_url = order_url
            orm.private_key_pem = private_key_pem
            orm.updated_at = utcnow()
            orm.version += 1

            rows = [
                ChallengeORM(
                    certificate_id=certificate_id,
                    domain=c.domain,
                    challenge_key=c.challenge_key,
                    challenge_url=c.challenge_url,
                    verified=c.verified,
                    created_at=c.created_at,
                )
                for c in challenges
            ]
            session.add_all(rows)
            session.commit()
            logger.debug(f"[sql] save_order certificate {certificate_id} -> {len(rows)} challenges")
            return [challenge_to_domain(row) for row in rows]
        except CertificateNotFound:
            session.rollback()
            raise
        except SQLAlchemyError as e:
            session.rollback()
            raise PersistenceError(f"Failed to save order for certificate {certificate_id}: {e}") from e
        finally:
            session.close()


class SqlChallengeRepository(_SqlRepository, ChallengeRepository):

    def list_for_certificate(self, certificate_id: int) -> List[Challenge]:
        session = self._get_session()
        try:
            rows = session.query(ChallengeORM).filter(
                ChallengeORM.certificate_id == certificate_id
            ).order_by(ChallengeORM.id.asc()).all()
            return [challenge_to_domain(orm) for orm in rows]
        finally:
            session.close()

    def mark_verified(self, certificate_id: int) -> int:
        session = self._get_session()
        try:
            result = session.execute(
                update(ChallengeORM)
                .where(ChallengeORM.certificate_id == certificate_id)
                .values(verified=True)
            )
            session.commit()
            return result.rowcount
        except SQLAlchemyError as e:
            session.rollback()
            raise PersistenceError(f"Failed to mark challenges verified: {e}") from e
        finally:
            session.close()


# ============================================
# Reconciliation Flag
# ============================================

class SqlReconciliationStateRepository(_SqlRepository, ReconciliationStateRepository):
    """Single-row flag. Every mark bumps the generation; clears compare on it."""

    def _bump(self, session: Session) -> int:
        result = session.execute(
            update(ReconciliationStateORM)
            .where(ReconciliationStateORM.id == FLAG_ROW_ID)
            .values(
                needed=True,
                generation=ReconciliationStateORM.generation + 1,
                updated_at=utcnow(),
            )
        )
        if result.rowcount == 0:
            session.add(ReconciliationStateORM(id=FLAG_ROW_ID, needed=True, generation=1, updated_at=utcnow()))
            session.flush()
        return session.get(ReconciliationStateORM, FLAG_ROW_ID, populate_existing=True).generation

    def mark_needed(self) -> int:
        session = self._get_session()
        try:
            try:
                generation = self._bump(session)
                session.commit()
            except IntegrityError:
                # Lost the race to insert the first row; it exists now
                session.rollback()
                generation = self._bump(session)
                session.commit()
            return generation
        except SQLAlchemyError as e:
            session.rollback()
            raise PersistenceError(f"Failed to set reconciliation flag: {e}") from e
        finally:
            session.close()

    def read(self) -> Tuple[bool, int, Optional[datetime]]:
        session = self._get_session()
        try:
            orm = session.get(ReconciliationStateORM, FLAG_ROW_ID)
            if orm is None:
                return False, 0, None
            return orm.needed, orm.generation, orm.last_reconciled_at
        finally:
            session.close()

    def clear(self, generation: int, now: datetime) -> bool:
        session = self._get_session()
        try:
            result = session.execute(
                update(ReconciliationStateORM)
                .where(
                    ReconciliationStateORM.id == FLAG_ROW_ID,
                    ReconciliationStateORM.generation == generation,
                )
                .values(needed=False, last_reconciled_at=now, updated_at=now)
            )
            if result.rowcount == 0 and generation == 0:
                # Nothing was ever marked; record the pass anyway
                existing = session.get(ReconciliationStateORM, FLAG_ROW_ID)
                if existing is None:
                    session.add(ReconciliationStateORM(
                        id=FLAG_ROW_ID, needed=False, generation=0, last_reconciled_at=now, updated_at=now
                    ))
                    session.commit()
                    return True
            session.commit()
            return result.rowcount == 1
        except SQLAlchemyError as e:
            session.rollback()
            raise PersistenceError(f"Failed to clear reconciliation flag: {e}") from e
        finally:
            session.close()
