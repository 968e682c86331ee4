#dns_engine/infrastructure/sql/database.py

"""Engine, declarative base and session factory for the record store."""

from typing import Optional

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker

from dns_engine.infrastructure.sql.config import settings


Base = declarative_base()


# ============================================
# Engine
# ============================================
def enable_sqlite_foreign_keys(engine: Engine) -> Engine:
    """SQLite ignores ON DELETE CASCADE and owner references unless each connection opts in."""

    @event.listens_for(engine, "connect")
    def enable_foreign_keys(dbapi_conn, connection_record):
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    return engine


def create_db_engine(database_url: Optional[str] = None) -> Engine:
    """
    Build the engine for the configured database.

    PostgreSQL gets a bounded pool shared by the API, the stage workers and
    the reconciler of one process. SQLite is only meant for local runs.
    """
    url = database_url or settings.database_url

    if url.startswith("sqlite"):
        engine = create_engine(url, echo=settings.echo_sql, connect_args={"check_same_thread": False})
        return enable_sqlite_foreign_keys(engine)

    return create_engine(
        url,
        echo=settings.echo_sql,
        pool_pre_ping=True,
        pool_size=settings.pool_size,
        max_overflow=settings.max_overflow,
        pool_timeout=settings.pool_timeout,
        pool_recycle=settings.pool_recycle,
        connect_args={"application_name": settings.application_name},
    )


_engine: Optional[Engine] = None


def get_engine() -> Engine:
    global _engine
    if _engine is None:
        _engine = create_db_engine()
    return _engine


# ============================================
# Sessions
# ============================================
def get_session_factory(engine_instance: Optional[Engine] = None) -> sessionmaker:
    """Session factory for the repositories. Tests pass their own engine."""
    return sessionmaker(
        bind=engine_instance or get_engine(),
        autoflush=False,
        expire_on_commit=False,
    )


def init_db(engine_instance: Optional[Engine] = None) -> None:
    """Create every table directly. Deployed databases are migrated with Alembic."""
    from dns_engine.infrastructure.sql import models  # noqa: F401

    Base.metadata.create_all(bind=engine_instance or get_engine())
