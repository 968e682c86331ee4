"""Alembic environment for the dns_engine record store."""

from logging.config import fileConfig

from alembic import context

from dns_engine.infrastructure.sql.config import settings
from dns_engine.infrastructure.sql.database import Base, create_db_engine
from dns_engine.infrastructure.sql import models  # noqa: F401  registers every table

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

# `alembic -x database_url=...` points a single run at another database
database_url = context.get_x_argument(as_dictionary=True).get("database_url", settings.database_url)

target_metadata = Base.metadata


def run_migrations_offline() -> None:
    """Emit the migration SQL without connecting."""
    context.configure(
        url=database_url,
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        compare_type=True,
    )

    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    """Migrate through the same engine setup the services use."""
    engine = create_db_engine(database_url)

    try:
        with engine.connect() as connection:
            context.configure(
                connection=connection,
                target_metadata=target_metadata,
                compare_type=True,
            )

            with context.begin_transaction():
                context.run_migrations()
    finally:
        engine.dispose()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
