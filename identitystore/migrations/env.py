"""Alembic environment for identitystore.

`MigrationRunner` passes an open connection through
`config.attributes["connection"]`; the `alembic` command line connects using
DATABASE_URL instead.
"""

from logging.config import fileConfig

from alembic import context
from sqlalchemy import engine_from_config, pool

from identitystore.database.database import Base, DATABASE_URL
from identitystore.database import models  # noqa: F401  (registers UserDB on Base.metadata)

config = context.config
target_metadata = Base.metadata


def run_migrations_online() -> None:
    connection = config.attributes.get("connection", None)
    if connection is not None:
        context.configure(connection=connection, target_metadata=target_metadata)
        with context.begin_transaction():
            context.run_migrations()
        return

    # Standalone `alembic` invocation.
    if config.config_file_name is not None:
        fileConfig(config.config_file_name, disable_existing_loggers=False)
    section = config.get_section(config.config_ini_section, {})
    section["sqlalchemy.url"] = DATABASE_URL
    connectable = engine_from_config(section, prefix="sqlalchemy.", poolclass=pool.NullPool)
    with connectable.connect() as connection:
        context.configure(connection=connection, target_metadata=target_metadata)
        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    # Schema steps probe the live database before each change.
    raise RuntimeError(
        "Offline (--sql) migrations are not supported; use `identitystore-migrate sql up|down`."
    )

run_migrations_online()
