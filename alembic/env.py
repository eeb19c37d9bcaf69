"""
Alembic Migration Environment for the Schema Ledger
====================================================

Creates and evolves the ledger tables (schema_changelog, rollback scripts,
rollback history, migration lock) for deployments that manage their schema
with Alembic instead of LedgerDatabase.install().

The database URL is resolved by schemaledger.config.load_config():
SCHEMALEDGER_DATABASE_URL, then the file named by SCHEMALEDGER_CONFIG,
then the built-in SQLite default.

Usage:
    alembic upgrade head
    alembic downgrade base
"""

import asyncio
import os
from logging.config import fileConfig

from sqlalchemy import pool
from sqlalchemy.engine import Connection
from sqlalchemy.ext.asyncio import async_engine_from_config

from alembic import context

from schemaledger.config import load_config
from schemaledger.models import Base

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

target_metadata = Base.metadata

database_url = load_config(os.environ.get('SCHEMALEDGER_CONFIG')).database_url
config.set_main_option('sqlalchemy.url', database_url)


def run_migrations_offline() -> None:
    """Emit SQL to the script output without connecting."""
    context.configure(
        url=config.get_main_option("sqlalchemy.url"),
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        compare_type=True,
    )

    with context.begin_transaction():
        context.run_migrations()


def do_run_migrations(connection: Connection) -> None:
    context.configure(
        connection=connection,
        target_metadata=target_metadata,
        compare_type=True,
        render_as_batch=True,  # SQLite ALTER TABLE
    )

    with context.begin_transaction():
        context.run_migrations()


async def run_async_migrations() -> None:
    configuration = config.get_section(config.config_ini_section, {})
    configuration["sqlalchemy.url"] = database_url

    connectable = async_engine_from_config(
        configuration,
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
    )

    async with connectable.connect() as connection:
        await connection.run_sync(do_run_migrations)

    await connectable.dispose()


def run_migrations_online() -> None:
    asyncio.run(run_async_migrations())


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
