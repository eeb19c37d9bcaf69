#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Integration tests for LedgerDatabase lifecycle and transactions.
"""
import pytest
from sqlalchemy import inspect, text

from schemaledger.database import LedgerDatabase

LEDGER_TABLES = {
    'schema_changelog',
    'schema_rollback_scripts',
    'schema_rollback_history',
    'schema_migration_lock',
}


async def table_names(db):
    async with db.engine.connect() as conn:
        return set(await conn.run_sync(lambda c: inspect(c).get_table_names()))


class TestUrlHandling:

    def test_plain_path_becomes_aiosqlite_url(self, tmp_path):
        db = LedgerDatabase(str(tmp_path / 'ledger.db'))
        assert db.database_url.startswith('sqlite+aiosqlite:///')
        assert db.database_url.endswith('ledger.db')
        assert db.is_sqlite
        assert not db.is_postgresql

    def test_memory(self):
        db = LedgerDatabase(':memory:')
        assert db.database_url == 'sqlite+aiosqlite:///:memory:'


@pytest.mark.asyncio
class TestLifecycle:

    async def test_install_creates_tables(self, tmp_path):
        db = LedgerDatabase(str(tmp_path / 'ledger.db'))
        try:
            await db.install()
            assert LEDGER_TABLES <= await table_names(db)
            await db.install()
        finally:
            await db.close()

    async def test_connect_existing_ledger(self, database, ledger_config):
        assert database.is_connected
        with pytest.raises(RuntimeError):
            await database.connect()

        reopened = LedgerDatabase(ledger_config.database_url)
        try:
            assert not reopened.is_connected
            await reopened.connect()
            assert reopened.is_connected
        finally:
            await reopened.close()
        assert not reopened.is_connected

    async def test_uninstall_requires_confirmation(self, database):
        with pytest.raises(ValueError):
            await database.uninstall()
        assert LEDGER_TABLES <= await table_names(database)

    async def test_uninstall(self, database):
        await database.uninstall(confirm=True)
        assert not (LEDGER_TABLES & await table_names(database))

    async def test_close_is_idempotent(self, database):
        await database.close()
        await database.close()


@pytest.mark.asyncio
class TestTransactions:

    async def test_session_commits(self, database):
        async with database.get_session() as session:
            await session.execute(text('CREATE TABLE kept (id INTEGER)'))
        assert 'kept' in await table_names(database)

    async def test_ddl_rolled_back_with_session(self, database):
        with pytest.raises(RuntimeError):
            async with database.get_session() as session:
                await session.execute(text('CREATE TABLE discarded (id INTEGER)'))
                raise RuntimeError('abort')
        assert 'discarded' not in await table_names(database)
