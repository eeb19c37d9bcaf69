#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Tests for the ledger ORM models and their constraints.
"""
from datetime import datetime, timezone

import pytest
from sqlalchemy.exc import IntegrityError

from schemaledger.models import (
    ChangelogEntry,
    MigrationLock,
    RollbackHistoryEntry,
    RollbackScript,
    get_all_models,
)


def make_entry(**overrides):
    values = {
        'version': '001',
        'description': 'init',
        'kind': 'versioned',
        'filename': 'V001.sql',
        'checksum': 'a' * 64,
        'execution_time_ms': 4,
        'executed_at': datetime.now(timezone.utc),
        'executed_by': 'tester',
        'success': True,
    }
    values.update(overrides)
    return ChangelogEntry(**values)


class TestModelRegistry:

    def test_get_all_models(self):
        assert get_all_models() == [
            ChangelogEntry, RollbackScript, RollbackHistoryEntry, MigrationLock,
        ]

    def test_table_names(self):
        assert [m.__tablename__ for m in get_all_models()] == [
            'schema_changelog',
            'schema_rollback_scripts',
            'schema_rollback_history',
            'schema_migration_lock',
        ]


@pytest.mark.asyncio
class TestChangelogEntry:

    async def test_to_dict_and_repr(self, database):
        async with database.get_session() as session:
            entry = make_entry()
            session.add(entry)
            await session.flush()

        data = entry.to_dict()
        assert data['version'] == '001'
        assert data['kind'] == 'versioned'
        assert data['success'] is True
        assert data['executed_at'] is not None
        assert repr(entry) == f"<ChangelogEntry(#{entry.id} versioned 001, success)>"

    async def test_unknown_kind_rejected(self, database):
        with pytest.raises(IntegrityError):
            async with database.get_session() as session:
                session.add(make_entry(kind='sideways'))

    async def test_partial_unique_index(self, database):
        async with database.get_session() as session:
            session.add(make_entry())
            session.add(make_entry(success=False))
            session.add(make_entry(kind='repeatable', version='001', filename='R__001.sql'))

        with pytest.raises(IntegrityError):
            async with database.get_session() as session:
                session.add(make_entry())


@pytest.mark.asyncio
class TestMigrationLock:

    async def test_depth_must_be_positive(self, database):
        with pytest.raises(IntegrityError):
            async with database.get_session() as session:
                session.add(MigrationLock(
                    lock_key=1, holder_id='h', principal='p', process_id=1,
                    hostname='host', acquired_at=0.0, expires_at=1.0, depth=0,
                ))
