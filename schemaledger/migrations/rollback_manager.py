#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Rollback manager: stores reversal scripts and replays them.

A successful rollback executes the registered script, appends a
rollback_history row and flips the original changelog row's success flag
to False, all in one transaction. A failed rollback is rolled back and
its history row is written afterwards in a separate transaction.
"""
import logging
import time
from dataclasses import dataclass
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert

from schemaledger.exceptions import RollbackFailed, RollbackScriptMissing, VersionNotFound
from schemaledger.models import RollbackHistoryEntry, RollbackScript

from .changelog import ChangelogStore, utcnow
from .migration import version_key
from .migration_executor import SchemaExecutor, SqlSchemaExecutor


@dataclass
class RollbackCandidate:
    """A successfully applied versioned migration and its rollback status."""
    version: str
    description: str
    executed_at: object
    has_rollback_script: bool

    def to_dict(self) -> dict:
        return {
            'version': self.version,
            'description': self.description,
            'executed_at': self.executed_at.isoformat() if self.executed_at else None,
            'has_rollback_script': self.has_rollback_script,
        }


class RollbackManager:
    """
    Registers and executes rollback scripts for versioned migrations.

    Example:
        manager = RollbackManager(database, changelog, principal='deploy')
        await manager.register('003', 'DROP TABLE audit_log;')
        await manager.rollback('003')
        reversed_count = await manager.rollback_to('001')
    """

    def __init__(self, database, changelog: ChangelogStore,
                 schema_executor: SchemaExecutor = None, principal: str = 'system'):
        self.database = database
        self.changelog = changelog
        self.schema_executor = schema_executor or SqlSchemaExecutor()
        self.principal = principal
        self.logger = logging.getLogger(__name__)

    async def register(self, version: str, script: str) -> None:
        """
        Register or replace the rollback script for ``version``.

        Independent of whether the forward migration has run.
        """
        now = utcnow()
        values = {
            'version': version,
            'script': script,
            'created_at': now,
            'created_by': self.principal,
        }
        changes = {
            'script': script,
            'created_at': now,
            'created_by': self.principal,
        }

        if self.database.is_postgresql:
            stmt = pg_insert(RollbackScript).values(**values)
        else:
            stmt = sqlite_insert(RollbackScript).values(**values)
        stmt = stmt.on_conflict_do_update(index_elements=['version'], set_=changes)

        async with self.database.get_session() as session:
            await session.execute(stmt)

        self.logger.info('Rollback script registered for version %s', version)

    async def get_script(self, version: str) -> Optional[str]:
        """Registered rollback script for ``version``, or None."""
        async with self.database.get_session() as session:
            return (await session.execute(
                select(RollbackScript.script).where(RollbackScript.version == version)
            )).scalar_one_or_none()

    async def rollback(self, version: str) -> RollbackHistoryEntry:
        """
        Reverse a versioned migration using its registered script.

        Returns:
            The RollbackHistoryEntry recorded for the successful rollback

        Raises:
            VersionNotFound: Version not applied or already rolled back
            RollbackScriptMissing: No script registered for the version
            RollbackFailed: The script raised an error (failure recorded)
        """
        entry = await self.changelog.get_applied_entry(version)
        if entry is None:
            raise VersionNotFound(version)

        script = await self.get_script(version)
        if script is None:
            raise RollbackScriptMissing(version)

        self.logger.info('Rolling back version %s', version)
        start_time = time.perf_counter()

        try:
            async with self.database.get_session() as session:
                await self.schema_executor.execute(session, script)
                execution_time_ms = int((time.perf_counter() - start_time) * 1000)
                history = RollbackHistoryEntry(
                    changelog_id=entry.id,
                    version=version,
                    script=script,
                    executed_at=utcnow(),
                    executed_by=self.principal,
                    execution_time_ms=execution_time_ms,
                    success=True,
                )
                session.add(history)
                await self.changelog.mark_rolled_back(entry.id, session=session)
        except Exception as e:
            error_message = str(e)
            self.logger.error('Rollback of version %s failed: %s', version, error_message)
            await self._record_failure(entry.id, version, script, error_message)
            raise RollbackFailed(version, error_message) from e

        self.logger.info('Rolled back version %s (%d ms)', version, execution_time_ms)
        return history

    async def rollback_to(self, target_version: str) -> int:
        """
        Roll back every applied versioned migration newer than ``target_version``.

        Versions are reversed newest first; ``target_version`` itself stays
        applied. Stops at the first failure.

        Returns:
            Number of versions rolled back
        """
        target_key = version_key(str(target_version))
        newer = [
            e.version for e in await self.changelog.applied_versions()
            if version_key(e.version) > target_key
        ]

        count = 0
        for version in newer:
            await self.rollback(version)
            count += 1

        if count == 0:
            self.logger.info(
                'No migrations to rollback (already at or before version %s)', target_version
            )
        else:
            self.logger.info('Rolled back %d migrations to version %s', count, target_version)
        return count

    async def list_candidates(self) -> List[RollbackCandidate]:
        """Applied versioned migrations, newest version first, with script availability."""
        entries = await self.changelog.applied_versions()
        async with self.database.get_session() as session:
            scripted = set((await session.execute(select(RollbackScript.version))).scalars().all())
        return [
            RollbackCandidate(
                version=e.version,
                description=e.description,
                executed_at=e.executed_at,
                has_rollback_script=e.version in scripted,
            )
            for e in entries
        ]

    async def history(self, version: Optional[str] = None) -> List[RollbackHistoryEntry]:
        """Rollback attempts, newest first, optionally for one version."""
        stmt = select(RollbackHistoryEntry)
        if version is not None:
            stmt = stmt.where(RollbackHistoryEntry.version == version)
        stmt = stmt.order_by(RollbackHistoryEntry.executed_at.desc(), RollbackHistoryEntry.id.desc())
        async with self.database.get_session() as session:
            return list((await session.execute(stmt)).scalars().all())

    async def _record_failure(self, changelog_id, version, script, error_message) -> None:
        try:
            async with self.database.get_session() as session:
                session.add(RollbackHistoryEntry(
                    changelog_id=changelog_id,
                    version=version,
                    script=script,
                    executed_at=utcnow(),
                    executed_by=self.principal,
                    execution_time_ms=None,
                    success=False,
                    error_message=error_message,
                ))
        except Exception as record_error:
            self.logger.error(
                'Failed to record rollback failure for %s: %s', version, record_error
            )
