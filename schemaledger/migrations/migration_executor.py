#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Migration executor with transaction management and tracking.

Applies one migration unit, deciding between skip, apply and fail:

- versioned, already applied: checksum compared (unless disabled), then
  skipped; a mismatch raises ChecksumMismatch
- repeatable, checksum unchanged: skipped
- otherwise: content executed and a changelog row inserted in the same
  transaction

Failure records are written in a second, independent transaction after
the failed unit has been rolled back, so they survive the failure.
"""
import logging
import re
import time
from typing import List

from sqlalchemy.ext.asyncio import AsyncSession

from schemaledger.exceptions import ChecksumMismatch, MigrationFailed

from .changelog import ChangelogStore
from .checksum import compute_checksum
from .migration import MigrationKind, MigrationResult, MigrationState

_DOLLAR_TAG = re.compile(r'\$([A-Za-z_][A-Za-z0-9_]*)?\$')


def split_sql_statements(sql: str) -> List[str]:
    """Split SQL string into individual statements.

    Handles semicolon-separated statements while preserving string
    literals, quoted identifiers and dollar-quoted bodies. Comments
    outside literals are dropped. Required because the async drivers
    execute one statement per call.

    Args:
        sql: SQL string with one or more statements

    Returns:
        List of individual SQL statements (without trailing semicolons)
    """
    statements = []
    current = []
    quote = None
    i = 0
    length = len(sql)

    while i < length:
        char = sql[i]

        if quote is not None:
            if sql.startswith(quote, i):
                current.append(quote)
                i += len(quote)
                quote = None
            else:
                current.append(char)
                i += 1
            continue

        if sql.startswith('--', i):
            end = sql.find('\n', i)
            i = length if end == -1 else end
            continue

        if sql.startswith('/*', i):
            end = sql.find('*/', i + 2)
            i = length if end == -1 else end + 2
            current.append(' ')
            continue

        if char in ('"', "'"):
            quote = char
            current.append(char)
            i += 1
            continue

        if char == '$':
            match = _DOLLAR_TAG.match(sql, i)
            if match:
                quote = match.group(0)
                current.append(quote)
                i = match.end()
                continue

        if char == ';':
            stmt = ''.join(current).strip()
            if stmt:
                statements.append(stmt)
            current = []
            i += 1
            continue

        current.append(char)
        i += 1

    stmt = ''.join(current).strip()
    if stmt:
        statements.append(stmt)

    return statements


class SchemaExecutor:
    """
    Runs migration content against the target database.

    The engine never interprets migration content; it hands it to a
    SchemaExecutor together with the session whose transaction must
    contain the change.
    """

    async def execute(self, session: AsyncSession, content: str) -> None:
        raise NotImplementedError


class SqlSchemaExecutor(SchemaExecutor):
    """
    Executes SQL text through the session's connection.

    Args:
        split_statements: Split content on top-level semicolons and run the
            statements one at a time (needed for SQLite and asyncpg)
    """

    def __init__(self, split_statements: bool = True):
        self.split_statements = split_statements

    async def execute(self, session: AsyncSession, content: str) -> None:
        connection = await session.connection()
        statements = split_sql_statements(content) if self.split_statements else [content]
        for stmt in statements:
            await connection.exec_driver_sql(stmt)


class MigrationExecutor:
    """
    Applies single migration units and records them in the changelog.

    Attributes:
        database: LedgerDatabase instance
        changelog: ChangelogStore used for lookups and records
        schema_executor: Capability that runs the content
        principal: Identity recorded as executed_by

    Example:
        executor = MigrationExecutor(database, changelog, principal='deploy')
        result = await executor.execute(
            version='001',
            description='Create users',
            kind=MigrationKind.VERSIONED,
            filename='V001__create_users.sql',
            content='CREATE TABLE users (id INTEGER PRIMARY KEY);'
        )
    """

    def __init__(self, database, changelog: ChangelogStore,
                 schema_executor: SchemaExecutor = None, principal: str = 'system'):
        self.database = database
        self.changelog = changelog
        self.schema_executor = schema_executor or SqlSchemaExecutor()
        self.principal = principal
        self.logger = logging.getLogger(__name__)

    async def execute(
        self,
        version: str,
        description: str,
        kind,
        filename: str,
        content: str,
        validate_checksum: bool = True
    ) -> MigrationResult:
        """
        Apply one migration unit.

        Args:
            version: Version (filename for repeatables)
            description: Human readable description
            kind: MigrationKind.VERSIONED or MigrationKind.REPEATABLE
            filename: Source filename
            content: Migration content handed to the schema executor
            validate_checksum: Compare checksums of already-applied
                versioned units

        Returns:
            MigrationResult with state SKIPPED or APPLIED

        Raises:
            ChecksumMismatch: Applied versioned unit whose content changed
            MigrationFailed: Content raised an error (failure recorded)
            ValueError: Baseline kind (use set_baseline)
        """
        kind = MigrationKind(kind)
        if kind == MigrationKind.BASELINE:
            raise ValueError('Baseline entries are created with set_baseline(), not execute()')

        checksum = compute_checksum(content)

        if kind == MigrationKind.VERSIONED:
            applied = await self.changelog.get_applied_entry(version)
            if applied is not None:
                if applied.checksum != checksum:
                    if validate_checksum:
                        self.logger.error(
                            'Checksum mismatch for version %s: stored=%s, current=%s',
                            version, applied.checksum, checksum
                        )
                        raise ChecksumMismatch(version, applied.checksum, checksum)
                    self.logger.warning(
                        'Migration %s changed since it was applied (validation disabled)',
                        version
                    )
                self.logger.info('Migration %s already applied, skipping', version)
                return MigrationResult(
                    version=version,
                    kind=kind,
                    state=MigrationState.SKIPPED,
                    checksum=checksum,
                )
        else:
            stored = await self.changelog.get_checksum(filename)
            if stored is not None and stored == checksum:
                self.logger.info('Repeatable migration %s unchanged, skipping', filename)
                return MigrationResult(
                    version=version,
                    kind=kind,
                    state=MigrationState.SKIPPED,
                    checksum=checksum,
                )

        return await self._apply(version, description, kind, filename, content, checksum)

    async def _apply(self, version, description, kind, filename, content, checksum) -> MigrationResult:
        self.logger.info('Executing %s migration: %s - %s', kind.value, version, description)
        start_time = time.perf_counter()

        try:
            async with self.database.get_session() as session:
                await self.schema_executor.execute(session, content)
                execution_time_ms = int((time.perf_counter() - start_time) * 1000)
                changelog_id = await self.changelog.record(
                    version=version,
                    description=description,
                    kind=kind,
                    filename=filename,
                    checksum=checksum,
                    executed_by=self.principal,
                    execution_time_ms=execution_time_ms,
                    success=True,
                    session=session,
                )
        except Exception as e:
            error_message = str(e)
            self.logger.error(
                'Migration %s failed: %s', version, error_message
            )
            await self._record_failure(version, description, kind, filename, checksum)
            raise MigrationFailed(version, kind.value, error_message) from e

        self.logger.info(
            'Applied %s migration: %s (%d ms)', kind.value, version, execution_time_ms
        )
        return MigrationResult(
            version=version,
            kind=kind,
            state=MigrationState.APPLIED,
            checksum=checksum,
            execution_time_ms=execution_time_ms,
            changelog_id=changelog_id,
        )

    async def _record_failure(self, version, description, kind, filename, checksum) -> None:
        """Write the success=false row in its own transaction."""
        try:
            await self.changelog.record(
                version=version,
                description=description,
                kind=kind,
                filename=filename,
                checksum=checksum,
                executed_by=self.principal,
                execution_time_ms=None,
                success=False,
            )
        except Exception as record_error:
            self.logger.error(
                'Failed to record migration failure for %s: %s', version, record_error
            )
