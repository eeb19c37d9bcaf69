"""
Changelog store: the durable ledger of migration attempts.

Every query that needs "the most recent" row orders by
(executed_at DESC, id DESC). Ids are monotonic, so the pair is a total
order even when two rows share a timestamp.

Methods take an optional ``session``. When given, the call joins the
caller's unit of work (this is how a migration and its changelog row
commit together); otherwise a short-lived session is opened.
"""

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Iterable, List, Optional

from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from schemaledger.models import ChangelogEntry

from .migration import MigrationKind, version_key

logger = logging.getLogger(__name__)

# Reported by current_version() when nothing has been applied
NO_VERSION = '0'


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _newest_first(stmt):
    return stmt.order_by(ChangelogEntry.executed_at.desc(), ChangelogEntry.id.desc())


class ChangelogStore:
    """
    Reads and writes the schema_changelog table.

    Example:
        >>> store = ChangelogStore(database)
        >>> await store.is_version_applied('001')
        False
        >>> await store.current_version()
        '0'
    """

    def __init__(self, database):
        """
        Args:
            database: LedgerDatabase instance
        """
        self.database = database

    @asynccontextmanager
    async def _session(self, session: Optional[AsyncSession]):
        if session is not None:
            yield session
        else:
            async with self.database.get_session() as own_session:
                yield own_session

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def is_version_applied(self, version: str, session: Optional[AsyncSession] = None) -> bool:
        """Whether a successful versioned row exists for ``version``."""
        stmt = select(func.count()).select_from(ChangelogEntry).where(
            ChangelogEntry.version == version,
            ChangelogEntry.kind == MigrationKind.VERSIONED.value,
            ChangelogEntry.success.is_(True),
        )
        async with self._session(session) as s:
            count = (await s.execute(stmt)).scalar()
        return bool(count)

    async def get_applied_entry(
        self,
        version: str,
        session: Optional[AsyncSession] = None
    ) -> Optional[ChangelogEntry]:
        """Most recent successful versioned row for ``version``, if any."""
        stmt = _newest_first(
            select(ChangelogEntry).where(
                ChangelogEntry.version == version,
                ChangelogEntry.kind == MigrationKind.VERSIONED.value,
                ChangelogEntry.success.is_(True),
            )
        ).limit(1)
        async with self._session(session) as s:
            return (await s.execute(stmt)).scalar_one_or_none()

    async def get_checksum(self, filename: str, session: Optional[AsyncSession] = None) -> Optional[str]:
        """
        Checksum of the latest successful repeatable run of ``filename``.

        Returns:
            Stored checksum, or None if the repeatable never ran
        """
        stmt = _newest_first(
            select(ChangelogEntry.checksum).where(
                ChangelogEntry.filename == filename,
                ChangelogEntry.kind == MigrationKind.REPEATABLE.value,
                ChangelogEntry.success.is_(True),
            )
        ).limit(1)
        async with self._session(session) as s:
            return (await s.execute(stmt)).scalar_one_or_none()

    async def current_version(self, session: Optional[AsyncSession] = None) -> str:
        """
        Version of the most recent successful versioned or baseline row.

        Returns:
            The version, or '0' when nothing has been applied
        """
        stmt = _newest_first(
            select(ChangelogEntry.version).where(
                ChangelogEntry.kind.in_([
                    MigrationKind.VERSIONED.value,
                    MigrationKind.BASELINE.value,
                ]),
                ChangelogEntry.success.is_(True),
            )
        ).limit(1)
        async with self._session(session) as s:
            version = (await s.execute(stmt)).scalar_one_or_none()
        return version if version is not None else NO_VERSION

    async def history(self, limit: int = 50, include_failed: bool = False) -> List[ChangelogEntry]:
        """
        Changelog rows, newest first.

        Args:
            limit: Maximum number of rows
            include_failed: Include rows with success = false
        """
        stmt = select(ChangelogEntry)
        if not include_failed:
            stmt = stmt.where(ChangelogEntry.success.is_(True))
        stmt = _newest_first(stmt).limit(limit)
        async with self._session(None) as s:
            return list((await s.execute(stmt)).scalars().all())

    async def all_entries(self) -> List[ChangelogEntry]:
        """Every changelog row, newest first."""
        async with self._session(None) as s:
            return list((await s.execute(_newest_first(select(ChangelogEntry)))).scalars().all())

    async def applied_versions(self, session: Optional[AsyncSession] = None) -> List[ChangelogEntry]:
        """Successful versioned rows, ordered by version descending."""
        stmt = select(ChangelogEntry).where(
            ChangelogEntry.kind == MigrationKind.VERSIONED.value,
            ChangelogEntry.success.is_(True),
        )
        async with self._session(session) as s:
            entries = list((await s.execute(stmt)).scalars().all())
        return sorted(entries, key=lambda e: version_key(e.version), reverse=True)

    async def pending(self, candidate_versions: Iterable[str]) -> List[str]:
        """
        Candidate versions that have not been applied, in ascending order.

        Args:
            candidate_versions: Versions known to the caller (e.g. on disk)
        """
        candidates = {str(v) for v in candidate_versions}
        if not candidates:
            return []
        stmt = select(ChangelogEntry.version).where(
            ChangelogEntry.version.in_(candidates),
            ChangelogEntry.kind == MigrationKind.VERSIONED.value,
            ChangelogEntry.success.is_(True),
        )
        async with self._session(None) as s:
            applied = set((await s.execute(stmt)).scalars().all())
        return sorted(candidates - applied, key=version_key)

    async def has_versioned_history(self, session: Optional[AsyncSession] = None) -> bool:
        """Whether any successful versioned row exists."""
        stmt = select(func.count()).select_from(ChangelogEntry).where(
            ChangelogEntry.kind == MigrationKind.VERSIONED.value,
            ChangelogEntry.success.is_(True),
        )
        async with self._session(session) as s:
            return bool((await s.execute(stmt)).scalar())

    async def summary(self) -> dict:
        """Counts and latest successful row, for info()."""
        async with self._session(None) as s:
            total = (await s.execute(select(func.count()).select_from(ChangelogEntry))).scalar()
            successful = (await s.execute(
                select(func.count()).select_from(ChangelogEntry)
                .where(ChangelogEntry.success.is_(True))
            )).scalar()
            latest = (await s.execute(
                _newest_first(select(ChangelogEntry).where(ChangelogEntry.success.is_(True))).limit(1)
            )).scalar_one_or_none()
            current = await self.current_version(session=s)
        return {
            'current_version': current,
            'total_migrations': total,
            'successful_migrations': successful,
            'failed_migrations': total - successful,
            'last_migration_at': latest.executed_at if latest else None,
            'last_migration_version': latest.version if latest else None,
        }

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def record(
        self,
        version: str,
        description: str,
        kind: MigrationKind,
        filename: str,
        checksum: str,
        executed_by: str,
        execution_time_ms: Optional[int] = None,
        success: bool = True,
        session: Optional[AsyncSession] = None
    ) -> int:
        """
        Insert a changelog row.

        Does not commit when ``session`` is given (caller owns the
        transaction).

        Returns:
            Id of the new row
        """
        entry = ChangelogEntry(
            version=version,
            description=description,
            kind=MigrationKind(kind).value,
            filename=filename,
            checksum=checksum,
            execution_time_ms=execution_time_ms,
            executed_at=utcnow(),
            executed_by=executed_by,
            success=success,
        )
        async with self._session(session) as s:
            s.add(entry)
            await s.flush()
            entry_id = entry.id
        logger.debug('Recorded changelog #%d: %s %s success=%s', entry_id, kind, version, success)
        return entry_id

    async def mark_rolled_back(self, entry_id: int, session: Optional[AsyncSession] = None) -> None:
        """Flip a changelog row's success flag to False after a rollback."""
        async with self._session(session) as s:
            await s.execute(
                update(ChangelogEntry)
                .where(ChangelogEntry.id == entry_id)
                .values(success=False)
            )

    async def clear_failed(self) -> int:
        """
        Delete every row with success = false.

        Returns:
            Number of rows removed
        """
        async with self._session(None) as s:
            result = await s.execute(
                delete(ChangelogEntry).where(ChangelogEntry.success.is_(False))
            )
            count = result.rowcount or 0
        logger.warning('Cleared %d failed migration records', count)
        return count
