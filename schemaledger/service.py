#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Administrative surface of the migration ledger.

MigrationService wires the engine components together and exposes the
operations deployment tooling and the CLI call: locking, status queries,
single and batch execution, baselines, rollbacks and maintenance.
"""
import logging
import re
from typing import Iterable, List, Optional

from schemaledger.config import LedgerConfig
from schemaledger.database import LedgerDatabase
from schemaledger.exceptions import BaselineConflict
from schemaledger.migrations import (
    BatchResult,
    BatchRunner,
    ChangelogStore,
    ChecksumReport,
    LockHolder,
    LockManager,
    MigrationExecutor,
    MigrationKind,
    MigrationResult,
    MigrationValidator,
    RollbackCandidate,
    RollbackManager,
    SchemaExecutor,
)
from schemaledger.models import ChangelogEntry, RollbackHistoryEntry

BASELINE_MARKER = 'BASELINE'


def default_filename(version: str, description: str) -> str:
    """
    Filename used when a single versioned migration is run without one.

    Example:
        >>> default_filename('004', 'Add  audit Log')
        'V004__add_audit_log.sql'
    """
    slug = re.sub(r'\s+', '_', description.strip().lower())
    return f"V{version}__{slug}.sql"


def format_duration(execution_time_ms: Optional[int]) -> str:
    return f"{execution_time_ms}ms" if execution_time_ms is not None else '-'


class MigrationService:
    """
    Facade over the migration engine.

    Attributes:
        database: LedgerDatabase used for the ledger and target schema
        config: LedgerConfig (principal, lock settings)
        changelog: ChangelogStore
        lock: LockManager for this service instance (one lock session)
        executor: MigrationExecutor
        runner: BatchRunner
        rollbacks: RollbackManager
        validator: MigrationValidator

    Example:
        service = MigrationService.from_config(load_config('ledger.yaml'))
        await service.install()
        await service.run_all(versioned=units)
        print(await service.current_version())
        await service.close()
    """

    def __init__(self, database: LedgerDatabase, config: Optional[LedgerConfig] = None,
                 schema_executor: Optional[SchemaExecutor] = None):
        self.database = database
        self.config = config or LedgerConfig(database_url=database.database_url)
        self.logger = logging.getLogger(__name__)

        principal = self.config.principal
        self.changelog = ChangelogStore(database)
        self.lock = LockManager(database, self.config.lock, principal=principal)
        self.executor = MigrationExecutor(
            database, self.changelog, schema_executor=schema_executor, principal=principal
        )
        self.runner = BatchRunner(self.executor, self.lock)
        self.rollbacks = RollbackManager(
            database, self.changelog, schema_executor=schema_executor, principal=principal
        )
        self.validator = MigrationValidator(self.changelog)

    @classmethod
    def from_config(cls, config: LedgerConfig,
                    schema_executor: Optional[SchemaExecutor] = None) -> 'MigrationService':
        return cls(LedgerDatabase(config.database_url), config, schema_executor=schema_executor)

    # ========================================================================
    # Lifecycle
    # ========================================================================

    async def install(self) -> None:
        await self.database.install()

    async def uninstall(self, confirm: bool = False) -> None:
        await self.database.uninstall(confirm=confirm)

    async def close(self) -> None:
        await self.database.close()

    # ========================================================================
    # Locking
    # ========================================================================

    async def acquire_lock(self) -> bool:
        return await self.lock.try_acquire()

    async def acquire_lock_wait(self, timeout_seconds: Optional[float] = None) -> bool:
        return await self.lock.acquire_wait(timeout_seconds)

    async def release_lock(self) -> bool:
        return await self.lock.release()

    async def is_locked(self) -> bool:
        return await self.lock.is_locked()

    async def lock_holder(self) -> Optional[LockHolder]:
        return await self.lock.holder_info()

    async def force_release_lock(self) -> bool:
        return await self.lock.force_release()

    # ========================================================================
    # Queries
    # ========================================================================

    async def current_version(self) -> str:
        return await self.changelog.current_version()

    async def is_version_applied(self, version: str) -> bool:
        return await self.changelog.is_version_applied(version)

    async def history(self, limit: int = 50, include_failed: bool = False) -> List[ChangelogEntry]:
        return await self.changelog.history(limit=limit, include_failed=include_failed)

    async def pending(self, candidate_versions: Iterable[str]) -> List[str]:
        return await self.changelog.pending(candidate_versions)

    async def status(self) -> List[dict]:
        """
        Every changelog row formatted for display, newest first.

        Returns:
            List of dicts with version, description, kind, state
            ('SUCCESS' or 'FAILED'), executed_at, duration_display and
            checksum_prefix
        """
        return [
            {
                'version': entry.version,
                'description': entry.description,
                'kind': entry.kind,
                'state': 'SUCCESS' if entry.success else 'FAILED',
                'executed_at': entry.executed_at,
                'duration_display': format_duration(entry.execution_time_ms),
                'checksum_prefix': f"{entry.checksum[:8]}...",
            }
            for entry in await self.changelog.all_entries()
        ]

    async def info(self) -> dict:
        """Summary of the migration system state."""
        summary = await self.changelog.summary()
        summary['is_locked'] = await self.lock.is_locked()
        return summary

    async def validate_checksums(self, units: Iterable) -> List[ChecksumReport]:
        return await self.validator.validate_checksums(units)

    # ========================================================================
    # Execution
    # ========================================================================

    async def execute(self, version: str, description: str, kind, filename: str,
                      content: str, validate_checksum: bool = True) -> MigrationResult:
        return await self.executor.execute(
            version=version,
            description=description,
            kind=kind,
            filename=filename,
            content=content,
            validate_checksum=validate_checksum,
        )

    async def run_versioned(self, version: str, description: str, content: str,
                            filename: Optional[str] = None,
                            rollback_script: Optional[str] = None) -> MigrationResult:
        """
        Apply a single versioned migration, optionally registering its rollback.

        The rollback script is registered only after the migration succeeds
        or is skipped.
        """
        result = await self.executor.execute(
            version=version,
            description=description,
            kind=MigrationKind.VERSIONED,
            filename=filename or default_filename(version, description),
            content=content,
        )
        if rollback_script is not None:
            await self.rollbacks.register(version, rollback_script)
        return result

    async def run_repeatable(self, filename: str, description: str, content: str) -> MigrationResult:
        return await self.executor.execute(
            version=filename,
            description=description,
            kind=MigrationKind.REPEATABLE,
            filename=filename,
            content=content,
        )

    async def run_versioned_batch(self, units: Iterable) -> BatchResult:
        return await self.runner.run_versioned_batch(units)

    async def run_repeatable_batch(self, units: Iterable) -> BatchResult:
        return await self.runner.run_repeatable_batch(units)

    async def run_all(self, versioned: Optional[Iterable] = None,
                      repeatable: Optional[Iterable] = None,
                      acquire_lock: bool = True, release_lock: bool = True,
                      lock_timeout: Optional[float] = None) -> BatchResult:
        return await self.runner.run_all(
            versioned=versioned,
            repeatable=repeatable,
            acquire_lock=acquire_lock,
            release_lock=release_lock,
            lock_timeout=lock_timeout,
        )

    async def set_baseline(self, version: str, description: str = 'Baseline') -> int:
        """
        Mark the existing schema as being at ``version``.

        Returns:
            Id of the baseline changelog row

        Raises:
            BaselineConflict: If any versioned migration has been applied
        """
        async with self.database.get_session() as session:
            if await self.changelog.has_versioned_history(session=session):
                raise BaselineConflict(version)
            entry_id = await self.changelog.record(
                version=version,
                description=description,
                kind=MigrationKind.BASELINE,
                filename=BASELINE_MARKER,
                checksum=BASELINE_MARKER,
                executed_by=self.config.principal,
                session=session,
            )
        self.logger.info('Baseline set to version %s', version)
        return entry_id

    # ========================================================================
    # Rollback
    # ========================================================================

    async def register_rollback(self, version: str, script: str) -> None:
        await self.rollbacks.register(version, script)

    async def rollback(self, version: str) -> RollbackHistoryEntry:
        return await self.rollbacks.rollback(version)

    async def rollback_to(self, target_version: str) -> int:
        return await self.rollbacks.rollback_to(target_version)

    async def list_rollback_candidates(self) -> List[RollbackCandidate]:
        return await self.rollbacks.list_candidates()

    async def rollback_history(self, version: Optional[str] = None) -> List[RollbackHistoryEntry]:
        return await self.rollbacks.history(version)

    # ========================================================================
    # Maintenance
    # ========================================================================

    async def clear_failed(self) -> int:
        return await self.changelog.clear_failed()
