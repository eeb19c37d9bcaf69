"""
Batch runner: ordered application of many migration units.

Ordering guarantees:
- versioned units run in ascending version order (natural sort), whatever
  the input order
- repeatable units run in ascending filename order
- run_all() finishes the versioned batch before any repeatable unit starts

Both batch methods require the caller's LockManager to hold the lock.
"""

import logging
from typing import Iterable, Optional

from schemaledger.exceptions import LockNotHeld, LockTimeout

from .lock_manager import LockManager
from .migration import (
    BatchResult,
    MigrationKind,
    MigrationResult,
    MigrationState,
    RepeatableMigration,
    VersionedMigration,
    version_key,
)
from .migration_executor import MigrationExecutor

logger = logging.getLogger(__name__)


def _as_versioned(unit) -> VersionedMigration:
    if isinstance(unit, VersionedMigration):
        return unit
    return VersionedMigration.from_dict(unit)


def _as_repeatable(unit) -> RepeatableMigration:
    if isinstance(unit, RepeatableMigration):
        return unit
    return RepeatableMigration.from_dict(unit)


class BatchRunner:
    """
    Applies collections of migration units under the migration lock.

    Units may be VersionedMigration / RepeatableMigration objects or dicts
    in the batch input shape.

    Example:
        runner = BatchRunner(executor, lock_manager)
        result = await runner.run_all(
            versioned=[{'version': '001', 'description': 'init',
                        'filename': 'V001__init.sql', 'content': '...'}],
            repeatable=[{'filename': 'R__views.sql', 'description': 'views',
                         'content': '...'}],
        )
    """

    def __init__(self, executor: MigrationExecutor, lock_manager: LockManager):
        self.executor = executor
        self.lock_manager = lock_manager
        self.changelog = executor.changelog

    async def _require_lock(self) -> None:
        if not await self.lock_manager.renew():
            raise LockNotHeld()

    async def run_versioned_batch(self, units: Iterable) -> BatchResult:
        """
        Apply versioned units in ascending version order.

        Already-applied versions are skipped without checksum validation.

        Raises:
            LockNotHeld: If this session does not hold the lock
            MigrationFailed: On the first failing unit (later units not run)
        """
        await self._require_lock()
        ordered = sorted((_as_versioned(u) for u in units), key=lambda u: version_key(u.version))
        logger.info('Processing %d versioned migrations...', len(ordered))

        batch = BatchResult()
        for unit in ordered:
            if await self.changelog.is_version_applied(unit.version):
                batch.results.append(MigrationResult(
                    version=unit.version,
                    kind=MigrationKind.VERSIONED,
                    state=MigrationState.SKIPPED,
                    checksum=unit.checksum,
                ))
                continue
            await self._require_lock()
            batch.results.append(await self.executor.execute(
                version=unit.version,
                description=unit.description,
                kind=MigrationKind.VERSIONED,
                filename=unit.filename,
                content=unit.content,
            ))

        logger.info(
            'Batch complete: %d applied, %d skipped',
            len(batch.applied), len(batch.skipped)
        )
        return batch

    async def run_repeatable_batch(self, units: Iterable) -> BatchResult:
        """
        Apply repeatable units in ascending filename order.

        The executor skips units whose checksum is unchanged.

        Raises:
            LockNotHeld: If this session does not hold the lock
            MigrationFailed: On the first failing unit
        """
        await self._require_lock()
        ordered = sorted((_as_repeatable(u) for u in units), key=lambda u: u.filename)
        logger.info('Processing %d repeatable migrations...', len(ordered))

        batch = BatchResult()
        for unit in ordered:
            await self._require_lock()
            batch.results.append(await self.executor.execute(
                version=unit.filename,
                description=unit.description,
                kind=MigrationKind.REPEATABLE,
                filename=unit.filename,
                content=unit.content,
            ))

        logger.info(
            'Batch complete: %d applied, %d skipped (unchanged)',
            len(batch.applied), len(batch.skipped)
        )
        return batch

    async def run_all(
        self,
        versioned: Optional[Iterable] = None,
        repeatable: Optional[Iterable] = None,
        acquire_lock: bool = True,
        release_lock: bool = True,
        lock_timeout: Optional[float] = None
    ) -> BatchResult:
        """
        Run versioned then repeatable units.

        Args:
            versioned: Versioned units
            repeatable: Repeatable units
            acquire_lock: Acquire the lock before running
            release_lock: Release the lock afterwards (if acquired here)
            lock_timeout: Wait up to this many seconds for the lock;
                None means a single non-blocking attempt

        Raises:
            LockTimeout: If the lock could not be acquired
            LockNotHeld: If acquire_lock is False and the lock is not held
            MigrationFailed: On the first failing unit; the lock acquired
                here is released before the error propagates
        """
        versioned = list(versioned or [])
        repeatable = list(repeatable or [])

        lock_acquired = False
        if acquire_lock:
            if lock_timeout is None:
                lock_acquired = await self.lock_manager.try_acquire()
                if not lock_acquired:
                    raise LockTimeout(0, self.lock_manager.lock_key)
            else:
                lock_acquired = await self.lock_manager.acquire_wait(lock_timeout)

        batch = BatchResult()
        try:
            if versioned:
                batch.extend(await self.run_versioned_batch(versioned))
            if repeatable:
                batch.extend(await self.run_repeatable_batch(repeatable))
        except BaseException:
            if lock_acquired:
                try:
                    await self.lock_manager.release()
                except Exception as release_error:
                    logger.error('Failed to release migration lock: %s', release_error)
            raise

        if release_lock and lock_acquired:
            await self.lock_manager.release()

        return batch
