#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Migration lock backed by a lease row.

The lock serializes migration runs across processes and hosts. It is a
row in schema_migration_lock keyed by the configured lock key. Each
LockManager instance is one "session": it owns a random holder token,
and only that instance can renew or release the lease it holds.

- Re-entrant: the holder may acquire again; each acquire needs a release.
- Exclusive: every state change is a single conditional INSERT/UPDATE,
  so two sessions racing for the same key cannot both win.
- Self-healing: a lease past its expiry can be taken over, so a crashed
  holder blocks others for at most LockConfig.lease_ttl seconds.
"""
import asyncio
import logging
import os
import socket
import time
import uuid
from dataclasses import dataclass
from typing import Optional

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError

from schemaledger.config import LockConfig
from schemaledger.exceptions import LockTimeout
from schemaledger.models import MigrationLock


@dataclass
class LockHolder:
    """
    Who currently holds the migration lock.

    Attributes:
        process_id: OS process id of the holder
        principal: Identity of the holder
        connected_at: When the lease was taken (Unix epoch seconds)
        hostname: Host the holder runs on
        expires_at: When the lease lapses unless renewed
        depth: Re-entrant acquisition count
    """
    process_id: int
    principal: str
    connected_at: float
    hostname: str
    expires_at: float
    depth: int

    def to_dict(self) -> dict:
        return {
            'process_id': self.process_id,
            'principal': self.principal,
            'connected_at': self.connected_at,
            'hostname': self.hostname,
            'expires_at': self.expires_at,
            'depth': self.depth,
        }


class LockManager:
    """
    Named mutual-exclusion lease guarding migration runs.

    Attributes:
        database: LedgerDatabase instance
        config: Immutable lock settings
        principal: Identity recorded on the lease
        holder_id: Token identifying this session

    Example:
        lock = LockManager(database, LockConfig(lock_key=42), principal='deploy')
        if await lock.try_acquire():
            try:
                ...
            finally:
                await lock.release()
    """

    def __init__(self, database, config: Optional[LockConfig] = None, principal: str = 'system'):
        self.database = database
        self.config = config or LockConfig()
        self.principal = principal
        self.holder_id = uuid.uuid4().hex
        self.process_id = os.getpid()
        self.hostname = socket.gethostname()
        self.logger = logging.getLogger(__name__)

    @property
    def lock_key(self) -> int:
        return self.config.lock_key

    async def try_acquire(self) -> bool:
        """
        Acquire the lock without waiting.

        Returns:
            True if this session now holds the lock (including re-entry),
            False if another session holds a live lease
        """
        now = time.time()
        expires_at = now + self.config.lease_ttl

        # Re-entry: bump depth on our own live lease
        async with self.database.get_session() as session:
            result = await session.execute(
                update(MigrationLock)
                .where(
                    MigrationLock.lock_key == self.lock_key,
                    MigrationLock.holder_id == self.holder_id,
                    MigrationLock.expires_at >= now,
                )
                .values(depth=MigrationLock.depth + 1, expires_at=expires_at)
            )
            if result.rowcount:
                self.logger.debug('Migration lock %d re-entered', self.lock_key)
                return True

        # Take over an expired lease
        async with self.database.get_session() as session:
            result = await session.execute(
                update(MigrationLock)
                .where(
                    MigrationLock.lock_key == self.lock_key,
                    MigrationLock.expires_at < now,
                )
                .values(
                    holder_id=self.holder_id,
                    principal=self.principal,
                    process_id=self.process_id,
                    hostname=self.hostname,
                    acquired_at=now,
                    expires_at=expires_at,
                    depth=1,
                )
            )
            if result.rowcount:
                self.logger.warning(
                    'Migration lock %d taken over from an expired lease', self.lock_key
                )
                return True

        # Fresh lease; the primary key rejects a concurrent winner
        try:
            async with self.database.get_session() as session:
                session.add(MigrationLock(
                    lock_key=self.lock_key,
                    holder_id=self.holder_id,
                    principal=self.principal,
                    process_id=self.process_id,
                    hostname=self.hostname,
                    acquired_at=now,
                    expires_at=expires_at,
                    depth=1,
                ))
        except IntegrityError:
            self.logger.info(
                'Migration lock %d not available - another migration is running',
                self.lock_key
            )
            return False

        self.logger.info('Migration lock %d acquired', self.lock_key)
        return True

    async def acquire_wait(self, timeout: Optional[float] = None) -> bool:
        """
        Acquire the lock, polling until it is free or the timeout elapses.

        Args:
            timeout: Seconds to wait (default: LockConfig.default_timeout)

        Returns:
            True once acquired

        Raises:
            LockTimeout: If the lock could not be acquired in time
        """
        if timeout is None:
            timeout = self.config.default_timeout
        deadline = time.monotonic() + timeout

        while True:
            if await self.try_acquire():
                return True
            if time.monotonic() >= deadline:
                self.logger.error(
                    'Timeout acquiring migration lock %d after %gs', self.lock_key, timeout
                )
                raise LockTimeout(timeout, self.lock_key)
            await asyncio.sleep(self.config.poll_interval)

    async def release(self) -> bool:
        """
        Release one level of the lock.

        Returns:
            True if this session held the lock, False otherwise
        """
        async with self.database.get_session() as session:
            lease = (await session.execute(
                select(MigrationLock).where(
                    MigrationLock.lock_key == self.lock_key,
                    MigrationLock.holder_id == self.holder_id,
                )
            )).scalar_one_or_none()

            if lease is None:
                self.logger.info('Migration lock %d was not held', self.lock_key)
                return False

            if lease.depth > 1:
                lease.depth -= 1
                self.logger.debug(
                    'Migration lock %d depth now %d', self.lock_key, lease.depth
                )
                return True

            await session.execute(
                delete(MigrationLock).where(
                    MigrationLock.lock_key == self.lock_key,
                    MigrationLock.holder_id == self.holder_id,
                )
            )

        self.logger.info('Migration lock %d released', self.lock_key)
        return True

    async def renew(self) -> bool:
        """
        Push this session's lease expiry forward.

        Returns:
            True if a live lease was held and renewed, False once it
            has expired or been taken over
        """
        now = time.time()
        async with self.database.get_session() as session:
            result = await session.execute(
                update(MigrationLock)
                .where(
                    MigrationLock.lock_key == self.lock_key,
                    MigrationLock.holder_id == self.holder_id,
                    MigrationLock.expires_at >= now,
                )
                .values(expires_at=now + self.config.lease_ttl)
            )
            return bool(result.rowcount)

    async def is_held(self) -> bool:
        """Whether this session holds a live lease."""
        lease = await self._current_lease()
        return lease is not None and lease.holder_id == self.holder_id

    async def is_locked(self) -> bool:
        """Whether any session holds a live lease."""
        return await self._current_lease() is not None

    async def holder_info(self) -> Optional[LockHolder]:
        """Details of the live lease holder, or None when unlocked."""
        lease = await self._current_lease()
        if lease is None:
            return None
        return LockHolder(
            process_id=lease.process_id,
            principal=lease.principal,
            connected_at=lease.acquired_at,
            hostname=lease.hostname,
            expires_at=lease.expires_at,
            depth=lease.depth,
        )

    async def force_release(self) -> bool:
        """
        Delete the lease regardless of holder.

        For recovering from a crashed holder before its lease expires.

        Returns:
            True if a lease row was removed
        """
        async with self.database.get_session() as session:
            result = await session.execute(
                delete(MigrationLock).where(MigrationLock.lock_key == self.lock_key)
            )
            removed = bool(result.rowcount)
        if removed:
            self.logger.warning('Migration lock %d forcibly released', self.lock_key)
        return removed

    async def _current_lease(self) -> Optional[MigrationLock]:
        async with self.database.get_session() as session:
            return (await session.execute(
                select(MigrationLock).where(
                    MigrationLock.lock_key == self.lock_key,
                    MigrationLock.expires_at >= time.time(),
                )
            )).scalar_one_or_none()
