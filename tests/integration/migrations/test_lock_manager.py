#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Integration tests for the migration lock lease.

Tests cover:
- Mutual exclusion between sessions
- Re-entrant acquisition and release depth
- Waiting with timeout
- Lease expiry takeover, renewal and forced release
"""
import asyncio
import time

import pytest

from schemaledger.config import LockConfig
from schemaledger.exceptions import LockTimeout
from schemaledger.migrations import LockManager


@pytest.fixture
def other_lock(database, lock_config):
    """A second session competing for the same lock key"""
    return LockManager(database, lock_config, principal='someone-else')


@pytest.mark.asyncio
class TestTryAcquire:

    async def test_acquire_free_lock(self, lock_manager):
        assert await lock_manager.try_acquire() is True
        assert await lock_manager.is_held() is True
        assert await lock_manager.is_locked() is True

    async def test_second_session_refused(self, lock_manager, other_lock):
        assert await lock_manager.try_acquire() is True
        assert await other_lock.try_acquire() is False
        assert await other_lock.is_held() is False
        assert await other_lock.is_locked() is True

    async def test_reentrant(self, lock_manager, other_lock):
        assert await lock_manager.try_acquire() is True
        assert await lock_manager.try_acquire() is True
        assert (await lock_manager.holder_info()).depth == 2

        assert await lock_manager.release() is True
        assert await lock_manager.is_held() is True
        assert await other_lock.try_acquire() is False

        assert await lock_manager.release() is True
        assert await lock_manager.is_locked() is False
        assert await other_lock.try_acquire() is True

    async def test_different_lock_keys_independent(self, database):
        first = LockManager(database, LockConfig(lock_key=1))
        second = LockManager(database, LockConfig(lock_key=2))
        assert await first.try_acquire() is True
        assert await second.try_acquire() is True


@pytest.mark.asyncio
class TestRelease:

    async def test_release_when_not_held(self, lock_manager):
        assert await lock_manager.release() is False

    async def test_release_by_non_holder_keeps_lock(self, lock_manager, other_lock):
        await lock_manager.try_acquire()
        assert await other_lock.release() is False
        assert await lock_manager.is_held() is True

    async def test_force_release(self, lock_manager, other_lock):
        await lock_manager.try_acquire()
        assert await other_lock.force_release() is True
        assert await lock_manager.is_held() is False
        assert await other_lock.force_release() is False


@pytest.mark.asyncio
class TestAcquireWait:

    async def test_immediate_when_free(self, lock_manager):
        assert await lock_manager.acquire_wait(timeout=0.2) is True

    async def test_times_out(self, lock_manager, other_lock):
        await other_lock.try_acquire()
        start = time.monotonic()
        with pytest.raises(LockTimeout) as exc_info:
            await lock_manager.acquire_wait(timeout=0.2)
        assert time.monotonic() - start >= 0.2
        assert exc_info.value.timeout == 0.2
        assert exc_info.value.lock_key == lock_manager.lock_key

    async def test_default_timeout_from_config(self, lock_manager, other_lock):
        await other_lock.try_acquire()
        with pytest.raises(LockTimeout) as exc_info:
            await lock_manager.acquire_wait()
        assert exc_info.value.timeout == lock_manager.config.default_timeout

    async def test_acquires_once_released(self, lock_manager, other_lock):
        await other_lock.try_acquire()

        async def release_later():
            await asyncio.sleep(0.1)
            await other_lock.release()

        releaser = asyncio.create_task(release_later())
        assert await lock_manager.acquire_wait(timeout=2.0) is True
        await releaser
        assert await lock_manager.is_held() is True


@pytest.mark.asyncio
class TestLease:

    async def test_expired_lease_taken_over(self, database):
        config = LockConfig(lock_key=77, lease_ttl=0.05, poll_interval=0.01)
        crashed = LockManager(database, config, principal='crashed')
        survivor = LockManager(database, config, principal='survivor')

        assert await crashed.try_acquire() is True
        await asyncio.sleep(0.1)

        assert await crashed.is_held() is False
        assert await survivor.try_acquire() is True
        holder = await survivor.holder_info()
        assert holder.principal == 'survivor'
        assert holder.depth == 1

    async def test_renew_extends_lease(self, lock_manager):
        await lock_manager.try_acquire()
        before = (await lock_manager.holder_info()).expires_at
        await asyncio.sleep(0.01)
        assert await lock_manager.renew() is True
        assert (await lock_manager.holder_info()).expires_at > before

    async def test_renew_without_lease(self, lock_manager):
        assert await lock_manager.renew() is False

    async def test_renew_after_expiry_fails(self, database):
        config = LockConfig(lock_key=78, lease_ttl=0.05, poll_interval=0.01)
        session = LockManager(database, config)

        assert await session.try_acquire() is True
        await asyncio.sleep(0.1)
        assert await session.renew() is False

    async def test_reacquire_own_expired_lease_starts_fresh(self, database):
        config = LockConfig(lock_key=79, lease_ttl=0.1, poll_interval=0.01)
        session = LockManager(database, config)

        assert await session.try_acquire() is True
        assert await session.try_acquire() is True
        await asyncio.sleep(0.2)
        assert await session.is_held() is False

        assert await session.try_acquire() is True
        assert (await session.holder_info()).depth == 1
        assert await session.release() is True
        assert await session.is_locked() is False

    async def test_holder_info(self, lock_manager):
        assert await lock_manager.holder_info() is None
        await lock_manager.try_acquire()
        holder = await lock_manager.holder_info()
        assert holder.principal == 'tester'
        assert holder.process_id == lock_manager.process_id
        assert holder.hostname == lock_manager.hostname
        assert holder.expires_at > holder.connected_at
        assert holder.to_dict()['principal'] == 'tester'
