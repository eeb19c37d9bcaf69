"""
Global pytest configuration and fixtures for schemaledger tests

Provides:
- File-backed SQLite ledger databases (aiosqlite) in tmp_path
- Pre-wired engine components and MigrationService
- Recording SchemaExecutor doubles
"""

import pytest
import pytest_asyncio
from unittest.mock import AsyncMock

from schemaledger.config import LedgerConfig, LockConfig
from schemaledger.database import LedgerDatabase
from schemaledger.migrations import (
    BatchRunner,
    ChangelogStore,
    LockManager,
    MigrationExecutor,
    RollbackManager,
    SchemaExecutor,
)
from schemaledger.service import MigrationService


# ============================================================================
# Pytest Configuration
# ============================================================================

def pytest_configure(config):
    """Configure pytest with custom settings"""
    config.addinivalue_line("markers", "unit: Unit tests")
    config.addinivalue_line("markers", "integration: Integration tests")


# ============================================================================
# Configuration
# ============================================================================

@pytest.fixture
def lock_config():
    """Short lease and fast polling so lock tests finish quickly"""
    return LockConfig(lock_key=4242, default_timeout=0.5, poll_interval=0.05, lease_ttl=60.0)


@pytest.fixture
def ledger_config(tmp_path, lock_config):
    return LedgerConfig(
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'ledger.db'}",
        principal='tester',
        lock=lock_config,
    )


# ============================================================================
# Database
# ============================================================================

@pytest_asyncio.fixture
async def database(ledger_config):
    """Installed ledger database, disposed after the test"""
    db = LedgerDatabase(ledger_config.database_url)
    await db.install()
    yield db
    await db.close()


@pytest.fixture
def changelog(database):
    return ChangelogStore(database)


# ============================================================================
# Schema executor doubles
# ============================================================================

class RecordingExecutor(SchemaExecutor):
    """SchemaExecutor that records content and fails on demand"""

    def __init__(self, fail_on=None):
        self.executed = []
        self.fail_on = set(fail_on or [])

    async def execute(self, session, content):
        if content in self.fail_on:
            raise RuntimeError(f"boom: {content}")
        self.executed.append(content)


@pytest.fixture
def recording_executor():
    return RecordingExecutor()


@pytest.fixture
def mock_schema_executor():
    """AsyncMock standing in for the schema executor capability"""
    executor = AsyncMock(spec=SchemaExecutor)
    executor.execute = AsyncMock(return_value=None)
    return executor


# ============================================================================
# Engine components
# ============================================================================

@pytest.fixture
def executor(database, changelog, recording_executor):
    return MigrationExecutor(
        database, changelog, schema_executor=recording_executor, principal='tester'
    )


@pytest.fixture
def lock_manager(database, lock_config):
    return LockManager(database, lock_config, principal='tester')


@pytest.fixture
def batch_runner(executor, lock_manager):
    return BatchRunner(executor, lock_manager)


@pytest.fixture
def rollback_manager(database, changelog):
    return RollbackManager(database, changelog, principal='tester')


@pytest.fixture
def service(database, ledger_config):
    """MigrationService running real SQL against the test database"""
    return MigrationService(database, ledger_config)
