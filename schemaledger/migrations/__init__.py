"""
Migration execution engine.

This package provides:
- compute_checksum: Normalized content fingerprint
- ChangelogStore: Durable ledger of migration attempts
- LockManager: Lease-based migration lock
- MigrationExecutor: Apply/skip/fail logic for one unit
- BatchRunner: Ordered application of many units under the lock
- RollbackManager: Rollback script registry and replay
- MigrationValidator: Checksum drift report
"""

from .batch_runner import BatchRunner
from .changelog import NO_VERSION, ChangelogStore
from .checksum import compute_checksum, normalize_content
from .lock_manager import LockHolder, LockManager
from .migration import (
    BatchResult,
    MigrationKind,
    MigrationResult,
    MigrationState,
    RepeatableMigration,
    VersionedMigration,
    version_key,
)
from .migration_executor import (
    MigrationExecutor,
    SchemaExecutor,
    SqlSchemaExecutor,
    split_sql_statements,
)
from .migration_validator import ChecksumReport, ChecksumStatus, MigrationValidator
from .rollback_manager import RollbackCandidate, RollbackManager

__all__ = [
    'BatchResult',
    'BatchRunner',
    'ChangelogStore',
    'ChecksumReport',
    'ChecksumStatus',
    'LockHolder',
    'LockManager',
    'MigrationExecutor',
    'MigrationKind',
    'MigrationResult',
    'MigrationState',
    'MigrationValidator',
    'NO_VERSION',
    'RepeatableMigration',
    'RollbackCandidate',
    'RollbackManager',
    'SchemaExecutor',
    'SqlSchemaExecutor',
    'VersionedMigration',
    'compute_checksum',
    'normalize_content',
    'split_sql_statements',
    'version_key',
]
