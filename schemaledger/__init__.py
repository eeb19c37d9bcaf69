"""Schema migration ledger with versioned, repeatable and baseline migrations."""
from .config import LedgerConfig, LockConfig, configure_logger, load_config
from .database import LedgerDatabase
from .exceptions import (
    BaselineConflict,
    ChecksumMismatch,
    LockNotHeld,
    LockTimeout,
    MigrationError,
    MigrationFailed,
    RollbackFailed,
    RollbackScriptMissing,
    VersionNotFound,
)
from .service import MigrationService

__version__ = '0.3.0'

__all__ = [
    'BaselineConflict',
    'ChecksumMismatch',
    'LedgerConfig',
    'LedgerDatabase',
    'LockConfig',
    'LockNotHeld',
    'LockTimeout',
    'MigrationError',
    'MigrationFailed',
    'MigrationService',
    'RollbackFailed',
    'RollbackScriptMissing',
    'VersionNotFound',
    'configure_logger',
    'load_config',
]
