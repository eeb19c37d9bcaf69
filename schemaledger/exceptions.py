#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Exception hierarchy for the migration engine.

Validation errors (LockNotHeld, ChecksumMismatch, RollbackScriptMissing,
VersionNotFound, BaselineConflict) are raised before anything is written.
MigrationFailed is raised after the failure has been recorded and always
carries the original error as ``__cause__``.
"""
from typing import Optional


class MigrationError(Exception):
    """Base class for every error raised by schemaledger."""
    pass


class LockNotHeld(MigrationError):
    """Batch operation attempted without holding the migration lock."""

    def __init__(self, message: str = 'Migration lock not held. Acquire the lock first.'):
        super().__init__(message)


class LockTimeout(MigrationError):
    """Waiting for the migration lock exceeded the timeout."""

    def __init__(self, timeout: float, lock_key: Optional[int] = None):
        self.timeout = timeout
        self.lock_key = lock_key
        super().__init__(
            f"Timeout acquiring migration lock after {timeout:g} seconds. "
            f"Another migration may be running (check lock_holder())."
        )


class ChecksumMismatch(MigrationError):
    """An already-applied versioned migration has been edited."""

    def __init__(self, version: str, stored_checksum: Optional[str], current_checksum: str):
        self.version = version
        self.stored_checksum = stored_checksum
        self.current_checksum = current_checksum
        super().__init__(
            f"Checksum mismatch for version {version}: "
            f"stored={stored_checksum}, current={current_checksum}. "
            f"Migration has been modified after execution."
        )


class MigrationFailed(MigrationError):
    """The migration content raised an error while being applied."""

    def __init__(self, version: str, kind: str, detail: str):
        self.version = version
        self.kind = kind
        self.detail = detail
        super().__init__(f"Migration {version} failed: {detail}")


class RollbackFailed(MigrationFailed):
    """A registered rollback script raised an error while being executed."""

    def __init__(self, version: str, detail: str):
        super().__init__(version, 'versioned', detail)
        self.args = (f"Rollback of version {version} failed: {detail}",)


class RollbackScriptMissing(MigrationError):
    """No rollback script is registered for the requested version."""

    def __init__(self, version: str):
        self.version = version
        super().__init__(
            f"No rollback script registered for version {version}. "
            f"Register one with register_rollback()."
        )


class VersionNotFound(MigrationError):
    """Rollback target is not applied, or was already rolled back."""

    def __init__(self, version: str):
        self.version = version
        super().__init__(
            f"Version {version} not found in changelog or already rolled back"
        )


class BaselineConflict(MigrationError):
    """Baseline requested although versioned history already exists."""

    def __init__(self, version: str):
        self.version = version
        super().__init__(
            f"Cannot set baseline {version}: versioned migrations already exist"
        )
