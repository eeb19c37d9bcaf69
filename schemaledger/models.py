#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
SQLAlchemy ORM Models for the Migration Ledger
===============================================

Defines the ledger schema using SQLAlchemy 2.0 ORM with type hints.

Models:
- ChangelogEntry: One row per migration attempt (applied, failed, baseline)
- RollbackScript: Registered reversal script per version (upsert)
- RollbackHistoryEntry: Append-only audit of rollback attempts
- MigrationLock: Lease row implementing the migration mutex

Usage:
    from schemaledger.models import Base, ChangelogEntry

    engine = create_async_engine('sqlite+aiosqlite:///schema_ledger.db')

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async with AsyncSession(engine) as session:
        result = await session.execute(
            select(ChangelogEntry).where(ChangelogEntry.version == '001')
        )
        entry = result.scalar_one_or_none()
"""

from datetime import datetime
from typing import Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    Float,
    Index,
    Integer,
    String,
    Text,
    text,
    true,
)
from sqlalchemy.ext.asyncio import AsyncAttrs
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

# ============================================================================
# Base Class
# ============================================================================

class Base(AsyncAttrs, DeclarativeBase):
    """
    Base class for all ledger ORM models.

    Attributes:
        AsyncAttrs: Enables async attribute loading (SQLAlchemy 2.0)
        DeclarativeBase: Base for declarative model definitions
    """
    pass


# ============================================================================
# Changelog
# ============================================================================

class ChangelogEntry(Base):
    """
    Records every migration execution.

    Rows are inserted when an apply attempt concludes. The only update ever
    made is a successful rollback flipping ``success`` to False.

    Ordering: "most recent" means (executed_at DESC, id DESC). The id
    breaks ties between rows sharing a timestamp.
    """
    __tablename__ = 'schema_changelog'

    id: Mapped[int] = mapped_column(
        Integer,
        primary_key=True,
        autoincrement=True,
        comment="Monotonic surrogate key"
    )

    version: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        comment="Migration version (filename for repeatable migrations)"
    )

    description: Mapped[str] = mapped_column(
        Text,
        nullable=False,
        comment="Human readable description"
    )

    kind: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default='versioned',
        server_default='versioned',
        comment="versioned (run once), repeatable (run on change), baseline"
    )

    filename: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        comment="Source filename of the migration"
    )

    checksum: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        comment="SHA-256 of normalized migration content"
    )

    execution_time_ms: Mapped[Optional[int]] = mapped_column(
        Integer,
        nullable=True,
        comment="Execution time in milliseconds (NULL for failures, baselines)"
    )

    executed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        comment="When the attempt concluded"
    )

    executed_by: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
        comment="Principal that ran the migration"
    )

    success: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=True,
        server_default=true(),
        comment="False for failed attempts and rolled back versions"
    )

    __table_args__ = (
        CheckConstraint(
            "kind IN ('versioned', 'repeatable', 'baseline')",
            name='ck_changelog_kind'
        ),
        # At most one successful row per versioned version
        Index(
            'uq_changelog_version_applied',
            'version',
            unique=True,
            sqlite_where=text("kind = 'versioned' AND success = 1"),
            postgresql_where=text("kind = 'versioned' AND success"),
        ),
        Index('idx_changelog_executed', 'executed_at', 'id'),
        Index('idx_changelog_kind_success', 'kind', 'success'),
        Index('idx_changelog_filename', 'filename', 'kind'),
        {'comment': 'Records all migration executions'}
    )

    def __repr__(self) -> str:
        state = 'success' if self.success else 'failed'
        return f"<ChangelogEntry(#{self.id} {self.kind} {self.version}, {state})>"

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            'id': self.id,
            'version': self.version,
            'description': self.description,
            'kind': self.kind,
            'filename': self.filename,
            'checksum': self.checksum,
            'execution_time_ms': self.execution_time_ms,
            'executed_at': self.executed_at.isoformat() if self.executed_at else None,
            'executed_by': self.executed_by,
            'success': self.success,
        }


# ============================================================================
# Rollback Scripts
# ============================================================================

class RollbackScript(Base):
    """
    Reversal script for a versioned migration.

    At most one per version. Registering again overwrites the script and
    refreshes created_at / created_by.
    """
    __tablename__ = 'schema_rollback_scripts'

    version: Mapped[str] = mapped_column(
        String(255),
        primary_key=True,
        comment="Version this script reverses"
    )

    script: Mapped[str] = mapped_column(
        Text,
        nullable=False,
        comment="Rollback content handed to the schema executor"
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        comment="When the script was (re)registered"
    )

    created_by: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
        comment="Principal that registered the script"
    )

    __table_args__ = (
        {'comment': 'Optional rollback scripts for versioned migrations'},
    )

    def __repr__(self) -> str:
        return f"<RollbackScript(version={self.version})>"


class RollbackHistoryEntry(Base):
    """
    Audit row for one rollback attempt. Never updated.
    """
    __tablename__ = 'schema_rollback_history'

    id: Mapped[int] = mapped_column(
        Integer,
        primary_key=True,
        autoincrement=True
    )

    changelog_id: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        comment="Changelog row the rollback targeted"
    )

    version: Mapped[str] = mapped_column(
        String(255),
        nullable=False
    )

    script: Mapped[Optional[str]] = mapped_column(
        Text,
        nullable=True,
        comment="Snapshot of the script that was executed"
    )

    executed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False
    )

    executed_by: Mapped[str] = mapped_column(
        String(100),
        nullable=False
    )

    execution_time_ms: Mapped[Optional[int]] = mapped_column(
        Integer,
        nullable=True
    )

    success: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=True
    )

    error_message: Mapped[Optional[str]] = mapped_column(
        Text,
        nullable=True
    )

    __table_args__ = (
        Index('idx_rollback_history_version', 'version'),
        {'comment': 'History of all rollback executions'}
    )

    def __repr__(self) -> str:
        state = 'success' if self.success else 'failed'
        return f"<RollbackHistoryEntry(#{self.id} {self.version}, {state})>"


# ============================================================================
# Migration Lock (lease)
# ============================================================================

class MigrationLock(Base):
    """
    Lease implementing the migration mutex.

    One row per lock key while the lock is held. The holder_id is the
    token of the LockManager instance (the "session"); depth counts
    re-entrant acquisitions by that holder. A lease past expires_at may
    be taken over by another session.
    """
    __tablename__ = 'schema_migration_lock'

    lock_key: Mapped[int] = mapped_column(
        Integer,
        primary_key=True,
        autoincrement=False,
        comment="Configured lock identifier"
    )

    holder_id: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        comment="Token of the holding session"
    )

    principal: Mapped[str] = mapped_column(
        String(100),
        nullable=False
    )

    process_id: Mapped[int] = mapped_column(
        Integer,
        nullable=False
    )

    hostname: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        default=''
    )

    acquired_at: Mapped[float] = mapped_column(
        Float,
        nullable=False,
        comment="Lease start (Unix epoch seconds)"
    )

    expires_at: Mapped[float] = mapped_column(
        Float,
        nullable=False,
        comment="Lease expiry (Unix epoch seconds)"
    )

    depth: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=1,
        comment="Re-entrant acquisition count"
    )

    __table_args__ = (
        CheckConstraint('depth >= 1', name='ck_migration_lock_depth'),
        {'comment': 'Migration lock lease'}
    )

    def __repr__(self) -> str:
        return (
            f"<MigrationLock(key={self.lock_key}, holder={self.principal}"
            f"@{self.process_id}, depth={self.depth})>"
        )


# ============================================================================
# Model Registry
# ============================================================================

def get_all_models():
    """
    Get all ledger ORM model classes.

    Returns:
        List of all model classes in dependency order
    """
    return [
        ChangelogEntry,
        RollbackScript,
        RollbackHistoryEntry,
        MigrationLock,
    ]
