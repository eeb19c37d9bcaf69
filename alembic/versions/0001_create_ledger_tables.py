"""create ledger tables

Revision ID: 0001
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '0001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create changelog, rollback and lock tables."""
    op.create_table(
        'schema_changelog',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True,
                  comment='Monotonic surrogate key'),
        sa.Column('version', sa.String(length=255), nullable=False,
                  comment='Migration version (filename for repeatable migrations)'),
        sa.Column('description', sa.Text(), nullable=False,
                  comment='Human readable description'),
        sa.Column('kind', sa.String(length=20), nullable=False,
                  server_default='versioned',
                  comment='versioned (run once), repeatable (run on change), baseline'),
        sa.Column('filename', sa.String(length=255), nullable=False,
                  comment='Source filename of the migration'),
        sa.Column('checksum', sa.String(length=64), nullable=False,
                  comment='SHA-256 of normalized migration content'),
        sa.Column('execution_time_ms', sa.Integer(), nullable=True,
                  comment='Execution time in milliseconds (NULL for failures, baselines)'),
        sa.Column('executed_at', sa.DateTime(timezone=True), nullable=False,
                  comment='When the attempt concluded'),
        sa.Column('executed_by', sa.String(length=100), nullable=False,
                  comment='Principal that ran the migration'),
        sa.Column('success', sa.Boolean(), nullable=False, server_default=sa.true(),
                  comment='False for failed attempts and rolled back versions'),
        sa.CheckConstraint(
            "kind IN ('versioned', 'repeatable', 'baseline')",
            name='ck_changelog_kind'
        ),
        comment='Records all migration executions'
    )
    op.create_index(
        'uq_changelog_version_applied',
        'schema_changelog',
        ['version'],
        unique=True,
        sqlite_where=sa.text("kind = 'versioned' AND success = 1"),
        postgresql_where=sa.text("kind = 'versioned' AND success"),
    )
    op.create_index('idx_changelog_executed', 'schema_changelog', ['executed_at', 'id'])
    op.create_index('idx_changelog_kind_success', 'schema_changelog', ['kind', 'success'])
    op.create_index('idx_changelog_filename', 'schema_changelog', ['filename', 'kind'])

    op.create_table(
        'schema_rollback_scripts',
        sa.Column('version', sa.String(length=255), primary_key=True,
                  comment='Version this script reverses'),
        sa.Column('script', sa.Text(), nullable=False,
                  comment='Rollback content handed to the schema executor'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  comment='When the script was (re)registered'),
        sa.Column('created_by', sa.String(length=100), nullable=False,
                  comment='Principal that registered the script'),
        comment='Optional rollback scripts for versioned migrations'
    )

    op.create_table(
        'schema_rollback_history',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('changelog_id', sa.Integer(), nullable=False,
                  comment='Changelog row the rollback targeted'),
        sa.Column('version', sa.String(length=255), nullable=False),
        sa.Column('script', sa.Text(), nullable=True,
                  comment='Snapshot of the script that was executed'),
        sa.Column('executed_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('executed_by', sa.String(length=100), nullable=False),
        sa.Column('execution_time_ms', sa.Integer(), nullable=True),
        sa.Column('success', sa.Boolean(), nullable=False),
        sa.Column('error_message', sa.Text(), nullable=True),
        comment='History of all rollback executions'
    )
    op.create_index('idx_rollback_history_version', 'schema_rollback_history', ['version'])

    op.create_table(
        'schema_migration_lock',
        sa.Column('lock_key', sa.Integer(), primary_key=True, autoincrement=False,
                  comment='Configured lock identifier'),
        sa.Column('holder_id', sa.String(length=64), nullable=False,
                  comment='Token of the holding session'),
        sa.Column('principal', sa.String(length=100), nullable=False),
        sa.Column('process_id', sa.Integer(), nullable=False),
        sa.Column('hostname', sa.String(length=255), nullable=False),
        sa.Column('acquired_at', sa.Float(), nullable=False,
                  comment='Lease start (Unix epoch seconds)'),
        sa.Column('expires_at', sa.Float(), nullable=False,
                  comment='Lease expiry (Unix epoch seconds)'),
        sa.Column('depth', sa.Integer(), nullable=False,
                  comment='Re-entrant acquisition count'),
        sa.CheckConstraint('depth >= 1', name='ck_migration_lock_depth'),
        comment='Migration lock lease'
    )


def downgrade() -> None:
    """Drop all ledger tables (deletes migration history)."""
    op.drop_table('schema_migration_lock')
    op.drop_index('idx_rollback_history_version', table_name='schema_rollback_history')
    op.drop_table('schema_rollback_history')
    op.drop_table('schema_rollback_scripts')
    op.drop_index('idx_changelog_filename', table_name='schema_changelog')
    op.drop_index('idx_changelog_kind_success', table_name='schema_changelog')
    op.drop_index('idx_changelog_executed', table_name='schema_changelog')
    op.drop_index('uq_changelog_version_applied', table_name='schema_changelog')
    op.drop_table('schema_changelog')
