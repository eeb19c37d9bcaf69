"""
Migration data models for the execution engine.

This module defines the value objects passed through the engine:
- MigrationKind: Closed set of changelog entry kinds
- MigrationState: Outcome of one apply call (skipped, applied, failed)
- VersionedMigration: A unit identified by version, applied at most once
- RepeatableMigration: A unit identified by filename, re-applied on change
- MigrationResult: What happened to one unit

Migration content is opaque here. It is only hashed (see checksum.py) and
handed to a SchemaExecutor.
"""

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, Tuple

from .checksum import compute_checksum

_VERSION_CHUNK = re.compile(r'(\d+)')


def version_key(version: str) -> Tuple:
    """
    Sort key giving versions a natural order.

    Digit runs compare numerically and everything else compares as text,
    so '2' < '10' and '1.9' < '1.10', while zero-padded versions such as
    '001' < '002' keep their usual order.

    Example:
        >>> sorted(['10', '9', '001'], key=version_key)
        ['001', '9', '10']
    """
    parts = []
    for chunk in _VERSION_CHUNK.split(version):
        if not chunk:
            continue
        if chunk.isdigit():
            parts.append((0, int(chunk), chunk))
        else:
            parts.append((1, 0, chunk))
    return tuple(parts)


class MigrationKind(str, Enum):
    """Kind of a changelog entry."""
    VERSIONED = 'versioned'
    REPEATABLE = 'repeatable'
    BASELINE = 'baseline'


class MigrationState(str, Enum):
    """Per-unit state machine: PENDING -> SKIPPED | APPLIED | FAILED."""
    PENDING = 'pending'
    SKIPPED = 'skipped'
    APPLIED = 'applied'
    FAILED = 'failed'


@dataclass
class VersionedMigration:
    """
    A migration that runs at most once, identified by its version.

    Attributes:
        version: Version identifier (e.g., '001', '2024.01.15')
        description: Human readable description
        filename: Source filename recorded in the changelog
        content: Migration payload handed to the schema executor

    Example:
        >>> unit = VersionedMigration(
        ...     version='001',
        ...     description='Create users',
        ...     filename='V001__create_users.sql',
        ...     content='CREATE TABLE users (id INTEGER PRIMARY KEY);'
        ... )
        >>> unit
        <VersionedMigration(001, Create users)>
    """

    version: str
    description: str
    filename: str
    content: str

    def __post_init__(self):
        if not str(self.version).strip():
            raise ValueError("Versioned migration requires a non-empty version")
        self.version = str(self.version)

    @property
    def kind(self) -> MigrationKind:
        return MigrationKind.VERSIONED

    @property
    def checksum(self) -> str:
        return compute_checksum(self.content)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'VersionedMigration':
        """
        Build from the batch input shape ``{version, description, filename, content}``.

        ``sql`` is accepted as an alias of ``content``; a missing filename
        defaults to ``V{version}.sql``.
        """
        version = str(data['version'])
        return cls(
            version=version,
            description=data.get('description', ''),
            filename=data.get('filename') or f"V{version}.sql",
            content=data['content'] if 'content' in data else data['sql'],
        )

    def __lt__(self, other: 'VersionedMigration') -> bool:
        if not isinstance(other, VersionedMigration):
            return NotImplemented
        return version_key(self.version) < version_key(other.version)

    def __repr__(self) -> str:
        return f"<VersionedMigration({self.version}, {self.description})>"


@dataclass
class RepeatableMigration:
    """
    A migration re-applied whenever its checksum changes.

    The filename doubles as the version in the changelog.

    Attributes:
        filename: Identity of the repeatable unit (e.g., 'R__views.sql')
        description: Human readable description
        content: Migration payload handed to the schema executor
    """

    filename: str
    description: str
    content: str

    def __post_init__(self):
        if not self.filename.strip():
            raise ValueError("Repeatable migration requires a non-empty filename")

    @property
    def version(self) -> str:
        return self.filename

    @property
    def kind(self) -> MigrationKind:
        return MigrationKind.REPEATABLE

    @property
    def checksum(self) -> str:
        return compute_checksum(self.content)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'RepeatableMigration':
        """Build from the batch input shape ``{filename, description, content}``."""
        return cls(
            filename=data['filename'],
            description=data.get('description', ''),
            content=data['content'] if 'content' in data else data['sql'],
        )

    def __lt__(self, other: 'RepeatableMigration') -> bool:
        if not isinstance(other, RepeatableMigration):
            return NotImplemented
        return self.filename < other.filename

    def __repr__(self) -> str:
        return f"<RepeatableMigration({self.filename})>"


@dataclass
class MigrationResult:
    """
    Result of executing one migration unit.

    Attributes:
        version: Version (filename for repeatables) of the unit
        kind: Kind of the unit
        state: Final state (SKIPPED or APPLIED; failures raise)
        checksum: Checksum of the content that was considered
        execution_time_ms: Execution time (None when skipped)
        changelog_id: Id of the new changelog row (None when skipped)
    """

    version: str
    kind: MigrationKind
    state: MigrationState
    checksum: str
    execution_time_ms: Optional[int] = None
    changelog_id: Optional[int] = None

    @property
    def applied(self) -> bool:
        return self.state == MigrationState.APPLIED

    def to_dict(self) -> dict:
        return {
            'version': self.version,
            'kind': self.kind.value,
            'state': self.state.value,
            'checksum': self.checksum,
            'execution_time_ms': self.execution_time_ms,
            'changelog_id': self.changelog_id,
        }


@dataclass
class BatchResult:
    """
    Outcome of a batch run.

    Attributes:
        results: Per-unit results, in execution order
    """

    results: list = field(default_factory=list)

    @property
    def applied(self) -> list:
        return [r for r in self.results if r.state == MigrationState.APPLIED]

    @property
    def skipped(self) -> list:
        return [r for r in self.results if r.state == MigrationState.SKIPPED]

    def extend(self, other: 'BatchResult') -> None:
        self.results.extend(other.results)

    def to_dict(self) -> dict:
        return {
            'applied': len(self.applied),
            'skipped': len(self.skipped),
            'results': [r.to_dict() for r in self.results],
        }
