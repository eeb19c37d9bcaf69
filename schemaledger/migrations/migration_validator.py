#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Checksum validation of migrations against the changelog.

Compares the current content of versioned migrations with the checksum
stored when they were applied, without applying anything. Used by
deployment tooling to detect edited scripts before a run.
"""
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, List, Optional

from .changelog import ChangelogStore
from .checksum import compute_checksum
from .migration import VersionedMigration, version_key


class ChecksumStatus(Enum):
    """Validation outcome for one migration."""
    PENDING = "PENDING"
    OK = "OK"
    MODIFIED = "MODIFIED"


@dataclass
class ChecksumReport:
    """
    Checksum comparison for one versioned migration.

    Attributes:
        version: Migration version
        filename: Filename recorded when applied (None if pending)
        status: PENDING (never applied), OK or MODIFIED
        stored_checksum: Checksum recorded in the changelog
        current_checksum: Checksum of the content provided now

    Example:
        >>> report = ChecksumReport('002', 'V002__add.sql', ChecksumStatus.MODIFIED,
        ...                         'ab12cd34...', 'ef56ab78...')
        >>> report
        [MODIFIED] 002: stored ab12cd34, current ef56ab78
    """
    version: str
    filename: Optional[str]
    status: ChecksumStatus
    stored_checksum: Optional[str]
    current_checksum: str

    @property
    def is_modified(self) -> bool:
        return self.status == ChecksumStatus.MODIFIED

    def to_dict(self) -> dict:
        return {
            'version': self.version,
            'filename': self.filename,
            'status': self.status.value,
            'stored_checksum': self.stored_checksum,
            'current_checksum': self.current_checksum,
        }

    def __repr__(self) -> str:
        stored = self.stored_checksum[:8] if self.stored_checksum else '-'
        return (
            f"[{self.status.value}] {self.version}: "
            f"stored {stored}, current {self.current_checksum[:8]}"
        )


class MigrationValidator:
    """
    Validates versioned migration content against stored checksums.

    Read-only; does not require the migration lock.

    Example:
        >>> validator = MigrationValidator(changelog)
        >>> reports = await validator.validate_checksums(units)
        >>> modified = [r for r in reports if r.is_modified]
    """

    def __init__(self, changelog: ChangelogStore):
        self.changelog = changelog

    async def validate_checksums(self, units: Iterable) -> List[ChecksumReport]:
        """
        Compare each unit's checksum with the changelog.

        Args:
            units: VersionedMigration objects or dicts with at least
                ``version`` and ``content``

        Returns:
            One ChecksumReport per unit, in ascending version order
        """
        reports = []
        for unit in units:
            if isinstance(unit, VersionedMigration):
                version, content = unit.version, unit.content
            else:
                version = str(unit['version'])
                content = unit['content'] if 'content' in unit else unit['sql']

            current = compute_checksum(content)
            entry = await self.changelog.get_applied_entry(version)

            if entry is None:
                status = ChecksumStatus.PENDING
            elif entry.checksum == current:
                status = ChecksumStatus.OK
            else:
                status = ChecksumStatus.MODIFIED

            reports.append(ChecksumReport(
                version=version,
                filename=entry.filename if entry else None,
                status=status,
                stored_checksum=entry.checksum if entry else None,
                current_checksum=current,
            ))

        return sorted(reports, key=lambda r: version_key(r.version))
