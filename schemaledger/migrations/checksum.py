"""
Content fingerprinting for migration drift detection.

A checksum identifies the *meaning* of a migration, not its bytes:
single-line comments and incidental whitespace are removed before
hashing, so reformatting a script or editing its comments does not
count as a modification.

Normalization pipeline:
    1. Strip single-line comments (``--`` to end of line)
    2. Collapse every whitespace run (spaces, tabs, newlines) to one space
    3. Trim leading and trailing whitespace
"""

import hashlib
import re

COMMENT_PATTERN = re.compile(r'--[^\n]*')
WHITESPACE_PATTERN = re.compile(r'\s+')

# Length of the hex digest produced by compute_checksum()
CHECKSUM_LENGTH = 64


def normalize_content(content: str) -> str:
    """
    Normalize migration content before hashing.

    Args:
        content: Raw migration text

    Returns:
        Content without comments, with whitespace collapsed and trimmed

    Example:
        >>> normalize_content("CREATE TABLE t (  -- table\\n  id int\\n);")
        'CREATE TABLE t ( id int );'
    """
    without_comments = COMMENT_PATTERN.sub('', content)
    collapsed = WHITESPACE_PATTERN.sub(' ', without_comments)
    return collapsed.strip()


def compute_checksum(content: str) -> str:
    """
    Compute the SHA-256 checksum of normalized migration content.

    Deterministic and side-effect free. Two contents that differ only by
    comments or whitespace produce the same checksum.

    Args:
        content: Raw migration text

    Returns:
        Hexadecimal SHA-256 hash (64 characters)

    Example:
        >>> compute_checksum("SELECT 1;") == compute_checksum("  SELECT 1; -- one")
        True
    """
    normalized = normalize_content(content)
    return hashlib.sha256(normalized.encode('utf-8')).hexdigest()
