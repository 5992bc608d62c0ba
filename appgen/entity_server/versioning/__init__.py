"""
Versioning module for the Entity Server.

This module handles:
- Current version resolution and advisory locks
- Commit snapshots (current version copied into a new committed version)
- Discarding pending changes back to the last committed version
- Structural comparison between versions

Invariants:
    - Committed versions are never modified after creation
    - permanent_id is copied verbatim on every snapshot and discard
"""

from .diff import ChangeKind, VersionChange, compare_versions
from .manager import EntityVersionManager
from .snapshot import build_snapshot, copy_version_content

__all__ = [
    "EntityVersionManager",
    "build_snapshot",
    "copy_version_content",
    "ChangeKind",
    "VersionChange",
    "compare_versions",
]
