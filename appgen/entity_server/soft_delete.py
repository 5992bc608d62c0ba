"""
Soft-delete helpers.

Soft-deleted records keep their row but have their names rewritten so the
original names become available to new records.
"""

from __future__ import annotations

DELETED_ITEM_MARKER = "-deleted-"


def prepare_deleted_item_name(name: str, item_id: str) -> str:
    """Build the name a record carries once soft-deleted.

    The id makes the result unique even when several records with the same
    name are deleted.

    Example:
        >>> prepare_deleted_item_name("customer", "abc123")
        'customer-deleted-abc123'
    """
    return f"{name}{DELETED_ITEM_MARKER}{item_id}"
