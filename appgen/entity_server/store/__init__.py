"""
Store module for the Entity Server - persistence of entity models.

This module handles:
- Entities, versions, fields and permissions in one SQLite database
- Atomic version snapshots and version content replacement

Invariants:
    - All operations that touch more than one row are atomic
    - SQLite uses WAL mode for concurrent reads during writes

How to change safely:
    - Test schema migrations thoroughly before deployment
    - Use transactions for all multi-statement operations
"""

from .structured_store import EntityStore, StoreNotInitializedError

__all__ = [
    "EntityStore",
    "StoreNotInitializedError",
]
