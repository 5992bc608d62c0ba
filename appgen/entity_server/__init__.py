"""
Entity Server - versioned data-modeling core for application generation.

This package implements the entity modeling engine behind generated apps:
- Entities, their fields and role-based permissions
- An append-only sequence of versions per entity
- A mutable "current" version (version_number 0) used as the working copy
- Immutable snapshots created on commit, and rollback to the last snapshot

Architecture:
    ┌──────────────┐     ┌──────────────────┐     ┌────────────────┐
    │ EntityService│────▶│ EntityVersion    │────▶│  EntityStore   │
    │   (facade)   │     │ Manager          │     │   (SQLite)     │
    └──────┬───────┘     └──────────────────┘     └────────────────┘
           │
           ▼
    ┌──────────────┐     ┌──────────────────┐
    │ Naming rules │     │ Field properties │
    │ + constants  │     │ validator        │
    └──────────────┘     └──────────────────┘

Invariants:
    - Exactly one current version per entity
    - Committed version numbers start at 1 and increase by 1
    - A field keeps its permanent_id across every version of its entity
    - Fields of committed versions are never modified
    - Entities are soft-deleted, never removed

How to change safely:
    - New data types must be added to DataType and to the properties schemas
    - Keep snapshot and discard writes inside a single store transaction
    - Never regenerate permanent ids while copying versions
"""

from ._version import __version__
from .bootstrap import create_entity_service, setup_logging
from .config import EntityServerConfig, ObservabilityConfig, StorageConfig
from .dto import (
    EntityCreateInput,
    EntityFieldCreateInput,
    EntityFieldUpdateInput,
    EntityUpdateInput,
)
from .errors import (
    EntityFieldNotFoundError,
    EntityNameConflictError,
    EntityNotFoundError,
    EntityServerError,
    FieldNameConflictError,
    FieldPropertiesError,
    NameValidationError,
    NotFoundError,
    PermissionRoleError,
    RecordNotFoundError,
    ReservedNameError,
    StaleVersionError,
    SystemDataTypeError,
    ValidationError,
)
from .service import EntityService
from .store import EntityStore
from .versioning import EntityVersionManager

__all__ = [
    "__version__",
    # Facade
    "EntityService",
    "EntityVersionManager",
    "EntityStore",
    "create_entity_service",
    "setup_logging",
    # Config
    "EntityServerConfig",
    "StorageConfig",
    "ObservabilityConfig",
    # Inputs
    "EntityCreateInput",
    "EntityUpdateInput",
    "EntityFieldCreateInput",
    "EntityFieldUpdateInput",
    # Errors
    "EntityServerError",
    "ValidationError",
    "NameValidationError",
    "ReservedNameError",
    "SystemDataTypeError",
    "FieldPropertiesError",
    "EntityNameConflictError",
    "FieldNameConflictError",
    "PermissionRoleError",
    "NotFoundError",
    "EntityNotFoundError",
    "EntityFieldNotFoundError",
    "RecordNotFoundError",
    "StaleVersionError",
]
