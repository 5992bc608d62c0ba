"""
Structured SQLite store for the Entity Server.

This module manages the SQLite database that stores:
- Entities with their advisory lock metadata
- Entity versions (the current working copy and committed snapshots)
- Fields of every version
- Permissions, permission roles, permission fields and their roles

The version engine reaches the database only through the query and
mutation methods of EntityStore; every method takes explicit filter and
include arguments and returns plain dataclasses.

Invariants:
    - One database file per deployment, shared by all applications
    - All multi-row writes are atomic (single BEGIN IMMEDIATE transaction)
    - (entity_id, version_number) is unique; (app_id, name) is unique
    - Fields, permissions and permission fields cascade with their owner

How to change safely:
    - Schema migrations must be backward compatible
    - Keep snapshot and discard writes inside a single transaction
    - New record attributes need a column, a mapper and a copy rule

Table schema:
    entities:
        - id TEXT PRIMARY KEY
        - app_id TEXT
        - name, display_name, plural_display_name, description TEXT
        - created_at, updated_at INTEGER (Unix ms)
        - deleted_at INTEGER NULL (Unix ms)
        - locked_by_user_id TEXT NULL, locked_at INTEGER NULL
        - UNIQUE (app_id, name)

    entity_versions:
        - id TEXT PRIMARY KEY
        - entity_id TEXT -> entities.id
        - version_number INTEGER (0 = current)
        - commit_id TEXT NULL
        - name, display_name, plural_display_name, description TEXT
        - deleted INTEGER (0/1)
        - UNIQUE (entity_id, version_number)

    entity_fields:
        - id TEXT PRIMARY KEY
        - permanent_id TEXT
        - entity_version_id TEXT -> entity_versions.id (CASCADE)
        - name, display_name, data_type, properties_json, description TEXT
        - required, searchable INTEGER (0/1)
        - position INTEGER
        - UNIQUE (entity_version_id, permanent_id)

    entity_permissions:
        - id TEXT PRIMARY KEY
        - entity_version_id TEXT -> entity_versions.id (CASCADE)
        - action TEXT, type TEXT
        - UNIQUE (entity_version_id, action)

    entity_permission_roles:
        - permission_id TEXT -> entity_permissions.id (CASCADE)
        - app_role_id TEXT

    entity_permission_fields:
        - id TEXT PRIMARY KEY
        - permission_id TEXT -> entity_permissions.id (CASCADE)
        - field_id TEXT -> entity_fields.id (CASCADE)
        - field_permanent_id TEXT, entity_version_id TEXT
        - UNIQUE (permission_id, field_permanent_id)

    entity_permission_field_roles:
        - permission_field_id TEXT -> entity_permission_fields.id (CASCADE)
        - app_role_id TEXT
"""

from __future__ import annotations

import asyncio
import json
import logging
import sqlite3
import time
from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

from ..schema.types import (
    CURRENT_VERSION_NUMBER,
    DataType,
    Entity,
    EntityAction,
    EntityField,
    EntityPermission,
    EntityPermissionField,
    EntityVersion,
    PermissionType,
)

logger = logging.getLogger(__name__)

ENTITY_COLUMNS = frozenset(
    {
        "name",
        "display_name",
        "plural_display_name",
        "description",
        "deleted_at",
        "locked_by_user_id",
        "locked_at",
    }
)
VERSION_COLUMNS = frozenset(
    {"name", "display_name", "plural_display_name", "description", "deleted"}
)
FIELD_COLUMNS = frozenset(
    {
        "name",
        "display_name",
        "data_type",
        "properties",
        "required",
        "searchable",
        "description",
    }
)


class StoreNotInitializedError(Exception):
    """Store database does not exist."""

    pass


def _now_ms() -> int:
    return int(time.time() * 1000)


def _encode(column: str, value: Any) -> Any:
    """Convert an attribute value to its column representation."""
    if column == "properties":
        return json.dumps(value or {})
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, (DataType, EntityAction, PermissionType)):
        return value.value
    return value


def _set_clause(changes: dict[str, Any], allowed: frozenset[str]) -> tuple[str, list[Any]]:
    unknown = set(changes) - allowed
    if unknown:
        raise ValueError(f"Unknown columns: {sorted(unknown)}")
    columns = []
    params = []
    for key, value in changes.items():
        columns.append("properties_json = ?" if key == "properties" else f"{key} = ?")
        params.append(_encode(key, value))
    return ", ".join(columns), params


class EntityStore:
    """SQLite store for entities, versions, fields and permissions.

    This class provides:
    - Entity CRUD with soft-delete and lock metadata
    - Version listing and full-content loading (fields + permissions)
    - Atomic snapshot insertion and content replacement
    - Field and permission CRUD scoped to a version

    Thread safety:
        Each database connection is created per-operation.
        SQLite handles concurrent access via WAL mode.

    Example:
        >>> store = EntityStore("/var/lib/appgen")
        >>> await store.initialize()
        >>> entities = await store.find_entities(app_id="app_1")
    """

    # SQLite schema version for migrations
    SCHEMA_VERSION = 1

    def __init__(
        self,
        data_dir: str,
        db_filename: str = "entities.db",
        wal_mode: bool = True,
        busy_timeout_ms: int = 5000,
        cache_size_pages: int = -64000,
    ) -> None:
        """Initialize the store.

        Args:
            data_dir: Directory for the SQLite database file
            db_filename: Database file name
            wal_mode: Enable SQLite WAL mode
            busy_timeout_ms: SQLite busy timeout
            cache_size_pages: SQLite cache size (negative = KB)
        """
        self.data_dir = Path(data_dir)
        self.db_filename = db_filename
        self.wal_mode = wal_mode
        self.busy_timeout_ms = busy_timeout_ms
        self.cache_size_pages = cache_size_pages
        self._lock = asyncio.Lock()

    def get_db_path(self) -> Path:
        """Get the database file path."""
        return self.data_dir / self.db_filename

    @contextmanager
    def _get_connection(self, create: bool = False) -> Iterator[sqlite3.Connection]:
        """Get a database connection.

        Args:
            create: Whether to create database if not exists

        Yields:
            SQLite connection

        Raises:
            StoreNotInitializedError: If database doesn't exist and create=False
        """
        db_path = self.get_db_path()

        if not create and not db_path.exists():
            raise StoreNotInitializedError(f"Entity database not found: {db_path}")

        db_path.parent.mkdir(parents=True, exist_ok=True)

        conn = sqlite3.connect(
            str(db_path),
            timeout=self.busy_timeout_ms / 1000.0,
            isolation_level=None,  # Autocommit by default, explicit transactions
        )
        conn.row_factory = sqlite3.Row

        try:
            conn.execute(f"PRAGMA busy_timeout = {self.busy_timeout_ms}")
            conn.execute(f"PRAGMA cache_size = {self.cache_size_pages}")
            if self.wal_mode:
                conn.execute("PRAGMA journal_mode = WAL")
            conn.execute("PRAGMA synchronous = NORMAL")
            conn.execute("PRAGMA foreign_keys = ON")

            yield conn
        finally:
            conn.close()

    @contextmanager
    def _write(self) -> Iterator[sqlite3.Connection]:
        """Open a connection inside a write transaction."""
        with self._get_connection() as conn:
            conn.execute("BEGIN IMMEDIATE")
            try:
                yield conn
                conn.execute("COMMIT")
            except Exception:
                conn.execute("ROLLBACK")
                raise

    def _create_schema(self, conn: sqlite3.Connection) -> None:
        """Create database schema."""
        conn.executescript("""
            CREATE TABLE IF NOT EXISTS schema_version (
                version INTEGER PRIMARY KEY,
                applied_at INTEGER NOT NULL
            );

            CREATE TABLE IF NOT EXISTS entities (
                id TEXT PRIMARY KEY,
                app_id TEXT NOT NULL,
                name TEXT NOT NULL,
                display_name TEXT NOT NULL,
                plural_display_name TEXT NOT NULL,
                description TEXT NOT NULL DEFAULT '',
                created_at INTEGER NOT NULL,
                updated_at INTEGER NOT NULL,
                deleted_at INTEGER,
                locked_by_user_id TEXT,
                locked_at INTEGER,
                UNIQUE (app_id, name)
            );

            CREATE INDEX IF NOT EXISTS idx_entities_app ON entities(app_id, deleted_at);

            CREATE TABLE IF NOT EXISTS entity_versions (
                id TEXT PRIMARY KEY,
                entity_id TEXT NOT NULL REFERENCES entities(id),
                version_number INTEGER NOT NULL,
                commit_id TEXT,
                name TEXT NOT NULL,
                display_name TEXT NOT NULL,
                plural_display_name TEXT NOT NULL,
                description TEXT NOT NULL DEFAULT '',
                deleted INTEGER NOT NULL DEFAULT 0,
                created_at INTEGER NOT NULL,
                updated_at INTEGER NOT NULL,
                UNIQUE (entity_id, version_number)
            );

            CREATE UNIQUE INDEX IF NOT EXISTS idx_versions_commit
                ON entity_versions(entity_id, commit_id) WHERE commit_id IS NOT NULL;

            CREATE TABLE IF NOT EXISTS entity_fields (
                id TEXT PRIMARY KEY,
                permanent_id TEXT NOT NULL,
                entity_version_id TEXT NOT NULL
                    REFERENCES entity_versions(id) ON DELETE CASCADE,
                name TEXT NOT NULL,
                display_name TEXT NOT NULL,
                data_type TEXT NOT NULL,
                properties_json TEXT NOT NULL DEFAULT '{}',
                required INTEGER NOT NULL DEFAULT 0,
                searchable INTEGER NOT NULL DEFAULT 0,
                description TEXT NOT NULL DEFAULT '',
                position INTEGER NOT NULL DEFAULT 0,
                created_at INTEGER NOT NULL,
                updated_at INTEGER NOT NULL,
                UNIQUE (entity_version_id, permanent_id)
            );

            CREATE INDEX IF NOT EXISTS idx_fields_version_name
                ON entity_fields(entity_version_id, name);

            CREATE TABLE IF NOT EXISTS entity_permissions (
                id TEXT PRIMARY KEY,
                entity_version_id TEXT NOT NULL
                    REFERENCES entity_versions(id) ON DELETE CASCADE,
                action TEXT NOT NULL,
                type TEXT NOT NULL,
                UNIQUE (entity_version_id, action)
            );

            CREATE TABLE IF NOT EXISTS entity_permission_roles (
                permission_id TEXT NOT NULL
                    REFERENCES entity_permissions(id) ON DELETE CASCADE,
                app_role_id TEXT NOT NULL,
                PRIMARY KEY (permission_id, app_role_id)
            );

            CREATE TABLE IF NOT EXISTS entity_permission_fields (
                id TEXT PRIMARY KEY,
                permission_id TEXT NOT NULL
                    REFERENCES entity_permissions(id) ON DELETE CASCADE,
                field_id TEXT NOT NULL
                    REFERENCES entity_fields(id) ON DELETE CASCADE,
                field_permanent_id TEXT NOT NULL,
                entity_version_id TEXT NOT NULL,
                UNIQUE (permission_id, field_permanent_id)
            );

            CREATE TABLE IF NOT EXISTS entity_permission_field_roles (
                permission_field_id TEXT NOT NULL
                    REFERENCES entity_permission_fields(id) ON DELETE CASCADE,
                app_role_id TEXT NOT NULL,
                PRIMARY KEY (permission_field_id, app_role_id)
            );

            INSERT OR IGNORE INTO schema_version (version, applied_at)
            VALUES (1, strftime('%s', 'now') * 1000);
        """)

    async def initialize(self) -> None:
        """Create the database file and schema if they don't exist."""
        async with self._lock:
            with self._get_connection(create=True) as conn:
                self._create_schema(conn)
                logger.info(f"Initialized entity database: {self.get_db_path()}")

    # ------------------------------------------------------------------
    # Row mappers
    # ------------------------------------------------------------------

    @staticmethod
    def _row_to_entity(row: sqlite3.Row) -> Entity:
        return Entity(
            id=row["id"],
            app_id=row["app_id"],
            name=row["name"],
            display_name=row["display_name"],
            plural_display_name=row["plural_display_name"],
            description=row["description"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
            deleted_at=row["deleted_at"],
            locked_by_user_id=row["locked_by_user_id"],
            locked_at=row["locked_at"],
        )

    @staticmethod
    def _row_to_version(row: sqlite3.Row) -> EntityVersion:
        return EntityVersion(
            id=row["id"],
            entity_id=row["entity_id"],
            version_number=row["version_number"],
            commit_id=row["commit_id"],
            name=row["name"],
            display_name=row["display_name"],
            plural_display_name=row["plural_display_name"],
            description=row["description"],
            deleted=bool(row["deleted"]),
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    @staticmethod
    def _row_to_field(row: sqlite3.Row) -> EntityField:
        return EntityField(
            id=row["id"],
            permanent_id=row["permanent_id"],
            entity_version_id=row["entity_version_id"],
            name=row["name"],
            display_name=row["display_name"],
            data_type=DataType.from_str(row["data_type"]),
            properties=json.loads(row["properties_json"]),
            required=bool(row["required"]),
            searchable=bool(row["searchable"]),
            description=row["description"],
            position=row["position"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    # ------------------------------------------------------------------
    # Content loading and writing (shared by queries and snapshots)
    # ------------------------------------------------------------------

    def _load_fields(
        self, conn: sqlite3.Connection, version_ids: list[str]
    ) -> dict[str, list[EntityField]]:
        result: dict[str, list[EntityField]] = {vid: [] for vid in version_ids}
        if not version_ids:
            return result
        marks = ", ".join("?" for _ in version_ids)
        cursor = conn.execute(
            f"""
            SELECT * FROM entity_fields
            WHERE entity_version_id IN ({marks})
            ORDER BY position, created_at, rowid
            """,
            version_ids,
        )
        for row in cursor.fetchall():
            result[row["entity_version_id"]].append(self._row_to_field(row))
        return result

    def _load_roles(
        self, conn: sqlite3.Connection, table: str, key: str, ids: list[str]
    ) -> dict[str, list[str]]:
        roles: dict[str, list[str]] = {i: [] for i in ids}
        if not ids:
            return roles
        marks = ", ".join("?" for _ in ids)
        cursor = conn.execute(
            f"SELECT {key}, app_role_id FROM {table} WHERE {key} IN ({marks}) "
            "ORDER BY app_role_id",
            ids,
        )
        for row in cursor.fetchall():
            roles[row[key]].append(row["app_role_id"])
        return roles

    def _load_permission_fields(
        self, conn: sqlite3.Connection, where: str, params: list[Any]
    ) -> list[EntityPermissionField]:
        cursor = conn.execute(
            f"""
            SELECT pf.* FROM entity_permission_fields pf
            JOIN entity_permissions p ON p.id = pf.permission_id
            JOIN entity_versions v ON v.id = p.entity_version_id
            WHERE {where}
            ORDER BY pf.rowid
            """,
            params,
        )
        rows = cursor.fetchall()
        ids = [row["id"] for row in rows]
        roles = self._load_roles(
            conn, "entity_permission_field_roles", "permission_field_id", ids
        )
        field_ids = [row["field_id"] for row in rows]
        fields: dict[str, EntityField] = {}
        if field_ids:
            marks = ", ".join("?" for _ in field_ids)
            for frow in conn.execute(
                f"SELECT * FROM entity_fields WHERE id IN ({marks})", field_ids
            ).fetchall():
                fields[frow["id"]] = self._row_to_field(frow)

        return [
            EntityPermissionField(
                id=row["id"],
                permission_id=row["permission_id"],
                field_id=row["field_id"],
                field_permanent_id=row["field_permanent_id"],
                entity_version_id=row["entity_version_id"],
                role_ids=roles[row["id"]],
                field=fields.get(row["field_id"]),
            )
            for row in rows
        ]

    def _load_permissions(
        self, conn: sqlite3.Connection, where: str, params: list[Any]
    ) -> list[EntityPermission]:
        cursor = conn.execute(
            f"""
            SELECT p.* FROM entity_permissions p
            JOIN entity_versions v ON v.id = p.entity_version_id
            WHERE {where}
            ORDER BY p.rowid
            """,
            params,
        )
        rows = cursor.fetchall()
        ids = [row["id"] for row in rows]
        roles = self._load_roles(conn, "entity_permission_roles", "permission_id", ids)

        by_permission: dict[str, list[EntityPermissionField]] = {i: [] for i in ids}
        if ids:
            marks = ", ".join("?" for _ in ids)
            for pf in self._load_permission_fields(conn, f"pf.permission_id IN ({marks})", ids):
                by_permission[pf.permission_id].append(pf)

        return [
            EntityPermission(
                id=row["id"],
                entity_version_id=row["entity_version_id"],
                action=EntityAction(row["action"]),
                type=PermissionType(row["type"]),
                role_ids=roles[row["id"]],
                permission_fields=by_permission[row["id"]],
            )
            for row in rows
        ]

    def _insert_version_row(self, conn: sqlite3.Connection, version: EntityVersion) -> None:
        conn.execute(
            """
            INSERT INTO entity_versions (id, entity_id, version_number, commit_id, name,
                                         display_name, plural_display_name, description,
                                         deleted, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                version.id,
                version.entity_id,
                version.version_number,
                version.commit_id,
                version.name,
                version.display_name,
                version.plural_display_name,
                version.description,
                int(version.deleted),
                version.created_at,
                version.updated_at,
            ),
        )

    def _insert_fields(self, conn: sqlite3.Connection, fields: Iterable[EntityField]) -> None:
        conn.executemany(
            """
            INSERT INTO entity_fields (id, permanent_id, entity_version_id, name, display_name,
                                       data_type, properties_json, required, searchable,
                                       description, position, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            [
                (
                    f.id,
                    f.permanent_id,
                    f.entity_version_id,
                    f.name,
                    f.display_name,
                    f.data_type.value,
                    json.dumps(f.properties or {}),
                    int(f.required),
                    int(f.searchable),
                    f.description,
                    f.position,
                    f.created_at,
                    f.updated_at,
                )
                for f in fields
            ],
        )

    def _insert_permission_fields(
        self, conn: sqlite3.Connection, permission_fields: Iterable[EntityPermissionField]
    ) -> None:
        for pf in permission_fields:
            conn.execute(
                """
                INSERT INTO entity_permission_fields (id, permission_id, field_id,
                                                      field_permanent_id, entity_version_id)
                VALUES (?, ?, ?, ?, ?)
                """,
                (pf.id, pf.permission_id, pf.field_id, pf.field_permanent_id, pf.entity_version_id),
            )
            conn.executemany(
                """
                INSERT INTO entity_permission_field_roles (permission_field_id, app_role_id)
                VALUES (?, ?)
                """,
                [(pf.id, role_id) for role_id in pf.role_ids],
            )

    def _insert_permissions(
        self, conn: sqlite3.Connection, permissions: Iterable[EntityPermission]
    ) -> None:
        for permission in permissions:
            conn.execute(
                """
                INSERT INTO entity_permissions (id, entity_version_id, action, type)
                VALUES (?, ?, ?, ?)
                """,
                (
                    permission.id,
                    permission.entity_version_id,
                    permission.action.value,
                    permission.type.value,
                ),
            )
            conn.executemany(
                "INSERT INTO entity_permission_roles (permission_id, app_role_id) VALUES (?, ?)",
                [(permission.id, role_id) for role_id in permission.role_ids],
            )
            self._insert_permission_fields(conn, permission.permission_fields)

    def _update_entity_row(
        self, conn: sqlite3.Connection, entity_id: str, changes: dict[str, Any], now: int
    ) -> None:
        clause, params = _set_clause(changes, ENTITY_COLUMNS)
        clause = f"{clause}, updated_at = ?" if clause else "updated_at = ?"
        conn.execute(
            f"UPDATE entities SET {clause} WHERE id = ?",
            [*params, now, entity_id],
        )

    def _update_version_row(
        self, conn: sqlite3.Connection, where: str, where_params: list[Any],
        changes: dict[str, Any], now: int,
    ) -> None:
        clause, params = _set_clause(changes, VERSION_COLUMNS)
        clause = f"{clause}, updated_at = ?" if clause else "updated_at = ?"
        conn.execute(
            f"UPDATE entity_versions SET {clause} WHERE {where}",
            [*params, now, *where_params],
        )

    # ------------------------------------------------------------------
    # Entities
    # ------------------------------------------------------------------

    async def find_entities(
        self,
        *,
        entity_id: str | None = None,
        app_id: str | None = None,
        name: str | None = None,
        include_deleted: bool = False,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[Entity]:
        """Query entities.

        Args:
            entity_id: Optional filter by id
            app_id: Optional filter by owning application
            name: Optional filter by exact name
            include_deleted: Whether to return soft-deleted entities
            limit: Maximum entities to return
            offset: Pagination offset

        Returns:
            List of entities ordered by creation time
        """
        query = "SELECT * FROM entities WHERE 1 = 1"
        params: list[Any] = []
        if entity_id is not None:
            query += " AND id = ?"
            params.append(entity_id)
        if app_id is not None:
            query += " AND app_id = ?"
            params.append(app_id)
        if name is not None:
            query += " AND name = ?"
            params.append(name)
        if not include_deleted:
            query += " AND deleted_at IS NULL"
        query += " ORDER BY created_at, rowid LIMIT ? OFFSET ?"
        params.extend([-1 if limit is None else limit, offset])

        with self._get_connection() as conn:
            cursor = conn.execute(query, params)
            return [self._row_to_entity(row) for row in cursor.fetchall()]

    async def create_entity(self, entity: Entity, current_version: EntityVersion) -> Entity:
        """Create an entity together with its current version.

        The version's fields and permissions are written in the same
        transaction.

        Args:
            entity: Entity to insert
            current_version: Current version carrying the seeded content

        Returns:
            Created Entity object
        """
        with self._write() as conn:
            conn.execute(
                """
                INSERT INTO entities (id, app_id, name, display_name, plural_display_name,
                                      description, created_at, updated_at, deleted_at,
                                      locked_by_user_id, locked_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    entity.id,
                    entity.app_id,
                    entity.name,
                    entity.display_name,
                    entity.plural_display_name,
                    entity.description,
                    entity.created_at,
                    entity.updated_at,
                    entity.deleted_at,
                    entity.locked_by_user_id,
                    entity.locked_at,
                ),
            )
            self._insert_version_row(conn, current_version)
            self._insert_fields(conn, current_version.fields)
            self._insert_permissions(conn, current_version.permissions)

        logger.debug(
            "Created entity",
            extra={
                "entity_id": entity.id,
                "app_id": entity.app_id,
                "fields": len(current_version.fields),
            },
        )
        return entity

    async def update_entity(
        self,
        entity_id: str,
        changes: dict[str, Any],
        current_version_changes: dict[str, Any] | None = None,
    ) -> Entity | None:
        """Update an entity and optionally its current version.

        Args:
            entity_id: Entity identifier
            changes: Entity attributes to set
            current_version_changes: Current version attributes to set

        Returns:
            Updated Entity or None if not found
        """
        now = _now_ms()
        with self._write() as conn:
            row = conn.execute("SELECT id FROM entities WHERE id = ?", (entity_id,)).fetchone()
            if not row:
                return None

            self._update_entity_row(conn, entity_id, changes, now)
            if current_version_changes:
                self._update_version_row(
                    conn,
                    "entity_id = ? AND version_number = ?",
                    [entity_id, CURRENT_VERSION_NUMBER],
                    current_version_changes,
                    now,
                )

            row = conn.execute("SELECT * FROM entities WHERE id = ?", (entity_id,)).fetchone()
            return self._row_to_entity(row)

    # ------------------------------------------------------------------
    # Versions
    # ------------------------------------------------------------------

    async def find_versions(
        self,
        *,
        entity_id: str | None = None,
        version_ids: list[str] | None = None,
        version_number: int | None = None,
        include_deleted: bool = True,
        include_entity: bool = False,
        include_fields: bool = False,
        include_permissions: bool = False,
        descending: bool = False,
        limit: int | None = None,
    ) -> list[EntityVersion]:
        """Query entity versions.

        Args:
            entity_id: Optional filter by entity
            version_ids: Optional filter by version ids
            version_number: Optional filter by version number
            include_deleted: Whether to return versions flagged deleted
            include_entity: Attach the owning entity
            include_fields: Attach ordered fields
            include_permissions: Attach permissions with roles and permission fields
            descending: Order by version number descending
            limit: Maximum versions to return

        Returns:
            List of versions ordered by version number
        """
        query = "SELECT * FROM entity_versions WHERE 1 = 1"
        params: list[Any] = []
        if entity_id is not None:
            query += " AND entity_id = ?"
            params.append(entity_id)
        if version_ids is not None:
            if not version_ids:
                return []
            query += f" AND id IN ({', '.join('?' for _ in version_ids)})"
            params.extend(version_ids)
        if version_number is not None:
            query += " AND version_number = ?"
            params.append(version_number)
        if not include_deleted:
            query += " AND deleted = 0"
        order = "DESC" if descending else "ASC"
        query += f" ORDER BY entity_id, version_number {order} LIMIT ?"
        params.append(-1 if limit is None else limit)

        with self._get_connection() as conn:
            versions = [self._row_to_version(row) for row in conn.execute(query, params)]
            self._attach_content(
                conn, versions, include_entity, include_fields, include_permissions
            )
            return versions

    def _attach_content(
        self,
        conn: sqlite3.Connection,
        versions: list[EntityVersion],
        include_entity: bool,
        include_fields: bool,
        include_permissions: bool,
    ) -> None:
        ids = [v.id for v in versions]
        if include_fields:
            fields = self._load_fields(conn, ids)
            for version in versions:
                version.fields = fields[version.id]
        if include_permissions and ids:
            marks = ", ".join("?" for _ in ids)
            by_version: dict[str, list[EntityPermission]] = {i: [] for i in ids}
            for permission in self._load_permissions(conn, f"v.id IN ({marks})", ids):
                by_version[permission.entity_version_id].append(permission)
            for version in versions:
                version.permissions = by_version[version.id]
        if include_entity and ids:
            entity_ids = sorted({v.entity_id for v in versions})
            marks = ", ".join("?" for _ in entity_ids)
            entities = {
                row["id"]: self._row_to_entity(row)
                for row in conn.execute(
                    f"SELECT * FROM entities WHERE id IN ({marks})", entity_ids
                )
            }
            for version in versions:
                version.entity = entities.get(version.entity_id)

    async def get_version(self, version_id: str, include_content: bool = False) -> EntityVersion | None:
        """Get a version by id.

        Args:
            version_id: Version identifier
            include_content: Attach fields and permissions (with roles,
                permission fields and their target fields)

        Returns:
            EntityVersion or None if not found
        """
        with self._get_connection() as conn:
            row = conn.execute(
                "SELECT * FROM entity_versions WHERE id = ?", (version_id,)
            ).fetchone()
            if not row:
                return None
            version = self._row_to_version(row)
            if include_content:
                self._attach_content(conn, [version], False, True, True)
            return version

    async def get_current_version_id(self, entity_id: str) -> str | None:
        """Resolve the id of an entity's current version."""
        with self._get_connection() as conn:
            row = conn.execute(
                "SELECT id FROM entity_versions WHERE entity_id = ? AND version_number = ?",
                (entity_id, CURRENT_VERSION_NUMBER),
            ).fetchone()
            return row["id"] if row else None

    async def insert_version_snapshot(
        self,
        version: EntityVersion,
        entity_changes: dict[str, Any],
        current_version_changes: dict[str, Any] | None = None,
    ) -> EntityVersion:
        """Insert a committed version together with its copied content.

        The version row, its fields and permissions, the entity update and
        the current version update are written in one transaction.

        Args:
            version: New version carrying its fields and permissions
            entity_changes: Entity attributes to set alongside
            current_version_changes: Current version attributes to set alongside

        Returns:
            The inserted version
        """
        now = _now_ms()
        with self._write() as conn:
            self._insert_version_row(conn, version)
            self._insert_fields(conn, version.fields)
            self._insert_permissions(conn, version.permissions)
            self._update_entity_row(conn, version.entity_id, entity_changes, now)
            if current_version_changes:
                self._update_version_row(
                    conn,
                    "entity_id = ? AND version_number = ?",
                    [version.entity_id, CURRENT_VERSION_NUMBER],
                    current_version_changes,
                    now,
                )

        logger.debug(
            "Inserted version snapshot",
            extra={
                "entity_id": version.entity_id,
                "version_number": version.version_number,
                "fields": len(version.fields),
                "permissions": len(version.permissions),
            },
        )
        return version

    async def replace_version_content(
        self,
        version_id: str,
        version_changes: dict[str, Any],
        fields: list[EntityField],
        permissions: list[EntityPermission],
        entity_changes: dict[str, Any],
    ) -> None:
        """Replace all fields and permissions of a version.

        Existing fields and permissions (and everything cascading from them)
        are deleted before the new content is written; all in one
        transaction.

        Args:
            version_id: Target version
            version_changes: Version attributes to set
            fields: New fields (already pointing at version_id)
            permissions: New permissions (already pointing at version_id)
            entity_changes: Attributes to set on the owning entity
        """
        now = _now_ms()
        with self._write() as conn:
            row = conn.execute(
                "SELECT entity_id FROM entity_versions WHERE id = ?", (version_id,)
            ).fetchone()
            if not row:
                raise ValueError(f"Entity version not found: {version_id}")

            conn.execute("DELETE FROM entity_fields WHERE entity_version_id = ?", (version_id,))
            conn.execute(
                "DELETE FROM entity_permissions WHERE entity_version_id = ?", (version_id,)
            )
            self._update_version_row(conn, "id = ?", [version_id], version_changes, now)
            self._insert_fields(conn, fields)
            self._insert_permissions(conn, permissions)
            self._update_entity_row(conn, row["entity_id"], entity_changes, now)

        logger.debug(
            "Replaced version content",
            extra={"version_id": version_id, "fields": len(fields)},
        )

    # ------------------------------------------------------------------
    # Fields
    # ------------------------------------------------------------------

    async def get_field(self, field_id: str, include_version: bool = False) -> EntityField | None:
        """Get a field by id, optionally with its owning version."""
        with self._get_connection() as conn:
            row = conn.execute("SELECT * FROM entity_fields WHERE id = ?", (field_id,)).fetchone()
            if not row:
                return None
            entity_field = self._row_to_field(row)
            if include_version:
                vrow = conn.execute(
                    "SELECT * FROM entity_versions WHERE id = ?", (entity_field.entity_version_id,)
                ).fetchone()
                entity_field.entity_version = self._row_to_version(vrow)
            return entity_field

    async def find_fields(
        self,
        *,
        entity_id: str,
        version_number: int = CURRENT_VERSION_NUMBER,
        names: list[str] | None = None,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[EntityField]:
        """Query fields of one entity version.

        Args:
            entity_id: Entity identifier
            version_number: Version to read (current by default)
            names: Optional filter by field names
            limit: Maximum fields to return
            offset: Pagination offset

        Returns:
            Ordered list of fields
        """
        query = """
            SELECT f.* FROM entity_fields f
            JOIN entity_versions v ON v.id = f.entity_version_id
            WHERE v.entity_id = ? AND v.version_number = ?
        """
        params: list[Any] = [entity_id, version_number]
        if names is not None:
            if not names:
                return []
            query += f" AND f.name IN ({', '.join('?' for _ in names)})"
            params.extend(names)
        query += " ORDER BY f.position, f.created_at, f.rowid LIMIT ? OFFSET ?"
        params.extend([-1 if limit is None else limit, offset])

        with self._get_connection() as conn:
            return [self._row_to_field(row) for row in conn.execute(query, params)]

    async def create_field(self, entity_field: EntityField) -> EntityField:
        """Insert a field at the end of its version.

        The field's position is assigned by the store.
        """
        with self._write() as conn:
            row = conn.execute(
                "SELECT COALESCE(MAX(position), 0) AS last FROM entity_fields "
                "WHERE entity_version_id = ?",
                (entity_field.entity_version_id,),
            ).fetchone()
            entity_field.position = row["last"] + 1
            self._insert_fields(conn, [entity_field])

        logger.debug(
            "Created field",
            extra={
                "field_id": entity_field.id,
                "permanent_id": entity_field.permanent_id,
                "entity_version_id": entity_field.entity_version_id,
            },
        )
        return entity_field

    async def update_field(self, field_id: str, changes: dict[str, Any]) -> EntityField | None:
        """Update a field.

        Args:
            field_id: Field identifier
            changes: Field attributes to set

        Returns:
            Updated EntityField or None if not found
        """
        clause, params = _set_clause(changes, FIELD_COLUMNS)
        clause = f"{clause}, updated_at = ?" if clause else "updated_at = ?"
        with self._write() as conn:
            cursor = conn.execute(
                f"UPDATE entity_fields SET {clause} WHERE id = ?",
                [*params, _now_ms(), field_id],
            )
            if cursor.rowcount == 0:
                return None
            row = conn.execute("SELECT * FROM entity_fields WHERE id = ?", (field_id,)).fetchone()
            return self._row_to_field(row)

    async def delete_field(self, field_id: str) -> EntityField | None:
        """Delete a field and the permission fields that reference it.

        Returns:
            The deleted EntityField or None if not found
        """
        with self._write() as conn:
            row = conn.execute("SELECT * FROM entity_fields WHERE id = ?", (field_id,)).fetchone()
            if not row:
                return None
            conn.execute("DELETE FROM entity_fields WHERE id = ?", (field_id,))
            return self._row_to_field(row)

    # ------------------------------------------------------------------
    # Permissions
    # ------------------------------------------------------------------

    async def find_permissions(
        self,
        *,
        entity_id: str,
        version_number: int = CURRENT_VERSION_NUMBER,
        action: EntityAction | None = None,
    ) -> list[EntityPermission]:
        """Query permissions of one entity version, with roles and permission fields."""
        where = "v.entity_id = ? AND v.version_number = ?"
        params: list[Any] = [entity_id, version_number]
        if action is not None:
            where += " AND p.action = ?"
            params.append(action.value)
        with self._get_connection() as conn:
            return self._load_permissions(conn, where, params)

    async def update_permission(
        self, permission_id: str, permission_type: PermissionType
    ) -> None:
        """Set the type of a permission."""
        with self._write() as conn:
            conn.execute(
                "UPDATE entity_permissions SET type = ? WHERE id = ?",
                (permission_type.value, permission_id),
            )

    async def update_permission_roles(
        self,
        permission_id: str,
        add_role_ids: Iterable[str] = (),
        delete_role_ids: Iterable[str] = (),
    ) -> None:
        """Grant and revoke roles on a permission.

        Revoking a role also removes it from the permission's field rules.
        """
        delete_role_ids = list(delete_role_ids)
        with self._write() as conn:
            conn.executemany(
                "DELETE FROM entity_permission_roles WHERE permission_id = ? AND app_role_id = ?",
                [(permission_id, role_id) for role_id in delete_role_ids],
            )
            conn.executemany(
                """
                DELETE FROM entity_permission_field_roles
                WHERE app_role_id = ? AND permission_field_id IN (
                    SELECT id FROM entity_permission_fields WHERE permission_id = ?
                )
                """,
                [(role_id, permission_id) for role_id in delete_role_ids],
            )
            conn.executemany(
                "INSERT OR IGNORE INTO entity_permission_roles (permission_id, app_role_id) "
                "VALUES (?, ?)",
                [(permission_id, role_id) for role_id in add_role_ids],
            )

    async def find_permission_fields(
        self,
        *,
        entity_id: str,
        version_number: int = CURRENT_VERSION_NUMBER,
        action: EntityAction | None = None,
        field_permanent_id: str | None = None,
    ) -> list[EntityPermissionField]:
        """Query permission fields of one entity version."""
        where = "v.entity_id = ? AND v.version_number = ?"
        params: list[Any] = [entity_id, version_number]
        if action is not None:
            where += " AND p.action = ?"
            params.append(action.value)
        if field_permanent_id is not None:
            where += " AND pf.field_permanent_id = ?"
            params.append(field_permanent_id)
        with self._get_connection() as conn:
            return self._load_permission_fields(conn, where, params)

    async def get_permission_field(
        self, permission_field_id: str, include_permission: bool = False
    ) -> EntityPermissionField | None:
        """Get a permission field with its roles and target field.

        Args:
            permission_field_id: Permission field identifier
            include_permission: Attach the parent permission and its version
        """
        with self._get_connection() as conn:
            found = self._load_permission_fields(conn, "pf.id = ?", [permission_field_id])
            if not found:
                return None
            permission_field = found[0]
            if include_permission:
                permissions = self._load_permissions(
                    conn, "p.id = ?", [permission_field.permission_id]
                )
                permission = permissions[0]
                vrow = conn.execute(
                    "SELECT * FROM entity_versions WHERE id = ?",
                    (permission.entity_version_id,),
                ).fetchone()
                permission.entity_version = self._row_to_version(vrow)
                permission_field.permission = permission
            return permission_field

    async def create_permission_field(
        self, permission_field: EntityPermissionField
    ) -> EntityPermissionField:
        """Insert a permission field with its roles."""
        with self._write() as conn:
            self._insert_permission_fields(conn, [permission_field])
        return permission_field

    async def delete_permission_field(
        self, permission_field_id: str
    ) -> EntityPermissionField | None:
        """Delete a permission field and its roles.

        Returns:
            The deleted permission field or None if not found
        """
        with self._write() as conn:
            found = self._load_permission_fields(conn, "pf.id = ?", [permission_field_id])
            if not found:
                return None
            conn.execute(
                "DELETE FROM entity_permission_fields WHERE id = ?", (permission_field_id,)
            )
            return found[0]

    async def update_permission_field_roles(
        self,
        permission_field_id: str,
        add_role_ids: Iterable[str] = (),
        delete_role_ids: Iterable[str] = (),
    ) -> None:
        """Grant and revoke roles on a permission field."""
        with self._write() as conn:
            conn.executemany(
                "DELETE FROM entity_permission_field_roles "
                "WHERE permission_field_id = ? AND app_role_id = ?",
                [(permission_field_id, role_id) for role_id in delete_role_ids],
            )
            conn.executemany(
                "INSERT OR IGNORE INTO entity_permission_field_roles "
                "(permission_field_id, app_role_id) VALUES (?, ?)",
                [(permission_field_id, role_id) for role_id in add_role_ids],
            )
