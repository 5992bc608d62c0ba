"""
Bootstrap helpers for embedding the Entity Server.

Wires configuration, logging, the SQLite store, the field validator and the
service facade together.

Example:
    >>> config = EntityServerConfig.from_env()
    >>> setup_logging(config)
    >>> service = await create_entity_service(config)
"""

from __future__ import annotations

import logging

import json_log_formatter

from .config import EntityServerConfig
from .schema.properties import FieldPropertiesValidator
from .service import EntityService
from .store.structured_store import EntityStore
from .versioning.manager import EntityVersionManager

logger = logging.getLogger(__name__)


def setup_logging(config: EntityServerConfig) -> None:
    """Configure logging based on configuration.

    Args:
        config: Entity server configuration
    """
    level = getattr(logging, config.observability.log_level.upper(), logging.INFO)

    if config.observability.log_format == "json":
        formatter: logging.Formatter = json_log_formatter.JSONFormatter()
    else:
        formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    handler = logging.StreamHandler()
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers = [handler]

    # Reduce noise from libraries
    logging.getLogger("jsonschema").setLevel(logging.WARNING)


def create_store(config: EntityServerConfig) -> EntityStore:
    """Build the structured store from the storage configuration."""
    return EntityStore(
        data_dir=config.storage.data_dir,
        db_filename=config.storage.db_filename,
        wal_mode=config.storage.wal_mode,
        busy_timeout_ms=config.storage.busy_timeout_ms,
        cache_size_pages=config.storage.cache_size_pages,
    )


async def create_entity_service(config: EntityServerConfig | None = None) -> EntityService:
    """Create an initialized EntityService.

    Args:
        config: Configuration (loaded from environment if None)

    Returns:
        EntityService backed by an initialized store
    """
    if config is None:
        config = EntityServerConfig.from_env()
    config.log_config()

    store = create_store(config)
    await store.initialize()

    service = EntityService(
        store,
        validator=FieldPropertiesValidator(),
        versions=EntityVersionManager(store),
    )
    logger.info("Entity service ready", extra={"db_path": str(store.get_db_path())})
    return service
