"""Database package."""

from schemarepo.database.registry import ConnectionRegistry, connect_from_settings
from schemarepo.database.session import (
    ConnectionParams,
    ConnectionStats,
    PoolSettings,
    SchemaHandle,
    create_db_engine,
    open_schema_handle,
)

__all__ = [
    "ConnectionRegistry",
    "connect_from_settings",
    "ConnectionParams",
    "ConnectionStats",
    "PoolSettings",
    "SchemaHandle",
    "create_db_engine",
    "open_schema_handle",
]
