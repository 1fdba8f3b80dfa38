"""
schemarepo: multi-schema data access with DTO mapping.

Usage:
    from schemarepo import ConnectionParams, ConnectionRegistry, SQLQuery, get_crud_service

    registry = ConnectionRegistry.from_settings()
    registry.connect(ConnectionParams.from_settings(), ["s1", "s2"])
"""

from schemarepo.database import ConnectionParams, ConnectionRegistry, PoolSettings
from schemarepo.models import Base, BaseDTO, BaseEntity
from schemarepo.repositories import ConditionBuilder, QueryResult, SQLQuery
from schemarepo.services import CrudService, get_crud_service

__version__ = "0.1.0"

__all__ = [
    "ConnectionParams",
    "ConnectionRegistry",
    "PoolSettings",
    "Base",
    "BaseDTO",
    "BaseEntity",
    "ConditionBuilder",
    "QueryResult",
    "SQLQuery",
    "CrudService",
    "get_crud_service",
]
