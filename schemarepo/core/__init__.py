"""Core constants, errors and logging."""

from schemarepo.core.constants import JoinLogic, JoinType, Operator
from schemarepo.core.exceptions import (
    ConfigError,
    DatabaseConnectionError,
    InvalidConditionError,
    MappingError,
    NotConnectedError,
    NotFoundError,
    QueryError,
    RepositoryError,
    UnknownSchemaError,
    ValidationError,
)
from schemarepo.core.logging import configure_logging, get_logger

__all__ = [
    "Operator",
    "JoinLogic",
    "JoinType",
    "RepositoryError",
    "ConfigError",
    "NotConnectedError",
    "UnknownSchemaError",
    "DatabaseConnectionError",
    "ValidationError",
    "MappingError",
    "QueryError",
    "NotFoundError",
    "InvalidConditionError",
    "configure_logging",
    "get_logger",
]
