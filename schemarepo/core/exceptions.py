"""
Repository error hierarchy.

Every error raised by this package derives from ``RepositoryError`` so callers
can catch the whole family at once. Driver exceptions are always chained
(``raise ... from exc``) so the original cause stays available.
"""

from typing import Iterable, Optional


class RepositoryError(Exception):
    """Base class for all data-access errors."""


class ConfigError(RepositoryError):
    """Invalid registry configuration (e.g. an empty schema list)."""


class NotConnectedError(RepositoryError):
    """The registry has no live connection."""

    def __init__(self, message: str = "not connected"):
        super().__init__(message)


class UnknownSchemaError(RepositoryError, LookupError):
    """The requested schema has not been registered."""

    def __init__(self, schema_name: str):
        self.schema_name = schema_name
        super().__init__(f"schema {schema_name} not connected")


class DatabaseConnectionError(RepositoryError):
    """Driver-level failure while opening, pinging or closing a schema handle."""

    def __init__(self, message: str, schema_name: Optional[str] = None):
        self.schema_name = schema_name
        super().__init__(message)


class ValidationError(RepositoryError, ValueError):
    """
    A DTO violated one of its declared constraints.

    Attributes:
        errors: Structured error list as reported by the validator
    """

    def __init__(self, message: str, errors: Optional[Iterable[dict]] = None):
        self.errors = list(errors or [])
        super().__init__(message)


class MappingError(RepositoryError):
    """Structural copy between an entity and a DTO failed."""


class QueryError(RepositoryError):
    """
    Query execution failed.

    Attributes:
        count: Total row count computed before the failure (0 if none).
               Paged queries report the successful count step here when
               the subsequent fetch fails.
    """

    def __init__(self, message: str, count: int = 0):
        self.count = count
        super().__init__(message)


class NotFoundError(QueryError, LookupError):
    """No row matched the requested identifier or filter."""


class InvalidConditionError(RepositoryError, ValueError):
    """A predicate used an operator, join keyword or identifier outside the allowed set."""
