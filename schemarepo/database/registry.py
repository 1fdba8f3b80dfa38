"""
Connection Registry
===================

Owns the mapping from schema name to open ``SchemaHandle`` and the global
connected/disconnected state.

There is no module-level registry: the application builds one at its
composition point and passes it to every query and CRUD component.

Policies:
- ``connect`` is all-or-nothing. If any schema fails to open, the handles
  opened by that call are disposed and the registry is left as it was.
- ``close`` disposes every handle even when one of them fails, always ends
  disconnected, then reports the failures.
- A failed ``ping`` marks the whole registry disconnected, not just the
  pinged schema. ``close`` still tears the handles down afterwards.
"""

import re
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from sqlalchemy.exc import SQLAlchemyError

from schemarepo.config import Settings, get_settings
from schemarepo.core.exceptions import (
    ConfigError,
    DatabaseConnectionError,
    NotConnectedError,
    QueryError,
    UnknownSchemaError,
)
from schemarepo.core.logging import get_logger
from schemarepo.database.locks import ReadWriteLock
from schemarepo.database.session import (
    ConnectionParams,
    ConnectionStats,
    PoolSettings,
    SchemaHandle,
    open_schema_handle,
)

logger = get_logger(__name__)

_SCHEMA_NAME = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")

HandleFactory = Callable[[ConnectionParams, str, Optional[PoolSettings]], SchemaHandle]


class ConnectionRegistry:
    """
    Thread-safe registry of schema handles sharing one physical database.

    Attributes:
        connected: True once ``connect`` succeeded, until ``close`` or a failed ``ping``
        default_schema: First schema of the last successful ``connect`` ("" when closed)
        schema_names: Registered schema names, in registration order

    Example:
        registry = ConnectionRegistry()
        registry.connect(ConnectionParams.from_settings(), ["s1", "s2"])
        registry.migrate("s1", Customer)

        registry.default_schema   # "s1"
        registry.stats("s2").open # pool counters of s2

        registry.close()
    """

    def __init__(
        self,
        pool: Optional[PoolSettings] = None,
        handle_factory: HandleFactory = open_schema_handle,
    ):
        self._lock = ReadWriteLock()
        self._schemas: Dict[str, SchemaHandle] = {}
        self._connected = False
        self._default_schema = ""
        self._pool = pool
        self._handle_factory = handle_factory

    @classmethod
    def from_settings(cls, current: Optional[Settings] = None) -> "ConnectionRegistry":
        """Registry whose pools follow the configured limits."""
        return cls(pool=PoolSettings.from_settings(current))

    def __repr__(self) -> str:
        return (
            f"<ConnectionRegistry(connected={self.connected}, "
            f"schemas={list(self.schema_names)}, default={self.default_schema!r})>"
        )

    # ========================================
    # State Accessors
    # ========================================

    @property
    def connected(self) -> bool:
        with self._lock.read():
            return self._connected

    @property
    def default_schema(self) -> str:
        with self._lock.read():
            return self._default_schema

    @property
    def schema_names(self) -> Tuple[str, ...]:
        with self._lock.read():
            return tuple(self._schemas)

    # ========================================
    # Lifecycle
    # ========================================

    def connect(self, params: ConnectionParams, schema_names: Sequence[str]) -> None:
        """
        Open one handle per schema and mark the registry connected.

        Args:
            params: Host parameters shared by every schema
            schema_names: Ordered, non-empty schema names; the first becomes the default

        Raises:
            ConfigError: If no schema is provided or a name is not an identifier
            DatabaseConnectionError: If any schema cannot be opened (nothing is registered)
        """
        names = list(schema_names)
        with self._lock.write():
            if not names:
                raise ConfigError("no schema provided")
            for name in names:
                if not isinstance(name, str) or not _SCHEMA_NAME.match(name):
                    raise ConfigError(f"invalid schema name: {name!r}")
            if len(set(names)) != len(names):
                raise ConfigError(f"duplicate schema names: {names}")

            opened: Dict[str, SchemaHandle] = {}
            for name in names:
                try:
                    opened[name] = self._handle_factory(params, name, self._pool)
                except Exception as exc:
                    self._dispose_quietly(opened.values())
                    logger.error("schema_connect_failed", schema=name, error=str(exc))
                    raise DatabaseConnectionError(
                        f"failed to connect to database for schema {name}: {exc}",
                        schema_name=name,
                    ) from exc

            replaced = [self._schemas[name] for name in opened if name in self._schemas]
            self._schemas.update(opened)
            self._default_schema = names[0]
            self._connected = True
            self._dispose_quietly(replaced)

        logger.info("registry_connected", schemas=names, default_schema=names[0])

    def close(self) -> None:
        """
        Dispose every handle and reset the registry.

        Raises:
            NotConnectedError: If nothing is registered
            DatabaseConnectionError: If one or more handles failed to close
                (the registry is reset regardless)
        """
        with self._lock.write():
            if not self._schemas:
                raise NotConnectedError()

            failures: List[Tuple[str, Exception]] = []
            for name, handle in self._schemas.items():
                try:
                    handle.dispose()
                except Exception as exc:
                    logger.error("schema_close_failed", schema=name, error=str(exc))
                    failures.append((name, exc))

            closed = list(self._schemas)
            self._schemas = {}
            self._connected = False
            self._default_schema = ""

        if failures:
            failed_names = ", ".join(name for name, _ in failures)
            raise DatabaseConnectionError(
                f"failed to close connection for schema(s) {failed_names}",
                schema_name=failures[0][0],
            ) from failures[0][1]

        logger.info("registry_closed", schemas=closed)

    def _dispose_quietly(self, handles: Iterable[SchemaHandle]) -> None:
        """Dispose handles that are being discarded, logging failures."""
        for handle in handles:
            try:
                handle.dispose()
            except Exception as exc:
                logger.warning("schema_dispose_failed", schema=handle.name, error=str(exc))

    # ========================================
    # Lookups
    # ========================================

    def resolve(self, schema_name: str = "") -> SchemaHandle:
        """
        Look up a handle ("" means the default schema).

        Raises:
            NotConnectedError: If the registry is down
            UnknownSchemaError: If the schema is not registered
        """
        with self._lock.read():
            if not self._connected:
                raise NotConnectedError()
            name = schema_name or self._default_schema
            handle = self._schemas.get(name)
            if handle is None:
                raise UnknownSchemaError(name)
            return handle

    def ping(self, schema_name: str = "") -> None:
        """
        Check that a schema's database is reachable.

        A failed liveness check marks the entire registry disconnected.

        Raises:
            NotConnectedError: If the registry is down
            UnknownSchemaError: If the schema is not registered
            DatabaseConnectionError: If the liveness check fails
        """
        handle = self.resolve(schema_name)
        try:
            handle.ping()
        except SQLAlchemyError as exc:
            with self._lock.write():
                self._connected = False
            logger.warning("schema_ping_failed", schema=handle.name, error=str(exc))
            raise DatabaseConnectionError(
                f"ping failed for schema {handle.name}: {exc}",
                schema_name=handle.name,
            ) from exc

    def stats(self, schema_name: str = "") -> ConnectionStats:
        """Pool counters of a schema's handle."""
        return self.resolve(schema_name).stats()

    # ========================================
    # Schema Management
    # ========================================

    def migrate(self, schema_name: str, *entities: type) -> None:
        """
        Ensure the schema and the given entities' tables exist.

        With no entities every table registered on ``Base.metadata`` is created.

        Raises:
            QueryError: If the DDL fails
        """
        handle = self.resolve(schema_name)
        try:
            handle.create_tables(entities)
        except SQLAlchemyError as exc:
            raise QueryError(f"failed to migrate schema {handle.name}: {exc}") from exc
        logger.info(
            "schema_migrated",
            schema=handle.name,
            tables=[entity.__tablename__ for entity in entities] or "all",
        )

    def drop_tables(self, schema_name: str, *entities: type) -> None:
        """Drop the given entities' tables (all registered tables by default)."""
        handle = self.resolve(schema_name)
        try:
            handle.drop_tables(entities)
        except SQLAlchemyError as exc:
            raise QueryError(f"failed to drop tables in schema {handle.name}: {exc}") from exc
        logger.info("schema_tables_dropped", schema=handle.name)


def connect_from_settings(
    registry: ConnectionRegistry,
    current: Optional[Settings] = None,
) -> ConnectionRegistry:
    """
    Connect a registry to every schema listed in the settings.

    Usage:
        registry = connect_from_settings(ConnectionRegistry.from_settings())
    """
    current = current or get_settings()
    registry.connect(ConnectionParams.from_settings(current), current.db_schemas)
    return registry
