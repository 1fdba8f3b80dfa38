"""
Database Session Management
============================

Handles per-schema engines, connection pools and session lifecycle.

One physical database is shared by several logical schemas. Each schema gets
its own engine (and therefore its own bounded pool) whose
``schema_translate_map`` sends every schema-less entity table to
``"<schema>.<table>"``.

SQLite is supported for local work and tests: each schema becomes an
attached database, so ``s1.customer`` and ``s2.customer`` are distinct
tables exactly as on PostgreSQL.
"""

import os
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Generator, Iterable, Optional

from pydantic import BaseModel, Field
from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import URL, Engine
from sqlalchemy.orm import Session, sessionmaker, with_loader_criteria
from sqlalchemy.pool import StaticPool
from sqlalchemy.schema import CreateSchema

from schemarepo.config import Settings, get_settings
from schemarepo.core.constants import UUID_EXTENSION_SQL
from schemarepo.models.base import SoftDeleteMixin, create_all_tables, drop_all_tables


# ========================================
# Connection Parameters
# ========================================

class ConnectionParams(BaseModel):
    """
    Host parameters shared by every schema of one physical database.

    Example:
        params = ConnectionParams(host="db", database="app", user="app", password="secret")
        params.url()  # postgresql+psycopg://app:***@db:5432/app?sslmode=disable

        ConnectionParams.sqlite()  # in-memory SQLite, one attached db per schema
    """

    driver: str = "postgresql+psycopg"
    host: Optional[str] = "localhost"
    port: Optional[int] = 5432
    database: Optional[str] = None
    sslmode: Optional[str] = "disable"
    user: Optional[str] = None
    password: Optional[str] = None

    @classmethod
    def from_settings(cls, current: Optional[Settings] = None) -> "ConnectionParams":
        current = current or get_settings()
        return cls(
            driver=current.db_driver,
            host=current.db_host,
            port=current.db_port,
            database=current.db_name,
            sslmode=current.db_sslmode,
            user=current.db_user,
            password=current.db_password or None,
        )

    @classmethod
    def sqlite(cls, path: Optional[str] = None) -> "ConnectionParams":
        """SQLite parameters; ``path=None`` keeps everything in memory."""
        return cls(driver="sqlite", host=None, port=None, database=path, sslmode=None)

    @property
    def backend(self) -> str:
        return self.driver.split("+", 1)[0]

    @property
    def is_sqlite(self) -> bool:
        return self.backend == "sqlite"

    def url(self) -> URL:
        """Build the SQLAlchemy URL for these parameters."""
        if self.is_sqlite:
            return URL.create(self.driver, database=self.database or None)
        query = {"sslmode": self.sslmode} if self.sslmode else {}
        return URL.create(
            self.driver,
            username=self.user,
            password=self.password,
            host=self.host,
            port=self.port,
            database=self.database,
            query=query,
        )


class PoolSettings(BaseModel):
    """Bounds enforced by each schema's connection pool."""

    pool_size: int = Field(default=10, ge=1)
    max_overflow: int = Field(default=90, ge=0)
    pool_recycle: int = Field(default=1800)
    pool_timeout: float = Field(default=30.0, gt=0.0)
    pool_pre_ping: bool = False
    echo: bool = False

    @classmethod
    def from_settings(cls, current: Optional[Settings] = None) -> "PoolSettings":
        current = current or get_settings()
        return cls(
            pool_size=current.db_pool_size,
            max_overflow=current.db_max_overflow,
            pool_recycle=current.db_pool_recycle,
            pool_timeout=current.db_pool_timeout,
            pool_pre_ping=current.db_pool_pre_ping,
            echo=current.db_echo,
        )

    @property
    def max_open(self) -> int:
        return self.pool_size + self.max_overflow


# ========================================
# Pool Statistics
# ========================================

@dataclass(frozen=True)
class ConnectionStats:
    """Snapshot of one schema's pool counters."""

    schema: str
    max_open: int
    max_idle: int
    open: int
    idle: int
    in_use: int
    overflow: int
    checkouts: int
    closed: int
    lifetime_closed: int
    invalidated: int


class PoolCounters:
    """Counts pool events for one engine; safe to update from any thread."""

    def __init__(self, pool_recycle: int = -1):
        self.pool_recycle = pool_recycle
        self.connects = 0
        self.checkouts = 0
        self.checkins = 0
        self.closed = 0
        self.lifetime_closed = 0
        self.invalidated = 0
        self._lock = threading.Lock()

    def attach(self, engine: Engine) -> "PoolCounters":
        event.listen(engine, "connect", self._on_connect)
        event.listen(engine, "checkout", self._on_checkout)
        event.listen(engine, "checkin", self._on_checkin)
        event.listen(engine, "close", self._on_close)
        event.listen(engine, "invalidate", self._on_invalidate)
        return self

    def _on_connect(self, dbapi_connection, connection_record):
        with self._lock:
            self.connects += 1

    def _on_checkout(self, dbapi_connection, connection_record, connection_proxy):
        with self._lock:
            self.checkouts += 1

    def _on_checkin(self, dbapi_connection, connection_record):
        with self._lock:
            self.checkins += 1

    def _on_close(self, dbapi_connection, connection_record):
        started = getattr(connection_record, "starttime", None)
        with self._lock:
            self.closed += 1
            if (
                self.pool_recycle > 0
                and started is not None
                and time.time() - started >= self.pool_recycle
            ):
                self.lifetime_closed += 1

    def _on_invalidate(self, dbapi_connection, connection_record, exception):
        with self._lock:
            self.invalidated += 1

    def snapshot(self, schema: str, pool: PoolSettings, static: bool) -> ConnectionStats:
        with self._lock:
            open_count = max(self.connects - self.closed, 0)
            in_use = max(self.checkouts - self.checkins, 0)
            max_idle = 1 if static else pool.pool_size
            return ConnectionStats(
                schema=schema,
                max_open=1 if static else pool.max_open,
                max_idle=max_idle,
                open=open_count,
                idle=max(open_count - in_use, 0),
                in_use=in_use,
                overflow=max(open_count - max_idle, 0),
                checkouts=self.checkouts,
                closed=self.closed,
                lifetime_closed=self.lifetime_closed,
                invalidated=self.invalidated,
            )


# ========================================
# Engine Factory
# ========================================

def _sqlite_attach_target(database: Optional[str], schema_name: str) -> str:
    """File (or ``:memory:``) backing the attached database of a schema."""
    if not database or database == ":memory:":
        return ":memory:"
    base, ext = os.path.splitext(database)
    return f"{base}_{schema_name}{ext or '.db'}"


def create_db_engine(
    params: ConnectionParams,
    schema_name: str,
    pool: Optional[PoolSettings] = None,
) -> Engine:
    """Create and configure the engine backing one schema."""
    pool = pool or PoolSettings()
    database_url = params.url()

    # SQLite-specific configuration
    if params.is_sqlite:
        attach_target = _sqlite_attach_target(params.database, schema_name)
        for path in (params.database, attach_target):
            if path and path != ":memory:":
                db_dir = os.path.dirname(path)
                if db_dir and not os.path.exists(db_dir):
                    os.makedirs(db_dir, exist_ok=True)

        engine = create_engine(
            database_url,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
            echo=pool.echo
        )

        # Every connection sees the schema as an attached database
        @event.listens_for(engine, "connect")
        def attach_schema(dbapi_conn, connection_record):
            cursor = dbapi_conn.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.execute(f"ATTACH DATABASE ? AS \"{schema_name}\"", (attach_target,))
            cursor.close()

    else:
        engine = create_engine(
            database_url,
            pool_size=pool.pool_size,
            max_overflow=pool.max_overflow,
            pool_recycle=pool.pool_recycle,
            pool_timeout=pool.pool_timeout,
            pool_pre_ping=pool.pool_pre_ping,
            echo=pool.echo
        )

    return engine


def _exclude_soft_deleted(execute_state) -> None:
    """Hide soft-deleted rows from ORM SELECTs unless ``include_deleted`` is set."""
    if (
        execute_state.is_select
        and not execute_state.is_column_load
        and not execute_state.is_relationship_load
        and not execute_state.execution_options.get("include_deleted", False)
    ):
        execute_state.statement = execute_state.statement.options(
            with_loader_criteria(
                SoftDeleteMixin,
                lambda cls: cls.deleted_at.is_(None),
                include_aliases=True,
            )
        )


# ========================================
# Schema Handle
# ========================================

class SchemaHandle:
    """
    Named handle to one schema: engine, pool and session factory.

    Attributes:
        name: Schema name (unique key in the registry)
        engine: Engine owning the pool
        bound_engine: Same pool, with the schema translate map applied
        session_factory: Sessions bound to ``bound_engine``

    Example:
        handle = open_schema_handle(ConnectionParams.sqlite(), "s1")
        with handle.session() as db:
            db.add(Customer(name="Ada"))
        # committed on exit, rolled back on error
    """

    def __init__(self, name: str, engine: Engine, pool: Optional[PoolSettings] = None):
        self.name = name
        self.pool = pool or PoolSettings()
        self.engine = engine
        self.counters = PoolCounters(self.pool.pool_recycle).attach(engine)
        self.bound_engine = engine.execution_options(schema_translate_map={None: name})
        self.session_factory = sessionmaker(
            bind=self.bound_engine,
            autoflush=False,
            expire_on_commit=False,
        )
        event.listen(self.session_factory, "do_orm_execute", _exclude_soft_deleted)

    def __repr__(self) -> str:
        return f"<SchemaHandle(name={self.name!r}, dialect={self.dialect_name!r})>"

    @property
    def dialect_name(self) -> str:
        return self.engine.dialect.name

    @contextmanager
    def session(self) -> Generator[Session, None, None]:
        """
        Context manager for database sessions.

        Usage:
            with handle.session() as db:
                # do stuff with db
                ...
        """
        db = self.session_factory()
        try:
            yield db
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def ensure_extensions(self) -> None:
        """Install the UUID generator on PostgreSQL; otherwise just connect."""
        if self.dialect_name == "postgresql":
            with self.engine.begin() as conn:
                conn.execute(text(UUID_EXTENSION_SQL))
        else:
            self.ping()

    def ping(self) -> None:
        """Liveness check; raises the driver error on failure."""
        with self.bound_engine.connect() as conn:
            conn.execute(text("SELECT 1"))

    def create_tables(self, entities: Iterable[type] = ()) -> None:
        """Ensure the schema and the entities' tables exist."""
        tables = [entity.__table__ for entity in entities] or None
        with self.bound_engine.begin() as conn:
            if self.dialect_name == "postgresql":
                conn.execute(CreateSchema(self.name, if_not_exists=True))
            create_all_tables(conn, tables)

    def drop_tables(self, entities: Iterable[type] = ()) -> None:
        """Drop the entities' tables (all registered tables by default)."""
        tables = [entity.__table__ for entity in entities] or None
        with self.bound_engine.begin() as conn:
            drop_all_tables(conn, tables)

    def stats(self) -> ConnectionStats:
        return self.counters.snapshot(
            self.name, self.pool, static=isinstance(self.engine.pool, StaticPool)
        )

    def dispose(self) -> None:
        """Close every pooled connection."""
        self.engine.dispose()


def open_schema_handle(
    params: ConnectionParams,
    schema_name: str,
    pool: Optional[PoolSettings] = None,
) -> SchemaHandle:
    """
    Open and verify a handle for ``schema_name``.

    Raises:
        sqlalchemy.exc.SQLAlchemyError: If the database cannot be reached
    """
    engine = create_db_engine(params, schema_name, pool)
    handle = SchemaHandle(schema_name, engine, pool)
    try:
        handle.ensure_extensions()
    except Exception:
        handle.dispose()
        raise
    return handle
