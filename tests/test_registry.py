"""Tests for the connection registry lifecycle, lookups and pool stats."""

import threading
import time
from concurrent.futures import ThreadPoolExecutor

import pytest
from sqlalchemy.exc import OperationalError

from schemarepo.config import Settings
from schemarepo.core.exceptions import (
    ConfigError,
    DatabaseConnectionError,
    NotConnectedError,
    UnknownSchemaError,
)
from schemarepo.database import (
    ConnectionParams,
    ConnectionRegistry,
    PoolSettings,
    connect_from_settings,
    open_schema_handle,
)
from schemarepo.database.locks import ReadWriteLock
from schemarepo.services import get_crud_service
from tests.sample_models import Customer, CustomerDTO


def failing_factory(fail_on: str, opened: list, disposed: list):
    """Handle factory that refuses ``fail_on`` and records what it opened and disposed."""

    def factory(params, schema_name, pool):
        if schema_name == fail_on:
            raise OperationalError("connect", {}, Exception("connection refused"))
        handle = open_schema_handle(params, schema_name, pool)
        real_dispose = handle.dispose

        def dispose():
            disposed.append(schema_name)
            real_dispose()

        handle.dispose = dispose
        opened.append(schema_name)
        return handle

    return factory


class TestConnect:
    def test_connect_registers_every_schema(self, registry):
        assert registry.connected is True
        assert registry.default_schema == "s1"
        assert registry.schema_names == ("s1", "s2")

    def test_resolve_default_and_named(self, registry):
        assert registry.resolve().name == "s1"
        assert registry.resolve("").name == "s1"
        assert registry.resolve("s2").name == "s2"

    def test_handles_are_distinct(self, registry):
        assert registry.resolve("s1") is not registry.resolve("s2")
        assert registry.resolve("s1").engine is not registry.resolve("s2").engine

    def test_unknown_schema(self, registry):
        with pytest.raises(UnknownSchemaError, match="schema s3 not connected") as exc_info:
            registry.resolve("s3")

        assert exc_info.value.schema_name == "s3"
        assert isinstance(exc_info.value, LookupError)

    def test_empty_schema_list(self):
        registry = ConnectionRegistry()

        with pytest.raises(ConfigError, match="no schema provided"):
            registry.connect(ConnectionParams.sqlite(), [])

        assert registry.connected is False
        assert registry.schema_names == ()

    @pytest.mark.parametrize("names", [["s-1"], ["s1", "s1"], ['s1"; --']])
    def test_invalid_schema_names(self, names):
        registry = ConnectionRegistry()

        with pytest.raises(ConfigError):
            registry.connect(ConnectionParams.sqlite(), names)

        assert registry.connected is False

    def test_connect_is_all_or_nothing(self):
        opened, disposed = [], []
        registry = ConnectionRegistry(handle_factory=failing_factory("bad", opened, disposed))

        with pytest.raises(DatabaseConnectionError) as exc_info:
            registry.connect(ConnectionParams.sqlite(), ["s1", "s2", "bad"])

        assert "failed to connect to database for schema bad" in str(exc_info.value)
        assert exc_info.value.schema_name == "bad"
        assert isinstance(exc_info.value.__cause__, OperationalError)
        assert opened == ["s1", "s2"]
        assert sorted(disposed) == ["s1", "s2"]
        assert registry.connected is False
        assert registry.schema_names == ()
        assert registry.default_schema == ""

    def test_failed_connect_keeps_previous_state(self):
        opened, disposed = [], []
        registry = ConnectionRegistry(handle_factory=failing_factory("bad", opened, disposed))
        registry.connect(ConnectionParams.sqlite(), ["s1"])

        with pytest.raises(DatabaseConnectionError):
            registry.connect(ConnectionParams.sqlite(), ["s2", "bad"])

        assert registry.connected is True
        assert registry.default_schema == "s1"
        assert registry.schema_names == ("s1",)
        assert disposed == ["s2"]
        registry.close()

    def test_reconnect_replaces_handles(self, registry):
        old = registry.resolve("s2")

        registry.connect(ConnectionParams.sqlite(), ["s2", "s3"])

        assert registry.default_schema == "s2"
        assert registry.schema_names == ("s1", "s2", "s3")
        assert registry.resolve("s2") is not old


class TestClose:
    def test_close_resets_state(self, registry):
        registry.close()

        assert registry.connected is False
        assert registry.default_schema == ""
        assert registry.schema_names == ()
        with pytest.raises(NotConnectedError):
            registry.resolve("s1")

    def test_close_twice(self, registry):
        registry.close()

        with pytest.raises(NotConnectedError):
            registry.close()

    def test_close_without_connect(self):
        with pytest.raises(NotConnectedError, match="not connected"):
            ConnectionRegistry().close()

    def test_connect_after_close(self, registry):
        registry.close()
        registry.connect(ConnectionParams.sqlite(), ["s2"])

        assert registry.connected is True
        assert registry.default_schema == "s2"

    def test_close_disposes_all_even_on_failure(self, registry, monkeypatch):
        disposed = []

        def broken_dispose():
            raise RuntimeError("socket already closed")

        s2 = registry.resolve("s2")
        real_dispose = s2.dispose
        monkeypatch.setattr(registry.resolve("s1"), "dispose", broken_dispose)
        monkeypatch.setattr(s2, "dispose", lambda: (disposed.append("s2"), real_dispose()))

        with pytest.raises(DatabaseConnectionError, match="s1") as exc_info:
            registry.close()

        assert exc_info.value.schema_name == "s1"
        assert disposed == ["s2"]
        assert registry.connected is False
        assert registry.schema_names == ()


class TestPing:
    def test_ping(self, registry):
        registry.ping()
        registry.ping("s2")

        assert registry.connected is True

    def test_failed_ping_marks_registry_disconnected(self, registry, monkeypatch):
        def broken_ping():
            raise OperationalError("SELECT 1", {}, Exception("server closed the connection"))

        monkeypatch.setattr(registry.resolve("s2"), "ping", broken_ping)
        errors = []

        def worker():
            try:
                registry.ping("s2")
            except DatabaseConnectionError as exc:
                errors.append(exc)

        thread = threading.Thread(target=worker)
        thread.start()
        thread.join(timeout=5)

        assert len(errors) == 1
        assert "ping failed for schema s2" in str(errors[0])
        # Visible from another thread, for every schema
        assert registry.connected is False
        with pytest.raises(NotConnectedError):
            registry.resolve("s1")

        # Handles are still registered and can be torn down
        assert registry.schema_names == ("s1", "s2")
        registry.close()
        assert registry.schema_names == ()

    def test_ping_not_connected(self):
        with pytest.raises(NotConnectedError):
            ConnectionRegistry().ping()


class TestStats:
    def test_stats_after_use(self, registry, customers):
        customers.create({"name": "Ada"}, schema_name="s1")

        stats = registry.stats("s1")

        assert stats.schema == "s1"
        assert stats.max_open == 1
        assert stats.open == 1
        assert stats.in_use == 0
        assert stats.idle == 1
        assert stats.overflow == 0
        assert stats.checkouts >= 1

    def test_stats_unknown_schema(self, registry):
        with pytest.raises(UnknownSchemaError):
            registry.stats("nope")


class TestConcurrency:
    def test_concurrent_lookups(self, registry):
        names = ["s1", "s2", ""] * 20

        with ThreadPoolExecutor(max_workers=8) as pool:
            resolved = list(pool.map(lambda name: registry.resolve(name).name, names))

        assert resolved == ["s1", "s2", "s1"] * 20

    def test_concurrent_writes_to_separate_schemas(self, registry, customers):
        def insert(schema_name):
            for i in range(5):
                customers.create({"name": f"{schema_name}-{i}"}, schema_name=schema_name)

        with ThreadPoolExecutor(max_workers=2) as pool:
            list(pool.map(insert, ["s1", "s2"]))

        assert customers.read_all(schema_name="s1").count == 5
        assert customers.read_all(schema_name="s2").count == 5

    def test_writer_waits_for_readers(self):
        lock = ReadWriteLock()
        events = []

        def writer():
            with lock.write():
                events.append("write")

        with lock.read():
            thread = threading.Thread(target=writer)
            thread.start()
            time.sleep(0.05)
            assert events == []
        thread.join(timeout=5)

        assert events == ["write"]


class TestSettingsIntegration:
    def test_connection_params_from_settings(self):
        current = Settings(db_host="db", db_name="app", db_user="app", db_password="secret")

        params = ConnectionParams.from_settings(current)

        assert params.url().render_as_string(hide_password=True) == (
            "postgresql+psycopg://app:***@db:5432/app?sslmode=disable"
        )

    def test_pool_settings_from_settings(self):
        pool = PoolSettings.from_settings(Settings(db_pool_size=5, db_max_overflow=15))

        assert pool.pool_size == 5
        assert pool.max_open == 20

    def test_connect_from_settings_with_sqlite_files(self, tmp_path):
        current = Settings(
            db_driver="sqlite",
            db_name=str(tmp_path / "app.db"),
            db_schemas="s1,s2",
        )

        registry = connect_from_settings(ConnectionRegistry.from_settings(current), current)
        try:
            registry.migrate("s1")
            service = get_crud_service(registry, CustomerDTO, Customer)
            created = service.create({"name": "Ada"})

            assert registry.schema_names == ("s1", "s2")
            assert service.check_exists_by_id(created.id, schema_name="s1")
        finally:
            registry.close()

        assert (tmp_path / "app_s1.db").exists()
