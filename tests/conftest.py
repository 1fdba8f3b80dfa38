"""Shared fixtures: an in-memory SQLite registry with two schemas."""

import pytest

from schemarepo.database import ConnectionParams, ConnectionRegistry
from schemarepo.services import get_crud_service
from tests.sample_models import (
    Customer,
    CustomerDTO,
    Note,
    NoteDTO,
    Purchase,
    PurchaseDTO,
)

SCHEMAS = ["s1", "s2"]


@pytest.fixture
def registry():
    """Connected registry with every sample table created in s1 and s2."""
    registry = ConnectionRegistry()
    registry.connect(ConnectionParams.sqlite(), SCHEMAS)
    for schema_name in SCHEMAS:
        registry.migrate(schema_name, Customer, Purchase, Note)
    yield registry
    if registry.schema_names:
        registry.close()


@pytest.fixture
def customers(registry):
    return get_crud_service(registry, CustomerDTO, Customer)


@pytest.fixture
def purchases(registry):
    return get_crud_service(registry, PurchaseDTO, Purchase)


@pytest.fixture
def notes(registry):
    return get_crud_service(registry, NoteDTO, Note)


@pytest.fixture
def seeded(customers):
    """Three customers in s1; returns their DTOs keyed by name."""
    rows = [
        ("Ada", "ada@example.com", "gold"),
        ("Alan", "alan@example.com", "silver"),
        ("Grace", "grace@navy.mil", "gold"),
    ]
    created = {}
    for name, email, tier in rows:
        created[name] = customers.create(
            {"name": name, "email": email, "attributes": {"tier": tier}},
            schema_name="s1",
        )
    return created
