"""Tests for the CRUD service."""

import pytest
from sqlalchemy import select

from schemarepo.core.exceptions import (
    NotConnectedError,
    NotFoundError,
    QueryError,
    UnknownSchemaError,
    ValidationError,
)
from tests.sample_models import Customer, CustomerDTO, PurchaseDTO


class TestCreateAndRead:
    def test_create_round_trip(self, customers):
        created = customers.create(CustomerDTO(name="Ada", email="ada@example.com"), schema_name="s1")

        assert created.id
        assert created.created_at is not None
        assert created.purchases == []

        read = customers.read_by_id(created.id, schema_name="s1")
        assert read.name == "Ada"
        assert read.email == "ada@example.com"
        assert read.id == created.id

    def test_create_from_mapping(self, customers):
        created = customers.create({"name": "Grace", "attributes": {"tier": "gold"}})

        assert customers.read_by_id(created.id).attributes == {"tier": "gold"}

    def test_default_schema_is_first(self, customers):
        created = customers.create({"name": "Ada"})

        assert customers.check_exists_by_id(created.id, schema_name="s1")
        assert not customers.check_exists_by_id(created.id, schema_name="s2")

    def test_validation_error(self, customers):
        with pytest.raises(ValidationError, match="field 'name'") as exc_info:
            customers.create({"name": "", "email": "x@example.com"})

        assert exc_info.value.errors[0]["type"] == "string_too_short"
        assert customers.read_all().count == 0

    def test_constructed_dto_is_validated(self, customers):
        with pytest.raises(ValidationError):
            customers.create(CustomerDTO.model_construct(name=""))

    def test_wrong_dto_type(self, customers):
        with pytest.raises(ValidationError, match="expected CustomerDTO"):
            customers.create(PurchaseDTO(total=1))

    def test_missing_required_column(self, customers):
        # name is NOT NULL on the entity but optional on the DTO
        with pytest.raises(QueryError, match="create failed in schema s1"):
            customers.create({"email": "anonymous@example.com"})

    def test_read_by_id_missing(self, customers):
        with pytest.raises(NotFoundError, match="not found in schema s1") as exc_info:
            customers.read_by_id("00000000-0000-0000-0000-000000000000")

        assert isinstance(exc_info.value, QueryError)

    def test_read_many_by_id(self, seeded, customers):
        ids = [seeded["Ada"].id, seeded["Grace"].id, "missing"]

        result = customers.read_many_by_id(ids, sort="+name", schema_name="s1")

        assert [item.name for item in result.items] == ["Ada", "Grace"]
        assert result.count == 2

    def test_read_all(self, seeded, customers):
        result = customers.read_all(sort="-name", schema_name="s1")

        assert [item.name for item in result.items] == ["Grace", "Alan", "Ada"]
        assert result.count == 3

    def test_read_with_filter(self, seeded, customers):
        found = customers.read_with_filter('"email" = ? AND "name" <> ?', "ada@example.com", "")

        assert found.id == seeded["Ada"].id

    def test_read_with_filter_expands_sequences(self, seeded, customers):
        found = customers.read_with_filter('"name" IN ? AND "email" LIKE ?', ["Grace", "Nobody"], "%.mil")

        assert found.name == "Grace"

    def test_read_with_filter_no_match(self, seeded, customers):
        with pytest.raises(NotFoundError):
            customers.read_with_filter('"name" = ?', "Nobody")

    def test_read_with_filter_placeholder_mismatch(self, seeded, customers):
        with pytest.raises(QueryError, match="placeholders"):
            customers.read_with_filter('"name" = ? OR "email" = ?', "Ada")

    def test_query_shortcut(self, seeded, customers):
        query = customers.query("s1").add_text_condition("AND", "name", "LIKE", "A")

        assert query.execute_no_paging().count == 3


class TestUpdate:
    def test_update_merges_set_fields(self, seeded, customers):
        ada = seeded["Ada"]
        before = customers.read_by_id(ada.id, schema_name="s1")
        assert before.email == "ada@example.com"

        updated = customers.update(ada.id, CustomerDTO(email="countess@example.com"), schema_name="s1")

        assert updated.email == "countess@example.com"
        assert updated.name == "Ada"
        assert updated.attributes == {"tier": "gold"}

        stored = customers.read_by_id(ada.id, schema_name="s1")
        assert stored.email == "countess@example.com"
        assert stored.name == "Ada"
        assert stored.attributes == {"tier": "gold"}

    def test_update_never_changes_primary_key(self, seeded, customers):
        ada = seeded["Ada"]

        updated = customers.update(ada.id, CustomerDTO(id="other", name="Ada L."), schema_name="s1")

        assert updated.id == ada.id
        assert updated.name == "Ada L."

    def test_update_missing(self, customers):
        with pytest.raises(NotFoundError):
            customers.update("missing", CustomerDTO(name="x"))

    def test_update_single_column(self, seeded, customers):
        alan = seeded["Alan"]

        customers.update_single_column(alan.id, "email", "turing@example.com", schema_name="s1")

        assert customers.read_by_id(alan.id, schema_name="s1").email == "turing@example.com"

    def test_update_single_column_unknown_column(self, seeded, customers):
        with pytest.raises(QueryError, match="no column 'nickname'") as exc_info:
            customers.update_single_column(seeded["Ada"].id, "nickname", "ada")

        assert not isinstance(exc_info.value, NotFoundError)

    def test_update_single_column_missing_row(self, customers):
        with pytest.raises(NotFoundError):
            customers.update_single_column("missing", "email", "x@example.com")


class TestDelete:
    def test_soft_delete(self, registry, seeded, customers):
        ada = seeded["Ada"]

        customers.delete_by_id(ada.id, schema_name="s1")

        assert not customers.check_exists_by_id(ada.id, schema_name="s1")
        with pytest.raises(NotFoundError):
            customers.read_by_id(ada.id, schema_name="s1")
        assert customers.read_all(schema_name="s1").count == 2

        # The row is still there, only marked
        with registry.resolve("s1").session() as db:
            rows = db.scalars(
                select(Customer).where(Customer.id == ada.id).execution_options(include_deleted=True)
            ).all()
        assert len(rows) == 1
        assert rows[0].is_deleted

    def test_soft_delete_twice_keeps_first_timestamp(self, registry, seeded, customers):
        ada = seeded["Ada"]
        customers.delete_by_id(ada.id, schema_name="s1")
        with registry.resolve("s1").session() as db:
            first = db.scalars(
                select(Customer.deleted_at)
                .where(Customer.id == ada.id)
                .execution_options(include_deleted=True)
            ).one()

        customers.delete_by_id(ada.id, schema_name="s1")

        with registry.resolve("s1").session() as db:
            second = db.scalars(
                select(Customer.deleted_at)
                .where(Customer.id == ada.id)
                .execution_options(include_deleted=True)
            ).one()
        assert first == second

    def test_hard_delete(self, notes):
        note = notes.create({"body": "remember the milk"})

        notes.delete_by_id(note.id)

        assert not notes.check_exists_by_id(note.id)
        assert notes.read_all().count == 0

    def test_delete_all_soft(self, seeded, customers):
        assert customers.delete_all(schema_name="s1") == 3
        assert customers.read_all(schema_name="s1").count == 0
        # Already deleted rows are not counted again
        assert customers.delete_all(schema_name="s1") == 0

    def test_delete_all_hard_removes_soft_deleted_rows(self, registry, seeded, customers):
        customers.delete_by_id(seeded["Ada"].id, schema_name="s1")

        assert customers.delete_all(soft_delete=False, schema_name="s1") == 3

        with registry.resolve("s1").session() as db:
            remaining = db.scalars(select(Customer).execution_options(include_deleted=True)).all()
        assert remaining == []

    def test_delete_all_only_touches_its_schema(self, seeded, customers):
        customers.create({"name": "Kept"}, schema_name="s2")

        customers.delete_all(soft_delete=False, schema_name="s1")

        assert customers.read_all(schema_name="s2").count == 1


class TestSchemas:
    def test_same_entity_in_two_schemas(self, customers):
        s1 = customers.create({"name": "Ada"}, schema_name="s1")
        s2 = customers.create({"name": "Ada"}, schema_name="s2")

        assert s1.id != s2.id
        assert customers.read_all(schema_name="s1").count == 1
        assert customers.read_all(schema_name="s2").count == 1
        with pytest.raises(NotFoundError):
            customers.read_by_id(s1.id, schema_name="s2")

    def test_unknown_schema(self, customers):
        with pytest.raises(UnknownSchemaError):
            customers.read_all(schema_name="s3")

    def test_not_connected(self, registry, customers):
        registry.close()

        with pytest.raises(NotConnectedError):
            customers.read_all()
