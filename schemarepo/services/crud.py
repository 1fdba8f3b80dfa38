"""
CRUD service for one entity/DTO pair.

Single-entity operations that bypass the condition builder but still resolve
their handle through the registry. Every call is its own unit of work:
commit on success, rollback on error.

Example:
    service = get_crud_service(registry, CustomerDTO, Customer)

    created = service.create(CustomerDTO(name="Ada", email="ada@example.com"), schema_name="s2")
    service.read_by_id(created.id, schema_name="s2")        # CustomerDTO
    service.update(created.id, CustomerDTO.model_construct(email="new@example.com"), schema_name="s2")
    service.delete_by_id(created.id, schema_name="s2")
    service.check_exists_by_id(created.id, schema_name="s2")  # False
"""

from contextlib import contextmanager
from datetime import datetime, UTC
from typing import Any, Generator, Generic, Iterable, Mapping, TypeVar, Union

from sqlalchemy import delete, func, inspect as sa_inspect, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from schemarepo.core.constants import DELETE_ALL_CREATED_AFTER
from schemarepo.core.exceptions import InvalidConditionError, NotFoundError, QueryError
from schemarepo.core.logging import get_logger
from schemarepo.database.registry import ConnectionRegistry
from schemarepo.database.session import SchemaHandle
from schemarepo.models.base import SoftDeleteMixin
from schemarepo.models.mapper import get_entity_mapper
from schemarepo.models.validator import validate
from schemarepo.repositories.conditions import bind_placeholders
from schemarepo.repositories.paging import SortSpec
from schemarepo.repositories.query import QueryResult, SQLQuery

logger = get_logger(__name__)

D = TypeVar("D")
E = TypeVar("E")


class CrudService(Generic[D, E]):
    """
    Create/read/update/delete for one entity type, returning DTOs.

    Every method takes ``schema_name`` ("" means the registry's default).

    Raises (all methods):
        NotConnectedError: If the registry is down
        UnknownSchemaError: If the schema is not registered
        QueryError: If the statement fails
    """

    def __init__(self, registry: ConnectionRegistry, dto_type: type, entity_type: type):
        self.registry = registry
        self.dto_type = dto_type
        self.entity_type = entity_type
        self.mapper = get_entity_mapper(dto_type, entity_type)
        self._pk = sa_inspect(entity_type).primary_key[0]
        self._soft_delete = issubclass(entity_type, SoftDeleteMixin)

    def __repr__(self) -> str:
        return f"<CrudService({self.dto_type.__name__} <-> {self.entity_type.__name__})>"

    @contextmanager
    def _unit_of_work(self, handle: SchemaHandle, action: str) -> Generator[Session, None, None]:
        try:
            with handle.session() as db:
                yield db
        except SQLAlchemyError as exc:
            raise QueryError(f"{action} failed in schema {handle.name}: {exc}") from exc

    def _not_found(self, handle: SchemaHandle, item_id: Any) -> NotFoundError:
        return NotFoundError(
            f"{self.entity_type.__name__} {item_id} not found in schema {handle.name}"
        )

    def _fetch(self, db: Session, handle: SchemaHandle, item_id: Any) -> E:
        entity = db.scalars(select(self.entity_type).where(self._pk == item_id)).first()
        if entity is None:
            raise self._not_found(handle, item_id)
        return entity

    def query(self, schema_name: str = "") -> SQLQuery:
        """New condition builder for this pair, bound to ``schema_name``."""
        return SQLQuery(self.registry, self.dto_type, self.entity_type, schema_name)

    # ========================================
    # Create
    # ========================================

    def create(self, dto: Union[D, Mapping[str, Any]], schema_name: str = "") -> D:
        """
        Validate, insert and return the stored record.

        Returns:
            DTO re-read from the inserted entity (generated id and timestamps filled)

        Raises:
            ValidationError: If the DTO violates its declared constraints
            MappingError: If the DTO cannot be mapped onto the entity
        """
        handle = self.registry.resolve(schema_name)
        dto = validate(self.dto_type, dto)
        entity = self.mapper.to_entity(dto)
        with self._unit_of_work(handle, "create") as db:
            db.add(entity)
            db.flush()
            db.refresh(entity)
            created = self.mapper.to_dto(entity)
        logger.info(
            "item_created",
            schema=handle.name,
            entity=self.entity_type.__name__,
            id=getattr(entity, self._pk.key, None),
        )
        return created

    # ========================================
    # Read
    # ========================================

    def read_by_id(self, item_id: Any, schema_name: str = "") -> D:
        """
        Read one record by primary key.

        Raises:
            NotFoundError: If no (non-deleted) row has this id
        """
        handle = self.registry.resolve(schema_name)
        with self._unit_of_work(handle, "read") as db:
            return self.mapper.to_dto(self._fetch(db, handle, item_id))

    def read_many_by_id(self, ids: Iterable[Any], sort: str = "", schema_name: str = "") -> QueryResult:
        """Read every record whose id is in ``ids`` (missing ids are skipped)."""
        handle = self.registry.resolve(schema_name)
        order = SortSpec.parse(sort).order_by(self.entity_type)
        stmt = select(self.entity_type).where(self._pk.in_(list(ids))).order_by(order)
        with self._unit_of_work(handle, "read many") as db:
            items = self.mapper.to_dtos(db.scalars(stmt).all())
        return QueryResult(items, len(items))

    def read_all(self, sort: str = "", schema_name: str = "") -> QueryResult:
        """Read every (non-deleted) record."""
        handle = self.registry.resolve(schema_name)
        order = SortSpec.parse(sort).order_by(self.entity_type)
        with self._unit_of_work(handle, "read all") as db:
            items = self.mapper.to_dtos(db.scalars(select(self.entity_type).order_by(order)).all())
        return QueryResult(items, len(items))

    def read_with_filter(self, query: str, *args: Any, schema_name: str = "") -> D:
        """
        Read the first record matching a raw ``?``-parameterized filter.

        Example:
            service.read_with_filter('"email" = ? AND "name" <> ?', "ada@example.com", "")

        Raises:
            NotFoundError: If nothing matches
        """
        handle = self.registry.resolve(schema_name)
        try:
            clause = bind_placeholders(query, list(args))
        except InvalidConditionError as exc:
            raise QueryError(str(exc)) from exc
        with self._unit_of_work(handle, "read with filter") as db:
            entity = db.scalars(select(self.entity_type).where(clause).limit(1)).first()
            if entity is None:
                raise NotFoundError(
                    f"no {self.entity_type.__name__} matches filter in schema {handle.name}"
                )
            return self.mapper.to_dto(entity)

    def check_exists_by_id(self, item_id: Any, schema_name: str = "") -> bool:
        """True if a (non-deleted) row has this id; uses ``count(*) > 0``."""
        handle = self.registry.resolve(schema_name)
        stmt = select(func.count() > 0).select_from(self.entity_type).where(self._pk == item_id)
        if self._soft_delete:
            stmt = stmt.where(self.entity_type.deleted_at.is_(None))
        with self._unit_of_work(handle, "exists check") as db:
            return bool(db.scalar(stmt))

    # ========================================
    # Update
    # ========================================

    def update(self, item_id: Any, dto: D, schema_name: str = "") -> D:
        """
        Merge the DTO's set fields onto the stored record.

        Fields the DTO leaves unset (or None) keep their stored values.

        Raises:
            NotFoundError: If the row does not exist
        """
        handle = self.registry.resolve(schema_name)
        with self._unit_of_work(handle, "update") as db:
            entity = self._fetch(db, handle, item_id)
            self.mapper.merge_into(dto, entity)
            db.flush()
            db.refresh(entity)
            return self.mapper.to_dto(entity)

    def update_single_column(self, item_id: Any, column: str, value: Any, schema_name: str = "") -> None:
        """
        Set one column of an existing row.

        Raises:
            QueryError: If ``column`` is not a column of the entity
            NotFoundError: If the row does not exist
        """
        target = self.entity_type.__table__.c.get(column)
        if target is None:
            raise QueryError(f"{self.entity_type.__name__} has no column {column!r}")
        handle = self.registry.resolve(schema_name)
        with self._unit_of_work(handle, "update column") as db:
            self._fetch(db, handle, item_id)
            db.execute(
                update(self.entity_type)
                .where(self._pk == item_id)
                .values({target: value})
                .execution_options(synchronize_session=False)
            )

    # ========================================
    # Delete
    # ========================================

    def delete_by_id(self, item_id: Any, schema_name: str = "") -> None:
        """Delete one row: soft for soft-delete entities, physical otherwise."""
        handle = self.registry.resolve(schema_name)
        if self._soft_delete:
            stmt = (
                update(self.entity_type)
                .where(self._pk == item_id, self.entity_type.deleted_at.is_(None))
                .values(deleted_at=datetime.now(UTC))
            )
        else:
            stmt = delete(self.entity_type).where(self._pk == item_id)
        with self._unit_of_work(handle, "delete") as db:
            db.execute(stmt.execution_options(synchronize_session=False))
        logger.info(
            "item_deleted",
            schema=handle.name,
            entity=self.entity_type.__name__,
            id=item_id,
            soft=self._soft_delete,
        )

    def delete_all(self, soft_delete: bool = True, schema_name: str = "") -> int:
        """
        Delete every row created after 2000-01-01.

        Args:
            soft_delete: Mark rows deleted (when the entity supports it)
                instead of removing them. Hard delete also removes rows that
                were already soft-deleted.

        Returns:
            Number of rows affected
        """
        handle = self.registry.resolve(schema_name)
        created_at = getattr(self.entity_type, "created_at", None)
        conditions = [created_at > DELETE_ALL_CREATED_AFTER] if created_at is not None else []
        soft = soft_delete and self._soft_delete
        if soft:
            stmt = (
                update(self.entity_type)
                .where(*conditions, self.entity_type.deleted_at.is_(None))
                .values(deleted_at=datetime.now(UTC))
            )
        else:
            stmt = delete(self.entity_type).where(*conditions)
        with self._unit_of_work(handle, "delete all") as db:
            result = db.execute(stmt.execution_options(synchronize_session=False))
            affected = result.rowcount or 0
        logger.info(
            "items_deleted",
            schema=handle.name,
            entity=self.entity_type.__name__,
            count=affected,
            soft=soft,
        )
        return affected


# ========================================
# Convenience Functions
# ========================================

def get_crud_service(registry: ConnectionRegistry, dto_type: type, entity_type: type) -> CrudService:
    """
    Factory function for creating a CrudService.

    Usage:
        service = get_crud_service(registry, CustomerDTO, Customer)
        service.read_all(schema_name="s1")
    """
    return CrudService(registry, dto_type, entity_type)
