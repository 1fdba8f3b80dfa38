"""
Entity Mapper
=============

Bidirectional structural copy between pydantic DTOs and SQLAlchemy entities.

Mapping is field-name driven: a DTO field is copied to the entity attribute
of the same name and vice versa; names present on only one side are
skipped. The field table for a (DTO, entity) pair is computed once from the
pydantic model fields and the SQLAlchemy mapper and then cached.

Example:
    mapper = get_entity_mapper(CustomerDTO, Customer)

    entity = mapper.to_entity(CustomerDTO(name="Ada", email="ada@example.com"))
    dto = mapper.to_dto(entity)

    mapper.merge_into(CustomerDTO(email="new@example.com"), entity)
    # only email changes; name is left alone
"""

from dataclasses import dataclass
from functools import lru_cache
from typing import Any, Dict, FrozenSet, Generic, Iterable, List, TypeVar

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import inspect as sa_inspect
from sqlalchemy.exc import NoInspectionAvailable

from schemarepo.core.exceptions import MappingError

D = TypeVar("D", bound=BaseModel)
E = TypeVar("E")


@dataclass(frozen=True)
class FieldTable:
    """Declarative field mapping between one DTO type and one entity type."""

    shared: FrozenSet[str]
    """Names that are both DTO fields and entity column attributes."""

    primary_keys: FrozenSet[str]
    """Entity primary-key attribute names."""


@lru_cache(maxsize=None)
def field_table(dto_type: type, entity_type: type) -> FieldTable:
    """
    Compute (and cache) the field table for a DTO/entity pair.

    Raises:
        MappingError: If either side is not a mappable type
    """
    if not (isinstance(dto_type, type) and issubclass(dto_type, BaseModel)):
        raise MappingError(f"{dto_type!r} is not a pydantic model")
    try:
        mapper = sa_inspect(entity_type)
    except NoInspectionAvailable as exc:
        raise MappingError(f"{entity_type!r} is not a mapped entity") from exc

    columns = {attr.key for attr in mapper.column_attrs}
    primary_keys = {mapper.get_property_by_column(col).key for col in mapper.primary_key}
    return FieldTable(
        shared=frozenset(set(dto_type.model_fields) & columns),
        primary_keys=frozenset(primary_keys),
    )


class EntityMapper(Generic[D, E]):
    """Maps one DTO type to one entity type and back."""

    def __init__(self, dto_type: type, entity_type: type):
        self.dto_type = dto_type
        self.entity_type = entity_type
        self.fields = field_table(dto_type, entity_type)

    def __repr__(self) -> str:
        return f"<EntityMapper({self.dto_type.__name__} <-> {self.entity_type.__name__})>"

    def _values(self, dto: D, *, exclude_unset: bool, skip_primary_key: bool) -> Dict[str, Any]:
        if not isinstance(dto, self.dto_type):
            raise MappingError(
                f"expected {self.dto_type.__name__}, got {type(dto).__name__}"
            )
        names = self.fields.shared
        if skip_primary_key:
            names = names - self.fields.primary_keys
        dumped = dto.model_dump(include=set(names), exclude_unset=exclude_unset, exclude_none=True)
        return dumped

    def to_entity(self, dto: D) -> E:
        """
        Build a new entity from a DTO.

        ``None`` values are left out so column defaults (generated ids,
        timestamps) apply.
        """
        values = self._values(dto, exclude_unset=False, skip_primary_key=False)
        try:
            return self.entity_type(**values)
        except (TypeError, ValueError) as exc:
            raise MappingError(
                f"cannot map {self.dto_type.__name__} to {self.entity_type.__name__}: {exc}"
            ) from exc

    def merge_into(self, dto: D, entity: E) -> E:
        """
        Copy the DTO's explicitly set, non-None fields onto an existing entity.

        Primary keys are never overwritten.
        """
        values = self._values(dto, exclude_unset=True, skip_primary_key=True)
        for name, value in values.items():
            setattr(entity, name, value)
        return entity

    def to_dto(self, entity: E) -> D:
        """Read a DTO from the entity's attributes."""
        try:
            return self.dto_type.model_validate(entity, from_attributes=True)
        except PydanticValidationError as exc:
            raise MappingError(
                f"cannot map {type(entity).__name__} to {self.dto_type.__name__}: {exc}"
            ) from exc

    def to_dtos(self, entities: Iterable[E]) -> List[D]:
        """Map every entity; the first failure aborts the whole batch."""
        return [self.to_dto(entity) for entity in entities]


@lru_cache(maxsize=None)
def get_entity_mapper(dto_type: type, entity_type: type) -> EntityMapper:
    """Shared mapper instance for a DTO/entity pair."""
    return EntityMapper(dto_type, entity_type)
