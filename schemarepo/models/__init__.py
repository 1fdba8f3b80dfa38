"""
Entity and DTO base package.

Applications declare their entities on ``Base`` (usually via ``BaseEntity``)
and their DTOs on ``BaseDTO``. ``EntityMapper`` copies between the two and
``validate`` checks a DTO against its declared constraints.
"""

from schemarepo.models.base import (
    Base,
    BaseDTO,
    BaseEntity,
    SoftDeleteMixin,
    TimestampMixin,
    UUIDPrimaryKeyMixin,
    create_all_tables,
    drop_all_tables,
    table_name_for,
)
from schemarepo.models.mapper import EntityMapper, FieldTable, field_table, get_entity_mapper
from schemarepo.models.validator import validate

__all__ = [
    "Base",
    "BaseDTO",
    "BaseEntity",
    "UUIDPrimaryKeyMixin",
    "TimestampMixin",
    "SoftDeleteMixin",
    "create_all_tables",
    "drop_all_tables",
    "table_name_for",
    "EntityMapper",
    "FieldTable",
    "field_table",
    "get_entity_mapper",
    "validate",
]
