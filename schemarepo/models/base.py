"""
Base Model
==========

Provides common functionality for all entities and DTOs.

Entities declare no schema of their own: the schema is applied per
connection through SQLAlchemy's ``schema_translate_map``, so the same
``Customer`` class maps to ``s1.customer`` on one handle and
``s2.customer`` on another.
"""

import re
import uuid
from datetime import datetime
from typing import Optional

from pydantic import BaseModel as PydanticModel, ConfigDict
from sqlalchemy import DateTime, String
from sqlalchemy.orm import DeclarativeBase, Mapped, declared_attr, mapped_column
from sqlalchemy.sql import func


_CAMEL_BOUNDARY = re.compile(r"(?<!^)(?=[A-Z])")


def table_name_for(class_name: str) -> str:
    """
    Singular snake_case table name for an entity class name.

    Example:
        table_name_for("CustomerOrder")  # "customer_order"
    """
    return _CAMEL_BOUNDARY.sub("_", class_name).lower()


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy entities."""

    @declared_attr.directive
    def __tablename__(cls) -> str:
        return table_name_for(cls.__name__)


class UUIDPrimaryKeyMixin:
    """Mixin that adds a string UUID primary key generated on insert."""

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid.uuid4()),
        comment="UUID primary key"
    )


class TimestampMixin:
    """Mixin that adds created_at and updated_at timestamps."""

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False
    )


class SoftDeleteMixin:
    """
    Mixin that adds a ``deleted_at`` marker.

    Rows with a non-null ``deleted_at`` are hidden from every ORM SELECT
    issued through a schema handle (see ``schemarepo.database.session``).
    """

    deleted_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
        default=None
    )

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None


class BaseEntity(UUIDPrimaryKeyMixin, TimestampMixin, SoftDeleteMixin):
    """
    Standard entity: UUID key, timestamps and soft delete.

    Example:
        class Customer(BaseEntity, Base):
            name: Mapped[str] = mapped_column(String(100))
            email: Mapped[str] = mapped_column(String(200))

        # Table: "customer" (translated to "<schema>.customer" per handle)
    """

    def __repr__(self) -> str:
        return f"<{type(self).__name__}(id={self.id!r})>"


class BaseDTO(PydanticModel):
    """Base class for data-transfer objects read from entity attributes."""

    model_config = ConfigDict(from_attributes=True, validate_assignment=True)


def create_all_tables(bind, tables=None) -> None:
    """Create tables in the database (all registered tables by default)."""
    Base.metadata.create_all(bind=bind, tables=tables)


def drop_all_tables(bind, tables=None) -> None:
    """Drop tables in the database (all registered tables by default)."""
    Base.metadata.drop_all(bind=bind, tables=tables)
