"""Paging and sort normalization."""

import re
from dataclasses import dataclass
from typing import Any

from sqlalchemy import inspect as sa_inspect, literal_column

from schemarepo.core.constants import (
    DEFAULT_LIMIT,
    DEFAULT_PAGE,
    DEFAULT_SORT_FIELD,
    SORT_ASC_PREFIX,
    SORT_DESC_PREFIX,
)
from schemarepo.core.exceptions import InvalidConditionError

_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


@dataclass(frozen=True)
class PagingSpec:
    """
    Normalized page window.

    Example:
        PagingSpec.normalize(limit=0, page=0)   # PagingSpec(limit=100, page=1)
        PagingSpec.normalize(20, 3).offset      # 40
    """

    limit: int = DEFAULT_LIMIT
    page: int = DEFAULT_PAGE

    @classmethod
    def normalize(cls, limit: int = 0, page: int = 0) -> "PagingSpec":
        limit = int(limit or 0)
        page = int(page or 0)
        return cls(
            limit=limit if limit >= 1 else DEFAULT_LIMIT,
            page=page if page >= 1 else DEFAULT_PAGE,
        )

    @property
    def offset(self) -> int:
        return self.limit * (self.page - 1)


@dataclass(frozen=True)
class SortSpec:
    """
    Sort field and direction.

    ``"-name"`` sorts descending, ``"+name"`` ascending; anything else
    (including an empty string) falls back to newest first by ``created_at``.
    """

    field: str = DEFAULT_SORT_FIELD
    descending: bool = True

    @classmethod
    def parse(cls, sort: str = "") -> "SortSpec":
        sort = (sort or "").strip()
        if sort.startswith(SORT_DESC_PREFIX):
            field, descending = sort[len(SORT_DESC_PREFIX):], True
        elif sort.startswith(SORT_ASC_PREFIX):
            field, descending = sort[len(SORT_ASC_PREFIX):], False
        else:
            return cls()
        if not _IDENTIFIER.match(field):
            raise InvalidConditionError(f"invalid sort field: {field!r}")
        return cls(field=field, descending=descending)

    def order_by(self, entity: type) -> Any:
        """ORDER BY element for ``entity`` (mapped attribute when it exists)."""
        column = sa_inspect(entity).columns.get(self.field)
        if column is None:
            column = literal_column(f'"{self.field}"')
        return column.desc() if self.descending else column.asc()
