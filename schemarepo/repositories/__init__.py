"""
Data access layer (Repository pattern).

Condition building, paging and query execution against a schema handle.
"""

from schemarepo.repositories.conditions import ConditionBuilder, bind_placeholders
from schemarepo.repositories.paging import PagingSpec, SortSpec
from schemarepo.repositories.query import QueryResult, SQLQuery, new_query

__all__ = [
    "ConditionBuilder",
    "bind_placeholders",
    "PagingSpec",
    "SortSpec",
    "QueryResult",
    "SQLQuery",
    "new_query",
]
