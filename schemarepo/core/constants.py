"""
Application-wide constants.

Centralize magic strings and query defaults here. The enums below form the
closed vocabulary accepted by the condition builder: anything else is rejected
before it reaches a SQL string.
"""

from datetime import datetime, UTC
from enum import Enum


class _CaseInsensitiveEnum(str, Enum):
    """String enum that also accepts lower/mixed case input."""

    @classmethod
    def _missing_(cls, value):
        if isinstance(value, str):
            normalized = " ".join(value.split()).upper()
            for member in cls:
                if member.value == normalized:
                    return member
        return None


# ========================================
# Comparison Operators
# ========================================

class Operator(_CaseInsensitiveEnum):
    """
    Comparison operators allowed in a filter predicate.

    Usage:
        Operator("like")   # Operator.LIKE
        Operator("=")      # Operator.EQ
        Operator("; drop") # ValueError
    """

    EQ = "="
    NE = "<>"
    NE_ALT = "!="
    GT = ">"
    GTE = ">="
    LT = "<"
    LTE = "<="
    LIKE = "LIKE"
    """Case-insensitive substring match (value is lower-cased and wrapped in %)."""


# ========================================
# Boolean Join Logic
# ========================================

class JoinLogic(_CaseInsensitiveEnum):
    """Keyword used to cascade a predicate onto the accumulated expression."""

    AND = "AND"
    OR = "OR"


# ========================================
# SQL Join Types
# ========================================

class JoinType(_CaseInsensitiveEnum):
    """Join kinds supported by ``SQLQuery.add_join``."""

    INNER = "INNER JOIN"
    LEFT = "LEFT JOIN"
    FULL = "FULL JOIN"

    @classmethod
    def _missing_(cls, value):
        member = super()._missing_(value)
        if member is None and isinstance(value, str):
            # Allow the short forms: "inner", "left", "full", "join"
            short = value.strip().upper()
            if short == "JOIN":
                return cls.INNER
            return cls.__members__.get(short)
        return member


# ========================================
# Paging & Sorting
# ========================================

DEFAULT_LIMIT = 100
DEFAULT_PAGE = 1
DEFAULT_SORT_FIELD = "created_at"

SORT_DESC_PREFIX = "-"
SORT_ASC_PREFIX = "+"

# ========================================
# Bulk Delete
# ========================================

DELETE_ALL_CREATED_AFTER = datetime(2000, 1, 1, tzinfo=UTC)
"""Scope of ``delete_all``: rows created after this date, i.e. every row."""

# ========================================
# Placeholders
# ========================================

PLACEHOLDER = "?"
BIND_PREFIX = "arg_"

# ========================================
# Extensions
# ========================================

UUID_EXTENSION_SQL = 'CREATE EXTENSION IF NOT EXISTS "uuid-ossp"'
