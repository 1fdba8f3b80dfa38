"""
Condition Builder
=================

Accumulates a parameterized WHERE expression from successive predicates.

The expression uses ``?`` placeholders; ``args`` holds one value per
placeholder, in left-to-right order. Every ``add_*`` method validates its
input before touching either, so the placeholder/argument invariant holds
on every exit path, including no-ops and errors.

Example:
    builder = ConditionBuilder()
    builder.add_text_condition("AND", "status", "=", "active")
    builder.add_text_condition("AND", "name", "LIKE", "Ada")
    builder.expression  # '"status" = ? AND lower("name") LIKE ?'
    builder.args        # ['active', '%ada%']
"""

import re
from typing import Any, List, Optional, Tuple, Union

from sqlalchemy import bindparam, text
from sqlalchemy.sql.elements import TextClause

from schemarepo.core.constants import (
    BIND_PREFIX,
    PLACEHOLDER,
    JoinLogic,
    Operator,
)
from schemarepo.core.exceptions import InvalidConditionError

_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")
_JSON_KEY = re.compile(r"^[A-Za-z0-9_\-]+$")

OperatorLike = Union[Operator, str]
JoinLogicLike = Union[JoinLogic, str]


# ========================================
# Helpers
# ========================================

def parse_operator(operator: OperatorLike) -> Operator:
    try:
        return Operator(operator)
    except ValueError:
        raise InvalidConditionError(f"unsupported comparison operator: {operator!r}") from None


def parse_join_logic(join_logic: JoinLogicLike) -> JoinLogic:
    try:
        return JoinLogic(join_logic)
    except ValueError:
        raise InvalidConditionError(f"unsupported join logic: {join_logic!r}") from None


def quote_column(field_name: str) -> str:
    """
    Quote a column reference, optionally table-qualified.

    Example:
        quote_column("name")          # '"name"'
        quote_column("orders.total")  # '"orders"."total"'
    """
    parts = field_name.split(".")
    if len(parts) > 2 or not all(_IDENTIFIER.match(part) for part in parts):
        raise InvalidConditionError(f"invalid field name: {field_name!r}")
    return ".".join(f'"{part}"' for part in parts)


def like_pattern(value: Any) -> str:
    """Lower-cased substring pattern for a LIKE predicate."""
    return f"%{str(value).lower()}%"


def count_placeholders(expression: str) -> int:
    return expression.count(PLACEHOLDER)


def bind_placeholders(expression: str, args: List[Any]) -> TextClause:
    """
    Turn a ``?`` expression into a SQLAlchemy text clause with bound values.

    Sequence values (list, tuple, set) become expanding parameters, so
    ``"id" IN ?`` with ``[["a", "b"]]`` renders as ``IN (:p1, :p2)``.

    Raises:
        InvalidConditionError: If placeholder and argument counts differ
    """
    pieces = expression.split(PLACEHOLDER)
    if len(pieces) - 1 != len(args):
        raise InvalidConditionError(
            f"expression has {len(pieces) - 1} placeholders but {len(args)} arguments were given"
        )
    sql = pieces[0]
    params = []
    for index, (value, piece) in enumerate(zip(args, pieces[1:])):
        name = f"{BIND_PREFIX}{index}"
        sql += f":{name}{piece}"
        if isinstance(value, (list, tuple, set, frozenset)):
            params.append(bindparam(name, value=list(value), expanding=True))
        else:
            params.append(bindparam(name, value=value))
    clause = text(sql)
    if params:
        clause = clause.bindparams(*params)
    return clause


# ========================================
# Builder
# ========================================

class ConditionBuilder:
    """
    Parameterized filter expression built one predicate at a time.

    Attributes:
        expression: Accumulated predicate string with ``?`` placeholders
        args: Positional values, one per placeholder
    """

    def __init__(self):
        self.expression = ""
        self.args: List[Any] = []

    def __repr__(self) -> str:
        return f"<{type(self).__name__}(expression={self.expression!r}, args={len(self.args)})>"

    @property
    def is_empty(self) -> bool:
        return not self.expression

    def _fragment(self, column_ref: str, operator: Operator, value: Any) -> Tuple[str, Any]:
        if operator is Operator.LIKE:
            return f"lower({column_ref}) {operator.value} {PLACEHOLDER}", like_pattern(value)
        return f"{column_ref} {operator.value} {PLACEHOLDER}", value

    def _join_logic(self, join_logic: JoinLogicLike) -> Optional[JoinLogic]:
        # the first predicate takes no prefix, so its join logic is not read
        if self.is_empty:
            return None
        return parse_join_logic(join_logic)

    def _cascade(self, join_logic: Optional[JoinLogic], fragment: str, values: List[Any]) -> None:
        if join_logic is not None:
            self.expression = f"{self.expression} {join_logic.value} {fragment}"
        else:
            self.expression = fragment
        self.args.extend(values)

    def add_text_condition(
        self,
        join_logic: JoinLogicLike,
        field_name: str,
        operator: OperatorLike,
        value: Any,
    ) -> "ConditionBuilder":
        """
        Add ``<field> <op> ?`` to the expression.

        Args:
            join_logic: AND / OR, ignored for the first predicate
            field_name: Column name; empty means "no filter" and is a no-op
            operator: Comparison operator; LIKE matches case-insensitively
            value: Bound value (wrapped in % and lower-cased for LIKE)

        Example:
            builder.add_text_condition("AND", "email", "LIKE", "@Example.com")
            # lower("email") LIKE ?   ['%@example.com%']
        """
        if not field_name:
            return self
        logic = self._join_logic(join_logic)
        op = parse_operator(operator)
        fragment, arg = self._fragment(quote_column(field_name), op, value)
        self._cascade(logic, fragment, [arg])
        return self

    def add_two_text_conditions(
        self,
        join_logic: JoinLogicLike,
        field_name1: str,
        operator1: OperatorLike,
        value1: Any,
        combine_logic: JoinLogicLike,
        field_name2: str,
        operator2: OperatorLike,
        value2: Any,
    ) -> "ConditionBuilder":
        """
        Add a parenthesized pair of predicates combined by ``combine_logic``.

        Each side follows the single-condition LIKE rule independently. If
        either field name is empty the call is a no-op.

        Example:
            builder.add_two_text_conditions("AND", "name", "LIKE", "ada", "OR", "email", "=", "a@x.io")
            # (lower("name") LIKE ? OR "email" = ?)
        """
        if not field_name1 or not field_name2:
            return self
        logic = self._join_logic(join_logic)
        combine = parse_join_logic(combine_logic)
        left, left_arg = self._fragment(quote_column(field_name1), parse_operator(operator1), value1)
        right, right_arg = self._fragment(quote_column(field_name2), parse_operator(operator2), value2)
        self._cascade(logic, f"({left} {combine.value} {right})", [left_arg, right_arg])
        return self

    def add_json_field_condition(
        self,
        join_logic: JoinLogicLike,
        field_name: str,
        key: str,
        operator: OperatorLike,
        value: Any,
    ) -> "ConditionBuilder":
        """
        Add a predicate on one key of a JSON column (``"col" ->> 'key'``).

        Example:
            builder.add_json_field_condition("AND", "attributes", "tier", "=", "gold")
            # "attributes" ->> 'tier' = ?
        """
        if not field_name:
            return self
        logic = self._join_logic(join_logic)
        op = parse_operator(operator)
        if not key or not _JSON_KEY.match(key):
            raise InvalidConditionError(f"invalid JSON key: {key!r}")
        column_ref = f"{quote_column(field_name)} ->> '{key}'"
        fragment, arg = self._fragment(column_ref, op, value)
        self._cascade(logic, fragment, [arg])
        return self

    def to_clause(self) -> TextClause:
        """The expression as a bound SQLAlchemy text clause."""
        return bind_placeholders(self.expression, self.args)
