"""
Query Executor
==============

``SQLQuery`` binds a ``ConditionBuilder`` to one schema's handle and runs it:
without paging, with paging, or as raw SQL, returning DTOs plus a count.

Example:
    query = SQLQuery(registry, CustomerDTO, Customer, "s2")
    query.add_text_condition("AND", "name", "LIKE", "ada")
    query.add_text_condition("OR", "email", "=", "ada@example.com")

    page = query.execute_with_paging("-created_at", limit=20, page=2)
    page.items   # up to 20 CustomerDTO
    page.count   # total matches across all pages
"""

from contextlib import contextmanager
from typing import Any, Generator, Generic, List, NamedTuple, Optional, Sequence, Tuple, TypeVar, Union

from sqlalchemy import Select, func, select, table as sql_table, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, selectinload

from schemarepo.core.constants import JoinType
from schemarepo.core.exceptions import InvalidConditionError, NotConnectedError, QueryError
from schemarepo.core.logging import get_logger
from schemarepo.database.registry import ConnectionRegistry
from schemarepo.models.base import SoftDeleteMixin
from schemarepo.models.mapper import get_entity_mapper
from schemarepo.repositories.conditions import ConditionBuilder, bind_placeholders
from schemarepo.repositories.paging import PagingSpec, SortSpec

logger = get_logger(__name__)

D = TypeVar("D")
E = TypeVar("E")


class QueryResult(NamedTuple):
    """Items of one query (or page) and the matching row count."""

    items: List[Any]
    count: int


class SQLQuery(ConditionBuilder, Generic[D, E]):
    """
    Condition builder bound to a schema handle.

    Args:
        registry: Connection registry owning the handle
        dto_type: DTO class returned by the ``execute_*`` methods
        entity_type: Entity class queried
        schema_name: Schema to query ("" means the registry's default)
        session: Optional caller-owned session to run in instead of a fresh
            one from the handle. It should come from the same handle so the
            schema translation applies; the query never commits or closes it.

    Raises:
        NotConnectedError: If the registry is down at construction
        UnknownSchemaError: If ``schema_name`` is not registered. A query
            cannot run without a handle, so this is a configuration error.
    """

    def __init__(
        self,
        registry: ConnectionRegistry,
        dto_type: type,
        entity_type: type,
        schema_name: str = "",
        session: Optional[Session] = None,
    ):
        super().__init__()
        self.registry = registry
        self.handle = registry.resolve(schema_name)
        self.session = session
        self.schema = self.handle.name
        self.dto_type = dto_type
        self.entity_type = entity_type
        self.mapper = get_entity_mapper(dto_type, entity_type)
        self._joins: List[Tuple[JoinType, Any, str]] = []
        self._preloads: List[str] = []

    # ========================================
    # Augmentations
    # ========================================

    def add_join(
        self,
        join_type: Union[JoinType, str],
        target: Union[type, str],
        condition: str,
    ) -> "SQLQuery[D, E]":
        """
        Join another table; ``condition`` is a caller-trusted ON clause.

        ``target`` may be an entity class or a table name. A bare name
        resolves inside this query's schema; ``"other.table"`` is taken as-is.

        Example:
            query.add_join("LEFT", Order, '"order"."customer_id" = "customer"."id"')
        """
        try:
            kind = JoinType(join_type)
        except ValueError:
            raise InvalidConditionError(f"unsupported join type: {join_type!r}") from None
        if isinstance(target, str):
            schema, _, name = target.rpartition(".")
            target = sql_table(name, schema=schema or self.schema)
        self._joins.append((kind, target, condition))
        return self

    def add_preload(self, relation: str) -> "SQLQuery[D, E]":
        """
        Eager-load a relationship (dotted paths chain: ``"orders.items"``).

        Raises:
            QueryError: If a segment is not a relationship
        """
        self._loader_option(relation)
        self._preloads.append(relation)
        return self

    def _loader_option(self, relation: str):
        option = None
        owner = self.entity_type
        for segment in relation.split("."):
            attr = getattr(owner, segment, None)
            prop = getattr(attr, "property", None)
            if prop is None or not hasattr(prop, "mapper"):
                raise QueryError(f"{owner.__name__} has no relationship {segment!r}")
            option = selectinload(attr) if option is None else option.selectinload(attr)
            owner = prop.mapper.class_
        return option

    def _apply_joins(self, stmt: Select) -> Select:
        for kind, target, condition in self._joins:
            onclause = text(condition)
            if kind is JoinType.LEFT:
                stmt = stmt.join(target, onclause, isouter=True)
            elif kind is JoinType.FULL:
                stmt = stmt.join(target, onclause, full=True)
            else:
                stmt = stmt.join(target, onclause)
        return stmt

    def _apply_filter(self, stmt: Select) -> Select:
        stmt = self._apply_joins(stmt)
        if self.expression:
            stmt = stmt.where(self.to_clause())
        return stmt

    def _entity_select(self) -> Select:
        stmt = select(self.entity_type)
        if self._preloads:
            stmt = stmt.options(*(self._loader_option(rel) for rel in self._preloads))
        return stmt

    def _count_select(self) -> Select:
        stmt = select(func.count()).select_from(self.entity_type)
        if issubclass(self.entity_type, SoftDeleteMixin):
            stmt = stmt.where(self.entity_type.deleted_at.is_(None))
        return self._apply_filter(stmt)

    @contextmanager
    def _session(self) -> Generator[Session, None, None]:
        if self.session is not None:
            yield self.session
            return
        with self.handle.session() as db:
            yield db

    def _ensure_connected(self) -> None:
        if not self.registry.connected:
            raise NotConnectedError("database not connected")

    # ========================================
    # Execution
    # ========================================

    def execute_no_paging(self, sort: str = "") -> QueryResult:
        """
        Fetch every matching row.

        Args:
            sort: ``-field`` / ``+field``; default newest first by created_at

        Returns:
            QueryResult(items, count) with count == len(items)
        """
        self._ensure_connected()
        order = SortSpec.parse(sort).order_by(self.entity_type)
        stmt = self._apply_filter(self._entity_select()).order_by(order)
        logger.debug("query_no_paging", schema=self.schema, where=self.expression, args=len(self.args))

        with self._session() as db:
            try:
                entities = db.scalars(stmt).all()
            except SQLAlchemyError as exc:
                raise QueryError(f"query failed in schema {self.schema}: {exc}") from exc
            items = self.mapper.to_dtos(entities)
        return QueryResult(items, len(items))

    def execute_with_paging(self, sort: str = "", limit: int = 0, page: int = 0) -> QueryResult:
        """
        Fetch one page of matching rows plus the total match count.

        ``limit < 1`` means 100 and ``page < 1`` means 1. If the fetch fails
        after a successful count, the raised ``QueryError.count`` carries
        that total.
        """
        self._ensure_connected()
        paging = PagingSpec.normalize(limit, page)
        order = SortSpec.parse(sort).order_by(self.entity_type)
        logger.debug(
            "query_with_paging",
            schema=self.schema,
            where=self.expression,
            args=len(self.args),
            limit=paging.limit,
            page=paging.page,
        )

        with self._session() as db:
            try:
                total = db.scalar(self._count_select()) or 0
            except SQLAlchemyError as exc:
                raise QueryError(f"count failed in schema {self.schema}: {exc}") from exc

            stmt = (
                self._apply_filter(self._entity_select())
                .order_by(order)
                .limit(paging.limit)
                .offset(paging.offset)
            )
            try:
                entities = db.scalars(stmt).all()
            except SQLAlchemyError as exc:
                raise QueryError(f"query failed in schema {self.schema}: {exc}", count=total) from exc
            items = self.mapper.to_dtos(entities)
        return QueryResult(items, total)

    def _raw_clause(self, raw_sql: str, args: Sequence[Any]):
        try:
            return bind_placeholders(raw_sql, list(args))
        except InvalidConditionError as exc:
            raise QueryError(str(exc)) from exc

    def execute_custom_query(self, raw_sql: str, *args: Any) -> QueryResult:
        """
        Run a raw SELECT and map its rows onto the entity.

        ``?`` placeholders bind ``args`` positionally. Preloads apply; joins
        and conditions added to this builder do not.

        Example:
            query.execute_custom_query('SELECT * FROM s1.customer WHERE "name" = ?', "Ada")
        """
        self._ensure_connected()
        clause = self._raw_clause(raw_sql, args)
        logger.debug("query_custom", schema=self.schema, args=len(args))

        with self._session() as db:
            try:
                entities = db.scalars(self._entity_select().from_statement(clause)).all()
            except SQLAlchemyError as exc:
                raise QueryError(f"custom query failed in schema {self.schema}: {exc}") from exc
            items = self.mapper.to_dtos(entities)
        return QueryResult(items, len(items))

    def execute_custom_query_with_paging(
        self,
        raw_sql: str,
        limit: int = 0,
        page: int = 0,
        *args: Any,
    ) -> QueryResult:
        """
        Paged variant of ``execute_custom_query``.

        The raw query is counted as ``SELECT COUNT(*) FROM (<raw>) AS count_query``
        and fetched with a literal ``LIMIT/OFFSET`` appended, so it must be a
        plain SELECT without its own LIMIT, OFFSET or trailing semicolon.
        """
        self._ensure_connected()
        paging = PagingSpec.normalize(limit, page)
        raw_sql = raw_sql.strip()
        count_clause = self._raw_clause(f"SELECT COUNT(*) FROM ({raw_sql}) AS count_query", args)
        page_clause = self._raw_clause(
            f"{raw_sql} LIMIT {paging.limit:d} OFFSET {paging.offset:d}", args
        )
        logger.debug(
            "query_custom_with_paging",
            schema=self.schema,
            args=len(args),
            limit=paging.limit,
            page=paging.page,
        )

        with self._session() as db:
            try:
                total = db.execute(count_clause).scalar() or 0
            except SQLAlchemyError as exc:
                raise QueryError(f"custom count failed in schema {self.schema}: {exc}") from exc
            try:
                entities = db.scalars(self._entity_select().from_statement(page_clause)).all()
            except SQLAlchemyError as exc:
                raise QueryError(
                    f"custom query failed in schema {self.schema}: {exc}", count=total
                ) from exc
            items = self.mapper.to_dtos(entities)
        return QueryResult(items, total)


def new_query(
    registry: ConnectionRegistry,
    dto_type: type,
    entity_type: type,
    schema_name: str = "",
    session: Optional[Session] = None,
) -> SQLQuery:
    """Factory mirroring ``SQLQuery(...)`` for call sites that prefer functions."""
    return SQLQuery(registry, dto_type, entity_type, schema_name, session=session)
