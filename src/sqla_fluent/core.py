from __future__ import annotations

import logging
import sys
import warnings
from collections.abc import Generator, Mapping, Sequence
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Final, Generic, Literal, TypeVar


if sys.version_info >= (3, 11):
    from typing import Self
else:
    from typing_extensions import Self

from .filters import (
    SHORT_OPS,
    Filter,
    FilterOp,
    NotFilter,
    OrFilter,
    TextSearch,
    TextSearchType,
    WhereClause,
    build_where,
    decode_text_value,
)
from .joins import JoinPlan, JoinResolver, augment_columns, strip_columns
from .parsing import parse_select, parse_select_strict
from .result import QueryError, QueryResult, Row, shape_rows, wrap_error
from .tools import build_column_list, quote_ident, split_columns, to_param


if TYPE_CHECKING:
    from .connection import Connection
    from .schema import SchemaCache

logger = logging.getLogger(__name__)

T = TypeVar("T")
Operation = Literal["select", "insert", "update", "delete", "upsert"]
CountMode = Literal["exact", "planned", "estimated"]

_COUNT_MODES: Final[frozenset[str]] = frozenset({"exact", "planned", "estimated"})
_MUTATIONS: Final[frozenset[str]] = frozenset({"insert", "update", "delete", "upsert"})
DEFAULT_CONFLICT_TARGET: Final[str] = "id"


@dataclass(slots=True, frozen=True)
class _OrderClause:
    column: str
    ascending: bool = True
    nulls_first: bool | None = None

    def sql(self) -> str:
        out = f"{quote_ident(self.column)} {'ASC' if self.ascending else 'DESC'}"
        if self.nulls_first is not None:
            out += " NULLS FIRST" if self.nulls_first else " NULLS LAST"
        return out


class QueryBuilder(Generic[T]):
    """Fluent, single-use statement builder for one table.

    Filter, ordering and pagination calls accumulate state and return the
    builder; a terminal call compiles and runs the statement:

    * ``await builder`` or :meth:`execute` returns the list of rows;
    * :meth:`single` requires exactly one row, else a ``PGRST116`` error;
    * :meth:`maybe_single` allows zero or one row.

    Terminal calls never raise for database or cardinality problems; they
    return a :class:`QueryResult` whose ``error`` describes the failure.
    """

    __slots__ = (
        "_connection",
        "_count",
        "_filters",
        "_head",
        "_limit",
        "_maybe_single",
        "_not_filters",
        "_on_conflict",
        "_ignore_duplicates",
        "_operation",
        "_or_filters",
        "_order",
        "_payload",
        "_range",
        "_returning",
        "_schema",
        "_select_columns",
        "_single",
        "table",
    )

    def __init__(self, connection: Connection, table: str, schema: SchemaCache) -> None:
        self._connection = connection
        self._schema = schema
        self.table = table
        self._operation: Operation = "select"
        self._select_columns = "*"
        self._returning: str | None = None
        self._count: CountMode | None = None
        self._head = False
        self._filters: list[Filter] = []
        self._not_filters: list[NotFilter] = []
        self._or_filters: list[OrFilter] = []
        self._order: list[_OrderClause] = []
        self._range: tuple[int, int] | None = None
        self._limit: int | None = None
        self._payload: Mapping[str, Any] | Sequence[Mapping[str, Any]] | None = None
        self._on_conflict: str = DEFAULT_CONFLICT_TARGET
        self._ignore_duplicates = False
        self._single = False
        self._maybe_single = False

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self._operation} {self.table!r}>"

    # -- operation -----------------------------------------------------------

    def select(
        self,
        columns: str | None = "*",
        *,
        count: CountMode | None = None,
        head: bool = False,
    ) -> Self:
        """Choose the columns to read, or the ``RETURNING`` list after a mutation.

        Args:
            columns: Select expression, e.g. ``"*, author:profiles(id, username)"``.
            count: Also run ``SELECT COUNT(*)`` with the same filters.
            head: Return only the count, ``data`` stays ``None``.
        """
        if count is not None and count not in _COUNT_MODES:
            warnings.warn(f"Unknown count mode: {count}. Using exact.", stacklevel=2)
            count = "exact"

        if self._operation in _MUTATIONS:
            self._returning = columns or "*"
        else:
            self._operation = "select"
            self._select_columns = columns or "*"

        self._count = count
        self._head = head

        return self

    def insert(self, rows: Mapping[str, Any] | Sequence[Mapping[str, Any]]) -> Self:
        self._operation = "insert"
        self._payload = rows
        return self

    def update(self, patch: Mapping[str, Any]) -> Self:
        self._operation = "update"
        self._payload = patch
        return self

    def delete(self) -> Self:
        self._operation = "delete"
        return self

    def upsert(
        self,
        rows: Mapping[str, Any] | Sequence[Mapping[str, Any]],
        *,
        on_conflict: str | None = None,
        ignore_duplicates: bool = False,
    ) -> Self:
        """Insert *rows*, updating (or skipping) rows that hit *on_conflict*.

        ``on_conflict`` is a comma-separated column list, ``id`` by default.
        """
        self._operation = "upsert"
        self._payload = rows
        self._on_conflict = on_conflict or DEFAULT_CONFLICT_TARGET
        self._ignore_duplicates = ignore_duplicates
        return self

    # -- filters -------------------------------------------------------------

    def _add(self, op: FilterOp, column: str, value: Any) -> Self:
        self._filters.append(Filter(op=op, column=column, value=value))
        return self

    def eq(self, column: str, value: Any) -> Self:
        return self._add("eq", column, value)

    def neq(self, column: str, value: Any) -> Self:
        return self._add("neq", column, value)

    def gt(self, column: str, value: Any) -> Self:
        return self._add("gt", column, value)

    def gte(self, column: str, value: Any) -> Self:
        return self._add("gte", column, value)

    def lt(self, column: str, value: Any) -> Self:
        return self._add("lt", column, value)

    def lte(self, column: str, value: Any) -> Self:
        return self._add("lte", column, value)

    def like(self, column: str, pattern: str) -> Self:
        return self._add("like", column, pattern)

    def ilike(self, column: str, pattern: str) -> Self:
        return self._add("ilike", column, pattern)

    def is_(self, column: str, value: bool | None) -> Self:
        if value is not None and not isinstance(value, bool):
            raise ValueError(f"is_() accepts None, True or False, got {value!r}")
        return self._add("is", column, value)

    def in_(self, column: str, values: Sequence[Any]) -> Self:
        return self._add("in", column, list(values))

    def contains(self, column: str, value: Any) -> Self:
        """Array containment for lists, ``jsonb`` containment for anything else."""
        return self._add("contains", column, value)

    def contained_by(self, column: str, value: Any) -> Self:
        return self._add("containedBy", column, value)

    def overlaps(self, column: str, values: Sequence[Any]) -> Self:
        return self._add("overlaps", column, list(values))

    def text_search(
        self,
        column: str,
        query: str,
        *,
        type: TextSearchType = "plain",  # noqa: A002
        config: str = "english",
    ) -> Self:
        return self._add("textSearch", column, TextSearch(query=query, type=type, config=config))

    def match(self, query: Mapping[str, Any] | None = None, /, **columns: Any) -> Self:
        """Add one ``eq`` filter per item of *query* (and keyword arguments)."""
        for column, value in {**(query or {}), **columns}.items():
            self._add("eq", column, value)
        return self

    def not_(self, column: str, op: str, value: Any) -> Self:
        """Negate ``column <op> value``; string values use the ``or_()`` syntax."""
        op = SHORT_OPS.get(op, op)
        if isinstance(value, str):
            value = decode_text_value(op, value)
        self._not_filters.append(NotFilter(column=column, op=op, value=value))
        return self

    def or_(self, filters: str) -> Self:
        """OR together ``column.op.value`` clauses, e.g. ``"a.eq.1,and(b.gt.2,c.is.null)"``."""
        self._or_filters.append(OrFilter(raw=filters))
        return self

    def filter(self, column: str, operator: str, value: Any) -> Self:
        """Add a filter by operator name (PostgREST short names accepted).

        Unknown operators fall back to ``eq``.
        """
        op = SHORT_OPS.get(operator, "eq")
        if isinstance(value, str):
            value = decode_text_value(op, value)
        return self._add(op, column, value)

    # -- ordering & pagination -----------------------------------------------

    def order(
        self, column: str, *, ascending: bool = True, nulls_first: bool | None = None
    ) -> Self:
        self._order.append(_OrderClause(column, ascending, nulls_first))
        return self

    def range(self, start: int, end: int) -> Self:  # noqa: A003
        """Return rows *start* through *end*, both inclusive and 0-based."""
        if start < 0 or end < start:
            raise ValueError(f"Invalid range: {start}..{end}")
        self._range = (int(start), int(end))
        return self

    def limit(self, count: int) -> Self:
        if count < 0:
            raise ValueError(f"Invalid limit: {count}")
        self._limit = int(count)
        return self

    # -- terminals -----------------------------------------------------------

    async def execute(self) -> QueryResult[Any]:
        """Run the statement and return every row (the list cardinality)."""
        return await self._run()

    async def single(self) -> QueryResult[Any]:
        self._single = True
        return await self._run()

    async def maybe_single(self) -> QueryResult[Any]:
        self._maybe_single = True
        return await self._run()

    def __await__(self) -> Generator[Any, None, QueryResult[Any]]:
        return self.execute().__await__()

    def to_sql(self) -> tuple[str, list[Any]]:
        """Compile the main statement without touching the database.

        Join keys are not added here since that needs the foreign-key graph;
        relationship references are simply left out of the column list.
        """
        projection = self._projection()
        columns = None
        if projection is not None:
            parsed = parse_select(projection)
            columns, _ = augment_columns(parsed, ())
        return self._compile(columns)

    # -- compilation ---------------------------------------------------------

    def _projection(self) -> str | None:
        if self._operation == "select":
            return self._select_columns
        return self._returning

    def _where(self, start: int = 1) -> WhereClause:
        return build_where(self._filters, self._not_filters, self._or_filters, start)

    def _order_sql(self) -> str:
        if not self._order:
            return ""
        return " ORDER BY " + ", ".join(o.sql() for o in self._order)

    def _limit_sql(self) -> str:
        if self._range is not None:
            start, end = self._range
            return f" LIMIT {end - start + 1} OFFSET {start}"
        if self._limit is not None:
            return f" LIMIT {self._limit}"
        return ""

    def _returning_sql(self, columns: str | None) -> str:
        return f" RETURNING {columns}" if columns else ""

    def _rows(self) -> list[Mapping[str, Any]]:
        payload = self._payload
        if payload is None:
            return []
        return [payload] if isinstance(payload, Mapping) else list(payload)

    def _values_sql(self, rows: Sequence[Mapping[str, Any]]) -> tuple[list[str], str, list[Any]]:
        """Build ``VALUES`` for *rows* over the union of their keys.

        Keys missing from a row take the column ``DEFAULT``.
        """
        columns = list(dict.fromkeys(key for row in rows for key in row))
        params: list[Any] = []
        value_sets: list[str] = []
        for row in rows:
            cells: list[str] = []
            for column in columns:
                if column not in row:
                    cells.append("DEFAULT")
                    continue
                sql, value = to_param(row[column], len(params) + 1)
                cells.append(sql)
                params.append(value)
            value_sets.append(f"({', '.join(cells)})")

        return columns, ", ".join(value_sets), params

    def _conflict_sql(self, columns: Sequence[str]) -> str:
        targets = split_columns(self._on_conflict)
        target = build_column_list(self._on_conflict)
        if self._ignore_duplicates:
            return f" ON CONFLICT ({target}) DO NOTHING"

        updates = ", ".join(
            f"{quote_ident(c)} = EXCLUDED.{quote_ident(c)}" for c in columns if c not in targets
        )
        if not updates:
            return f" ON CONFLICT ({target}) DO NOTHING"

        return f" ON CONFLICT ({target}) DO UPDATE SET {updates}"

    def _compile(self, columns: str | None) -> tuple[str, list[Any]]:
        """Compile the main statement; *columns* is the quoted projection."""
        table = quote_ident(self.table)

        if self._operation == "select":
            where = self._where()
            sql = f"SELECT {columns or '*'} FROM {table}{where.sql}"
            return sql + self._order_sql() + self._limit_sql(), where.params

        if self._operation in ("insert", "upsert"):
            names, values, params = self._values_sql(self._rows())
            if names:
                names_sql = ", ".join(quote_ident(c) for c in names)
                sql = f"INSERT INTO {table} ({names_sql}) VALUES {values}"
            else:
                sql = f"INSERT INTO {table} DEFAULT VALUES"
            if self._operation == "upsert":
                sql += self._conflict_sql(names)
            return sql + self._returning_sql(columns), params

        if self._operation == "update":
            patch = self._payload if isinstance(self._payload, Mapping) else {}
            sets: list[str] = []
            params = []
            for column, value in patch.items():
                placeholder_sql, bound = to_param(value, len(params) + 1)
                sets.append(f"{quote_ident(column)} = {placeholder_sql}")
                params.append(bound)
            where = self._where(len(params) + 1)
            sql = f"UPDATE {table} SET {', '.join(sets)}{where.sql}{self._returning_sql(columns)}"
            return sql, params + where.params

        where = self._where()
        return f"DELETE FROM {table}{where.sql}{self._returning_sql(columns)}", where.params

    def _validate_payload(self) -> QueryError | None:
        if self._operation in ("select", "delete"):
            return None
        if self._payload is None:
            return QueryError(message=f"No data provided for {self._operation}")
        if self._operation == "update":
            if not isinstance(self._payload, Mapping):
                return QueryError(message="update() expects a single mapping")
            if not self._payload:
                return QueryError(message="No columns to update")
        return None

    # -- execution -----------------------------------------------------------

    async def _run(self) -> QueryResult[Any]:
        try:
            return await self._dispatch()
        except Exception as exc:  # noqa: BLE001
            logger.debug("%r failed", self, exc_info=True)
            return QueryResult(data=None, error=wrap_error(exc))

    async def _count_rows(self) -> int:
        where = self._where()
        rows = await self._connection.fetch(
            f"SELECT COUNT(*) AS count FROM {quote_ident(self.table)}{where.sql}", where.params
        )
        return int(rows[0]["count"]) if rows else 0

    async def _dispatch(self) -> QueryResult[Any]:
        if (error := self._validate_payload()) is not None:
            return QueryResult(data=None, error=error)

        if self._operation in ("insert", "upsert") and not self._rows():
            return QueryResult(data=[])

        projection = self._projection()
        resolver = JoinResolver(self._connection, self._schema)
        plans: list[JoinPlan] = []
        columns: str | None = None
        added: tuple[str, ...] = ()
        if projection is not None:
            parsed = parse_select(projection)
            plans = await resolver.plan(self.table, parsed.joins)
            columns, added = augment_columns(
                parsed, (resolved.parent_key for _, resolved in plans if resolved is not None)
            )

        count: int | None = None
        if self._operation == "select":
            if self._count is not None:
                count = await self._count_rows()
            if self._head:
                return QueryResult(data=None, count=count)

        sql, params = self._compile(columns)
        rows: list[Row] = await self._connection.fetch(sql, params)

        rows = await resolver.resolve(rows, plans)
        strip_columns(rows, added, keep=(join.alias for join, _ in plans))

        if projection is None and not (self._single or self._maybe_single):
            return QueryResult(data=None)

        return shape_rows(rows, single=self._single, maybe_single=self._maybe_single, count=count)


def sqla_cache_info() -> dict[str, Any]:
    """Return LRU cache statistics for all internal caches."""
    return {fn.__name__: fn.cache_info() for fn in (parse_select, parse_select_strict, quote_ident)}


def sqla_cache_clear() -> None:
    """Clear all internal LRU caches."""
    for fn in (parse_select, parse_select_strict, quote_ident):
        fn.cache_clear()
