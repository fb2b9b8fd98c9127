from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable, MutableSequence, Sequence
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Final, Literal

from .parsing import JoinRef, ParsedSelect, parse_select
from .result import Row
from .tools import column_key, placeholder, quote_ident


if TYPE_CHECKING:
    from .connection import Connection
    from .schema import FKInfo, SchemaCache

logger = logging.getLogger(__name__)

Direction = Literal["many-to-one", "one-to-many"]
MANY_TO_ONE: Final[Direction] = "many-to-one"
ONE_TO_MANY: Final[Direction] = "one-to-many"
_FKEY_SUFFIX: Final[str] = "_fkey"


@dataclass(slots=True, frozen=True)
class ResolvedJoin:
    """How one relationship reference connects to its source table.

    ``local_column`` is the column holding the foreign key and
    ``foreign_column`` the column it references. For many-to-one the local
    column lives on the source rows; for one-to-many it lives on
    ``foreign_table``.
    """

    direction: Direction
    local_column: str
    foreign_column: str
    foreign_table: str

    @property
    def parent_key(self) -> str:
        """Column read from the source rows to batch the lookup."""
        return self.local_column if self.direction == MANY_TO_ONE else self.foreign_column

    @property
    def related_key(self) -> str:
        """Column of ``foreign_table`` matched against the collected keys."""
        return self.foreign_column if self.direction == MANY_TO_ONE else self.local_column

    def empty(self) -> Any:
        return empty_value(self.direction)


JoinPlan = tuple[JoinRef, ResolvedJoin | None]


def empty_value(direction: Direction | None) -> Any:
    return [] if direction == ONE_TO_MANY else None


def _column_from_constraint(name: str, table: str) -> str | None:
    """Extract ``col`` from a ``{table}_{col}_fkey`` constraint name."""
    prefix = f"{table}_"
    if name.startswith(prefix) and name.endswith(_FKEY_SUFFIX):
        return name[len(prefix) : -len(_FKEY_SUFFIX)] or None
    return None


def resolve_fk(
    fks: Sequence[FKInfo],
    join: JoinRef,
    source_table: str,
) -> ResolvedJoin | None:
    """Decide direction and columns for *join* as seen from *source_table*.

    Resolution order, first match wins:

    1. The constraint named by the ``!hint``: many-to-one when the source
       table holds the key, one-to-many when the joined table does.
    2. The ``{table}_{column}_fkey`` naming convention applied to the hint.
    3. Any foreign key between the two tables, source side first.
    4. ``{alias}_id`` on the source referencing ``id`` (logged; may be wrong).

    Returns ``None`` when the hinted constraint exists but connects neither
    table.
    """
    if (name := join.constraint_name) is not None:
        fk = next((f for f in fks if f.constraint_name == name), None)
        if fk is not None:
            if fk.from_table == source_table:
                return ResolvedJoin(MANY_TO_ONE, fk.from_column, fk.to_column, join.table)
            if fk.to_table == source_table:
                return ResolvedJoin(ONE_TO_MANY, fk.from_column, fk.to_column, join.table)

            logger.warning(
                "Constraint %r links %s to %s, not %s; %r resolves to nothing",
                name,
                fk.from_table,
                fk.to_table,
                source_table,
                join.alias,
            )
            return None

        if (column := _column_from_constraint(name, source_table)) is not None:
            return ResolvedJoin(MANY_TO_ONE, column, "id", join.table)
        if (column := _column_from_constraint(name, join.table)) is not None:
            return ResolvedJoin(ONE_TO_MANY, column, "id", join.table)

    for fk in fks:
        if fk.from_table == source_table and fk.to_table == join.table:
            return ResolvedJoin(MANY_TO_ONE, fk.from_column, fk.to_column, join.table)

    for fk in fks:
        if fk.from_table == join.table and fk.to_table == source_table:
            return ResolvedJoin(ONE_TO_MANY, fk.from_column, fk.to_column, join.table)

    logger.warning(
        "No foreign key between %s and %s; guessing %s.%s_id -> %s.id for %r",
        source_table,
        join.table,
        source_table,
        join.alias,
        join.table,
        join.alias,
    )
    return ResolvedJoin(MANY_TO_ONE, f"{join.alias}_id", "id", join.table)


def augment_columns(parsed: ParsedSelect, keys: Iterable[str]) -> tuple[str, tuple[str, ...]]:
    """Return the quoted select list for *parsed* plus any missing join *keys*.

    The second element names the columns that were added, so they can be
    stripped from the rows once the joins are merged.
    """
    if parsed.is_star:
        return ", ".join(quote_ident(c) for c in parsed.columns), ()

    present = {column_key(c) for c in parsed.columns}
    added = tuple(dict.fromkeys(k for k in keys if k not in present))

    return ", ".join(quote_ident(c) for c in (*parsed.columns, *added)), added


def strip_columns(rows: Iterable[Row], columns: Sequence[str], keep: Iterable[str] = ()) -> None:
    """Remove auto-added *columns* from every row, except those in *keep*."""
    drop = [c for c in columns if c not in set(keep)]
    if not drop:
        return
    for row in rows:
        for column in drop:
            row.pop(column, None)


def _distinct(rows: Iterable[Row], key: str) -> list[Any]:
    return list(dict.fromkeys(v for row in rows if (v := row.get(key)) is not None))


class JoinResolver:
    """Attach related rows to already fetched rows, one query per reference.

    Every relationship reference costs one ``IN (...)`` query regardless of
    the number of parent rows. Nested references in a join's column list are
    resolved on the fetched related rows before they are attached. A failing
    reference is logged and degrades to ``None`` (many-to-one) or ``[]``
    (one-to-many) without affecting the other references or the parent rows.
    """

    __slots__ = ("_connection", "_schema")

    def __init__(self, connection: Connection, schema: SchemaCache) -> None:
        self._connection = connection
        self._schema = schema

    async def plan(self, source_table: str, joins: Sequence[JoinRef]) -> list[JoinPlan]:
        """Resolve every reference of one select level against the FK graph."""
        if not joins:
            return []

        fks = await self._schema.get()

        return [(join, resolve_fk(fks, join, source_table)) for join in joins]

    async def resolve(self, rows: list[Row], plans: Sequence[JoinPlan]) -> list[Row]:
        """Merge every planned reference onto *rows*; returns the surviving rows.

        References marked ``!inner`` drop parent rows that found no match.
        """
        if not plans or not rows:
            return rows

        outcomes = await asyncio.gather(
            *(self._resolve_one(rows, join, resolved) for join, resolved in plans)
        )

        inner = [
            join.alias
            for (join, _), ok in zip(plans, outcomes, strict=True)
            if ok and join.is_inner
        ]
        if inner:
            rows = [row for row in rows if all(row.get(alias) not in (None, []) for alias in inner)]

        return rows

    async def _resolve_one(
        self, rows: MutableSequence[Row], join: JoinRef, resolved: ResolvedJoin | None
    ) -> bool:
        try:
            if resolved is None:
                self._assign(rows, join.alias, None)
                return False

            await self._fetch_and_merge(rows, join, resolved)
        except Exception:
            logger.warning(
                "Failed to resolve %r (%s) for %d rows",
                join.alias,
                join.table,
                len(rows),
                exc_info=True,
            )
            self._assign(rows, join.alias, empty_value(resolved.direction if resolved else None))
            return False

        return True

    async def _fetch_and_merge(
        self, rows: MutableSequence[Row], join: JoinRef, resolved: ResolvedJoin
    ) -> None:
        keys = _distinct(rows, resolved.parent_key)
        if not keys:
            self._assign(rows, join.alias, resolved.empty())
            return

        parsed = parse_select(join.columns)
        nested = await self.plan(resolved.foreign_table, parsed.joins)
        columns, added = augment_columns(
            parsed,
            (resolved.related_key, *(n.parent_key for _, n in nested if n is not None)),
        )
        in_list = ", ".join(placeholder(i) for i in range(1, len(keys) + 1))
        sql = (
            f"SELECT {columns} FROM {quote_ident(resolved.foreign_table)}"
            f" WHERE {quote_ident(resolved.related_key)} IN ({in_list})"
        )
        related = await self._connection.fetch(sql, keys)

        if nested:
            related = await self.resolve(related, nested)

        related_key = resolved.related_key
        if resolved.direction == MANY_TO_ONE:
            by_key = {r.get(related_key): r for r in related}
            for row in rows:
                row[join.alias] = by_key.get(row.get(resolved.parent_key))
        else:
            groups: dict[Any, list[Row]] = {}
            for r in related:
                groups.setdefault(r.get(related_key), []).append(r)
            for row in rows:
                row[join.alias] = groups.get(row.get(resolved.parent_key), [])

        strip_columns(related, added, keep=(j.alias for j, _ in nested))

    @staticmethod
    def _assign(rows: Iterable[Row], alias: str, value: Any) -> None:
        for row in rows:
            row[alias] = [] if isinstance(value, list) else value
