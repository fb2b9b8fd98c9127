from __future__ import annotations

import json
import re
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from typing import Any, Final, Literal

from .tools import placeholder, quote_ident, split_top_level


FilterOp = Literal[
    "eq",
    "neq",
    "gt",
    "gte",
    "lt",
    "lte",
    "like",
    "ilike",
    "is",
    "in",
    "contains",
    "containedBy",
    "overlaps",
    "textSearch",
]
TextSearchType = Literal["plain", "phrase", "websearch"]

_OPERATORS: Final[dict[str, str]] = {
    "eq": "=",
    "neq": "!=",
    "gt": ">",
    "gte": ">=",
    "lt": "<",
    "lte": "<=",
    "like": "LIKE",
    "ilike": "ILIKE",
}
_NEGATED: Final[dict[str, str]] = {
    "eq": "!=",
    "neq": "=",
    "like": "NOT LIKE",
    "ilike": "NOT ILIKE",
}
_IS_VALUES: Final[dict[Any, str]] = {None: "NULL", True: "TRUE", False: "FALSE"}
_TS_FUNCTIONS: Final[dict[str, str]] = {
    "plain": "plainto_tsquery",
    "phrase": "phraseto_tsquery",
    "websearch": "websearch_to_tsquery",
}
_TS_CONFIG_RE: Final[re.Pattern[str]] = re.compile(r"^\w+$")

# PostgREST operator spellings accepted by ``filter()`` and ``or_()``.
SHORT_OPS: Final[dict[str, FilterOp]] = {
    "eq": "eq",
    "neq": "neq",
    "gt": "gt",
    "gte": "gte",
    "lt": "lt",
    "lte": "lte",
    "like": "like",
    "ilike": "ilike",
    "is": "is",
    "in": "in",
    "cs": "contains",
    "cd": "containedBy",
    "ov": "overlaps",
    "contains": "contains",
    "containedBy": "containedBy",
    "overlaps": "overlaps",
}


@dataclass(slots=True, frozen=True)
class TextSearch:
    query: str
    type: TextSearchType = "plain"
    config: str = "english"

    def __post_init__(self) -> None:
        if not _TS_CONFIG_RE.match(self.config):
            raise ValueError(f"Invalid text search config: {self.config!r}")
        if self.type not in _TS_FUNCTIONS:
            raise ValueError(f"Invalid text search type: {self.type!r}")


@dataclass(slots=True, frozen=True)
class Filter:
    op: FilterOp
    column: str
    value: Any = None


@dataclass(slots=True, frozen=True)
class NotFilter:
    column: str
    op: str
    value: Any = None


@dataclass(slots=True, frozen=True)
class OrFilter:
    raw: str


@dataclass(slots=True)
class WhereClause:
    """Compiled predicate: AND-ed ``conditions`` plus their bound ``params``.

    ``next_index`` is the first placeholder number not used, so later clauses
    can continue the numbering.
    """

    conditions: str = ""
    params: list[Any] = field(default_factory=list)
    next_index: int = 1

    @property
    def sql(self) -> str:
        return f" WHERE {self.conditions}" if self.conditions else ""


class _Params:
    """Hands out consecutive placeholders while collecting their values."""

    __slots__ = ("index", "values")

    def __init__(self, start: int) -> None:
        self.index = start
        self.values: list[Any] = []

    def add(self, value: Any) -> str:
        ph = placeholder(self.index)
        self.values.append(value)
        self.index += 1
        return ph

    def add_many(self, values: Iterable[Any]) -> str:
        return ", ".join(self.add(v) for v in values)


_ARRAY_TYPES: Final = (list, tuple, set, frozenset)


def _as_list(value: Any) -> list[Any]:
    if isinstance(value, _ARRAY_TYPES):
        return list(value)
    return [value]


def _array(values: Sequence[Any], params: _Params) -> str:
    return f"CAST(ARRAY[{params.add_many(values)}] AS text[])"


def _jsonb(value: Any, params: _Params) -> str:
    payload = value if isinstance(value, str) else json.dumps(value, default=str)
    return f"CAST({params.add(payload)} AS jsonb)"


def compile_predicate(column: str, op: str, value: Any, params: _Params) -> str | None:
    """Compile one positive predicate; ``None`` means the filter is a no-op."""
    col = quote_ident(column)

    if op in _OPERATORS:
        return f"{col} {_OPERATORS[op]} {params.add(value)}"

    if op == "is":
        keyword = _IS_VALUES.get(value) if isinstance(value, (bool, type(None))) else None
        return f"{col} IS {keyword}" if keyword else None

    if op == "in":
        values = _as_list(value)
        if not values:
            return "FALSE"
        return f"{col} IN ({params.add_many(values)})"

    if op == "contains":
        if isinstance(value, _ARRAY_TYPES):
            # every array contains the empty array
            return f"{col} @> {_array(list(value), params)}" if value else None
        return f"{col} @> {_jsonb(value, params)}"

    if op == "containedBy":
        if isinstance(value, _ARRAY_TYPES):
            return f"{col} <@ {_array(list(value), params)}" if value else "FALSE"
        return f"{col} <@ {_jsonb(value, params)}"

    if op == "overlaps":
        values = _as_list(value)
        if not values:
            return "FALSE"
        return f"{col} && {_array(values, params)}"

    if op == "textSearch":
        ts = value if isinstance(value, TextSearch) else TextSearch(**value)
        return f"{col} @@ {_TS_FUNCTIONS[ts.type]}('{ts.config}', {params.add(ts.query)})"

    return f"{col} = {params.add(value)}"


def compile_negated(column: str, op: str, value: Any, params: _Params) -> str | None:
    """Compile the negation of ``column <op> value``; ``None`` means no-op."""
    col = quote_ident(column)

    if op in _NEGATED:
        return f"{col} {_NEGATED[op]} {params.add(value)}"

    if op == "is":
        keyword = _IS_VALUES.get(value) if isinstance(value, (bool, type(None))) else None
        return f"{col} IS NOT {keyword}" if keyword else None

    if op == "in":
        values = _as_list(value)
        if not values:
            return None
        return f"{col} NOT IN ({params.add_many(values)})"

    if (positive := compile_predicate(column, op, value, params)) is None:
        return None

    return f"NOT ({positive})"


def decode_text_value(op: str, raw: str | None) -> Any:
    """Decode the value half of an ``or_()`` clause for *op*."""
    if op == "is":
        return {"null": None, "true": True, "false": False}.get((raw or "").lower(), raw)

    if op in ("in", "contains", "containedBy", "overlaps") and raw and raw[0] in "({":
        items = [item.strip().strip('"') for item in raw[1:-1].split(",")]
        return [item for item in items if item]

    return raw


def _compile_or_clause(clause: str, params: _Params) -> str | None:
    for group, joiner in (("and(", " AND "), ("or(", " OR ")):
        if clause.startswith(group) and clause.endswith(")"):
            inner = _compile_group(clause[len(group) : -1], params, joiner)
            return f"({inner})" if inner else None

    column, dot, rest = clause.partition(".")
    if not dot or not column:
        return None

    op, dot, raw = rest.partition(".")
    negate = op == "not"
    if negate:
        op, dot, raw = raw.partition(".")

    op = SHORT_OPS.get(op, op)
    value = decode_text_value(op, raw if dot else None)
    if negate:
        return compile_negated(column, op, value, params)

    return compile_predicate(column, op, value, params)


def _compile_group(raw: str, params: _Params, joiner: str) -> str:
    conditions = [
        sql
        for raw_part in split_top_level(raw)
        if (part := raw_part.strip()) and (sql := _compile_or_clause(part, params)) is not None
    ]
    return joiner.join(conditions)


def parse_or_filter(raw: str, start_index: int = 1) -> WhereClause:
    """Compile the compact ``or_()`` grammar into one OR-joined predicate.

    Clauses are ``column.op.value`` separated by top-level commas; ``and(...)``
    groups AND their members and ``or(...)`` groups OR them, to any depth.

    Example:
        >>> w = parse_or_filter("status.eq.open,and(priority.gte.3,owner.is.null)", 1)
        >>> w.conditions
        '"status" = :p1 OR ("priority" >= :p2 AND "owner" IS NULL)'
    """
    params = _Params(start_index)
    conditions = _compile_group(raw, params, " OR ")

    return WhereClause(conditions=conditions, params=params.values, next_index=params.index)


def build_where(
    filters: Sequence[Filter],
    not_filters: Sequence[NotFilter] = (),
    or_filters: Sequence[OrFilter] = (),
    start_index: int = 1,
) -> WhereClause:
    """Compile all filters into one AND-ed predicate with continuous numbering.

    Ordinary filters come first, then NOT filters, then each OR group, all
    drawing placeholders from one counter starting at *start_index*.
    """
    params = _Params(start_index)
    conditions: list[str] = []

    for f in filters:
        if (sql := compile_predicate(f.column, f.op, f.value, params)) is not None:
            conditions.append(sql)

    for nf in not_filters:
        if (sql := compile_negated(nf.column, nf.op, nf.value, params)) is not None:
            conditions.append(sql)

    for orf in or_filters:
        if sql := _compile_group(orf.raw, params, " OR "):
            conditions.append(f"({sql})")

    return WhereClause(
        conditions=" AND ".join(conditions),
        params=params.values,
        next_index=params.index,
    )
