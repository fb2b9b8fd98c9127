from __future__ import annotations

import json
from collections.abc import Mapping, Sequence
from functools import lru_cache
from typing import Any, Final


PARAM_PREFIX: Final[str] = "p"


def placeholder(index: int) -> str:
    """Return the named bind placeholder for the 1-based parameter *index*."""
    return f":{PARAM_PREFIX}{index}"


def bind_params(params: Sequence[Any]) -> dict[str, Any]:
    """Map a positional parameter list onto ``{"p1": ..., "p2": ...}``."""
    return {f"{PARAM_PREFIX}{i}": value for i, value in enumerate(params, start=1)}


@lru_cache(maxsize=4096)
def quote_ident(name: str) -> str:
    """Quote a SQL identifier.

    ``*`` passes through unchanged. Dotted names (``table.column``) are quoted
    per part; a part that is ``*`` or already starts with ``"`` is kept as is.
    Embedded double quotes are doubled, so the result is always a single
    identifier token regardless of input.

    Example:
        >>> quote_ident("posts.author_id")
        '"posts"."author_id"'
    """
    if name == "*":
        return "*"

    return ".".join(
        part if part == "*" or part.startswith('"') else '"' + part.replace('"', '""') + '"'
        for part in name.split(".")
    )


def split_columns(columns: str) -> list[str]:
    """Split a plain column list on commas, dropping blanks."""
    return [c for c in (part.strip() for part in columns.split(",")) if c]


def build_column_list(columns: str | None) -> str:
    """Build a safe, quoted column list for a SELECT or RETURNING clause."""
    if not columns or columns.strip() == "*":
        return "*"

    return ", ".join(quote_ident(c) for c in split_columns(columns))


def split_top_level(text: str) -> list[str]:
    """Split *text* on commas not nested inside parentheses or braces.

    Empty trailing parts are dropped; inner whitespace is kept so callers
    decide how to strip.
    """
    parts: list[str] = []
    depth = 0
    current: list[str] = []

    for ch in text:
        if ch in "({":
            depth += 1
        elif ch in ")}":
            depth -= 1

        if ch == "," and depth == 0:
            parts.append("".join(current))
            current = []
        else:
            current.append(ch)

    if current:
        parts.append("".join(current))

    return parts


def column_key(column: str) -> str:
    """Return the result key a selected column produces (``posts.id`` -> ``id``)."""
    return column.rsplit(".", 1)[-1].strip('"')


def is_json_value(value: Any) -> bool:
    """True for values that bind as ``jsonb`` (mappings, not arrays/dates/None)."""
    return isinstance(value, Mapping)


def to_param(value: Any, index: int) -> tuple[str, Any]:
    """Return ``(placeholder_sql, bound_value)`` for a payload value.

    JSON-shaped values are serialized and cast to ``jsonb``; everything else
    binds as is.
    """
    if is_json_value(value):
        return f"CAST({placeholder(index)} AS jsonb)", json.dumps(value, default=str)

    return placeholder(index), value
