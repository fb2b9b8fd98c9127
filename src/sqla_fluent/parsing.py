from __future__ import annotations

import re
from dataclasses import dataclass
from functools import lru_cache
from typing import Final

from .exceptions import SelectParseError
from .tools import column_key, split_top_level


_PREFIX_RE: Final[re.Pattern[str]] = re.compile(r"^[\w:!]+$")
_NAME_RE: Final[re.Pattern[str]] = re.compile(r"^\w+$")
_INNER: Final[str] = "inner"


@dataclass(slots=True, frozen=True)
class Column:
    """A plain select token (``id``, ``posts.title``, ``*``)."""

    name: str


@dataclass(slots=True, frozen=True)
class JoinRef:
    """A relationship reference: ``alias:table!constraint!inner(columns)``.

    ``columns`` is kept unparsed; nested references inside it are discovered
    when the join resolver recurses into this reference.
    """

    alias: str
    table: str
    constraint_name: str | None = None
    is_inner: bool = False
    columns: str = "*"


@dataclass(slots=True, frozen=True)
class ParsedSelect:
    columns: tuple[str, ...] = ("*",)
    joins: tuple[JoinRef, ...] = ()

    @property
    def main_columns(self) -> str:
        return ", ".join(self.columns) if self.columns else "*"

    @property
    def is_star(self) -> bool:
        return any(column_key(c) == "*" for c in self.columns)


def _split_body(token: str) -> tuple[str, str] | None:
    """Split ``prefix(body)`` when the token ends in one balanced group."""
    start = token.find("(")
    if start <= 0 or not token.endswith(")"):
        return None

    depth = 0
    for pos in range(start, len(token)):
        ch = token[pos]
        if ch == "(":
            depth += 1
        elif ch == ")":
            depth -= 1
            if depth == 0 and pos != len(token) - 1:
                return None
        if depth < 0:
            return None

    if depth != 0:
        return None

    return token[:start], token[start + 1 : -1]


def _parse_token(token: str) -> Column | JoinRef:
    """Classify one top-level token, raising ``SelectParseError`` on bad joins.

    Tokens that do not look like a relationship at all are plain columns.
    """
    split = _split_body(token)
    if split is None:
        return Column(token)

    prefix, body = split
    if not _PREFIX_RE.match(prefix):
        return Column(token)

    head, *suffixes = prefix.split("!")
    alias, sep, table = head.rpartition(":")
    if not sep:
        alias = table
    if not _NAME_RE.match(alias) or not _NAME_RE.match(table):
        raise SelectParseError(token, "alias and table must be plain identifiers")

    constraint: str | None = None
    is_inner = False
    for suffix in suffixes:
        if suffix == _INNER:
            is_inner = True
        elif suffix:
            constraint = suffix
        else:
            raise SelectParseError(token, "empty '!' hint")

    return JoinRef(
        alias=alias,
        table=table,
        constraint_name=constraint,
        is_inner=is_inner,
        columns=body.strip() or "*",
    )


def _parse(text: str | None, *, strict: bool) -> ParsedSelect:
    if not text or text.strip() == "*":
        return ParsedSelect()

    columns: list[str] = []
    joins: list[JoinRef] = []
    for raw in split_top_level(text):
        token = raw.strip()
        if not token:
            continue
        try:
            item = _parse_token(token)
        except SelectParseError:
            if strict:
                raise
            item = Column(token)

        if isinstance(item, JoinRef):
            joins.append(item)
        else:
            columns.append(item.name)

    return ParsedSelect(columns=tuple(columns) or ("*",), joins=tuple(joins))


@lru_cache(maxsize=1028)
def parse_select(text: str | None) -> ParsedSelect:
    """Parse a select expression into plain columns and relationship references.

    Malformed relationship syntax degrades to a literal column rather than
    raising, so existing call sites keep working; the database reports the
    bad column name instead.

    Examples:
        >>> parse_select("*")
        ParsedSelect(columns=('*',), joins=())
        >>> parse_select("id, author:profiles!posts_author_id_fkey(id, username)").joins[0]
        JoinRef(alias='author', table='profiles', constraint_name='posts_author_id_fkey', is_inner=False, columns='id, username')
    """
    return _parse(text, strict=False)


@lru_cache(maxsize=1028)
def parse_select_strict(text: str | None) -> ParsedSelect:
    """Like :func:`parse_select` but raises ``SelectParseError`` on malformed joins."""
    return _parse(text, strict=True)
