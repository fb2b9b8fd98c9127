"""Fluent, PostgREST-style query building for PostgreSQL on SQLAlchemy.

sqla_fluent compiles chained calls such as
``client.from_("posts").select("id, author:profiles(username)").eq("id", 1)``
into parameterized SQL, runs them on an async SQLAlchemy engine and returns a
``QueryResult`` of ``{data, error, count}``. Relationship references in the
select list are resolved from the foreign-key graph, one batched query per
reference.
"""

from ._version import __version__, __version_tuple__
from .client import Client, create_client
from .config import ClientSettings
from .connection import Connection, ConnectionProvider
from .core import QueryBuilder, sqla_cache_clear, sqla_cache_info
from .exceptions import SchemaLoadError, SelectParseError, SqlaFluentError
from .filters import TextSearch, build_where, parse_or_filter
from .joins import ResolvedJoin, resolve_fk
from .parsing import JoinRef, ParsedSelect, parse_select, parse_select_strict
from .result import QueryError, QueryResult
from .schema import FKInfo, SchemaCache
from .tools import quote_ident


__all__ = (
    "Client",
    "ClientSettings",
    "Connection",
    "ConnectionProvider",
    "FKInfo",
    "JoinRef",
    "ParsedSelect",
    "QueryBuilder",
    "QueryError",
    "QueryResult",
    "ResolvedJoin",
    "SchemaCache",
    "SchemaLoadError",
    "SelectParseError",
    "SqlaFluentError",
    "TextSearch",
    "__version__",
    "__version_tuple__",
    "build_where",
    "create_client",
    "parse_or_filter",
    "parse_select",
    "parse_select_strict",
    "quote_ident",
    "resolve_fk",
    "sqla_cache_clear",
    "sqla_cache_info",
)
