from __future__ import annotations


class SqlaFluentError(Exception):
    """Base class for errors raised by sqla_fluent."""


class SchemaLoadError(SqlaFluentError):
    """Foreign-key introspection failed; the next lookup retries."""


class SelectParseError(SqlaFluentError, ValueError):
    """A select expression is malformed (strict parsing only)."""

    def __init__(self, token: str, reason: str) -> None:
        super().__init__(f"Cannot parse select token {token!r}: {reason}")
        self.token = token
        self.reason = reason
