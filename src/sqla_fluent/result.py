from __future__ import annotations

from collections.abc import Sequence
from dataclasses import asdict, dataclass
from typing import Any, Final, Generic, TypeVar

import sqlalchemy as sa


T = TypeVar("T")
Row = dict[str, Any]

NOT_SINGULAR_CODE: Final[str] = "PGRST116"
NOT_SINGULAR_MESSAGE: Final[str] = "JSON object requested, multiple (or no) rows returned"


@dataclass(slots=True, frozen=True)
class QueryError:
    """Error half of a :class:`QueryResult`.

    ``code``, ``details`` and ``hint`` carry the database's SQLSTATE, detail
    and hint when the failure came from PostgreSQL.
    """

    message: str
    code: str | None = None
    details: str | None = None
    hint: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(slots=True)
class QueryResult(Generic[T]):
    """Uniform ``{data, error, count}`` outcome of every terminal call.

    Exactly one of ``data``/``error`` carries the outcome; ``count`` may be
    set alongside an error (and alone for head-only counts).
    """

    data: T | None = None
    error: QueryError | None = None
    count: int | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def to_dict(self) -> dict[str, Any]:
        return {
            "data": self.data,
            "error": self.error.to_dict() if self.error is not None else None,
            "count": self.count,
        }


def not_singular_error() -> QueryError:
    return QueryError(message=NOT_SINGULAR_MESSAGE, code=NOT_SINGULAR_CODE)


def wrap_error(err: BaseException) -> QueryError:
    """Convert any exception into a :class:`QueryError`.

    SQLAlchemy's ``DBAPIError`` is unwrapped to the driver exception so the
    SQLSTATE, detail and hint reported by PostgreSQL survive.
    """
    native: BaseException = err
    if isinstance(err, sa.exc.DBAPIError) and err.orig is not None:
        native = err.orig

    diag = getattr(native, "diag", None)
    message = getattr(diag, "message_primary", None) or str(native) or type(native).__name__

    return QueryError(
        message=message,
        code=getattr(native, "sqlstate", None) or getattr(native, "pgcode", None),
        details=getattr(diag, "message_detail", None),
        hint=getattr(diag, "message_hint", None),
    )


def shape_rows(
    rows: Sequence[Row],
    *,
    single: bool,
    maybe_single: bool,
    count: int | None = None,
) -> QueryResult[Any]:
    """Reshape a row list into the cardinality the caller asked for.

    ``single`` requires exactly one row; ``maybe_single`` allows zero or one;
    otherwise the list is returned untouched.
    """
    if single:
        if len(rows) != 1:
            return QueryResult(data=None, error=not_singular_error(), count=count)

        return QueryResult(data=rows[0], count=count)

    if maybe_single:
        if len(rows) > 1:
            return QueryResult(data=None, error=not_singular_error(), count=count)

        return QueryResult(data=rows[0] if rows else None, count=count)

    return QueryResult(data=list(rows), count=count)
