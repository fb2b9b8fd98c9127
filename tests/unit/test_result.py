from __future__ import annotations

from types import SimpleNamespace

import pytest
import sqlalchemy as sa

from sqla_fluent.result import (
    NOT_SINGULAR_CODE,
    NOT_SINGULAR_MESSAGE,
    QueryError,
    QueryResult,
    shape_rows,
    wrap_error,
)


class FakeDriverError(Exception):
    sqlstate = "23505"
    diag = SimpleNamespace(
        message_primary='duplicate key value violates unique constraint "profiles_username_key"',
        message_detail="Key (username)=(ada) already exists.",
        message_hint=None,
    )


class TestShapeRows:
    ROWS = [{"id": 1}, {"id": 2}]

    def test_list(self) -> None:
        result = shape_rows(self.ROWS, single=False, maybe_single=False, count=7)

        assert result == QueryResult(data=self.ROWS, error=None, count=7)
        assert result.ok

    @pytest.mark.parametrize("rows", [[], ROWS])
    def test_single_needs_exactly_one(self, rows: list) -> None:
        result = shape_rows(rows, single=True, maybe_single=False)

        assert result.data is None
        assert result.error is not None
        assert result.error.code == NOT_SINGULAR_CODE
        assert result.error.message == NOT_SINGULAR_MESSAGE

    def test_single(self) -> None:
        assert shape_rows([{"id": 1}], single=True, maybe_single=False).data == {"id": 1}

    def test_maybe_single_empty(self) -> None:
        result = shape_rows([], single=False, maybe_single=True)

        assert result.data is None
        assert result.error is None

    def test_maybe_single_many(self) -> None:
        result = shape_rows(self.ROWS, single=False, maybe_single=True)

        assert result.error is not None
        assert result.error.code == NOT_SINGULAR_CODE

    def test_to_dict(self) -> None:
        result = QueryResult(data=None, error=QueryError(message="x", code="42P01"))

        assert result.to_dict() == {
            "data": None,
            "error": {"message": "x", "code": "42P01", "details": None, "hint": None},
            "count": None,
        }


class TestWrapError:
    def test_plain_exception(self) -> None:
        assert wrap_error(RuntimeError("nope")) == QueryError(message="nope")

    def test_empty_message_uses_type_name(self) -> None:
        assert wrap_error(TimeoutError()).message == "TimeoutError"

    def test_dbapi_error_is_unwrapped(self) -> None:
        err = sa.exc.IntegrityError("INSERT ...", {}, FakeDriverError("boom"))
        wrapped = wrap_error(err)

        assert wrapped.code == "23505"
        assert wrapped.message.startswith("duplicate key value")
        assert wrapped.details == "Key (username)=(ada) already exists."
        assert wrapped.hint is None
