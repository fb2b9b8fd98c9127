from __future__ import annotations

import pytest
import sqlalchemy as sa

from sqla_fluent import Client
from sqla_fluent.result import NOT_SINGULAR_CODE


pytestmark = [pytest.mark.anyio, pytest.mark.integration]


class TestSelect:
    async def test_games_with_api_page(self, client: Client) -> None:
        result = await (
            client.from_("games")
            .select("id,name")
            .eq("has_api", True)
            .order("name", ascending=True)
            .range(0, 1)
        )

        assert result.error is None
        assert result.data == [{"id": 2, "name": "A"}, {"id": 1, "name": "B"}]

    async def test_filter_order_range(self, client: Client) -> None:
        result = await (
            client.from_("posts")
            .select("id, title, views", count="exact")
            .eq("status", "published")
            .gte("views", 80)
            .order("views", ascending=False)
            .range(0, 1)
        )

        assert result.error is None
        assert result.data == [
            {"id": 4, "title": "Kernels", "views": 300},
            {"id": 1, "title": "Engines", "views": 120},
        ]
        assert result.count == 3

    async def test_head_count(self, client: Client) -> None:
        result = await client.from_("posts").select("*", count="exact", head=True).eq("author_id", 1)

        assert result.data is None
        assert result.count == 2

    async def test_ilike_and_in(self, client: Client) -> None:
        result = await client.from_("posts").select("id").ilike("title", "%ENG%").in_("id", [1, 2, 3])

        assert result.data == [{"id": 1}]

    async def test_empty_in(self, client: Client) -> None:
        result = await client.from_("posts").select("id").in_("id", [])

        assert result.data == []

    async def test_is_null_and_not(self, client: Client) -> None:
        nulls = await client.from_("posts").select("id").is_("editor_id", None).order("id")
        not_nulls = await client.from_("posts").select("id").not_("editor_id", "is", "null").order("id")

        assert [r["id"] for r in nulls.data] == [2, 3]
        assert [r["id"] for r in not_nulls.data] == [1, 4]

    async def test_json_null_is_sql_null(self, client: Client) -> None:
        result = await client.from_("posts").select("id").is_("attrs", None)

        assert result.data == [{"id": 3}]

    async def test_or_grammar(self, client: Client) -> None:
        result = await (
            client.from_("posts")
            .select("id")
            .or_("status.eq.draft,and(views.gt.200,author_id.eq.3)")
            .order("id")
        )

        assert result.error is None
        assert result.data == [{"id": 3}, {"id": 4}]

    async def test_array_operators(self, client: Client) -> None:
        contains = await client.from_("posts").select("id").contains("tags", ["cs"]).order("id")
        overlaps = await client.from_("posts").select("id").overlaps("tags", ["math", "os"]).order("id")
        contained = await client.from_("posts").select("id").contained_by("tags", ["cs", "os"]).order("id")

        assert [r["id"] for r in contains.data] == [2, 4]
        assert [r["id"] for r in overlaps.data] == [1, 4]
        assert [r["id"] for r in contained.data] == [2, 3, 4]

    async def test_empty_array_operators(self, client: Client) -> None:
        contains = await client.from_("posts").select("id").contains("tags", [])
        overlaps = await client.from_("posts").select("id").overlaps("tags", [])

        assert len(contains.data) == 4
        assert overlaps.data == []

    async def test_jsonb_contains(self, client: Client) -> None:
        result = await client.from_("posts").select("id").contains("attrs", {"lang": "en"}).order("id")

        assert [r["id"] for r in result.data] == [1, 2]

    async def test_json_is_decoded(self, client: Client) -> None:
        result = await client.from_("posts").select("attrs, tags").eq("id", 1).single()

        assert result.data == {"attrs": {"lang": "en", "featured": True}, "tags": ["math", "history"]}

    async def test_text_search(self, client: Client) -> None:
        result = await client.from_("posts").select("id").text_search("title", "compilers")

        assert result.data == [{"id": 2}]

    async def test_filter_string_operator(self, client: Client) -> None:
        result = await client.from_("posts").select("id").filter("views", "lt", "10")

        assert result.data == [{"id": 3}]

    async def test_nulls_order(self, client: Client) -> None:
        result = await client.from_("posts").select("id").order("editor_id", nulls_first=True).order("id")

        assert [r["id"] for r in result.data][:2] == [2, 3]


class TestCardinality:
    async def test_single(self, client: Client) -> None:
        result = await client.from_("profiles").select("username").eq("id", 2).single()

        assert result.data == {"username": "grace"}

    async def test_single_none(self, client: Client) -> None:
        result = await client.from_("profiles").select("*").eq("id", 999).single()

        assert result.data is None
        assert result.error is not None
        assert result.error.code == NOT_SINGULAR_CODE

    async def test_maybe_single_none(self, client: Client) -> None:
        result = await client.from_("profiles").select("*").eq("id", 999).maybe_single()

        assert result.data is None
        assert result.error is None

    async def test_maybe_single_many(self, client: Client) -> None:
        result = await client.from_("profiles").select("*").maybe_single()

        assert result.error is not None
        assert result.error.code == NOT_SINGULAR_CODE


class TestErrors:
    async def test_missing_table(self, client: Client) -> None:
        result = await client.from_("nope").select("*")

        assert result.data is None
        assert result.error is not None
        assert result.error.code == "42P01"

    async def test_missing_column(self, client: Client) -> None:
        result = await client.from_("posts").select("id, nope")

        assert result.error is not None
        assert result.error.code == "42703"

    async def test_raw_connection(self, client: Client) -> None:
        async with client.raw() as conn:
            total = await conn.scalar(sa.text("SELECT count(*) FROM posts"))

        assert total == 4
