# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Copilot-for-Consensus contributors

"""Tests for select and selects."""

import pytest
from bson import ObjectId

from docdao import ErrorKind, ForeignJoinSpec, SortField, command


@pytest.fixture
def numbers(database):
    database.load("numbers", [{"n": i, "even": i % 2 == 0} for i in range(25)])
    return database


class TestSelect:
    """Tests for paginated select."""

    @pytest.mark.asyncio
    async def test_page_with_total(self, dao, numbers):
        """Test a middle page with a count."""
        result = await dao.select("numbers", sort=[SortField.asc("n")], page_index=2, page_size=10, want_total=True)

        page = result.value
        assert [row["n"] for row in page.rows] == list(range(10, 20))
        assert page.total == 25
        assert page.has_more is True
        assert (page.page_index, page.page_size) == (2, 10)

    @pytest.mark.asyncio
    async def test_last_page(self, dao, numbers):
        """Test has_more is False on the last page."""
        page = (await dao.select("numbers", sort=[SortField.asc("n")], page_index=3, want_total=True)).value

        assert [row["n"] for row in page.rows] == list(range(20, 25))
        assert page.has_more is False

    @pytest.mark.asyncio
    async def test_without_total(self, dao, numbers):
        """Test that without a count total is 0 and has_more is False."""
        page = (await dao.select("numbers", where={"even": True}, page_size=5)).value

        assert len(page.rows) == 5
        assert page.total == 0
        assert page.has_more is False

    @pytest.mark.asyncio
    async def test_where_sort_fields(self, dao, numbers):
        """Test filtering, descending sort and projection together."""
        page = (await dao.select(
            "numbers",
            where={"n": command.gte(3).lt(8)},
            sort=[SortField.desc("n")],
            fields={"n": 1, "_id": 0},
        )).value

        assert page.rows == [{"n": 7}, {"n": 6}, {"n": 5}, {"n": 4}, {"n": 3}]

    @pytest.mark.asyncio
    async def test_unbounded_delegates_to_select_all(self, dao, numbers):
        """Test page_size=-1 returns every row with a count."""
        page = (await dao.select("numbers", sort=[SortField.asc("n")], page_size=-1)).value

        assert len(page.rows) == 25
        assert page.total == 25
        assert page.has_more is False
        assert page.page_size == -1

    @pytest.mark.asyncio
    async def test_invalid_page_rejected(self, dao):
        """Test that page_index 0 is a validation failure."""
        result = await dao.select("numbers", page_index=0)

        assert result.value is None
        assert result.error_kind is ErrorKind.VALIDATION


@pytest.fixture
def shop(database):
    alice, bob = ObjectId(), ObjectId()
    database.load("users", [
        {"_id": alice, "name": "Alice", "active": True},
        {"_id": bob, "name": "Bob", "active": False},
    ])
    owners = [alice, bob, ObjectId()]
    database.load("orders", [
        {"_id": i, "user_id": str(owners[i % 3]), "amount": i} for i in range(15)
    ])
    database.load("items", [{"order_id": i, "sku": f"s{i}-{k}"} for i in range(15) for k in range(3)])
    return database


def _user_join(**overrides):
    values = dict(
        target_collection="users",
        local_key="user_id",
        foreign_key="_id",
        alias="user",
        limit=1,
        local_key_type="objectId",
    )
    values.update(overrides)
    return ForeignJoinSpec(**values)


class TestSelects:
    """Tests for joined selects."""

    @pytest.mark.asyncio
    async def test_limit_one_collapses(self, dao, shop):
        """Test a page of 10 with a single-row join."""
        result = await dao.selects(
            "orders", sort=[SortField.asc("_id")], page_size=10, want_total=True, joins=[_user_join()]
        )

        page = result.value
        assert len(page.rows) == 10
        assert page.total == 15
        assert page.has_more is True
        for row in page.rows:
            assert row["user"] is None or isinstance(row["user"], dict)
        assert page.rows[0]["user"]["name"] == "Alice"
        assert page.rows[1]["user"]["name"] == "Bob"
        assert page.rows[2]["user"] is None

    @pytest.mark.asyncio
    async def test_multi_row_join_respects_limit(self, dao, shop):
        """Test a list-valued join capped by its limit."""
        join = ForeignJoinSpec(
            "items", "_id", "order_id", "items", limit=2, sort=[SortField.desc("sku")], fields={"sku": 1, "_id": 0}
        )

        page = (await dao.selects("orders", sort=[SortField.asc("_id")], page_size=3, joins=[join])).value

        assert [len(row["items"]) for row in page.rows] == [2, 2, 2]
        assert page.rows[0]["items"] == [{"sku": "s0-2"}, {"sku": "s0-1"}]

    @pytest.mark.asyncio
    async def test_join_where_and_post_where(self, dao, shop):
        """Test the join filter and a post-join filter on the alias."""
        page = (await dao.selects(
            "orders",
            sort=[SortField.asc("_id")],
            page_size=15,
            joins=[_user_join(where={"active": True})],
            post_where={"user.name": "Alice"},
        )).value

        assert [row["_id"] for row in page.rows] == [0, 3, 6, 9, 12]

    @pytest.mark.asyncio
    async def test_post_sort_and_projection(self, dao, shop):
        """Test post-join sort and the final projection."""
        page = (await dao.selects(
            "orders",
            where={"amount": command.lt(4)},
            sort=[SortField.asc("_id")],
            fields={"amount": 1, "user": 1, "_id": 0},
            joins=[_user_join(fields={"name": 1, "_id": 0})],
            post_sort=[SortField.desc("amount")],
        )).value

        assert page.rows == [
            {"amount": 3, "user": {"name": "Alice"}},
            {"amount": 2, "user": None},
            {"amount": 1, "user": {"name": "Bob"}},
            {"amount": 0, "user": {"name": "Alice"}},
        ]

    @pytest.mark.asyncio
    async def test_no_joins_is_plain_page(self, dao, shop):
        """Test selects without joins behaves like a paged read."""
        page = (await dao.selects("orders", sort=[SortField.desc("_id")], page_size=4)).value

        assert [row["_id"] for row in page.rows] == [14, 13, 12, 11]

    @pytest.mark.asyncio
    async def test_unconvertible_local_key_joins_nothing(self, dao, database):
        """Test that a local key which is not an ObjectId only empties that row's join."""
        alice = ObjectId()
        database.load("users", [{"_id": alice, "name": "Alice"}])
        database.load("orders", [
            {"_id": 1, "user_id": str(alice)},
            {"_id": 2, "user_id": "guest"},
            {"_id": 3},
        ])

        single = await dao.selects("orders", sort=[SortField.asc("_id")], joins=[_user_join()])
        listed = await dao.selects("orders", sort=[SortField.asc("_id")], joins=[_user_join(limit=None)])

        assert single.ok
        assert [row["user"] for row in single.value.rows] == [{"_id": alice, "name": "Alice"}, None, None]
        assert listed.ok
        assert [row["user"] for row in listed.value.rows] == [[{"_id": alice, "name": "Alice"}], [], []]

    @pytest.mark.asyncio
    async def test_invalid_join_rejected(self, dao, logger):
        """Test that a malformed join is a validation failure."""
        result = await dao.selects("orders", joins=[_user_join(alias="")])

        assert result.value is None
        assert result.error_kind is ErrorKind.VALIDATION
        assert logger.has_log("Dao.selects rejected", level="WARNING")
