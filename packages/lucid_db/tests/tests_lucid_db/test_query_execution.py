import pytest
from lucid_core.schemas.response import Page
from lucid_db.collection import Collection
from lucid_db.exceptions import ContractError, DoesNotExistError, UnfilteredWriteError
from lucid_db.query import Query

from .models import Customer, Order, Ticket

pytestmark = pytest.mark.asyncio


async def seed_orders(db):
    await Query(db, "orders").insert_many(
        [
            {"customer_id": 1, "total": 10.0, "status": "paid"},
            {"customer_id": 1, "total": 25.0, "status": "open"},
            {"customer_id": 2, "total": 40.0, "status": "paid"},
        ]
    )


class TestReads:
    """Tests for terminal read operations against SQLite."""

    async def test_get_returns_dicts_for_table_queries(self, db):
        """Should return plain rows when the query has no model."""
        await seed_orders(db)
        rows = await Query(db, "orders").where("status", "paid").order_by("id").get()
        assert [row["total"] for row in rows] == [10.0, 40.0]
        assert isinstance(rows[0], dict)

    async def test_get_hydrates_models(self, db):
        """Should return a Collection of models for model-bound queries."""
        await seed_orders(db)
        orders = await Order.objects.query(db).where("customer_id", 1).get()
        assert isinstance(orders, Collection)
        assert len(orders) == 2
        assert all(isinstance(order, Order) for order in orders)
        assert all(order.exists for order in orders)

    async def test_as_dicts_skips_hydration(self, db):
        """Should return raw rows from a model-bound query on request."""
        await seed_orders(db)
        rows = await Order.objects.query(db).as_dicts().get()
        assert isinstance(rows[0], dict)

    async def test_empty_where_in_returns_nothing(self, db):
        """Should run an empty IN as a valid query matching zero rows."""
        await seed_orders(db)
        assert len(await Order.objects.query(db).where_in("id", []).get()) == 0
        assert await Query(db, "orders").where_not_in("id", []).count() == 3

    async def test_first_returns_none_when_empty(self, db):
        """Should represent no match as None, not as an error."""
        assert await Order.objects.query(db).where("id", 999).first() is None

    async def test_first_or_fail_raises(self, db):
        """Should raise DoesNotExistError when nothing matches."""
        with pytest.raises(DoesNotExistError, match="Order matching query does not exist"):
            await Order.objects.query(db).where("id", 999).first_or_fail()

    async def test_first_does_not_change_the_query(self, db):
        """Should apply LIMIT 1 to a copy only."""
        await seed_orders(db)
        query = Order.objects.query(db).order_by("total", "desc")
        first = await query.first()
        assert first.total == 40.0
        assert len(await query.get()) == 3

    async def test_count_and_exists(self, db):
        """Should count matching rows and detect their existence."""
        await seed_orders(db)
        assert await Query(db, "orders").count() == 3
        assert await Query(db, "orders").where("status", "paid").count() == 2
        assert await Query(db, "orders").where("status", "void").exists() is False
        assert await Query(db, "orders").where("status", "open").exists() is True

    async def test_grouped_count(self, db):
        """Should count groups, not the rows of the first group."""
        await seed_orders(db)
        query = Query(db, "orders").select("customer_id").group_by("customer_id")
        assert await query.count() == 2

    async def test_pluck_and_value(self, db):
        """Should return one column of the matching rows."""
        await seed_orders(db)
        query = Query(db, "orders").order_by("id")
        assert await query.pluck("status") == ["paid", "open", "paid"]
        assert await query.value("total") == 10.0
        assert await query.clone().where("id", 999).value("total") is None

    async def test_aggregates(self, db):
        """Should compute aggregates over the filtered rows."""
        await seed_orders(db)
        query = Query(db, "orders").where("customer_id", 1)
        assert await query.sum("total") == 35.0
        assert await query.avg("total") == 17.5
        assert await query.min("total") == 10.0
        assert await query.max("total") == 25.0

    async def test_join_selects_base_columns(self, db):
        """Should hydrate only the base table's columns after a join."""
        await Customer.objects.create(db, name="Ada")
        await seed_orders(db)
        customers = await (
            Customer.objects.query(db)
            .join("orders", "customers.id", "=", "orders.customer_id")
            .where("orders.status", "open")
            .get()
        )
        assert [c.name for c in customers] == ["Ada"]
        assert customers[0].get_key() == 1

    async def test_fetch_page(self, db):
        """Should return one page together with the total count."""
        await seed_orders(db)
        page = await Order.objects.query(db).order_by("id").paginate(2, 2).fetch_page()
        assert isinstance(page, Page)
        assert page.total == 3
        assert page.current_page == 2
        assert page.last_page == 2
        assert page.has_more is False
        assert [order.total for order in page.items] == [40.0]

    async def test_chunk(self, db):
        """Should iterate over results in fixed-size batches."""
        await seed_orders(db)
        batches = [
            [order.get_key() for order in batch]
            async for batch in Order.objects.query(db).order_by("id").chunk(2)
        ]
        assert batches == [[1, 2], [3]]


class TestWrites:
    """Tests for INSERT, UPDATE and DELETE terminals."""

    async def test_insert_returns_last_insert_id(self, db):
        """Should return the generated primary key."""
        first = await Query(db, "customers").insert({"name": "Ada"})
        second = await Query(db, "customers").insert({"name": "Grace"})
        assert (first, second) == (1, 2)

    async def test_insert_many_returns_row_count(self, db):
        """Should insert every row in one statement."""
        await seed_orders(db)
        assert await Query(db, "orders").count() == 3

    async def test_update_returns_affected_rows(self, db):
        """Should update only the matched rows."""
        await seed_orders(db)
        affected = await Query(db, "orders").where("status", "paid").update(
            {"status": "shipped"}
        )
        assert affected == 2
        assert await Query(db, "orders").where("status", "shipped").count() == 2

    async def test_increment_and_decrement(self, db):
        """Should adjust numeric columns in SQL."""
        await seed_orders(db)
        await Query(db, "orders").where("id", 1).increment("total", 5)
        await Query(db, "orders").where("id", 2).decrement("total", 5, {"status": "paid"})
        rows = await Query(db, "orders").where_in("id", [1, 2]).order_by("id").get()
        assert [(r["total"], r["status"]) for r in rows] == [(15.0, "paid"), (20.0, "paid")]

    async def test_delete_returns_affected_rows(self, db):
        """Should delete only the matched rows."""
        await seed_orders(db)
        assert await Query(db, "orders").where("customer_id", 1).delete() == 2
        assert await Query(db, "orders").count() == 1

    async def test_unfiltered_writes_send_no_statement(self, db, queries):
        """Should refuse mass UPDATE/DELETE before touching the database."""
        await seed_orders(db)
        queries.reset()

        with pytest.raises(UnfilteredWriteError):
            await Query(db, "orders").update({"status": "void"})
        with pytest.raises(UnfilteredWriteError):
            await Query(db, "orders").delete()

        assert queries.count == 0
        assert await Query(db, "orders").count() == 3


class TestNullsAndGrouping:
    """Tests for NULL comparisons and HAVING against SQLite."""

    async def test_where_none_matches_null_rows(self, db):
        """Should find rows with a NULL column through where(column, None)."""
        await seed_orders(db)
        await Query(db, "orders").insert({"customer_id": None, "total": 1.0})
        assert await Query(db, "orders").where("customer_id", None).count() == 1
        assert await Query(db, "orders").where("customer_id", "!=", None).count() == 3

    async def test_having_without_group_by_sends_nothing(self, db, queries):
        """Should refuse an ungrouped HAVING instead of dropping its filter."""
        queries.reset()
        query = (
            Query(db, "order_items")
            .select_raw("sum(quantity) AS s")
            .having_raw("sum(quantity) > ?", [100])
        )
        with pytest.raises(ContractError, match="requires group_by"):
            await query.get()
        assert queries.count == 0


class TestKeywordColumns:
    """Tests for tables whose columns are named after SQL keywords."""

    async def test_model_round_trip(self, db):
        """Should create, filter, update and delete through keyword columns."""
        first = await Ticket.objects.create(db, order=1, group="a")
        await Ticket.objects.create(db, order=2, group="b")

        found = await Ticket.objects.query(db).where("order", ">", 1).get()
        assert [ticket.group for ticket in found] == ["b"]

        first.group = "c"
        await first.save(db)
        assert (await Ticket.objects.find(db, first.id)).group == "c"

        await Query(db, "tickets").where("group", "b").increment("order", 10)
        assert await Query(db, "tickets").order_by("order", "desc").pluck("order") == [12, 1]
        assert await Query(db, "tickets").max("order") == 12

        assert await Query(db, "tickets").where("order", 1).delete() == 1
        assert await Ticket.objects.query(db).count() == 1

    async def test_grouped_keyword_columns(self, db):
        """Should group and count by a keyword column."""
        for order, group in ((1, "a"), (2, "a"), (3, "b")):
            await Ticket.objects.create(db, order=order, group=group)
        rows = await (
            Query(db, "tickets")
            .select("group")
            .select_raw("count(*) AS num")
            .group_by("group")
            .having("num", ">", 1)
            .get()
        )
        assert rows == [{"group": "a", "num": 2}]
        assert await Query(db, "tickets").group_by("group").count() == 2
