from types import SimpleNamespace

import pytest
from lucid_db.exceptions import (
    ContractError,
    InvalidIdentifierError,
    InvalidOperatorError,
    InvalidValueError,
)
from lucid_db.query import Query

from .models import Order


class TestInputValidation:
    """Tests for fail-fast validation of identifiers, operators and values."""

    @pytest.mark.parametrize(
        "column",
        ["total; DROP TABLE orders", "1abc", "orders.total.x", "", "to tal"],
    )
    def test_invalid_column_names_are_rejected(self, column):
        """Should refuse anything that is not a plain or qualified identifier."""
        with pytest.raises(InvalidIdentifierError):
            Query(None, "orders").where(column, 1)

    def test_invalid_table_name_is_rejected(self):
        """Should refuse a table name that is not an identifier."""
        with pytest.raises(InvalidIdentifierError, match="Invalid table name"):
            Query(None, "orders o; --")

    def test_invalid_select_is_rejected(self):
        """Should refuse expressions in select(); select_raw() is for those."""
        with pytest.raises(InvalidIdentifierError):
            Query(None, "orders").select("count(*)")

    def test_unknown_operator_is_rejected(self):
        """Should refuse operators outside the allowed set."""
        with pytest.raises(InvalidOperatorError, match="Unsupported operator"):
            Query(None, "orders").where("total", "=>", 1)

    def test_operators_are_case_insensitive(self):
        """Should normalize LIKE operators to upper case."""
        sql, _ = Query(None, "orders").where("status", "NOT like", "x%").to_sql()
        assert sql == "SELECT * FROM orders WHERE status NOT LIKE ?"

    def test_unknown_direction_is_rejected(self):
        """Should refuse sort directions other than asc/desc."""
        with pytest.raises(InvalidOperatorError, match="sort direction"):
            Query(None, "orders").order_by("id", "sideways")

    @pytest.mark.parametrize("value", [[1], {"a": 1}, object(), {1, 2}])
    def test_unsupported_values_are_rejected(self, value):
        """Should only bind int, float, str, bool, bytes or None."""
        with pytest.raises(InvalidValueError):
            Query(None, "orders").where("total", value)

    def test_where_in_requires_a_sequence(self):
        """Should refuse a scalar or a string where a list is expected."""
        with pytest.raises(InvalidValueError):
            Query(None, "orders").where_in("id", "123")

    def test_where_requires_a_value(self):
        """Should refuse a where() without value."""
        with pytest.raises(ContractError, match="requires a value"):
            Query(None, "orders").where("id")

    @pytest.mark.parametrize("count", [-1, 1.5, "3", True])
    def test_limit_requires_non_negative_int(self, count):
        """Should refuse negative or non-integer limits."""
        with pytest.raises(ContractError):
            Query(None, "orders").limit(count)

    def test_raw_placeholder_count_must_match(self):
        """Should refuse raw SQL whose placeholders do not match its bindings."""
        with pytest.raises(ContractError, match="placeholder"):
            Query(None, "orders").where_raw("total > ? AND id < ?", [1])

    def test_validation_errors_are_value_errors(self):
        """Should let callers catch contract violations as ValueError."""
        with pytest.raises(ValueError):
            Query(None, "orders").where("bad name", 1)


class TestNullComparisons:
    """Tests for where() called with None."""

    def test_equality_with_none_becomes_is_null(self):
        """Should render IS NULL instead of a comparison that never matches."""
        sql, bindings = Query(None, "orders").where("customer_id", None).to_sql()
        assert sql == "SELECT * FROM orders WHERE customer_id IS NULL"
        assert bindings == []

    @pytest.mark.parametrize("operator", ["!=", "<>"])
    def test_inequality_with_none_becomes_is_not_null(self, operator):
        """Should render IS NOT NULL for both inequality spellings."""
        sql, _ = Query(None, "orders").where("customer_id", operator, None).to_sql()
        assert sql == "SELECT * FROM orders WHERE customer_id IS NOT NULL"

    def test_or_where_with_none_keeps_its_connector(self):
        """Should keep OR on the rewritten predicate."""
        sql, bindings = (
            Query(None, "orders").where("status", "open").or_where("status", None).to_sql()
        )
        assert sql == "SELECT * FROM orders WHERE status = ? OR status IS NULL"
        assert bindings == ["open"]

    def test_ordering_operator_with_none_is_rejected(self):
        """Should point to where_null() for comparisons NULL cannot take part in."""
        with pytest.raises(InvalidValueError, match="where_null"):
            Query(None, "orders").where("total", ">", None)


class TestQueryState:
    """Tests for chaining, cloning and pagination state."""

    def test_chaining_returns_same_query(self):
        """Should mutate and return the same object."""
        query = Query(None, "orders")
        assert query.where("id", 1) is query
        assert query.order_by("id").limit(1) is query

    def test_clone_is_independent(self):
        """Should let a clone and its source evolve separately."""
        base = Query(None, "orders").where("status", "open")
        branch = base.clone().where("total", ">", 10).order_by("id")

        assert base.to_sql() == ("SELECT * FROM orders WHERE status = ?", ["open"])
        assert branch.to_sql() == (
            "SELECT * FROM orders WHERE status = ? AND total > ? ORDER BY id ASC",
            ["open", 10],
        )

    def test_repr_shows_sql(self):
        """Should include the rendered SQL in the repr."""
        assert "SELECT * FROM orders" in repr(Query(None, "orders"))

    def test_model_bound_query(self):
        """Should take the table from the model."""
        query = Order.objects.query(None).where("customer_id", 1)
        assert query.model is Order
        assert query.to_sql() == ("SELECT * FROM orders WHERE customer_id = ?", [1])

    def test_paginate_with_explicit_page(self):
        """Should translate page numbers to limit and offset."""
        sql, _ = Query(None, "orders").paginate(10, 3).to_sql()
        assert sql == "SELECT * FROM orders LIMIT 10 OFFSET 20"

    def test_paginate_reads_page_from_request(self):
        """Should resolve the page from the request's query string."""
        request = SimpleNamespace(query_params={"page": "2"})
        sql, _ = Query(None, "orders").paginate(5, request=request).to_sql()
        assert sql == "SELECT * FROM orders LIMIT 5 OFFSET 5"

    @pytest.mark.parametrize("params", [{}, {"page": "abc"}, {"page": "-4"}])
    def test_paginate_defaults_to_first_page(self, params):
        """Should fall back to page 1 on a missing or invalid parameter."""
        request = SimpleNamespace(query_params=params)
        sql, _ = Query(None, "orders").paginate(5, request=request).to_sql()
        assert sql == "SELECT * FROM orders LIMIT 5"

    def test_paginate_without_request_uses_default_size(self):
        """Should use the configured page size and the first page."""
        sql, _ = Query(None, "orders").paginate().to_sql()
        assert sql == "SELECT * FROM orders LIMIT 15"
