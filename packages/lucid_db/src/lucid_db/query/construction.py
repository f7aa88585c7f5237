from __future__ import annotations

from typing import (
    TYPE_CHECKING,
    Any,
    Callable,
    Iterable,
    Literal,
)

from lucid_db.exceptions import ContractError, InvalidValueError
from lucid_db.values import check_value

from .clauses import (
    Between,
    Boolean,
    ColumnComparison,
    Comparison,
    Group,
    InList,
    Join,
    NullCheck,
    Order,
    RawExpression,
    RawPredicate,
    check_column,
    check_direction,
    check_operator,
    check_raw,
    check_select,
    check_table,
)
from .compiler import M, QueryCompiler

if TYPE_CHECKING:
    from lucid_core.schemas.parameter import SupportsQueryParams

_MISSING: Any = object()


def _flatten(items: tuple[Any, ...]) -> list[Any]:
    """Accept both ``f("a", "b")`` and ``f(["a", "b"])``."""
    if len(items) == 1 and isinstance(items[0], (list, tuple)):
        return list(items[0])
    return list(items)


class QueryConstruction(QueryCompiler[M]):
    """
    Fluent API for adding clauses to a query.

    Every method validates its input immediately, appends to the clause state
    and returns the same query so calls can be chained. Invalid identifiers,
    operators or values raise a ``ContractError`` at the call site, never at
    execution time.
    """

    # --- SELECT ---

    def select(self, *columns: str) -> Any:
        """
        Add columns to the select list. Repeated calls accumulate.

        Example:
            >>> Query(db, "orders").select("id").select("total AS amount")
            # SELECT id, total AS amount FROM orders
        """
        self._columns.extend(check_select(column) for column in _flatten(columns))
        return self

    def select_raw(self, expression: str, bindings: Iterable[Any] = ()) -> Any:
        """
        Add a verbatim expression to the select list.

        Example:
            >>> Query(db, "orders").select("customer_id").select_raw("sum(total) AS spent")
        """
        values = tuple(check_value(v, "select_raw()") for v in bindings)
        check_raw(expression, values)
        self._columns.append(RawExpression(expression, values))
        return self

    def distinct(self) -> Any:
        self._distinct = True
        return self

    # --- WHERE ---

    def where(
        self,
        column: str | Callable[[Any], Any],
        operator: Any = _MISSING,
        value: Any = _MISSING,
        *,
        boolean: Boolean = "AND",
    ) -> Any:
        """
        Add a comparison predicate.

        Accepts ``where(column, operator, value)``, the two-argument shorthand
        ``where(column, value)`` for equality, or a callable that receives a
        blank query and fills it with conditions rendered as one parenthesized
        group. A ``None`` value compares with ``IS NULL`` (``IS NOT NULL`` for
        ``!=``).

        Examples:
            >>> q.where("status", "paid").where("total", ">", 100)
            # WHERE status = ? AND total > ?

            >>> q.where("status", "paid").where(
            ...     lambda g: g.where("total", ">", 100).or_where("vip", True)
            ... )
            # WHERE status = ? AND (total > ? OR vip = ?)
        """
        if callable(column):
            return self._where_group(column, boolean)

        if value is _MISSING:
            if operator is _MISSING:
                msg = f"where({column!r}) requires a value"
                raise ContractError(msg)
            operator, value = "=", operator

        column = check_column(column)
        operator = check_operator(operator)
        if value is None:
            # "column = NULL" is never true; compare with IS NULL instead.
            if operator not in ("=", "!=", "<>"):
                msg = (
                    f"where({column!r}) cannot compare NULL with {operator!r}, "
                    "use where_null() or where_not_null()"
                )
                raise InvalidValueError(msg)
            return self.where_null(column, boolean=boolean, negate=operator != "=")

        self._wheres.append(
            Comparison(
                column,
                operator,
                check_value(value, f"where({column!r})"),
                boolean,
            )
        )
        return self

    def and_where(
        self, column: Any, operator: Any = _MISSING, value: Any = _MISSING
    ) -> Any:
        return self.where(column, operator, value, boolean="AND")

    def or_where(
        self, column: Any, operator: Any = _MISSING, value: Any = _MISSING
    ) -> Any:
        return self.where(column, operator, value, boolean="OR")

    def _where_group(self, callback: Callable[[Any], Any], boolean: Boolean) -> Any:
        nested = self._nested()
        callback(nested)
        if nested._wheres:
            self._wheres.append(Group(tuple(nested._wheres), boolean))
        return self

    def where_in(
        self,
        column: str,
        values: Iterable[Any],
        *,
        boolean: Boolean = "AND",
        negate: bool = False,
    ) -> Any:
        """
        Add ``column IN (...)``.

        An empty ``values`` matches no row (``0 = 1``); negated, it matches
        every row (``1 = 1``).
        """
        if isinstance(values, (str, bytes)) or not isinstance(values, Iterable):
            msg = f"where_in({column!r}) expects a list of values, got {values!r}"
            raise InvalidValueError(msg)
        checked = tuple(check_value(v, f"where_in({column!r})") for v in values)
        self._wheres.append(InList(check_column(column), checked, negate, boolean))
        return self

    def where_not_in(self, column: str, values: Iterable[Any]) -> Any:
        return self.where_in(column, values, negate=True)

    def or_where_in(self, column: str, values: Iterable[Any]) -> Any:
        return self.where_in(column, values, boolean="OR")

    def or_where_not_in(self, column: str, values: Iterable[Any]) -> Any:
        return self.where_in(column, values, boolean="OR", negate=True)

    def where_null(
        self, column: str, *, boolean: Boolean = "AND", negate: bool = False
    ) -> Any:
        self._wheres.append(NullCheck(check_column(column), negate, boolean))
        return self

    def where_not_null(self, column: str) -> Any:
        return self.where_null(column, negate=True)

    def or_where_null(self, column: str) -> Any:
        return self.where_null(column, boolean="OR")

    def or_where_not_null(self, column: str) -> Any:
        return self.where_null(column, boolean="OR", negate=True)

    def where_between(
        self,
        column: str,
        low: Any,
        high: Any,
        *,
        boolean: Boolean = "AND",
        negate: bool = False,
    ) -> Any:
        context = f"where_between({column!r})"
        self._wheres.append(
            Between(
                check_column(column),
                check_value(low, context),
                check_value(high, context),
                negate,
                boolean,
            )
        )
        return self

    def where_not_between(self, column: str, low: Any, high: Any) -> Any:
        return self.where_between(column, low, high, negate=True)

    def or_where_between(self, column: str, low: Any, high: Any) -> Any:
        return self.where_between(column, low, high, boolean="OR")

    def where_like(self, column: str, pattern: str) -> Any:
        return self.where(column, "like", pattern)

    def where_column(
        self, first: str, operator: str, second: str, *, boolean: Boolean = "AND"
    ) -> Any:
        """
        Compare two columns, e.g. ``where_column("shipped_at", ">", "paid_at")``.
        """
        self._wheres.append(
            ColumnComparison(
                check_column(first), check_operator(operator), check_column(second), boolean
            )
        )
        return self

    def where_raw(
        self, sql: str, bindings: Iterable[Any] = (), *, boolean: Boolean = "AND"
    ) -> Any:
        """
        Add a verbatim condition. Its ``?`` count must match ``bindings``.
        """
        values = tuple(check_value(v, "where_raw()") for v in bindings)
        check_raw(sql, values)
        self._wheres.append(RawPredicate(sql, values, boolean))
        return self

    def or_where_raw(self, sql: str, bindings: Iterable[Any] = ()) -> Any:
        return self.where_raw(sql, bindings, boolean="OR")

    # --- JOIN ---

    def join(
        self,
        table: str,
        first: str,
        operator: str,
        second: str = _MISSING,
        *,
        kind: Literal["INNER", "LEFT", "RIGHT"] = "INNER",
    ) -> Any:
        """
        Add a join; joins render in call order.

        Example:
            >>> Query(db, "customers").join(
            ...     "orders", "customers.id", "=", "orders.customer_id"
            ... )
            # SELECT customers.* FROM customers
            # INNER JOIN orders ON customers.id = orders.customer_id
        """
        if second is _MISSING:
            operator, second = "=", operator
        self._joins.append(
            Join(
                kind,
                check_table(table),
                check_column(first),
                check_operator(operator),
                check_column(second),
            )
        )
        return self

    def left_join(
        self, table: str, first: str, operator: str, second: str = _MISSING
    ) -> Any:
        return self.join(table, first, operator, second, kind="LEFT")

    def right_join(
        self, table: str, first: str, operator: str, second: str = _MISSING
    ) -> Any:
        return self.join(table, first, operator, second, kind="RIGHT")

    # --- ORDER / GROUP ---

    def order_by(self, column: str, direction: str = "asc") -> Any:
        """
        Add a sort key. Repeated calls produce a multi-key ORDER BY.
        """
        self._orders.append(Order(check_column(column), check_direction(direction)))
        return self

    def order_by_desc(self, column: str) -> Any:
        return self.order_by(column, "desc")

    def latest(self, column: str = "created_at") -> Any:
        return self.order_by(column, "desc")

    def oldest(self, column: str = "created_at") -> Any:
        return self.order_by(column, "asc")

    def group_by(self, *columns: str) -> Any:
        """
        Set the GROUP BY columns, replacing any previous grouping.
        """
        self._groups = [check_column(column) for column in _flatten(columns)]
        return self

    def having(
        self,
        column: str,
        operator: Any,
        value: Any = _MISSING,
        *,
        boolean: Boolean = "AND",
    ) -> Any:
        if value is _MISSING:
            operator, value = "=", operator
        self._havings.append(
            Comparison(
                check_column(column),
                check_operator(operator),
                check_value(value, f"having({column!r})"),
                boolean,
            )
        )
        return self

    def having_raw(self, sql: str, bindings: Iterable[Any] = ()) -> Any:
        values = tuple(check_value(v, "having_raw()") for v in bindings)
        check_raw(sql, values)
        self._havings.append(RawPredicate(sql, values))
        return self

    # --- LIMIT / OFFSET ---

    @staticmethod
    def _check_count(value: Any, name: str) -> int:
        if isinstance(value, bool) or not isinstance(value, int) or value < 0:
            msg = f"{name}() expects a non-negative integer, got {value!r}"
            raise ContractError(msg)
        return value

    def limit(self, count: int) -> Any:
        self._limit = self._check_count(count, "limit")
        return self

    def offset(self, count: int) -> Any:
        self._offset = self._check_count(count, "offset")
        return self

    def paginate(
        self,
        per_page: int | None = None,
        page: int | None = None,
        *,
        request: SupportsQueryParams | None = None,
    ) -> Any:
        """
        Restrict the query to one page.

        When ``page`` is omitted it is read from the ``page`` query-string
        parameter of ``request``, falling back to the first page.

        Example:
            >>> await Post.objects.query(db).latest().paginate(20, request=request).get()
        """
        from lucid_core.schemas.parameter import PaginationParams

        if page is None:
            params = PaginationParams.from_request(request, per_page)
        else:
            data = {"page": page}
            if per_page is not None:
                data["per_page"] = per_page
            params = PaginationParams.model_validate(data)

        self._pagination = params
        self._limit = params.per_page
        self._offset = params.get_offset()
        return self

    def as_dicts(self) -> Any:
        """Return plain row dictionaries instead of hydrated models."""
        self._hydrate = False
        return self
