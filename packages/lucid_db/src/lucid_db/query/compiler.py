from __future__ import annotations

from typing import Any, Mapping, Sequence

from lucid_db.exceptions import ContractError, UnfilteredWriteError
from lucid_db.values import SQLValue

from .base import M, QueryBase
from .clauses import (
    Compiled,
    RawExpression,
    check_column,
    compile_predicates,
    placeholders,
    quote_aliased,
    quote_name,
)

# Largest LIMIT accepted by both SQLite and MySQL, used for OFFSET-only queries.
_NO_LIMIT = 9223372036854775807


class QueryCompiler(QueryBase[M]):
    """
    Renders the collected clause state into SQL text plus ordered bindings.

    Clause order is fixed: SELECT, FROM, JOIN, WHERE, GROUP BY, HAVING,
    ORDER BY, LIMIT, OFFSET. Bindings are gathered while rendering, so their
    order always matches the order of the ``?`` placeholders in the text.
    Identifiers are quoted where the dialect requires it, so columns named
    ``order`` or ``group`` work like any other.
    """

    def _compile_columns(self) -> Compiled:
        preparer = self.preparer
        if not self._columns:
            # Qualify the star when joining so hydration only sees our columns.
            column = f"{quote_name(preparer, self.table_name)}.*" if self._joins else "*"
            return column, []

        parts: list[str] = []
        bindings: list[SQLValue] = []
        for column in self._columns:
            if isinstance(column, RawExpression):
                parts.append(column.sql)
                bindings.extend(column.bindings)
            else:
                parts.append(quote_aliased(preparer, column))
        return ", ".join(parts), bindings

    def _compile_from(self) -> str:
        preparer = self.preparer
        sql = f" FROM {quote_aliased(preparer, self.table)}"
        for join in self._joins:
            sql += f" {join.compile(preparer)}"
        return sql

    def _compile_wheres(self) -> Compiled:
        if not self._wheres:
            return "", []
        sql, bindings = compile_predicates(self._wheres, self.preparer)
        return f" WHERE {sql}", bindings

    def _check_havings(self) -> None:
        if self._havings and not self._groups:
            raise ContractError("having() requires group_by()")

    def _compile_groups(self) -> Compiled:
        self._check_havings()
        if not self._groups:
            return "", []
        preparer = self.preparer
        groups = ", ".join(quote_name(preparer, column) for column in self._groups)
        sql = f" GROUP BY {groups}"
        if not self._havings:
            return sql, []
        having, bindings = compile_predicates(self._havings, preparer)
        return f"{sql} HAVING {having}", bindings

    def _compile_orders(self) -> str:
        if not self._orders:
            return ""
        preparer = self.preparer
        return " ORDER BY " + ", ".join(order.compile(preparer) for order in self._orders)

    def _compile_limits(self) -> str:
        sql = ""
        if self._limit is not None:
            sql += f" LIMIT {self._limit}"
        if self._offset:
            if self._limit is None:
                sql += f" LIMIT {_NO_LIMIT}"
            sql += f" OFFSET {self._offset}"
        return sql

    def _compile_select(self, *, ordered: bool = True, limited: bool = True) -> Compiled:
        columns, bindings = self._compile_columns()
        wheres, where_bindings = self._compile_wheres()
        groups, group_bindings = self._compile_groups()

        sql = "SELECT "
        if self._distinct:
            sql += "DISTINCT "
        sql += columns + self._compile_from() + wheres + groups
        if ordered:
            sql += self._compile_orders()
        if limited:
            sql += self._compile_limits()
        return sql, bindings + where_bindings + group_bindings

    def to_sql(self) -> Compiled:
        """
        Render the SELECT statement.

        Example:
            >>> Query(db, "orders").where("customer_id", 1).limit(5).to_sql()
            ('SELECT * FROM orders WHERE customer_id = ? LIMIT 5', [1])
        """
        return self._compile_select()

    def compile_count(self) -> Compiled:
        """
        Render ``SELECT count(*) AS num`` over the current filters.

        Ordering and limits never change a count and are left out. Grouped or
        distinct queries are counted through a subquery so that the number of
        result rows is returned rather than the size of the first group.
        """
        self._check_havings()
        if self._groups or self._distinct:
            inner, bindings = self._compile_select(ordered=False, limited=False)
            return f"SELECT count(*) AS num FROM ({inner}) AS lucid_count", bindings
        wheres, bindings = self._compile_wheres()
        return f"SELECT count(*) AS num{self._compile_from()}{wheres}", bindings

    def compile_aggregate(self, function: str, column: str) -> Compiled:
        self._check_havings()
        if column != "*":
            column = quote_name(self.preparer, check_column(column))
        wheres, bindings = self._compile_wheres()
        return (
            f"SELECT {function}({column}) AS aggregate{self._compile_from()}{wheres}",
            bindings,
        )

    def compile_exists(self) -> Compiled:
        wheres, bindings = self._compile_wheres()
        groups, group_bindings = self._compile_groups()
        return (
            f"SELECT 1 AS present{self._compile_from()}{wheres}{groups} LIMIT 1",
            bindings + group_bindings,
        )

    def compile_insert(self, rows: Sequence[Mapping[str, SQLValue]]) -> Compiled:
        """
        Render a single INSERT for one or more rows sharing the same columns.
        """
        if not rows:
            raise ContractError("insert() requires at least one row")
        columns = [check_column(column) for column in rows[0]]
        if not columns:
            raise ContractError("insert() requires at least one column")

        bindings: list[SQLValue] = []
        for row in rows:
            if set(row) != set(columns):
                msg = "All rows passed to insert_many() must have the same columns"
                raise ContractError(msg)
            bindings.extend(row[column] for column in columns)

        values = ", ".join(f"({placeholders(len(columns))})" for _ in rows)
        preparer = self.preparer
        names = ", ".join(quote_name(preparer, column) for column in columns)
        return (
            f"INSERT INTO {quote_aliased(preparer, self.table)} ({names}) VALUES {values}",
            bindings,
        )

    def _guard_write(self, action: str) -> None:
        # A write without predicates would touch every row of the table.
        if not self._wheres:
            raise UnfilteredWriteError(f"Refusing to {action} without filters")
        if self._joins:
            raise ContractError(f"{action}() does not support joins")

    def compile_update(
        self,
        values: Mapping[str, SQLValue],
        increments: Mapping[str, Any] | None = None,
    ) -> Compiled:
        """
        Render ``UPDATE ... SET ... WHERE ...``.

        ``increments`` maps columns to a delta rendered as ``col = col + ?``.

        Raises:
            UnfilteredWriteError: If no WHERE predicate was added.
        """
        self._guard_write("update")
        preparer = self.preparer
        assignments: list[str] = []
        bindings: list[SQLValue] = []
        for column, delta in (increments or {}).items():
            column = quote_name(preparer, check_column(column))
            assignments.append(f"{column} = {column} + ?")
            bindings.append(delta)
        for column, value in values.items():
            assignments.append(f"{quote_name(preparer, check_column(column))} = ?")
            bindings.append(value)
        if not assignments:
            raise ContractError("update() requires at least one column")

        wheres, where_bindings = self._compile_wheres()
        table = quote_aliased(preparer, self.table)
        return (
            f"UPDATE {table} SET {', '.join(assignments)}{wheres}",
            bindings + where_bindings,
        )

    def compile_delete(self) -> Compiled:
        """
        Render ``DELETE FROM ... WHERE ...``.

        Raises:
            UnfilteredWriteError: If no WHERE predicate was added.
        """
        self._guard_write("delete")
        wheres, bindings = self._compile_wheres()
        return f"DELETE FROM {quote_aliased(self.preparer, self.table)}{wheres}", bindings
