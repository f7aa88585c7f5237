from __future__ import annotations

from typing import (
    Any,
    Iterable,
    Mapping,
)

from lucid_db.exceptions import ContractError
from lucid_db.values import SQLValue, check_value

from .execution import M, QueryExecution


def _checked(values: Mapping[str, Any], action: str) -> dict[str, SQLValue]:
    return {
        column: check_value(value, f"{action}({column!r})")
        for column, value in values.items()
    }


class QueryWrite(QueryExecution[M]):
    """
    Statements that modify data.

    ``update()`` and ``delete()`` act on every row matched by the query's
    WHERE clause and refuse to run without one.
    """

    async def insert(self, values: Mapping[str, Any]) -> int | None:
        """
        Insert one row and return the id generated for it.

        Example:
            >>> await Query(db, "orders").insert({"customer_id": 1, "total": 30})
            4
        """
        sql, bindings = self.compile_insert([_checked(values, "insert")])
        result = await self._require_db().execute(sql, bindings)
        return result.last_insert_id

    async def insert_many(self, rows: Iterable[Mapping[str, Any]]) -> int:
        """
        Insert several rows in one statement and return the inserted count.
        """
        checked = [_checked(row, "insert_many") for row in rows]
        if not checked:
            return 0
        sql, bindings = self.compile_insert(checked)
        result = await self._require_db().execute(sql, bindings)
        return result.rowcount

    async def update(self, values: Mapping[str, Any]) -> int:
        """
        Update every matched row and return the number of affected rows.

        Raises:
            UnfilteredWriteError: If the query has no WHERE predicate. No
                statement is sent in that case.

        Example:
            >>> await Query(db, "orders").where("status", "open").update(
            ...     {"status": "closed"}
            ... )
        """
        sql, bindings = self.compile_update(_checked(values, "update"))
        result = await self._require_db().execute(sql, bindings)
        return result.rowcount

    async def increment(
        self,
        column: str,
        amount: int | float = 1,
        extra: Mapping[str, Any] | None = None,
    ) -> int:
        """
        Add ``amount`` to ``column`` on every matched row, in SQL.
        """
        if isinstance(amount, bool) or not isinstance(amount, (int, float)):
            msg = f"increment() amount must be a number, got {amount!r}"
            raise ContractError(msg)
        sql, bindings = self.compile_update(
            _checked(extra or {}, "increment"), {column: amount}
        )
        result = await self._require_db().execute(sql, bindings)
        return result.rowcount

    async def decrement(
        self,
        column: str,
        amount: int | float = 1,
        extra: Mapping[str, Any] | None = None,
    ) -> int:
        if isinstance(amount, bool) or not isinstance(amount, (int, float)):
            msg = f"decrement() amount must be a number, got {amount!r}"
            raise ContractError(msg)
        return await self.increment(column, -amount, extra)

    async def delete(self) -> int:
        """
        Delete every matched row and return the number of deleted rows.

        Raises:
            UnfilteredWriteError: If the query has no WHERE predicate.
        """
        sql, bindings = self.compile_delete()
        result = await self._require_db().execute(sql, bindings)
        return result.rowcount
