from __future__ import annotations

from typing import (
    TYPE_CHECKING,
    Any,
    AsyncIterator,
)

from lucid_core.logging import get_logger
from lucid_db.collection import Collection
from lucid_db.exceptions import ContractError, DoesNotExistError

from .clauses import check_select, result_key
from .construction import M, QueryConstruction

if TYPE_CHECKING:
    from lucid_core.schemas.response import Page
    from lucid_db.connection import Connection

logger = get_logger(__name__)


class QueryExecution(QueryConstruction[M]):
    """
    Terminal read operations.

    Each method renders the current clause state, runs it on the query's
    connection and shapes the rows: hydrated models in a ``Collection`` when
    the query is bound to a model, plain dictionaries otherwise.
    """

    def _require_db(self) -> Connection:
        if self.db is None:
            msg = "Query has no database connection to run on"
            raise ContractError(msg)
        return self.db

    def _primary_key(self) -> str:
        if self.model is None:
            return "id"
        key = self.model.__primary_key__
        return f"{self.table_name}.{key}" if self._joins else key

    async def _select(self) -> list[dict[str, Any]]:
        sql, bindings = self.to_sql()
        return await self._require_db().select(sql, bindings)

    def _shape(self, rows: list[dict[str, Any]]) -> Any:
        if self._hydrate and self.model is not None:
            return Collection(self.model.hydrate(row) for row in rows)
        return rows

    async def get(self) -> Any:
        """
        Execute the SELECT and return every matching row.

        Returns:
            A ``Collection`` of models for model-bound queries, otherwise a
            list of dictionaries.

        Example:
            >>> orders = await Order.objects.query(db).where("customer_id", 1).get()
        """
        return self._shape(await self._select())

    async def first(self) -> Any:
        """
        Execute the SELECT limited to one row.

        Returns:
            The first model (or row), or ``None`` when nothing matches.
        """
        rows = await self.clone().limit(1)._select()
        if not rows:
            return None
        return self._shape(rows)[0]

    async def first_or_fail(self) -> Any:
        result = await self.first()
        if result is None:
            name = self.model.__name__ if self.model else self.table
            msg = f"{name} matching query does not exist"
            raise DoesNotExistError(msg)
        return result

    async def find(self, key: Any) -> Any:
        """
        Fetch a single row by primary key, or ``None``.
        """
        return await self.clone().where(self._primary_key(), key).first()

    async def count(self) -> int:
        """
        Execute ``SELECT count(*) AS num`` with the current filters.
        """
        sql, bindings = self.compile_count()
        rows = await self._require_db().select(sql, bindings)
        return int(rows[0]["num"]) if rows else 0

    async def exists(self) -> bool:
        sql, bindings = self.compile_exists()
        return bool(await self._require_db().select(sql, bindings))

    async def pluck(self, column: str) -> list[Any]:
        """
        Return the values of a single column.

        Example:
            >>> await Query(db, "orders").where("customer_id", 1).pluck("total")
            [10, 25]
        """
        expression = check_select(column)
        query = self.clone()
        query._columns = [expression]
        key = result_key(expression)
        return [row[key] for row in await query._select()]

    async def value(self, column: str) -> Any:
        """Return one column of the first matching row, or ``None``."""
        values = await self.clone().limit(1).pluck(column)
        return values[0] if values else None

    async def aggregate(self, function: str, column: str) -> Any:
        sql, bindings = self.compile_aggregate(function, column)
        rows = await self._require_db().select(sql, bindings)
        return rows[0]["aggregate"] if rows else None

    async def sum(self, column: str) -> Any:
        return await self.aggregate("sum", column)

    async def avg(self, column: str) -> Any:
        return await self.aggregate("avg", column)

    async def min(self, column: str) -> Any:
        return await self.aggregate("min", column)

    async def max(self, column: str) -> Any:
        return await self.aggregate("max", column)

    async def fetch_page(self) -> Page[Any]:
        """
        Execute a paginated query and return the page with its total.

        Uses the page set by :meth:`paginate`, or the first page with the
        default size when ``paginate`` was never called.
        """
        from lucid_core.schemas.parameter import PaginationParams
        from lucid_core.schemas.response import Page

        params = self._pagination or PaginationParams()
        query = self.clone()
        query._limit = params.per_page
        query._offset = params.get_offset()

        total = await self.count()
        items = await query.get()
        return Page[Any](
            items=list(items),
            total=total,
            per_page=params.per_page,
            current_page=params.page,
        )

    async def chunk(self, size: int) -> AsyncIterator[Any]:
        """
        Iterate over the results ``size`` rows at a time.

        Example:
            >>> async for batch in Order.objects.query(db).order_by("id").chunk(100):
            ...     await process(batch)
        """
        size = self._check_count(size, "chunk")
        if size == 0:
            raise ContractError("chunk() size must be positive")
        if not self._orders:
            logger.warning(
                "chunk() on %s without order_by(); batches may overlap", self.table
            )

        start = self._offset or 0
        while True:
            query = self.clone()
            query._limit = size
            query._offset = start
            batch = await query.get()
            if not batch:
                return
            yield batch
            if len(batch) < size:
                return
            start += size
