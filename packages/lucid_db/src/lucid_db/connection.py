from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Callable, Mapping, Sequence, TypeVar

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from lucid_core.logging import get_logger

from .exceptions import ContractError, StorageError, TransactionError

if TYPE_CHECKING:
    from types import TracebackType

    from sqlalchemy.engine import CursorResult
    from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine, AsyncTransaction
    from sqlalchemy.sql.elements import TextClause

    from .transaction import Atomic

logger = get_logger(__name__)

R = TypeVar("R")


@dataclass(frozen=True, slots=True)
class ExecutionResult:
    """Outcome of a write statement."""

    rowcount: int
    last_insert_id: int | None = None


def bind_positional(sql: str, bindings: Sequence[Any]) -> TextClause:
    """
    Turn SQL with positional ``?`` placeholders into a bound ``text()`` clause.

    The n-th ``?`` becomes the bind parameter ``:pn`` carrying ``bindings[n]``,
    so the driver receives values in exactly the order they were rendered.

    Raises:
        ContractError: If the placeholder count differs from ``len(bindings)``.
    """
    parts = sql.split("?")
    if len(parts) - 1 != len(bindings):
        msg = (
            f"Statement has {len(parts) - 1} placeholder(s) but "
            f"{len(bindings)} binding(s) were given"
        )
        raise ContractError(msg)

    names = [f"p{i}" for i in range(len(bindings))]
    rendered = parts[0] + "".join(
        f":{name}{part}" for name, part in zip(names, parts[1:])
    )
    clause = text(rendered)
    if names:
        clause = clause.bindparams(**dict(zip(names, bindings)))
    return clause


class Connection:
    """
    Request-scoped handle on one configured database.

    The underlying DBAPI connection is checked out lazily on the first
    statement and returned by :meth:`close`. Outside an explicit transaction
    every statement is committed on its own.

    Example:
        >>> db = Connection(get_engine(), "default")
        >>> rows = await db.select("SELECT * FROM users WHERE id = ?", [1])
        >>> await db.close()
    """

    def __init__(self, engine: AsyncEngine, name: str = "default"):
        self.engine = engine
        self.name = name
        self._conn: AsyncConnection | None = None
        self._transaction: AsyncTransaction | None = None

    def __repr__(self) -> str:
        return f"<Connection {self.name!r} open={self._conn is not None}>"

    async def _connection(self) -> AsyncConnection:
        if self._conn is None:
            try:
                self._conn = await self.engine.connect()
            except SQLAlchemyError as e:
                msg = f"Could not connect to database '{self.name}': {e}"
                raise StorageError(msg, e) from e
            logger.debug("Opened connection '%s'", self.name)
        return self._conn

    async def _run(
        self,
        sql: str,
        bindings: Sequence[Any],
        consume: Callable[[CursorResult[Any]], R],
    ) -> R:
        statement = bind_positional(sql, bindings)
        conn = await self._connection()
        logger.debug("[%s] %s (%d binding(s))", self.name, sql, len(bindings))
        try:
            result = await conn.execute(statement)
            value = consume(result)
            if self._transaction is None:
                await conn.commit()
        except SQLAlchemyError as e:
            logger.error("[%s] Statement failed: %s", self.name, e)
            if self._transaction is None:
                await conn.rollback()
            msg = f"Database error on '{self.name}': {e}"
            raise StorageError(msg, e) from e
        return value

    async def select(
        self, sql: str, bindings: Sequence[Any] = ()
    ) -> list[dict[str, Any]]:
        """
        Run a SELECT and return every row as a column → value mapping.
        """
        return await self._run(
            sql,
            bindings,
            lambda result: [dict(row) for row in result.mappings().all()],
        )

    async def execute(self, sql: str, bindings: Sequence[Any] = ()) -> ExecutionResult:
        """
        Run an INSERT, UPDATE or DELETE statement.

        ``last_insert_id`` is only populated for INSERT statements.
        """
        is_insert = sql.lstrip()[:6].upper() == "INSERT"
        return await self._run(
            sql,
            bindings,
            lambda result: ExecutionResult(
                rowcount=result.rowcount,
                last_insert_id=result.lastrowid if is_insert else None,
            ),
        )

    # --- Transactions ---

    def in_transaction(self) -> bool:
        return self._transaction is not None

    async def begin(self) -> None:
        """
        Start an explicit transaction.

        Raises:
            TransactionError: If a transaction is already active. Nesting is
                the caller's responsibility; no savepoints are created.
        """
        if self._transaction is not None:
            msg = f"A transaction is already active on '{self.name}'"
            raise TransactionError(msg)
        conn = await self._connection()
        try:
            self._transaction = await conn.begin()
        except SQLAlchemyError as e:
            raise StorageError(f"Could not begin transaction: {e}", e) from e
        logger.debug("[%s] BEGIN", self.name)

    async def commit(self) -> None:
        transaction = self._require_transaction("commit")
        self._transaction = None
        try:
            await transaction.commit()
        except SQLAlchemyError as e:
            raise StorageError(f"Could not commit transaction: {e}", e) from e
        logger.debug("[%s] COMMIT", self.name)

    async def rollback(self) -> None:
        transaction = self._require_transaction("rollback")
        self._transaction = None
        try:
            await transaction.rollback()
        except SQLAlchemyError as e:
            raise StorageError(f"Could not roll back transaction: {e}", e) from e
        logger.debug("[%s] ROLLBACK", self.name)

    def _require_transaction(self, action: str) -> AsyncTransaction:
        if self._transaction is None:
            msg = f"Cannot {action}: no transaction is active on '{self.name}'"
            raise TransactionError(msg)
        return self._transaction

    def transaction(self) -> Atomic:
        """
        Shortcut for :func:`lucid_db.transaction.atomic` on this connection.
        """
        from .transaction import Atomic

        return Atomic(self)

    # --- Lifecycle ---

    async def close(self) -> None:
        """
        Return the DBAPI connection to the pool.

        An unfinished transaction is rolled back.
        """
        if self._conn is None:
            return
        if self._transaction is not None:
            logger.warning(
                "[%s] Closing connection with an open transaction; rolling back",
                self.name,
            )
            await self.rollback()
        await self._conn.close()
        self._conn = None
        logger.debug("Closed connection '%s'", self.name)

    async def __aenter__(self) -> Connection:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.close()


class ConnectionManager:
    """
    One lazily created :class:`Connection` per configured database name.

    Meant to live for a single request and be closed at its end.

    Example:
        >>> async with ConnectionManager() as connections:
        ...     users = await User.objects.all(connections["default"])
        ...     totals = await connections["reports"].select("SELECT ...")
    """

    def __init__(self, engines: Mapping[str, AsyncEngine] | None = None):
        self._engines = engines
        self._connections: dict[str, Connection] = {}

    def connection(self, name: str = "default") -> Connection:
        if name not in self._connections:
            if self._engines is not None:
                if name not in self._engines:
                    msg = f"Database '{name}' is not configured"
                    raise RuntimeError(msg)
                engine = self._engines[name]
            else:
                from .db import get_engine

                engine = get_engine(name)
            self._connections[name] = Connection(engine, name)
        return self._connections[name]

    __getitem__ = connection

    async def close_all(self) -> None:
        connections = list(self._connections.values())
        self._connections.clear()
        for connection in connections:
            await connection.close()

    async def __aenter__(self) -> ConnectionManager:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.close_all()
