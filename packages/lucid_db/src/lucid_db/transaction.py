from __future__ import annotations

from functools import wraps
from typing import TYPE_CHECKING, Awaitable, Callable, ParamSpec, Self, TypeVar

if TYPE_CHECKING:
    from types import TracebackType

    from .connection import Connection

P = ParamSpec("P")
T = TypeVar("T")


class Atomic:
    """
    Explicit transaction block on a :class:`~lucid_db.connection.Connection`.

    Works as:
    - async context manager
    - decorator

    Automatically:
    - begins a transaction
    - commits on success
    - rolls back on exception

    Transactions do not nest: entering a block while one is already active
    raises :class:`~lucid_db.exceptions.TransactionError`.

    Args:
        db: Connection the transaction runs on.

    Examples:
        >>> async with atomic(db):
        ...     await order.save(db)
        ...     await Stock.objects.query(db).where("sku", sku).decrement("qty")

        >>> @atomic(db)
        ... async def checkout():
        ...     await order.save(db)
        ...
        >>> await checkout()
    """

    def __init__(self, db: Connection):
        self.db = db

    async def __aenter__(self) -> Self:
        await self.db.begin()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        """
        Commit if the block succeeded, roll back otherwise.

        The original exception always propagates.
        """
        if not self.db.in_transaction():
            # The block already committed or rolled back by hand.
            return
        if exc_type is None:
            await self.db.commit()
        else:
            await self.db.rollback()

    def __call__(self, func: Callable[P, Awaitable[T]]) -> Callable[P, Awaitable[T]]:
        """
        Allow usage as a decorator.

        Example:
            >>> @atomic(db)
            ... async def transfer():
            ...     ...
        """

        @wraps(func)
        async def wrapper(*args: P.args, **kwargs: P.kwargs) -> T:
            async with Atomic(self.db):
                return await func(*args, **kwargs)

        return wrapper


def atomic(db: Connection) -> Atomic:
    """
    Factory helper for creating an Atomic manager.

    Examples:
        >>> async with atomic(db):
        ...     await do_work()
    """
    return Atomic(db)
