from __future__ import annotations

import copy
from typing import (
    TYPE_CHECKING,
    Any,
    Generic,
    Type,
    TypeVar,
)

from .clauses import DEFAULT_PREPARER, check_table

if TYPE_CHECKING:
    from lucid_core.schemas.parameter import PaginationParams
    from lucid_db.connection import Connection
    from lucid_db.models import Model
    from sqlalchemy.sql.compiler import IdentifierPreparer

    from .clauses import Join, Order, Predicate, RawExpression

M = TypeVar("M", bound="Model")


class QueryBase(Generic[M]):
    """
    Clause state of a single SQL statement under construction.

    This base class owns the connection handle, the target table, the optional
    model used for hydration, and the ordered clause lists every other layer
    reads from or appends to.
    """

    def __init__(
        self,
        db: Connection | None,
        table: str,
        *,
        model: Type[M] | None = None,
    ):
        self.db = db
        self.model: Type[M] | None = model
        self.table: str = check_table(table)
        self._columns: list[str | RawExpression] = []
        self._distinct: bool = False
        self._wheres: list[Predicate] = []
        self._joins: list[Join] = []
        self._orders: list[Order] = []
        self._groups: list[str] = []
        self._havings: list[Predicate] = []
        self._limit: int | None = None
        self._offset: int | None = None
        self._hydrate: bool = model is not None
        self._pagination: PaginationParams | None = None

    def __repr__(self) -> str:
        sql, bindings = self.to_sql()  # type: ignore[attr-defined]
        return f"<{self.__class__.__name__} {sql!r} {bindings!r}>"

    @property
    def table_name(self) -> str:
        """The table reference used to qualify columns (alias when aliased)."""
        return self.table.rsplit(" AS ", 1)[-1]

    @property
    def preparer(self) -> IdentifierPreparer:
        """Identifier quoting of the connection's dialect, ANSI without one."""
        if self.db is None:
            return DEFAULT_PREPARER
        return self.db.engine.dialect.identifier_preparer

    def clone(self) -> Any:
        """
        Return an independent copy of this query.

        Clause nodes are immutable, so copying the lists is enough for the
        copy and the original to evolve separately.
        """
        new = copy.copy(self)
        new._columns = list(self._columns)
        new._wheres = list(self._wheres)
        new._joins = list(self._joins)
        new._orders = list(self._orders)
        new._groups = list(self._groups)
        new._havings = list(self._havings)
        return new

    def _nested(self) -> Any:
        """A blank query on the same table, used to collect grouped conditions."""
        return self.__class__(None, self.table)
