from __future__ import annotations

from typing import (
    TYPE_CHECKING,
    TypeVar,
)

from .write import QueryWrite

if TYPE_CHECKING:
    from lucid_db.models import Model


M = TypeVar("M", bound="Model")


class Query(QueryWrite[M]):
    """
    Fluent builder for one parameterized SQL statement.

    A Query collects clauses (select list, predicates, joins, ordering,
    grouping, limits) through chained calls that mutate and return the same
    object, then renders them into SQL with positional ``?`` placeholders and
    an ordered list of bindings when a terminal method runs.

    Terminal methods:
        - get()
        - first()
        - count()
        - insert()
        - update()
        - delete()
        - plus exists(), pluck(), sum()/avg()/min()/max(), fetch_page(), chunk()

    Notes:
        - The connection is passed in at construction; ``db`` may be ``None``
          for a query that is only rendered with ``to_sql()``.
        - Clause state is kept after a terminal call. Use ``clone()`` to
          branch a query instead of reusing it.
        - Values are always bound, never interpolated; identifiers are
          validated against a plain-identifier grammar.

    Examples:
        >>> q = Query(db, "orders").where("customer_id", 1).order_by("id", "desc")
        >>> q.to_sql()
        ('SELECT * FROM orders WHERE customer_id = ? ORDER BY id DESC', [1])
        >>> rows = await q.get()

        >>> # Bound to a model, results are hydrated
        >>> orders = await Order.objects.query(db).where("total", ">", 10).get()
    """


__all__ = ["Query"]
