"""
Relation descriptors declared on model classes.

Each descriptor knows how to build the query for one owner instance and how
to resolve the same relation for many owners with a single ``IN`` query.

Example:
    >>> class Customer(Model):
    ...     __tablename__ = "customers"
    ...     name = Column(String(100))
    ...     orders = HasMany("Order", foreign_key="customer_id")
    ...
    >>> class Order(Model):
    ...     __tablename__ = "orders"
    ...     customer_id = Column(Integer)
    ...     customer = BelongsTo(Customer, foreign_key="customer_id")
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections import defaultdict
from typing import (
    TYPE_CHECKING,
    Any,
    ClassVar,
    Iterable,
    Sequence,
)

from lucid_core.logging import get_logger

from .collection import Collection
from .exceptions import ContractError, RelationError
from .query import Query
from .query.clauses import check_column, check_table

if TYPE_CHECKING:
    from .connection import Connection
    from .models import Model

logger = get_logger(__name__)

PIVOT_PREFIX = "pivot__"
_OWNER_ALIAS = "lucid_pivot_owner"


def _distinct(values: Iterable[Any]) -> list[Any]:
    """Non-null values in first-seen order."""
    return list(dict.fromkeys(v for v in values if v is not None))


class Relation(ABC):
    """
    Base descriptor for an association between two models.

    Reading the attribute on a class returns the descriptor; reading it on an
    instance returns the value memoized by ``Model.related()`` or an eager
    load, and raises ``RelationNotLoadedError`` while it is unresolved.
    """

    many: ClassVar[bool] = False

    def __init__(self, related: type[Model] | str):
        self._related = related
        self._validated = False
        self.owner: type[Model] | None = None
        self.name: str = ""

    def __set_name__(self, owner: type[Model], name: str) -> None:
        self.owner = owner
        self.name = name

    def __get__(self, instance: Model | None, owner: type | None = None) -> Any:
        if instance is None:
            return self
        return instance.get_relation(self.name)

    def __set__(self, instance: Model, value: Any) -> None:
        instance.set_relation(self.name, value)

    def __repr__(self) -> str:
        owner = self.owner.__name__ if self.owner else "?"
        target = self._related if isinstance(self._related, str) else self._related.__name__
        return f"<{self.__class__.__name__} {owner}.{self.name} -> {target}>"

    @property
    def related(self) -> type[Model]:
        """The related model class, resolving string references lazily."""
        from .models import resolve_model
        from .validator import ModelValidator

        if isinstance(self._related, str):
            self._related = resolve_model(self._related)
        try:
            return ModelValidator.validate_model(self._related)
        except TypeError as e:
            raise RelationError(f"{self!r}: {e}") from e

    def _require_column(self, model: type[Model], column: str) -> None:
        if column not in model.__columns__:
            msg = f"{self!r}: column '{column}' does not exist on {model.__name__}"
            raise RelationError(msg)

    def validate(self) -> None:
        """Check the descriptor against both schemas, once."""
        if self._validated:
            return
        if self.owner is None:
            raise RelationError(f"{self!r} is not attached to a model class")
        self._check_columns(self.owner, self.related)
        self._validated = True

    @abstractmethod
    def _check_columns(self, owner: type[Model], related: type[Model]) -> None: ...

    @abstractmethod
    def owner_key_name(self) -> str:
        """Column on the owner whose value scopes the related query."""

    def owner_key(self, instance: Model) -> Any:
        return instance.get_attribute(self.owner_key_name())

    def _scope(self, query: Query[Any], column: str, instance: Model) -> Query[Any]:
        key = self.owner_key(instance)
        # An owner without a key value has no related rows.
        if key is None:
            return query.where_in(column, [])
        return query.where(column, key)

    @abstractmethod
    def query_for(self, db: Connection, instance: Model) -> Query[Any]:
        """Query returning the related rows of one owner."""

    def empty(self) -> Any:
        return Collection() if self.many else None

    async def resolve(self, db: Connection, instance: Model) -> Any:
        """
        Run the relation query for one owner.

        An owner without a key value cannot have related rows, so no query
        is sent for it.
        """
        self.validate()
        if self.owner_key(instance) is None:
            return self.empty()
        logger.debug("Resolving %s for %r", self, instance)
        query = self.query_for(db, instance)
        return await (query.get() if self.many else query.first())

    @abstractmethod
    async def eager_load(self, db: Connection, models: Sequence[Model]) -> None:
        """Resolve the relation for every model with one query."""

    @abstractmethod
    async def eager_count(self, db: Connection, models: Sequence[Model]) -> None:
        """Attach ``{name}_count`` to every model with one query."""

    def _assign_counts(
        self, models: Sequence[Model], counts: dict[Any, int]
    ) -> None:
        for model in models:
            model.set_count(self.name, int(counts.get(self.owner_key(model), 0)))


class HasOneOrMany(Relation):
    """Shared logic for relations whose foreign key lives on the related table."""

    def __init__(
        self,
        related: type[Model] | str,
        foreign_key: str,
        local_key: str | None = None,
    ):
        super().__init__(related)
        self.foreign_key = check_column(foreign_key)
        self.local_key = check_column(local_key) if local_key else None

    def owner_key_name(self) -> str:
        assert self.owner is not None
        return self.local_key or self.owner.__primary_key__

    def _check_columns(self, owner: type[Model], related: type[Model]) -> None:
        self._require_column(owner, self.owner_key_name())
        self._require_column(related, self.foreign_key)

    def query_for(self, db: Connection, instance: Model) -> Query[Any]:
        self.validate()
        return self._scope(self.related.objects.query(db), self.foreign_key, instance)

    @abstractmethod
    def _match(self, items: list[Model]) -> Any: ...

    async def eager_load(self, db: Connection, models: Sequence[Model]) -> None:
        self.validate()
        keys = _distinct(self.owner_key(model) for model in models)
        buckets: dict[Any, list[Model]] = defaultdict(list)
        if keys:
            results = await (
                self.related.objects.query(db).where_in(self.foreign_key, keys).get()
            )
            for item in results:
                buckets[item.get_attribute(self.foreign_key)].append(item)

        for model in models:
            model.set_relation(self.name, self._match(buckets.get(self.owner_key(model), [])))

    async def eager_count(self, db: Connection, models: Sequence[Model]) -> None:
        self.validate()
        keys = _distinct(self.owner_key(model) for model in models)
        counts: dict[Any, int] = {}
        if keys:
            rows = await (
                Query(db, self.related.__tablename__)
                .select(self.foreign_key)
                .select_raw("count(*) AS num")
                .where_in(self.foreign_key, keys)
                .group_by(self.foreign_key)
                .get()
            )
            counts = {row[self.foreign_key]: row["num"] for row in rows}
        self._assign_counts(models, counts)


class HasOne(HasOneOrMany):
    """
    One related row whose ``foreign_key`` points at the owner.

    ``SELECT * FROM related WHERE foreign_key = ? LIMIT 1``
    """

    many = False

    def _match(self, items: list[Model]) -> Model | None:
        return items[0] if items else None


class HasMany(HasOneOrMany):
    """
    All related rows whose ``foreign_key`` points at the owner.

    ``SELECT * FROM related WHERE foreign_key = ?``
    """

    many = True

    def _match(self, items: list[Model]) -> Collection[Any]:
        return Collection(items)


class BelongsTo(Relation):
    """
    The row the owner's ``foreign_key`` points at.

    ``SELECT * FROM related WHERE owner_key = ? LIMIT 1`` where ``owner_key``
    defaults to the related primary key.
    """

    many = False

    def __init__(
        self,
        related: type[Model] | str,
        foreign_key: str,
        owner_key: str | None = None,
    ):
        super().__init__(related)
        self.foreign_key = check_column(foreign_key)
        self._owner_key = check_column(owner_key) if owner_key else None

    @property
    def related_key(self) -> str:
        return self._owner_key or self.related.__primary_key__

    def owner_key_name(self) -> str:
        return self.foreign_key

    def _check_columns(self, owner: type[Model], related: type[Model]) -> None:
        self._require_column(owner, self.foreign_key)
        self._require_column(related, self.related_key)

    def query_for(self, db: Connection, instance: Model) -> Query[Any]:
        self.validate()
        return self._scope(self.related.objects.query(db), self.related_key, instance)

    async def eager_load(self, db: Connection, models: Sequence[Model]) -> None:
        self.validate()
        keys = _distinct(self.owner_key(model) for model in models)
        found: dict[Any, Model] = {}
        if keys:
            results = await (
                self.related.objects.query(db).where_in(self.related_key, keys).get()
            )
            found = {item.get_attribute(self.related_key): item for item in results}

        for model in models:
            model.set_relation(self.name, found.get(self.owner_key(model)))

    async def eager_count(self, db: Connection, models: Sequence[Model]) -> None:
        self.validate()
        keys = _distinct(self.owner_key(model) for model in models)
        counts: dict[Any, int] = {}
        if keys:
            rows = await (
                Query(db, self.related.__tablename__)
                .select(self.related_key)
                .select_raw("count(*) AS num")
                .where_in(self.related_key, keys)
                .group_by(self.related_key)
                .get()
            )
            counts = {row[self.related_key]: row["num"] for row in rows}
        self._assign_counts(models, counts)


class ManyToMany(Relation):
    """
    Related rows linked through a junction (pivot) table.

    Args:
        related: Related model class or its name.
        table: Junction table name.
        foreign_pivot_key: Junction column holding the owner key.
        related_pivot_key: Junction column holding the related key.
        parent_key: Owner column referenced by the junction (owner primary key).
        related_key: Related column referenced by the junction (related
            primary key).
        pivot_columns: Extra junction columns exposed on each result as
            ``model.pivot``.

    Example:
        >>> class User(Model):
        ...     __tablename__ = "users"
        ...     roles = ManyToMany("Role", "user_role", "user_id", "role_id")
        ...
        >>> class Role(Model):
        ...     __tablename__ = "roles"
        ...     users = ManyToMany("User", "user_role", "role_id", "user_id")
    """

    many = True

    def __init__(
        self,
        related: type[Model] | str,
        table: str,
        foreign_pivot_key: str,
        related_pivot_key: str,
        *,
        parent_key: str | None = None,
        related_key: str | None = None,
        pivot_columns: Iterable[str] = (),
    ):
        super().__init__(related)
        self.table = check_table(table)
        self.foreign_pivot_key = check_column(foreign_pivot_key)
        self.related_pivot_key = check_column(related_pivot_key)
        self._parent_key = check_column(parent_key) if parent_key else None
        self._related_key = check_column(related_key) if related_key else None
        self.pivot_columns = tuple(check_column(c) for c in pivot_columns)

    @property
    def related_key(self) -> str:
        return self._related_key or self.related.__primary_key__

    def owner_key_name(self) -> str:
        assert self.owner is not None
        return self._parent_key or self.owner.__primary_key__

    def _check_columns(self, owner: type[Model], related: type[Model]) -> None:
        self._require_column(owner, self.owner_key_name())
        self._require_column(related, self.related_key)

    def _base_query(self, db: Connection) -> Query[Any]:
        related = self.related
        query = related.objects.query(db).select(f"{related.__tablename__}.*")
        for column in self.pivot_columns:
            query.select(f"{self.table}.{column} AS {PIVOT_PREFIX}{column}")
        return query.join(
            self.table,
            f"{related.__tablename__}.{self.related_key}",
            "=",
            f"{self.table}.{self.related_pivot_key}",
        )

    def query_for(self, db: Connection, instance: Model) -> Query[Any]:
        self.validate()
        return self._scope(
            self._base_query(db), f"{self.table}.{self.foreign_pivot_key}", instance
        )

    @staticmethod
    def _attach_pivot(items: Iterable[Model]) -> None:
        for item in items:
            item.set_pivot(
                {
                    key[len(PIVOT_PREFIX) :]: item.pop_extra(key)
                    for key in item.extra_keys()
                    if key.startswith(PIVOT_PREFIX)
                }
            )

    async def resolve(self, db: Connection, instance: Model) -> Any:
        items = await super().resolve(db, instance)
        self._attach_pivot(items)
        return items

    async def eager_load(self, db: Connection, models: Sequence[Model]) -> None:
        self.validate()
        keys = _distinct(self.owner_key(model) for model in models)
        buckets: dict[Any, list[Model]] = defaultdict(list)
        if keys:
            column = f"{self.table}.{self.foreign_pivot_key}"
            results = await (
                self._base_query(db)
                .select(f"{column} AS {_OWNER_ALIAS}")
                .where_in(column, keys)
                .get()
            )
            for item in results:
                buckets[item.pop_extra(_OWNER_ALIAS)].append(item)
            self._attach_pivot(results)

        for model in models:
            model.set_relation(
                self.name, Collection(buckets.get(self.owner_key(model), []))
            )

    async def eager_count(self, db: Connection, models: Sequence[Model]) -> None:
        self.validate()
        keys = _distinct(self.owner_key(model) for model in models)
        counts: dict[Any, int] = {}
        if keys:
            rows = await (
                Query(db, self.table)
                .select(self.foreign_pivot_key)
                .select_raw("count(*) AS num")
                .where_in(self.foreign_pivot_key, keys)
                .group_by(self.foreign_pivot_key)
                .get()
            )
            counts = {row[self.foreign_pivot_key]: row["num"] for row in rows}
        self._assign_counts(models, counts)

    # --- Junction table writes ---

    def _pivot_query(self, db: Connection, instance: Model) -> Query[Any]:
        self.validate()
        key = self.owner_key(instance)
        if key is None:
            msg = f"{self!r}: the owner must be saved before its pivot rows change"
            raise ContractError(msg)
        return Query(db, self.table).where(self.foreign_pivot_key, key)

    async def attach(
        self,
        db: Connection,
        instance: Model,
        ids: Iterable[Any],
        pivot_values: dict[str, Any] | None = None,
    ) -> int:
        """Insert one junction row per related id."""
        query = self._pivot_query(db, instance)
        owner = self.owner_key(instance)
        rows = [
            {
                self.foreign_pivot_key: owner,
                self.related_pivot_key: related_id,
                **(pivot_values or {}),
            }
            for related_id in ids
        ]
        return await query.insert_many(rows)

    async def detach(
        self, db: Connection, instance: Model, ids: Iterable[Any] | None = None
    ) -> int:
        """Delete junction rows for ``ids``, or all of the owner's rows."""
        query = self._pivot_query(db, instance)
        if ids is not None:
            query.where_in(self.related_pivot_key, list(ids))
        return await query.delete()

    async def sync(
        self, db: Connection, instance: Model, ids: Iterable[Any]
    ) -> dict[str, list[Any]]:
        """
        Make the junction rows of the owner match ``ids`` exactly.

        Returns:
            The ids that were ``attached`` and ``detached``.
        """
        wanted = _distinct(ids)
        current = await self._pivot_query(db, instance).pluck(self.related_pivot_key)
        detached = [key for key in current if key not in wanted]
        attached = [key for key in wanted if key not in current]
        if detached:
            await self.detach(db, instance, detached)
        if attached:
            await self.attach(db, instance, attached)
        return {"attached": attached, "detached": detached}
