from __future__ import annotations

from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, ClassVar, Iterable, Self

from sqlalchemy import Column, Integer, MetaData, String, Table

from lucid_core.config import lucid_settings
from lucid_core.logging import get_logger

from .exceptions import (
    ContractError,
    DoesNotExistError,
    RelationError,
    RelationNotLoadedError,
    UnknownColumnError,
)
from .relations import ManyToMany, Relation
from .values import SQLValue, check_value

if TYPE_CHECKING:
    from .connection import Connection
    from .manager import ModelManager
    from .query import Query

logger = get_logger(__name__)

# Concrete model classes by class name, for string relation targets.
_registry: dict[str, type[Model]] = {}

TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"


def resolve_model(name: str) -> type[Model]:
    """
    Look up a concrete model class by name.

    Raises:
        RelationError: If no model with that name has been defined.
    """
    try:
        return _registry[name]
    except KeyError:
        raise RelationError(f"Unknown model '{name}'") from None


def utc_timestamp() -> str:
    return datetime.now(timezone.utc).strftime(TIMESTAMP_FORMAT)


class Field:
    """
    Descriptor exposing one column of the attribute map.

    On the class it returns the SQLAlchemy ``Column`` (the schema), on an
    instance the current value.
    """

    __slots__ = ("name", "column")

    def __init__(self, name: str, column: Column[Any]):
        self.name = name
        self.column = column

    def __get__(self, instance: Model | None, owner: type | None = None) -> Any:
        if instance is None:
            return self.column
        return instance._attributes.get(self.name)

    def __set__(self, instance: Model, value: Any) -> None:
        instance.set_attribute(self.name, value)


class Model:
    """
    Base class for all database models. One instance is one table row.

    Subclasses declare an explicit ``__tablename__`` and their columns as
    SQLAlchemy ``Column`` attributes; together they form a ``Table`` on
    ``Model.metadata`` which is the schema used to validate attribute access.
    An integer ``id`` primary key is added unless ``__primary_key__`` names a
    declared column. Relations are declared as descriptors.

    Instances carry no identity map: two instances loaded for the same row
    are independent copies.

    Example:
        >>> class Customer(Model):
        ...     __tablename__ = "customers"
        ...     name = Column(String(100))
        ...     orders = HasMany("Order", foreign_key="customer_id")
        ...
        >>> customer = await Customer.objects.create(db, name="Ada")
        >>> orders = await customer.related(db, "orders")
    """

    __abstract__ = True
    __tablename__: ClassVar[str]
    __primary_key__: ClassVar[str] = "id"
    __morph_name__: ClassVar[str]
    __table__: ClassVar[Table]
    __columns__: ClassVar[frozenset[str]] = frozenset()
    __relations__: ClassVar[dict[str, Relation]] = {}

    metadata: ClassVar[MetaData] = MetaData()
    objects: ClassVar[ModelManager[Self]]  # type: ignore[misc]

    # Model-specific exception alias
    DoesNotExist = DoesNotExistError

    def __init_subclass__(cls, **kwargs: Any):
        super().__init_subclass__(**kwargs)
        from .manager import ModelManager
        from .validator import ModelValidator

        if cls.__dict__.get("__abstract__"):
            return

        ModelValidator.validate_definition(cls)
        columns = cls._collect_columns()
        cls.__table__ = Table(cls.__tablename__, Model.metadata, *columns)
        cls.__columns__ = frozenset(column.name for column in columns)
        cls.__relations__ = {
            **cls.__relations__,
            **{k: v for k, v in cls.__dict__.items() if isinstance(v, Relation)},
        }
        if "__morph_name__" not in cls.__dict__:
            cls.__morph_name__ = cls.__name__
        cls.objects = ModelManager(cls)

        if cls.__name__ in _registry:
            logger.warning("Model name '%s' registered twice", cls.__name__)
        _registry[cls.__name__] = cls

    @classmethod
    def _collect_columns(cls) -> list[Column[Any]]:
        columns: list[Column[Any]] = []
        for attr, value in list(cls.__dict__.items()):
            if not isinstance(value, Column):
                continue
            # Same naming rule as SQLAlchemy declarative: unnamed columns
            # take the attribute name.
            if value.name is None:
                value.name = attr
            if value.key is None:
                value.key = attr
            if value.name != attr:
                msg = (
                    f"{cls.__name__}.{attr}: column name {value.name!r} must "
                    f"match the attribute name"
                )
                raise TypeError(msg)
            columns.append(value)

        names = {column.name for column in columns}
        if cls.__primary_key__ not in names:
            if cls.__primary_key__ != "id":
                logger.warning(
                    "%s declares no '%s' column; adding an integer primary key",
                    cls.__name__,
                    cls.__primary_key__,
                )
            columns.insert(0, Column(cls.__primary_key__, Integer, primary_key=True))

        if getattr(cls, "__timestamps__", False):
            for name in ("created_at", "updated_at"):
                if name not in names:
                    columns.append(Column(name, String(32), nullable=True))

        for column in columns:
            setattr(cls, column.name, Field(column.name, column))
        return columns

    # --- Construction / hydration ---

    def __init__(self, **attributes: Any):
        self._init_state()
        self.fill(**attributes)

    def _init_state(self) -> None:
        self._attributes: dict[str, SQLValue] = {}
        self._original: dict[str, SQLValue] = {}
        self._extras: dict[str, Any] = {}
        self._relations: dict[str, Any] = {}
        self._pivot: dict[str, Any] | None = None
        self._exists = False

    @classmethod
    def hydrate(cls, row: dict[str, Any]) -> Self:
        """
        Build an instance from a database row.

        Schema columns become attributes; any other selected column (aliases,
        aggregates, pivot columns) is kept as a read-only extra.
        """
        instance = cls.__new__(cls)
        instance._init_state()
        for key, value in row.items():
            if key in cls.__columns__:
                instance._attributes[key] = value
            else:
                instance._extras[key] = value
        instance._original = dict(instance._attributes)
        instance._exists = True
        return instance

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} {self.__primary_key__}={self.get_key()!r}>"

    # --- Attribute map ---

    def __setattr__(self, name: str, value: Any) -> None:
        if name.startswith("_") or hasattr(type(self), name):
            object.__setattr__(self, name, value)
        else:
            self.set_attribute(name, value)

    def __getattr__(self, name: str) -> Any:
        # Only reached when normal lookup fails: extras and ad-hoc relations.
        if not name.startswith("_"):
            state = self.__dict__
            if name in state.get("_extras", {}):
                return state["_extras"][name]
            if name in state.get("_relations", {}):
                return state["_relations"][name]
        raise AttributeError(
            f"{type(self).__name__!r} object has no attribute {name!r}"
        )

    def __getitem__(self, name: str) -> Any:
        return self.get_attribute(name)

    def __setitem__(self, name: str, value: Any) -> None:
        self.set_attribute(name, value)

    def set_attribute(self, name: str, value: Any) -> None:
        """
        Assign a column value.

        Raises:
            UnknownColumnError: In strict mode, for names outside the schema.
            InvalidValueError: For values that cannot be stored.
        """
        if name in self.__columns__:
            self._attributes[name] = check_value(
                value, f"{type(self).__name__}.{name}"
            )
        elif lucid_settings.STRICT_MODE:
            raise UnknownColumnError(
                f"'{name}' is not a column of {type(self).__name__} "
                f"(table '{self.__tablename__}')"
            )
        else:
            self._extras[name] = value

    def get_attribute(self, name: str) -> Any:
        if name in self.__columns__:
            return self._attributes.get(name)
        if name in self._extras:
            return self._extras[name]
        if lucid_settings.STRICT_MODE:
            raise UnknownColumnError(
                f"'{name}' is not a column of {type(self).__name__} "
                f"(table '{self.__tablename__}')"
            )
        return None

    def fill(self, **attributes: Any) -> Self:
        for name, value in attributes.items():
            self.set_attribute(name, value)
        return self

    def get_key(self) -> Any:
        return self._attributes.get(self.__primary_key__)

    @property
    def exists(self) -> bool:
        """True once the row has been loaded from or written to the database."""
        return self._exists

    @property
    def pivot(self) -> dict[str, Any] | None:
        """Junction columns of the row this model was loaded through."""
        return self._pivot

    def set_pivot(self, values: dict[str, Any]) -> None:
        self._pivot = values

    def extra_keys(self) -> list[str]:
        return list(self._extras)

    def pop_extra(self, name: str) -> Any:
        return self._extras.pop(name, None)

    def set_count(self, relation: str, count: int) -> None:
        self._extras[f"{relation}_count"] = count

    def to_dict(self) -> dict[str, SQLValue]:
        return dict(self._attributes)

    # --- Dirty tracking ---

    def get_dirty(self) -> dict[str, SQLValue]:
        """Columns whose value differs from the last loaded or saved state."""
        return {
            name: value
            for name, value in self._attributes.items()
            if name not in self._original or self._original[name] != value
        }

    def is_dirty(self, *names: str) -> bool:
        dirty = self.get_dirty()
        if names:
            return any(name in dirty for name in names)
        return bool(dirty)

    # --- Persistence ---

    async def save(self, db: Connection) -> Self:
        """
        Insert the row if it is new, otherwise update its dirty columns.

        A model is new until it has been inserted or loaded from the
        database. Saving a clean, existing model sends no statement.
        """
        timestamps = getattr(self, "__timestamps__", False)
        query = type(self).objects.query(db)
        key_name = self.__primary_key__

        if self._exists:
            dirty = self.get_dirty()
            if not dirty:
                return self
            if timestamps and "updated_at" not in dirty:
                self._attributes["updated_at"] = dirty["updated_at"] = utc_timestamp()
            original_key = self._original.get(key_name, self.get_key())
            await query.where(key_name, original_key).update(dirty)
        else:
            if timestamps:
                now = utc_timestamp()
                self._attributes.setdefault("created_at", now)
                self._attributes.setdefault("updated_at", now)
            values = dict(self._attributes)
            if values.get(key_name) is None:
                values.pop(key_name, None)
            new_id = await query.insert(values)
            if self.get_key() is None:
                self._attributes[key_name] = new_id
            self._exists = True

        self._original = dict(self._attributes)
        return self

    async def delete(self, db: Connection) -> bool:
        """
        Delete the row. Returns whether a row was actually removed.
        """
        if not self._exists:
            msg = f"Cannot delete {type(self).__name__}: it was never saved"
            raise ContractError(msg)
        count = await (
            type(self)
            .objects.query(db)
            .where(self.__primary_key__, self._original.get(self.__primary_key__))
            .delete()
        )
        self._exists = False
        return count > 0

    async def refresh(self, db: Connection) -> Self:
        """
        Re-fetch the row, discarding local changes and resolved relations.
        """
        fresh = await type(self).objects.find_or_fail(db, self.get_key())
        self._attributes = fresh._attributes
        self._original = fresh._original
        self._extras = fresh._extras
        self._relations = {}
        self._exists = True
        return self

    # --- Relations ---

    @classmethod
    def relation(cls, name: str) -> Relation:
        """
        The relation descriptor registered under ``name``.

        Raises:
            RelationError: If the model declares no such relation.
        """
        try:
            return cls.__relations__[name]
        except KeyError:
            raise RelationError(
                f"{cls.__name__} has no relation named '{name}'"
            ) from None

    def relation_loaded(self, name: str) -> bool:
        return name in self._relations

    def get_relation(self, name: str) -> Any:
        """
        The resolved value of a relation.

        Raises:
            RelationNotLoadedError: If the relation has not been resolved on
                this instance yet.
        """
        if name in self._relations:
            return self._relations[name]
        raise RelationNotLoadedError(
            f"Relation '{name}' of {self!r} is not loaded; use "
            f"await model.related(db, '{name}') or Collection.load() first"
        )

    def set_relation(self, name: str, value: Any) -> None:
        self._relations[name] = value

    async def related(self, db: Connection, name: str) -> Any:
        """
        Resolve a relation, querying only on first access.

        Returns:
            A model or ``None`` for to-one relations, a ``Collection`` for
            to-many relations. The value is cached on the instance until
            :meth:`refresh`.

        Example:
            >>> orders = await customer.related(db, "orders")
            >>> customer.orders is orders
            True
        """
        if name in self._relations:
            return self._relations[name]
        value = await self.relation(name).resolve(db, self)
        self._relations[name] = value
        return value

    def relation_query(self, db: Connection, name: str) -> Query[Any]:
        """
        The relation's query for this instance, open to further clauses.

        Example:
            >>> latest = await customer.relation_query(db, "orders").latest("id").first()
        """
        return self.relation(name).query_for(db, self)

    async def load(self, db: Connection, *names: str) -> Self:
        from .collection import Collection

        await Collection([self]).load(db, *names)
        return self

    async def load_count(self, db: Connection, *names: str) -> Self:
        from .collection import Collection

        await Collection([self]).load_count(db, *names)
        return self

    def _pivot_relation(self, name: str) -> ManyToMany:
        relation = self.relation(name)
        if not isinstance(relation, ManyToMany):
            raise RelationError(f"{relation!r} is not a many-to-many relation")
        return relation

    async def attach(
        self, db: Connection, name: str, ids: Iterable[Any], **pivot_values: Any
    ) -> int:
        """
        Link related ids through the junction table.

        A relation already resolved on this instance keeps its cached value
        until :meth:`refresh`.
        """
        return await self._pivot_relation(name).attach(db, self, ids, pivot_values)

    async def detach(
        self, db: Connection, name: str, ids: Iterable[Any] | None = None
    ) -> int:
        return await self._pivot_relation(name).detach(db, self, ids)

    async def sync(
        self, db: Connection, name: str, ids: Iterable[Any]
    ) -> dict[str, list[Any]]:
        return await self._pivot_relation(name).sync(db, self, ids)


class TimestampMixin:
    """
    Mixin that adds `created_at` and `updated_at` columns to a model.

    Values are UTC strings (``YYYY-MM-DD HH:MM:SS``) set on insert and update.

    Example:
        >>> class Post(Model, TimestampMixin):
        ...     __tablename__ = "posts"
        ...     title = Column(String(200))
    """

    __timestamps__ = True
