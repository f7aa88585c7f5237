from __future__ import annotations

from typing import TYPE_CHECKING, Any, Generic, Iterable, TypeVar

from .collection import Collection
from .exceptions import DoesNotExistError
from .query import Query

if TYPE_CHECKING:
    from .connection import Connection
    from .models import Model

T = TypeVar("T", bound="Model")


class ModelManager(Generic[T]):
    """
    Entry point for model-level database operations.

    Responsible for creating model-bound queries and handling single-record
    actions. Every method takes the connection to run on as first argument.
    """

    def __init__(self, model: type[T]):
        self._model = model

    def query(self, db: Connection | None) -> Query[T]:
        """
        Return a fresh query on the model's table whose results are hydrated
        into model instances.
        """
        return Query(db, self._model.__tablename__, model=self._model)

    async def all(self, db: Connection) -> Collection[T]:
        """
        Return every record of the table.
        """
        return await self.query(db).get()

    async def find(self, db: Connection, pk: Any) -> T | None:
        """
        Retrieve a single object by its primary key, or ``None``.
        """
        return await self.query(db).find(pk)

    async def find_or_fail(self, db: Connection, pk: Any) -> T:
        """
        Retrieve a single object by its primary key.

        Raises:
            DoesNotExistError: If no row has that key.
        """
        instance = await self.find(db, pk)
        if instance is None:
            msg = f"{self._model.__name__} with {self._model.__primary_key__} {pk!r} not found"
            raise DoesNotExistError(msg)
        return instance

    async def find_many(self, db: Connection, pks: Iterable[Any]) -> Collection[T]:
        """
        Retrieve the objects whose primary key is in ``pks``.
        """
        return await self.query(db).where_in(self._model.__primary_key__, pks).get()

    async def create(self, db: Connection, **fields: Any) -> T:
        """
        Create and persist a new model instance.
        """
        instance: T = self._model(**fields)
        await instance.save(db)
        return instance

    async def destroy(self, db: Connection, *pks: Any) -> int:
        """
        Delete the records with the given primary keys and return the number
        of deleted rows.
        """
        if not pks:
            return 0
        return await (
            self.query(db).where_in(self._model.__primary_key__, list(pks)).delete()
        )

    async def first_or_create(
        self,
        db: Connection,
        defaults: dict[str, Any] | None = None,
        **kwargs: Any,
    ) -> tuple[T, bool]:
        """
        Look up an object with the given kwargs, creating one if necessary.
        Return a tuple of (object, created), where created is a boolean.
        """
        query = self.query(db)
        for column, value in kwargs.items():
            query.where(column, value)
        instance = await query.first()
        if instance is not None:
            return instance, False
        return await self.create(db, **{**kwargs, **(defaults or {})}), True

    async def update_or_create(
        self,
        db: Connection,
        defaults: dict[str, Any] | None = None,
        **kwargs: Any,
    ) -> tuple[T, bool]:
        """
        Look up an object with the given kwargs, updating it with defaults if
        it exists, otherwise creating one.
        Return a tuple of (object, created), where created is a boolean.
        """
        instance, created = await self.first_or_create(db, defaults, **kwargs)
        if not created and defaults:
            instance.fill(**defaults)
            await instance.save(db)
        return instance, created
