from __future__ import annotations

from typing import (
    TYPE_CHECKING,
    Any,
    Iterable,
    List,
    Mapping,
    TypeVar,
)

from lucid_core.logging import get_logger

from .exceptions import RelationError

if TYPE_CHECKING:
    from .connection import Connection
    from .models import Model

logger = get_logger(__name__)

M = TypeVar("M", bound="Model")


def _names(names: tuple[Any, ...]) -> list[str]:
    if len(names) == 1 and isinstance(names[0], (list, tuple)):
        return list(names[0])
    return list(names)


def _by_class(models: Iterable[Model]) -> dict[type[Model], list[Model]]:
    groups: dict[type[Model], list[Model]] = {}
    for model in models:
        groups.setdefault(type(model), []).append(model)
    return groups


class Collection(List[M]):
    """
    Ordered list of models returned by a multi-row query.

    Besides plain list behaviour it resolves relations for all of its members
    at once, issuing one query per relation instead of one per member.

    Example:
        >>> customers = await Customer.objects.all(db)
        >>> await customers.load(db, "orders", "orders.items")
        >>> await customers.load_count(db, "orders")
        >>> customers[0].orders_count
        2
    """

    def model_keys(self) -> list[Any]:
        """Distinct primary key values, in collection order."""
        return list(
            dict.fromkeys(m.get_key() for m in self if m.get_key() is not None)
        )

    def pluck(self, column: str) -> list[Any]:
        return [model.get_attribute(column) for model in self]

    def find(self, key: Any) -> M | None:
        """The member with primary key ``key``, or ``None``."""
        return next((model for model in self if model.get_key() == key), None)

    def to_dicts(self) -> list[dict[str, Any]]:
        return [model.to_dict() for model in self]

    async def load(self, db: Connection, *names: str) -> Collection[M]:
        """
        Eager-load relations for every member.

        Each relation costs exactly one query whatever the collection size.
        Dotted names load nested relations level by level, one query per
        level. Members that already resolved a relation keep their value.

        Raises:
            RelationError: If a name is not a relation of the member class.
        """
        for name in _names(names):
            await self._load_path(db, name.split("."))
        return self

    async def _load_path(self, db: Connection, path: list[str]) -> None:
        head, rest = path[0], path[1:]
        for model_class, members in _by_class(self).items():
            relation = model_class.relation(head)
            pending = [m for m in members if not m.relation_loaded(head)]
            if pending:
                logger.debug(
                    "Eager loading %s for %d model(s)", relation, len(pending)
                )
                await relation.eager_load(db, pending)

            if not rest:
                continue
            children: Collection[Any] = Collection()
            for member in members:
                value = member.get_relation(head)
                if isinstance(value, list):
                    children.extend(value)
                elif value is not None:
                    children.append(value)
            if children:
                await children._load_path(db, rest)

    async def load_count(self, db: Connection, *names: str) -> Collection[M]:
        """
        Attach ``{relation}_count`` to every member, one query per relation.
        """
        for name in _names(names):
            for model_class, members in _by_class(self).items():
                await model_class.relation(name).eager_count(db, members)
        return self

    async def load_morphs(
        self,
        db: Connection,
        parents: Iterable[type[Model]] | Mapping[str, type[Model]],
        attribute: str = "parent",
    ) -> Collection[M]:
        """
        Resolve a polymorphic parent stored as ``{attribute}_type`` and
        ``{attribute}_id`` on each member.

        Members are grouped by type discriminator and each parent class is
        queried once with ``WHERE id IN (...)``. The parent is stored as the
        relation ``attribute`` of each member; a discriminator that matches
        none of ``parents`` leaves it ``None``.

        Args:
            parents: Candidate parent classes, matched on ``__morph_name__``,
                or an explicit discriminator → class mapping.
            attribute: Prefix of the discriminator and id columns.

        Example:
            >>> comments = await Comment.objects.all(db)
            >>> await comments.load_morphs(db, [Post, Video], "commentable")
            >>> comments[0].commentable
            <Post id=3>
        """
        morph_map = self._morph_map(parents)
        type_column, id_column = f"{attribute}_type", f"{attribute}_id"

        groups: dict[str, list[Model]] = {}
        for member in self:
            kind = member.get_attribute(type_column)
            if kind in morph_map:
                groups.setdefault(kind, []).append(member)
            else:
                member.set_relation(attribute, None)

        for kind, members in groups.items():
            parent_class = morph_map[kind]
            ids = list(
                dict.fromkeys(
                    m.get_attribute(id_column)
                    for m in members
                    if m.get_attribute(id_column) is not None
                )
            )
            found: dict[Any, Model] = {}
            if ids:
                results = await (
                    parent_class.objects.query(db)
                    .where_in(parent_class.__primary_key__, ids)
                    .get()
                )
                found = {parent.get_key(): parent for parent in results}
            for member in members:
                member.set_relation(attribute, found.get(member.get_attribute(id_column)))
        return self

    @staticmethod
    def _morph_map(
        parents: Iterable[type[Model]] | Mapping[str, type[Model]],
    ) -> dict[str, type[Model]]:
        from .validator import ModelValidator

        if isinstance(parents, Mapping):
            items = list(parents.items())
        else:
            items = [(getattr(p, "__morph_name__", None), p) for p in parents]

        morph_map: dict[str, type[Model]] = {}
        for kind, parent_class in items:
            try:
                morph_map[str(kind)] = ModelValidator.validate_model(parent_class)
            except TypeError as e:
                raise RelationError(f"Invalid morph parent: {e}") from e
        return morph_map
