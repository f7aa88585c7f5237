import re
from typing import Any, Type, TypeVar

from .models import Model
from .query.clauses import IDENTIFIER

T = TypeVar("T", bound="Model")

_NAME_RE = re.compile(rf"^{IDENTIFIER}$")


class ModelValidator:
    """Validates that a class is a proper Model."""

    @staticmethod
    def validate_model(model: Any) -> Type[T]:
        """
        Validate that the provided class is a concrete Model subclass.

        Raises:
            TypeError: If model is not a Model subclass or has no table.
        """
        if not isinstance(model, type):
            raise TypeError(f"model must be a class, got {type(model).__name__}")

        if not issubclass(model, Model):
            raise TypeError(
                f"model must be a Model subclass, got {model.__name__}. "
                f"Make sure '{model.__name__}' inherits from lucid_db.Model"
            )

        if "__table__" not in model.__dict__:
            raise TypeError(f"Model {model.__name__} is abstract and has no table")

        return model

    @staticmethod
    def validate_definition(model: type) -> None:
        """
        Validate the class attributes a concrete model must declare.

        Raises:
            TypeError: If ``__tablename__`` or ``__primary_key__`` is missing
                or not a plain identifier.
        """
        tablename = model.__dict__.get("__tablename__")
        if not tablename:
            raise TypeError(
                f"Model {model.__name__} is missing __tablename__. "
                f"Table names are never inferred."
            )
        if not isinstance(tablename, str) or not _NAME_RE.match(tablename):
            raise TypeError(
                f"Model {model.__name__} has invalid __tablename__ {tablename!r}"
            )

        primary_key = getattr(model, "__primary_key__", None)
        if not isinstance(primary_key, str) or not _NAME_RE.match(primary_key):
            raise TypeError(
                f"Model {model.__name__} has invalid __primary_key__ {primary_key!r}"
            )
