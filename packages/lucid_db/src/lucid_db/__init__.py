from .collection import Collection
from .connection import Connection, ConnectionManager
from .db import close_db, get_db, get_engine, init_db
from .exceptions import (
    ContractError,
    DoesNotExistError,
    InvalidIdentifierError,
    InvalidOperatorError,
    InvalidValueError,
    LucidDBError,
    RelationError,
    RelationNotLoadedError,
    StorageError,
    TransactionError,
    UnfilteredWriteError,
    UnknownColumnError,
)
from .models import Model, TimestampMixin
from .query import Query
from .relations import BelongsTo, HasMany, HasOne, ManyToMany
from .transaction import atomic

__all__ = [
    "BelongsTo",
    "Collection",
    "Connection",
    "ConnectionManager",
    "ContractError",
    "DoesNotExistError",
    "HasMany",
    "HasOne",
    "InvalidIdentifierError",
    "InvalidOperatorError",
    "InvalidValueError",
    "LucidDBError",
    "ManyToMany",
    "Model",
    "Query",
    "RelationError",
    "RelationNotLoadedError",
    "StorageError",
    "TransactionError",
    "UnfilteredWriteError",
    "UnknownColumnError",
    "atomic",
    "close_db",
    "get_db",
    "get_engine",
    "init_db",
]
