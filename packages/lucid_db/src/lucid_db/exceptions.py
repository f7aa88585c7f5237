class LucidDBError(Exception):
    """Base class for all Lucid DB exceptions."""


class ContractError(LucidDBError, ValueError):
    """Raised when the data layer is called in a way that can never succeed."""


class InvalidIdentifierError(ContractError):
    """Raised when a table, column or alias is not a plain SQL identifier."""


class InvalidOperatorError(ContractError):
    """Raised when a comparison operator or sort direction is not supported."""


class InvalidValueError(ContractError):
    """Raised when a value cannot be bound as a query parameter or stored."""


class UnfilteredWriteError(ContractError):
    """Raised when update() or delete() is attempted without a WHERE clause."""


class UnknownColumnError(ContractError):
    """Raised when a column is not part of a model schema."""


class RelationError(ContractError):
    """Raised for unknown relation names and invalid relation descriptors."""


class RelationNotLoadedError(RelationError):
    """Raised when a relation is read before it has been resolved."""


class TransactionError(ContractError):
    """Raised when transaction calls are not properly paired."""


class StorageError(LucidDBError):
    """Raised when the database rejects or fails to run a statement."""

    def __init__(self, message: str, orig: BaseException | None = None):
        super().__init__(message)
        self.orig = orig


class DoesNotExistError(LucidDBError, LookupError):
    """Raised when a single row was required but none was found."""
