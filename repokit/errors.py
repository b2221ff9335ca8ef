"""Error taxonomy for repokit.

- ``EntityError`` family: not found, concurrency conflicts, failed writes
- ``ConfigurationError`` family: missing handlers, model mismatches,
  wrong store bindings, unknown providers
- ``ProtocolError`` family: misuse of scopes and transactions
"""

import typing as t


def _type_name(entity_type: t.Any) -> str | None:
    if entity_type is None or isinstance(entity_type, str):
        return entity_type
    return getattr(entity_type, "__qualname__", str(entity_type))


class RepositoryError(Exception):
    """Base exception for repokit operations."""

    def __init__(
        self,
        message: str,
        entity_type: t.Any = None,
        operation: str | None = None,
    ) -> None:
        self.entity_type = _type_name(entity_type)
        self.operation = operation
        super().__init__(message)


class EntityError(RepositoryError):
    """Base exception for failures of a single entity operation."""


class EntityNotFoundError(EntityError):
    """Raised by ``load`` when no entity with the given id exists."""

    def __init__(self, entity_type: t.Any, entity_id: t.Any) -> None:
        self.entity_id = entity_id
        super().__init__(
            f"Entity '{_type_name(entity_type)}' with id '{entity_id}' was not found.",
            entity_type=entity_type,
            operation="load",
        )


class EntityConcurrencyError(EntityError):
    """Raised when a stored row changed or disappeared since it was loaded."""

    default_message = "Entities may have been modified or deleted since they were loaded."

    def __init__(
        self,
        message: str | None = None,
        entity_type: t.Any = None,
        operation: str | None = None,
    ) -> None:
        super().__init__(message or self.default_message, entity_type, operation)


class EntityUpdateError(EntityError):
    """Raised when the store rejects a write for a reason other than a conflict."""

    default_message = "One or more entities could not be updated."

    def __init__(
        self,
        message: str | None = None,
        entity_type: t.Any = None,
        operation: str | None = None,
    ) -> None:
        super().__init__(message or self.default_message, entity_type, operation)


class ConfigurationError(RepositoryError):
    """Raised when repokit components are wired together incorrectly."""


class QueryHandlerNotRegisteredError(ConfigurationError):
    def __init__(self, query_type: t.Any) -> None:
        self.query_type = query_type
        super().__init__(
            f"There is no handler for query type '{_type_name(query_type)}' registered.",
            entity_type=getattr(query_type, "entity_type", None),
            operation="query",
        )


class ConcurrencyModelMismatchError(ConfigurationError):
    """Raised when an entity's concurrency mode disagrees with its record schema."""


class ProviderBindingError(ConfigurationError):
    """Raised when a repository is bound to a provider with an unsupported store."""


class DataProviderNotRegisteredError(ConfigurationError):
    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"Data provider with name '{name}' is not registered.")


class ProtocolError(RepositoryError):
    """Raised when an API is used out of order."""


class ChangeScopeOrderError(ProtocolError):
    def __init__(self) -> None:
        super().__init__("Change scopes must be disposed in reverse-order.")


class TransactionInProgressError(ProtocolError):
    def __init__(self) -> None:
        super().__init__("A transaction is already in progress.", operation="begin_transaction")


class TransactionFinishedError(ProtocolError):
    def __init__(self, transaction_id: str, state: t.Any) -> None:
        self.transaction_id = transaction_id
        super().__init__(f"Transaction '{transaction_id}' has already finished with state {state}.")


class TransactionDisposedError(ProtocolError):
    def __init__(self, transaction_id: str) -> None:
        self.transaction_id = transaction_id
        super().__init__(f"Transaction '{transaction_id}' has been disposed.")
