"""Storage interface implemented by repokit stores.

A store stages inserts, updates and deletes on per-record-type
collections and applies all staged work atomically on ``flush``. Token
preconditions prepared by the concurrency reconciler travel with each
staged write; a failed precondition raises ``StoreConflictError``.
"""

from abc import ABC, abstractmethod
from enum import Enum

import typing as t
from dataclasses import dataclass

from repokit.cleanup import CleanupMixin
from repokit.concurrency import TokenReconciliation


class StoreConflictError(Exception):
    """A staged write matched no row or found a different change token."""

    def __init__(self, record_type: type[t.Any], key: tuple[t.Any, ...], operation: str) -> None:
        self.record_type = record_type
        self.key = key
        self.operation = operation
        super().__init__(
            f"{operation} of {record_type.__qualname__} with key {key!r} matched no row",
        )


class IsolationLevel(Enum):
    READ_UNCOMMITTED = "READ UNCOMMITTED"
    READ_COMMITTED = "READ COMMITTED"
    REPEATABLE_READ = "REPEATABLE READ"
    SERIALIZABLE = "SERIALIZABLE"


@dataclass(frozen=True)
class RecordSchema:
    """Primary key and concurrency token layout of a record type."""

    record_type: type[t.Any]
    primary_key: tuple[str, ...] = ("id",)
    concurrency_token: str | None = None
    key_factory: t.Callable[[], t.Any] | None = None

    def key_of(self, record: t.Any) -> tuple[t.Any, ...]:
        return tuple(getattr(record, name) for name in self.primary_key)

    def token_of(self, record: t.Any) -> t.Any:
        if self.concurrency_token is None:
            return None
        return getattr(record, self.concurrency_token)

    def apply_token(self, record: t.Any, tokens: TokenReconciliation) -> None:
        if self.concurrency_token is not None and tokens.write_token is not None:
            setattr(record, self.concurrency_token, tokens.write_token)


class StoreCollection[RecordT](ABC):
    def __init__(self, schema: RecordSchema) -> None:
        self.schema = schema

    @property
    def record_type(self) -> type[RecordT]:
        return self.schema.record_type

    @abstractmethod
    async def get_by_primary_key(self, key: tuple[t.Any, ...]) -> RecordT | None:
        """Read one record, ``None`` when absent."""

    @abstractmethod
    def insert(self, record: RecordT, tokens: TokenReconciliation) -> RecordT:
        """Stage an insert; the returned record carries assigned keys and token."""

    @abstractmethod
    def update(self, record: RecordT, tokens: TokenReconciliation) -> RecordT:
        """Stage an update guarded by ``tokens.match_token``."""

    @abstractmethod
    def delete(self, record: RecordT, tokens: TokenReconciliation) -> None:
        """Stage a delete guarded by ``tokens.match_token``."""


class StoreTransaction(ABC):
    def __init__(self, transaction_id: str) -> None:
        self.id = transaction_id

    @abstractmethod
    async def commit(self) -> None: ...

    @abstractmethod
    async def rollback(self) -> None: ...


class DataStore(CleanupMixin, ABC):
    """A backend holding collections of records for one data provider."""

    def __init__(self) -> None:
        super().__init__()
        self._collections: dict[type[t.Any], StoreCollection[t.Any]] = {}

    def collection[RecordT](self, record_type: type[RecordT]) -> StoreCollection[RecordT]:
        collection = self._collections.get(record_type)
        if collection is None:
            collection = self._create_collection(record_type)
            self._collections[record_type] = collection
        return collection

    @abstractmethod
    def _create_collection(self, record_type: type[t.Any]) -> StoreCollection[t.Any]: ...

    @property
    @abstractmethod
    def has_pending_changes(self) -> bool: ...

    @abstractmethod
    async def flush(self) -> int:
        """Apply all staged writes atomically and return the affected row count.

        Staged work is discarded whether or not the flush succeeds.
        """

    @abstractmethod
    def discard(self) -> None:
        """Drop staged writes without applying them."""

    @abstractmethod
    async def begin_transaction(
        self,
        isolation_level: IsolationLevel | None = None,
    ) -> StoreTransaction: ...

    async def close(self) -> None:
        await self.cleanup()
