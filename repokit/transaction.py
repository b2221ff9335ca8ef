"""Explicit transactions over a data store.

A provider has at most one active transaction. The transaction tells its
manager when it finishes through the ``on_finished`` callback it was
created with, so the manager can accept a new one.
"""

from enum import Enum

import typing as t
from contextlib import asynccontextmanager

from repokit.errors import (
    EntityUpdateError,
    TransactionDisposedError,
    TransactionFinishedError,
    TransactionInProgressError,
)
from repokit.logger import DataProviderLogger
from repokit.storage import DataStore, IsolationLevel, StoreTransaction

RunSync = t.Callable[[t.Awaitable[t.Any]], t.Any]


class TransactionState(Enum):
    OPEN = "open"
    COMMITTED = "committed"
    ROLLED_BACK = "rolled_back"
    DISPOSED = "disposed"


class Transaction:
    def __init__(
        self,
        handle: StoreTransaction,
        on_finished: t.Callable[["Transaction"], None],
        logger: DataProviderLogger,
        run_sync: RunSync,
    ) -> None:
        self._handle = handle
        self._on_finished = on_finished
        self._logger = logger
        self._run_sync = run_sync
        self._state = TransactionState.OPEN
        self._finished = False

    @property
    def id(self) -> str:
        return self._handle.id

    @property
    def state(self) -> TransactionState:
        return self._state

    @property
    def is_active(self) -> bool:
        return self._state is TransactionState.OPEN

    def _check_open(self) -> None:
        if self._state is TransactionState.DISPOSED:
            raise TransactionDisposedError(self.id)
        if self._state is not TransactionState.OPEN:
            raise TransactionFinishedError(self.id, self._state)

    def _finish(self, state: TransactionState) -> None:
        self._state = state
        if not self._finished:
            self._finished = True
            self._on_finished(self)

    async def commit(self) -> None:
        self._check_open()
        self._logger.transaction_committing(self.id)
        started = self._logger.start()
        try:
            await self._handle.commit()
        except Exception as e:
            self._logger.transaction_commit_failed(self.id, e)
            try:
                await self._handle.rollback()
            finally:
                self._finish(TransactionState.ROLLED_BACK)
            msg = f"Failed to commit transaction '{self.id}': {e}"
            raise EntityUpdateError(msg, operation="commit") from e
        self._finish(TransactionState.COMMITTED)
        self._logger.transaction_committed(self.id, started)

    async def rollback(self) -> None:
        self._check_open()
        self._logger.transaction_rolling_back(self.id)
        started = self._logger.start()
        try:
            await self._handle.rollback()
        finally:
            self._finish(TransactionState.ROLLED_BACK)
        self._logger.transaction_rolled_back(self.id, started)

    async def close(self) -> None:
        """Dispose the transaction, rolling it back if it is still open."""
        if self._state is TransactionState.DISPOSED:
            return
        try:
            if self._state is TransactionState.OPEN:
                await self.rollback()
        finally:
            self._state = TransactionState.DISPOSED

    def commit_sync(self) -> None:
        self._run_sync(self.commit())

    def rollback_sync(self) -> None:
        self._run_sync(self.rollback())

    def close_sync(self) -> None:
        self._run_sync(self.close())

    async def __aenter__(self) -> t.Self:
        return self

    async def __aexit__(self, exc_type: t.Any, exc_val: t.Any, exc_tb: t.Any) -> None:
        await self.close()

    def __enter__(self) -> t.Self:
        return self

    def __exit__(self, exc_type: t.Any, exc_val: t.Any, exc_tb: t.Any) -> None:
        self.close_sync()


class TransactionManager:
    def __init__(
        self,
        store: DataStore,
        logger: DataProviderLogger,
        run_sync: RunSync,
    ) -> None:
        self.store = store
        self._logger = logger
        self._run_sync = run_sync
        self._current: Transaction | None = None

    @property
    def current_transaction(self) -> Transaction | None:
        return self._current

    def _transaction_finished(self, transaction: Transaction) -> None:
        if self._current is transaction:
            self._current = None

    async def begin_transaction(
        self,
        isolation_level: IsolationLevel | None = None,
    ) -> Transaction:
        if self._current is not None:
            raise TransactionInProgressError

        handle = await self.store.begin_transaction(isolation_level)
        transaction = Transaction(handle, self._transaction_finished, self._logger, self._run_sync)
        self._current = transaction
        self._logger.transaction_created(transaction.id)
        return transaction

    def begin_transaction_sync(
        self,
        isolation_level: IsolationLevel | None = None,
    ) -> Transaction:
        return self._run_sync(self.begin_transaction(isolation_level))

    @asynccontextmanager
    async def transaction(
        self,
        isolation_level: IsolationLevel | None = None,
    ) -> t.AsyncGenerator[Transaction]:
        """Begin a transaction, committing it when the block completes."""
        transaction = await self.begin_transaction(isolation_level)
        try:
            yield transaction
            if transaction.is_active:
                await transaction.commit()
        finally:
            await transaction.close()
