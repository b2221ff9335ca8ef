"""Data provider.

A provider is the per-request unit owning one store together with the
collaborators every repository bound to it shares:

- entity mapper and token generator
- the concurrency reconciler
- change scopes deciding when staged writes are flushed
- the query dispatcher
- the transaction manager
"""

import asyncio
import inspect
import typing as t

from repokit.cleanup import CleanupMixin
from repokit.concurrency import ConcurrencyReconciler
from repokit.config import DataSettings
from repokit.depends import depends
from repokit.dispatch import QueryDispatcher, QueryHandlerRegistry
from repokit.errors import (
    EntityConcurrencyError,
    EntityUpdateError,
    ProtocolError,
    RepositoryError,
)
from repokit.logger import DataProviderLogger
from repokit.mapping import EntityMapper, PydanticEntityMapper
from repokit.scope import AfterSaveCallback, ChangeScope, ChangeScopeCoordinator
from repokit.storage import DataStore, IsolationLevel, StoreConflictError
from repokit.tokens import TokenGenerator, UuidTokenGenerator
from repokit.transaction import Transaction, TransactionManager


class DataProvider(CleanupMixin):
    def __init__(
        self,
        store: DataStore,
        *,
        name: str | None = None,
        settings: DataSettings | None = None,
        entity_mapper: EntityMapper | None = None,
        token_generator: TokenGenerator | None = None,
        query_handlers: QueryHandlerRegistry | None = None,
    ) -> None:
        super().__init__()
        self.settings = settings or depends.get_sync(DataSettings)
        self.name = name or self.settings.provider_name
        self.store = store
        self.entity_mapper = entity_mapper or PydanticEntityMapper()
        self.token_generator = token_generator or UuidTokenGenerator(self.settings.token_alphabet)
        self.reconciler = ConcurrencyReconciler(self.token_generator)
        self.logger = DataProviderLogger(self.name, self.settings.slow_operation_ms)
        self.change_scopes = ChangeScopeCoordinator(self._flush, store.discard)

        self.query_handlers = query_handlers or QueryHandlerRegistry()
        self.query_handlers.freeze()
        self.queries = QueryDispatcher(self.query_handlers, self)

        self.transaction_manager = TransactionManager(store, self.logger, self.run_sync)
        self._loop: asyncio.AbstractEventLoop | None = None
        self.register_resource(store)

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r}, store={type(self.store).__name__})"

    def begin_change_scope(self, after_save: AfterSaveCallback | None = None) -> ChangeScope:
        """Open a change scope; ``after_save`` runs once the outermost save succeeds."""
        return self.change_scopes.begin_scope(after_save)

    async def save_changes(self) -> int:
        """Flush staged writes unless an outer change scope will do it later."""
        if self.change_scopes.depth > 1:
            self.logger.save_deferred(self.change_scopes.depth)
        return await self.change_scopes.request_save()

    def save_changes_sync(self) -> int:
        return self.run_sync(self.save_changes())

    async def _flush(self) -> int:
        self.logger.saving_changes()
        started = self.logger.start()
        try:
            affected = await self.store.flush()
        except StoreConflictError as e:
            self.logger.save_failed(e)
            raise EntityConcurrencyError(operation="save") from e
        except RepositoryError:
            raise
        except Exception as e:
            self.logger.save_failed(e)
            raise EntityUpdateError(operation="save") from e
        self.logger.changes_saved(affected, started)
        return affected

    @property
    def current_transaction(self) -> Transaction | None:
        return self.transaction_manager.current_transaction

    async def begin_transaction(self, isolation_level: IsolationLevel | None = None) -> Transaction:
        return await self.transaction_manager.begin_transaction(isolation_level)

    def begin_transaction_sync(self, isolation_level: IsolationLevel | None = None) -> Transaction:
        return self.transaction_manager.begin_transaction_sync(isolation_level)

    def run_sync[T](self, awaitable: t.Awaitable[T]) -> T:
        """Run ``awaitable`` to completion on the provider's own event loop.

        Blocking variants of the async API go through here; they cannot be
        used from code already running inside an event loop.
        """
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            pass
        else:
            if inspect.iscoroutine(awaitable):
                awaitable.close()
            msg = "Blocking repokit calls cannot run inside an event loop; await the async variant."
            raise ProtocolError(msg)

        if self._loop is None or self._loop.is_closed():
            self._loop = asyncio.new_event_loop()
        return self._loop.run_until_complete(awaitable)

    async def close(self) -> None:
        current = self.current_transaction
        if current is not None:
            await current.close()
        await self.cleanup()

    async def __aexit__(self, exc_type: t.Any, exc_val: t.Any, exc_tb: t.Any) -> None:
        await self.close()

    def close_sync(self) -> None:
        self.run_sync(self.close())
        if self._loop is not None:
            self._loop.close()
            self._loop = None
