"""Nested change scopes sharing one physical flush.

A repository operation opens a scope, stages its write and asks for a
save. The save is performed only when no outer scope is open; otherwise
it is deferred to the outermost scope. After a successful flush the
queued after-save callbacks run once, in registration order.

Closing the outermost scope without an error keeps staged work and
callbacks queued for the next save. Leaving it on an error, or a failed
flush, discards both.
"""

import inspect

import typing as t

from repokit.errors import ChangeScopeOrderError
from repokit.logger import get_logger

logger = get_logger("repokit.scope")

AfterSaveCallback = t.Callable[[], t.Any]
FlushCallback = t.Callable[[], t.Awaitable[int]]
DiscardCallback = t.Callable[[], None]


class ChangeScope:
    """Handle for one open scope.

    Use it as a plain ``with`` block (or call ``dispose``) to close it, or
    as ``async with`` to also perform a save deferred while it was the
    outermost scope.
    """

    def __init__(self, coordinator: "ChangeScopeCoordinator") -> None:
        self._coordinator = coordinator
        self._disposed = False

    @property
    def is_disposed(self) -> bool:
        return self._disposed

    @property
    def is_outermost(self) -> bool:
        return self._coordinator.depth == 1 and self._coordinator.is_top(self)

    def dispose(self) -> None:
        if self._disposed:
            return
        self._coordinator._pop(self)
        self._disposed = True

    async def dispose_async(self, *, save: bool = True) -> None:
        """Close the scope.

        As the outermost scope it saves deferred changes first, or discards
        them when ``save`` is false.
        """
        if self._disposed:
            return
        if not self._coordinator.is_top(self):
            raise ChangeScopeOrderError
        try:
            if self.is_outermost:
                if not save:
                    self._coordinator.discard()
                elif self._coordinator.save_deferred:
                    await self._coordinator.request_save()
        finally:
            self.dispose()

    def __enter__(self) -> t.Self:
        return self

    def __exit__(self, exc_type: t.Any, exc_val: t.Any, exc_tb: t.Any) -> None:
        if exc_type is not None and self.is_outermost:
            self._coordinator.discard()
        self.dispose()

    async def __aenter__(self) -> t.Self:
        return self

    async def __aexit__(self, exc_type: t.Any, exc_val: t.Any, exc_tb: t.Any) -> None:
        await self.dispose_async(save=exc_type is None)


class ChangeScopeCoordinator:
    """Stack of open change scopes for one provider.

    ``flush`` performs the physical save. ``discard`` drops staged work
    that will not be saved.
    """

    def __init__(self, flush: FlushCallback, discard: DiscardCallback | None = None) -> None:
        self._flush = flush
        self._discard = discard
        self._scopes: list[ChangeScope] = []
        self._after_save: list[AfterSaveCallback] = []
        self._save_deferred = False

    @property
    def depth(self) -> int:
        return len(self._scopes)

    @property
    def save_deferred(self) -> bool:
        return self._save_deferred

    @property
    def pending_callbacks(self) -> int:
        return len(self._after_save)

    def is_top(self, scope: ChangeScope) -> bool:
        return bool(self._scopes) and self._scopes[-1] is scope

    def begin_scope(self, after_save: AfterSaveCallback | None = None) -> ChangeScope:
        scope = ChangeScope(self)
        self._scopes.append(scope)
        if after_save is not None:
            self._after_save.append(after_save)
        return scope

    def _pop(self, scope: ChangeScope) -> None:
        if not self.is_top(scope):
            raise ChangeScopeOrderError
        self._scopes.pop()

    def discard(self) -> None:
        """Drop staged work, the deferred save and queued callbacks."""
        self._save_deferred = False
        self._after_save.clear()
        if self._discard is not None:
            self._discard()

    async def request_save(self) -> int:
        """Flush now if no outer scope is open, otherwise defer to the outermost one.

        Returns the number of affected rows, ``0`` when deferred.
        """
        if self.depth > 1:
            self._save_deferred = True
            return 0

        try:
            affected = await self._flush()
        except BaseException:
            self.discard()
            raise
        self._save_deferred = False

        callbacks = self._after_save.copy()
        self._after_save.clear()
        await self._run_callbacks(callbacks)
        return affected

    async def _run_callbacks(self, callbacks: list[AfterSaveCallback]) -> None:
        # Every callback runs; the first failure is re-raised afterwards.
        error: Exception | None = None
        for callback in callbacks:
            try:
                result = callback()
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.warning("After-save callback {!r} failed: {}", callback, e)
                if error is None:
                    error = e
        if error is not None:
            raise error
