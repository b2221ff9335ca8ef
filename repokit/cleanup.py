"""Resource release helpers.

Query handlers, store connections and engines expose different release
methods (``close``, ``aclose``, ``dispose``). ``dispose_resource`` finds
and awaits the right one, ``CleanupMixin`` tracks owned resources.
"""

import inspect

import asyncio
import typing as t

from repokit.logger import get_logger

logger = get_logger("repokit.cleanup")

RELEASE_METHODS = ("aclose", "close", "dispose", "release")


async def dispose_resource(resource: t.Any) -> bool:
    """Release a single resource using the first release method it has.

    Returns ``True`` when a release method was found and succeeded.
    """
    if resource is None:
        return False

    for method_name in RELEASE_METHODS:
        method = getattr(resource, method_name, None)
        if not callable(method):
            continue
        try:
            result = method()
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            logger.warning("Failed to release {} using {}(): {}", type(resource).__qualname__, method_name, e)
            continue
        logger.trace("Released {} using {}()", type(resource).__qualname__, method_name)
        return True
    return False


class CleanupMixin:
    """Mixin for objects that own resources which must be released."""

    def __init__(self) -> None:
        self._resources: list[t.Any] = []
        self._cleaned_up = False
        self._cleanup_lock: asyncio.Lock | None = None

    @property
    def is_cleaned_up(self) -> bool:
        return self._cleaned_up

    def register_resource(self, resource: t.Any) -> None:
        """Register a resource for cleanup."""
        if resource not in self._resources:
            self._resources.append(resource)

    def unregister_resource(self, resource: t.Any) -> None:
        if resource in self._resources:
            self._resources.remove(resource)

    async def _cleanup_resources(self) -> None:
        """Hook for subclasses releasing state that is not a registered resource."""

    async def cleanup(self) -> None:
        """Release all registered resources, newest first."""
        if self._cleanup_lock is None:
            self._cleanup_lock = asyncio.Lock()

        async with self._cleanup_lock:
            if self._cleaned_up:
                return

            await self._cleanup_resources()
            for resource in reversed(self._resources.copy()):
                await dispose_resource(resource)

            self._resources.clear()
            self._cleaned_up = True

    async def __aenter__(self) -> t.Self:
        return self

    async def __aexit__(self, exc_type: t.Any, exc_val: t.Any, exc_tb: t.Any) -> None:
        await self.cleanup()
