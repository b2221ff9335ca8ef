"""Query handler registry and dispatcher.

Handlers are registered per entity type in order. For every query the
dispatcher instantiates the candidates registered for the query's entity
type, asks each ``can_execute`` and runs the first that accepts. Handlers
are created per call and released afterwards.
"""

from abc import ABC, abstractmethod

import typing as t
from dataclasses import dataclass

from repokit.cleanup import dispose_resource
from repokit.errors import ConfigurationError, QueryHandlerNotRegisteredError
from repokit.query import Query

if t.TYPE_CHECKING:
    from repokit.provider import DataProvider

HandlerFactory = t.Callable[["DataProvider"], "QueryHandler[t.Any, t.Any]"]


class QueryHandler[EntityT, ResultT](ABC):
    """Executes queries of ``query_type`` for ``entity_type``."""

    entity_type: t.ClassVar[type[t.Any]]
    query_type: t.ClassVar[type[Query[t.Any, t.Any]]] = Query

    def __init__(self, provider: "DataProvider") -> None:
        self.provider = provider

    def can_execute(self, query: Query[EntityT, ResultT]) -> bool:
        return isinstance(query, self.query_type)

    @abstractmethod
    async def execute(self, query: Query[EntityT, ResultT]) -> ResultT:
        """Execute the query and return its result."""


@dataclass(frozen=True)
class HandlerRegistration:
    entity_type: type[t.Any]
    factory: HandlerFactory


class QueryHandlerRegistry:
    def __init__(self) -> None:
        self._registrations: list[HandlerRegistration] = []
        self._frozen = False

    @property
    def is_frozen(self) -> bool:
        return self._frozen

    def freeze(self) -> None:
        self._frozen = True

    def _check_mutable(self) -> None:
        if self._frozen:
            msg = "Query handlers cannot be changed after the registry has been frozen."
            raise ConfigurationError(msg, operation="register")

    def register(
        self,
        factory: HandlerFactory,
        entity_type: type[t.Any] | None = None,
    ) -> HandlerFactory:
        """Register a handler class or factory; usable as a class decorator."""
        self._check_mutable()
        entity_type = entity_type or getattr(factory, "entity_type", None)
        if entity_type is None:
            msg = f"Cannot determine the entity type handled by {factory!r}."
            raise ConfigurationError(msg, operation="register")
        self._registrations.append(HandlerRegistration(entity_type, factory))
        return factory

    def unregister(self, factory: HandlerFactory) -> bool:
        self._check_mutable()
        for registration in self._registrations:
            if registration.factory is factory:
                self._registrations.remove(registration)
                return True
        return False

    def handlers_for(self, entity_type: type[t.Any]) -> list[HandlerFactory]:
        return [
            registration.factory
            for registration in self._registrations
            if registration.entity_type is entity_type
        ]

    def __len__(self) -> int:
        return len(self._registrations)


class QueryDispatcher:
    def __init__(self, registry: QueryHandlerRegistry, provider: "DataProvider") -> None:
        self.registry = registry
        self.provider = provider

    async def resolve(self, query: Query[t.Any, t.Any]) -> QueryHandler[t.Any, t.Any]:
        """Return the first registered handler able to execute ``query``."""
        entity_type = type(query).target_entity_type()
        if entity_type is not None:
            for factory in self.registry.handlers_for(entity_type):
                handler = factory(self.provider)
                if handler.can_execute(query):
                    return handler
                await dispose_resource(handler)

        raise QueryHandlerNotRegisteredError(type(query))

    async def execute[ResultT](self, query: Query[t.Any, ResultT]) -> ResultT:
        handler = await self.resolve(query)
        try:
            return await handler.execute(query)
        finally:
            await dispose_resource(handler)
