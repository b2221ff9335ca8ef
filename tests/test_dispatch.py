"""Tests for query handler registration and dispatch."""

from unittest.mock import MagicMock

import pytest
from dataclasses import dataclass
from sample_models import AutoTokenByValue, AutoTokenEntity, UnhandledQuery

from repokit.dispatch import QueryDispatcher, QueryHandler, QueryHandlerRegistry
from repokit.errors import ConfigurationError, QueryHandlerNotRegisteredError
from repokit.query import Query

released: list[str] = []


class RecordingHandler(QueryHandler[AutoTokenEntity, str]):
    entity_type = AutoTokenEntity
    query_type = AutoTokenByValue
    label = "recording"

    async def execute(self, query):
        return f"{self.label}:{query.value}"

    async def aclose(self):
        released.append(self.label)


class FirstHandler(RecordingHandler):
    label = "first"


class SecondHandler(RecordingHandler):
    label = "second"


class PickyHandler(RecordingHandler):
    label = "picky"

    def can_execute(self, query):
        return super().can_execute(query) and query.value == "picky"


class FailingHandler(RecordingHandler):
    label = "failing"

    async def execute(self, query):
        raise RuntimeError("query failed")


@dataclass(frozen=True)
class OrphanQuery(Query[object, int]):
    pass


@pytest.fixture(autouse=True)
def reset_released():
    released.clear()
    yield
    released.clear()


@pytest.fixture
def registry():
    return QueryHandlerRegistry()


@pytest.fixture
def provider():
    return MagicMock()


@pytest.mark.unit
class TestQueryHandlerRegistry:
    def test_register_uses_handler_entity_type(self, registry):
        registry.register(FirstHandler)

        assert registry.handlers_for(AutoTokenEntity) == [FirstHandler]
        assert len(registry) == 1

    def test_register_as_decorator(self, registry):
        @registry.register
        class DecoratedHandler(RecordingHandler):
            pass

        assert registry.handlers_for(AutoTokenEntity) == [DecoratedHandler]

    def test_register_factory_with_entity_type(self, registry):
        def factory(provider):
            return SecondHandler(provider)

        registry.register(factory, entity_type=AutoTokenEntity)

        assert registry.handlers_for(AutoTokenEntity) == [factory]

    def test_register_without_entity_type(self, registry):
        with pytest.raises(ConfigurationError, match="entity type"):
            registry.register(lambda provider: None)

    def test_unregister(self, registry):
        registry.register(FirstHandler)

        assert registry.unregister(FirstHandler)
        assert not registry.unregister(FirstHandler)
        assert registry.handlers_for(AutoTokenEntity) == []

    def test_frozen_registry_rejects_changes(self, registry):
        registry.register(FirstHandler)
        registry.freeze()

        with pytest.raises(ConfigurationError, match="frozen"):
            registry.register(SecondHandler)
        with pytest.raises(ConfigurationError, match="frozen"):
            registry.unregister(FirstHandler)


@pytest.mark.unit
class TestQueryDispatcher:
    @pytest.mark.asyncio
    async def test_first_registered_handler_wins(self, registry, provider):
        registry.register(FirstHandler)
        registry.register(SecondHandler)
        dispatcher = QueryDispatcher(registry, provider)

        assert await dispatcher.execute(AutoTokenByValue("a")) == "first:a"

    @pytest.mark.asyncio
    async def test_unregistering_falls_through(self, registry, provider):
        registry.register(FirstHandler)
        registry.register(SecondHandler)
        registry.unregister(FirstHandler)
        dispatcher = QueryDispatcher(registry, provider)

        assert await dispatcher.execute(AutoTokenByValue("a")) == "second:a"

    @pytest.mark.asyncio
    async def test_can_execute_is_consulted(self, registry, provider):
        registry.register(PickyHandler)
        registry.register(SecondHandler)
        dispatcher = QueryDispatcher(registry, provider)

        assert await dispatcher.execute(AutoTokenByValue("picky")) == "picky:picky"
        assert await dispatcher.execute(AutoTokenByValue("other")) == "second:other"

    @pytest.mark.asyncio
    async def test_handlers_are_released(self, registry, provider):
        registry.register(PickyHandler)
        registry.register(SecondHandler)
        dispatcher = QueryDispatcher(registry, provider)

        await dispatcher.execute(AutoTokenByValue("other"))

        assert released == ["picky", "second"]

    @pytest.mark.asyncio
    async def test_handler_released_when_execution_fails(self, registry, provider):
        registry.register(FailingHandler)
        dispatcher = QueryDispatcher(registry, provider)

        with pytest.raises(RuntimeError, match="query failed"):
            await dispatcher.execute(AutoTokenByValue("a"))

        assert released == ["failing"]

    @pytest.mark.asyncio
    async def test_handlers_receive_provider(self, registry, provider):
        registry.register(FirstHandler)
        dispatcher = QueryDispatcher(registry, provider)

        handler = await dispatcher.resolve(AutoTokenByValue("a"))

        assert isinstance(handler, FirstHandler)
        assert handler.provider is provider

    @pytest.mark.asyncio
    async def test_no_matching_handler(self, registry, provider):
        registry.register(FirstHandler)
        dispatcher = QueryDispatcher(registry, provider)

        with pytest.raises(QueryHandlerNotRegisteredError) as exc_info:
            await dispatcher.execute(UnhandledQuery())

        assert str(exc_info.value) == "There is no handler for query type 'UnhandledQuery' registered."
        assert released == ["first"]

    @pytest.mark.asyncio
    async def test_query_without_entity_type(self, registry, provider):
        dispatcher = QueryDispatcher(registry, provider)

        with pytest.raises(QueryHandlerNotRegisteredError, match="OrphanQuery"):
            await dispatcher.execute(OrphanQuery())
