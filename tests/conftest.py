"""Configuration for pytest testing framework."""

import pytest
from loguru import logger
from sample_models import (
    AllAutoTokensHandler,
    AutoTokenByValueHandler,
    AutoTokenPageHandler,
    ComplexIdRecord,
    complex_id_mapper,
)

from repokit.config import DataSettings
from repokit.dispatch import QueryHandlerRegistry
from repokit.provider import DataProvider
from repokit.storage.memory import InMemoryStore


def pytest_configure(config: pytest.Config) -> None:
    """Configure pytest."""
    config.addinivalue_line("markers", "unit: mark test as a unit test")
    config.addinivalue_line(
        "markers", "integration: mark test as running against a database driver"
    )
    # Tests assert on log output through their own sinks.
    logger.remove()


@pytest.fixture
def settings() -> DataSettings:
    return DataSettings(provider_name="test", log_level="DEBUG")


@pytest.fixture
def query_handlers() -> QueryHandlerRegistry:
    registry = QueryHandlerRegistry()
    registry.register(AutoTokenByValueHandler)
    registry.register(AllAutoTokensHandler)
    registry.register(AutoTokenPageHandler)
    return registry


@pytest.fixture
def store() -> InMemoryStore:
    store = InMemoryStore()
    store.register(ComplexIdRecord, primary_key=("id", "version"), key_factory=None)
    return store


@pytest.fixture
def provider(store, settings, query_handlers) -> DataProvider:
    return DataProvider(
        store,
        settings=settings,
        entity_mapper=complex_id_mapper(),
        query_handlers=query_handlers,
    )


@pytest.fixture
def log_messages():
    """Collect formatted log messages emitted during the test."""
    messages: list[str] = []
    handler_id = logger.add(messages.append, level="TRACE", format="{message}")
    yield messages
    logger.remove(handler_id)
