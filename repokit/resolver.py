"""Lookup of data providers by name."""

import typing as t

from repokit.depends import depends
from repokit.errors import ConfigurationError, DataProviderNotRegisteredError

if t.TYPE_CHECKING:
    from repokit.provider import DataProvider


class DataProviderResolver:
    def __init__(self) -> None:
        self._providers: dict[str, DataProvider] = {}

    @classmethod
    def default(cls) -> "DataProviderResolver":
        """The resolver held by the dependency container."""
        return t.cast("DataProviderResolver", depends.get_sync(cls))

    @property
    def names(self) -> list[str]:
        return list(self._providers)

    def register(self, provider: "DataProvider", *, replace: bool = False) -> "DataProvider":
        if provider.name in self._providers and not replace:
            msg = f"Data provider with name '{provider.name}' is already registered."
            raise ConfigurationError(msg)
        self._providers[provider.name] = provider
        return provider

    def unregister(self, name: str) -> "DataProvider | None":
        return self._providers.pop(name, None)

    def resolve(self, name: str = "default") -> "DataProvider":
        provider = self._providers.get(name)
        if provider is None:
            raise DataProviderNotRegisteredError(name)
        return provider

    def __contains__(self, name: object) -> bool:
        return name in self._providers
