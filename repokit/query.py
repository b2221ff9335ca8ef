"""Query value objects.

A query is an immutable description of what to fetch. Its class declares
the entity type it targets via ``entity_type``; the handler that executes
it is chosen at runtime by the query dispatcher.
"""

import typing as t
from dataclasses import dataclass, field


@dataclass(frozen=True)
class Query[EntityT, ResultT]:
    """Base for queries over ``EntityT`` producing ``ResultT``."""

    entity_type: t.ClassVar[type[t.Any]]

    @classmethod
    def target_entity_type(cls) -> type[t.Any] | None:
        return getattr(cls, "entity_type", None)


@dataclass(frozen=True)
class PagedResult[ItemT]:
    items: tuple[ItemT, ...] = field(default_factory=tuple)
    total_count: int | None = None

    def __len__(self) -> int:
        return len(self.items)

    def __iter__(self) -> t.Iterator[ItemT]:
        return iter(self.items)


@dataclass(frozen=True, kw_only=True)
class PagedQuery[EntityT, ItemT](Query[EntityT, PagedResult[ItemT]]):
    """Query returning a page of results.

    ``total_count`` asks the handler to also count all matching rows.
    """

    offset: int = 0
    limit: int | None = None
    total_count: bool = False

    def __post_init__(self) -> None:
        if self.offset < 0:
            msg = "offset must not be negative"
            raise ValueError(msg)
        if self.limit is not None and self.limit < 0:
            msg = "limit must not be negative"
            raise ValueError(msg)
