"""Entity base classes and identity helpers.

Entities declare how optimistic concurrency applies to them through the
``concurrency_mode`` class variable. The mode is resolved once per type by
``describe`` and cached.
"""

import dataclasses
from enum import Enum
from functools import cache
from uuid import UUID

import typing as t
from dataclasses import dataclass
from pydantic import BaseModel, ConfigDict


class ConcurrencyMode(Enum):
    """How change tokens are matched and written for an entity type."""

    NONE = "none"
    AUTOMATIC = "automatic"
    EXPLICIT = "explicit"


class Entity(BaseModel):
    """Base for pydantic entities; ``id`` is ``None`` until assigned."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    concurrency_mode: t.ClassVar[ConcurrencyMode] = ConcurrencyMode.NONE

    id: t.Any = None


class ChangeTokenEntity(Entity):
    """Entity whose change token is managed entirely by the store."""

    concurrency_mode: t.ClassVar[ConcurrencyMode] = ConcurrencyMode.AUTOMATIC

    change_token: str | None = None


class ExplicitChangeTokenEntity(Entity):
    """Entity whose caller states the expected token and may choose the next one.

    ``expected_change_token`` is the token the caller believes is stored.
    ``change_token`` is written as the new token when it is set and differs
    from the expected one; otherwise a fresh token is generated.
    """

    concurrency_mode: t.ClassVar[ConcurrencyMode] = ConcurrencyMode.EXPLICIT

    change_token: str | None = None
    expected_change_token: str | None = None


@dataclass(frozen=True)
class EntityDescriptor:
    entity_type: type
    name: str
    concurrency_mode: ConcurrencyMode

    @property
    def has_change_token(self) -> bool:
        return self.concurrency_mode is not ConcurrencyMode.NONE


@cache
def describe(entity_type: type) -> EntityDescriptor:
    """Resolve the concurrency mode of an entity type."""
    mode = getattr(entity_type, "concurrency_mode", ConcurrencyMode.NONE)
    if not isinstance(mode, ConcurrencyMode):
        msg = f"{entity_type.__qualname__}.concurrency_mode must be a ConcurrencyMode, got {mode!r}"
        raise TypeError(msg)
    return EntityDescriptor(
        entity_type=entity_type,
        name=entity_type.__qualname__,
        concurrency_mode=mode,
    )


def _components(value: t.Any) -> tuple[t.Any, ...] | None:
    if isinstance(value, BaseModel):
        return tuple(getattr(value, name) for name in type(value).model_fields)
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return tuple(getattr(value, field.name) for field in dataclasses.fields(value))
    if isinstance(value, tuple):
        return value
    return None


def is_transient_id(value: t.Any) -> bool:
    """Whether an id still holds the default value of its type."""
    if value is None:
        return True
    components = _components(value)
    if components is not None:
        return all(is_transient_id(component) for component in components)
    if isinstance(value, UUID):
        return value.int == 0
    if isinstance(value, (int, float, str, bytes)):
        return not value
    return False


def is_transient(entity: t.Any) -> bool:
    return is_transient_id(getattr(entity, "id", None))


def primary_key_values(entity_id: t.Any) -> tuple[t.Any, ...]:
    """Decompose an id into primary key values, composite ids in field order."""
    components = _components(entity_id)
    if components is not None:
        return components
    return (entity_id,)
