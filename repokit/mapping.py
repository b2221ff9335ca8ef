"""Mapping between entities and storage records."""

import dataclasses

import typing as t
from pydantic import BaseModel

from repokit.entity import ConcurrencyMode, describe

Converter = t.Callable[[t.Any], t.Any]


@t.runtime_checkable
class EntityMapper(t.Protocol):
    def map(self, source: t.Any, target_type: type[t.Any]) -> t.Any: ...

    def map_into(self, source: t.Any, target: t.Any) -> t.Any: ...


def as_dict(source: t.Any) -> dict[str, t.Any]:
    if isinstance(source, BaseModel):
        return {name: getattr(source, name) for name in type(source).model_fields}
    if dataclasses.is_dataclass(source) and not isinstance(source, type):
        return {field.name: getattr(source, field.name) for field in dataclasses.fields(source)}
    return dict(vars(source))


def _field_names(target_type: type[t.Any]) -> list[str]:
    if issubclass(target_type, BaseModel):
        return list(target_type.model_fields)
    if dataclasses.is_dataclass(target_type):
        return [field.name for field in dataclasses.fields(target_type)]
    return list(t.get_type_hints(target_type))


class PydanticEntityMapper:
    """Field-name mapper for pydantic models and dataclasses.

    Pairs of types whose shapes differ, such as composite ids stored in
    several columns, get a converter through ``register``. When the target
    uses explicit change tokens, the stored token becomes the expected one.
    """

    def __init__(self) -> None:
        self._converters: dict[tuple[type[t.Any], type[t.Any]], Converter] = {}

    def register(
        self,
        source_type: type[t.Any],
        target_type: type[t.Any],
        converter: Converter,
    ) -> None:
        self._converters[source_type, target_type] = converter

    def map(self, source: t.Any, target_type: type[t.Any]) -> t.Any:
        converter = self._converters.get((type(source), target_type))
        if converter is not None:
            return converter(source)

        data = as_dict(source)
        if describe(target_type).concurrency_mode is ConcurrencyMode.EXPLICIT:
            data.setdefault("expected_change_token", data.get("change_token"))

        names = _field_names(target_type)
        values = {name: data[name] for name in names if name in data}
        if issubclass(target_type, BaseModel):
            return target_type.model_validate(values)
        return target_type(**values)

    def map_into(self, source: t.Any, target: t.Any) -> t.Any:
        """Copy mapped values onto an existing object and return it."""
        mapped = self.map(source, type(target))
        for name in _field_names(type(target)):
            setattr(target, name, getattr(mapped, name))
        return target
