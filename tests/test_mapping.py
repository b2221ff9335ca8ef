"""Tests for the default entity mapper."""

from uuid import uuid4

import pytest
from dataclasses import dataclass
from sample_models import (
    AutoTokenEntity,
    AutoTokenRecord,
    ComplexId,
    ComplexIdEntity,
    ComplexIdRecord,
    ExplicitTokenEntity,
    ExplicitTokenRecord,
    complex_id_mapper,
)

from repokit.mapping import EntityMapper, PydanticEntityMapper


@dataclass
class PointRecord:
    id: int | None = None
    x: int = 0


@pytest.fixture
def mapper():
    return PydanticEntityMapper()


@pytest.mark.unit
class TestPydanticEntityMapper:
    def test_satisfies_protocol(self, mapper):
        assert isinstance(mapper, EntityMapper)

    def test_maps_fields_by_name(self, mapper):
        entity = AutoTokenEntity(id=uuid4(), value="a", change_token="t1")

        record = mapper.map(entity, AutoTokenRecord)

        assert isinstance(record, AutoTokenRecord)
        assert record.id == entity.id
        assert record.value == "a"
        assert record.change_token == "t1"

    def test_explicit_target_expects_stored_token(self, mapper):
        record = ExplicitTokenRecord(id=uuid4(), value="a", change_token="stored")

        entity = mapper.map(record, ExplicitTokenEntity)

        assert entity.change_token == "stored"
        assert entity.expected_change_token == "stored"

    def test_explicit_entity_keeps_its_expected_token(self, mapper):
        entity = ExplicitTokenEntity(change_token="next", expected_change_token="stored")

        copied = mapper.map(entity, ExplicitTokenEntity)

        assert copied.expected_change_token == "stored"

    def test_maps_dataclasses(self, mapper):
        record = mapper.map(PointRecord(id=1, x=2), PointRecord)

        assert record == PointRecord(id=1, x=2)

    def test_map_into_updates_target(self, mapper):
        record = AutoTokenRecord(id=uuid4(), value="old", change_token="t1")
        entity = AutoTokenEntity(id=record.id, value="new", change_token="t1")

        result = mapper.map_into(entity, record)

        assert result is record
        assert record.value == "new"

    def test_registered_converters(self):
        mapper = complex_id_mapper()
        entity = ComplexIdEntity(id=ComplexId(id=uuid4(), version=2), value="v")

        record = mapper.map(entity, ComplexIdRecord)
        back = mapper.map(record, ComplexIdEntity)

        assert (record.id, record.version) == (entity.id.id, 2)
        assert back == entity
