"""Tests for repositories over the in-memory store."""

from unittest.mock import MagicMock, patch
from uuid import UUID, uuid4

import pytest
from sample_models import (
    AllAutoTokens,
    AutoTokenByValue,
    AutoTokenEntity,
    AutoTokenPage,
    AutoTokenRecord,
    ComplexId,
    ComplexIdEntity,
    ComplexIdRecord,
    ExplicitTokenEntity,
    ExplicitTokenRecord,
    PlainEntity,
    PlainRecord,
    UnhandledQuery,
)

from repokit.errors import (
    ConcurrencyModelMismatchError,
    EntityConcurrencyError,
    EntityNotFoundError,
    EntityUpdateError,
    QueryHandlerNotRegisteredError,
)
from repokit.provider import DataProvider
from repokit.repository import Repository
from repokit.storage.memory import DuplicateRecordError


class PlainRepository(Repository[PlainEntity, UUID]):
    entity_type = PlainEntity
    record_type = PlainRecord


class AutoTokenRepository(Repository[AutoTokenEntity, UUID]):
    entity_type = AutoTokenEntity
    record_type = AutoTokenRecord


class ExplicitTokenRepository(Repository[ExplicitTokenEntity, UUID]):
    entity_type = ExplicitTokenEntity
    record_type = ExplicitTokenRecord


class ComplexIdRepository(Repository[ComplexIdEntity, ComplexId]):
    entity_type = ComplexIdEntity
    record_type = ComplexIdRecord


@pytest.fixture
def plain_repository(provider):
    return PlainRepository(provider)


@pytest.fixture
def auto_repository(provider):
    return AutoTokenRepository(provider)


@pytest.fixture
def explicit_repository(provider):
    return ExplicitTokenRepository(provider)


@pytest.fixture
def complex_repository(provider):
    return ComplexIdRepository(provider)


@pytest.mark.unit
class TestRepositoryConstruction:
    def test_types_from_constructor(self, provider):
        repository = Repository(provider, PlainEntity, PlainRecord)

        assert repository.entity_type is PlainEntity
        assert repository.entity_name == "PlainEntity"

    def test_concurrency_model_mismatch(self, provider):
        with pytest.raises(ConcurrencyModelMismatchError):
            Repository(provider, AutoTokenEntity, PlainRecord)
        with pytest.raises(ConcurrencyModelMismatchError):
            Repository(provider, PlainEntity, AutoTokenRecord)


@pytest.mark.unit
class TestFindAndLoad:
    @pytest.mark.asyncio
    async def test_find_missing_returns_none(self, plain_repository):
        assert await plain_repository.find(uuid4()) is None

    @pytest.mark.asyncio
    async def test_load_missing_raises(self, plain_repository):
        entity_id = uuid4()

        with pytest.raises(EntityNotFoundError) as exc_info:
            await plain_repository.load(entity_id)

        assert exc_info.value.entity_id == entity_id
        assert exc_info.value.entity_type == "PlainEntity"
        assert str(exc_info.value) == f"Entity 'PlainEntity' with id '{entity_id}' was not found."

    @pytest.mark.asyncio
    async def test_load_returns_created_entity(self, plain_repository):
        created = await plain_repository.create(PlainEntity(value="a"))

        loaded = await plain_repository.load(created.id)

        assert loaded == created
        assert await plain_repository.exists(created.id)
        assert not await plain_repository.exists(uuid4())

    @pytest.mark.asyncio
    async def test_loaded_entities_do_not_alias_storage(self, plain_repository):
        created = await plain_repository.create(PlainEntity(value="a"))

        loaded = await plain_repository.load(created.id)
        loaded.value = "changed"

        assert (await plain_repository.load(created.id)).value == "a"


@pytest.mark.unit
class TestCreate:
    @pytest.mark.asyncio
    async def test_assigns_id(self, plain_repository):
        created = await plain_repository.create(PlainEntity(value="a"))

        assert isinstance(created.id, UUID)
        assert created.value == "a"

    @pytest.mark.asyncio
    async def test_keeps_caller_id(self, plain_repository):
        entity_id = uuid4()

        created = await plain_repository.create(PlainEntity(id=entity_id, value="a"))

        assert created.id == entity_id

    @pytest.mark.asyncio
    async def test_duplicate_id_is_update_error(self, plain_repository):
        entity_id = uuid4()
        await plain_repository.create(PlainEntity(id=entity_id))

        with pytest.raises(EntityUpdateError) as exc_info:
            await plain_repository.create(PlainEntity(id=entity_id))

        assert isinstance(exc_info.value.__cause__, DuplicateRecordError)

    @pytest.mark.asyncio
    async def test_automatic_token_is_generated(self, auto_repository):
        created = await auto_repository.create(AutoTokenEntity(value="a"))

        assert created.change_token

    @pytest.mark.asyncio
    async def test_explicit_token_is_honored(self, explicit_repository):
        created = await explicit_repository.create(ExplicitTokenEntity(value="a", change_token="t1"))

        assert created.change_token == "t1"
        assert created.expected_change_token == "t1"

    @pytest.mark.asyncio
    async def test_explicit_token_is_generated_when_blank(self, explicit_repository):
        created = await explicit_repository.create(ExplicitTokenEntity(value="a"))

        assert created.change_token
        assert created.expected_change_token == created.change_token


@pytest.mark.unit
class TestUpdate:
    @pytest.mark.asyncio
    async def test_transient_entity_is_rejected(self, plain_repository):
        with pytest.raises(ValueError, match="default value"):
            await plain_repository.update(PlainEntity(value="a"))

    @pytest.mark.asyncio
    async def test_missing_entity_is_concurrency_error(self, plain_repository):
        with pytest.raises(EntityConcurrencyError) as exc_info:
            await plain_repository.update(PlainEntity(id=uuid4(), value="a"))

        assert str(exc_info.value) == "Entities may have been modified or deleted since they were loaded."

    @pytest.mark.asyncio
    async def test_plain_update(self, plain_repository):
        created = await plain_repository.create(PlainEntity(value="a"))
        created.value = "b"

        updated = await plain_repository.update(created)

        assert updated.value == "b"
        assert (await plain_repository.load(created.id)).value == "b"

    @pytest.mark.asyncio
    async def test_automatic_token_changes(self, auto_repository):
        created = await auto_repository.create(AutoTokenEntity(value="a"))
        created.value = "b"

        updated = await auto_repository.update(created)

        assert updated.change_token
        assert updated.change_token != created.change_token
        assert (await auto_repository.load(created.id)).change_token == updated.change_token

    @pytest.mark.asyncio
    async def test_stale_automatic_token(self, auto_repository):
        created = await auto_repository.create(AutoTokenEntity(value="a"))
        stale = created.model_copy()
        await auto_repository.update(created)

        stale.value = "lost update"
        with pytest.raises(EntityConcurrencyError):
            await auto_repository.update(stale)

        assert (await auto_repository.load(created.id)).value == "a"

    @pytest.mark.asyncio
    async def test_explicit_requested_token(self, explicit_repository):
        created = await explicit_repository.create(ExplicitTokenEntity(value="a", change_token="t1"))
        created.change_token = "t2"

        updated = await explicit_repository.update(created)

        assert updated.change_token == "t2"
        assert updated.expected_change_token == "t2"

    @pytest.mark.asyncio
    async def test_explicit_token_mismatch(self, explicit_repository):
        created = await explicit_repository.create(ExplicitTokenEntity(value="a", change_token="t1"))

        stale = created.model_copy(update={"expected_change_token": "other", "change_token": "t2"})
        with pytest.raises(EntityConcurrencyError):
            await explicit_repository.update(stale)

        assert (await explicit_repository.load(created.id)).change_token == "t1"

    @pytest.mark.asyncio
    async def test_concurrent_providers(self, store, settings, query_handlers):
        first = AutoTokenRepository(DataProvider(store, name="first", settings=settings))
        second = AutoTokenRepository(DataProvider(store, name="second", settings=settings))
        created = await first.create(AutoTokenEntity(value="a"))

        seen_by_first = await first.load(created.id)
        seen_by_second = await second.load(created.id)
        seen_by_second.value = "second"
        await second.update(seen_by_second)

        seen_by_first.value = "first"
        with pytest.raises(EntityConcurrencyError):
            await first.update(seen_by_first)

        assert (await first.load(created.id)).value == "second"


@pytest.mark.unit
class TestDelete:
    @pytest.mark.asyncio
    async def test_delete(self, plain_repository):
        created = await plain_repository.create(PlainEntity(value="a"))

        await plain_repository.delete(created)

        assert await plain_repository.find(created.id) is None

    @pytest.mark.asyncio
    async def test_delete_unknown_is_concurrency_error(self, plain_repository):
        with pytest.raises(EntityConcurrencyError):
            await plain_repository.delete(PlainEntity(id=uuid4()))

    @pytest.mark.asyncio
    async def test_delete_with_stale_token(self, auto_repository):
        created = await auto_repository.create(AutoTokenEntity(value="a"))
        await auto_repository.update(created.model_copy())

        with pytest.raises(EntityConcurrencyError):
            await auto_repository.delete(created)

        assert await auto_repository.find(created.id) is not None

    @pytest.mark.asyncio
    async def test_explicit_delete(self, explicit_repository):
        created = await explicit_repository.create(ExplicitTokenEntity(value="a", change_token="t1"))

        await explicit_repository.delete(created)

        assert await explicit_repository.find(created.id) is None


@pytest.mark.unit
class TestComplexIds:
    @pytest.mark.asyncio
    async def test_lifecycle(self, complex_repository):
        entity_id = ComplexId(id=uuid4(), version=1)

        created = await complex_repository.create(ComplexIdEntity(id=entity_id, value="a"))
        assert created.id == entity_id
        assert (await complex_repository.load(entity_id)).value == "a"
        assert await complex_repository.find(ComplexId(id=entity_id.id, version=2)) is None

        updated = await complex_repository.update(ComplexIdEntity(id=entity_id, value="b"))
        assert updated.value == "b"

        await complex_repository.delete(updated)
        assert await complex_repository.find(entity_id) is None


@pytest.mark.unit
class TestChangeScopes:
    @pytest.mark.asyncio
    async def test_nested_operations_flush_once(self, provider, plain_repository):
        callback = MagicMock()

        with patch.object(provider.store, "flush", wraps=provider.store.flush) as flush:
            async with provider.begin_change_scope(callback):
                first = await plain_repository.create(PlainEntity(value="a"))
                second = await plain_repository.create(PlainEntity(value="b"))
                assert flush.await_count == 0
                assert await plain_repository.find(first.id) is None
                callback.assert_not_called()

        assert flush.await_count == 1
        callback.assert_called_once_with()
        assert (await plain_repository.load(first.id)).value == "a"
        assert (await plain_repository.load(second.id)).value == "b"

    @pytest.mark.asyncio
    async def test_conflict_in_outer_scope_writes_nothing(self, provider, plain_repository):
        existing = await plain_repository.create(PlainEntity(value="a"))
        callback = MagicMock()

        with pytest.raises(EntityConcurrencyError):
            async with provider.begin_change_scope(callback):
                created = await plain_repository.create(PlainEntity(value="b"))
                await plain_repository.delete(PlainEntity(id=uuid4()))
                existing.value = "changed"
                await plain_repository.update(existing)

        callback.assert_not_called()
        assert await plain_repository.find(created.id) is None
        assert (await plain_repository.load(existing.id)).value == "a"
        assert provider.change_scopes.depth == 0

    @pytest.mark.asyncio
    async def test_store_failure_is_update_error(self, provider, plain_repository):
        with patch.object(provider.store, "flush", side_effect=RuntimeError("disk full")):
            with pytest.raises(EntityUpdateError) as exc_info:
                await plain_repository.create(PlainEntity(value="a"))

        assert str(exc_info.value) == "One or more entities could not be updated."
        assert isinstance(exc_info.value.__cause__, RuntimeError)

    @pytest.mark.asyncio
    async def test_aborted_outer_scope_is_not_saved_later(self, provider, plain_repository):
        with pytest.raises(RuntimeError):
            async with provider.begin_change_scope():
                aborted = await plain_repository.create(PlainEntity(value="aborted"))
                raise RuntimeError("abort")

        assert not provider.store.has_pending_changes
        unrelated = await plain_repository.create(PlainEntity(value="unrelated"))

        assert await plain_repository.find(aborted.id) is None
        assert await plain_repository.find(unrelated.id) is not None

    @pytest.mark.asyncio
    async def test_callbacks_survive_plain_scope_exit(self, provider, plain_repository):
        callback = MagicMock()

        with provider.begin_change_scope(callback):
            created = await plain_repository.create(PlainEntity(value="a"))

        assert provider.store.has_pending_changes
        callback.assert_not_called()

        assert await provider.save_changes() == 1
        callback.assert_called_once_with()
        assert await plain_repository.find(created.id) is not None

    @pytest.mark.asyncio
    async def test_failed_flush_in_transaction_applies_nothing(self, provider, plain_repository):
        async with await provider.begin_transaction() as transaction:
            with pytest.raises(EntityConcurrencyError):
                async with provider.begin_change_scope():
                    created = await plain_repository.create(PlainEntity(value="a"))
                    await plain_repository.delete(PlainEntity(id=uuid4()))

            kept = await plain_repository.create(PlainEntity(value="b"))
            await transaction.commit()

        assert await plain_repository.find(created.id) is None
        assert await plain_repository.find(kept.id) is not None


@pytest.mark.unit
class TestQueries:
    @pytest.mark.asyncio
    async def test_scalar_query(self, auto_repository):
        await auto_repository.create(AutoTokenEntity(value="a"))
        created = await auto_repository.create(AutoTokenEntity(value="b"))

        found = await auto_repository.query(AutoTokenByValue("b"))

        assert found == created
        assert await auto_repository.query(AutoTokenByValue("missing")) is None

    @pytest.mark.asyncio
    async def test_vector_query(self, auto_repository):
        for value in ("c", "a", "b"):
            await auto_repository.create(AutoTokenEntity(value=value))

        entities = await auto_repository.query(AllAutoTokens())

        assert [entity.value for entity in entities] == ["a", "b", "c"]

    @pytest.mark.asyncio
    async def test_paged_query(self, auto_repository):
        for value in ("x1", "x2", "x3", "x4", "y1"):
            await auto_repository.create(AutoTokenEntity(value=value))

        page = await auto_repository.query(AutoTokenPage(prefix="x", offset=1, limit=2, total_count=True))

        assert [entity.value for entity in page] == ["x2", "x3"]
        assert page.total_count == 4

    @pytest.mark.asyncio
    async def test_paged_query_without_count(self, auto_repository):
        await auto_repository.create(AutoTokenEntity(value="x1"))

        page = await auto_repository.query(AutoTokenPage(prefix="x"))

        assert len(page) == 1
        assert page.total_count is None

    @pytest.mark.asyncio
    async def test_unhandled_query(self, auto_repository):
        with pytest.raises(QueryHandlerNotRegisteredError, match="UnhandledQuery"):
            await auto_repository.query(UnhandledQuery())

    @pytest.mark.asyncio
    async def test_query_for_other_entity_type(self, plain_repository):
        with pytest.raises(TypeError, match="PlainEntity"):
            await plain_repository.query(AllAutoTokens())


@pytest.mark.unit
class TestLogging:
    @pytest.mark.asyncio
    async def test_lifecycle_events(self, plain_repository, log_messages):
        created = await plain_repository.create(PlainEntity(value="a"))
        await plain_repository.find(uuid4())
        await plain_repository.delete(created)

        output = "".join(log_messages)
        assert "Creating entity PlainEntity" in output
        assert f"Created entity PlainEntity with id {created.id}" in output
        assert "was not found" in output
        assert f"Deleted entity PlainEntity with id {created.id}" in output
        assert "Saved 1 changes" in output

    @pytest.mark.asyncio
    async def test_deferred_writes_are_logged_as_staged(self, provider, plain_repository, log_messages):
        async with provider.begin_change_scope():
            created = await plain_repository.create(PlainEntity(value="a"))
            output = "".join(log_messages)
            assert f"Staged create of entity PlainEntity with id {created.id}" in output
            assert "Created entity" not in output

    @pytest.mark.asyncio
    async def test_failures_are_logged(self, plain_repository, log_messages):
        with pytest.raises(EntityConcurrencyError):
            await plain_repository.delete(PlainEntity(id=uuid4()))

        output = "".join(log_messages)
        assert "Failed to save changes" in output
        assert "Failed to delete entity PlainEntity" in output
