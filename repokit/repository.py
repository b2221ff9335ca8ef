"""Repository.

A repository exposes find/load/create/update/delete and query for one
entity type over the store of a data provider:

- every mutation runs inside a change scope and is flushed together with
  any outer scope's work
- change tokens are reconciled before each staged write
- store conflicts surface as ``EntityConcurrencyError``
- each operation has a blocking ``*_sync`` variant
"""

import typing as t

from repokit.concurrency import Operation, validate_concurrency_model
from repokit.entity import describe, is_transient, primary_key_values
from repokit.errors import (
    EntityConcurrencyError,
    EntityNotFoundError,
    ProviderBindingError,
)
from repokit.provider import DataProvider
from repokit.query import Query
from repokit.storage import DataStore, StoreCollection


class Repository[EntityT, IdT]:
    """Repository for ``entity_type`` entities persisted as ``record_type`` records.

    Subclasses declare both types as class attributes, or pass them to the
    constructor. ``store_type`` restricts which stores the repository can be
    bound to.
    """

    entity_type: type[EntityT]
    record_type: type[t.Any]
    store_type: type[DataStore] | None = None

    def __init__(
        self,
        provider: DataProvider,
        entity_type: type[EntityT] | None = None,
        record_type: type[t.Any] | None = None,
    ) -> None:
        self.provider = provider
        if entity_type is not None:
            self.entity_type = entity_type
        if record_type is not None:
            self.record_type = record_type

        if self.store_type is not None and not isinstance(provider.store, self.store_type):
            msg = (
                f"{type(self).__qualname__} requires a {self.store_type.__qualname__} store, "
                f"but provider '{provider.name}' uses {type(provider.store).__qualname__}."
            )
            raise ProviderBindingError(msg, entity_type=self.entity_type)

        self.descriptor = describe(self.entity_type)
        self.collection: StoreCollection[t.Any] = provider.store.collection(self.record_type)
        validate_concurrency_model(self.descriptor, self.collection.schema)
        self._logger = provider.logger

    @property
    def entity_name(self) -> str:
        return self.descriptor.name

    def _to_entity(self, record: t.Any) -> EntityT:
        return t.cast(EntityT, self.provider.entity_mapper.map(record, self.entity_type))

    def _to_record(self, entity: EntityT) -> t.Any:
        return self.provider.entity_mapper.map(entity, self.record_type)

    async def _get_record(self, entity_id: IdT) -> t.Any | None:
        return await self.collection.get_by_primary_key(primary_key_values(entity_id))

    async def _save(self) -> bool:
        """Request a save; ``True`` when it was deferred to an outer scope."""
        deferred = self.provider.change_scopes.depth > 1
        await self.provider.save_changes()
        return deferred

    async def find(self, entity_id: IdT) -> EntityT | None:
        """Return the entity with the given id, or ``None`` if there is none."""
        self._logger.entity_loading(self.entity_type, entity_id)
        started = self._logger.start()
        try:
            record = await self._get_record(entity_id)
        except Exception as e:
            self._logger.entity_load_failed(self.entity_type, entity_id, e)
            raise
        if record is None:
            self._logger.entity_not_found(self.entity_type, entity_id)
            return None
        entity = self._to_entity(record)
        self._logger.entity_loaded(self.entity_type, entity_id, started)
        return entity

    async def load(self, entity_id: IdT) -> EntityT:
        """Return the entity with the given id.

        Raises:
            EntityNotFoundError: If no entity has the id
        """
        entity = await self.find(entity_id)
        if entity is None:
            raise EntityNotFoundError(self.entity_type, entity_id)
        return entity

    async def exists(self, entity_id: IdT) -> bool:
        return await self._get_record(entity_id) is not None

    async def create(self, entity: EntityT) -> EntityT:
        """Insert a new entity and return it with its assigned id and token.

        Inside an outer change scope the insert is only staged. Ids the
        database generates (autoincrement keys) stay ``None`` on the
        returned entity until the outermost scope has saved.
        """
        self._logger.entity_creating(entity)
        started = self._logger.start()
        try:
            with self.provider.begin_change_scope():
                record = self._to_record(entity)
                tokens = self.provider.reconciler.reconcile(entity, Operation.CREATE, self.descriptor)
                record = self.collection.insert(record, tokens)
                deferred = await self._save()
            created = self._to_entity(record)
        except Exception as e:
            self._logger.entity_create_failed(entity, e)
            raise
        if deferred:
            self._logger.entity_staged(Operation.CREATE.value, created)
        else:
            self._logger.entity_created(created, started)
        return created

    async def update(self, entity: EntityT) -> EntityT:
        """Write changes of an existing entity and return it with its new token.

        Raises:
            ValueError: If the entity has no id yet
            EntityConcurrencyError: If the stored entity is gone or its token
                no longer matches
        """
        if is_transient(entity):
            msg = "The entity cannot be updated because the 'id' property has the default value."
            raise ValueError(msg)

        self._logger.entity_updating(entity)
        started = self._logger.start()
        try:
            with self.provider.begin_change_scope():
                record = await self._get_record(t.cast(t.Any, entity).id)
                if record is None:
                    raise EntityConcurrencyError(entity_type=self.entity_type, operation="update")
                self.provider.entity_mapper.map_into(entity, record)
                tokens = self.provider.reconciler.reconcile(entity, Operation.UPDATE, self.descriptor)
                record = self.collection.update(record, tokens)
                deferred = await self._save()
            updated = self._to_entity(record)
        except Exception as e:
            self._logger.entity_update_failed(entity, e)
            raise
        if deferred:
            self._logger.entity_staged(Operation.UPDATE.value, updated)
        else:
            self._logger.entity_updated(updated, started)
        return updated

    async def delete(self, entity: EntityT) -> None:
        """Delete an entity.

        Raises:
            EntityConcurrencyError: If the stored entity is gone or its token
                no longer matches
        """
        self._logger.entity_deleting(entity)
        started = self._logger.start()
        try:
            with self.provider.begin_change_scope():
                record = self._to_record(entity)
                tokens = self.provider.reconciler.reconcile(entity, Operation.DELETE, self.descriptor)
                self.collection.delete(record, tokens)
                deferred = await self._save()
        except Exception as e:
            self._logger.entity_delete_failed(entity, e)
            raise
        if deferred:
            self._logger.entity_staged(Operation.DELETE.value, entity)
        else:
            self._logger.entity_deleted(entity, started)

    async def query[ResultT](self, query: Query[EntityT, ResultT]) -> ResultT:
        """Execute a query through the first registered handler accepting it."""
        query_entity_type = type(query).target_entity_type()
        if query_entity_type is not self.entity_type:
            msg = (
                f"Query '{type(query).__qualname__}' targets {query_entity_type!r}, "
                f"not '{self.entity_name}'."
            )
            raise TypeError(msg)

        self._logger.query_executing(query)
        started = self._logger.start()
        try:
            result = await self.provider.queries.execute(query)
        except Exception as e:
            self._logger.query_failed(query, e)
            raise
        self._logger.query_executed(query, started)
        return result

    def find_sync(self, entity_id: IdT) -> EntityT | None:
        return self.provider.run_sync(self.find(entity_id))

    def load_sync(self, entity_id: IdT) -> EntityT:
        return self.provider.run_sync(self.load(entity_id))

    def create_sync(self, entity: EntityT) -> EntityT:
        return self.provider.run_sync(self.create(entity))

    def update_sync(self, entity: EntityT) -> EntityT:
        return self.provider.run_sync(self.update(entity))

    def delete_sync(self, entity: EntityT) -> None:
        self.provider.run_sync(self.delete(entity))

    def query_sync[ResultT](self, query: Query[EntityT, ResultT]) -> ResultT:
        return self.provider.run_sync(self.query(query))
