"""In-memory store.

Records are kept as copied field dictionaries keyed by primary key, so
objects handed out to callers never alias stored state. Staged writes are
applied to a copy of the tables and swapped in only when every write
succeeded. Transactions snapshot the tables and restore them on rollback.
"""

import copy
import itertools
import uuid

import typing as t
from dataclasses import dataclass
from pydantic import BaseModel

from repokit.concurrency import Operation, TokenReconciliation
from repokit.dispatch import QueryHandler
from repokit.errors import ProtocolError
from repokit.mapping import as_dict
from repokit.query import PagedQuery, PagedResult, Query

from ._base import (
    DataStore,
    IsolationLevel,
    RecordSchema,
    StoreCollection,
    StoreConflictError,
    StoreTransaction,
)

Document = dict[str, t.Any]
Table = dict[tuple[t.Any, ...], Document]


class DuplicateRecordError(Exception):
    def __init__(self, record_type: type[t.Any], key: tuple[t.Any, ...]) -> None:
        self.record_type = record_type
        self.key = key
        super().__init__(f"{record_type.__qualname__} with key {key!r} already exists")


def _id_annotation_is_int(record_type: type[t.Any]) -> bool:
    if not (isinstance(record_type, type) and issubclass(record_type, BaseModel)):
        return False
    field = record_type.model_fields.get("id")
    if field is None:
        return False
    annotation = field.annotation
    return annotation is int or int in t.get_args(annotation)


def infer_schema(record_type: type[t.Any]) -> RecordSchema:
    """Schema for records with an ``id`` key and an optional ``change_token``."""
    if issubclass(record_type, BaseModel):
        fields = set(record_type.model_fields)
    else:
        fields = set(t.get_type_hints(record_type))
    if _id_annotation_is_int(record_type):
        key_factory: t.Callable[[], t.Any] = itertools.count(1).__next__
    else:
        key_factory = uuid.uuid4
    return RecordSchema(
        record_type=record_type,
        primary_key=("id",),
        concurrency_token="change_token" if "change_token" in fields else None,
        key_factory=key_factory,
    )


@dataclass
class _StagedWrite:
    schema: RecordSchema
    operation: Operation
    key: tuple[t.Any, ...]
    document: Document | None
    tokens: TokenReconciliation

    def apply(self, tables: dict[type[t.Any], Table]) -> None:
        table = tables.setdefault(self.schema.record_type, {})
        if self.operation is Operation.CREATE:
            if self.key in table:
                raise DuplicateRecordError(self.schema.record_type, self.key)
            table[self.key] = t.cast(Document, self.document)
            return

        stored = table.get(self.key)
        if stored is None:
            raise StoreConflictError(self.schema.record_type, self.key, self.operation.value)
        token_field = self.schema.concurrency_token
        if self.tokens.verify and token_field is not None:
            if stored.get(token_field) != self.tokens.match_token:
                raise StoreConflictError(self.schema.record_type, self.key, self.operation.value)

        if self.operation is Operation.DELETE:
            del table[self.key]
        else:
            table[self.key] = t.cast(Document, self.document)


class InMemoryCollection[RecordT](StoreCollection[RecordT]):
    def __init__(self, store: "InMemoryStore", schema: RecordSchema) -> None:
        super().__init__(schema)
        self.store = store

    def _to_record(self, document: Document) -> RecordT:
        values = copy.deepcopy(document)
        if issubclass(self.record_type, BaseModel):
            return self.record_type.model_validate(values)
        return self.record_type(**values)

    def all(self) -> list[RecordT]:
        """Snapshot of every stored record."""
        table = self.store._tables.get(self.record_type, {})
        return [self._to_record(document) for document in table.values()]

    async def get_by_primary_key(self, key: tuple[t.Any, ...]) -> RecordT | None:
        document = self.store._tables.get(self.record_type, {}).get(tuple(key))
        if document is None:
            return None
        return self._to_record(document)

    def _stage(self, operation: Operation, record: RecordT, tokens: TokenReconciliation) -> None:
        document = None
        if operation is not Operation.DELETE:
            document = copy.deepcopy(as_dict(record))
        self.store._pending.append(
            _StagedWrite(self.schema, operation, self.schema.key_of(record), document, tokens),
        )

    def insert(self, record: RecordT, tokens: TokenReconciliation) -> RecordT:
        primary_key = self.schema.primary_key
        if (
            len(primary_key) == 1
            and getattr(record, primary_key[0]) is None
            and self.schema.key_factory is not None
        ):
            setattr(record, primary_key[0], self.schema.key_factory())
        self.schema.apply_token(record, tokens)
        self._stage(Operation.CREATE, record, tokens)
        return record

    def update(self, record: RecordT, tokens: TokenReconciliation) -> RecordT:
        self.schema.apply_token(record, tokens)
        self._stage(Operation.UPDATE, record, tokens)
        return record

    def delete(self, record: RecordT, tokens: TokenReconciliation) -> None:
        self._stage(Operation.DELETE, record, tokens)


class InMemoryTransaction(StoreTransaction):
    def __init__(self, store: "InMemoryStore", snapshot: dict[type[t.Any], Table]) -> None:
        super().__init__(uuid.uuid4().hex)
        self.store = store
        self.snapshot = snapshot

    async def commit(self) -> None:
        self.store._transaction = None

    async def rollback(self) -> None:
        self.store._tables = self.snapshot
        self.store._transaction = None


class InMemoryStore(DataStore):
    """Dictionary-backed store for tests and prototyping."""

    def __init__(self, schemas: t.Iterable[RecordSchema] = ()) -> None:
        super().__init__()
        self._schemas: dict[type[t.Any], RecordSchema] = {
            schema.record_type: schema for schema in schemas
        }
        self._tables: dict[type[t.Any], Table] = {}
        self._pending: list[_StagedWrite] = []
        self._transaction: InMemoryTransaction | None = None

    def register(
        self,
        record_type: type[t.Any],
        primary_key: tuple[str, ...] = ("id",),
        concurrency_token: str | None = None,
        key_factory: t.Callable[[], t.Any] | None = uuid.uuid4,
    ) -> RecordSchema:
        schema = RecordSchema(record_type, primary_key, concurrency_token, key_factory)
        self._schemas[record_type] = schema
        self._collections.pop(record_type, None)
        return schema

    def _create_collection(self, record_type: type[t.Any]) -> InMemoryCollection[t.Any]:
        schema = self._schemas.get(record_type)
        if schema is None:
            schema = self._schemas[record_type] = infer_schema(record_type)
        return InMemoryCollection(self, schema)

    @property
    def has_pending_changes(self) -> bool:
        return bool(self._pending)

    @property
    def in_transaction(self) -> bool:
        return self._transaction is not None

    async def flush(self) -> int:
        writes, self._pending = self._pending, []
        tables = {record_type: dict(table) for record_type, table in self._tables.items()}
        for write in writes:
            write.apply(tables)
        self._tables = tables
        return len(writes)

    def discard(self) -> None:
        self._pending.clear()

    async def begin_transaction(
        self,
        isolation_level: IsolationLevel | None = None,
    ) -> InMemoryTransaction:
        if self._transaction is not None:
            msg = "The in-memory store supports a single transaction at a time."
            raise ProtocolError(msg, operation="begin_transaction")
        snapshot = {record_type: dict(table) for record_type, table in self._tables.items()}
        self._transaction = InMemoryTransaction(self, snapshot)
        return self._transaction

    async def _cleanup_resources(self) -> None:
        self._pending.clear()
        self._tables.clear()
        self._transaction = None


class InMemoryQueryHandler[EntityT, ResultT](QueryHandler[EntityT, ResultT]):
    """Base for handlers reading records from an ``InMemoryStore``."""

    record_type: t.ClassVar[type[t.Any]]

    @property
    def collection(self) -> InMemoryCollection[t.Any]:
        return t.cast(InMemoryCollection[t.Any], self.provider.store.collection(self.record_type))

    def to_entity(self, record: t.Any) -> EntityT:
        return self.provider.entity_mapper.map(record, self.entity_type)

    def filter(self, query: Query[EntityT, ResultT], records: list[t.Any]) -> list[t.Any]:
        """Select the records matching ``query``; all of them by default."""
        return records


class InMemoryScalarQueryHandler[EntityT, ResultT](InMemoryQueryHandler[EntityT, ResultT]):
    """Returns the first matching record mapped to the entity, or ``None``."""

    async def execute(self, query: Query[EntityT, ResultT]) -> ResultT:
        records = self.filter(query, self.collection.all())
        if not records:
            return t.cast(ResultT, None)
        return t.cast(ResultT, self.to_entity(records[0]))


class InMemoryVectorQueryHandler[EntityT](InMemoryQueryHandler[EntityT, list[EntityT]]):
    async def execute(self, query: Query[EntityT, list[EntityT]]) -> list[EntityT]:
        return [self.to_entity(record) for record in self.filter(query, self.collection.all())]


class InMemoryPagedQueryHandler[EntityT](InMemoryQueryHandler[EntityT, PagedResult[EntityT]]):
    query_type = PagedQuery

    async def execute(self, query: PagedQuery[EntityT, EntityT]) -> PagedResult[EntityT]:  # type: ignore[override]
        records = self.filter(query, self.collection.all())
        total_count = len(records) if query.total_count else None
        page = records[query.offset :]
        if query.limit is not None:
            page = page[: query.limit]
        return PagedResult(tuple(self.to_entity(record) for record in page), total_count)
