"""SQLAlchemy store.

Records are SQLModel table models (or any declarative class exposing a
``__table__``). Writes are staged as Core statements and executed on one
``AsyncConnection`` when the store flushes. A column carrying
``info={"concurrency_token": True}`` is the change token column; guarded
updates and deletes that match no row raise ``StoreConflictError``.
"""

import uuid

import typing as t
from pydantic import BaseModel, Field
from pydantic_settings import SettingsConfigDict
from sqlalchemy import Column, MetaData, Table, delete, func, insert, make_url, select, update
from sqlalchemy.engine import Row
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine, AsyncTransaction, create_async_engine
from sqlalchemy.sql import Select

from repokit.concurrency import TokenReconciliation
from repokit.config import Settings
from repokit.dispatch import QueryHandler
from repokit.errors import ConfigurationError, ProtocolError
from repokit.logger import get_logger
from repokit.query import PagedQuery, PagedResult, Query
from repokit.repository import Repository

from ._base import (
    DataStore,
    IsolationLevel,
    RecordSchema,
    StoreCollection,
    StoreConflictError,
    StoreTransaction,
)

logger = get_logger("repokit.storage.sql")

StagedStatement = t.Callable[[AsyncConnection], t.Awaitable[int]]

CONCURRENCY_TOKEN_INFO = {"concurrency_token": True}


class SqlSettings(Settings):
    model_config = SettingsConfigDict(env_prefix="REPOKIT_SQL_")

    url: str = Field(
        default="sqlite+aiosqlite:///:memory:",
        description="Async SQLAlchemy database URL",
    )
    echo: bool = False
    engine_kwargs: dict[str, t.Any] = {}


def table_of(record_type: type[t.Any]) -> Table:
    table = getattr(record_type, "__table__", None)
    if not isinstance(table, Table):
        msg = f"Record type '{record_type.__qualname__}' is not mapped to a table."
        raise ConfigurationError(msg)
    return table


def _default_key_factory(column: Column[t.Any]) -> t.Callable[[], t.Any] | None:
    try:
        python_type = column.type.python_type
    except NotImplementedError:
        return None
    if python_type is uuid.UUID:
        return uuid.uuid4
    return None


def schema_for(
    record_type: type[t.Any],
    key_factory: t.Callable[[], t.Any] | None = None,
) -> RecordSchema:
    """Derive primary key and change token column from a mapped record type."""
    table = table_of(record_type)
    primary_key = tuple(column.key for column in table.primary_key.columns)
    tokens = [column.key for column in table.columns if column.info.get("concurrency_token")]
    if len(tokens) > 1:
        msg = f"Record type '{record_type.__qualname__}' declares more than one concurrency token column."
        raise ConfigurationError(msg)
    if key_factory is None and len(primary_key) == 1:
        key_factory = _default_key_factory(table.c[primary_key[0]])
    return RecordSchema(
        record_type=record_type,
        primary_key=primary_key,
        concurrency_token=tokens[0] if tokens else None,
        key_factory=key_factory,
    )


class SqlCollection[RecordT](StoreCollection[RecordT]):
    def __init__(self, store: "SqlStore", schema: RecordSchema) -> None:
        super().__init__(schema)
        self.store = store
        self.table = table_of(schema.record_type)

    def _key_clauses(self, key: tuple[t.Any, ...]) -> list[t.Any]:
        return [self.table.c[name] == value for name, value in zip(self.schema.primary_key, key, strict=True)]

    def _token_clauses(self, tokens: TokenReconciliation) -> list[t.Any]:
        if not tokens.verify or self.schema.concurrency_token is None:
            return []
        column = self.table.c[self.schema.concurrency_token]
        if tokens.match_token is None:
            return [column.is_(None)]
        return [column == tokens.match_token]

    def _values(self, record: RecordT) -> dict[str, t.Any]:
        return {column.key: getattr(record, column.key) for column in self.table.columns}

    def to_record(self, row: Row[t.Any]) -> RecordT:
        values = {column.key: row._mapping[column] for column in self.table.columns}
        if issubclass(self.record_type, BaseModel):
            return self.record_type.model_validate(values)
        return self.record_type(**values)

    async def get_by_primary_key(self, key: tuple[t.Any, ...]) -> RecordT | None:
        rows = await self.store.fetch_all(select(self.table).where(*self._key_clauses(tuple(key))))
        return self.to_record(rows[0]) if rows else None

    def insert(self, record: RecordT, tokens: TokenReconciliation) -> RecordT:
        primary_key = self.schema.primary_key
        if (
            len(primary_key) == 1
            and getattr(record, primary_key[0]) is None
            and self.schema.key_factory is not None
        ):
            setattr(record, primary_key[0], self.schema.key_factory())
        self.schema.apply_token(record, tokens)

        values = {
            name: value
            for name, value in self._values(record).items()
            if not (name in primary_key and value is None)
        }
        generated = any(name not in values for name in primary_key)
        statement = insert(self.table).values(**values)

        async def execute(conn: AsyncConnection) -> int:
            result = await conn.execute(statement)
            if generated:
                for name, value in zip(primary_key, result.inserted_primary_key, strict=True):
                    setattr(record, name, value)
            return 1

        self.store._stage(execute)
        return record

    def _guarded(self, operation: str, record: RecordT, statement: t.Any) -> StagedStatement:
        key = self.schema.key_of(record)

        async def execute(conn: AsyncConnection) -> int:
            result = await conn.execute(statement)
            if result.rowcount == 0:
                raise StoreConflictError(self.record_type, key, operation)
            return result.rowcount

        return execute

    def update(self, record: RecordT, tokens: TokenReconciliation) -> RecordT:
        self.schema.apply_token(record, tokens)
        key = self.schema.key_of(record)
        values = {
            name: value
            for name, value in self._values(record).items()
            if name not in self.schema.primary_key
        }
        statement = (
            update(self.table)
            .where(*self._key_clauses(key), *self._token_clauses(tokens))
            .values(**values)
        )
        self.store._stage(self._guarded("update", record, statement))
        return record

    def delete(self, record: RecordT, tokens: TokenReconciliation) -> None:
        key = self.schema.key_of(record)
        statement = delete(self.table).where(*self._key_clauses(key), *self._token_clauses(tokens))
        self.store._stage(self._guarded("delete", record, statement))


class SqlTransaction(StoreTransaction):
    def __init__(self, store: "SqlStore", handle: AsyncTransaction) -> None:
        super().__init__(uuid.uuid4().hex)
        self.store = store
        self.handle = handle

    async def commit(self) -> None:
        try:
            await self.handle.commit()
        finally:
            await self.store._end_transaction()

    async def rollback(self) -> None:
        try:
            await self.handle.rollback()
        finally:
            await self.store._end_transaction()


class SqlStore(DataStore):
    """Store backed by a SQLAlchemy async engine.

    One connection is opened lazily and held until the store is closed.
    Outside an explicit transaction every read and every flush runs in its
    own short transaction.
    """

    def __init__(
        self,
        engine: AsyncEngine | None = None,
        settings: SqlSettings | None = None,
    ) -> None:
        super().__init__()
        self.settings = settings or SqlSettings()
        if engine is None:
            engine = create_async_engine(
                self.settings.url,
                echo=self.settings.echo,
                **self._engine_kwargs(),
            )
            self.register_resource(engine)
        self.engine = engine
        self._schemas: dict[type[t.Any], RecordSchema] = {}
        self._conn: AsyncConnection | None = None
        self._pending: list[StagedStatement] = []
        self._transaction: SqlTransaction | None = None
        self._restore_isolation_level: str | None = None

    def _engine_kwargs(self) -> dict[str, t.Any]:
        kwargs = dict(self.settings.engine_kwargs)
        if make_url(self.settings.url).get_backend_name() == "sqlite":
            # sqlite3 only places SAVEPOINTs inside the enclosing transaction
            # with its non-legacy transaction control.
            connect_args = dict(kwargs.get("connect_args", {}))
            connect_args.setdefault("autocommit", False)
            kwargs["connect_args"] = connect_args
        return kwargs

    def register(
        self,
        record_type: type[t.Any],
        key_factory: t.Callable[[], t.Any] | None = None,
    ) -> RecordSchema:
        schema = self._schemas[record_type] = schema_for(record_type, key_factory)
        self._collections.pop(record_type, None)
        return schema

    def _create_collection(self, record_type: type[t.Any]) -> SqlCollection[t.Any]:
        schema = self._schemas.get(record_type) or self.register(record_type)
        return SqlCollection(self, schema)

    async def connection(self) -> AsyncConnection:
        if self._conn is None:
            self._conn = await self.engine.connect()
            self.register_resource(self._conn)
            logger.debug("Opened connection to {}", self.engine.url.render_as_string(hide_password=True))
        return self._conn

    async def create_all(self, metadata: MetaData) -> None:
        """Create the tables of ``metadata`` that do not exist yet."""
        conn = await self.connection()
        await conn.run_sync(metadata.create_all)
        if self._transaction is None:
            await conn.commit()

    async def fetch_all(self, statement: Select[t.Any]) -> list[Row[t.Any]]:
        conn = await self.connection()
        result = await conn.execute(statement)
        rows = list(result.all())
        if self._transaction is None:
            await conn.commit()
        return rows

    def _stage(self, statement: StagedStatement) -> None:
        self._pending.append(statement)

    @property
    def has_pending_changes(self) -> bool:
        return bool(self._pending)

    @property
    def in_transaction(self) -> bool:
        return self._transaction is not None

    async def flush(self) -> int:
        statements, self._pending = self._pending, []
        if not statements:
            return 0

        conn = await self.connection()
        affected = 0
        if self._transaction is not None:
            async with conn.begin_nested():
                for statement in statements:
                    affected += await statement(conn)
            return affected

        try:
            for statement in statements:
                affected += await statement(conn)
        except BaseException:
            await conn.rollback()
            raise
        await conn.commit()
        return affected

    def discard(self) -> None:
        self._pending.clear()

    async def begin_transaction(
        self,
        isolation_level: IsolationLevel | None = None,
    ) -> SqlTransaction:
        if self._transaction is not None:
            msg = "The SQL store supports a single transaction at a time."
            raise ProtocolError(msg, operation="begin_transaction")
        conn = await self.connection()
        if conn.in_transaction():
            await conn.commit()
        await self._reset_isolation_level()
        if isolation_level is not None:
            self._restore_isolation_level = await conn.get_isolation_level()
            await conn.execution_options(isolation_level=isolation_level.value)
        self._transaction = SqlTransaction(self, await conn.begin())
        return self._transaction

    async def _end_transaction(self) -> None:
        self._transaction = None
        await self._reset_isolation_level()

    async def _reset_isolation_level(self) -> None:
        """Put the connection back on the level it had before the last transaction."""
        conn = self._conn
        if self._restore_isolation_level is None or conn is None or conn.in_transaction():
            return
        level, self._restore_isolation_level = self._restore_isolation_level, None
        await conn.execution_options(isolation_level=level)

    async def _cleanup_resources(self) -> None:
        self._pending.clear()
        self._transaction = None
        self._restore_isolation_level = None
        self._conn = None


class SqlQueryHandler[EntityT, ResultT](QueryHandler[EntityT, ResultT]):
    """Base for handlers selecting rows of ``record_type`` through a ``SqlStore``."""

    record_type: t.ClassVar[type[t.Any]]

    @property
    def store(self) -> SqlStore:
        return t.cast(SqlStore, self.provider.store)

    @property
    def collection(self) -> SqlCollection[t.Any]:
        return t.cast(SqlCollection[t.Any], self.store.collection(self.record_type))

    def statement(self, query: Query[EntityT, ResultT]) -> Select[t.Any]:
        """Select statement for ``query``; every row by default."""
        return select(self.collection.table)

    def to_entity(self, row: Row[t.Any]) -> EntityT:
        record = self.collection.to_record(row)
        return self.provider.entity_mapper.map(record, self.entity_type)


class SqlScalarQueryHandler[EntityT, ResultT](SqlQueryHandler[EntityT, ResultT]):
    async def execute(self, query: Query[EntityT, ResultT]) -> ResultT:
        rows = await self.store.fetch_all(self.statement(query).limit(1))
        if not rows:
            return t.cast(ResultT, None)
        return t.cast(ResultT, self.to_entity(rows[0]))


class SqlVectorQueryHandler[EntityT](SqlQueryHandler[EntityT, list[EntityT]]):
    async def execute(self, query: Query[EntityT, list[EntityT]]) -> list[EntityT]:
        rows = await self.store.fetch_all(self.statement(query))
        return [self.to_entity(row) for row in rows]


class SqlPagedQueryHandler[EntityT](SqlQueryHandler[EntityT, PagedResult[EntityT]]):
    query_type = PagedQuery

    async def execute(self, query: PagedQuery[EntityT, EntityT]) -> PagedResult[EntityT]:  # type: ignore[override]
        statement = self.statement(query)
        total_count = None
        if query.total_count:
            count = select(func.count()).select_from(statement.subquery())
            rows = await self.store.fetch_all(count)
            total_count = int(rows[0][0])

        page = statement.offset(query.offset)
        if query.limit is not None:
            page = page.limit(query.limit)
        rows = await self.store.fetch_all(page)
        return PagedResult(tuple(self.to_entity(row) for row in rows), total_count)


class SqlRepository[EntityT, IdT](Repository[EntityT, IdT]):
    """Repository that can only be bound to a provider using a ``SqlStore``."""

    store_type = SqlStore
