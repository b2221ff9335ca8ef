"""Loguru logging for repokit.

- ``configure_logging``: install the repokit stderr sink
- ``get_logger``: module-bound logger used across the package
- ``DataProviderLogger``: lifecycle events for entities, queries,
  saves and transactions
"""

import sys
import time

import typing as t
from loguru import logger as _logger

from repokit.config import DataSettings

if t.TYPE_CHECKING:
    from loguru import Logger

_handler_id: int | None = None


def configure_logging(settings: DataSettings | None = None) -> int:
    """Replace loguru's default sink with one configured from settings.

    Returns the id of the installed handler.
    """
    global _handler_id

    settings = settings or DataSettings()
    _logger.remove(_handler_id)
    _handler_id = _logger.add(
        sys.stderr,
        level=settings.log_level,
        format=settings.log_format_string,
        serialize=settings.log_serialize,
        backtrace=False,
        diagnose=False,
        colorize=not settings.log_serialize,
    )
    return _handler_id


def get_logger(name: str) -> "Logger":
    return _logger.bind(mod_name=name)


def _type_name(value: t.Any) -> str:
    if isinstance(value, type):
        return value.__qualname__
    return type(value).__qualname__


class DataProviderLogger:
    """Structured log events emitted by a data provider.

    Every event is bound with ``provider`` and ``event`` extras so sinks
    serializing records as JSON can filter on them.
    """

    def __init__(
        self,
        provider_name: str,
        slow_operation_ms: float = 500.0,
    ) -> None:
        self.provider_name = provider_name
        self.slow_operation_ms = slow_operation_ms
        self._logger = get_logger("repokit.provider").bind(provider=provider_name)

    @staticmethod
    def start() -> float:
        return time.perf_counter()

    @staticmethod
    def elapsed_ms(started: float) -> float:
        return round((time.perf_counter() - started) * 1000, 3)

    def _completed(self, event: str, message: str, started: float, **extra: t.Any) -> None:
        elapsed = self.elapsed_ms(started)
        level = "WARNING" if elapsed > self.slow_operation_ms else "DEBUG"
        self._logger.bind(event=event, elapsed_ms=elapsed, **extra).log(
            level,
            message + " in {}ms",
            *extra.values(),
            elapsed,
        )

    def _event(self, level: str, event: str, message: str, **extra: t.Any) -> None:
        self._logger.bind(event=event, **extra).log(level, message, *extra.values())

    def _failed(self, event: str, message: str, error: BaseException, **extra: t.Any) -> None:
        self._logger.bind(event=event, error=repr(error), **extra).error(
            message + ": {}",
            *extra.values(),
            error,
        )

    # Entities
    def entity_creating(self, entity: t.Any) -> None:
        self._event("DEBUG", "entity_creating", "Creating entity {}", entity_type=_type_name(entity))

    def entity_created(self, entity: t.Any, started: float) -> None:
        self._completed(
            "entity_created",
            "Created entity {} with id {}",
            started,
            entity_type=_type_name(entity),
            entity_id=str(getattr(entity, "id", None)),
        )

    def entity_create_failed(self, entity: t.Any, error: BaseException) -> None:
        self._failed("entity_create_failed", "Failed to create entity {}", error, entity_type=_type_name(entity))

    def entity_staged(self, operation: str, entity: t.Any) -> None:
        self._event(
            "DEBUG",
            "entity_staged",
            "Staged {} of entity {} with id {} until the outermost change scope saves",
            operation=operation,
            entity_type=_type_name(entity),
            entity_id=str(getattr(entity, "id", None)),
        )

    def entity_updating(self, entity: t.Any) -> None:
        self._event(
            "DEBUG",
            "entity_updating",
            "Updating entity {} with id {}",
            entity_type=_type_name(entity),
            entity_id=str(getattr(entity, "id", None)),
        )

    def entity_updated(self, entity: t.Any, started: float) -> None:
        self._completed(
            "entity_updated",
            "Updated entity {} with id {}",
            started,
            entity_type=_type_name(entity),
            entity_id=str(getattr(entity, "id", None)),
        )

    def entity_update_failed(self, entity: t.Any, error: BaseException) -> None:
        self._failed(
            "entity_update_failed",
            "Failed to update entity {} with id {}",
            error,
            entity_type=_type_name(entity),
            entity_id=str(getattr(entity, "id", None)),
        )

    def entity_deleting(self, entity: t.Any) -> None:
        self._event(
            "DEBUG",
            "entity_deleting",
            "Deleting entity {} with id {}",
            entity_type=_type_name(entity),
            entity_id=str(getattr(entity, "id", None)),
        )

    def entity_deleted(self, entity: t.Any, started: float) -> None:
        self._completed(
            "entity_deleted",
            "Deleted entity {} with id {}",
            started,
            entity_type=_type_name(entity),
            entity_id=str(getattr(entity, "id", None)),
        )

    def entity_delete_failed(self, entity: t.Any, error: BaseException) -> None:
        self._failed(
            "entity_delete_failed",
            "Failed to delete entity {} with id {}",
            error,
            entity_type=_type_name(entity),
            entity_id=str(getattr(entity, "id", None)),
        )

    def entity_loading(self, entity_type: type, entity_id: t.Any) -> None:
        self._event(
            "DEBUG",
            "entity_loading",
            "Loading entity {} with id {}",
            entity_type=_type_name(entity_type),
            entity_id=str(entity_id),
        )

    def entity_loaded(self, entity_type: type, entity_id: t.Any, started: float) -> None:
        self._completed(
            "entity_loaded",
            "Loaded entity {} with id {}",
            started,
            entity_type=_type_name(entity_type),
            entity_id=str(entity_id),
        )

    def entity_not_found(self, entity_type: type, entity_id: t.Any) -> None:
        self._event(
            "DEBUG",
            "entity_not_found",
            "Entity {} with id {} was not found",
            entity_type=_type_name(entity_type),
            entity_id=str(entity_id),
        )

    def entity_load_failed(self, entity_type: type, entity_id: t.Any, error: BaseException) -> None:
        self._failed(
            "entity_load_failed",
            "Failed to load entity {} with id {}",
            error,
            entity_type=_type_name(entity_type),
            entity_id=str(entity_id),
        )

    # Queries
    def query_executing(self, query: t.Any) -> None:
        self._event("DEBUG", "query_executing", "Executing query {}", query_type=_type_name(query))

    def query_executed(self, query: t.Any, started: float) -> None:
        self._completed("query_executed", "Executed query {}", started, query_type=_type_name(query))

    def query_failed(self, query: t.Any, error: BaseException) -> None:
        self._failed("query_failed", "Failed to execute query {}", error, query_type=_type_name(query))

    # Saves
    def save_deferred(self, depth: int) -> None:
        self._event("TRACE", "save_deferred", "Deferring save, {} change scopes open", depth=depth)

    def saving_changes(self) -> None:
        self._event("DEBUG", "saving_changes", "Saving changes")

    def changes_saved(self, affected: int, started: float) -> None:
        self._completed("changes_saved", "Saved {} changes", started, affected=affected)

    def save_failed(self, error: BaseException) -> None:
        self._failed("save_failed", "Failed to save changes", error)

    # Transactions
    def transaction_created(self, transaction_id: str) -> None:
        self._event("DEBUG", "transaction_created", "Created transaction {}", transaction_id=transaction_id)

    def transaction_committing(self, transaction_id: str) -> None:
        self._event("DEBUG", "transaction_committing", "Committing transaction {}", transaction_id=transaction_id)

    def transaction_committed(self, transaction_id: str, started: float) -> None:
        self._completed(
            "transaction_committed",
            "Committed transaction {}",
            started,
            transaction_id=transaction_id,
        )

    def transaction_commit_failed(self, transaction_id: str, error: BaseException) -> None:
        self._failed(
            "transaction_commit_failed",
            "Failed to commit transaction {}",
            error,
            transaction_id=transaction_id,
        )

    def transaction_rolling_back(self, transaction_id: str) -> None:
        self._event(
            "DEBUG",
            "transaction_rolling_back",
            "Rolling back transaction {}",
            transaction_id=transaction_id,
        )

    def transaction_rolled_back(self, transaction_id: str, started: float) -> None:
        self._completed(
            "transaction_rolled_back",
            "Rolled back transaction {}",
            started,
            transaction_id=transaction_id,
        )
