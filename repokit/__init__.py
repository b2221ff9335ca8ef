"""Storage-agnostic repositories with optimistic concurrency."""

from repokit.concurrency import ConcurrencyReconciler, Operation, TokenReconciliation
from repokit.config import DataSettings, Settings
from repokit.dispatch import QueryDispatcher, QueryHandler, QueryHandlerRegistry
from repokit.entity import (
    ChangeTokenEntity,
    ConcurrencyMode,
    Entity,
    ExplicitChangeTokenEntity,
    describe,
    is_transient,
)
from repokit.errors import (
    ChangeScopeOrderError,
    ConcurrencyModelMismatchError,
    ConfigurationError,
    DataProviderNotRegisteredError,
    EntityConcurrencyError,
    EntityError,
    EntityNotFoundError,
    EntityUpdateError,
    ProtocolError,
    ProviderBindingError,
    QueryHandlerNotRegisteredError,
    RepositoryError,
    TransactionDisposedError,
    TransactionFinishedError,
    TransactionInProgressError,
)
from repokit.logger import configure_logging, get_logger
from repokit.mapping import EntityMapper, PydanticEntityMapper
from repokit.provider import DataProvider
from repokit.query import PagedQuery, PagedResult, Query
from repokit.repository import Repository
from repokit.resolver import DataProviderResolver
from repokit.scope import ChangeScope, ChangeScopeCoordinator
from repokit.storage import IsolationLevel
from repokit.tokens import TokenGenerator, UuidTokenGenerator
from repokit.transaction import Transaction, TransactionManager, TransactionState

__version__ = "0.1.0"

__all__ = [
    "ChangeScope",
    "ChangeScopeCoordinator",
    "ChangeScopeOrderError",
    "ChangeTokenEntity",
    "ConcurrencyMode",
    "ConcurrencyModelMismatchError",
    "ConcurrencyReconciler",
    "ConfigurationError",
    "DataProvider",
    "DataProviderNotRegisteredError",
    "DataProviderResolver",
    "DataSettings",
    "Entity",
    "EntityConcurrencyError",
    "EntityError",
    "EntityMapper",
    "EntityNotFoundError",
    "EntityUpdateError",
    "ExplicitChangeTokenEntity",
    "IsolationLevel",
    "Operation",
    "PagedQuery",
    "PagedResult",
    "ProtocolError",
    "ProviderBindingError",
    "PydanticEntityMapper",
    "Query",
    "QueryDispatcher",
    "QueryHandler",
    "QueryHandlerNotRegisteredError",
    "QueryHandlerRegistry",
    "Repository",
    "RepositoryError",
    "Settings",
    "TokenGenerator",
    "TokenReconciliation",
    "Transaction",
    "TransactionDisposedError",
    "TransactionFinishedError",
    "TransactionInProgressError",
    "TransactionManager",
    "TransactionState",
    "UuidTokenGenerator",
    "configure_logging",
    "describe",
    "get_logger",
    "is_transient",
]
