from ._base import (
    DataStore,
    IsolationLevel,
    RecordSchema,
    StoreCollection,
    StoreConflictError,
    StoreTransaction,
)

__all__ = [
    "DataStore",
    "IsolationLevel",
    "RecordSchema",
    "StoreCollection",
    "StoreConflictError",
    "StoreTransaction",
]
