"""dynassoc: typed entities with has-many associations over hash/range-keyed stores."""

__version__ = "0.1.0"

from dynassoc.associations import AssociationManager, AssociationSlot, HasMany, RelationSpec, SlotState
from dynassoc.config import DynassocConfig
from dynassoc.errors import (
    AssociationTypeMismatch,
    DynassocError,
    InvalidStateError,
    RecordNotFoundError,
    StorageBackendError,
    StoreReadFailure,
    StoreWriteFailure,
)
from dynassoc.iteration import BatchedRangeIterator
from dynassoc.runtime import Database
from dynassoc.storage import ItemStore, SQLiteStore, TableSchema, open_store
from dynassoc.types import Entity, Field

__all__ = [
    "__version__",
    "Entity",
    "Field",
    "HasMany",
    "Database",
    "DynassocConfig",
    "AssociationManager",
    "AssociationSlot",
    "RelationSpec",
    "SlotState",
    "BatchedRangeIterator",
    "ItemStore",
    "SQLiteStore",
    "TableSchema",
    "open_store",
    "DynassocError",
    "AssociationTypeMismatch",
    "InvalidStateError",
    "RecordNotFoundError",
    "StorageBackendError",
    "StoreReadFailure",
    "StoreWriteFailure",
]
