"""
Versioned key-value state store backed by S3 or Azure Blob Storage.

Every write and delete can carry an etag precondition; a stale etag is
reported as `VersionConflictError` and never silently overwritten.
"""

from .codec import marshal, unmarshal
from .conditions import Condition, ConditionKind, build_delete_condition, build_write_condition
from .errors import (
    OperationCancelledError,
    PayloadEncodingError,
    StateStoreError,
    VersionConflictError,
)
from .keys import KEY_DELIMITER, map_key
from .models import BulkResult, Concurrency, DeleteRequest, Feature, SetRequest, StateEntry
from .store import VersionedStateStore

__all__ = [
    "BulkResult",
    "Concurrency",
    "Condition",
    "ConditionKind",
    "DeleteRequest",
    "Feature",
    "KEY_DELIMITER",
    "OperationCancelledError",
    "PayloadEncodingError",
    "SetRequest",
    "StateEntry",
    "StateStoreError",
    "VersionConflictError",
    "VersionedStateStore",
    "build_delete_condition",
    "build_write_condition",
    "map_key",
    "marshal",
    "unmarshal",
]
