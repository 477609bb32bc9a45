from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field


class Concurrency(str, Enum):
    """Write policy used when the caller supplies no etag."""

    FIRST_WRITE = "first-write"
    LAST_WRITE = "last-write"


class Feature(str, Enum):
    ETAG = "ETAG"


class StateEntry(BaseModel):
    """
    A stored state value as returned by a read.

    Fields
    - key: the logical key the caller asked for (before key mapping).
    - value: the stored bytes exactly as written; None when the key is absent.
    - etag: opaque version token observed together with `value`. Only ever
      compared for equality; pass it back on set/delete for optimistic locking.
    - content_type: content type recorded on the object, if any.
    - metadata: user metadata recorded on the object.

    Notes
    - Values written as non-bytes were stored as JSON text; decoding is up to
      the caller (see `blobstate.codec.unmarshal`).
    """

    key: str
    value: Optional[bytes] = None
    etag: Optional[str] = None
    content_type: Optional[str] = None
    metadata: Dict[str, str] = Field(default_factory=dict)

    @classmethod
    def empty(cls, key: str) -> "StateEntry":
        """Result for a key that has never been written (or was deleted)."""
        return cls(key=key)

    @property
    def exists(self) -> bool:
        return self.etag is not None


class SetRequest(BaseModel):
    key: str
    value: Any = None
    etag: Optional[str] = Field(
        default=None,
        description="Expected current etag; when set the write only succeeds if it still matches",
    )
    concurrency: Concurrency = Concurrency.LAST_WRITE
    content_type: Optional[str] = None
    metadata: Dict[str, str] = Field(default_factory=dict)


class DeleteRequest(BaseModel):
    key: str
    etag: Optional[str] = None


@dataclass
class BulkResult:
    """Outcome of one key inside a bulk call. Keys succeed or fail independently."""

    key: str
    error: Optional[Exception] = None
    entry: Optional[StateEntry] = None

    @property
    def ok(self) -> bool:
        return self.error is None
