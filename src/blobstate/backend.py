"""Backend collaborator contract used by the versioned state store."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Optional, Protocol

from .conditions import Condition


@dataclass
class BlobObject:
    data: bytes
    etag: str
    content_type: Optional[str] = None
    metadata: Dict[str, str] = field(default_factory=dict)


class ObjectBackend(Protocol):
    """
    Thin adapter over an object store SDK.

    Implementations translate a `Condition` into the SDK's precondition
    arguments and let the SDK's own exceptions propagate untouched; the store
    classifies them with `blobstate.errors.classify`.
    """

    @property
    def endpoint(self) -> str:
        """Human-readable location of the bucket/container, for error messages."""
        ...

    def get(self, name: str) -> BlobObject:
        """Download payload, etag and content type in a single request."""
        ...

    def put(
        self,
        name: str,
        data: bytes,
        *,
        condition: Condition,
        content_type: Optional[str] = None,
        metadata: Optional[Dict[str, str]] = None,
    ) -> Optional[str]:
        """Upload `data` under `condition`; returns the new etag when the backend reports one."""
        ...

    def delete(self, name: str, *, condition: Condition) -> None:
        ...

    def health_check(self) -> None:
        """Metadata-only round trip against the bucket/container."""
        ...


def require_etag(etag: Optional[object], name: str) -> str:
    """A read without an etag cannot take part in optimistic locking."""
    if etag is None or str(etag) == "":
        raise ValueError(f"backend returned no etag for {name!r}")
    return str(etag)


def optional_etag(etag: Optional[object]) -> Optional[str]:
    return str(etag) if etag is not None and str(etag) != "" else None
