from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable, Dict, Iterable, List, Optional, TypeVar

from .backend import ObjectBackend
from .codec import marshal
from .conditions import ConditionKind, build_delete_condition, build_write_condition
from .errors import (
    ErrorKind,
    OperationCancelledError,
    PayloadEncodingError,
    StateStoreError,
    VersionConflictError,
    classify,
)
from .keys import map_key
from .models import (
    BulkResult,
    Concurrency,
    DeleteRequest,
    Feature,
    SetRequest,
    StateEntry,
)


logger = logging.getLogger(__name__)

T = TypeVar("T")


class VersionedStateStore:
    """
    Key-value state store over a remote object store, with etag-based
    optimistic concurrency.

    Usage
    - `get(key)` returns a `StateEntry`. A key that was never written (or was
      deleted) yields an entry with `value=None` and `etag=None`, not an error.
    - `set(key, value, etag=...)` writes only if the object still carries that
      etag; a stale etag raises `VersionConflictError`.
    - `set(key, value, concurrency=Concurrency.FIRST_WRITE)` creates the key
      only if it does not exist yet.
    - `delete(key, etag=...)` deletes only if the etag matches. Deleting an
      absent key is always a no-op.

    Notes
    - Keys of the form "prefix||name" are stored under "name".
    - The store keeps no per-key state and takes no locks. Ordering between
      concurrent writers is decided by the backend's conditional requests.
    - Nothing is retried here: after a `VersionConflictError`, re-read and
      decide whether to merge or overwrite.
    - Each operation accepts an optional `threading.Event`; if it is set before
      the request is sent, `OperationCancelledError` is raised and nothing is
      written.
    """

    def __init__(self, backend: ObjectBackend, *, max_workers: int = 1) -> None:
        if max_workers <= 0:
            raise ValueError("max_workers must be > 0")
        self._backend = backend
        self._max_workers = max_workers

    # -------- Construction helpers --------
    @classmethod
    def from_env(cls) -> "VersionedStateStore":
        from .config import StoreConfig, create_store

        return create_store(StoreConfig.from_env())

    @property
    def endpoint(self) -> str:
        return self._backend.endpoint

    def features(self) -> List[Feature]:
        return [Feature.ETAG]

    # -------- Core operations --------
    def get(self, key: str, *, cancel: Optional[threading.Event] = None) -> StateEntry:
        """Read a key.

        Payload, etag and content type come from the same response, so the
        etag always belongs to the returned bytes.
        Raises:
        - StateStoreError for anything other than a missing object.
        """
        name = map_key(key)
        self._check_cancelled(cancel, "get", key)
        try:
            obj = self._backend.get(name)
        except Exception as e:
            result = classify(e)
            if result.kind is ErrorKind.NOT_FOUND:
                logger.debug("get %r: not found", key)
                return StateEntry.empty(key)
            raise self._other("get", key, f"error reading blob {name!r}", e) from e

        return StateEntry(
            key=key,
            value=obj.data,
            etag=obj.etag,
            content_type=obj.content_type,
            metadata=obj.metadata,
        )

    def set(
        self,
        key: str,
        value: Any,
        *,
        etag: Optional[str] = None,
        concurrency: Concurrency = Concurrency.LAST_WRITE,
        content_type: Optional[str] = None,
        metadata: Optional[Dict[str, str]] = None,
        cancel: Optional[threading.Event] = None,
    ) -> None:
        """Write a key.

        Args:
        - etag: expected current etag. When given, the write succeeds only if
          the object still has it, whatever `concurrency` says.
        - concurrency: without an etag, FIRST_WRITE creates only if absent and
          LAST_WRITE overwrites unconditionally.
        - content_type / metadata: stored on the object as-is.
        Raises:
        - VersionConflictError when the precondition fails.
        - PayloadEncodingError when `value` is not bytes and not JSON-encodable.
        - StateStoreError for any other backend failure.
        """
        name = map_key(key)
        condition = build_write_condition(etag, concurrency)
        data = marshal(value)
        self._check_cancelled(cancel, "set", key)
        try:
            self._backend.put(
                name,
                data,
                condition=condition,
                content_type=content_type,
                metadata=metadata,
            )
        except Exception as e:
            result = classify(e)
            conflict = result.kind is ErrorKind.VERSION_CONFLICT and condition.is_conditional
            # The version the caller observed no longer exists at all
            vanished = result.kind is ErrorKind.NOT_FOUND and condition.kind is ConditionKind.IF_MATCH
            if conflict or vanished:
                logger.info("set %r: precondition %s failed", key, condition.kind.value)
                raise VersionConflictError(
                    f"etag mismatch for {name!r} at {self.endpoint}",
                    operation="set",
                    key=key,
                    endpoint=self.endpoint,
                ) from e
            raise self._other("set", key, f"error uploading blob {name!r}", e) from e

    def delete(
        self,
        key: str,
        *,
        etag: Optional[str] = None,
        cancel: Optional[threading.Event] = None,
    ) -> None:
        """Delete a key; with `etag`, only if it still matches.

        A missing object is success even when an etag was supplied: there is
        nothing left for the etag to conflict with.
        """
        name = map_key(key)
        condition = build_delete_condition(etag)
        self._check_cancelled(cancel, "delete", key)
        try:
            self._backend.delete(name, condition=condition)
        except Exception as e:
            result = classify(e)
            if result.kind is ErrorKind.VERSION_CONFLICT and etag:
                logger.info("delete %r: etag mismatch", key)
                raise VersionConflictError(
                    f"etag mismatch for {name!r} at {self.endpoint}",
                    operation="delete",
                    key=key,
                    endpoint=self.endpoint,
                ) from e
            if result.kind is ErrorKind.NOT_FOUND:
                logger.debug("delete %r: already absent", key)
                return
            raise self._other("delete", key, f"error deleting blob {name!r}", e) from e

    def ping(self, *, cancel: Optional[threading.Event] = None) -> None:
        """Single liveness probe against the bucket/container. Not retried."""
        self._check_cancelled(cancel, "ping", None)
        try:
            self._backend.health_check()
        except Exception as e:
            raise StateStoreError(
                f"error connecting to blob storage at {self.endpoint}: {e}",
                operation="ping",
                endpoint=self.endpoint,
            ) from e

    # -------- Request-object forms --------
    def set_request(self, req: SetRequest, *, cancel: Optional[threading.Event] = None) -> None:
        self.set(
            req.key,
            req.value,
            etag=req.etag,
            concurrency=req.concurrency,
            content_type=req.content_type,
            metadata=req.metadata,
            cancel=cancel,
        )

    def delete_request(self, req: DeleteRequest, *, cancel: Optional[threading.Event] = None) -> None:
        self.delete(req.key, etag=req.etag, cancel=cancel)

    # -------- Bulk operations --------
    def bulk_get(self, keys: Iterable[str], *, cancel: Optional[threading.Event] = None) -> List[BulkResult]:
        """Read many keys; one result per key, in input order."""

        def _one(key: str) -> BulkResult:
            try:
                return BulkResult(key=key, entry=self.get(key, cancel=cancel))
            except StateStoreError as e:
                return BulkResult(key=key, error=e)

        return self._fan_out(_one, list(keys))

    def bulk_set(
        self, requests: Iterable[SetRequest], *, cancel: Optional[threading.Event] = None
    ) -> List[BulkResult]:
        """Write many keys independently. Partial success is expected."""

        def _one(req: SetRequest) -> BulkResult:
            try:
                self.set_request(req, cancel=cancel)
            except (StateStoreError, PayloadEncodingError) as e:
                return BulkResult(key=req.key, error=e)
            return BulkResult(key=req.key)

        return self._fan_out(_one, list(requests))

    def bulk_delete(
        self, requests: Iterable[DeleteRequest], *, cancel: Optional[threading.Event] = None
    ) -> List[BulkResult]:
        def _one(req: DeleteRequest) -> BulkResult:
            try:
                self.delete_request(req, cancel=cancel)
            except StateStoreError as e:
                return BulkResult(key=req.key, error=e)
            return BulkResult(key=req.key)

        return self._fan_out(_one, list(requests))

    # -------- Internal --------
    def _fan_out(self, fn: Callable[[T], BulkResult], items: List[T]) -> List[BulkResult]:
        if self._max_workers == 1 or len(items) <= 1:
            return [fn(item) for item in items]
        with ThreadPoolExecutor(max_workers=min(self._max_workers, len(items))) as pool:
            return list(pool.map(fn, items))

    def _check_cancelled(
        self, cancel: Optional[threading.Event], operation: str, key: Optional[str]
    ) -> None:
        if cancel is not None and cancel.is_set():
            target = f"key {key!r}" if key is not None else self.endpoint
            raise OperationCancelledError(
                f"{operation} cancelled for {target}",
                operation=operation,
                key=key,
                endpoint=self.endpoint,
            )

    def _other(self, operation: str, key: str, message: str, exc: BaseException) -> StateStoreError:
        return StateStoreError(
            f"{message} at {self.endpoint}: {exc}",
            operation=operation,
            key=key,
            endpoint=self.endpoint,
        )


__all__ = ["VersionedStateStore"]
