"""
Error taxonomy and the backend error classifier.

`classify` is the only code in the package that understands S3 or Azure error
codes. Everything else works with `ErrorKind`.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from azure.core.exceptions import (
    HttpResponseError,
    ResourceModifiedError,
    ResourceNotFoundError,
)
from botocore.exceptions import ClientError


# S3 error codes (ClientError.response["Error"]["Code"])
S3_NOT_FOUND_CODES = frozenset({"NoSuchKey", "404", "NotFound"})
S3_CONFLICT_CODES = frozenset({"PreconditionFailed", "412", "ConditionalRequestConflict"})

# Azure Blob error codes (x-ms-error-code)
AZURE_NOT_FOUND_CODES = frozenset({"BlobNotFound"})
AZURE_CONFLICT_CODES = frozenset({"ConditionNotMet", "BlobAlreadyExists"})


class StateStoreError(RuntimeError):
    """A state store operation failed. The backend error is chained as __cause__."""

    def __init__(
        self,
        message: str,
        *,
        operation: Optional[str] = None,
        key: Optional[str] = None,
        endpoint: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.operation = operation
        self.key = key
        self.endpoint = endpoint


class VersionConflictError(StateStoreError):
    """The request's etag precondition was not met (stale etag or object already exists)."""


class OperationCancelledError(StateStoreError):
    """The caller cancelled the operation before it was sent to the backend."""


class PayloadEncodingError(ValueError):
    """A value passed to set() could not be serialized."""


class ErrorKind(str, Enum):
    NOT_FOUND = "not-found"
    VERSION_CONFLICT = "version-conflict"
    OTHER = "other"


@dataclass(frozen=True)
class Classification:
    kind: ErrorKind
    error: BaseException


def _s3_code(exc: ClientError) -> Optional[str]:
    code = exc.response.get("Error", {}).get("Code")
    return str(code) if code is not None else None


def _azure_code(exc: HttpResponseError) -> Optional[str]:
    # The storage SDK sets error_code to a StorageErrorCode enum member
    code = getattr(exc, "error_code", None)
    if code is None:
        return None
    return str(getattr(code, "value", code))


def classify(exc: BaseException) -> Classification:
    """Map a backend exception to NOT_FOUND, VERSION_CONFLICT or OTHER.

    Bucket/container level absence (NoSuchBucket, ContainerNotFound) is OTHER:
    only a missing object counts as NOT_FOUND.
    """
    if isinstance(exc, ClientError):
        code = _s3_code(exc)
        if code in S3_NOT_FOUND_CODES:
            return Classification(ErrorKind.NOT_FOUND, exc)
        if code in S3_CONFLICT_CODES:
            return Classification(ErrorKind.VERSION_CONFLICT, exc)
        return Classification(ErrorKind.OTHER, exc)

    if isinstance(exc, HttpResponseError):
        code = _azure_code(exc)
        if code in AZURE_NOT_FOUND_CODES:
            return Classification(ErrorKind.NOT_FOUND, exc)
        if code in AZURE_CONFLICT_CODES:
            return Classification(ErrorKind.VERSION_CONFLICT, exc)
        if code is None:
            # No x-ms-error-code; fall back to the status-derived exception type
            if isinstance(exc, ResourceModifiedError):
                return Classification(ErrorKind.VERSION_CONFLICT, exc)
            if isinstance(exc, ResourceNotFoundError):
                return Classification(ErrorKind.NOT_FOUND, exc)
        return Classification(ErrorKind.OTHER, exc)

    return Classification(ErrorKind.OTHER, exc)
