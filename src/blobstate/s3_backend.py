from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import boto3
from botocore.config import Config

from .backend import BlobObject, optional_etag, require_etag
from .conditions import Condition, ConditionKind


logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30.0


def _client_config(timeout: float) -> Config:
    # One logical operation is one request: retries belong to the caller
    return Config(
        connect_timeout=timeout,
        read_timeout=timeout,
        retries={"total_max_attempts": 1, "mode": "standard"},
    )


class S3Backend:
    """
    Amazon S3 adapter using native conditional requests.

    - Writes: `PutObject` with `IfMatch` (update-only) or `IfNoneMatch="*"`
      (create-only).
    - Deletes: `DeleteObject` with `IfMatch`.
    - ETags are returned exactly as S3 reports them (quoted strings) and are
      never parsed.
    """

    def __init__(
        self,
        *,
        s3: Optional[object] = None,
        bucket: str,
        region_name: Optional[str] = None,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> None:
        if not bucket:
            raise ValueError("bucket is required")
        self._s3 = s3 or boto3.client(
            "s3", region_name=region_name, config=_client_config(timeout)
        )
        self._bucket = bucket

    @property
    def endpoint(self) -> str:
        return f"s3://{self._bucket}"

    def get(self, name: str) -> BlobObject:
        resp = self._s3.get_object(Bucket=self._bucket, Key=name)
        body = resp["Body"].read()
        return BlobObject(
            data=body,
            etag=require_etag(resp.get("ETag"), name),
            content_type=resp.get("ContentType"),
            metadata=dict(resp.get("Metadata") or {}),
        )

    def put(
        self,
        name: str,
        data: bytes,
        *,
        condition: Condition,
        content_type: Optional[str] = None,
        metadata: Optional[Dict[str, str]] = None,
    ) -> Optional[str]:
        kwargs: Dict[str, Any] = {"Bucket": self._bucket, "Key": name, "Body": data}
        if content_type:
            kwargs["ContentType"] = content_type
        if metadata:
            kwargs["Metadata"] = dict(metadata)
        if condition.kind is ConditionKind.IF_MATCH:
            kwargs["IfMatch"] = condition.etag
        elif condition.kind is ConditionKind.IF_NONE_MATCH:
            kwargs["IfNoneMatch"] = "*"

        logger.debug("PutObject %s/%s condition=%s", self._bucket, name, condition.kind.value)
        resp = self._s3.put_object(**kwargs)
        return optional_etag(resp.get("ETag"))

    def delete(self, name: str, *, condition: Condition) -> None:
        kwargs: Dict[str, Any] = {"Bucket": self._bucket, "Key": name}
        if condition.kind is ConditionKind.IF_MATCH:
            kwargs["IfMatch"] = condition.etag

        logger.debug("DeleteObject %s/%s condition=%s", self._bucket, name, condition.kind.value)
        self._s3.delete_object(**kwargs)

    def health_check(self) -> None:
        self._s3.head_bucket(Bucket=self._bucket)
