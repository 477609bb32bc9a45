from __future__ import annotations

import logging
import urllib.parse
from typing import Any, Dict, Optional

from azure.core import MatchConditions
from azure.identity import (
    AzureCliCredential,
    ManagedIdentityCredential,
    ChainedTokenCredential,
)
from azure.storage.blob import ContainerClient, ContentSettings

from .backend import BlobObject, optional_etag, require_etag
from .conditions import Condition, ConditionKind


logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30.0


class AzureBlobBackend:
    """
    Azure Blob Storage adapter (block blobs).

    Concurrency follows
    https://learn.microsoft.com/azure/storage/blobs/concurrency-manage

    - IF_MATCH: `etag=<etag>, match_condition=IfNotModified` (If-Match).
    - IF_NONE_MATCH: `overwrite=False` (If-None-Match: *).
    - NONE: `overwrite=True`.

    Exactly one of `connection_string` or `account_url` is needed unless a
    ready `container_client` is injected. With `account_url` the client
    authenticates with managed identity, falling back to the Azure CLI login.
    """

    def __init__(
        self,
        container_client: Optional[ContainerClient] = None,
        *,
        container_name: Optional[str] = None,
        connection_string: Optional[str] = None,
        account_url: Optional[str] = None,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> None:
        if container_client is not None:
            self._container = container_client
            return
        if not container_name:
            raise ValueError("container_name is required")
        if not (connection_string or account_url):
            raise ValueError(
                "Expected one of 'connection_string' or 'account_url' to be provided to AzureBlobBackend()"
            )
        if connection_string and account_url:
            raise ValueError(
                "Expected only one of 'connection_string' or 'account_url' to be provided to AzureBlobBackend(), not both"
            )
        # One logical operation is one request: retries belong to the caller
        client_kwargs: Dict[str, Any] = {
            "retry_total": 0,
            "connection_timeout": timeout,
            "read_timeout": timeout,
        }
        if connection_string:
            self._container = ContainerClient.from_connection_string(
                connection_string, container_name, **client_kwargs
            )
        else:
            credential = ChainedTokenCredential(
                ManagedIdentityCredential(), AzureCliCredential()
            )
            self._container = ContainerClient(
                account_url, container_name, credential=credential, **client_kwargs
            )

    @property
    def endpoint(self) -> str:
        # A SAS connection string puts the signature in the query string
        return urllib.parse.urlsplit(self._container.url)._replace(query="", fragment="").geturl()

    def get(self, name: str) -> BlobObject:
        downloader = self._container.get_blob_client(name).download_blob()
        data = downloader.readall()
        props = downloader.properties
        content_settings = getattr(props, "content_settings", None)
        return BlobObject(
            data=data,
            etag=require_etag(props.etag, name),
            content_type=getattr(content_settings, "content_type", None),
            metadata=dict(props.metadata or {}),
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
        kwargs: Dict[str, Any] = {"blob_type": "BlockBlob", "overwrite": True}
        if content_type:
            kwargs["content_settings"] = ContentSettings(content_type=content_type)
        if metadata:
            kwargs["metadata"] = dict(metadata)
        if condition.kind is ConditionKind.IF_MATCH:
            kwargs["etag"] = condition.etag
            kwargs["match_condition"] = MatchConditions.IfNotModified
        elif condition.kind is ConditionKind.IF_NONE_MATCH:
            kwargs["overwrite"] = False

        logger.debug("upload_blob %s condition=%s", name, condition.kind.value)
        resp = self._container.get_blob_client(name).upload_blob(data, **kwargs)
        return optional_etag(resp.get("etag"))

    def delete(self, name: str, *, condition: Condition) -> None:
        kwargs: Dict[str, Any] = {}
        if condition.kind is ConditionKind.IF_MATCH:
            kwargs["etag"] = condition.etag
            kwargs["match_condition"] = MatchConditions.IfNotModified

        logger.debug("delete_blob %s condition=%s", name, condition.kind.value)
        self._container.get_blob_client(name).delete_blob(**kwargs)

    def health_check(self) -> None:
        self._container.get_container_properties()
