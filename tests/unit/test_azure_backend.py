from __future__ import annotations

from types import SimpleNamespace
from typing import Dict, Optional

import pytest
from azure.core import MatchConditions
from azure.core.exceptions import (
    HttpResponseError,
    ResourceExistsError,
    ResourceModifiedError,
    ResourceNotFoundError,
)
from azure.identity import ChainedTokenCredential

from blobstate.azure_backend import AzureBlobBackend
from blobstate.errors import StateStoreError, VersionConflictError
from blobstate.models import Concurrency
from blobstate.store import VersionedStateStore


def _azure_error(cls, code: str):
    # The storage SDK attaches x-ms-error-code to the exception after construction
    err = cls(message=code)
    err.error_code = code
    return err


class _FakeDownloader:
    def __init__(self, item: dict) -> None:
        self._item = item
        self.properties = SimpleNamespace(
            etag=item["etag"],
            content_settings=SimpleNamespace(content_type=item["content_type"]),
            metadata=item["metadata"],
        )

    def readall(self) -> bytes:
        return self._item["data"]


class _FakeBlobClient:
    def __init__(self, container: "_FakeContainer", name: str) -> None:
        self._c = container
        self._name = name

    def download_blob(self):
        item = self._c.blobs.get(self._name)
        if item is None:
            raise _azure_error(ResourceNotFoundError, "BlobNotFound")
        return _FakeDownloader(item)

    def _check_condition(self, etag: Optional[str], match_condition) -> None:
        if match_condition is MatchConditions.IfNotModified:
            existing = self._c.blobs.get(self._name)
            if existing is None:
                raise _azure_error(ResourceNotFoundError, "BlobNotFound")
            if existing["etag"] != etag:
                raise _azure_error(ResourceModifiedError, "ConditionNotMet")

    def upload_blob(
        self,
        data: bytes,
        *,
        blob_type: str,
        overwrite: bool,
        content_settings=None,
        metadata: Optional[Dict[str, str]] = None,
        etag: Optional[str] = None,
        match_condition=None,
    ):
        assert blob_type == "BlockBlob"
        self._c.uploads.append({"overwrite": overwrite, "etag": etag, "match_condition": match_condition})
        if not overwrite and self._name in self._c.blobs:
            raise _azure_error(ResourceExistsError, "BlobAlreadyExists")
        self._check_condition(etag, match_condition)
        self._c.seq += 1
        new_etag = f'"0x8D{self._c.seq:04d}"'
        self._c.blobs[self._name] = {
            "data": bytes(data),
            "etag": new_etag,
            "content_type": getattr(content_settings, "content_type", None) or "application/octet-stream",
            "metadata": dict(metadata or {}),
        }
        return {"etag": new_etag}

    def delete_blob(self, *, etag: Optional[str] = None, match_condition=None):
        if self._name not in self._c.blobs:
            raise _azure_error(ResourceNotFoundError, "BlobNotFound")
        self._check_condition(etag, match_condition)
        del self._c.blobs[self._name]


class _FakeContainer:
    url = "https://acct.blob.core.windows.net/state"

    def __init__(self, *, exists: bool = True) -> None:
        self.blobs: Dict[str, dict] = {}
        self.uploads: list = []
        self.seq = 0
        self.exists = exists

    def get_blob_client(self, name: str) -> _FakeBlobClient:
        if not self.exists:
            raise _azure_error(ResourceNotFoundError, "ContainerNotFound")
        return _FakeBlobClient(self, name)

    def get_container_properties(self):
        if not self.exists:
            raise _azure_error(ResourceNotFoundError, "ContainerNotFound")
        return {"name": "state"}


@pytest.fixture
def container() -> _FakeContainer:
    return _FakeContainer()


@pytest.fixture
def store(container) -> VersionedStateStore:
    return VersionedStateStore(AzureBlobBackend(container))


def test_get_missing_returns_empty_entry(store):
    assert not store.get("k").exists


def test_write_read_roundtrip_with_content_type(store):
    store.set("tenant||k", {"a": 1}, content_type="application/json")

    entry = store.get("k")
    assert entry.value == b'{"a":1}'
    assert entry.etag.startswith('"0x8D')
    assert entry.content_type == "application/json"


def test_condition_translation(store, container):
    store.set("k", 1)
    etag = store.get("k").etag
    store.set("k", 2, etag=etag)
    store.set("other", 1, concurrency=Concurrency.FIRST_WRITE)

    unconditional, if_match, create_only = container.uploads
    assert unconditional == {"overwrite": True, "etag": None, "match_condition": None}
    assert if_match == {"overwrite": True, "etag": etag, "match_condition": MatchConditions.IfNotModified}
    assert create_only == {"overwrite": False, "etag": None, "match_condition": None}


def test_stale_etag_conflicts(store):
    store.set("k", 1)
    stale = store.get("k").etag
    store.set("k", 2, etag=stale)

    with pytest.raises(VersionConflictError):
        store.set("k", 3, etag=stale)
    with pytest.raises(VersionConflictError):
        store.delete("k", etag=stale)


def test_first_write_on_existing_blob_conflicts(store):
    store.set("k", 1)
    with pytest.raises(VersionConflictError):
        store.set("k", 2, concurrency=Concurrency.FIRST_WRITE)


def test_delete_semantics(store):
    store.delete("missing")
    store.delete("missing", etag='"0x8D0001"')

    store.set("k", 1)
    store.delete("k", etag=store.get("k").etag)
    assert not store.get("k").exists


def test_missing_container_is_an_error():
    store = VersionedStateStore(AzureBlobBackend(_FakeContainer(exists=False)))
    with pytest.raises(StateStoreError) as ei:
        store.get("k")
    assert not isinstance(ei.value, VersionConflictError)

    with pytest.raises(StateStoreError) as ei:
        store.ping()
    assert _FakeContainer.url in str(ei.value)
    assert isinstance(ei.value.__cause__, HttpResponseError)


def test_constructor_requires_one_credential_source():
    with pytest.raises(ValueError):
        AzureBlobBackend(container_name="state")
    with pytest.raises(ValueError):
        AzureBlobBackend(
            container_name="state",
            connection_string="UseDevelopmentStorage=true",
            account_url="https://acct.blob.core.windows.net",
        )
    with pytest.raises(ValueError):
        AzureBlobBackend(connection_string="UseDevelopmentStorage=true")


_SAS_CONNECTION_STRING = (
    "BlobEndpoint=https://acct.blob.core.windows.net/;"
    "SharedAccessSignature=sv=2022-11-02&ss=b&srt=co&sp=rwdl&sig=SECRETSIG"
)


def test_sas_signature_never_reaches_endpoint_or_errors(monkeypatch):
    backend = AzureBlobBackend(container_name="state", connection_string=_SAS_CONNECTION_STRING)
    assert backend.endpoint == "https://acct.blob.core.windows.net/state"

    def _fail():
        raise _azure_error(HttpResponseError, "AuthenticationFailed")

    monkeypatch.setattr(backend._container, "get_container_properties", _fail)
    store = VersionedStateStore(backend)
    with pytest.raises(StateStoreError) as ei:
        store.ping()
    assert "SECRETSIG" not in str(ei.value)
    assert "SECRETSIG" not in ei.value.endpoint


class _RecordingContainerClient:
    created: list = []

    def __init__(self, account_url, container_name, **kwargs) -> None:
        self.url = f"{account_url.rstrip('/')}/{container_name}"
        self.kwargs = kwargs
        _RecordingContainerClient.created.append(("account_url", account_url, container_name, kwargs))

    @classmethod
    def from_connection_string(cls, conn_str, container_name, **kwargs):
        cls.created.append(("connection_string", conn_str, container_name, kwargs))
        return cls("https://acct.blob.core.windows.net", container_name, **kwargs)


@pytest.fixture
def recording_client(monkeypatch):
    _RecordingContainerClient.created = []
    monkeypatch.setattr("blobstate.azure_backend.ContainerClient", _RecordingContainerClient)
    return _RecordingContainerClient


def test_account_url_uses_chained_token_credential(recording_client):
    backend = AzureBlobBackend(
        container_name="state",
        account_url="https://acct.blob.core.windows.net",
        timeout=7.0,
    )

    kind, url, container_name, kwargs = recording_client.created[0]
    assert (kind, url, container_name) == ("account_url", "https://acct.blob.core.windows.net", "state")
    assert isinstance(kwargs["credential"], ChainedTokenCredential)
    assert kwargs["retry_total"] == 0
    assert kwargs["connection_timeout"] == 7.0
    assert kwargs["read_timeout"] == 7.0
    assert backend.endpoint == "https://acct.blob.core.windows.net/state"


def test_connection_string_client_has_no_retries(recording_client):
    AzureBlobBackend(container_name="state", connection_string="UseDevelopmentStorage=true", timeout=3.0)

    kind, conn_str, container_name, kwargs = recording_client.created[0]
    assert (kind, conn_str, container_name) == ("connection_string", "UseDevelopmentStorage=true", "state")
    assert kwargs == {"retry_total": 0, "connection_timeout": 3.0, "read_timeout": 3.0}


def test_download_without_etag_is_an_error(store, container):
    store.set("k", 1)
    container.blobs["k"]["etag"] = None

    with pytest.raises(StateStoreError) as ei:
        store.get("k")
    assert not isinstance(ei.value, VersionConflictError)
