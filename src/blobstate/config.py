"""
Environment-driven configuration for the state store.

Secrets (connection strings) are read from the environment only and never
appear in repr output.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Optional

from .azure_backend import AzureBlobBackend
from .s3_backend import S3Backend
from .store import VersionedStateStore


logger = logging.getLogger(__name__)

ENV_BACKEND = "STATE_BACKEND"
ENV_BUCKET = "STATE_BUCKET"
ENV_REGION = "AWS_REGION"
ENV_CONTAINER = "STATE_CONTAINER"
ENV_AZURE_CONNECTION_STRING = "AZURE_STORAGE_CONNECTION_STRING"
ENV_AZURE_ACCOUNT_URL = "AZURE_STORAGE_ACCOUNT_URL"
ENV_TIMEOUT = "STATE_REQUEST_TIMEOUT"
ENV_BULK_WORKERS = "STATE_BULK_WORKERS"

BACKEND_S3 = "s3"
BACKEND_AZURE = "azure"

DEFAULT_TIMEOUT = 30.0


class ConfigurationError(RuntimeError):
    """Raised when required configuration is missing or invalid."""


def _getenv(name: str, default: Optional[str] = None) -> Optional[str]:
    val = os.environ.get(name)
    return val if val not in (None, "") else default


def _require(v: Optional[str], what: str) -> str:
    if not v:
        raise ConfigurationError(f"Missing required configuration: {what}")
    return v


def _parse_float(raw: Optional[str], what: str, default: float) -> float:
    if raw is None:
        return default
    try:
        val = float(raw)
    except ValueError as ex:
        raise ConfigurationError(f"{what} must be a number, got {raw!r}") from ex
    if val <= 0:
        raise ConfigurationError(f"{what} must be > 0")
    return val


def _parse_int(raw: Optional[str], what: str, default: int) -> int:
    if raw is None:
        return default
    try:
        val = int(raw)
    except ValueError as ex:
        raise ConfigurationError(f"{what} must be an integer, got {raw!r}") from ex
    if val <= 0:
        raise ConfigurationError(f"{what} must be > 0")
    return val


@dataclass(frozen=True)
class StoreConfig:
    backend: str = BACKEND_S3
    bucket: Optional[str] = None
    region_name: Optional[str] = None
    container: Optional[str] = None
    connection_string: Optional[str] = None
    account_url: Optional[str] = None
    timeout: float = DEFAULT_TIMEOUT
    max_workers: int = 1

    def __post_init__(self) -> None:
        if self.backend == BACKEND_S3:
            _require(self.bucket, ENV_BUCKET)
        elif self.backend == BACKEND_AZURE:
            _require(self.container, ENV_CONTAINER)
            if not (self.connection_string or self.account_url):
                raise ConfigurationError(
                    f"Set {ENV_AZURE_CONNECTION_STRING} or {ENV_AZURE_ACCOUNT_URL} for the azure backend"
                )
            if self.connection_string and self.account_url:
                raise ConfigurationError(
                    f"Set only one of {ENV_AZURE_CONNECTION_STRING} and {ENV_AZURE_ACCOUNT_URL}, not both"
                )
        else:
            raise ConfigurationError(
                f"{ENV_BACKEND} must be '{BACKEND_S3}' or '{BACKEND_AZURE}', got {self.backend!r}"
            )
        if self.timeout <= 0:
            raise ConfigurationError("timeout must be > 0")
        if self.max_workers <= 0:
            raise ConfigurationError("max_workers must be > 0")

    def __repr__(self) -> str:
        """Never expose the connection string."""
        secret = "***REDACTED***" if self.connection_string else None
        return (
            f"StoreConfig(backend={self.backend!r}, bucket={self.bucket!r}, "
            f"region_name={self.region_name!r}, container={self.container!r}, "
            f"connection_string={secret!r}, account_url={self.account_url!r}, "
            f"timeout={self.timeout!r}, max_workers={self.max_workers!r})"
        )

    @classmethod
    def from_env(cls) -> "StoreConfig":
        backend = (_getenv(ENV_BACKEND, BACKEND_S3) or BACKEND_S3).strip().lower()
        return cls(
            backend=backend,
            bucket=_getenv(ENV_BUCKET),
            region_name=_getenv(ENV_REGION),
            container=_getenv(ENV_CONTAINER),
            connection_string=_getenv(ENV_AZURE_CONNECTION_STRING),
            account_url=_getenv(ENV_AZURE_ACCOUNT_URL),
            timeout=_parse_float(_getenv(ENV_TIMEOUT), ENV_TIMEOUT, DEFAULT_TIMEOUT),
            max_workers=_parse_int(_getenv(ENV_BULK_WORKERS), ENV_BULK_WORKERS, 1),
        )


def create_store(config: StoreConfig) -> VersionedStateStore:
    """Build a store and its backend client from `config`."""
    if config.backend == BACKEND_AZURE:
        backend = AzureBlobBackend(
            container_name=config.container,
            connection_string=config.connection_string,
            account_url=config.account_url,
            timeout=config.timeout,
        )
    else:
        backend = S3Backend(
            bucket=config.bucket,
            region_name=config.region_name,
            timeout=config.timeout,
        )
    logger.info("State store configured for %s", backend.endpoint)
    return VersionedStateStore(backend, max_workers=config.max_workers)
