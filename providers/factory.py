from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Optional

from core.settings import Settings, get_settings
from .storage import StorageBackend
from providers.impl.storage_local_files import LocalFilesStorageProvider
from providers.impl.storage_minio import MinioStorageProvider
from providers.impl.storage_s3 import S3StorageProvider

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class Providers:
    """
    Central container for the backend client and the configuration it was
    built from. Built once; the storage client is shared by every caller.
    """
    settings: Settings
    storage: StorageBackend

    def get_client(self) -> StorageBackend:
        return self.storage

    def get_default_bucket(self) -> str:
        return self.settings.backend.default_bucket

    def close(self) -> None:
        self.storage.close()


def build_storage_backend(settings: Settings) -> StorageBackend:
    provider = settings.storage.provider
    if provider == "s3":
        return S3StorageProvider.from_settings(settings)
    if provider == "minio":
        return MinioStorageProvider.from_settings(settings)
    if provider == "local":
        return LocalFilesStorageProvider.from_settings(settings)
    raise RuntimeError(f"Unsupported storage provider: {provider!r}")


def build_providers(settings: Optional[Settings] = None, storage: Optional[StorageBackend] = None) -> Providers:
    """
    Build a Providers container without touching the process cache.
    Pass `storage` to inject a ready-made backend (tests, custom hosts).
    """
    settings = settings or get_settings()
    if storage is None:
        storage = build_storage_backend(settings)
    log.info(
        "Storage provider: %s (region=%s, default bucket=%s)",
        settings.storage.provider,
        settings.backend.region,
        settings.backend.default_bucket,
    )
    return Providers(settings=settings, storage=storage)


_cached: Optional[Providers] = None
_lock = threading.Lock()


def get_providers() -> Providers:
    """
    Process-wide providers, built from the environment on first access.
    A missing required setting raises core.settings.ConfigError here.
    """
    global _cached
    if _cached is None:
        with _lock:
            if _cached is None:
                _cached = build_providers(get_settings())
    return _cached


def cached_providers() -> Optional[Providers]:
    """The process-wide Providers if get_providers() has built one, else None."""
    return _cached


def close_providers() -> None:
    global _cached
    with _lock:
        if _cached is not None:
            _cached.close()
            _cached = None
