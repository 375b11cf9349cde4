from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from typing import List


class ConfigError(RuntimeError):
    pass


def _env(name: str, default: str = "") -> str:
    v = os.getenv(name)
    return default if v is None else str(v)


def _env_int(name: str, default: int) -> int:
    raw = _env(name, "")
    if not raw.strip():
        return default
    try:
        return int(raw)
    except Exception:
        return default


def _clamp(value: int, low: int, high: int) -> int:
    return max(low, min(int(value), high))


# S3 caps presigned URLs at 7 days and list pages at 1000 keys.
MAX_PRESIGN_TTL_SECONDS = 7 * 24 * 3600
DEFAULT_PRESIGN_TTL_SECONDS = 3600
MAX_LIST_KEYS = 1000


def clamp_presign_ttl(seconds: int) -> int:
    return _clamp(seconds, 1, MAX_PRESIGN_TTL_SECONDS)


# ---------------------------------------------------------------------
# Settings models
# ---------------------------------------------------------------------

@dataclass(frozen=True)
class BackendConfig:
    """
    Credentials and target of the storage backend. Every field is required.
    """
    region: str
    access_key_id: str
    secret_access_key: str
    default_bucket: str


@dataclass(frozen=True)
class StorageSettings:
    """
    Storage backend selection and tuning.

    provider:
      - "s3"     -> S3StorageProvider (AWS or any S3-compatible endpoint)
      - "minio"  -> MinioStorageProvider
      - "local"  -> LocalFilesStorageProvider
    """
    provider: str

    # S3 (optional custom endpoint for S3-compatible services)
    endpoint_url: str = ""

    # MinIO
    minio_endpoint: str = "http://minio:9000"

    # Local
    local_dir: str = "./data"
    local_base_url: str = "http://localhost:8000/storage"

    presign_ttl_seconds: int = DEFAULT_PRESIGN_TTL_SECONDS
    list_max_keys: int = MAX_LIST_KEYS


@dataclass(frozen=True)
class Settings:
    backend: BackendConfig
    storage: StorageSettings


# ---------------------------------------------------------------------
# Loaders
# ---------------------------------------------------------------------

_REQUIRED_BACKEND_VARS = (
    "AWS_REGION",
    "AWS_ACCESS_KEY_ID",
    "AWS_SECRET_ACCESS_KEY",
    "AWS_BUCKET_NAME",
)


def _load_backend_config() -> BackendConfig:
    region = (_env("AWS_REGION", "") or _env("AWS_DEFAULT_REGION", "")).strip()
    access_key_id = _env("AWS_ACCESS_KEY_ID", "").strip()
    secret_access_key = _env("AWS_SECRET_ACCESS_KEY", "").strip()
    default_bucket = _env("AWS_BUCKET_NAME", "").strip()

    values = (region, access_key_id, secret_access_key, default_bucket)
    missing: List[str] = [name for name, value in zip(_REQUIRED_BACKEND_VARS, values) if not value]
    if missing:
        raise ConfigError(f"Storage backend is not configured. Missing: {', '.join(missing)}")

    return BackendConfig(
        region=region,
        access_key_id=access_key_id,
        secret_access_key=secret_access_key,
        default_bucket=default_bucket,
    )


def _normalize_storage_provider(raw: str) -> str:
    v = (raw or "").strip().lower()
    if v in ("s3", "aws"):
        return "s3"
    if v in ("minio", "object_store", "objectstore"):
        return "minio"
    if v in ("local", "file", "files", "filesystem"):
        return "local"
    raise ConfigError(f"Unknown storage provider: {raw!r}")


def _load_storage_settings() -> StorageSettings:
    """
    Storage precedence (DO NOT break this):
      1) STORAGE_MODE (deployment/runtime truth)  <-- must win
      2) STORAGE_PROVIDER (legacy override)
      3) default s3
    """
    raw_mode = (_env("STORAGE_MODE", "") or "").strip()
    raw_provider = (_env("STORAGE_PROVIDER", "") or "").strip()
    provider = _normalize_storage_provider(raw_mode or raw_provider or "s3")

    endpoint_url = (_env("S3_ENDPOINT_URL", "") or "").strip().rstrip("/")
    minio_endpoint = (_env("MINIO_ENDPOINT", "") or "http://minio:9000").strip().rstrip("/")

    local_dir = (_env("STORAGE_LOCAL_DIR", "") or "./data").strip()
    local_base_url = (_env("STORAGE_LOCAL_BASE_URL", "") or "http://localhost:8000/storage").strip().rstrip("/")

    presign_ttl_seconds = clamp_presign_ttl(_env_int("S3_PRESIGN_TTL_SECONDS", DEFAULT_PRESIGN_TTL_SECONDS))
    list_max_keys = _clamp(_env_int("S3_LIST_MAX_KEYS", MAX_LIST_KEYS), 1, MAX_LIST_KEYS)

    return StorageSettings(
        provider=provider,
        endpoint_url=endpoint_url,
        minio_endpoint=minio_endpoint,
        local_dir=local_dir,
        local_base_url=local_base_url,
        presign_ttl_seconds=presign_ttl_seconds,
        list_max_keys=list_max_keys,
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings(
        backend=_load_backend_config(),
        storage=_load_storage_settings(),
    )
