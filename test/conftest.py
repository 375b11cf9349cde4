import sys
from pathlib import Path

import pytest

# Repo root holds the top-level packages (core, providers, gateway) and schemas.py.
REPO_ROOT = Path(__file__).resolve().parents[1]

if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from core.settings import get_settings  # noqa: E402
from gateway.service import StorageGateway  # noqa: E402
from providers.factory import build_providers  # noqa: E402
from providers.impl.storage_local_files import LocalFilesStorageProvider  # noqa: E402


@pytest.fixture
def storage_env(monkeypatch, tmp_path):
    """Complete backend configuration pointing the local provider at tmp_path."""
    monkeypatch.setenv("AWS_REGION", "us-east-1")
    monkeypatch.setenv("AWS_ACCESS_KEY_ID", "AKIATESTKEY")
    monkeypatch.setenv("AWS_SECRET_ACCESS_KEY", "test-secret")
    monkeypatch.setenv("AWS_BUCKET_NAME", "default-bucket")
    monkeypatch.setenv("STORAGE_MODE", "local")
    monkeypatch.delenv("STORAGE_PROVIDER", raising=False)
    monkeypatch.delenv("AWS_DEFAULT_REGION", raising=False)
    monkeypatch.delenv("S3_PRESIGN_TTL_SECONDS", raising=False)
    monkeypatch.delenv("S3_LIST_MAX_KEYS", raising=False)
    monkeypatch.setenv("STORAGE_LOCAL_DIR", str(tmp_path / "data"))

    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def local_backend(storage_env) -> LocalFilesStorageProvider:
    return LocalFilesStorageProvider.from_settings(get_settings())


@pytest.fixture
def gateway(local_backend) -> StorageGateway:
    return StorageGateway(build_providers(get_settings(), storage=local_backend))
