from typing import Any, Dict, List, Optional

import pytest

from core.settings import BackendConfig, Settings, StorageSettings
from gateway.errors import BackendError, ConflictError, EmptyResultError, NotFoundError, error_class_for
from gateway.service import StorageGateway
from providers.factory import build_providers
from providers.storage import StorageBackend


class VendorError(Exception):
    def __init__(self, code: Optional[str], message: str):
        self.vendor_code = code
        super().__init__(message)


class FakeBackend:
    """Every call fails with the configured vendor exception."""

    def __init__(self, exc: Exception):
        self.exc = exc
        self.calls: List[str] = []

    def _fail(self, name: str):
        self.calls.append(name)
        raise self.exc

    def create_bucket(self, bucket: str) -> None:
        self._fail("create_bucket")

    def list_buckets(self) -> List[Dict[str, Any]]:
        self._fail("list_buckets")

    def delete_bucket(self, bucket: str) -> None:
        self._fail("delete_bucket")

    def list_objects(self, bucket: str, prefix: str = "", max_keys: int = 1000) -> Dict[str, Any]:
        self._fail("list_objects")

    def get_object(self, bucket: str, key: str) -> Dict[str, Any]:
        self._fail("get_object")

    def put_object(self, bucket, key, data, content_type="application/octet-stream", metadata=None):
        self._fail("put_object")

    def delete_object(self, bucket: str, key: str) -> None:
        self._fail("delete_object")

    def delete_objects(self, bucket: str, keys: List[str]) -> Dict[str, Any]:
        self._fail("delete_objects")

    def presign_url(self, method: str, bucket: str, key: str, ttl_seconds: int = 3600) -> str:
        self._fail("presign_url")

    def error_code(self, exc: BaseException) -> Optional[str]:
        return getattr(exc, "vendor_code", None)

    def close(self) -> None:
        return None


class EmptyListingBackend(FakeBackend):
    def list_objects(self, bucket: str, prefix: str = "", max_keys: int = 1000) -> Dict[str, Any]:
        self.calls.append("list_objects")
        return {"items": [], "truncated": False}


SETTINGS = Settings(
    backend=BackendConfig(
        region="us-east-1",
        access_key_id="AKIATESTKEY",
        secret_access_key="test-secret",
        default_bucket="default-bucket",
    ),
    storage=StorageSettings(provider="s3"),
)


def _gateway(backend) -> StorageGateway:
    return StorageGateway(build_providers(SETTINGS, storage=backend))


def test_fake_backend_satisfies_protocol():
    assert isinstance(FakeBackend(RuntimeError("x")), StorageBackend)


@pytest.mark.parametrize(
    "code, expected",
    [
        ("NoSuchKey", NotFoundError),
        ("NoSuchBucket", NotFoundError),
        ("404", NotFoundError),
        ("BucketAlreadyExists", ConflictError),
        ("BucketNotEmpty", ConflictError),
        ("SlowDown", BackendError),
        (None, BackendError),
    ],
)
def test_error_codes_map_to_taxonomy(code, expected):
    assert error_class_for(code) is expected


@pytest.mark.parametrize(
    "call, operation",
    [
        (lambda gw: gw.create_bucket("b1"), "create_bucket"),
        (lambda gw: gw.list_buckets(), "list_buckets"),
        (lambda gw: gw.delete_bucket("b1"), "delete_bucket"),
        (lambda gw: gw.list_objects("b1", "docs"), "list_objects"),
        (lambda gw: gw.get_object("b1", "docs/a.txt"), "get_object"),
        (lambda gw: gw.delete_object("b1", "docs/a.txt"), "delete_object"),
        (lambda gw: gw.delete_all_objects("b1", "docs"), "delete_all_objects"),
        (lambda gw: gw.issue_upload_url("b1", "docs/a.txt"), "issue_upload_url"),
        (lambda gw: gw.issue_download_url("b1", "docs/a.txt"), "issue_download_url"),
    ],
)
def test_vendor_exceptions_never_escape(call, operation):
    vendor = VendorError("InternalError", "We encountered an internal error")
    gw = _gateway(FakeBackend(vendor))

    with pytest.raises(BackendError) as exc:
        call(gw)

    err = exc.value
    assert not isinstance(err, VendorError)
    assert err.operation == operation
    assert err.cause is vendor
    assert err.__cause__ is vendor
    assert err.message == "We encountered an internal error"
    assert str(err).startswith(f"{operation} failed")


def test_message_falls_back_to_exception_name():
    gw = _gateway(FakeBackend(TimeoutError()))
    with pytest.raises(BackendError) as exc:
        gw.list_buckets()
    assert exc.value.message == "TimeoutError"


def test_failed_call_is_not_retried():
    backend = FakeBackend(VendorError("SlowDown", "Please reduce your request rate"))
    gw = _gateway(backend)
    with pytest.raises(BackendError):
        gw.get_object("b1", "k")
    assert backend.calls == ["get_object"]


def test_empty_listing_stops_before_bulk_delete():
    backend = EmptyListingBackend(RuntimeError("unused"))
    gw = _gateway(backend)

    with pytest.raises(EmptyResultError) as exc:
        gw.delete_all_objects()
    assert exc.value.bucket == "default-bucket"
    assert exc.value.cause is None
    assert backend.calls == ["list_objects"]
