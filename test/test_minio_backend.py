from datetime import datetime, timezone
from types import SimpleNamespace
from typing import Dict, List, Optional

import pytest
from minio.error import S3Error

from core.settings import BackendConfig, Settings, StorageSettings
from gateway.errors import BackendError, NotFoundError
from gateway.service import StorageGateway
from providers.factory import build_providers
from providers.impl.storage_minio import MinioStorageProvider


def _s3_error(code: str) -> S3Error:
    return S3Error(
        response=None,
        code=code,
        message=f"{code} from server",
        resource="/bk1/k",
        request_id="req-1",
        host_id="host-1",
    )


def _obj(name: str) -> SimpleNamespace:
    return SimpleNamespace(
        object_name=name,
        size=3,
        etag='"abc"',
        last_modified=datetime(2024, 1, 1, tzinfo=timezone.utc),
        is_dir=False,
    )


class FakeResponse:
    def __init__(self, body: bytes, headers: Dict[str, str]):
        self._body = body
        self.headers = headers
        self.closed = False
        self.released = False

    def read(self) -> bytes:
        return self._body

    def close(self) -> None:
        self.closed = True

    def release_conn(self) -> None:
        self.released = True


class FakeMinio:
    """Stands in for minio.Minio; records what the provider pulls from it."""

    def __init__(self, keys: Optional[List[str]] = None, failing: Optional[Dict[str, str]] = None):
        self.keys = keys or []
        self.failing = failing or {}
        self.yielded = 0
        self.delete_sent = False
        self.response: Optional[FakeResponse] = None

    def list_objects(self, bucket_name: str, prefix: Optional[str] = None, recursive: bool = False):
        for key in self.keys:
            if prefix and not key.startswith(prefix):
                continue
            self.yielded += 1
            yield _obj(key)

    def remove_objects(self, bucket_name: str, delete_object_list):
        # Lazy like the real client: the request goes out on first iteration.
        self.delete_sent = True
        for d in delete_object_list:
            # public `name` in newer 7.2 releases, `_name` before
            name = getattr(d, "name", None) or d._name
            if name in self.failing:
                yield SimpleNamespace(name=name, code=self.failing[name], message="denied")

    def get_object(self, bucket_name: str, object_name: str):
        if object_name not in self.keys:
            raise _s3_error("NoSuchKey")
        self.response = FakeResponse(
            b"hi!",
            {
                "Content-Type": "text/plain",
                "Content-Length": "3",
                "ETag": '"abc"',
                "Last-Modified": "Mon, 01 Jan 2024 00:00:00 GMT",
                "X-Amz-Meta-Owner": "ana",
                "x-amz-meta-source": "upload",
            },
        )
        return self.response


def _provider(client: FakeMinio) -> MinioStorageProvider:
    return MinioStorageProvider(endpoint="http://minio:9000", access_key="a", secret_key="s", _client=client)


def _gateway(client: FakeMinio) -> StorageGateway:
    settings = Settings(
        backend=BackendConfig(
            region="eu-west-1",
            access_key_id="a",
            secret_access_key="s",
            default_bucket="bk1",
        ),
        storage=StorageSettings(provider="minio", minio_endpoint="http://minio:9000"),
    )
    return StorageGateway(build_providers(settings, storage=_provider(client)))


def test_listing_reads_one_page_and_flags_truncation():
    client = FakeMinio(keys=[f"p/{i:03d}" for i in range(10)])

    page = _provider(client).list_objects("bk1", prefix="p/", max_keys=3)

    assert [o["key"] for o in page["items"]] == ["p/000", "p/001", "p/002"]
    assert page["truncated"] is True
    # one key past the page, then the iterator is abandoned
    assert client.yielded == 4


def test_listing_that_fits_is_not_truncated():
    client = FakeMinio(keys=["p/a", "p/b", "q/c"])

    page = _gateway(client).list_objects(None, "p/")

    assert [o.key for o in page.items] == ["p/a", "p/b"]
    assert page.is_truncated is False


def test_bulk_delete_consumes_lazy_errors_and_splits_results():
    client = FakeMinio(keys=["p/a", "p/b", "p/c"], failing={"p/b": "AccessDenied"})

    result = _gateway(client).delete_all_objects(None, "p/")

    assert client.delete_sent is True
    assert result.deleted == ["p/a", "p/c"]
    assert [(f.key, f.code) for f in result.failures] == [("p/b", "AccessDenied")]
    assert result.ok is False


def test_get_object_extracts_user_metadata():
    client = FakeMinio(keys=["docs/a.txt"])

    obj = _gateway(client).get_object(None, "docs/a.txt")

    assert obj.body == b"hi!"
    assert obj.content_type == "text/plain"
    assert obj.content_length == 3
    assert obj.metadata == {"owner": "ana", "source": "upload"}
    assert obj.last_modified == datetime(2024, 1, 1, tzinfo=timezone.utc)
    assert client.response.closed and client.response.released


def test_error_code_comes_from_s3_error():
    provider = _provider(FakeMinio())

    assert provider.error_code(_s3_error("NoSuchBucket")) == "NoSuchBucket"
    assert provider.error_code(ValueError("invalid bucket name b1")) is None


def test_s3_error_is_normalized_by_gateway():
    with pytest.raises(NotFoundError) as ei:
        _gateway(FakeMinio()).get_object(None, "missing.txt")

    err = ei.value
    assert isinstance(err, BackendError)
    assert err.operation == "get_object"
    assert err.code == "NoSuchKey"
    assert isinstance(err.cause, S3Error)
