from __future__ import annotations

import io
import itertools
import logging
from dataclasses import dataclass, field
from datetime import timedelta
from email.utils import parsedate_to_datetime
from typing import Optional, Dict, Any, List

from minio import Minio
from minio.deleteobjects import DeleteObject
from minio.error import S3Error

from core.settings import Settings
from providers.storage import StorageBackend

logger = logging.getLogger(__name__)

_META_PREFIX = "x-amz-meta-"


def _strip_http(endpoint: str) -> str:
    # Minio client expects "host:port" (no scheme)
    endpoint = (endpoint or "").strip()
    endpoint = endpoint.replace("http://", "").replace("https://", "")
    endpoint = endpoint.rstrip("/")
    return endpoint


def _http_date(value: Optional[str]):
    if not value:
        return None
    try:
        return parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None


@dataclass
class MinioStorageProvider(StorageBackend):
    """
    MinIO-backed implementation of StorageBackend.

    Env expected (via core.settings):
      - MINIO_ENDPOINT (e.g. http://minio:9000; https:// turns TLS on)
      - AWS_REGION, AWS_ACCESS_KEY_ID, AWS_SECRET_ACCESS_KEY

    Notes:
      - Buckets are never auto-created.
      - The region is passed to the client so presigning never has to ask
        the server for the bucket location.
    """

    endpoint: str
    access_key: str
    secret_key: str
    region: Optional[str] = None
    secure: bool = False
    _client: Any = field(default=None, repr=False)

    def __post_init__(self) -> None:
        if self._client is not None:
            return

        host = _strip_http(self.endpoint)
        if not host:
            raise RuntimeError("MINIO_ENDPOINT is empty or invalid")

        self._client = Minio(
            endpoint=host,
            access_key=self.access_key,
            secret_key=self.secret_key,
            secure=bool(self.secure),
            region=self.region or None,
        )

    @classmethod
    def from_settings(cls, settings: Settings) -> "MinioStorageProvider":
        endpoint = settings.storage.minio_endpoint
        b = settings.backend
        return cls(
            endpoint=endpoint,
            access_key=b.access_key_id,
            secret_key=b.secret_access_key,
            region=b.region,
            secure=endpoint.lower().startswith("https://"),
        )

    # -----------------------------
    # Buckets
    # -----------------------------

    def create_bucket(self, bucket: str) -> None:
        self._client.make_bucket(bucket_name=bucket, location=self.region or None)

    def list_buckets(self) -> List[Dict[str, Any]]:
        return [
            {"name": b.name, "created_at": b.creation_date}
            for b in self._client.list_buckets()
        ]

    def delete_bucket(self, bucket: str) -> None:
        self._client.remove_bucket(bucket_name=bucket)

    # -----------------------------
    # Objects
    # -----------------------------

    def list_objects(self, bucket: str, prefix: str = "", max_keys: int = 1000) -> Dict[str, Any]:
        """
        One page of at most max_keys keys.

        The client's iterator pages on its own and exposes no truncation flag,
        so one key past max_keys is read to set `truncated`. When max_keys
        equals the server page size (1000) that extra key costs a second
        ListObjects request.
        """
        objects = self._client.list_objects(
            bucket_name=bucket,
            prefix=prefix or None,
            recursive=True,
        )
        page = list(itertools.islice(objects, max_keys + 1))
        truncated = len(page) > max_keys
        items = [
            {
                "key": o.object_name,
                "size": o.size,
                "etag": o.etag,
                "last_modified": o.last_modified,
            }
            for o in page[:max_keys]
            if not o.is_dir
        ]
        return {"items": items, "truncated": truncated}

    def get_object(self, bucket: str, key: str) -> Dict[str, Any]:
        resp = self._client.get_object(bucket_name=bucket, object_name=key)
        try:
            data = resp.read()
            headers = resp.headers
        finally:
            resp.close()
            resp.release_conn()

        metadata: Dict[str, str] = {}
        for name, value in headers.items():
            lname = name.lower()
            if lname.startswith(_META_PREFIX):
                metadata[lname[len(_META_PREFIX):]] = value

        length = headers.get("Content-Length")
        return {
            "body": data,
            "content_type": headers.get("Content-Type"),
            "content_length": int(length) if length else len(data),
            "etag": headers.get("ETag"),
            "last_modified": _http_date(headers.get("Last-Modified")),
            "metadata": metadata,
        }

    def put_object(
        self,
        bucket: str,
        key: str,
        data: bytes,
        content_type: str = "application/octet-stream",
        metadata: Optional[Dict[str, str]] = None,
    ) -> Dict[str, Any]:
        if data is None:
            data = b""

        # metadata headers must be strings
        meta: Dict[str, str] = {}
        if metadata:
            for k, v in metadata.items():
                if v is None:
                    continue
                meta[str(k)] = str(v)

        result = self._client.put_object(
            bucket_name=bucket,
            object_name=key,
            data=io.BytesIO(data),
            length=len(data),
            content_type=content_type or "application/octet-stream",
            metadata=meta or None,
        )
        return {"etag": result.etag}

    def delete_object(self, bucket: str, key: str) -> None:
        self._client.remove_object(bucket_name=bucket, object_name=key)

    def delete_objects(self, bucket: str, keys: List[str]) -> Dict[str, Any]:
        # remove_objects is lazy: nothing is sent until the error iterator is consumed
        failures = self._client.remove_objects(
            bucket_name=bucket,
            delete_object_list=[DeleteObject(k) for k in keys],
        )
        errors = [
            {"key": e.name, "code": e.code, "message": e.message}
            for e in failures
        ]
        failed = {e["key"] for e in errors}
        if errors:
            logger.warning("[MinIO] bulk delete bucket=%s partial failures=%s", bucket, len(errors))
        return {"deleted": [k for k in keys if k not in failed], "errors": errors}

    # -----------------------------
    # Signed URLs
    # -----------------------------

    def presign_url(self, method: str, bucket: str, key: str, ttl_seconds: int = 3600) -> str:
        expires = timedelta(seconds=max(1, int(ttl_seconds)))
        m = (method or "").upper()
        if m == "PUT":
            return self._client.presigned_put_object(bucket_name=bucket, object_name=key, expires=expires)
        if m == "GET":
            return self._client.presigned_get_object(bucket_name=bucket, object_name=key, expires=expires)
        raise ValueError(f"Unsupported presign method: {method!r}")

    def error_code(self, exc: BaseException) -> Optional[str]:
        if isinstance(exc, S3Error):
            return getattr(exc, "code", None)
        return None

    def close(self) -> None:
        # urllib3 pool is owned by the client and released with it
        return None
