from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from typing import Iterator, List, Optional

from core.settings import clamp_presign_ttl
from gateway.errors import BackendError, EmptyResultError, error_class_for
from providers.factory import Providers
from schemas import (
    BucketRef,
    BulkDeleteResult,
    DeleteFailure,
    ListingPage,
    ObjectContent,
    ObjectRef,
    SignedUrlGrant,
    UploadPayload,
)

log = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class StorageGateway:
    """
    Stateless bucket/object/signed-URL operations over one backend client.

    Each operation makes a single backend call (bulk delete makes two: list,
    then delete) and either returns its result or raises a BackendError
    subclass naming the operation. Backend-native exceptions never escape;
    the original is kept as `cause` and chained.

    Object operations take bucket=None to mean the configured default bucket.
    """

    def __init__(self, providers: Providers):
        self._providers = providers
        self._client = providers.get_client()
        self._default_bucket = providers.get_default_bucket()
        self._ttl_seconds = providers.settings.storage.presign_ttl_seconds
        self._max_keys = providers.settings.storage.list_max_keys

    @property
    def default_bucket(self) -> str:
        return self._default_bucket

    def _bucket(self, bucket: Optional[str]) -> str:
        return bucket or self._default_bucket

    @contextmanager
    def _backend_call(self, operation: str, bucket: Optional[str] = None, key: Optional[str] = None) -> Iterator[None]:
        try:
            yield
        except BackendError:
            raise
        except Exception as exc:
            code = self._client.error_code(exc)
            err_cls = error_class_for(code)
            message = str(exc) or exc.__class__.__name__
            log.warning("[gateway] %s failed bucket=%s key=%s code=%s: %s", operation, bucket, key, code, message)
            raise err_cls(operation, message, cause=exc, bucket=bucket, key=key, code=code) from exc

    # -----------------------------
    # Buckets
    # -----------------------------

    def create_bucket(self, name: str) -> BucketRef:
        with self._backend_call("create_bucket", bucket=name):
            self._client.create_bucket(name)
        log.info("[gateway] created bucket=%s", name)
        return BucketRef(name=name)

    def list_buckets(self) -> List[BucketRef]:
        with self._backend_call("list_buckets"):
            raw = self._client.list_buckets()
        return [BucketRef(name=b["name"], created_at=b.get("created_at")) for b in raw]

    def delete_bucket(self, name: str) -> None:
        with self._backend_call("delete_bucket", bucket=name):
            self._client.delete_bucket(name)
        log.info("[gateway] deleted bucket=%s", name)

    # -----------------------------
    # Objects
    # -----------------------------

    def list_objects(self, bucket: Optional[str] = None, prefix: str = "") -> ListingPage:
        bucket = self._bucket(bucket)
        with self._backend_call("list_objects", bucket=bucket, key=prefix or None):
            raw = self._client.list_objects(bucket, prefix=prefix or "", max_keys=self._max_keys)

        page = ListingPage(
            bucket=bucket,
            prefix=prefix or None,
            items=[
                ObjectRef(
                    bucket=bucket,
                    key=item["key"],
                    size=item.get("size"),
                    etag=item.get("etag"),
                    last_modified=item.get("last_modified"),
                )
                for item in raw["items"]
            ],
            is_truncated=bool(raw.get("truncated")),
        )
        if page.is_truncated:
            log.info("[gateway] listing bucket=%s prefix=%r truncated at %s keys", bucket, prefix, len(page.items))
        log.debug("[gateway] listed bucket=%s prefix=%r count=%s", bucket, prefix, len(page.items))
        return page

    def get_object(self, bucket: Optional[str], key: str) -> ObjectContent:
        bucket = self._bucket(bucket)
        with self._backend_call("get_object", bucket=bucket, key=key):
            raw = self._client.get_object(bucket, key)
        log.debug("[gateway] fetched bucket=%s key=%s bytes=%s", bucket, key, len(raw["body"]))
        return ObjectContent(bucket=bucket, key=key, **raw)

    def put_object(self, bucket: Optional[str], key_prefix: str, payload: UploadPayload) -> ObjectRef:
        bucket = self._bucket(bucket)
        key = f"{key_prefix}/{payload.original_name}"
        with self._backend_call("put_object", bucket=bucket, key=key):
            raw = self._client.put_object(
                bucket,
                key,
                payload.content,
                content_type=payload.content_type,
                metadata=payload.metadata or None,
            )
        log.info("[gateway] uploaded bucket=%s key=%s bytes=%s", bucket, key, len(payload.content))
        return ObjectRef(bucket=bucket, key=key, size=len(payload.content), etag=raw.get("etag"))

    def delete_object(self, bucket: Optional[str], key: str) -> None:
        bucket = self._bucket(bucket)
        with self._backend_call("delete_object", bucket=bucket, key=key):
            self._client.delete_object(bucket, key)
        log.info("[gateway] deleted bucket=%s key=%s", bucket, key)

    def delete_all_objects(self, bucket: Optional[str] = None, prefix: str = "") -> BulkDeleteResult:
        """
        Delete every key in one listing page under `prefix` with a single
        bulk request.

        An empty listing raises EmptyResultError instead of returning a zero
        count. Per-key failures reported by the backend come back in
        `failures`; nothing is retried.
        """
        bucket = self._bucket(bucket)
        with self._backend_call("delete_all_objects", bucket=bucket, key=prefix or None):
            listing = self._client.list_objects(bucket, prefix=prefix or "", max_keys=self._max_keys)
            keys = [item["key"] for item in listing["items"]]
            if not keys:
                message = "No objects found under prefix" if prefix else "Bucket empty"
                raise EmptyResultError("delete_all_objects", message, bucket=bucket, key=prefix or None)
            raw = self._client.delete_objects(bucket, keys)

        result = BulkDeleteResult(
            bucket=bucket,
            prefix=prefix or None,
            deleted=raw.get("deleted") or [],
            failures=[DeleteFailure(**e) for e in raw.get("errors") or []],
        )
        if result.failures:
            log.warning(
                "[gateway] bulk delete bucket=%s prefix=%r deleted=%s failed=%s",
                bucket, prefix, result.count, len(result.failures),
            )
        else:
            log.info("[gateway] bulk delete bucket=%s prefix=%r deleted=%s", bucket, prefix, result.count)
        return result

    # -----------------------------
    # Signed URLs
    # -----------------------------

    def _issue(self, operation: str, method: str, bucket: Optional[str], key: str, expires_in: Optional[int]) -> SignedUrlGrant:
        bucket = self._bucket(bucket)
        ttl = clamp_presign_ttl(expires_in) if expires_in is not None else self._ttl_seconds
        issued_at = _utcnow()
        with self._backend_call(operation, bucket=bucket, key=key):
            url = self._client.presign_url(method, bucket, key, ttl_seconds=ttl)
        log.debug("[gateway] issued %s url bucket=%s key=%s ttl=%s", method, bucket, key, ttl)
        return SignedUrlGrant(
            url=url,
            method=method,
            bucket=bucket,
            key=key,
            expires_at=issued_at + timedelta(seconds=ttl),
        )

    def issue_upload_url(self, bucket: Optional[str], key: str, expires_in: Optional[int] = None) -> SignedUrlGrant:
        return self._issue("issue_upload_url", "PUT", bucket, key, expires_in)

    def issue_download_url(self, bucket: Optional[str], key: str, expires_in: Optional[int] = None) -> SignedUrlGrant:
        return self._issue("issue_download_url", "GET", bucket, key, expires_in)
