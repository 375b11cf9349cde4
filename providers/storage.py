from __future__ import annotations

from typing import Protocol, runtime_checkable, Optional, Dict, Any, List


# S3 error codes shared by every backend; non-S3 backends report the same codes.
NOT_FOUND_CODES = frozenset({"NoSuchKey", "NoSuchBucket", "NoSuchObject", "NotFound", "404"})
CONFLICT_CODES = frozenset({"BucketAlreadyExists", "BucketAlreadyOwnedByYou", "BucketNotEmpty"})


@runtime_checkable
class StorageBackend(Protocol):
    """
    Object storage client abstraction.

    Results are plain dicts with stable keys so the gateway never sees a
    backend-native response object:

      list_buckets  -> [{"name", "created_at"}]
      list_objects  -> {"items": [{"key", "size", "etag", "last_modified"}], "truncated"}
      get_object    -> {"body", "content_type", "content_length", "etag", "last_modified", "metadata"}
      put_object    -> {"etag"}
      delete_objects -> {"deleted": [key], "errors": [{"key", "code", "message"}]}
    """

    def create_bucket(self, bucket: str) -> None: ...

    def list_buckets(self) -> List[Dict[str, Any]]: ...

    def delete_bucket(self, bucket: str) -> None: ...

    def list_objects(self, bucket: str, prefix: str = "", max_keys: int = 1000) -> Dict[str, Any]: ...

    def get_object(self, bucket: str, key: str) -> Dict[str, Any]: ...

    def put_object(
        self,
        bucket: str,
        key: str,
        data: bytes,
        content_type: str = "application/octet-stream",
        metadata: Optional[Dict[str, str]] = None,
    ) -> Dict[str, Any]: ...

    def delete_object(self, bucket: str, key: str) -> None: ...

    def delete_objects(self, bucket: str, keys: List[str]) -> Dict[str, Any]: ...

    def presign_url(self, method: str, bucket: str, key: str, ttl_seconds: int = 3600) -> str: ...

    def error_code(self, exc: BaseException) -> Optional[str]:
        """Return the S3-style error code carried by a backend exception, if any."""
        ...

    def close(self) -> None: ...
