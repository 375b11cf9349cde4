from __future__ import annotations

import logging
from typing import Optional, Dict, Any, List

import boto3
from botocore.config import Config
from botocore.exceptions import ClientError

from core.settings import Settings
from providers.storage import StorageBackend

logger = logging.getLogger(__name__)

_PRESIGN_METHODS = {
    "PUT": "put_object",
    "GET": "get_object",
}


class S3StorageProvider(StorageBackend):
    """
    AWS S3 (or S3-compatible) StorageBackend.

    Credentials are passed explicitly from BackendConfig; boto3's own
    credential chain is not consulted.

    Env (via core.settings):
      - AWS_REGION, AWS_ACCESS_KEY_ID, AWS_SECRET_ACCESS_KEY
      - S3_ENDPOINT_URL (optional, e.g. R2 / Wasabi / localstack)
    """

    def __init__(
        self,
        region: str,
        access_key_id: str,
        secret_access_key: str,
        endpoint_url: Optional[str] = None,
        client: Any = None,
    ):
        self.region = (region or "").strip()
        self.endpoint_url = (endpoint_url or "").strip() or None

        if client is None:
            # Retries are botocore's standard mode; nothing is retried here.
            cfg = Config(
                signature_version="s3v4",
                retries={"mode": "standard"},
                region_name=self.region or None,
            )
            client = boto3.client(
                "s3",
                region_name=self.region or None,
                endpoint_url=self.endpoint_url,
                aws_access_key_id=access_key_id,
                aws_secret_access_key=secret_access_key,
                config=cfg,
            )
        self.s3 = client

    @classmethod
    def from_settings(cls, settings: Settings) -> "S3StorageProvider":
        b = settings.backend
        return cls(
            region=b.region,
            access_key_id=b.access_key_id,
            secret_access_key=b.secret_access_key,
            endpoint_url=settings.storage.endpoint_url or None,
        )

    # -----------------------------
    # Buckets
    # -----------------------------

    def create_bucket(self, bucket: str) -> None:
        kwargs: Dict[str, Any] = {"Bucket": bucket}
        # us-east-1 rejects an explicit LocationConstraint
        if self.region and self.region != "us-east-1" and not self.endpoint_url:
            kwargs["CreateBucketConfiguration"] = {"LocationConstraint": self.region}
        self.s3.create_bucket(**kwargs)

    def list_buckets(self) -> List[Dict[str, Any]]:
        resp = self.s3.list_buckets()
        return [
            {"name": b.get("Name"), "created_at": b.get("CreationDate")}
            for b in resp.get("Buckets") or []
        ]

    def delete_bucket(self, bucket: str) -> None:
        self.s3.delete_bucket(Bucket=bucket)

    # -----------------------------
    # Objects
    # -----------------------------

    def list_objects(self, bucket: str, prefix: str = "", max_keys: int = 1000) -> Dict[str, Any]:
        kwargs: Dict[str, Any] = {"Bucket": bucket, "MaxKeys": max_keys}
        if prefix:
            kwargs["Prefix"] = prefix
        resp = self.s3.list_objects_v2(**kwargs)
        items = [
            {
                "key": c.get("Key"),
                "size": c.get("Size"),
                "etag": c.get("ETag"),
                "last_modified": c.get("LastModified"),
            }
            for c in resp.get("Contents") or []
        ]
        return {"items": items, "truncated": bool(resp.get("IsTruncated"))}

    def get_object(self, bucket: str, key: str) -> Dict[str, Any]:
        resp = self.s3.get_object(Bucket=bucket, Key=key)
        body = resp["Body"]
        try:
            data = body.read()
        finally:
            body.close()
        return {
            "body": data,
            "content_type": resp.get("ContentType"),
            "content_length": resp.get("ContentLength"),
            "etag": resp.get("ETag"),
            "last_modified": resp.get("LastModified"),
            "metadata": resp.get("Metadata") or {},
        }

    def put_object(
        self,
        bucket: str,
        key: str,
        data: bytes,
        content_type: str = "application/octet-stream",
        metadata: Optional[Dict[str, str]] = None,
    ) -> Dict[str, Any]:
        kwargs: Dict[str, Any] = {
            "Bucket": bucket,
            "Key": key,
            "Body": data,
            "ContentType": content_type or "application/octet-stream",
        }
        if metadata:
            # S3 metadata keys must be strings
            kwargs["Metadata"] = {str(kk): str(vv) for kk, vv in metadata.items()}
        resp = self.s3.put_object(**kwargs)
        return {"etag": resp.get("ETag")}

    def delete_object(self, bucket: str, key: str) -> None:
        self.s3.delete_object(Bucket=bucket, Key=key)

    def delete_objects(self, bucket: str, keys: List[str]) -> Dict[str, Any]:
        resp = self.s3.delete_objects(
            Bucket=bucket,
            Delete={"Objects": [{"Key": k} for k in keys], "Quiet": False},
        )
        deleted = [d.get("Key") for d in resp.get("Deleted") or []]
        errors = [
            {"key": e.get("Key"), "code": e.get("Code"), "message": e.get("Message")}
            for e in resp.get("Errors") or []
        ]
        if errors:
            logger.warning("[S3] bulk delete bucket=%s partial failures=%s", bucket, len(errors))
        return {"deleted": deleted, "errors": errors}

    # -----------------------------
    # Signed URLs
    # -----------------------------

    def presign_url(self, method: str, bucket: str, key: str, ttl_seconds: int = 3600) -> str:
        client_method = _PRESIGN_METHODS.get((method or "").upper())
        if client_method is None:
            raise ValueError(f"Unsupported presign method: {method!r}")
        return self.s3.generate_presigned_url(
            ClientMethod=client_method,
            Params={"Bucket": bucket, "Key": key},
            ExpiresIn=max(1, int(ttl_seconds)),
        )

    def error_code(self, exc: BaseException) -> Optional[str]:
        if isinstance(exc, ClientError):
            code = (exc.response.get("Error") or {}).get("Code")
            return str(code) if code is not None else None
        return None

    def close(self) -> None:
        close = getattr(self.s3, "close", None)
        if callable(close):
            close()
