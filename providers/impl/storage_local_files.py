from __future__ import annotations

import base64
import hashlib
import hmac
import json
import logging
import os
import re
import time
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional
from urllib.parse import parse_qs, quote, unquote, urlencode, urlparse

from core.settings import Settings
from providers.storage import StorageBackend

logger = logging.getLogger(__name__)

_BUCKET_NAME_RE = re.compile(r"^[a-z0-9](?:[a-z0-9.-]{0,61}[a-z0-9])?$")
_OBJ_SUFFIX = ".obj"
_META_SUFFIX = ".json"
_TMP_PREFIX = ".tmp-"
# quote() never emits "%" followed by a non-hex char, so hashed names cannot collide
_HASHED_PREFIX = "%h-"
_MAX_FILE_NAME = 255
_MAX_KEY_BYTES = 1024


class LocalStorageError(Exception):
    """Local backend failure tagged with the S3 error code it stands in for."""

    def __init__(self, code: str, message: str):
        self.code = code
        self.message = message
        super().__init__(f"{code}: {message}")


def _b64url(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).decode("ascii").rstrip("=")


def _mtime(path: Path) -> datetime:
    return _from_ts(path.stat().st_mtime)


def _from_ts(ts: float) -> datetime:
    return datetime.fromtimestamp(ts, tz=timezone.utc)


def _atomic_write(target: Path, data: bytes) -> None:
    tmp = target.with_name(f"{_TMP_PREFIX}{uuid.uuid4().hex}")
    try:
        with open(tmp, "wb") as f:
            f.write(data)
        os.replace(tmp, target)
    except BaseException:
        tmp.unlink(missing_ok=True)
        raise


class LocalFilesStorageProvider(StorageBackend):
    """
    Filesystem StorageBackend for local development and tests.

    Layout: {root}/{bucket}/{percent-encoded key}.obj plus a .json sidecar
    holding the key, content type, etag and user metadata. Keys are flattened
    so "docs" and "docs/a.txt" can coexist like they do on S3. Keys whose
    encoded name would not fit in one file name are stored under a sha256
    name instead, and listing reads their key back from the sidecar.

    Signed URLs carry an HMAC-SHA256 over "METHOD|bucket|key|expires" keyed
    by the secret access key; redeem() plays the role of the server.
    """

    def __init__(self, root_dir: str, secret: str, base_url: str = "http://localhost:8000/storage"):
        if not secret:
            raise RuntimeError("A signing secret is required for the local storage provider")
        self.root = Path(root_dir)
        self.secret = secret
        self.base_url = (base_url or "").rstrip("/")

    @classmethod
    def from_settings(cls, settings: Settings) -> "LocalFilesStorageProvider":
        return cls(
            root_dir=settings.storage.local_dir,
            secret=settings.backend.secret_access_key,
            base_url=settings.storage.local_base_url,
        )

    # -----------------------------
    # Paths
    # -----------------------------

    def _bucket_dir(self, bucket: str) -> Path:
        if not _BUCKET_NAME_RE.match(bucket or "") or ".." in bucket:
            raise LocalStorageError("InvalidBucketName", f"The specified bucket is not valid: {bucket!r}")
        return self.root / bucket

    def _existing_bucket(self, bucket: str) -> Path:
        path = self._bucket_dir(bucket)
        if not path.is_dir():
            raise LocalStorageError("NoSuchBucket", f"The specified bucket does not exist: {bucket}")
        return path

    @staticmethod
    def _object_paths(bucket_dir: Path, key: str):
        if not key:
            raise LocalStorageError("InvalidArgument", "Object key must not be empty")
        if len(key.encode("utf-8")) > _MAX_KEY_BYTES:
            raise LocalStorageError("KeyTooLongError", f"Your key is too long: {len(key.encode('utf-8'))} bytes")
        name = quote(key, safe="")
        if len(name) + len(_META_SUFFIX) > _MAX_FILE_NAME:
            name = _HASHED_PREFIX + hashlib.sha256(key.encode("utf-8")).hexdigest()
        return bucket_dir / f"{name}{_OBJ_SUFFIX}", bucket_dir / f"{name}{_META_SUFFIX}"

    # -----------------------------
    # Buckets
    # -----------------------------

    def create_bucket(self, bucket: str) -> None:
        path = self._bucket_dir(bucket)
        self.root.mkdir(parents=True, exist_ok=True)
        try:
            path.mkdir()
        except FileExistsError:
            raise LocalStorageError(
                "BucketAlreadyOwnedByYou", f"Bucket already exists: {bucket}"
            ) from None
        logger.info("[local] created bucket dir=%s", path)

    def list_buckets(self) -> List[Dict[str, Any]]:
        if not self.root.is_dir():
            return []
        return [
            {"name": p.name, "created_at": _mtime(p)}
            for p in sorted(self.root.iterdir(), key=lambda p: p.name)
            if p.is_dir() and _BUCKET_NAME_RE.match(p.name)
        ]

    def delete_bucket(self, bucket: str) -> None:
        path = self._existing_bucket(bucket)
        entries = list(path.iterdir())
        if any(e.name.endswith(_OBJ_SUFFIX) for e in entries):
            raise LocalStorageError("BucketNotEmpty", f"The bucket you tried to delete is not empty: {bucket}")
        for e in entries:
            e.unlink(missing_ok=True)
        path.rmdir()

    # -----------------------------
    # Objects
    # -----------------------------

    def list_objects(self, bucket: str, prefix: str = "", max_keys: int = 1000) -> Dict[str, Any]:
        path = self._existing_bucket(bucket)
        matches = []
        for entry in path.iterdir():
            if not entry.name.endswith(_OBJ_SUFFIX) or entry.name.startswith(_TMP_PREFIX):
                continue
            stem = entry.name[: -len(_OBJ_SUFFIX)]
            meta_path = entry.with_name(stem + _META_SUFFIX)
            if stem.startswith(_HASHED_PREFIX):
                key = self._read_meta(meta_path).get("key")
                if not key:
                    continue
            else:
                key = unquote(stem)
            if prefix and not key.startswith(prefix):
                continue
            matches.append((key, entry, meta_path))

        # S3 lists keys in UTF-8 binary order
        matches.sort(key=lambda m: m[0].encode("utf-8"))
        items = []
        for key, entry, meta_path in matches:
            if len(items) > max_keys:
                break
            # Objects deleted since the directory scan are simply not listed.
            try:
                st = entry.stat()
            except FileNotFoundError:
                continue
            meta = self._read_meta(meta_path)
            items.append(
                {
                    "key": key,
                    "size": st.st_size,
                    "etag": meta.get("etag"),
                    "last_modified": _from_ts(st.st_mtime),
                }
            )
        return {"items": items[:max_keys], "truncated": len(items) > max_keys}

    @staticmethod
    def _read_meta(path: Path) -> Dict[str, Any]:
        try:
            with open(path, "r", encoding="utf-8") as f:
                return json.load(f)
        except FileNotFoundError:
            return {}

    def get_object(self, bucket: str, key: str) -> Dict[str, Any]:
        obj_path, meta_path = self._object_paths(self._existing_bucket(bucket), key)
        try:
            with open(obj_path, "rb") as f:
                data = f.read()
                mtime = os.fstat(f.fileno()).st_mtime
        except FileNotFoundError:
            raise LocalStorageError("NoSuchKey", f"The specified key does not exist: {key}") from None

        meta = self._read_meta(meta_path)
        return {
            "body": data,
            "content_type": meta.get("content_type"),
            "content_length": len(data),
            "etag": meta.get("etag"),
            "last_modified": _from_ts(mtime),
            "metadata": meta.get("metadata") or {},
        }

    def put_object(
        self,
        bucket: str,
        key: str,
        data: bytes,
        content_type: str = "application/octet-stream",
        metadata: Optional[Dict[str, str]] = None,
    ) -> Dict[str, Any]:
        obj_path, meta_path = self._object_paths(self._existing_bucket(bucket), key)
        data = data or b""
        etag = f'"{hashlib.md5(data).hexdigest()}"'
        meta = {
            "key": key,
            "content_type": content_type or "application/octet-stream",
            "etag": etag,
            "metadata": {str(k): str(v) for k, v in (metadata or {}).items() if v is not None},
        }
        _atomic_write(meta_path, json.dumps(meta).encode("utf-8"))
        _atomic_write(obj_path, data)
        return {"etag": etag}

    def delete_object(self, bucket: str, key: str) -> None:
        obj_path, meta_path = self._object_paths(self._existing_bucket(bucket), key)
        obj_path.unlink(missing_ok=True)
        meta_path.unlink(missing_ok=True)

    def delete_objects(self, bucket: str, keys: List[str]) -> Dict[str, Any]:
        bucket_dir = self._existing_bucket(bucket)
        deleted: List[str] = []
        errors: List[Dict[str, Any]] = []
        for key in keys:
            try:
                obj_path, meta_path = self._object_paths(bucket_dir, key)
                obj_path.unlink(missing_ok=True)
                meta_path.unlink(missing_ok=True)
                deleted.append(key)
            except LocalStorageError as e:
                errors.append({"key": key, "code": e.code, "message": e.message})
            except OSError as e:
                errors.append({"key": key, "code": "InternalError", "message": str(e)})
        return {"deleted": deleted, "errors": errors}

    # -----------------------------
    # Signed URLs
    # -----------------------------

    def _signature(self, method: str, bucket: str, key: str, expires: int) -> str:
        msg = f"{method}|{bucket}|{key}|{int(expires)}".encode("utf-8")
        return _b64url(hmac.new(self.secret.encode("utf-8"), msg, hashlib.sha256).digest())

    def presign_url(self, method: str, bucket: str, key: str, ttl_seconds: int = 3600) -> str:
        m = (method or "").upper()
        if m not in ("PUT", "GET"):
            raise ValueError(f"Unsupported presign method: {method!r}")
        self._bucket_dir(bucket)
        expires = int(time.time()) + max(1, int(ttl_seconds))
        q = {
            "X-Method": m,
            "X-Expires": str(expires),
            "X-Signature": self._signature(m, bucket, key, expires),
        }
        return f"{self.base_url}/{quote(bucket, safe='')}/{quote(key, safe='/')}?{urlencode(q)}"

    def redeem(self, method: str, url: str, data: Optional[bytes] = None, now: Optional[float] = None) -> Dict[str, Any]:
        """
        Execute the request a signed URL authorizes, the way the storage
        server would. Returns the get_object dict for GET, put_object dict for PUT.
        """
        parsed = urlparse(url)
        base_path = urlparse(self.base_url).path.rstrip("/")
        if not parsed.path.startswith(base_path + "/"):
            raise LocalStorageError("MalformedURL", "URL does not belong to this storage")
        bucket_part, _, key_part = parsed.path[len(base_path) + 1:].partition("/")
        bucket, key = unquote(bucket_part), unquote(key_part)

        params = {k: v[0] for k, v in parse_qs(parsed.query).items()}
        signed_method = params.get("X-Method", "")
        try:
            expires = int(params.get("X-Expires", ""))
        except ValueError:
            raise LocalStorageError("AccessDenied", "Missing or malformed expiry") from None

        m = (method or "").upper()
        expected = self._signature(signed_method, bucket, key, expires)
        if m != signed_method or not hmac.compare_digest(expected, params.get("X-Signature", "")):
            raise LocalStorageError("SignatureDoesNotMatch", "The request signature does not match")

        current = time.time() if now is None else now
        if current > expires:
            raise LocalStorageError("AccessDenied", "Request has expired")

        if m == "GET":
            return self.get_object(bucket, key)
        return self.put_object(bucket, key, data or b"")

    def error_code(self, exc: BaseException) -> Optional[str]:
        if isinstance(exc, LocalStorageError):
            return exc.code
        return None

    def close(self) -> None:
        return None
