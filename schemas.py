from __future__ import annotations

from datetime import datetime
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, Field

# -----------------------------------------------------
# BUCKETS & OBJECTS
# -----------------------------------------------------


class BucketRef(BaseModel):
    name: str
    created_at: Optional[datetime] = None


class ObjectRef(BaseModel):
    bucket: str
    key: str
    size: Optional[int] = None
    etag: Optional[str] = None
    last_modified: Optional[datetime] = None


class ListingPage(BaseModel):
    """
    One backend page of a listing. Continuation tokens are never followed,
    so is_truncated=True means keys beyond this page exist but were not listed.
    """
    bucket: str
    prefix: Optional[str] = None
    items: List[ObjectRef] = Field(default_factory=list)
    is_truncated: bool = False


class ObjectContent(BaseModel):
    bucket: str
    key: str
    body: bytes
    content_type: Optional[str] = None
    content_length: Optional[int] = None
    etag: Optional[str] = None
    last_modified: Optional[datetime] = None
    metadata: Dict[str, str] = Field(default_factory=dict)


# -----------------------------------------------------
# UPLOADS
# -----------------------------------------------------


class UploadPayload(BaseModel):
    """
    An uploaded file as received from a multipart form.

    The stored key is "{key_prefix}/{original_name}"; original_name is used
    verbatim, so a client-supplied name can add path segments or collide.
    """
    original_name: str
    content: bytes
    content_type: str = "application/octet-stream"
    metadata: Dict[str, str] = Field(default_factory=dict)


# -----------------------------------------------------
# BULK DELETE
# -----------------------------------------------------


class DeleteFailure(BaseModel):
    key: str
    code: Optional[str] = None
    message: Optional[str] = None


class BulkDeleteResult(BaseModel):
    bucket: str
    prefix: Optional[str] = None
    deleted: List[str] = Field(default_factory=list)
    failures: List[DeleteFailure] = Field(default_factory=list)

    @property
    def count(self) -> int:
        return len(self.deleted)

    @property
    def ok(self) -> bool:
        return not self.failures


# -----------------------------------------------------
# SIGNED URLS
# -----------------------------------------------------


class SignedUrlGrant(BaseModel):
    url: str
    method: Literal["PUT", "GET"]
    bucket: str
    key: str
    expires_at: datetime

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        return (now or datetime.now(self.expires_at.tzinfo)) >= self.expires_at
