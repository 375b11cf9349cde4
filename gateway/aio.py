from __future__ import annotations

import asyncio
from typing import List, Optional

from gateway.service import StorageGateway
from schemas import (
    BucketRef,
    BulkDeleteResult,
    ListingPage,
    ObjectContent,
    ObjectRef,
    SignedUrlGrant,
    UploadPayload,
)


class AsyncStorageGateway:
    """Awaitable facade: each call runs the blocking gateway operation in a worker thread."""

    def __init__(self, gateway: StorageGateway) -> None:
        self._gateway = gateway

    @property
    def gateway(self) -> StorageGateway:
        return self._gateway

    async def create_bucket(self, name: str) -> BucketRef:
        return await asyncio.to_thread(self._gateway.create_bucket, name)

    async def list_buckets(self) -> List[BucketRef]:
        return await asyncio.to_thread(self._gateway.list_buckets)

    async def delete_bucket(self, name: str) -> None:
        await asyncio.to_thread(self._gateway.delete_bucket, name)

    async def list_objects(self, bucket: Optional[str] = None, prefix: str = "") -> ListingPage:
        return await asyncio.to_thread(self._gateway.list_objects, bucket, prefix)

    async def get_object(self, bucket: Optional[str], key: str) -> ObjectContent:
        return await asyncio.to_thread(self._gateway.get_object, bucket, key)

    async def put_object(self, bucket: Optional[str], key_prefix: str, payload: UploadPayload) -> ObjectRef:
        return await asyncio.to_thread(self._gateway.put_object, bucket, key_prefix, payload)

    async def delete_object(self, bucket: Optional[str], key: str) -> None:
        await asyncio.to_thread(self._gateway.delete_object, bucket, key)

    async def delete_all_objects(self, bucket: Optional[str] = None, prefix: str = "") -> BulkDeleteResult:
        return await asyncio.to_thread(self._gateway.delete_all_objects, bucket, prefix)

    async def issue_upload_url(self, bucket: Optional[str], key: str, expires_in: Optional[int] = None) -> SignedUrlGrant:
        return await asyncio.to_thread(self._gateway.issue_upload_url, bucket, key, expires_in)

    async def issue_download_url(self, bucket: Optional[str], key: str, expires_in: Optional[int] = None) -> SignedUrlGrant:
        return await asyncio.to_thread(self._gateway.issue_download_url, bucket, key, expires_in)
