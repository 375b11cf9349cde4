import asyncio

import pytest

from gateway.aio import AsyncStorageGateway
from gateway.errors import NotFoundError
from schemas import UploadPayload


def test_concurrent_uploads_land_independently(gateway):
    agw = AsyncStorageGateway(gateway)

    async def scenario():
        await agw.create_bucket("b1")
        names = [f"f{i}.txt" for i in range(8)]
        await asyncio.gather(
            *(agw.put_object("b1", "batch", UploadPayload(original_name=n, content=n.encode())) for n in names)
        )
        page = await agw.list_objects("b1", "batch")
        bodies = await asyncio.gather(*(agw.get_object("b1", o.key) for o in page.items))
        return names, page, bodies

    names, page, bodies = asyncio.run(scenario())
    assert [o.key for o in page.items] == sorted(f"batch/{n}" for n in names)
    assert sorted(b.body for b in bodies) == sorted(n.encode() for n in names)


def test_async_errors_match_sync_errors(gateway):
    agw = AsyncStorageGateway(gateway)
    gateway.create_bucket("b1")

    with pytest.raises(NotFoundError):
        asyncio.run(agw.get_object("b1", "missing"))


def test_async_grant_and_bulk_delete(gateway):
    agw = AsyncStorageGateway(gateway)

    async def scenario():
        await agw.create_bucket("b1")
        await agw.put_object("b1", "docs", UploadPayload(original_name="a.txt", content=b"hi"))
        grant = await agw.issue_download_url("b1", "docs/a.txt")
        result = await agw.delete_all_objects("b1", "docs")
        await agw.delete_bucket("b1")
        return grant, result, await agw.list_buckets()

    grant, result, buckets = asyncio.run(scenario())
    assert grant.method == "GET"
    assert result.count == 1
    assert buckets == []
