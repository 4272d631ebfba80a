import asyncio
from datetime import timedelta

import pytest

from chatlink.errors import StorageConflictError
from chatlink.storage import MemoryStorage

pytestmark = pytest.mark.asyncio


class Clock:
    def __init__(self):
        self.now = 100.0

    def __call__(self):
        return self.now


async def test_put_get_delete():
    store = MemoryStorage()
    written = await store.put("principal/01", {"status": "authenticated"})
    record = await store.get("principal/01")
    assert record.data == {"status": "authenticated"}
    assert record.etag == written.etag
    assert await store.delete("principal/01")
    assert await store.get("principal/01") is None
    assert not await store.delete("principal/01")


async def test_returned_data_is_a_copy():
    store = MemoryStorage()
    await store.put("k", {"a": [1]})
    record = await store.get("k")
    record.data["a"].append(2)
    assert (await store.get("k")).data == {"a": [1]}


async def test_conditional_put_detects_concurrent_writer():
    store = MemoryStorage()
    first = await store.put("k", 1)
    await store.put("k", 2)
    with pytest.raises(StorageConflictError):
        await store.put("k", 3, etag=first.etag)
    with pytest.raises(StorageConflictError):
        await store.put("missing", 3, etag="whatever")


async def test_conditional_delete():
    store = MemoryStorage()
    written = await store.put("k", 1)
    with pytest.raises(StorageConflictError):
        await store.delete("k", etag="stale")
    assert await store.delete("k", etag=written.etag)


async def test_ttl_expiry():
    clock = Clock()
    store = MemoryStorage(clock=clock)
    await store.put("k", 1, ttl=timedelta(seconds=10))
    clock.now += 9
    assert await store.get("k") is not None
    clock.now += 2
    assert await store.get("k") is None


async def test_take_is_single_use_under_concurrency():
    store = MemoryStorage()
    await store.put("k", {"code": "ab12"})
    results = await asyncio.gather(*(store.take("k") for _ in range(10)))
    assert sum(1 for r in results if r is not None) == 1
    assert await store.get("k") is None


async def test_list_and_delete_prefix():
    store = MemoryStorage()
    await store.put("principal/01", 1)
    await store.put("principal/02", 2)
    await store.put("vendor-user/03", 3)
    assert await store.list("principal/") == ["principal/01", "principal/02"]
    assert await store.delete_prefix("principal/") == 2
    assert await store.list() == ["vendor-user/03"]
    assert await store.delete_prefix("") == 1
