import fnmatch
import os
import uuid
from datetime import timedelta

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError  # type: ignore

from chatlink.errors import StorageConflictError
from chatlink.storage import RedisStorage

pytestmark = pytest.mark.asyncio

REDIS_URL = os.getenv("REDIS_TEST_URL", "redis://localhost:6379/0")


@pytest.mark.asyncio
async def test_redis_storage_crud_and_take():
    try:
        import redis.asyncio  # type: ignore
    except Exception:
        pytest.skip("redis library not installed")

    store = RedisStorage(url=REDIS_URL, prefix=f"chatlink-test-{uuid.uuid4().hex[:8]}")
    try:
        first = await store.put("principal/01", {"status": "authenticating"}, ttl=timedelta(minutes=5))
        record = await store.get("principal/01")
        assert record.data == {"status": "authenticating"}
        assert record.etag == first.etag

        second = await store.put("principal/01", {"status": "validating"}, etag=first.etag)
        with pytest.raises(StorageConflictError):
            await store.put("principal/01", {"status": "stale"}, etag=first.etag)

        taken = await store.take("principal/01")
        assert taken.etag == second.etag
        assert await store.take("principal/01") is None
    except RedisConnectionError:
        pytest.skip("Redis server not reachable")
    finally:
        try:
            await store.delete_prefix("")
            await store.close()
        except RedisConnectionError:
            pass


@pytest.mark.asyncio
async def test_redis_storage_list_and_delete_prefix():
    try:
        import redis.asyncio  # type: ignore
    except Exception:
        pytest.skip("redis library not installed")

    store = RedisStorage(url=REDIS_URL, prefix=f"chatlink-test-{uuid.uuid4().hex[:8]}")
    try:
        await store.put("principal/01", 1)
        await store.put("principal/02", 2)
        written = await store.put("vendor-user/03", 3)
        assert await store.list("principal/") == ["principal/01", "principal/02"]
        with pytest.raises(StorageConflictError):
            await store.delete("vendor-user/03", etag="stale")
        assert await store.delete("vendor-user/03", etag=written.etag)
        assert await store.delete_prefix("") == 2
        assert await store.list() == []
    except RedisConnectionError:
        pytest.skip("Redis server not reachable")
    finally:
        try:
            await store.close()
        except RedisConnectionError:
            pass


class PagedKeyspace:
    """SCAN and DEL only; the cursor walks a fixed key order like the server's."""

    def __init__(self, keys):
        self.order = sorted(keys)
        self.live = set(keys)

    async def scan(self, cursor=0, match="*", count=10):
        page = self.order[cursor:cursor + count]
        following = cursor + count
        keys = [k for k in page if k in self.live and fnmatch.fnmatchcase(k, match)]
        return (following if following < len(self.order) else 0), keys

    async def delete(self, *keys):
        removed = [k for k in keys if k in self.live]
        self.live.difference_update(removed)
        return len(removed)


@pytest.mark.asyncio
async def test_delete_prefix_is_not_capped_by_max_scan():
    keys = [f"chatlink:data:principal/{i:02d}" for i in range(60)] + ["chatlink:data:vendor-user/01", "other:data:x"]
    keyspace = PagedKeyspace(keys)
    store = RedisStorage(prefix="chatlink", scan_page_size=10, max_scan=25, client=keyspace)

    assert await store.delete_prefix("principal/") == 60
    assert keyspace.live == {"chatlink:data:vendor-user/01", "other:data:x"}
    assert await store.delete_prefix("") == 1
    assert keyspace.live == {"other:data:x"}
