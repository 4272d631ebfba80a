"""Redis-backed storage.

Features:
- JSON envelopes ``{"data": ..., "etag": ...}`` at ``{prefix}:data:{key}``
- Conditional writes and deletes via WATCH/MULTI (etag compare-and-swap)
- Atomic consume via GETDEL (Redis >= 6.2)
- Per-record TTL, used to expire abandoned pending link records
- Bounded SCAN for listing; prefix deletes walk the whole keyspace
"""

from __future__ import annotations

import json
import logging
import uuid
from datetime import timedelta
from typing import Any, List, Optional

import redis.asyncio as redis
from redis.exceptions import WatchError

from ..errors import StorageConflictError, StorageError
from .store import Storage, StorageRecord

logger = logging.getLogger(__name__)


class RedisStorage(Storage):
    def __init__(
        self,
        url: str = "redis://localhost:6379/0",
        prefix: str = "chatlink",
        scan_page_size: int = 500,
        max_scan: int = 5000,
        client: Optional["redis.Redis"] = None,
    ):
        self.url = url
        self.prefix = prefix.rstrip(":")
        self.scan_page_size = scan_page_size
        self.max_scan = max_scan
        self._client = client

    async def _get_client(self) -> "redis.Redis":
        if self._client is None:
            self._client = redis.from_url(self.url, decode_responses=True)
        return self._client

    # Key helpers
    def _data_key(self, key: str) -> str:
        return f"{self.prefix}:data:{key}"

    def _strip(self, data_key: str) -> str:
        return data_key[len(self._data_key("")):]

    @staticmethod
    def _decode(raw: Optional[str]) -> Optional[StorageRecord]:
        if not raw:
            return None
        try:
            envelope = json.loads(raw)
        except ValueError as e:
            raise StorageError(f"Corrupt storage record: {e}") from e
        return StorageRecord(data=envelope.get("data"), etag=envelope.get("etag"))

    async def get(self, key: str) -> Optional[StorageRecord]:
        client = await self._get_client()
        return self._decode(await client.get(self._data_key(key)))

    async def put(
        self,
        key: str,
        data: Any,
        etag: Optional[str] = None,
        ttl: Optional[timedelta] = None,
    ) -> StorageRecord:
        client = await self._get_client()
        data_key = self._data_key(key)
        new_etag = uuid.uuid4().hex
        payload = json.dumps({"data": data, "etag": new_etag})
        expiry = int(ttl.total_seconds()) if ttl else None
        if etag is None:
            await client.set(data_key, payload, ex=expiry)
            logger.debug("Stored %s", key)
            return StorageRecord(data=data, etag=new_etag)
        async with client.pipeline(transaction=True) as pipe:
            try:
                await pipe.watch(data_key)
                current = self._decode(await pipe.get(data_key))
                if current is None or current.etag != etag:
                    raise StorageConflictError(f"Etag mismatch for '{key}'")
                pipe.multi()
                pipe.set(data_key, payload, ex=expiry)
                await pipe.execute()
            except WatchError as e:
                raise StorageConflictError(f"Concurrent write to '{key}'") from e
        logger.debug("Stored %s (conditional)", key)
        return StorageRecord(data=data, etag=new_etag)

    async def delete(self, key: str, etag: Optional[str] = None) -> bool:
        client = await self._get_client()
        data_key = self._data_key(key)
        if etag is None:
            return (await client.delete(data_key)) == 1
        async with client.pipeline(transaction=True) as pipe:
            try:
                await pipe.watch(data_key)
                current = self._decode(await pipe.get(data_key))
                if current is None:
                    return False
                if current.etag != etag:
                    raise StorageConflictError(f"Etag mismatch for '{key}'")
                pipe.multi()
                pipe.delete(data_key)
                removed, = await pipe.execute()
            except WatchError as e:
                raise StorageConflictError(f"Concurrent write to '{key}'") from e
        return removed == 1

    async def take(self, key: str) -> Optional[StorageRecord]:
        client = await self._get_client()
        return self._decode(await client.getdel(self._data_key(key)))

    async def list(self, prefix: str = "") -> List[str]:
        keys = await self._scan(prefix)
        return sorted(self._strip(k) for k in keys)

    async def delete_prefix(self, prefix: str = "") -> int:
        client = await self._get_client()
        pattern = f"{self._data_key(prefix)}*"
        cursor = 0
        deleted = 0
        while True:
            cursor, keys = await client.scan(cursor=cursor, match=pattern, count=self.scan_page_size)
            if keys:
                deleted += await client.delete(*keys)
            if cursor == 0:
                break
        logger.debug("Deleted %d records under '%s'", deleted, prefix)
        return deleted

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def _scan(self, prefix: str) -> List[str]:
        client = await self._get_client()
        pattern = f"{self._data_key(prefix)}*"
        cursor = 0
        out: List[str] = []
        while True:
            cursor, keys = await client.scan(cursor=cursor, match=pattern, count=self.scan_page_size)
            out.extend(keys)
            if cursor == 0 or len(out) >= self.max_scan:
                break
        return out[: self.max_scan]


__all__ = ["RedisStorage"]
