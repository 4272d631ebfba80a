"""In-process storage used for tests and single-process deployments."""

import asyncio
import copy
import logging
import time
import uuid
from datetime import timedelta
from typing import Any, Callable, Dict, List, Optional, Tuple

from ..errors import StorageConflictError
from .store import Storage, StorageRecord

logger = logging.getLogger(__name__)


class MemoryStorage(Storage):
    """Dictionary-backed storage with etags and TTLs.

    All operations run under one lock, which makes ``take`` atomic.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._items: Dict[str, Tuple[Any, str, Optional[float]]] = {}
        self._lock = asyncio.Lock()
        self._clock = clock

    def _live(self, key: str) -> Optional[Tuple[Any, str, Optional[float]]]:
        item = self._items.get(key)
        if item is None:
            return None
        expires = item[2]
        if expires is not None and self._clock() >= expires:
            del self._items[key]
            return None
        return item

    async def get(self, key: str) -> Optional[StorageRecord]:
        async with self._lock:
            item = self._live(key)
            if item is None:
                return None
            return StorageRecord(data=copy.deepcopy(item[0]), etag=item[1])

    async def put(
        self,
        key: str,
        data: Any,
        etag: Optional[str] = None,
        ttl: Optional[timedelta] = None,
    ) -> StorageRecord:
        async with self._lock:
            current = self._live(key)
            if etag is not None and (current is None or current[1] != etag):
                raise StorageConflictError(f"Etag mismatch for '{key}'")
            new_etag = uuid.uuid4().hex
            expires = self._clock() + ttl.total_seconds() if ttl else None
            self._items[key] = (copy.deepcopy(data), new_etag, expires)
            logger.debug("Stored %s", key)
            return StorageRecord(data=copy.deepcopy(data), etag=new_etag)

    async def delete(self, key: str, etag: Optional[str] = None) -> bool:
        async with self._lock:
            current = self._live(key)
            if current is None:
                return False
            if etag is not None and current[1] != etag:
                raise StorageConflictError(f"Etag mismatch for '{key}'")
            del self._items[key]
            return True

    async def take(self, key: str) -> Optional[StorageRecord]:
        async with self._lock:
            item = self._live(key)
            if item is None:
                return None
            del self._items[key]
            return StorageRecord(data=item[0], etag=item[1])

    async def list(self, prefix: str = "") -> List[str]:
        async with self._lock:
            return sorted(k for k in list(self._items) if k.startswith(prefix) and self._live(k))

    async def delete_prefix(self, prefix: str = "") -> int:
        async with self._lock:
            doomed = [k for k in self._items if k.startswith(prefix)]
            for k in doomed:
                del self._items[k]
            return len(doomed)


__all__ = ["MemoryStorage"]
