"""
Storage package for chatlink.

This package provides the storage collaborator interface plus in-memory,
Redis and platform-REST implementations, all sharing the same record shape
(``data`` plus an optimistic-concurrency ``etag``).
"""

from .store import Storage, StorageRecord
from .memory import MemoryStorage
from .redis import RedisStorage
from .remote import RemoteStorage

__all__ = [
    "Storage",
    "StorageRecord",
    "MemoryStorage",
    "RedisStorage",
    "RemoteStorage",
]
