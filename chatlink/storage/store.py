"""
Storage interface for chatlink.

Storage is a key-value collaborator with hierarchical keys
(``principal/<id>``, ``vendor-user/<id>``). Records are returned together with
an opaque etag; passing that etag back to ``put`` or ``delete`` makes the
write conditional, so a concurrent writer is detected instead of silently
overwritten.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Dict, List, Optional


@dataclass
class StorageRecord:
    """Stored payload plus its optimistic-concurrency token."""
    data: Any
    etag: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        result = {"data": self.data}
        if self.etag is not None:
            result["etag"] = self.etag
        return result


class Storage(ABC):
    """Abstract storage collaborator."""

    @abstractmethod
    async def get(self, key: str) -> Optional[StorageRecord]:
        """Return the record at ``key`` or None."""

    @abstractmethod
    async def put(
        self,
        key: str,
        data: Any,
        etag: Optional[str] = None,
        ttl: Optional[timedelta] = None,
    ) -> StorageRecord:
        """Write ``data`` at ``key``.

        Raises:
            StorageConflictError: ``etag`` was given and does not match
        """

    @abstractmethod
    async def delete(self, key: str, etag: Optional[str] = None) -> bool:
        """Delete ``key``; returns whether a record was removed."""

    @abstractmethod
    async def list(self, prefix: str = "") -> List[str]:
        """List keys under ``prefix``."""

    @abstractmethod
    async def delete_prefix(self, prefix: str = "") -> int:
        """Delete every key under ``prefix`` (everything when empty)."""

    async def take(self, key: str) -> Optional[StorageRecord]:
        """Read and delete ``key`` as one step.

        The base implementation is get-then-delete, which leaves a narrow race
        window. Implementations with an atomic primitive override it.
        """
        record = await self.get(key)
        if record is not None:
            await self.delete(key)
        return record

    async def close(self) -> None:
        return None


__all__ = ["Storage", "StorageRecord"]
