"""Client for the hosting platform's storage REST API.

Records travel as ``{"data": ..., "etag": ...}``. A PUT carrying an etag is
rejected by the server (409 or 412) when the stored record changed. The API
has no atomic read-and-delete, so ``take`` keeps the base get-then-delete
behaviour. TTLs are not supported by the service and are ignored.
"""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import Any, List, Optional

import httpx

from ..errors import StorageConflictError, StorageError
from .store import Storage, StorageRecord

logger = logging.getLogger(__name__)


class RemoteStorage(Storage):
    def __init__(
        self,
        base_url: str,
        account_id: str,
        subscription_id: str,
        storage_id: str,
        access_token: str,
        http: Optional[httpx.AsyncClient] = None,
    ):
        self.url = (
            f"{base_url.rstrip('/')}/v1/account/{account_id}"
            f"/subscription/{subscription_id}/storage/{storage_id.strip('/')}"
        )
        self.access_token = access_token
        self._http = http or httpx.AsyncClient(timeout=30.0)

    def _url(self, key: str = "") -> str:
        return f"{self.url}/{key}" if key else self.url

    @property
    def _headers(self):
        return {"Authorization": f"Bearer {self.access_token}"}

    async def get(self, key: str) -> Optional[StorageRecord]:
        response = await self._http.get(self._url(key), headers=self._headers)
        if response.status_code == 404:
            return None
        self._raise_for_status(response, key)
        body = response.json()
        return StorageRecord(data=body.get("data"), etag=body.get("etag"))

    async def put(
        self,
        key: str,
        data: Any,
        etag: Optional[str] = None,
        ttl: Optional[timedelta] = None,
    ) -> StorageRecord:
        if ttl:
            logger.debug("Remote storage ignores ttl for %s", key)
        payload = {"data": data}
        if etag is not None:
            payload["etag"] = etag
        response = await self._http.put(self._url(key), json=payload, headers=self._headers)
        self._raise_for_status(response, key)
        body = response.json() if response.content else {}
        return StorageRecord(data=data, etag=body.get("etag"))

    async def delete(self, key: str, etag: Optional[str] = None) -> bool:
        headers = dict(self._headers)
        if etag is not None:
            headers["If-Match"] = etag
        response = await self._http.delete(self._url(key), headers=headers)
        if response.status_code == 404:
            return False
        self._raise_for_status(response, key)
        return True

    async def list(self, prefix: str = "") -> List[str]:
        response = await self._http.get(f"{self._url(prefix.rstrip('/'))}/*", headers=self._headers)
        if response.status_code == 404:
            return []
        self._raise_for_status(response, prefix)
        items = response.json().get("items") or []
        base = self.url.split("/storage/", 1)[1]
        keys = []
        for item in items:
            storage_id = str(item.get("storageId", ""))
            if storage_id.startswith(base):
                storage_id = storage_id[len(base):].lstrip("/")
            keys.append(storage_id)
        return sorted(keys)

    async def delete_prefix(self, prefix: str = "") -> int:
        keys = await self.list(prefix)
        response = await self._http.delete(f"{self._url(prefix.rstrip('/'))}/*", headers=self._headers)
        if response.status_code == 404:
            return 0
        self._raise_for_status(response, prefix)
        return len(keys)

    async def close(self) -> None:
        await self._http.aclose()

    @staticmethod
    def _raise_for_status(response: httpx.Response, key: str) -> None:
        if response.status_code in (409, 412):
            raise StorageConflictError(f"Etag mismatch for '{key}'")
        if response.status_code >= 300:
            raise StorageError(f"Storage request for '{key}' failed with status {response.status_code}")


__all__ = ["RemoteStorage"]
