"""Client for the hosting platform's function-management API.

Creating a function is a PUT followed, when the platform answers 201, by
bounded polling of the build until it succeeds or fails. A function created
by a call that later fails is deleted again before the error surfaces.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional

import httpx

from ..errors import ProvisionError

logger = logging.getLogger(__name__)


class FunctionApiClient:
    """Bearer-token client scoped to one account and subscription."""

    def __init__(
        self,
        base_url: str,
        account_id: str,
        subscription_id: str,
        access_token: Optional[str],
        http: Optional[httpx.AsyncClient] = None,
        poll_attempts: int = 15,
        poll_interval: float = 2.0,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.base_url = base_url.rstrip("/")
        self.account_id = account_id
        self.subscription_id = subscription_id
        self.access_token = access_token
        self.poll_attempts = poll_attempts
        self.poll_interval = poll_interval
        self._sleep = sleep
        self._http = http or httpx.AsyncClient(timeout=30.0)

    @property
    def _headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self.access_token}"}

    def _subscription_url(self) -> str:
        return f"{self.base_url}/v1/account/{self.account_id}/subscription/{self.subscription_id}"

    def function_url(self, boundary_id: str, function_id: str) -> str:
        return f"{self._subscription_url()}/boundary/{boundary_id}/function/{function_id}"

    async def create_function(self, boundary_id: str, function_id: str, specification: Dict[str, Any]) -> str:
        """Create or update a function and return its invocation URL.

        Raises:
            ProvisionError: the PUT, the build or the location lookup failed,
                or the build did not finish within the polling budget
        """
        url = self.function_url(boundary_id, function_id)
        try:
            response = await self._http.put(url, json=specification, headers=self._headers)
        except httpx.HTTPError as e:
            raise ProvisionError(f"Failure creating function: {e}") from e
        if response.status_code >= 300:
            raise ProvisionError(f"Failure creating function: status {response.status_code}")

        try:
            if response.status_code == 201:
                response = await self._wait_for_build(url, response.json().get("buildId"))
            body = response.json() if response.content else {}
            if body.get("location"):
                return body["location"]
            return await self.get_location(boundary_id, function_id)
        except Exception as e:
            try:
                await self.delete_function(boundary_id, function_id)
            except Exception as cleanup_error:
                logger.warning(f"Could not delete partially created function {boundary_id}/{function_id}: {cleanup_error}")
            if isinstance(e, ProvisionError):
                raise
            raise ProvisionError(f"Failure creating function: {e}") from e

    async def _wait_for_build(self, function_url: str, build_id: Optional[str]) -> httpx.Response:
        if not build_id:
            raise ProvisionError("Failure creating function: build id missing")
        build_url = f"{function_url}/build/{build_id}"
        for attempt in range(self.poll_attempts):
            response = await self._http.get(build_url, headers=self._headers)
            if response.status_code == 200:
                body = response.json()
                if body.get("status") == "success":
                    return response
                message = (body.get("error") or {}).get("message") or "Unknown error"
                raise ProvisionError(f"Failure creating function: {message}")
            if response.status_code >= 300:
                raise ProvisionError(f"Failure creating function: build status {response.status_code}")
            logger.debug("Build %s pending (attempt %d/%d)", build_id, attempt + 1, self.poll_attempts)
            await self._sleep(self.poll_interval)
        raise ProvisionError("Timeout creating function")

    async def get_location(self, boundary_id: str, function_id: str) -> str:
        response = await self._http.get(f"{self.function_url(boundary_id, function_id)}/location", headers=self._headers)
        if response.status_code >= 300:
            raise ProvisionError(f"Failure resolving function location: status {response.status_code}")
        location = response.json().get("location")
        if not location:
            raise ProvisionError("Failure resolving function location")
        return location

    async def delete_function(self, boundary_id: str, function_id: str) -> None:
        """Delete a function; a function that is already gone counts as deleted."""
        response = await self._http.delete(self.function_url(boundary_id, function_id), headers=self._headers)
        if response.status_code not in (200, 204, 404):
            raise ProvisionError(f"Failure deleting function: status {response.status_code}")

    async def list_functions(self, owner_id: str, count: int = 20) -> List[Dict[str, Any]]:
        response = await self._http.get(
            f"{self._subscription_url()}/function",
            params={"search": f"tag.ownerId={owner_id}", "count": count},
            headers=self._headers,
        )
        if response.status_code >= 300:
            raise ProvisionError(f"Failure listing functions: status {response.status_code}")
        return (response.json() or {}).get("items") or []

    async def delete_owned_functions(self, owner_id: str, count: int = 20, max_pages: int = 50) -> int:
        """Delete every function tagged with ``ownerId``; returns how many were deleted."""
        deleted = 0
        for _ in range(max_pages):
            items = await self.list_functions(owner_id, count=count)
            if not items:
                return deleted
            await asyncio.gather(*(self.delete_function(f["boundaryId"], f["functionId"]) for f in items))
            deleted += len(items)
        logger.warning(f"Stopped deleting functions owned by {owner_id} after {max_pages} pages")
        return deleted

    async def close(self) -> None:
        await self._http.aclose()


__all__ = ["FunctionApiClient"]
