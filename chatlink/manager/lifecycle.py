"""
Lifecycle manager of a connector installation.

``dispatch`` routes on the last path segment:

- ``configure``: one hop of the configuration chain
- ``install``: create the connector function with its own storage and the
  permissions it needs to provision per-principal artifacts. The serialized
  configuration carries everything ``ConnectorConfig.validate`` needs; the
  function's access token is injected by the platform at run time
- ``uninstall``: let the connector clean up after itself (``DELETE /``),
  then delete the connector function

Anything else is a 404.
"""

import logging
from importlib import resources
from typing import Any, Callable, Dict, Mapping, Optional

import httpx

from ..artifacts.client import FunctionApiClient
from ..authz.resources import storage_resource, subscription_resource
from ..config import ManagerConfig
from ..errors import ChainError, ChatLinkError, ForbiddenError, ProvisionError
from .chain import ChainResponse, ConfigurationChain

logger = logging.getLogger(__name__)

INSTALL_REQUIRED = ("baseUrl", "accountId", "subscriptionId", "boundaryId", "functionId")

ClientFactory = Callable[[Dict[str, Any], Optional[str]], FunctionApiClient]


def connector_main_source() -> str:
    return resources.files(__package__).joinpath("templates/connector_main.py.tmpl").read_text(encoding="utf-8")


def storage_context(body: Dict[str, Any]) -> Dict[str, str]:
    """Storage coordinates of the connector being installed."""
    return {
        "fusebit_storage_id": f"boundary/{body['boundaryId']}/function/{body['functionId']}/root",
        "fusebit_storage_audience": body["baseUrl"],
        "fusebit_storage_account_id": body["accountId"],
        "fusebit_storage_subscription_id": body["subscriptionId"],
    }


def connector_base_url(body: Dict[str, Any]) -> str:
    """Public URL the platform serves the connector function at."""
    return (
        f"{body['baseUrl'].rstrip('/')}/v1/run/{body['subscriptionId']}"
        f"/{body['boundaryId']}/{body['functionId']}"
    )


def serialize_configuration(configuration: Dict[str, Any]) -> str:
    lines = [f"{key}={configuration[key]}" for key in sorted(configuration)]
    return "# Connector configuration settings\n" + "\n".join(lines) + "\n"


class LifecycleManager:
    def __init__(
        self,
        config: ManagerConfig,
        http: Optional[httpx.AsyncClient] = None,
        client_factory: Optional[ClientFactory] = None,
    ):
        self.config = config
        self.chain = ConfigurationChain(config)
        self._http = http or httpx.AsyncClient(timeout=30.0)
        self._client_factory = client_factory or self._default_client

    def _default_client(self, body: Dict[str, Any], access_token: Optional[str]) -> FunctionApiClient:
        return FunctionApiClient(
            body["baseUrl"],
            body["accountId"],
            body["subscriptionId"],
            access_token,
            http=self._http,
        )

    async def dispatch(
        self,
        path: str,
        query: Mapping[str, str],
        body: Optional[Dict[str, Any]] = None,
        access_token: Optional[str] = None,
    ) -> ChainResponse:
        segments = [s for s in path.split("/") if s]
        operation = segments[-1] if segments else ""
        logger.debug(f"Lifecycle request '{operation}'")
        try:
            if operation == "configure":
                return self.chain.handle(query)
            if operation == "install":
                return await self.install(body or {}, access_token)
            if operation == "uninstall":
                return await self.uninstall(body or {}, access_token)
            raise ChainError("Not found", status=404)
        except ChatLinkError as e:
            return self.chain.complete_with_error(query, e)

    @staticmethod
    def _require_body(body: Dict[str, Any]) -> None:
        for name in INSTALL_REQUIRED:
            if not body.get(name):
                raise ChainError(f"Missing '{name}' in the request body", status=400)

    async def verify_storage_access(self, storage: Dict[str, str], access_token: Optional[str]) -> None:
        """The installer's own token must already reach the connector's storage."""
        url = (
            f"{storage['fusebit_storage_audience'].rstrip('/')}/v1/account/{storage['fusebit_storage_account_id']}"
            f"/subscription/{storage['fusebit_storage_subscription_id']}/storage/{storage['fusebit_storage_id']}/*"
        )
        if not access_token:
            raise ForbiddenError("Installing a connector requires the caller's access token.")
        response = await self._http.get(url, params={"count": 1}, headers={"Authorization": f"Bearer {access_token}"})
        if response.status_code >= 300:
            raise ForbiddenError(
                "Installing a connector requires that the caller holds permissions to the "
                f"{storage['fusebit_storage_id']} storage id."
            )

    def build_connector_specification(self, body: Dict[str, Any], storage: Dict[str, str]) -> Dict[str, Any]:
        configuration: Dict[str, Any] = {"debug": "1"}
        configuration.update(self.config.connector_configuration)
        configuration.update(body.get("configuration") or {})
        configuration.setdefault("base_url", connector_base_url(body))
        configuration.update(storage)
        configuration.update({
            "platform_base_url": body["baseUrl"],
            "account_id": body["accountId"],
            "subscription_id": body["subscriptionId"],
            "boundary_id": body["boundaryId"],
            "function_id": body["functionId"],
        })
        return {
            "configurationSerialized": serialize_configuration(configuration),
            "python": {
                "files": {
                    "main.py": connector_main_source(),
                    "requirements.txt": "chatlink\n",
                },
            },
            "metadata": dict(body.get("metadata") or {}),
            "security": {
                "functionPermissions": {
                    "allow": [
                        {
                            "action": "storage:*",
                            "resource": storage_resource(
                                body["accountId"], body["subscriptionId"], body["boundaryId"], body["functionId"]
                            ),
                        },
                        {
                            "action": "function:*",
                            "resource": subscription_resource(body["accountId"], body["subscriptionId"]),
                        },
                    ],
                },
                "authentication": "optional",
            },
        }

    async def install(self, body: Dict[str, Any], access_token: Optional[str]) -> ChainResponse:
        self._require_body(body)
        storage = storage_context(body)
        await self.verify_storage_access(storage, access_token)
        client = self._client_factory(body, access_token)
        location = await client.create_function(
            body["boundaryId"],
            body["functionId"],
            self.build_connector_specification(body, storage),
        )
        logger.info(f"Installed connector {body['boundaryId']}/{body['functionId']} at {location}")
        return ChainResponse(status=200, body={"status": 200})

    async def uninstall(self, body: Dict[str, Any], access_token: Optional[str]) -> ChainResponse:
        self._require_body(body)
        client = self._client_factory(body, access_token)
        try:
            location = await client.get_location(body["boundaryId"], body["functionId"])
        except ProvisionError as e:
            logger.warning(f"Connector location unavailable, skipping its cleanup: {e}")
            location = None
        if location:
            response = await self._http.delete(
                f"{location.rstrip('/')}/",
                headers={"Authorization": f"Bearer {access_token}"},
            )
            if response.status_code >= 300 and response.status_code != 404:
                raise ProvisionError(f"Connector cleanup failed: status {response.status_code}")
        await client.delete_function(body["boundaryId"], body["functionId"])
        logger.info(f"Uninstalled connector {body['boundaryId']}/{body['functionId']}")
        return ChainResponse(status=204)

    async def close(self) -> None:
        await self._http.aclose()


__all__ = [
    "LifecycleManager",
    "connector_base_url",
    "connector_main_source",
    "serialize_configuration",
    "storage_context",
]
