import httpx
import pytest
from fastapi.testclient import TestClient

from chatlink.config import ConnectorConfig, ManagerConfig
from chatlink.errors import ConfigurationError
from chatlink.manager import LifecycleManager, create_manager_app
from chatlink.manager.lifecycle import connector_base_url, serialize_configuration, storage_context

from conftest import PLATFORM, FakePlatform

BODY = {
    "baseUrl": PLATFORM,
    "accountId": "acc-1",
    "subscriptionId": "sub-1",
    "boundaryId": "chat",
    "functionId": "connector",
    "configuration": {
        "vendor_name": "Contoso",
        "vendor_oauth_authorization_url": "https://vendor.example/oauth/authorize",
        "vendor_oauth_token_url": "https://vendor.example/oauth/token",
        "chat_webhook_secret": "hook-secret",
    },
    "metadata": {"tags": {"template": "contoso-teams"}},
}


class Installation:
    """Platform plus the storage and connector endpoints an install touches."""

    def __init__(self):
        self.platform = FakePlatform()
        self.storage_allowed = True
        self.storage_checks = []
        self.connector_deletes = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        if request.url.host == "run.platform.example":
            self.connector_deletes.append(request)
            return httpx.Response(204)
        if "/storage/" in request.url.path:
            self.storage_checks.append(request)
            return httpx.Response(200 if self.storage_allowed else 403, json={"items": []})
        return self.platform.handler(request)


@pytest.fixture
def installation():
    return Installation()


@pytest.fixture
def manager(installation):
    config = ManagerConfig(
        self_url="https://manager.example",
        allowed_return_to=["https://app.example/*"],
        connector_configuration={"vendor_oauth_client_id": "client-1"},
    )
    return LifecycleManager(config, http=httpx.AsyncClient(transport=httpx.MockTransport(installation.handler)))


@pytest.mark.asyncio
async def test_install_creates_connector_function(manager, installation):
    response = await manager.dispatch("/install", {}, dict(BODY), "installer-token")
    assert response.status == 200
    assert response.body == {"status": 200}

    check = installation.storage_checks[0]
    assert check.url.path == "/v1/account/acc-1/subscription/sub-1/storage/boundary/chat/function/connector/root/*"
    assert check.headers["authorization"] == "Bearer installer-token"

    spec = installation.platform.functions[("chat", "connector")]
    configuration = spec["configurationSerialized"]
    assert "vendor_oauth_client_id=client-1" in configuration
    assert "vendor_name=Contoso" in configuration
    assert "fusebit_storage_id=boundary/chat/function/connector/root" in configuration
    assert "function_id=connector" in configuration
    main = spec["python"]["files"]["main.py"]
    assert "config.validate_platform()" in main
    assert "caller_resolver=permissions_from_header()" in main
    assert spec["metadata"] == {"tags": {"template": "contoso-teams"}}
    assert spec["security"]["authentication"] == "optional"
    assert spec["security"]["functionPermissions"]["allow"] == [
        {"action": "storage:*", "resource": "/account/acc-1/subscription/sub-1/storage/boundary/chat/function/connector/"},
        {"action": "function:*", "resource": "/account/acc-1/subscription/sub-1/"},
    ]


def parse_configuration(serialized):
    settings = {}
    for line in serialized.splitlines():
        if line and not line.startswith("#"):
            name, _, value = line.partition("=")
            settings[name] = value
    return settings


@pytest.mark.asyncio
async def test_installed_configuration_starts_a_connector(manager, installation):
    await manager.dispatch("/install", {}, dict(BODY), "installer-token")
    spec = installation.platform.functions[("chat", "connector")]
    settings = parse_configuration(spec["configurationSerialized"])

    config = ConnectorConfig.from_env(dict(settings, fusebit_function_access_token="fn-token"))
    config.validate()
    config.validate_platform()
    assert config.base_url == "https://api.platform.example/v1/run/sub-1/chat/connector"
    assert config.base_url == connector_base_url(BODY)
    assert config.redirect_uri == "https://api.platform.example/v1/run/sub-1/chat/connector/callback"
    assert config.platform_base_url == PLATFORM
    assert config.storage_id == "boundary/chat/function/connector/root"
    assert config.function_access_token == "fn-token"
    assert config.chat_webhook_secret == "hook-secret"

    with pytest.raises(ConfigurationError, match="function_access_token"):
        ConnectorConfig.from_env(settings).validate_platform()


@pytest.mark.asyncio
async def test_configured_base_url_is_kept(manager, installation):
    body = dict(BODY, configuration=dict(BODY["configuration"], base_url="https://chat.contoso.example"))
    await manager.dispatch("/install", {}, body, "installer-token")
    settings = parse_configuration(installation.platform.functions[("chat", "connector")]["configurationSerialized"])
    assert settings["base_url"] == "https://chat.contoso.example"


@pytest.mark.asyncio
async def test_install_requires_storage_access(manager, installation):
    installation.storage_allowed = False
    response = await manager.dispatch("/install", {}, dict(BODY), "installer-token")
    assert response.status == 403
    assert "boundary/chat/function/connector/root" in response.body["message"]
    assert installation.platform.functions == {}


@pytest.mark.asyncio
async def test_install_requires_body_fields(manager):
    body = dict(BODY)
    del body["functionId"]
    response = await manager.dispatch("/install", {}, body, "installer-token")
    assert response.status == 400
    assert response.body == {"status": 400, "message": "Missing 'functionId' in the request body"}


@pytest.mark.asyncio
async def test_uninstall_cleans_up_connector(manager, installation):
    await manager.dispatch("/install", {}, dict(BODY), "installer-token")
    response = await manager.dispatch("/uninstall", {}, dict(BODY), "installer-token")
    assert response.status == 204
    assert installation.platform.functions == {}
    cleanup = installation.connector_deletes[0]
    assert cleanup.method == "DELETE"
    assert str(cleanup.url) == "https://run.platform.example/chat/connector/"
    assert cleanup.headers["authorization"] == "Bearer installer-token"


@pytest.mark.asyncio
async def test_uninstall_of_missing_connector(manager, installation):
    response = await manager.dispatch("/uninstall", {}, dict(BODY), "installer-token")
    assert response.status == 204
    assert installation.connector_deletes == []


@pytest.mark.asyncio
async def test_unknown_operation(manager):
    response = await manager.dispatch("/lifecycle/reboot", {})
    assert response.status == 404
    assert response.body == {"status": 404, "message": "Not found"}


def test_storage_context_and_serialization():
    context = storage_context(BODY)
    assert context["fusebit_storage_id"] == "boundary/chat/function/connector/root"
    assert context["fusebit_storage_audience"] == PLATFORM
    assert serialize_configuration({"b": "2", "a": "1"}) == "# Connector configuration settings\na=1\nb=2\n"


def test_manager_app_routes(manager, installation):
    client = TestClient(create_manager_app(manager))

    response = client.get("/configure", params={"returnTo": "https://evil.example/"}, follow_redirects=False)
    assert response.status_code == 403

    response = client.post("/install", json=BODY, headers={"Authorization": "Bearer installer-token"})
    assert response.status_code == 200
    assert ("chat", "connector") in installation.platform.functions

    response = client.post("/uninstall", json=BODY, headers={"Authorization": "Bearer installer-token"})
    assert response.status_code == 204
    assert installation.platform.functions == {}

    response = client.post("/install", content="not json", headers={"Authorization": "Bearer installer-token"})
    assert response.status_code == 400
