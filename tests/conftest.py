import json
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import parse_qs

import httpx
import pytest
from prometheus_client import CollectorRegistry

from chatlink.artifacts.client import FunctionApiClient
from chatlink.chat.activity import Activity, TurnContext
from chatlink.config import ConnectorConfig
from chatlink.link.machine import IdentityLinkStateMachine
from chatlink.link.strategy import VendorStrategy
from chatlink.monitoring.metrics import MetricsRegistry
from chatlink.storage.memory import MemoryStorage

PLATFORM = "https://api.platform.example"
VENDOR_TOKEN_URL = "https://vendor.example/oauth/token"
VENDOR_AUTHORIZE_URL = "https://vendor.example/oauth/authorize"


class FakeClock:
    """Millisecond clock that only moves when told to."""

    def __init__(self, now: int = 1_700_000_000_000):
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += int(seconds * 1000)


class FakeVendor:
    """Vendor token endpoint."""

    def __init__(self):
        self.exchanges: List[Dict[str, str]] = []
        self.refreshes: List[Dict[str, str]] = []
        self.refresh_fails = False
        self.expires_in = 3600

    def handler(self, request: httpx.Request) -> httpx.Response:
        if f"{request.url.scheme}://{request.url.host}{request.url.path}" != VENDOR_TOKEN_URL or request.method != "POST":
            return httpx.Response(404)
        form = {k: v[0] for k, v in parse_qs(request.content.decode()).items()}
        query = dict(request.url.params)
        if form.get("grant_type") == "authorization_code":
            self.exchanges.append(form)
            if form.get("code") != "good-code":
                return httpx.Response(400, json={"error": "invalid_grant"})
            return httpx.Response(200, json={
                "access_token": "at-1",
                "refresh_token": "rt-1",
                "token_type": "bearer",
                "expires_in": self.expires_in,
            })
        if query.get("grant_type") == "refresh_token":
            self.refreshes.append(query)
            if self.refresh_fails:
                return httpx.Response(400, json={"error": "invalid_grant"})
            return httpx.Response(200, json={"access_token": f"at-{len(self.refreshes) + 1}", "expires_in": 3600})
        return httpx.Response(400)


class FakePlatform:
    """Function-management API of the hosting platform."""

    def __init__(self, account_id: str = "acc-1", subscription_id: str = "sub-1"):
        self.prefix = f"/v1/account/{account_id}/subscription/{subscription_id}"
        self.functions: Dict[Tuple[str, str], Dict[str, Any]] = {}
        self.requests: List[httpx.Request] = []
        self.fail_create = False
        self.build_statuses: Optional[List[Tuple[int, Dict[str, Any]]]] = None
        self.omit_location = False

    def location(self, boundary_id: str, function_id: str) -> str:
        return f"https://run.platform.example/{boundary_id}/{function_id}"

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        if not path.startswith(self.prefix):
            return httpx.Response(404)
        rest = path[len(self.prefix):].strip("/").split("/")

        if rest == ["function"] and request.method == "GET":
            owner = request.url.params.get("search", "").replace("tag.ownerId=", "", 1)
            count = int(request.url.params.get("count", "20"))
            items = [
                {"boundaryId": b, "functionId": f}
                for (b, f), spec in self.functions.items()
                if (spec.get("metadata") or {}).get("tags", {}).get("ownerId") == owner
            ]
            return httpx.Response(200, json={"items": items[:count]})

        if len(rest) < 4 or rest[0] != "boundary" or rest[2] != "function":
            return httpx.Response(404)
        key = (rest[1], rest[3])
        tail = rest[4:]

        if request.method == "PUT" and not tail:
            if self.fail_create:
                return httpx.Response(500, json={"message": "boom"})
            self.functions[key] = json.loads(request.content)
            if self.build_statuses is not None:
                return httpx.Response(201, json={"buildId": "build-1"})
            body = {"status": "success"}
            if not self.omit_location:
                body["location"] = self.location(*key)
            return httpx.Response(200, json=body)
        if request.method == "GET" and tail[:1] == ["build"]:
            status, body = self.build_statuses.pop(0)
            return httpx.Response(status, json=body)
        if request.method == "GET" and tail == ["location"]:
            if key not in self.functions:
                return httpx.Response(404)
            return httpx.Response(200, json={"location": self.location(*key)})
        if request.method == "DELETE" and not tail:
            if self.functions.pop(key, None) is None:
                return httpx.Response(404)
            return httpx.Response(204)
        return httpx.Response(404)

    def count(self, method: str, suffix: str = "") -> int:
        return sum(1 for r in self.requests if r.method == method and r.url.path.endswith(suffix))


async def _no_sleep(_seconds: float) -> None:
    return None


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def config():
    return ConnectorConfig(
        vendor_oauth_authorization_url=VENDOR_AUTHORIZE_URL,
        vendor_oauth_token_url=VENDOR_TOKEN_URL,
        vendor_oauth_scope="read write",
        vendor_oauth_client_id="client-1",
        vendor_oauth_client_secret="secret-1",
        vendor_name="Contoso",
        base_url="https://connector.example",
        platform_base_url=PLATFORM,
        account_id="acc-1",
        subscription_id="sub-1",
        boundary_id="chat",
        function_id="connector",
        function_access_token="fat-1",
        chat_webhook_secret="hook-secret",
    )


@pytest.fixture
def metrics():
    return MetricsRegistry(CollectorRegistry())


@pytest.fixture
def storage():
    return MemoryStorage()


@pytest.fixture
def vendor():
    return FakeVendor()


@pytest.fixture
def platform():
    return FakePlatform()


@pytest.fixture
def functions(platform):
    http = httpx.AsyncClient(transport=httpx.MockTransport(platform.handler))
    return FunctionApiClient(PLATFORM, "acc-1", "sub-1", "fat-1", http=http, sleep=_no_sleep)


@pytest.fixture
def notifications():
    return []


@pytest.fixture
def strategy(config, vendor, notifications):
    async def get_user_profile(token):
        return {"id": "vendor-42", "name": "Ada"}

    async def on_notification(link, payload):
        notifications.append((link.principal.user, payload))
        return {"delivered": True}

    http = httpx.AsyncClient(transport=httpx.MockTransport(vendor.handler))
    return VendorStrategy(config, http=http, get_user_profile=get_user_profile, on_notification=on_notification)


@pytest.fixture
def machine(config, storage, strategy, functions, clock, metrics):
    return IdentityLinkStateMachine(config, storage, strategy, functions, clock=clock, metrics=metrics)


def make_activity(
    text: str = "",
    user: str = "29:user-1",
    type: str = "message",
    name: Optional[str] = None,
    value: Any = None,
) -> Activity:
    return Activity.from_dict({
        "type": type,
        "text": text,
        "name": name,
        "value": value,
        "from": {"id": user},
        "conversation": {"id": "conv-1"},
        "serviceUrl": "https://smba.example/",
        "channelData": {
            "channel": {"id": "channel-1"},
            "team": {"id": "team-1"},
            "tenant": {"id": "tenant-1"},
        },
    })


@pytest.fixture
def turn_for():
    def build(user: str = "29:user-1", text: str = "") -> TurnContext:
        return TurnContext(make_activity(text=text, user=user))
    return build


@pytest.fixture
def link_principal(machine, turn_for):
    """Drive a principal through prompt, callback and verification."""

    async def run(user: str = "29:user-1"):
        prompt = await machine.issue_prompt(user)
        outcome = await machine.handle_callback({"state": prompt.state, "code": "good-code"})
        assert outcome.ok, outcome.error
        return await machine.verify(turn_for(user), outcome.verification_code)

    return run


@pytest.fixture
def activity():
    return make_activity
