#!/usr/bin/env python3
"""
Connector walkthrough for chatlink

This example links a chat user to a vendor account without leaving the
process: the vendor's token endpoint and the hosting platform's function API
are simulated with httpx mock transports, and the connector's HTTP surface is
driven through an in-memory ASGI client.

Steps shown:
- chat user types ``login`` and receives a sign-in card
- browser completes the vendor callback and shows a verification code
- chat user types the code; the link is stored and an artifact provisioned
- vendor sends a notification for the linked user
- chat user logs out
"""

import asyncio
import json
import logging
from urllib.parse import parse_qs, urlparse

import httpx

from chatlink import ConnectorConfig, IdentityLinkStateMachine, VendorStrategy, configure_logging
from chatlink.artifacts import FunctionApiClient
from chatlink.authz import PermissionSet
from chatlink.link import principal_storage_key
from chatlink.server import create_app
from chatlink.storage import MemoryStorage

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

USER = "29:demo-user"
CHAT_AUTH = {"Authorization": "Bearer demo-hook"}

CONFIG = ConnectorConfig(
    vendor_oauth_authorization_url="https://vendor.example/oauth/authorize",
    vendor_oauth_token_url="https://vendor.example/oauth/token",
    vendor_oauth_client_id="demo-client",
    vendor_oauth_client_secret="demo-secret",
    vendor_name="Contoso",
    base_url="https://connector.example",
    platform_base_url="https://api.platform.example",
    account_id="acc-demo",
    subscription_id="sub-demo",
    boundary_id="chat",
    function_id="connector",
    function_access_token="demo-token",
    chat_webhook_secret="demo-hook",
)


def vendor_api(request: httpx.Request) -> httpx.Response:
    """Token endpoint that accepts any authorization code."""
    return httpx.Response(200, json={"access_token": "demo-access", "refresh_token": "demo-refresh", "expires_in": 3600})


def platform_api(request: httpx.Request) -> httpx.Response:
    """Function API that accepts every deployment."""
    if request.method == "PUT":
        name = request.url.path.rstrip("/").split("/")[-1]
        return httpx.Response(200, json={"status": "success", "location": f"https://run.example/{name}"})
    if request.method == "DELETE":
        return httpx.Response(204)
    return httpx.Response(200, json={"items": []})


async def get_user_profile(token):
    return {"id": "contoso-1001", "name": "Demo User"}


async def on_notification(link, payload):
    logger.info(f"Relaying to {link.principal.user}: {payload}")
    return {"delivered": True}


def message(text: str) -> dict:
    return {
        "type": "message",
        "text": text,
        "from": {"id": USER},
        "conversation": {"id": "demo-conversation"},
        "channelData": {"team": {"id": "demo-team"}, "tenant": {"id": "demo-tenant"}},
    }


async def main():
    configure_logging(debug=False)

    strategy = VendorStrategy(
        CONFIG,
        http=httpx.AsyncClient(transport=httpx.MockTransport(vendor_api)),
        get_user_profile=get_user_profile,
        on_notification=on_notification,
    )
    functions = FunctionApiClient(
        CONFIG.platform_base_url,
        CONFIG.account_id,
        CONFIG.subscription_id,
        CONFIG.function_access_token,
        http=httpx.AsyncClient(transport=httpx.MockTransport(platform_api)),
    )
    machine = IdentityLinkStateMachine(CONFIG, MemoryStorage(), strategy, functions)

    # Every caller of this demo may notify the linked vendor user
    grants = PermissionSet.from_dict({"allow": [{"action": "function:execute", "resource": "/account/acc-demo/"}]})

    async def caller(request):
        return grants

    app = create_app(machine, caller_resolver=caller)
    async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url=CONFIG.base_url) as client:
        print("\n=== 1. login ===")
        replies = (await client.post("/api/messages", json=message("login"), headers=CHAT_AUTH)).json()["replies"]
        card_url = replies[0]["attachments"][0]["content"]["buttons"][0]["value"]
        print(f"Sign-in card opens: {card_url[:80]}...")

        print("\n=== 2. vendor callback ===")
        authorization_url = parse_qs(urlparse(card_url).query)["authorizationUrl"][0]
        state = parse_qs(urlparse(authorization_url).query)["state"][0]
        await client.get("/callback", params={"state": state, "code": "demo-code"})
        record = await machine.storage.get(principal_storage_key(USER))
        code = record.data["verificationCode"]
        print(f"Browser shows verification code {code}")

        print("\n=== 3. verification ===")
        replies = (await client.post("/api/messages", json=message(code), headers=CHAT_AUTH)).json()["replies"]
        print(f"Bot: {replies[0]['text']}")
        replies = (await client.post("/api/messages", json=message("status"), headers=CHAT_AUTH)).json()["replies"]
        print(f"Bot: {replies[0]['text']}")

        print("\n=== 4. notification ===")
        response = await client.post("/api/notification/contoso-1001", json={"event": "invoice.paid"})
        print(f"Notification result: {json.dumps(response.json())}")

        print("\n=== 5. logout ===")
        replies = (await client.post("/api/messages", json=message("logout"), headers=CHAT_AUTH)).json()["replies"]
        print(f"Bot: {replies[0]['text']}")


if __name__ == "__main__":
    asyncio.run(main())
