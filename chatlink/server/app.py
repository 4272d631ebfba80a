"""
HTTP surface of the connector.

Routes:
- ``DELETE /``: remove all connector state and owned artifacts
  (``function:delete`` on the connector's own resource)
- ``POST /api/notification/{vendor_user_id}``: relay a vendor event to the
  linked chat principal (``function:execute`` on the notification resource)
- ``POST /api/messages``: chat platform activities
- ``GET /start-oauth``: page that forwards the browser to the vendor
- ``GET /callback``: OAuth redirect target

The caller's permission set is supplied by ``caller_resolver``. By default it
is read from ``request.state.caller_permissions``, which the hosting
platform's authentication middleware is expected to populate;
``permissions_from_header`` reads it from a header set by the platform
gateway instead.

Chat activities are accepted only when ``activity_authenticator`` approves
them. The default compares the bearer token with ``chat_webhook_secret`` and
rejects everything when no secret is configured.
"""

import json
import logging
import secrets
from typing import Any, Awaitable, Callable, Optional

from fastapi import FastAPI, Query, Request, Response
from fastapi.responses import HTMLResponse, JSONResponse

from ..authz.matcher import PermissionSet, Requirement
from ..authz.resources import function_resource, notification_resource
from ..chat.activity import Activity
from ..chat.bot import LinkBot
from ..errors import ChatLinkError, ForbiddenError, UnauthenticatedError
from ..link.machine import IdentityLinkStateMachine
from ..monitoring.metrics import MetricsRegistry
from ..pages import is_valid_authorization_url

logger = logging.getLogger(__name__)

UNAUTHORIZED_MESSAGE = "Unauthorized"

CALLER_PERMISSIONS_HEADER = "x-caller-permissions"

CallerResolver = Callable[[Request], Awaitable[Optional[PermissionSet]]]
ActivityAuthenticator = Callable[[Request, Activity], Awaitable[bool]]


def bearer_token(request: Request) -> Optional[str]:
    header = request.headers.get("authorization") or ""
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token:
        return None
    return token.strip()


async def permissions_from_request_state(request: Request) -> Optional[PermissionSet]:
    permissions = getattr(request.state, "caller_permissions", None)
    if permissions is None or isinstance(permissions, PermissionSet):
        return permissions
    return PermissionSet.from_dict(permissions)


def permissions_from_header(header: str = CALLER_PERMISSIONS_HEADER) -> CallerResolver:
    """Read the caller's permission set from a JSON header.

    The gateway in front of the connector authenticates the caller, sets the
    header and drops any copy of it sent by the client. A missing or
    unreadable header means "not authenticated".
    """

    async def resolve(request: Request) -> Optional[PermissionSet]:
        raw = request.headers.get(header)
        if not raw:
            return None
        try:
            return PermissionSet.from_dict(json.loads(raw))
        except (ValueError, KeyError, TypeError, AttributeError) as e:
            logger.debug(f"Unreadable {header} header: {e}")
            return None

    return resolve


def shared_secret_authenticator(secret: Optional[str]) -> ActivityAuthenticator:
    """Accept activities whose bearer token equals ``secret``; reject all when unset."""

    async def authenticate(request: Request, activity: Activity) -> bool:
        token = bearer_token(request)
        if not secret or not token:
            return False
        return secrets.compare_digest(token.encode("utf-8"), secret.encode("utf-8"))

    return authenticate


def setup_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(ChatLinkError)
    async def chatlink_exception_handler(request: Request, exc: ChatLinkError):
        if exc.status >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
        return JSONResponse(status_code=exc.status, content=exc.to_dict())

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception):
        logger.exception(f"Unhandled error on {request.method} {request.url.path}")
        return JSONResponse(status_code=500, content=ChatLinkError("Internal Server Error", 500).to_dict())


def create_app(
    machine: IdentityLinkStateMachine,
    bot: Optional[LinkBot] = None,
    caller_resolver: CallerResolver = permissions_from_request_state,
    metrics: Optional[MetricsRegistry] = None,
    activity_authenticator: Optional[ActivityAuthenticator] = None,
) -> FastAPI:
    config = machine.config
    if activity_authenticator is None:
        if not config.chat_webhook_secret:
            logger.warning("No chat_webhook_secret configured; every chat activity will be rejected")
        activity_authenticator = shared_secret_authenticator(config.chat_webhook_secret)
    bot = bot or LinkBot(machine)
    metrics = metrics or machine.metrics

    app = FastAPI(title="chatlink connector", docs_url=None, redoc_url=None)
    app.state.machine = machine
    app.state.bot = bot
    setup_exception_handlers(app)

    delete_all = Requirement("function:delete", function_resource)
    notify = Requirement("function:execute", notification_resource)
    coordinates = (config.account_id, config.subscription_id, config.boundary_id, config.function_id)

    async def authorize(request: Request, requirement: Requirement, *args: Any) -> None:
        permissions = await caller_resolver(request)
        try:
            requirement.check(permissions, *args)
        except UnauthenticatedError:
            metrics.denied("unauthenticated")
            raise UnauthenticatedError(UNAUTHORIZED_MESSAGE)
        except ForbiddenError:
            metrics.denied("forbidden")
            raise ForbiddenError(UNAUTHORIZED_MESSAGE)

    @app.delete("/")
    async def uninstall(request: Request):
        await authorize(request, delete_all, *coordinates)
        removed_keys = await machine.storage.delete_prefix("")
        removed_functions = await machine.functions.delete_owned_functions(config.owner_id)
        logger.info(f"Connector cleanup removed {removed_keys} records and {removed_functions} artifacts")
        return Response(status_code=204)

    @app.post("/api/notification/{vendor_user_id}")
    async def notification(vendor_user_id: str, request: Request):
        await authorize(request, notify, *coordinates, vendor_user_id)
        try:
            payload = await request.json()
        except ValueError:
            payload = None
        result = await machine.handle_notification(vendor_user_id, payload)
        return JSONResponse(status_code=200, content=result)

    @app.post("/api/messages")
    async def messages(request: Request):
        try:
            activity = Activity.from_dict(await request.json())
        except (ValueError, AttributeError):
            raise ChatLinkError("Malformed activity", status=400)
        if not await activity_authenticator(request, activity):
            metrics.denied("activity")
            raise UnauthenticatedError(UNAUTHORIZED_MESSAGE)
        turn = await bot.run(activity)
        return {"replies": turn.replies_as_dicts()}

    @app.get("/start-oauth", response_class=HTMLResponse)
    async def start_oauth(authorization_url: Optional[str] = Query(None, alias="authorizationUrl")):
        base = config.vendor_oauth_authorization_url
        if not is_valid_authorization_url(authorization_url, base):
            logger.debug("Rejected start-oauth redirect to %s", authorization_url)
            html = await machine.strategy.render_error_page("Invalid authorization url")
            return HTMLResponse(html, status_code=400)
        return HTMLResponse(await machine.strategy.render_start_page(base))

    @app.get("/callback", response_class=HTMLResponse)
    async def callback(request: Request):
        outcome = await machine.handle_callback(dict(request.query_params))
        return HTMLResponse(outcome.html)

    return app


__all__ = [
    "create_app",
    "bearer_token",
    "permissions_from_header",
    "permissions_from_request_state",
    "shared_secret_authenticator",
    "setup_exception_handlers",
    "ActivityAuthenticator",
    "CallerResolver",
]
