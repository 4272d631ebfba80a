"""Vendor integration strategy.

``VendorStrategy`` holds every point where a vendor integration differs from
the generic OAuth behaviour. Each slot has a default implementation driven by
``ConnectorConfig``; an integrator replaces any of them by passing an async
callable of the same signature (without ``self``) as a keyword argument::

    async def profile(token):
        ...

    strategy = VendorStrategy(config, get_user_profile=profile)
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Dict, Optional
from urllib.parse import urlencode

import httpx

from .. import pages
from ..config import ConnectorConfig
from ..errors import NotImplementedByIntegratorError, VendorExchangeError
from ..token.refresh import VendorToken
from .records import DurableLinkRecord

if TYPE_CHECKING:
    from ..chat.activity import TurnContext

logger = logging.getLogger(__name__)


class VendorStrategy:
    SLOTS = (
        "get_authorization_url",
        "get_access_token",
        "refresh_access_token",
        "get_user_profile",
        "get_user_id",
        "on_notification",
        "modify_artifact_specification",
        "on_user_logged_in",
        "render_callback_page",
        "render_error_page",
        "render_start_page",
    )

    def __init__(self, config: ConnectorConfig, http: Optional[httpx.AsyncClient] = None, **overrides: Any):
        self.config = config
        self.http = http or httpx.AsyncClient(timeout=30.0)
        for name, fn in overrides.items():
            if name not in self.SLOTS:
                raise TypeError(f"Unknown vendor strategy slot '{name}'")
            if not callable(fn):
                raise TypeError(f"Vendor strategy slot '{name}' must be callable")
            setattr(self, name, fn)

    async def get_authorization_url(self, state: str, redirect_uri: str) -> str:
        """Fully formed URL that starts the vendor's authorization flow."""
        query = urlencode({
            "response_type": "code",
            "scope": self.config.vendor_oauth_scope,
            "state": state,
            "client_id": self.config.vendor_oauth_client_id,
            "redirect_uri": redirect_uri,
        })
        return f"{self.config.vendor_oauth_authorization_url}?{query}"

    async def get_access_token(self, authorization_code: str, redirect_uri: str) -> Dict[str, Any]:
        """Exchange an authorization code for the vendor's token response."""
        return await self._token_request(data={
            "grant_type": "authorization_code",
            "code": authorization_code,
            "client_id": self.config.vendor_oauth_client_id,
            "client_secret": self.config.vendor_oauth_client_secret,
            "redirect_uri": redirect_uri,
        })

    async def refresh_access_token(self, token: VendorToken) -> Dict[str, Any]:
        """Obtain a new token response using the refresh token."""
        return await self._token_request(params={
            "grant_type": "refresh_token",
            "refresh_token": token.refresh_token,
            "client_id": self.config.vendor_oauth_client_id,
            "client_secret": self.config.vendor_oauth_client_secret,
        })

    async def get_user_profile(self, token: VendorToken) -> Dict[str, Any]:
        return {}

    async def get_user_id(self, link: DurableLinkRecord) -> str:
        """Stable id of the vendor user; defaults to the profile's ``id``."""
        user_id = link.vendor_user_profile.get("id")
        if user_id:
            return str(user_id)
        raise NotImplementedByIntegratorError(
            "Please supply a get_user_id strategy that derives the vendor user id from the user profile."
        )

    async def on_notification(self, link: DurableLinkRecord, payload: Any) -> Any:
        raise NotImplementedByIntegratorError(
            "Not implemented. Please supply an on_notification strategy to deliver notifications to chat users."
        )

    async def modify_artifact_specification(
        self,
        turn: "TurnContext",
        link: DurableLinkRecord,
        specification: Dict[str, Any],
    ) -> Dict[str, Any]:
        return specification

    async def on_user_logged_in(self, turn: "TurnContext", link: DurableLinkRecord) -> None:
        await turn.send_activity("Thank you for logging in!")

    async def render_callback_page(self, verification_code: str) -> str:
        return pages.oauth_callback_page(verification_code, self.config.vendor_name)

    async def render_error_page(self, reason: str) -> str:
        return pages.oauth_error_page(reason, self.config.vendor_name)

    async def render_start_page(self, authorization_url_base: str) -> str:
        return pages.oauth_start_page(authorization_url_base)

    async def _token_request(
        self,
        data: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        try:
            response = await self.http.post(self.config.vendor_oauth_token_url, data=data, params=params)
            response.raise_for_status()
            body = response.json()
        except (httpx.HTTPError, ValueError) as e:
            raise VendorExchangeError(f"Token request to the vendor failed: {e}") from e
        if not isinstance(body, dict):
            raise VendorExchangeError("Token response from the vendor is not a JSON object")
        return body


__all__ = ["VendorStrategy"]
