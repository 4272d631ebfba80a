"""
Configuration chain of the lifecycle manager.

Configuring a connector walks the browser through an ordered list of
settings managers. Each hop carries two query parameters:

- ``state``: base64 JSON ``ChainState`` (where to return, which stage is next)
- ``data``: base64 JSON configuration collected so far

A chain starts when the caller supplies ``returnTo``; each settings manager
returns to ``<self_url>/configure`` with the state it was given. When every
manager has run, the chain either shows a confirmation form or redirects back
to the original ``returnTo`` with ``status=success``. Errors go back the same
way with ``status=error`` whenever a return target is known.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional, Tuple
from urllib.parse import urlencode

from ..config import ManagerConfig
from ..errors import ChainError, ChatLinkError, MalformedTokenError
from ..pages import configuration_form_page
from ..state.codec import ChainState, decode_payload, encode_payload

logger = logging.getLogger(__name__)

SETTINGS_MANAGERS_STATE = "settingsManagers"
FORM_STATE = "form"

REQUIRED_DATA = ("baseUrl", "accountId", "subscriptionId", "boundaryId", "functionId", "templateName")


@dataclass
class ChainResponse:
    status: int
    headers: Dict[str, str] = field(default_factory=dict)
    body: Any = None

    @property
    def location(self) -> Optional[str]:
        return self.headers.get("location")


def _with_query(url: str, params: Dict[str, str]) -> str:
    separator = "&" if "?" in url else "?"
    return f"{url}{separator}{urlencode(params)}"


def return_to_allowed(return_to: str, allowed: Any) -> bool:
    """Exact match, or prefix match against an entry ending in ``*``."""
    for entry in allowed:
        if entry == return_to:
            return True
        if entry.endswith("*") and return_to.startswith(entry[:-1]):
            return True
    return False


class ConfigurationChain:
    def __init__(self, config: ManagerConfig):
        self.config = config

    @property
    def configure_url(self) -> str:
        return f"{self.config.self_url.rstrip('/')}/configure"

    def validate_return_to(self, return_to: Optional[str]) -> None:
        if return_to and not return_to_allowed(return_to, self.config.allowed_return_to):
            raise ChainError(
                f"The specified 'returnTo' URL '{return_to}' does not match any of the allowed returnTo URLs. "
                "If this is a valid request, add it to the 'fusebit_allowed_return_to' setting.",
                status=403,
            )

    def get_inputs(self, query: Mapping[str, str]) -> Tuple[ChainState, Dict[str, Any]]:
        """Parse ``(state, data)`` from an inbound configure request.

        Raises:
            ChainError: malformed ``data`` or ``state``, missing required data
                fields on a new chain, or neither ``returnTo`` nor ``state``
        """
        try:
            data = decode_payload(query["data"]) if query.get("data") else {}
        except MalformedTokenError as e:
            raise ChainError(e.message, status=400)

        return_to = query.get("returnTo")
        if return_to:
            state = ChainState(
                return_to=return_to,
                configuration_state=SETTINGS_MANAGERS_STATE,
                return_to_state=query.get("state") or None,
            )
            for name in REQUIRED_DATA:
                if not data.get(name):
                    raise ChainError(f"Missing 'data.{name}' input parameter", status=400, state=state)
            return state, data

        if query.get("state"):
            try:
                return ChainState.decode(query["state"]), data
            except MalformedTokenError as e:
                raise ChainError(e.message, status=400)

        raise ChainError("Either the 'returnTo' or 'state' parameter must be present.", status=400)

    def handle(self, query: Mapping[str, str]) -> ChainResponse:
        logger.debug("Configure request with parameters %s", sorted(query.keys()))
        try:
            self.validate_return_to(query.get("returnTo"))
        except ChainError as e:
            return self._reject(e)

        try:
            state, data = self.get_inputs(query)
        except ChatLinkError as e:
            return self.complete_with_error(query, e)

        # a continuation carries its return target inside the unsigned state
        try:
            self.validate_return_to(state.return_to)
        except ChainError as e:
            return self._reject(e)

        try:
            if query.get("status") == "error":
                status = data.get("status")
                raise ChainError(
                    data.get("message") or "Unspecified error",
                    status=status if isinstance(status, int) and not isinstance(status, bool) else 500,
                    state=state,
                )
            if state.configuration_state == SETTINGS_MANAGERS_STATE:
                return self._next_settings_manager(state, data)
            if state.configuration_state == FORM_STATE:
                return self._form(state, data)
            raise ChainError(f"Unsupported configuration state '{state.configuration_state}'", status=400, state=state)
        except ChatLinkError as e:
            return self.complete_with_error(query, e)

    @staticmethod
    def _reject(error: ChainError) -> ChainResponse:
        """Allow-list failures never redirect."""
        return ChainResponse(status=error.status, body={"status": error.status, "message": error.message})

    def _next_settings_manager(self, state: ChainState, data: Dict[str, Any]) -> ChainResponse:
        managers = self.config.settings_managers
        if state.stage_index < len(managers):
            return self.redirect(state, data, managers[state.stage_index])
        state.configuration_state = FORM_STATE
        return self._form(state, data)

    def _form(self, state: ChainState, data: Dict[str, Any]) -> ChainResponse:
        if not self.config.show_form_configuration:
            return self.complete_with_success(state, data)
        page = configuration_form_page(data.get("templateName", ""), state.return_to, data, state.return_to_state)
        return ChainResponse(status=200, headers={"content-type": "text/html"}, body=page)

    def redirect(self, state: ChainState, data: Dict[str, Any], manager_url: str) -> ChainResponse:
        """302 to a settings manager, advancing the chain by one stage."""
        next_state = ChainState(
            return_to=state.return_to,
            configuration_state=SETTINGS_MANAGERS_STATE,
            return_to_state=state.return_to_state,
            stage_index=state.stage_index + 1,
        )
        location = _with_query(manager_url, {
            "returnTo": self.configure_url,
            "state": next_state.encode(),
            "data": encode_payload(data),
        })
        logger.debug(f"Redirecting to settings manager {state.stage_index + 1}: {manager_url}")
        return ChainResponse(status=302, headers={"location": location})

    def complete_with_success(self, state: ChainState, data: Dict[str, Any]) -> ChainResponse:
        params = {"status": "success", "data": encode_payload(data)}
        if state.return_to_state:
            params["state"] = state.return_to_state
        return ChainResponse(status=302, headers={"location": _with_query(state.return_to, params)})

    def complete_with_error(self, query: Mapping[str, str], error: ChatLinkError) -> ChainResponse:
        chain_state = error.state if isinstance(error, ChainError) and isinstance(error.state, ChainState) else None
        if chain_state is not None:
            return_to = chain_state.return_to
            return_to_state = chain_state.return_to_state
        else:
            return_to = query.get("returnTo")
            return_to_state = query.get("state") if return_to else None
        body = {"status": error.status, "message": error.message}
        logger.debug(f"Configuration completed with error {body}")
        if not return_to:
            return ChainResponse(status=error.status, body=body)
        params = {"status": "error", "data": encode_payload(body)}
        if return_to_state:
            params["state"] = return_to_state
        return ChainResponse(status=302, headers={"location": _with_query(return_to, params)})


__all__ = [
    "ConfigurationChain",
    "ChainResponse",
    "return_to_allowed",
    "SETTINGS_MANAGERS_STATE",
    "FORM_STATE",
]
