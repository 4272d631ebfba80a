"""
Configuration for the chatlink connector and lifecycle manager.

Configuration is passed explicitly at construction time. ``from_env`` helpers
read the lowercase setting names used by the hosting platform's function
configuration (``vendor_oauth_client_id=...``) for deployments that still
inject settings through the process environment. The function's own access
token is not part of the stored configuration; the platform injects it at run
time as ``fusebit_function_access_token``.
"""

import logging
import os
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Dict, List, Mapping, Optional

from .errors import ConfigurationError

logger = logging.getLogger(__name__)

_TRUTHY = {"1", "true", "yes", "on"}


def _split_list(value: Optional[str]) -> List[str]:
    return [item.strip() for item in (value or "").split(",") if item.strip()]


@dataclass
class ConnectorConfig:
    """Settings of one connector deployment."""
    # Vendor OAuth
    vendor_oauth_authorization_url: str = ""
    vendor_oauth_token_url: str = ""
    vendor_oauth_scope: str = ""
    vendor_oauth_client_id: str = ""
    vendor_oauth_client_secret: str = ""
    vendor_name: str = "OAuth"

    # Public URL of this connector (callback and start pages hang off it)
    base_url: str = ""

    # Function-hosting platform coordinates
    platform_base_url: str = ""
    account_id: str = ""
    subscription_id: str = ""
    boundary_id: str = ""
    function_id: str = ""
    function_access_token: Optional[str] = None
    storage_id: str = ""

    # Shared secret the chat platform presents as a bearer token on /api/messages
    chat_webhook_secret: Optional[str] = None

    # Protocol tuning
    pending_record_ttl: timedelta = field(default_factory=lambda: timedelta(minutes=5))
    token_refresh_margin: timedelta = field(default_factory=lambda: timedelta(seconds=30))
    build_poll_attempts: int = 15
    build_poll_interval: float = 2.0

    debug: bool = False

    REQUIRED = (
        "vendor_oauth_authorization_url",
        "vendor_oauth_token_url",
        "vendor_oauth_client_id",
        "base_url",
    )
    PLATFORM_REQUIRED = (
        "platform_base_url",
        "account_id",
        "subscription_id",
        "boundary_id",
        "function_id",
        "storage_id",
        "function_access_token",
    )

    @property
    def redirect_uri(self) -> str:
        return f"{self.base_url.rstrip('/')}/callback"

    @property
    def owner_id(self) -> str:
        """Tag value marking artifacts provisioned by this connector."""
        return f"{self.boundary_id}/{self.function_id}"

    def validate(self) -> None:
        missing = [name for name in self.REQUIRED if not getattr(self, name)]
        if missing:
            raise ConfigurationError(f"Missing connector configuration: {', '.join(missing)}")

    def validate_platform(self) -> None:
        """Settings a connector deployed on the hosting platform cannot run without."""
        missing = [name for name in self.PLATFORM_REQUIRED if not getattr(self, name)]
        if missing:
            raise ConfigurationError(f"Missing platform configuration: {', '.join(missing)}")

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "ConnectorConfig":
        env = os.environ if environ is None else environ
        config = cls(
            vendor_oauth_authorization_url=env.get("vendor_oauth_authorization_url", ""),
            vendor_oauth_token_url=env.get("vendor_oauth_token_url", ""),
            vendor_oauth_scope=env.get("vendor_oauth_scope", ""),
            vendor_oauth_client_id=env.get("vendor_oauth_client_id", ""),
            vendor_oauth_client_secret=env.get("vendor_oauth_client_secret", ""),
            vendor_name=env.get("vendor_name", "OAuth"),
            base_url=env.get("base_url", ""),
            platform_base_url=env.get("fusebit_storage_audience", env.get("platform_base_url", "")),
            account_id=env.get("account_id", ""),
            subscription_id=env.get("subscription_id", ""),
            boundary_id=env.get("boundary_id", ""),
            function_id=env.get("function_id", ""),
            function_access_token=env.get("function_access_token") or env.get("fusebit_function_access_token"),
            storage_id=env.get("fusebit_storage_id", ""),
            chat_webhook_secret=env.get("chat_webhook_secret") or None,
            debug=env.get("debug", "").lower() in _TRUTHY,
        )
        if env.get("pending_record_ttl_seconds"):
            config.pending_record_ttl = timedelta(seconds=int(env["pending_record_ttl_seconds"]))
        return config


@dataclass
class ManagerConfig:
    """Settings of the lifecycle manager that installs a connector."""
    self_url: str = ""
    settings_managers: List[str] = field(default_factory=list)
    show_form_configuration: bool = False
    allowed_return_to: List[str] = field(default_factory=list)
    connector_configuration: Dict[str, str] = field(default_factory=dict)
    debug: bool = False

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "ManagerConfig":
        env = os.environ if environ is None else environ
        return cls(
            self_url=env.get("self_url", ""),
            settings_managers=_split_list(env.get("fusebit_settings_managers")),
            show_form_configuration=env.get("fusebit_show_form_configuration", "").lower() in _TRUTHY,
            allowed_return_to=_split_list(env.get("fusebit_allowed_return_to")),
            debug=env.get("debug", "").lower() in _TRUTHY,
        )


def configure_logging(debug: bool = False) -> None:
    """Set the level of the package logger; DEBUG traces every protocol hop."""
    level = logging.DEBUG if debug else logging.INFO
    logging.getLogger("chatlink").setLevel(level)
    if debug:
        logger.debug("Debug logging enabled. Unset 'debug' to disable protocol traces.")


__all__ = ["ConnectorConfig", "ManagerConfig", "configure_logging"]
