"""
Error taxonomy for chatlink.

Every error carries the HTTP status it maps to on API-style endpoints and can
render itself as the JSON body those endpoints return, with the status
mirrored in both ``status`` and ``statusCode``.
"""

from typing import Any, Dict, Optional


class ChatLinkError(Exception):
    """Base class for all chatlink errors."""

    status: int = 500

    def __init__(self, message: str = "", status: Optional[int] = None):
        super().__init__(message)
        self.message = message
        if status is not None:
            self.status = status

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status,
            "statusCode": self.status,
            "message": self.message,
        }


class UnauthenticatedError(ChatLinkError):
    """The caller presented no permission set."""
    status = 403


class ForbiddenError(ChatLinkError):
    """The caller's grants do not cover the requested action and resource."""
    status = 403


class MalformedTokenError(ChatLinkError):
    """A state or data token failed to decode or lacks required fields."""
    status = 400


class TamperedOrReplayedError(ChatLinkError):
    """A decoded token does not match the pending record it refers to."""
    status = 400


class VendorExchangeError(ChatLinkError):
    """The vendor's token endpoint rejected a code exchange or refresh."""
    status = 502


class ConfigurationError(ChatLinkError):
    """Required configuration is missing or invalid."""
    status = 500


class NotImplementedByIntegratorError(ConfigurationError):
    """A strategy slot the integrator must supply has no usable default."""
    status = 501


class ProvisionError(ChatLinkError):
    """Creating or building a per-principal artifact failed or timed out."""
    status = 502


class NotAuthenticatedError(ChatLinkError):
    """No usable vendor token exists for the principal."""
    status = 401


class RelinkRequiredError(NotAuthenticatedError):
    """Refreshing the vendor token failed; the principal must link again."""


class NotFoundError(ChatLinkError):
    status = 404


class StorageError(ChatLinkError):
    status = 500


class StorageConflictError(StorageError):
    """An optimistic-concurrency etag did not match the stored record."""
    status = 409


class ChainError(ChatLinkError):
    """Error raised inside the configuration chain.

    Carries the chain state (when known) so the error can be reported back to
    the original caller's ``returnTo`` URL.
    """
    status = 400

    def __init__(self, message: str = "", status: Optional[int] = None, state: Any = None):
        super().__init__(message, status)
        self.state = state


__all__ = [
    "ChatLinkError",
    "UnauthenticatedError",
    "ForbiddenError",
    "MalformedTokenError",
    "TamperedOrReplayedError",
    "VendorExchangeError",
    "ConfigurationError",
    "NotImplementedByIntegratorError",
    "ProvisionError",
    "NotAuthenticatedError",
    "RelinkRequiredError",
    "NotFoundError",
    "StorageError",
    "StorageConflictError",
    "ChainError",
]
