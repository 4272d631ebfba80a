"""Vendor access-token bookkeeping and refresh decisions."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from datetime import timedelta
from enum import Enum
from typing import Any, Callable, Dict, Optional

DEFAULT_REFRESH_MARGIN = timedelta(seconds=30)


def now_ms() -> int:
    return int(time.time() * 1000)


def _as_number(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value.strip())
        except ValueError:
            return None
    return None


@dataclass
class VendorToken:
    """Token response from the vendor's OAuth server.

    ``expires_at`` is epoch milliseconds. Fields the vendor returns beyond the
    standard ones are kept in ``extra`` and written back unchanged.
    """
    access_token: Optional[str] = None
    refresh_token: Optional[str] = None
    token_type: Optional[str] = None
    expires_in: Optional[Any] = None
    expires_at: Optional[int] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    _KNOWN = ("access_token", "refresh_token", "token_type", "expires_in", "expires_at")

    @classmethod
    def from_response(cls, body: Dict[str, Any], now: Optional[int] = None) -> "VendorToken":
        """Build a token from an exchange or refresh response, deriving ``expires_at``."""
        token = cls.from_dict(body)
        seconds = _as_number(token.expires_in)
        if seconds is not None:
            token.expires_at = (now if now is not None else now_ms()) + int(seconds * 1000)
        return token

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "VendorToken":
        return cls(
            access_token=data.get("access_token"),
            refresh_token=data.get("refresh_token"),
            token_type=data.get("token_type"),
            expires_in=data.get("expires_in"),
            expires_at=data.get("expires_at"),
            extra={k: v for k, v in data.items() if k not in cls._KNOWN},
        )

    def to_dict(self) -> Dict[str, Any]:
        result = dict(self.extra)
        for name in self._KNOWN:
            value = getattr(self, name)
            if value is not None:
                result[name] = value
        return result


class TokenDisposition(Enum):
    USABLE = "usable"
    REFRESHABLE = "refreshable"
    DEAD = "dead"


class TokenRefreshPolicy:
    """Decides whether a cached vendor token can be sent as-is.

    A token is usable only while it stays valid for at least ``margin``, so
    a token is never sent that would expire mid-flight.
    """

    def __init__(self, margin: timedelta = DEFAULT_REFRESH_MARGIN, clock: Callable[[], int] = now_ms):
        self.margin = margin
        self.clock = clock

    @property
    def margin_ms(self) -> int:
        return int(self.margin.total_seconds() * 1000)

    def is_usable(self, token: Optional[VendorToken]) -> bool:
        if token is None or not token.access_token:
            return False
        expires_at = _as_number(token.expires_at)
        if expires_at is None:
            return False
        return expires_at > self.clock() + self.margin_ms

    def assess(self, token: Optional[VendorToken]) -> TokenDisposition:
        if self.is_usable(token):
            return TokenDisposition.USABLE
        if token is not None and token.refresh_token:
            return TokenDisposition.REFRESHABLE
        return TokenDisposition.DEAD


__all__ = [
    "DEFAULT_REFRESH_MARGIN",
    "VendorToken",
    "TokenDisposition",
    "TokenRefreshPolicy",
    "now_ms",
]
