"""Pure transition checks of the identity-link state machine.

Each check takes the pending record as it was consumed from storage (or None)
and the incoming request value, and either returns what the next step needs
or raises. No storage or network access happens here.
"""

from datetime import timedelta
from typing import Any, Dict, Optional

from ..errors import TamperedOrReplayedError
from ..token.refresh import VendorToken
from .records import LinkStatus, PendingLinkRecord

TAMPERED_MESSAGE = "The authorization transaction has been tampered with or was restarted by the user."
NOT_LOGGED_IN_MESSAGE = "You are not logged in. Integrity of the authentication transaction could not be validated."


def parse_pending(raw: Optional[Dict[str, Any]]) -> Optional[PendingLinkRecord]:
    """Parse a stored pending record; anything that is not one reads as missing."""
    if not isinstance(raw, dict):
        return None
    try:
        return PendingLinkRecord.from_dict(raw)
    except (KeyError, ValueError, TypeError):
        return None


def check_callback(
    record: Optional[PendingLinkRecord],
    state_token: str,
    now: int,
    ttl: timedelta,
) -> PendingLinkRecord:
    """The consumed record must be a live ``authenticating`` record issued with this exact state."""
    if (
        record is None
        or record.status != LinkStatus.AUTHENTICATING
        or record.state != state_token
        or record.is_expired(now, ttl)
    ):
        raise TamperedOrReplayedError(TAMPERED_MESSAGE)
    return record


def check_verification(
    record: Optional[PendingLinkRecord],
    code: Optional[str],
    now: int,
    ttl: timedelta,
) -> VendorToken:
    """The consumed record must be a live ``validating`` record holding this code."""
    if (
        record is None
        or record.status != LinkStatus.VALIDATING
        or not code
        or record.verification_code != code
        or record.vendor_token is None
        or record.is_expired(now, ttl)
    ):
        raise TamperedOrReplayedError(NOT_LOGGED_IN_MESSAGE)
    return record.vendor_token


__all__ = [
    "TAMPERED_MESSAGE",
    "NOT_LOGGED_IN_MESSAGE",
    "parse_pending",
    "check_callback",
    "check_verification",
]
