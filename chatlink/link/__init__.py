"""
Identity linking between chat principals and vendor users.

The state machine itself lives in ``chatlink.link.machine``; import it from
there.
"""

from .records import (
    PENDING_STATUSES,
    DurableLinkRecord,
    LinkStatus,
    PendingLinkRecord,
    PrincipalDescriptor,
    principal_storage_key,
    vendor_user_storage_key,
)
from .strategy import VendorStrategy
from .transitions import (
    NOT_LOGGED_IN_MESSAGE,
    TAMPERED_MESSAGE,
    check_callback,
    check_verification,
    parse_pending,
)

__all__ = [
    "LinkStatus",
    "PENDING_STATUSES",
    "PrincipalDescriptor",
    "PendingLinkRecord",
    "DurableLinkRecord",
    "principal_storage_key",
    "vendor_user_storage_key",
    "VendorStrategy",
    "TAMPERED_MESSAGE",
    "NOT_LOGGED_IN_MESSAGE",
    "parse_pending",
    "check_callback",
    "check_verification",
]
