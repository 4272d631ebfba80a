"""
Vendor token module initialization
"""

from .refresh import (
    DEFAULT_REFRESH_MARGIN,
    TokenDisposition,
    TokenRefreshPolicy,
    VendorToken,
    now_ms,
)

__all__ = [
    "DEFAULT_REFRESH_MARGIN",
    "TokenDisposition",
    "TokenRefreshPolicy",
    "VendorToken",
    "now_ms",
]
