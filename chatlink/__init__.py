"""
chatlink

Links chat-platform users to accounts in a vendor's system over OAuth, and
relays vendor events back to the linked chat user.
"""

__version__ = "0.1.0"

from .config import ConnectorConfig, ManagerConfig, configure_logging
from .errors import ChatLinkError
from .link.machine import IdentityLinkStateMachine
from .link.strategy import VendorStrategy

__all__ = [
    "ConnectorConfig",
    "ManagerConfig",
    "configure_logging",
    "ChatLinkError",
    "IdentityLinkStateMachine",
    "VendorStrategy",
]
