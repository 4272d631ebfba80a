"""
Lifecycle manager: configuration chain, install and uninstall.
"""

from .app import create_manager_app
from .chain import ChainResponse, ConfigurationChain, return_to_allowed
from .lifecycle import LifecycleManager

__all__ = [
    "ConfigurationChain",
    "ChainResponse",
    "return_to_allowed",
    "LifecycleManager",
    "create_manager_app",
]
