"""
Capability-style authorization package.
"""

from .matcher import (
    WILDCARD,
    Decision,
    PermissionGrant,
    PermissionSet,
    Requirement,
    action_matches,
    authorize,
    find_matching_grant,
    require,
)
from .resources import (
    function_resource,
    notification_resource,
    storage_resource,
    subscription_resource,
)

__all__ = [
    "WILDCARD",
    "Decision",
    "PermissionGrant",
    "PermissionSet",
    "Requirement",
    "action_matches",
    "authorize",
    "find_matching_grant",
    "require",
    "function_resource",
    "notification_resource",
    "storage_resource",
    "subscription_resource",
]
