"""Capability matching for cross-component calls.

A caller presents a permission set: an ordered list of grants, each pairing a
colon-delimited action (``function:execute``) with a slash-delimited resource
path. A request for ``(action, resource)`` is allowed when some grant covers
it.

Matching rules:
 - Grants are evaluated in list order; the first match wins.
 - A grant applies only if its resource is a literal string prefix of the
   requested resource. The test is not segment-aware, so ``/a/b`` covers
   ``/a/bc``; existing grants rely on this.
 - Action tokens are compared positionally over the requested action. On the
   first differing position the grant matches only if its token there is
   ``*``, which covers the rest of the action.
 - A missing permission set, or one with an empty allow list, denies.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence

from ..errors import ForbiddenError, UnauthenticatedError

logger = logging.getLogger(__name__)

WILDCARD = "*"


class Decision(Enum):
    ALLOW = "allow"
    DENY = "deny"


@dataclass(frozen=True)
class PermissionGrant:
    """A single ``{action, resource}`` capability."""
    action: str
    resource: str

    def to_dict(self) -> Dict[str, str]:
        return {"action": self.action, "resource": self.resource}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "PermissionGrant":
        return cls(action=str(data["action"]), resource=str(data["resource"]))


@dataclass
class PermissionSet:
    """Grants attached to an inbound request by the authentication layer."""
    allow: List[PermissionGrant] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {"allow": [g.to_dict() for g in self.allow]}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "PermissionSet":
        return cls(allow=[PermissionGrant.from_dict(g) for g in data.get("allow") or []])


def action_matches(required_tokens: Sequence[str], granted_action: str) -> bool:
    granted_tokens = granted_action.split(":")
    for i, token in enumerate(required_tokens):
        granted = granted_tokens[i] if i < len(granted_tokens) else None
        if token != granted:
            return granted == WILDCARD
    return True


def find_matching_grant(
    required_action: str,
    required_resource: str,
    grant_set: Optional[PermissionSet],
) -> Optional[PermissionGrant]:
    if grant_set is None:
        return None
    required_tokens = required_action.split(":")
    for grant in grant_set.allow:
        if not required_resource.startswith(grant.resource):
            continue
        if action_matches(required_tokens, grant.action):
            return grant
    return None


def authorize(
    required_action: str,
    required_resource: str,
    grant_set: Optional[PermissionSet],
) -> Decision:
    """Evaluate a request against a grant set. Pure and deterministic."""
    if find_matching_grant(required_action, required_resource, grant_set) is not None:
        return Decision.ALLOW
    return Decision.DENY


def require(
    required_action: str,
    required_resource: str,
    grant_set: Optional[PermissionSet],
) -> PermissionGrant:
    """Like :func:`authorize` but raises on deny.

    Raises:
        UnauthenticatedError: no permission set was attached to the request
        ForbiddenError: the permission set does not cover the request
    """
    if grant_set is None:
        logger.debug("Failed authorization check: caller not authenticated (%s %s)", required_action, required_resource)
        raise UnauthenticatedError("The caller was not authenticated.")
    grant = find_matching_grant(required_action, required_resource, grant_set)
    if grant is None:
        logger.debug(
            "Failed authorization check: %s %s not covered by %s",
            required_action,
            required_resource,
            grant_set.to_dict(),
        )
        raise ForbiddenError("Caller does not have sufficient permissions.")
    return grant


@dataclass
class Requirement:
    """A capability an endpoint demands, with the resource derived per request."""
    action: str
    resource_factory: Callable[..., str]

    def check(self, grant_set: Optional[PermissionSet], *args: Any, **kwargs: Any) -> PermissionGrant:
        return require(self.action, self.resource_factory(*args, **kwargs), grant_set)


__all__ = [
    "WILDCARD",
    "Decision",
    "PermissionGrant",
    "PermissionSet",
    "Requirement",
    "action_matches",
    "find_matching_grant",
    "authorize",
    "require",
]
