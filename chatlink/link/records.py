"""
Stored records of the identity-link protocol.

A chat principal has at most one record at ``principal/<hex id>``. While
linking it is a pending record (``authenticating`` then ``validating``); once
the verification code is confirmed it is replaced by the durable link record
(``authenticated``, transiently ``refreshing``). The reverse index at
``vendor-user/<hex id>`` points from a vendor user back to that key.
"""

from dataclasses import dataclass, field
from datetime import timedelta
from enum import Enum
from typing import Any, Dict, Optional

from ..token.refresh import VendorToken


class LinkStatus(str, Enum):
    AUTHENTICATING = "authenticating"
    VALIDATING = "validating"
    AUTHENTICATED = "authenticated"
    REFRESHING = "refreshing"


PENDING_STATUSES = (LinkStatus.AUTHENTICATING, LinkStatus.VALIDATING)


def principal_storage_key(principal_id: str) -> str:
    return f"principal/{principal_id.encode('utf-8').hex()}"


def vendor_user_storage_key(vendor_user_id: str) -> str:
    return f"vendor-user/{vendor_user_id.encode('utf-8').hex()}"


@dataclass
class PrincipalDescriptor:
    """Where the chat principal lives on the chat platform."""
    user: str
    channel: Optional[str] = None
    team: Optional[str] = None
    tenant: Optional[str] = None
    conversation: Optional[str] = None
    service_url: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "user": self.user,
            "channel": self.channel,
            "team": self.team,
            "tenant": self.tenant,
            "conversation": self.conversation,
            "serviceUrl": self.service_url,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PrincipalDescriptor":
        return cls(
            user=data["user"],
            channel=data.get("channel"),
            team=data.get("team"),
            tenant=data.get("tenant"),
            conversation=data.get("conversation"),
            service_url=data.get("serviceUrl"),
        )


@dataclass
class PendingLinkRecord:
    status: LinkStatus
    timestamp: int
    state: Optional[str] = None
    verification_code: Optional[str] = None
    vendor_token: Optional[VendorToken] = None

    def is_expired(self, now: int, ttl: timedelta) -> bool:
        return now - self.timestamp > ttl.total_seconds() * 1000

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"status": self.status.value, "timestamp": self.timestamp}
        if self.state is not None:
            data["state"] = self.state
        if self.verification_code is not None:
            data["verificationCode"] = self.verification_code
        if self.vendor_token is not None:
            data["vendorToken"] = self.vendor_token.to_dict()
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PendingLinkRecord":
        status = LinkStatus(data["status"])
        if status not in PENDING_STATUSES:
            raise ValueError(f"'{status.value}' is not a pending status")
        token = data.get("vendorToken")
        return cls(
            status=status,
            timestamp=int(data["timestamp"]),
            state=data.get("state"),
            verification_code=data.get("verificationCode"),
            vendor_token=VendorToken.from_dict(token) if token else None,
        )


@dataclass
class DurableLinkRecord:
    """Association of a chat principal with a vendor user."""
    status: LinkStatus
    vendor_token: VendorToken
    principal: PrincipalDescriptor
    vendor_user_profile: Dict[str, Any] = field(default_factory=dict)
    vendor_user_id: Optional[str] = None
    artifact_url: Optional[str] = None
    # etag of the stored copy this object was read from or written as
    etag: Optional[str] = field(default=None, compare=False, repr=False)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "vendorToken": self.vendor_token.to_dict(),
            "vendorUserProfile": self.vendor_user_profile,
            "vendorUserId": self.vendor_user_id,
            "principal": self.principal.to_dict(),
            "artifactUrl": self.artifact_url,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any], etag: Optional[str] = None) -> "DurableLinkRecord":
        status = LinkStatus(data["status"])
        if status in PENDING_STATUSES:
            raise ValueError(f"'{status.value}' is not a durable status")
        return cls(
            status=status,
            vendor_token=VendorToken.from_dict(data.get("vendorToken") or {}),
            vendor_user_profile=data.get("vendorUserProfile") or {},
            vendor_user_id=data.get("vendorUserId"),
            principal=PrincipalDescriptor.from_dict(data["principal"]),
            artifact_url=data.get("artifactUrl"),
            etag=etag,
        )


__all__ = [
    "LinkStatus",
    "PENDING_STATUSES",
    "PrincipalDescriptor",
    "PendingLinkRecord",
    "DurableLinkRecord",
    "principal_storage_key",
    "vendor_user_storage_key",
]
