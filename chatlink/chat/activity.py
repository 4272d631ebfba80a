"""Boundary types for the chat platform.

Only the handful of activity fields the linking protocol reads are modelled;
the rest of the platform payload is kept in ``raw`` untouched.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union

from ..link.records import PrincipalDescriptor


def _get_id(data: Any, *path: str) -> Optional[str]:
    for key in path:
        if not isinstance(data, dict):
            return None
        data = data.get(key)
    return data if isinstance(data, str) else None


@dataclass
class Activity:
    type: str
    from_id: str
    text: str = ""
    name: Optional[str] = None
    value: Any = None
    conversation_id: Optional[str] = None
    service_url: Optional[str] = None
    channel_id: Optional[str] = None
    team_id: Optional[str] = None
    tenant_id: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict, repr=False)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Activity":
        from_id = _get_id(data, "from", "id")
        if not from_id:
            raise ValueError("Activity has no sender id")
        channel_data = data.get("channelData") or {}
        return cls(
            type=str(data.get("type") or "message"),
            from_id=from_id,
            text=str(data.get("text") or ""),
            name=data.get("name"),
            value=data.get("value"),
            conversation_id=_get_id(data, "conversation", "id"),
            service_url=data.get("serviceUrl"),
            channel_id=_get_id(channel_data, "channel", "id"),
            team_id=_get_id(channel_data, "team", "id"),
            tenant_id=_get_id(channel_data, "tenant", "id"),
            raw=data,
        )

    def principal(self) -> PrincipalDescriptor:
        return PrincipalDescriptor(
            user=self.from_id,
            channel=self.channel_id,
            team=self.team_id,
            tenant=self.tenant_id,
            conversation=self.conversation_id,
            service_url=self.service_url,
        )


@dataclass
class SignInCard:
    """Sign-in affordance rendered by the chat platform as a card with one button."""
    title: str
    url: str
    text: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "contentType": "application/vnd.microsoft.card.signin",
            "content": {
                "text": self.text,
                "buttons": [{"type": "signin", "title": self.title, "value": self.url}],
            },
        }


Reply = Union[str, SignInCard]


class TurnContext:
    """One inbound activity plus the replies produced while handling it."""

    def __init__(self, activity: Activity):
        self.activity = activity
        self.replies: List[Reply] = []

    async def send_activity(self, reply: Reply) -> None:
        self.replies.append(reply)

    def replies_as_dicts(self) -> List[Dict[str, Any]]:
        out = []
        for reply in self.replies:
            if isinstance(reply, SignInCard):
                out.append({"type": "message", "attachments": [reply.to_dict()]})
            else:
                out.append({"type": "message", "text": reply})
        return out


__all__ = ["Activity", "SignInCard", "Reply", "TurnContext"]
