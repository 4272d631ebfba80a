"""
Chat-side handler of the linking protocol.

``LinkBot`` routes inbound activities:

- ``signin/verifyState`` invokes complete a pending link, and so do plain
  messages that are exactly a four-hex-digit code while a code is awaited
- messages mentioning ``login`` start the sign-in flow
- messages mentioning ``logout`` remove the link
- anything else reports the current link status
"""

from __future__ import annotations

import logging
import re
from typing import TYPE_CHECKING, Any, Dict, Optional

from ..errors import TamperedOrReplayedError
from ..link.records import LinkStatus
from .activity import Activity, TurnContext

if TYPE_CHECKING:
    from ..link.machine import IdentityLinkStateMachine

logger = logging.getLogger(__name__)

VERIFY_STATE_INVOKE = "signin/verifyState"

_MENTION = re.compile(r"<at>.*?</at>", re.IGNORECASE | re.DOTALL)
_VERIFICATION_CODE = re.compile(r"^[0-9a-f]{4}$")


def strip_mentions(text: str) -> str:
    return _MENTION.sub("", text or "").strip()


class LinkBot:
    def __init__(self, machine: "IdentityLinkStateMachine"):
        self.machine = machine

    async def run(self, activity: Activity) -> TurnContext:
        """Handle one activity and return the turn holding its replies."""
        turn = TurnContext(activity)
        try:
            await self.on_turn(turn)
        except Exception as error:
            await self.on_turn_error(turn, error)
        return turn

    async def on_turn(self, turn: TurnContext) -> None:
        activity = turn.activity
        if activity.type == "invoke":
            if activity.name == VERIFY_STATE_INVOKE:
                value: Dict[str, Any] = activity.value if isinstance(activity.value, dict) else {}
                await self._verify(turn, value.get("state"))
            return
        if activity.type != "message":
            return

        text = strip_mentions(activity.text).lower()
        if _VERIFICATION_CODE.match(text) and await self._awaiting_code(activity.from_id):
            await self._verify(turn, text)
        elif "login" in text:
            await self.machine.send_sign_in_card(turn)
        elif "logout" in text:
            await self.machine.unlink(activity.from_id)
            await turn.send_activity("You are logged out. Use 'login' command to log in.")
        else:
            status = await self.machine.get_status(activity.from_id)
            if status is not None:
                await turn.send_activity(f"Welcome! Your login status is '{status.value}'. Use 'logout' to log out.")
            else:
                await turn.send_activity("Welcome! Use 'login' command to log in.")

    async def _awaiting_code(self, principal_id: str) -> bool:
        return await self.machine.get_status(principal_id) == LinkStatus.VALIDATING

    async def _verify(self, turn: TurnContext, code: Optional[str]) -> None:
        try:
            await self.machine.verify(turn, code)
        except TamperedOrReplayedError as e:
            logger.info(f"Verification rejected for chat principal {turn.activity.from_id}")
            await turn.send_activity(e.message)

    async def on_turn_error(self, turn: TurnContext, error: Exception) -> None:
        logger.error(f"Turn error: {error}", exc_info=error)
        await turn.send_activity(f"The bot encountered an error: {error}")


__all__ = ["LinkBot", "strip_mentions", "VERIFY_STATE_INVOKE"]
