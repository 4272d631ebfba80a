"""Opaque state tokens carried across redirect hops.

Two envelopes are in use:
 - Sign-in state: hex-encoded JSON ``{"nonce", "principalId"}``. Hex needs no
   escaping inside the OAuth ``state`` parameter.
 - Configuration chain state and data: base64-encoded JSON objects, compact
   enough to ride through settings-manager redirects.

Decoding never lets a parse exception escape: any structural problem raises
``MalformedTokenError``.
"""

from __future__ import annotations

import base64
import binascii
import json
import secrets
from dataclasses import dataclass
from typing import Any, Dict, Optional

from ..errors import MalformedTokenError

NONCE_BYTES = 32


@dataclass(frozen=True)
class LinkState:
    """Binds a random nonce to the chat principal that started sign-in."""
    nonce: str
    principal_id: str

    def to_dict(self) -> Dict[str, str]:
        return {"nonce": self.nonce, "principalId": self.principal_id}


def new_link_state(principal_id: str) -> LinkState:
    nonce = base64.b64encode(secrets.token_bytes(NONCE_BYTES)).decode("ascii")
    return LinkState(nonce=nonce, principal_id=principal_id)


def encode_link_state(state: LinkState) -> str:
    return json.dumps(state.to_dict(), separators=(",", ":")).encode("utf-8").hex()


def decode_link_state(token: Any) -> LinkState:
    if not isinstance(token, str) or not token:
        raise MalformedTokenError("The `state` query parameter is malformed.")
    try:
        payload = json.loads(bytes.fromhex(token).decode("utf-8"))
    except (ValueError, TypeError) as e:
        raise MalformedTokenError("The `state` query parameter is malformed.") from e
    if not isinstance(payload, dict):
        raise MalformedTokenError("The `state` query parameter is malformed.")
    nonce = payload.get("nonce")
    principal_id = payload.get("principalId")
    if not isinstance(nonce, str) or not isinstance(principal_id, str):
        raise MalformedTokenError("The `state` query parameter is malformed.")
    return LinkState(nonce=nonce, principal_id=principal_id)


def encode_payload(payload: Dict[str, Any]) -> str:
    return base64.b64encode(json.dumps(payload, separators=(",", ":")).encode("utf-8")).decode("ascii")


def decode_payload(token: Any, name: str = "data") -> Dict[str, Any]:
    """Decode a base64 JSON object.

    Spaces are read back as ``+`` because a hop that re-serializes the query
    string without escaping turns ``+`` into a space.
    """
    if not isinstance(token, str) or not token:
        raise MalformedTokenError(f"Malformed '{name}' parameter")
    try:
        raw = base64.b64decode(token.replace(" ", "+"), validate=True)
        payload = json.loads(raw.decode("utf-8"))
    except (binascii.Error, ValueError, TypeError) as e:
        raise MalformedTokenError(f"Malformed '{name}' parameter") from e
    if not isinstance(payload, dict):
        raise MalformedTokenError(f"Malformed '{name}' parameter")
    return payload


@dataclass
class ChainState:
    """State threaded through each settings-manager redirect."""
    return_to: str
    configuration_state: str
    return_to_state: Optional[str] = None
    stage_index: int = 0

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "returnTo": self.return_to,
            "configurationState": self.configuration_state,
            "stageIndex": self.stage_index,
        }
        if self.return_to_state is not None:
            data["returnToState"] = self.return_to_state
        return data

    def encode(self) -> str:
        return encode_payload(self.to_dict())

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ChainState":
        return_to = data.get("returnTo")
        configuration_state = data.get("configurationState")
        return_to_state = data.get("returnToState")
        stage_index = data.get("stageIndex", 0)
        if not isinstance(return_to, str) or not isinstance(configuration_state, str):
            raise MalformedTokenError("Malformed 'state' parameter")
        if return_to_state is not None and not isinstance(return_to_state, str):
            raise MalformedTokenError("Malformed 'state' parameter")
        if isinstance(stage_index, bool) or not isinstance(stage_index, int) or stage_index < 0:
            raise MalformedTokenError("Malformed 'state' parameter")
        return cls(
            return_to=return_to,
            configuration_state=configuration_state,
            return_to_state=return_to_state,
            stage_index=stage_index,
        )

    @classmethod
    def decode(cls, token: Any) -> "ChainState":
        return cls.from_dict(decode_payload(token, name="state"))


__all__ = [
    "LinkState",
    "ChainState",
    "new_link_state",
    "encode_link_state",
    "decode_link_state",
    "encode_payload",
    "decode_payload",
]
