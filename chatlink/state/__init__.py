"""
State token codecs.
"""

from .codec import (
    ChainState,
    LinkState,
    decode_link_state,
    decode_payload,
    encode_link_state,
    encode_payload,
    new_link_state,
)

__all__ = [
    "ChainState",
    "LinkState",
    "decode_link_state",
    "decode_payload",
    "encode_link_state",
    "encode_payload",
    "new_link_state",
]
