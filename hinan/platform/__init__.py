"""
Platform primitives for the wire codec, session bookkeeping and configuration.
"""

from hinan.platform.messages import (
    Envelope,
    MalformedMessageError,
    MessageType,
    decode_agent_message,
    encode_message,
    parse_message,
)
from hinan.platform.registry import SessionRegistry
from hinan.platform.config import Settings, configure_logging

__all__ = [
    "Envelope",
    "MalformedMessageError",
    "MessageType",
    "decode_agent_message",
    "encode_message",
    "parse_message",
    "SessionRegistry",
    "Settings",
    "configure_logging",
]
