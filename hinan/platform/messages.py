"""
Wire envelope codec.

Every message in either direction is a JSON object
``{"type": <tag>, "payload": <type-specific>}`` sent as a text frame.
"""

from __future__ import annotations

import json
from enum import Enum
from typing import Any

from pydantic import BaseModel, StrictBool, TypeAdapter, ValidationError

from hinan.core.schema import Coordinate


class MessageType(str, Enum):
    """Known message tags."""

    # Agent -> Coordinator
    AGENT_LOCATION = "agentLocation"
    SELECTED_SHELTER = "selectedShelter"
    SIGNAL_STATUS = "signalStatus"

    # Both directions: acknowledgement from the Agent, notice to the Agent
    EVAC_COMPLETE = "evacComplete"

    # Coordinator -> Agent
    SHELTERS_DATA = "sheltersData"
    ROUTE_DATA = "routeData"

    # Coordinator <-> Backend
    LOCATION_INFO = "locationInfo"
    COMBINED_DATA = "combinedData"


# Outbound payloads: models, tuples and plain values to JSON-ready data.
_ANY = TypeAdapter(Any)

# Older agents acknowledge completion with this tag.
_AGENT_TYPE_ALIASES = {"evacComp": MessageType.EVAC_COMPLETE}

_AGENT_PAYLOAD_ADAPTERS: dict[MessageType, TypeAdapter | None] = {
    MessageType.AGENT_LOCATION: TypeAdapter(Coordinate),
    MessageType.SELECTED_SHELTER: TypeAdapter(Coordinate),
    MessageType.SIGNAL_STATUS: TypeAdapter(StrictBool),
    MessageType.EVAC_COMPLETE: None,
}


class MalformedMessageError(ValueError):
    """An inbound frame could not be understood."""


class Envelope(BaseModel):
    """A decoded message: tag plus raw (or typed) payload."""

    type: str
    payload: Any = None


def parse_message(raw: str | bytes) -> Envelope:
    """
    Parse a text frame into an Envelope without interpreting the payload.

    Raises
    ------
    MalformedMessageError
        If the frame is not JSON, not an object, or has no string ``type``
    """
    try:
        data = json.loads(raw)
    except (TypeError, ValueError) as exc:
        raise MalformedMessageError(f"unparseable frame: {raw!r}") from exc

    if not isinstance(data, dict):
        raise MalformedMessageError("message must be a JSON object")

    if not isinstance(data.get("type"), str):
        raise MalformedMessageError("message has no string 'type'")

    return Envelope(type=data["type"], payload=data.get("payload"))


def decode_agent_message(raw: str | bytes) -> Envelope:
    """
    Parse and validate a frame sent by the Agent.

    The returned Envelope has ``type`` set to a MessageType and ``payload``
    converted to its typed form (Coordinate, bool or None).

    Raises
    ------
    MalformedMessageError
        For unparseable frames, unknown tags, or payloads of the wrong shape
    """
    envelope = parse_message(raw)

    tag = _AGENT_TYPE_ALIASES.get(envelope.type)
    if tag is None:
        try:
            tag = MessageType(envelope.type)
        except ValueError as exc:
            raise MalformedMessageError(f"unknown message type: {envelope.type}") from exc

    if tag not in _AGENT_PAYLOAD_ADAPTERS:
        raise MalformedMessageError(f"{tag.value} is not accepted from an agent")

    adapter = _AGENT_PAYLOAD_ADAPTERS[tag]
    if adapter is None:
        return Envelope(type=tag, payload=None)

    try:
        payload = adapter.validate_python(envelope.payload)
    except ValidationError as exc:
        raise MalformedMessageError(f"invalid {tag.value} payload: {envelope.payload!r}") from exc

    return Envelope(type=tag, payload=payload)


def encode_message(message_type: MessageType | str, payload: Any = None) -> str:
    """Serialize a message to a text frame. Models and tuples become JSON."""
    tag = message_type.value if isinstance(message_type, MessageType) else str(message_type)
    return json.dumps(
        {"type": tag, "payload": _ANY.dump_python(payload, mode="json")},
        ensure_ascii=False,
    )
