"""Wire messages exchanged with devices.

Frames are JSON objects with a ``type`` discriminant. Offer, answer and
candidate payloads are opaque and passed through unmodified.
"""

import json
from typing import Any

from keyrelay.errors import MalformedMessage
from keyrelay.identity import is_valid_key

__all__ = [
    "InboundType",
    "OutboundType",
    "parse_frame",
    "require_fields",
    "require_keys",
    "encode_frame",
]


class InboundType:
    """Client to server message types."""

    REGISTER = "register"
    CONNECTION_REQUEST = "connection-request"
    CONNECTION_RESPONSE = "connection-response"
    OFFER = "offer"
    ANSWER = "answer"
    ICE_CANDIDATE = "ice-candidate"
    HEARTBEAT = "heartbeat"
    DISCONNECT = "disconnect"


class OutboundType:
    """Server to client message types."""

    REGISTRATION_SUCCESS = "registration-success"
    REGISTRATION_ERROR = "registration-error"
    ERROR = "error"
    CONNECTION_REQUEST = "connection-request"
    CONNECTION_ACCEPTED = "connection-accepted"
    CONNECTION_ESTABLISHED = "connection-established"
    CONNECTION_REJECTED = "connection-rejected"
    OFFER = "offer"
    ANSWER = "answer"
    ICE_CANDIDATE = "ice-candidate"
    PEER_DISCONNECTED = "peer-disconnected"
    FORCED_DISCONNECT = "forced-disconnect"


# Max accepted frame size; SDP blobs are a few KB.
MAX_FRAME_SIZE = 64 * 1024


def parse_frame(data: str | bytes) -> dict[str, Any]:
    """Decode one inbound frame.

    Raises:
        MalformedMessage: If the frame is not a JSON object with a
            string ``type``.
    """
    size = len(data.encode()) if isinstance(data, str) else len(data)
    if size > MAX_FRAME_SIZE:
        raise MalformedMessage("Message too large")
    try:
        message = json.loads(data)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise MalformedMessage(f"Invalid JSON: {e}") from e
    if not isinstance(message, dict):
        raise MalformedMessage("Message must be a JSON object")
    if not isinstance(message.get("type"), str):
        raise MalformedMessage("Message type is required")
    return message


def require_fields(message: dict[str, Any], *names: str) -> tuple[Any, ...]:
    """Return the named fields, failing if any is missing or empty.

    ``False`` counts as present so boolean flags can be required.
    """
    missing = [
        name
        for name in names
        if message.get(name) is None or message.get(name) in ("", {}, [])
    ]
    if missing:
        raise MalformedMessage(
            f"Invalid {message.get('type')} message: missing {', '.join(missing)}"
        )
    return tuple(message[name] for name in names)


def require_keys(message: dict[str, Any], *names: str) -> tuple[str, ...]:
    """Return the named device-key fields, failing if any is missing or malformed."""
    values = require_fields(message, *names)
    malformed = [name for name, value in zip(names, values) if not is_valid_key(value)]
    if malformed:
        raise MalformedMessage(
            f"Invalid {message.get('type')} message: malformed {', '.join(malformed)}"
        )
    return values


def encode_frame(message: dict[str, Any]) -> str:
    return json.dumps(message, separators=(",", ":"))


# Outbound builders


def registration_success(device_key: str) -> dict[str, Any]:
    return {"type": OutboundType.REGISTRATION_SUCCESS, "deviceKey": device_key}


def registration_error(code: str, message: str) -> dict[str, Any]:
    return {"type": OutboundType.REGISTRATION_ERROR, "code": code, "message": message}


def error(code: str, message: str) -> dict[str, Any]:
    return {"type": OutboundType.ERROR, "code": code, "message": message}


def forced_disconnect() -> dict[str, Any]:
    return {
        "type": OutboundType.FORCED_DISCONNECT,
        "message": "Another device has connected with this key",
    }


def peer_disconnected(device_key: str) -> dict[str, Any]:
    return {"type": OutboundType.PEER_DISCONNECTED, "deviceKey": device_key}


def connection_request(source_key: str, offer: Any) -> dict[str, Any]:
    return {
        "type": OutboundType.CONNECTION_REQUEST,
        "sourceKey": source_key,
        "offer": offer,
    }


def connection_accepted(source_key: str) -> dict[str, Any]:
    return {"type": OutboundType.CONNECTION_ACCEPTED, "sourceKey": source_key}


def connection_established(target_key: str) -> dict[str, Any]:
    return {"type": OutboundType.CONNECTION_ESTABLISHED, "targetKey": target_key}


def connection_rejected(source_key: str, reason: str | None) -> dict[str, Any]:
    return {
        "type": OutboundType.CONNECTION_REJECTED,
        "sourceKey": source_key,
        "reason": reason or "Connection rejected",
    }


def offer(source_key: str, payload: Any) -> dict[str, Any]:
    return {"type": OutboundType.OFFER, "sourceKey": source_key, "offer": payload}


def answer(source_key: str, payload: Any) -> dict[str, Any]:
    return {"type": OutboundType.ANSWER, "sourceKey": source_key, "answer": payload}


def ice_candidate(source_key: str, payload: Any) -> dict[str, Any]:
    return {
        "type": OutboundType.ICE_CANDIDATE,
        "sourceKey": source_key,
        "candidate": payload,
    }
