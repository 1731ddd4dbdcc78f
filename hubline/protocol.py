"""Frame helpers for the JSON hub protocol.

Frames are JSON objects terminated by the ASCII record separator. A single
WebSocket text message may carry several frames.
"""

from __future__ import annotations

import json
from enum import IntEnum
from typing import Any

from .errors import HublineHandshakeError

RECORD_SEPARATOR = "\x1e"
PROTOCOL_NAME = "json"
PROTOCOL_VERSION = 1


class HubMessageType(IntEnum):
    """Numeric frame types used by the hub protocol."""

    INVOCATION = 1
    STREAM_ITEM = 2
    COMPLETION = 3
    STREAM_INVOCATION = 4
    CANCEL_INVOCATION = 5
    PING = 6
    CLOSE = 7


def encode_frame(frame: dict[str, Any]) -> str:
    """Serialize one frame with its trailing record separator."""
    return json.dumps(frame, separators=(",", ":")) + RECORD_SEPARATOR


def decode_frames(text: str) -> list[dict[str, Any]]:
    """Split a text message into decoded frames.

    Raises:
        ValueError: If a frame is not a JSON object
    """
    frames: list[dict[str, Any]] = []
    for chunk in text.split(RECORD_SEPARATOR):
        if not chunk:
            continue
        frame = json.loads(chunk)
        if not isinstance(frame, dict):
            raise ValueError("Hub frame must be a JSON object")
        frames.append(frame)
    return frames


def build_handshake() -> str:
    """Build the handshake request sent right after the socket opens."""
    return encode_frame({"protocol": PROTOCOL_NAME, "version": PROTOCOL_VERSION})


def parse_handshake_response(text: str) -> list[dict[str, Any]]:
    """Validate the handshake response.

    The first frame is the handshake response; any frames after it arrived in
    the same message and are returned for normal processing.

    Raises:
        HublineHandshakeError: If the server rejected the handshake
    """
    try:
        frames = decode_frames(text)
    except ValueError as err:
        raise HublineHandshakeError("Malformed handshake response") from err

    if not frames:
        raise HublineHandshakeError("Empty handshake response")

    response, rest = frames[0], frames[1:]
    if error := response.get("error"):
        raise HublineHandshakeError(f"Handshake rejected: {error}")
    return rest


def build_invocation(
    target: str,
    arguments: list[Any],
    *,
    invocation_id: str | None = None,
) -> str:
    """Build an invocation frame.

    Args:
        target: Hub method name
        arguments: Positional arguments
        invocation_id: Set to receive a completion frame; omit for
            fire-and-forget calls.
    """
    frame: dict[str, Any] = {
        "type": HubMessageType.INVOCATION,
        "target": target,
        "arguments": arguments,
    }
    if invocation_id is not None:
        frame["invocationId"] = invocation_id
    return encode_frame(frame)


def build_ping() -> str:
    """Build a keepalive ping frame."""
    return encode_frame({"type": HubMessageType.PING})


def build_close() -> str:
    """Build a close frame sent before stopping."""
    return encode_frame({"type": HubMessageType.CLOSE})
