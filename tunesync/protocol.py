"""JSON messages exchanged with connected clients.

Outbound, the server only ever sends ``state`` messages::

    {"type": "state", "data": {"track": "...", "startTime": 1700000000000, "duration": 212.4}}

Inbound, the only recognized message is ``trackEnded``, optionally naming the
track the client just finished::

    {"type": "trackEnded", "track": "music/album1/song.mp3"}
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from enum import Enum
from typing import Any

from tunesync.clock import PlaybackState

STATE_MESSAGE = "state"


class InboundType(Enum):
    """Message types a client may send."""

    TRACK_ENDED = "trackEnded"


class MalformedMessageError(ValueError):
    """Raised for inbound payloads that are not a recognized message."""


@dataclass(frozen=True, slots=True)
class InboundMessage:
    """A parsed client message."""

    type: InboundType
    track: str | None = None


def state_message(state: PlaybackState) -> dict[str, Any]:
    """Build the state message for a playback snapshot."""
    return {"type": STATE_MESSAGE, "data": state.to_payload()}


def encode_state(state: PlaybackState) -> str:
    """Serialize the state message for a playback snapshot."""
    return json.dumps(state_message(state), separators=(",", ":"))


def parse_inbound(raw: str | bytes) -> InboundMessage:
    """Parse a client payload.

    Raises:
        MalformedMessageError: If the payload is not valid JSON, is nested too
            deeply to decode, is not an object, or does not carry a recognized
            ``type``.
    """
    try:
        data = json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError, RecursionError) as e:
        raise MalformedMessageError(f"Invalid JSON: {e}") from e

    if not isinstance(data, dict):
        raise MalformedMessageError(f"Expected an object, got {type(data).__name__}")

    raw_type = data.get("type")
    try:
        msg_type = InboundType(raw_type)
    except ValueError:
        raise MalformedMessageError(f"Unknown message type: {raw_type!r}") from None

    track = data.get("track")
    if track is not None and not isinstance(track, str):
        raise MalformedMessageError("Field 'track' must be a string")

    return InboundMessage(type=msg_type, track=track)
