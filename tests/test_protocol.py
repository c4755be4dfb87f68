"""Tests for client message parsing and state encoding."""

from __future__ import annotations

import json

import pytest

from tunesync.catalog import Track
from tunesync.clock import PlaybackState
from tunesync.protocol import (
    InboundType,
    MalformedMessageError,
    encode_state,
    parse_inbound,
    state_message,
)


def test_parse_track_ended() -> None:
    message = parse_inbound('{"type": "trackEnded"}')
    assert message.type is InboundType.TRACK_ENDED
    assert message.track is None


def test_parse_track_ended_with_track() -> None:
    message = parse_inbound(b'{"type": "trackEnded", "track": "music/a/b.mp3"}')
    assert message.track == "music/a/b.mp3"


@pytest.mark.parametrize(
    "raw",
    [
        "",
        "trackEnded",
        "[]",
        "42",
        "{}",
        '{"type": "changeTrack", "track": "music/a/b.mp3"}',
        '{"type": ["trackEnded"]}',
        '{"type": "trackEnded", "track": 3}',
    ],
)
def test_parse_rejects_malformed(raw: str) -> None:
    with pytest.raises(MalformedMessageError):
        parse_inbound(raw)


def test_state_message_shape() -> None:
    state = PlaybackState(track=Track("music/x/y.mp3", 12.5), start_time=1000.0004)

    assert state_message(state) == {
        "type": "state",
        "data": {"track": "music/x/y.mp3", "startTime": 1_000_000, "duration": 12.5},
    }
    assert json.loads(encode_state(state)) == state_message(state)


def test_playback_state_timing() -> None:
    state = PlaybackState(track=Track("music/x/y.mp3", 10.0), start_time=100.0)

    assert state.elapsed(104.0) == 4.0
    assert state.remaining(104.0) == 6.0
    assert not state.is_expired(109.9)
    assert state.is_expired(110.0)


def test_parse_rejects_deeply_nested_json() -> None:
    raw = "[" * 200_000 + "]" * 200_000

    with pytest.raises(MalformedMessageError):
        parse_inbound(raw)
