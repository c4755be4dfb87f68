"""Playback clock: which track is playing and when it logically started."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from tunesync.catalog import Track


@dataclass(frozen=True, slots=True)
class PlaybackState:
    """Immutable snapshot of the playback clock.

    ``start_time`` is in seconds since the epoch, the same time base clients
    use to compute their own position in the track.
    """

    track: Track
    start_time: float

    @property
    def duration(self) -> float:
        return self.track.duration

    def elapsed(self, now: float) -> float:
        return now - self.start_time

    def remaining(self, now: float) -> float:
        return self.track.duration - self.elapsed(now)

    def is_expired(self, now: float) -> bool:
        return self.elapsed(now) >= self.track.duration

    def to_payload(self) -> dict[str, Any]:
        """Return the wire representation used in state messages."""
        return {
            "track": self.track.identifier,
            "startTime": int(round(self.start_time * 1000)),
            "duration": self.track.duration,
        }


class PlaybackClock:
    """Mutable holder for the current track and its start time.

    Only the synchronizer writes to it; everything else reads a
    :class:`PlaybackState` obtained from :meth:`snapshot`.
    """

    def __init__(self) -> None:
        self._track: Track | None = None
        self._start_time = 0.0

    @property
    def started(self) -> bool:
        return self._track is not None

    @property
    def track(self) -> Track | None:
        return self._track

    @property
    def start_time(self) -> float:
        return self._start_time

    def start(self, track: Track, start_time: float) -> None:
        self._track = track
        self._start_time = start_time

    def snapshot(self) -> PlaybackState:
        if self._track is None:
            raise RuntimeError("Playback clock has not been started")
        return PlaybackState(track=self._track, start_time=self._start_time)
