"""Shared playback synchronization.

The :class:`Synchronizer` is the only writer of the playback state. Track
completion is detected from wall-clock time alone: on every tick the
elapsed time is compared to the current track's duration and, once it is
exceeded, the next track starts at ``now - overrun`` so the time lost to
the polling interval is carried forward instead of accumulating as drift.

Ticks, client "track ended" signals and the snapshot sent to a newly
connected client are serialized by a single lock, so two advances can never
draw from the same history.
"""

from __future__ import annotations

import asyncio
import logging
import random
import time
from collections.abc import Callable
from contextlib import suppress
from dataclasses import dataclass, field

from tunesync.catalog import Catalog
from tunesync.clock import PlaybackClock, PlaybackState
from tunesync.observers import Observer, ObserverRegistry
from tunesync.protocol import InboundType, MalformedMessageError, parse_inbound
from tunesync.selector import History, select_next
from tunesync.utils import create_task

logger = logging.getLogger(__name__)

DEFAULT_TICK_INTERVAL = 1.0
# Signals without a track name arriving this soon after an advance are
# assumed to refer to the track that was just replaced.
DEFAULT_SIGNAL_DEBOUNCE = 1.0

Clock = Callable[[], float]


@dataclass
class SynchronizerState:
    """Everything the synchronizer owns: catalog, history and clock."""

    catalog: Catalog
    history: History = field(default_factory=History)
    clock: PlaybackClock = field(default_factory=PlaybackClock)


def start_first_track(state: SynchronizerState, now: float, rng: random.Random) -> PlaybackState:
    """Select the opening track and start it at ``now``."""
    track = select_next(state.catalog, state.history, rng=rng)
    state.clock.start(track, now)
    return state.clock.snapshot()


def advance(
    state: SynchronizerState, now: float, overrun: float, rng: random.Random
) -> PlaybackState:
    """Replace the current track, starting the next one ``overrun`` seconds ago."""
    current = state.clock.track
    track = select_next(state.catalog, state.history, current, rng=rng)
    state.clock.start(track, now - overrun)
    return state.clock.snapshot()


def advance_if_expired(state: SynchronizerState, now: float, rng: random.Random) -> bool:
    """Advance to the next track if the current one has run past its duration.

    Returns:
        True if the track changed.
    """
    snapshot = state.clock.snapshot()
    elapsed = snapshot.elapsed(now)
    if elapsed < snapshot.duration:
        return False
    advance(state, now, elapsed - snapshot.duration, rng)
    return True


class Synchronizer:
    """Owns the playback clock and keeps all observers in step with it."""

    def __init__(
        self,
        catalog: Catalog,
        registry: ObserverRegistry,
        *,
        tick_interval: float = DEFAULT_TICK_INTERVAL,
        signal_debounce: float = DEFAULT_SIGNAL_DEBOUNCE,
        clock: Clock = time.time,
        rng: random.Random | None = None,
    ) -> None:
        """Initialize the synchronizer.

        Args:
            catalog: Tracks to play from; must not be empty.
            registry: Observers that receive every state broadcast.
            tick_interval: Seconds between expiry checks.
            signal_debounce: Window after an advance in which anonymous
                "track ended" signals are ignored.
            clock: Wall-clock source in seconds since the epoch.
            rng: Random source for track selection.
        """
        if not len(catalog):
            raise ValueError("Synchronizer requires a non-empty catalog")
        if tick_interval <= 0:
            raise ValueError("tick_interval must be positive")
        self._state = SynchronizerState(catalog=catalog)
        self._registry = registry
        self._tick_interval = tick_interval
        self._signal_debounce = max(0.0, signal_debounce)
        self._clock = clock
        self._rng = rng or random.Random()
        self._lock = asyncio.Lock()
        self._last_advance: float | None = None
        self._task: asyncio.Task[None] | None = None

    @property
    def registry(self) -> ObserverRegistry:
        return self._registry

    @property
    def catalog(self) -> Catalog:
        return self._state.catalog

    @property
    def history(self) -> History:
        return self._state.history

    @property
    def tick_interval(self) -> float:
        return self._tick_interval

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def snapshot(self) -> PlaybackState:
        """Return the current playback state."""
        return self._state.clock.snapshot()

    def initialize(self) -> PlaybackState:
        """Start the first track if none is playing yet."""
        if not self._state.clock.started:
            state = start_first_track(self._state, self._clock(), self._rng)
            logger.info(
                "Starting with track: %s (%.1fs)", state.track.identifier, state.duration
            )
        return self.snapshot()

    async def tick(self) -> bool:
        """Check the current track for expiry and broadcast the state.

        Returns:
            True if the track changed.
        """
        async with self._lock:
            self.initialize()
            now = self._clock()
            changed = advance_if_expired(self._state, now, self._rng)
            state = self.snapshot()
            if changed:
                self._last_advance = now
                self._log_change(state, now)
            await self._registry.broadcast(state)
            return changed

    async def track_ended(self, track: str | None = None) -> bool:
        """Handle a client reporting the end of the current track.

        The current track is treated as already expired; any lateness of the
        signal is carried into the next track like a tick's overrun. Stale
        signals (naming another track, or arriving right after an advance)
        are ignored.

        Returns:
            True if the track changed.
        """
        async with self._lock:
            self.initialize()
            now = self._clock()
            current = self.snapshot()

            if track is not None and track != current.track.identifier:
                logger.debug("Ignoring stale track end for %s", track)
                return False
            if (
                track is None
                and self._last_advance is not None
                and now - self._last_advance < self._signal_debounce
            ):
                logger.debug(
                    "Ignoring track end received %.2fs after advance", now - self._last_advance
                )
                return False

            overrun = max(0.0, current.elapsed(now) - current.duration)
            state = advance(self._state, now, overrun, self._rng)
            self._last_advance = now
            logger.info("Track ended by client, advancing")
            self._log_change(state, now)
            await self._registry.broadcast(state)
            return True

    async def connect_observer(self, observer: Observer) -> Callable[[], None]:
        """Register an observer and bring it up to date immediately.

        Returns:
            A function that unregisters the observer.
        """
        unregister = self._registry.add(observer)
        try:
            async with self._lock:
                self.initialize()
                now = self._clock()
                if advance_if_expired(self._state, now, self._rng):
                    self._last_advance = now
                    state = self.snapshot()
                    self._log_change(state, now)
                    await self._registry.broadcast(state)
                else:
                    await self._registry.send(observer, self.snapshot())
        except BaseException:
            unregister()
            raise
        return unregister

    async def handle_message(self, observer: Observer, raw: str | bytes) -> None:
        """Process an inbound client payload; unrecognized payloads are ignored."""
        try:
            message = parse_inbound(raw)
        except MalformedMessageError as e:
            logger.warning("Ignoring message from %s: %s", observer.observer_id, e)
            return

        if message.type is InboundType.TRACK_ENDED:
            logger.debug("Track end reported by %s", observer.observer_id)
            await self.track_ended(message.track)

    async def run(self) -> None:
        """Tick forever at the configured interval."""
        while True:
            try:
                await self.tick()
            except Exception:
                logger.exception("Error during playback tick")
            await asyncio.sleep(self._tick_interval)

    def start(self) -> None:
        """Initialize playback and start the tick loop in the background."""
        if self.running:
            return
        self.initialize()
        self._task = create_task(self.run(), name="tunesync-tick")

    async def stop(self) -> None:
        """Stop the tick loop."""
        if self._task is None:
            return
        self._task.cancel()
        with suppress(asyncio.CancelledError):
            await self._task
        self._task = None

    def _log_change(self, state: PlaybackState, now: float) -> None:
        logger.info(
            "Changing to track: %s (%.1fs, %.3fs in)",
            state.track.identifier,
            state.duration,
            state.elapsed(now),
        )
