"""Tests for the playback clock and synchronizer."""

from __future__ import annotations

import asyncio
import json
import random

import pytest

from tunesync.catalog import Catalog, Track
from tunesync.clock import PlaybackClock
from tunesync.observers import ObserverRegistry
from tunesync.synchronizer import Synchronizer


def _run(coro):
    """Run async scenario from sync test functions."""
    return asyncio.run(coro)


def _synchronizer(catalog, clock, *, seed: int = 99, **kwargs) -> Synchronizer:
    return Synchronizer(
        catalog, ObserverRegistry(), clock=clock, rng=random.Random(seed), **kwargs
    )


def test_initialize_starts_first_track_now(make_catalog, clock) -> None:
    sync = _synchronizer(make_catalog(4), clock)
    state = sync.initialize()

    assert state.start_time == clock.now
    assert state.track.identifier in sync.history
    # Idempotent: a second call keeps the running track
    clock.advance(3)
    assert sync.initialize() == state


def test_tick_before_expiry_keeps_state_and_broadcasts(make_catalog, clock, make_observer) -> None:
    async def run() -> None:
        sync = _synchronizer(make_catalog(4), clock)
        sync.initialize()
        observer = make_observer("a")
        sync.registry.add(observer)
        before = sync.snapshot()

        clock.advance(9.9)
        assert await sync.tick() is False
        clock.advance(0.05)
        assert await sync.tick() is False

        assert sync.snapshot() == before
        assert len(observer.messages) == 2
        assert observer.messages[0] == observer.messages[1]

    _run(run())


def test_tick_carries_overrun_into_next_track(make_catalog, clock) -> None:
    async def run() -> None:
        sync = _synchronizer(make_catalog(4, duration=10.0), clock)
        first = sync.initialize()
        t0 = clock.now

        clock.advance(10.4)
        assert await sync.tick() is True

        state = sync.snapshot()
        assert state.track != first.track
        assert state.start_time == pytest.approx(t0 + 10.0, abs=1e-6)
        assert state.elapsed(clock.now) == pytest.approx(0.4, abs=1e-6)

    _run(run())


def test_no_drift_over_many_ticks(make_catalog, clock) -> None:
    async def run() -> None:
        sync = _synchronizer(make_catalog(5, duration=10.0), clock)
        t0 = sync.initialize().start_time
        # Poll at an interval that never lines up with track boundaries
        for _ in range(1000):
            clock.advance(0.7)
            await sync.tick()
        # Every track lasts exactly 10s, so start times stay on the 10s grid
        offset = sync.snapshot().start_time - t0
        assert offset == pytest.approx(round(offset / 10.0) * 10.0, abs=1e-4)
        assert 0 <= sync.snapshot().elapsed(clock.now) < 10.0

    _run(run())


def test_track_ended_signal_matches_tick_overrun(make_catalog, clock) -> None:
    async def run() -> None:
        catalog = make_catalog(6, duration=10.0)
        ticked = _synchronizer(catalog, clock, seed=5)
        signalled = _synchronizer(catalog, clock, seed=5)
        ticked.initialize()
        signalled.initialize()

        clock.advance(10.2)
        assert await ticked.tick() is True
        assert await signalled.track_ended() is True

        assert signalled.snapshot() == ticked.snapshot()
        assert signalled.snapshot().elapsed(clock.now) == pytest.approx(0.2, abs=1e-6)

    _run(run())


def test_early_track_ended_starts_next_track_now(make_catalog, clock) -> None:
    async def run() -> None:
        sync = _synchronizer(make_catalog(3, duration=10.0), clock)
        first = sync.initialize()

        clock.advance(3.0)
        assert await sync.track_ended() is True

        state = sync.snapshot()
        assert state.track != first.track
        assert state.start_time == clock.now

    _run(run())


def test_repeated_track_ended_signals_advance_once(make_catalog, clock) -> None:
    async def run() -> None:
        sync = _synchronizer(make_catalog(5), clock, signal_debounce=1.0)
        sync.initialize()
        clock.advance(10.1)

        results = [await sync.track_ended() for _ in range(3)]
        assert results == [True, False, False]
        assert len(sync.history) == 2

        # Once the debounce window has passed, a new signal is honored again
        clock.advance(1.5)
        assert await sync.track_ended() is True

    _run(run())


def test_track_ended_naming_another_track_is_ignored(make_catalog, clock) -> None:
    async def run() -> None:
        sync = _synchronizer(make_catalog(4), clock)
        first = sync.initialize()
        clock.advance(10.0)
        await sync.tick()

        # A late report about the previous track changes nothing
        assert await sync.track_ended(first.track.identifier) is False
        current = sync.snapshot()
        assert await sync.track_ended(current.track.identifier) is True
        assert sync.snapshot().track != current.track

    _run(run())


def test_concurrent_tick_and_signal_advance_once(make_catalog, clock) -> None:
    async def run() -> None:
        sync = _synchronizer(make_catalog(6), clock)
        sync.initialize()
        clock.advance(10.3)

        results = await asyncio.gather(sync.tick(), sync.track_ended(), sync.tick())

        assert results == [True, False, False]
        assert len(sync.history) == 2

    _run(run())


def test_late_joiner_receives_current_state(make_catalog, clock, make_observer) -> None:
    async def run() -> None:
        sync = _synchronizer(make_catalog(4, duration=10.0), clock)
        state = sync.initialize()
        clock.advance(4.0)

        observer = make_observer("late")
        unregister = await sync.connect_observer(observer)

        assert len(observer.messages) == 1
        data = observer.states[0]
        assert data["track"] == state.track.identifier
        elapsed = clock.now - data["startTime"] / 1000
        assert 0 <= elapsed < data["duration"]

        unregister()
        assert len(sync.registry) == 0

    _run(run())


def test_joiner_on_expired_track_triggers_advance(make_catalog, clock, make_observer) -> None:
    async def run() -> None:
        sync = _synchronizer(make_catalog(4, duration=10.0), clock)
        first = sync.initialize()
        existing = make_observer("existing")
        sync.registry.add(existing)

        clock.advance(10.5)
        newcomer = make_observer("new")
        await sync.connect_observer(newcomer)

        assert sync.snapshot().track != first.track
        assert newcomer.states == existing.states
        assert len(newcomer.messages) == 1

    _run(run())


def test_handle_message_ignores_malformed_payloads(make_catalog, clock, make_observer) -> None:
    async def run() -> None:
        sync = _synchronizer(make_catalog(3), clock)
        state = sync.initialize()
        observer = make_observer("a")
        clock.advance(2.0)

        nested = "[" * 200_000 + "]" * 200_000
        for raw in ("not json", "[]", '{"type": "skip"}', "{}", b"\xff\xfe", nested):
            await sync.handle_message(observer, raw)
        assert sync.snapshot() == state

        await sync.handle_message(observer, json.dumps({"type": "trackEnded"}))
        assert sync.snapshot().track != state.track

    _run(run())


def test_cancelled_connect_unregisters_observer(make_catalog, clock, make_observer) -> None:
    async def run() -> None:
        sync = _synchronizer(make_catalog(3), clock)
        sync.initialize()
        observer = make_observer("a")

        async with sync._lock:  # noqa: SLF001
            task = asyncio.create_task(sync.connect_observer(observer))
            await asyncio.sleep(0)
            assert len(sync.registry) == 1
            task.cancel()
            with pytest.raises(asyncio.CancelledError):
                await task

        assert len(sync.registry) == 0
        assert observer.messages == []

    _run(run())

def test_single_track_catalog_replays_with_new_start(clock) -> None:
    async def run() -> None:
        only = Track(identifier="music/album1/chanson1.mp3", duration=5.0)
        sync = _synchronizer(Catalog([only]), clock)
        sync.initialize()

        clock.advance(5.25)
        assert await sync.tick() is True
        state = sync.snapshot()
        assert state.track == only
        assert state.elapsed(clock.now) == pytest.approx(0.25, abs=1e-6)

    _run(run())


def test_run_loop_ticks_until_stopped(make_catalog, clock, make_observer) -> None:
    async def run() -> None:
        sync = _synchronizer(make_catalog(3), clock, tick_interval=0.01)
        observer = make_observer("a")
        sync.registry.add(observer)

        sync.start()
        assert sync.running
        await asyncio.sleep(0.1)
        await sync.stop()

        assert not sync.running
        assert len(observer.messages) >= 2

    _run(run())


def test_run_loop_survives_tick_errors(make_catalog, clock, caplog) -> None:
    async def run() -> None:
        sync = _synchronizer(make_catalog(3), clock, tick_interval=0.01)
        calls = 0

        def count_broadcasts(_state) -> None:
            nonlocal calls
            calls += 1

        sync.registry.add_state_listener(count_broadcasts)

        original_tick = sync.tick

        async def flaky_tick() -> bool:
            if calls == 0:
                await original_tick()
                raise RuntimeError("boom")
            return await original_tick()

        sync.tick = flaky_tick  # type: ignore[method-assign]
        sync.start()
        await asyncio.sleep(0.1)
        await sync.stop()
        assert calls >= 2

    _run(run())
    assert "Error during playback tick" in caplog.text


def test_empty_catalog_rejected(clock) -> None:
    with pytest.raises(ValueError):
        _synchronizer(Catalog([]), clock)


def test_snapshot_requires_started_clock() -> None:
    with pytest.raises(RuntimeError):
        PlaybackClock().snapshot()
