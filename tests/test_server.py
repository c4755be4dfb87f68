"""End-to-end tests of the WebSocket transport."""

from __future__ import annotations

import asyncio
import random
from pathlib import Path

from aiohttp import test_utils

from tunesync.observers import ObserverRegistry
from tunesync.serve.server import create_web_application
from tunesync.synchronizer import Synchronizer


def _run(coro):
    """Run async scenario from sync test functions."""
    return asyncio.run(coro)


def _synchronizer(catalog, clock) -> Synchronizer:
    # Long tick interval: only the initial tick runs during a test
    return Synchronizer(
        catalog, ObserverRegistry(), clock=clock, rng=random.Random(3), tick_interval=60.0
    )


async def _wait_for(predicate, timeout: float = 2.0) -> None:
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not reached")
        await asyncio.sleep(0.01)


def test_client_receives_state_on_connect(make_catalog, clock) -> None:
    async def run() -> None:
        sync = _synchronizer(make_catalog(4), clock)
        app = create_web_application(sync)
        async with test_utils.TestClient(test_utils.TestServer(app)) as client:
            ws = await client.ws_connect("/ws")
            message = await ws.receive_json(timeout=2)

            assert message["type"] == "state"
            assert message["data"]["track"] == sync.snapshot().track.identifier
            assert message["data"]["startTime"] == round(sync.snapshot().start_time * 1000)
            await ws.close()

    _run(run())


def test_track_ended_advances_all_clients(make_catalog, clock) -> None:
    async def run() -> None:
        sync = _synchronizer(make_catalog(4), clock)
        app = create_web_application(sync)
        async with test_utils.TestClient(test_utils.TestServer(app)) as client:
            first = await client.ws_connect("/ws")
            second = await client.ws_connect("/ws")
            initial = (await first.receive_json(timeout=2))["data"]
            await second.receive_json(timeout=2)

            clock.advance(2.0)
            await first.send_json({"type": "trackEnded"})

            update_first = (await first.receive_json(timeout=2))["data"]
            update_second = (await second.receive_json(timeout=2))["data"]
            assert update_first == update_second
            assert update_first["track"] != initial["track"]

            await first.close()
            await second.close()

    _run(run())


def test_malformed_messages_keep_connection_open(make_catalog, clock) -> None:
    async def run() -> None:
        sync = _synchronizer(make_catalog(4), clock)
        app = create_web_application(sync)
        async with test_utils.TestClient(test_utils.TestServer(app)) as client:
            ws = await client.ws_connect("/ws")
            initial = (await ws.receive_json(timeout=2))["data"]

            await ws.send_str("{not json")
            await ws.send_json({"type": "changeTrack", "track": "music/x/y.mp3"})
            await ws.send_bytes(b"\x00\x01")
            await ws.send_json({"type": "trackEnded"})

            update = (await ws.receive_json(timeout=2))["data"]
            assert update["track"] != initial["track"]
            assert not ws.closed
            await ws.close()

    _run(run())


def test_state_endpoint_and_disconnect(make_catalog, clock) -> None:
    async def run() -> None:
        sync = _synchronizer(make_catalog(4), clock)
        app = create_web_application(sync)
        async with test_utils.TestClient(test_utils.TestServer(app)) as client:
            ws = await client.ws_connect("/ws")
            await ws.receive_json(timeout=2)

            resp = await client.get("/api/state")
            assert resp.status == 200
            body = await resp.json()
            assert body["type"] == "state"
            assert body["data"]["track"] == sync.snapshot().track.identifier
            assert body["listeners"] == 1

            await ws.close()
            await _wait_for(lambda: len(sync.registry) == 0)

    _run(run())


def test_music_files_are_served(make_catalog, clock, tmp_path: Path) -> None:
    album = tmp_path / "album1"
    album.mkdir()
    (album / "song.mp3").write_bytes(b"ID3fake")

    async def run() -> None:
        sync = _synchronizer(make_catalog(2), clock)
        app = create_web_application(sync, music_dir=tmp_path)
        async with test_utils.TestClient(test_utils.TestServer(app)) as client:
            resp = await client.get("/music/album1/song.mp3")
            assert resp.status == 200
            assert await resp.read() == b"ID3fake"

    _run(run())


def test_tick_loop_follows_app_lifecycle(make_catalog, clock) -> None:
    async def run() -> None:
        sync = _synchronizer(make_catalog(2), clock)
        app = create_web_application(sync)
        async with test_utils.TestClient(test_utils.TestServer(app)):
            assert sync.running
        assert not sync.running

    _run(run())


def test_deeply_nested_message_keeps_connection_open(make_catalog, clock) -> None:
    async def run() -> None:
        sync = _synchronizer(make_catalog(4), clock)
        app = create_web_application(sync)
        async with test_utils.TestClient(test_utils.TestServer(app)) as client:
            ws = await client.ws_connect("/ws")
            initial = (await ws.receive_json(timeout=2))["data"]

            await ws.send_str("[" * 200_000 + "]" * 200_000)
            await ws.send_json({"type": "trackEnded"})

            update = (await ws.receive_json(timeout=2))["data"]
            assert update["track"] != initial["track"]
            assert not ws.closed
            assert len(sync.registry) == 1
            await ws.close()

    _run(run())
