"""aiohttp application exposing the synchronizer to clients."""

from __future__ import annotations

import logging
from pathlib import Path

from aiohttp import WSMsgType, web

from tunesync.catalog import DEFAULT_URL_PREFIX
from tunesync.observers import WebSocketObserver
from tunesync.protocol import state_message
from tunesync.synchronizer import Synchronizer

logger = logging.getLogger(__name__)

SYNCHRONIZER_KEY = web.AppKey("synchronizer", Synchronizer)

WS_PATH = "/ws"
STATE_PATH = "/api/state"
MUSIC_ROUTE = f"/{DEFAULT_URL_PREFIX}"
WS_HEARTBEAT_SECONDS = 30.0


async def websocket_handler(request: web.Request) -> web.WebSocketResponse:
    """Register the connection as an observer until it closes."""
    synchronizer = request.app[SYNCHRONIZER_KEY]
    ws = web.WebSocketResponse(heartbeat=WS_HEARTBEAT_SECONDS)
    await ws.prepare(request)

    observer = WebSocketObserver(ws, request.remote)
    unregister = await synchronizer.connect_observer(observer)
    try:
        async for msg in ws:
            if msg.type == WSMsgType.TEXT:
                await synchronizer.handle_message(observer, msg.data)
            elif msg.type == WSMsgType.BINARY:
                logger.warning("Ignoring binary message from %s", observer.observer_id)
            elif msg.type == WSMsgType.ERROR:
                logger.warning(
                    "Connection error from %s: %s", observer.observer_id, ws.exception()
                )
    finally:
        unregister()
    return ws


async def state_handler(request: web.Request) -> web.Response:
    """Return the current state message as JSON."""
    synchronizer = request.app[SYNCHRONIZER_KEY]
    body = state_message(synchronizer.snapshot())
    body["listeners"] = len(synchronizer.registry)
    return web.json_response(body)


def create_web_application(
    synchronizer: Synchronizer, *, music_dir: Path | None = None
) -> web.Application:
    """Create the web app.

    The synchronizer's tick loop is started and stopped with the app.
    When ``music_dir`` is given its files are served under ``/music/`` so
    browser clients can load the tracks named in state messages.
    """
    app = web.Application()
    app[SYNCHRONIZER_KEY] = synchronizer

    app.router.add_get(WS_PATH, websocket_handler)
    app.router.add_get(STATE_PATH, state_handler)

    if music_dir is not None:
        if music_dir.is_dir():
            app.router.add_static(MUSIC_ROUTE, music_dir)
        else:
            logger.warning("Not serving music files: %s is not a directory", music_dir)

    async def on_startup(_app: web.Application) -> None:
        synchronizer.start()

    async def on_shutdown(_app: web.Application) -> None:
        await synchronizer.registry.close_all()

    async def on_cleanup(_app: web.Application) -> None:
        await synchronizer.stop()

    app.on_startup.append(on_startup)
    app.on_shutdown.append(on_shutdown)
    app.on_cleanup.append(on_cleanup)
    return app
