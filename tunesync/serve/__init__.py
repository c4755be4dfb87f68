"""tunesync server application."""

from __future__ import annotations

import asyncio
import logging
import signal
from collections.abc import Callable
from contextlib import suppress
from dataclasses import dataclass
from pathlib import Path

import qrcode
from aiohttp import web

from tunesync.catalog import (
    DEFAULT_EXTENSIONS,
    DEFAULT_TRACK_IDENTIFIER,
    DEFAULT_URL_PREFIX,
    load_catalog,
)
from tunesync.discovery import ServiceAdvertiser
from tunesync.observers import ObserverRegistry
from tunesync.settings import DEFAULT_NAME, DEFAULT_PORT, SettingsManager
from tunesync.synchronizer import DEFAULT_SIGNAL_DEBOUNCE, DEFAULT_TICK_INTERVAL, Synchronizer
from tunesync.ui import ServerUI
from tunesync.utils import find_available_port, get_local_ip

from .server import WS_PATH, create_web_application

logger = logging.getLogger(__name__)


def print_qr_code(url: str) -> None:
    """Print a QR code to the console."""
    qr = qrcode.QRCode(
        error_correction=qrcode.ERROR_CORRECT_L,
        box_size=1,
        border=1,
    )
    qr.add_data(url)
    qr.make(fit=True)
    qr.print_ascii(invert=True)


@dataclass(frozen=True)
class ServeConfig:
    """Configuration for the server, resolved from settings and CLI flags."""

    music_dir: Path
    port: int = DEFAULT_PORT
    name: str = DEFAULT_NAME
    tick_interval: float = DEFAULT_TICK_INTERVAL
    signal_debounce: float = DEFAULT_SIGNAL_DEBOUNCE
    default_track: str = DEFAULT_TRACK_IDENTIFIER
    extensions: tuple[str, ...] = DEFAULT_EXTENSIONS
    serve_static: bool = True
    advertise: bool = True
    headless: bool = False


async def run_server(config: ServeConfig, settings: SettingsManager | None = None) -> int:
    """Run the tunesync server until interrupted."""
    event_loop = asyncio.get_running_loop()
    shutdown = asyncio.Event()

    def handle_signal() -> None:
        if config.headless:
            print("\nShutting down...")
        shutdown.set()

    with suppress(NotImplementedError):
        event_loop.add_signal_handler(signal.SIGINT, handle_signal)
        event_loop.add_signal_handler(signal.SIGTERM, handle_signal)

    catalog = await load_catalog(
        config.music_dir,
        default_identifier=config.default_track,
        url_prefix=DEFAULT_URL_PREFIX,
        extensions=config.extensions,
    )
    registry = ObserverRegistry()
    synchronizer = Synchronizer(
        catalog,
        registry,
        tick_interval=config.tick_interval,
        signal_debounce=config.signal_debounce,
    )
    # Playback must be defined before the first client can connect
    synchronizer.initialize()

    app = create_web_application(
        synchronizer, music_dir=config.music_dir if config.serve_static else None
    )
    port = find_available_port(config.port)
    runner = web.AppRunner(app)
    await runner.setup()
    site = web.TCPSite(runner, port=port)
    await site.start()

    local_ip = get_local_ip()
    url = f"http://{local_ip}:{port}/"
    logger.info("Server running at %s (WebSocket at %s)", url, WS_PATH)

    if settings is not None:
        settings.update(
            music_dir=str(config.music_dir),
            port=port,
            name=config.name,
            tick_interval=config.tick_interval,
            signal_debounce=config.signal_debounce,
            default_track=config.default_track,
            extensions=list(config.extensions),
        )

    advertiser: ServiceAdvertiser | None = None
    if config.advertise and local_ip != "localhost":
        advertiser = ServiceAdvertiser(config.name, port, local_ip, path=WS_PATH)
        try:
            await advertiser.start()
        except Exception as e:
            logger.warning("mDNS advertisement unavailable: %s", e)
            logger.debug("Advertisement error", exc_info=True)
            advertiser = None

    ui: ServerUI | None = None
    unsubscribers: list[Callable[[], None]] = []
    try:
        if config.headless:
            print(f"\nServer running at {url}")
            print(f"{len(catalog)} tracks, WebSocket endpoint {WS_PATH}")
            if local_ip != "localhost":
                print()
                print_qr_code(url)
            print("Press Ctrl+C to quit\n")
        else:
            ui = ServerUI()
            ui.set_server(url, config.name, len(catalog))
            ui.set_playback(synchronizer.snapshot())
            unsubscribers.append(registry.add_state_listener(ui.set_playback))
            unsubscribers.append(registry.add_observer_count_listener(ui.set_listeners))
            ui.start()

        await shutdown.wait()
    finally:
        for unsubscribe in unsubscribers:
            unsubscribe()
        if ui is not None:
            ui.stop()
        if advertiser is not None:
            await advertiser.stop()
        await runner.cleanup()
        if settings is not None:
            await settings.flush()

    return 0
