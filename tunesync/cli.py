"""Command-line interface for running a tunesync server."""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from collections.abc import Sequence
from pathlib import Path

from rich.console import Console
from rich.table import Table

from tunesync.catalog import DEFAULT_URL_PREFIX, scan_library
from tunesync.discovery import discover_servers
from tunesync.serve import ServeConfig, run_server
from tunesync.settings import (
    MIN_TICK_INTERVAL,
    Settings,
    SettingsManager,
    get_settings_manager,
)

logger = logging.getLogger(__name__)


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    """Parse CLI arguments for the tunesync server."""
    parser = argparse.ArgumentParser(
        description="Keep every connected client on the same track at the same position"
    )
    parser.add_argument(
        "--music-dir",
        default=None,
        help="Directory with one sub-directory per album (defaults to the saved setting)",
    )
    parser.add_argument("--port", type=int, default=None, help="HTTP/WebSocket port")
    parser.add_argument("--name", default=None, help="Server name advertised via mDNS")
    parser.add_argument(
        "--tick-interval",
        type=float,
        default=None,
        help="Seconds between track expiry checks and state broadcasts",
    )
    parser.add_argument(
        "--signal-debounce",
        type=float,
        default=None,
        help="Seconds after a track change during which anonymous trackEnded signals are ignored",
    )
    parser.add_argument(
        "--default-track",
        default=None,
        help="Identifier of the track played when the library is empty",
    )
    parser.add_argument(
        "--extension",
        action="append",
        dest="extensions",
        default=None,
        help="Audio file extension to include (repeatable, e.g. --extension .mp3)",
    )
    parser.add_argument(
        "--no-static",
        action="store_true",
        help="Do not serve the music directory over HTTP",
    )
    parser.add_argument(
        "--no-advertise",
        action="store_true",
        help="Do not advertise the server via mDNS",
    )
    parser.add_argument(
        "--headless",
        action="store_true",
        help="Run without the live terminal display",
    )
    parser.add_argument(
        "--config-dir",
        default=None,
        help="Directory for the settings file (defaults to ~/.config/tunesync)",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Logging level to use",
    )
    parser.add_argument(
        "--list-tracks",
        action="store_true",
        help="Scan the music directory, print the tracks found and exit",
    )
    parser.add_argument(
        "--list-servers",
        action="store_true",
        help="Discover and list tunesync servers on the network",
    )
    return parser.parse_args(argv)


def _normalize_extension(ext: str) -> str:
    ext = ext.strip().lower()
    return ext if ext.startswith(".") else f".{ext}"


def build_serve_config(args: argparse.Namespace, settings: Settings) -> ServeConfig:
    """Resolve the server configuration: CLI flags win over saved settings."""
    extensions = args.extensions if args.extensions else settings.extensions
    return ServeConfig(
        music_dir=Path(args.music_dir if args.music_dir is not None else settings.music_dir),
        port=args.port if args.port is not None else settings.port,
        name=args.name if args.name is not None else settings.name,
        tick_interval=max(
            MIN_TICK_INTERVAL,
            args.tick_interval if args.tick_interval is not None else settings.tick_interval,
        ),
        signal_debounce=max(
            0.0,
            args.signal_debounce if args.signal_debounce is not None else settings.signal_debounce,
        ),
        default_track=(
            args.default_track if args.default_track is not None else settings.default_track
        ),
        extensions=tuple(_normalize_extension(ext) for ext in extensions),
        serve_static=not args.no_static,
        advertise=not args.no_advertise,
        headless=args.headless,
    )


def list_tracks(config: ServeConfig) -> int:
    """Scan the library and print the result as a table."""
    console = Console()
    result = scan_library(
        config.music_dir, url_prefix=DEFAULT_URL_PREFIX, extensions=config.extensions
    )

    table = Table(title=f"Tracks in {config.music_dir}")
    table.add_column("Identifier", style="cyan")
    table.add_column("Duration", justify="right")
    for track in result.tracks:
        minutes, seconds = divmod(int(track.duration), 60)
        table.add_row(track.identifier, f"{minutes}:{seconds:02d}")
    console.print(table)

    if result.failures:
        console.print(f"\n[yellow]{len(result.failures)} file(s) could not be probed:[/yellow]")
        for failure in result.failures:
            console.print(f"  {failure.path}: {failure.reason}", markup=False)
    if not result.tracks:
        console.print(
            f"\n[red]No tracks found; the server would fall back to {config.default_track}[/red]"
        )
        return 1
    return 0


async def list_servers() -> None:
    """Discover and list all tunesync servers on the network."""
    try:
        servers = await discover_servers(discovery_time=3.0)
        if not servers:
            print("No tunesync servers found.")
            return

        print(f"\nFound {len(servers)} server(s):")
        print()
        for server in servers:
            print(f"  {server.name}")
            print(f"    URL:  {server.url}")
            print(f"    Host: {server.host}:{server.port}")
    except Exception as e:  # noqa: BLE001
        print(f"Error discovering servers: {e}")
        sys.exit(1)


async def _serve(args: argparse.Namespace) -> int:
    settings: SettingsManager = await get_settings_manager(args.config_dir)
    config = build_serve_config(args, settings.settings)
    if not config.music_dir.is_dir():
        logger.warning("Music directory %s does not exist", config.music_dir)
    return await run_server(config, settings)


def configure_logging(log_level: str, *, interactive: bool) -> None:
    """Set up logging; keep the live display clean unless debugging."""
    if interactive and log_level != "DEBUG":
        logging.basicConfig(level=logging.WARNING)
    else:
        logging.basicConfig(
            level=getattr(logging, log_level),
            format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        )


def main() -> int:
    """Run the CLI."""
    args = parse_args(sys.argv[1:])

    if args.list_servers:
        asyncio.run(list_servers())
        return 0

    interactive = sys.stdout.isatty() and not args.headless and not args.list_tracks
    configure_logging(args.log_level, interactive=interactive)
    if not interactive:
        args.headless = True

    if args.list_tracks:
        settings = asyncio.run(get_settings_manager(args.config_dir))
        return list_tracks(build_serve_config(args, settings.settings))

    return asyncio.run(_serve(args))


if __name__ == "__main__":
    raise SystemExit(main())
