"""Rich-based status display for the tunesync server."""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Self

from rich.console import Console, ConsoleOptions, RenderResult
from rich.live import Live
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

if TYPE_CHECKING:
    from tunesync.clock import PlaybackState


class _RefreshableLayout:
    """A renderable that rebuilds on each render cycle."""

    def __init__(self, ui: ServerUI) -> None:
        self._ui = ui

    def __rich_console__(self, console: Console, options: ConsoleOptions) -> RenderResult:
        """Rebuild and yield the layout on each render."""
        yield self._ui._build_layout()  # noqa: SLF001


@dataclass
class UIState:
    """Holds state for the UI display."""

    server_url: str | None = None
    server_name: str | None = None
    catalog_size: int = 0
    listeners: int = 0
    track: str | None = None
    start_time: float = 0.0
    duration: float = 0.0
    changes: int = 0


def _format_time(seconds: float | None) -> str:
    """Format seconds as MM:SS."""
    if seconds is None:
        return "--:--"
    total = max(0, int(seconds))
    return f"{total // 60:02d}:{total % 60:02d}"


def split_identifier(identifier: str) -> tuple[str | None, str]:
    """Split a track identifier into album and file name."""
    parts = identifier.rsplit("/", 2)
    if len(parts) == 3:
        return parts[1], parts[2]
    return None, parts[-1]


class ServerUI:
    """Rich-based live status panel for the server operator."""

    def __init__(self, console: Console | None = None) -> None:
        """Initialize the UI."""
        self._console = console or Console()
        self._state = UIState()
        self._live: Live | None = None

    @property
    def state(self) -> UIState:
        """Get the UI state for external updates."""
        return self._state

    def _build_now_playing_panel(self, *, expand: bool = False) -> Panel:
        """Build the now playing panel."""
        if not self._state.track:
            content = Text("Waiting for the first track...", style="dim")
            return Panel(content, title="Now Playing", border_style="blue", expand=expand)

        album, title = split_identifier(self._state.track)
        info = Table.grid(padding=(0, 1))
        info.add_column(style="dim", width=8)
        info.add_column()
        info.add_row("Track:", Text(title, style="bold white"))
        info.add_row("Album:", Text(album or "Unknown album", style="cyan"))
        info.add_row("Path:", Text(self._state.track, style="dim"))
        return Panel(info, title="Now Playing", border_style="blue", expand=expand)

    def _build_listeners_panel(self, *, expand: bool = False) -> Panel:
        """Build the listeners panel."""
        info = Table.grid(padding=(0, 2))
        info.add_column()
        info.add_column()
        info.add_row("Clients:", Text(str(self._state.listeners), style="cyan bold"))
        info.add_row("Tracks:", Text(str(self._state.catalog_size), style="cyan"))
        info.add_row("Changes:", Text(str(self._state.changes), style="cyan"))
        return Panel(info, title="Listeners", border_style="magenta", expand=expand)

    def _build_progress_bar(self, *, expand: bool = False) -> Panel:
        """Build the progress bar panel."""
        duration = self._state.duration
        elapsed = 0.0
        if self._state.track and duration > 0:
            elapsed = min(duration, max(0.0, time.time() - self._state.start_time))
        percentage = elapsed / duration * 100 if duration > 0 else 0

        time_str = f"{_format_time(elapsed)} / {_format_time(duration)}"

        # Terminal width minus panel borders (4), time text and spacing
        bar_width = max(10, self._console.width - 4 - len(time_str) - 5)
        filled = int(bar_width * percentage / 100)
        empty = bar_width - filled

        bar = Text()
        bar.append("[", style="dim")
        bar.append("=" * filled, style="green bold")
        if filled < bar_width:
            bar.append(">", style="green bold")
            bar.append("-" * max(0, empty - 1), style="dim")
        bar.append("] ", style="dim")

        time_text = Text()
        time_text.append(_format_time(elapsed), style="cyan")
        time_text.append(" / ", style="dim")
        time_text.append(_format_time(duration), style="cyan")

        content = Table.grid(expand=True, padding=0)
        content.add_column()
        content.add_column(justify="right", no_wrap=True)
        content.add_row(bar, time_text)
        return Panel(content, title="Progress", border_style="green", expand=expand)

    def _build_status_line(self) -> Table:
        """Build the status line at the bottom."""
        left = Text()
        left.append("  ")
        if self._state.server_url:
            name = self._state.server_name or "Server"
            left.append(f"{name} at {self._state.server_url}", style="dim")
        else:
            left.append("Starting...", style="dim yellow")

        right = Text()
        right.append("Ctrl+C", style="bold cyan")
        right.append(" quit", style="dim")

        line = Table.grid(expand=True)
        line.add_column(ratio=1)
        line.add_column(justify="right")
        line.add_column(width=2)
        line.add_row(left, right, "")
        return line

    def _build_layout(self) -> Table:
        """Build the complete UI layout."""
        width = self._console.width - 1

        layout = Table.grid(expand=False)
        layout.add_column(width=width)

        top_row = Table.grid(expand=True)
        top_row.add_column(ratio=2)
        top_row.add_column(ratio=1)
        top_row.add_row(
            self._build_now_playing_panel(expand=True),
            self._build_listeners_panel(expand=True),
        )
        layout.add_row(top_row)
        layout.add_row(self._build_progress_bar(expand=True))
        layout.add_row(self._build_status_line())
        return layout

    def refresh(self) -> None:
        """Request a UI refresh."""
        if self._live is not None:
            self._live.refresh()

    def set_server(self, url: str, name: str, catalog_size: int) -> None:
        """Update the server details."""
        self._state.server_url = url
        self._state.server_name = name
        self._state.catalog_size = catalog_size
        self.refresh()

    def set_playback(self, state: PlaybackState) -> None:
        """Update the displayed track from a broadcast snapshot."""
        changed = (
            state.track.identifier != self._state.track
            or state.start_time != self._state.start_time
        )
        if changed:
            if self._state.track is not None:
                self._state.changes += 1
            self._state.track = state.track.identifier
            self._state.start_time = state.start_time
            self._state.duration = state.duration
            self.refresh()

    def set_listeners(self, count: int) -> None:
        """Update the number of connected clients."""
        self._state.listeners = count
        self.refresh()

    def start(self) -> None:
        """Start the live display."""
        self._console.clear()
        self._live = Live(
            _RefreshableLayout(self),
            console=self._console,
            refresh_per_second=4,
            screen=True,
        )
        self._live.start()

    def stop(self) -> None:
        """Stop the live display."""
        if self._live is not None:
            self._live.stop()
            self._live = None

    def __enter__(self) -> Self:
        """Context manager entry."""
        self.start()
        return self

    def __exit__(self, *_: object) -> None:
        """Context manager exit."""
        self.stop()
