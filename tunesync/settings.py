"""Settings persistence for the tunesync server.

Settings are loaded from a JSON file at startup and saved with debouncing
whenever they change. Command-line flags override the stored values; the
values actually used for a run are written back so the next start picks
them up without flags.
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from tunesync.catalog import DEFAULT_EXTENSIONS, DEFAULT_TRACK_IDENTIFIER
from tunesync.synchronizer import DEFAULT_SIGNAL_DEBOUNCE, DEFAULT_TICK_INTERVAL

logger = logging.getLogger(__name__)


class _UndefinedType:
    """Singleton for undefined/not-passed values."""

    __slots__ = ()

    def __repr__(self) -> str:
        return "UNDEFINED"


UNDEFINED = _UndefinedType()

# Debounce delay for saving settings
SAVE_DEBOUNCE_SECONDS = 60.0

# Shortest accepted tick interval
MIN_TICK_INTERVAL = 0.1

DEFAULT_MUSIC_DIR = "public/music"
DEFAULT_PORT = 3001
DEFAULT_NAME = "tunesync"


@dataclass
class Settings:
    """All persistent settings for the tunesync server."""

    music_dir: str = DEFAULT_MUSIC_DIR
    port: int = DEFAULT_PORT
    name: str = DEFAULT_NAME
    tick_interval: float = DEFAULT_TICK_INTERVAL
    signal_debounce: float = DEFAULT_SIGNAL_DEBOUNCE
    default_track: str = DEFAULT_TRACK_IDENTIFIER
    extensions: list[str] = field(default_factory=lambda: list(DEFAULT_EXTENSIONS))

    def to_dict(self) -> dict[str, Any]:
        """Convert settings to a dictionary for serialization."""
        return {
            "music_dir": self.music_dir,
            "port": self.port,
            "name": self.name,
            "tick_interval": self.tick_interval,
            "signal_debounce": self.signal_debounce,
            "default_track": self.default_track,
            "extensions": list(self.extensions),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Settings:
        """Create settings from a dictionary.

        Raises:
            TypeError: If a stored value has the wrong type.
        """
        extensions = _typed(data, "extensions", list(DEFAULT_EXTENSIONS), list)
        if not all(isinstance(ext, str) for ext in extensions):
            raise TypeError("Setting 'extensions' must be a list of strings")
        return cls(
            music_dir=_typed(data, "music_dir", DEFAULT_MUSIC_DIR, str),
            port=_typed(data, "port", DEFAULT_PORT, int),
            name=_typed(data, "name", DEFAULT_NAME, str),
            tick_interval=max(
                MIN_TICK_INTERVAL,
                _typed(data, "tick_interval", DEFAULT_TICK_INTERVAL, (int, float)),
            ),
            signal_debounce=_typed(
                data, "signal_debounce", DEFAULT_SIGNAL_DEBOUNCE, (int, float)
            ),
            default_track=_typed(data, "default_track", DEFAULT_TRACK_IDENTIFIER, str),
            extensions=list(extensions),
        )


def _typed(data: dict[str, Any], key: str, default: Any, types: type | tuple[type, ...]) -> Any:
    """Return ``data[key]`` (or ``default``), checking its type."""
    value = data.get(key, default)
    # bool is an int subclass; never a valid number setting
    if isinstance(value, bool) or not isinstance(value, types):
        raise TypeError(f"Setting {key!r} has invalid value {value!r}")
    return value


class SettingsManager:
    """Manages settings with debounced disk persistence.

    Changes are debounced and saved after 60 seconds of inactivity,
    or immediately on flush().
    """

    def __init__(self, settings_file: Path) -> None:
        """Initialize the settings manager.

        Args:
            settings_file: Path to the settings file.
        """
        self._settings_file = settings_file
        self._settings = Settings()
        self._debounce_save_handle: asyncio.TimerHandle | None = None

    async def load(self) -> None:
        """Load settings from disk."""
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, self._load)

    @property
    def settings_file(self) -> Path:
        return self._settings_file

    @property
    def settings(self) -> Settings:
        """Get the current settings."""
        return self._settings

    def update(
        self,
        *,
        music_dir: str | _UndefinedType = UNDEFINED,
        port: int | _UndefinedType = UNDEFINED,
        name: str | _UndefinedType = UNDEFINED,
        tick_interval: float | _UndefinedType = UNDEFINED,
        signal_debounce: float | _UndefinedType = UNDEFINED,
        default_track: str | _UndefinedType = UNDEFINED,
        extensions: list[str] | _UndefinedType = UNDEFINED,
    ) -> None:
        """Update settings fields. Only changed fields trigger a save.

        Args:
            music_dir: Music root directory, or UNDEFINED to keep current.
            port: HTTP port, or UNDEFINED to keep current.
            name: Advertised server name, or UNDEFINED to keep current.
            tick_interval: Seconds between ticks, or UNDEFINED to keep current.
            signal_debounce: Track-end debounce in seconds, or UNDEFINED to keep current.
            default_track: Fallback track identifier, or UNDEFINED to keep current.
            extensions: Audio file extensions, or UNDEFINED to keep current.
        """
        changed = False

        # Handle tick_interval separately due to clamping
        if not isinstance(tick_interval, _UndefinedType):
            tick_interval = max(MIN_TICK_INTERVAL, tick_interval)
            if self._settings.tick_interval != tick_interval:
                self._settings.tick_interval = tick_interval
                changed = True

        # Handle other fields generically
        fields = {
            "music_dir": music_dir,
            "port": port,
            "name": name,
            "signal_debounce": signal_debounce,
            "default_track": default_track,
            "extensions": extensions,
        }
        for field_name, value in fields.items():
            if not isinstance(value, _UndefinedType):
                if getattr(self._settings, field_name) != value:
                    setattr(self._settings, field_name, value)
                    changed = True

        if changed:
            self._schedule_save()

    async def flush(self) -> None:
        """Immediately save any pending changes to disk."""
        if self._debounce_save_handle is not None:
            self._debounce_save_handle.cancel()
            self._debounce_save_handle = None
            loop = asyncio.get_running_loop()
            await loop.run_in_executor(None, self._save)

    def _schedule_save(self) -> None:
        """Schedule a debounced save operation."""
        if self._debounce_save_handle is not None:
            self._debounce_save_handle.cancel()

        loop = asyncio.get_running_loop()
        self._debounce_save_handle = loop.call_later(
            SAVE_DEBOUNCE_SECONDS, self._debounced_save, loop
        )

    def _debounced_save(self, loop: asyncio.AbstractEventLoop) -> None:
        """Called by the timer to save settings in executor."""
        self._debounce_save_handle = None
        loop.run_in_executor(None, self._save)

    def _load(self) -> None:
        """Load settings from the settings file (blocking I/O)."""
        if not self._settings_file.exists():
            logger.debug("Settings file does not exist: %s", self._settings_file)
            return

        try:
            data = json.loads(self._settings_file.read_text())
            if not isinstance(data, dict):
                raise ValueError("settings must be a JSON object")
            self._settings = Settings.from_dict(data)
            logger.info(
                "Loaded settings from %s: music_dir=%s, port=%d",
                self._settings_file,
                self._settings.music_dir,
                self._settings.port,
            )
        except (ValueError, TypeError, OSError) as e:
            logger.warning("Failed to load settings from %s: %s", self._settings_file, e)

    def _save(self) -> None:
        """Save settings to the settings file (blocking I/O)."""
        try:
            self._settings_file.parent.mkdir(parents=True, exist_ok=True)
            self._settings_file.write_text(json.dumps(self._settings.to_dict(), indent=2) + "\n")
            logger.debug("Saved settings to %s", self._settings_file)
        except OSError as e:
            logger.warning("Failed to save settings to %s: %s", self._settings_file, e)


async def get_settings_manager(config_dir: Path | str | None = None) -> SettingsManager:
    """Create and load a settings manager.

    This should only be called once at startup. Pass the returned instance
    to components that need it.

    Args:
        config_dir: Optional directory to store settings. Defaults to ~/.config/tunesync.

    Returns:
        A new SettingsManager instance with settings loaded from disk.
    """
    if config_dir is None:
        config_dir = Path.home() / ".config" / "tunesync"
    elif isinstance(config_dir, str):
        config_dir = Path(config_dir)
    manager = SettingsManager(config_dir / "settings.json")
    await manager.load()
    return manager
