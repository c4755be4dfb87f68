"""Track catalog built once at startup from a directory of albums.

The music root is expected to hold one sub-directory per album, each with
audio files directly inside it. Every file is probed with PyAV for its
duration; a file that cannot be probed is left out of the catalog instead of
aborting the whole scan.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Iterable, Iterator
from dataclasses import dataclass, field
from functools import partial
from pathlib import Path

import av

logger = logging.getLogger(__name__)

DEFAULT_EXTENSIONS: tuple[str, ...] = (".mp3",)
DEFAULT_URL_PREFIX = "music"
DEFAULT_TRACK_IDENTIFIER = "music/album1/chanson1.mp3"
# Used when the default track's file is missing or unreadable
DEFAULT_TRACK_DURATION = 180.0

ProbeFunc = Callable[[Path], float]


class ProbeError(Exception):
    """Raised when the duration of an audio file cannot be determined."""

    def __init__(self, path: Path | str, reason: str) -> None:
        super().__init__(f"{path}: {reason}")
        self.path = Path(path)
        self.reason = reason


@dataclass(frozen=True, slots=True)
class Track:
    """A playable track: an identifier clients can resolve and its length."""

    identifier: str
    duration: float

    def __post_init__(self) -> None:
        if not self.duration > 0:
            raise ValueError(f"Track duration must be positive: {self.identifier!r}")


class Catalog:
    """Immutable, ordered collection of tracks with unique identifiers."""

    __slots__ = ("_by_id", "_tracks")

    def __init__(self, tracks: Iterable[Track]) -> None:
        self._tracks: tuple[Track, ...] = tuple(tracks)
        self._by_id: dict[str, Track] = {}
        for track in self._tracks:
            if track.identifier in self._by_id:
                raise ValueError(f"Duplicate track identifier: {track.identifier!r}")
            self._by_id[track.identifier] = track

    @property
    def tracks(self) -> tuple[Track, ...]:
        return self._tracks

    @property
    def identifiers(self) -> frozenset[str]:
        return frozenset(self._by_id)

    def get(self, identifier: str) -> Track | None:
        return self._by_id.get(identifier)

    def __contains__(self, identifier: object) -> bool:
        return identifier in self._by_id

    def __iter__(self) -> Iterator[Track]:
        return iter(self._tracks)

    def __len__(self) -> int:
        return len(self._tracks)

    def __repr__(self) -> str:
        return f"Catalog({len(self._tracks)} tracks)"


@dataclass
class ScanResult:
    """Outcome of a library scan: the probed tracks and the files that failed."""

    tracks: list[Track] = field(default_factory=list)
    failures: list[ProbeError] = field(default_factory=list)


def probe_duration(path: Path) -> float:
    """Return the duration of an audio file in seconds.

    Raises:
        ProbeError: If the file cannot be opened, has no audio stream, or
            does not report a positive duration.
    """
    try:
        with av.open(str(path)) as container:
            if not container.streams.audio:
                raise ProbeError(path, "no audio stream")
            stream = container.streams.audio[0]

            if stream.duration and stream.time_base:
                duration = float(stream.duration * stream.time_base)
            elif container.duration:
                duration = container.duration / av.time_base
            else:
                duration = 0.0
    except (av.error.FFmpegError, OSError) as e:
        raise ProbeError(path, str(e)) from e

    if duration <= 0:
        raise ProbeError(path, "unknown duration")
    return duration


def list_albums(root: Path) -> list[str]:
    """List album directories under the music root."""
    return sorted(
        entry.name
        for entry in root.iterdir()
        if entry.is_dir() and not entry.name.startswith(".")
    )


def list_tracks(album_dir: Path, extensions: Iterable[str] = DEFAULT_EXTENSIONS) -> list[str]:
    """List audio file names inside an album directory."""
    suffixes = {ext.lower() for ext in extensions}
    return sorted(
        entry.name
        for entry in album_dir.iterdir()
        if entry.is_file() and entry.suffix.lower() in suffixes
    )


def scan_library(
    root: Path,
    *,
    url_prefix: str = DEFAULT_URL_PREFIX,
    extensions: Iterable[str] = DEFAULT_EXTENSIONS,
    probe: ProbeFunc = probe_duration,
) -> ScanResult:
    """Scan the music root and probe every audio file (blocking I/O)."""
    result = ScanResult()
    extensions = tuple(extensions)

    try:
        albums = list_albums(root)
    except OSError as e:
        logger.error("Unable to list music directory %s: %s", root, e)
        return result

    for album in albums:
        try:
            names = list_tracks(root / album, extensions)
        except OSError as e:
            logger.warning("Unable to list album %s: %s", album, e)
            continue

        for name in names:
            path = root / album / name
            try:
                duration = probe(path)
                track = Track(identifier=f"{url_prefix}/{album}/{name}", duration=duration)
            except ProbeError as e:
                logger.warning("Skipping %s: %s", path, e.reason)
                result.failures.append(e)
                continue
            except ValueError as e:
                logger.warning("Skipping %s: %s", path, e)
                result.failures.append(ProbeError(path, str(e)))
                continue
            result.tracks.append(track)

    logger.info(
        "Scanned %s: %d tracks in %d albums, %d failed",
        root,
        len(result.tracks),
        len(albums),
        len(result.failures),
    )
    return result


def default_track(
    root: Path,
    identifier: str = DEFAULT_TRACK_IDENTIFIER,
    *,
    url_prefix: str = DEFAULT_URL_PREFIX,
    probe: ProbeFunc = probe_duration,
) -> Track:
    """Build the fallback track used when the library yields nothing."""
    relative = identifier.removeprefix(f"{url_prefix}/")
    path = root / relative
    if path.is_file():
        try:
            return Track(identifier=identifier, duration=probe(path))
        except ProbeError as e:
            logger.warning("Unable to probe default track %s: %s", path, e.reason)
    return Track(identifier=identifier, duration=DEFAULT_TRACK_DURATION)


def build_catalog(result: ScanResult, fallback: Callable[[], Track]) -> Catalog:
    """Create the session catalog, falling back to a single track if empty."""
    if not result.tracks:
        track = fallback()
        logger.warning("Catalog is empty, falling back to default track %s", track.identifier)
        return Catalog((track,))
    return Catalog(result.tracks)


async def load_catalog(
    root: Path,
    *,
    default_identifier: str = DEFAULT_TRACK_IDENTIFIER,
    url_prefix: str = DEFAULT_URL_PREFIX,
    extensions: Iterable[str] = DEFAULT_EXTENSIONS,
    probe: ProbeFunc = probe_duration,
) -> Catalog:
    """Scan the library in the default executor and build the catalog."""
    loop = asyncio.get_running_loop()

    def _load() -> Catalog:
        result = scan_library(root, url_prefix=url_prefix, extensions=extensions, probe=probe)
        fallback = partial(
            default_track, root, default_identifier, url_prefix=url_prefix, probe=probe
        )
        return build_catalog(result, fallback)

    return await loop.run_in_executor(None, _load)
