"""Non-repeating track selection."""

from __future__ import annotations

import logging
import random
from collections.abc import Iterable, Iterator

from tunesync.catalog import Catalog, Track

logger = logging.getLogger(__name__)


class History:
    """Identifiers of the tracks played since the last full cycle."""

    __slots__ = ("_played",)

    def __init__(self, identifiers: Iterable[str] = ()) -> None:
        self._played: set[str] = set(identifiers)

    def add(self, identifier: str) -> None:
        self._played.add(identifier)

    def clear(self) -> None:
        self._played.clear()

    def covers(self, catalog: Catalog) -> bool:
        """Return True if every track of the catalog has been played."""
        return catalog.identifiers <= self._played

    def __contains__(self, identifier: object) -> bool:
        return identifier in self._played

    def __iter__(self) -> Iterator[str]:
        return iter(self._played)

    def __len__(self) -> int:
        return len(self._played)

    def __repr__(self) -> str:
        return f"History({sorted(self._played)!r})"


def select_next(
    catalog: Catalog,
    history: History,
    current: Track | None = None,
    *,
    rng: random.Random | None = None,
) -> Track:
    """Pick the next track, never repeating one before the cycle completes.

    Once the history covers the whole catalog it is cleared, and the current
    track is put straight back so it cannot be drawn twice in a row. A
    catalog with a single track always yields that track.

    Args:
        catalog: Tracks available this session (must not be empty).
        history: Played identifiers, updated in place.
        current: The track that just finished, if any.
        rng: Random source, defaults to the module-level generator.

    Returns:
        The selected track.
    """
    if not len(catalog):
        raise ValueError("Cannot select from an empty catalog")

    if history.covers(catalog):
        logger.debug("All %d tracks played, starting a new cycle", len(catalog))
        history.clear()
        if current is not None:
            history.add(current.identifier)

    available = [track for track in catalog if track.identifier not in history]
    if not available:
        # Single-track catalog: the only candidate is the one just played
        if current is not None and current.identifier in catalog:
            return current
        return catalog.tracks[0]

    choice = (rng or random).choice(available)
    history.add(choice.identifier)
    return choice
