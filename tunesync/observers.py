"""Connected clients and state fan-out.

Observers only receive copies of the playback state; they never own or
change it. Delivery is isolated per observer: a closed, failing or stalled
connection is skipped without affecting anyone else.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
from collections.abc import Callable
from typing import TYPE_CHECKING, Protocol

from aiohttp import WSCloseCode

from tunesync.protocol import encode_state

if TYPE_CHECKING:
    from aiohttp import web

    from tunesync.clock import PlaybackState

logger = logging.getLogger(__name__)

# Upper bound for a single send before the observer is considered stalled
SEND_TIMEOUT_SECONDS = 5.0

StateListener = Callable[["PlaybackState"], None]
ObserverCountListener = Callable[[int], None]

_observer_ids = itertools.count(1)


class Observer(Protocol):
    """A connection that receives state broadcasts."""

    @property
    def observer_id(self) -> str: ...

    @property
    def is_open(self) -> bool: ...

    async def send(self, message: str) -> None: ...

    async def close(self) -> None: ...


class WebSocketObserver:
    """Observer backed by an aiohttp WebSocket response."""

    def __init__(self, ws: web.WebSocketResponse, remote: str | None = None) -> None:
        self._ws = ws
        self._id = f"{remote or 'client'}#{next(_observer_ids)}"

    @property
    def observer_id(self) -> str:
        return self._id

    @property
    def is_open(self) -> bool:
        return not self._ws.closed

    async def send(self, message: str) -> None:
        await self._ws.send_str(message)

    async def close(self) -> None:
        await self._ws.close(code=WSCloseCode.GOING_AWAY, message=b"Server shutdown")

    def __repr__(self) -> str:
        return f"WebSocketObserver({self._id})"


class ObserverRegistry:
    """Set of currently connected observers.

    Besides the observers themselves, in-process listeners can subscribe to
    every broadcast state and to changes in the number of observers. Each
    ``add_*`` method returns an unsubscribe function.
    """

    def __init__(self, *, send_timeout: float = SEND_TIMEOUT_SECONDS) -> None:
        self._observers: dict[str, Observer] = {}
        self._send_timeout = send_timeout
        self._state_listeners: list[StateListener] = []
        self._count_listeners: list[ObserverCountListener] = []

    @property
    def observers(self) -> tuple[Observer, ...]:
        return tuple(self._observers.values())

    def __len__(self) -> int:
        return len(self._observers)

    def __contains__(self, observer: object) -> bool:
        return any(observer is registered for registered in self._observers.values())

    def add(self, observer: Observer) -> Callable[[], None]:
        """Register an observer. Returns a function that removes it again."""
        self._observers[observer.observer_id] = observer
        logger.info("Client connected: %s (%d total)", observer.observer_id, len(self))
        self._notify_count()
        return lambda: self.remove(observer)

    def remove(self, observer: Observer) -> None:
        if self._observers.pop(observer.observer_id, None) is None:
            return
        logger.info("Client disconnected: %s (%d total)", observer.observer_id, len(self))
        self._notify_count()

    def add_state_listener(self, listener: StateListener) -> Callable[[], None]:
        """Add a listener called with every broadcast state."""
        self._state_listeners.append(listener)
        return lambda: self._state_listeners.remove(listener)

    def add_observer_count_listener(self, listener: ObserverCountListener) -> Callable[[], None]:
        """Add a listener called whenever an observer connects or disconnects."""
        self._count_listeners.append(listener)
        return lambda: self._count_listeners.remove(listener)

    async def broadcast(self, state: PlaybackState) -> int:
        """Send one state snapshot to every open observer.

        Returns:
            The number of observers the state was delivered to.
        """
        message = encode_state(state)
        observers = self.observers
        self._notify_state(state)
        if not observers:
            return 0
        results = await asyncio.gather(
            *(self._deliver(observer, message) for observer in observers)
        )
        return sum(results)

    async def send(self, observer: Observer, state: PlaybackState) -> bool:
        """Send a state snapshot to a single observer."""
        return await self._deliver(observer, encode_state(state))

    async def close_all(self) -> None:
        """Close every registered connection."""
        results = await asyncio.gather(
            *(observer.close() for observer in self.observers), return_exceptions=True
        )
        for result in results:
            if isinstance(result, Exception):
                logger.debug("Error closing client: %s", result)

    async def _deliver(self, observer: Observer, message: str) -> bool:
        if not observer.is_open:
            logger.debug("Skipping closed client %s", observer.observer_id)
            return False
        try:
            await asyncio.wait_for(observer.send(message), timeout=self._send_timeout)
        except TimeoutError:
            logger.warning("Send to %s timed out", observer.observer_id)
            return False
        except Exception as e:
            logger.warning("Send to %s failed: %s", observer.observer_id, e)
            logger.debug("Send failure details", exc_info=True)
            return False
        return True

    def _notify_state(self, state: PlaybackState) -> None:
        for listener in self._state_listeners:
            try:
                listener(state)
            except Exception:
                logger.exception("Error in state listener")

    def _notify_count(self) -> None:
        count = len(self._observers)
        for listener in self._count_listeners:
            try:
                listener(count)
            except Exception:
                logger.exception("Error in observer count listener")
