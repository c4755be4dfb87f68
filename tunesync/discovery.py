"""mDNS advertisement and discovery of tunesync servers."""

from __future__ import annotations

import asyncio
import logging
import socket
from dataclasses import dataclass
from typing import TYPE_CHECKING, cast

if TYPE_CHECKING:
    from zeroconf import ServiceListener

from zeroconf import ServiceInfo
from zeroconf.asyncio import AsyncServiceBrowser, AsyncZeroconf

logger = logging.getLogger(__name__)


@dataclass
class DiscoveredServer:
    """Information about a discovered tunesync server."""

    name: str
    url: str
    host: str
    port: int


SERVICE_TYPE = "_tunesync._tcp.local."
DEFAULT_PATH = "/ws"


def _build_service_url(host: str, port: int, properties: dict[bytes, bytes | None]) -> str:
    """Construct WebSocket URL from mDNS service info."""
    path_raw = properties.get(b"path")
    path = path_raw.decode("utf-8", "ignore") if isinstance(path_raw, bytes) else DEFAULT_PATH
    if not path:
        path = DEFAULT_PATH
    if not path.startswith("/"):
        path = "/" + path
    host_fmt = f"[{host}]" if ":" in host else host
    return f"ws://{host_fmt}:{port}{path}"


class ServiceAdvertiser:
    """Announces this server on the local network."""

    def __init__(self, name: str, port: int, address: str, path: str = DEFAULT_PATH) -> None:
        self._info = ServiceInfo(
            SERVICE_TYPE,
            f"{name}.{SERVICE_TYPE}",
            addresses=[socket.inet_aton(address)],
            port=port,
            properties={"path": path},
            server=f"{socket.gethostname()}.local.",
        )
        self._zeroconf: AsyncZeroconf | None = None

    async def start(self) -> None:
        """Register the service."""
        self._zeroconf = AsyncZeroconf()
        try:
            await self._zeroconf.async_register_service(self._info, allow_name_change=True)
        except Exception:
            await self.stop()
            raise
        logger.info("Advertising %s on port %d", self._info.name, self._info.port)

    async def stop(self) -> None:
        """Unregister the service and close zeroconf."""
        if self._zeroconf is None:
            return
        try:
            await self._zeroconf.async_unregister_service(self._info)
        except Exception:
            logger.debug("Failed to unregister service", exc_info=True)
        await self._zeroconf.async_close()
        self._zeroconf = None


class _ServiceDiscoveryListener:
    """Listens for tunesync server advertisements via mDNS."""

    def __init__(self, loop: asyncio.AbstractEventLoop) -> None:
        self._loop = loop
        self._servers: dict[str, DiscoveredServer] = {}
        self.tasks: set[asyncio.Task[None]] = set()

    @property
    def servers(self) -> dict[str, DiscoveredServer]:
        """Get all discovered servers."""
        return self._servers

    async def _process_service_info(
        self, zeroconf: AsyncZeroconf, service_type: str, name: str
    ) -> None:
        """Extract and construct WebSocket URL from service info."""
        info = await zeroconf.async_get_service_info(service_type, name)
        if info is None or info.port is None:
            return
        addresses = info.parsed_addresses()
        if not addresses:
            return
        host = addresses[0]
        self._servers[name] = DiscoveredServer(
            name=name.removesuffix(f".{SERVICE_TYPE}"),
            url=_build_service_url(host, info.port, info.properties),
            host=host,
            port=info.port,
        )

    def _schedule(self, zeroconf: AsyncZeroconf, service_type: str, name: str) -> None:
        task = self._loop.create_task(self._process_service_info(zeroconf, service_type, name))
        self.tasks.add(task)
        task.add_done_callback(self.tasks.discard)
        task.add_done_callback(lambda t: t.exception() if not t.cancelled() else None)

    def add_service(self, zeroconf: AsyncZeroconf, service_type: str, name: str) -> None:
        self._schedule(zeroconf, service_type, name)

    def update_service(self, zeroconf: AsyncZeroconf, service_type: str, name: str) -> None:
        self._schedule(zeroconf, service_type, name)

    def remove_service(self, _zeroconf: AsyncZeroconf, _service_type: str, name: str) -> None:
        """Handle service removal (server offline)."""
        self._servers.pop(name, None)


async def discover_servers(discovery_time: float = 3.0) -> list[DiscoveredServer]:
    """Discover tunesync servers on the network.

    Args:
        discovery_time: How long to wait for discovery in seconds.

    Returns:
        List of discovered servers.
    """
    listener = _ServiceDiscoveryListener(asyncio.get_running_loop())
    zeroconf = AsyncZeroconf()
    browser: AsyncServiceBrowser | None = None
    try:
        browser = AsyncServiceBrowser(
            zeroconf.zeroconf, SERVICE_TYPE, cast("ServiceListener", listener)
        )
        await asyncio.sleep(discovery_time)
        return list(listener.servers.values())
    finally:
        if browser is not None:
            await browser.async_cancel()
        await zeroconf.async_close()
