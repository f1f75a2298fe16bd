"""Online/offline tracking for the host environment.

The monitor starts online. The host application flips it with
``mark_offline``/``mark_online`` when it learns about connectivity changes,
or calls ``probe()`` to check a configured URL.
"""

from typing import Optional

import httpx

from tripguard.app.core.config import settings
from tripguard.app.core.http_client import create_http_client
from tripguard.app.core.logging import get_logger

logger = get_logger(__name__)


class ConnectivityMonitor:
    """Tracks whether outbound network calls are expected to work.

    Usage:
        monitor = ConnectivityMonitor(probe_url="https://apis.data.go.kr")
        await monitor.probe()
        if monitor.is_offline():
            # serve cached data only
    """

    def __init__(
        self,
        probe_url: Optional[str] = None,
        probe_timeout: Optional[float] = None,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        """Initialize the monitor.

        Args:
            probe_url: URL hit by ``probe()``. Defaults to
                settings.connectivity_probe_url; empty disables probing.
            probe_timeout: Probe timeout in seconds.
            client: HTTP client used for probing. A short-lived client is
                created per probe when None.
        """
        self.probe_url = settings.connectivity_probe_url if probe_url is None else probe_url
        self.probe_timeout = (
            settings.connectivity_probe_timeout if probe_timeout is None else probe_timeout
        )
        self._client = client
        self._offline = False

    def is_offline(self) -> bool:
        return self._offline

    def mark_offline(self) -> None:
        if not self._offline:
            logger.warning("Network marked offline")
        self._offline = True

    def mark_online(self) -> None:
        if self._offline:
            logger.info("Network marked online")
        self._offline = False

    async def probe(self) -> bool:
        """Check connectivity against ``probe_url`` and update the flag.

        Any HTTP response, even an error status, proves the network is up.
        Transport failures mark the monitor offline.

        Returns:
            True if online after the probe.
        """
        if not self.probe_url:
            return not self._offline

        try:
            if self._client is not None:
                await self._client.head(self.probe_url, timeout=self.probe_timeout)
            else:
                async with create_http_client(timeout=self.probe_timeout) as client:
                    await client.head(self.probe_url)
        except httpx.TransportError as e:
            logger.debug(f"Connectivity probe failed: {type(e).__name__}: {e}")
            self.mark_offline()
            return False

        self.mark_online()
        return True


# Shared monitor the host application flips on connectivity changes
_monitor_instance: Optional[ConnectivityMonitor] = None


def get_connectivity_monitor(force_new: bool = False) -> ConnectivityMonitor:
    """Get or create the shared connectivity monitor.

    The shared resilient caller consults this instance, so marking it
    offline makes every shared call go straight to the cache.
    """
    global _monitor_instance

    if _monitor_instance is None or force_new:
        _monitor_instance = ConnectivityMonitor()
    return _monitor_instance


def reset_connectivity_monitor() -> None:
    """Reset the shared monitor instance.

    This is primarily useful for testing.
    """
    global _monitor_instance
    _monitor_instance = None
