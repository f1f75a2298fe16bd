"""Two-tier fallback cache with per-entry TTLs.

The volatile tier (process memory) is authoritative and always written.
The durable tier extends an entry's life across restarts on a best-effort
basis: every durable failure is logged and the call carries on as if the
tier were disabled.

Lookup order is volatile first, durable second. A fresh durable hit is
promoted into the volatile tier with its original timestamps.
"""

import math
import time
from typing import Any, Callable, Optional

from tripguard.app.core.cache import CacheEntry, InMemoryCache
from tripguard.app.core.config import settings
from tripguard.app.core.logging import get_log_context, get_logger
from tripguard.app.core.storage import DurableStore

logger = get_logger(__name__)


class FallbackCache:
    """Volatile + durable cache keyed by opaque strings.

    Keys are not interpreted. TTLs are whatever the caller passes; there is
    no default here.

    Example:
        >>> cache = FallbackCache(durable=FileStore("cache.json"))
        >>> await cache.set("travel-list", items, ttl=300)
        >>> await cache.get("travel-list")
    """

    def __init__(
        self,
        volatile: Optional[InMemoryCache] = None,
        durable: Optional[DurableStore] = None,
        key_prefix: Optional[str] = None,
        clock: Callable[[], float] = time.time,
        durable_retention: Optional[int] = None,
    ) -> None:
        """Initialize the fallback cache.

        Args:
            volatile: Volatile tier. A new InMemoryCache when None.
            durable: Durable tier. None runs volatile-only.
            key_prefix: Namespace for durable keys. Defaults to
                settings.cache_key_prefix.
            clock: Wall-clock source in epoch seconds.
            durable_retention: Seconds a durable entry is kept past its TTL
                for stale fallbacks. Defaults to
                settings.cache_durable_retention.
        """
        self.volatile = volatile if volatile is not None else InMemoryCache()
        self.durable = durable
        self.key_prefix = settings.cache_key_prefix if key_prefix is None else key_prefix
        self.durable_retention = (
            settings.cache_durable_retention
            if durable_retention is None
            else durable_retention
        )
        self._clock = clock

    def _durable_key(self, key: str) -> str:
        return f"{self.key_prefix}{key}"

    async def set(
        self, key: str, value: Any, ttl: float, *, use_durable: bool = True
    ) -> None:
        """Store ``value`` under ``key`` for ``ttl`` seconds in both tiers."""
        entry = CacheEntry(value=value, stored_at=self._clock(), ttl=ttl)
        await self.volatile.set_entry(key, entry)
        if use_durable:
            await self._write_durable(key, entry)

    async def get(self, key: str, *, use_durable: bool = True) -> Any | None:
        """Return the fresh value for ``key`` or None."""
        entry = await self.get_entry(key, use_durable=use_durable)
        return entry.value if entry is not None else None

    async def get_entry(
        self, key: str, *, use_durable: bool = True
    ) -> CacheEntry | None:
        """Return the fresh entry for ``key`` or None.

        Stale entries met on the way are evicted from the tier they were
        found in.
        """
        now = self._clock()
        entry = await self.volatile.get_entry(key)
        if entry is not None:
            if entry.is_fresh(now):
                return entry
            await self.volatile.delete_if_stale(key, now)

        if not use_durable:
            return None

        entry = await self._read_durable(key)
        if entry is None:
            return None
        if not entry.is_fresh(now):
            await self._remove_durable(key)
            return None

        await self.volatile.set_entry(key, entry)
        logger.debug(
            f"Promoted durable cache entry for {key}",
            extra=get_log_context(cache_key=key, tier="durable"),
        )
        return entry

    async def get_stale_entry(
        self, key: str, *, use_durable: bool = True
    ) -> CacheEntry | None:
        """Return any stored entry for ``key``, fresh or not.

        This is the fallback read used during outages. Nothing is evicted.
        """
        entry = await self.volatile.get_entry(key)
        if entry is not None:
            return entry
        if not use_durable:
            return None
        return await self._read_durable(key)

    async def clear(self, key: str) -> None:
        """Remove ``key`` from both tiers."""
        await self.volatile.delete(key)
        await self._remove_durable(key)

    async def clear_all(self) -> None:
        """Remove every entry owned by this cache from both tiers."""
        await self.volatile.clear()
        if self.durable is None:
            return
        try:
            keys = await self.durable.keys(self.key_prefix)
            for durable_key in keys:
                await self.durable.remove_item(durable_key)
        except Exception:
            logger.warning(
                "Failed to clear durable cache tier, continuing",
                exc_info=True,
                extra=get_log_context(tier="durable"),
            )

    async def _write_durable(self, key: str, entry: CacheEntry) -> None:
        if self.durable is None:
            return
        try:
            await self.durable.set_item(
                self._durable_key(key),
                entry.to_json(),
                expire_seconds=math.ceil(entry.ttl) + self.durable_retention,
            )
        except Exception:
            logger.warning(
                f"Durable cache write failed for {key}, continuing with volatile tier",
                exc_info=True,
                extra=get_log_context(cache_key=key, tier="durable"),
            )

    async def _read_durable(self, key: str) -> CacheEntry | None:
        if self.durable is None:
            return None
        try:
            raw = await self.durable.get_item(self._durable_key(key))
        except Exception:
            logger.warning(
                f"Durable cache read failed for {key}, treating as miss",
                exc_info=True,
                extra=get_log_context(cache_key=key, tier="durable"),
            )
            return None
        if raw is None:
            return None
        try:
            return CacheEntry.from_json(raw)
        except ValueError:
            logger.warning(
                f"Discarding malformed durable cache entry for {key}",
                exc_info=True,
                extra=get_log_context(cache_key=key, tier="durable"),
            )
            await self._remove_durable(key)
            return None

    async def _remove_durable(self, key: str) -> None:
        if self.durable is None:
            return
        try:
            await self.durable.remove_item(self._durable_key(key))
        except Exception:
            logger.warning(
                f"Durable cache removal failed for {key}",
                exc_info=True,
                extra=get_log_context(cache_key=key, tier="durable"),
            )
