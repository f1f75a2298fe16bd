"""Cache entries and the volatile (in-process) cache tier."""

from dataclasses import dataclass
from typing import Any
import asyncio
import json
import time


@dataclass
class CacheEntry:
    """A cached payload with its own expiration window.

    Attributes:
        value: Opaque payload supplied by the caller.
        stored_at: Wall-clock epoch seconds when the value was written.
        ttl: Seconds the value stays fresh after ``stored_at``.
    """

    value: Any
    stored_at: float
    ttl: float

    def is_fresh(self, now: float | None = None) -> bool:
        """Check whether the entry is still within its TTL."""
        if now is None:
            now = time.time()
        return now - self.stored_at <= self.ttl

    def age(self, now: float | None = None) -> float:
        if now is None:
            now = time.time()
        return now - self.stored_at

    def to_json(self) -> str:
        """Serialize for the durable tier.

        Raises:
            TypeError: If ``value`` is not JSON serializable.
        """
        return json.dumps(
            {"value": self.value, "stored_at": self.stored_at, "ttl": self.ttl},
            ensure_ascii=False,
        )

    @classmethod
    def from_json(cls, raw: str) -> "CacheEntry":
        """Deserialize a durable tier payload.

        Raises:
            ValueError: If the payload is not a serialized entry.
        """
        try:
            data = json.loads(raw)
            return cls(
                value=data["value"],
                stored_at=float(data["stored_at"]),
                ttl=float(data["ttl"]),
            )
        except (TypeError, KeyError, ValueError) as e:
            raise ValueError(f"Malformed cache entry: {e}") from e


class InMemoryCache:
    """Volatile cache tier holding ``CacheEntry`` objects.

    Data is lost when the process restarts. Freshness is not enforced
    here; the fallback cache decides what a stale entry means.
    """

    def __init__(self) -> None:
        self._data: dict[str, CacheEntry] = {}
        self._lock = asyncio.Lock()

    async def get_entry(self, key: str) -> CacheEntry | None:
        """Return the stored entry for ``key`` regardless of freshness."""
        async with self._lock:
            return self._data.get(key)

    async def set_entry(self, key: str, entry: CacheEntry) -> None:
        async with self._lock:
            self._data[key] = entry

    async def delete(self, key: str) -> None:
        """Remove ``key``; missing keys are ignored."""
        async with self._lock:
            self._data.pop(key, None)

    async def delete_if_stale(self, key: str, now: float) -> bool:
        """Remove ``key`` only if its current entry is stale.

        Returns:
            True if an entry was removed.
        """
        async with self._lock:
            entry = self._data.get(key)
            if entry is None or entry.is_fresh(now):
                return False
            del self._data[key]
            return True

    async def clear(self) -> None:
        """Clear all entries from the cache."""
        async with self._lock:
            self._data.clear()

    async def cleanup_expired(self, now: float | None = None) -> int:
        """Remove all expired entries from the cache.

        Returns:
            Number of entries removed.
        """
        if now is None:
            now = time.time()
        async with self._lock:
            expired_keys = [
                key for key, entry in self._data.items() if not entry.is_fresh(now)
            ]
            for key in expired_keys:
                del self._data[key]
            return len(expired_keys)

    @property
    def size(self) -> int:
        return len(self._data)
