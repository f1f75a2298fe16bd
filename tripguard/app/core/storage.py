"""Durable key-value stores backing the persistent cache tier.

A durable store only moves opaque strings. Serialization of cache entries
and freshness rules live in the fallback cache; stores just need to
survive a process restart.
"""

from abc import ABC, abstractmethod
import asyncio
import json
import os
import threading
from pathlib import Path

import redis.asyncio as aioredis


class DurableStore(ABC):
    """Abstract base class for durable stores.

    Implementations may raise on any call when the backing storage is
    unavailable; callers treat those failures as best-effort.
    """

    @abstractmethod
    async def get_item(self, key: str) -> str | None:
        """Return the stored string for ``key`` or None."""

    @abstractmethod
    async def set_item(
        self, key: str, value: str, expire_seconds: int | None = None
    ) -> None:
        """Store ``value`` under ``key``, overwriting any previous value.

        ``expire_seconds`` lets the backend drop the key after that long;
        backends without expiry support keep it until removed.
        """

    @abstractmethod
    async def remove_item(self, key: str) -> None:
        """Remove ``key``. Missing keys are not an error."""

    @abstractmethod
    async def keys(self, prefix: str = "") -> list[str]:
        """List stored keys starting with ``prefix``."""


class RedisStore(DurableStore):
    """Redis-based durable store.

    Example:
        >>> store = RedisStore("redis://localhost:6379/0")
        >>> await store.set_item("tripguard_cache_travel-list", "{...}")
    """

    def __init__(self, redis_url: str, client: object | None = None) -> None:
        """Initialize the Redis store.

        Args:
            redis_url: Redis connection URL (e.g., "redis://localhost:6379/0")
            client: Pre-built ``redis.asyncio`` client, mainly for tests.
        """
        self._redis_url = redis_url
        self._redis = client

    async def _get_client(self):
        if self._redis is None:
            self._redis = aioredis.from_url(self._redis_url, decode_responses=True)
        return self._redis

    async def get_item(self, key: str) -> str | None:
        client = await self._get_client()
        value = await client.get(key)
        if isinstance(value, bytes):
            return value.decode("utf-8")
        return value

    async def set_item(
        self, key: str, value: str, expire_seconds: int | None = None
    ) -> None:
        client = await self._get_client()
        await client.set(key, value, ex=expire_seconds)

    async def remove_item(self, key: str) -> None:
        client = await self._get_client()
        await client.delete(key)

    async def keys(self, prefix: str = "") -> list[str]:
        client = await self._get_client()
        found = []
        async for key in client.scan_iter(match=f"{prefix}*"):
            found.append(key.decode("utf-8") if isinstance(key, bytes) else key)
        return found

    async def close(self) -> None:
        """Close the Redis connection."""
        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None


class FileStore(DurableStore):
    """Durable store persisted as a single JSON document on local disk.

    Writes replace the whole file through a temporary sibling and
    ``os.replace`` so a crash never leaves a half-written document.
    Blocking file access runs in a worker thread. Expiry hints are
    ignored; entries stay until removed or overwritten.
    """

    def __init__(self, path: str | os.PathLike) -> None:
        self._path = Path(path)
        self._lock = threading.Lock()

    @property
    def path(self) -> Path:
        return self._path

    def _load(self) -> dict[str, str]:
        if not self._path.exists():
            return {}
        with self._path.open("r", encoding="utf-8") as f:
            data = json.load(f)
        if not isinstance(data, dict):
            raise ValueError(f"{self._path} does not contain a JSON object")
        return data

    def _dump(self, data: dict[str, str]) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self._path.with_name(self._path.name + ".tmp")
        with tmp_path.open("w", encoding="utf-8") as f:
            json.dump(data, f, ensure_ascii=False)
        os.replace(tmp_path, self._path)

    def _get_sync(self, key: str) -> str | None:
        with self._lock:
            return self._load().get(key)

    def _set_sync(self, key: str, value: str) -> None:
        with self._lock:
            data = self._load()
            data[key] = value
            self._dump(data)

    def _remove_sync(self, key: str) -> None:
        with self._lock:
            data = self._load()
            if data.pop(key, None) is not None:
                self._dump(data)

    def _keys_sync(self, prefix: str) -> list[str]:
        with self._lock:
            return [k for k in self._load() if k.startswith(prefix)]

    async def get_item(self, key: str) -> str | None:
        return await asyncio.to_thread(self._get_sync, key)

    async def set_item(
        self, key: str, value: str, expire_seconds: int | None = None
    ) -> None:
        await asyncio.to_thread(self._set_sync, key, value)

    async def remove_item(self, key: str) -> None:
        await asyncio.to_thread(self._remove_sync, key)

    async def keys(self, prefix: str = "") -> list[str]:
        return await asyncio.to_thread(self._keys_sync, prefix)


# Shared store instance used by application wiring
_store_instance: DurableStore | None = None


def get_durable_store(
    backend: str | None = None,
    redis_url: str | None = None,
    file_path: str | None = None,
    force_new: bool = False,
) -> DurableStore | None:
    """Get or create the shared durable store.

    Args:
        backend: 'none', 'file' or 'redis'. When None, uses
            settings.durable_backend.
        redis_url: Redis connection URL. If not provided, uses settings.redis_url.
        file_path: JSON file location. If not provided, uses settings.cache_file_path.
        force_new: If True, create a new instance even if one exists.

    Returns:
        A DurableStore, or None when the durable tier is disabled.
    """
    global _store_instance

    if _store_instance is not None and not force_new:
        return _store_instance

    from tripguard.app.core.config import settings

    backend = (backend or settings.durable_backend).lower()
    if backend == "redis":
        _store_instance = RedisStore(redis_url or settings.redis_url)
    elif backend == "file":
        _store_instance = FileStore(file_path or settings.cache_file_path)
    elif backend == "none":
        _store_instance = None
    else:
        raise ValueError(f"Unknown durable backend: {backend!r}")
    return _store_instance


def reset_durable_store() -> None:
    """Reset the shared durable store instance.

    This is primarily useful for testing.
    """
    global _store_instance
    _store_instance = None
