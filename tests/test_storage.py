"""Tests for durable stores and the durable store factory."""

import json
from unittest.mock import AsyncMock

import pytest

from tripguard.app.core.storage import (
    DurableStore,
    FileStore,
    RedisStore,
    get_durable_store,
    reset_durable_store,
)


class FakeRedis:
    """Minimal stand-in for a redis.asyncio client."""

    def __init__(self, data=None):
        self.data = dict(data or {})
        self.expiry = {}
        self.aclose = AsyncMock()

    async def get(self, key):
        return self.data.get(key)

    async def set(self, key, value, ex=None):
        self.data[key] = value
        self.expiry[key] = ex

    async def delete(self, key):
        self.data.pop(key, None)

    async def scan_iter(self, match="*"):
        prefix = match.rstrip("*")
        for key in list(self.data):
            name = key.decode("utf-8") if isinstance(key, bytes) else key
            if name.startswith(prefix):
                yield key


class TestFileStore:
    """Tests for the JSON file store."""

    @pytest.mark.asyncio
    async def test_set_and_get(self, tmp_path):
        store = FileStore(tmp_path / "cache.json")
        await store.set_item("k", "v")
        assert await store.get_item("k") == "v"

    @pytest.mark.asyncio
    async def test_missing_file_reads_as_empty(self, tmp_path):
        store = FileStore(tmp_path / "absent.json")
        assert await store.get_item("k") is None
        assert await store.keys() == []

    @pytest.mark.asyncio
    async def test_survives_new_instance(self, tmp_path):
        """Data written by one instance is visible to the next (restart)."""
        path = tmp_path / "cache.json"
        await FileStore(path).set_item("k", "v")
        assert await FileStore(path).get_item("k") == "v"

    @pytest.mark.asyncio
    async def test_creates_parent_directories(self, tmp_path):
        path = tmp_path / "nested" / "dir" / "cache.json"
        await FileStore(path).set_item("k", "v")
        assert json.loads(path.read_text(encoding="utf-8")) == {"k": "v"}

    @pytest.mark.asyncio
    async def test_remove_item(self, tmp_path):
        store = FileStore(tmp_path / "cache.json")
        await store.set_item("k", "v")
        await store.remove_item("k")
        await store.remove_item("k")
        assert await store.get_item("k") is None

    @pytest.mark.asyncio
    async def test_keys_with_prefix(self, tmp_path):
        store = FileStore(tmp_path / "cache.json")
        await store.set_item("tripguard_cache_a", "1")
        await store.set_item("tripguard_cache_b", "2")
        await store.set_item("other", "3")

        assert sorted(await store.keys("tripguard_cache_")) == [
            "tripguard_cache_a",
            "tripguard_cache_b",
        ]
        assert len(await store.keys()) == 3

    @pytest.mark.asyncio
    async def test_expiry_hint_accepted(self, tmp_path):
        store = FileStore(tmp_path / "cache.json")
        await store.set_item("k", "v", expire_seconds=60)
        assert await store.get_item("k") == "v"

    @pytest.mark.asyncio
    async def test_corrupt_file_raises(self, tmp_path):
        path = tmp_path / "cache.json"
        path.write_text("{broken", encoding="utf-8")
        with pytest.raises(ValueError):
            await FileStore(path).get_item("k")


class TestRedisStore:
    """Tests for the Redis store with an injected client."""

    @pytest.mark.asyncio
    async def test_get_set_remove(self):
        client = FakeRedis()
        store = RedisStore("redis://unused", client=client)

        await store.set_item("k", "v")
        assert client.data == {"k": "v"}
        assert await store.get_item("k") == "v"

        await store.remove_item("k")
        assert await store.get_item("k") is None

    @pytest.mark.asyncio
    async def test_expiry_passed_to_redis(self):
        client = FakeRedis()
        store = RedisStore("redis://unused", client=client)

        await store.set_item("k", "v", expire_seconds=900)
        await store.set_item("plain", "v")

        assert client.expiry == {"k": 900, "plain": None}

    @pytest.mark.asyncio
    async def test_bytes_are_decoded(self):
        store = RedisStore("redis://unused", client=FakeRedis({"k": b"v"}))
        assert await store.get_item("k") == "v"

    @pytest.mark.asyncio
    async def test_keys_with_prefix(self):
        client = FakeRedis({"p_a": "1", b"p_b": "2", "q": "3"})
        store = RedisStore("redis://unused", client=client)
        assert sorted(await store.keys("p_")) == ["p_a", "p_b"]

    @pytest.mark.asyncio
    async def test_close(self):
        client = FakeRedis()
        store = RedisStore("redis://unused", client=client)
        await store.close()
        client.aclose.assert_awaited_once()
        await store.close()


class TestGetDurableStore:
    """Tests for the get_durable_store factory function."""

    def test_none_backend(self):
        assert get_durable_store(backend="none", force_new=True) is None

    def test_file_backend(self, tmp_path):
        store = get_durable_store(
            backend="file", file_path=str(tmp_path / "c.json"), force_new=True
        )
        assert isinstance(store, FileStore)
        assert store.path == tmp_path / "c.json"

    def test_redis_backend(self):
        store = get_durable_store(backend="redis", redis_url="redis://localhost:1/0", force_new=True)
        assert isinstance(store, RedisStore)

    def test_unknown_backend(self):
        with pytest.raises(ValueError, match="Unknown durable backend"):
            get_durable_store(backend="sqlite", force_new=True)

    def test_returns_shared_instance(self, tmp_path):
        first = get_durable_store(backend="file", file_path=str(tmp_path / "c.json"))
        assert get_durable_store() is first

    def test_reset(self, tmp_path):
        first = get_durable_store(backend="file", file_path=str(tmp_path / "c.json"))
        reset_durable_store()
        second = get_durable_store(backend="file", file_path=str(tmp_path / "c.json"))
        assert first is not second

    def test_store_is_abstract(self):
        with pytest.raises(TypeError):
            DurableStore()
