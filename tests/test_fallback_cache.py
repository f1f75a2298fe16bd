"""Tests for the two-tier fallback cache."""

import logging
from unittest.mock import AsyncMock

import pytest

from tripguard.app.core.cache import CacheEntry
from tripguard.app.core.storage import DurableStore, FileStore
from tripguard.app.services.fallback_cache import FallbackCache


def _failing_store() -> AsyncMock:
    store = AsyncMock(spec=DurableStore)
    store.set_item.side_effect = ConnectionError("storage unavailable")
    store.get_item.side_effect = ConnectionError("storage unavailable")
    store.remove_item.side_effect = ConnectionError("storage unavailable")
    store.keys.side_effect = ConnectionError("storage unavailable")
    return store


class TestFreshness:
    """Normal reads only ever return fresh entries."""

    @pytest.mark.asyncio
    async def test_set_then_get(self, clock):
        cache = FallbackCache(clock=clock)
        await cache.set("travel-list", ["a", "b"], ttl=300)
        assert await cache.get("travel-list") == ["a", "b"]

    @pytest.mark.asyncio
    async def test_expires_after_ttl(self, clock):
        cache = FallbackCache(clock=clock)
        await cache.set("travel-list", ["a"], ttl=300)

        clock.advance(300)
        assert await cache.get("travel-list") == ["a"]

        clock.advance(0.5)
        assert await cache.get("travel-list") is None

    @pytest.mark.asyncio
    async def test_stale_volatile_entry_evicted_on_read(self, clock):
        cache = FallbackCache(clock=clock)
        await cache.set("travel-list", ["a"], ttl=10)
        clock.advance(11)

        await cache.get("travel-list")
        assert cache.volatile.size == 0

    @pytest.mark.asyncio
    async def test_ttl_is_per_entry(self, clock):
        cache = FallbackCache(clock=clock)
        await cache.set("short", 1, ttl=5)
        await cache.set("long", 2, ttl=500)
        clock.advance(60)

        assert await cache.get("short") is None
        assert await cache.get("long") == 2

    @pytest.mark.asyncio
    async def test_missing_key(self, clock):
        cache = FallbackCache(clock=clock)
        assert await cache.get("nothing") is None
        assert await cache.get_entry("nothing") is None

    @pytest.mark.asyncio
    async def test_none_value_distinguishable_via_entry(self, clock):
        cache = FallbackCache(clock=clock)
        await cache.set("empty", None, ttl=60)
        entry = await cache.get_entry("empty")
        assert entry is not None
        assert entry.value is None


class TestDurableTier:
    """Durable tier persistence, promotion and graceful degradation."""

    @pytest.mark.asyncio
    async def test_write_through_to_durable(self, clock, tmp_path):
        store = FileStore(tmp_path / "cache.json")
        cache = FallbackCache(durable=store, key_prefix="tg_", clock=clock)
        await cache.set("travel-list", {"items": [1]}, ttl=300)

        raw = await store.get_item("tg_travel-list")
        assert CacheEntry.from_json(raw) == CacheEntry(
            value={"items": [1]}, stored_at=clock(), ttl=300
        )

    @pytest.mark.asyncio
    async def test_promotion_after_restart(self, clock, tmp_path):
        """A fresh durable hit is promoted into the volatile tier."""
        store = FileStore(tmp_path / "cache.json")
        await FallbackCache(durable=store, clock=clock).set("travel-list", [1, 2], ttl=300)

        restarted = FallbackCache(durable=store, clock=clock)
        assert restarted.volatile.size == 0
        assert await restarted.get("travel-list") == [1, 2]

        # Now servable from the volatile tier alone
        restarted.durable = None
        assert await restarted.get("travel-list") == [1, 2]

    @pytest.mark.asyncio
    async def test_promotion_keeps_original_expiry(self, clock, tmp_path):
        store = FileStore(tmp_path / "cache.json")
        await FallbackCache(durable=store, clock=clock).set("k", "v", ttl=100)
        stored_at = clock()

        clock.advance(60)
        restarted = FallbackCache(durable=store, clock=clock)
        await restarted.get("k")
        promoted = await restarted.volatile.get_entry("k")
        assert promoted.stored_at == stored_at

        clock.advance(41)
        assert await restarted.get("k") is None

    @pytest.mark.asyncio
    async def test_stale_durable_entry_removed(self, clock, tmp_path):
        store = FileStore(tmp_path / "cache.json")
        await FallbackCache(durable=store, key_prefix="tg_", clock=clock).set("k", "v", ttl=10)
        clock.advance(11)

        restarted = FallbackCache(durable=store, key_prefix="tg_", clock=clock)
        assert await restarted.get("k") is None
        assert await store.get_item("tg_k") is None

    @pytest.mark.asyncio
    async def test_durable_write_sets_expiry_past_ttl(self, clock):
        store = AsyncMock(spec=DurableStore)
        cache = FallbackCache(
            durable=store, key_prefix="tg_", clock=clock, durable_retention=3600
        )

        await cache.set("k", "v", ttl=299.5)

        store.set_item.assert_awaited_once()
        assert store.set_item.await_args.args[0] == "tg_k"
        assert store.set_item.await_args.kwargs["expire_seconds"] == 300 + 3600

    @pytest.mark.asyncio
    async def test_use_durable_false_skips_durable(self, clock):
        store = AsyncMock(spec=DurableStore)
        cache = FallbackCache(durable=store, clock=clock)

        await cache.set("k", "v", ttl=60, use_durable=False)
        await cache.volatile.clear()

        assert await cache.get("k", use_durable=False) is None
        store.set_item.assert_not_awaited()
        store.get_item.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_durable_write_failure_is_logged_not_raised(self, clock, caplog):
        cache = FallbackCache(durable=_failing_store(), clock=clock)

        with caplog.at_level(logging.WARNING, logger="tripguard"):
            await cache.set("k", "v", ttl=60)

        assert await cache.get("k", use_durable=False) == "v"
        assert "Durable cache write failed for k" in caplog.text

    @pytest.mark.asyncio
    async def test_durable_read_failure_is_a_miss(self, clock, caplog):
        cache = FallbackCache(durable=_failing_store(), clock=clock)

        with caplog.at_level(logging.WARNING, logger="tripguard"):
            assert await cache.get("k") is None

        assert "Durable cache read failed for k" in caplog.text

    @pytest.mark.asyncio
    async def test_unserializable_value_stays_volatile(self, clock, tmp_path, caplog):
        store = FileStore(tmp_path / "cache.json")
        cache = FallbackCache(durable=store, clock=clock)
        value = object()

        with caplog.at_level(logging.WARNING, logger="tripguard"):
            await cache.set("k", value, ttl=60)

        assert await cache.get("k") is value
        assert await store.keys() == []
        assert "Durable cache write failed" in caplog.text

    @pytest.mark.asyncio
    async def test_malformed_durable_entry_discarded(self, clock, tmp_path):
        store = FileStore(tmp_path / "cache.json")
        await store.set_item("tg_k", "not an entry")
        cache = FallbackCache(durable=store, key_prefix="tg_", clock=clock)

        assert await cache.get("k") is None
        assert await store.get_item("tg_k") is None


class TestStaleReads:
    """get_stale_entry serves expired data for fallbacks."""

    @pytest.mark.asyncio
    async def test_returns_expired_volatile_entry(self, clock):
        cache = FallbackCache(clock=clock)
        await cache.set("k", "old", ttl=10)
        clock.advance(600)

        entry = await cache.get_stale_entry("k")
        assert entry.value == "old"
        assert not entry.is_fresh(clock())
        assert cache.volatile.size == 1

    @pytest.mark.asyncio
    async def test_returns_expired_durable_entry(self, clock, tmp_path):
        store = FileStore(tmp_path / "cache.json")
        await FallbackCache(durable=store, clock=clock).set("k", "old", ttl=10)
        clock.advance(600)

        restarted = FallbackCache(durable=store, clock=clock)
        assert (await restarted.get_stale_entry("k")).value == "old"
        assert (await restarted.get_stale_entry("k", use_durable=False)) is None

    @pytest.mark.asyncio
    async def test_missing(self, clock):
        assert await FallbackCache(clock=clock).get_stale_entry("k") is None


class TestClear:
    """clear and clear_all remove from both tiers."""

    @pytest.mark.asyncio
    async def test_clear_key(self, clock, tmp_path):
        store = FileStore(tmp_path / "cache.json")
        cache = FallbackCache(durable=store, clock=clock)
        await cache.set("a", 1, ttl=60)
        await cache.set("b", 2, ttl=60)

        await cache.clear("a")
        await cache.clear("a")

        assert await cache.get("a") is None
        assert await cache.get("b") == 2

    @pytest.mark.asyncio
    async def test_clear_all_only_touches_own_prefix(self, clock, tmp_path):
        store = FileStore(tmp_path / "cache.json")
        await store.set_item("unrelated", "keep")
        cache = FallbackCache(durable=store, key_prefix="tg_", clock=clock)
        await cache.set("a", 1, ttl=60)
        await cache.set("b", 2, ttl=60)

        await cache.clear_all()

        assert await cache.get("a") is None
        assert await cache.get("b") is None
        assert await store.keys() == ["unrelated"]

    @pytest.mark.asyncio
    async def test_clear_all_is_idempotent(self, clock, tmp_path):
        cache = FallbackCache(durable=FileStore(tmp_path / "cache.json"), clock=clock)
        await cache.clear_all()
        await cache.set("a", 1, ttl=60)
        await cache.clear_all()
        await cache.clear_all()
        assert await cache.get("a") is None

    @pytest.mark.asyncio
    async def test_clear_all_volatile_only(self, clock):
        cache = FallbackCache(clock=clock)
        await cache.clear_all()
        await cache.clear_all()

    @pytest.mark.asyncio
    async def test_clear_with_failing_durable(self, clock, caplog):
        cache = FallbackCache(durable=_failing_store(), clock=clock)
        with caplog.at_level(logging.WARNING, logger="tripguard"):
            await cache.clear("k")
            await cache.clear_all()
        assert "Failed to clear durable cache tier" in caplog.text
