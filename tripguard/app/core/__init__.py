"""Core utilities for the resilience layer."""

from tripguard.app.core.cache import CacheEntry, InMemoryCache
from tripguard.app.core.config import Settings, settings
from tripguard.app.core.logging import get_logger, setup_logging
from tripguard.app.core.signals import ThrottleSignal
from tripguard.app.core.storage import (
    DurableStore,
    FileStore,
    RedisStore,
    get_durable_store,
    reset_durable_store,
)

__all__ = [
    "CacheEntry",
    "InMemoryCache",
    "Settings",
    "settings",
    "get_logger",
    "setup_logging",
    "ThrottleSignal",
    "DurableStore",
    "FileStore",
    "RedisStore",
    "get_durable_store",
    "reset_durable_store",
]
