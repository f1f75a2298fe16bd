"""Services package for the resilience layer.

This package provides:
- Per-endpoint rate-limit tracking and jittered exponential backoff
- A two-tier fallback cache with per-entry TTLs
- Online/offline tracking
- The resilient call orchestrator combining all of the above
"""

from tripguard.app.services.backoff import BackoffController, RateLimitState
from tripguard.app.services.connectivity import (
    ConnectivityMonitor,
    get_connectivity_monitor,
    reset_connectivity_monitor,
)
from tripguard.app.services.fallback_cache import FallbackCache
from tripguard.app.services.resilient_call import (
    CallResult,
    ResilienceOptions,
    ResilientCaller,
    get_resilient_caller,
    reset_resilient_caller,
)

__all__ = [
    "BackoffController",
    "RateLimitState",
    "ConnectivityMonitor",
    "get_connectivity_monitor",
    "reset_connectivity_monitor",
    "FallbackCache",
    "CallResult",
    "ResilienceOptions",
    "ResilientCaller",
    "get_resilient_caller",
    "reset_resilient_caller",
]
