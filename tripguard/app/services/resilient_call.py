"""Resilient call orchestration for rate-limited upstream APIs.

``ResilientCaller.execute`` is the single entry point callers use instead
of calling an unreliable operation directly. Per invocation it:

1. Skips the network entirely when the environment is offline.
2. Waits out any cool-down the server already declared for the endpoint.
3. Runs the operation, retrying throttled (429) attempts with jittered
   exponential backoff up to ``max_retries`` attempts in total.
4. Writes successful results through to the fallback cache.
5. On exhausted retries or any other failure, serves the cached value,
   even a stale one, or raises a classified error.
"""

import asyncio
import inspect
import time
from dataclasses import dataclass, field, replace
from typing import Any, Awaitable, Callable, Optional, Union

import httpx

from tripguard.app.core.config import Settings, settings
from tripguard.app.core.logging import get_log_context, get_logger
from tripguard.app.core.signals import THROTTLED_STATUS, ThrottleSignal
from tripguard.app.core.storage import get_durable_store
from tripguard.app.exceptions import (
    OfflineError,
    OperationFailed,
    RateLimitExceeded,
    ThrottledError,
    UpstreamStatusError,
)
from tripguard.app.services.backoff import BackoffController, RateLimitState
from tripguard.app.services.connectivity import (
    ConnectivityMonitor,
    get_connectivity_monitor,
)
from tripguard.app.services.fallback_cache import FallbackCache

logger = get_logger(__name__)

Operation = Callable[[], Union[Any, Awaitable[Any]]]


@dataclass(frozen=True)
class ResilienceOptions:
    """Tuning for one resilient call.

    Defaults come from settings so every call site shares them.

    Attributes:
        max_retries: Total attempts while throttled before falling back
        base_delay: First backoff delay in seconds
        max_delay: Backoff cap in seconds (before jitter)
        ttl: Seconds a successful result stays fresh in the cache
        use_durable_tier: Read and write the durable cache tier
        attempt_timeout: Bound for each attempt in seconds, None for no bound
        retry_on_timeout: Retry timed-out attempts instead of falling back
        endpoint_key: Rate-limit scope; defaults to the cache key
    """

    max_retries: int = field(default_factory=lambda: settings.resilience_max_retries)
    base_delay: float = field(default_factory=lambda: settings.resilience_base_delay)
    max_delay: float = field(default_factory=lambda: settings.resilience_max_delay)
    ttl: float = field(default_factory=lambda: float(settings.cache_default_ttl))
    use_durable_tier: bool = field(
        default_factory=lambda: settings.cache_use_durable_tier
    )
    attempt_timeout: Optional[float] = field(
        default_factory=lambda: settings.resilience_attempt_timeout
    )
    retry_on_timeout: bool = field(
        default_factory=lambda: settings.resilience_retry_on_timeout
    )
    endpoint_key: Optional[str] = None

    def __post_init__(self) -> None:
        if self.max_retries < 1:
            raise ValueError("max_retries must be at least 1")
        if self.base_delay < 0 or self.max_delay < 0:
            raise ValueError("backoff delays must not be negative")
        if self.ttl < 0:
            raise ValueError("ttl must not be negative")
        if self.attempt_timeout is not None and self.attempt_timeout <= 0:
            raise ValueError("attempt_timeout must be positive")

    @classmethod
    def from_settings(cls, config: Optional[Settings] = None) -> "ResilienceOptions":
        """Build options from a Settings instance (the global one by default)."""
        config = config or settings
        return cls(
            max_retries=config.resilience_max_retries,
            base_delay=config.resilience_base_delay,
            max_delay=config.resilience_max_delay,
            ttl=float(config.cache_default_ttl),
            use_durable_tier=config.cache_use_durable_tier,
            attempt_timeout=config.resilience_attempt_timeout,
            retry_on_timeout=config.resilience_retry_on_timeout,
        )

    def with_overrides(self, **overrides: Any) -> "ResilienceOptions":
        """Return a copy with the given fields replaced."""
        return replace(self, **overrides)


@dataclass
class CallResult:
    """Outcome of a resilient call.

    Attributes:
        value: The operation result or the cached value
        source: "live" for a fresh operation result, "cache" for a fallback
        stale: True when a cached value was past its TTL
        attempts: Number of operation attempts made (0 when offline)
    """

    value: Any
    source: str
    stale: bool = False
    attempts: int = 0

    @property
    def from_cache(self) -> bool:
        return self.source == "cache"


def _throttle_signal_from_error(
    error: Exception, clock: Callable[[], float]
) -> Optional[ThrottleSignal]:
    if isinstance(error, ThrottledError):
        return error.signal
    if (
        isinstance(error, httpx.HTTPStatusError)
        and error.response.status_code == THROTTLED_STATUS
    ):
        return ThrottleSignal.from_headers(error.response.headers, clock=clock)
    return None


def _is_timeout(error: Exception) -> bool:
    return isinstance(error, (TimeoutError, httpx.TimeoutException))


def _response_status(result: Any) -> Optional[int]:
    status = getattr(result, "status_code", None)
    return status if isinstance(status, int) else None


def _response_headers(result: Any) -> Any:
    headers = getattr(result, "headers", None)
    return headers if hasattr(headers, "items") else None


async def _invoke(operation: Operation) -> Any:
    if inspect.iscoroutinefunction(operation):
        return await operation()
    # Plain callables may block, so they run in a worker thread
    result = await asyncio.to_thread(operation)
    if inspect.isawaitable(result):
        result = await result
    return result


class ResilientCaller:
    """Wraps unreliable operations with rate-limit waits, retries and fallback.

    Instances are safe to share across concurrent tasks. Calls for the same
    key are not coalesced; each runs its own retry sequence.

    Usage:
        caller = ResilientCaller(BackoffController(), FallbackCache())
        items = await caller.execute(
            "travel-list",
            json_operation(client, "GET", "/areaBasedList2", params=params),
        )
    """

    def __init__(
        self,
        backoff: Optional[BackoffController] = None,
        cache: Optional[FallbackCache] = None,
        offline_check: Optional[Callable[[], bool]] = None,
        options: Optional[ResilienceOptions] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        clock: Callable[[], float] = time.time,
        connectivity: Optional[ConnectivityMonitor] = None,
    ) -> None:
        """Initialize the caller.

        Args:
            backoff: Rate-limit state and delay calculator.
            cache: Fallback cache written on success and read on failure.
            offline_check: Returns True when the network is known to be
                down. Defaults to ``connectivity.is_offline``.
            options: Default options for every call.
            sleep: Coroutine function used for every wait.
            clock: Wall-clock source used to flag stale fallbacks.
            connectivity: Monitor the host marks offline/online. A private
                monitor is created when None.
        """
        self.backoff = backoff or BackoffController()
        self.cache = cache or FallbackCache()
        self.connectivity = connectivity or ConnectivityMonitor()
        self.offline_check = offline_check or self.connectivity.is_offline
        self.options = options or ResilienceOptions.from_settings()
        self._sleep = sleep
        self._clock = clock

    async def execute(
        self,
        key: str,
        operation: Operation,
        options: Optional[ResilienceOptions] = None,
        **overrides: Any,
    ) -> Any:
        """Run ``operation`` resiliently and return its (possibly cached) value.

        Args:
            key: Cache identity, also the rate-limit endpoint unless
                ``endpoint_key`` is set.
            operation: Zero-argument callable returning a value or awaitable.
            options: Options for this call, defaults to the caller's.
            **overrides: Individual option overrides.

        Raises:
            RateLimitExceeded: Throttled on every attempt and nothing cached.
            OperationFailed: Any other failure and nothing cached.
        """
        result = await self.execute_detailed(key, operation, options, **overrides)
        return result.value

    async def execute_detailed(
        self,
        key: str,
        operation: Operation,
        options: Optional[ResilienceOptions] = None,
        **overrides: Any,
    ) -> CallResult:
        """Same as ``execute`` but reports where the value came from."""
        opts = options or self.options
        if overrides:
            opts = opts.with_overrides(**overrides)
        endpoint = opts.endpoint_key or key

        if self._is_offline():
            logger.warning(
                f"Offline, skipping network call for {key}",
                extra=get_log_context(cache_key=key, endpoint=endpoint),
            )
            return await self._fallback(key, endpoint, opts, OfflineError(), 0)

        last_error: Optional[Exception] = None
        limit: Optional[RateLimitState] = None
        attempt = 0

        while attempt < opts.max_retries:
            attempt += 1
            await self._wait_for_limit(key, endpoint, attempt, opts)

            signal: Optional[ThrottleSignal] = None
            try:
                result = await self._attempt(operation, opts)
            except Exception as e:
                signal = _throttle_signal_from_error(e, self._clock)
                if signal is None and not (opts.retry_on_timeout and _is_timeout(e)):
                    logger.warning(
                        f"Non-retryable failure for {key}: {type(e).__name__}: {e}",
                        extra=get_log_context(
                            cache_key=key, endpoint=endpoint, attempt=attempt
                        ),
                    )
                    return await self._fallback(key, endpoint, opts, e, attempt)
                last_error = e
            else:
                status = _response_status(result)
                if status == THROTTLED_STATUS:
                    signal = ThrottleSignal.from_headers(
                        _response_headers(result), status, clock=self._clock
                    )
                    last_error = ThrottledError(signal)
                elif status is not None and status >= 400:
                    error = UpstreamStatusError(status)
                    logger.warning(
                        f"Upstream error status {status} for {key}",
                        extra=get_log_context(
                            cache_key=key, endpoint=endpoint, attempt=attempt
                        ),
                    )
                    return await self._fallback(key, endpoint, opts, error, attempt)
                else:
                    return await self._complete(key, endpoint, result, attempt, opts)

            if signal is not None:
                limit = self.backoff.record_limit(endpoint, signal)
                logger.warning(
                    f"Throttled on {key} (attempt {attempt}/{opts.max_retries})",
                    extra=get_log_context(
                        cache_key=key,
                        endpoint=endpoint,
                        attempt=attempt,
                        max_attempts=opts.max_retries,
                        retry_after=signal.retry_after,
                    ),
                )
            else:
                limit = None
                logger.warning(
                    f"Attempt {attempt}/{opts.max_retries} timed out for {key}",
                    extra=get_log_context(cache_key=key, endpoint=endpoint, attempt=attempt),
                )

            if attempt < opts.max_retries:
                delay = self.backoff.backoff_delay(attempt, opts.base_delay, opts.max_delay)
                logger.info(
                    f"Backing off {delay:.2f}s before retrying {key}",
                    extra=get_log_context(
                        cache_key=key,
                        endpoint=endpoint,
                        attempt=attempt,
                        delay_ms=round(delay * 1000),
                    ),
                )
                await self._sleep(delay)

        return await self._fallback(key, endpoint, opts, last_error, attempt, limit)

    def _is_offline(self) -> bool:
        try:
            return bool(self.offline_check())
        except Exception:
            logger.warning("Offline detection failed, assuming online", exc_info=True)
            return False

    async def _wait_for_limit(
        self, key: str, endpoint: str, attempt: int, opts: ResilienceOptions
    ) -> None:
        wait = self.backoff.wait_time(endpoint)
        if wait <= 0:
            return
        logger.info(
            f"Waiting {wait:.2f}s for rate limit on {endpoint}",
            extra=get_log_context(
                cache_key=key, endpoint=endpoint, attempt=attempt,
                delay_ms=round(wait * 1000),
            ),
        )
        await self._sleep(wait)

    async def _attempt(self, operation: Operation, opts: ResilienceOptions) -> Any:
        if opts.attempt_timeout is None:
            return await _invoke(operation)
        return await asyncio.wait_for(_invoke(operation), timeout=opts.attempt_timeout)

    async def _complete(
        self,
        key: str,
        endpoint: str,
        result: Any,
        attempt: int,
        opts: ResilienceOptions,
    ) -> CallResult:
        headers = _response_headers(result)
        if headers is not None:
            signal = ThrottleSignal.from_headers(
                headers, _response_status(result) or 200, clock=self._clock
            )
            if signal.has_retry_after:
                self.backoff.record_limit(endpoint, signal)

        # Empty payloads are cached like any other successful result
        await self.cache.set(key, result, opts.ttl, use_durable=opts.use_durable_tier)
        logger.debug(
            f"Call for {key} succeeded, cached for {opts.ttl:g}s",
            extra=get_log_context(cache_key=key, endpoint=endpoint, attempt=attempt),
        )
        return CallResult(value=result, source="live", stale=False, attempts=attempt)

    async def _fallback(
        self,
        key: str,
        endpoint: str,
        opts: ResilienceOptions,
        error: Optional[Exception],
        attempts: int,
        limit: Optional[RateLimitState] = None,
    ) -> CallResult:
        """Serve the cached value for ``key`` or raise.

        ``limit`` is the state recorded for the last attempt when that
        attempt was throttled; its cool-down is reported to the caller.
        """
        entry = await self.cache.get_stale_entry(key, use_durable=opts.use_durable_tier)
        if entry is not None:
            stale = not entry.is_fresh(self._clock())
            logger.warning(
                f"Serving {'stale' if stale else 'cached'} value for {key} "
                f"(age {entry.age(self._clock()):.0f}s)",
                extra=get_log_context(cache_key=key, endpoint=endpoint, attempt=attempts),
            )
            return CallResult(value=entry.value, source="cache", stale=stale, attempts=attempts)

        logger.error(
            f"No fallback value for {key} after {attempts} attempt(s)",
            extra=get_log_context(cache_key=key, endpoint=endpoint, attempt=attempts),
        )
        if limit is not None:
            raise RateLimitExceeded(key, attempts, limit.retry_after_seconds) from error
        if error is None:
            error = OfflineError()
        raise OperationFailed(key, attempts, error) from error


# Shared caller used by application wiring
_caller_instance: Optional[ResilientCaller] = None


def get_resilient_caller(force_new: bool = False) -> ResilientCaller:
    """Get or create the shared resilient caller built from settings.

    Tests should construct their own ResilientCaller instead.
    """
    global _caller_instance

    if _caller_instance is None or force_new:
        _caller_instance = ResilientCaller(
            backoff=BackoffController(),
            cache=FallbackCache(durable=get_durable_store()),
            connectivity=get_connectivity_monitor(),
        )
    return _caller_instance


def reset_resilient_caller() -> None:
    """Reset the shared caller instance.

    This is primarily useful for testing.
    """
    global _caller_instance
    _caller_instance = None
