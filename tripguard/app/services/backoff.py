"""Rate-limit tracking and exponential backoff for upstream endpoints.

The controller is advisory: it computes how long a caller should wait and
remembers server-imposed cool-downs per endpoint key, but never sleeps or
raises itself. The resilient caller decides what to do with the numbers.
"""

from __future__ import annotations

import math
import random
import threading
import time
from dataclasses import dataclass
from typing import Callable, Optional

from tripguard.app.core.config import settings
from tripguard.app.core.logging import get_log_context, get_logger
from tripguard.app.core.signals import ThrottleSignal

logger = get_logger(__name__)


@dataclass(frozen=True)
class RateLimitState:
    """Cool-down recorded for one endpoint.

    Attributes:
        retry_after_seconds: Server advised or default cool-down
        remaining_requests: Quota remaining, informational only
        reset_at: Wall-clock epoch seconds when the limit clears
    """

    retry_after_seconds: int
    remaining_requests: int
    reset_at: float

    def is_active(self, now: float) -> bool:
        return now < self.reset_at


class BackoffController:
    """Per-endpoint rate-limit state plus jittered exponential delays.

    Example:
        >>> controller = BackoffController()
        >>> controller.record_limit("areaBasedList", ThrottleSignal(retry_after=2))
        >>> controller.wait_time("areaBasedList")  # ~2.0
        >>> controller.backoff_delay(3)  # 4.0 plus up to 10% jitter
    """

    def __init__(
        self,
        default_cooldown: Optional[int] = None,
        jitter_ratio: Optional[float] = None,
        clock: Callable[[], float] = time.time,
        rng: Optional[random.Random] = None,
    ) -> None:
        """Initialize the controller.

        Args:
            default_cooldown: Seconds to back off when a throttled response
                carries no Retry-After. Defaults to
                settings.rate_limit_default_cooldown.
            jitter_ratio: Maximum jitter as a fraction of the delay.
                Defaults to settings.resilience_jitter_ratio.
            clock: Wall-clock source in epoch seconds.
            rng: Random source for jitter.
        """
        self.default_cooldown = (
            settings.rate_limit_default_cooldown
            if default_cooldown is None
            else default_cooldown
        )
        self.jitter_ratio = (
            settings.resilience_jitter_ratio if jitter_ratio is None else jitter_ratio
        )
        self._clock = clock
        self._rng = rng or random.Random()
        self._states: dict[str, RateLimitState] = {}
        self._lock = threading.Lock()

    def get_state(self, endpoint_key: str) -> RateLimitState | None:
        """Return the endpoint's state if it is still active."""
        now = self._clock()
        with self._lock:
            state = self._states.get(endpoint_key)
        if state is None or not state.is_active(now):
            return None
        return state

    def wait_time(self, endpoint_key: str) -> float:
        """Seconds to wait before calling ``endpoint_key``, 0.0 if unrestricted."""
        now = self._clock()
        with self._lock:
            state = self._states.get(endpoint_key)
        if state is None or not state.is_active(now):
            return 0.0
        return max(0.0, state.reset_at - now)

    def record_limit(
        self, endpoint_key: str, signal: Optional[ThrottleSignal] = None
    ) -> RateLimitState:
        """Record a throttling signal for ``endpoint_key``.

        With Retry-After the limit holds for at least that long; a later
        reset time extends it but an earlier one never shortens it. A
        reset time alone is honoured only if it lies in the future.
        Otherwise the default cool-down applies.
        """
        signal = signal or ThrottleSignal()
        now = self._clock()

        if signal.retry_after is not None:
            retry_after = max(int(signal.retry_after), 0)
            reset_at = now + retry_after
            if signal.reset_at is not None:
                reset_at = max(reset_at, signal.reset_at)
        elif signal.reset_at is not None and signal.reset_at > now:
            reset_at = signal.reset_at
            retry_after = math.ceil(reset_at - now)
        else:
            retry_after = max(int(self.default_cooldown), 0)
            reset_at = now + retry_after
        state = RateLimitState(
            retry_after_seconds=retry_after,
            remaining_requests=max(signal.remaining or 0, 0),
            reset_at=reset_at,
        )

        with self._lock:
            self._purge_locked(now)
            self._states[endpoint_key] = state

        logger.info(
            f"Rate limit recorded for {endpoint_key}: retry after {retry_after}s",
            extra=get_log_context(
                endpoint=endpoint_key,
                retry_after=retry_after,
                explicit=signal.retry_after is not None,
            ),
        )
        return state

    def backoff_delay(
        self,
        attempt: int,
        base_delay: float = 1.0,
        max_delay: float = 60.0,
    ) -> float:
        """Calculate the delay before retry ``attempt``.

        delay = min(base_delay * 2 ^ (attempt - 1), max_delay), plus a
        random jitter of up to ``jitter_ratio`` of that value.

        Args:
            attempt: 1-based attempt number; values below 1 count as 1
            base_delay: Delay for the first attempt in seconds
            max_delay: Cap applied before jitter in seconds

        Returns:
            Delay in seconds
        """
        # Exponent is capped so huge attempt numbers cannot overflow a float
        exponent = min(max(attempt, 1) - 1, 64)
        delay = min(base_delay * (2 ** exponent), max_delay)
        jitter = self._rng.random() * self.jitter_ratio * delay
        return delay + jitter

    def purge_expired(self) -> int:
        """Drop inactive states.

        Returns:
            Number of states removed.
        """
        now = self._clock()
        with self._lock:
            return self._purge_locked(now)

    def clear(self) -> None:
        """Remove all tracked state (useful in tests)."""
        with self._lock:
            self._states.clear()

    @property
    def size(self) -> int:
        with self._lock:
            return len(self._states)

    def _purge_locked(self, now: float) -> int:
        expired = [k for k, s in self._states.items() if not s.is_active(now)]
        for key in expired:
            del self._states[key]
        return len(expired)
