"""Throttling metadata parsed from upstream responses."""

from __future__ import annotations

import time
from dataclasses import dataclass
from email.utils import parsedate_to_datetime
from typing import Callable, Mapping

# X-RateLimit-Reset values at or above this are absolute epoch seconds;
# smaller values are seconds until the window resets.
_EPOCH_THRESHOLD = 1_000_000_000

THROTTLED_STATUS = 429


def _parse_int(raw: str | None) -> int | None:
    if raw is None:
        return None
    try:
        return int(float(raw.strip()))
    except ValueError:
        return None


def parse_retry_after(raw: str | None, now: float) -> int | None:
    """Parse a ``Retry-After`` value given as delta-seconds or an HTTP-date."""
    if raw is None or not raw.strip():
        return None
    seconds = _parse_int(raw)
    if seconds is not None:
        return max(seconds, 0)
    try:
        when = parsedate_to_datetime(raw)
    except (TypeError, ValueError):
        return None
    return max(int(when.timestamp() - now), 0)


def parse_reset(raw: str | None, now: float) -> float | None:
    """Parse ``X-RateLimit-Reset`` into an absolute epoch timestamp."""
    value = _parse_int(raw)
    if value is None:
        return None
    if value >= _EPOCH_THRESHOLD:
        return float(value)
    return now + max(value, 0)


@dataclass(frozen=True)
class ThrottleSignal:
    """Rate-limit metadata carried by one throttled response.

    Attributes:
        status_code: Status that triggered the signal (429)
        retry_after: Server advised cool-down in seconds, if any
        remaining: Remaining request quota, if reported
        reset_at: Absolute epoch time the limit clears, if reported
    """

    status_code: int = THROTTLED_STATUS
    retry_after: int | None = None
    remaining: int | None = None
    reset_at: float | None = None

    @classmethod
    def from_headers(
        cls,
        headers: Mapping[str, str] | None,
        status_code: int = THROTTLED_STATUS,
        clock: Callable[[], float] = time.time,
    ) -> ThrottleSignal:
        """Build a signal from ``Retry-After`` and ``X-RateLimit-*`` headers.

        Missing or unparseable headers leave the matching field ``None``.
        Header lookup is case-insensitive for plain dicts as well as
        ``httpx.Headers``.
        """
        if not headers:
            return cls(status_code=status_code)
        lowered = {str(k).lower(): str(v) for k, v in headers.items()}
        now = clock()
        return cls(
            status_code=status_code,
            retry_after=parse_retry_after(lowered.get("retry-after"), now),
            remaining=_parse_int(lowered.get("x-ratelimit-remaining")),
            reset_at=parse_reset(lowered.get("x-ratelimit-reset"), now),
        )

    @property
    def has_retry_after(self) -> bool:
        return self.retry_after is not None
