"""Custom exceptions for the resilience layer."""

import httpx

from tripguard.app.core.signals import ThrottleSignal


class ResilienceError(Exception):
    """Base class for resilience layer exceptions with HTTP status code.

    All custom exceptions should inherit from this class and define
    their specific status_code so callers can map them to responses.
    """
    status_code: int = 500

    def __init__(self, message: str = "Resilience layer error"):
        self.message = message
        super().__init__(message)


class ThrottledError(ResilienceError):
    """Raised by an operation when the upstream signals rate limiting.

    Maps to HTTP 429 Too Many Requests.
    """
    status_code = 429

    def __init__(self, signal: ThrottleSignal | None = None, detail: str | None = None):
        self.signal = signal or ThrottleSignal()
        message = detail or "Upstream rate limit hit"
        if self.signal.retry_after is not None:
            message += f" (retry after {self.signal.retry_after}s)"
        super().__init__(message)


class UpstreamStatusError(ResilienceError):
    """Raised when an operation returns a non-throttling error response.

    Maps to HTTP 502 Bad Gateway.
    """
    status_code = 502

    def __init__(self, upstream_status: int, detail: str | None = None):
        self.upstream_status = upstream_status
        super().__init__(detail or f"Upstream responded with status {upstream_status}")


class OfflineError(ResilienceError):
    """Raised when the environment reports no network connectivity.

    Maps to HTTP 503 Service Unavailable.
    """
    status_code = 503

    def __init__(self, detail: str = "Network is offline"):
        super().__init__(detail)


class RateLimitExceeded(ResilienceError):
    """Retries were exhausted while throttled and no fallback value exists.

    Maps to HTTP 429 Too Many Requests. ``retry_after_seconds`` is the last
    known cool-down so callers can tell a human when to try again.
    """
    status_code = 429

    def __init__(self, key: str, attempts: int, retry_after_seconds: int):
        self.key = key
        self.attempts = attempts
        self.retry_after_seconds = retry_after_seconds
        super().__init__(
            f"Rate limit exceeded for '{key}' after {attempts} attempts. "
            f"Retry after {retry_after_seconds}s."
        )


class OperationFailed(ResilienceError):
    """A non-throttling failure with no fallback value to serve.

    Maps to HTTP 503 Service Unavailable. The wrapped error is kept on
    ``original`` and chained as ``__cause__``.
    """
    status_code = 503

    def __init__(self, key: str, attempts: int, original: BaseException):
        self.key = key
        self.attempts = attempts
        self.original = original
        super().__init__(
            f"Operation for '{key}' failed after {attempts} attempt(s): "
            f"{type(original).__name__}: {original}"
        )


def user_friendly_message(error: BaseException) -> str:
    """Render a failure as a message suitable for end users."""
    if isinstance(error, RateLimitExceeded):
        return (
            "Too many requests. Please try again in "
            f"{error.retry_after_seconds} seconds."
        )
    if isinstance(error, ThrottledError):
        return "Too many requests. Please try again shortly."
    if isinstance(error, OperationFailed):
        return user_friendly_message(error.original)
    if isinstance(error, OfflineError):
        return "You appear to be offline. Please check your network connection."
    if isinstance(error, (TimeoutError, httpx.TimeoutException)):
        return "The request timed out. Please try again shortly."
    if isinstance(error, (httpx.NetworkError, ConnectionError)):
        return "Please check your network connection."
    return "Could not load data. Please try again later."
