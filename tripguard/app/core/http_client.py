"""HTTP helpers that turn upstream requests into resilient-call operations.

The resilience layer never builds requests itself. These helpers wrap a
caller-built request in a zero-argument coroutine function whose failures
are already classified: 429 responses raise ``ThrottledError`` and other
error statuses raise ``httpx.HTTPStatusError``.
"""

from typing import Any, Awaitable, Callable

import httpx

from tripguard.app.core.config import settings
from tripguard.app.core.signals import THROTTLED_STATUS, ThrottleSignal
from tripguard.app.exceptions import ThrottledError


def create_http_client(**kwargs) -> httpx.AsyncClient:
    """Create a new HTTP client with default settings.

    The returned client should be closed when done:
        async with create_http_client() as client:
            ...

    Args:
        **kwargs: Override default settings. Can include:
            - timeout: Single timeout value (overrides all granular timeouts)
            - connect_timeout, read_timeout, write_timeout, pool_timeout
            - max_connections, max_keepalive_connections, keepalive_expiry
            - transport: Custom transport (e.g. ``httpx.MockTransport``)
            - base_url: Base URL for relative request paths

    Returns:
        A new httpx.AsyncClient instance with granular timeout configuration.
    """
    timeout_override = kwargs.get("timeout")
    if timeout_override is not None:
        timeout = httpx.Timeout(timeout_override)
    else:
        timeout = httpx.Timeout(
            connect=kwargs.get("connect_timeout", settings.httpx_connect_timeout),
            read=kwargs.get("read_timeout", settings.httpx_read_timeout),
            write=kwargs.get("write_timeout", settings.httpx_write_timeout),
            pool=kwargs.get("pool_timeout", settings.httpx_pool_timeout),
        )

    config: dict[str, Any] = {
        "timeout": timeout,
        "limits": httpx.Limits(
            max_connections=kwargs.get(
                "max_connections", settings.httpx_max_connections
            ),
            max_keepalive_connections=kwargs.get(
                "max_keepalive_connections", settings.httpx_max_keepalive_connections
            ),
            keepalive_expiry=kwargs.get(
                "keepalive_expiry", settings.httpx_keepalive_expiry
            ),
        ),
    }
    if kwargs.get("transport") is not None:
        config["transport"] = kwargs["transport"]
    if kwargs.get("base_url") is not None:
        config["base_url"] = kwargs["base_url"]
    return httpx.AsyncClient(**config)


def raise_for_throttling(response: httpx.Response) -> httpx.Response:
    """Raise a classified error for error responses, else return ``response``.

    Raises:
        ThrottledError: On 429, carrying the parsed rate-limit headers.
        httpx.HTTPStatusError: On any other 4xx/5xx status.
    """
    if response.status_code == THROTTLED_STATUS:
        signal = ThrottleSignal.from_headers(response.headers, response.status_code)
        raise ThrottledError(signal, detail=f"429 from {response.request.url}")
    response.raise_for_status()
    return response


def http_operation(
    client: httpx.AsyncClient,
    method: str,
    url: str,
    **request_kwargs: Any,
) -> Callable[[], Awaitable[httpx.Response]]:
    """Build an operation that sends one request and returns the response.

    Example:
        >>> op = http_operation(client, "GET", "/areaBasedList2", params=params)
        >>> response = await caller.execute("travel-list", op)
    """

    async def operation() -> httpx.Response:
        response = await client.request(method, url, **request_kwargs)
        return raise_for_throttling(response)

    return operation


def json_operation(
    client: httpx.AsyncClient,
    method: str,
    url: str,
    **request_kwargs: Any,
) -> Callable[[], Awaitable[Any]]:
    """Like ``http_operation`` but returns the decoded JSON body.

    JSON payloads can be persisted by the durable cache tier, raw responses
    cannot.
    """
    send = http_operation(client, method, url, **request_kwargs)

    async def operation() -> Any:
        response = await send()
        return response.json()

    return operation
