"""Logging setup for the resilience layer.

Records carry resilient-call context (cache key, endpoint, attempt, delay)
as ``extra`` attributes. ``settings.log_format`` picks plain text for
local runs or one JSON object per line for log shippers.
"""

import json
import logging
import logging.config
import sys
import traceback
from datetime import datetime
from typing import Any, Dict, Optional

from tripguard.app.core.config import settings

# Attributes a resilient call may attach to its log records
CONTEXT_FIELDS = (
    "request_id",
    "cache_key",
    "endpoint",
    "attempt",
    "max_attempts",
    "delay_ms",
    "retry_after",
    "tier",
)

# Attributes every LogRecord has; anything else is a caller extra
_RECORD_ATTRS = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", (), None))
) | {"message", "asctime", "taskName"}


class JSONFormatter(logging.Formatter):
    """Render a record as a single JSON line.

    Context fields that are set appear at the top level, other extras are
    grouped under ``"extra"`` and tracebacks under ``"exception"``.
    """

    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created).astimezone().isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "source": {
                "file": record.pathname,
                "line": record.lineno,
                "function": record.funcName,
            },
        }

        for name in CONTEXT_FIELDS:
            value = getattr(record, name, None)
            if value is not None:
                payload[name] = value

        extra = {
            name: value
            for name, value in vars(record).items()
            if name not in _RECORD_ATTRS and name not in CONTEXT_FIELDS
        }
        if extra:
            payload["extra"] = extra

        if record.exc_info and record.exc_info[0] is not None:
            payload["exception"] = traceback.format_exception(*record.exc_info)

        return json.dumps(payload, default=str, ensure_ascii=False)


class ContextFilter(logging.Filter):
    """Give every record the context attributes, None when unset."""

    def filter(self, record: logging.LogRecord) -> bool:
        for name in CONTEXT_FIELDS:
            if not hasattr(record, name):
                setattr(record, name, None)
        return True


def get_logging_config() -> Dict[str, Any]:
    """Build the dictConfig mapping from settings."""
    level = settings.log_level.upper()
    use_json = settings.log_format.lower() == "json"

    formatters: Dict[str, Any] = {
        "text": {
            "format": "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        },
    }
    if use_json:
        formatters["json"] = {"()": "tripguard.app.core.logging.JSONFormatter"}
    formatter = "json" if use_json else "text"

    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": formatters,
        "filters": {
            "context": {"()": "tripguard.app.core.logging.ContextFilter"},
        },
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "level": level,
                "formatter": formatter,
                "stream": sys.stdout,
                "filters": ["context"],
            },
            "error_console": {
                "class": "logging.StreamHandler",
                "level": "ERROR",
                "formatter": formatter,
                "stream": sys.stderr,
                "filters": ["context"],
            },
        },
        "loggers": {
            "tripguard": {
                "level": level,
                "handlers": ["console", "error_console"],
                "propagate": False,
            },
            # httpx logs every request at INFO
            "httpx": {
                "level": "WARNING",
                "handlers": ["console"],
                "propagate": False,
            },
        },
        "root": {"level": level, "handlers": ["console"]},
    }


def setup_logging() -> None:
    """Apply the logging configuration; call once at startup."""
    logging.config.dictConfig(get_logging_config())


def get_logger(name: str = "tripguard") -> logging.Logger:
    return logging.getLogger(name)


def get_log_context(
    cache_key: Optional[str] = None,
    endpoint: Optional[str] = None,
    attempt: Optional[int] = None,
    request_id: Optional[str] = None,
    **extra: Any,
) -> Dict[str, Any]:
    """Build an ``extra=`` mapping, leaving out fields that are None.

    Example:
        >>> logger.warning(
        ...     "Throttled",
        ...     extra=get_log_context(cache_key="travel-list", attempt=2),
        ... )
    """
    context = {
        "cache_key": cache_key,
        "endpoint": endpoint,
        "attempt": attempt,
        "request_id": request_id,
        **extra,
    }
    return {k: v for k, v in context.items() if v is not None}
