"""
Logging for cartsync.

The engine is embedded in a host app that usually owns logging already, so
a handler is attached only when the root logger has none.

Usage:
    from cartsync.logging import get_logger
    logger = get_logger(__name__)

    logger.info(f"Quantity synced: {sanitize_id_for_logging(item_id)}")
"""

import logging
import os
import sys
from functools import cache
from urllib.parse import urlsplit, urlunsplit

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
LOG_FORMAT_COMPACT = "[%(levelname)s] %(name)s: %(message)s"

# One request line per sync call otherwise
QUIET_LOGGERS = ("httpx", "httpcore", "upstash_redis")

_CONTROL_CHARS = str.maketrans({"\n": "\\n", "\r": "\\r", "\t": "\\t", "\x00": None})


def configure_logging(level: str | None = None, compact: bool | None = None) -> bool:
    """
    Attach a stdout handler to the root logger.

    Args:
        level: Level name; defaults to LOG_LEVEL, then INFO
        compact: Drop timestamps (device consoles add their own);
            defaults to CARTSYNC_COMPACT_LOGS=1

    Returns:
        False when the root logger was already configured by the host app
    """
    root = logging.getLogger()
    if root.handlers:
        return False

    level_name = (level or os.environ.get("LOG_LEVEL", "INFO")).upper()
    if compact is None:
        compact = os.environ.get("CARTSYNC_COMPACT_LOGS") == "1"

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter(LOG_FORMAT_COMPACT if compact else LOG_FORMAT))
    root.setLevel(getattr(logging, level_name, logging.INFO))
    root.addHandler(handler)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    return True


configure_logging()


@cache
def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


def _escape(value: str) -> str:
    """Neutralize line breaks and NULs so a value cannot forge log lines (CWE-117)."""
    return value.translate(_CONTROL_CHARS)


def sanitize_id_for_logging(id_value: str | int | None, max_length: int = 24) -> str:
    """
    Cart ids look like `{product}-{color}-{size}-{millis}`. Long ones are
    cut in the middle so the product prefix and the timestamp both stay
    visible: "p-1234-red-XL-1700000000123" logs as "p-1234-red-X~00000000123".
    """
    if id_value is None or id_value == "":
        return "N/A"
    safe_value = _escape(str(id_value))
    if len(safe_value) <= max_length:
        return safe_value
    head = max_length // 2
    tail = max_length - head - 1
    return f"{safe_value[:head]}~{safe_value[-tail:]}"


def sanitize_string_for_logging(value: str | None, max_length: int = 80) -> str:
    """Escaped, truncated free text (server error bodies, product names)."""
    if not value:
        return "N/A"
    safe_value = _escape(str(value))
    if len(safe_value) <= max_length:
        return safe_value
    return safe_value[:max_length] + "..."


def redact_url(url: str) -> str:
    """URL without query string or credentials; Firebase passes the API key as ?key=."""
    parts = urlsplit(str(url))
    host = parts.hostname or ""
    if parts.port:
        host = f"{host}:{parts.port}"
    return urlunsplit((parts.scheme, host, parts.path, "", ""))


__all__ = [
    "LOG_FORMAT",
    "LOG_FORMAT_COMPACT",
    "configure_logging",
    "get_logger",
    "redact_url",
    "sanitize_id_for_logging",
    "sanitize_string_for_logging",
]
