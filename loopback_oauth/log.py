"""Logging utilities for loopback-oauth.

All helpers log instead of raising; logging must never break a login.
"""

from __future__ import annotations

import logging
import sys

from typing import Any
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit


LOGGER_NAME = "loopback_oauth"
DEFAULT_FORMAT = "%(name)s - %(levelname)s - %(message)s"


class _LoggerHolder:
    """Holder for the package logger instance."""

    instance: logging.Logger | None = None


def get_logger() -> logging.Logger:
    """Get the loopback_oauth logger instance.

    Returns
    -------
    logging.Logger
        The package logger configured with a stream handler.
    """
    if _LoggerHolder.instance is None:
        logger = logging.getLogger(LOGGER_NAME)
        logger.setLevel(logging.WARNING)

        # Only add handler if none exists
        if not logger.handlers:
            handler = logging.StreamHandler(sys.stderr)
            handler.setLevel(logging.DEBUG)
            handler.setFormatter(logging.Formatter(DEFAULT_FORMAT))
            logger.addHandler(handler)

        _LoggerHolder.instance = logger

    return _LoggerHolder.instance


def debug(msg: str) -> None:
    """Log a debug message."""
    get_logger().debug(msg)


def warn(msg: str) -> None:
    """Log a warning message. Never raises exceptions."""
    get_logger().warning(msg)


def set_level(level: int | str) -> None:
    """Set the logging level.

    Parameters
    ----------
    level : int or str
        The logging level (e.g., logging.DEBUG, "DEBUG").
    """
    if isinstance(level, str):
        level = getattr(logging, level.upper())
    get_logger().setLevel(level)


def log_callback_error(event_type: str, exc: BaseException) -> None:
    """Log an event handler error with standardized format.

    Parameters
    ----------
    event_type : str
        The event type that triggered the handler.
    exc : BaseException
        The exception that was raised.
    """
    get_logger().error(f"Handler error for '{event_type}': {exc}", exc_info=exc)


def enable_debug() -> None:
    """Enable verbose logging of every flow step."""
    set_level(logging.DEBUG)


# Keys whose values must never reach log output
_SENSITIVE_KEYS = frozenset(
    {
        "token",
        "secret",
        "password",
        "code",
        "verifier",
        "state",
        "credential",
    }
)

_REDACTED = "[REDACTED]"


def _is_sensitive(key: str) -> bool:
    key_lower = key.lower()
    return any(sensitive in key_lower for sensitive in _SENSITIVE_KEYS)


def redact_sensitive_data(
    data: dict[str, Any] | list[Any] | str | None, max_depth: int = 5
) -> dict[str, Any] | list[Any] | str | None:
    """Redact sensitive values from data for safe logging.

    Recursively traverses dicts/lists and replaces values for keys
    that match sensitive patterns with "[REDACTED]".

    Parameters
    ----------
    data : dict or list or str or None
        The data to redact.
    max_depth : int, optional
        Maximum recursion depth (default: 5).

    Returns
    -------
    dict or list or str or None
        A copy of the data with sensitive values redacted.
    """
    if max_depth <= 0:
        return "[MAX_DEPTH]"

    if data is None:
        return None

    if isinstance(data, dict):
        result: dict[str, Any] = {}
        for k, v in data.items():
            if _is_sensitive(k if isinstance(k, str) else str(k)):
                result[k] = _REDACTED
            else:
                result[k] = redact_sensitive_data(v, max_depth - 1)
        return result

    if isinstance(data, list):
        return [redact_sensitive_data(item, max_depth - 1) for item in data]

    return data


def redact_url(url: str) -> str:
    """Return ``url`` with sensitive query parameter values redacted.

    ``code_challenge`` and ``client_id`` are public and kept as-is.

    Parameters
    ----------
    url : str
        An authorize or redirect URL.

    Returns
    -------
    str
        The URL safe for logging. Unparseable input is returned unchanged.
    """
    try:
        parts = urlsplit(url)
    except ValueError:
        return url
    if not parts.query:
        return url
    pairs = [
        (k, v if k in ("code_challenge", "code_challenge_method") or not _is_sensitive(k) else _REDACTED)
        for k, v in parse_qsl(parts.query, keep_blank_values=True)
    ]
    return urlunsplit(parts._replace(query=urlencode(pairs, safe="[]")))
