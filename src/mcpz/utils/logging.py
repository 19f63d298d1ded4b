"""Logger helpers with credential redaction.

Library code never configures handlers or levels. Components accept an
injected ``logging.Logger`` and fall back to their module logger; either way
the :class:`RedactingFilter` is attached so credential-shaped substrings are
masked before any handler sees the record.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Mapping

REDACTED = "[REDACTED]"

_MESSAGE_PATTERNS = [
    (re.compile(rf"{word}[=:]\S+", re.IGNORECASE), f"{word}={REDACTED}")
    for word in ("key", "secret", "token", "password", "auth")
]
_BEARER_PATTERN = re.compile(r"(Bearer\s+)[A-Za-z0-9\-._~+/]+=*", re.IGNORECASE)
_SENSITIVE_ENV_KEY = re.compile(r"key|secret|token|password|auth|credential", re.IGNORECASE)


def sanitize(message: str) -> str:
    """Mask credential-shaped substrings in a log message."""
    for pattern, replacement in _MESSAGE_PATTERNS:
        message = pattern.sub(replacement, message)
    return _BEARER_PATTERN.sub(rf"\1{REDACTED}", message)


def sanitize_env(env: Mapping[str, str] | None) -> dict[str, str]:
    """Return a copy of ``env`` with credential-like variables masked."""
    if not env:
        return {}
    return {
        key: REDACTED if _SENSITIVE_ENV_KEY.search(key) else value
        for key, value in env.items()
    }


class RedactingFilter(logging.Filter):
    """Rewrites each record's rendered message through :func:`sanitize`."""

    def filter(self, record: logging.LogRecord) -> bool:
        try:
            message = record.getMessage()
        except (TypeError, ValueError):
            return True
        record.msg = sanitize(message)
        record.args = None
        return True


def _ensure_filter(logger: logging.Logger) -> logging.Logger:
    if not any(isinstance(f, RedactingFilter) for f in logger.filters):
        logger.addFilter(RedactingFilter())
    return logger


def get_logger(name: str) -> logging.Logger:
    """Module logger with the redaction filter attached."""
    return _ensure_filter(logging.getLogger(name))


def resolve_logger(
    logger: logging.Logger | None, default: logging.Logger
) -> logging.Logger:
    """Pick the injected logger when given, otherwise ``default``."""
    if logger is None:
        return default
    return _ensure_filter(logger)
