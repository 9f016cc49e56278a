"""Centralized logging helpers.

``configure_logging`` installs the root handler once per process; the other
helpers keep DEBUG traces structured (``extra=extra_context(...)``) and make
sure URLs never leak credentials into log output.
"""

from __future__ import annotations

import logging
import os
import re
import time
from typing import Any, Dict, Optional
from urllib.parse import urlsplit, urlunsplit

from constants import Constants

_SENSITIVE_KEYS = ("token", "auth", "password", "secret", "key")
_CONFIGURED = False


def configure_logging(level: Optional[str] = None) -> None:
    """Configure the root logger from ``level`` or ``BALE_LOG_LEVEL``."""
    global _CONFIGURED  # pylint: disable=global-statement
    level_name = (level or os.environ.get("BALE_LOG_LEVEL") or "INFO").upper()
    level_value = getattr(logging, level_name, logging.INFO)
    root = logging.getLogger()
    if not _CONFIGURED:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(Constants.LOG_FORMAT))
        root.addHandler(handler)
        _CONFIGURED = True
    root.setLevel(level_value)


def is_debug_enabled(logger: logging.Logger) -> bool:
    """Return True when DEBUG records from ``logger`` would be emitted."""
    return logger.isEnabledFor(logging.DEBUG)


def extra_context(**fields: Any) -> Dict[str, Any]:
    """Build an ``extra`` mapping for structured log records, dropping None values."""
    return {k: v for k, v in fields.items() if v is not None}


def redact(value: str) -> str:
    """Mask ``key=value`` pairs whose key looks sensitive."""
    pattern = r"(?i)((?:%s)[^=&\s]*=)[^&\s]+" % "|".join(_SENSITIVE_KEYS)
    return re.sub(pattern, r"\1[REDACTED]", value)


def safe_url(url: str) -> str:
    """Strip userinfo and redact sensitive query parameters from a URL."""
    try:
        parts = urlsplit(url)
    except ValueError:
        return "[INVALID URL]"
    netloc = parts.hostname or ""
    if parts.port:
        netloc = f"{netloc}:{parts.port}"
    if parts.username or parts.password:
        netloc = f"[REDACTED]@{netloc}"
    return urlunsplit((parts.scheme, netloc, parts.path, redact(parts.query), ""))


class Timer:
    """Context manager measuring wall-clock duration."""

    def __init__(self) -> None:
        self._start = 0.0
        self._end: Optional[float] = None

    def __enter__(self) -> "Timer":
        self._start = time.perf_counter()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self._end = time.perf_counter()

    def duration_ms(self) -> int:
        """Elapsed milliseconds, up to now while still inside the block."""
        end = self._end if self._end is not None else time.perf_counter()
        return int((end - self._start) * 1000)
