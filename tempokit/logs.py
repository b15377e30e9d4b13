"""Logging helpers: rate-limited logging and level names."""

from __future__ import annotations

import json
import logging
import threading
import time
from typing import Any, Callable

_MISSING = "(MISSING)"

_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "error": logging.ERROR,
}


def level_filter(level: str) -> int:
    """Map a level name to a logging level; unknown names allow everything."""
    return _LEVELS.get(level, logging.NOTSET)


def _format_value(value: Any) -> str:
    if value is None:
        text = "null"
    elif isinstance(value, bool):
        text = "true" if value else "false"
    else:
        text = str(value)
    if any(c <= " " or c in '="' or c == "\x7f" for c in text):
        return json.dumps(text)
    return text


def _logfmt(keyvals: tuple[Any, ...]) -> str:
    items = list(keyvals)
    if len(items) % 2:
        items.append(_MISSING)
    pairs = zip(items[::2], items[1::2])
    return " ".join(f"{_format_value(k)}={_format_value(v)}" for k, v in pairs)


class RateLimitedLogger:
    """Logger that drops messages beyond a number of logs per second."""

    def __init__(
        self,
        logs_per_second: float,
        logger: logging.Logger,
        level: int = logging.INFO,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._rate = float(logs_per_second)
        self._logger = logger
        self._level = level
        self._clock = clock
        self._tokens = 1.0
        self._last = clock()
        self._lock = threading.Lock()

    def _allow(self) -> bool:
        with self._lock:
            now = self._clock()
            elapsed = max(0.0, now - self._last)
            self._last = now
            self._tokens = min(1.0, self._tokens + elapsed * self._rate)
            if self._tokens >= 1.0:
                self._tokens -= 1.0
                return True
            return False

    def log(self, *args: Any) -> bool:
        """Log key/value pairs in logfmt; returns whether the entry was emitted."""
        if not self._allow():
            return False
        self._logger.log(self._level, _logfmt(args))
        return True