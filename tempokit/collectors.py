"""Collectors for distinct strings and recently active users."""

from __future__ import annotations

import threading
import time
from datetime import datetime, timedelta, timezone
from typing import Callable

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


class DistinctStringCollector:
    """Collect distinct strings up to a maximum total size in bytes.

    A maximum of 0 means unlimited.
    """

    def __init__(self, max_data_size: int = 0) -> None:
        self._values: set[str] = set()
        self._max_len = max_data_size
        self._curr_len = 0
        self._total_len = 0

    def collect(self, s: str) -> None:
        if s in self._values:
            return
        size = len(s.encode("utf-8"))
        self._total_len += size
        if self._max_len > 0 and self._curr_len + size > self._max_len:
            return
        self._values.add(s)
        self._curr_len += size

    def strings(self) -> list[str]:
        """The distinct values collected, sorted."""
        return sorted(self._values)

    def exceeded(self) -> bool:
        """Whether some values were dropped because of the size limit."""
        return self._total_len > self._curr_len

    def total_data_size(self) -> int:
        """Total size of all distinct strings seen, kept or not."""
        return self._total_len


class ActiveUsers:
    """Track the latest activity timestamp per user."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._timestamps: dict[str, int] = {}

    def update_user_timestamp(self, user_id: str, ts: int) -> None:
        with self._lock:
            self._timestamps[user_id] = ts

    def purge_inactive_users(self, deadline: int) -> list[str]:
        """Remove users last active at or before the deadline and return them."""
        with self._lock:
            inactive = [u for u, ts in self._timestamps.items() if ts <= deadline]
            for user_id in inactive:
                del self._timestamps[user_id]
        return inactive


def _unix_nanos(moment: datetime) -> int:
    if moment.tzinfo is None:
        moment = moment.astimezone()
    return (moment - _EPOCH) // timedelta(microseconds=1) * 1000


class ActiveUsersCleanupService:
    """Track active users and periodically purge inactive ones while running."""

    def __init__(
        self,
        cleanup_interval: timedelta,
        inactive_timeout: timedelta,
        cleanup_fn: Callable[[str], None],
    ) -> None:
        self.cleanup_interval = cleanup_interval
        self.inactive_timeout = inactive_timeout
        self._active_users = ActiveUsers()
        self._cleanup_fn = cleanup_fn
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    def update_user_timestamp(self, user: str, now: datetime) -> None:
        self._active_users.update_user_timestamp(user, _unix_nanos(now))

    def iteration(self) -> list[str]:
        """Purge users inactive for longer than the timeout, calling the cleanup hook."""
        timeout_ns = self.inactive_timeout // timedelta(microseconds=1) * 1000
        inactive = self._active_users.purge_inactive_users(time.time_ns() - timeout_ns)
        for user_id in inactive:
            self._cleanup_fn(user_id)
        return inactive

    def _run(self) -> None:
        interval = self.cleanup_interval.total_seconds()
        while not self._stop_event.wait(interval):
            self.iteration()

    def start(self) -> None:
        if self._thread is not None:
            raise RuntimeError("active users cleanup already running")
        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._run, name="active users cleanup", daemon=True
        )
        self._thread.start()

    def stop(self) -> None:
        if self._thread is None:
            return
        self._stop_event.set()
        self._thread.join()
        self._thread = None

    def __enter__(self) -> "ActiveUsersCleanupService":
        self.start()
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.stop()


def new_active_users_cleanup_with_default_values(
    cleanup_fn: Callable[[str], None],
) -> ActiveUsersCleanupService:
    """Cleanup service running every 3 minutes with a 15 minute inactivity timeout."""
    return ActiveUsersCleanupService(
        timedelta(minutes=3), timedelta(minutes=15), cleanup_fn
    )