"""Anonymous usage reporting: cluster seed election and periodic reports."""

from __future__ import annotations

import logging
import random
import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Callable, Mapping, Optional, Protocol

from .errors import MultiError
from .seed import JSON_CODEC, ClusterSeed, JSONCodec
from .stats import REPORT_INTERVAL, send_report

ATTEMPT_NUMBER = 4
"""How many times a corrupted seed file is read before it is reported."""

SEED_KEY = "usagestats_token"
"""Key of the cluster seed in the KV store."""

SEED_FILE_NAME = "tempo_cluster_seed.json"
"""Name of the cluster seed object in the object store."""

REPORT_CHECK_INTERVAL = timedelta(minutes=1)
STABILITY_CHECK_INTERVAL = timedelta(seconds=5)
STABILITY_MIN_REQUIRED = 6

_logger = logging.getLogger(__name__)


class DoesNotExistError(LookupError):
    """The requested object does not exist in the object store."""

    def __init__(self, message: str = "does not exist") -> None:
        super().__init__(message)


class BadSeedFileError(ValueError):
    """The cluster seed file could not be decoded."""

    def __init__(self, message: str = "bad seed file") -> None:
        super().__init__(message)


class _RawReader(Protocol):
    def read(self, name: str) -> bytes: ...


class _RawWriter(Protocol):
    def write(self, name: str, data: bytes) -> None: ...


@dataclass
class BackoffConfig:
    """Backoff bounds in seconds; max_retries of 0 retries forever."""

    min_backoff: float = 0.1
    max_backoff: float = 10.0
    max_retries: int = 10


class Backoff:
    """Exponential backoff with jitter that stops when the stop event is set."""

    def __init__(
        self,
        config: BackoffConfig,
        stop_event: threading.Event | None = None,
        rng: random.Random | None = None,
    ) -> None:
        self.config = config
        self._stop = stop_event if stop_event is not None else threading.Event()
        self._rng = rng or random.Random()
        self.num_retries = 0
        self._next_min = config.min_backoff
        self._next_max = min(2 * config.min_backoff, config.max_backoff)

    def ongoing(self) -> bool:
        """Whether another attempt may be made."""
        if self._stop.is_set():
            return False
        return self.config.max_retries == 0 or self.num_retries < self.config.max_retries

    @property
    def error(self) -> Exception | None:
        """Why the backoff stopped, or None while it is ongoing."""
        if self._stop.is_set():
            return RuntimeError("backoff stopped")
        if self.config.max_retries != 0 and self.num_retries >= self.config.max_retries:
            return RuntimeError(f"terminated after {self.num_retries} retries")
        return None

    def _next_delay(self) -> float:
        self.num_retries += 1
        max_backoff = self.config.max_backoff
        if self._next_min >= max_backoff:
            return max_backoff
        delay = 0.0
        if self._next_min > 0:
            delay = self._rng.uniform(self._next_min, self._next_max)
        self._next_min = min(self._next_max, max_backoff)
        self._next_max = min(self._next_max * 2, max_backoff)
        return delay

    def wait(self) -> None:
        """Count a retry and sleep before the next one, unless stopped."""
        delay = self._next_delay()
        if self.ongoing():
            self._stop.wait(delay)


@dataclass
class Config:
    """Usage reporting settings."""

    enabled: bool = True
    leader: bool = False
    backoff: BackoffConfig = field(default_factory=lambda: BackoffConfig(max_retries=0))


class InMemoryKV:
    """Thread-safe in-memory KV store holding encoded cluster seeds."""

    def __init__(self, codec: JSONCodec = JSON_CODEC) -> None:
        self._codec = codec
        self._lock = threading.Lock()
        self._data: dict[str, bytes] = {}

    def get(self, key: str) -> ClusterSeed | None:
        with self._lock:
            raw = self._data.get(key)
        return None if raw is None else self._codec.decode(raw)

    def cas(
        self, key: str, update: Callable[[Optional[ClusterSeed]], Optional[ClusterSeed]]
    ) -> None:
        """Atomically replace the value with update(current), unless it returns None."""
        with self._lock:
            raw = self._data.get(key)
            current = None if raw is None else self._codec.decode(raw)
            new = update(current)
            if new is not None:
                self._data[key] = self._codec.encode(new)


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _aware(moment: datetime) -> datetime:
    return moment if moment.tzinfo is not None else moment.replace(tzinfo=timezone.utc)


def next_report(interval: timedelta, created_at: datetime, now: datetime) -> datetime:
    """First report time at or after now, aligned on the seed creation time."""
    periods = -(-(now - created_at) // interval)
    return created_at + periods * interval


def ensure_stable_key(
    kv_client: InMemoryKV,
    stop_event: threading.Event,
    check_interval: timedelta = STABILITY_CHECK_INTERVAL,
    min_required: int = STABILITY_MIN_REQUIRED,
) -> ClusterSeed | None:
    """Wait until the seed in the KV store stays the same for enough checks.

    Returns None if stopped first.
    """
    previous: ClusterSeed | None = None
    stable_count = 0
    while not stop_event.wait(check_interval.total_seconds()):
        try:
            value = kv_client.get(SEED_KEY)
        except Exception as err:  # noqa: BLE001 - any KV failure is retried
            _logger.debug("failed to get cluster seed key for stability check: %s", err)
            continue
        if value is None:
            continue
        if previous is None or previous.uid != value.uid:
            previous = value
            stable_count = 0
            continue
        stable_count += 1
        if stable_count > min_required:
            return value
    return None


def _is_missing_or_bad(err: BaseException) -> bool:
    return isinstance(err, (DoesNotExistError, BadSeedFileError))


class Reporter:
    """Elects a cluster seed and periodically sends anonymous usage reports."""

    def __init__(
        self,
        config: Config,
        kv_client: InMemoryKV | None,
        reader: _RawReader,
        writer: _RawWriter,
        logger: logging.Logger | None = None,
        *,
        report_url: str | None = None,
        version: Mapping[str, str] | None = None,
        report_check_interval: timedelta = REPORT_CHECK_INTERVAL,
        report_interval: timedelta = REPORT_INTERVAL,
        stability_check_interval: timedelta = STABILITY_CHECK_INTERVAL,
        stability_min_required: int = STABILITY_MIN_REQUIRED,
    ) -> None:
        self.config = config
        self.kv_client = kv_client
        self.reader = reader
        self.writer = writer
        self.logger = logger or _logger
        self.report_url = report_url
        self.version = dict(version or {})
        self.report_check_interval = report_check_interval
        self.report_interval = report_interval
        self.stability_check_interval = stability_check_interval
        self.stability_min_required = stability_min_required
        self.cluster: ClusterSeed | None = None
        self.last_report: datetime | None = None

    def init(self, stop_event: threading.Event) -> None:
        """Establish the cluster seed, as leader or by waiting for the leader."""
        if self.config.leader:
            self.cluster = self.init_leader(stop_event)
            return
        try:
            self.cluster = self.fetch_seed(stop_event, None)
        except Exception:  # noqa: BLE001 - followers simply end up without a seed
            self.cluster = None

    def init_leader(self, stop_event: threading.Event) -> ClusterSeed | None:
        """Agree on a seed through the KV store and make sure it is stored."""
        if self.kv_client is None:
            self.logger.info("failed to create kv client: no kv store configured")
            return None
        backoff = Backoff(self.config.backoff, stop_event)
        while backoff.ongoing():
            candidate = ClusterSeed(
                uid=str(uuid.uuid4()), created_at=_now(), version=self.version
            )

            def update(
                current: ClusterSeed | None, candidate: ClusterSeed = candidate
            ) -> ClusterSeed | None:
                if current is not None and current.uid != candidate.uid:
                    return None
                return candidate

            try:
                self.kv_client.cas(SEED_KEY, update)
            except Exception as err:  # noqa: BLE001
                self.logger.info("failed to CAS cluster seed key: %s", err)
                continue

            stable = ensure_stable_key(
                self.kv_client,
                stop_event,
                self.stability_check_interval,
                self.stability_min_required,
            )
            if stable is None:
                return None

            try:
                remote = self.fetch_seed(
                    stop_event, lambda err: not _is_missing_or_bad(err)
                )
            except (DoesNotExistError, BadSeedFileError):
                try:
                    self.write_seed_file(stable)
                except Exception as err:  # noqa: BLE001
                    self.logger.info("failed to write cluster seed file: %s", err)
                    backoff.wait()
                    continue
                return stable
            except Exception:  # noqa: BLE001
                backoff.wait()
                continue
            return remote
        return None

    def fetch_seed(
        self,
        stop_event: threading.Event,
        continue_fn: Callable[[Exception], bool] | None = None,
    ) -> ClusterSeed:
        """Read the seed file, retrying while continue_fn allows (None: always)."""
        backoff = Backoff(self.config.backoff, stop_event)
        reading_errors = 0
        while backoff.ongoing():
            try:
                return self.read_seed_file()
            except Exception as err:  # noqa: BLE001
                if not isinstance(err, DoesNotExistError):
                    reading_errors += 1
                self.logger.debug("failed to read cluster seed file: %s", err)
                if reading_errors > ATTEMPT_NUMBER and isinstance(err, BadSeedFileError):
                    self.logger.debug("seed file corrupted")
                if continue_fn is None or continue_fn(err):
                    backoff.wait()
                    continue
                raise
        raise backoff.error or RuntimeError("backoff stopped")

    def read_seed_file(self) -> ClusterSeed:
        """Read and decode the seed file from the object store."""
        data = self.reader.read(SEED_FILE_NAME)
        try:
            return JSON_CODEC.decode(data)
        except ValueError as err:
            raise BadSeedFileError() from err

    def write_seed_file(self, seed: ClusterSeed) -> None:
        """Encode the seed and store it in the object store."""
        self.writer.write(SEED_FILE_NAME, JSON_CODEC.encode(seed))

    def report_usage(self, stop_event: threading.Event, interval: datetime) -> None:
        """Send one report, retrying up to 5 times; raises MultiError on failure."""
        if self.cluster is None:
            raise ValueError("no cluster seed established")
        if self.report_url is None:
            raise ValueError("no usage report URL configured")
        backoff = Backoff(
            BackoffConfig(min_backoff=1.0, max_backoff=30.0, max_retries=5), stop_event
        )
        errors = MultiError()
        while backoff.ongoing():
            try:
                send_report(self.cluster, interval, self.report_url, self.version)
            except Exception as err:  # noqa: BLE001
                self.logger.info(
                    "failed to send usage report (retries %d): %s", backoff.num_retries, err
                )
                errors.add(err)
                backoff.wait()
                continue
            self.logger.debug("usage report sent with success")
            return
        errors.check()

    def running(self, stop_event: threading.Event) -> None:
        """Establish the seed, then report every interval until stopped.

        Returns at once when reporting is disabled.
        """
        if not self.config.enabled:
            return
        self.init(stop_event)
        if self.cluster is None:
            stop_event.wait()
            return

        next_time = next_report(
            self.report_interval, _aware(self.cluster.created_at), _now()
        )
        if self.last_report is None:
            self.last_report = next_time - self.report_interval

        check_seconds = self.report_check_interval.total_seconds()
        while not stop_event.wait(check_seconds):
            now = _now()
            if next_time != now and now - self.last_report < self.report_interval:
                continue
            self.logger.info("reporting cluster stats at %s", now.isoformat())
            try:
                self.report_usage(stop_event, next_time)
            except Exception as err:  # noqa: BLE001
                self.logger.info("failed to report usage: %s", err)
                continue
            self.last_report = next_time
            next_time = next_time + self.report_interval