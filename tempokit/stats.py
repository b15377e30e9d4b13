"""Named usage statistics and the anonymous usage report built from them."""

from __future__ import annotations

import gc
import hashlib
import json
import math
import os
import platform
import sys
import threading
import time
import urllib.error
import urllib.request
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Mapping

import psutil

from .seed import ClusterSeed, _format_time

REPORT_INTERVAL = timedelta(hours=4)
HTTP_TIMEOUT = 5.0
TARGET_KEY = "target"
EDITION_KEY = "edition"

_registry: dict[str, Any] = {}
_registry_lock = threading.Lock()


def _divide(numerator: float, denominator: float) -> float:
    if denominator:
        return numerator / denominator
    if numerator == 0:
        return math.nan
    return math.copysign(math.inf, numerator)


class IntVar:
    """Thread-safe integer variable."""

    def __init__(self) -> None:
        self._value = 0
        self._lock = threading.Lock()

    def set(self, value: int) -> None:
        with self._lock:
            self._value = int(value)

    def add(self, delta: int) -> None:
        with self._lock:
            self._value += int(delta)

    def value(self) -> int:
        with self._lock:
            return self._value

    def __str__(self) -> str:
        return str(self.value())


class FloatVar:
    """Thread-safe float variable."""

    def __init__(self) -> None:
        self._value = 0.0
        self._lock = threading.Lock()

    def set(self, value: float) -> None:
        with self._lock:
            self._value = float(value)

    def value(self) -> float:
        with self._lock:
            return self._value

    def __str__(self) -> str:
        return json.dumps(self.value())


class StringVar:
    """Thread-safe string variable."""

    def __init__(self) -> None:
        self._value = ""
        self._lock = threading.Lock()

    def set(self, value: str) -> None:
        with self._lock:
            self._value = str(value)

    def value(self) -> str:
        with self._lock:
            return self._value

    def __str__(self) -> str:
        return json.dumps(self.value())


class Statistics:
    """Running min, max, average, count, standard deviation and variance."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._min = math.inf
        self._max = -math.inf
        self._count = 0
        self._avg = 0.0
        self._mean = 0.0
        self._m2 = 0.0

    def record(self, v: float) -> None:
        v = float(v)
        with self._lock:
            self._min = min(self._min, v)
            self._max = max(self._max, v)
            count = self._count + 1
            delta = v - self._mean
            mean = self._mean + delta / count
            self._m2 += delta * (v - mean)
            self._mean = mean
            self._avg += (v - self._avg) / count
            self._count = count

    def value(self) -> dict[str, Any]:
        with self._lock:
            stdvar = _divide(self._m2, self._count)
            result: dict[str, Any] = {"avg": self._avg, "count": self._count}
            if not math.isinf(self._min):
                result["min"] = self._min
            if not math.isinf(self._max):
                result["max"] = self._max
        if not math.isnan(stdvar):
            result["stddev"] = math.sqrt(stdvar)
            result["stdvar"] = stdvar
        return result

    def __str__(self) -> str:
        return json.dumps(self.value())


class Counter:
    """Total counter that also reports a rate since its last reset."""

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._lock = threading.Lock()
        self._total = 0
        self._rate = 0.0
        self._reset_time = clock()

    def inc(self, i: int) -> None:
        with self._lock:
            self._total += int(i)

    def update_rate(self) -> None:
        with self._lock:
            elapsed = self._clock() - self._reset_time
            self._rate = _divide(float(self._total), elapsed)

    def reset(self) -> None:
        with self._lock:
            self._total = 0
            self._rate = 0.0
            self._reset_time = self._clock()

    def value(self) -> dict[str, Any]:
        with self._lock:
            return {"total": self._total, "rate": self._rate}

    def __str__(self) -> str:
        return json.dumps(self.value())


class WordCounter:
    """Count of distinct words recorded."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._seen: set[bytes] = set()

    def add(self, word: str) -> None:
        digest = hashlib.blake2b(word.encode("utf-8"), digest_size=8).digest()
        with self._lock:
            self._seen.add(digest)

    def value(self) -> int:
        with self._lock:
            return len(self._seen)

    def __str__(self) -> str:
        return str(self.value())


def _get_or_create(name: str, kind: type, description: str) -> Any:
    with _registry_lock:
        existing = _registry.get(name)
        if existing is not None:
            if isinstance(existing, kind):
                return existing
            raise TypeError(f"{name} is set to a non-{description} value")
        created = kind()
        _registry[name] = created
        return created


def new_float(name: str) -> FloatVar:
    """Return the float stat of this name, creating it if needed."""
    return _get_or_create(name, FloatVar, "float")


def new_int(name: str) -> IntVar:
    """Return the int stat of this name, creating it if needed."""
    return _get_or_create(name, IntVar, "int")


def new_string(name: str) -> StringVar:
    """Return the string stat of this name, creating it if needed."""
    return _get_or_create(name, StringVar, "string")


def new_statistics(name: str) -> Statistics:
    """Return the Statistics stat of this name, creating it if needed."""
    return _get_or_create(name, Statistics, "Statistics")


def new_counter(name: str) -> Counter:
    """Return the Counter stat of this name, creating it if needed."""
    return _get_or_create(name, Counter, "Counter")


def new_word_counter(name: str) -> WordCounter:
    """Return the WordCounter stat of this name, creating it if needed."""
    return _get_or_create(name, WordCounter, "WordCounter")


def target(name: str) -> None:
    """Set the target name reported; may be set repeatedly."""
    new_string(TARGET_KEY).set(name)


def edition(name: str) -> None:
    """Set the edition name reported; may be set repeatedly."""
    new_string(EDITION_KEY).set(name)


@dataclass
class Report:
    """Usage report sent to the stats server."""

    cluster_id: str
    created_at: datetime
    interval: datetime
    interval_period: float
    target: str
    version: dict[str, str]
    os: str
    arch: str
    edition: str
    metrics: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "clusterID": self.cluster_id,
            "createdAt": _format_time(self.created_at),
            "interval": _format_time(self.interval),
            "intervalPeriod": self.interval_period,
            "target": self.target,
            "version": dict(self.version),
            "os": self.os,
            "arch": self.arch,
            "edition": self.edition,
            "metrics": self.metrics,
        }


def _memstats() -> dict[str, Any]:
    memory = psutil.Process().memory_info()
    return {
        "rss": memory.rss,
        "vms": memory.vms,
        "num_gc": sum(generation["collections"] for generation in gc.get_stats()),
    }


def _metric_value(var: Any) -> Any:
    if isinstance(var, Counter):
        var.update_rate()
        value = var.value()
        var.reset()
        return value
    if isinstance(var, (IntVar, FloatVar, StringVar, Statistics, WordCounter)):
        return var.value()
    return str(var)


def build_metrics() -> dict[str, Any]:
    """Collect process metrics and every registered stat.

    Counters are reset once read.
    """
    result: dict[str, Any] = {
        "memstats": _memstats(),
        "num_cpu": os.cpu_count(),
        "num_threads": threading.active_count(),
    }
    with _registry_lock:
        items = sorted(_registry.items())
    for name, var in items:
        if name in (TARGET_KEY, EDITION_KEY):
            continue
        result[name] = _metric_value(var)
    return result


def _string_stat(name: str) -> str:
    var = _registry.get(name)
    return var.value() if isinstance(var, StringVar) else ""


def build_report(
    seed: ClusterSeed, interval: datetime, version: Mapping[str, str] | None = None
) -> Report:
    """Build the report for a cluster seed and reporting interval."""
    return Report(
        cluster_id=seed.uid,
        created_at=seed.created_at,
        interval=interval,
        interval_period=REPORT_INTERVAL.total_seconds(),
        target=_string_stat(TARGET_KEY),
        version=dict(version or {}),
        os=sys.platform,
        arch=platform.machine(),
        edition=_string_stat(EDITION_KEY),
        metrics=build_metrics(),
    )


def send_report(
    seed: ClusterSeed,
    interval: datetime,
    url: str,
    version: Mapping[str, str] | None = None,
) -> None:
    """POST the usage report as JSON; raises RuntimeError on a non-2xx reply."""
    report = build_report(seed, interval, version)
    body = json.dumps(report.to_dict(), indent=1).encode("utf-8")
    request = urllib.request.Request(
        url, data=body, method="POST", headers={"Content-Type": "application/json"}
    )
    try:
        with urllib.request.urlopen(request, timeout=HTTP_TIMEOUT) as response:
            if response.status // 100 != 2:
                data = response.read().decode("utf-8", errors="replace")
                raise RuntimeError(
                    f"failed to send usage stats: {response.status} {response.reason}"
                    f"  body: {data}"
                )
    except urllib.error.HTTPError as err:
        data = err.read().decode("utf-8", errors="replace")
        raise RuntimeError(
            f"failed to send usage stats: {err.code} {err.reason}  body: {data}"
        ) from err