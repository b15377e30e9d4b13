import json
import os
import threading
import uuid
from datetime import datetime, timedelta, timezone
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from pathlib import Path

import pytest

from tempokit.reporter import (
    SEED_FILE_NAME,
    SEED_KEY,
    Backoff,
    BackoffConfig,
    BadSeedFileError,
    Config,
    DoesNotExistError,
    InMemoryKV,
    Reporter,
    ensure_stable_key,
    next_report,
)
from tempokit.seed import JSON_CODEC, ClusterSeed

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)
FAST = timedelta(milliseconds=10)


class DirBackend:
    def __init__(self, root):
        self.root = Path(root)

    def read(self, name):
        try:
            return (self.root / name).read_bytes()
        except FileNotFoundError as err:
            raise DoesNotExistError(name) from err

    def write(self, name, data):
        tmp = self.root / f".{name}.{uuid.uuid4().hex}"
        tmp.write_bytes(data)
        os.replace(tmp, self.root / name)


def fast_backoff():
    return BackoffConfig(min_backoff=0.01, max_backoff=0.05, max_retries=0)


def make_reporter(leader, kv, backend, **kwargs):
    return Reporter(
        Config(enabled=True, leader=leader, backoff=fast_backoff()),
        kv,
        backend,
        backend,
        stability_check_interval=FAST,
        **kwargs,
    )


def run_election(kv, backend):
    stop = threading.Event()
    results = []
    lock = threading.Lock()

    def worker(leader):
        reporter = make_reporter(leader, kv, backend)
        reporter.init(stop)
        with lock:
            results.append(reporter.cluster)

    threads = [threading.Thread(target=worker, args=(True,)) for _ in range(3)]
    threads += [threading.Thread(target=worker, args=(False,)) for _ in range(7)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=15)
    stop.set()
    return results


def test_leader_election(tmp_path):
    kv = InMemoryKV()
    results = run_election(kv, DirBackend(tmp_path))
    assert len(results) == 10
    assert all(seed is not None for seed in results)
    first = results[0].uid
    assert all(seed.uid == first for seed in results)
    assert kv.get(SEED_KEY).uid == first


def test_leader_election_with_broken_seed_file(tmp_path):
    backend = DirBackend(tmp_path)
    backend.write(SEED_FILE_NAME, b"{")
    kv = InMemoryKV()
    results = run_election(kv, backend)
    assert len(results) == 10
    assert all(seed is not None for seed in results)
    first = results[0].uid
    assert all(seed.uid == first for seed in results)
    assert kv.get(SEED_KEY).uid == first


class _Handler(BaseHTTPRequestHandler):
    def do_POST(self):
        length = int(self.headers["Content-Length"])
        body = json.loads(self.rfile.read(length))
        self.server.received.append(body["clusterID"])
        self.send_response(200)
        self.end_headers()

    def log_message(self, *args):
        pass


@pytest.fixture
def stats_server(monkeypatch):
    monkeypatch.setenv("NO_PROXY", "*")
    monkeypatch.setenv("no_proxy", "*")
    server = ThreadingHTTPServer(("127.0.0.1", 0), _Handler)
    server.received = []
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    yield server
    server.shutdown()
    server.server_close()


def test_report_loop(tmp_path, stats_server):
    url = f"http://127.0.0.1:{stats_server.server_address[1]}/report"
    reporter = make_reporter(
        True,
        InMemoryKV(),
        DirBackend(tmp_path),
        report_url=url,
        report_check_interval=timedelta(milliseconds=50),
        report_interval=timedelta(milliseconds=500),
    )
    stop = threading.Event()
    timer = threading.Timer(2.6, stop.set)
    timer.start()
    try:
        reporter.running(stop)
    finally:
        timer.cancel()
    received = stats_server.received
    assert len(received) >= 3
    assert all(cid == reporter.cluster.uid for cid in received)


@pytest.mark.parametrize(
    "interval, created_at, now, expected",
    [
        (timedelta(hours=1), EPOCH + timedelta(hours=1), EPOCH + timedelta(hours=2),
         EPOCH + timedelta(hours=2)),
        (timedelta(hours=1), EPOCH + timedelta(hours=1),
         EPOCH + timedelta(hours=2, microseconds=1), EPOCH + timedelta(hours=3)),
        (timedelta(hours=1), EPOCH + timedelta(hours=1, minutes=18, milliseconds=20),
         EPOCH + timedelta(hours=2, microseconds=1),
         EPOCH + timedelta(hours=2, minutes=18, milliseconds=20)),
    ],
)
def test_next_report(interval, created_at, now, expected):
    assert next_report(interval, created_at, now) == expected


def test_running_without_kv_waits_until_stopped(tmp_path):
    reporter = Reporter(Config(leader=True), None, DirBackend(tmp_path), DirBackend(tmp_path))
    stop = threading.Event()
    thread = threading.Thread(target=reporter.running, args=(stop,))
    thread.start()
    threading.Timer(0.2, stop.set).start()
    thread.join(timeout=5)
    assert not thread.is_alive()
    assert reporter.cluster is None


def test_running_disabled_returns_immediately(tmp_path):
    backend = DirBackend(tmp_path)
    reporter = Reporter(Config(enabled=False), InMemoryKV(), backend, backend)
    stop = threading.Event()
    thread = threading.Thread(target=reporter.running, args=(stop,))
    thread.start()
    thread.join(timeout=2)
    stop.set()
    assert not thread.is_alive()
    assert reporter.cluster is None


def test_config_defaults_retry_forever():
    config = Config()
    assert config.enabled is True
    assert config.leader is False
    assert config.backoff.max_retries == 0


def test_seed_file_round_trip(tmp_path):
    backend = DirBackend(tmp_path)
    reporter = make_reporter(True, InMemoryKV(), backend)
    seed = ClusterSeed(uid="abc", created_at=datetime(2022, 1, 2, 3, 4, 5, tzinfo=timezone.utc))
    reporter.write_seed_file(seed)
    assert reporter.read_seed_file() == seed


def test_read_missing_seed_file(tmp_path):
    reporter = make_reporter(True, InMemoryKV(), DirBackend(tmp_path))
    with pytest.raises(DoesNotExistError):
        reporter.read_seed_file()


def test_read_corrupted_seed_file(tmp_path):
    backend = DirBackend(tmp_path)
    backend.write(SEED_FILE_NAME, b"{")
    reporter = make_reporter(True, InMemoryKV(), backend)
    with pytest.raises(BadSeedFileError):
        reporter.read_seed_file()


def test_fetch_seed_stops_when_continue_refuses(tmp_path):
    reporter = make_reporter(False, InMemoryKV(), DirBackend(tmp_path))
    with pytest.raises(DoesNotExistError):
        reporter.fetch_seed(threading.Event(), lambda err: False)


def test_fetch_seed_gives_up_after_retries(tmp_path):
    backend = DirBackend(tmp_path)
    reporter = Reporter(
        Config(backoff=BackoffConfig(min_backoff=0, max_backoff=0, max_retries=2)),
        InMemoryKV(), backend, backend,
    )
    with pytest.raises(RuntimeError, match="2"):
        reporter.fetch_seed(threading.Event(), None)


def test_follower_init_uses_stored_seed(tmp_path):
    backend = DirBackend(tmp_path)
    seed = ClusterSeed(uid="stored", created_at=EPOCH + timedelta(days=1))
    backend.write(SEED_FILE_NAME, JSON_CODEC.encode(seed))
    reporter = make_reporter(False, InMemoryKV(), backend)
    reporter.init(threading.Event())
    assert reporter.cluster.uid == "stored"


def test_in_memory_kv_cas():
    kv = InMemoryKV()
    assert kv.get(SEED_KEY) is None
    kv.cas(SEED_KEY, lambda current: ClusterSeed(uid="first"))
    kv.cas(SEED_KEY, lambda current: None)
    assert kv.get(SEED_KEY).uid == "first"
    seen = []
    kv.cas(SEED_KEY, lambda current: seen.append(current.uid) or ClusterSeed(uid="second"))
    assert seen == ["first"]
    assert kv.get(SEED_KEY).uid == "second"


def test_ensure_stable_key_returns_stable_seed():
    kv = InMemoryKV()
    kv.cas(SEED_KEY, lambda current: ClusterSeed(uid="steady"))
    seed = ensure_stable_key(kv, threading.Event(), timedelta(milliseconds=1), 2)
    assert seed.uid == "steady"


def test_ensure_stable_key_stops():
    stop = threading.Event()
    stop.set()
    assert ensure_stable_key(InMemoryKV(), stop, timedelta(milliseconds=1), 2) is None


def test_backoff_counts_retries():
    backoff = Backoff(BackoffConfig(min_backoff=0, max_backoff=0, max_retries=3))
    attempts = 0
    while backoff.ongoing():
        attempts += 1
        backoff.wait()
    assert attempts == 3
    assert backoff.num_retries == 3
    assert "3" in str(backoff.error)


def test_backoff_stops_on_event():
    stop = threading.Event()
    backoff = Backoff(BackoffConfig(max_retries=0), stop)
    assert backoff.ongoing() is True
    assert backoff.error is None
    stop.set()
    assert backoff.ongoing() is False
    assert isinstance(backoff.error, RuntimeError)