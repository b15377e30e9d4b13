# tempokit

Building blocks for a distributed tracing backend: trace ID handling, tenant
limits, collectors, configuration diffs, logging helpers, and anonymous usage
statistics with a cluster-wide seed.

## Modules

- `tempokit.traceid`: `hex_string_to_trace_id` parses a hex trace ID into 16
  bytes (left-padded with zeros; raises `ValueError` for non-hex characters or
  IDs over 128 bits), `trace_id_to_hex_string` renders bytes as hex without
  leading zeros, `equal_hex_string_trace_ids` compares two hex IDs after
  padding, `pad_trace_id_to_16_bytes` pads or keeps the 16 least significant
  bytes, and `token_for` / `token_for_trace_id` compute 32-bit FNV-1 tokens.
- `tempokit.validation`: `valid_trace_id` checks for a 16-byte ID;
  `smallest_positive_non_zero_int_per_tenant` returns the smallest positive
  limit over a list of tenants, or 0 when none is positive.
- `tempokit.collectors`: `DistinctStringCollector` keeps distinct strings up to
  a total size in bytes (0 means unlimited); `ActiveUsers` tracks last-activity
  timestamps and purges idle users; `ActiveUsersCleanupService` runs that purge
  on a background thread (`start`/`stop`, or use it as a context manager), and
  `new_active_users_cleanup_with_default_values` builds one that runs every
  3 minutes with a 15 minute inactivity timeout.
- `tempokit.config`: `diff_config` returns the entries of a config mapping that
  differ from a default mapping (raises `TypeError` for unsupported value
  types), `prefix_config` joins a prefix and an option with a dot,
  `yaml_marshal_unmarshal` round-trips a value (dataclasses included) through
  YAML into a mapping, `BasicAuth` holds basic-auth credentials, and
  `FAKE_TENANT_ID` is the tenant used when authorization is disabled.
- `tempokit.attributes`: `stringify_any_value` renders booleans, numbers,
  strings, sequences (`[...]`) and mappings or lists of `KeyValue` (`{k:v...}`).
- `tempokit.errors`: `TraceNotFoundError`, `SearchKeyValueNotFoundError`,
  `UnsupportedError`, `MultiError` (collects and flattens errors; `check()`
  raises it when non-empty) and `is_request_body_too_large`.
- `tempokit.logs`: `RateLimitedLogger` writes key/value pairs in logfmt to a
  `logging.Logger`, dropping entries beyond a number per second;
  `level_filter` maps `debug`/`info`/`warn`/`error` to logging levels.
- `tempokit.seed`: `ClusterSeed` (merge keeps the oldest seed, the smaller UID
  on a tie) and `JSONCodec` / `JSON_CODEC` to encode and decode it.
- `tempokit.stats`: a registry of named statistics (`new_int`, `new_float`,
  `new_string`, `new_statistics`, `new_counter`, `new_word_counter`; asking for
  an existing name under another kind raises `TypeError`), `target` and
  `edition`, `build_metrics`, `build_report` and `send_report`, which POSTs the
  report as JSON to a URL you give.
- `tempokit.reporter`: `Reporter` elects a cluster seed through an
  `InMemoryKV` store, writes or reads it as a seed file through a reader and a
  writer you supply, and sends a report every interval; also `Backoff`,
  `BackoffConfig`, `Config`, `ensure_stable_key` and `next_report`.
- `tempokit.net`: `filter_ips` and `get_first_address_of`, which returns the
  first IPv4 address of the named interfaces, avoiding 169.254.x.x where it can
  (raises `LookupError` when there is none).

## Installation

```
pip install tempokit
```

## Examples

```python
from tempokit.traceid import hex_string_to_trace_id, trace_id_to_hex_string

raw = hex_string_to_trace_id("1234567890abcdef")
assert len(raw) == 16
assert trace_id_to_hex_string(raw) == "1234567890abcdef"
```

```python
from tempokit.collectors import DistinctStringCollector

collector = DistinctStringCollector(10)
for value in ["123", "4567", "890", "11"]:
    collector.collect(value)

collector.strings()   # ['123', '4567', '890']
collector.exceeded()  # True
```

```python
from tempokit.config import diff_config

diff_config({"a": 1, "b": "x"}, {"a": 2, "b": "x", "c": True})
# {'a': 2, 'c': True}
```

```python
from tempokit.stats import new_statistics

stats = new_statistics("query_throughput")
for sample in (100, 200, 300):
    stats.record(sample)
stats.value()  # {'avg': 200.0, 'count': 3, 'min': 100.0, 'max': 300.0, ...}
```

```python
from datetime import datetime, timedelta, timezone
from tempokit.reporter import next_report

created = datetime(2024, 1, 1, 1, tzinfo=timezone.utc)
now = datetime(2024, 1, 1, 2, 0, 1, tzinfo=timezone.utc)
next_report(timedelta(hours=1), created, now)  # 2024-01-01 03:00 UTC
```

The `Reporter` needs a reader with `read(name) -> bytes` (raising
`DoesNotExistError` when the seed file is missing) and a writer with
`write(name, data)`; any object with those methods will do.

## What this package does not do

- It ships no object-store backend: the seed file reader and writer are yours
  to provide.
- The only key/value store is the in-process `InMemoryKV`; there is no
  gossip or networked store, so leader election is shared only between
  reporters in the same process that use the same `InMemoryKV`.
- It has no command-line program, no HTTP server and no client for a trace
  query API.

## Running the tests

```
pip install -e ".[test]"
pytest
```