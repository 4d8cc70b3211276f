# sloop

`sloop` keeps a time-partitioned history of Kubernetes resources in an
ordered key-value store. It drops the oldest data once the store covers too
long a time span or takes up too much disk, and it serves the history through
a WSGI application.

## Modules

- `sloop.partition`: every key belongs to a partition. A partition is the
  Unix time rounded down to the hour or the day and written as a zero-padded
  12-digit string, so partitions sort in time order. Call
  `set_partition_duration(timedelta(hours=1))` or `timedelta(days=1)` first.
  After that, `get_partition_id(timestamp)` and
  `get_time_range_for_partition(partition_id)` work. Any other duration
  raises `PartitionDurationError`.
- `sloop.kvstore`: `MemoryStore` is an ordered in-memory key-value store.
  - `view()` and `update()` are context managers that give a read-only or a
    read-write `Transaction`.
  - A transaction has `get`, `set`, `delete` and `iterator(prefix, reverse)`.
  - A `StoreIterator` has `seek`, `next`, `item`, `valid`,
    `valid_for_prefix` and `rewind`.
  - The store also has `drop_prefix`, `size` and `tables`.
  - Errors are `KeyNotFoundError`, `ReadOnlyTransactionError` and
    `StoreError`.
  - `open_store(root_path, partition_duration)` creates the root directory,
    returns a fresh `MemoryStore` and sets the partition duration.
    `close_store(db)` closes the store.
- `sloop.keys`: `WatchTableKey`, `ResourceSummaryKey`, `EventCountKey` and
  `WatchActivityKey` are frozen dataclasses. They format and parse keys of the
  form `/<table>/<partition>/<kind>/<namespace>/<name>/<uid or nanosecond timestamp>`.
  Each key type offers `parse`, `validate_key`, `with_partition` and `str()`.
  Invalid keys raise `KeyParseError`.
- `sloop.table`: `Table(key_type, encode, decode)` stores values under
  validated keys. Values are raw bytes unless you pass `encode` and `decode`.
  - Lookups: `get`, `get_or_default`, `get_min_key`, `get_max_key`,
    `get_min_max_partitions`, `get_unique_partition_list` and
    `get_previous_key`.
  - `range_read` reads every partition of a time window, filters rows by key
    and value predicates, and returns the rows together with `RangeReadStats`.
  - `partitions_between` lists the partition ids in a range.
- `sloop.tables`: `Tables(db)` holds the four tables over one store.
  `get_min_and_max_partition()` returns the oldest and newest partition over
  the watch, resource summary and event count tables, or `None` when they are
  empty.
- `sloop.timestamps`: `string_to_timestamp("2019-07-12T20:12:12Z")` turns an
  RFC 3339 string into a protobuf `Timestamp`. Failures raise
  `TimestampError`.
- `sloop.sleeper`: `SleepWithCancel` is a sleep that `cancel()` ends at once.
  Every later sleep also returns immediately.
- `sloop.storemanager`: `StoreManager(tables, store_root, freq, time_limit, size_limit_mb)`
  runs a background thread, started with `start()` and stopped with
  `shutdown()`. The thread drops the oldest partition when the stored time
  span exceeds `time_limit` or the files under `store_root` exceed the size
  limit. The same checks are available as `do_cleanup`,
  `clean_up_time_condition`, `clean_up_file_size_condition` and
  `get_dir_size_recursive`. Counters and gauges are kept in the module-level
  `StoreMetrics`, and `collect_metrics` refreshes them.
- `sloop.params`: these read query parameters:
  - `time_from_unix_time_param`, which takes a `TimeUnit`;
  - `duration_from_param`, which uses `parse_duration` and accepts values
    like `1h` or `300ms`;
  - `clean_string_from_param`;
  - `number_from_param`.
- `sloop.links`: `make_resource_links` and `make_left_bar_links` render
  `ResourceLinkTemplate` / `LinkTemplate` entries into `ComputedLink`s. URL
  templates use `{{.Namespace}}`, `{{.Name}}` and `{{.Kind}}`, with the
  `ToUpper` and `ToLower` pipes. Failures raise `TemplateError`.
- `sloop.webserver`: `WebApp(config, tables)` is a WSGI application. Its
  routes are:
  - `/` (index)
  - `/resource`
  - `/data`
  - `/healthz`
  - `/metrics`, in Prometheus text format
  - `/webfiles/` (static files)
  - `/debug/` (list keys)
  - `/debug/view/` (show one key)
  - `/debug/config/`

  Each response carries an `X-Request-Id` header. `run(config, tables)` serves
  the app on `config.port` until SIGINT or SIGTERM.

## Example

```python
from datetime import datetime, timedelta, timezone

from sloop.keys import ResourceSummaryKey
from sloop.kvstore import MemoryStore
from sloop.partition import set_partition_duration
from sloop.tables import Tables

set_partition_duration(timedelta(hours=1))

tables = Tables(MemoryStore())
when = datetime(2019, 1, 2, 3, 4, 5, tzinfo=timezone.utc)
key = ResourceSummaryKey.from_timestamp(when, "Pod", "default", "web-0", "uid-1")
print(key)  # /ressum/001546398000/Pod/default/web-0/uid-1

with tables.db.update() as txn:
    tables.resource_summary_table.set(txn, str(key), b"summary")

print(tables.get_min_and_max_partition())  # ('001546398000', '001546398000')
```

## What the package does not do

- Data is held in memory only. `open_store` creates the root directory but
  writes nothing into it, and the data is lost when the process exits.
- It does not watch a Kubernetes cluster and does not ingest resources. You
  write rows into the tables yourself.
- It defines no message types for the table values. Tables store bytes, or
  whatever your `encode`/`decode` functions produce.
- `/data` runs no queries of its own. Put a callable in
  `WebConfig.query_runner`; without one the route answers with an error.
- No HTML templates ship with it. `index.html`, `resource.html`,
  `debuglistkeys.html`, `debugviewkey.html`, `debugconfig.html` and any static
  files must be in `WebConfig.web_files_path`. They are rendered with Jinja2.
- There is no command-line entry point. Start the server from Python with
  `sloop.webserver.run`.

## Tests

Install the `test` extra and run pytest from the project root.