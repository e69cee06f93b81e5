# reportdb

`reportdb` is a compact time-series datastore for metrics gathered by a
network polling engine. Polled values arrive as batches of data points,
are buffered per day and counter, and are written to partitioned,
block-allocated data files. Each partition has a msgpack index beside it.
Queries select a time range, a counter and a set of objects. They can
aggregate across objects and over time.

## Installing

```
pip install .
```

To run the tests:

```
pip install ".[test]"
pytest
```

## Running the datastore

```
reportdb [--directory DIR] [--log-dir LOG_DIR]
```

* `--directory` is the base directory. Settings are read from
  `DIR/config` and data is kept under `DIR/data`. The default is the
  current working directory.
* `--log-dir` is where log files go. The default is `logs`.

Logging depends on `IsProductionEnvironment`:

* In production, only errors are logged, as JSON, to a rotating
  compressed file `prod_<date>.log`.
* In development, everything is logged to stderr and, as JSON, to
  `dev_<date>.log`.

In development the server also starts a small debug HTTP server on
`localhost:<ProfilingPort>`:

* `/debug` shows the process id.
* `/debug/threads` shows a stack dump of every thread.

The server runs until SIGINT or SIGTERM, then shuts down in this order:

1. The listeners stop.
2. Buffered points are flushed to storage.
3. Queued queries are answered and their results sent.
4. Open storages are synced and closed.

The command exits with status 1 in any of these cases:

* the configuration cannot be loaded
* the log directory cannot be created
* the sockets cannot be bound

### Configuration

`config/counters.json` maps counter ids (0–65535) to their settings. Each
counter needs a `dataType`, which is one of `float64`, `float32`,
`int64`, `int`, `int32`, `uint64`, `uint`, `uint32` or `string`:

```json
{
  "1": {"dataType": "int64"},
  "2": {"dataType": "float64"},
  "3": {"dataType": "string"}
}
```

`config/general.json` must hold every one of these keys:

* workers: `Writers`, `Readers`, `QueryParsers`
* queue sizes: `DataWriteChannelSize`, `ReaderRequestChannelSize`,
  `ReaderResponseChannelSize`, `QueryChannelSize`
* `QueryTimeoutTime`, the query timeout in seconds
* storage layout: `Partitions` and `BlockSize` in bytes, then
  `InitialFileSize` and `FileSizeGrowthDelta` in memory pages
* `StorageCleanupInterval` in seconds. A storage used fewer than 10 times
  between two cleanups is closed.
* cache: `MaxCacheKeys`, `MaxCacheSizeInMB`. The cache is bounded by its
  number of keys only.
* ports, as strings: `PollListenerBindPort`, `QueryListenerBindPort`,
  `QueryResultBindPort`, `ProfilingPort`
* logging: `IsProductionEnvironment`, `MaxLogFileSizeInMB`,
  `LogFileRetentionInDays`
* `MemoryFraction`

Storages are laid out as `data/<year>/<month>/<day>/<counter_id>/` by
the local calendar day of each point's timestamp.

### Wire protocol

All three sockets are ZeroMQ sockets bound on every interface.

* **Poll data** is pushed to the poll listener port as a JSON array of
  objects with `timestamp`, `counter_id`, `object_id` and `value`. Points
  of counters that are not configured are dropped.
* **Queries** are pushed to the query listener port as msgpack maps with
  these keys: `query_id`, `from`, `to`, `object_ids`, `counter_id`,
  `object_wise_aggregation`, `timestamp_aggregation` and `interval`.
  An empty `object_ids` means every object.
* **Results** are pulled from the result port. Each one is eight bytes of
  little-endian query id followed by a msgpack map with `query_id`,
  `data` and `error`. `data` maps object ids to lists of
  `{"timestamp", "value"}` points. On a timeout, an inverted time range
  or an unknown counter, `data` is nil and `error` says why.

Aggregations are `avg`, `sum`, `min`, `max`, `count` or `none`:

* Object-wise aggregation collapses all objects into object id `0`, with
  one point per timestamp.
* Timestamp aggregation with a non-zero `interval` groups the points into
  buckets `interval` seconds wide, aligned to `from`. With `interval`
  0, the whole range collapses to a single point at timestamp 0.
* String counters are never aggregated.
* An unknown aggregation name yields `null` values.

## Using it as a library

| Module | What it provides |
| --- | --- |
| `reportdb.config` | `load_config(directory)` and `Settings` |
| `reportdb.datapoint` | `serialize_batch` / `deserialize_batch`, the on-disk encoding of a batch; `SerializationError` |
| `reportdb.storage` | `Storage`, a partitioned append-only store keyed by object id, with `put`, `get`, `all_keys` and `close` |
| `reportdb.storagepool` | `StoragePool` and `StoragePoolKey` |
| `reportdb.aggregator` | the aggregation functions |
| `reportdb.query` | `Query`, `Result` and `QueryEngine` |
| `reportdb.database` | `ReportDB`, which writes and queries in-process |
| `reportdb.server` | `DatastoreServer`, the ZeroMQ front end, and the message codecs `decode_poll_data`, `decode_query` and `encode_result` |
| `reportdb.client` | `ReportDBClient`, described below |
| `reportdb.iputil` | IPv4 helpers: `ip_to_numeric`, `numeric_to_ip`, `cidr_hosts`, `is_valid_ip`, `is_valid_cidr` |

`ReportDBClient` sends queries and poll data to a running datastore. Its
`query` method returns one of two things:

* a list of points, when the data is aggregated under object id 0
* otherwise, a dict of points keyed by dotted IP address

It raises `QueryTimeoutError` after 40 seconds by default, and
`ClientShutdownError` once the client is closed.

This example writes points and queries them in-process:

```python
from pathlib import Path

from reportdb.config import Settings
from reportdb.database import ReportDB
from reportdb.iputil import ip_to_numeric
from reportdb.model import PolledDataPoint
from reportdb.query import Query

settings = Settings(storage_directory=Path("data"), counters={2: {"dataType": "float64"}})
object_id = ip_to_numeric("10.0.0.1")   # 167772161

with ReportDB(settings) as db:
    db.write([PolledDataPoint(1746505800, 2, object_id, 12.5)])
# closing flushes the buffered points to disk

with ReportDB(settings) as db:
    result = db.query(Query(query_id=1, start=1746505800, end=1746505900,
                            object_ids=[object_id], counter_id=2))
    print(result.data[object_id])
```

Points written with `ReportDB.write` become visible to queries only
after a flush. Flushes happen every five seconds by default, and on
close.

## What it does not do

* There is no HTTP or REST API for queries. Queries go over ZeroMQ or
  through `ReportDB` in-process.
* Nothing is authenticated.
* Stored data is never deleted, expired or compacted.
* There is no replication.
* The package does not poll devices itself. It only stores and serves
  what it is sent.