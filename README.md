# replayfs

`replayfs` watches a directory and records every file creation,
modification, deletion and rename to an append-only NDJSON log. The content
of each changed file is kept in a content-addressed blob store. You can then
rebuild the directory as it stood at any point in the recording.

## Installation

```
pip install .
```

The watcher uses `watchdog`. The daemon relies on Unix domain sockets and
`fork`, so it runs on POSIX systems only.

## Configuration

The watcher reads a TOML file:

```toml
watch_dir = "/path/to/project"
# Optional; defaults to <watch_dir>/.replayfs
data_dir = "/path/to/project/.replayfs"
# Optional; files larger than this are logged without a snapshot (default 100 MiB)
max_snapshot_size = 104857600
# Optional glob patterns; each also matches nested copies and everything beneath it
ignore = [".git", "node_modules", "*.swp"]
```

`watch_dir` must exist. Paths inside the data directory are never recorded.

## Usage

Start the watcher. It detaches into the background unless `--foreground` is given:

```
replayfs start --config replayfs.toml
replayfs start --config replayfs.toml --foreground
```

Check on it, or stop it:

```
replayfs status --data-dir .replayfs
replayfs stop --data-dir .replayfs
```

`stop` sends `stop` over the control socket. When there is no socket but the
PID file names a live process, that process gets `SIGTERM` instead.

Rebuild the recorded state into a new directory:

```
replayfs replay --data-dir .replayfs --output restored
```

Stop part way through the recording, by sequence number or by elapsed time:

```
replayfs replay -d .replayfs -o restored --until-seq 42
replayfs replay -d .replayfs -o restored --until-ms 60000
```

With `--realtime` the events are applied one at a time. Between events the
command sleeps for as long as passed between them during recording.

Every command defaults `--data-dir` to `.replayfs`. On failure a message goes
to standard error and the exit status is 1.

## Data layout

Inside the data directory:

- `log.ndjson` holds a header line (`{"type":"header","schema_version":1,...}`)
  followed by one event per line. Each event has `seq`, `elapsed_ms`, `op`
  (`create`, `modify`, `delete` or `rename`) and `path`. Where known it also
  has `dest_path`, `content_hash` and `size`. Each start of the watcher
  appends a new header to the same file.
- `blobs/<first two hex digits>/<sha256>` holds file contents.
- `replayfs.pid` and `replayfs.sock` exist while the watcher is running.

`replay` refuses a log whose schema version is newer than it supports. It
raises `replayfs.errors.UnsupportedSchemaVersion`. When a blob is missing it
prints a warning and skips that file.

## Using it from Python

```python
from pathlib import Path

from replayfs.eventlog import LogWriter, Operation, parse_row
from replayfs.replay import replay
from replayfs.snapshot import snapshot_file

digest, size = snapshot_file(Path("notes.txt"), Path("data/blobs"), 1024 * 1024)

with LogWriter(Path("data/log.ndjson"), Path("/path/to/project")) as writer:
    writer.append(Operation.CREATE, "notes.txt", None, digest, size)

count = replay(Path("data"), Path("restored"), until_seq=None, until_ms=None, realtime=False)
```

The modules are:

- `replayfs.config`: `load_config` and `Config`.
- `replayfs.eventlog`: `Header`, `LogEntry`, `Operation`, `row_to_json`,
  `parse_row` and `LogWriter`.
- `replayfs.snapshot`: `snapshot_file` and `blob_path`.
- `replayfs.replay`: `replay`, `apply_entry` and `FileState`.
- `replayfs.watcher`: `build_ignore_set`, `should_ignore`, `relative_path`,
  `EventRecorder`, `FsEvent`, `EventKind` and `run`.
- `replayfs.daemon`: `start`, `stop`, `status` and helpers for the PID file
  and control socket.
- `replayfs.cli`: `main` and `build_parser`.