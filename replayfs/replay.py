"""Rebuild a directory tree from a recorded event log and blob store."""

from __future__ import annotations

import os
import shutil
import sys
import time
from collections.abc import Iterator, Mapping, MutableMapping
from dataclasses import dataclass
from pathlib import Path

from .errors import ReplayError, UnsupportedSchemaVersion
from .eventlog import CURRENT_SCHEMA_VERSION, Header, LogEntry, Operation, parse_row
from .snapshot import blob_path


@dataclass
class FileState:
    """Known content of one path during replay."""

    content_hash: str | None = None


def apply_entry(state: MutableMapping[str, FileState], entry: LogEntry) -> None:
    """Update the in-memory file state with one event."""
    if entry.op in (Operation.CREATE, Operation.MODIFY):
        state[entry.path] = FileState(entry.content_hash)
    elif entry.op is Operation.DELETE:
        state.pop(entry.path, None)
    elif entry.op is Operation.RENAME and entry.dest_path is not None:
        old = state.pop(entry.path, None)
        # A hash on the rename is a fresh snapshot of the destination.
        if entry.content_hash is not None:
            content_hash = entry.content_hash
        else:
            content_hash = old.content_hash if old is not None else None
        state[entry.dest_path] = FileState(content_hash)


def _lines(log_file) -> Iterator[str]:
    for line in log_file:
        line = line.removesuffix("\n")
        yield line.removesuffix("\r")


def replay(data_dir, output, until_seq=None, until_ms=None, realtime=False) -> int:
    """Replay the log in ``data_dir`` into ``output``; return the events applied."""
    data_dir = Path(data_dir)
    output = Path(output)
    log_path = data_dir / "log.ndjson"
    blob_dir = data_dir / "blobs"

    try:
        log_file = log_path.open(encoding="utf-8")
    except OSError as exc:
        raise ReplayError(f"failed to open log: {log_path}") from exc

    with log_file:
        lines = _lines(log_file)
        header_line = next(lines, None)
        if header_line is None:
            raise ReplayError("log file is empty")
        try:
            header = parse_row(header_line)
        except ValueError as exc:
            raise ReplayError("failed to parse log header") from exc
        if not isinstance(header, Header):
            raise ReplayError("expected header as first log line")
        if header.schema_version > CURRENT_SCHEMA_VERSION:
            raise UnsupportedSchemaVersion(header.schema_version, CURRENT_SCHEMA_VERSION)
        print(f"replaying log (schema v{header.schema_version}, watched: {header.watch_dir})")

        try:
            output.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise ReplayError(f"failed to create output dir: {output}") from exc

        state: dict[str, FileState] = {}
        count = 0
        last_ms: int | None = None

        for line in lines:
            if not line.strip():
                continue
            try:
                row = parse_row(line)
            except ValueError as exc:
                raise ReplayError("failed to parse log entry") from exc
            if not isinstance(row, LogEntry):
                continue

            if until_seq is not None and row.seq > until_seq:
                break
            if until_ms is not None and row.elapsed_ms > until_ms:
                break

            if realtime:
                if last_ms is not None:
                    delta = max(row.elapsed_ms - last_ms, 0)
                    if delta:
                        time.sleep(delta / 1000)
                last_ms = row.elapsed_ms

            apply_entry(state, row)
            count += 1

            if realtime:
                _materialize_entry(row, state, output, blob_dir)

    if not realtime:
        _materialize_all(state, output, blob_dir)

    print(f"replayed {count} events into {output}")
    return count


def _remove(path: Path) -> None:
    if path.is_dir():
        shutil.rmtree(path)
    elif path.exists():
        path.unlink()


def _materialize_entry(
    entry: LogEntry, state: Mapping[str, FileState], output: Path, blob_dir: Path
) -> None:
    if entry.op in (Operation.CREATE, Operation.MODIFY):
        out_path = output / entry.path
        _ensure_dir(out_path.parent)
        file_state = state.get(entry.path)
        if file_state is not None:
            _write_blob(out_path, file_state.content_hash, blob_dir, entry.path)
    elif entry.op is Operation.DELETE:
        out_path = output / entry.path
        try:
            _remove(out_path)
        except OSError:
            pass
    elif entry.op is Operation.RENAME and entry.dest_path is not None:
        from_path = output / entry.path
        to_path = output / entry.dest_path
        _ensure_dir(to_path.parent)
        if from_path.exists():
            os.replace(from_path, to_path)
        else:
            file_state = state.get(entry.dest_path)
            if file_state is not None:
                _write_blob(to_path, file_state.content_hash, blob_dir, entry.dest_path)


def _materialize_all(state: Mapping[str, FileState], output: Path, blob_dir: Path) -> None:
    for rel_path in sorted(state):
        out_path = output / rel_path
        _ensure_dir(out_path.parent)
        _write_blob(out_path, state[rel_path].content_hash, blob_dir, rel_path)


def _ensure_dir(path: Path) -> None:
    """Create a directory, removing any files that stand where directories must go."""
    if path.is_dir():
        return
    for current in [*reversed(path.parents), path]:
        if current.is_file():
            try:
                current.unlink()
            except OSError as exc:
                raise ReplayError(f"failed to remove file blocking directory: {current}") from exc
    try:
        path.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        raise ReplayError(f"failed to create directory: {path}") from exc


def _write_blob(out_path: Path, content_hash: str | None, blob_dir: Path, rel_path: str) -> None:
    if content_hash is None:
        return
    source = blob_path(blob_dir, content_hash)
    if not source.exists():
        print(
            f"warning: blob missing for {rel_path} (hash {content_hash}), skipping",
            file=sys.stderr,
        )
        return
    _remove(out_path)
    try:
        shutil.copy(source, out_path)
    except OSError as exc:
        raise ReplayError(f"failed to copy blob to {out_path}") from exc