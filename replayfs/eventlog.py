"""The NDJSON event log: row types, encoding and an appending writer."""

from __future__ import annotations

import json
import time
from dataclasses import dataclass
from enum import StrEnum
from typing import Any

CURRENT_SCHEMA_VERSION = 1


class Operation(StrEnum):
    """Kind of filesystem change recorded in the log."""

    CREATE = "create"
    MODIFY = "modify"
    DELETE = "delete"
    RENAME = "rename"


@dataclass(frozen=True)
class Header:
    """First row of every log segment."""

    schema_version: int
    watch_dir: str


@dataclass(frozen=True)
class LogEntry:
    """One recorded filesystem event."""

    seq: int
    elapsed_ms: int
    op: Operation
    path: str
    dest_path: str | None = None
    content_hash: str | None = None
    size: int | None = None


def row_to_json(row: Header | LogEntry) -> str:
    """Encode a row as one compact JSON line (without the newline)."""
    if isinstance(row, Header):
        data: dict[str, Any] = {
            "type": "header",
            "schema_version": row.schema_version,
            "watch_dir": row.watch_dir,
        }
    elif isinstance(row, LogEntry):
        data = {
            "type": "event",
            "seq": row.seq,
            "elapsed_ms": row.elapsed_ms,
            "op": Operation(row.op).value,
            "path": row.path,
        }
        for key in ("dest_path", "content_hash", "size"):
            value = getattr(row, key)
            if value is not None:
                data[key] = value
    else:
        raise TypeError(f"not a log row: {row!r}")
    return json.dumps(data, separators=(",", ":"), ensure_ascii=False)


def _uint(data: dict, key: str) -> int:
    if key not in data:
        raise ValueError(f"missing field `{key}`")
    value = data[key]
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise ValueError(f"field `{key}` must be a non-negative integer")
    return value


def _string(data: dict, key: str) -> str:
    if key not in data:
        raise ValueError(f"missing field `{key}`")
    value = data[key]
    if not isinstance(value, str):
        raise ValueError(f"field `{key}` must be a string")
    return value


def _optional_string(data: dict, key: str) -> str | None:
    return None if data.get(key) is None else _string(data, key)


def _optional_uint(data: dict, key: str) -> int | None:
    return None if data.get(key) is None else _uint(data, key)


def parse_row(line: str) -> Header | LogEntry:
    """Decode one log line; raises ValueError if it is not a valid row."""
    data = json.loads(line)
    if not isinstance(data, dict):
        raise ValueError("log row must be a JSON object")
    kind = data.get("type")
    if kind == "header":
        return Header(
            schema_version=_uint(data, "schema_version"),
            watch_dir=_string(data, "watch_dir"),
        )
    if kind == "event":
        op_name = _string(data, "op")
        try:
            op = Operation(op_name)
        except ValueError:
            raise ValueError(f"unknown operation: {op_name!r}") from None
        return LogEntry(
            seq=_uint(data, "seq"),
            elapsed_ms=_uint(data, "elapsed_ms"),
            op=op,
            path=_string(data, "path"),
            dest_path=_optional_string(data, "dest_path"),
            content_hash=_optional_string(data, "content_hash"),
            size=_optional_uint(data, "size"),
        )
    raise ValueError(f"unknown row type: {kind!r}")


class LogWriter:
    """Appends a header and then numbered events to a log file."""

    def __init__(self, log_path, watch_dir):
        self._file = open(log_path, "a", encoding="utf-8", newline="\n")
        try:
            self._write(Header(CURRENT_SCHEMA_VERSION, str(watch_dir)))
        except BaseException:
            self._file.close()
            raise
        self._seq = 0
        self._start = time.monotonic()

    @property
    def seq(self) -> int:
        """Sequence number of the last event written."""
        return self._seq

    def _write(self, row: Header | LogEntry) -> None:
        self._file.write(row_to_json(row) + "\n")
        self._file.flush()

    def append(self, op, path, dest_path=None, content_hash=None, size=None) -> LogEntry:
        """Write one event and return it."""
        self._seq += 1
        entry = LogEntry(
            seq=self._seq,
            elapsed_ms=int((time.monotonic() - self._start) * 1000),
            op=Operation(op),
            path=path,
            dest_path=dest_path,
            content_hash=content_hash,
            size=size,
        )
        self._write(entry)
        return entry

    def close(self) -> None:
        self._file.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False