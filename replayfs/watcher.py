"""Filesystem watching: ignore rules, event classification and logging."""

from __future__ import annotations

import logging
import os
import queue
import re
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path, PurePath

from watchdog.events import FileSystemEventHandler
from watchdog.observers import Observer

from .errors import DaemonError
from .eventlog import LogEntry, LogWriter, Operation
from .snapshot import SnapshotError, snapshot_file

log = logging.getLogger(__name__)


class _GlobError(ValueError):
    """A glob pattern that cannot be compiled."""


def _translate(glob: str) -> str:
    """Turn a glob into a regular expression; ``*`` also matches ``/``."""
    out: list[str] = []
    depth = 0
    i = 0
    n = len(glob)
    while i < n:
        c = glob[i]
        if c == "*":
            if glob.startswith("**", i):
                end = i + 2
                after_sep = i == 0 or glob[i - 1] == "/"
                if after_sep and end == n:
                    out.append(".*")
                    i = end
                    continue
                if after_sep and glob[end] == "/":
                    out.append("(?:.*/)?")
                    i = end + 1
                    continue
                out.append(".*")
                i = end
                continue
            out.append(".*")
        elif c == "?":
            out.append(".")
        elif c == "[":
            j = i + 1
            negate = j < n and glob[j] in "!^"
            if negate:
                j += 1
            start = j
            if j < n and glob[j] == "]":
                j += 1
            while j < n and glob[j] != "]":
                j += 1
            if j >= n:
                raise _GlobError("unclosed character class")
            body = "".join("\\" + ch if ch in "\\[]^&~|" else ch for ch in glob[start:j])
            out.append("[" + ("^" if negate else "") + body + "]")
            i = j + 1
            continue
        elif c == "{":
            if depth:
                raise _GlobError("nested alternate groups are not allowed")
            depth += 1
            out.append("(?:")
        elif c == "}" and depth:
            depth -= 1
            out.append(")")
        elif c == "," and depth:
            out.append("|")
        elif c == "\\":
            if i + 1 >= n:
                raise _GlobError("dangling escape")
            out.append(re.escape(glob[i + 1]))
            i += 2
            continue
        else:
            out.append(re.escape(c))
        i += 1
    if depth:
        raise _GlobError("unclosed alternate group")
    return "".join(out)


@dataclass(frozen=True)
class IgnoreSet:
    """A set of globs matched against paths relative to the watched directory."""

    globs: tuple[str, ...] = ()
    _regex: re.Pattern[str] | None = field(init=False, repr=False, compare=False, default=None)

    def __post_init__(self):
        globs = tuple(self.globs)
        object.__setattr__(self, "globs", globs)
        if globs:
            regex = re.compile("|".join(f"(?:{_translate(g)})" for g in globs), re.DOTALL)
            object.__setattr__(self, "_regex", regex)

    def is_match(self, path) -> bool:
        """True if any glob matches the whole of ``path``."""
        return self._regex is not None and self._regex.fullmatch(str(path)) is not None


def build_ignore_set(patterns) -> IgnoreSet:
    """Expand each pattern so it matches itself, nested copies and their contents."""
    globs: list[str] = []
    for pattern in patterns:
        for required in (pattern, f"**/{pattern}"):
            try:
                _translate(required)
            except _GlobError as exc:
                raise ValueError(f"invalid ignore pattern: {pattern}") from exc
            globs.append(required)
        for optional in (f"{pattern}/**", f"**/{pattern}/**"):
            try:
                _translate(optional)
            except _GlobError:
                continue
            globs.append(optional)
    return IgnoreSet(tuple(globs))


def relative_path(path, watch_dir) -> str | None:
    """Path relative to ``watch_dir``, or None when it lies outside."""
    try:
        rel = PurePath(path).relative_to(watch_dir)
    except ValueError:
        return None
    return "" if rel == PurePath() else str(rel)


def should_ignore(path, watch_dir, data_dir, ignore_set: IgnoreSet) -> bool:
    """True for paths in the data directory, outside the watch dir, or matched."""
    path = PurePath(path)
    if path.is_relative_to(data_dir):
        return True
    rel = relative_path(path, watch_dir)
    if rel is None:
        return True
    return ignore_set.is_match(rel)


class EventKind(Enum):
    """Classification of a raw filesystem notification."""

    CREATE = "create"
    MODIFY_DATA = "modify_data"
    MODIFY_NAME = "modify_name"
    REMOVE = "remove"
    OTHER = "other"


_OPERATIONS = {
    EventKind.CREATE: Operation.CREATE,
    EventKind.MODIFY_DATA: Operation.MODIFY,
    EventKind.MODIFY_NAME: Operation.RENAME,
    EventKind.REMOVE: Operation.DELETE,
}


@dataclass(frozen=True)
class FsEvent:
    """A filesystem notification with the absolute paths it concerns."""

    kind: EventKind
    paths: tuple[Path, ...] = ()

    def __post_init__(self):
        object.__setattr__(self, "paths", tuple(Path(p) for p in self.paths))


class EventRecorder:
    """Turns filesystem events into snapshots and log entries."""

    def __init__(self, watch_dir, data_dir, ignore_set, blob_dir, max_snapshot_size, log_writer):
        self.watch_dir = Path(watch_dir)
        self.data_dir = Path(data_dir)
        self.ignore_set = ignore_set
        self.blob_dir = Path(blob_dir)
        self.max_snapshot_size = max_snapshot_size
        self.log_writer: LogWriter = log_writer

    def _ignored(self, path: Path) -> bool:
        return should_ignore(path, self.watch_dir, self.data_dir, self.ignore_set)

    def _snapshot(self, path: Path) -> tuple[str | None, int | None]:
        try:
            return snapshot_file(path, self.blob_dir, self.max_snapshot_size)
        except (OSError, SnapshotError) as exc:
            log.debug("snapshot skipped for %s: %s", path, exc)
            return None, None

    def _append(self, op, path, dest_path=None, content_hash=None, size=None) -> LogEntry | None:
        try:
            return self.log_writer.append(op, path, dest_path, content_hash, size)
        except OSError as exc:
            log.error("failed to write log entry: %s", exc)
            return None

    def handle(self, event: FsEvent) -> list[LogEntry]:
        """Record one event; return the log entries written for it."""
        op = _OPERATIONS.get(event.kind)
        if op is None:
            return []
        written: list[LogEntry | None] = []

        if op is Operation.RENAME and len(event.paths) == 2:
            src, dest = event.paths
            if self._ignored(src) and self._ignored(dest):
                return []
            src_rel = relative_path(src, self.watch_dir)
            dest_rel = relative_path(dest, self.watch_dir)
            if src_rel is None or dest_rel is None:
                return []
            content_hash, size = self._snapshot(dest)
            written.append(self._append(Operation.RENAME, src_rel, dest_rel, content_hash, size))
        elif op is Operation.RENAME and len(event.paths) == 1:
            # Some backends report only one side of a rename.
            (path,) = event.paths
            if self._ignored(path):
                return []
            rel = relative_path(path, self.watch_dir)
            if rel is None:
                return []
            if path.exists():
                content_hash, size = self._snapshot(path)
                written.append(self._append(Operation.MODIFY, rel, None, content_hash, size))
            else:
                written.append(self._append(Operation.DELETE, rel))
        else:
            for path in event.paths:
                if self._ignored(path):
                    continue
                rel = relative_path(path, self.watch_dir)
                if rel is None:
                    continue
                if op in (Operation.CREATE, Operation.MODIFY):
                    content_hash, size = self._snapshot(path)
                else:
                    content_hash, size = None, None
                written.append(self._append(op, rel, None, content_hash, size))

        return [entry for entry in written if entry is not None]


_KINDS = {
    "created": EventKind.CREATE,
    "modified": EventKind.MODIFY_DATA,
    "moved": EventKind.MODIFY_NAME,
    "deleted": EventKind.REMOVE,
}


def _convert(event) -> FsEvent:
    kind = _KINDS.get(event.event_type, EventKind.OTHER)
    if kind is EventKind.MODIFY_DATA and event.is_directory:
        kind = EventKind.OTHER
    paths = [os.fsdecode(event.src_path)]
    if kind is EventKind.MODIFY_NAME:
        paths.append(os.fsdecode(event.dest_path))
    return FsEvent(kind, tuple(paths))


class _QueueHandler(FileSystemEventHandler):
    def __init__(self, events: queue.Queue):
        super().__init__()
        self._events = events

    def on_any_event(self, event):
        converted = _convert(event)
        if converted.kind is not EventKind.OTHER:
            self._events.put(converted)


def run(config, shutdown) -> None:
    """Watch ``config.watch_dir`` and record events until ``shutdown`` is set."""
    watch_dir = Path(config.watch_dir)
    data_dir = Path(config.data_dir)
    blob_dir = data_dir / "blobs"
    log_path = data_dir / "log.ndjson"

    try:
        blob_dir.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        raise DaemonError(f"failed to create blob dir: {blob_dir}") from exc

    try:
        writer = LogWriter(log_path, watch_dir)
    except OSError as exc:
        raise DaemonError("failed to create log writer") from exc

    with writer:
        ignore_set = build_ignore_set(config.ignore)
        try:
            data_dir_canon = data_dir.resolve(strict=True)
        except (OSError, RuntimeError):
            data_dir_canon = data_dir
        recorder = EventRecorder(
            watch_dir, data_dir_canon, ignore_set, blob_dir, config.max_snapshot_size, writer
        )

        events: queue.Queue[FsEvent] = queue.Queue()
        observer = Observer()
        try:
            observer.schedule(_QueueHandler(events), str(watch_dir), recursive=True)
            observer.start()
        except OSError as exc:
            raise DaemonError(f"failed to watch directory: {watch_dir}") from exc

        log.info("watching %s", watch_dir)
        try:
            while not shutdown.is_set():
                try:
                    event = events.get(timeout=0.25)
                except queue.Empty:
                    if not observer.is_alive():
                        log.warning("watcher channel disconnected")
                        break
                    continue
                recorder.handle(event)
        finally:
            observer.stop()
            observer.join()
            log.info("watcher shutting down")