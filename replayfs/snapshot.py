"""Content-addressed blob store for file snapshots."""

from __future__ import annotations

import hashlib
import os
import stat
from pathlib import Path


class SnapshotError(Exception):
    """Raised when a path cannot be snapshotted."""


def blob_path(blob_dir, content_hash: str) -> Path:
    """Location of a blob: ``<blob_dir>/<first two hex chars>/<hash>``."""
    return Path(blob_dir) / content_hash[:2] / content_hash


def snapshot_file(abs_path, blob_dir, max_size: int) -> tuple[str, int]:
    """Store a file's contents in the blob store; return ``(hex_hash, size)``."""
    abs_path = Path(abs_path)
    info = os.stat(abs_path)
    if stat.S_ISLNK(info.st_mode):
        raise SnapshotError(f"skipping symlink: {abs_path}")
    if not stat.S_ISREG(info.st_mode):
        raise SnapshotError(f"not a regular file: {abs_path}")

    size = info.st_size
    if size > max_size:
        raise SnapshotError(f"file too large ({size} bytes, max {max_size}): {abs_path}")

    data = abs_path.read_bytes()
    hex_hash = hashlib.sha256(data).hexdigest()

    target = blob_path(blob_dir, hex_hash)
    if not target.exists():
        target.parent.mkdir(parents=True, exist_ok=True)
        tmp = target.with_suffix(".tmp")
        tmp.write_bytes(data)
        os.replace(tmp, target)

    return hex_hash, size