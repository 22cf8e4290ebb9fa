"""Loading of the daemon's TOML configuration."""

from __future__ import annotations

import tomllib
from dataclasses import dataclass
from pathlib import Path

DEFAULT_MAX_SNAPSHOT_SIZE = 100 * 1024 * 1024


class ConfigError(Exception):
    """Raised when the configuration cannot be read or is invalid."""


@dataclass(frozen=True)
class Config:
    """Settings for one watched directory."""

    watch_dir: Path
    data_dir: Path
    max_snapshot_size: int = DEFAULT_MAX_SNAPSHOT_SIZE
    ignore: tuple[str, ...] = ()


def _invalid(message: str) -> ConfigError:
    return ConfigError(f"failed to parse config file: {message}")


def load_config(path) -> Config:
    """Read a TOML config file and return a resolved :class:`Config`."""
    path = Path(path)
    try:
        text = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as exc:
        raise ConfigError(f"failed to read config file: {path}") from exc
    try:
        raw = tomllib.loads(text)
    except tomllib.TOMLDecodeError as exc:
        raise ConfigError("failed to parse config file") from exc

    if "watch_dir" not in raw:
        raise _invalid("missing field `watch_dir`")
    watch_raw = raw["watch_dir"]
    if not isinstance(watch_raw, str):
        raise _invalid("`watch_dir` must be a string")
    try:
        watch_dir = Path(watch_raw).resolve(strict=True)
    except (OSError, RuntimeError) as exc:
        raise ConfigError(f"watch_dir does not exist: {watch_raw}") from exc

    data_raw = raw.get("data_dir")
    if data_raw is None:
        data_dir = watch_dir / ".replayfs"
    elif isinstance(data_raw, str):
        data_dir = Path(data_raw)
    else:
        raise _invalid("`data_dir` must be a string")

    max_size = raw.get("max_snapshot_size", DEFAULT_MAX_SNAPSHOT_SIZE)
    if isinstance(max_size, bool) or not isinstance(max_size, int) or max_size < 0:
        raise _invalid("`max_snapshot_size` must be a non-negative integer")

    ignore = raw.get("ignore", [])
    if not isinstance(ignore, list) or not all(isinstance(p, str) for p in ignore):
        raise _invalid("`ignore` must be a list of strings")

    return Config(
        watch_dir=watch_dir,
        data_dir=data_dir,
        max_snapshot_size=max_size,
        ignore=tuple(ignore),
    )