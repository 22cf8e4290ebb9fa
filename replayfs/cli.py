"""Command-line entry point: start, stop, status and replay."""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

from . import daemon, replay
from .config import ConfigError, load_config
from .errors import DaemonError, ReplayError

DEFAULT_DATA_DIR = Path(".replayfs")


def _uint(text: str) -> int:
    try:
        value = int(text, 10)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid non-negative integer: {text!r}") from None
    if value < 0:
        raise argparse.ArgumentTypeError(f"invalid non-negative integer: {text!r}")
    return value


def _add_data_dir(parser: argparse.ArgumentParser, help_text: str) -> None:
    parser.add_argument(
        "-d",
        "--data-dir",
        type=Path,
        default=DEFAULT_DATA_DIR,
        help=f"{help_text} [default: .replayfs]",
    )


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser for the ``replayfs`` command."""
    parser = argparse.ArgumentParser(
        prog="replayfs", description="Filesystem watcher and replay tool"
    )
    commands = parser.add_subparsers(dest="command", required=True, metavar="COMMAND")

    start = commands.add_parser("start", help="Start the filesystem watcher daemon")
    start.add_argument(
        "-c", "--config", type=Path, required=True, help="Path to config file (TOML)"
    )
    start.add_argument(
        "--foreground", action="store_true", help="Run in foreground (don't daemonize)"
    )

    stop = commands.add_parser("stop", help="Stop the running daemon")
    _add_data_dir(stop, "Path to data directory (contains PID file and socket)")

    status = commands.add_parser("status", help="Show daemon status")
    _add_data_dir(status, "Path to data directory")

    rep = commands.add_parser("replay", help="Replay filesystem state from log")
    _add_data_dir(rep, "Path to data directory (contains log.ndjson and blobs/)")
    rep.add_argument(
        "-o", "--output", type=Path, required=True, help="Output directory to reconstruct into"
    )
    rep.add_argument("--until-seq", type=_uint, help="Replay up to this sequence number")
    rep.add_argument(
        "--until-ms", type=_uint, help="Replay up to this elapsed time in milliseconds"
    )
    rep.add_argument(
        "--realtime",
        action="store_true",
        help="Replay events with original timing (sleeps between events)",
    )
    return parser


def _report(exc: BaseException) -> None:
    print(f"Error: {exc}", file=sys.stderr)
    causes = []
    cause = exc.__cause__
    while cause is not None:
        causes.append(str(cause))
        cause = cause.__cause__
    if causes:
        print("\nCaused by:", file=sys.stderr)
        for index, text in enumerate(causes):
            print(f"    {index}: {text}", file=sys.stderr)


def _dispatch(args: argparse.Namespace) -> None:
    match args.command:
        case "start":
            daemon.start(load_config(args.config), args.foreground)
        case "stop":
            daemon.stop(args.data_dir)
        case "status":
            daemon.status(args.data_dir)
        case "replay":
            replay.replay(
                args.data_dir, args.output, args.until_seq, args.until_ms, args.realtime
            )


def main(argv=None) -> int:
    """Run the command line; return the process exit status."""
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    args = build_parser().parse_args(argv)
    try:
        _dispatch(args)
    except (ConfigError, DaemonError, ReplayError, OSError) as exc:
        _report(exc)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())