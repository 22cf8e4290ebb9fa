"""Daemon lifecycle: PID file, control socket, start, stop and status."""

from __future__ import annotations

import logging
import os
import re
import signal
import socket
import threading
from pathlib import Path

from . import watcher
from .errors import AlreadyRunning, DaemonError, NotRunning, SocketFailed

log = logging.getLogger(__name__)

_PID_RE = re.compile(r"[+-]?[0-9]+")


def pid_path(data_dir) -> Path:
    """Location of the PID file inside the data directory."""
    return Path(data_dir) / "replayfs.pid"


def sock_path(data_dir) -> Path:
    """Location of the control socket inside the data directory."""
    return Path(data_dir) / "replayfs.sock"


def read_pid(data_dir) -> int | None:
    """PID recorded in the data directory, or None if absent or unreadable."""
    try:
        text = pid_path(data_dir).read_text(encoding="utf-8").strip()
    except (OSError, UnicodeDecodeError):
        return None
    if not _PID_RE.fullmatch(text):
        return None
    pid = int(text)
    return pid if -(2**31) <= pid < 2**31 else None


def is_process_alive(pid: int) -> bool:
    """True if a signal could be delivered to ``pid``."""
    try:
        os.kill(pid, 0)
    except (OSError, OverflowError, ValueError):
        return False
    return True


def _write_pid(data_dir: Path) -> None:
    try:
        pid_path(data_dir).write_text(str(os.getpid()), encoding="utf-8")
    except OSError as exc:
        raise DaemonError("failed to write PID file") from exc


def _cleanup(data_dir: Path) -> None:
    for path in (pid_path(data_dir), sock_path(data_dir)):
        try:
            path.unlink()
        except OSError:
            pass


def handle_command(line: str) -> tuple[str, bool]:
    """Reply to one control command; the flag says whether to shut down."""
    match line.strip():
        case "stop":
            return "ok\n", True
        case "status":
            return "running\n", False
        case _:
            return "unknown command\n", False


def _handle_connection(conn: socket.socket) -> bool:
    with conn:
        try:
            with conn.makefile("rb") as reader:
                line = reader.readline().decode("utf-8")
        except (OSError, UnicodeDecodeError):
            return False
        reply, stop_requested = handle_command(line)
        try:
            conn.sendall(reply.encode("utf-8"))
            conn.shutdown(socket.SHUT_RDWR)
        except OSError:
            pass
        return stop_requested


def _socket_listener(listener: socket.socket, shutdown: threading.Event) -> None:
    while not shutdown.is_set():
        try:
            conn, _ = listener.accept()
        except TimeoutError:
            continue
        except OSError as exc:
            log.error("socket accept error: %s", exc)
            shutdown.wait(0.1)
            continue
        if _handle_connection(conn):
            log.info("received stop command")
            shutdown.set()
            return


def _install_interrupt_handler(shutdown: threading.Event) -> None:
    try:
        signal.signal(signal.SIGINT, lambda signum, frame: shutdown.set())
    except ValueError:
        # Only the main thread may install signal handlers.
        pass


def _daemonize() -> None:
    if os.fork():
        os._exit(0)
    os.setsid()


def _run_daemon(config) -> None:
    data_dir = Path(config.data_dir)
    _write_pid(data_dir)

    shutdown = threading.Event()
    _install_interrupt_handler(shutdown)

    sock = sock_path(data_dir)
    try:
        sock.unlink()
    except OSError:
        pass
    listener = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
    try:
        listener.bind(str(sock))
        listener.listen()
    except OSError as exc:
        listener.close()
        raise SocketFailed(exc) from exc
    listener.settimeout(0.1)

    thread = threading.Thread(target=_socket_listener, args=(listener, shutdown), daemon=True)
    thread.start()
    try:
        watcher.run(config, shutdown)
    finally:
        _cleanup(data_dir)
        shutdown.set()
        thread.join()
        listener.close()


def start(config, foreground: bool) -> None:
    """Start watching; returns once the daemon has been stopped."""
    data_dir = Path(config.data_dir)
    try:
        data_dir.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        raise DaemonError(f"failed to create data dir: {data_dir}") from exc

    pid = read_pid(data_dir)
    if pid is not None:
        if is_process_alive(pid):
            raise AlreadyRunning(pid)
        _cleanup(data_dir)

    if not foreground:
        _daemonize()

    _run_daemon(config)


def stop(data_dir) -> None:
    """Ask the daemon to stop, falling back to SIGTERM without a socket."""
    sock = sock_path(data_dir)
    if not sock.exists():
        pid = read_pid(data_dir)
        if pid is not None and is_process_alive(pid):
            os.kill(pid, signal.SIGTERM)
            print(f"sent SIGTERM to PID {pid}")
            return
        raise NotRunning()

    with socket.socket(socket.AF_UNIX, socket.SOCK_STREAM) as conn:
        try:
            conn.connect(str(sock))
        except OSError as exc:
            raise DaemonError("failed to connect to daemon socket") from exc
        conn.sendall(b"stop\n")
        with conn.makefile("rb") as reader:
            response = reader.readline().decode("utf-8").strip()

    if response == "ok":
        print("daemon stopped")
    else:
        print(f"unexpected response: {response}")


def _ask_status(sock: Path) -> str | None:
    with socket.socket(socket.AF_UNIX, socket.SOCK_STREAM) as conn:
        try:
            conn.connect(str(sock))
        except OSError:
            return None
        try:
            conn.sendall(b"status\n")
        except OSError:
            pass
        try:
            with conn.makefile("rb") as reader:
                return reader.readline().decode("utf-8")
        except (OSError, UnicodeDecodeError):
            return None


def status(data_dir) -> None:
    """Print whether a daemon is running for ``data_dir``."""
    pid = read_pid(data_dir)
    if pid is not None and is_process_alive(pid):
        print(f"daemon is running (PID {pid})")
        response = _ask_status(sock_path(data_dir))
        if response is not None:
            print(f"status: {response.strip()}")
        return
    print("daemon is not running")