"""Errors raised by the daemon and the replayer."""

from __future__ import annotations


class DaemonError(Exception):
    """Base class for daemon failures."""


class AlreadyRunning(DaemonError):
    """Another daemon already owns the data directory."""

    def __init__(self, pid):
        self.pid = pid
        super().__init__(f"another daemon is already running (PID {pid})")


class NotRunning(DaemonError):
    """No daemon could be found for the data directory."""

    def __init__(self):
        super().__init__("no daemon is running")


class SocketFailed(DaemonError):
    """The control socket could not be created."""

    def __init__(self, cause):
        self.cause = cause
        super().__init__(f"failed to create Unix socket: {cause}")
        if isinstance(cause, BaseException):
            self.__cause__ = cause


class UnsupportedSchemaVersion(DaemonError):
    """The log was written with a newer schema than this version understands."""

    def __init__(self, version, supported):
        self.version = version
        self.supported = supported
        super().__init__(
            f"unsupported log schema version {version} "
            f"(this version of replayfs supports up to version {supported})"
        )


class ReplayError(Exception):
    """Raised when a log cannot be read or replayed."""