from __future__ import annotations


class OomNotifierError(Exception):
    """Base class for errors raised by oom_notifier."""


class MalformedEntry(OomNotifierError, ValueError):
    """A kernel log line did not match ``priority,seq,ts[,...];message``."""

    def __init__(self, line: str, reason: str) -> None:
        super().__init__(f"{reason}: {line!r}")
        self.line = line
        self.reason = reason


class NoPIDFound(OomNotifierError):
    """An OOM message carried no ``killed process <pid>`` fragment."""


class PIDOverflow(OomNotifierError):
    """The PID digits in an OOM message do not fit a pid_t."""


class KernelLogUnavailable(OomNotifierError):
    """The kernel message device could not be opened or positioned."""


class CacheRefreshFailed(OomNotifierError):
    """The process table root could not be listed."""


class BootTimeUnavailable(OomNotifierError):
    """No usable ``btime`` line in the process statistics file."""


class NotificationError(OomNotifierError):
    """Delivering an event downstream failed."""
