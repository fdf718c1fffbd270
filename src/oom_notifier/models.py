"""Value types passed between the reader, the monitor and notifiers."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True, slots=True)
class KmsgEntry:
    """One record from the kernel ring buffer."""

    priority: int
    sequence: int
    timestamp: int  # microseconds since boot
    message: str


@dataclass(frozen=True, slots=True)
class OOMEvent:
    """A detected OOM kill, ready for delivery."""

    cmdline: str
    pid: str
    hostname: str
    kernel: str
    time_ms: int  # Unix epoch milliseconds
    memory_percent: float | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "cmdline": self.cmdline,
            "pid": self.pid,
            "hostname": self.hostname,
            "kernel": self.kernel,
            "time": self.time_ms,
            "memory_percent": self.memory_percent,
        }
