"""Best-effort host facts attached to each event."""

from __future__ import annotations

import logging
import socket
from pathlib import Path

import psutil

from .errors import BootTimeUnavailable

log = logging.getLogger(__name__)


def read_boot_time(proc_dir: str | Path = "/proc") -> float:
    """Return the boot time (Unix seconds) from the ``btime`` line of /proc/stat."""
    path = Path(proc_dir) / "stat"
    try:
        with open(path) as fh:
            for line in fh:
                if not line.startswith("btime "):
                    continue
                try:
                    return float(int(line.split()[1]))
                except (IndexError, ValueError) as exc:
                    raise BootTimeUnavailable(f"unparsable btime line in {path}: {line.strip()!r}") from exc
    except OSError as exc:
        raise BootTimeUnavailable(f"failed to read {path}: {exc}") from exc
    raise BootTimeUnavailable(f"no btime line in {path}")


def read_kernel_version(proc_dir: str | Path = "/proc") -> str:
    """Third field of /proc/version (e.g. ``6.1.0-18-amd64``)."""
    try:
        fields = (Path(proc_dir) / "version").read_text(errors="replace").split()
    except OSError:
        return "unknown"
    if len(fields) >= 3:
        return fields[2]
    return "unknown"


def get_hostname() -> str:
    try:
        return socket.gethostname() or "unknown"
    except OSError:
        return "unknown"


def memory_percent() -> float | None:
    """Host memory utilisation right now, or None if psutil cannot tell."""
    try:
        return round(float(psutil.virtual_memory().percent), 2)
    except (OSError, RuntimeError, psutil.Error) as exc:
        log.debug("memory snapshot unavailable: %s", exc)
        return None
