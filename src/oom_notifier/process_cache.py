"""PID -> command line cache fed by periodic scans of the process table.

By the time an OOM kill shows up in the kernel log the victim has usually
exited, so the cache deliberately keeps PIDs that disappeared from the last
scan. Entries only leave through LRU eviction.
"""

from __future__ import annotations

import logging
import threading
from collections import OrderedDict
from collections.abc import Hashable
from pathlib import Path
from typing import Generic, TypeVar

from .errors import CacheRefreshFailed

log = logging.getLogger(__name__)

DEFAULT_PID_MAX = 32768

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")


class LRUCache(Generic[K, V]):
    """Bounded mapping that evicts the least recently used key.

    Thread-safe on its own: ``get`` reorders the mapping, so even lookups
    made under a shared lock need the internal mutex.
    """

    def __init__(self, capacity: int) -> None:
        if capacity < 1:
            raise ValueError("capacity must be >= 1")
        self.capacity = capacity
        self._data: OrderedDict[K, V] = OrderedDict()
        self._mutex = threading.Lock()

    def get(self, key: K) -> V | None:
        with self._mutex:
            try:
                self._data.move_to_end(key)
            except KeyError:
                return None
            return self._data[key]

    def add(self, key: K, value: V) -> bool:
        """Insert or update *key*; return True if another key was evicted."""
        with self._mutex:
            if key in self._data:
                self._data.move_to_end(key)
                self._data[key] = value
                return False
            self._data[key] = value
            if len(self._data) > self.capacity:
                self._data.popitem(last=False)
                return True
            return False

    def __contains__(self, key: object) -> bool:
        with self._mutex:
            return key in self._data

    def __len__(self) -> int:
        with self._mutex:
            return len(self._data)


class RWLock:
    """Many readers or a single writer."""

    def __init__(self) -> None:
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writing = False

    def acquire_read(self) -> None:
        with self._cond:
            while self._writing:
                self._cond.wait()
            self._readers += 1

    def release_read(self) -> None:
        with self._cond:
            self._readers -= 1
            if self._readers == 0:
                self._cond.notify_all()

    def acquire_write(self) -> None:
        with self._cond:
            while self._writing or self._readers:
                self._cond.wait()
            self._writing = True

    def release_write(self) -> None:
        with self._cond:
            self._writing = False
            self._cond.notify_all()


# ── /proc helpers ────────────────────────────────────────────────────


def read_pid_max(proc_dir: str | Path = "/proc") -> int:
    """Read the host's pid_max, falling back to the kernel default."""
    path = Path(proc_dir) / "sys" / "kernel" / "pid_max"
    try:
        value = int(path.read_text().strip())
    except (OSError, ValueError):
        return DEFAULT_PID_MAX
    return value if value > 0 else DEFAULT_PID_MAX


def read_process_cmdline(proc_dir: str | Path, pid: int) -> str:
    """Best-effort command line for *pid*.

    Returns the NUL-separated argv joined by spaces, ``[comm]`` for kernel
    threads and zombies with an empty argv, or ``""`` if the process is gone.
    """
    base = Path(proc_dir) / str(pid)
    try:
        raw = (base / "cmdline").read_bytes()
    except OSError:
        raw = b""
    cmdline = raw.replace(b"\x00", b" ").decode("utf-8", errors="replace").strip()
    if cmdline:
        return cmdline

    try:
        comm = (base / "comm").read_text(errors="replace").strip()
    except OSError:
        return ""
    return f"[{comm}]"


def _list_pids(proc_dir: Path) -> list[int]:
    try:
        children = list(proc_dir.iterdir())
    except OSError as exc:
        raise CacheRefreshFailed(f"failed to read {proc_dir}: {exc}") from exc

    pids: list[int] = []
    for child in children:
        if not (child.name.isascii() and child.name.isdigit()):
            continue
        try:
            if not child.is_dir():
                continue
        except OSError:
            continue
        pids.append(int(child.name))
    return pids


class ProcessCache:
    """LRU cache of command lines keyed by PID, sized to pid_max."""

    def __init__(
        self,
        proc_dir: str | Path = "/proc",
        *,
        capacity: int | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.proc_dir = Path(proc_dir)
        self._log = logger or log
        size = capacity if capacity is not None else read_pid_max(self.proc_dir)
        self._log.debug("creating process cache (capacity=%d, proc_dir=%s)", size, self.proc_dir)
        self._cache: LRUCache[int, str] = LRUCache(size)
        self._lock = RWLock()

        self._log.debug("starting initial process cache population")
        self.refresh()

    @property
    def capacity(self) -> int:
        return self._cache.capacity

    def refresh(self) -> int:
        """Rescan the process table and return how many PIDs were stored.

        Raises:
            CacheRefreshFailed: the process table root could not be listed.
        """
        pids = _list_pids(self.proc_dir)

        found: list[tuple[int, str]] = []
        for pid in pids:
            cmdline = read_process_cmdline(self.proc_dir, pid)
            if cmdline:
                found.append((pid, cmdline))

        self._lock.acquire_write()
        try:
            for pid, cmdline in found:
                self._cache.add(pid, cmdline)
        finally:
            self._lock.release_write()

        self._log.debug("process cache refreshed with %d processes", len(found))
        return len(found)

    def lookup(self, pid: int) -> str:
        """Cached command line for *pid*, or ``""`` if unknown."""
        self._lock.acquire_read()
        try:
            cmdline = self._cache.get(pid)
        finally:
            self._lock.release_read()

        if cmdline is None:
            self._log.debug("process %d not found in cache", pid, extra={"pid": pid})
            return ""
        return cmdline

    def __len__(self) -> int:
        return len(self._cache)
