"""OOM kill detection: correlates kernel log entries with the process cache."""

from __future__ import annotations

import logging
import queue
import threading
import time
from collections.abc import Callable
from pathlib import Path

from .errors import BootTimeUnavailable, CacheRefreshFailed, NoPIDFound, PIDOverflow
from .host import get_hostname, memory_percent, read_boot_time, read_kernel_version
from .kmsg import extract_pid, is_oom_kill
from .models import KmsgEntry, OOMEvent
from .process_cache import ProcessCache
from .reader import DEFAULT_KMSG_PATH, DEFAULT_QUEUE_SIZE, KmsgReader

log = logging.getLogger(__name__)

STATE_UNINITIALIZED = "uninitialized"
STATE_RUNNING = "running"
STATE_CLOSED = "closed"

# How long a blocked publish waits before re-checking for shutdown.
_PUBLISH_RETRY_SECONDS = 0.5


def unknown_process_placeholder(pid: int) -> str:
    return f"<unknown process {pid}>"


class OOMMonitor:
    """Watch the kernel log for OOM kills and turn them into :class:`OOMEvent`.

    Two periodic activities run once :meth:`run` is called: the process cache
    is refreshed every ``refresh_interval`` seconds on a helper thread, and the
    kernel log is drained every ``check_interval`` seconds on the calling
    thread. Kernel entries timestamped before the monitor started are ignored.

    ``reader``, ``cache``, ``boot_time`` and ``clock`` can be injected, which
    is how the tests drive it without /dev/kmsg.
    """

    def __init__(
        self,
        *,
        proc_dir: str | Path = "/proc",
        kmsg_path: str = DEFAULT_KMSG_PATH,
        check_interval: float = 10.0,
        refresh_interval: float = 5.0,
        kmsg_queue_size: int = DEFAULT_QUEUE_SIZE,
        include_memory: bool = True,
        reader: KmsgReader | None = None,
        cache: ProcessCache | None = None,
        boot_time: float | None = None,
        clock: Callable[[], float] = time.time,
        logger: logging.Logger | None = None,
    ) -> None:
        if check_interval < 0:
            raise ValueError("check_interval must be >= 0")
        if refresh_interval < 0:
            raise ValueError("refresh_interval must be >= 0")

        self.state = STATE_UNINITIALIZED
        self.proc_dir = Path(proc_dir)
        self.check_interval = check_interval
        self.refresh_interval = refresh_interval
        self.include_memory = include_memory
        self._log = logger or log
        self._stop = threading.Event()
        self._refresh_thread: threading.Thread | None = None

        owns_reader = reader is None
        if reader is None:
            reader = KmsgReader(kmsg_path, queue_size=kmsg_queue_size, logger=self._log)
        self.reader = reader

        if cache is None:
            try:
                cache = ProcessCache(self.proc_dir, logger=self._log)
            except Exception:
                if owns_reader:
                    reader.close()
                raise
        self.cache = cache

        if boot_time is None:
            try:
                boot_time = read_boot_time(self.proc_dir)
            except BootTimeUnavailable as exc:
                self._log.warning("%s; using the current time as boot time", exc)
                boot_time = clock()
        self.boot_time = boot_time

        # Kernel timestamps below this are from before we started.
        self.startup_baseline = max(0, int((clock() - boot_time) * 1_000_000))
        self._log.debug(
            "monitor initialised (boot_time=%.0f, baseline=%dus)",
            self.boot_time,
            self.startup_baseline,
        )

    # ── detection ────────────────────────────────────────────────────

    def to_epoch_ms(self, timestamp: int) -> int:
        """Convert a boot-relative microsecond timestamp to Unix epoch ms."""
        return int(self.boot_time * 1000) + timestamp // 1000

    def process_entry(self, entry: KmsgEntry) -> OOMEvent | None:
        """Return an event for *entry* if it is a new OOM kill, else None."""
        if not is_oom_kill(entry):
            return None

        if entry.timestamp < self.startup_baseline:
            self._log.debug(
                "ignoring OOM message from before startup (ts=%d < %d)",
                entry.timestamp,
                self.startup_baseline,
            )
            return None

        try:
            pid = extract_pid(entry.message)
        except (NoPIDFound, PIDOverflow) as exc:
            self._log.warning("failed to extract PID from OOM message: %s", exc)
            return None

        cmdline = self.cache.lookup(pid) or unknown_process_placeholder(pid)
        event = OOMEvent(
            cmdline=cmdline,
            pid=str(pid),
            hostname=get_hostname(),
            kernel=read_kernel_version(self.proc_dir),
            time_ms=self.to_epoch_ms(entry.timestamp),
            memory_percent=memory_percent() if self.include_memory else None,
        )
        self._log.info("OOM kill detected", extra={"pid": event.pid, "cmdline": event.cmdline})
        return event

    def check(self) -> list[OOMEvent]:
        """Drain the kernel log buffer and return events for new OOM kills."""
        events: list[OOMEvent] = []
        for entry in self.reader.drain_available():
            try:
                event = self.process_entry(entry)
            except Exception:
                self._log.exception("failed to process kmsg entry (seq=%d)", entry.sequence)
                continue
            if event is not None:
                events.append(event)
        return events

    def refresh_cache(self) -> None:
        """Run one cache refresh cycle; failures are logged, not raised."""
        try:
            self.cache.refresh()
        except CacheRefreshFailed as exc:
            self._log.error("failed to refresh process cache: %s", exc)
        except Exception:
            self._log.exception("unexpected error refreshing process cache")

    # ── loops ────────────────────────────────────────────────────────

    def _refresh_loop(self) -> None:
        while not self._stop.wait(self.refresh_interval):
            self.refresh_cache()

    def _publish(self, events: queue.Queue[OOMEvent], event: OOMEvent) -> None:
        # Blocking put: a slow consumer throttles detection.
        while not self._stop.is_set():
            try:
                events.put(event, timeout=_PUBLISH_RETRY_SECONDS)
                return
            except queue.Full:
                continue
        try:
            events.put_nowait(event)
        except queue.Full:
            self._log.error(
                "event queue full at shutdown; dropping OOM event",
                extra={"pid": event.pid, "cmdline": event.cmdline},
            )

    def run(self, events: queue.Queue[OOMEvent]) -> None:
        """Publish OOM events onto *events* until :meth:`close` is called."""
        if self._stop.is_set():
            return
        self.state = STATE_RUNNING

        self._refresh_thread = threading.Thread(
            target=self._refresh_loop, name="process-cache-refresh", daemon=True
        )
        self._refresh_thread.start()
        self._log.info(
            "OOM monitor running (check every %ss, cache refresh every %ss)",
            self.check_interval,
            self.refresh_interval,
        )

        while not self._stop.wait(self.check_interval):
            try:
                found = self.check()
            except Exception:
                self._log.exception("unexpected error checking kernel log")
                continue
            for event in found:
                self._publish(events, event)

    def start(self, events: queue.Queue[OOMEvent]) -> threading.Thread:
        """Run :meth:`run` on a daemon thread and return it."""
        thread = threading.Thread(target=self.run, args=(events,), name="oom-monitor", daemon=True)
        thread.start()
        return thread

    def close(self) -> None:
        """Stop both loops and release the kernel log handle."""
        if self.state == STATE_CLOSED:
            return
        self._stop.set()
        self.reader.close()
        self.state = STATE_CLOSED
        self._log.debug("monitor closed")
