"""Background reader for the live kernel message stream."""

from __future__ import annotations

import logging
import os
import queue
import select
import threading

from .errors import KernelLogUnavailable, MalformedEntry
from .kmsg import parse_kmsg_line
from .models import KmsgEntry

log = logging.getLogger(__name__)

DEFAULT_KMSG_PATH = "/dev/kmsg"
DEFAULT_QUEUE_SIZE = 100

# A single /dev/kmsg read must fit a whole record or the kernel returns EINVAL.
_READ_SIZE = 8192


class KmsgReader:
    """Tail a kernel message source on a background thread.

    The source is opened read-only and positioned at its end, so only records
    written after construction are seen. Parsed entries are buffered in a
    bounded FIFO queue; when it is full the reader thread waits for the
    consumer instead of dropping entries.

    Regular files work too (the reader idles at EOF and picks up appended
    lines), which is what the tests rely on.
    """

    def __init__(
        self,
        path: str = DEFAULT_KMSG_PATH,
        *,
        queue_size: int = DEFAULT_QUEUE_SIZE,
        idle_interval: float = 0.1,
        logger: logging.Logger | None = None,
    ) -> None:
        self.path = path
        self.idle_interval = idle_interval
        self._log = logger or log
        self._queue: queue.Queue[KmsgEntry] = queue.Queue(maxsize=queue_size)
        self._stop = threading.Event()
        self._closed = False

        try:
            self._fd = os.open(path, os.O_RDONLY | os.O_NONBLOCK)
        except OSError as exc:
            raise KernelLogUnavailable(f"failed to open {path}: {exc}") from exc

        # Skip old messages
        try:
            os.lseek(self._fd, 0, os.SEEK_END)
        except OSError as exc:
            os.close(self._fd)
            raise KernelLogUnavailable(f"failed to seek to end of {path}: {exc}") from exc

        self._thread = threading.Thread(target=self._run, name="kmsg-reader", daemon=True)
        self._thread.start()
        self._log.debug("kmsg reader started", extra={"path": path})

    # ── background task ──────────────────────────────────────────────

    def _run(self) -> None:
        pending = b""
        while not self._stop.is_set():
            try:
                ready, _, _ = select.select([self._fd], [], [], self.idle_interval)
            except (OSError, ValueError):
                # Descriptor closed underneath us during shutdown.
                break
            if not ready:
                continue

            try:
                chunk = os.read(self._fd, _READ_SIZE)
            except BlockingIOError:
                continue
            except BrokenPipeError:
                # EPIPE: the ring buffer wrapped past our position.
                self._log.warning("kernel ring buffer overran the reader; messages were lost")
                continue
            except OSError as exc:
                if self._stop.is_set():
                    break
                self._log.error("error reading %s: %s", self.path, exc, extra={"path": self.path})
                self._stop.wait(self.idle_interval)
                continue

            if not chunk:
                # EOF on a regular file; wait for more to be appended.
                self._stop.wait(self.idle_interval)
                continue

            pending += chunk
            *lines, pending = pending.split(b"\n")
            for raw in lines:
                if not self._handle_line(raw.decode("utf-8", errors="replace")):
                    return

    def _handle_line(self, line: str) -> bool:
        if not line.strip():
            return True
        try:
            entry = parse_kmsg_line(line)
        except MalformedEntry as exc:
            if line[0].isspace():
                # Dictionary continuation lines (" SUBSYSTEM=...") have no header.
                self._log.debug("skipping kmsg continuation line: %s", exc)
            else:
                self._log.warning("failed to parse kmsg line: %s", exc)
            return True
        except Exception:
            # One bad record must not end the reader thread.
            self._log.exception("unexpected error parsing kmsg line %r", line[:200])
            return True
        return self._push(entry)

    def _push(self, entry: KmsgEntry) -> bool:
        while not self._stop.is_set():
            try:
                self._queue.put(entry, timeout=self.idle_interval)
                return True
            except queue.Full:
                continue
        return False

    # ── consumer side ────────────────────────────────────────────────

    @property
    def pending(self) -> int:
        """Number of entries currently buffered."""
        return self._queue.qsize()

    def drain_available(self) -> list[KmsgEntry]:
        """Return every buffered entry without waiting for new ones."""
        entries: list[KmsgEntry] = []
        while True:
            try:
                entries.append(self._queue.get_nowait())
            except queue.Empty:
                return entries

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._stop.set()
        if self._thread is not threading.current_thread():
            self._thread.join(timeout=max(1.0, self.idle_interval * 5))
        os.close(self._fd)
        self._log.debug("kmsg reader closed", extra={"path": self.path})
