"""CLI entry point: watch for OOM kills and notify Slack."""

from __future__ import annotations

import argparse
import logging
import queue
import signal
import sys
from typing import Any, Protocol

from .config import settings
from .errors import NotificationError, OomNotifierError
from .logging import configure_logging
from .models import OOMEvent
from .monitor import OOMMonitor
from .notifier import SlackNotifier, StdoutNotifier

log = logging.getLogger(__name__)

# Graceful shutdown flag
_shutdown_requested = False

# How often the dispatch loop wakes up to look at the shutdown flag.
_DISPATCH_POLL_SECONDS = 0.5


class Notifier(Protocol):
    def notify(self, event: OOMEvent) -> None: ...


def _signal_handler(signum: int, frame: Any) -> None:
    """Handle shutdown signals gracefully."""
    global _shutdown_requested
    _shutdown_requested = True
    log.info("received signal %s, shutting down", signum)


def dispatch_events(events: queue.Queue[OOMEvent], notifier: Notifier) -> None:
    """Deliver published events until shutdown is requested."""
    while not _shutdown_requested:
        try:
            event = events.get(timeout=_DISPATCH_POLL_SECONDS)
        except queue.Empty:
            continue

        log.info("OOM event received", extra={"pid": event.pid, "cmdline": event.cmdline})
        try:
            notifier.notify(event)
        except NotificationError as exc:
            log.error("failed to send notification: %s", exc, extra={"pid": event.pid})
        else:
            log.info("notification sent", extra={"pid": event.pid})


def build_parser() -> argparse.ArgumentParser:
    """Build argument parser."""
    parser = argparse.ArgumentParser(
        prog="oom-notifier",
        description="Watch the kernel log for OOM kills and send Slack notifications",
    )
    parser.add_argument(
        "--version",
        "-V",
        action="store_true",
        help="Show version and exit",
    )
    parser.add_argument(
        "--slack-webhook",
        default=settings.slack_webhook,
        help="Slack webhook URL (env: SLACK_WEBHOOK)",
    )
    parser.add_argument(
        "--slack-channel",
        default=settings.slack_channel,
        help=f"Slack channel to send notifications (default: {settings.slack_channel})",
    )
    parser.add_argument(
        "--process-refresh",
        type=float,
        default=settings.process_refresh_seconds,
        help=f"Process cache refresh interval in seconds (default: {settings.process_refresh_seconds})",
    )
    parser.add_argument(
        "--kernel-log-refresh",
        type=float,
        default=settings.kernel_log_refresh_seconds,
        help=f"Kernel log check interval in seconds (default: {settings.kernel_log_refresh_seconds})",
    )
    parser.add_argument(
        "--proc-dir",
        default=settings.proc_dir,
        help=f"Path to proc directory (default: {settings.proc_dir})",
    )
    parser.add_argument(
        "--kmsg-path",
        default=settings.kmsg_path,
        help=f"Kernel message device (default: {settings.kmsg_path})",
    )
    parser.add_argument(
        "--log-level",
        default=None,
        help="Log level (default: $LOG_LEVEL or INFO)",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Print events as JSON lines instead of posting to Slack",
    )
    return parser


def run(args: argparse.Namespace) -> int:
    """Validate *args*, start the monitor and dispatch events until signalled."""
    global _shutdown_requested

    if not args.dry_run and not args.slack_webhook:
        sys.stderr.write("Error: --slack-webhook is required (or use --dry-run)\n")
        return 2
    if args.process_refresh <= 0 or args.kernel_log_refresh <= 0:
        sys.stderr.write("Error: refresh intervals must be > 0\n")
        return 2

    notifier: Notifier
    if args.dry_run:
        notifier = StdoutNotifier()
    else:
        notifier = SlackNotifier(
            args.slack_webhook,
            args.slack_channel,
            timeout=settings.notify_timeout_seconds,
            tz_name=settings.notify_timezone,
        )

    log.debug(
        "configuration: slack-channel=%s process-refresh=%ss kernel-log-refresh=%ss proc-dir=%s kmsg=%s",
        args.slack_channel,
        args.process_refresh,
        args.kernel_log_refresh,
        args.proc_dir,
        args.kmsg_path,
    )

    try:
        monitor = OOMMonitor(
            proc_dir=args.proc_dir,
            kmsg_path=args.kmsg_path,
            check_interval=args.kernel_log_refresh,
            refresh_interval=args.process_refresh,
            kmsg_queue_size=settings.kmsg_queue_size,
            include_memory=settings.include_memory,
        )
    except OomNotifierError as exc:
        log.error("failed to create OOM monitor: %s", exc)
        return 1

    _shutdown_requested = False
    signal.signal(signal.SIGINT, _signal_handler)
    signal.signal(signal.SIGTERM, _signal_handler)

    events: queue.Queue[OOMEvent] = queue.Queue(maxsize=settings.event_queue_size)
    monitor.start(events)
    log.info("oom-notifier started")
    try:
        dispatch_events(events, notifier)
    finally:
        monitor.close()
    return 0


def main(argv: list[str] | None = None) -> None:
    """Main entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.version:
        from . import __version__

        sys.stdout.write(f"oom-notifier version {__version__}\n")
        raise SystemExit(0)

    configure_logging(level=args.log_level)
    rc = int(run(args))
    raise SystemExit(rc)
