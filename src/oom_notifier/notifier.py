"""Downstream delivery of OOM events (Slack webhook, stdout)."""

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any, TextIO
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import requests
from requests.exceptions import RequestException

from .errors import NotificationError
from .models import OOMEvent

log = logging.getLogger(__name__)


def _resolve_zone(tz_name: str) -> tuple[Any, str]:
    try:
        return ZoneInfo(tz_name), tz_name
    except (ZoneInfoNotFoundError, ValueError):
        log.warning("unknown timezone %r, falling back to UTC", tz_name)
        return timezone.utc, "UTC"


class SlackNotifier:
    """Post OOM events to a Slack incoming webhook."""

    def __init__(
        self,
        webhook_url: str,
        channel: str = "#alerts",
        *,
        timeout: float = 10.0,
        tz_name: str = "UTC",
        session: requests.Session | None = None,
    ) -> None:
        self.webhook_url = webhook_url
        self.channel = channel
        self.timeout = timeout
        self._tz, self._tz_label = _resolve_zone(tz_name)
        self.session = session or requests.Session()

    def format_time(self, time_ms: int) -> str:
        when = datetime.fromtimestamp(time_ms / 1000, tz=timezone.utc).astimezone(self._tz)
        return f"{when:%Y-%m-%d %H:%M:%S} {self._tz_label}"

    def build_payload(self, event: OOMEvent) -> dict[str, Any]:
        fields = [
            {"title": "Process Command", "value": event.cmdline, "short": False},
            {"title": "Process ID", "value": event.pid, "short": True},
            {"title": "Hostname", "value": event.hostname, "short": True},
            {"title": "Kernel Version", "value": event.kernel, "short": True},
            {
                "title": f"Time ({self._tz_label})",
                "value": self.format_time(event.time_ms),
                "short": True,
            },
        ]
        if event.memory_percent is not None:
            fields.append(
                {"title": "Host Memory", "value": f"{event.memory_percent:.1f}%", "short": True}
            )

        return {
            "channel": self.channel,
            "text": "OOM Killer Alert",
            "username": "oom-notifier",
            "icon_emoji": ":firecracker:",
            "attachments": [
                {
                    "color": "danger",
                    "title": "Out of Memory (OOM) Event Detected",
                    "fields": fields,
                }
            ],
        }

    def notify(self, event: OOMEvent) -> None:
        """Send *event*; raise NotificationError if Slack did not accept it."""
        payload = self.build_payload(event)
        try:
            response = self.session.post(self.webhook_url, json=payload, timeout=self.timeout)
        except RequestException as exc:
            raise NotificationError(f"failed to send slack notification: {exc}") from exc

        if response.status_code != 200:
            raise NotificationError(f"slack API returned non-200 status: {response.status_code}")


class StdoutNotifier:
    """Write each event as a JSON line (``--dry-run``)."""

    def __init__(self, stream: TextIO | None = None) -> None:
        self.stream = stream or sys.stdout

    def notify(self, event: OOMEvent) -> None:
        self.stream.write(json.dumps(event.to_dict(), ensure_ascii=False) + "\n")
        self.stream.flush()
