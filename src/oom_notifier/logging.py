from __future__ import annotations

import json
import logging
import os
import sys
from datetime import datetime, timezone
from typing import Any


_CONFIGURED = False

# Structured fields callers pass through ``extra=``.
_EXTRA_KEYS = ("pid", "cmdline", "hostname", "path")

_TEXT_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": datetime.now(timezone.utc).isoformat(timespec="milliseconds"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for key in _EXTRA_KEYS:
            if hasattr(record, key):
                payload[key] = getattr(record, key)

        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)

        return json.dumps(payload, ensure_ascii=False, separators=(",", ":"))


def resolve_level(level: str | None = None) -> str:
    """Pick the log level from the argument, LOG_LEVEL, LOGGING_LEVEL, else INFO.

    Unknown names fall back to INFO rather than failing startup.
    """
    name = (level or os.getenv("LOG_LEVEL") or os.getenv("LOGGING_LEVEL") or "INFO").upper()
    if name == "WARN":
        name = "WARNING"
    if not isinstance(logging.getLevelName(name), int):
        return "INFO"
    return name


def build_formatter(fmt: str | None = None) -> logging.Formatter:
    """``json`` (default) or ``text`` from the argument or LOG_FORMAT."""
    choice = (fmt or os.getenv("LOG_FORMAT") or "json").lower()
    if choice == "text":
        return logging.Formatter(_TEXT_FORMAT)
    return JsonFormatter()


def configure_logging(*, level: str | None = None, fmt: str | None = None) -> None:
    """Idempotent logging setup.

    - One record per line on stdout (JSON unless LOG_FORMAT=text).
    - Respects LOG_LEVEL (or LOGGING_LEVEL) env var.
    """
    global _CONFIGURED
    if _CONFIGURED:
        return

    log_level = resolve_level(level)
    root = logging.getLogger()
    root.setLevel(log_level)

    # Replace handlers so nothing configured earlier double logs.
    root.handlers.clear()

    handler = logging.StreamHandler(stream=sys.stdout)
    handler.setLevel(log_level)
    handler.setFormatter(build_formatter(fmt))
    root.addHandler(handler)

    _CONFIGURED = True
