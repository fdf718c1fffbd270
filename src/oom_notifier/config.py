from __future__ import annotations

import os
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import TypeVar

T = TypeVar("T", int, float)

_FALSE_VALUES = frozenset({"0", "false", "no", "off"})


def _get_str(name: str, default: str) -> str:
    return os.getenv(name, default)


def _get_number(name: str, default: T, cast: Callable[[str], T]) -> T:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        return cast(raw)
    except ValueError:
        return default


def _get_int(name: str, default: int) -> int:
    return _get_number(name, default, int)


def _get_float(name: str, default: float) -> float:
    return _get_number(name, default, float)


def _get_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() not in _FALSE_VALUES


@dataclass(frozen=True, slots=True)
class Settings:
    # Slack delivery
    slack_webhook: str = field(default_factory=lambda: _get_str("SLACK_WEBHOOK", ""))
    slack_channel: str = field(default_factory=lambda: _get_str("SLACK_CHANNEL", "#alerts"))
    notify_timezone: str = field(default_factory=lambda: _get_str("NOTIFY_TIMEZONE", "UTC"))
    notify_timeout_seconds: float = field(
        default_factory=lambda: _get_float("NOTIFY_TIMEOUT_SECONDS", 10.0)
    )

    # Polling intervals
    process_refresh_seconds: float = field(
        default_factory=lambda: _get_float("PROCESS_REFRESH_SECONDS", 5.0)
    )
    kernel_log_refresh_seconds: float = field(
        default_factory=lambda: _get_float("KERNEL_LOG_REFRESH_SECONDS", 10.0)
    )

    # Host sources (override when running in a container with the host /proc mounted)
    proc_dir: str = field(default_factory=lambda: _get_str("PROC_DIR", "/proc"))
    kmsg_path: str = field(default_factory=lambda: _get_str("KMSG_PATH", "/dev/kmsg"))

    # Queue sizes
    kmsg_queue_size: int = field(default_factory=lambda: _get_int("KMSG_QUEUE_SIZE", 100))
    event_queue_size: int = field(default_factory=lambda: _get_int("EVENT_QUEUE_SIZE", 10))

    include_memory: bool = field(default_factory=lambda: _get_bool("INCLUDE_MEMORY", True))


settings = Settings()
