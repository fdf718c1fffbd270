"""
oom_notifier

Watch the kernel log for OOM kills and report which process died.

Distribution name = "oom-notifier", import package = "oom_notifier".
"""

from __future__ import annotations

from .models import KmsgEntry, OOMEvent
from .monitor import OOMMonitor

__all__ = ["__version__", "KmsgEntry", "OOMEvent", "OOMMonitor"]

__version__ = "0.1.0"
