"""Kernel message (``/dev/kmsg``) record parsing and OOM classification.

Each record has the form::

    priority,sequence,timestamp[,flags...];message

for example::

    6,551,987654321,-;Out of memory: Killed process 4321 (python3) total-vm:...

Timestamps are microseconds since boot.
"""

from __future__ import annotations

import re

from .errors import MalformedEntry, NoPIDFound, PIDOverflow
from .models import KmsgEntry

_INT64_MIN = -(2**63)
_INT64_MAX = 2**63 - 1
_UINT64_MAX = 2**64 - 1

# Linux pid_t is a signed 32-bit int.
PID_MAX = 2**31 - 1

_SIGNED_RE = re.compile(r"[+-]?[0-9]+")
_UNSIGNED_RE = re.compile(r"[0-9]+")

# Significant digits in the largest int64 / uint64 / pid_t values. Longer
# runs are rejected before int(), which refuses very long strings.
_INT64_DIGITS = 19
_UINT64_DIGITS = 20
_PID_DIGITS = 10

# "Out of memory: Killed process 12345 (myapp) ..." and the memcg variant
# "Memory cgroup out of memory: Killed process ..."
_OOM_RE = re.compile(r"out of memory:", re.IGNORECASE)

# Applied to the lower-cased message.
_KILLED_PID_RE = re.compile(r"\bkilled process ([0-9]+)\b")


def _significant_digits(digits: str) -> int:
    return len(digits.lstrip("0"))


def _parse_signed(text: str, line: str, what: str) -> int:
    if not _SIGNED_RE.fullmatch(text):
        raise MalformedEntry(line, f"invalid {what} {text!r}")
    if _significant_digits(text.lstrip("+-")) > _INT64_DIGITS:
        raise MalformedEntry(line, f"{what} out of range")
    value = int(text)
    if not _INT64_MIN <= value <= _INT64_MAX:
        raise MalformedEntry(line, f"{what} out of range")
    return value


def _parse_unsigned(text: str, line: str, what: str) -> int:
    if not _UNSIGNED_RE.fullmatch(text):
        raise MalformedEntry(line, f"invalid {what} {text!r}")
    if _significant_digits(text) > _UINT64_DIGITS:
        raise MalformedEntry(line, f"{what} out of range")
    value = int(text)
    if value > _UINT64_MAX:
        raise MalformedEntry(line, f"{what} out of range")
    return value


def parse_kmsg_line(line: str) -> KmsgEntry:
    """Parse one kmsg record.

    Raises:
        MalformedEntry: the line has no ``;``, fewer than three metadata
            fields, or a metadata field that is not a valid integer.
    """
    header, sep, message = line.partition(";")
    if not sep:
        raise MalformedEntry(line, "missing ';' separator")

    fields = header.split(",")
    if len(fields) < 3:
        raise MalformedEntry(line, "expected at least 3 metadata fields")

    priority = _parse_signed(fields[0], line, "priority")
    sequence = _parse_unsigned(fields[1], line, "sequence number")
    # The timestamp may carry flags after it
    timestamp = _parse_unsigned(fields[2].split(",", 1)[0], line, "timestamp")

    return KmsgEntry(
        priority=priority,
        sequence=sequence,
        timestamp=timestamp,
        message=message,
    )


def is_oom_kill(entry: KmsgEntry) -> bool:
    return _OOM_RE.search(entry.message) is not None


def extract_pid(message: str) -> int:
    """Return the PID named by ``killed process <pid>`` in an OOM message."""
    m = _KILLED_PID_RE.search(message.lower())
    if m is None:
        raise NoPIDFound("no PID found in OOM message")
    digits = m.group(1)
    if _significant_digits(digits) > _PID_DIGITS or int(digits) > PID_MAX:
        raise PIDOverflow(f"PID {digits[:20]!r} does not fit pid_t")
    return int(digits)
