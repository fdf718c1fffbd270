"""Tests for the background kmsg reader, using a regular file as the source."""

from __future__ import annotations

import time
from collections.abc import Callable
from pathlib import Path
from unittest.mock import patch

import pytest

from oom_notifier.errors import KernelLogUnavailable
from oom_notifier.kmsg import parse_kmsg_line
from oom_notifier.models import KmsgEntry
from oom_notifier.reader import KmsgReader


def _append(path: Path, *lines: str) -> None:
    with open(path, "a") as fh:
        for line in lines:
            fh.write(line + "\n")


def _wait_for(predicate: Callable[[], bool], timeout: float = 5.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


def _drain_until(reader: KmsgReader, count: int, timeout: float = 5.0) -> list[KmsgEntry]:
    got: list[KmsgEntry] = []

    def _done() -> bool:
        got.extend(reader.drain_available())
        return len(got) >= count

    _wait_for(_done, timeout)
    return got


@pytest.fixture
def kmsg_file(tmp_path: Path) -> Path:
    path = tmp_path / "kmsg"
    path.write_text("")
    return path


def test_missing_source_raises(tmp_path: Path) -> None:
    with pytest.raises(KernelLogUnavailable):
        KmsgReader(str(tmp_path / "does-not-exist"))


def test_backlog_is_skipped(kmsg_file: Path) -> None:
    _append(kmsg_file, "6,1,100;old message", "6,2,200;another old one")
    reader = KmsgReader(str(kmsg_file), idle_interval=0.01)
    try:
        _append(kmsg_file, "6,3,300;new message")
        entries = _drain_until(reader, 1)
        assert [e.message for e in entries] == ["new message"]
    finally:
        reader.close()


def test_drain_is_non_blocking_when_empty(kmsg_file: Path) -> None:
    reader = KmsgReader(str(kmsg_file), idle_interval=0.01)
    try:
        start = time.monotonic()
        assert reader.drain_available() == []
        assert time.monotonic() - start < 0.5
    finally:
        reader.close()


def test_malformed_lines_do_not_stop_the_reader(kmsg_file: Path) -> None:
    reader = KmsgReader(str(kmsg_file), idle_interval=0.01)
    try:
        _append(
            kmsg_file,
            "garbage without separator",
            " SUBSYSTEM=pci",
            "6,1;too few fields",
            "6,10,1000,-;first good",
            "x,y,z;bad numbers",
            "6,11,2000;second good",
        )
        entries = _drain_until(reader, 2)
        assert [(e.sequence, e.message) for e in entries] == [
            (10, "first good"),
            (11, "second good"),
        ]
    finally:
        reader.close()


def test_oversized_numbers_do_not_kill_the_reader(kmsg_file: Path) -> None:
    reader = KmsgReader(str(kmsg_file), idle_interval=0.01)
    try:
        _append(kmsg_file, "6," + "9" * 5000 + ",1;msg", "6,2,2;good")
        entries = _drain_until(reader, 1)
        assert [e.message for e in entries] == ["good"]
        assert reader._thread.is_alive()
    finally:
        reader.close()


def test_unexpected_parse_error_is_logged_and_skipped(kmsg_file: Path) -> None:
    def _parse(line: str):
        if "poison" in line:
            raise RuntimeError("parser bug")
        return parse_kmsg_line(line)

    with patch("oom_notifier.reader.parse_kmsg_line", side_effect=_parse):
        reader = KmsgReader(str(kmsg_file), idle_interval=0.01)
        try:
            _append(kmsg_file, "6,1,1;poison", "6,2,2;after")
            entries = _drain_until(reader, 1)
            assert [e.sequence for e in entries] == [2]
            assert reader._thread.is_alive()
        finally:
            reader.close()


def test_entries_arrive_in_order(kmsg_file: Path) -> None:
    reader = KmsgReader(str(kmsg_file), idle_interval=0.01)
    try:
        _append(kmsg_file, *[f"6,{i},{i * 10};msg {i}" for i in range(20)])
        entries = _drain_until(reader, 20)
        assert [e.sequence for e in entries] == list(range(20))
    finally:
        reader.close()


def test_backpressure_never_loses_entries(kmsg_file: Path) -> None:
    total = 250
    reader = KmsgReader(str(kmsg_file), queue_size=100, idle_interval=0.01)
    try:
        _append(kmsg_file, *[f"6,{i},{i};line {i}" for i in range(total)])
        assert _wait_for(lambda: reader.pending == 100)

        received: list[KmsgEntry] = []
        deadline = time.monotonic() + 10.0
        while len(received) < total and time.monotonic() < deadline:
            batch = reader.drain_available()
            assert len(batch) <= 100
            received.extend(batch)
            time.sleep(0.05)  # slow consumer

        assert [e.sequence for e in received] == list(range(total))
    finally:
        reader.close()


def test_close_unblocks_a_full_queue(kmsg_file: Path) -> None:
    reader = KmsgReader(str(kmsg_file), queue_size=2, idle_interval=0.01)
    _append(kmsg_file, *[f"6,{i},{i};x" for i in range(10)])
    assert _wait_for(lambda: reader.pending == 2)

    start = time.monotonic()
    reader.close()
    assert time.monotonic() - start < 1.0
    assert not reader._thread.is_alive()


def test_close_twice_is_safe(kmsg_file: Path) -> None:
    reader = KmsgReader(str(kmsg_file), idle_interval=0.01)
    reader.close()
    reader.close()
