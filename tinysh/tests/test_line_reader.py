from __future__ import annotations

import errno
import os
from typing import Iterable

from tinysh.line_reader import LineReader


class _ByteSource:
    """Feed bytes to a LineReader, optionally failing on chosen calls."""

    def __init__(self, data: bytes, *, interrupts: Iterable[int] = (), error_at: int = 0) -> None:
        self._data = data
        self._pos = 0
        self._interrupts = set(interrupts)
        self._error_at = error_at
        self.calls = 0

    def read(self, fd: int, size: int) -> bytes:
        self.calls += 1
        if self.calls in self._interrupts:
            raise InterruptedError(errno.EINTR, "Interrupted system call")
        if self.calls == self._error_at:
            raise OSError(errno.EIO, "Input/output error")
        chunk = self._data[self._pos:self._pos + size]
        self._pos += len(chunk)
        return chunk


def test_short_line_is_returned_without_newline() -> None:
    reader = LineReader(read=_ByteSource(b"ls -a /\n").read)

    assert reader.readline() == "ls -a /"
    assert reader.eof is False


def test_long_line_survives_several_growth_steps() -> None:
    payload = "x" * 5000 + " tail"
    reader = LineReader(bufsize=1024, read=_ByteSource(payload.encode() + b"\n").read)

    assert reader.readline() == payload


def test_line_exactly_filling_initial_buffer() -> None:
    reader = LineReader(bufsize=4, read=_ByteSource(b"abcd\nefghijkl\n").read)

    assert reader.readline() == "abcd"
    assert reader.readline() == "efghijkl"


def test_empty_line_is_distinct_from_no_line() -> None:
    reader = LineReader(read=_ByteSource(b"\n").read)

    assert reader.readline() == ""
    assert reader.eof is False
    assert reader.readline() is None
    assert reader.eof is True


def test_interrupted_reads_are_retried_without_losing_bytes() -> None:
    source = _ByteSource(b"sleep 1\n", interrupts=(1, 3, 4))
    reader = LineReader(read=source.read)

    assert reader.readline() == "sleep 1"
    assert source.calls == 8 + 3


def test_partial_line_at_end_of_stream_is_discarded() -> None:
    reader = LineReader(read=_ByteSource(b"uname").read)

    assert reader.readline() is None
    assert reader.eof is True


def test_read_error_is_treated_as_end_of_stream() -> None:
    reader = LineReader(read=_ByteSource(b"pwd\n", error_at=2).read)

    assert reader.readline() is None
    assert reader.eof is True


def test_growth_failure_reports_no_line(monkeypatch, capsys) -> None:
    reader = LineReader(bufsize=4, read=_ByteSource(b"abcdefgh\n").read)

    def _fail(buffer: bytearray) -> None:
        raise MemoryError

    monkeypatch.setattr(reader, "_grow", _fail)

    assert reader.readline() is None
    assert reader.eof is False
    assert "realloc" in capsys.readouterr().err


def test_reads_from_a_real_pipe() -> None:
    read_fd, write_fd = os.pipe()
    try:
        os.write(write_fd, b"mkdir  /tmp/a\ncd\n")
        os.close(write_fd)
        reader = LineReader(read_fd)
        assert reader.readline() == "mkdir  /tmp/a"
        assert reader.readline() == "cd"
        assert reader.readline() is None
        assert reader.eof is True
    finally:
        os.close(read_fd)


def test_non_utf8_bytes_are_preserved() -> None:
    reader = LineReader(read=_ByteSource(b"ls \xff\n").read)

    line = reader.readline()

    assert line is not None
    assert line.encode("utf-8", "surrogateescape") == b"ls \xff"
