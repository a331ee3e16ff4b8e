"""Byte-at-a-time line reader with a growable buffer."""

from __future__ import annotations

import logging
import os
import sys
from typing import Callable, Optional

from tinysh.config import LINE_BUFSIZE

LOGGER = logging.getLogger("tinysh.line_reader")

ReadFn = Callable[[int, int], bytes]


class LineReader:
    """Read newline-terminated lines from a raw file descriptor.

    ``readline`` returns ``None`` for "no line". Callers tell end of stream
    apart from a buffer growth failure through :attr:`eof`.
    """

    def __init__(
        self,
        fd: int = 0,
        *,
        bufsize: int = LINE_BUFSIZE,
        read: ReadFn = os.read,
    ) -> None:
        self.fd = fd
        self.bufsize = bufsize
        self.eof = False
        self._read = read

    def _grow(self, buffer: bytearray) -> None:
        buffer.extend(bytes(self.bufsize))

    def _read_byte(self) -> bytes:
        while True:
            try:
                return self._read(self.fd, 1)
            except InterruptedError:
                continue

    def readline(self) -> Optional[str]:
        capacity = self.bufsize
        position = 0
        try:
            buffer = bytearray(capacity)
        except MemoryError:
            print("malloc: out of memory", file=sys.stderr)
            LOGGER.error("Unable to allocate a %d byte line buffer", capacity)
            return None

        while True:
            try:
                chunk = self._read_byte()
            except OSError as exc:
                LOGGER.warning("read(%d) failed: %s", self.fd, exc.strerror or exc)
                self.eof = True
                return None

            if not chunk:
                self.eof = True
                return None

            if chunk == b"\n":
                return bytes(buffer[:position]).decode("utf-8", "surrogateescape")

            buffer[position] = chunk[0]
            position += 1

            if position >= capacity:
                try:
                    self._grow(buffer)
                except MemoryError:
                    print("realloc: out of memory", file=sys.stderr)
                    LOGGER.error("Line buffer growth past %d bytes failed", capacity)
                    del buffer
                    return None
                capacity = len(buffer)

