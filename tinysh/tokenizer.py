"""Split an input line into a sentinel-terminated argument vector."""

from __future__ import annotations

import logging
import re
import sys
from typing import List, Optional, Sequence

from tinysh.config import TOK_BUFSIZE

LOGGER = logging.getLogger("tinysh.tokenizer")

TOKEN_DELIMITERS = " \t\r\n\a"
_TOKEN_RE = re.compile(r"[^" + re.escape(TOKEN_DELIMITERS) + r"]+")

Argv = List[Optional[str]]


def _grow(slots: Argv, increment: int) -> None:
    slots.extend([None] * increment)


def split_line(line: str, *, bufsize: int = TOK_BUFSIZE) -> Optional[Argv]:
    """Return the tokens of *line* followed by a single ``None`` sentinel.

    Delimiter runs collapse, so no empty tokens are produced. ``None`` is
    returned when the slot array cannot grow.
    """

    capacity = bufsize
    position = 0
    try:
        slots: Argv = [None] * capacity
    except MemoryError:
        print("malloc: out of memory", file=sys.stderr)
        return None

    for match in _TOKEN_RE.finditer(line):
        slots[position] = match.group(0)
        position += 1

        if position >= capacity:
            try:
                _grow(slots, bufsize)
            except MemoryError:
                print("realloc: out of memory", file=sys.stderr)
                LOGGER.error("Token array growth past %d slots failed", capacity)
                return None
            capacity = len(slots)

    del slots[position + 1:]
    return slots


def count_args(argv: Sequence[Optional[str]]) -> int:
    """Count the tokens in *argv* up to its ``None`` sentinel."""

    argc = 0
    while argc < len(argv) and argv[argc] is not None:
        argc += 1
    return argc
