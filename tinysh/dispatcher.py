"""Resolve an argument vector against the command table and run it."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Optional, Sequence

from tinysh.commands import CommandInvocation, CommandTable, ExecutionMode
from tinysh.process import ProcessExecutor
from tinysh.tokenizer import count_args

if TYPE_CHECKING:
    from tinysh.shell import ShellSession

LOGGER = logging.getLogger("tinysh.dispatcher")

STATUS_NOOP = -1
STATUS_NOT_FOUND = 127


def _displayable(word: str) -> str:
    # Undecodable input bytes arrive as lone surrogates; show them as U+FFFD.
    return word.encode("utf-8", "surrogateescape").decode("utf-8", "replace")


class Dispatcher:
    def __init__(
        self,
        table: CommandTable,
        executor: Optional[ProcessExecutor] = None,
    ) -> None:
        self.table = table
        self.executor = executor or ProcessExecutor()

    def execute(self, shell: "ShellSession", argv: Sequence[Optional[str]]) -> int:
        """Run the command named by ``argv[0]`` and return its exit status.

        INLINE entries run in this process so their side effects (working
        directory, environment, running state) stick; everything else goes
        through the :class:`ProcessExecutor`.
        """

        argc = count_args(argv)
        if argc == 0:
            return STATUS_NOOP

        words = [str(word) for word in argv[:argc]]
        entry = self.table.lookup(words[0])
        if entry is None:
            print(f"{_displayable(words[0])}: command not found")
            return STATUS_NOT_FOUND

        invocation = CommandInvocation(argc=argc, argv=words)
        LOGGER.debug("dispatching %s (%s)", entry.name, entry.mode.value)
        if entry.mode is ExecutionMode.FORKED:
            status = self.executor.run_forked(entry.handler, shell, invocation)
        else:
            status = entry.handler(shell, invocation)
        shell.record(invocation, entry.mode, status)
        return status
