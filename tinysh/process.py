"""Run builtin handlers in a forked child process."""

from __future__ import annotations

import logging
import os
import sys
import traceback
from dataclasses import dataclass
from typing import TYPE_CHECKING, Callable, Optional, Tuple

from tinysh.commands import CommandInvocation, Handler

if TYPE_CHECKING:
    from tinysh.shell import ShellSession

LOGGER = logging.getLogger("tinysh.process")

STATUS_FORK_FAILED = -1
# Exit status used when a handler raises inside the child.
STATUS_CHILD_CRASHED = 1

ForkFn = Callable[[], int]
WaitFn = Callable[[int, int], Tuple[int, int]]
ExitFn = Callable[[int], None]


def decode_status(status: int) -> int:
    """Translate a raw ``waitpid`` status into a shell exit code."""

    if os.WIFEXITED(status):
        return os.WEXITSTATUS(status)
    if os.WIFSIGNALED(status):
        return 128 + os.WTERMSIG(status)
    return status


def _flush_streams() -> None:
    for stream in (sys.stdout, sys.stderr):
        try:
            stream.flush()
        except (OSError, ValueError):
            pass


@dataclass
class ChildRecord:
    pid: int
    argv: Tuple[str, ...]
    status: Optional[int] = None
    stops: int = 0


class ProcessExecutor:
    """Fork-and-wait executor for FORKED builtins.

    ``fork`` and ``waitpid`` are the process-control primitives; tests swap
    them for fakes.
    """

    def __init__(
        self,
        *,
        fork: ForkFn = os.fork,
        waitpid: WaitFn = os.waitpid,
        child_exit: ExitFn = os._exit,
    ) -> None:
        self._fork = fork
        self._waitpid = waitpid
        self._child_exit = child_exit
        self.last_child: Optional[ChildRecord] = None

    def run_forked(
        self,
        handler: Handler,
        shell: "ShellSession",
        invocation: CommandInvocation,
    ) -> int:
        _flush_streams()
        try:
            pid = self._fork()
        except OSError as exc:
            print(f"fork: {exc.strerror or exc}", file=sys.stderr)
            LOGGER.error("fork failed for %s: %s", invocation.name, exc)
            return STATUS_FORK_FAILED

        if pid == 0:
            self._run_child(handler, shell, invocation)
            # Only reached when child_exit is a test double.
            return STATUS_CHILD_CRASHED

        record = ChildRecord(pid=pid, argv=tuple(invocation.argv))
        self.last_child = record
        LOGGER.debug("forked %s as pid %d", invocation.name, pid)
        return self._wait(record)

    def _run_child(
        self,
        handler: Handler,
        shell: "ShellSession",
        invocation: CommandInvocation,
    ) -> None:
        try:
            rc = handler(shell, invocation)
        except BaseException:  # the child must never fall back into the loop
            traceback.print_exc()
            _flush_streams()
            self._child_exit(STATUS_CHILD_CRASHED)
            return
        _flush_streams()
        self._child_exit(int(rc) & 0xFF)

    def _wait(self, record: ChildRecord) -> int:
        while True:
            try:
                _, status = self._waitpid(record.pid, os.WUNTRACED)
            except InterruptedError:
                continue
            except KeyboardInterrupt:
                # The child shares the terminal's process group and got the
                # same SIGINT; keep waiting so it is reaped.
                LOGGER.debug("interrupt while waiting on pid %d", record.pid)
                continue
            if os.WIFEXITED(status) or os.WIFSIGNALED(status):
                break
            if os.WIFSTOPPED(status):
                record.stops += 1
                LOGGER.debug(
                    "pid %d stopped by signal %d, still waiting",
                    record.pid,
                    os.WSTOPSIG(status),
                )
        record.status = decode_status(status)
        return record.status
