from __future__ import annotations

import errno
import os
import signal
from typing import List, Sequence, Tuple

import pytest

from tinysh.commands import CommandInvocation
from tinysh.config import ShellConfig
from tinysh.process import (
    STATUS_CHILD_CRASHED,
    STATUS_FORK_FAILED,
    ProcessExecutor,
    decode_status,
)
from tinysh.shell import ShellSession


def _exited(code: int) -> int:
    return (code & 0xFF) << 8


def _stopped(sig: int) -> int:
    return (sig << 8) | 0x7F


def _signaled(sig: int) -> int:
    return sig


class _FakeWait:
    def __init__(self, statuses: Sequence[object]) -> None:
        self._statuses = list(statuses)
        self.calls: List[Tuple[int, int]] = []

    def __call__(self, pid: int, options: int) -> Tuple[int, int]:
        self.calls.append((pid, options))
        status = self._statuses.pop(0)
        if isinstance(status, BaseException):
            raise status
        return pid, int(status)


def _never_wait(pid: int, options: int) -> Tuple[int, int]:
    raise AssertionError("waitpid must not be called")


def _invocation(*argv: str) -> CommandInvocation:
    return CommandInvocation(argc=len(argv), argv=list(argv))


@pytest.fixture
def session() -> ShellSession:
    shell = ShellSession(ShellConfig(banner=False))
    yield shell
    shell.close()


def test_parent_waits_through_stop_notifications(session: ShellSession) -> None:
    waiter = _FakeWait([_stopped(signal.SIGTSTP), _stopped(signal.SIGSTOP), _exited(3)])
    executor = ProcessExecutor(fork=lambda: 4242, waitpid=waiter)

    status = executor.run_forked(lambda shell, inv: 0, session, _invocation("ls", "/"))

    assert status == 3
    assert waiter.calls == [(4242, os.WUNTRACED)] * 3
    assert executor.last_child.pid == 4242
    assert executor.last_child.stops == 2
    assert executor.last_child.argv == ("ls", "/")


def test_signal_termination_maps_to_128_plus_signal(session: ShellSession) -> None:
    executor = ProcessExecutor(fork=lambda: 77, waitpid=_FakeWait([_signaled(signal.SIGKILL)]))

    status = executor.run_forked(lambda shell, inv: 0, session, _invocation("sleep", "100"))

    assert status == 128 + signal.SIGKILL


def test_interrupted_wait_is_retried(session: ShellSession) -> None:
    waiter = _FakeWait([InterruptedError(errno.EINTR, "Interrupted"), _exited(0)])
    executor = ProcessExecutor(fork=lambda: 5, waitpid=waiter)

    assert executor.run_forked(lambda shell, inv: 0, session, _invocation("pwd")) == 0
    assert len(waiter.calls) == 2


def test_fork_failure_reports_and_does_not_wait(session: ShellSession, capsys) -> None:
    def _fork() -> int:
        raise OSError(errno.EAGAIN, "Resource temporarily unavailable")

    executor = ProcessExecutor(fork=_fork, waitpid=_never_wait)

    status = executor.run_forked(lambda shell, inv: 0, session, _invocation("ls"))

    assert status == STATUS_FORK_FAILED
    assert status < 0
    assert "fork: Resource temporarily unavailable" in capsys.readouterr().err
    assert executor.last_child is None


def test_child_branch_exits_with_handler_status(session: ShellSession) -> None:
    exits: List[int] = []
    executor = ProcessExecutor(fork=lambda: 0, waitpid=_never_wait, child_exit=exits.append)

    executor.run_forked(lambda shell, inv: 300, session, _invocation("id"))

    assert exits == [300 & 0xFF]


def test_child_branch_handler_crash_exits_nonzero(session: ShellSession, capsys) -> None:
    exits: List[int] = []
    executor = ProcessExecutor(fork=lambda: 0, waitpid=_never_wait, child_exit=exits.append)

    def _boom(shell, inv) -> int:
        raise RuntimeError("handler exploded")

    executor.run_forked(_boom, session, _invocation("stat"))

    assert exits == [STATUS_CHILD_CRASHED]
    assert "handler exploded" in capsys.readouterr().err


def test_real_fork_relays_exit_code_and_output(session: ShellSession, capfd) -> None:
    def _handler(shell, invocation: CommandInvocation) -> int:
        print(f"child says {' '.join(invocation.args)}")
        return 7

    status = ProcessExecutor().run_forked(_handler, session, _invocation("echo", "hi"))

    assert status == 7
    assert capfd.readouterr().out.count("child says hi") == 1


def test_real_fork_crash_cannot_reach_the_parent(session: ShellSession, capfd) -> None:
    parent = os.getpid()

    def _handler(shell, invocation: CommandInvocation) -> int:
        os.kill(os.getpid(), signal.SIGKILL)
        return 0

    status = ProcessExecutor().run_forked(_handler, session, _invocation("kill"))

    assert os.getpid() == parent
    assert status == 128 + signal.SIGKILL


def test_handler_state_changes_stay_in_the_child(session: ShellSession) -> None:
    def _handler(shell: ShellSession, invocation: CommandInvocation) -> int:
        shell.running = False
        return 0

    assert ProcessExecutor().run_forked(_handler, session, _invocation("help")) == 0
    assert session.running is True


def test_decode_status() -> None:
    assert decode_status(_exited(0)) == 0
    assert decode_status(_exited(255)) == 255
    assert decode_status(_signaled(signal.SIGTERM)) == 128 + signal.SIGTERM
