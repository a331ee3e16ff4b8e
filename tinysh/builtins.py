"""Builtin command handlers and the static command table."""

from __future__ import annotations

import ctypes
import ctypes.util
import datetime as _dt
import errno
import math
import os
import re
import shutil
import signal
import stat as _stat
import sys
import time
from typing import TYPE_CHECKING, List, Optional

from tinysh.commands import CommandInvocation, CommandTable, ExecutionMode, command

if TYPE_CHECKING:
    from tinysh.shell import ShellSession

INLINE = ExecutionMode.INLINE

_KMSG_PREFIX_RE = re.compile(r"^\d+,\d+,\d+(?:,[^;]*)?;")


def _fail(name: str, exc: Exception, target: Optional[str] = None) -> int:
    reason = getattr(exc, "strerror", None) or str(exc)
    if target is not None:
        print(f"{name}: {target}: {reason}", file=sys.stderr)
    else:
        print(f"{name}: {reason}", file=sys.stderr)
    return 1


def _usage(usage: str) -> int:
    print(f"usage: {usage}", file=sys.stderr)
    return 2


def _format_time(value: float) -> str:
    return _dt.datetime.fromtimestamp(value, _dt.timezone.utc).isoformat().replace("+00:00", "Z")


# -------------------- shell state commands ------------------


@command(
    name="cd",
    summary="Change the shell's working directory",
    usage="cd [dir|-]",
    mode=INLINE,
)
def cd(shell: "ShellSession", invocation: CommandInvocation) -> int:
    if invocation.argc > 2:
        return _usage("cd [dir|-]")
    target = invocation.args[0] if invocation.args else os.environ.get("HOME", "/")
    if target == "-":
        target = os.environ.get("OLDPWD", "")
        if not target:
            print("cd: OLDPWD not set", file=sys.stderr)
            return 1
    previous = os.environ.get("PWD")
    try:
        os.chdir(target)
        cwd = os.getcwd()
    except (OSError, ValueError) as exc:
        return _fail("cd", exc, target)
    if previous is not None:
        os.environ["OLDPWD"] = previous
    os.environ["PWD"] = cwd
    return 0


@command(
    name="env",
    summary="Print, set or unset environment variables",
    usage="env [-u NAME] [NAME=VALUE ...]",
    mode=INLINE,
)
def env(shell: "ShellSession", invocation: CommandInvocation) -> int:
    if not invocation.args:
        for key, value in os.environ.items():
            print(f"{key}={value}")
        return 0

    args = list(invocation.args)
    while args:
        word = args.pop(0)
        try:
            if word == "-u":
                if not args:
                    return _usage("env [-u NAME] [NAME=VALUE ...]")
                word = args.pop(0)
                os.environ.pop(word, None)
            elif "=" in word and not word.startswith("="):
                key, _, value = word.partition("=")
                os.environ[key] = value
            else:
                return _usage("env [-u NAME] [NAME=VALUE ...]")
        except ValueError as exc:
            return _fail("env", exc, word)
    return 0


@command(
    name="exit",
    summary="Leave the shell",
    usage="exit [code]",
    mode=INLINE,
)
def exit_command(shell: "ShellSession", invocation: CommandInvocation) -> int:
    shell.request_exit()
    if not invocation.args:
        return shell.last_status
    try:
        return int(invocation.args[0])
    except ValueError:
        print(f"exit: {invocation.args[0]}: numeric argument required", file=sys.stderr)
        return 2


@command(
    name="jailbreak",
    summary="Raise the shell's own credentials to root",
    usage="jailbreak",
    mode=INLINE,
)
def jailbreak(shell: "ShellSession", invocation: CommandInvocation) -> int:
    try:
        os.setgid(0)
        os.setuid(0)
    except OSError as exc:
        return _fail("jailbreak", exc)
    print(f"uid={os.getuid()} gid={os.getgid()}")
    return 0


# -------------------- filesystem commands -------------------


@command(
    name="cp",
    summary="Copy a file",
    usage="cp <source> <destination>",
)
def cp(shell: "ShellSession", invocation: CommandInvocation) -> int:
    if invocation.argc != 3:
        return _usage("cp <source> <destination>")
    src, dst = invocation.args
    try:
        shutil.copy(src, dst)
    except IsADirectoryError:
        print(f"cp: {src}: Is a directory", file=sys.stderr)
        return 1
    except OSError as exc:
        return _fail("cp", exc, exc.filename or src)
    return 0


def _long_entry(path: str, name: str) -> str:
    info = os.lstat(path)
    return (
        f"{_stat.filemode(info.st_mode)} {info.st_nlink:3d} {info.st_uid:5d} "
        f"{info.st_gid:5d} {info.st_size:9d} {name}"
    )


@command(
    name="ls",
    summary="List directory contents",
    usage="ls [-a] [-l] [path ...]",
)
def ls(shell: "ShellSession", invocation: CommandInvocation) -> int:
    show_all = False
    long_format = False
    paths: List[str] = []
    for word in invocation.args:
        if word.startswith("-") and len(word) > 1:
            for flag in word[1:]:
                if flag == "a":
                    show_all = True
                elif flag == "l":
                    long_format = True
                else:
                    print(f"ls: invalid option -- '{flag}'", file=sys.stderr)
                    return _usage("ls [-a] [-l] [path ...]")
        else:
            paths.append(word)
    if not paths:
        paths = ["."]

    status = 0
    for index, path in enumerate(paths):
        try:
            if not os.path.isdir(path):
                os.lstat(path)
                print(_long_entry(path, path) if long_format else path)
                continue
            names = sorted(os.listdir(path))
        except OSError as exc:
            status = _fail("ls", exc, path)
            continue
        if len(paths) > 1:
            if index:
                print()
            print(f"{path}:")
        if show_all:
            names = [".", ".."] + names
        for name in names:
            if name.startswith(".") and not show_all:
                continue
            if long_format:
                try:
                    print(_long_entry(os.path.join(path, name), name))
                except OSError as exc:
                    status = _fail("ls", exc, name)
            else:
                print(name)
    return status


@command(
    name="mkdir",
    summary="Create directories",
    usage="mkdir <dir> ...",
)
def mkdir(shell: "ShellSession", invocation: CommandInvocation) -> int:
    if not invocation.args:
        return _usage("mkdir <dir> ...")
    status = 0
    for path in invocation.args:
        try:
            os.mkdir(path, 0o777)
        except OSError as exc:
            status = _fail("mkdir", exc, path)
    return status


@command(
    name="rmdir",
    summary="Remove empty directories",
    usage="rmdir <dir> ...",
)
def rmdir(shell: "ShellSession", invocation: CommandInvocation) -> int:
    if not invocation.args:
        return _usage("rmdir <dir> ...")
    status = 0
    for path in invocation.args:
        try:
            os.rmdir(path)
        except OSError as exc:
            status = _fail("rmdir", exc, path)
    return status


@command(
    name="pwd",
    summary="Print the working directory",
    usage="pwd",
)
def pwd(shell: "ShellSession", invocation: CommandInvocation) -> int:
    try:
        print(os.getcwd())
    except OSError as exc:
        return _fail("pwd", exc)
    return 0


@command(
    name="stat",
    summary="Display file status",
    usage="stat <path> ...",
)
def stat(shell: "ShellSession", invocation: CommandInvocation) -> int:
    if not invocation.args:
        return _usage("stat <path> ...")
    status = 0
    for path in invocation.args:
        try:
            info = os.lstat(path)
        except OSError as exc:
            status = _fail("stat", exc, path)
            continue
        print(f"  File: {path}")
        print(f"  Size: {info.st_size}\tBlocks: {getattr(info, 'st_blocks', 0)}\tLinks: {info.st_nlink}")
        print(f"Device: {info.st_dev}\tInode: {info.st_ino}")
        print(f"Access: ({_stat.S_IMODE(info.st_mode):04o}/{_stat.filemode(info.st_mode)})\tUid: {info.st_uid}\tGid: {info.st_gid}")
        print(f"Access: {_format_time(info.st_atime)}")
        print(f"Modify: {_format_time(info.st_mtime)}")
        print(f"Change: {_format_time(info.st_ctime)}")
    return status


def _libc_mount(source: str, target: str, fstype: str, flags: int = 0) -> None:
    if not sys.platform.startswith("linux"):
        raise OSError(errno.ENOSYS, os.strerror(errno.ENOSYS))
    libc = ctypes.CDLL(ctypes.util.find_library("c"), use_errno=True)
    result = libc.mount(
        source.encode(),
        target.encode(),
        fstype.encode(),
        ctypes.c_ulong(flags),
        None,
    )
    if result != 0:
        err = ctypes.get_errno()
        raise OSError(err, os.strerror(err), target)


@command(
    name="mount",
    summary="List or create mounts",
    usage="mount [-t <type> <source> <target>]",
)
def mount(shell: "ShellSession", invocation: CommandInvocation) -> int:
    if not invocation.args:
        try:
            with open(shell.config.mounts_path, "r", encoding="utf-8", errors="replace") as handle:
                sys.stdout.write(handle.read())
        except OSError as exc:
            return _fail("mount", exc, str(shell.config.mounts_path))
        return 0
    if invocation.argc != 5 or invocation.args[0] != "-t":
        return _usage("mount [-t <type> <source> <target>]")
    fstype, source, target = invocation.args[1:]
    try:
        _libc_mount(source, target, fstype)
    except OSError as exc:
        return _fail("mount", exc, target)
    return 0


# -------------------- process and system commands -----------


def _read_kernel_buffer(path: str) -> bytes:
    chunks: List[bytes] = []
    fd = os.open(path, os.O_RDONLY | os.O_NONBLOCK)
    try:
        while True:
            try:
                chunk = os.read(fd, 8192)
            except BlockingIOError:
                break
            except BrokenPipeError:
                # /dev/kmsg: the record was overwritten before we got to it.
                continue
            if not chunk:
                break
            chunks.append(chunk)
    finally:
        os.close(fd)
    return b"".join(chunks)


@command(
    name="dmesg",
    summary="Print the kernel message buffer",
    usage="dmesg",
)
def dmesg(shell: "ShellSession", invocation: CommandInvocation) -> int:
    path = str(shell.config.klog_path)
    try:
        data = _read_kernel_buffer(path)
    except OSError as exc:
        return _fail("dmesg", exc, path)
    for line in data.decode("utf-8", "replace").splitlines():
        print(_KMSG_PREFIX_RE.sub("", line, count=1))
    return 0


@command(
    name="help",
    summary="List available commands",
    usage="help [command]",
)
def help_command(shell: "ShellSession", invocation: CommandInvocation) -> int:
    if invocation.args:
        entry = shell.table.lookup(invocation.args[0])
        if entry is None:
            print(f"help: no such command: {invocation.args[0]}", file=sys.stderr)
            return 1
        print(f"{entry.name} ({entry.mode.value}) - {entry.summary}")
        print(f"usage: {entry.usage}")
        return 0
    print("Available commands are:")
    for name in shell.table.names():
        print(f"  {name}")
    return 0


@command(
    name="id",
    summary="Print user and group ids",
    usage="id",
)
def id_command(shell: "ShellSession", invocation: CommandInvocation) -> int:
    groups = ",".join(str(gid) for gid in os.getgroups())
    print(
        f"uid={os.getuid()} gid={os.getgid()} euid={os.geteuid()} "
        f"egid={os.getegid()} groups={groups}"
    )
    return 0


def _parse_signal(word: str) -> int:
    name = word.upper()
    if name.isdigit():
        return int(name)
    if not name.startswith("SIG"):
        name = "SIG" + name
    return signal.Signals[name].value


@command(
    name="kill",
    summary="Send a signal to processes",
    usage="kill [-SIGNAL] <pid> ...",
)
def kill(shell: "ShellSession", invocation: CommandInvocation) -> int:
    args = list(invocation.args)
    sig = int(signal.SIGTERM)
    if args and args[0].startswith("-"):
        try:
            sig = _parse_signal(args.pop(0)[1:])
        except (KeyError, ValueError):
            print(f"kill: {invocation.args[0]}: invalid signal", file=sys.stderr)
            return 1
    if not args:
        return _usage("kill [-SIGNAL] <pid> ...")
    status = 0
    for word in args:
        try:
            pid = int(word)
        except ValueError:
            print(f"kill: {word}: arguments must be process ids", file=sys.stderr)
            status = 1
            continue
        try:
            os.kill(pid, sig)
        except OSError as exc:
            status = _fail("kill", exc, word)
    return status


@command(
    name="sleep",
    summary="Pause for a number of seconds",
    usage="sleep <seconds>",
)
def sleep(shell: "ShellSession", invocation: CommandInvocation) -> int:
    if invocation.argc != 2:
        return _usage("sleep <seconds>")
    try:
        seconds = float(invocation.args[0])
    except ValueError:
        print(f"sleep: invalid time interval '{invocation.args[0]}'", file=sys.stderr)
        return 1
    if seconds < 0 or not math.isfinite(seconds):
        print(f"sleep: invalid time interval '{invocation.args[0]}'", file=sys.stderr)
        return 1
    time.sleep(seconds)
    return 0


_UNAME_FIELDS = {
    "s": "sysname",
    "n": "nodename",
    "r": "release",
    "v": "version",
    "m": "machine",
}


@command(
    name="uname",
    summary="Print system information",
    usage="uname [-asnrvm]",
)
def uname(shell: "ShellSession", invocation: CommandInvocation) -> int:
    selected: List[str] = []
    for word in invocation.args:
        if not word.startswith("-") or len(word) < 2:
            return _usage("uname [-asnrvm]")
        for flag in word[1:]:
            if flag == "a":
                selected.extend(key for key in _UNAME_FIELDS if key not in selected)
            elif flag in _UNAME_FIELDS:
                if flag not in selected:
                    selected.append(flag)
            else:
                print(f"uname: invalid option -- '{flag}'", file=sys.stderr)
                return _usage("uname [-asnrvm]")
    if not selected:
        selected = ["s"]
    info = os.uname()
    order = [key for key in _UNAME_FIELDS if key in selected]
    print(" ".join(getattr(info, _UNAME_FIELDS[key]) for key in order))
    return 0


# -------------------- command table -------------------------

BUILTINS = (
    cd,
    cp,
    dmesg,
    env,
    exit_command,
    help_command,
    id_command,
    jailbreak,
    kill,
    ls,
    mkdir,
    mount,
    pwd,
    rmdir,
    sleep,
    stat,
    uname,
)


def create_command_table() -> CommandTable:
    return CommandTable.from_handlers(BUILTINS)
