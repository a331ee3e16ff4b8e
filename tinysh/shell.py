#!/usr/bin/env python3
"""Interactive tinysh command shell: prompt, read, split, dispatch."""

from __future__ import annotations

import argparse
import logging
import os
import sys
from pathlib import Path
from typing import MutableMapping, Optional, Sequence, TextIO

from tinysh.builtins import create_command_table
from tinysh.commands import CommandInvocation, CommandTable, ExecutionMode
from tinysh.config import ConfigError, ShellConfig, configure_logging
from tinysh.dispatcher import STATUS_NOOP, Dispatcher
from tinysh.line_reader import LineReader
from tinysh.process import ProcessExecutor
from tinysh.tokenizer import count_args, split_line
from tinysh.transcript import TranscriptError, TranscriptLogger

SHELL_NAME = "tinysh 0.1.0"
PROMPT_DELIMITER = "$ "
PROMPT_PLACEHOLDER = "(null)"


def ensure_environment(environ: Optional[MutableMapping[str, str]] = None) -> None:
    """Default ``HOME`` and ``PWD`` to ``/`` without overriding them."""

    env = os.environ if environ is None else environ
    env.setdefault("HOME", "/")
    env.setdefault("PWD", "/")


def current_directory(environ: Optional[MutableMapping[str, str]] = None) -> str:
    env = os.environ if environ is None else environ
    cwd = env.get("PWD")
    if cwd:
        return cwd
    try:
        return os.getcwd()
    except OSError:
        return PROMPT_PLACEHOLDER


def _set_unbuffered(stream: TextIO, enabled: bool) -> None:
    """Switch ``stream`` to write-through while input is being read.

    Write-through only bypasses the text layer. The binary buffer underneath
    still holds data until it is flushed, so the stream is flushed down to
    the descriptor here and the prompt is on screen before the read starts.
    """

    reconfigure = getattr(stream, "reconfigure", None)
    if reconfigure is None:
        stream.flush()
        return
    if enabled:
        reconfigure(write_through=True)
        stream.flush()
    else:
        reconfigure(write_through=False, line_buffering=True)


def _flush_all() -> None:
    for stream in (sys.stdout, sys.stderr):
        stream.flush()


# ---------------------------------------------------------------------------
# Shell session
# ---------------------------------------------------------------------------


class ShellSession:
    """Process-wide mutable shell state shared with the inline builtins."""

    def __init__(
        self,
        config: Optional[ShellConfig] = None,
        *,
        table: Optional[CommandTable] = None,
        executor: Optional[ProcessExecutor] = None,
    ) -> None:
        self.config = config or ShellConfig()
        self.table = table or create_command_table()
        self.dispatcher = Dispatcher(self.table, executor)
        self.running = True
        self.last_status = 0
        self.logger = logging.getLogger("tinysh.shell")
        self.transcript: Optional[TranscriptLogger] = None
        if self.config.transcript_dir is not None:
            try:
                self.transcript = TranscriptLogger(self.config.transcript_dir)
            except TranscriptError as exc:
                self.logger.error("Transcript disabled: %s", exc)

    # -------------------- state helpers -----------------------
    def request_exit(self) -> None:
        self.running = False

    def record(self, invocation: CommandInvocation, mode: ExecutionMode, status: int) -> None:
        if self.transcript is None:
            return
        try:
            self.transcript.log(
                {
                    "argv": invocation.argv,
                    "mode": mode.value,
                    "status": status,
                    "cwd": current_directory(),
                }
            )
        except TranscriptError as exc:
            self.logger.error("Failed to record transcript entry, disabling: %s", exc)
            self.transcript = None

    # -------------------- line execution ----------------------
    def run_line(self, line: str) -> int:
        argv = split_line(line, bufsize=self.config.tok_bufsize)
        if argv is None:
            return STATUS_NOOP
        try:
            status = self.dispatcher.execute(self, argv)
            if count_args(argv):
                self.last_status = status
            return status
        finally:
            del argv

    def close(self) -> None:
        if self.transcript is not None:
            self.transcript.close()
            self.transcript = None


# ---------------------------------------------------------------------------
# REPL loop
# ---------------------------------------------------------------------------


class Shell:
    def __init__(self, session: ShellSession, reader: Optional[LineReader] = None) -> None:
        self.session = session
        self.reader = reader or LineReader(0, bufsize=session.config.line_bufsize)

    def prompt(self) -> str:
        return current_directory() + PROMPT_DELIMITER

    def banner(self) -> str:
        return f"\nWelcome to {SHELL_NAME}\nType 'help' for a list of commands\n\n"

    def run(self) -> int:
        """Loop until ``exit`` or end of input; return the last exit status."""

        if self.session.config.banner:
            sys.stdout.write(self.banner())
        ensure_environment()

        while self.session.running:
            line: Optional[str] = None
            try:
                sys.stdout.write(self.prompt())
                _set_unbuffered(sys.stdout, True)
                try:
                    line = self.reader.readline()
                finally:
                    _set_unbuffered(sys.stdout, False)

                if line is None:
                    if self.reader.eof:
                        sys.stdout.write("\n")
                        self.session.request_exit()
                    continue
                self.session.run_line(line)
            except KeyboardInterrupt:
                sys.stdout.write("\n")
            except Exception as exc:
                self.session.logger.exception("Command line failed: %r", line)
                print(f"tinysh: {exc}", file=sys.stderr)
            finally:
                _flush_all()
                del line
        return self.session.last_status


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def main(argv: Optional[Sequence[str]] = None) -> int:
    args_list = list(sys.argv[1:] if argv is None else argv)
    parser = argparse.ArgumentParser(prog="tinysh", add_help=True)
    parser.add_argument("--script", dest="script", metavar="PATH", help="Read commands from a file instead of stdin")
    parser.add_argument("--no-banner", dest="no_banner", action="store_true", help="Do not print the welcome banner")
    parser.add_argument("--log-level", dest="log_level", metavar="LEVEL", help="Logging level for diagnostics on stderr")
    parser.add_argument("--transcript", dest="transcript", metavar="DIR", help="Record dispatched commands as JSONL in DIR")
    parser.add_argument("command", nargs=argparse.REMAINDER, help="Command to execute non-interactively")
    parsed = parser.parse_args(args_list)

    try:
        config = ShellConfig.from_env().with_overrides(
            log_level=parsed.log_level.upper() if parsed.log_level else None,
            transcript_dir=Path(parsed.transcript) if parsed.transcript else None,
            banner=False if parsed.no_banner or parsed.script or parsed.command else None,
        )
        configure_logging(config.log_level)
    except ConfigError as exc:
        parser.error(str(exc))

    session = ShellSession(config)
    try:
        if parsed.command:
            ensure_environment()
            status = session.run_line(" ".join(parsed.command))
            _flush_all()
        elif parsed.script:
            try:
                handle = open(parsed.script, "rb")
            except OSError as exc:
                print(f"tinysh: {parsed.script}: {exc.strerror or exc}", file=sys.stderr)
                return 1
            with handle:
                reader = LineReader(handle.fileno(), bufsize=config.line_bufsize)
                status = Shell(session, reader).run()
        else:
            status = Shell(session).run()
    finally:
        session.close()
    return status & 0xFF


if __name__ == "__main__":
    sys.exit(main())
