"""Command entries and the static builtin table."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Callable, Iterable, Iterator, List, Optional, Tuple

if TYPE_CHECKING:
    from tinysh.shell import ShellSession


class ExecutionMode(enum.Enum):
    INLINE = "inline"
    FORKED = "forked"


@dataclass(frozen=True)
class CommandInvocation:
    argc: int
    argv: List[str] = field(default_factory=list)

    @property
    def name(self) -> str:
        return self.argv[0] if self.argv else ""

    @property
    def args(self) -> List[str]:
        return self.argv[1:]


Handler = Callable[["ShellSession", CommandInvocation], int]


@dataclass(frozen=True)
class Command:
    name: str
    handler: Handler
    mode: ExecutionMode = ExecutionMode.FORKED
    summary: str = ""
    usage: str = ""


class DuplicateCommandError(ValueError):
    """Raised when two table entries share a name."""


def command(
    name: str,
    summary: str,
    usage: str,
    *,
    mode: ExecutionMode = ExecutionMode.FORKED,
) -> Callable[[Handler], Handler]:
    """Attach a :class:`Command` definition to a handler function."""

    def decorator(func: Handler) -> Handler:
        func.__command_definition__ = Command(  # type: ignore[attr-defined]
            name=name,
            handler=func,
            mode=mode,
            summary=summary,
            usage=usage,
        )
        return func

    return decorator


def definition_of(handler: Handler) -> Command:
    try:
        return handler.__command_definition__  # type: ignore[attr-defined]
    except AttributeError:
        raise TypeError(f"{handler!r} is not decorated with @command") from None


class CommandTable:
    """Ordered, read-only mapping from command name to entry.

    Lookups are a linear, case-sensitive scan; the first match wins.
    """

    def __init__(self, commands: Iterable[Command]) -> None:
        entries: Tuple[Command, ...] = tuple(commands)
        seen = set()
        for entry in entries:
            if entry.name in seen:
                raise DuplicateCommandError(f"Duplicate command name: {entry.name}")
            seen.add(entry.name)
        self._commands = entries

    @classmethod
    def from_handlers(cls, handlers: Iterable[Handler]) -> "CommandTable":
        return cls(definition_of(handler) for handler in handlers)

    def lookup(self, name: str) -> Optional[Command]:
        for entry in self._commands:
            if entry.name == name:
                return entry
        return None

    def names(self) -> List[str]:
        return [entry.name for entry in self._commands]

    def __iter__(self) -> Iterator[Command]:
        return iter(self._commands)

    def __len__(self) -> int:
        return len(self._commands)
