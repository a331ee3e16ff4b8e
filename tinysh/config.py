"""Runtime configuration for the tiny shell."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Mapping, Optional

LINE_BUFSIZE = 1024
TOK_BUFSIZE = 128

LOG_FORMAT = "[%(asctime)s] %(levelname)s: %(message)s"


class ConfigError(ValueError):
    """Raised when an environment override cannot be parsed."""


def _default_klog_path() -> Path:
    # FreeBSD-derived kernels expose the message buffer as /dev/klog.
    klog = Path("/dev/klog")
    if klog.exists():
        return klog
    return Path("/dev/kmsg")


def _positive_int(environ: Mapping[str, str], key: str, default: int) -> int:
    raw = environ.get(key)
    if raw is None or raw == "":
        return default
    try:
        value = int(raw)
    except ValueError as exc:
        raise ConfigError(f"{key} must be an integer, got {raw!r}") from exc
    if value <= 0:
        raise ConfigError(f"{key} must be positive, got {value}")
    return value


def _flag(environ: Mapping[str, str], key: str) -> bool:
    return environ.get(key, "").strip().lower() in {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class ShellConfig:
    line_bufsize: int = LINE_BUFSIZE
    tok_bufsize: int = TOK_BUFSIZE
    log_level: str = "WARNING"
    banner: bool = True
    transcript_dir: Optional[Path] = None
    klog_path: Path = Path("/dev/kmsg")
    mounts_path: Path = Path("/proc/mounts")

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "ShellConfig":
        """Build a config from ``TINYSH_*`` variables in *environ*."""

        env = os.environ if environ is None else environ
        transcript = env.get("TINYSH_TRANSCRIPT_DIR")
        klog = env.get("TINYSH_KLOG_PATH")
        mounts = env.get("TINYSH_MOUNTS_PATH")
        return cls(
            line_bufsize=_positive_int(env, "TINYSH_LINE_BUFSIZE", LINE_BUFSIZE),
            tok_bufsize=_positive_int(env, "TINYSH_TOK_BUFSIZE", TOK_BUFSIZE),
            log_level=env.get("TINYSH_LOG_LEVEL", "WARNING").upper() or "WARNING",
            banner=not _flag(env, "TINYSH_NO_BANNER"),
            transcript_dir=Path(transcript) if transcript else None,
            klog_path=Path(klog) if klog else _default_klog_path(),
            mounts_path=Path(mounts) if mounts else Path("/proc/mounts"),
        )

    def with_overrides(self, **changes: object) -> "ShellConfig":
        """Return a copy with every non-``None`` value in *changes* applied."""

        applied = {key: value for key, value in changes.items() if value is not None}
        return replace(self, **applied)


def configure_logging(level: str) -> None:
    numeric = logging.getLevelName(level.upper())
    if not isinstance(numeric, int):
        raise ConfigError(f"Unknown log level: {level}")
    logging.basicConfig(level=numeric, format=LOG_FORMAT)
    logging.getLogger("tinysh").setLevel(numeric)
