"""JSONL transcript of dispatched commands and their exit statuses."""

from __future__ import annotations

import datetime as _dt
import json
from pathlib import Path
from typing import Any, Dict


class TranscriptError(RuntimeError):
    """Raised when a transcript entry cannot be written."""


def now_utc() -> _dt.datetime:
    return _dt.datetime.now(_dt.timezone.utc)


def isoformat_utc(dt: _dt.datetime) -> str:
    return dt.isoformat().replace("+00:00", "Z")


class TranscriptLogger:
    def __init__(self, root: Path) -> None:
        self._root = root
        try:
            self._root.mkdir(parents=True, exist_ok=True)
            timestamp = now_utc().strftime("%Y%m%dT%H%M%S%fZ")
            self._path = self._root / f"session-{timestamp}.jsonl"
            self._file = self._path.open("a", encoding="utf-8")
        except OSError as exc:
            raise TranscriptError(f"Cannot open transcript in {root}: {exc}") from exc

    @property
    def path(self) -> Path:
        return self._path

    def log(self, payload: Dict[str, Any]) -> None:
        entry = {"ts": isoformat_utc(now_utc()), **payload}
        try:
            self._file.write(json.dumps(entry, ensure_ascii=False) + "\n")
            self._file.flush()
        except (OSError, ValueError) as exc:
            raise TranscriptError(str(exc)) from exc

    def close(self) -> None:
        self._file.close()
