"""Levelled console output with an optional log file."""
from __future__ import annotations

from pathlib import Path
from typing import TextIO
import sys


class Console:
    """Console output handler with a configurable log level.

    Levels: none < error < warn < info < debug. Dry-run notices are printed
    whenever ``dry_run`` is set, regardless of level. When ``log_file`` is
    given every emitted line is also appended there.
    """

    LEVELS = {
        "none": 0,
        "error": 1,
        "warn": 2,
        "info": 3,
        "debug": 4,
    }

    def __init__(self, level: str = "info", dry_run: bool = False, log_file: Path | str | None = None):
        normalized = (level or "none").strip().lower()
        if normalized == "warning":
            normalized = "warn"
        if normalized not in self.LEVELS:
            raise ValueError(f"Unknown log level '{level}'. Expected one of: {', '.join(self.LEVELS)}")
        self.level_name = normalized
        self.level = self.LEVELS[normalized]
        self.dry_run = dry_run
        self.log_file = Path(log_file).expanduser() if log_file else None

    def _emit(self, line: str, *, stream: TextIO | None = None) -> None:
        print(line, file=stream or sys.stdout)
        if self.log_file is not None:
            self.log_file.parent.mkdir(parents=True, exist_ok=True)
            with self.log_file.open("a", encoding="utf-8") as handle:
                handle.write(line + "\n")

    def error(self, message: str) -> None:
        if self.level >= self.LEVELS["error"]:
            self._emit(f"[ERROR] {message}", stream=sys.stderr)

    def warn(self, message: str) -> None:
        if self.level >= self.LEVELS["warn"]:
            self._emit(f"[WARN] {message}", stream=sys.stderr)

    def info(self, message: str) -> None:
        if self.level >= self.LEVELS["info"]:
            self._emit(f"[INFO] {message}")

    def debug(self, message: str) -> None:
        if self.level >= self.LEVELS["debug"]:
            self._emit(f"[DEBUG] {message}")

    def dry(self, message: str) -> None:
        if self.dry_run:
            self._emit(f"[DRY] {message}")
