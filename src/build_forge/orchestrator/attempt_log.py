"""Write-once attempt log files keyed by timestamp, phase and unit id."""

from __future__ import annotations

import re
from datetime import UTC, datetime
from enum import Enum
from pathlib import Path

from build_forge.config import FAILURE_LOG_TAIL_LINES

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]")


class LogPhase(str, Enum):
    """Phases recorded while working on a unit."""

    PROMPT = "PROMPT"
    RESPONSE = "RESPONSE"
    ASSAY = "ASSAY"
    FAILURE = "FAILURE"
    RESMELT = "RESMELT"
    RECONSIDER = "RECONSIDER"
    REGENERATE = "REGENERATE"
    REVIEW = "REVIEW"


class AttemptLog:
    """Append-only directory of attempt logs.

    Each worker writes only the files of its own unit, so no locking is needed.
    """

    def __init__(self, log_dir: Path) -> None:
        self.log_dir = log_dir

    def write(self, unit_id: str, phase: LogPhase, content: str) -> Path:
        self.log_dir.mkdir(parents=True, exist_ok=True)
        stamp = datetime.now(tz=UTC).strftime("%Y%m%d_%H%M%S_%f")
        owner = f"{phase.value}__{safe_unit_id(unit_id)}"
        path = self.log_dir / f"{stamp}__{owner}.log"
        counter = 1
        while True:
            try:
                with path.open("x", encoding="utf-8") as handle:
                    handle.write(content)
                return path
            except FileExistsError:
                counter += 1
                path = self.log_dir / f"{stamp}-{counter}__{owner}.log"

    def entries(
        self,
        unit_id: str,
        phases: tuple[LogPhase, ...] = (LogPhase.FAILURE, LogPhase.ASSAY),
    ) -> list[Path]:
        """Log files of ``unit_id`` in the given phases, newest first."""

        if not self.log_dir.is_dir():
            return []
        wanted = {phase.value for phase in phases}
        suffix = safe_unit_id(unit_id)
        matches: list[Path] = []
        for path in self.log_dir.glob("*.log"):
            parts = path.stem.split("__", 2)
            if len(parts) == 3 and parts[1] in wanted and parts[2] == suffix:
                matches.append(path)
        return sorted(matches, key=_write_order, reverse=True)

    def recent_text(self, unit_id: str, *, lines: int = FAILURE_LOG_TAIL_LINES) -> str:
        """Tail of the newest failure logs, for recovery prompts."""

        chunks: list[str] = []
        for path in self.entries(unit_id)[:3]:
            tail = path.read_text("utf-8", errors="replace").splitlines()[-lines:]
            chunks.append(f"--- {path.name}\n" + "\n".join(tail))
        return "\n".join(chunks)


def safe_unit_id(unit_id: str) -> str:
    return _UNSAFE_CHARS.sub("_", unit_id)


def _write_order(path: Path) -> tuple[str, int]:
    stamp, _, counter = path.stem.split("__", 1)[0].partition("-")
    return stamp, int(counter) if counter.isdigit() else 1
