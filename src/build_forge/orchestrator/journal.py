"""Human-readable progress journal of completed units."""

from __future__ import annotations

import threading
from datetime import UTC, datetime
from pathlib import Path

from build_forge.orchestrator.models import Unit

JOURNAL_TITLE = "# Progress"


class Journal:
    """Markdown changelog appended once per completed unit."""

    def __init__(self, path: Path) -> None:
        self.path = path
        self._lock = threading.Lock()

    def ensure(self) -> None:
        if not self.path.exists():
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self.path.write_text(f"{JOURNAL_TITLE}\n", "utf-8")

    def append(self, unit: Unit, *, command: str, branch: str | None = None) -> None:
        stamp = datetime.now(tz=UTC).strftime("%Y-%m-%d %H:%M:%S")
        lines = [
            "",
            f"## {unit.id} ({stamp} UTC)",
            "",
            f"- work: {unit.description or '(no description)'}",
            f"- command: `{command}`",
            f"- proof: `{unit.proof}`",
            f"- attempts: {unit.attempt}/{unit.attempt_limit}",
        ]
        if branch:
            lines.append(f"- branch: {branch}")
        with self._lock:
            self.ensure()
            with self.path.open("a", encoding="utf-8") as handle:
                handle.write("\n".join(lines) + "\n")

    def recent(self, *, lines: int = 40) -> str:
        if not self.path.exists():
            return ""
        return "\n".join(self.path.read_text("utf-8").splitlines()[-lines:])
