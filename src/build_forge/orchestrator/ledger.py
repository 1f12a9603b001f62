"""Flat-file ledger of units and its whole-file transaction."""

from __future__ import annotations

import logging
import os
import tempfile
import threading
from collections.abc import Collection, Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path

from build_forge.orchestrator.codec import is_record_line, parse_unit, serialize_unit
from build_forge.orchestrator.errors import LedgerParseError
from build_forge.orchestrator.models import LedgerCounts, Unit, UnitStatus

logger = logging.getLogger(__name__)

HEADER_PREFIX = ";; "


@dataclass(slots=True)
class Ledger:
    """Ordered units plus free-text header lines kept verbatim.

    The file content is the state: ``save`` always rewrites the header and every
    unit. Ledger order is dispatch order for sequential units.
    """

    path: Path
    header: list[str] = field(default_factory=list)
    units: list[Unit] = field(default_factory=list)

    @classmethod
    def load(cls, path: Path) -> Ledger:
        try:
            text = path.read_bytes().decode("utf-8")
        except UnicodeDecodeError as error:
            raise LedgerParseError(f"Ledger {path} is not valid UTF-8: {error}") from error

        header: list[str] = []
        units: list[Unit] = []
        seen: set[str] = set()
        for line_number, line in enumerate(text.splitlines(), start=1):
            if not is_record_line(line):
                header.append(line)
                continue
            unit = parse_unit(line)
            if unit is None:
                logger.warning("Dropping unparseable ledger line %s:%d", path, line_number)
                continue
            if unit.id in seen:
                raise LedgerParseError(f"Duplicate unit id {unit.id!r} in {path}:{line_number}")
            seen.add(unit.id)
            units.append(unit)
        return cls(path=path, header=header, units=units)

    @classmethod
    def create(
        cls,
        path: Path,
        units: list[Unit],
        *,
        blueprint_name: str = "BLUEPRINT.md",
    ) -> Ledger:
        """Write a fresh ledger for ``units`` and return it."""

        created_at = datetime.now(tz=UTC).strftime("%Y-%m-%dT%H:%M:%SZ")
        ledger = cls(
            path=path,
            header=[
                f"{HEADER_PREFIX}build-forge ledger created {created_at}",
                f"{HEADER_PREFIX}blueprint: {blueprint_name}",
            ],
        )
        for unit in units:
            if ledger.get(unit.id) is not None:
                raise LedgerParseError(f"Duplicate unit id {unit.id!r} in new ledger")
            ledger.units.append(unit)
        ledger.save()
        return ledger

    def save(self) -> None:
        lines = [*self.header, *(serialize_unit(unit) for unit in self.units)]
        _write_text_atomic(self.path, "\n".join(lines) + "\n" if lines else "")

    def get(self, unit_id: str) -> Unit | None:
        for unit in self.units:
            if unit.id == unit_id:
                return unit
        return None

    def require(self, unit_id: str) -> Unit:
        unit = self.get(unit_id)
        if unit is None:
            raise KeyError(f"Unknown unit id: {unit_id}")
        return unit

    def set_status(self, unit_id: str, status: UnitStatus) -> None:
        self.require(unit_id).status = status

    def increment_attempt(self, unit_id: str) -> int:
        unit = self.require(unit_id)
        unit.attempt += 1
        return unit.attempt

    def replace(self, unit_id: str, replacements: list[Unit]) -> None:
        """Swap one unit for ``replacements`` at its position."""

        index = self._index(unit_id)
        taken = {unit.id for unit in self.units if unit.id != unit_id}
        for replacement in replacements:
            if replacement.id in taken:
                raise LedgerParseError(f"Replacement would duplicate unit id {replacement.id!r}")
            taken.add(replacement.id)
        self.units[index : index + 1] = replacements

    def remove(self, unit_id: str) -> Unit:
        return self.units.pop(self._index(unit_id))

    def counts(self) -> LedgerCounts:
        counts = LedgerCounts(total=len(self.units))
        for unit in self.units:
            if unit.status == UnitStatus.PENDING:
                counts.pending += 1
            elif unit.status == UnitStatus.IN_PROGRESS:
                counts.in_progress += 1
            elif unit.status == UnitStatus.DONE:
                counts.done += 1
            else:
                counts.failed += 1
        return counts

    def has_pending(self) -> bool:
        return any(
            unit.status in (UnitStatus.PENDING, UnitStatus.IN_PROGRESS) for unit in self.units
        )

    def independent_pending(self) -> list[Unit]:
        return [
            unit for unit in self.units if unit.status == UnitStatus.PENDING and unit.independent
        ]

    def next_sequential_pending(self) -> Unit | None:
        for unit in self.units:
            if unit.status == UnitStatus.PENDING and not unit.independent:
                return unit
        return None

    def failed(self) -> list[Unit]:
        return [unit for unit in self.units if unit.status == UnitStatus.FAILED]

    def unique_id(
        self,
        candidate: str,
        *,
        replacing: str | None = None,
        reserved: Collection[str] = (),
    ) -> str:
        """Return ``candidate`` or the first free ``candidate-N``.

        ``replacing`` names a unit about to be removed, so its id counts as free;
        ``reserved`` ids count as taken.
        """

        taken = {unit.id for unit in self.units if unit.id != replacing}
        taken.update(reserved)
        if candidate not in taken:
            return candidate
        suffix = 2
        while f"{candidate}-{suffix}" in taken:
            suffix += 1
        return f"{candidate}-{suffix}"

    def reset_in_progress(self) -> list[str]:
        """Return stale in-progress units to pending; ids of reset units."""

        reset: list[str] = []
        for unit in self.units:
            if unit.status == UnitStatus.IN_PROGRESS:
                unit.status = UnitStatus.PENDING
                reset.append(unit.id)
        return reset

    def _index(self, unit_id: str) -> int:
        for index, unit in enumerate(self.units):
            if unit.id == unit_id:
                return index
        raise KeyError(f"Unknown unit id: {unit_id}")


class LedgerStore:
    """Load-mutate-save access to one ledger file.

    Every mutation happens inside ``transaction``: the file is reloaded, the
    block mutates the fresh ``Ledger``, and the result is written back when the
    block exits cleanly. The lock only orders writers inside this process; the
    file stays the single source of truth.
    """

    def __init__(self, path: Path) -> None:
        self.path = path
        self._lock = threading.Lock()

    def exists(self) -> bool:
        return self.path.exists()

    def read(self) -> Ledger:
        with self._lock:
            return Ledger.load(self.path)

    @contextmanager
    def transaction(self) -> Iterator[Ledger]:
        with self._lock:
            ledger = Ledger.load(self.path)
            yield ledger
            ledger.save()


def _write_text_atomic(path: Path, text: str) -> None:
    """Replace ``path`` in one step so readers never see a partial ledger."""

    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp = tempfile.mkstemp(prefix=f".{path.name}.", dir=str(path.parent))
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write(text)
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(tmp, path)
    finally:
        if os.path.exists(tmp):
            os.unlink(tmp)
