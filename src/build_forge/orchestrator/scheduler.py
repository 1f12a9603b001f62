"""Forge loop: dispatch pending units until the ledger is drained."""

from __future__ import annotations

import logging
from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from pathlib import Path

from build_forge.orchestrator.errors import (
    BatchFailedError,
    ForgeError,
    IsolationError,
    UnitFailedError,
)
from build_forge.orchestrator.models import ForgeResult, Unit, UnitStatus
from build_forge.orchestrator.resmelt import Resmelter, apply_outcome
from build_forge.orchestrator.runtime import ForgeRuntime
from build_forge.orchestrator.strike import StrikeExecutor, StrikeOutcome

logger = logging.getLogger(__name__)


class ForgeScheduler:
    """Drain independent units in parallel batches, then sequential ones in order.

    The ledger file is reloaded before every decision and every completion is
    applied in this thread inside its own transaction, so workers never write
    unit status themselves.
    """

    def __init__(self, runtime: ForgeRuntime, *, resmelter: Resmelter | None = None) -> None:
        self.runtime = runtime
        self.resmelter = resmelter or Resmelter(runtime)
        self.executor = StrikeExecutor(runtime, on_attempt=self._persist_attempt)
        self.results: list[ForgeResult] = []

    def run(self) -> list[ForgeResult]:
        """Run until no pending work remains; completed units are also kept in ``results``."""

        store = self.runtime.store
        with store.transaction() as ledger:
            stale = ledger.reset_in_progress()
        if stale:
            logger.warning("Reset %d stale in-progress units: %s", len(stale), ", ".join(stale))

        max_parallel = self.runtime.settings.forge.max_parallel
        while True:
            ledger = store.read()
            if not ledger.has_pending():
                failed = ledger.failed()
                if failed:
                    raise BatchFailedError(len(failed))
                return list(self.results)

            batch = ledger.independent_pending()[:max_parallel]
            if batch:
                self._run_batch(batch)
                continue

            unit = ledger.next_sequential_pending()
            if unit is None:
                raise ForgeError(
                    "Ledger has unfinished units but none can be dispatched; "
                    "check for units stuck in_progress."
                )
            self._run_sequential(unit)

    def _run_batch(self, batch: list[Unit]) -> None:
        with self.runtime.store.transaction() as ledger:
            for unit in batch:
                ledger.set_status(unit.id, UnitStatus.IN_PROGRESS)
        for unit in batch:
            unit.status = UnitStatus.IN_PROGRESS
        self.runtime.emit(
            f"Dispatching {len(batch)} unit(s) in parallel: {', '.join(u.id for u in batch)}"
        )

        worktrees: dict[str, Path] = {}
        dispatch: list[Unit] = []
        for unit in batch:
            if self.runtime.settings.forge.isolate:
                try:
                    worktrees[unit.id] = self.runtime.vcs.create_worktree(unit.id)
                except IsolationError as error:
                    logger.error("Isolation failed for %s: %s", unit.id, error)
                    self._set_status(unit.id, UnitStatus.FAILED)
                    self.runtime.emit(f"[{unit.id}] failed: {error}")
                    continue
            dispatch.append(unit)

        if not dispatch:
            return
        with ThreadPoolExecutor(
            max_workers=self.runtime.settings.forge.max_parallel,
            thread_name_prefix="forge",
        ) as pool:
            futures: dict[Future[StrikeOutcome], Unit] = {
                pool.submit(self.executor.strike, unit, worktrees.get(unit.id)): unit
                for unit in dispatch
            }
            for future in as_completed(futures):
                unit = futures[future]
                try:
                    outcome = future.result()
                except Exception:  # noqa: BLE001
                    logger.exception("Worker for unit %s crashed", unit.id)
                    outcome = self._crashed(unit, worktree=worktrees.get(unit.id))
                self._apply(unit, outcome)

    def _run_sequential(self, unit: Unit) -> None:
        self._set_status(unit.id, UnitStatus.IN_PROGRESS)
        unit.status = UnitStatus.IN_PROGRESS
        self.runtime.emit(f"Dispatching sequential unit {unit.id}")
        try:
            outcome = self.executor.strike(unit)
        except Exception:  # noqa: BLE001
            logger.exception("Sequential unit %s crashed", unit.id)
            outcome = self._crashed(unit, worktree=None)
        self._apply(unit, outcome)

    def _apply(self, unit: Unit, outcome: StrikeOutcome) -> None:
        if outcome.success:
            self._set_status(unit.id, UnitStatus.DONE)
            if outcome.result is not None:
                self.results.append(outcome.result)
            self.runtime.emit(f"[{unit.id}] done after {outcome.attempts} attempt(s)")
        else:
            self._recover(unit, outcome)
        self._report_progress()

    def _recover(self, unit: Unit, outcome: StrikeOutcome) -> None:
        self.runtime.emit(f"[{unit.id}] failed after {outcome.attempts} attempt(s), re-smelting")
        resmelt = self.resmelter.resmelt(unit)
        with self.runtime.store.transaction() as ledger:
            if ledger.get(unit.id) is None:
                logger.warning("Unit %s vanished from the ledger before recovery", unit.id)
                return
            if resmelt.success:
                replacements = apply_outcome(ledger, resmelt, escalation=unit.escalation + 1)
            else:
                ledger.set_status(unit.id, UnitStatus.FAILED)
                replacements = []
        if replacements:
            kind = "split" if resmelt.is_split else "rewrite"
            self.runtime.emit(
                f"[{unit.id}] re-smelt {kind}: {', '.join(u.id for u in replacements)}"
            )
        else:
            self.runtime.emit(f"[{unit.id}] marked failed ({resmelt.reason})")

    def _crashed(self, unit: Unit, *, worktree: Path | None) -> StrikeOutcome:
        if worktree is not None:
            self.runtime.vcs.remove_worktree(unit.id, delete_branch=False)
        latest = self.runtime.store.read().get(unit.id)
        attempts = latest.attempt if latest is not None else unit.attempt
        return StrikeOutcome(
            unit_id=unit.id,
            success=False,
            attempts=attempts,
            failure="worker crashed",
            error=UnitFailedError(unit.id, attempts),
        )

    def _persist_attempt(self, unit_id: str) -> int:
        with self.runtime.store.transaction() as ledger:
            return ledger.increment_attempt(unit_id)

    def _set_status(self, unit_id: str, status: UnitStatus) -> None:
        with self.runtime.store.transaction() as ledger:
            ledger.set_status(unit_id, status)

    def _report_progress(self) -> None:
        counts = self.runtime.store.read().counts()
        self.runtime.emit(
            f"Progress: {counts.done}/{counts.total} done ({counts.percent_done}%), "
            f"{counts.failed} failed"
        )
