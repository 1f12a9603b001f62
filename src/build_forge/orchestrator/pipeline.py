"""Planning, forge cycles, review and recovery tied into one run."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field

from build_forge.orchestrator.analysis import BatchAnalyzer, ConfirmForceRetry
from build_forge.orchestrator.errors import BatchFailedError
from build_forge.orchestrator.models import ForgeResult, LedgerCounts, Unit
from build_forge.orchestrator.planning import Planner, PlanningResult
from build_forge.orchestrator.resmelt import Resmelter
from build_forge.orchestrator.review import ReviewGate
from build_forge.orchestrator.runtime import ForgeRuntime
from build_forge.orchestrator.scheduler import ForgeScheduler

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class PipelineSummary:
    """Final state of a pipeline run."""

    counts: LedgerCounts
    failed_units: list[Unit] = field(default_factory=list)
    cycles: int = 0
    elapsed_seconds: float = 0.0
    merged: int = 0
    rejected: int = 0
    planning: PlanningResult | None = None

    @property
    def success(self) -> bool:
        return (
            self.counts.failed == 0
            and self.counts.pending == 0
            and self.counts.in_progress == 0
        )

    def lines(self) -> list[str]:
        counts = self.counts
        lines = [
            f"Units: {counts.done}/{counts.total} done ({counts.percent_done}%), "
            f"{counts.failed} failed, {counts.pending} pending",
            f"Cycles: {self.cycles}, elapsed {self.elapsed_seconds:.1f}s",
        ]
        if self.merged or self.rejected:
            lines.append(f"Review: {self.merged} merged, {self.rejected} rejected")
        for unit in self.failed_units:
            lines.append(f"  FAILED {unit.id}: {unit.description}")
        return lines


class ForgePipeline:
    """Run planning, then forge cycles with recovery between them.

    A cycle runs the scheduler, reviews completed branches when isolation is on,
    and hands remaining failures to batch analysis. The run stops when no unit
    failed, when the retry budget is spent, or when analysis leaves no pending
    work.
    """

    def __init__(
        self,
        runtime: ForgeRuntime,
        *,
        confirm_force_retry: ConfirmForceRetry | None = None,
    ) -> None:
        self.runtime = runtime
        self.confirm_force_retry = confirm_force_retry

    def run(self, commission: str | None) -> PipelineSummary:
        started = time.monotonic()
        runtime = self.runtime
        planning = Planner(runtime).prepare(commission)

        resmelter = Resmelter(runtime)
        max_cycles = runtime.settings.forge.max_retry_cycles + 1
        merged = rejected = 0
        cycle = 0
        while cycle < max_cycles:
            cycle += 1
            if cycle > 1:
                runtime.emit(f"Retry cycle {cycle - 1}/{max_cycles - 1}")

            scheduler = ForgeScheduler(runtime, resmelter=resmelter)
            try:
                scheduler.run()
            except BatchFailedError as error:
                runtime.emit(str(error))

            if self._should_review(scheduler.results):
                report = ReviewGate(runtime).review(scheduler.results)
                merged += report.approved
                rejected += report.rejected

            if not runtime.store.read().failed():
                break
            if cycle >= max_cycles:
                runtime.emit("Retry budget exhausted")
                break

            runtime.emit("Analyzing failed units")
            analysis = BatchAnalyzer(
                runtime,
                resmelter=resmelter,
                confirm_force_retry=self.confirm_force_retry,
            ).run()
            for line in analysis.lines():
                runtime.emit(line)
            if not analysis.has_pending:
                runtime.emit("Analysis left no pending work")
                break

        ledger = runtime.store.read()
        summary = PipelineSummary(
            counts=ledger.counts(),
            failed_units=ledger.failed(),
            cycles=cycle,
            elapsed_seconds=time.monotonic() - started,
            merged=merged,
            rejected=rejected,
            planning=planning,
        )
        logger.info("Pipeline finished: %s", summary.lines()[0])
        return summary

    def _should_review(self, results: list[ForgeResult]) -> bool:
        settings = self.runtime.settings
        return (
            settings.forge.isolate
            and not settings.review.skip_review
            and any(result.branch for result in results)
        )
