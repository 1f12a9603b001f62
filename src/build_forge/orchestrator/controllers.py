"""Controllers for forge CLI commands."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from pathlib import Path

from build_forge.config import Settings
from build_forge.orchestrator.analysis import ConfirmForceRetry
from build_forge.orchestrator.pipeline import ForgePipeline
from build_forge.orchestrator.routing import AgentRouter
from build_forge.orchestrator.runtime import Emit, ForgeRuntime

logger = logging.getLogger(__name__)

PROGRESS_BAR_WIDTH = 30


@dataclass(slots=True)
class ForgeRunCommand:
    """CLI input for run and resume."""

    project_dir: Path | None
    commission: str | None = None
    isolate: bool | None = None
    max_parallel: int | None = None
    skip_review: bool = False
    keep_branches: bool = False
    checks_only: bool = False
    review_all: bool = False
    retry_cycles: int | None = None


@dataclass(slots=True)
class ForgeStatusCommand:
    """CLI input for status."""

    project_dir: Path | None


@dataclass(slots=True)
class ForgeRunResult:
    lines: list[str] = field(default_factory=list)
    success: bool = False
    failed_count: int = 0


class ForgeCliController:
    """Coordinates pipeline runs and ledger inspection for the CLI."""

    def __init__(self, agents: AgentRouter | None = None) -> None:
        self.agents = agents

    def run(
        self,
        command: ForgeRunCommand,
        *,
        emit: Emit,
        confirm_force_retry: ConfirmForceRetry | None = None,
    ) -> ForgeRunResult:
        settings = _settings(command)
        settings.validate()
        runtime = ForgeRuntime.build(settings, agents=self.agents, emit=emit)
        summary = ForgePipeline(runtime, confirm_force_retry=confirm_force_retry).run(
            command.commission,
        )
        return ForgeRunResult(
            lines=summary.lines(),
            success=summary.success,
            failed_count=summary.counts.failed,
        )

    def status(self, command: ForgeStatusCommand) -> list[str]:
        settings = Settings.from_env(project_dir=command.project_dir)
        runtime = ForgeRuntime.build(settings, agents=self.agents)
        if not runtime.store.exists():
            return [f"No ledger at {runtime.store.path}"]

        ledger = runtime.store.read()
        counts = ledger.counts()
        filled = counts.percent_done * PROGRESS_BAR_WIDTH // 100
        lines = [
            f"Ledger: {runtime.store.path}",
            f"[{'#' * filled}{'.' * (PROGRESS_BAR_WIDTH - filled)}] {counts.percent_done}%",
            (
                f"total={counts.total} pending={counts.pending} "
                f"in_progress={counts.in_progress} done={counts.done} failed={counts.failed}"
            ),
        ]
        for unit in ledger.failed():
            lines.append(
                f"  FAILED {unit.id} (attempt {unit.attempt}/{unit.attempt_limit}, "
                f"escalation {unit.escalation}): {unit.description}"
            )
        return lines


def _settings(command: ForgeRunCommand) -> Settings:
    settings = Settings.from_env(project_dir=command.project_dir)
    forge = settings.forge
    if command.isolate is not None:
        forge = replace(forge, isolate=command.isolate)
    if command.max_parallel is not None:
        forge = replace(forge, max_parallel=command.max_parallel)
    if command.retry_cycles is not None:
        forge = replace(forge, max_retry_cycles=command.retry_cycles)

    review = settings.review
    review = replace(
        review,
        skip_review=review.skip_review or command.skip_review,
        keep_branches=review.keep_branches or command.keep_branches,
        checks_only=review.checks_only or command.checks_only,
        review_all=review.review_all or command.review_all,
    )
    logger.debug("Effective forge settings: %s %s", forge, review)
    return replace(settings, forge=forge, review=review)
