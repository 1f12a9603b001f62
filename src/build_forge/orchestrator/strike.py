"""Bounded attempt loop for a single unit."""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, replace
from pathlib import Path

from build_forge.orchestrator.attempt_log import LogPhase
from build_forge.orchestrator.backend.base import AgentBackend
from build_forge.orchestrator.errors import (
    AgentInvocationError,
    ProofFailedError,
    UnitFailedError,
)
from build_forge.orchestrator.models import ForgeResult, Unit
from build_forge.orchestrator.runtime import ForgeRuntime
from build_forge.orchestrator.shell import (
    NO_COMMAND_MESSAGE,
    extract_command,
    is_trivial_proof,
    run_shell,
)

logger = logging.getLogger(__name__)

AttemptCallback = Callable[[str], int]


@dataclass(slots=True)
class StrikeOutcome:
    """Result of working one unit to success or exhaustion."""

    unit_id: str
    success: bool
    attempts: int
    result: ForgeResult | None = None
    failure: str | None = None
    error: UnitFailedError | None = None


class StrikeExecutor:
    """Drive one unit through prompt, agent, command and proof until done.

    Per-try failures never raise: they become the failure text of the next
    prompt. ``on_attempt`` persists each attempt increment and returns the new
    count; without it the count is only tracked locally.
    """

    def __init__(
        self,
        runtime: ForgeRuntime,
        *,
        on_attempt: AttemptCallback | None = None,
    ) -> None:
        self.runtime = runtime
        self.on_attempt = on_attempt

    def strike(self, unit: Unit, worktree: Path | None = None) -> StrikeOutcome:
        current = replace(unit, extra=dict(unit.extra))
        workdir = worktree or self.runtime.settings.paths.root
        agent = self.runtime.agents.for_unit(current)
        failure: str | None = None

        while current.attempt < current.attempt_limit:
            current.attempt = self._record_attempt(current)
            logger.info(
                "Unit %s attempt %d/%d", current.id, current.attempt, current.attempt_limit
            )
            command, failure = self._attempt(
                current,
                agent=agent,
                workdir=workdir,
                worktree=worktree,
                previous_failure=failure,
            )
            if command is not None:
                return self._complete(current, command=command, workdir=workdir, worktree=worktree)
            self.runtime.logs.write(current.id, LogPhase.FAILURE, failure or "")
            logger.info("Unit %s attempt %d failed: %s", current.id, current.attempt, failure)

        if worktree is not None:
            self.runtime.vcs.remove_worktree(current.id, delete_branch=False)
        error = UnitFailedError(current.id, current.attempt)
        logger.warning("%s", error)
        return StrikeOutcome(
            unit_id=current.id,
            success=False,
            attempts=current.attempt,
            failure=failure,
            error=error,
        )

    @property
    def _command_timeout(self) -> int | None:
        return self.runtime.settings.forge.command_timeout_seconds

    def _record_attempt(self, unit: Unit) -> int:
        if self.on_attempt is None:
            return unit.attempt + 1
        return self.on_attempt(unit.id)

    def _attempt(  # noqa: PLR0913
        self,
        unit: Unit,
        *,
        agent: AgentBackend,
        workdir: Path,
        worktree: Path | None,
        previous_failure: str | None,
    ) -> tuple[str | None, str | None]:
        """Run one try; ``(command, None)`` on success, ``(None, failure)`` otherwise."""

        logs = self.runtime.logs
        prompt = self.runtime.prompts.strike(unit, failure=previous_failure, worktree=worktree)
        logs.write(unit.id, LogPhase.PROMPT, prompt)

        try:
            response = agent.invoke(prompt, workdir=workdir)
        except AgentInvocationError as error:
            return None, f"Agent invocation failed: {error}"
        logs.write(unit.id, LogPhase.RESPONSE, response)

        command = extract_command(response)
        if command is None:
            return None, (
                f"Protocol violation: {NO_COMMAND_MESSAGE}. "
                "End the response with a line 'COMMAND: <shell command>'."
            )

        result = run_shell(command, workdir, timeout_seconds=self._command_timeout)
        logs.write(
            unit.id,
            LogPhase.ASSAY,
            f"$ {command}\nexit {result.exit_code}\n{result.output}",
        )
        if not result.ok:
            return None, f"Command failed (exit {result.exit_code}): {result.output}"

        try:
            self.verify_proof(unit, command=command, workdir=workdir)
        except ProofFailedError as error:
            return None, str(error)
        return command, None

    def verify_proof(self, unit: Unit, *, command: str, workdir: Path) -> None:
        """Run the unit's own proof unless the agent command already was the proof."""

        proof = unit.proof.strip()
        if is_trivial_proof(proof) or proof == command.strip():
            return
        result = run_shell(proof, workdir, timeout_seconds=self._command_timeout)
        self.runtime.logs.write(
            unit.id,
            LogPhase.ASSAY,
            f"$ {proof}\nexit {result.exit_code}\n{result.output}",
        )
        if not result.ok:
            raise ProofFailedError(
                unit.id,
                f"[{proof}] non-zero exit {result.exit_code}: {result.output}",
            )

    def _complete(
        self,
        unit: Unit,
        *,
        command: str,
        workdir: Path,
        worktree: Path | None,
    ) -> StrikeOutcome:
        summary = unit.description.splitlines()[0] if unit.description else ""
        message = f"forge({unit.id}): {summary}" if summary else f"forge({unit.id})"
        if not self.runtime.vcs.commit(workdir, message):
            logger.warning("Nothing committed for unit %s", unit.id)

        branch = self.runtime.vcs.branch_name(unit.id) if worktree is not None else None
        self.runtime.journal.append(unit, command=command, branch=branch)
        logger.info("Unit %s done after %d attempts", unit.id, unit.attempt)
        return StrikeOutcome(
            unit_id=unit.id,
            success=True,
            attempts=unit.attempt,
            result=ForgeResult(
                unit_id=unit.id,
                branch=branch,
                worktree_path=str(worktree) if worktree is not None else None,
            ),
        )
