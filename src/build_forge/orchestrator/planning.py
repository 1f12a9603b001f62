"""Commission intake, blueprint survey and founding of the ledger."""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace

from build_forge.config import MAX_SELF_ITERATIONS
from build_forge.orchestrator.backend.base import AgentBackend
from build_forge.orchestrator.codec import parse_units
from build_forge.orchestrator.errors import (
    AgentInvocationError,
    GenerationFailedError,
    NoCommissionError,
    PlanningFailedError,
)
from build_forge.orchestrator.ledger import Ledger
from build_forge.orchestrator.models import Unit, UnitStatus
from build_forge.orchestrator.runtime import ForgeRuntime

logger = logging.getLogger(__name__)

QUESTION_PREFIXES: tuple[str, ...] = (
    "**Question",
    "Question",
    "Which ",
    "What ",
    "Should ",
    "Do you ",
    "Would you ",
    "Can you ",
    "Could you ",
)

NOTES_TEMPLATE = """\
# Agent notes

Patterns, conventions and gotchas learned while building this project.
"""


def has_questions(text: str) -> bool:
    """Whether agent output still asks the operator something."""

    for line in text.splitlines():
        stripped = line.strip()
        if stripped.endswith("?") or stripped.startswith(QUESTION_PREFIXES):
            return True
    return False


@dataclass(slots=True)
class PlanningResult:
    """Which planning steps ran for this invocation."""

    initialized: bool = False
    surveyed: bool = False
    founded: bool = False
    unit_count: int = 0


class Planner:
    """Bring a project directory to the point where the forge can run."""

    def __init__(self, runtime: ForgeRuntime) -> None:
        self.runtime = runtime

    def prepare(self, commission: str | None) -> PlanningResult:
        paths = self.runtime.settings.paths
        store = self.runtime.store
        result = PlanningResult()
        text = (commission or "").strip()

        if text and not paths.commission.exists():
            self.intake(text)
            result.initialized = True
        elif not paths.commission.exists():
            if store.exists() and store.read().units:
                logger.info("No commission file, resuming from existing ledger %s", store.path)
                result.unit_count = len(store.read().units)
                return result
            raise NoCommissionError()
        elif text and paths.commission.read_text("utf-8").strip() != text:
            logger.warning(
                "%s already exists; continuing with the stored commission",
                paths.commission_name,
            )

        stored = paths.commission.read_text("utf-8")
        if not paths.blueprint.exists():
            self.survey(stored)
            result.surveyed = True
        if not store.exists() or not store.read().units:
            self.found(stored, paths.blueprint.read_text("utf-8"))
            result.founded = True
        result.unit_count = len(store.read().units)
        return result

    def intake(self, commission: str) -> None:
        """Write the commission and initialize the workspace around it."""

        paths = self.runtime.settings.paths
        vcs = self.runtime.vcs
        paths.root.mkdir(parents=True, exist_ok=True)
        paths.commission.write_text(commission.rstrip() + "\n", "utf-8")
        if not vcs.is_repository():
            vcs.init()

        gitignore = paths.root / ".gitignore"
        ignored = f"{paths.log_dir_name}/"
        existing = gitignore.read_text("utf-8") if gitignore.exists() else ""
        if ignored not in existing.splitlines():
            prefix = existing if not existing or existing.endswith("\n") else existing + "\n"
            gitignore.write_text(f"{prefix}{ignored}\n", "utf-8")
        if not paths.notes.exists():
            paths.notes.write_text(NOTES_TEMPLATE, "utf-8")
        self.runtime.journal.ensure()
        paths.log_dir.mkdir(parents=True, exist_ok=True)

        vcs.commit(paths.root, "chore: initialize forge workspace")
        self.runtime.emit(f"Initialized forge workspace in {paths.root}")

    def survey(self, commission: str) -> str:
        self.runtime.emit("Surveying commission into a blueprint")
        agent = self.runtime.agents.planner()
        try:
            blueprint = self._self_iterate(agent, agent.invoke(self.runtime.prompts.survey(commission)))
        except AgentInvocationError as error:
            raise PlanningFailedError(f"Survey failed: {error}") from error
        if not blueprint.strip():
            raise PlanningFailedError("Survey returned an empty blueprint.")
        self.runtime.settings.paths.blueprint.write_text(blueprint, "utf-8")
        return blueprint

    def found(self, commission: str, blueprint: str) -> Ledger:
        self.runtime.emit("Founding work units from the blueprint")
        agent = self.runtime.agents.planner()
        prompt = self.runtime.prompts.found(commission, blueprint)
        try:
            raw = self._self_iterate(agent, agent.invoke(prompt))
        except AgentInvocationError as error:
            raise PlanningFailedError(f"Founding failed: {error}") from error

        units = _fresh_units(parse_units(raw))
        if not units:
            raise GenerationFailedError()
        paths = self.runtime.settings.paths
        ledger = Ledger.create(paths.ledger, units, blueprint_name=paths.blueprint_name)
        self.runtime.vcs.commit(paths.root, "chore: plan work units")
        self.runtime.emit(f"Founded {len(units)} unit(s)")
        return ledger

    def _self_iterate(self, agent: AgentBackend, raw: str) -> str:
        iterations = 0
        while has_questions(raw) and iterations < MAX_SELF_ITERATIONS:
            iterations += 1
            logger.info("Planning output has questions, self-query %d", iterations)
            raw = agent.invoke(self.runtime.prompts.self_query(raw))
        return raw


def _fresh_units(units: list[Unit]) -> list[Unit]:
    seen: set[str] = set()
    fresh: list[Unit] = []
    for unit in units:
        unit_id = unit.id
        suffix = 2
        while unit_id in seen:
            unit_id = f"{unit.id}-{suffix}"
            suffix += 1
        seen.add(unit_id)
        fresh.append(replace(unit, id=unit_id, status=UnitStatus.PENDING, attempt=0))
    return fresh
