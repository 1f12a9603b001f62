"""Per-unit recovery: re-smelt (rewrite or split) and reconsider."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace

from build_forge.config import MAX_SPLIT_UNITS
from build_forge.orchestrator.attempt_log import LogPhase
from build_forge.orchestrator.codec import parse_units
from build_forge.orchestrator.errors import AgentInvocationError
from build_forge.orchestrator.ledger import Ledger
from build_forge.orchestrator.models import Unit, UnitStatus
from build_forge.orchestrator.runtime import ForgeRuntime

logger = logging.getLogger(__name__)

IMPOSSIBLE_MARKER = "IMPOSSIBLE:"
RECONSIDER_ESCALATION = 1


@dataclass(slots=True)
class ResmeltOutcome:
    """Replacement units for a failed unit, or why there are none."""

    unit_id: str
    success: bool
    replacements: list[Unit] = field(default_factory=list)
    reason: str = ""

    @property
    def is_split(self) -> bool:
        return len(self.replacements) > 1


def parse_recovery_response(response: str) -> tuple[list[Unit], str | None]:
    """Records in an agent recovery answer, plus the impossibility reason if declared."""

    for line in response.splitlines():
        stripped = line.strip()
        if stripped.startswith(IMPOSSIBLE_MARKER):
            reason = stripped[len(IMPOSSIBLE_MARKER) :].strip()
            return [], reason or "declared impossible"
    return parse_units(response)[:MAX_SPLIT_UNITS], None


def normalize_replacements(
    ledger: Ledger,
    replaced_id: str,
    replacements: list[Unit],
    *,
    escalation: int,
) -> list[Unit]:
    """Fresh pending copies with the lineage escalation and ids free in ``ledger``."""

    normalized: list[Unit] = []
    assigned: set[str] = set()
    for unit in replacements:
        unit_id = ledger.unique_id(unit.id, replacing=replaced_id, reserved=assigned)
        assigned.add(unit_id)
        normalized.append(
            replace(
                unit,
                id=unit_id,
                status=UnitStatus.PENDING,
                attempt=0,
                escalation=escalation,
                extra=dict(unit.extra),
            )
        )
    return normalized


def apply_outcome(ledger: Ledger, outcome: ResmeltOutcome, *, escalation: int) -> list[Unit]:
    """Swap the failed unit for the outcome's replacements inside a transaction."""

    units = normalize_replacements(
        ledger,
        outcome.unit_id,
        outcome.replacements,
        escalation=escalation,
    )
    ledger.replace(outcome.unit_id, units)
    return units


class Resmelter:
    """Ask the agent to rewrite, split or abandon a unit that ran out of attempts.

    No ledger access happens here: the agent call runs outside any transaction
    and callers apply the outcome with ``apply_outcome``.
    """

    def __init__(self, runtime: ForgeRuntime) -> None:
        self.runtime = runtime

    def resmelt(self, unit: Unit) -> ResmeltOutcome:
        if unit.escalation >= 1:
            return ResmeltOutcome(
                unit_id=unit.id,
                success=False,
                reason=f"already escalated (escalation={unit.escalation})",
            )
        failure_logs = self.runtime.logs.recent_text(unit.id)
        prompt = self.runtime.prompts.resmelt(unit, failure_logs)
        return self._ask(unit, prompt, LogPhase.RESMELT)

    def reconsider(self, unit: Unit) -> ResmeltOutcome:
        """Second tier: rethink a unit that failed again after one re-smelt."""

        if unit.escalation != RECONSIDER_ESCALATION:
            return ResmeltOutcome(
                unit_id=unit.id,
                success=False,
                reason=f"reconsider needs escalation={RECONSIDER_ESCALATION}",
            )
        failure_logs = self.runtime.logs.recent_text(unit.id)
        prompt = self.runtime.prompts.reconsider(unit, failure_logs)
        return self._ask(unit, prompt, LogPhase.RECONSIDER)

    def _ask(self, unit: Unit, prompt: str, phase: LogPhase) -> ResmeltOutcome:
        try:
            response = self.runtime.agents.base().invoke(prompt)
        except AgentInvocationError as error:
            logger.warning("%s of %s failed: %s", phase.value.lower(), unit.id, error)
            return ResmeltOutcome(unit_id=unit.id, success=False, reason=str(error))
        self.runtime.logs.write(unit.id, phase, response)

        replacements, impossible = parse_recovery_response(response)
        if impossible is not None:
            return ResmeltOutcome(unit_id=unit.id, success=False, reason=impossible)
        if not replacements:
            return ResmeltOutcome(unit_id=unit.id, success=False, reason="no unit records in response")
        logger.info(
            "%s of %s produced %d unit(s)", phase.value.lower(), unit.id, len(replacements)
        )
        return ResmeltOutcome(unit_id=unit.id, success=True, replacements=replacements)
