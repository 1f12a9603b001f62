"""Failure classification from attempt logs and the batch recovery pass."""

from __future__ import annotations

import logging
import re
from collections.abc import Callable
from dataclasses import dataclass, field

from build_forge.orchestrator.attempt_log import LogPhase
from build_forge.orchestrator.codec import parse_units
from build_forge.orchestrator.errors import AgentInvocationError
from build_forge.orchestrator.models import (
    AnalysisAction,
    FailureClassification,
    FailurePattern,
    Unit,
    UnitStatus,
)
from build_forge.orchestrator.resmelt import (
    RECONSIDER_ESCALATION,
    Resmelter,
    apply_outcome,
    normalize_replacements,
)
from build_forge.orchestrator.runtime import ForgeRuntime

logger = logging.getLogger(__name__)

_MISSING_FILE_PATTERNS: tuple[str, ...] = (
    "no such file or directory",
    "file not found",
    "does not exist",
    "enoent",
    "cannot open",
)
_PARSE_ERROR_PATTERNS: tuple[str, ...] = (
    "parse error",
    "invalid json",
    "jq:",
    "syntaxerror",
)
_PROTOCOL_PATTERNS: tuple[str, ...] = ("protocol violation",)
_PROOF_FAILURE_PATTERNS: tuple[str, ...] = (
    "proof failed",
    "non-zero exit",
)
_PROOF_FILE_PROBES: tuple[str, ...] = ("test -f", "test -d", "cat ", "jq ")

_MISSING_FILE_RES = (
    re.compile(r"([^\s'\"`:]+)['\"`]?:\s*no such file or directory", re.IGNORECASE),
    re.compile(r"cannot open\s+['\"`]?([^\s'\"`:]+)", re.IGNORECASE),
)

ConfirmForceRetry = Callable[[int], bool]


def classify_failure(unit: Unit, log_texts: list[str]) -> FailureClassification:
    """Classify one failed unit from its logs, newest first, then from its proof."""

    for text in log_texts:
        haystack = _normalize_text(text)

        pattern = _first_match(haystack, _MISSING_FILE_PATTERNS)
        if pattern is not None:
            missing = _missing_file_from_log(text) or _file_from_proof(unit.proof)
            return _classified(unit, FailurePattern.MISSING_DEPENDENCY, pattern, missing)

        pattern = _first_match(haystack, _PARSE_ERROR_PATTERNS)
        if pattern is not None:
            return _classified(unit, FailurePattern.PROOF_MISMATCH, pattern)

        pattern = _first_match(haystack, _PROTOCOL_PATTERNS)
        if pattern is not None:
            return _classified(unit, FailurePattern.PROTOCOL_VIOLATION, pattern)

        pattern = _first_match(haystack, _PROOF_FAILURE_PATTERNS)
        if pattern is not None:
            return _classified(unit, FailurePattern.PROOF_MISMATCH, pattern)

    if unit.independent:
        proof = _normalize_text(unit.proof)
        probe = _first_match(proof, _PROOF_FILE_PROBES)
        if probe is not None:
            return _classified(
                unit,
                FailurePattern.MISSING_DEPENDENCY,
                probe,
                _file_from_proof(unit.proof),
            )
    return _classified(unit, FailurePattern.UNKNOWN, None)


def choose_action(pattern: FailurePattern, unit: Unit) -> AnalysisAction:
    """Map a failure pattern and the unit's escalation to a recovery action."""

    escalation = unit.escalation
    if pattern == FailurePattern.MISSING_DEPENDENCY:
        return AnalysisAction.MAKE_SEQUENTIAL if unit.independent else AnalysisAction.REGENERATE
    if pattern == FailurePattern.PROTOCOL_VIOLATION:
        return AnalysisAction.REGENERATE if escalation >= 2 else AnalysisAction.RETRY
    if pattern == FailurePattern.PROOF_MISMATCH:
        return AnalysisAction.RETRY if escalation == 0 else AnalysisAction.REGENERATE
    if escalation >= 3:
        return AnalysisAction.SKIP
    if escalation < 2:
        return AnalysisAction.RETRY
    return AnalysisAction.REGENERATE


@dataclass(slots=True)
class AnalysisReport:
    """What one batch analysis pass did to the failed units."""

    classifications: list[FailureClassification] = field(default_factory=list)
    retried: list[str] = field(default_factory=list)
    sequentialized: list[str] = field(default_factory=list)
    reconsidered: list[str] = field(default_factory=list)
    regenerated: list[str] = field(default_factory=list)
    replacements: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    fallback: list[str] = field(default_factory=list)
    forced: list[str] = field(default_factory=list)
    has_pending: bool = False

    def lines(self) -> list[str]:
        lines = [
            f"  {item.unit_id}: {item.pattern.value} -> {item.action.value}"
            for item in self.classifications
        ]
        for label, ids in (
            ("retry", self.retried),
            ("sequential", self.sequentialized),
            ("reconsidered", self.reconsidered),
            ("regenerated", self.regenerated),
            ("new units", self.replacements),
            ("regeneration fallback", self.fallback),
            ("skipped", self.skipped),
            ("forced retry", self.forced),
        ):
            if ids:
                lines.append(f"  {label}: {', '.join(ids)}")
        return lines


class BatchAnalyzer:
    """Recovery pass over every failed unit between forge runs."""

    def __init__(
        self,
        runtime: ForgeRuntime,
        *,
        resmelter: Resmelter | None = None,
        confirm_force_retry: ConfirmForceRetry | None = None,
    ) -> None:
        self.runtime = runtime
        self.resmelter = resmelter or Resmelter(runtime)
        self.confirm_force_retry = confirm_force_retry

    def classify(self, unit: Unit) -> FailureClassification:
        texts = [
            path.read_text("utf-8", errors="replace")
            for path in self.runtime.logs.entries(unit.id)
        ]
        return classify_failure(unit, texts)

    def run(self) -> AnalysisReport:
        report = AnalysisReport()
        store = self.runtime.store
        failed = store.read().failed()
        if not failed:
            report.has_pending = store.read().has_pending()
            return report

        report.classifications = [self.classify(unit) for unit in failed]
        to_regenerate: list[Unit] = []
        with store.transaction() as ledger:
            for unit, classification in zip(failed, report.classifications, strict=True):
                current = ledger.require(unit.id)
                action = classification.action
                if action == AnalysisAction.RETRY:
                    _reset(current)
                    report.retried.append(unit.id)
                elif action == AnalysisAction.MAKE_SEQUENTIAL:
                    _reset(current)
                    current.independent = False
                    report.sequentialized.append(unit.id)
                elif action == AnalysisAction.SKIP:
                    report.skipped.append(unit.id)
                else:
                    to_regenerate.append(unit)

        batch: list[Unit] = []
        for unit in to_regenerate:
            if unit.escalation == RECONSIDER_ESCALATION and self._reconsider(unit, report):
                continue
            batch.append(unit)
        if batch:
            self._regenerate(batch, report)

        ledger = store.read()
        remaining = ledger.failed()
        if not ledger.has_pending() and remaining and self.confirm_force_retry is not None:
            if self.confirm_force_retry(len(remaining)):
                with store.transaction() as ledger:
                    for unit in ledger.failed():
                        _reset(unit)
                        report.forced.append(unit.id)
        report.has_pending = store.read().has_pending()
        return report

    def _reconsider(self, unit: Unit, report: AnalysisReport) -> bool:
        outcome = self.resmelter.reconsider(unit)
        if not outcome.success:
            logger.info("Reconsider of %s gave nothing usable: %s", unit.id, outcome.reason)
            return False
        with self.runtime.store.transaction() as ledger:
            if ledger.get(unit.id) is None:
                return False
            units = apply_outcome(ledger, outcome, escalation=unit.escalation + 1)
        report.reconsidered.append(unit.id)
        report.replacements.extend(item.id for item in units)
        return True

    def _regenerate(self, units: list[Unit], report: AnalysisReport) -> None:
        escalation = max(unit.escalation for unit in units) + 1
        prompt = self.runtime.prompts.regenerate(units, escalation)
        replacements: list[Unit] = []
        try:
            response = self.runtime.agents.base().invoke(prompt)
        except AgentInvocationError as error:
            logger.warning("Batch regeneration failed: %s", error)
        else:
            self.runtime.logs.write(units[0].id, LogPhase.REGENERATE, response)
            replacements = parse_units(response)

        with self.runtime.store.transaction() as ledger:
            present = [unit for unit in units if ledger.get(unit.id) is not None]
            if not present:
                return
            if not replacements:
                logger.warning(
                    "Regeneration produced no units; forcing %d unit(s) sequential",
                    len(present),
                )
                for unit in present:
                    current = ledger.require(unit.id)
                    _reset(current)
                    current.independent = False
                    current.escalation += 1
                    report.fallback.append(unit.id)
                return

            anchor, *rest = present
            for unit in rest:
                ledger.remove(unit.id)
            new_units = normalize_replacements(
                ledger,
                anchor.id,
                replacements,
                escalation=escalation,
            )
            ledger.replace(anchor.id, new_units)
        report.regenerated.extend(unit.id for unit in present)
        report.replacements.extend(unit.id for unit in new_units)


def _reset(unit: Unit) -> None:
    unit.status = UnitStatus.PENDING
    unit.attempt = 0


def _classified(
    unit: Unit,
    pattern: FailurePattern,
    matched: str | None,
    missing_file: str | None = None,
) -> FailureClassification:
    return FailureClassification(
        unit_id=unit.id,
        pattern=pattern,
        action=choose_action(pattern, unit),
        missing_file=missing_file,
        matched_pattern=matched,
    )


def _missing_file_from_log(text: str) -> str | None:
    for regex in _MISSING_FILE_RES:
        match = regex.search(text)
        if match:
            return match.group(1)
    return None


def _file_from_proof(proof: str) -> str | None:
    tokens = proof.split()
    for index, token in enumerate(tokens[:-1]):
        if token in ("-f", "-d", "cat"):
            return tokens[index + 1].strip("'\"")
    if tokens and tokens[0] == "jq" and len(tokens) > 2:
        return tokens[-1].strip("'\"")
    return None


def _normalize_text(text: str) -> str:
    return text.lower()


def _first_match(haystack: str, patterns: tuple[str, ...]) -> str | None:
    for pattern in patterns:
        if pattern in haystack:
            return pattern
    return None
