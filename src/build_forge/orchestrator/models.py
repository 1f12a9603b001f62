"""Domain models for the forge ledger and its recovery passes."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

from build_forge.config import HIGH_GRADE


class UnitStatus(str, Enum):
    """Ledger lifecycle states of a unit."""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    DONE = "done"
    FAILED = "failed"

    @classmethod
    def parse(cls, token: str) -> UnitStatus | None:
        try:
            return cls(token)
        except ValueError:
            return None


_WEB_ALIASES = frozenset({"web", "frontend", "ui", "css", "html"})


class Skill(str, Enum):
    """Agent tool profile selector."""

    WEB = "web"
    API = "api"
    CLI = "cli"
    DEFAULT = "default"

    @classmethod
    def parse(cls, token: str) -> Skill:
        normalized = token.strip().lower()
        if normalized in _WEB_ALIASES:
            return cls.WEB
        if normalized == "api":
            return cls.API
        if normalized == "cli":
            return cls.CLI
        return cls.DEFAULT


@dataclass(slots=True)
class Unit:
    """One atomic piece of work with a shell-checkable completion criterion."""

    id: str
    status: UnitStatus = UnitStatus.PENDING
    independent: bool = True
    grade: int = 1
    skill: Skill = Skill.DEFAULT
    attempt: int = 0
    attempt_limit: int = 5
    escalation: int = 0
    proof: str = "true"
    description: str = ""
    extra: dict[str, str] = field(default_factory=dict)

    @property
    def is_complex(self) -> bool:
        return self.grade >= HIGH_GRADE

    @property
    def is_web(self) -> bool:
        return self.skill == Skill.WEB


@dataclass(slots=True)
class LedgerCounts:
    """Unit totals by status."""

    total: int = 0
    pending: int = 0
    in_progress: int = 0
    done: int = 0
    failed: int = 0

    @property
    def percent_done(self) -> int:
        if self.total == 0:
            return 0
        return self.done * 100 // self.total


@dataclass(slots=True)
class ForgeResult:
    """Completed unit, with its branch when isolation was active."""

    unit_id: str
    branch: str | None = None
    worktree_path: str | None = None


class FailurePattern(str, Enum):
    """Failure families recognised in attempt logs."""

    MISSING_DEPENDENCY = "missing_dependency"
    PROTOCOL_VIOLATION = "protocol_violation"
    PROOF_MISMATCH = "proof_mismatch"
    UNKNOWN = "unknown"


class AnalysisAction(str, Enum):
    """Recovery action chosen for a failed unit."""

    RETRY = "retry"
    MAKE_SEQUENTIAL = "make_sequential"
    REGENERATE = "regenerate"
    SKIP = "skip"


@dataclass(slots=True)
class FailureClassification:
    """Pattern and recommended action for one failed unit."""

    unit_id: str
    pattern: FailurePattern
    action: AnalysisAction
    missing_file: str | None = None
    matched_pattern: str | None = None


@dataclass(slots=True)
class CiCheckResult:
    """Outcome of one automated check on a branch."""

    name: str
    command: str
    passed: bool
    output: str


@dataclass(slots=True)
class CiResult:
    """All automated checks run for one branch."""

    checks: list[CiCheckResult] = field(default_factory=list)

    @property
    def passed(self) -> bool:
        return all(check.passed for check in self.checks)

    def failures(self) -> list[CiCheckResult]:
        return [check for check in self.checks if not check.passed]

    def summary(self) -> str:
        if not self.checks:
            return "no checks"
        return " ".join(
            f"{check.name}:{'ok' if check.passed else 'FAIL'}" for check in self.checks
        )
