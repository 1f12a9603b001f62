"""Runtime configuration for the forge pipeline."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

DEFAULT_AGENT_COMMAND = "claude --dangerously-skip-permissions -p"

HIGH_GRADE = 3
MAX_SELF_ITERATIONS = 3
MAX_SPLIT_UNITS = 4
REVIEW_DIFF_LIMIT = 10_000
FAILURE_LOG_TAIL_LINES = 50


@dataclass(slots=True)
class ProjectPaths:
    """Well-known files inside the project directory."""

    root: Path = Path()
    commission_name: str = "COMMISSION.md"
    blueprint_name: str = "BLUEPRINT.md"
    ledger_name: str = "PLAN.md"
    notes_name: str = "AGENTS.md"
    journal_name: str = "PROGRESS.md"
    log_dir_name: str = "logs"

    @property
    def commission(self) -> Path:
        return self.root / self.commission_name

    @property
    def blueprint(self) -> Path:
        return self.root / self.blueprint_name

    @property
    def ledger(self) -> Path:
        return self.root / self.ledger_name

    @property
    def notes(self) -> Path:
        return self.root / self.notes_name

    @property
    def journal(self) -> Path:
        return self.root / self.journal_name

    @property
    def log_dir(self) -> Path:
        return self.root / self.log_dir_name


@dataclass(slots=True)
class AgentSettings:
    """External coding agent invocation settings."""

    command: str = DEFAULT_AGENT_COMMAND
    timeout_seconds: int = 1_800


@dataclass(slots=True)
class ForgeSettings:
    """Scheduler and recovery budget settings."""

    max_parallel: int = 3
    isolate: bool = False
    max_retry_cycles: int = 2
    main_branch: str = "main"
    worktree_root: Path | None = None
    command_timeout_seconds: int | None = None


@dataclass(slots=True)
class ReviewSettings:
    """Review gate behaviour for isolated branches."""

    skip_review: bool = False
    keep_branches: bool = False
    checks_only: bool = False
    review_all: bool = False
    checks: tuple[tuple[str, str], ...] = (
        ("format", "ruff format --check ."),
        ("lint", "ruff check ."),
        ("test", "pytest -q"),
    )


@dataclass(slots=True)
class Settings:
    """Application settings grouped by concern."""

    paths: ProjectPaths = field(default_factory=ProjectPaths)
    agent: AgentSettings = field(default_factory=AgentSettings)
    forge: ForgeSettings = field(default_factory=ForgeSettings)
    review: ReviewSettings = field(default_factory=ReviewSettings)

    @classmethod
    def from_env(cls, project_dir: Path | None = None) -> Settings:
        """Load settings from environment with defaults for local use."""

        root = project_dir or Path(os.getenv("BUILD_FORGE_PROJECT_DIR", "."))
        worktree_root = os.getenv("BUILD_FORGE_WORKTREE_ROOT", "").strip()
        return cls(
            paths=ProjectPaths(root=root),
            agent=AgentSettings(
                command=os.getenv("BUILD_FORGE_AGENT_COMMAND", DEFAULT_AGENT_COMMAND),
                timeout_seconds=int(os.getenv("BUILD_FORGE_AGENT_TIMEOUT_SECONDS", "1800")),
            ),
            forge=ForgeSettings(
                max_parallel=int(os.getenv("BUILD_FORGE_MAX_PARALLEL", "3")),
                isolate=_env_bool("BUILD_FORGE_ISOLATE", default=False),
                max_retry_cycles=int(os.getenv("BUILD_FORGE_MAX_RETRY_CYCLES", "2")),
                main_branch=os.getenv("BUILD_FORGE_MAIN_BRANCH", "main"),
                worktree_root=Path(worktree_root) if worktree_root else None,
                command_timeout_seconds=_env_timeout("BUILD_FORGE_COMMAND_TIMEOUT_SECONDS"),
            ),
            review=ReviewSettings(
                skip_review=_env_bool("BUILD_FORGE_SKIP_REVIEW", default=False),
                keep_branches=_env_bool("BUILD_FORGE_KEEP_BRANCHES", default=False),
                checks_only=_env_bool("BUILD_FORGE_CHECKS_ONLY", default=False),
                review_all=_env_bool("BUILD_FORGE_REVIEW_ALL", default=False),
                checks=(
                    ("format", os.getenv("BUILD_FORGE_CHECK_FORMAT", "ruff format --check .")),
                    ("lint", os.getenv("BUILD_FORGE_CHECK_LINT", "ruff check .")),
                    ("test", os.getenv("BUILD_FORGE_CHECK_TEST", "pytest -q")),
                ),
            ),
        )

    def validate(self) -> None:
        """Raise configuration error for values the pipeline cannot run with."""

        if self.forge.max_parallel < 1:
            raise ValueError("BUILD_FORGE_MAX_PARALLEL must be >= 1.")
        if self.forge.max_retry_cycles < 0:
            raise ValueError("BUILD_FORGE_MAX_RETRY_CYCLES must be >= 0.")
        if not self.agent.command.strip():
            raise ValueError("BUILD_FORGE_AGENT_COMMAND must not be empty.")
        if self.agent.timeout_seconds <= 0:
            raise ValueError("BUILD_FORGE_AGENT_TIMEOUT_SECONDS must be > 0.")
        timeout = self.forge.command_timeout_seconds
        if timeout is not None and timeout <= 0:
            raise ValueError("BUILD_FORGE_COMMAND_TIMEOUT_SECONDS must be > 0.")

    @property
    def worktree_root(self) -> Path:
        """Directory that receives per-unit worktrees."""

        if self.forge.worktree_root is not None:
            return self.forge.worktree_root
        return self.paths.root.resolve().parent


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    raise ValueError(f"Invalid boolean value for {name}: {value!r}")


def _env_timeout(name: str) -> int | None:
    value = os.getenv(name, "").strip()
    return int(value) if value else None
