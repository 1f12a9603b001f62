"""Agent profile selection by unit skill and grade."""

from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Protocol

from build_forge.config import HIGH_GRADE, AgentSettings
from build_forge.orchestrator.backend.base import AgentBackend
from build_forge.orchestrator.backend.cli_backend import CliAgentBackend
from build_forge.orchestrator.models import Skill, Unit

PLAN_MODE_FLAGS = "--permission-mode plan"
WEB_TOOL_FLAGS = "--allowedTools 'Bash Edit Read Write Glob Grep WebFetch mcp__playwright'"


@dataclass(slots=True)
class AgentProfiles:
    """Command lines for each agent profile."""

    base: str
    plan: str
    web: str
    web_plan: str

    @classmethod
    def from_command(cls, command: str) -> AgentProfiles:
        base = command.strip()
        return cls(
            base=base,
            plan=f"{base} {PLAN_MODE_FLAGS}",
            web=f"{base} {WEB_TOOL_FLAGS}",
            web_plan=f"{base} {WEB_TOOL_FLAGS} {PLAN_MODE_FLAGS}",
        )

    def select(self, skill: Skill, grade: int) -> str:
        planning = grade >= HIGH_GRADE
        if skill == Skill.WEB:
            return self.web_plan if planning else self.web
        return self.plan if planning else self.base


class AgentRouter(Protocol):
    """Source of agent backends for each role."""

    def for_unit(self, unit: Unit) -> AgentBackend:
        """Backend that works on ``unit``."""

    def base(self) -> AgentBackend:
        """Backend for recovery and review prompts."""

    def planner(self) -> AgentBackend:
        """Backend for survey and founding prompts."""


class CommandAgentRouter:
    """Router building one ``CliAgentBackend`` per distinct command line."""

    def __init__(self, settings: AgentSettings) -> None:
        self.profiles = AgentProfiles.from_command(settings.command)
        self.timeout_seconds = settings.timeout_seconds
        self._backends: dict[str, CliAgentBackend] = {}
        self._lock = threading.Lock()

    def for_unit(self, unit: Unit) -> AgentBackend:
        return self._backend(self.profiles.select(unit.skill, unit.grade))

    def base(self) -> AgentBackend:
        return self._backend(self.profiles.base)

    def planner(self) -> AgentBackend:
        return self._backend(self.profiles.base)

    def _backend(self, command: str) -> CliAgentBackend:
        with self._lock:
            backend = self._backends.get(command)
            if backend is None:
                backend = CliAgentBackend(command, timeout_seconds=self.timeout_seconds)
                self._backends[command] = backend
        return backend


class StaticAgentRouter:
    """Router that answers every role with the same backend."""

    def __init__(self, backend: AgentBackend) -> None:
        self.backend = backend

    def for_unit(self, unit: Unit) -> AgentBackend:
        return self.backend

    def base(self) -> AgentBackend:
        return self.backend

    def planner(self) -> AgentBackend:
        return self.backend
