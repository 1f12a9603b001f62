"""Deterministic agent returning canned responses."""

from __future__ import annotations

import threading
from collections.abc import Callable, Sequence
from pathlib import Path

from build_forge.orchestrator.errors import AgentInvocationError

Responder = Callable[[str, Path | None], str]


class ScriptedAgentBackend:
    """Agent double for scheduler and recovery runs without a live agent.

    Either cycles through ``responses`` in call order or delegates to
    ``responder``. A response that is an exception instance is raised instead
    of returned. Every prompt is recorded.
    """

    def __init__(
        self,
        responses: Sequence[str | Exception] = (),
        *,
        responder: Responder | None = None,
    ) -> None:
        if not responses and responder is None:
            raise ValueError("ScriptedAgentBackend needs responses or a responder.")
        self._responses = list(responses)
        self._responder = responder
        self._lock = threading.Lock()
        self.prompts: list[str] = []
        self.workdirs: list[Path | None] = []

    @property
    def call_count(self) -> int:
        with self._lock:
            return len(self.prompts)

    def invoke(self, prompt: str, *, workdir: Path | None = None) -> str:
        with self._lock:
            index = len(self.prompts)
            self.prompts.append(prompt)
            self.workdirs.append(workdir)
        if self._responder is not None:
            return self._responder(prompt, workdir)

        response = self._responses[index % len(self._responses)]
        if isinstance(response, AgentInvocationError):
            raise response
        if isinstance(response, Exception):
            raise AgentInvocationError(str(response)) from response
        return response
