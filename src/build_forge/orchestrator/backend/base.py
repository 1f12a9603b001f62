"""Backend interface for coding agent invocation."""

from __future__ import annotations

from pathlib import Path
from typing import Protocol


class AgentBackend(Protocol):
    """Protocol implemented by agent runners."""

    def invoke(self, prompt: str, *, workdir: Path | None = None) -> str:
        """Send ``prompt`` to the agent and return its free-text response.

        Raises ``AgentInvocationError`` when the agent cannot be run or exits
        with an error.
        """
