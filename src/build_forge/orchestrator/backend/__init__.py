"""Agent backend implementations."""

from build_forge.orchestrator.backend.base import AgentBackend
from build_forge.orchestrator.backend.cli_backend import CliAgentBackend
from build_forge.orchestrator.backend.scripted import ScriptedAgentBackend

__all__ = [
    "AgentBackend",
    "CliAgentBackend",
    "ScriptedAgentBackend",
]
