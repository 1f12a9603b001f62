"""Subprocess-based backend runner for CLI agents."""

from __future__ import annotations

import logging
import shlex
import subprocess
from pathlib import Path

from build_forge.orchestrator.errors import AgentInvocationError

logger = logging.getLogger(__name__)

TIMEOUT_EXIT_CODE = 124


class CliAgentBackend:
    """Run an agent command line with the prompt on stdin."""

    def __init__(self, command: str, *, timeout_seconds: int = 1_800) -> None:
        self.command = command
        self.timeout_seconds = timeout_seconds

    def invoke(self, prompt: str, *, workdir: Path | None = None) -> str:
        run_args = _build_run_args(self.command)
        logger.debug("Invoking agent %s in %s", run_args[0], workdir or ".")
        try:
            process = subprocess.Popen(  # noqa: S603
                run_args,
                cwd=workdir,
                stdin=subprocess.PIPE,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                encoding="utf-8",
                errors="replace",
            )
        except FileNotFoundError as error:
            raise AgentInvocationError(f"CLI backend command not found: {run_args[0]}") from error
        except OSError as error:
            raise AgentInvocationError(f"CLI backend failed to start: {error}") from error

        try:
            stdout, stderr = process.communicate(prompt, timeout=self.timeout_seconds)
        except subprocess.TimeoutExpired as error:
            _terminate_process(process)
            raise AgentInvocationError(
                f"Agent timed out after {self.timeout_seconds}s "
                f"(exit {TIMEOUT_EXIT_CODE})",
            ) from error

        if process.returncode != 0:
            detail = (stderr or stdout or "").strip()
            raise AgentInvocationError(f"Agent exited with code {process.returncode}: {detail}")
        return stdout


def _build_run_args(command: str) -> list[str]:
    stripped = command.strip()
    if not stripped:
        raise AgentInvocationError("CLI backend command is empty.")
    try:
        argv = shlex.split(stripped)
    except ValueError as error:
        raise AgentInvocationError(f"CLI backend command cannot be parsed: {error}") from error
    if not argv:
        raise AgentInvocationError("CLI backend command is empty.")
    return argv


def _terminate_process(process: subprocess.Popen[str]) -> None:
    try:
        process.terminate()
    except OSError:
        return
    try:
        process.communicate(timeout=2)
    except subprocess.TimeoutExpired:
        try:
            process.kill()
        except OSError:
            return
        process.communicate(timeout=2)
