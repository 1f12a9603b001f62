"""Shell execution and agent directive extraction."""

from __future__ import annotations

import logging
import subprocess
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger(__name__)

COMMAND_PREFIX = "COMMAND:"
NO_COMMAND_MESSAGE = "no command found"
TRIVIAL_PROOFS = frozenset({"", "true", ":"})


@dataclass(slots=True)
class ShellResult:
    """Exit status and combined stdout/stderr of one command."""

    ok: bool
    output: str
    exit_code: int


def run_shell(command: str, cwd: Path, *, timeout_seconds: int | None = None) -> ShellResult:
    """Run ``command`` through bash in ``cwd``."""

    logger.debug("Running shell command in %s: %s", cwd, command)
    try:
        completed = subprocess.run(  # noqa: S603
            ["bash", "-c", command],  # noqa: S607
            cwd=cwd,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            encoding="utf-8",
            errors="replace",
            timeout=timeout_seconds,
            check=False,
        )
    except subprocess.TimeoutExpired as error:
        partial = error.stdout if isinstance(error.stdout, str) else ""
        return ShellResult(
            ok=False,
            output=f"{partial}\nCommand timed out after {timeout_seconds}s",
            exit_code=124,
        )
    return ShellResult(
        ok=completed.returncode == 0,
        output=completed.stdout or "",
        exit_code=completed.returncode,
    )


def extract_command(response: str) -> str | None:
    """Return the last ``COMMAND:`` directive in ``response``."""

    command: str | None = None
    for line in response.splitlines():
        stripped = line.strip()
        if not stripped.startswith(COMMAND_PREFIX):
            continue
        candidate = stripped[len(COMMAND_PREFIX) :].strip()
        if candidate:
            command = candidate
    return command


def is_trivial_proof(proof: str) -> bool:
    return proof.strip() in TRIVIAL_PROOFS
