"""Local demo agent for CLI backend integration tests.

Reads the prompt from stdin and answers with the unit proof as its command.
"""

from __future__ import annotations

import sys

PROOF_LABEL = "Proof:"


def answer(prompt: str) -> str:
    proof = "true"
    for line in prompt.splitlines():
        stripped = line.strip()
        if stripped.startswith(PROOF_LABEL):
            proof = stripped[len(PROOF_LABEL) :].strip().strip("`") or "true"
            break
    return f"Running the proof directly.\nCOMMAND: {proof}\n"


def main() -> int:
    """Run local deterministic demo generation."""

    sys.stdout.write(answer(sys.stdin.read()))
    return 0


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
