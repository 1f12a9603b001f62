"""Error taxonomy for the forge pipeline."""

from __future__ import annotations


class ForgeError(RuntimeError):
    """Base class for structural forge failures."""


class NoCommissionError(ForgeError):
    def __init__(self) -> None:
        super().__init__("No commission found: provide commission text or resume an existing ledger.")


class PlanningFailedError(ForgeError):
    """Survey or founding step could not obtain planning output."""


class GenerationFailedError(ForgeError):
    def __init__(self) -> None:
        super().__init__("Planning produced no units.")


class LedgerParseError(ForgeError):
    """Ledger file is structurally unusable."""


class UnitFailedError(ForgeError):
    def __init__(self, unit_id: str, attempts: int) -> None:
        super().__init__(f"Unit {unit_id} failed after {attempts} attempts.")
        self.unit_id = unit_id
        self.attempts = attempts


class BatchFailedError(ForgeError):
    def __init__(self, count: int) -> None:
        super().__init__(f"Forge halted with {count} failed units.")
        self.count = count


class ProofFailedError(ForgeError):
    def __init__(self, unit_id: str, reason: str) -> None:
        super().__init__(f"Proof failed for {unit_id}: {reason}")
        self.unit_id = unit_id
        self.reason = reason


class IsolationError(ForgeError):
    """Worktree or branch operation failed."""


class ReviewFailedError(ForgeError):
    def __init__(self, rejected_count: int) -> None:
        super().__init__(f"Review failed: {rejected_count} branches rejected.")
        self.rejected_count = rejected_count


class CiCheckFailedError(ForgeError):
    def __init__(self, branch: str, reason: str) -> None:
        super().__init__(f"CI check failed for branch {branch}: {reason}")
        self.branch = branch
        self.reason = reason


class AgentInvocationError(ForgeError):
    """Agent process could not be started, timed out or exited non-zero."""
