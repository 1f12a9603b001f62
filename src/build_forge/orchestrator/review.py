"""Review gate: automated checks and agent review before merging unit branches."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path

from build_forge.orchestrator.attempt_log import LogPhase
from build_forge.orchestrator.errors import (
    AgentInvocationError,
    CiCheckFailedError,
    IsolationError,
    ReviewFailedError,
)
from build_forge.orchestrator.models import CiCheckResult, CiResult, ForgeResult
from build_forge.orchestrator.runtime import ForgeRuntime
from build_forge.orchestrator.shell import run_shell

logger = logging.getLogger(__name__)

COMMENTS_LABEL = "COMMENTS:"


@dataclass(slots=True)
class ReviewVerdict:
    approved: bool
    comments: str


@dataclass(slots=True)
class BranchReview:
    """Gate decision for one unit branch."""

    unit_id: str
    branch: str
    ci: CiResult
    approved: bool
    comments: str = ""
    merged: bool = False


@dataclass(slots=True)
class ReviewReport:
    reviews: list[BranchReview] = field(default_factory=list)

    @property
    def approved(self) -> int:
        return sum(1 for review in self.reviews if review.merged)

    @property
    def rejected(self) -> int:
        return sum(1 for review in self.reviews if not review.merged)


def parse_verdict(response: str, *, ci_passed: bool) -> ReviewVerdict:
    """Read STATUS and COMMENTS from a reviewer answer.

    REJECTED anywhere wins; an answer with neither word approves only on green CI.
    """

    upper = response.upper()
    if "REJECTED" in upper:
        approved = False
    elif "APPROVED" in upper:
        approved = True
    else:
        approved = ci_passed

    comments: list[str] = []
    collecting = False
    for line in response.splitlines():
        stripped = line.strip()
        if not collecting and stripped.upper().startswith(COMMENTS_LABEL):
            collecting = True
            rest = stripped[len(COMMENTS_LABEL) :].strip()
            if rest:
                comments.append(rest)
            continue
        if collecting and stripped:
            comments.append(stripped)
    return ReviewVerdict(approved=approved, comments=" ".join(comments))


class ReviewGate:
    """Check, review and merge every completed unit branch."""

    def __init__(self, runtime: ForgeRuntime) -> None:
        self.runtime = runtime
        self.settings = runtime.settings.review

    def run_checks(self, workdir: Path) -> CiResult:
        result = CiResult()
        for name, command in self.settings.checks:
            if not command.strip():
                continue
            shell = run_shell(
                command,
                workdir,
                timeout_seconds=self.runtime.settings.forge.command_timeout_seconds,
            )
            result.checks.append(
                CiCheckResult(name=name, command=command, passed=shell.ok, output=shell.output)
            )
        return result

    def review(self, results: list[ForgeResult]) -> ReviewReport:
        report = ReviewReport()
        for result in results:
            if result.branch is None:
                continue
            review = self._review_branch(result)
            if review.approved:
                self._merge(review)
            else:
                self._discard(review)
            report.reviews.append(review)
            verdict = "merged" if review.merged else "rejected"
            self.runtime.emit(f"[{review.unit_id}] review {verdict}: {review.ci.summary()}")
            if review.comments:
                self.runtime.emit(f"    {review.comments[:200]}")

        self.runtime.emit(
            f"Review complete: {report.approved} approved, {report.rejected} rejected"
        )
        if report.rejected > 0 and report.approved == 0:
            raise ReviewFailedError(report.rejected)
        return report

    def _review_branch(self, result: ForgeResult) -> BranchReview:
        branch = result.branch or self.runtime.vcs.branch_name(result.unit_id)
        workdir = Path(result.worktree_path) if result.worktree_path else None
        if workdir is None or not workdir.is_dir():
            ci = CiResult(
                checks=[
                    CiCheckResult(
                        name="worktree",
                        command="",
                        passed=False,
                        output=f"worktree missing for {branch}",
                    )
                ]
            )
        else:
            ci = self.run_checks(workdir)

        if self.settings.checks_only:
            return BranchReview(
                unit_id=result.unit_id,
                branch=branch,
                ci=ci,
                approved=ci.passed,
                comments="" if ci.passed else _ci_reason(branch, ci),
            )
        if not ci.passed and not self.settings.review_all:
            return BranchReview(
                unit_id=result.unit_id,
                branch=branch,
                ci=ci,
                approved=False,
                comments=_ci_reason(branch, ci),
            )

        diff = self.runtime.vcs.branch_diff(result.unit_id)
        prompt = self.runtime.prompts.review(result.unit_id, diff, ci)
        try:
            response = self.runtime.agents.base().invoke(prompt, workdir=workdir)
        except AgentInvocationError as error:
            logger.warning("Review of %s failed: %s", branch, error)
            return BranchReview(
                unit_id=result.unit_id,
                branch=branch,
                ci=ci,
                approved=False,
                comments=f"review agent failed: {error}",
            )
        self.runtime.logs.write(result.unit_id, LogPhase.REVIEW, response)
        verdict = parse_verdict(response, ci_passed=ci.passed)
        return BranchReview(
            unit_id=result.unit_id,
            branch=branch,
            ci=ci,
            approved=verdict.approved,
            comments=verdict.comments,
        )

    def _merge(self, review: BranchReview) -> None:
        try:
            self.runtime.vcs.merge_and_cleanup(review.unit_id)
        except IsolationError as error:
            logger.warning("Merge of %s failed: %s", review.branch, error)
            self.runtime.vcs.abort_merge()
            review.approved = False
            review.comments = f"merge failed: {error}"
            return
        review.merged = True

    def _discard(self, review: BranchReview) -> None:
        if self.settings.keep_branches:
            return
        self.runtime.vcs.remove_worktree(review.unit_id, delete_branch=True)


def _ci_reason(branch: str, ci: CiResult) -> str:
    failing = ", ".join(check.name for check in ci.failures())
    return str(CiCheckFailedError(branch, f"failing checks: {failing}"))
