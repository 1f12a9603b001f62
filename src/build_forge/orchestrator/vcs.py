"""Git collaborator: commits, per-unit worktrees, merges and diffs."""

from __future__ import annotations

import logging
import shutil
import subprocess
from pathlib import Path

from build_forge.config import REVIEW_DIFF_LIMIT
from build_forge.orchestrator.attempt_log import safe_unit_id
from build_forge.orchestrator.errors import IsolationError

logger = logging.getLogger(__name__)

BRANCH_PREFIX = "forge/"


class GitRepository:
    """Git operations on the project repository and its unit worktrees."""

    def __init__(
        self,
        root: Path,
        *,
        main_branch: str = "main",
        worktree_root: Path | None = None,
    ) -> None:
        self.root = root
        self.main_branch = main_branch
        self.worktree_root = worktree_root or root.resolve().parent

    def branch_name(self, unit_id: str) -> str:
        return f"{BRANCH_PREFIX}{safe_unit_id(unit_id)}"

    def worktree_path(self, unit_id: str) -> Path:
        return self.worktree_root / f"{self.root.resolve().name}-forge-{safe_unit_id(unit_id)}"

    def is_repository(self) -> bool:
        ok, _ = _git_output(self.root, ["rev-parse", "--git-dir"])
        return ok and (self.root / ".git").exists()

    def init(self) -> None:
        ok, output = _git_output(self.root, ["init", "-b", self.main_branch])
        if not ok:
            raise IsolationError(f"git init failed in {self.root}: {output}")

    def commit(self, workdir: Path, message: str) -> bool:
        """Stage everything in ``workdir`` and commit; False when nothing was committed."""

        ok, output = _git_output(workdir, ["add", "-A"])
        if not ok:
            logger.warning("git add failed in %s: %s", workdir, output)
            return False
        ok, output = _git_output(workdir, ["commit", "-m", message])
        if not ok:
            logger.warning("git commit failed in %s: %s", workdir, output)
        return ok

    def create_worktree(self, unit_id: str) -> Path:
        path = self.worktree_path(unit_id)
        branch = self.branch_name(unit_id)
        if path.exists():
            logger.warning("Removing stale worktree %s", path)
            self._drop_worktree_dir(path)
        self.worktree_root.mkdir(parents=True, exist_ok=True)
        ok, output = _git_output(
            self.root,
            ["worktree", "add", "-B", branch, str(path), self.main_branch],
        )
        if not ok:
            raise IsolationError(f"Cannot create worktree for {unit_id}: {output}")
        return path

    def remove_worktree(self, unit_id: str, *, delete_branch: bool = False) -> None:
        path = self.worktree_path(unit_id)
        if path.exists():
            self._drop_worktree_dir(path)
        if delete_branch:
            ok, output = _git_output(self.root, ["branch", "-D", self.branch_name(unit_id)])
            if not ok:
                logger.warning("Cannot delete branch for %s: %s", unit_id, output)

    def merge_and_cleanup(self, unit_id: str) -> None:
        branch = self.branch_name(unit_id)
        ok, output = _git_output(self.root, ["checkout", self.main_branch])
        if not ok:
            raise IsolationError(f"Cannot check out {self.main_branch}: {output}")
        ok, output = _git_output(
            self.root,
            ["merge", "--no-ff", "-m", f"forge: merge {branch}", branch],
        )
        if not ok:
            raise IsolationError(f"Merge of {branch} failed: {output}")
        self.remove_worktree(unit_id, delete_branch=True)

    def abort_merge(self) -> None:
        ok, output = _git_output(self.root, ["merge", "--abort"])
        if not ok:
            logger.debug("git merge --abort: %s", output)

    def branch_exists(self, unit_id: str) -> bool:
        ok, _ = _git_output(
            self.root,
            ["show-ref", "--verify", f"refs/heads/{self.branch_name(unit_id)}"],
        )
        return ok

    def branch_diff(self, unit_id: str, *, limit: int = REVIEW_DIFF_LIMIT) -> str:
        """Stat plus patch of the unit branch against main, truncated to ``limit``."""

        revisions = f"{self.main_branch}...{self.branch_name(unit_id)}"
        _, stat = _git_output(self.root, ["diff", "--stat", revisions])
        _, patch = _git_output(self.root, ["diff", revisions])
        if len(patch) > limit:
            patch = patch[:limit] + f"\n... diff truncated at {limit} characters"
        return f"{stat}\n\n{patch}".strip()

    def diff_stat(self, workdir: Path | None = None) -> str:
        ok, output = _git_output(workdir or self.root, ["diff", "--stat", "HEAD"])
        return output if ok else ""

    def recent_log(self, workdir: Path | None = None, *, limit: int = 10) -> str:
        ok, output = _git_output(workdir or self.root, ["log", "--oneline", f"-n{limit}"])
        return output if ok else ""

    def _drop_worktree_dir(self, path: Path) -> None:
        ok, output = _git_output(self.root, ["worktree", "remove", "--force", str(path)])
        if not ok:
            logger.warning("git worktree remove failed for %s: %s", path, output)
            shutil.rmtree(path, ignore_errors=True)
            _git_output(self.root, ["worktree", "prune"])


def _git_output(repo: Path, args: list[str]) -> tuple[bool, str]:
    proc = subprocess.run(  # noqa: S603
        ["git", "-C", str(repo), *args],  # noqa: S607
        capture_output=True,
        encoding="utf-8",
        errors="replace",
        check=False,
    )
    text = (proc.stdout + "\n" + proc.stderr).strip()
    return proc.returncode == 0, text
