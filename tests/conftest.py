"""Shared test fixtures."""

from __future__ import annotations

import os
import subprocess
import sys
from collections.abc import Callable
from pathlib import Path

import pytest

from build_forge.config import ForgeSettings, ProjectPaths, ReviewSettings, Settings
from build_forge.orchestrator.backend.base import AgentBackend
from build_forge.orchestrator.routing import StaticAgentRouter
from build_forge.orchestrator.runtime import ForgeRuntime

RuntimeFactory = Callable[..., ForgeRuntime]


@pytest.fixture(autouse=True)
def isolated_env(monkeypatch, tmp_path: Path) -> None:
    """Drop operator settings and give git a throwaway identity."""

    for name in list(os.environ):
        if name.startswith("BUILD_FORGE_"):
            monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("GIT_CONFIG_GLOBAL", str(tmp_path / "gitconfig"))
    monkeypatch.setenv("GIT_CONFIG_NOSYSTEM", "1")
    monkeypatch.setenv("GIT_AUTHOR_NAME", "Forge Test")
    monkeypatch.setenv("GIT_AUTHOR_EMAIL", "forge@example.com")
    monkeypatch.setenv("GIT_COMMITTER_NAME", "Forge Test")
    monkeypatch.setenv("GIT_COMMITTER_EMAIL", "forge@example.com")


def _git(root: Path, *args: str) -> str:
    completed = subprocess.run(
        ["git", "-C", str(root), *args],
        capture_output=True,
        text=True,
        check=True,
    )
    return completed.stdout.strip()


@pytest.fixture()
def project_dir(tmp_path: Path) -> Path:
    root = tmp_path / "project"
    root.mkdir()
    return root


@pytest.fixture()
def git_repo(project_dir: Path) -> Path:
    """Project directory with an initialized ``main`` branch and one commit."""

    _git(project_dir, "init", "-b", "main")
    (project_dir / ".gitignore").write_text("logs/\n", "utf-8")
    (project_dir / "README.md").write_text("# demo\n", "utf-8")
    _git(project_dir, "add", "-A")
    _git(project_dir, "commit", "-m", "initial")
    return project_dir


@pytest.fixture()
def emitted() -> list[str]:
    return []


@pytest.fixture()
def build_runtime(emitted: list[str]) -> RuntimeFactory:
    def _build(
        root: Path,
        agent: AgentBackend,
        *,
        review: ReviewSettings | None = None,
        **forge: object,
    ) -> ForgeRuntime:
        settings = Settings(
            paths=ProjectPaths(root=root),
            forge=ForgeSettings(worktree_root=root.parent / "worktrees", **forge),
            review=review or ReviewSettings(checks=()),
        )
        return ForgeRuntime.build(
            settings,
            agents=StaticAgentRouter(agent),
            emit=emitted.append,
        )

    return _build


@pytest.fixture()
def git_cmd() -> Callable[..., str]:
    """Run a git command in a repository and return its stdout."""

    return _git


@pytest.fixture()
def echo_agent_command(monkeypatch) -> str:
    """Command line of the deterministic echo agent module."""

    src = Path(__file__).resolve().parents[1] / "src"
    inherited = os.environ.get("PYTHONPATH")
    monkeypatch.setenv(
        "PYTHONPATH",
        os.pathsep.join([str(src), inherited]) if inherited else str(src),
    )
    return f"{sys.executable} -m build_forge.orchestrator.backend.echo_agent"
