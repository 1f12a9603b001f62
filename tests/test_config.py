from __future__ import annotations

from pathlib import Path

import allure
import pytest

from build_forge.config import AgentSettings, ForgeSettings, ProjectPaths, Settings

pytestmark = [
    allure.epic("Forge CLI"),
    allure.feature("Settings"),
]


def test_from_env_defaults(tmp_path: Path) -> None:
    settings = Settings.from_env(project_dir=tmp_path)

    assert settings.paths.ledger == tmp_path / "PLAN.md"
    assert settings.forge.max_parallel == 3
    assert settings.forge.isolate is False
    assert settings.forge.max_retry_cycles == 2
    assert settings.forge.command_timeout_seconds is None
    assert settings.worktree_root == tmp_path.resolve().parent
    assert [name for name, _ in settings.review.checks] == ["format", "lint", "test"]


def test_from_env_reads_overrides(tmp_path: Path, monkeypatch) -> None:
    monkeypatch.setenv("BUILD_FORGE_PROJECT_DIR", str(tmp_path))
    monkeypatch.setenv("BUILD_FORGE_AGENT_COMMAND", "codex exec")
    monkeypatch.setenv("BUILD_FORGE_MAX_PARALLEL", "5")
    monkeypatch.setenv("BUILD_FORGE_ISOLATE", "yes")
    monkeypatch.setenv("BUILD_FORGE_KEEP_BRANCHES", "1")
    monkeypatch.setenv("BUILD_FORGE_WORKTREE_ROOT", str(tmp_path / "trees"))
    monkeypatch.setenv("BUILD_FORGE_CHECK_LINT", "")
    monkeypatch.setenv("BUILD_FORGE_COMMAND_TIMEOUT_SECONDS", "90")

    settings = Settings.from_env()

    assert settings.paths.root == tmp_path
    assert settings.agent.command == "codex exec"
    assert settings.forge.max_parallel == 5
    assert settings.forge.isolate is True
    assert settings.review.keep_branches is True
    assert settings.worktree_root == tmp_path / "trees"
    assert ("lint", "") in settings.review.checks
    assert settings.forge.command_timeout_seconds == 90


def test_invalid_boolean_is_rejected(monkeypatch) -> None:
    monkeypatch.setenv("BUILD_FORGE_ISOLATE", "maybe")

    with pytest.raises(ValueError, match="BUILD_FORGE_ISOLATE"):
        Settings.from_env()


def test_validate_rejects_unusable_values() -> None:
    with pytest.raises(ValueError, match="MAX_PARALLEL"):
        Settings(forge=ForgeSettings(max_parallel=0)).validate()
    with pytest.raises(ValueError, match="MAX_RETRY_CYCLES"):
        Settings(forge=ForgeSettings(max_retry_cycles=-1)).validate()
    with pytest.raises(ValueError, match="AGENT_COMMAND"):
        Settings(agent=AgentSettings(command="  ")).validate()
    with pytest.raises(ValueError, match="COMMAND_TIMEOUT_SECONDS"):
        Settings(forge=ForgeSettings(command_timeout_seconds=0)).validate()


def test_project_paths_use_configured_names(tmp_path: Path) -> None:
    paths = ProjectPaths(root=tmp_path, ledger_name="WORK.md", log_dir_name=".forge-logs")

    assert paths.ledger == tmp_path / "WORK.md"
    assert paths.log_dir == tmp_path / ".forge-logs"
    assert paths.commission == tmp_path / "COMMISSION.md"
