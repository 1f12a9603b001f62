from __future__ import annotations

from pathlib import Path

import allure

from build_forge.orchestrator.attempt_log import AttemptLog, LogPhase, safe_unit_id
from build_forge.orchestrator.journal import Journal
from build_forge.orchestrator.models import Unit

pytestmark = [
    allure.epic("Attempt Executor"),
    allure.feature("Logs and Journal"),
]


def test_log_names_carry_phase_and_unit(tmp_path: Path) -> None:
    logs = AttemptLog(tmp_path / "logs")

    path = logs.write("api/v1", LogPhase.PROMPT, "hello")

    assert path.name.endswith("__PROMPT__api_v1.log")
    assert path.read_text("utf-8") == "hello"


def test_entries_match_owner_exactly(tmp_path: Path) -> None:
    logs = AttemptLog(tmp_path / "logs")
    logs.write("u1", LogPhase.FAILURE, "mine")
    logs.write("u10", LogPhase.FAILURE, "other unit")
    logs.write("u1", LogPhase.PROMPT, "wrong phase")

    entries = logs.entries("u1")

    assert [path.read_text("utf-8") for path in entries] == ["mine"]


def test_entries_are_newest_first_even_on_collisions(tmp_path: Path) -> None:
    logs = AttemptLog(tmp_path / "logs")
    first = logs.write("u1", LogPhase.FAILURE, "first")
    stamp = first.name.split("__", 1)[0]
    (tmp_path / "logs" / f"{stamp}-2__FAILURE__u1.log").write_text("second", "utf-8")
    (tmp_path / "logs" / f"{stamp}-10__FAILURE__u1.log").write_text("third", "utf-8")

    texts = [path.read_text("utf-8") for path in logs.entries("u1")]

    assert texts == ["third", "second", "first"]


def test_recent_text_reads_three_newest_tails(tmp_path: Path) -> None:
    logs = AttemptLog(tmp_path / "logs")
    for index in range(5):
        logs.write("u1", LogPhase.FAILURE, "\n".join(f"line {n}" for n in range(index + 3)))

    text = logs.recent_text("u1", lines=2)

    assert text.count("--- ") == 3
    assert "line 6" in text
    assert "line 0" not in text


def test_missing_log_dir_has_no_entries(tmp_path: Path) -> None:
    assert AttemptLog(tmp_path / "absent").entries("u1") == []
    assert AttemptLog(tmp_path / "absent").recent_text("u1") == ""


def test_safe_unit_id() -> None:
    assert safe_unit_id("a b/c:d") == "a_b_c_d"
    assert safe_unit_id("u-1.2") == "u-1.2"


def test_journal_appends_entries(tmp_path: Path) -> None:
    journal = Journal(tmp_path / "PROGRESS.md")
    unit = Unit(id="u1", attempt=2, proof="test -f x", description="Make x")

    journal.append(unit, command="touch x", branch="forge/u1")
    journal.append(Unit(id="u2", attempt=1), command="true")

    text = (tmp_path / "PROGRESS.md").read_text("utf-8")
    assert text.startswith("# Progress")
    assert "## u1 (" in text
    assert "- command: `touch x`" in text
    assert "- attempts: 2/5" in text
    assert "- branch: forge/u1" in text
    assert text.count("- branch:") == 1
    assert "(no description)" in text


def test_journal_recent_tail(tmp_path: Path) -> None:
    journal = Journal(tmp_path / "PROGRESS.md")

    assert journal.recent() == ""
    for index in range(10):
        journal.append(Unit(id=f"u{index}"), command="true")

    recent = journal.recent(lines=8)
    assert "## u9" in recent
    assert "## u0" not in recent
