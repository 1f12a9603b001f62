from __future__ import annotations

import logging
from pathlib import Path

import allure
import pytest

from build_forge.orchestrator.errors import LedgerParseError
from build_forge.orchestrator.ledger import Ledger, LedgerStore
from build_forge.orchestrator.models import Unit, UnitStatus

pytestmark = [
    allure.epic("Ledger"),
    allure.feature("Ledger State"),
]


def _units() -> list[Unit]:
    return [
        Unit(id="i1", description="first"),
        Unit(id="i2", description="second"),
        Unit(id="s1", independent=False, description="third"),
        Unit(id="s2", independent=False, description="fourth"),
    ]


def test_load_keeps_header_and_drops_bad_record_line(tmp_path: Path, caplog) -> None:
    path = tmp_path / "PLAN.md"
    path.write_text(
        ";; header one\n"
        "free text stays\n"
        '(unit :id "a" :status pending)\n'
        "(unit :status pending)\n"
        '(unit :id "b" :status done)\n',
        "utf-8",
    )

    with caplog.at_level(logging.WARNING):
        ledger = Ledger.load(path)

    assert ledger.header == [";; header one", "free text stays"]
    assert [unit.id for unit in ledger.units] == ["a", "b"]
    assert "Dropping unparseable ledger line" in caplog.text


def test_load_rejects_duplicate_ids_and_non_utf8(tmp_path: Path) -> None:
    duplicated = tmp_path / "dup.md"
    duplicated.write_text('(unit :id "a")\n(unit :id "a")\n', "utf-8")
    binary = tmp_path / "bin.md"
    binary.write_bytes(b"\xff\xfe(unit")

    with pytest.raises(LedgerParseError, match="Duplicate unit id"):
        Ledger.load(duplicated)
    with pytest.raises(LedgerParseError, match="UTF-8"):
        Ledger.load(binary)


def test_save_and_reload_is_idempotent(tmp_path: Path) -> None:
    path = tmp_path / "PLAN.md"
    created = Ledger.create(path, _units())

    first = Ledger.load(path)
    first.save()
    second = Ledger.load(path)

    assert len(created.header) == 2
    assert second.units == first.units == created.units
    assert len(second.header) == len(first.header)
    assert path.read_text("utf-8").count("(unit ") == 4


def test_status_and_attempt_updates(tmp_path: Path) -> None:
    ledger = Ledger.create(tmp_path / "PLAN.md", _units())

    ledger.set_status("i1", UnitStatus.DONE)
    assert ledger.increment_attempt("i2") == 1
    assert ledger.increment_attempt("i2") == 2

    assert ledger.require("i1").status == UnitStatus.DONE
    assert ledger.require("i2").attempt == 2
    with pytest.raises(KeyError):
        ledger.set_status("missing", UnitStatus.DONE)


def test_replace_with_single_unit_keeps_count(tmp_path: Path) -> None:
    ledger = Ledger.create(tmp_path / "PLAN.md", _units())

    ledger.replace("i2", [Unit(id="i2r", escalation=1)])

    assert ledger.counts().total == 4
    assert ledger.get("i2") is None
    assert [unit.id for unit in ledger.units] == ["i1", "i2r", "s1", "s2"]


def test_replace_with_split_preserves_position(tmp_path: Path) -> None:
    ledger = Ledger.create(tmp_path / "PLAN.md", _units())

    ledger.replace("s1", [Unit(id="s1a", escalation=1), Unit(id="s1b", escalation=1)])

    assert ledger.counts().total == 5
    assert [unit.id for unit in ledger.units] == ["i1", "i2", "s1a", "s1b", "s2"]


def test_replace_refuses_duplicate_ids(tmp_path: Path) -> None:
    ledger = Ledger.create(tmp_path / "PLAN.md", _units())

    with pytest.raises(LedgerParseError):
        ledger.replace("i1", [Unit(id="i2")])
    with pytest.raises(LedgerParseError):
        ledger.replace("i1", [Unit(id="x"), Unit(id="x")])


def test_counts_and_dispatch_queries(tmp_path: Path) -> None:
    ledger = Ledger.create(tmp_path / "PLAN.md", _units())
    ledger.set_status("i1", UnitStatus.IN_PROGRESS)
    ledger.set_status("s1", UnitStatus.FAILED)

    counts = ledger.counts()

    assert counts.total == len(ledger.units)
    assert counts.pending + counts.in_progress + counts.done + counts.failed == counts.total
    assert (counts.pending, counts.in_progress, counts.failed) == (2, 1, 1)
    assert [unit.id for unit in ledger.independent_pending()] == ["i2"]
    assert ledger.next_sequential_pending().id == "s2"
    assert [unit.id for unit in ledger.failed()] == ["s1"]
    assert ledger.has_pending()


def test_has_pending_counts_in_progress(tmp_path: Path) -> None:
    ledger = Ledger.create(tmp_path / "PLAN.md", [Unit(id="a", status=UnitStatus.IN_PROGRESS)])

    assert ledger.has_pending()
    assert ledger.independent_pending() == []
    assert ledger.next_sequential_pending() is None


def test_unique_id_and_stale_reset(tmp_path: Path) -> None:
    ledger = Ledger.create(
        tmp_path / "PLAN.md",
        [
            Unit(id="a", status=UnitStatus.IN_PROGRESS),
            Unit(id="a-2"),
            Unit(id="b", status=UnitStatus.DONE),
        ],
    )

    assert ledger.unique_id("c") == "c"
    assert ledger.unique_id("a") == "a-3"
    assert ledger.unique_id("a", replacing="a") == "a"
    assert ledger.unique_id("c", reserved={"c"}) == "c-2"
    assert ledger.reset_in_progress() == ["a"]
    assert ledger.require("a").status == UnitStatus.PENDING


def test_transaction_saves_only_on_clean_exit(tmp_path: Path) -> None:
    path = tmp_path / "PLAN.md"
    Ledger.create(path, _units())
    store = LedgerStore(path)

    with store.transaction() as ledger:
        ledger.set_status("i1", UnitStatus.DONE)
    with pytest.raises(RuntimeError), store.transaction() as ledger:
        ledger.set_status("i2", UnitStatus.DONE)
        raise RuntimeError("abort")

    reloaded = store.read()
    assert reloaded.require("i1").status == UnitStatus.DONE
    assert reloaded.require("i2").status == UnitStatus.PENDING


def test_form_feed_in_description_survives_reload(tmp_path: Path) -> None:
    path = tmp_path / "PLAN.md"
    unit = Unit(id="a", description="x\x0cy", extra={"k": "v"})
    Ledger(path=path, units=[unit]).save()

    reloaded = Ledger.load(path)

    assert reloaded.header == []
    assert reloaded.units == [unit]


def test_save_replaces_file_without_leftovers(tmp_path: Path) -> None:
    path = tmp_path / "PLAN.md"
    ledger = Ledger.create(path, _units())
    ledger.set_status("i1", UnitStatus.DONE)

    ledger.save()

    assert [entry.name for entry in tmp_path.iterdir()] == ["PLAN.md"]
    assert Ledger.load(path).require("i1").status == UnitStatus.DONE
