from __future__ import annotations

from pathlib import Path

import allure
from hypothesis import HealthCheck, given, settings
from hypothesis import strategies as st

from build_forge.orchestrator.codec import KNOWN_FIELDS, parse_unit, parse_units, serialize_unit
from build_forge.orchestrator.ledger import Ledger
from build_forge.orchestrator.models import Skill, Unit, UnitStatus

pytestmark = [
    allure.epic("Ledger"),
    allure.feature("Record Codec"),
]


def test_parse_applies_defaults_for_absent_fields() -> None:
    unit = parse_unit('(unit :id "u1")')

    assert unit is not None
    assert unit.id == "u1"
    assert unit.status == UnitStatus.PENDING
    assert unit.independent is True
    assert unit.grade == 1
    assert unit.skill == Skill.DEFAULT
    assert unit.attempt == 0
    assert unit.attempt_limit == 5
    assert unit.escalation == 0
    assert unit.proof == "true"
    assert unit.description == ""
    assert unit.extra == {}


def test_parse_reads_every_known_field() -> None:
    unit = parse_unit(
        '(unit :id "api-1" :status in_progress :independent nil :grade 4 :skill frontend '
        ':attempt 2 :attempt_limit 8 :escalation 1 :proof "test -f app.js" '
        ':description "Build the app")'
    )

    assert unit == Unit(
        id="api-1",
        status=UnitStatus.IN_PROGRESS,
        independent=False,
        grade=4,
        skill=Skill.WEB,
        attempt=2,
        attempt_limit=8,
        escalation=1,
        proof="test -f app.js",
        description="Build the app",
    )
    assert unit.is_complex
    assert unit.is_web


def test_non_records_and_invalid_records_are_not_units() -> None:
    assert parse_unit("# Plan") is None
    assert parse_unit("(units :id x)") is None
    assert parse_unit('(unit :status pending :proof "true")') is None
    assert parse_unit('(unit :id "u1" :status molten)') is None
    assert parse_unit('(unit :id "" :status pending)') is None


def test_unparseable_ints_fall_back_to_defaults() -> None:
    unit = parse_unit('(unit :id "u1" :grade high :attempt_limit many)')

    assert unit is not None
    assert unit.grade == 1
    assert unit.attempt_limit == 5


def test_unknown_fields_are_preserved_in_order() -> None:
    line = (
        '(unit :id "u1" :status pending :owner alice :note "two words" '
        ':empty "" :weird "a(b)")'
    )
    unit = parse_unit(line)

    assert unit is not None
    assert unit.extra == {"owner": "alice", "note": "two words", "empty": "", "weird": "a(b)"}
    rendered = serialize_unit(unit)
    assert rendered.endswith(':owner alice :note "two words" :empty "" :weird "a(b)")')
    assert parse_unit(rendered) == unit


def test_round_trip_of_tricky_strings() -> None:
    unit = Unit(
        id='odd "id"',
        status=UnitStatus.FAILED,
        independent=False,
        grade=3,
        skill=Skill.CLI,
        attempt=5,
        attempt_limit=5,
        escalation=2,
        proof='grep -q "x\\\\y" file && echo \'ok\' | jq -e ".a"',
        description='Line one\nLine "two" with \\ backslash\r\n:id fake (unit )',
        extra={"tag": 'say "hi"', "path": "C:\\tmp", "plain": "token"},
    )

    rendered = serialize_unit(unit)

    assert "\n" not in rendered
    assert parse_unit(rendered) == unit


def test_unknown_escape_sequences_are_kept_verbatim() -> None:
    unit = parse_unit('(unit :id "u1" :proof "grep -q \\"a\\.b\\" notes.txt")')

    assert unit is not None
    assert unit.proof == 'grep -q "a\\.b" notes.txt'


def test_parse_units_recovers_records_from_prose() -> None:
    text = (
        "REWRITE:\n"
        "Here is the corrected unit.\n"
        '  (unit :id "u1" :status pending :proof "test -f a")\n'
        '(unit :status pending :proof "no id")\n'
        '(unit :id "u2" :status pending :escalation 1)\n'
        "Done."
    )

    units = parse_units(text)

    assert [unit.id for unit in units] == ["u1", "u2"]
    assert units[1].escalation == 1


def test_line_boundary_characters_are_escaped() -> None:
    unit = Unit(
        id="u1",
        proof="printf 'a\x0bb'",
        description="page\x0cbreak\x1cfile\x1dgroup\x1erecord\x85next\u2028line\u2029para",
        extra={"note": "x\x0cy"},
    )

    rendered = serialize_unit(unit)

    assert rendered.splitlines() == [rendered]
    assert "\\x0c" in rendered
    assert "\\u2028" in rendered
    assert parse_units(f"intro\n{rendered}\noutro") == [unit]


def test_hex_escapes_of_ordinary_characters_are_kept_verbatim() -> None:
    unit = parse_unit('(unit :id "u1" :proof "grep -q \\x41 log" :description "\\x0c\\u00e9")')

    assert unit is not None
    assert unit.proof == "grep -q \\x41 log"
    assert unit.description == "\x0c\\u00e9"


_TEXT = st.text(
    alphabet=st.one_of(
        st.characters(min_codepoint=0, max_codepoint=127),
        st.sampled_from("\x85\u2028\u2029"),
    ),
    max_size=40,
)
_EXTRA_KEY = st.from_regex(r"[a-z][a-z0-9_]{0,7}", fullmatch=True).filter(
    lambda key: key not in KNOWN_FIELDS,
)


@st.composite
def _units(draw: st.DrawFn) -> Unit:
    return Unit(
        id=draw(_TEXT.filter(bool)),
        status=draw(st.sampled_from(UnitStatus)),
        independent=draw(st.booleans()),
        grade=draw(st.integers(min_value=1, max_value=5)),
        skill=draw(st.sampled_from(Skill)),
        attempt=draw(st.integers(min_value=0, max_value=9)),
        attempt_limit=draw(st.integers(min_value=1, max_value=9)),
        escalation=draw(st.integers(min_value=0, max_value=2)),
        proof=draw(_TEXT),
        description=draw(_TEXT),
        extra=draw(st.dictionaries(_EXTRA_KEY, _TEXT, max_size=3)),
    )


@given(unit=_units())
@settings(max_examples=200, derandomize=True, deadline=None)
def test_record_round_trip_property(unit: Unit) -> None:
    rendered = serialize_unit(unit)

    assert rendered.splitlines() == [rendered]
    assert parse_unit(rendered) == unit


@given(units=st.lists(_units(), max_size=4, unique_by=lambda unit: unit.id))
@settings(
    max_examples=50,
    derandomize=True,
    deadline=None,
    suppress_health_check=[HealthCheck.function_scoped_fixture],
)
def test_ledger_save_load_save_is_stable(units: list[Unit], tmp_path: Path) -> None:
    path = tmp_path / "PLAN.md"
    Ledger(path=path, units=units).save()
    written = path.read_bytes()

    loaded = Ledger.load(path)
    loaded.save()

    assert loaded.header == []
    assert loaded.units == units
    assert path.read_bytes() == written
