"""Line codec for ledger unit records.

A record occupies one line::

    (unit :id "i1" :status pending :independent t :grade 2 :proof "test -f a" ...)

Values are either bare tokens, which end at whitespace or ``)``, or double-quoted
strings. Inside quotes ``\\"`` is a quote and ``\\\\`` a backslash; ``\\n`` and
``\\r`` carry line breaks. Every other character that ``str.splitlines`` treats
as a line boundary is written as ``\\xNN`` or ``\\uNNNN``, so a record never spans
lines. Any other backslash pair is kept as written. Fields the codec does not
know are kept in ``Unit.extra`` and written back unchanged.
"""

from __future__ import annotations

from build_forge.orchestrator.models import Skill, Unit, UnitStatus

RECORD_PREFIX = "(unit "

KNOWN_FIELDS: tuple[str, ...] = (
    "id",
    "status",
    "independent",
    "grade",
    "skill",
    "attempt",
    "attempt_limit",
    "escalation",
    "proof",
    "description",
)

_UNESCAPES = {'"': '"', "\\": "\\", "n": "\n", "r": "\r"}
_ESCAPES = {'"': '\\"', "\\": "\\\\", "\n": "\\n", "\r": "\\r"}
_LINE_BREAKS = frozenset("\x0b\x0c\x1c\x1d\x1e\x85\u2028\u2029")
_HEX_ESCAPE_WIDTHS = {"x": 2, "u": 4}
_HEX_DIGITS = frozenset("0123456789abcdefABCDEF")


def is_record_line(line: str) -> bool:
    """Whether the line carries the unit record prefix."""

    return line.strip().startswith(RECORD_PREFIX)


def parse_unit(line: str) -> Unit | None:
    """Parse one record line; ``None`` for anything that is not a valid unit."""

    stripped = line.strip()
    if not stripped.startswith(RECORD_PREFIX):
        return None

    fields = _parse_fields(stripped[len(RECORD_PREFIX) :])
    values: dict[str, str] = {}
    extra: dict[str, str] = {}
    for key, value in fields:
        if key in KNOWN_FIELDS:
            values.setdefault(key, value)
        elif key:
            extra[key] = value

    unit_id = values.get("id", "")
    if not unit_id:
        return None
    status = UnitStatus.parse(values.get("status", UnitStatus.PENDING.value))
    if status is None:
        return None

    return Unit(
        id=unit_id,
        status=status,
        independent=values.get("independent", "t") == "t",
        grade=_parse_int(values.get("grade"), default=1),
        skill=Skill.parse(values.get("skill", Skill.DEFAULT.value)),
        attempt=_parse_int(values.get("attempt"), default=0),
        attempt_limit=_parse_int(values.get("attempt_limit"), default=5),
        escalation=_parse_int(values.get("escalation"), default=0),
        proof=values.get("proof", "true"),
        description=values.get("description", ""),
        extra=extra,
    )


def parse_units(text: str) -> list[Unit]:
    """Recover every well-formed record embedded in free-form text."""

    units: list[Unit] = []
    for line in text.splitlines():
        unit = parse_unit(line)
        if unit is not None:
            units.append(unit)
    return units


def serialize_unit(unit: Unit) -> str:
    """Render a unit as a single record line."""

    parts = [
        f":id {_quote(unit.id)}",
        f":status {unit.status.value}",
        f":independent {'t' if unit.independent else 'nil'}",
        f":grade {unit.grade}",
        f":skill {unit.skill.value}",
        f":attempt {unit.attempt}",
        f":attempt_limit {unit.attempt_limit}",
        f":escalation {unit.escalation}",
        f":proof {_quote(unit.proof)}",
        f":description {_quote(unit.description)}",
    ]
    for key, value in unit.extra.items():
        parts.append(f":{key} {_quote(value) if _needs_quotes(value) else value}")
    return f"{RECORD_PREFIX}{' '.join(parts)})"


def _parse_fields(text: str) -> list[tuple[str, str]]:
    fields: list[tuple[str, str]] = []
    length = len(text)
    index = 0
    while index < length:
        char = text[index]
        if char == ")":
            break
        if char != ":":
            index += 1
            continue

        index += 1
        key_start = index
        while index < length and not text[index].isspace() and text[index] != ")":
            index += 1
        key = text[key_start:index]

        while index < length and text[index].isspace():
            index += 1
        if index >= length or text[index] == ")":
            fields.append((key, ""))
            continue

        if text[index] == '"':
            value, index = _read_quoted(text, index + 1)
        else:
            value_start = index
            while index < length and not text[index].isspace() and text[index] != ")":
                index += 1
            value = text[value_start:index]
        fields.append((key, value))
    return fields


def _read_quoted(text: str, index: int) -> tuple[str, int]:
    chars: list[str] = []
    length = len(text)
    while index < length:
        char = text[index]
        if char == "\\" and index + 1 < length:
            follower = text[index + 1]
            decoded = _decode_hex_escape(text, index)
            if decoded is not None:
                chars.append(decoded)
                index += 2 + _HEX_ESCAPE_WIDTHS[follower]
                continue
            chars.append(_UNESCAPES.get(follower, char + follower))
            index += 2
            continue
        if char == '"':
            return "".join(chars), index + 1
        chars.append(char)
        index += 1
    # unterminated string: keep what was read
    return "".join(chars), index


def _decode_hex_escape(text: str, index: int) -> str | None:
    """Line-boundary character written at ``index`` as ``\\xNN`` or ``\\uNNNN``."""

    width = _HEX_ESCAPE_WIDTHS.get(text[index + 1])
    if width is None:
        return None
    digits = text[index + 2 : index + 2 + width]
    if len(digits) != width or not all(digit in _HEX_DIGITS for digit in digits):
        return None
    char = chr(int(digits, 16))
    return char if char in _LINE_BREAKS else None


def _escape(char: str) -> str:
    if char in _LINE_BREAKS:
        code = ord(char)
        return f"\\x{code:02x}" if code <= 0xFF else f"\\u{code:04x}"
    return _ESCAPES.get(char, char)


def _quote(value: str) -> str:
    return '"' + "".join(_escape(char) for char in value) + '"'


def _needs_quotes(value: str) -> bool:
    if not value:
        return True
    return any(char.isspace() or char in '"()' for char in value)


def _parse_int(value: str | None, *, default: int) -> int:
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        return default
