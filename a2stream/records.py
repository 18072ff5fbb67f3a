"""Wire records for the Apple II debug stream.

Every record is a single JSON object on its own line::

    {"emu":"apple","cat":"cpu","sec":"reg","fld":"a","val":"3F"}

The five fixed keys come first, followed by any extra attributes in the
order they were supplied.  All values are strings; numeric register and
byte values are rendered as fixed-width uppercase hex.  JSON string escaping
guarantees that a record never spans more than one line, so clients can
split the stream on CR/LF and parse each line on its own.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional, Tuple

ORIGIN_TAG = "apple"

_FIXED_KEYS = ("emu", "cat", "sec", "fld", "val")


class RecordFormatError(ValueError):
    """Raised when a line cannot be parsed as a stream record."""


def hex8(value: int) -> str:
    return f"{value & 0xFF:02X}"


def hex16(value: int) -> str:
    return f"{value & 0xFFFF:04X}"


def flag(value: Any) -> str:
    return "1" if value else "0"


def _text(value: Any) -> str:
    # raw bytes map 1:1 onto U+0000..U+00FF
    if isinstance(value, (bytes, bytearray)):
        return bytes(value).decode("latin-1")
    return str(value)


def _dumps(payload: Mapping[str, str]) -> str:
    # ensure_ascii=False: only quote, backslash and C0 controls get escaped
    text = json.dumps(payload, separators=(",", ":"), ensure_ascii=False)
    try:
        text.encode("utf-8")
    except UnicodeEncodeError:
        # lone surrogates (e.g. surrogateescape-decoded text) must go out as \uXXXX
        text = json.dumps(payload, separators=(",", ":"))
    return text


def format_record(
    category: str,
    section: str,
    field_name: str,
    value: Any,
    extras: Optional[Mapping[str, Any]] = None,
) -> str:
    """Return the wire line (without terminator) for one record."""

    payload: Dict[str, str] = {
        "emu": ORIGIN_TAG,
        "cat": _text(category),
        "sec": _text(section),
        "fld": _text(field_name),
        "val": _text(value),
    }
    if extras:
        for key, extra in extras.items():
            key = _text(key)
            if key in payload:
                raise ValueError(f"extra attribute '{key}' shadows a fixed record key")
            payload[key] = _text(extra)
    return _dumps(payload)


@dataclass(frozen=True)
class Record:
    category: str
    section: str
    field: str
    value: str
    extras: Tuple[Tuple[str, str], ...] = ()

    @classmethod
    def build(
        cls,
        category: str,
        section: str,
        field_name: str,
        value: Any,
        extras: Optional[Mapping[str, Any]] = None,
    ) -> "Record":
        items = tuple((_text(k), _text(v)) for k, v in (extras or {}).items())
        return cls(_text(category), _text(section), _text(field_name), _text(value), items)

    @property
    def attrs(self) -> Dict[str, str]:
        return dict(self.extras)

    def to_line(self) -> str:
        return format_record(self.category, self.section, self.field, self.value, self.attrs)

    @classmethod
    def from_line(cls, line: str) -> "Record":
        return parse_record(line)


def parse_record(line: str | bytes) -> Record:
    """Parse one wire line back into a :class:`Record`.

    Trailing CR/LF is tolerated and keys outside the fixed set are kept as
    extras in wire order.  Values are coerced to strings so records produced
    by other emitters still parse.
    """

    if isinstance(line, bytes):
        line = line.decode("utf-8", errors="replace")
    text = line.rstrip("\r\n")
    try:
        payload = json.loads(text)
    except json.JSONDecodeError as exc:
        raise RecordFormatError(f"invalid record: {exc}") from exc
    if not isinstance(payload, dict):
        raise RecordFormatError("record must be a JSON object")
    missing = [key for key in _FIXED_KEYS if key not in payload]
    if missing:
        raise RecordFormatError(f"record missing required key(s): {', '.join(missing)}")
    extras = tuple((str(key), str(value)) for key, value in payload.items() if key not in _FIXED_KEYS)
    return Record(
        category=str(payload["cat"]),
        section=str(payload["sec"]),
        field=str(payload["fld"]),
        value=str(payload["val"]),
        extras=extras,
    )
