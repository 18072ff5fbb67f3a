import json

import pytest

from a2stream import records
from a2stream.records import Record, RecordFormatError, format_record, hex8, hex16, parse_record


def test_format_record_fixed_key_order() -> None:
    line = format_record("cpu", "reg", "a", "3F")
    assert line == '{"emu":"apple","cat":"cpu","sec":"reg","fld":"a","val":"3F"}'


def test_format_record_keeps_extra_order() -> None:
    line = format_record("dbg", "bp", "hit", "1", {"idx": "0", "addr": "C000"})
    assert line.endswith('"val":"1","idx":"0","addr":"C000"}')
    line = format_record("dbg", "bp", "hit", "1", {"addr": "C000", "idx": "0"})
    assert line == '{"emu":"apple","cat":"dbg","sec":"bp","fld":"hit","val":"1","addr":"C000","idx":"0"}'


def test_format_record_is_deterministic() -> None:
    args = ("mem", "write", "byte", "A9", {"addr": "0300"})
    assert format_record(*args) == format_record(*args)


def test_format_record_stringifies_values() -> None:
    line = format_record("mach", "info", "cycles", 42, {"n": 7})
    payload = json.loads(line)
    assert payload["val"] == "42"
    assert payload["n"] == "7"


def test_extra_cannot_shadow_fixed_key() -> None:
    with pytest.raises(ValueError):
        format_record("cpu", "reg", "a", "00", {"cat": "mem"})


@pytest.mark.parametrize(
    "value, expected",
    [(0, "00"), (0x0A, "0A"), (255, "FF"), (0x1FB, "FB")],
)
def test_hex8(value, expected) -> None:
    assert hex8(value) == expected


@pytest.mark.parametrize(
    "value, expected",
    [(0, "0000"), (0x100, "0100"), (0xC600, "C600"), (0x1FFFF, "FFFF")],
)
def test_hex16(value, expected) -> None:
    assert hex16(value) == expected


def test_flag_renders_truthiness() -> None:
    assert records.flag(0x80) == "1"
    assert records.flag(0) == "0"
    assert records.flag(True) == "1"


def test_escaping_keeps_record_on_one_line() -> None:
    nasty = 'LDA "X"\\\n\r\t\b\f\x01end'
    line = format_record("dbg", "trace", "exec", nasty, {"addr": "0300"})
    assert "\n" not in line
    assert "\r" not in line
    assert "\x01" not in line
    assert "\\u0001" in line
    assert '\\"X\\"' in line
    assert "\\n" in line and "\\r" in line and "\\t" in line and "\\b" in line and "\\f" in line
    assert parse_record(line).value == nasty


def test_non_ascii_passes_through() -> None:
    line = format_record("sys", "error", "msg", "café")
    assert "café" in line


def test_parse_record_round_trip_with_extras() -> None:
    line = format_record("dbg", "trace", "mem", "7F", {"addr": "2000", "rw": "w"}) + "\r\n"
    record = parse_record(line)
    assert record.category == "dbg"
    assert record.section == "trace"
    assert record.field == "mem"
    assert record.value == "7F"
    assert record.extras == (("addr", "2000"), ("rw", "w"))
    assert record.attrs["rw"] == "w"
    assert record.to_line() == line.rstrip("\r\n")


def test_parse_record_accepts_bytes() -> None:
    record = parse_record(b'{"emu":"apple","cat":"io","sec":"sw_read","fld":"val","val":"00","addr":"C030"}\n')
    assert record.section == "sw_read"
    assert record.attrs == {"addr": "C030"}


def test_record_build_and_from_line() -> None:
    record = Record.build("cpu", "flag", "n", 1)
    assert record.value == "1"
    assert Record.from_line(record.to_line()) == record


@pytest.mark.parametrize(
    "line",
    [
        "",
        "not json",
        "[1, 2, 3]",
        '{"emu":"apple","cat":"cpu","sec":"reg","fld":"a"}',
    ],
)
def test_parse_record_rejects_malformed(line) -> None:
    with pytest.raises(RecordFormatError):
        parse_record(line)


def test_bytes_value_keeps_raw_byte_sequence() -> None:
    line = format_record("dbg", "trace", "exec", b"A\x01\xff", {"raw": bytearray(b"\x80")})
    record = parse_record(line)
    assert record.value == "A\x01\xff"
    assert record.value.encode("latin-1") == b"A\x01\xff"
    assert record.attrs["raw"] == "\x80"
    assert "\\u0001" in line
    assert Record.build("mem", "dump", "byte", b"\x02").value == "\x02"


def test_lone_surrogates_are_escaped() -> None:
    disasm = b"DB \x80".decode("utf-8", "surrogateescape")
    line = format_record("dbg", "trace", "exec", disasm, {"addr": "0300"})
    assert "\\udc80" in line
    line.encode("utf-8")
    assert parse_record(line).value == disasm
