from __future__ import annotations

from datetime import date, datetime

import pytest

from equipdb.apps.gateway import validators as v


@pytest.mark.parametrize("value, expected", [(1, 1), (42, 42), ("7", 7), (" 19 ", 19)])
def test_identifier_accepts_positive_integers(value, expected):
    assert v.validate_identifier(value) == expected


@pytest.mark.parametrize("value", [0, -5, "abc", "0", "-3", "1.5", 2.0, True, None, ""])
def test_identifier_rejects_everything_else(value):
    with pytest.raises(v.ValidationError) as exc:
        v.validate_identifier(value)
    assert exc.value.reason == "InvalidId"


def test_date_accepts_iso_calendar_dates():
    assert v.validate_date("2024-02-29") == date(2024, 2, 29)
    assert v.validate_date(date(2024, 1, 15)) == date(2024, 1, 15)


@pytest.mark.parametrize(
    "value",
    [
        "2023-02-29",
        "2024-13-01",
        "15/01/2024",
        "2024-01-15T10:00:00",
        "1899-12-31",
        "2200-01-01",
        datetime(2024, 1, 15, 10, 0),
        20240115,
    ],
)
def test_date_rejects_bad_values(value):
    with pytest.raises(v.ValidationError) as exc:
        v.validate_date(value)
    assert exc.value.reason == "InvalidDate"


def test_file_path_anchors_relative_paths_at_root():
    validate = v.file_path("/srv/docs")
    assert validate("CR-001/cert.pdf") == "/srv/docs/CR-001/cert.pdf"
    assert validate("/srv/docs/CR-001/cert.pdf") == "/srv/docs/CR-001/cert.pdf"


@pytest.mark.parametrize(
    "value",
    [
        "../etc/passwd",
        "CR-001/../../etc/passwd",
        "/etc/passwd",
        "/srv/docs-other/file.pdf",
        "~/secrets.txt",
        "C:/Windows/system32",
        "..\\..\\boot.ini",
        "file\x00.pdf",
        "/srv/docs",
        "",
    ],
)
def test_file_path_fails_closed(value):
    validate = v.file_path("/srv/docs")
    with pytest.raises(v.ValidationError) as exc:
        validate(value)
    assert exc.value.reason == "PathTraversal"


def test_file_path_root_must_be_absolute():
    with pytest.raises(ValueError):
        v.file_path("relative/root")


def test_free_text_strips_and_enforces_length():
    validate = v.free_text(10)
    assert validate("  J. Smith ") == "J. Smith"
    with pytest.raises(v.ValidationError) as exc:
        validate("x" * 11)
    assert exc.value.reason == "InvalidText"


@pytest.mark.parametrize("value", ["bad\x07bell", "tab\there", "line\nbreak", "   ", 12])
def test_free_text_rejects_control_characters_and_non_text(value):
    with pytest.raises(v.ValidationError) as exc:
        v.validate_free_text(value)
    assert exc.value.reason == "InvalidText"


def test_notes_allow_line_breaks_but_not_other_controls():
    assert v.validate_notes("Hook worn.\nReplace before use.") == "Hook worn.\nReplace before use."
    with pytest.raises(v.ValidationError):
        v.validate_notes("escape\x1b[31m")


def test_choice_number_and_flag():
    assert v.choice("pass", "fail")("pass") == "pass"
    with pytest.raises(v.ValidationError) as exc:
        v.choice("pass", "fail")("maybe")
    assert exc.value.reason == "InvalidChoice"

    assert v.number(minimum=0)("12.5") == 12.5
    assert v.number(integer=True)("3") == 3
    for bad in ("abc", -1, float("nan"), True):
        with pytest.raises(v.ValidationError):
            v.number(minimum=0)(bad)

    assert v.validate_flag("yes") is True
    assert v.validate_flag(0) is False
    with pytest.raises(v.ValidationError):
        v.validate_flag("perhaps")


def test_text_list_accepts_lists_and_comma_strings():
    validate = v.text_list(32)
    assert validate(["crane", " hoist "]) == ["crane", "hoist"]
    assert validate("crane, hoist") == ["crane", "hoist"]
    with pytest.raises(v.ValidationError):
        validate({"crane": True})


def test_validation_error_detail_names_the_field():
    err = v.ValidationError("InvalidId", "identifier must be a positive integer")
    assert err.as_detail("equipmentId") == {
        "field": "equipmentId",
        "reason": "InvalidId",
        "message": "identifier must be a positive integer",
    }


def test_identifier_upper_bound_is_a_64_bit_integer():
    assert v.validate_identifier(2**63 - 1) == 2**63 - 1
    assert v.validate_identifier(str(2**63 - 1)) == 2**63 - 1
    for too_large in (2**63, str(2**63), "99999999999999999999999", 10**20, "9" * 5000):
        with pytest.raises(v.ValidationError) as exc:
            v.validate_identifier(too_large)
        assert exc.value.reason == "InvalidId"


def test_integer_numbers_are_bounded():
    count = v.number(minimum=0, integer=True)
    assert count(2**63 - 1) == 2**63 - 1
    for too_large in (2**63, "18446744073709551616", 1e20):
        with pytest.raises(v.ValidationError) as exc:
            count(too_large)
        assert exc.value.reason == "InvalidNumber"
    assert v.number(minimum=0)(1e20) == 1e20


@pytest.mark.parametrize(
    "value",
    [
        "next\x85line",
        "csi\x9b31m",
        "invoice\u202egpj.exe",
        "left\u2066isolate\u2069",
        "mark\u200fhere",
    ],
)
def test_text_rejects_c1_controls_and_bidirectional_marks(value):
    for validate in (v.validate_free_text, v.validate_notes):
        with pytest.raises(v.ValidationError) as exc:
            validate(value)
        assert exc.value.reason == "InvalidText"


def test_text_keeps_ordinary_non_ascii():
    assert v.validate_free_text("Grúa puente Nº 3") == "Grúa puente Nº 3"
