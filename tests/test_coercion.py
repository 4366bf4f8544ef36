"""Unit tests for cell value parsing."""

from datetime import date

import pytest

from app.importer.coercion import (
    cell_text,
    coerce_custom_value,
    format_phone,
    is_valid_email,
    is_valid_url,
    parse_birth_year,
    parse_date,
    parse_day_of_week,
    parse_number,
    parse_time,
    phone_key,
)

TODAY = date(2026, 10, 19)


# =============================================================================
# Phone numbers
# =============================================================================


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("0521234567", "052-123-4567"),
        ("052-123-4567", "052-123-4567"),
        ("+972 52 123 4567", "052-123-4567"),
        ("036123456", "03-612-3456"),
    ],
)
def test_format_phone(raw: str, expected: str) -> None:
    assert format_phone(raw) == expected


@pytest.mark.parametrize("raw", ["12345", "0621234567", "05212345678", ""])
def test_format_phone_invalid(raw: str) -> None:
    with pytest.raises(ValueError):
        format_phone(raw)


def test_phone_key_ignores_formatting() -> None:
    """Test that differently formatted numbers share a duplicate key."""
    assert phone_key("052-123-4567") == phone_key("+972521234567") == "0521234567"
    assert phone_key(None) is None


# =============================================================================
# Dates, years and times
# =============================================================================


def test_parse_birth_year() -> None:
    assert parse_birth_year(2015, TODAY) == 2015
    assert parse_birth_year("2015", TODAY) == 2015
    assert parse_birth_year("2015-04-02", TODAY) == 2015
    assert parse_birth_year(2015.0, TODAY) == 2015
    assert parse_birth_year(" 2015 ", TODAY) == 2015
    assert parse_birth_year("02/04/2015", TODAY) == 2015


@pytest.mark.parametrize("raw", ["abc", 1850, 2027, "15", True, "20121", "2012abc", "2012 or 2013"])
def test_parse_birth_year_invalid(raw) -> None:
    with pytest.raises(ValueError):
        parse_birth_year(raw, TODAY)


def test_parse_date_formats() -> None:
    """Test Excel serials, day-first text and ISO text."""
    assert parse_date(46000) == date(2025, 12, 9)
    assert parse_date("01/09/2026") == date(2026, 9, 1)
    assert parse_date("1.9.2026") == date(2026, 9, 1)
    assert parse_date("2026-09-01") == date(2026, 9, 1)
    assert parse_date("2026-09-01T00:00") == date(2026, 9, 1)


@pytest.mark.parametrize("raw", ["next week", "31/02/2026", None, False])
def test_parse_date_invalid(raw) -> None:
    with pytest.raises(ValueError):
        parse_date(raw)


def test_parse_time() -> None:
    assert parse_time("9:05") == "09:05"
    assert parse_time("17:30") == "17:30"
    assert parse_time("17:30:00") == "17:30"
    assert parse_time(0.75) == "18:00"


@pytest.mark.parametrize("raw", ["25:00", "noon", 1.5, None])
def test_parse_time_invalid(raw) -> None:
    with pytest.raises(ValueError):
        parse_time(raw)


@pytest.mark.parametrize(
    "raw, expected",
    [
        (0, 0),
        ("3", 3),
        ("Monday", 1),
        ("ראשון", 0),
        ("יום שלישי", 2),
        ("ה'", 4),
        ("שבת", 6),
    ],
)
def test_parse_day_of_week(raw, expected: int) -> None:
    assert parse_day_of_week(raw) == expected


@pytest.mark.parametrize("raw", [7, "someday", None])
def test_parse_day_of_week_invalid(raw) -> None:
    with pytest.raises(ValueError):
        parse_day_of_week(raw)


# =============================================================================
# Numbers, custom fields and text
# =============================================================================


def test_parse_number() -> None:
    assert parse_number(120) == 120
    assert parse_number("1,200.50") == 1200.5
    with pytest.raises(ValueError):
        parse_number("free")


def test_coerce_custom_value() -> None:
    """Test the type guessing of custom field values."""
    assert coerce_custom_value("yes") is True
    assert coerce_custom_value("לא") is False
    assert coerce_custom_value("42") == 42
    assert coerce_custom_value("4.5") == 4.5
    assert coerce_custom_value("4.0") == 4.0
    assert isinstance(coerce_custom_value("4.0"), float)
    assert coerce_custom_value("  blue belt ") == "blue belt"
    assert coerce_custom_value(7) == 7


def test_cell_text() -> None:
    assert cell_text("  Dana ") == "Dana"
    assert cell_text("   ") is None
    assert cell_text(None) is None
    assert cell_text(2015.0) == "2015"


def test_email_and_url_checks() -> None:
    assert is_valid_email("parent@example.com")
    assert not is_valid_email("parent@example")
    assert is_valid_url("https://cdn.example.com/a.jpg")
    assert not is_valid_url("cdn.example.com/a.jpg")
