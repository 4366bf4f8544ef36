"""Cell value parsing used by the row validators.

Phone numbers follow the Israeli numbering plan: mobiles are ``05X-XXX-XXXX``,
landlines ``0X-XXX-XXXX``. A ``972`` country prefix is accepted and rewritten
to the local form.
"""

import re
from datetime import date, timedelta

from app.importer.types import Cell

MOBILE_RE = re.compile(r"^05\d{8}$")
LANDLINE_RE = re.compile(r"^0[2-489]\d{7}$")
EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
TIME_RE = re.compile(r"^([01]?\d|2[0-3]):([0-5]\d)$")
DMY_RE = re.compile(r"^(\d{1,2})[/.](\d{1,2})[/.](\d{4})$")
YEAR_RE = re.compile(r"^\s*(\d{4})\s*$")

# Day 0 of Excel's 1900 date system, adjusted for its phantom 29/02/1900
EXCEL_EPOCH = date(1899, 12, 30)

TRUE_TOKENS = {"true", "yes", "1", "כן"}
FALSE_TOKENS = {"false", "no", "0", "לא"}

# 0 = Sunday, matching the week used by class templates
HEBREW_DAYS = {
    "ראשון": 0,
    "שני": 1,
    "שלישי": 2,
    "רביעי": 3,
    "חמישי": 4,
    "שישי": 5,
    "שבת": 6,
    "א": 0,
    "ב": 1,
    "ג": 2,
    "ד": 3,
    "ה": 4,
    "ו": 5,
    "ש": 6,
}
ENGLISH_DAYS = {
    "sunday": 0,
    "monday": 1,
    "tuesday": 2,
    "wednesday": 3,
    "thursday": 4,
    "friday": 5,
    "saturday": 6,
}


def is_blank(cell: Cell) -> bool:
    return cell is None or (isinstance(cell, str) and not cell.strip())


def cell_text(cell: Cell) -> str | None:
    """Stripped string form of a cell, or None when blank."""
    if is_blank(cell):
        return None
    if isinstance(cell, float) and cell.is_integer():
        cell = int(cell)
    return str(cell).strip()


def phone_digits(phone: str) -> str:
    return re.sub(r"\D", "", phone or "")


def format_phone(phone: str) -> str:
    """Normalize a phone number to its canonical local form.

    Raises:
        ValueError: If the number is not a valid mobile or landline number
    """
    digits = phone_digits(phone)
    if digits.startswith("972"):
        digits = "0" + digits[3:]
    if MOBILE_RE.match(digits):
        return f"{digits[:3]}-{digits[3:6]}-{digits[6:]}"
    if LANDLINE_RE.match(digits):
        return f"{digits[:2]}-{digits[2:5]}-{digits[5:]}"
    raise ValueError(f"Invalid phone number: {phone}")


def phone_key(phone: str | None) -> str | None:
    """Digits-only form used to detect duplicates."""
    digits = phone_digits(phone or "")
    if digits.startswith("972"):
        digits = "0" + digits[3:]
    return digits or None


def parse_birth_year(cell: Cell, today: date | None = None) -> int:
    """Read a birth year that is not in the future.

    Accepts a bare four digit year, or a full date in any format
    ``parse_date`` reads, in which case its year is used.

    Raises:
        ValueError: If no plausible year can be read
    """
    today = today or date.today()
    if isinstance(cell, bool):
        raise ValueError("Invalid year")
    if isinstance(cell, (int, float)):
        year = int(cell)
    else:
        text = str(cell)
        match = YEAR_RE.match(text)
        if match:
            year = int(match.group(1))
        else:
            try:
                year = parse_date(text.strip()).year
            except ValueError:
                raise ValueError(f"Invalid year: {cell}") from None
    if year < 1900 or year > today.year:
        raise ValueError(f"Year out of range: {year}")
    return year


def parse_date(cell: Cell) -> date:
    """Read a date from an Excel serial number, ``DD/MM/YYYY`` or ISO text.

    Raises:
        ValueError: If the value is not a date
    """
    if isinstance(cell, bool) or cell is None:
        raise ValueError("Invalid date")
    if isinstance(cell, (int, float)):
        return EXCEL_EPOCH + timedelta(days=int(cell))
    text = str(cell).strip()
    match = DMY_RE.match(text)
    if match:
        day, month, year = (int(g) for g in match.groups())
        return date(year, month, day)
    return date.fromisoformat(text[:10])


def parse_time(cell: Cell) -> str:
    """Read a ``HH:MM`` time, including Excel day fractions.

    Raises:
        ValueError: If the value is not a time of day
    """
    if isinstance(cell, bool) or cell is None:
        raise ValueError("Invalid time")
    if isinstance(cell, (int, float)) and 0 <= cell < 1:
        total_minutes = round(cell * 24 * 60)
        return f"{(total_minutes // 60) % 24:02d}:{total_minutes % 60:02d}"
    text = str(cell).strip()
    match = TIME_RE.match(text[:5] if len(text) > 5 and text[5] == ":" else text)
    if not match:
        raise ValueError(f"Invalid time: {cell}")
    return f"{int(match.group(1)):02d}:{match.group(2)}"


def parse_day_of_week(cell: Cell) -> int:
    """Read a day as 0-6, a Hebrew day name or letter, or an English name.

    Raises:
        ValueError: If the value does not name a day
    """
    if isinstance(cell, bool) or cell is None:
        raise ValueError("Invalid day")
    if isinstance(cell, (int, float)):
        day = int(cell)
    else:
        text = str(cell).strip().replace("יום", "").strip().strip("'").lower()
        if text.isdigit():
            day = int(text)
        elif text in ENGLISH_DAYS:
            day = ENGLISH_DAYS[text]
        else:
            day = next((value for name, value in HEBREW_DAYS.items() if text == name), None)
            if day is None:
                day = next((value for name, value in HEBREW_DAYS.items() if text.startswith(name)), -1)
    if not 0 <= day <= 6:
        raise ValueError(f"Invalid day: {cell}")
    return day


def parse_number(cell: Cell) -> float:
    """Raises ValueError if the cell is not numeric."""
    if isinstance(cell, bool):
        raise ValueError("Invalid number")
    if isinstance(cell, (int, float)):
        return cell
    return float(str(cell).strip().replace(",", ""))


def coerce_custom_value(cell: Cell):
    """Guess the type of a free-form custom field value.

    Native numbers and booleans are kept. Text is read as a boolean token, then
    a number, and falls back to the stripped string.
    """
    if isinstance(cell, (bool, int, float)):
        return cell
    text = str(cell).strip()
    token = text.lower()
    if token in TRUE_TOKENS:
        return True
    if token in FALSE_TOKENS:
        return False
    try:
        number = float(text)
    except ValueError:
        return text
    return int(number) if number.is_integer() and "." not in text else number


def is_valid_email(value: str) -> bool:
    return bool(EMAIL_RE.match(value))


def is_valid_url(value: str) -> bool:
    return value.startswith(("http://", "https://"))
