"""Persian text helpers: numerals, character normalisation, Jalali dates, submission links."""

from __future__ import annotations

import re
from datetime import date

import jdatetime

from .errors import ValidationError

# ---------------------------------------------------------------------------
# Numerals and characters
# ---------------------------------------------------------------------------

_DIGIT_TABLE = str.maketrans(
    "۰۱۲۳۴۵۶۷۸۹٠١٢٣٤٥٦٧٨٩",
    "01234567890123456789",
)
_CHAR_TABLE = str.maketrans({"ي": "ی", "ك": "ک"})

JALALI_YEAR_MIN = 1300
JALALI_YEAR_MAX = 1500

_GREGORIAN_RE = re.compile(r"^(\d{4})-(\d{2})-(\d{2})$")
_JALALI_SPLIT_RE = re.compile(r"[-/.]")
_EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


def to_western_digits(value: object) -> str | None:
    """Canonicalise Persian and Arabic-Indic digits to ASCII.

    Numbers are returned as strings, ``None`` stays ``None``.
    """
    if value is None:
        return None
    return str(value).translate(_DIGIT_TABLE)


def normalize_persian_text(text: str | None) -> str | None:
    """Map Arabic ``ي``/``ك`` to their Persian forms."""
    if text is None:
        return None
    return text.translate(_CHAR_TABLE)


def normalize_submission_method(value: str | None) -> str | None:
    """Turn bare e-mails into ``mailto:`` links and bare domains into https URLs.

    Descriptive text (anything with spaces, or no dot) is returned trimmed.
    """
    if value is None:
        return None
    text = value.strip()
    if not text:
        return ""
    if text.startswith(("http://", "https://", "mailto:")):
        return text
    if _EMAIL_RE.match(text):
        return f"mailto:{text}"
    if "." in text and " " not in text and not text.startswith("/"):
        if not text.startswith("//"):
            return f"https://{text}"
    return text


# ---------------------------------------------------------------------------
# Calendar helpers
# ---------------------------------------------------------------------------


def parse_jalali(value: str | None, field: str = "deadline_persian") -> jdatetime.date:
    """Parse a ``YYYY/MM/DD`` Jalali date (``-`` and ``.`` also accepted).

    Raises:
        ValidationError: unparseable, not a real Jalali day, or a year
            outside the plausible contest range.
    """
    text = (to_western_digits(value) or "").strip()
    parts = _JALALI_SPLIT_RE.split(text)
    if len(parts) != 3 or not all(p.isdigit() for p in parts):
        raise ValidationError(field, value, "expected YYYY/MM/DD")
    year, month, day = (int(p) for p in parts)
    if not JALALI_YEAR_MIN <= year <= JALALI_YEAR_MAX:
        raise ValidationError(
            field,
            value,
            f"Jalali year outside {JALALI_YEAR_MIN}-{JALALI_YEAR_MAX}",
        )
    try:
        return jdatetime.date(year, month, day)
    except ValueError as exc:
        raise ValidationError(field, value, str(exc)) from exc


def parse_gregorian(value: str | None, field: str = "deadline_gregorian") -> date:
    """Parse a strict ``YYYY-MM-DD`` Gregorian date."""
    text = (to_western_digits(value) or "").strip()
    match = _GREGORIAN_RE.match(text)
    if not match:
        raise ValidationError(field, value, "expected YYYY-MM-DD")
    try:
        return date(*(int(g) for g in match.groups()))
    except ValueError as exc:
        raise ValidationError(field, value, str(exc)) from exc


def format_jalali(day: jdatetime.date) -> str:
    return f"{day.year:04d}/{day.month:02d}/{day.day:02d}"


def format_gregorian(day: date) -> str:
    return day.isoformat()


def jalali_to_gregorian(value: str) -> str:
    """Return the Gregorian ``YYYY-MM-DD`` for a Jalali date string."""
    return format_gregorian(parse_jalali(value).togregorian())


def gregorian_to_jalali(value: str) -> str:
    """Return the Jalali ``YYYY/MM/DD`` for a Gregorian date string.

    The derived Jalali date is subject to the same year-range check as a
    supplied one.
    """
    derived = jdatetime.date.fromgregorian(date=parse_gregorian(value))
    text = format_jalali(derived)
    parse_jalali(text)
    return text


def format_jalali_for_display(value: str) -> str:
    """``YYYY/MM/DD`` -> ``DD / MM / YYYY``; unparseable input is returned as given."""
    try:
        day = parse_jalali(value)
    except ValidationError:
        return to_western_digits(value) or value
    return f"{day.day:02d} / {day.month:02d} / {day.year:04d}"
