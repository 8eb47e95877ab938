from __future__ import annotations

import re
from datetime import date, datetime
from typing import Any, Optional

UKRAINIAN_MONTHS = {
    "січня": 1,
    "лютого": 2,
    "березня": 3,
    "квітня": 4,
    "травня": 5,
    "червня": 6,
    "липня": 7,
    "серпня": 8,
    "вересня": 9,
    "жовтня": 10,
    "листопада": 11,
    "грудня": 12,
}

_ISO_PREFIX = re.compile(r"^(\d{4})-(\d{2})-(\d{2})")
_UKRAINIAN_LONG = re.compile(r"^(\d{1,2})\s+([^\s\d]+)\s+(\d{4})\s*(?:р\.?)?$")
_DOTTED = re.compile(r"^(\d{1,2})\.(\d{1,2})\.(\d{2}|\d{4})$")


def _expand_year(raw: str) -> int:
    year = int(raw)
    if len(raw) == 2:
        return 2000 + year if year <= 50 else 1900 + year
    return year


def parse_date(value: Any) -> Optional[date]:
    """Normalize the date shapes found in stored and imported data.

    Accepts ``date``/``datetime`` objects, ISO strings (optionally with a time
    part), ``dd.mm.yyyy``, ``dd.mm.yy`` and the long Ukrainian form
    ``"1 вересня 2025 р."``. Empty values become ``None``.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not isinstance(value, str):
        raise ValueError("Невірний формат дати.")

    raw = value.strip()
    if not raw or raw == "null":
        return None

    try:
        match = _ISO_PREFIX.match(raw)
        if match:
            year, month, day = (int(part) for part in match.groups())
            return date(year, month, day)

        match = _DOTTED.match(raw)
        if match:
            day, month, year = match.groups()
            return date(_expand_year(year), int(month), int(day))

        match = _UKRAINIAN_LONG.match(raw)
        if match:
            day, month_name, year = match.groups()
            month = UKRAINIAN_MONTHS.get(month_name.lower())
            if month:
                return date(int(year), month, int(day))
    except ValueError as exc:
        raise ValueError("Невірний формат дати.") from exc

    raise ValueError("Невірний формат дати.")


def format_date_display(value: date | str | None) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        try:
            parsed = parse_date(value)
        except ValueError:
            return value
        if parsed is None:
            return ""
        value = parsed
    return value.strftime("%d.%m.%Y")


def days_between(start: date, end: date) -> int:
    return (end - start).days
