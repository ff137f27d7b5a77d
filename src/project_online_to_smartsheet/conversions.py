"""
Value conversions between Project Online and Smartsheet conventions.

Durations are normalised to working hours (8-hour day, 5-day week), allocation
units are rescaled between fractions and percentages, and dates are reduced to
their UTC calendar day.
"""

from __future__ import annotations

import datetime as dt
import re
from typing import Final

HOURS_PER_DAY: Final[float] = 8.0
DAYS_PER_WEEK: Final[float] = 5.0

_ISO_DURATION = re.compile(
    r"^(?P<sign>-)?P"
    r"(?:(?P<weeks>\d+(?:\.\d+)?)W)?"
    r"(?:(?P<days>\d+(?:\.\d+)?)D)?"
    r"(?:T"
    r"(?:(?P<hours>\d+(?:\.\d+)?)H)?"
    r"(?:(?P<minutes>\d+(?:\.\d+)?)M)?"
    r"(?:(?P<seconds>\d+(?:\.\d+)?)S)?"
    r")?$",
    re.IGNORECASE,
)
_SHORT_DURATION = re.compile(r"^(?P<value>-?\d+(?:\.\d+)?)\s*(?P<unit>[wdhm])$", re.IGNORECASE)
_MS_DATE = re.compile(r"^/Date\((?P<millis>-?\d+)(?:[+-]\d{4})?\)/$")

_SHORT_UNIT_HOURS: Final[dict[str, float]] = {
    "w": HOURS_PER_DAY * DAYS_PER_WEEK,
    "d": HOURS_PER_DAY,
    "h": 1.0,
    "m": 1.0 / 60.0,
}

PRIORITY_LEVELS: Final[tuple[str, ...]] = (
    "Lowest",
    "Very Low",
    "Lower",
    "Medium",
    "Higher",
    "Very High",
    "Highest",
)

# MS Project PjConstraint enumeration
_CONSTRAINT_CODES: Final[dict[int, str]] = {
    0: "ASAP",
    1: "ALAP",
    2: "MSO",
    3: "MFO",
    4: "SNET",
    5: "SNLT",
    6: "FNET",
    7: "FNLT",
}
_CONSTRAINT_NAMES: Final[dict[str, str]] = {
    "as soon as possible": "ASAP",
    "as late as possible": "ALAP",
    "must start on": "MSO",
    "must finish on": "MFO",
    "start no earlier than": "SNET",
    "start no later than": "SNLT",
    "finish no earlier than": "FNET",
    "finish no later than": "FNLT",
}
CONSTRAINT_TYPES: Final[tuple[str, ...]] = ("ASAP", "ALAP", "SNET", "SNLT", "FNET", "FNLT", "MSO", "MFO")


def duration_to_hours(value: str | float | None) -> float | None:
    """Convert an ISO 8601 duration (or a shorthand like "4d", "32h") to working hours.

    Numbers are taken to already be hours. Returns None for empty input and
    raises ValueError for anything unparseable.
    """
    if value is None:
        return None
    if isinstance(value, bool):
        msg = f"Not a duration: {value!r}"
        raise ValueError(msg)
    if isinstance(value, (int, float)):
        return float(value)

    text = value.strip()
    if not text:
        return None

    match = _ISO_DURATION.match(text)
    if match and text.upper().lstrip("-") not in ("P", "PT"):
        parts = match.groupdict()
        hours = (
            float(parts["weeks"] or 0) * DAYS_PER_WEEK * HOURS_PER_DAY
            + float(parts["days"] or 0) * HOURS_PER_DAY
            + float(parts["hours"] or 0)
            + float(parts["minutes"] or 0) / 60.0
            + float(parts["seconds"] or 0) / 3600.0
        )
        return -hours if parts["sign"] else hours

    match = _SHORT_DURATION.match(text)
    if match:
        return float(match["value"]) * _SHORT_UNIT_HOURS[match["unit"].lower()]

    msg = f"Not an ISO 8601 duration: {value!r}"
    raise ValueError(msg)


def format_lag(hours: float) -> str:
    """Render a predecessor lag: whole working days as "2d", otherwise hours as "4h"."""
    if hours % HOURS_PER_DAY == 0:
        amount = hours / HOURS_PER_DAY
        unit = "d"
    else:
        amount = hours
        unit = "h"
    sign = "-" if amount < 0 else "+"
    return f"{sign}{_format_number(abs(amount))}{unit}"


def _format_number(value: float) -> str:
    if float(value).is_integer():
        return str(int(value))
    return f"{value:g}"


def units_to_percent(units: float) -> float:
    """Allocation fraction (1.0 = full capacity) to the percentage written to Smartsheet."""
    return units * 100


def percent_to_units(percent: float) -> float:
    return percent / 100


def parse_date(value: str | None) -> dt.date | None:
    """Reduce an OData DateTime to its UTC calendar date.

    Accepts ISO 8601 timestamps (with or without offset) and the verbose
    "/Date(millis)/" form.
    """
    if value is None:
        return None
    text = value.strip()
    if not text:
        return None

    match = _MS_DATE.match(text)
    if match:
        return dt.datetime.fromtimestamp(int(match["millis"]) / 1000, tz=dt.UTC).date()

    try:
        parsed = dt.datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError as e:
        msg = f"Not an ISO 8601 date: {value!r}"
        raise ValueError(msg) from e
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(dt.UTC)
    return parsed.date()


def format_date(value: dt.date | None) -> str | None:
    return value.isoformat() if value is not None else None


def map_priority(priority: int | None) -> str | None:
    """Project Online's 0-1000 priority to the seven-level label set."""
    if priority is None:
        return None
    if priority >= 1000:
        return "Highest"
    if priority >= 800:
        return "Very High"
    if priority >= 600:
        return "Higher"
    if priority >= 500:
        return "Medium"
    if priority >= 400:
        return "Lower"
    if priority >= 200:
        return "Very Low"
    return "Lowest"


def derive_task_status(percent_complete: float) -> str:
    if percent_complete <= 0:
        return "Not Started"
    if percent_complete >= 100:
        return "Complete"
    return "In Progress"


def normalize_constraint_type(value: str | int | None) -> str | None:
    """Map a Project Online constraint (code, long name or abbreviation) to its abbreviation."""
    if value is None or value == "":
        return None
    if isinstance(value, int):
        return _CONSTRAINT_CODES.get(value)
    text = value.strip()
    if text.isdigit():
        return _CONSTRAINT_CODES.get(int(text))
    if text.upper() in CONSTRAINT_TYPES:
        return text.upper()
    return _CONSTRAINT_NAMES.get(text.lower())
