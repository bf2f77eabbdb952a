"""Spoken date resolution and expiry classification."""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from enum import Enum
from typing import TYPE_CHECKING, Iterable

from .errors import InvalidDateError

if TYPE_CHECKING:
    from .models import InventoryItem

CRITICAL_DAYS = 30
WARNING_DAYS = 60

_MONTHS: dict[str, int] = {
    "january": 1,
    "february": 2,
    "march": 3,
    "april": 4,
    "may": 5,
    "june": 6,
    "july": 7,
    "august": 8,
    "september": 9,
    "october": 10,
    "november": 11,
    "december": 12,
    "jan": 1,
    "feb": 2,
    "mar": 3,
    "apr": 4,
    "jun": 6,
    "jul": 7,
    "aug": 8,
    "sept": 9,
    "sep": 9,
    "oct": 10,
    "nov": 11,
    "dec": 12,
}

# Longest names first so "june" never resolves through "jun".
_MONTH_RE = re.compile(
    r"(?<![a-z])(" + "|".join(sorted(_MONTHS, key=len, reverse=True)) + r")(?![a-z])"
)
_YEAR_RE = re.compile(r"\b(20\d{2})\b")
_DAY_RE = re.compile(r"(?<!\d)(\d{1,2})(?:st|nd|rd|th)?\b")


def _reference_day(now: date | datetime | None) -> date:
    if now is None:
        return date.today()
    if isinstance(now, datetime):
        return now.date()
    return now


def _reference_moment(now: date | datetime | None) -> datetime:
    if now is None:
        return datetime.now()
    if isinstance(now, datetime):
        return now
    return datetime.combine(now, time())


def _build_date(year: int, month: int, day: int) -> date:
    """Build a date, rolling month and day overflow into the next period.

    Day 31 of a 30-day month becomes the 1st of the following month and
    day 0 becomes the last day of the previous month.
    """
    year += (month - 1) // 12
    month = (month - 1) % 12 + 1
    return date(year, month, 1) + timedelta(days=day - 1)


def resolve_voice_date(
    text: str,
    now: date | datetime | None = None,
    *,
    strict: bool = False,
) -> str:
    """Turn a spoken phrase like "march 5th" or "next week" into a date.

    Args:
        text: Free-form transcript.
        now: Reference point. Defaults to the system clock.
        strict: Raise instead of falling back to today's date when the
            text carries no date signal at all.

    Returns:
        The resolved date as ``YYYY-MM-DD``.

    Raises:
        InvalidDateError: In strict mode, when nothing date-like is found.
    """
    text = text.lower()
    moment = _reference_moment(now)
    today = moment.date()
    year, month, day = today.year, today.month, today.day

    year_match = _YEAR_RE.search(text)
    if year_match:
        year = int(year_match.group(1))

    month_match = _MONTH_RE.search(text)
    month_found = month_match is not None
    if month_match:
        month = _MONTHS[month_match.group(1)]

    day_found = True
    day_match = _DAY_RE.search(text)
    if day_match:
        day = int(day_match.group(1))
    elif "today" in text:
        day = today.day
    elif "tomorrow" in text:
        tomorrow = today + timedelta(days=1)
        year, month, day = tomorrow.year, tomorrow.month, tomorrow.day
    else:
        day_found = False

    relative_found = False
    if not month_found and not year_match:
        if "next week" in text:
            next_week = today + timedelta(days=7)
            year, month, day = next_week.year, next_week.month, next_week.day
            relative_found = True
        elif "next month" in text:
            # Month from the normalised date, day re-applied from today.
            following = _build_date(today.year, today.month + 1, today.day)
            year, month = following.year, following.month
            day = today.day
            relative_found = True
        elif "next year" in text:
            year = today.year + 1
            relative_found = True

    if strict and not (day_found or month_found or year_match or relative_found):
        raise InvalidDateError(f"No date found in {text!r}")

    result = _build_date(year, month, day)

    # No year spoken and the date already passed: the user means the next one.
    # A plain date reference counts as midnight.
    passed = datetime.combine(result, time(tzinfo=moment.tzinfo)) < moment
    if not year_match and passed and "today" not in text:
        result = _build_date(result.year + 1, result.month, result.day)

    return result.isoformat()


def parse_iso_date(value: str | date) -> date:
    """Parse ``YYYY-MM-DD`` (or a full ISO datetime) into a date.

    Raises:
        InvalidDateError: If the value is not a calendar date.
    """
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not isinstance(value, str):
        raise InvalidDateError(f"Not a date: {value!r}")

    cleaned = value.strip()
    try:
        return date.fromisoformat(cleaned)
    except ValueError:
        pass
    try:
        return datetime.fromisoformat(cleaned.replace("Z", "+00:00")).date()
    except ValueError:
        raise InvalidDateError(f"Not a date: {value!r}") from None


class ExpiryBucket(str, Enum):
    CRITICAL = "CRITICAL"
    WARNING = "WARNING"
    GOOD = "GOOD"


_LABELS = {
    ExpiryBucket.CRITICAL: "Expired / Critical",
    ExpiryBucket.WARNING: "Warning",
    ExpiryBucket.GOOD: "Good",
}


@dataclass(frozen=True)
class ExpiryStatus:
    bucket: ExpiryBucket
    label: str
    days_left: int


def days_until(expiry_date: str | date, now: date | datetime | None = None) -> int:
    """Whole days from the reference day to the expiry day (negative if past)."""
    return (parse_iso_date(expiry_date) - _reference_day(now)).days


def classify_expiry(
    expiry_date: str | date, now: date | datetime | None = None
) -> ExpiryStatus:
    """Bucket an expiry date by how close it is.

    Anything within 30 days (including already expired) is CRITICAL,
    31-60 days is WARNING, later is GOOD.
    """
    days_left = days_until(expiry_date, now)
    if days_left <= CRITICAL_DAYS:
        bucket = ExpiryBucket.CRITICAL
    elif days_left <= WARNING_DAYS:
        bucket = ExpiryBucket.WARNING
    else:
        bucket = ExpiryBucket.GOOD
    return ExpiryStatus(bucket=bucket, label=_LABELS[bucket], days_left=days_left)


def expiring_within(
    items: Iterable[InventoryItem],
    days: int,
    now: date | datetime | None = None,
) -> list[InventoryItem]:
    """Return the items whose expiry date is at most ``days`` away."""
    return [i for i in items if days_until(i.expiry_date, now) <= days]
