"""Report periods: a whole year ("2025") or a single month ("2026-01").

Parsing never raises. A malformed year or month is stored as ``None`` and the
resulting range matches no events, so a bad query string degrades to an empty
report instead of an error.
"""

import math
import re
from dataclasses import dataclass
from datetime import MAXYEAR, MINYEAR, date, datetime
from typing import Optional, Union

from .models import TimeRangeOption

MONTH_NAMES = [
    "January",
    "February",
    "March",
    "April",
    "May",
    "June",
    "July",
    "August",
    "September",
    "October",
    "November",
    "December",
]

# Days of history fetched past the start of the range to absorb server clock skew
LOOKBACK_BUFFER_DAYS = 14
MIN_LOOKBACK_DAYS = 365

_DATE_PREFIX = re.compile(r"^\s*(\d{4})-(\d{1,2})")
_DIGITS = re.compile(r"[0-9]+")
_INVALID = "NaN"


@dataclass(frozen=True)
class TimeRange:
    year: Optional[int]
    month: Optional[int] = None
    kind: str = "year"

    @property
    def is_month(self) -> bool:
        return self.kind == "month"

    @property
    def is_valid(self) -> bool:
        if self.year is None or not MINYEAR <= self.year <= MAXYEAR:
            return False
        return not self.is_month or self.month is not None

    def matches(self, value: Union[str, date]) -> bool:
        """Whether a calendar day falls inside this range."""
        if not self.is_valid:
            return False
        if isinstance(value, date):
            year, month = value.year, value.month
        else:
            match = _DATE_PREFIX.match(value or "")
            if not match:
                return False
            year, month = int(match.group(1)), int(match.group(2))
        if year != self.year:
            return False
        return not self.is_month or month == self.month


def _parse_part(part: str) -> Optional[int]:
    part = part.strip()
    if not _DIGITS.fullmatch(part):
        return None
    return int(part)


def _parse_year(part: str) -> Optional[int]:
    year = _parse_part(part)
    if year is None or not MINYEAR <= year <= MAXYEAR:
        return None
    return year


def parse_time_range(value: Optional[str]) -> TimeRange:
    value = (value or "").strip()
    if "-" in value:
        year_part, _, month_part = value.partition("-")
        month = _parse_part(month_part)
        if month is not None and not 1 <= month <= 12:
            month = None
        return TimeRange(year=_parse_year(year_part), month=month, kind="month")
    return TimeRange(year=_parse_year(value), kind="year")


def to_canonical_string(time_range: TimeRange) -> str:
    year = _INVALID if time_range.year is None else str(time_range.year)
    if not time_range.is_month:
        return year
    month = _INVALID if time_range.month is None else f"{time_range.month:02d}"
    return f"{year}-{month}"


def format_label(time_range: TimeRange) -> str:
    if not time_range.is_valid:
        return "Unknown period"
    if time_range.is_month:
        return f"{MONTH_NAMES[time_range.month - 1]} {time_range.year}"
    return f"{time_range.year} (Full Year)"


def lookback_days(time_range: TimeRange, now: Optional[datetime] = None) -> int:
    """Days of playback history needed to cover the range, measured back from now."""
    now = now or datetime.now()
    if not time_range.is_valid:
        return MIN_LOOKBACK_DAYS
    start = datetime(time_range.year, 1, 1)
    if start > now:
        return MIN_LOOKBACK_DAYS
    elapsed = math.ceil((now - start).total_seconds() / 86400)
    return max(MIN_LOOKBACK_DAYS, elapsed + LOOKBACK_BUFFER_DAYS)


def current_year_range(now: Optional[datetime] = None) -> TimeRange:
    now = now or datetime.now()
    return TimeRange(year=now.year)


def available_time_ranges(now: Optional[datetime] = None) -> list[TimeRangeOption]:
    """Ranges offered for selection: this year, last year, then this year's months."""
    now = now or datetime.now()
    ranges = [TimeRange(year=now.year), TimeRange(year=now.year - 1)]
    for month in range(now.month, 0, -1):
        ranges.append(TimeRange(year=now.year, month=month, kind="month"))
    return [
        TimeRangeOption(value=to_canonical_string(r), label=format_label(r)) for r in ranges
    ]
