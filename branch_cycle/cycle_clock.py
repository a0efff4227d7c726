"""
Cycle clock for branch-cycle

Pure date arithmetic: decides whether a day is a cycle boundary and which
boundary a day belongs to, and turns boundary dates into branch names.

Date formats may be written with date-fns style tokens (``yyyy-MM-dd``, the
form stored in existing config files) or with strftime directives
(``%Y-%m-%d``).

Examples:
    >>> last = date(2025, 9, 1)
    >>> is_execution_day(date(2025, 9, 10), last, 14)
    False
    >>> cycle_boundary(date(2025, 9, 20), last, 14)
    CycleBoundary(current=datetime.date(2025, 9, 15), next=datetime.date(2025, 9, 29))
"""

import re
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Optional

from branch_cycle.errors import InvalidDateError

DEFAULT_DATE_FORMAT = 'yyyy-MM-dd'

# Longest tokens first so that 'yyyy' wins over 'yy'.
_TOKENS = {
    'yyyy': '%Y',
    'yy': '%y',
    'MMMM': '%B',
    'MMM': '%b',
    'MM': '%m',
    'dd': '%d',
    'EEEE': '%A',
    'EEE': '%a',
}
_TOKEN_RE = re.compile('|'.join(sorted(_TOKENS, key=len, reverse=True)))


@dataclass(frozen=True)
class CycleBoundary:
    """Start of the cycle containing a day, and start of the following one."""
    current: date
    next: date


def to_strftime(date_format: str) -> str:
    "Translates a date-fns style format to strftime. strftime formats pass through."
    if '%' in date_format:
        return date_format
    return _TOKEN_RE.sub(lambda match: _TOKENS[match.group(0)], date_format)


def days_between(later: date, earlier: date) -> int:
    "Calendar days from earlier to later (negative when later is before earlier)."
    return (later - earlier).days


def is_execution_day(today: date, last_cycle_date: Optional[date], cycle_days: int) -> bool:
    """
    Returns True when a full cycle must run on today.

    Without a previous cycle every day is an execution day (bootstrap).
    """
    if last_cycle_date is None:
        return True
    return days_between(today, last_cycle_date) >= cycle_days


def cycle_boundary(today: date, last_cycle_date: Optional[date], cycle_days: int) -> CycleBoundary:
    """
    Computes the boundary of the cycle containing today.

    Snaps backward to the most recent boundary so that re-running on the same
    day always yields the same result.

    Args:
        today: Reference day
        last_cycle_date: Date of the last executed full cycle, or None
        cycle_days: Cycle length in days (>= 1)

    Returns:
        CycleBoundary: current and next boundary
    """
    if cycle_days < 1:
        raise ValueError(f"cycle_days must be >= 1, got {cycle_days}")
    if last_cycle_date is None:
        current = today
    else:
        steps = days_between(today, last_cycle_date) // cycle_days
        current = last_cycle_date + timedelta(days=steps * cycle_days)
    return CycleBoundary(current=current, next=current + timedelta(days=cycle_days))


def parse_date(text: str, date_format: str = DEFAULT_DATE_FORMAT) -> date:
    "Parses text under date_format. Raises InvalidDateError."
    if isinstance(text, date):
        return text
    pattern = to_strftime(date_format)
    try:
        return datetime.strptime(str(text).strip(), pattern).date()
    except (TypeError, ValueError) as err:
        raise InvalidDateError(
            f"Invalid date: {text!r}. Expected format {date_format}",
            context={'format': date_format}) from err


def format_date(day: date, date_format: str = DEFAULT_DATE_FORMAT) -> str:
    return day.strftime(to_strftime(date_format))


def format_branch_name(prefix: str, day: date, date_format: str = DEFAULT_DATE_FORMAT) -> str:
    """
    Builds the date-named branch for a boundary.

    >>> format_branch_name('release', date(2025, 9, 15))
    'release/2025-09-15'
    >>> format_branch_name('', date(2025, 9, 15))
    '2025-09-15'
    """
    date_str = format_date(day, date_format)
    return f"{prefix}/{date_str}" if prefix else date_str
