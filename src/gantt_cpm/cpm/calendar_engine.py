# gantt_cpm/cpm/calendar_engine.py

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Iterable, Iterator, Optional, Tuple

from gantt_cpm.config.settings import settings
from gantt_cpm.errors import InvalidCalendar

ONE_DAY = timedelta(days=1)


# -----------------------------
# Calendar definition
# -----------------------------

@dataclass(frozen=True)
class Calendar:
    """
    Weekly work pattern plus date-level exceptions.

    work_days is indexed by ``date.weekday()`` (0 = Monday ... 6 = Sunday).
    Every date in ``exceptions`` inverts the weekly pattern for that day:
    a holiday on a work weekday, or an extra shift on a weekend.
    """
    id: str
    name: str = ""
    work_days: Tuple[bool, bool, bool, bool, bool, bool, bool] = (
        True, True, True, True, True, False, False,
    )
    hours_per_day: float = 8.0
    exceptions: frozenset = field(default_factory=frozenset)

    def __post_init__(self):
        if len(self.work_days) != 7:
            raise ValueError(f"Calendar '{self.id}' needs 7 weekday flags, got {len(self.work_days)}")
        object.__setattr__(self, "work_days", tuple(bool(x) for x in self.work_days))
        object.__setattr__(self, "exceptions", frozenset(self.exceptions))

    @property
    def days_per_week(self) -> int:
        return sum(self.work_days)

    def with_exceptions(self, dates: Iterable[date]) -> "Calendar":
        """Return a copy whose exception set is ``dates``."""
        return Calendar(self.id, self.name, self.work_days, self.hours_per_day, frozenset(dates))


def builtin_calendar(days_per_week: int) -> Calendar:
    """5-day (Mon–Fri), 6-day (Mon–Sat) or 7-day calendar."""
    if days_per_week not in (5, 6, 7):
        raise ValueError(f"No built-in {days_per_week}-day calendar")
    flags = tuple(i < days_per_week for i in range(7))
    return Calendar(id=f"{days_per_week}d", name=f"{days_per_week} days/week", work_days=flags)


BUILTIN_CALENDARS = {c.id: c for c in (builtin_calendar(5), builtin_calendar(6), builtin_calendar(7))}


# -----------------------------
# Day classification
# -----------------------------

def is_work_day(calendar: Calendar, d: date) -> bool:
    return calendar.work_days[d.weekday()] != (d in calendar.exceptions)


def _step(calendar: Calendar, d: date, direction: int, horizon: int) -> date:
    """Move one day at a time until a work day is reached (exclusive of d)."""
    delta = ONE_DAY if direction > 0 else -ONE_DAY
    for _ in range(horizon):
        d = d + delta
        if is_work_day(calendar, d):
            return d
    raise InvalidCalendar(calendar.id)


def next_work_day(calendar: Calendar, d: date, horizon: Optional[int] = None) -> date:
    """``d`` itself when it is a work day, otherwise the next one."""
    if is_work_day(calendar, d):
        return d
    return _step(calendar, d, 1, horizon or settings.CALENDAR_HORIZON_DAYS)


# -----------------------------
# Date arithmetic
# -----------------------------

def add_work_days(calendar: Calendar, start: date, work_days: float, horizon: Optional[int] = None) -> date:
    """
    Shift ``start`` by a signed number of work days.

    Walks day by day so exceptions are always honoured. Fractional
    counts are rounded to whole days. A zero count returns ``start``
    unchanged (milestones, zero lags).

    Raises InvalidCalendar when no work day is found within the
    horizon, so an all-holiday calendar cannot loop forever.
    """
    steps = int(round(work_days))
    if steps == 0:
        return start
    horizon = horizon or settings.CALENDAR_HORIZON_DAYS
    direction = 1 if steps > 0 else -1
    d = start
    for _ in range(abs(steps)):
        d = _step(calendar, d, direction, horizon)
    return d


def work_days_between(calendar: Calendar, a: date, b: date) -> int:
    """
    Number of work days in [a, b); negative when b < a.

    Inverse of add_work_days for work-day aligned starts:
    work_days_between(cal, d, add_work_days(cal, d, n)) == n.
    """
    if a == b:
        return 0
    if b < a:
        return -work_days_between(calendar, b, a)
    count = 0
    d = a
    while d < b:
        if is_work_day(calendar, d):
            count += 1
        d += ONE_DAY
    return count


def iter_work_days(calendar: Calendar, start: date, end: date) -> Iterator[date]:
    """Work days in [start, end)."""
    d = start
    while d < end:
        if is_work_day(calendar, d):
            yield d
        d += ONE_DAY


def last_work_day(calendar: Calendar, finish: date) -> date:
    """
    Inclusive display date for an exclusive finish boundary.

    An EF of Thursday (boundary) means work ended Wednesday evening.
    """
    return _step(calendar, finish, -1, settings.CALENDAR_HORIZON_DAYS)
