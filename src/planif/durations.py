"""Working-time arithmetic on top of the calendar resolver."""

from __future__ import annotations

import logging
from datetime import date, datetime, timedelta

from planif.calendar import CalendarResolver
from planif.errors import Exhausted, InvalidDuration, StartNotWorking
from planif.models import DaySchedule

logger = logging.getLogger(__name__)


def _as_date(moment: date | datetime) -> date:
    return moment.date() if isinstance(moment, datetime) else moment


def _exhausted(calendar_id: str, start: date | datetime, resolver: CalendarResolver) -> Exhausted:
    return Exhausted(
        f"calendar {calendar_id}: request from {start.isoformat()} not satisfied "
        f"within {resolver.config.max_days} days (check the calendar has open days)"
    )


# ---------------------------------------------------------------------------
# Day-based
# ---------------------------------------------------------------------------


def add_working_days(
    start: datetime,
    day_count: int,
    calendar_id: str,
    resolver: CalendarResolver,
) -> datetime:
    """Return the end of the *day_count*-th working day after *start*.

    Days are counted from the day following *start*; the result is placed at
    the resolved closing time of the last counted day.
    """
    if day_count < 0:
        raise InvalidDuration(f"day count must not be negative (got {day_count})")
    if day_count == 0:
        return start

    counted = 0
    day = _as_date(start)
    for _ in range(resolver.config.max_days):
        day += timedelta(days=1)
        schedule = resolver.resolve(calendar_id, day)
        if not schedule.is_open:
            continue
        counted += 1
        if counted == day_count:
            return schedule.at(schedule.end)

    raise _exhausted(calendar_id, start, resolver)


# ---------------------------------------------------------------------------
# Hour-based
# ---------------------------------------------------------------------------


def _consume(
    schedule: DaySchedule,
    current: datetime | None,
    remaining: timedelta,
) -> tuple[datetime | None, timedelta]:
    """Spend *remaining* on the day's windows, not before *current*.

    Returns (end, zero) when the remainder fits, else (None, what is left).
    """
    for seg_start, seg_end in schedule.segments():
        if current is not None:
            seg_start = max(seg_start, current)
        if seg_start >= seg_end:
            continue
        span = seg_end - seg_start
        if remaining <= span:
            return seg_start + remaining, timedelta(0)
        remaining -= span
    return None, remaining


def add_working_hours(
    start: datetime,
    hours: float,
    calendar_id: str,
    resolver: CalendarResolver,
) -> datetime:
    """Advance *start* by *hours* of working time, honouring breaks.

    *start* must lie on an open day before its closing time; a start before
    the opening counts from the opening, a start inside the break counts from
    the end of the break.
    """
    if hours <= 0:
        raise InvalidDuration(f"hour count must be positive (got {hours})")

    schedule = resolver.resolve(calendar_id, start)
    if not schedule.is_open:
        raise StartNotWorking(
            f"{start.date().isoformat()} is not a working day in calendar {calendar_id}"
        )
    if start >= schedule.at(schedule.end):
        raise StartNotWorking(
            f"{start.isoformat()} is after closing time ({schedule.end:%H:%M}) in calendar {calendar_id}"
        )

    end, remaining = _consume(schedule, start, timedelta(hours=hours))
    if end is not None:
        return end

    day = schedule.date
    for _ in range(resolver.config.max_days):
        day += timedelta(days=1)
        end, remaining = _consume(resolver.resolve(calendar_id, day), None, remaining)
        if end is not None:
            return end
        logger.debug("%s: %s left after %s", calendar_id, remaining, day)

    raise _exhausted(calendar_id, start, resolver)


def next_working_instant(
    moment: datetime,
    calendar_id: str,
    resolver: CalendarResolver,
) -> datetime:
    """Earliest instant >= *moment* that lies inside a working window."""
    schedule = resolver.resolve(calendar_id, moment)
    for seg_start, seg_end in schedule.segments():
        if moment < seg_end:
            return max(moment, seg_start)

    day = moment.date()
    for _ in range(resolver.config.max_days):
        day += timedelta(days=1)
        schedule = resolver.resolve(calendar_id, day)
        if schedule.is_open:
            return schedule.at(schedule.start)

    raise _exhausted(calendar_id, moment, resolver)


# ---------------------------------------------------------------------------
# Capacity
# ---------------------------------------------------------------------------


def working_hours_between(
    start: date | datetime,
    end: date | datetime,
    calendar_id: str,
    resolver: CalendarResolver,
) -> float:
    """Sum of the nominal hours of every date in [start, end].

    Whole-day granularity: meant for capacity estimates, not for placing an
    end date.
    """
    first, last = _as_date(start), _as_date(end)
    if last < first:
        return 0.0

    total = 0.0
    day = first
    while day <= last:
        total += resolver.resolve(calendar_id, day).nominal_hours
        day += timedelta(days=1)
    return round(total, 2)
