"""Day-level resolution of working calendars.

Every consumer (duration calculator, propagator, template instantiator, CLI)
goes through ``CalendarResolver.resolve`` so that a date means the same thing
everywhere: an override for the exact date wins, otherwise the weekly pattern
of that weekday applies, otherwise the day is closed.
"""

from __future__ import annotations

import logging
from datetime import date, datetime, time
from typing import Protocol

from planif.errors import DataIntegrity, NotFound
from planif.models import (
    DayKind,
    DayOverride,
    DaySchedule,
    EngineConfig,
    WeekdayPattern,
    WorkCalendar,
)

logger = logging.getLogger(__name__)


class CalendarSource(Protocol):
    """The two lookups the resolver needs from storage."""

    def get_calendar(self, calendar_id: str) -> WorkCalendar | None: ...

    def get_override(self, calendar_id: str, day: date) -> DayOverride | None: ...


def standard_week(config: EngineConfig | None = None) -> list[WeekdayPattern]:
    """Monday to Friday open with a 12:00-13:00 break, weekend closed."""
    config = config or EngineConfig()
    week = []
    for weekday in range(7):
        if weekday < 5:
            week.append(
                WeekdayPattern(
                    weekday=weekday,
                    kind=DayKind.OPEN,
                    start=config.default_start,
                    end=config.default_end,
                    break_start=time(12, 0),
                    break_end=time(13, 0),
                    work_hours=config.default_hours,
                )
            )
        else:
            week.append(WeekdayPattern(weekday=weekday, kind=DayKind.CLOSED))
    return week


class CalendarResolver:
    """Resolves ``(calendar_id, date)`` into a ``DaySchedule``.

    Results are memoised for the lifetime of the resolver, which is meant to
    live for one engine call over one storage snapshot.
    """

    def __init__(self, source: CalendarSource, config: EngineConfig | None = None):
        self.source = source
        self.config = config or EngineConfig()
        self.warnings: list[str] = []
        self._cache: dict[tuple[str, date], DaySchedule] = {}

    def resolve(self, calendar_id: str, day: date | datetime) -> DaySchedule:
        if isinstance(day, datetime):
            day = day.date()
        key = (calendar_id, day)
        if key not in self._cache:
            self._cache[key] = self._resolve(calendar_id, day)
        return self._cache[key]

    def _resolve(self, calendar_id: str, day: date) -> DaySchedule:
        calendar = self.source.get_calendar(calendar_id)
        if calendar is None:
            raise NotFound("calendar", calendar_id)

        override = self.source.get_override(calendar_id, day)
        if override is not None:
            if override.kind != DayKind.OPEN:
                return DaySchedule.closed(day, source="override")
            return self._from_record(calendar_id, day, override, "override")

        pattern = calendar.week.get(day.weekday())
        if pattern is None or pattern.kind != DayKind.OPEN:
            return DaySchedule.closed(day, source="week" if pattern else "none")
        return self._from_record(calendar_id, day, pattern, "week")

    def _from_record(
        self,
        calendar_id: str,
        day: date,
        record: DayOverride | WeekdayPattern,
        source: str,
    ) -> DaySchedule:
        try:
            record.validate()
        except DataIntegrity as e:
            message = f"calendar {calendar_id}, {day.isoformat()}: {e}; treated as closed"
            logger.warning(message)
            self.warnings.append(message)
            return DaySchedule.closed(day, source=source, warning=message)
        return DaySchedule(
            date=day,
            is_open=True,
            start=record.start,
            end=record.end,
            break_start=record.break_start,
            break_end=record.break_end,
            nominal_hours=record.nominal_hours,
            source=source,
        )
