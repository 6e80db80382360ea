import math
from datetime import date, datetime, time

import pytest

from planif.calendar import CalendarResolver, standard_week
from planif.durations import (
    add_working_days,
    add_working_hours,
    next_working_instant,
    working_hours_between,
)
from planif.errors import Exhausted, InvalidDuration, StartNotWorking
from planif.models import DayKind, DayOverride, EngineConfig, WeekdayPattern, WorkCalendar
from planif.persistence import Store

# 2026-03-02 is a Monday. Standard week: Mon-Fri 08:00-16:00, break 12:00-13:00.
MON = date(2026, 3, 2)


def make_resolver(tmp_path, config=None, overrides=()):
    store = Store(tmp_path / "planif.json")
    store.config = config or EngineConfig()
    cal = WorkCalendar(id="CAL-1", name="Default")
    for pattern in standard_week(store.config):
        cal.set_weekday(pattern)
    for override in overrides:
        cal.set_override(override)
    store.put_calendar(cal)
    return CalendarResolver(store, store.config)


# ---------------------------------------------------------------------------
# Working days
# ---------------------------------------------------------------------------


def test_friday_plus_one_day_is_monday(tmp_path):
    resolver = make_resolver(tmp_path)
    end = add_working_days(datetime(2026, 3, 6, 8, 0), 1, "CAL-1", resolver)
    assert end == datetime(2026, 3, 9, 16, 0)


def test_days_are_counted_from_the_next_day(tmp_path):
    resolver = make_resolver(tmp_path)
    # Mon + 2 -> Tue, Wed; ends at Wednesday's closing time
    assert add_working_days(datetime(2026, 3, 2, 8, 0), 2, "CAL-1", resolver) == datetime(2026, 3, 4, 16, 0)


def test_zero_days_returns_start(tmp_path):
    start = datetime(2026, 3, 7, 10, 30)
    assert add_working_days(start, 0, "CAL-1", make_resolver(tmp_path)) == start


def test_negative_days_refused(tmp_path):
    with pytest.raises(InvalidDuration):
        add_working_days(datetime(2026, 3, 2), -1, "CAL-1", make_resolver(tmp_path))


def test_holiday_is_skipped(tmp_path):
    # Easter Monday 2026
    resolver = make_resolver(tmp_path, overrides=[DayOverride(date=date(2026, 4, 6), label="Lundi de Pâques")])
    end = add_working_days(datetime(2026, 4, 3, 8, 0), 1, "CAL-1", resolver)
    assert end == datetime(2026, 4, 7, 16, 0)


def test_day_end_uses_override_closing_time(tmp_path):
    resolver = make_resolver(
        tmp_path,
        overrides=[DayOverride(date=date(2026, 3, 3), kind=DayKind.OPEN, start=time(8, 0), end=time(11, 0))],
    )
    assert add_working_days(datetime(2026, 3, 2, 8, 0), 1, "CAL-1", resolver) == datetime(2026, 3, 3, 11, 0)


def test_more_days_never_end_earlier(tmp_path):
    resolver = make_resolver(tmp_path)
    start = datetime(2026, 3, 4, 9, 0)
    ends = [add_working_days(start, n, "CAL-1", resolver) for n in range(0, 12)]
    assert ends == sorted(ends)


def test_closed_calendar_is_exhausted(tmp_path):
    config = EngineConfig(max_days=30)
    store = Store(tmp_path / "planif.json")
    store.put_calendar(WorkCalendar(id="CAL-1", name="Never open"))
    resolver = CalendarResolver(store, config)

    with pytest.raises(Exhausted):
        add_working_days(datetime(2026, 3, 2), 1, "CAL-1", resolver)


# ---------------------------------------------------------------------------
# Working hours
# ---------------------------------------------------------------------------


def test_hours_skip_the_break(tmp_path):
    resolver = make_resolver(tmp_path)
    # 09:00-12:00 is 3h, 13:00-16:00 is the other 3h
    end = add_working_hours(datetime(2026, 3, 2, 9, 0), 6, "CAL-1", resolver)
    assert end == datetime(2026, 3, 2, 16, 0)


def test_hours_ending_at_break_start(tmp_path):
    resolver = make_resolver(tmp_path)
    assert add_working_hours(datetime(2026, 3, 2, 9, 0), 3, "CAL-1", resolver) == datetime(2026, 3, 2, 12, 0)


def test_start_inside_break_counts_from_break_end(tmp_path):
    resolver = make_resolver(tmp_path)
    assert add_working_hours(datetime(2026, 3, 2, 12, 30), 1, "CAL-1", resolver) == datetime(2026, 3, 2, 14, 0)


def test_start_before_opening_counts_from_opening(tmp_path):
    resolver = make_resolver(tmp_path)
    assert add_working_hours(datetime(2026, 3, 2, 6, 0), 1, "CAL-1", resolver) == datetime(2026, 3, 2, 9, 0)


def test_hours_roll_over_weekend(tmp_path):
    resolver = make_resolver(tmp_path)
    # Friday 15:00: 1h left that day, the second hour on Monday morning
    end = add_working_hours(datetime(2026, 3, 6, 15, 0), 2, "CAL-1", resolver)
    assert end == datetime(2026, 3, 9, 9, 0)


def test_fractional_hours(tmp_path):
    resolver = make_resolver(tmp_path)
    assert add_working_hours(datetime(2026, 3, 2, 8, 0), 1.5, "CAL-1", resolver) == datetime(2026, 3, 2, 9, 30)


def test_more_hours_never_end_earlier(tmp_path):
    resolver = make_resolver(tmp_path)
    start = datetime(2026, 3, 5, 10, 45)
    ends = [add_working_hours(start, h / 2, "CAL-1", resolver) for h in range(1, 40)]
    assert ends == sorted(ends)
    # 7h is a full standard day: Thursday 10:45 lands on Friday 10:45
    assert add_working_hours(start, 7, "CAL-1", resolver) == datetime(2026, 3, 6, 10, 45)


def test_hours_start_must_be_working(tmp_path):
    resolver = make_resolver(tmp_path)
    with pytest.raises(StartNotWorking):
        add_working_hours(datetime(2026, 3, 7, 9, 0), 1, "CAL-1", resolver)
    with pytest.raises(StartNotWorking):
        add_working_hours(datetime(2026, 3, 2, 16, 0), 1, "CAL-1", resolver)


def test_hours_must_be_positive(tmp_path):
    resolver = make_resolver(tmp_path)
    with pytest.raises(InvalidDuration):
        add_working_hours(datetime(2026, 3, 2, 9, 0), 0, "CAL-1", resolver)


def test_next_working_instant(tmp_path):
    resolver = make_resolver(tmp_path)
    assert next_working_instant(datetime(2026, 3, 2, 9, 0), "CAL-1", resolver) == datetime(2026, 3, 2, 9, 0)
    assert next_working_instant(datetime(2026, 3, 2, 12, 15), "CAL-1", resolver) == datetime(2026, 3, 2, 13, 0)
    assert next_working_instant(datetime(2026, 3, 2, 16, 0), "CAL-1", resolver) == datetime(2026, 3, 3, 8, 0)
    assert next_working_instant(datetime(2026, 3, 7, 10, 0), "CAL-1", resolver) == datetime(2026, 3, 9, 8, 0)


# ---------------------------------------------------------------------------
# Capacity
# ---------------------------------------------------------------------------


def test_working_hours_of_a_week(tmp_path):
    resolver = make_resolver(tmp_path)
    assert working_hours_between(MON, date(2026, 3, 8), "CAL-1", resolver) == 35.0


def test_working_hours_counts_overrides(tmp_path):
    resolver = make_resolver(
        tmp_path,
        overrides=[
            DayOverride(date=date(2026, 3, 3)),
            DayOverride(date=date(2026, 3, 7), kind=DayKind.OPEN, start=time(8, 0), end=time(12, 0)),
        ],
    )
    assert working_hours_between(MON, date(2026, 3, 8), "CAL-1", resolver) == 32.0


def test_working_hours_single_day_and_reversed_range(tmp_path):
    resolver = make_resolver(tmp_path)
    assert working_hours_between(MON, MON, "CAL-1", resolver) == 7.0
    assert working_hours_between(date(2026, 3, 8), MON, "CAL-1", resolver) == 0.0


def no_break_resolver(tmp_path):
    # Mon-Fri 08:00-16:00 straight, 8h a day
    store = Store(tmp_path / "planif.json")
    cal = WorkCalendar(id="CAL-1", name="Straight days")
    for weekday in range(7):
        if weekday < 5:
            cal.set_weekday(WeekdayPattern(weekday=weekday, start=time(8, 0), end=time(16, 0)))
        else:
            cal.set_weekday(WeekdayPattern(weekday=weekday, kind=DayKind.CLOSED))
    store.put_calendar(cal)
    return CalendarResolver(store, store.config)


@pytest.mark.parametrize("hours", [0.5, 8, 9, 40, 41])
def test_hours_to_end_and_back_cover_the_work(tmp_path, hours):
    resolver = no_break_resolver(tmp_path)
    start = datetime(2026, 3, 2, 8, 0)
    end = add_working_hours(start, hours, "CAL-1", resolver)
    # The dates spanned hold at least the whole days the work needs
    assert working_hours_between(start, end, "CAL-1", resolver) >= math.ceil(hours / 8) * 8
