from datetime import date, time

import pytest

from planif.calendar import CalendarResolver
from planif.holidays import french_public_holidays, generate_holidays
from planif.models import DayKind, DayOverride, WorkCalendar
from planif.persistence import Store


def test_movable_holidays_2026():
    days = french_public_holidays(2026)
    # Easter Sunday 2026 is April 5
    assert days[date(2026, 4, 6)] == "Lundi de Pâques"
    assert days[date(2026, 5, 14)] == "Ascension"
    assert days[date(2026, 5, 25)] == "Lundi de Pentecôte"
    assert len(days) == 11
    assert list(days) == sorted(days)


def test_generate_holidays_skips_existing_overrides():
    cal = WorkCalendar(id="CAL-1", name="Default")
    cal.set_override(
        DayOverride(date=date(2026, 7, 14), kind=DayKind.OPEN, start=time(8, 0), end=time(12, 0), label="Kept")
    )

    # 11 per year, minus the date already overridden
    assert generate_holidays(cal, 2026, 2027) == 21
    assert cal.overrides[date(2026, 7, 14)].label == "Kept"
    assert cal.overrides[date(2027, 12, 25)].recurring
    # Running again creates nothing
    assert generate_holidays(cal, 2026, 2027) == 0


def test_generated_holiday_closes_the_day(tmp_path):
    store = Store(tmp_path / "planif.json")
    cal = WorkCalendar(id="CAL-1", name="Default")
    store.put_calendar(cal)
    generate_holidays(cal, 2026, 2026)

    schedule = CalendarResolver(store).resolve("CAL-1", date(2026, 11, 11))
    assert not schedule.is_open
    assert schedule.source == "override"


def test_reversed_year_range():
    with pytest.raises(ValueError):
        generate_holidays(WorkCalendar(id="CAL-1", name="Default"), 2027, 2026)
