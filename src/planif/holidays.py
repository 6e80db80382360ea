"""French public holidays as closed calendar overrides."""

from __future__ import annotations

import logging
from datetime import date, timedelta

from dateutil.easter import easter

from planif.models import DayKind, DayOverride, WorkCalendar

logger = logging.getLogger(__name__)

FIXED_HOLIDAYS = [
    (1, 1, "Jour de l'an"),
    (5, 1, "Fête du travail"),
    (5, 8, "Victoire 1945"),
    (7, 14, "Fête nationale"),
    (8, 15, "Assomption"),
    (11, 1, "Toussaint"),
    (11, 11, "Armistice 1918"),
    (12, 25, "Noël"),
]


def french_public_holidays(year: int) -> dict[date, str]:
    """Public holidays of metropolitan France for *year*."""
    days = {date(year, month, day): label for month, day, label in FIXED_HOLIDAYS}
    sunday = easter(year)
    days[sunday + timedelta(days=1)] = "Lundi de Pâques"
    days[sunday + timedelta(days=39)] = "Ascension"
    days[sunday + timedelta(days=50)] = "Lundi de Pentecôte"
    return dict(sorted(days.items()))


def generate_holidays(calendar: WorkCalendar, first_year: int, last_year: int) -> int:
    """Add a closed override for every holiday of the range.

    Dates that already carry an override keep it. Returns how many overrides
    were created.
    """
    if first_year > last_year:
        raise ValueError(f"first year {first_year} is after last year {last_year}")

    created = 0
    for year in range(first_year, last_year + 1):
        for day, label in french_public_holidays(year).items():
            if day in calendar.overrides:
                continue
            calendar.set_override(
                DayOverride(date=day, kind=DayKind.CLOSED, work_hours=0.0, recurring=True, label=label)
            )
            created += 1

    logger.info("Calendar %s: %d holidays generated for %d-%d", calendar.id, created, first_year, last_year)
    return created
