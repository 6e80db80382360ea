"""Calendar, activity, dependency and template models."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta

from planif.errors import DataIntegrity


class DayKind(enum.StrEnum):
    OPEN = "open"
    CLOSED = "closed"


class DependencyType(enum.StrEnum):
    FINISH_TO_START = "FS"
    START_TO_START = "SS"
    FINISH_TO_FINISH = "FF"
    START_TO_FINISH = "SF"

    @property
    def anchors_start(self) -> bool:
        """True when the constraint bounds the dependent's start."""
        return self in (DependencyType.FINISH_TO_START, DependencyType.START_TO_START)


class WorkTimeClass(enum.StrEnum):
    STANDARD = "standard"
    NIGHT = "night"
    WEEKEND = "weekend"
    HOLIDAY = "holiday"


class ActivityStatus(enum.StrEnum):
    PLANNED = "planned"
    STARTED = "started"
    SUSPENDED = "suspended"
    POSTPONED = "postponed"
    COMPLETED = "completed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (ActivityStatus.COMPLETED, ActivityStatus.CANCELLED)


def _time(value: str | None) -> time | None:
    return time.fromisoformat(value) if value else None


def _time_str(value: time | None) -> str | None:
    return value.strftime("%H:%M") if value is not None else None


def _dt(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


def _dt_str(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def window_hours(
    start: time | None,
    end: time | None,
    break_start: time | None = None,
    break_end: time | None = None,
) -> float:
    """Hours between *start* and *end* minus the break, if any."""
    if start is None or end is None:
        return 0.0
    anchor = date(2000, 1, 1)
    total = datetime.combine(anchor, end) - datetime.combine(anchor, start)
    if break_start is not None and break_end is not None:
        total -= datetime.combine(anchor, break_end) - datetime.combine(anchor, break_start)
    return max(total.total_seconds() / 3600, 0.0)


def check_window(
    what: str,
    kind: DayKind,
    start: time | None,
    end: time | None,
    break_start: time | None,
    break_end: time | None,
) -> None:
    """Raise DataIntegrity if an open window is incomplete or inconsistent."""
    if kind != DayKind.OPEN:
        return
    if start is None or end is None:
        raise DataIntegrity(f"{what}: open day without start/end time")
    if start >= end:
        raise DataIntegrity(f"{what}: start {_time_str(start)} is not before end {_time_str(end)}")
    if (break_start is None) != (break_end is None):
        raise DataIntegrity(f"{what}: break needs both a start and an end")
    if break_start is not None and break_end is not None:
        if break_start >= break_end:
            raise DataIntegrity(
                f"{what}: break start {_time_str(break_start)} is not before break end {_time_str(break_end)}"
            )
        if break_start < start or break_end > end:
            raise DataIntegrity(f"{what}: break lies outside the working window")


@dataclass
class WeekdayPattern:
    """Default working time of one weekday (0 = Monday)."""

    weekday: int
    kind: DayKind = DayKind.OPEN
    start: time | None = None
    end: time | None = None
    break_start: time | None = None
    break_end: time | None = None
    work_hours: float | None = None

    def validate(self) -> None:
        check_window(
            f"weekday {self.weekday}",
            self.kind,
            self.start,
            self.end,
            self.break_start,
            self.break_end,
        )

    @property
    def nominal_hours(self) -> float:
        if self.kind != DayKind.OPEN:
            return 0.0
        if self.work_hours is not None:
            return self.work_hours
        return window_hours(self.start, self.end, self.break_start, self.break_end)

    def to_dict(self) -> dict:
        return {
            "weekday": self.weekday,
            "kind": self.kind.value,
            "start": _time_str(self.start),
            "end": _time_str(self.end),
            "break_start": _time_str(self.break_start),
            "break_end": _time_str(self.break_end),
            "work_hours": self.work_hours,
        }

    @classmethod
    def from_dict(cls, d: dict) -> WeekdayPattern:
        return cls(
            weekday=int(d["weekday"]),
            kind=DayKind(d.get("kind", "open")),
            start=_time(d.get("start")),
            end=_time(d.get("end")),
            break_start=_time(d.get("break_start")),
            break_end=_time(d.get("break_end")),
            work_hours=d.get("work_hours"),
        )


@dataclass
class DayOverride:
    """Per-date exception to the weekly pattern (holiday, special hours)."""

    date: date
    kind: DayKind = DayKind.CLOSED
    start: time | None = None
    end: time | None = None
    break_start: time | None = None
    break_end: time | None = None
    work_hours: float | None = None
    recurring: bool = False  # generated (e.g. public holidays) rather than one-off
    label: str | None = None

    def validate(self) -> None:
        check_window(
            f"override {self.date.isoformat()}",
            self.kind,
            self.start,
            self.end,
            self.break_start,
            self.break_end,
        )

    @property
    def nominal_hours(self) -> float:
        if self.kind != DayKind.OPEN:
            return 0.0
        if self.work_hours is not None:
            return self.work_hours
        return window_hours(self.start, self.end, self.break_start, self.break_end)

    def to_dict(self) -> dict:
        d = {
            "date": self.date.isoformat(),
            "kind": self.kind.value,
            "start": _time_str(self.start),
            "end": _time_str(self.end),
            "break_start": _time_str(self.break_start),
            "break_end": _time_str(self.break_end),
            "work_hours": self.work_hours,
            "recurring": self.recurring,
        }
        if self.label is not None:
            d["label"] = self.label
        return d

    @classmethod
    def from_dict(cls, d: dict) -> DayOverride:
        return cls(
            date=date.fromisoformat(d["date"]),
            kind=DayKind(d.get("kind", "closed")),
            start=_time(d.get("start")),
            end=_time(d.get("end")),
            break_start=_time(d.get("break_start")),
            break_end=_time(d.get("break_end")),
            work_hours=d.get("work_hours"),
            recurring=d.get("recurring", False),
            label=d.get("label"),
        )


@dataclass
class WorkCalendar:
    """A weekly pattern plus per-date overrides, optionally bound to a site."""

    id: str
    name: str
    site_id: str | None = None
    active: bool = True
    year: int | None = None
    week: dict[int, WeekdayPattern] = field(default_factory=dict)
    overrides: dict[date, DayOverride] = field(default_factory=dict)

    def set_weekday(self, pattern: WeekdayPattern) -> None:
        if not 0 <= pattern.weekday <= 6:
            raise DataIntegrity(f"calendar {self.id}: weekday {pattern.weekday} outside 0-6")
        pattern.validate()
        self.week[pattern.weekday] = pattern

    def set_override(self, override: DayOverride) -> None:
        """Add or replace the override of a date (one per date)."""
        override.validate()
        self.overrides[override.date] = override

    def remove_override(self, day: date) -> DayOverride | None:
        return self.overrides.pop(day, None)

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "site_id": self.site_id,
            "active": self.active,
            "year": self.year,
            "week": [self.week[k].to_dict() for k in sorted(self.week)],
            "overrides": [self.overrides[k].to_dict() for k in sorted(self.overrides)],
        }

    @classmethod
    def from_dict(cls, cal_id: str, d: dict) -> WorkCalendar:
        # No validation here: corrupt rows must reach the resolver, which
        # reports them and treats the day as closed.
        week = [WeekdayPattern.from_dict(w) for w in d.get("week", [])]
        overrides = [DayOverride.from_dict(o) for o in d.get("overrides", [])]
        return cls(
            id=cal_id,
            name=d.get("name", cal_id),
            site_id=d.get("site_id"),
            active=d.get("active", True),
            year=d.get("year"),
            week={w.weekday: w for w in week},
            overrides={o.date: o for o in overrides},
        )


@dataclass
class DaySchedule:
    """Effective working time of one date for one calendar."""

    date: date
    is_open: bool
    start: time | None = None
    end: time | None = None
    break_start: time | None = None
    break_end: time | None = None
    nominal_hours: float = 0.0
    source: str = "none"  # "override", "week" or "none"
    warning: str | None = None

    @classmethod
    def closed(cls, day: date, source: str = "none", warning: str | None = None) -> DaySchedule:
        return cls(date=day, is_open=False, source=source, warning=warning)

    def at(self, moment: time) -> datetime:
        return datetime.combine(self.date, moment)

    def segments(self) -> list[tuple[datetime, datetime]]:
        """Working windows of the day, split around the break."""
        if not self.is_open:
            return []
        if self.break_start is not None and self.break_end is not None:
            return [
                (self.at(self.start), self.at(self.break_start)),
                (self.at(self.break_end), self.at(self.end)),
            ]
        return [(self.at(self.start), self.at(self.end))]

    def to_dict(self) -> dict:
        d = {
            "date": self.date.isoformat(),
            "is_open": self.is_open,
            "start": _time_str(self.start),
            "end": _time_str(self.end),
            "break_start": _time_str(self.break_start),
            "break_end": _time_str(self.break_end),
            "nominal_hours": self.nominal_hours,
            "source": self.source,
        }
        if self.warning:
            d["warning"] = self.warning
        return d


@dataclass
class Activity:
    """A schedulable unit of work inside a project."""

    id: str
    project_id: str
    label: str
    planned_start: datetime
    planned_end: datetime
    parent_id: str | None = None
    lot_id: str | None = None
    site_id: str | None = None
    actual_start: datetime | None = None
    actual_end: datetime | None = None
    work_days: int | None = None
    work_hours: float | None = None
    work_class: WorkTimeClass = WorkTimeClass.STANDARD
    status: ActivityStatus = ActivityStatus.PLANNED
    progress: float = 0.0
    seq: int = 0  # creation order, assigned by the store
    template_task_id: str | None = None

    def to_dict(self) -> dict:
        d = {
            "project_id": self.project_id,
            "label": self.label,
            "planned_start": _dt_str(self.planned_start),
            "planned_end": _dt_str(self.planned_end),
            "parent_id": self.parent_id,
            "lot_id": self.lot_id,
            "site_id": self.site_id,
            "actual_start": _dt_str(self.actual_start),
            "actual_end": _dt_str(self.actual_end),
            "work_days": self.work_days,
            "work_hours": self.work_hours,
            "work_class": self.work_class.value,
            "status": self.status.value,
            "progress": self.progress,
            "seq": self.seq,
        }
        if self.template_task_id is not None:
            d["template_task_id"] = self.template_task_id
        return d

    @classmethod
    def from_dict(cls, activity_id: str, d: dict) -> Activity:
        return cls(
            id=activity_id,
            project_id=d["project_id"],
            label=d.get("label", activity_id),
            planned_start=datetime.fromisoformat(d["planned_start"]),
            planned_end=datetime.fromisoformat(d["planned_end"]),
            parent_id=d.get("parent_id"),
            lot_id=d.get("lot_id"),
            site_id=d.get("site_id"),
            actual_start=_dt(d.get("actual_start")),
            actual_end=_dt(d.get("actual_end")),
            work_days=d.get("work_days"),
            work_hours=d.get("work_hours"),
            work_class=WorkTimeClass(d.get("work_class", "standard")),
            status=ActivityStatus(d.get("status", "planned")),
            progress=d.get("progress", 0.0),
            seq=d.get("seq", 0),
            template_task_id=d.get("template_task_id"),
        )


@dataclass
class Dependency:
    """*activity_id* depends on *predecessor_id*."""

    id: str
    activity_id: str
    predecessor_id: str
    type: DependencyType = DependencyType.FINISH_TO_START
    lag_days: int = 0  # calendar days, negative for a lead

    @property
    def lag(self) -> timedelta:
        return timedelta(days=self.lag_days)

    def to_dict(self) -> dict:
        return {
            "activity_id": self.activity_id,
            "predecessor_id": self.predecessor_id,
            "type": self.type.value,
            "lag_days": self.lag_days,
        }

    @classmethod
    def from_dict(cls, dep_id: str, d: dict) -> Dependency:
        return cls(
            id=dep_id,
            activity_id=d["activity_id"],
            predecessor_id=d["predecessor_id"],
            type=DependencyType(d.get("type", "FS")),
            lag_days=int(d.get("lag_days", 0)),
        )


@dataclass
class TemplateTask:
    id: str
    label: str
    duration_days: int | None = None
    hours: float | None = None  # used when duration_days is not set
    predecessor_id: str | None = None
    dependency_type: DependencyType = DependencyType.FINISH_TO_START
    level: int = 0
    order: int = 0
    parent_id: str | None = None
    work_class: WorkTimeClass = WorkTimeClass.STANDARD

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "label": self.label,
            "duration_days": self.duration_days,
            "hours": self.hours,
            "predecessor_id": self.predecessor_id,
            "dependency_type": self.dependency_type.value,
            "level": self.level,
            "order": self.order,
            "parent_id": self.parent_id,
            "work_class": self.work_class.value,
        }

    @classmethod
    def from_dict(cls, d: dict) -> TemplateTask:
        return cls(
            id=d["id"],
            label=d["label"],
            duration_days=d.get("duration_days"),
            hours=d.get("hours"),
            predecessor_id=d.get("predecessor_id"),
            dependency_type=DependencyType(d.get("dependency_type", "FS")),
            level=d.get("level", 0),
            order=d.get("order", 0),
            parent_id=d.get("parent_id"),
            work_class=WorkTimeClass(d.get("work_class", "standard")),
        )


@dataclass
class Template:
    """Reusable hierarchy of tasks. Read-only at instantiation time."""

    id: str
    name: str
    description: str | None = None
    tasks: list[TemplateTask] = field(default_factory=list)

    def to_dict(self) -> dict:
        d = {"name": self.name, "tasks": [t.to_dict() for t in self.tasks]}
        if self.description is not None:
            d["description"] = self.description
        return d

    @classmethod
    def from_dict(cls, template_id: str, d: dict) -> Template:
        return cls(
            id=template_id,
            name=d.get("name", template_id),
            description=d.get("description"),
            tasks=[TemplateTask.from_dict(t) for t in d.get("tasks", [])],
        )


@dataclass
class EngineConfig:
    """Engine settings stored alongside the data."""

    max_days: int = 365
    default_task_days: int = 1
    default_start: time = time(8, 0)
    default_end: time = time(16, 0)
    default_hours: float = 7.0

    def to_dict(self) -> dict:
        return {
            "max_days": self.max_days,
            "default_task_days": self.default_task_days,
            "default_start": _time_str(self.default_start),
            "default_end": _time_str(self.default_end),
            "default_hours": self.default_hours,
        }

    @classmethod
    def from_dict(cls, d: dict) -> EngineConfig:
        return cls(
            max_days=d.get("max_days", 365),
            default_task_days=d.get("default_task_days", 1),
            default_start=_time(d.get("default_start")) or time(8, 0),
            default_end=_time(d.get("default_end")) or time(16, 0),
            default_hours=d.get("default_hours", 7.0),
        )
