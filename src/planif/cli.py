"""Typer CLI for planif."""

from __future__ import annotations

import logging
from datetime import date, datetime, time
from typing import Annotated, NoReturn, Optional

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from planif.calendar import standard_week
from planif.engine import SchedulingEngine
from planif.errors import SchedulingError
from planif.holidays import generate_holidays
from planif.models import (
    Activity,
    ActivityStatus,
    DayKind,
    DayOverride,
    DependencyType,
    Template,
    TemplateTask,
    WeekdayPattern,
    WorkCalendar,
    WorkTimeClass,
)
from planif.persistence import DEFAULT_DB_FILE, Store
from planif.propagation import DateChange

app = typer.Typer(
    name="planif",
    help="Calendar-aware activity scheduler.",
    no_args_is_help=True,
)
console = Console()

_state = {"db": DEFAULT_DB_FILE}

WEEKDAYS = ["Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun"]


@app.callback()
def main(
    db: Annotated[str, typer.Option(envvar="PLANIF_DB", help="Path of the JSON database")] = DEFAULT_DB_FILE,
    verbose: Annotated[bool, typer.Option("--verbose", "-v", help="Log engine activity")] = False,
    debug: Annotated[bool, typer.Option(help="Log every step")] = False,
) -> None:
    _state["db"] = db
    level = logging.DEBUG if debug else logging.INFO if verbose else logging.WARNING
    logging.basicConfig(
        level=level,
        format="%(message)s",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        force=True,
    )


def _get_store() -> Store:
    return Store(_state["db"]).load()


def _fail(message: str) -> NoReturn:
    console.print(f"[red]{message}[/red]")
    raise typer.Exit(1)


def _require_init(store: Store) -> Store:
    if not store.initialized:
        _fail("No configuration found. Run 'planif init' first.")
    return store


def _parse_datetime(value: str, what: str = "date") -> datetime:
    try:
        return datetime.fromisoformat(value)
    except ValueError:
        _fail(f"Invalid {what} '{value}'. Use YYYY-MM-DD or YYYY-MM-DDTHH:MM.")


def _parse_date(value: str) -> date:
    return _parse_datetime(value).date()


def _parse_time(value: str | None) -> time | None:
    if value is None:
        return None
    try:
        return time.fromisoformat(value)
    except ValueError:
        _fail(f"Invalid time '{value}'. Use HH:MM.")


def _calendar_id(store: Store, calendar: str | None, site: str | None = None) -> str:
    if calendar:
        return calendar
    try:
        return store.calendar_for_site(site).id
    except SchedulingError as e:
        _fail(f"Error: {e}")


def _fmt(moment: datetime | None) -> str:
    return moment.strftime("%a %b %d %Y, %H:%M") if moment else "-"


def _print_changes(changes: list[DateChange]) -> None:
    if not changes:
        console.print("[dim]No activity moved.[/dim]")
        return
    table = Table(title="Rescheduled")
    table.add_column("ID")
    table.add_column("Old start")
    table.add_column("Old end")
    table.add_column("New start")
    table.add_column("New end")
    for c in changes:
        table.add_row(c.activity_id, _fmt(c.old_start), _fmt(c.old_end), _fmt(c.new_start), _fmt(c.new_end))
    console.print(table)


# ---------------------------------------------------------------------------
# Setup and calendars
# ---------------------------------------------------------------------------


@app.command()
def init(
    max_days: int = 365,
    default_task_days: int = 1,
    day_start: str = "08:00",
    day_end: str = "16:00",
    hours: Annotated[float, typer.Option(help="Nominal hours of a standard day")] = 7.0,
    calendar: Annotated[bool, typer.Option(help="Create a default Mon-Fri calendar if none exists")] = True,
) -> None:
    """Initialize (or reinitialize) the engine configuration."""
    store = _get_store()
    config = store.config
    config.max_days = max_days
    config.default_task_days = default_task_days
    config.default_start = _parse_time(day_start)
    config.default_end = _parse_time(day_end)
    config.default_hours = hours
    store.initialized = True

    created = None
    if calendar and not store.calendars:
        created = WorkCalendar(id=store.generate_id("CAL"), name="Default")
        for pattern in standard_week(config):
            created.set_weekday(pattern)
        store.put_calendar(created)
    store.save()
    console.print(f"[green]Configuration saved to {store.db_path}.[/green]")
    if created:
        console.print(f"[green]Default calendar created as {created.id}.[/green]")


@app.command("calendar-add")
def calendar_add(
    name: str,
    site: Annotated[Optional[str], typer.Option(help="Site this calendar applies to")] = None,
    year: Annotated[Optional[int], typer.Option(help="Reference year")] = None,
    empty: Annotated[bool, typer.Option("--empty", help="Start with no open day")] = False,
) -> None:
    """Create a calendar (standard Mon-Fri week unless --empty)."""
    store = _require_init(_get_store())
    cal = WorkCalendar(id=store.generate_id("CAL"), name=name, site_id=site, year=year)
    if not empty:
        for pattern in standard_week(store.config):
            cal.set_weekday(pattern)
    store.put_calendar(cal)
    store.save()
    console.print(f"[green]Added calendar '{name}' as {cal.id}[/green]")


@app.command("calendar-week")
def calendar_week(
    calendar_id: str,
    weekday: Annotated[int, typer.Argument(help="0 = Monday ... 6 = Sunday")],
    kind: Annotated[str, typer.Option(help="open or closed")] = "open",
    start: Optional[str] = None,
    end: Optional[str] = None,
    break_start: Optional[str] = None,
    break_end: Optional[str] = None,
    hours: Annotated[Optional[float], typer.Option(help="Nominal hours (default: window minus break)")] = None,
) -> None:
    """Set the default working time of one weekday."""
    store = _require_init(_get_store())
    cal = store.get_calendar(calendar_id)
    if cal is None:
        _fail(f"Calendar {calendar_id} not found.")
    try:
        cal.set_weekday(
            WeekdayPattern(
                weekday=weekday,
                kind=DayKind(kind),
                start=_parse_time(start),
                end=_parse_time(end),
                break_start=_parse_time(break_start),
                break_end=_parse_time(break_end),
                work_hours=hours,
            )
        )
    except ValueError as e:
        _fail(f"Error: {e}")
    store.save()
    console.print(f"[green]Updated {calendar_id} {WEEKDAYS[weekday]}.[/green]")


@app.command("calendar-override")
def calendar_override(
    calendar_id: str,
    day: Annotated[str, typer.Argument(help="Date (YYYY-MM-DD)")],
    kind: Annotated[str, typer.Option(help="open or closed")] = "closed",
    start: Optional[str] = None,
    end: Optional[str] = None,
    break_start: Optional[str] = None,
    break_end: Optional[str] = None,
    hours: Optional[float] = None,
    label: Optional[str] = None,
    remove: Annotated[bool, typer.Option("--remove", help="Delete the override of that date")] = False,
) -> None:
    """Add, replace or remove the exception of one date."""
    store = _require_init(_get_store())
    cal = store.get_calendar(calendar_id)
    if cal is None:
        _fail(f"Calendar {calendar_id} not found.")
    d = _parse_date(day)

    if remove:
        if cal.remove_override(d) is None:
            console.print(f"[yellow]{calendar_id} has no override on {d.isoformat()}, skipping.[/yellow]")
            return
        store.save()
        console.print(f"[green]Removed override of {d.isoformat()} from {calendar_id}.[/green]")
        return

    try:
        cal.set_override(
            DayOverride(
                date=d,
                kind=DayKind(kind),
                start=_parse_time(start),
                end=_parse_time(end),
                break_start=_parse_time(break_start),
                break_end=_parse_time(break_end),
                work_hours=hours,
                label=label,
            )
        )
    except ValueError as e:
        _fail(f"Error: {e}")
    store.save()
    console.print(f"[green]Set {d.isoformat()} as {kind} in {calendar_id}.[/green]")


@app.command("calendar-holidays")
def calendar_holidays(calendar_id: str, first_year: int, last_year: int) -> None:
    """Generate French public holidays for a range of years."""
    store = _require_init(_get_store())
    cal = store.get_calendar(calendar_id)
    if cal is None:
        _fail(f"Calendar {calendar_id} not found.")
    try:
        count = generate_holidays(cal, first_year, last_year)
    except ValueError as e:
        _fail(f"Error: {e}")
    store.save()
    console.print(f"[green]{count} holidays generated for {first_year}-{last_year}.[/green]")


@app.command("calendar-list")
def calendar_list() -> None:
    """List calendars and their weekly pattern."""
    store = _get_store()
    if not store.calendars:
        console.print("No calendars found.")
        return

    table = Table(title="Calendars")
    table.add_column("ID")
    table.add_column("Name")
    table.add_column("Site")
    table.add_column("Active")
    table.add_column("Week")
    table.add_column("Overrides")
    for cal in store.calendars.values():
        week = []
        for wd in range(7):
            p = cal.week.get(wd)
            if p is None or p.kind != DayKind.OPEN:
                continue
            week.append(f"{WEEKDAYS[wd]} {p.start:%H:%M}-{p.end:%H:%M}" if p.start and p.end else WEEKDAYS[wd])
        table.add_row(
            cal.id,
            cal.name,
            cal.site_id or "-",
            "yes" if cal.active else "no",
            ", ".join(week) or "-",
            str(len(cal.overrides)),
        )
    console.print(table)


# ---------------------------------------------------------------------------
# Calculations
# ---------------------------------------------------------------------------


@app.command()
def resolve(
    day: str,
    calendar: Annotated[Optional[str], typer.Option("--calendar", "-c")] = None,
) -> None:
    """Show the effective working time of a date."""
    store = _require_init(_get_store())
    engine = SchedulingEngine(store)
    try:
        schedule = engine.resolve_day(_calendar_id(store, calendar), _parse_date(day))
    except SchedulingError as e:
        _fail(f"Error: {e}")

    if not schedule.is_open:
        console.print(f"{schedule.date:%a %Y-%m-%d}: [bold]closed[/bold] ({schedule.source})")
    else:
        pause = ""
        if schedule.break_start and schedule.break_end:
            pause = f", break {schedule.break_start:%H:%M}-{schedule.break_end:%H:%M}"
        console.print(
            f"{schedule.date:%a %Y-%m-%d}: open {schedule.start:%H:%M}-{schedule.end:%H:%M}{pause}, "
            f"{schedule.nominal_hours:.2f}h ({schedule.source})"
        )
    if schedule.warning:
        console.print(f"[yellow]Warning: {schedule.warning}[/yellow]")


@app.command("end-by-days")
def end_by_days(
    start: str,
    days: int,
    calendar: Annotated[Optional[str], typer.Option("--calendar", "-c")] = None,
) -> None:
    """End date of a duration expressed in working days."""
    store = _require_init(_get_store())
    try:
        end = SchedulingEngine(store).compute_end_by_days(_parse_datetime(start), days, _calendar_id(store, calendar))
    except SchedulingError as e:
        _fail(f"Error: {e}")
    console.print(f"End: [bold]{end.isoformat(sep=' ', timespec='minutes')}[/bold]")


@app.command("end-by-hours")
def end_by_hours(
    start: str,
    hours: float,
    calendar: Annotated[Optional[str], typer.Option("--calendar", "-c")] = None,
) -> None:
    """End instant of a duration expressed in working hours."""
    store = _require_init(_get_store())
    try:
        end = SchedulingEngine(store).compute_end_by_hours(_parse_datetime(start), hours, _calendar_id(store, calendar))
    except SchedulingError as e:
        _fail(f"Error: {e}")
    console.print(f"End: [bold]{end.isoformat(sep=' ', timespec='minutes')}[/bold]")


@app.command()
def hours(
    start: str,
    end: str,
    calendar: Annotated[Optional[str], typer.Option("--calendar", "-c")] = None,
) -> None:
    """Nominal working hours available between two dates (inclusive)."""
    store = _require_init(_get_store())
    try:
        total = SchedulingEngine(store).working_hours_in_range(
            _parse_date(start), _parse_date(end), _calendar_id(store, calendar)
        )
    except SchedulingError as e:
        _fail(f"Error: {e}")
    console.print(f"Working hours: [bold]{total:.2f}[/bold]")


# ---------------------------------------------------------------------------
# Activities and dependencies
# ---------------------------------------------------------------------------


@app.command("activity-add")
def activity_add(
    project: str,
    label: str,
    start: Annotated[str, typer.Option(help="Planned start (YYYY-MM-DD[THH:MM])")],
    days: Annotated[Optional[int], typer.Option("--days", "-d", help="Work in working days")] = None,
    work_hours: Annotated[Optional[float], typer.Option("--hours", "-h", help="Work in working hours")] = None,
    end: Annotated[Optional[str], typer.Option(help="Planned end, when no work amount is given")] = None,
    parent: Annotated[Optional[str], typer.Option(help="Parent activity ID")] = None,
    lot: Optional[str] = None,
    site: Optional[str] = None,
    work_class: Annotated[str, typer.Option("--class", help="standard, night, weekend or holiday")] = "standard",
) -> None:
    """Add an activity; its end is computed from the work amount."""
    store = _require_init(_get_store())
    if days is not None and work_hours is not None:
        _fail("Give either --days or --hours, not both.")
    if days is None and work_hours is None and end is None:
        _fail("Give --days, --hours or --end.")
    if parent and parent not in store.activities:
        _fail(f"Parent activity {parent} not found.")
    try:
        wc = WorkTimeClass(work_class)
    except ValueError:
        _fail(f"Invalid class '{work_class}'. Use: {', '.join(c.value for c in WorkTimeClass)}")

    engine = SchedulingEngine(store)
    start_dt = _parse_datetime(start)
    try:
        calendar_id = store.calendar_for_site(site).id
        if days is not None:
            end_dt = engine.compute_end_by_days(start_dt, days, calendar_id)
        elif work_hours is not None:
            end_dt = engine.compute_end_by_hours(start_dt, work_hours, calendar_id)
        else:
            end_dt = _parse_datetime(end)
    except SchedulingError as e:
        _fail(f"Error: {e}")
    if end_dt < start_dt:
        _fail("End is before start.")

    activity = Activity(
        id=store.generate_id("A"),
        project_id=project,
        label=label,
        planned_start=start_dt,
        planned_end=end_dt,
        parent_id=parent,
        lot_id=lot,
        site_id=site,
        work_days=days,
        work_hours=work_hours,
        work_class=wc,
    )
    store.put_activity(activity)
    store.save()
    console.print(f"[green]Added '{label}' as {activity.id}: {_fmt(start_dt)} -> {_fmt(end_dt)}[/green]")


@app.command("activity-list")
def activity_list(
    project: Annotated[Optional[str], typer.Option("--project", "-p", help="Filter by project")] = None,
) -> None:
    """List activities in creation order."""
    store = _get_store()
    activities = sorted(store.activities.values(), key=lambda a: a.seq)
    if project:
        activities = [a for a in activities if a.project_id == project]
    if not activities:
        console.print("No activities found.")
        return

    preds: dict[str, list[str]] = {}
    for dep in store.dependencies.values():
        lag = f"{dep.lag_days:+d}d" if dep.lag_days else ""
        preds.setdefault(dep.activity_id, []).append(f"{dep.predecessor_id} {dep.type.value}{lag}")

    table = Table(title="Activities")
    table.add_column("ID")
    table.add_column("Project")
    table.add_column("Label")
    table.add_column("Parent")
    table.add_column("Work")
    table.add_column("Start")
    table.add_column("End")
    table.add_column("Status")
    table.add_column("Depends On")
    for a in activities:
        if a.work_days is not None:
            work = f"{a.work_days}d"
        elif a.work_hours is not None:
            work = f"{a.work_hours:.1f}h"
        else:
            work = "-"
        table.add_row(
            a.id,
            a.project_id,
            a.label,
            a.parent_id or "-",
            work,
            _fmt(a.planned_start),
            _fmt(a.planned_end),
            a.status.value,
            ", ".join(preds.get(a.id, [])) or "-",
            style="dim" if a.status.is_terminal else None,
        )
    console.print(table)


@app.command("activity-update")
def activity_update(
    activity_id: str,
    start: Annotated[Optional[str], typer.Option(help="New planned start")] = None,
    days: Annotated[Optional[int], typer.Option("--days", "-d")] = None,
    work_hours: Annotated[Optional[float], typer.Option("--hours", "-h")] = None,
    status: Annotated[Optional[str], typer.Option(help="planned, started, suspended, postponed, completed, cancelled")] = None,
    progress: Annotated[Optional[float], typer.Option(help="Progress percentage")] = None,
    label: Optional[str] = None,
) -> None:
    """Update an activity, recompute its end and propagate to dependents."""
    store = _require_init(_get_store())
    engine = SchedulingEngine(store)
    try:
        a = store.get_activity(activity_id)
        if label is not None:
            a.label = label
        if status is not None:
            try:
                a.status = ActivityStatus(status)
            except ValueError:
                _fail(f"Invalid status '{status}'. Use: {', '.join(s.value for s in ActivityStatus)}")
        if progress is not None:
            if not 0 <= progress <= 100:
                _fail("Progress must be between 0 and 100.")
            a.progress = progress
        if days is not None:
            a.work_days, a.work_hours = days, None
        if work_hours is not None:
            a.work_hours, a.work_days = work_hours, None

        reschedule = start is not None or days is not None or work_hours is not None
        if start is not None:
            a.planned_start = _parse_datetime(start)
        if reschedule:
            calendar_id = engine.calendar_for(a)
            if a.work_days is not None:
                a.planned_end = engine.compute_end_by_days(a.planned_start, a.work_days, calendar_id)
            elif a.work_hours is not None:
                a.planned_end = engine.compute_end_by_hours(a.planned_start, a.work_hours, calendar_id)
            # Saved together with the propagation, or not at all
            changes = engine.propagate_dependencies(a.project_id, activity_id)
        else:
            store.save()
        console.print(f"[green]Updated {activity_id}.[/green]")
        if reschedule:
            _print_changes(changes)
    except SchedulingError as e:
        _fail(f"Error: {e}")


@app.command("activity-delete")
def activity_delete(
    activity_id: str,
    cascade: Annotated[bool, typer.Option("--cascade", help="Also delete sub-activities and dependency rows")] = False,
) -> None:
    """Delete an activity."""
    store = _get_store()
    try:
        with store.transaction():
            deleted = store.delete_activity(activity_id, cascade=cascade)
    except SchedulingError as e:
        _fail(f"Error: {e}")
    console.print(f"[green]Deleted {', '.join(deleted)}.[/green]")


@app.command("dep-add")
def dep_add(
    activity_id: Annotated[str, typer.Argument(help="Dependent activity")],
    predecessor_id: Annotated[str, typer.Argument(help="Activity it depends on")],
    dep_type: Annotated[str, typer.Option("--type", "-t", help="FS, SS, FF or SF")] = "FS",
    lag: Annotated[int, typer.Option(help="Lag in calendar days (negative for a lead)")] = 0,
) -> None:
    """Add a dependency and propagate its effect."""
    store = _require_init(_get_store())
    try:
        dt = DependencyType(dep_type.upper())
    except ValueError:
        _fail(f"Invalid dependency type '{dep_type}'. Use: FS, SS, FF, SF")
    try:
        dep, changes = SchedulingEngine(store).add_dependency(activity_id, predecessor_id, dt, lag)
    except SchedulingError as e:
        _fail(f"Error: {e}")
    console.print(f"[green]Added {dep.id}: {activity_id} depends on {predecessor_id} ({dt.value}).[/green]")
    _print_changes(changes)


@app.command("dep-remove")
def dep_remove(
    activity_id: Annotated[Optional[str], typer.Argument(help="Dependent activity")] = None,
    predecessor_id: Annotated[Optional[str], typer.Argument(help="Activity it depends on")] = None,
    dep_id: Annotated[Optional[str], typer.Option("--id", help="Dependency ID")] = None,
) -> None:
    """Remove a dependency (by ID, or by activity pair)."""
    if dep_id is None and (activity_id is None or predecessor_id is None):
        _fail("Give --id or both ACTIVITY_ID and PREDECESSOR_ID.")
    store = _require_init(_get_store())
    try:
        removed, changes = SchedulingEngine(store).remove_dependency(dep_id, activity_id, predecessor_id)
    except SchedulingError as e:
        _fail(f"Error: {e}")
    console.print(f"[green]Removed {', '.join(d.id for d in removed)}.[/green]")
    _print_changes(changes)


@app.command()
def propagate(activity_id: str) -> None:
    """Recompute the dates of everything downstream of an activity."""
    store = _require_init(_get_store())
    try:
        activity = store.get_activity(activity_id)
        changes = SchedulingEngine(store).propagate_dependencies(activity.project_id, activity_id)
    except SchedulingError as e:
        _fail(f"Error: {e}")
    _print_changes(changes)


# ---------------------------------------------------------------------------
# Templates
# ---------------------------------------------------------------------------


@app.command("template-add")
def template_add(name: str, description: Optional[str] = None) -> None:
    """Create an empty template."""
    store = _get_store()
    template = Template(id=store.generate_id("TPL"), name=name, description=description)
    store.put_template(template)
    store.save()
    console.print(f"[green]Added template '{name}' as {template.id}[/green]")


@app.command("template-task")
def template_task(
    template_id: str,
    label: str,
    days: Annotated[Optional[int], typer.Option("--days", "-d", help="Duration in working days")] = None,
    hours: Annotated[Optional[float], typer.Option("--hours", "-h", help="Duration in working hours")] = None,
    parent: Annotated[Optional[str], typer.Option(help="Parent task ID")] = None,
    predecessor: Annotated[Optional[str], typer.Option(help="Predecessor task ID (same template)")] = None,
    dep_type: Annotated[str, typer.Option("--type", "-t", help="FS, SS, FF or SF")] = "FS",
    order: Annotated[Optional[int], typer.Option(help="Display order (default: last)")] = None,
) -> None:
    """Add a task to a template."""
    store = _get_store()
    try:
        template = store.get_template(template_id)
    except SchedulingError as e:
        _fail(f"Error: {e}")
    if days is not None and hours is not None:
        _fail("Give either --days or --hours, not both.")
    tasks = {t.id: t for t in template.tasks}
    if parent and parent not in tasks:
        _fail(f"Parent task {parent} not found in {template_id}.")
    try:
        dt = DependencyType(dep_type.upper())
    except ValueError:
        _fail(f"Invalid dependency type '{dep_type}'. Use: FS, SS, FF, SF")

    siblings = [t for t in template.tasks if t.parent_id == parent]
    task = TemplateTask(
        id=store.generate_id("TT"),
        label=label,
        duration_days=days,
        hours=hours,
        predecessor_id=predecessor,
        dependency_type=dt,
        level=tasks[parent].level + 1 if parent else 0,
        order=order if order is not None else max((t.order for t in siblings), default=-1) + 1,
        parent_id=parent,
    )
    template.tasks.append(task)
    store.save()
    console.print(f"[green]Added task '{label}' as {task.id} to {template_id}[/green]")


@app.command("template-list")
def template_list() -> None:
    """Show templates as trees."""
    store = _get_store()
    if not store.templates:
        console.print("No templates found.")
        return

    for template in store.templates.values():
        console.print(f"\n[bold]{template.id}[/bold]  {template.name}")
        if template.description:
            console.print(f"  [dim]{template.description}[/dim]")
        by_parent: dict[str | None, list[TemplateTask]] = {}
        for t in template.tasks:
            by_parent.setdefault(t.parent_id, []).append(t)

        def show(parent_id: str | None, depth: int) -> None:
            for t in sorted(by_parent.get(parent_id, []), key=lambda t: t.order):
                if t.duration_days is not None:
                    days = f"{t.duration_days}d"
                elif t.hours:
                    days = f"{t.hours:g}h"
                else:
                    days = "default"
                pred = f"  after {t.predecessor_id} ({t.dependency_type.value})" if t.predecessor_id else ""
                console.print(f"  {'  ' * depth}{t.id}  {t.label}  ({days}){pred}")
                show(t.id, depth + 1)

        show(None, 0)
    console.print()


@app.command()
def instantiate(
    template_id: str,
    project: str,
    start: Annotated[str, typer.Option(help="Reference start (YYYY-MM-DD[THH:MM])")],
    site: Optional[str] = None,
) -> None:
    """Create a project's activity tree from a template."""
    store = _require_init(_get_store())
    try:
        ids = SchedulingEngine(store).instantiate_template(template_id, project, _parse_datetime(start), site)
    except SchedulingError as e:
        _fail(f"Error: {e}")
    console.print(f"[green]Created {len(ids)} activities: {', '.join(ids)}[/green]")


if __name__ == "__main__":
    app()
