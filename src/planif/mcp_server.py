"""MCP server for planif: exposes the scheduling engine to AI assistants."""

from __future__ import annotations

import json
import os
from datetime import date, datetime

from mcp.server.fastmcp import FastMCP

from planif.engine import SchedulingEngine
from planif.errors import SchedulingError
from planif.models import Activity, DependencyType
from planif.persistence import DEFAULT_DB_FILE, Store

mcp = FastMCP(
    "planif",
    instructions="""\
planif is a calendar-aware activity scheduler. Each calendar has a weekly \
pattern (open/closed weekdays, opening hours, a lunch break) and per-date \
overrides such as public holidays. Durations are counted in working days or \
working hours against a calendar, never in wall-clock time.

Key concepts:
- **Calendar IDs** look like "CAL-1"; activity IDs "A-3"; dependency IDs "D-2"; \
template IDs "TPL-1".
- **Working days**: counted from the day after the start; the end is the \
closing time of the last counted day.
- **Working hours**: consumed inside the opening window, skipping the break \
and closed days.
- **Dependencies**: FS (finish-to-start), SS, FF, SF, with an optional lag in \
calendar days (negative for a lead). Cycles are refused.
- **Propagation** pushes successors later when a predecessor moves; it never \
pulls them earlier. Completed and cancelled activities are not moved.

Typical workflow:
1. resolve_day to inspect a calendar
2. compute_end_by_days / compute_end_by_hours for what-if calculations
3. instantiate_template to create a project's activity tree
4. add_dependency, then propagate_dependencies after a date changes
5. list_activities to review the result

Dates are ISO 8601 ("2026-03-02" or "2026-03-02T09:00").\
""",
)


def _get_store() -> Store:
    return Store(os.environ.get("PLANIF_DB", DEFAULT_DB_FILE)).load()


def _require_engine() -> SchedulingEngine:
    store = _get_store()
    if not store.initialized:
        raise SchedulingError("Engine not initialized. Run 'planif init' first.")
    return SchedulingEngine(store)


def _activity_to_dict(a: Activity) -> dict:
    d = a.to_dict()
    d["id"] = a.id
    return d


# ---------------------------------------------------------------------------
# Calculations
# ---------------------------------------------------------------------------


@mcp.tool()
def resolve_day(calendar_id: str, day: str) -> str:
    """Get the effective working time of one date.

    Args:
        calendar_id: Calendar ID (e.g. "CAL-1")
        day: Date in YYYY-MM-DD format
    """
    try:
        schedule = _require_engine().resolve_day(calendar_id, date.fromisoformat(day))
    except ValueError as e:
        return f"Error: {e}"
    return json.dumps(schedule.to_dict(), indent=2)


@mcp.tool()
def compute_end_by_days(start: str, day_count: int, calendar_id: str) -> str:
    """End date of a duration expressed in working days.

    Args:
        start: Start date or datetime (ISO 8601)
        day_count: Number of working days (0 returns the start unchanged)
        calendar_id: Calendar ID (e.g. "CAL-1")
    """
    try:
        end = _require_engine().compute_end_by_days(datetime.fromisoformat(start), day_count, calendar_id)
    except ValueError as e:
        return f"Error: {e}"
    return json.dumps({"end": end.isoformat()})


@mcp.tool()
def compute_end_by_hours(start: str, hours: float, calendar_id: str) -> str:
    """End instant of a duration expressed in working hours.

    Args:
        start: Start datetime (ISO 8601); must fall on a working day before closing
        hours: Working hours to consume (> 0)
        calendar_id: Calendar ID (e.g. "CAL-1")
    """
    try:
        end = _require_engine().compute_end_by_hours(datetime.fromisoformat(start), hours, calendar_id)
    except ValueError as e:
        return f"Error: {e}"
    return json.dumps({"end": end.isoformat()})


@mcp.tool()
def working_hours_in_range(start: str, end: str, calendar_id: str) -> str:
    """Total nominal working hours of every date from start to end, inclusive.

    Args:
        start: First date (YYYY-MM-DD)
        end: Last date (YYYY-MM-DD)
        calendar_id: Calendar ID (e.g. "CAL-1")
    """
    try:
        total = _require_engine().working_hours_in_range(
            date.fromisoformat(start), date.fromisoformat(end), calendar_id
        )
    except ValueError as e:
        return f"Error: {e}"
    return json.dumps({"hours": total})


# ---------------------------------------------------------------------------
# Activities
# ---------------------------------------------------------------------------


@mcp.tool()
def list_activities(project_id: str | None = None) -> str:
    """List activities in creation order.

    Args:
        project_id: Only list activities of this project
    """
    store = _get_store()
    activities = sorted(store.activities.values(), key=lambda a: a.seq)
    if project_id:
        activities = [a for a in activities if a.project_id == project_id]
    if not activities:
        return "No activities found."
    return json.dumps([_activity_to_dict(a) for a in activities], indent=2)


@mcp.tool()
def add_dependency(activity_id: str, predecessor_id: str, dep_type: str = "FS", lag_days: int = 0) -> str:
    """Make an activity depend on another, then propagate dates.

    Args:
        activity_id: Dependent activity (e.g. "A-4")
        predecessor_id: Activity it depends on (e.g. "A-2")
        dep_type: FS, SS, FF or SF
        lag_days: Lag in calendar days; negative for a lead
    """
    try:
        dt = DependencyType(dep_type.upper())
    except ValueError:
        return f"Error: invalid dependency type '{dep_type}'. Use: FS, SS, FF, SF"
    try:
        dep, changes = _require_engine().add_dependency(activity_id, predecessor_id, dt, lag_days)
    except SchedulingError as e:
        return f"Error: {e}"
    return json.dumps({"dependency_id": dep.id, "changes": [c.to_dict() for c in changes]}, indent=2)


@mcp.tool()
def propagate_dependencies(project_id: str, activity_id: str) -> str:
    """Recompute the dates of everything downstream of an activity.

    Args:
        project_id: Project the activity belongs to
        activity_id: The activity whose dates changed
    """
    try:
        changes = _require_engine().propagate_dependencies(project_id, activity_id)
    except SchedulingError as e:
        return f"Error: {e}"
    return json.dumps([c.to_dict() for c in changes], indent=2)


@mcp.tool()
def instantiate_template(template_id: str, project_id: str, reference_start: str, site_id: str | None = None) -> str:
    """Create a project's activity tree from a template.

    Args:
        template_id: Template ID (e.g. "TPL-1")
        project_id: Target project
        reference_start: Start of the root tasks (ISO 8601)
        site_id: Site whose calendar applies (default: the unscoped calendar)
    """
    try:
        ids = _require_engine().instantiate_template(
            template_id, project_id, datetime.fromisoformat(reference_start), site_id
        )
    except ValueError as e:
        return f"Error: {e}"
    return json.dumps({"activity_ids": ids})


def main():
    """Entry point for the MCP server."""
    mcp.run(transport="stdio")


if __name__ == "__main__":
    main()
