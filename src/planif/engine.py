"""Entry points of the scheduler over a loaded ``Store``.

Each call builds a fresh ``CalendarResolver`` on the store's current state,
computes everything in memory, and only then writes, inside a store
transaction, so a failing call leaves the data untouched.
"""

from __future__ import annotations

import logging
from datetime import date, datetime

from planif.calendar import CalendarResolver
from planif.durations import add_working_days, add_working_hours, working_hours_between
from planif.models import Activity, DaySchedule, Dependency, DependencyType
from planif.persistence import Store
from planif.propagation import DateChange, build_graph, check_acyclic, propagate
from planif.templates import instantiate

logger = logging.getLogger(__name__)


class SchedulingEngine:
    def __init__(self, store: Store):
        self.store = store

    def resolver(self) -> CalendarResolver:
        return CalendarResolver(self.store, self.store.config)

    def calendar_for(self, activity: Activity) -> str:
        return self.store.calendar_for_site(activity.site_id).id

    # ------------------------------------------------------------------
    # Calendar and durations
    # ------------------------------------------------------------------

    def resolve_day(self, calendar_id: str, day: date | datetime) -> DaySchedule:
        return self.resolver().resolve(calendar_id, day)

    def compute_end_by_days(self, start: datetime, day_count: int, calendar_id: str) -> datetime:
        return add_working_days(start, day_count, calendar_id, self.resolver())

    def compute_end_by_hours(self, start: datetime, hours: float, calendar_id: str) -> datetime:
        return add_working_hours(start, hours, calendar_id, self.resolver())

    def working_hours_in_range(self, start: date | datetime, end: date | datetime, calendar_id: str) -> float:
        return working_hours_between(start, end, calendar_id, self.resolver())

    # ------------------------------------------------------------------
    # Dependencies
    # ------------------------------------------------------------------

    def propagate_dependencies(self, project_id: str, activity_id: str) -> list[DateChange]:
        """Recompute everything downstream of *activity_id* and persist it.

        Changes are written one activity at a time in topological order.
        """
        with self.store.transaction():
            return self._propagate(project_id, activity_id)

    def _propagate(self, project_id: str, activity_id: str) -> list[DateChange]:
        self.store.get_activity(activity_id)
        activities, deps = self.store.get_activity_graph(project_id)
        changes = propagate(activities, deps, [activity_id], self.resolver(), self.calendar_for)
        for change in changes:
            activity = self.store.get_activity(change.activity_id)
            activity.planned_start = change.new_start
            activity.planned_end = change.new_end
            logger.debug(
                "%s: %s..%s -> %s..%s",
                change.activity_id,
                change.old_start,
                change.old_end,
                change.new_start,
                change.new_end,
            )
        logger.info("Propagation from %s: %d activities moved", activity_id, len(changes))
        return changes

    def add_dependency(
        self,
        activity_id: str,
        predecessor_id: str,
        dep_type: DependencyType = DependencyType.FINISH_TO_START,
        lag_days: int = 0,
    ) -> tuple[Dependency, list[DateChange]]:
        """Create a dependency, refusing cycles, then propagate from the dependent."""
        with self.store.transaction():
            dep = self.store.add_dependency(activity_id, predecessor_id, dep_type, lag_days)
            check_acyclic(build_graph(self.store.activities, self.store.dependencies.values()))
            project_id = self.store.get_activity(activity_id).project_id
            return dep, self._propagate(project_id, activity_id)

    def remove_dependency(
        self,
        dep_id: str | None = None,
        activity_id: str | None = None,
        predecessor_id: str | None = None,
    ) -> tuple[list[Dependency], list[DateChange]]:
        with self.store.transaction():
            removed = self.store.remove_dependency(dep_id, activity_id, predecessor_id)
            changes: list[DateChange] = []
            for dependent in dict.fromkeys(d.activity_id for d in removed):
                project_id = self.store.get_activity(dependent).project_id
                changes.extend(self._propagate(project_id, dependent))
            return removed, changes

    # ------------------------------------------------------------------
    # Templates
    # ------------------------------------------------------------------

    def instantiate_template(
        self,
        template_id: str,
        project_id: str,
        reference_start: datetime,
        site_id: str | None = None,
    ) -> list[str]:
        """Create the template's activity tree in *project_id*; returns the new ids."""
        template = self.store.get_template(template_id)
        calendar_id = self.store.calendar_for_site(site_id).id
        with self.store.transaction():
            result = instantiate(
                template,
                project_id,
                reference_start,
                calendar_id,
                self.resolver(),
                self.store.generate_id,
                site_id=site_id,
            )
            for activity in result.activities:
                self.store.put_activity(activity)
            for dep in result.dependencies:
                self.store.dependencies[dep.id] = dep
        logger.info(
            "Template %s instantiated in %s: %d activities",
            template_id,
            project_id,
            len(result.activities),
        )
        return result.activity_ids
