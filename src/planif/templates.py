"""Materialisation of hierarchical task templates into activity trees."""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable

from planif.calendar import CalendarResolver
from planif.durations import add_working_days, add_working_hours, next_working_instant
from planif.errors import TemplateIntegrity
from planif.models import Activity, Dependency, DependencyType, Template, TemplateTask
from planif.propagation import propagate

logger = logging.getLogger(__name__)


@dataclass
class Instantiation:
    """Activities and dependency rows produced from one template."""

    activities: list[Activity] = field(default_factory=list)
    dependencies: list[Dependency] = field(default_factory=list)

    @property
    def activity_ids(self) -> list[str]:
        return [a.id for a in self.activities]


def validate_template(template: Template) -> dict[str, TemplateTask]:
    """Check ids, parents, levels and self references. Returns tasks by id."""
    by_id: dict[str, TemplateTask] = {}
    for task in template.tasks:
        if task.id in by_id:
            raise TemplateIntegrity(f"Template {template.id}: duplicate task id {task.id}")
        by_id[task.id] = task

    for task in template.tasks:
        if task.parent_id is None:
            if task.level != 0:
                raise TemplateIntegrity(
                    f"Template {template.id}: root task {task.id} has level {task.level}, expected 0"
                )
        else:
            parent = by_id.get(task.parent_id)
            if parent is None:
                raise TemplateIntegrity(
                    f"Template {template.id}: task {task.id} has unknown parent {task.parent_id}"
                )
            # Levels strictly increase along a parent chain, so this also
            # rules out parent cycles.
            if task.level != parent.level + 1:
                raise TemplateIntegrity(
                    f"Template {template.id}: task {task.id} has level {task.level}, "
                    f"expected {parent.level + 1} under {parent.id}"
                )
        if task.predecessor_id == task.id:
            raise TemplateIntegrity(f"Template {template.id}: task {task.id} precedes itself")
    return by_id


def instantiate(
    template: Template,
    project_id: str,
    reference_start: datetime,
    calendar_id: str,
    resolver: CalendarResolver,
    new_id: Callable[[str], str],
    site_id: str | None = None,
) -> Instantiation:
    """Build the activity tree of *template* anchored at *reference_start*.

    Roots start at the reference date, children at their parent's end. Each
    child is linked to its parent by a finish-to-start dependency unless the
    template names an explicit predecessor. Predecessors not materialised yet
    are linked in a second pass. Dates are then propagated through the new
    dependencies. Nothing is persisted here: *new_id* only hands out ids.
    """
    validate_template(template)

    roots: list[TemplateTask] = []
    children: dict[str, list[TemplateTask]] = defaultdict(list)
    for task in template.tasks:
        if task.parent_id is None:
            roots.append(task)
        else:
            children[task.parent_id].append(task)

    result = Instantiation()
    created: dict[str, Activity] = {}
    deferred: list[TemplateTask] = []

    def link(task: TemplateTask, predecessor: Activity, dep_type: DependencyType) -> None:
        result.dependencies.append(
            Dependency(
                id=new_id("D"),
                activity_id=created[task.id].id,
                predecessor_id=predecessor.id,
                type=dep_type,
            )
        )

    def materialise(task: TemplateTask, anchor: datetime, parent: Activity | None) -> None:
        days = hours = None
        if task.duration_days is None and task.hours:
            hours = task.hours
            start = next_working_instant(anchor, calendar_id, resolver)
            end = add_working_hours(start, hours, calendar_id, resolver)
        else:
            days = task.duration_days if task.duration_days is not None else resolver.config.default_task_days
            start = anchor
            end = add_working_days(anchor, days, calendar_id, resolver)
        activity = Activity(
            id=new_id("A"),
            project_id=project_id,
            label=task.label,
            planned_start=start,
            planned_end=end,
            parent_id=parent.id if parent else None,
            site_id=site_id,
            work_days=days,
            work_hours=hours,
            work_class=task.work_class,
            seq=len(result.activities),
            template_task_id=task.id,
        )
        result.activities.append(activity)
        created[task.id] = activity

        if task.predecessor_id is None:
            if parent is not None:
                link(task, parent, DependencyType.FINISH_TO_START)
        elif task.predecessor_id in created:
            link(task, created[task.predecessor_id], task.dependency_type)
        else:
            deferred.append(task)

        for child in sorted(children[task.id], key=lambda t: t.order):
            materialise(child, end, activity)

    for root in sorted(roots, key=lambda t: t.order):
        materialise(root, reference_start, None)

    for task in deferred:
        predecessor = created.get(task.predecessor_id)
        if predecessor is None:
            raise TemplateIntegrity(
                f"Template {template.id}: task {task.id} references unknown predecessor {task.predecessor_id}"
            )
        link(task, predecessor, task.dependency_type)

    by_id = {a.id: a for a in result.activities}
    changes = propagate(by_id, result.dependencies, list(by_id), resolver, lambda _a: calendar_id)
    for change in changes:
        by_id[change.activity_id].planned_start = change.new_start
        by_id[change.activity_id].planned_end = change.new_end

    logger.debug(
        "Template %s: %d activities, %d dependencies, %d deferred links",
        template.id,
        len(result.activities),
        len(result.dependencies),
        len(deferred),
    )
    return result
