"""Forward propagation of dependency constraints over the activity DAG."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Iterable

import networkx as nx

from planif.calendar import CalendarResolver
from planif.durations import add_working_days, add_working_hours, next_working_instant
from planif.errors import CyclicDependency, InvalidDependency, NotFound
from planif.models import Activity, Dependency, DependencyType

logger = logging.getLogger(__name__)


@dataclass
class DateChange:
    """New planned dates of one activity, as produced by a propagation run."""

    activity_id: str
    old_start: datetime
    old_end: datetime
    new_start: datetime
    new_end: datetime

    def to_dict(self) -> dict:
        return {
            "activity_id": self.activity_id,
            "old_start": self.old_start.isoformat(),
            "old_end": self.old_end.isoformat(),
            "new_start": self.new_start.isoformat(),
            "new_end": self.new_end.isoformat(),
        }


def build_graph(activities: dict[str, Activity], dependencies: Iterable[Dependency]) -> nx.DiGraph:
    """Construct the DAG, edges oriented predecessor -> dependent.

    Several dependency rows between the same pair are kept on the edge's
    ``deps`` attribute.
    """
    G = nx.DiGraph()
    for aid, activity in activities.items():
        G.add_node(aid, activity=activity)
    for dep in dependencies:
        if dep.activity_id == dep.predecessor_id:
            raise InvalidDependency(f"Dependency {dep.id}: activity {dep.activity_id} cannot depend on itself")
        for end in (dep.predecessor_id, dep.activity_id):
            if end not in activities:
                raise NotFound("activity", end)
        if G.has_edge(dep.predecessor_id, dep.activity_id):
            G.edges[dep.predecessor_id, dep.activity_id]["deps"].append(dep)
        else:
            G.add_edge(dep.predecessor_id, dep.activity_id, deps=[dep])
    return G


def check_acyclic(G: nx.DiGraph) -> None:
    """Depth-first cycle search; raises CyclicDependency on the first back-edge."""
    try:
        cycle = nx.find_cycle(G)
    except nx.NetworkXNoCycle:
        return
    edges = [(u, v) for u, v, *_ in cycle]
    raise CyclicDependency(edges[-1], edges)


def affected_order(G: nx.DiGraph, seeds: Iterable[str], seq: dict[str, int]) -> list[str]:
    """Seeds plus everything reachable from them, topologically sorted.

    Ties are broken by creation order so the result is reproducible.
    """
    scope: set[str] = set()
    for seed in seeds:
        if seed not in G:
            raise NotFound("activity", seed)
        scope.add(seed)
        scope |= nx.descendants(G, seed)
    sub = G.subgraph(scope)
    return list(nx.lexicographical_topological_sort(sub, key=lambda n: (seq.get(n, 0), n)))


def constraint_bound(dep: Dependency, pred_start: datetime, pred_end: datetime) -> datetime:
    """Earliest date the dependent's anchored side may take under *dep*."""
    if dep.type in (DependencyType.FINISH_TO_START, DependencyType.FINISH_TO_FINISH):
        return pred_end + dep.lag
    return pred_start + dep.lag


def _reschedule(
    activity: Activity,
    bound: datetime,
    start: datetime,
    end: datetime,
    calendar_id: str,
    resolver: CalendarResolver,
) -> tuple[datetime, datetime]:
    """Move *activity* to start no earlier than *bound*, keeping its work amount."""
    if activity.work_hours:
        new_start = next_working_instant(bound, calendar_id, resolver)
        return new_start, add_working_hours(new_start, activity.work_hours, calendar_id, resolver)
    if activity.work_days is not None:
        return bound, add_working_days(bound, activity.work_days, calendar_id, resolver)
    # No work amount: keep the planned span as is.
    return bound, end + (bound - start)


def propagate(
    activities: dict[str, Activity],
    dependencies: Iterable[Dependency],
    seeds: Iterable[str],
    resolver: CalendarResolver,
    calendar_for: Callable[[Activity], str],
) -> list[DateChange]:
    """Recompute planned dates downstream of *seeds*.

    Returns the changes in topological order. Inputs are not mutated and
    nothing is returned unless the whole run succeeds.
    """
    G = build_graph(activities, dependencies)
    check_acyclic(G)
    seq = {aid: a.seq for aid, a in activities.items()}
    order = affected_order(G, seeds, seq)
    logger.debug("Propagation order: %s", order)

    current = {aid: (a.planned_start, a.planned_end) for aid, a in activities.items()}
    changes: list[DateChange] = []

    for aid in order:
        activity = activities[aid]
        if activity.status.is_terminal:
            continue

        start_bound: datetime | None = None
        end_bound: datetime | None = None
        for pred in G.predecessors(aid):
            pred_start, pred_end = current[pred]
            for dep in G.edges[pred, aid]["deps"]:
                bound = constraint_bound(dep, pred_start, pred_end)
                if dep.type.anchors_start:
                    start_bound = bound if start_bound is None else max(start_bound, bound)
                else:
                    end_bound = bound if end_bound is None else max(end_bound, bound)

        old_start, old_end = current[aid]
        start, end = old_start, old_end
        if start_bound is not None and start_bound > start:
            start, end = _reschedule(activity, start_bound, start, end, calendar_for(activity), resolver)
        # Finish-anchored bounds only move the end; the start follows on a
        # later forward pass.
        if end_bound is not None and end_bound > end:
            end = end_bound

        if (start, end) != (old_start, old_end):
            current[aid] = (start, end)
            changes.append(DateChange(aid, old_start, old_end, start, end))

    return changes
