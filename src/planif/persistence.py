"""JSON file persistence for calendars, activities, dependencies and templates."""

from __future__ import annotations

import json
import logging
from contextlib import contextmanager
from datetime import date
from pathlib import Path
from typing import Iterator

from planif.errors import InvalidDependency, NotFound
from planif.models import (
    Activity,
    Dependency,
    DependencyType,
    DayOverride,
    EngineConfig,
    Template,
    WorkCalendar,
)

logger = logging.getLogger(__name__)

DEFAULT_DB_FILE = "planif_data.json"

ID_PREFIXES = ("CAL", "A", "D", "TPL", "TT")


class Store:
    """Reads and writes the scheduling database (JSON file).

    The whole file is held in memory after ``load()``; ``transaction()``
    gives all-or-nothing semantics to a block of writes.
    """

    def __init__(self, db_path: str | Path = DEFAULT_DB_FILE):
        self.db_path = Path(db_path)
        self.initialized = False
        self.config = EngineConfig()
        self.calendars: dict[str, WorkCalendar] = {}
        self.activities: dict[str, Activity] = {}
        self.dependencies: dict[str, Dependency] = {}
        self.templates: dict[str, Template] = {}
        self.sequences: dict[str, int] = {}

    # ------------------------------------------------------------------
    # File I/O
    # ------------------------------------------------------------------

    def load(self) -> Store:
        if self.db_path.exists():
            self._restore(json.loads(self.db_path.read_text(encoding="utf-8")))
        return self

    def save(self) -> None:
        self.db_path.write_text(json.dumps(self._dump(), indent=4, ensure_ascii=False), encoding="utf-8")

    def _dump(self) -> dict:
        raw: dict = {}
        if self.initialized:
            raw["config"] = self.config.to_dict()
        raw["sequences"] = dict(self.sequences)
        raw["calendars"] = {cid: c.to_dict() for cid, c in self.calendars.items()}
        raw["activities"] = {aid: a.to_dict() for aid, a in self.activities.items()}
        raw["dependencies"] = {did: d.to_dict() for did, d in self.dependencies.items()}
        raw["templates"] = {tid: t.to_dict() for tid, t in self.templates.items()}
        return raw

    def _restore(self, raw: dict) -> None:
        self.initialized = "config" in raw
        self.config = EngineConfig.from_dict(raw.get("config", {}))
        self.calendars = {cid: WorkCalendar.from_dict(cid, d) for cid, d in raw.get("calendars", {}).items()}
        self.activities = {aid: Activity.from_dict(aid, d) for aid, d in raw.get("activities", {}).items()}
        self.dependencies = {
            did: Dependency.from_dict(did, d) for did, d in raw.get("dependencies", {}).items()
        }
        self.templates = {tid: Template.from_dict(tid, d) for tid, d in raw.get("templates", {}).items()}
        self.sequences = dict(raw.get("sequences", {}))

    @contextmanager
    def transaction(self) -> Iterator[Store]:
        """Save on success; on error restore the in-memory state and re-raise."""
        snapshot = self._dump()
        try:
            yield self
        except Exception:
            self._restore(snapshot)
            logger.debug("Transaction rolled back")
            raise
        self.save()

    def generate_id(self, prefix: str) -> str:
        """Next ``PREFIX-N`` id; never reuses a number, even after deletes."""
        if prefix not in ID_PREFIXES:
            raise ValueError(f"Unknown id prefix {prefix!r}")
        if prefix not in self.sequences:
            self.sequences[prefix] = max(
                (int(k.split("-")[1]) for k in self._ids(prefix) if k.startswith(f"{prefix}-")),
                default=0,
            )
        self.sequences[prefix] += 1
        return f"{prefix}-{self.sequences[prefix]}"

    def _ids(self, prefix: str) -> list[str]:
        if prefix == "CAL":
            return list(self.calendars)
        if prefix == "A":
            return list(self.activities)
        if prefix == "D":
            return list(self.dependencies)
        if prefix == "TPL":
            return list(self.templates)
        return [task.id for t in self.templates.values() for task in t.tasks]

    # ------------------------------------------------------------------
    # Calendars
    # ------------------------------------------------------------------

    def get_calendar(self, calendar_id: str) -> WorkCalendar | None:
        return self.calendars.get(calendar_id)

    def get_override(self, calendar_id: str, day: date) -> DayOverride | None:
        calendar = self.calendars.get(calendar_id)
        return calendar.overrides.get(day) if calendar else None

    def put_calendar(self, calendar: WorkCalendar) -> None:
        self.calendars[calendar.id] = calendar

    def calendar_for_site(self, site_id: str | None) -> WorkCalendar:
        """Active calendar of the site, else the active unscoped default."""
        active = [c for c in self.calendars.values() if c.active]
        if site_id is not None:
            for calendar in active:
                if calendar.site_id == site_id:
                    return calendar
        for calendar in active:
            if calendar.site_id is None:
                return calendar
        raise NotFound("calendar for site", site_id or "(unscoped)")

    # ------------------------------------------------------------------
    # Activities and dependencies
    # ------------------------------------------------------------------

    def get_activity(self, activity_id: str) -> Activity:
        if activity_id not in self.activities:
            raise NotFound("activity", activity_id)
        return self.activities[activity_id]

    def put_activity(self, activity: Activity) -> None:
        """Insert or replace; new activities get the next creation sequence."""
        if activity.id not in self.activities:
            activity.seq = max((a.seq for a in self.activities.values()), default=0) + 1
        self.activities[activity.id] = activity

    def get_activity_graph(self, project_id: str) -> tuple[dict[str, Activity], list[Dependency]]:
        """Activities of the project plus every activity reachable forward
        from them through dependency rows, whatever its project.

        Returns those activities, the dependency rows leading into them, and
        the outside predecessors of those rows (constraints only).
        """
        members = {aid for aid, a in self.activities.items() if a.project_id == project_id}
        grown = True
        while grown:
            grown = False
            for dep in self.dependencies.values():
                if dep.predecessor_id in members and dep.activity_id not in members:
                    members.add(dep.activity_id)
                    grown = True

        deps = [d for d in self.dependencies.values() if d.activity_id in members]
        activities = {aid: self.get_activity(aid) for aid in members}
        for dep in deps:
            if dep.predecessor_id not in activities:
                activities[dep.predecessor_id] = self.get_activity(dep.predecessor_id)
        return activities, deps

    def add_dependency(
        self,
        activity_id: str,
        predecessor_id: str,
        dep_type: DependencyType = DependencyType.FINISH_TO_START,
        lag_days: int = 0,
    ) -> Dependency:
        self.get_activity(activity_id)
        self.get_activity(predecessor_id)
        if activity_id == predecessor_id:
            raise InvalidDependency(f"Activity {activity_id} cannot depend on itself")
        for dep in self.dependencies.values():
            if (dep.activity_id, dep.predecessor_id, dep.type) == (activity_id, predecessor_id, dep_type):
                raise InvalidDependency(
                    f"{activity_id} already depends on {predecessor_id} ({dep_type.value}) as {dep.id}"
                )
        dep = Dependency(
            id=self.generate_id("D"),
            activity_id=activity_id,
            predecessor_id=predecessor_id,
            type=dep_type,
            lag_days=lag_days,
        )
        self.dependencies[dep.id] = dep
        return dep

    def remove_dependency(
        self,
        dep_id: str | None = None,
        activity_id: str | None = None,
        predecessor_id: str | None = None,
    ) -> list[Dependency]:
        """Remove by id, or every row between *predecessor_id* and *activity_id*."""
        if dep_id is not None:
            matches = [d for d in self.dependencies.values() if d.id == dep_id]
        else:
            matches = [
                d
                for d in self.dependencies.values()
                if d.activity_id == activity_id and d.predecessor_id == predecessor_id
            ]
        if not matches:
            raise NotFound("dependency", dep_id or f"{predecessor_id} -> {activity_id}")
        for dep in matches:
            del self.dependencies[dep.id]
        return matches

    def delete_activity(self, activity_id: str, cascade: bool = False) -> list[str]:
        """Delete an activity.

        An activity with sub-activities or dependency rows is only deleted with
        *cascade*, which also removes the whole subtree and every dependency
        row touching it. Returns the deleted activity ids.
        """
        self.get_activity(activity_id)
        subtree = [activity_id]
        i = 0
        while i < len(subtree):
            subtree.extend(a.id for a in self.activities.values() if a.parent_id == subtree[i])
            i += 1
        doomed = set(subtree)
        linked = [
            d.id
            for d in self.dependencies.values()
            if d.activity_id in doomed or d.predecessor_id in doomed
        ]
        if not cascade and (len(subtree) > 1 or linked):
            raise InvalidDependency(
                f"Activity {activity_id} has sub-activities or dependencies "
                f"({', '.join(subtree[1:] + linked)}); delete with cascade"
            )
        for dep_id in linked:
            del self.dependencies[dep_id]
        for aid in subtree:
            del self.activities[aid]
        return subtree

    # ------------------------------------------------------------------
    # Templates
    # ------------------------------------------------------------------

    def get_template(self, template_id: str) -> Template:
        if template_id not in self.templates:
            raise NotFound("template", template_id)
        return self.templates[template_id]

    def put_template(self, template: Template) -> None:
        self.templates[template.id] = template
