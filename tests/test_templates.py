import itertools
from datetime import datetime

import pytest

from planif.calendar import CalendarResolver, standard_week
from planif.engine import SchedulingEngine
from planif.errors import NotFound, TemplateIntegrity
from planif.models import DependencyType, Template, TemplateTask, WorkCalendar
from planif.persistence import Store
from planif.templates import instantiate, validate_template

MON_8 = datetime(2026, 3, 2, 8, 0)
WED_16 = datetime(2026, 3, 4, 16, 0)
THU_16 = datetime(2026, 3, 5, 16, 0)


def make_store(tmp_path):
    store = Store(tmp_path / "planif.json")
    store.initialized = True
    cal = WorkCalendar(id="CAL-1", name="Default")
    for pattern in standard_week(store.config):
        cal.set_weekday(pattern)
    store.put_calendar(cal)
    return store


def run(tmp_path, template):
    store = make_store(tmp_path)
    counter = itertools.count(1)
    return instantiate(
        template,
        "P1",
        MON_8,
        "CAL-1",
        CalendarResolver(store, store.config),
        lambda prefix: f"{prefix}-{next(counter)}",
    )


def by_label(result):
    return {a.label: a for a in result.activities}


def test_predecessor_pushes_second_task(tmp_path):
    template = Template(
        "TPL-1",
        "Slab",
        tasks=[
            TemplateTask("TT-1", "A", duration_days=2, order=0),
            TemplateTask("TT-2", "B", duration_days=1, predecessor_id="TT-1", order=1),
        ],
    )
    result = run(tmp_path, template)
    acts = by_label(result)

    # A: Monday + 2 working days ends Wednesday; B starts when A ends
    assert (acts["A"].planned_start, acts["A"].planned_end) == (MON_8, WED_16)
    assert (acts["B"].planned_start, acts["B"].planned_end) == (WED_16, THU_16)
    assert len(result.dependencies) == 1
    dep = result.dependencies[0]
    assert (dep.activity_id, dep.predecessor_id, dep.type) == (acts["B"].id, acts["A"].id, DependencyType.FINISH_TO_START)


def test_forward_reference_is_linked_in_second_pass(tmp_path):
    # B is materialised first but depends on A, which comes later
    template = Template(
        "TPL-1",
        "Slab",
        tasks=[
            TemplateTask("TT-2", "B", duration_days=1, predecessor_id="TT-1", order=0),
            TemplateTask("TT-1", "A", duration_days=2, order=1),
        ],
    )
    acts = by_label(run(tmp_path, template))
    assert acts["B"].planned_start == WED_16


def test_children_follow_their_parent(tmp_path):
    template = Template(
        "TPL-1",
        "Building",
        tasks=[
            TemplateTask("TT-1", "Structure", duration_days=2),
            TemplateTask("TT-2", "Walls", duration_days=1, level=1, parent_id="TT-1", order=0),
            TemplateTask("TT-3", "Roof", level=1, parent_id="TT-1", order=1),
        ],
    )
    result = run(tmp_path, template)
    acts = by_label(result)

    assert acts["Walls"].parent_id == acts["Structure"].id
    assert acts["Walls"].planned_start == WED_16
    # No duration: default of one day
    assert acts["Roof"].work_days == 1
    assert acts["Roof"].planned_end == THU_16
    assert {(d.predecessor_id, d.activity_id) for d in result.dependencies} == {
        (acts["Structure"].id, acts["Walls"].id),
        (acts["Structure"].id, acts["Roof"].id),
    }
    assert [a.label for a in result.activities] == ["Structure", "Walls", "Roof"]
    assert all(a.template_task_id for a in result.activities)


def test_explicit_predecessor_replaces_parent_link(tmp_path):
    template = Template(
        "TPL-1",
        "Building",
        tasks=[
            TemplateTask("TT-1", "Structure", duration_days=1),
            TemplateTask("TT-2", "Walls", duration_days=2, level=1, parent_id="TT-1", order=0),
            TemplateTask("TT-3", "Paint", duration_days=1, level=1, parent_id="TT-1", order=1, predecessor_id="TT-2"),
        ],
    )
    result = run(tmp_path, template)
    acts = by_label(result)

    paint_deps = [d for d in result.dependencies if d.activity_id == acts["Paint"].id]
    assert [d.predecessor_id for d in paint_deps] == [acts["Walls"].id]
    assert acts["Paint"].planned_start == acts["Walls"].planned_end


def test_hour_based_task_keeps_its_hours(tmp_path):
    template = Template(
        "TPL-1",
        "Inspection",
        tasks=[
            TemplateTask("TT-1", "Survey", hours=10),
            TemplateTask("TT-2", "Report", hours=2, level=1, parent_id="TT-1"),
        ],
    )
    acts = by_label(run(tmp_path, template))

    # 7h on Monday, the last 3h on Tuesday morning
    survey = acts["Survey"]
    assert (survey.work_hours, survey.work_days) == (10, None)
    assert (survey.planned_start, survey.planned_end) == (MON_8, datetime(2026, 3, 3, 11, 0))
    # 11:00-12:00 then 13:00-14:00 after the break
    report = acts["Report"]
    assert report.work_hours == 2
    assert (report.planned_start, report.planned_end) == (survey.planned_end, datetime(2026, 3, 3, 14, 0))


def test_unknown_predecessor(tmp_path):
    template = Template("TPL-1", "Broken", tasks=[TemplateTask("TT-1", "A", predecessor_id="TT-9")])
    with pytest.raises(TemplateIntegrity):
        run(tmp_path, template)


def test_structural_checks():
    with pytest.raises(TemplateIntegrity):
        validate_template(Template("TPL-1", "x", tasks=[TemplateTask("TT-1", "A"), TemplateTask("TT-1", "B")]))
    with pytest.raises(TemplateIntegrity):
        validate_template(Template("TPL-1", "x", tasks=[TemplateTask("TT-1", "A", level=1)]))
    with pytest.raises(TemplateIntegrity):
        validate_template(
            Template(
                "TPL-1",
                "x",
                tasks=[TemplateTask("TT-1", "A"), TemplateTask("TT-2", "B", level=2, parent_id="TT-1")],
            )
        )
    with pytest.raises(TemplateIntegrity):
        validate_template(Template("TPL-1", "x", tasks=[TemplateTask("TT-1", "A", parent_id="TT-5", level=1)]))
    with pytest.raises(TemplateIntegrity):
        validate_template(Template("TPL-1", "x", tasks=[TemplateTask("TT-1", "A", predecessor_id="TT-1")]))


# ---------------------------------------------------------------------------
# Through the engine
# ---------------------------------------------------------------------------


def test_engine_instantiate_persists(tmp_path):
    store = make_store(tmp_path)
    store.put_template(
        Template(
            "TPL-1",
            "Slab",
            tasks=[
                TemplateTask("TT-1", "A", duration_days=2),
                TemplateTask("TT-2", "B", duration_days=1, predecessor_id="TT-1", order=1),
            ],
        )
    )
    ids = SchedulingEngine(store).instantiate_template("TPL-1", "P1", MON_8)

    assert ids == ["A-1", "A-2"]
    reloaded = Store(store.db_path).load()
    assert reloaded.activities["A-2"].planned_start == WED_16
    assert len(reloaded.dependencies) == 1
    assert reloaded.templates["TPL-1"].tasks[1].predecessor_id == "TT-1"


def test_engine_instantiate_failure_writes_nothing(tmp_path):
    store = make_store(tmp_path)
    store.put_template(Template("TPL-1", "Broken", tasks=[TemplateTask("TT-1", "A", predecessor_id="TT-9")]))

    with pytest.raises(TemplateIntegrity):
        SchedulingEngine(store).instantiate_template("TPL-1", "P1", MON_8)
    assert store.activities == {}
    assert not store.db_path.exists()

    with pytest.raises(NotFound):
        SchedulingEngine(store).instantiate_template("TPL-9", "P1", MON_8)

