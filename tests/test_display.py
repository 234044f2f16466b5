import datetime as dt
import os
import sys

import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from todoist_tui.display import (
    BlankLine,
    Grouping,
    HeaderLine,
    ItemLine,
    PlaceholderLine,
    build_display_index,
    sort_bucket,
)
from todoist_tui.models import Due, Section, Task

NOW = dt.datetime(2024, 1, 2, 9, 0)


def _task(tid, due=None, priority=1, section=None, parent=None, order=0):
    return Task(
        id=tid,
        content=f"task {tid}",
        project_id="p1",
        section_id=section,
        parent_id=parent,
        due=Due(date=due) if due else None,
        priority=priority,
        child_order=order,
    )


def _ids(index):
    return [p.task_id for p in index.positions if isinstance(p, ItemLine)]


def _labels(index):
    return [l.label for l in index.lines if isinstance(l, HeaderLine)]


def test_today_scenario_buckets_overdue_and_no_due():
    # A is P1 (api 4), B is P4 (api 1), C is P3 (api 2)
    tasks = [
        _task("A", due="2024-01-01", priority=4),
        _task("B", priority=1),
        _task("C", due="2024-01-01", priority=2),
    ]
    index = build_display_index(tasks, Grouping.STATUS, now=NOW)
    assert _ids(index) == ["A", "C", "B"]
    assert _labels(index) == ["Overdue", "No due date"]
    assert isinstance(index.lines[0], HeaderLine)
    # blank separator before the second bucket only
    blanks = [i for i, l in enumerate(index.lines) if isinstance(l, BlankLine)]
    assert blanks == [3]


def test_status_buckets_skip_empty_headers():
    tasks = [_task("x", due="2024-01-02")]
    index = build_display_index(tasks, Grouping.STATUS, now=NOW)
    assert _labels(index) == ["Today"]
    assert not any(isinstance(l, BlankLine) for l in index.lines)


def test_timed_due_passes_into_overdue():
    early = Task(id="t", content="standup", due=Due(date="2024-01-02", datetime="2024-01-02T08:00:00"))
    later = Task(id="u", content="lunch", due=Due(date="2024-01-02", datetime="2024-01-02T12:00:00"))
    index = build_display_index([later, early], Grouping.STATUS, now=NOW)
    assert _labels(index) == ["Overdue", "Today"]
    assert _ids(index) == ["t", "u"]


def test_date_buckets_are_ascending_with_relative_labels():
    tasks = [
        _task("far", due="2024-01-10"),
        _task("tomorrow", due="2024-01-03"),
        _task("today", due="2024-01-02"),
    ]
    index = build_display_index(tasks, Grouping.DATE, now=NOW)
    assert _labels(index) == ["Today", "Tomorrow", "Wed, Jan 10"]
    assert _ids(index) == ["today", "tomorrow", "far"]
    assert isinstance(index.lines[0], HeaderLine)
    assert sum(isinstance(l, BlankLine) for l in index.lines) == 2


def test_sections_loose_items_first_then_sections_in_order():
    sections = [
        Section(id="s2", name="Later", project_id="p1", section_order=2),
        Section(id="s1", name="Now", project_id="p1", section_order=1),
        Section(id="s3", name="Ideas", project_id="p1", section_order=3),
    ]
    tasks = [
        _task("a", section="s2"),
        _task("b"),
        _task("c", section="s1"),
        _task("d", section="missing"),
    ]
    index = build_display_index(tasks, Grouping.SECTION, sections=sections, now=NOW)
    # unknown section id is treated as no section
    assert _ids(index) == ["b", "d", "c", "a"]
    assert _labels(index) == ["Now", "Later"]
    placeholders = [p for p in index.positions if isinstance(p, PlaceholderLine)]
    assert [(p.group_id, p.label) for p in placeholders] == [("s3", "Ideas")]


def test_empty_and_non_empty_sections_placeholder_rule():
    sections = [
        Section(id="s1", name="One", project_id="p1", section_order=1),
        Section(id="s2", name="Two", project_id="p1", section_order=2),
    ]
    index = build_display_index([_task("a", section="s1")], Grouping.SECTION, sections=sections, now=NOW)
    placeholder_groups = [l.group_id for l in index.lines if isinstance(l, PlaceholderLine)]
    assert placeholder_groups == ["s2"]


def test_sections_with_no_items_stay_navigable():
    sections = [Section(id="s1", name="One", project_id="p1", section_order=1)]
    index = build_display_index([], Grouping.SECTION, sections=sections, now=NOW)
    assert len(index) == 1
    assert isinstance(index.at(0), PlaceholderLine)


def test_subtasks_follow_their_parent_with_depth():
    tasks = [
        _task("child", parent="parent", order=1),
        _task("parent"),
        _task("orphan", parent="gone"),
    ]
    index = build_display_index(tasks, Grouping.SECTION, sections=[], now=NOW)
    depths = {p.task_id: p.depth for p in index.positions}
    assert _ids(index).index("child") == _ids(index).index("parent") + 1
    assert depths == {"parent": 0, "child": 1, "orphan": 0}


def test_parent_cycle_keeps_items_visible():
    tasks = [_task("a", parent="b"), _task("b", parent="a")]
    index = build_display_index(tasks, Grouping.SECTION, sections=[], now=NOW)
    assert sorted(_ids(index)) == ["a", "b"]


def test_flat_preserves_source_order():
    tasks = [_task("z", due="2024-01-05"), _task("a"), _task("m", due="2024-01-01")]
    index = build_display_index(tasks, Grouping.FLAT, now=NOW)
    assert _ids(index) == ["z", "a", "m"]
    assert [p.index for p in index.positions] == [0, 1, 2]


@pytest.mark.parametrize("grouping", list(Grouping))
def test_empty_collection_yields_no_lines(grouping):
    index = build_display_index([], grouping, now=NOW)
    assert index.lines == []
    assert index.at(0) is None


@pytest.mark.parametrize("grouping", list(Grouping))
def test_positions_match_selectable_lines_and_items_appear_once(grouping):
    sections = [
        Section(id="s1", name="One", project_id="p1", section_order=1),
        Section(id="s2", name="Empty", project_id="p1", section_order=2),
    ]
    tasks = [
        _task("a", due="2024-01-01", priority=3, section="s1"),
        _task("b", due="2024-01-02"),
        _task("c", section="s1", parent="a"),
        _task("d", due="2024-01-09", priority=4),
        _task("e"),
    ]
    index = build_display_index(tasks, grouping, sections=sections, now=NOW)
    selectable = [l for l in index.lines if isinstance(l, (ItemLine, PlaceholderLine))]
    assert len(index.positions) == len(selectable)
    assert sorted(_ids(index)) == ["a", "b", "c", "d", "e"]
    for pos, line_no in enumerate(index.line_of):
        assert index.lines[line_no] is index.positions[pos]
        assert index.position_for_line(line_no) == pos
        assert index.position_of(index.positions[pos].key) == pos


def test_position_for_line_ignores_headers_and_blanks():
    tasks = [_task("A", due="2024-01-01"), _task("B")]
    index = build_display_index(tasks, Grouping.STATUS, now=NOW)
    for line_no, line in enumerate(index.lines):
        if isinstance(line, (HeaderLine, BlankLine)):
            assert index.position_for_line(line_no) is None
    assert index.position_for_line(-1) is None
    assert index.position_for_line(len(index.lines)) is None


def test_bucket_sort_is_idempotent_and_undated_last():
    tasks = [
        _task("nodue-hi", priority=4),
        Task(id="timed", content="t", due=Due(date="2024-01-03", datetime="2024-01-03T10:00:00")),
        _task("dated-lo", due="2024-01-03", priority=1),
        _task("dated-hi", due="2024-01-03", priority=4),
        _task("early", due="2024-01-01"),
    ]
    once = sort_bucket(tasks)
    assert [t.id for t in once] == ["early", "dated-hi", "dated-lo", "timed", "nodue-hi"]
    assert [t.id for t in sort_bucket(once)] == [t.id for t in once]


def test_untimed_item_precedes_timed_item_on_same_day():
    timed = Task(id="timed", content="call", priority=4, due=Due(date="2024-01-05", datetime="2024-01-05T10:00:00"))
    untimed = _task("untimed", due="2024-01-05")
    index = build_display_index([timed, untimed], Grouping.DATE, [], NOW)
    assert _ids(index) == ["untimed", "timed"]


def test_completed_groups_by_completion_day_newest_first():
    def done(tid, stamp):
        return Task(id=tid, content=tid, checked=True, completed_at=stamp)

    tasks = [
        done("old", "2023-12-28T10:00:00"),
        done("morning", "2024-01-02T07:00:00"),
        done("lost", None),
        done("late", "2024-01-01T22:00:00"),
        done("noon", "2024-01-02T08:30:00"),
    ]
    index = build_display_index(tasks, Grouping.COMPLETED, now=NOW)
    assert _labels(index) == ["Today", "Yesterday", "Thu, Dec 28", "Unknown date"]
    assert _ids(index) == ["noon", "morning", "late", "old", "lost"]
    assert sum(isinstance(l, BlankLine) for l in index.lines) == 3
