import asyncio
import datetime as dt
import os
import sys

import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from todoist_tui import render
from todoist_tui.api import APIError
from todoist_tui.config import AppConfig, write_template
from todoist_tui.display import HeaderLine, ItemLine, PlaceholderLine
from todoist_tui.mock import MockService
from todoist_tui.session import FRESH_SECONDS, Session
from todoist_tui.state import BulkDone, Pane, Tab, UIMode, View

TODAY = dt.date(2024, 1, 2)
NOW = dt.datetime(2024, 1, 2, 9, 0)


class FakeMonotonic:
    def __init__(self):
        self.t = 1000.0

    def __call__(self):
        return self.t

    def advance(self, seconds=FRESH_SECONDS + 1):
        self.t += seconds


class FlakyService(MockService):
    """MockService that fails chosen calls with a server error."""

    def __init__(self, **kwargs):
        super().__init__(today=TODAY, **kwargs)
        self.fail_close = set()
        self.fail_reads = False

    def close_task(self, task_id):
        if task_id in self.fail_close:
            raise APIError(500, "boom")
        return super().close_task(task_id)

    def get_tasks(self, *args, **kwargs):
        if self.fail_reads:
            raise APIError(500, "boom")
        return super().get_tasks(*args, **kwargs)


def drain(session, commands):
    """Run deferred calls to completion, feeding every message back in order."""
    pending = list(commands)
    while pending:
        msg = asyncio.run(pending.pop(0)())
        pending.extend(session.handle_message(msg))


def press(session, *keys):
    for key in keys:
        drain(session, session.handle_key(key))


def type_text(session, text):
    press(session, *['space' if ch == ' ' else ch for ch in text])


def ids(session):
    return [p.task_id for p in session.index.positions if isinstance(p, ItemLine)]


@pytest.fixture
def service():
    return FlakyService()


@pytest.fixture
def mono():
    return FakeMonotonic()


@pytest.fixture
def copied():
    return []


@pytest.fixture
def make_session(service, mono, copied):
    def _make(view="today", config=None, **kwargs):
        cfg = config or AppConfig()
        cfg.ui.default_view = view
        s = Session(service, config=cfg, clock=lambda: NOW, monotonic=mono, copy_text=copied.append, **kwargs)
        drain(s, s.start())
        return s
    return _make


@pytest.fixture
def session(make_session):
    return make_session()


def open_work_project(s):
    press(s, "6")
    assert s.in_sidebar()
    press(s, "enter")
    assert s.state.current_project.id == "work"
    assert s.state.pane is Pane.MAIN


# -----------------------------
# Loading and views
# -----------------------------
def test_start_loads_everything_and_groups_today(session):
    st = session.state
    assert st.loading is False
    assert st.status == ""
    assert st.last_fetch is not None
    assert ids(session) == ["t1", "t2", "t6"]
    assert st.cursor == 0
    assert st.cursor_key == ("item", "t1")


def test_tab_switch_filters_cache_without_fetching(session):
    assert session.handle_key("3") == []
    st = session.state
    assert st.tab is Tab.UPCOMING and st.view is View.UPCOMING
    assert ids(session) == ["t2", "t6", "t3", "t8", "t5"]
    assert st.cursor == 0


def test_tab_switch_refused_while_overlay_open(session):
    press(session, "j", "enter")
    st = session.state
    assert st.view is View.TASK_DETAIL
    assert st.detail_task_id == "t2"
    assert [c.content for c in st.comments["t2"]] == ["Start with the API changes"]
    press(session, "3")
    assert st.tab is Tab.TODAY
    press(session, "escape")
    assert st.view is View.TODAY
    assert st.show_detail_panel is False
    press(session, "3")
    assert st.tab is Tab.UPCOMING


def test_refresh_filters_locally_when_fresh_and_fetches_when_stale(session, mono):
    assert session.handle_key("r") == []
    assert session.state.status == "Up to date"
    mono.advance()
    commands = session.handle_key("r")
    assert len(commands) == 1
    assert session.state.status == "Loading..."
    drain(session, commands)
    assert session.state.status == ""


def test_opening_project_fetches_only_when_stale(make_session, mono):
    s = make_session(view="projects")
    assert s.state.pane is Pane.SIDEBAR
    mono.advance()
    commands = s.handle_key("enter")
    assert len(commands) == 1
    assert s.state.status == "Loading Work..."
    drain(s, commands)
    assert sorted(ids(s)) == ["t2", "t3", "t4", "t5"]


def test_read_failure_shows_error_and_keeps_running(session, service, mono):
    service.fail_reads = True
    mono.advance()
    press(session, "r")
    st = session.state
    assert st.status == "Error: API error 500: boom"
    assert st.loading is False
    assert ids(session) == ["t1", "t2", "t6"]


# -----------------------------
# Project view and placeholders
# -----------------------------
def test_project_view_section_layout(make_session):
    s = make_session()
    open_work_project(s)
    assert ids(s) == ["t2", "t3", "t4", "t5"]
    last = s.index.at(len(s.index) - 1)
    assert isinstance(last, PlaceholderLine)
    assert last.group_id == "work-ideas"
    depths = {p.task_id: p.depth for p in s.index.positions if isinstance(p, ItemLine)}
    assert depths["t4"] == 1


def test_select_on_placeholder_is_noop_and_add_prefills_section(make_session, service):
    s = make_session()
    open_work_project(s)
    press(s, "G")
    st = s.state
    assert isinstance(s.cursor_entry(), PlaceholderLine)
    assert s.handle_key("enter") == []
    assert st.view is View.PROJECT
    assert st.show_detail_panel is False

    press(s, "a")
    assert st.view is View.TASK_FORM
    assert st.form.section_id == "work-ideas"
    assert st.form.project_id == "work"
    type_text(s, "Sketch")
    press(s, "enter")
    assert st.view is View.PROJECT
    assert st.status == "Task created"
    created = [t for t in service.tasks.values() if t.content == "Sketch"]
    assert len(created) == 1
    assert created[0].section_id == "work-ideas"
    assert not any(isinstance(p, PlaceholderLine) for p in s.index.positions)


def test_back_from_project_returns_to_sidebar(make_session):
    s = make_session()
    open_work_project(s)
    press(s, "escape")
    st = s.state
    assert st.pane is Pane.SIDEBAR
    assert st.current_project is None
    assert ids(s) == []


# -----------------------------
# Key sequences
# -----------------------------
def test_non_matching_second_key_cancels_sequence(session, service):
    assert session.handle_key("d") == []
    assert session.state.cursor == 0
    press(session, "j")
    assert session.state.cursor == 1
    assert not any(t.is_deleted for t in service.tasks.values())


def test_double_d_deletes_item_under_cursor(session, service):
    press(session, "d", "d")
    assert service.tasks["t1"].is_deleted
    assert session.state.status == "Deleted: Pay rent"
    assert ids(session) == ["t2", "t6"]


def test_double_g_goes_to_top(session):
    press(session, "G")
    assert session.state.cursor == 2
    press(session, "g", "g")
    assert session.state.cursor == 0


# -----------------------------
# Complete, undo and bulk
# -----------------------------
def test_complete_then_undo_is_strict_inverse(session, service):
    commands = session.handle_key("x")
    assert ids(session) == ["t2", "t6"]
    drain(session, commands)
    assert service.tasks["t1"].checked is True
    assert session.state.status == "Completed: Pay rent"

    press(session, "c-z")
    assert service.tasks["t1"].checked is False
    assert session.state.status == "Undo successful"
    assert "t1" in ids(session)

    assert session.handle_key("c-z") == []
    assert session.state.status == "Nothing to undo"
    assert service.tasks["t1"].checked is False


def test_failed_single_complete_restores_item(session, service):
    service.fail_close.add("t1")
    press(session, "x")
    assert session.state.status == "Error: API error 500: boom"
    assert "t1" in ids(session)


def test_bulk_complete_partial_failure(session, service):
    service.fail_close.add("t2")
    press(session, "space", "j", "space", "j", "space")
    st = session.state
    assert st.selection == {"t1", "t2", "t6"}

    commands = session.handle_key("x")
    assert len(commands) == 1
    msg = asyncio.run(commands[0]())
    assert isinstance(msg, BulkDone)
    assert (msg.succeeded, msg.failed) == (2, 1)
    follow = session.handle_message(msg)
    assert st.status == "Completed 2 items, 1 failed"
    assert st.selection == {"t1", "t2", "t6"}

    drain(session, follow)
    # completed items leave the selection quietly; the failed one stays selected
    assert st.selection == {"t2"}
    assert st.status == "Completed 2 items, 1 failed"
    assert service.tasks["t1"].checked and service.tasks["t6"].checked
    assert not service.tasks["t2"].checked


def test_failed_bulk_item_removed_remotely_is_reported(session, service, mono):
    service.fail_close.add("t2")
    press(session, "space", "j", "space", "j", "space")
    commands = session.handle_key("x")
    msg = asyncio.run(commands[0]())
    assert set(msg.settled) == {"t1", "t6"}
    drain(session, session.handle_message(msg))
    st = session.state
    assert st.selection == {"t2"}

    service.delete_task("t2")
    mono.advance()
    press(session, "r")
    assert st.selection == set()
    assert st.status == "1 selected items no longer present"


def test_bulk_update_does_not_hide_later_removals(session, service, mono):
    press(session, "space", "j", "space", "!")
    st = session.state
    assert service.tasks["t2"].priority == 4
    assert st.status == "Updated 2 items"
    assert st.selection == {"t1", "t2"}

    service.delete_task("t1")
    mono.advance()
    press(session, "r")
    assert st.selection == {"t2"}
    assert st.status == "1 selected items no longer present"


def test_bulk_delete_reports_count(session, service):
    press(session, "space", "j", "space", "d", "d")
    assert session.state.status == "Deleted 2 items"
    assert service.tasks["t1"].is_deleted and service.tasks["t2"].is_deleted
    assert session.state.selection == set()


def test_stale_selection_is_dropped_with_note(session, service, mono):
    press(session, "space")
    service.delete_task("t1")
    mono.advance()
    press(session, "r")
    st = session.state
    assert st.selection == set()
    assert st.status == "1 selected items no longer present"


# -----------------------------
# Completed items
# -----------------------------
def test_completed_view_groups_recent_items_by_day(session):
    commands = session.handle_key("V")
    st = session.state
    assert st.view is View.COMPLETED
    assert st.status == "Loading completed items..."
    drain(session, commands)
    assert st.status == ""
    assert ids(session) == ["t9", "t10"]
    headers = [line.label for line in session.index.lines if isinstance(line, HeaderLine)]
    assert headers == ["Today", "Yesterday"]
    press(session, "escape")
    assert st.view is View.TODAY
    assert ids(session) == ["t1", "t2", "t6"]


def test_completed_view_from_command_line(session):
    press(session, ":")
    type_text(session, "completed")
    press(session, "enter")
    assert session.state.view is View.COMPLETED
    assert ids(session) == ["t9", "t10"]


def test_reopen_from_completed_then_undo_closes_again(session, service):
    press(session, "V", "x")
    st = session.state
    assert not service.tasks["t9"].checked
    assert st.status == "Uncompleted: Send invoice"
    assert ids(session) == ["t10"]
    assert "t9" in [t.id for t in st.all_tasks]

    press(session, "c-z")
    assert service.tasks["t9"].checked
    assert st.status == "Undo successful"
    assert "t9" in ids(session)
    assert "t9" not in [t.id for t in st.all_tasks]


def test_bulk_reopen_in_completed_view(session, service):
    press(session, "V", "space", "j", "space", "x")
    assert not service.tasks["t9"].checked
    assert not service.tasks["t10"].checked
    assert session.state.status == "Reopened 2 items"
    assert ids(session) == []


# -----------------------------
# Copy
# -----------------------------
def test_copy_single_item(session, copied):
    press(session, "y", "y")
    assert copied == ["Pay rent"]
    assert session.state.status == "Copied: Pay rent"


def test_copy_selection_clears_it(session, copied):
    press(session, "space", "j", "space", "y", "y")
    assert copied == ["Pay rent\nReview pull requests"]
    assert session.state.selection == set()
    assert session.state.status == "Copied 2 items"


def test_copy_on_placeholder_copies_section_name(make_session, copied):
    s = make_session()
    open_work_project(s)
    press(s, "G", "y", "y")
    assert copied == ["Ideas"]


# -----------------------------
# Field updates
# -----------------------------
def test_priority_keys(session, service):
    press(session, "G", "!")
    assert service.tasks["t6"].priority == 4
    assert session.state.status == "Priority set to P1"
    press(session, "$")
    assert service.tasks["t6"].priority == 1


def test_due_tomorrow_moves_item_out_of_today(session, service):
    press(session, "G", ">")
    assert service.tasks["t6"].due.date == "2024-01-03"
    assert ids(session) == ["t1", "t2"]


def test_move_due_keeps_recurrence(session, service):
    press(session, "L")
    due = service.tasks["t1"].due
    assert due.date == "2024-01-02"
    assert due.string == "every month"
    assert session.state.status == "Moved to Today"


def test_reschedule_next_week(session, service):
    press(session, "R")
    st = session.state
    assert st.modal.mode is UIMode.RESCHEDULE
    press(session, "j", "j", "enter")
    assert not st.modal.active
    assert service.tasks["t1"].due.date == "2024-01-08"
    assert st.status == "Rescheduled to Mon, Jan 8"


def test_move_to_project_picker_filters_by_typing(session, service):
    press(session, "G", "M")
    st = session.state
    assert st.modal.mode is UIMode.MOVE_TO_PROJECT
    assert [o.label for o in session.picker_options()][:2] == ["Inbox", "Work"]
    type_text(session, "back")
    assert [o.label for o in session.picker_options()] == ["Backlog"]
    press(session, "enter")
    assert service.tasks["t6"].project_id == "work"
    assert service.tasks["t6"].section_id == "work-later"
    assert st.status == "Moved to Work / Backlog"


def test_ctrl_j_and_ctrl_k_move_picker_cursor_while_typing(session, service):
    press(session, "G", "M")
    st = session.state
    assert st.modal.cursor == 0
    press(session, "c-j")
    assert st.modal.mode is UIMode.MOVE_TO_PROJECT
    assert st.modal.cursor == 1
    assert st.modal.text == ""
    assert service.tasks["t6"].project_id == "inbox"
    press(session, "c-k")
    assert st.modal.cursor == 0


def test_bulk_move_clears_selection(session, service):
    press(session, "space", "G", "space", "M")
    type_text(session, "inbox")
    commands = session.handle_key("enter")
    assert session.state.selection == set()
    drain(session, commands)
    assert service.tasks["t1"].project_id == "inbox"
    assert session.state.status == "Moved 2 items to Inbox"


# -----------------------------
# Forms, quick add, search, command line
# -----------------------------
def test_add_form_in_today_prefills_due_and_validates(session):
    press(session, "a")
    st = session.state
    assert st.form.due_string == "today"
    press(session, "enter")
    assert st.status == "Task name is required"
    assert st.view is View.TASK_FORM
    press(session, "tab", "tab", "tab", "1")
    assert st.form.focused_field == "priority"
    assert st.form.priority == 4
    press(session, "escape")
    assert st.view is View.TODAY
    assert st.form is None


def test_edit_form_updates_content(session, service):
    press(session, "e")
    st = session.state
    assert st.form.editing
    assert st.form.content == "Pay rent"
    press(session, "c-u")
    type_text(session, "Pay the rent")
    press(session, "enter")
    assert service.tasks["t1"].content == "Pay the rent"
    # unchanged due text is not resent, so the recurrence survives
    assert service.tasks["t1"].due.string == "every month"


def test_quick_add_appends_current_project(make_session, service):
    s = make_session()
    open_work_project(s)
    press(s, "Q")
    assert s.state.view is View.QUICK_ADD
    type_text(s, "Call")
    press(s, "enter")
    created = [t for t in service.tasks.values() if t.content == "Call"]
    assert created and created[0].project_id == "work"


def test_search_and_restore_cursor(session):
    press(session, "j", "/")
    st = session.state
    assert st.view is View.SEARCH
    type_text(session, "rent")
    assert ids(session) == ["t1"]
    press(session, "escape")
    assert st.view is View.TODAY
    assert st.cursor == 1


def test_command_line_goto_and_project(session):
    press(session, ":")
    type_text(session, "goto upcoming")
    press(session, "enter")
    st = session.state
    assert st.tab is Tab.UPCOMING
    press(session, ":")
    type_text(session, "project home")
    press(session, "enter")
    assert st.tab is Tab.PROJECTS
    assert st.current_project.id == "home"
    assert sorted(ids(session)) == ["t1", "t8"]
    press(session, ":")
    type_text(session, "nope")
    press(session, "enter")
    assert st.status == "Unknown command: nope"


# -----------------------------
# Labels, sidebar, sections, comments
# -----------------------------
def test_label_drill_down_and_back(session):
    press(session, "4")
    st = session.state
    assert session.in_label_list()
    assert [lb.name for lb in session.label_list()] == ["errand", "deep-work"]
    press(session, "enter")
    assert st.current_label.name == "errand"
    assert ids(session) == ["t1", "t6"]
    press(session, "escape")
    assert st.current_label is None
    assert st.cursor == 0
    assert st.tab is Tab.LABELS


def test_sidebar_skips_separator_and_deletes_project(make_session, service):
    s = make_session(view="projects")
    st = s.state
    assert [i.kind for i in st.sidebar] == ["project", "separator", "project"]
    press(s, "j")
    assert st.sidebar_cursor == 2
    press(s, "d", "d")
    assert st.modal.mode is UIMode.PROJECT_DELETE
    press(s, "y")
    assert "home" not in service.projects
    assert st.status == "Deleted project: Home"


def test_toggle_favorite(make_session, service):
    s = make_session(view="projects")
    press(s, "f")
    assert service.projects["work"].is_favorite is False
    assert [i.kind for i in s.state.sidebar] == ["project", "project"]


def test_sections_view_add_and_reorder(make_session, service):
    s = make_session()
    open_work_project(s)
    press(s, "S")
    st = s.state
    assert st.view is View.SECTIONS
    press(s, "J")
    assert service.sections["work-now"].section_order == 2
    assert service.sections["work-later"].section_order == 1
    assert st.section_cursor == 1
    press(s, "a")
    assert st.modal.mode is UIMode.SECTION_INPUT
    type_text(s, "Q3")
    press(s, "enter")
    assert any(sec.name == "Q3" and sec.project_id == "work" for sec in service.sections.values())
    press(s, "escape")
    assert st.view is View.PROJECT


def test_comments_add_and_delete(session, service):
    press(session, "j", "enter", "A")
    st = session.state
    assert st.modal.mode is UIMode.COMMENT_INPUT
    type_text(session, "ok")
    press(session, "enter")
    assert [c.content for c in st.comments["t2"]] == ["Start with the API changes", "ok"]
    assert st.status == "Comment added"
    press(session, "X", "y")
    assert [c.content for c in st.comments["t2"]] == ["Start with the API changes"]


# -----------------------------
# Calendar and settings
# -----------------------------
def test_calendar_navigation_and_day_view(make_session):
    persisted = []
    s = make_session(persist_config=persisted.append)
    press(s, "5")
    st = s.state
    assert st.view is View.CALENDAR
    press(s, "l")
    assert st.calendar_day == dt.date(2024, 1, 3)
    press(s, "]")
    assert st.calendar_day == dt.date(2024, 2, 3)
    press(s, "t", "enter")
    assert st.view is View.CALENDAR_DAY
    assert ids(s) == ["t2", "t6"]
    press(s, "escape")
    assert st.view is View.CALENDAR
    press(s, "v")
    assert st.calendar_expanded is True
    assert persisted and persisted[0].ui.calendar_default_view == "expanded"


def test_set_default_view_rewrites_config(make_session, tmp_path):
    path = tmp_path / "config.yaml"
    write_template(str(path))
    cfg = AppConfig(path=str(path))
    s = make_session(config=cfg)
    press(s, "3", "D")
    assert 'default_view: "upcoming"' in path.read_text()
    assert s.state.status == "Default view set to Upcoming"


# -----------------------------
# Pointer input and viewport
# -----------------------------
def test_list_click_moves_then_selects(session):
    st = session.state
    session.handle_list_click(4)   # "Today" header row
    assert st.cursor == 0
    session.handle_list_click(5)
    assert st.cursor == 1
    assert st.view is View.TODAY
    drain(session, session.handle_list_click(5))
    assert st.view is View.TASK_DETAIL
    assert st.detail_task_id == "t2"


def test_tab_click_and_wheel(session):
    session.handle_tab_click(25)
    assert session.state.tab is Tab.UPCOMING
    session.handle_wheel(1)
    assert session.state.cursor == 1
    session.handle_wheel(-1)
    assert session.state.cursor == 0


def test_sidebar_click_opens_project(make_session):
    s = make_session(view="projects")
    assert s.handle_sidebar_click(2) == []
    assert s.state.current_project is None
    s.handle_sidebar_click(3)
    assert s.state.current_project.id == "home"


def test_long_sidebar_scrolls_with_cursor(make_session, service):
    for n in range(60):
        service.create_project("Side %02d" % n)
    s = make_session(view="projects")
    s.resize(24)
    st = s.state
    press(s, "G")
    assert st.sidebar_cursor == len(st.sidebar) - 1
    window = st.sidebar_viewport.window(len(st.sidebar))
    assert len(window) == st.sidebar_viewport.height < len(st.sidebar)
    assert st.sidebar_cursor in window
    assert st.sidebar_viewport.offset > 0
    text = "".join(t for _, t in render.sidebar_fragments(s))
    assert "Side 59" in text
    assert "Side 00" not in text
    # first row below the title maps through the scroll offset
    top = st.sidebar[st.sidebar_viewport.offset]
    s.handle_sidebar_click(1)
    assert st.current_project.id == top.id
    press(s, "escape")
    press(s, "g", "g")
    assert st.sidebar_viewport.offset == 0


def test_cursor_line_stays_in_viewport(session):
    press(session, "3")
    session.resize(3)
    st = session.state
    for _ in range(len(session.index)):
        line = session.index.line_for(st.cursor)
        assert line in st.viewport.window(len(session.index.lines))
        press(session, "j")
    press(session, "g", "g")
    assert st.viewport.offset == 0


def test_resize_does_not_move_cursor(session):
    press(session, "j")
    session.resize(12)
    assert session.state.cursor == 1
    assert session.state.viewport.height == 5
