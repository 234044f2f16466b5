import asyncio
import datetime as dt
import os
import sys

import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from todoist_tui import render
from todoist_tui.config import AppConfig
from todoist_tui.mock import MockService
from todoist_tui.session import Session

TODAY = dt.date(2024, 1, 2)
NOW = dt.datetime(2024, 1, 2, 9, 0)


def text_of(frags):
    return "".join(t for _, t in frags)


def press(session, *keys):
    pending = []
    for key in keys:
        pending.extend(session.handle_key(key))
        while pending:
            pending.extend(session.handle_message(asyncio.run(pending.pop(0)())))


@pytest.fixture
def session():
    s = Session(MockService(today=TODAY), config=AppConfig(), clock=lambda: NOW, copy_text=lambda text: None)
    pending = list(s.start())
    while pending:
        pending.extend(s.handle_message(asyncio.run(pending.pop(0)())))
    return s


def test_tab_bar_marks_active_tab(session):
    frags = render.tab_bar(session)
    assert "class:tab.active" in [style for style, text in frags if "Today" in text]
    assert " 6 Projects " in text_of(frags)


def test_today_list(session):
    frags = render.list_fragments(session, width=80)
    text = text_of(frags)
    assert text.startswith(" Today\n")
    assert " Overdue" in text
    assert "Pay rent" in text
    assert "@errand" in text
    assert "!!!" in text
    cursor = [t for style, t in frags if style == "class:item.cursor"]
    assert any("Pay rent" in t for t in cursor)
    assert ("class:due.today", "  today") in frags


def test_empty_section_placeholder(session):
    press(session, "6", "enter")
    text = text_of(render.list_fragments(session))
    assert text.startswith(" Work\n")
    assert " Ideas  (empty, press a to add)" in text


def test_sidebar_favorites_and_separator(session):
    press(session, "6")
    text = text_of(render.sidebar_fragments(session, width=28))
    assert "★ Work" in text
    assert "─" * 26 in text
    assert "Home" in text
    assert text.index("Work") < text.index("─") < text.index("Home")


def test_detail_shows_fields_and_comments(session):
    press(session, "j", "enter")
    text = text_of(render.detail_fragments(session))
    assert text.startswith("Review pull requests\n")
    assert "Work" in text
    assert "This week" in text
    assert "P2" in text
    assert "Start with the API changes" in text


def test_recurring_detail(session):
    press(session, "enter")
    assert "Repeats" in text_of(render.detail_fragments(session))


def test_status_selection_count_and_error(session):
    press(session, "space")
    assert "[1 selected]" in text_of(render.status_fragments(session))
    session.state.status = "Error: boom"
    session.state.error = "boom"
    assert render.status_fragments(session)[0][0] == "class:status.error"


def test_reschedule_picker(session):
    press(session, "R")
    assert render.overlay_title(session) == "Reschedule"
    text = text_of(render.modal_fragments(session))
    assert "Next week (Mon)" in text
    assert "No date" in text


def test_add_form(session):
    press(session, "a")
    text = text_of(render.form_fragments(session))
    assert text.startswith("New task in Home")
    assert "Priority" in text
    assert render.overlay_title(session) == "Task"


def test_calendar_month(session):
    press(session, "5")
    text = text_of(render.list_fragments(session))
    assert "January 2024" in text
    assert "2 due on 2024-01-02" in text
    assert "Review pull requests" in text


def test_label_list_counts(session):
    press(session, "4")
    text = text_of(render.list_fragments(session))
    assert "@errand  (2)" in text
    assert "@deep-work  (1)" in text


def test_hints_follow_view(session):
    assert "x complete" in text_of(render.hints_fragments(session))
    press(session, "6")
    assert "favorite" in text_of(render.hints_fragments(session))


def test_truncate_uses_display_width():
    assert render._truncate("abcdef", 4) == "abc…"
    assert render._truncate("abc", 4) == "abc"
    assert render._truncate("日本語テキスト", 5) == "日本…"
    assert render._truncate("anything", 0) == ""


def test_completed_list_shows_completion_time(session):
    press(session, "V")
    text = text_of(render.list_fragments(session, width=80))
    assert text.startswith(" Completed\n")
    assert " Today" in text and " Yesterday" in text
    assert "[x]" in text
    assert "done 08:15" in text
    assert "x reopen" in text_of(render.hints_fragments(session))
