import os
import sys

import pytest
from prompt_toolkit.clipboard import InMemoryClipboard
from prompt_toolkit.mouse_events import MouseButton, MouseEvent, MouseEventType
from prompt_toolkit.data_structures import Point

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import todoist_tui.ui as ui


@pytest.mark.parametrize("raw,expected", [
    ('j', 'j'),
    ('c-m', 'enter'),
    ('c-j', 'c-j'),
    ('c-i', 'tab'),
    (' ', 'space'),
    ('escape', 'escape'),
    ('c-z', 'c-z'),
    ('<any>', None),
    ('<cursor-position-response>', None),
    ('<', '<'),
])
def test_key_name(raw, expected):
    assert ui.key_name(raw) == expected


def _event(kind, button=MouseButton.LEFT):
    return MouseEvent(Point(x=3, y=2), kind, button, frozenset())


def test_mouse_actions():
    assert ui._mouse_action(_event(MouseEventType.SCROLL_UP, MouseButton.NONE)) == 'wheel_up'
    assert ui._mouse_action(_event(MouseEventType.SCROLL_DOWN, MouseButton.NONE)) == 'wheel_down'
    assert ui._mouse_action(_event(MouseEventType.MOUSE_UP)) == 'click'
    assert ui._mouse_action(_event(MouseEventType.MOUSE_DOWN)) is None


def test_clipboard_falls_back_to_memory(monkeypatch):
    def unavailable():
        raise RuntimeError("no clipboard backend")

    monkeypatch.setattr(ui, "PyperclipClipboard", unavailable)
    assert isinstance(ui.build_clipboard(), InMemoryClipboard)


def test_control_defers_to_external_handler():
    seen = []

    def handler(event):
        seen.append(event)
        return None if event.event_type == MouseEventType.MOUSE_UP else NotImplemented

    control = ui.InteractiveFormattedTextControl(lambda: [("", "x")], mouse_handler=handler)
    assert control.mouse_handler(_event(MouseEventType.MOUSE_UP)) is None
    assert control.mouse_handler(_event(MouseEventType.MOUSE_MOVE, MouseButton.NONE)) is NotImplemented
    assert len(seen) == 2
