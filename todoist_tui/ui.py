"""prompt_toolkit front end: layout, key translation, mouse routing and the command runner."""
from __future__ import annotations

import logging
from typing import Callable, List, Optional

from prompt_toolkit import Application
from prompt_toolkit.application.current import get_app
from prompt_toolkit.clipboard import ClipboardData, InMemoryClipboard
from prompt_toolkit.clipboard.pyperclip import PyperclipClipboard
from prompt_toolkit.enums import EditingMode
from prompt_toolkit.filters import Condition
from prompt_toolkit.key_binding import KeyBindings
from prompt_toolkit.keys import Keys
from prompt_toolkit.layout import ConditionalContainer, Float, FloatContainer, HSplit, Layout, VSplit, Window
from prompt_toolkit.layout.controls import FormattedTextControl
from prompt_toolkit.layout.dimension import Dimension
from prompt_toolkit.mouse_events import MouseButton, MouseEvent, MouseEventType
from prompt_toolkit.styles import Style
from prompt_toolkit.widgets import Frame

from . import render
from .session import Session
from .state import Tab, View
from .viewport import height_for_terminal

logger = logging.getLogger('todoist_tui')

SIDEBAR_WIDTH = 30
DETAIL_WIDTH = 60

# prompt_toolkit key names that differ from the session's canonical names.
KEY_ALIASES = {
    'c-m': 'enter',
    'c-i': 'tab',
    'c-h': 'backspace',
    ' ': 'space',
}


def key_name(key: str) -> Optional[str]:
    """Canonical key string for a prompt_toolkit key press, None for pseudo keys."""
    if len(key) > 1 and key.startswith('<'):
        return None
    return KEY_ALIASES.get(key, key)


class InteractiveFormattedTextControl(FormattedTextControl):
    """FormattedTextControl with an external mouse handler."""

    def __init__(self, *args, mouse_handler=None, **kwargs):
        super().__init__(*args, **kwargs)
        self._external_mouse_handler = mouse_handler

    def mouse_handler(self, mouse_event: MouseEvent):
        if self._external_mouse_handler:
            result = self._external_mouse_handler(mouse_event)
            if result is not NotImplemented:
                return result
        return super().mouse_handler(mouse_event)


def build_clipboard():
    try:
        return PyperclipClipboard()
    except Exception:
        logger.warning("System clipboard unavailable, copying in memory", exc_info=True)
        return InMemoryClipboard()


def _mouse_action(mouse_event: MouseEvent) -> Optional[str]:
    if mouse_event.event_type == MouseEventType.SCROLL_UP:
        return 'wheel_up'
    if mouse_event.event_type == MouseEventType.SCROLL_DOWN:
        return 'wheel_down'
    if mouse_event.event_type == MouseEventType.MOUSE_UP and mouse_event.button == MouseButton.LEFT:
        return 'click'
    return None


def run_ui(session: Session, clipboard=None) -> None:
    """Run the full-screen application until the session asks to quit."""
    clipboard = clipboard or build_clipboard()
    app_ref: List[Application] = []

    def copy_text(text: str) -> None:
        clipboard.set_data(ClipboardData(text))
    session.copy_text = copy_text

    def invalidate() -> None:
        if app_ref:
            app_ref[0].invalidate()

    def dispatch(commands: List[Callable]) -> None:
        app = app_ref[0]
        for command in commands:
            app.create_background_task(_run_command(command))
        if session.state.quit:
            app.exit()
        invalidate()

    async def _run_command(command) -> None:
        msg = await command()
        dispatch(session.handle_message(msg))

    # -----------------------------
    # Controls
    # -----------------------------
    def _sync_height() -> None:
        try:
            rows = get_app().output.get_size().rows
        except Exception:
            return
        if session.state.viewport.height != height_for_terminal(rows):
            session.resize(rows)

    def list_text():
        _sync_height()
        try:
            width = get_app().output.get_size().columns
        except Exception:
            width = 100
        if show_sidebar():
            width -= SIDEBAR_WIDTH
        if show_detail():
            width -= DETAIL_WIDTH
        return render.list_fragments(session, width=max(20, width))

    def on_tab_mouse(mouse_event: MouseEvent):
        if _mouse_action(mouse_event) == 'click':
            dispatch(session.handle_tab_click(mouse_event.position.x))
            return None
        return NotImplemented

    def on_list_mouse(mouse_event: MouseEvent):
        action = _mouse_action(mouse_event)
        if action == 'click':
            dispatch(session.handle_list_click(mouse_event.position.y))
            return None
        if action in ('wheel_up', 'wheel_down'):
            dispatch(session.handle_wheel(-1 if action == 'wheel_up' else 1))
            return None
        return NotImplemented

    def on_sidebar_mouse(mouse_event: MouseEvent):
        action = _mouse_action(mouse_event)
        if action == 'click':
            dispatch(session.handle_sidebar_click(mouse_event.position.y))
            return None
        if action in ('wheel_up', 'wheel_down'):
            dispatch(session.handle_wheel(-1 if action == 'wheel_up' else 1, in_sidebar=True))
            return None
        return NotImplemented

    def show_sidebar() -> bool:
        return session.state.tab is Tab.PROJECTS

    def show_detail() -> bool:
        return session.state.show_detail_panel

    def show_overlay() -> bool:
        st = session.state
        return st.modal.active or st.view in (View.TASK_FORM, View.QUICK_ADD, View.SECTIONS, View.HELP)

    def overlay_text():
        st = session.state
        if st.modal.active:
            return render.modal_fragments(session)
        if st.view is View.TASK_FORM:
            return render.form_fragments(session)
        if st.view is View.QUICK_ADD:
            return render.quick_add_fragments(session)
        if st.view is View.SECTIONS:
            return render.sections_fragments(session)
        if st.view is View.HELP:
            return render.help_fragments(session)
        return []

    tab_control = InteractiveFormattedTextControl(text=lambda: render.tab_bar(session), mouse_handler=on_tab_mouse)
    list_control = InteractiveFormattedTextControl(text=list_text, mouse_handler=on_list_mouse)
    sidebar_control = InteractiveFormattedTextControl(
        text=lambda: render.sidebar_fragments(session, SIDEBAR_WIDTH - 2), mouse_handler=on_sidebar_mouse)
    detail_control = FormattedTextControl(text=lambda: render.detail_fragments(session))
    status_control = FormattedTextControl(text=lambda: render.status_fragments(session))
    hints_control = FormattedTextControl(text=lambda: render.hints_fragments(session))
    overlay_control = FormattedTextControl(text=overlay_text)

    body = VSplit([
        ConditionalContainer(
            Window(width=SIDEBAR_WIDTH, content=sidebar_control, style='class:sidebar', always_hide_cursor=True),
            filter=Condition(show_sidebar),
        ),
        Window(content=list_control, wrap_lines=False, always_hide_cursor=True),
        ConditionalContainer(
            Window(width=DETAIL_WIDTH, content=detail_control, wrap_lines=True, style='class:detail', always_hide_cursor=True),
            filter=Condition(show_detail),
        ),
    ])
    main = HSplit([
        Window(height=1, content=tab_control, always_hide_cursor=True),
        body,
        Window(height=1, content=status_control),
        ConditionalContainer(Window(height=1, content=hints_control), filter=Condition(lambda: session.state.show_hints)),
    ])
    overlay = ConditionalContainer(
        Frame(
            body=Window(content=overlay_control, width=Dimension(min=40, preferred=72), wrap_lines=True, always_hide_cursor=True),
            title=lambda: render.overlay_title(session) or "",
            style='class:frame',
        ),
        filter=Condition(show_overlay),
    )
    container = FloatContainer(content=main, floats=[Float(content=overlay, top=2)])

    # -----------------------------
    # Keys
    # -----------------------------
    kb = KeyBindings()

    @kb.add(Keys.Any)
    def _(event):
        for press in event.key_sequence:
            name = key_name(press.key.value if isinstance(press.key, Keys) else press.key)
            if name is None:
                continue
            dispatch(session.handle_key(name))

    style = Style.from_dict(render.BASE_STYLE)
    editing_mode = EditingMode.VI if session.config.ui.vim_mode else EditingMode.EMACS
    app = Application(
        layout=Layout(container),
        key_bindings=kb,
        full_screen=True,
        mouse_support=True,
        style=style,
        editing_mode=editing_mode,
    )
    # Escape is a command key here; do not wait for a meta sequence.
    app.ttimeoutlen = 0.05
    app_ref.append(app)
    app.run(pre_run=lambda: dispatch(session.start()))
