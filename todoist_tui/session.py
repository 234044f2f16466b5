"""Session engine: one mutable state record driven by keys, clicks and background results.

Every entry point (``handle_key``, ``handle_message`` and the pointer
handlers) mutates ``self.state`` synchronously and returns a list of
*commands*: zero-argument coroutine functions that run remote calls off the
event loop and resolve to exactly one message. The caller schedules each
command and feeds its message back through ``handle_message``. After every
entry point the display index is rebuilt from the caches and the cursor is
re-resolved through its stable key.
"""
from __future__ import annotations

import asyncio
import datetime as dt
import logging
import time
from collections import Counter
from typing import Awaitable, Callable, Dict, List, Optional, Set

from .actions import ItemActionsMixin
from .config import AppConfig
from .dialogs import DialogsMixin
from .display import DisplayIndex, Grouping, ItemLine, PlaceholderLine, build_display_index, sort_bucket
from .keys import KeyStateMachine, build_keymap
from .models import Label, Project, Section, Task, is_due_today, is_overdue
from .state import (
    OVERLAY_VIEWS,
    ActionDone,
    BulkDone,
    CommentsLoaded,
    DataLoaded,
    ErrorOccurred,
    Pane,
    SessionState,
    SidebarItem,
    Tab,
    View,
    tab_bar_spans,
)

logger = logging.getLogger('todoist_tui')

Command = Callable[[], Awaitable[object]]

# Cache age under which views filter locally instead of fetching.
FRESH_SECONDS = 30.0
# How far back the completed view reaches.
COMPLETED_DAYS = 30
HALF_PAGE = 10

VIEW_GROUPING: Dict[View, Grouping] = {
    View.INBOX: Grouping.SECTION,
    View.PROJECT: Grouping.SECTION,
    View.SECTIONS: Grouping.SECTION,
    View.TODAY: Grouping.STATUS,
    View.UPCOMING: Grouping.DATE,
    View.COMPLETED: Grouping.COMPLETED,
}

# Drawn on top of another view; the list underneath stays the navigable one.
STACKED_VIEWS = frozenset({View.TASK_DETAIL, View.TASK_FORM, View.QUICK_ADD, View.HELP})


class Session(ItemActionsMixin, DialogsMixin):
    def __init__(
        self,
        client,
        config: Optional[AppConfig] = None,
        clock: Optional[Callable[[], dt.datetime]] = None,
        monotonic: Optional[Callable[[], float]] = None,
        copy_text: Optional[Callable[[str], None]] = None,
        persist_config: Optional[Callable[[AppConfig], None]] = None,
    ):
        self.client = client
        self.config = config or AppConfig()
        self.clock = clock or dt.datetime.now
        self.monotonic = monotonic or time.monotonic
        self.copy_text = copy_text or (lambda text: None)
        self.persist_config = persist_config
        self.keys = KeyStateMachine(build_keymap(self.config.ui.keymap))
        self.state = SessionState(
            calendar_day=self.today,
            calendar_expanded=self.config.ui.calendar_default_view == 'expanded',
        )
        self.index = DisplayIndex()
        # Ids this session completed, deleted or moved away; dropping them from
        # the selection after a reload is expected and not reported.
        self._settled: Set[str] = set()
        self._saved_cursor = (0, None)
        self._actions = self._action_table()
        self._set_tab(Tab.parse(self.config.ui.default_view) or Tab.TODAY)

    @property
    def today(self) -> dt.date:
        return self.clock().date()

    # -----------------------------
    # Entry points
    # -----------------------------
    def start(self) -> List[Command]:
        return self._finish(self._load_all())

    def handle_key(self, key: str) -> List[Command]:
        return self._finish(self._dispatch_key(key))

    def handle_message(self, msg: object) -> List[Command]:
        return self._finish(self._on_message(msg))

    def handle_tab_click(self, col: int) -> List[Command]:
        for tab, start, end in tab_bar_spans():
            if start <= col < end:
                return self._finish(self.switch_tab(tab))
        return self._finish([])

    def handle_list_click(self, row: int) -> List[Command]:
        """Click on a row of the list area (row 0 is the list title)."""
        return self._finish(self._click_list(row))

    def handle_sidebar_click(self, row: int) -> List[Command]:
        return self._finish(self._click_sidebar(row))

    def handle_wheel(self, delta: int, in_sidebar: bool = False) -> List[Command]:
        st = self.state
        if st.modal.active or st.view in (View.HELP, View.TASK_FORM, View.QUICK_ADD):
            return self._finish([])
        if in_sidebar and st.tab is Tab.PROJECTS:
            self._move_sidebar(delta)
            return self._finish([])
        return self._finish(self._move_main(delta))

    def resize(self, rows: int) -> None:
        """Terminal resize: only the window bounds change, never the cursor."""
        self.state.viewport.resize(rows, self._line_count())
        self.state.sidebar_viewport.resize(rows, len(self.state.sidebar))

    def perform(self, action: str) -> List[Command]:
        handler = self._actions.get(action)
        if handler is None:
            logger.debug("No handler for action %s", action)
            return []
        return handler() or []

    def _finish(self, commands: Optional[List[Command]]) -> List[Command]:
        self._reindex()
        return list(commands or [])

    # -----------------------------
    # Key dispatch
    # -----------------------------
    def _dispatch_key(self, key: str) -> List[Command]:
        st = self.state
        if key == 'c-c':
            st.quit = True
            return []
        st.error = None
        if st.modal.active:
            self.keys.reset()
            return self._modal_key(key)
        if st.view is View.HELP:
            self._pop_view()
            return []
        if st.view is View.TASK_FORM:
            return self._form_key(key)
        if st.view is View.QUICK_ADD:
            return self._quick_add_key(key)
        if st.view is View.SEARCH:
            return self._search_key(key)
        if st.view is View.SECTIONS:
            return self._sections_key(key)
        if st.view is View.CALENDAR and st.pane is Pane.MAIN:
            handled = self._calendar_key(key)
            if handled is not None:
                self.keys.reset()
                return handled
        action = self.keys.feed(key)
        if action is None:
            return []
        return self.perform(action)

    def _action_table(self) -> Dict[str, Callable[[], Optional[List[Command]]]]:
        table: Dict[str, Callable[[], Optional[List[Command]]]] = {
            'quit': self._quit,
            'help': lambda: self._push_view(View.HELP),
            'toggle_hints': self._toggle_hints,
            'up': lambda: self._move_main(-1),
            'down': lambda: self._move_main(1),
            'top': lambda: self._move_main_to(0),
            'bottom': lambda: self._move_main_to(self._list_length() - 1),
            'half_up': lambda: self._move_main(-HALF_PAGE),
            'half_down': lambda: self._move_main(HALF_PAGE),
            'left': lambda: self._focus_pane(Pane.SIDEBAR),
            'right': lambda: self._focus_pane(Pane.MAIN),
            'switch_pane': self._switch_pane,
            'select': self._select,
            'back': self._back,
            'refresh': lambda: self.refresh(force=False),
            'search': self._open_search,
            'command': self._open_command,
            'set_default_view': self._set_default_view,
            'undo': self.undo,
            'add': self._open_add_form,
            'quick_add': self._open_quick_add,
            'edit': self._edit,
            'delete': self._delete,
            'complete': self.complete_items,
            'copy': self.copy_items,
            'toggle_select': self.toggle_select,
            'priority1': lambda: self.set_priority(4),
            'priority2': lambda: self.set_priority(3),
            'priority3': lambda: self.set_priority(2),
            'priority4': lambda: self.set_priority(1),
            'due_today': lambda: self.set_due('today'),
            'due_tomorrow': lambda: self.set_due('tomorrow'),
            'move_prev_day': lambda: self.move_due(-1),
            'move_next_day': lambda: self.move_due(1),
            'reschedule': self._open_reschedule,
            'add_subtask': self._open_subtask,
            'manage_sections': self._open_sections,
            'move_task': self._open_move_to_section,
            'move_to_project': self._open_move_to_project,
            'add_comment': self._open_add_comment,
            'edit_comment': self._open_edit_comment,
            'delete_comment': self._open_delete_comment,
            'new': self._new,
            'toggle_favorite': self.toggle_favorite,
            'completed': self.open_completed,
        }
        for tab in Tab:
            table[f"tab_{tab.value}"] = (lambda t=tab: self.switch_tab(t))
        return table

    def _quit(self) -> None:
        self.state.quit = True

    def _toggle_hints(self) -> None:
        self.state.show_hints = not self.state.show_hints

    # -----------------------------
    # Context helpers
    # -----------------------------
    def base_view(self) -> View:
        """The view whose list is under the cursor, looking through stacked overlays."""
        st = self.state
        for view in [st.view] + list(reversed(st.history)):
            if view not in STACKED_VIEWS:
                return view
        return st.tab.view

    def in_sidebar(self) -> bool:
        st = self.state
        return st.tab is Tab.PROJECTS and st.pane is Pane.SIDEBAR and self.base_view() is View.PROJECT

    def in_label_list(self) -> bool:
        return self.base_view() is View.LABELS and self.state.current_label is None

    def label_list(self) -> List[Label]:
        st = self.state
        if st.labels:
            return list(st.labels)
        names = sorted({n for t in st.all_tasks for n in t.labels}, key=str.lower)
        return [Label(n) for n in names]

    def inbox_project(self) -> Optional[Project]:
        for p in self.state.projects:
            if p.inbox_project:
                return p
        return None

    def context_project(self) -> Optional[Project]:
        base = self.base_view()
        if base is View.INBOX:
            return self.inbox_project()
        if base in (View.PROJECT, View.SECTIONS):
            return self.state.current_project
        return None

    def project_by_id(self, project_id: Optional[str]) -> Optional[Project]:
        for p in self.state.projects:
            if p.id == project_id:
                return p
        return None

    def section_by_id(self, section_id: Optional[str]) -> Optional[Section]:
        for s in self.state.all_sections:
            if s.id == section_id:
                return s
        return None

    def project_sections(self, project_id: Optional[str]) -> List[Section]:
        return sorted(
            (s for s in self.state.all_sections if s.project_id == project_id),
            key=lambda s: s.section_order,
        )

    def task_by_id(self, task_id: Optional[str]) -> Optional[Task]:
        if task_id is None:
            return None
        st = self.state
        for pool in (st.tasks, st.search_results, st.all_tasks):
            for t in pool:
                if t.id == task_id:
                    return t
        return None

    def visible_tasks(self) -> List[Task]:
        return self.state.search_results if self.base_view() is View.SEARCH else self.state.tasks

    def cursor_entry(self):
        if self.in_label_list() or self.base_view() is View.CALENDAR:
            return None
        return self.index.at(self.state.cursor)

    def cursor_task(self) -> Optional[Task]:
        entry = self.cursor_entry()
        if isinstance(entry, ItemLine):
            return self.task_by_id(entry.task_id)
        return None

    def target_task(self) -> Optional[Task]:
        """Item an action applies to: the open detail panel's item, else the cursor item."""
        st = self.state
        if st.show_detail_panel and st.detail_task_id:
            task = self.task_by_id(st.detail_task_id)
            if task is not None:
                return task
        return self.cursor_task()

    # -----------------------------
    # Remote calls
    # -----------------------------
    def _remote(self, fn: Callable[[], object], on_ok: Callable[[object], object], refresh_on_error: bool = False) -> Command:
        """Wrap a blocking call as a command that resolves to one message."""
        async def _run():
            loop = asyncio.get_running_loop()
            try:
                result = await loop.run_in_executor(None, fn)
            except Exception as e:
                logger.exception("Remote call failed")
                return ErrorOccurred(str(e), refresh=refresh_on_error)
            return on_ok(result)
        return _run

    def _mutation(self, fn: Callable[[], object], status: str, refresh: bool = True) -> Command:
        return self._remote(fn, lambda _: ActionDone(status, refresh=refresh), refresh_on_error=True)

    def _load_all(self, quiet: bool = False) -> List[Command]:
        """Full fetch; ``quiet`` keeps the current status message (reload after a mutation)."""
        st = self.state
        st.loading = True
        if not quiet:
            st.status = "Loading..."
        client = self.client
        with_completed = self.base_view() is View.COMPLETED
        since, until = self._completed_range()

        def fetch() -> DataLoaded:
            return DataLoaded(
                all_tasks=client.get_tasks(),
                projects=client.get_projects(),
                all_sections=client.get_sections(),
                labels=client.get_labels(),
                completed=client.get_completed_tasks(since, until) if with_completed else None,
            )
        return [self._remote(fetch, lambda msg: msg)]

    def _completed_range(self):
        until = self.clock()
        return until - dt.timedelta(days=COMPLETED_DAYS), until

    def _load_completed(self) -> List[Command]:
        st = self.state
        st.loading = True
        st.status = "Loading completed items..."
        client = self.client
        since, until = self._completed_range()
        return [self._remote(lambda: DataLoaded(completed=client.get_completed_tasks(since, until)), lambda msg: msg)]

    def _load_project(self, project: Project) -> List[Command]:
        st = self.state
        st.loading = True
        st.status = f"Loading {project.name}..."
        client = self.client
        project_id = project.id

        def fetch() -> DataLoaded:
            return DataLoaded(
                project_id=project_id,
                tasks=client.get_tasks(project_id=project_id),
                sections=client.get_sections(project_id),
            )
        return [self._remote(fetch, lambda msg: msg)]

    def _load_comments(self, task_id: str) -> List[Command]:
        client = self.client
        return [self._remote(lambda: client.get_comments(task_id), lambda cs: CommentsLoaded(task_id, cs))]

    def is_fresh(self) -> bool:
        st = self.state
        if st.last_fetch is None or not st.all_tasks:
            return False
        return self.monotonic() - st.last_fetch < FRESH_SECONDS

    def refresh(self, force: bool = False) -> List[Command]:
        if not force and self.is_fresh() and self.base_view() is View.COMPLETED:
            return self._load_completed()
        if not force and self.is_fresh():
            self._apply_filter()
            self.state.status = "Up to date"
            return []
        return self._load_all()

    # -----------------------------
    # Messages
    # -----------------------------
    def _on_message(self, msg: object) -> List[Command]:
        st = self.state
        if isinstance(msg, DataLoaded):
            return self._on_loaded(msg)
        if isinstance(msg, ErrorOccurred):
            st.loading = False
            st.error = msg.text
            st.status = f"Error: {msg.text}"
            return self._load_all(quiet=True) if msg.refresh else []
        if isinstance(msg, ActionDone):
            st.status = msg.status
            return self._load_all(quiet=True) if msg.refresh else []
        if isinstance(msg, CommentsLoaded):
            st.comments[msg.task_id] = list(msg.comments)
            if msg.status:
                st.status = msg.status
            return []
        if isinstance(msg, BulkDone):
            st.status = msg.status
            self._settled.update(msg.settled)
            if msg.clear_selection:
                st.selection.clear()
            return self._load_all(quiet=True)
        logger.warning("Unhandled message %r", msg)
        return []

    def _on_loaded(self, msg: DataLoaded) -> List[Command]:
        st = self.state
        st.loading = False
        if st.status == "Loading..." or st.status.startswith("Loading "):
            st.status = ""
        if msg.projects is not None:
            st.projects = sorted(msg.projects, key=lambda p: p.child_order)
            if st.current_project is not None:
                st.current_project = self.project_by_id(st.current_project.id)
        if msg.labels is not None:
            st.labels = sorted(msg.labels, key=lambda lb: lb.item_order)
            if st.current_label is not None:
                st.current_label = next((lb for lb in st.labels if lb.name == st.current_label.name), st.current_label)
        if msg.all_sections is not None:
            st.all_sections = list(msg.all_sections)
        if msg.all_tasks is not None:
            st.all_tasks = [t for t in msg.all_tasks if not t.checked and not t.is_deleted]
            st.last_fetch = self.monotonic()
            logger.debug("Loaded %d tasks, %d projects", len(st.all_tasks), len(st.projects))
        if msg.project_id is not None:
            if msg.tasks is not None:
                fresh = [t for t in msg.tasks if not t.checked and not t.is_deleted]
                st.all_tasks = [t for t in st.all_tasks if t.project_id != msg.project_id] + fresh
            if msg.sections is not None:
                st.all_sections = [s for s in st.all_sections if s.project_id != msg.project_id] + list(msg.sections)
            logger.debug("Loaded project %s", msg.project_id)
        if msg.completed is not None:
            st.completed = [t for t in msg.completed if not t.is_deleted]
            logger.debug("Loaded %d completed items", len(st.completed))
        self._prune_selection()
        self._build_sidebar()
        self._apply_filter()
        return []

    def _prune_selection(self) -> None:
        st = self.state
        stale = st.selection - {t.id for t in st.all_tasks} - {t.id for t in st.completed}
        if not stale:
            return
        st.selection -= stale
        unexpected = stale - self._settled
        self._settled -= stale
        logger.debug("Dropped %d selected items no longer loaded", len(stale))
        if unexpected:
            note = f"{len(unexpected)} selected items no longer present"
            st.status = f"{st.status} ({note})" if st.status else note

    # -----------------------------
    # Filtering and indexing
    # -----------------------------
    def _apply_filter(self) -> None:
        """Derive the visible items of the current view from the cached full set."""
        st = self.state
        base = self.base_view()
        now = self.clock()
        today = now.date()
        open_tasks = [t for t in st.all_tasks if not t.checked and not t.is_deleted]
        st.sections = []
        if base in (View.INBOX, View.PROJECT, View.SECTIONS):
            project = self.context_project()
            if project is None:
                st.tasks = []
            else:
                st.tasks = [t for t in open_tasks if t.project_id == project.id]
                st.sections = self.project_sections(project.id)
        elif base is View.TODAY:
            st.tasks = [t for t in open_tasks if is_overdue(t, now) or is_due_today(t, today)]
        elif base is View.UPCOMING:
            st.tasks = [t for t in open_tasks if t.due is not None and t.due.day is not None and t.due.day >= today]
        elif base is View.LABELS:
            if st.current_label is None:
                st.tasks = []
            else:
                st.tasks = sort_bucket(t for t in open_tasks if st.current_label.name in t.labels)
        elif base is View.CALENDAR:
            st.tasks = [t for t in open_tasks if t.due is not None]
        elif base is View.CALENDAR_DAY:
            st.tasks = sort_bucket(t for t in open_tasks if t.due is not None and t.due.day == st.calendar_day)
        elif base is View.COMPLETED:
            st.tasks = list(st.completed)
        elif base is View.SEARCH:
            query = st.search_query.strip().lower()
            if query:
                st.search_results = sort_bucket(
                    t for t in open_tasks
                    if query in t.content.lower() or query in t.description.lower()
                )
            else:
                st.search_results = []

    def _list_length(self) -> int:
        if self.in_label_list():
            return len(self.label_list())
        if self.base_view() is View.CALENDAR:
            return 0
        return len(self.index)

    def _line_count(self) -> int:
        if self.in_label_list():
            return len(self.label_list())
        return len(self.index.lines)

    def _reindex(self) -> None:
        st = self.state
        base = self.base_view()
        if base is View.CALENDAR or self.in_label_list():
            self.index = DisplayIndex()
        else:
            grouping = VIEW_GROUPING.get(base, Grouping.FLAT)
            self.index = build_display_index(self.visible_tasks(), grouping, st.sections, self.clock())

        n = self._list_length()
        pos = st.cursor
        if not self.in_label_list():
            found = self.index.position_of(st.cursor_key)
            if found is not None:
                pos = found
        st.cursor = max(0, min(pos, n - 1)) if n else 0
        self._sync_cursor_key()
        if self.in_label_list():
            line: Optional[int] = st.cursor if n else None
        else:
            line = self.index.line_for(st.cursor)
            if st.cursor == 0 and line is not None:
                # The first position sits under its group header.
                line = 0
        st.viewport.follow(line, self._line_count())
        st.sidebar_viewport.follow(st.sidebar_cursor if st.sidebar else None, len(st.sidebar))

    def _sync_cursor_key(self) -> None:
        st = self.state
        entry = None if self.in_label_list() else self.index.at(st.cursor)
        st.cursor_key = entry.key if entry is not None else None

    # -----------------------------
    # Cursor movement
    # -----------------------------
    def _move_main(self, delta: int) -> List[Command]:
        if self.in_sidebar():
            self._move_sidebar(delta)
            return []
        return self._move_main_to(self.state.cursor + delta)

    def _move_main_to(self, pos: int) -> List[Command]:
        st = self.state
        if self.in_sidebar():
            items = [i for i, it in enumerate(st.sidebar) if it.kind == 'project']
            if items:
                st.sidebar_cursor = items[0] if pos <= 0 else items[-1]
            return []
        n = self._list_length()
        st.cursor = max(0, min(pos, n - 1)) if n else 0
        self._sync_cursor_key()
        return self._follow_detail()

    def _follow_detail(self) -> List[Command]:
        """Keep an open detail panel on the item under the cursor."""
        st = self.state
        if not st.show_detail_panel:
            return []
        task = self.cursor_task()
        if task is None or task.id == st.detail_task_id:
            return []
        st.detail_task_id = task.id
        if task.id in st.comments:
            return []
        return self._load_comments(task.id)

    def _build_sidebar(self) -> None:
        st = self.state
        counts = Counter(t.project_id for t in st.all_tasks if not t.checked)
        projects = [p for p in st.projects if not p.inbox_project]
        favorites = [p for p in projects if p.is_favorite]
        others = [p for p in projects if not p.is_favorite]
        items = [SidebarItem('project', p.id, p.name, counts.get(p.id, 0), True) for p in favorites]
        if favorites and others:
            items.append(SidebarItem('separator'))
        items.extend(SidebarItem('project', p.id, p.name, counts.get(p.id, 0), False) for p in others)
        st.sidebar = items
        if not items:
            st.sidebar_cursor = 0
            return
        st.sidebar_cursor = max(0, min(st.sidebar_cursor, len(items) - 1))
        if items[st.sidebar_cursor].kind == 'separator':
            st.sidebar_cursor += 1

    def _move_sidebar(self, delta: int) -> None:
        """Move the sidebar cursor by ``delta``, stepping over separators."""
        st = self.state
        if not st.sidebar:
            return
        step = 1 if delta > 0 else -1
        cur = st.sidebar_cursor
        for _ in range(abs(delta)):
            nxt = cur + step
            while 0 <= nxt < len(st.sidebar) and st.sidebar[nxt].kind == 'separator':
                nxt += step
            if not 0 <= nxt < len(st.sidebar):
                break
            cur = nxt
        st.sidebar_cursor = cur

    def sidebar_project(self) -> Optional[Project]:
        st = self.state
        if not 0 <= st.sidebar_cursor < len(st.sidebar):
            return None
        item = st.sidebar[st.sidebar_cursor]
        if item.kind != 'project':
            return None
        return self.project_by_id(item.id)

    # -----------------------------
    # Views, tabs and panes
    # -----------------------------
    def _push_view(self, view: View) -> None:
        st = self.state
        if st.view is view:
            return
        st.history.append(st.view)
        st.view = view

    def _pop_view(self) -> None:
        st = self.state
        st.view = st.history.pop() if st.history else st.tab.view

    def _set_tab(self, tab: Tab) -> None:
        st = self.state
        st.tab = tab
        st.view = tab.view
        st.history.clear()
        st.cursor = 0
        st.cursor_key = None
        st.viewport.reset()
        st.current_label = None
        st.show_detail_panel = False
        st.detail_task_id = None
        st.pane = Pane.SIDEBAR if tab is Tab.PROJECTS else Pane.MAIN
        if tab is Tab.CALENDAR:
            st.calendar_day = self.today

    def switch_tab(self, tab: Tab) -> List[Command]:
        st = self.state
        if st.view in OVERLAY_VIEWS or st.modal.active:
            return []
        self._set_tab(tab)
        if st.last_fetch is None:
            return [] if st.loading else self._load_all()
        self._apply_filter()
        return []

    def open_completed(self) -> List[Command]:
        """Show recently completed items, newest first."""
        st = self.state
        if st.view in OVERLAY_VIEWS or st.modal.active or st.view is View.COMPLETED:
            return []
        self._push_view(View.COMPLETED)
        st.pane = Pane.MAIN
        st.cursor = 0
        st.cursor_key = None
        st.viewport.reset()
        self._apply_filter()
        return self._load_completed()

    def _focus_pane(self, pane: Pane) -> None:
        st = self.state
        if st.tab is Tab.PROJECTS and st.view is View.PROJECT:
            if pane is Pane.MAIN and st.current_project is None:
                return
            st.pane = pane

    def _switch_pane(self) -> List[Command]:
        st = self.state
        if st.show_detail_panel:
            self._close_detail()
            return []
        if st.tab is Tab.PROJECTS and st.view is View.PROJECT:
            self._focus_pane(Pane.MAIN if st.pane is Pane.SIDEBAR else Pane.SIDEBAR)
        return []

    def _open_project(self, project: Project) -> List[Command]:
        st = self.state
        st.current_project = project
        st.pane = Pane.MAIN
        st.view = View.PROJECT
        st.cursor = 0
        st.cursor_key = None
        st.viewport.reset()
        self._apply_filter()
        if self.is_fresh():
            return []
        return self._load_project(project)

    def _select(self) -> List[Command]:
        st = self.state
        if self.in_sidebar():
            project = self.sidebar_project()
            return self._open_project(project) if project is not None else []
        if self.in_label_list():
            labels = self.label_list()
            if not labels:
                return []
            st.current_label = labels[min(st.cursor, len(labels) - 1)]
            st.cursor = 0
            st.cursor_key = None
            st.viewport.reset()
            self._apply_filter()
            return []
        entry = self.cursor_entry()
        if not isinstance(entry, ItemLine):
            # Empty-section placeholders are not items.
            return []
        task = self.task_by_id(entry.task_id)
        return self._open_detail(task) if task is not None else []

    def _open_detail(self, task: Task) -> List[Command]:
        st = self.state
        st.detail_task_id = task.id
        st.show_detail_panel = True
        self._push_view(View.TASK_DETAIL)
        if task.id in st.comments:
            return []
        return self._load_comments(task.id)

    def _close_detail(self) -> None:
        st = self.state
        st.show_detail_panel = False
        st.detail_task_id = None
        if st.view is View.TASK_DETAIL:
            self._pop_view()

    def _back(self) -> List[Command]:
        st = self.state
        if st.show_detail_panel:
            self._close_detail()
            return []
        if st.view in OVERLAY_VIEWS or st.view in (View.CALENDAR_DAY, View.SECTIONS, View.COMPLETED):
            if st.view is View.TASK_FORM:
                st.form = None
            if st.view is View.COMPLETED:
                st.cursor, st.cursor_key = 0, None
                if st.tab is Tab.PROJECTS and st.current_project is None:
                    st.pane = Pane.SIDEBAR
            self._pop_view()
            self._apply_filter()
            return []
        if st.view is View.PROJECT and st.tab is Tab.PROJECTS and st.pane is Pane.MAIN:
            st.current_project = None
            st.pane = Pane.SIDEBAR
            st.cursor = 0
            st.cursor_key = None
            self._apply_filter()
            return []
        if st.view is View.LABELS and st.current_label is not None:
            labels = [lb.name for lb in self.label_list()]
            name = st.current_label.name
            st.current_label = None
            st.cursor = labels.index(name) if name in labels else 0
            st.cursor_key = None
            self._apply_filter()
        return []

    # -----------------------------
    # Pointer input
    # -----------------------------
    def _click_list(self, row: int) -> List[Command]:
        st = self.state
        if st.modal.active or st.view in (View.HELP, View.TASK_FORM, View.QUICK_ADD):
            return []
        if st.view is View.SECTIONS or self.base_view() is View.CALENDAR:
            return []
        line = st.viewport.line_at_row(row)
        if self.in_label_list():
            pos: Optional[int] = line if 0 <= line < len(self.label_list()) else None
        else:
            pos = self.index.position_for_line(line)
        if pos is None:
            return []
        if st.tab is Tab.PROJECTS:
            st.pane = Pane.MAIN
        if pos == st.cursor:
            return self._select()
        st.cursor = pos
        self._sync_cursor_key()
        return self._follow_detail()

    def _click_sidebar(self, row: int) -> List[Command]:
        st = self.state
        if st.tab is not Tab.PROJECTS or st.modal.active or st.view in OVERLAY_VIEWS:
            return []
        i = st.sidebar_viewport.line_at_row(row)
        if not 0 <= i < len(st.sidebar) or st.sidebar[i].kind != 'project':
            return []
        st.sidebar_cursor = i
        st.pane = Pane.SIDEBAR
        project = self.sidebar_project()
        return self._open_project(project) if project is not None else []
