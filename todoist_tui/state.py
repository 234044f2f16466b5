"""Session state record, UI modes and the messages delivered back to the loop."""
from __future__ import annotations

import datetime as dt
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Set, Tuple

from .models import Comment, Label, Project, Section, Task
from .viewport import Viewport


class View(Enum):
    INBOX = 'inbox'
    TODAY = 'today'
    UPCOMING = 'upcoming'
    LABELS = 'labels'
    CALENDAR = 'calendar'
    CALENDAR_DAY = 'calendar_day'
    PROJECT = 'project'
    SECTIONS = 'sections'
    TASK_DETAIL = 'task_detail'
    TASK_FORM = 'task_form'
    QUICK_ADD = 'quick_add'
    SEARCH = 'search'
    HELP = 'help'
    COMPLETED = 'completed'


OVERLAY_VIEWS = frozenset({View.TASK_DETAIL, View.TASK_FORM, View.QUICK_ADD, View.SEARCH, View.HELP})


class Tab(Enum):
    INBOX = 'inbox'
    TODAY = 'today'
    UPCOMING = 'upcoming'
    LABELS = 'labels'
    CALENDAR = 'calendar'
    PROJECTS = 'projects'

    @property
    def title(self) -> str:
        return self.value.capitalize()

    @property
    def view(self) -> View:
        return TAB_VIEWS[self]

    @classmethod
    def parse(cls, name: Optional[str]) -> Optional["Tab"]:
        name = (name or '').strip().lower()
        for tab in cls:
            if tab.value == name or (name and tab.value.startswith(name)):
                return tab
        return None


TAB_VIEWS: Dict[Tab, View] = {
    Tab.INBOX: View.INBOX,
    Tab.TODAY: View.TODAY,
    Tab.UPCOMING: View.UPCOMING,
    Tab.LABELS: View.LABELS,
    Tab.CALENDAR: View.CALENDAR,
    Tab.PROJECTS: View.PROJECT,
}


def tab_bar_spans() -> List[Tuple[Tab, int, int]]:
    """Column range [start, end) of each tab label as drawn in the tab bar."""
    spans = []
    col = 0
    for n, tab in enumerate(Tab, start=1):
        label = f" {n} {tab.title} "
        spans.append((tab, col, col + len(label)))
        col += len(label) + 1
    return spans


class Pane(Enum):
    SIDEBAR = 'sidebar'
    MAIN = 'main'


class UIMode(Enum):
    NORMAL = 'normal'
    PROJECT_INPUT = 'project_input'
    PROJECT_EDIT = 'project_edit'
    PROJECT_DELETE = 'project_delete'
    LABEL_INPUT = 'label_input'
    LABEL_EDIT = 'label_edit'
    LABEL_DELETE = 'label_delete'
    SECTION_INPUT = 'section_input'
    SECTION_EDIT = 'section_edit'
    SECTION_DELETE = 'section_delete'
    SUBTASK_INPUT = 'subtask_input'
    COMMENT_INPUT = 'comment_input'
    COMMENT_EDIT = 'comment_edit'
    COMMENT_DELETE = 'comment_delete'
    MOVE_TO_SECTION = 'move_to_section'
    MOVE_TO_PROJECT = 'move_to_project'
    RESCHEDULE = 'reschedule'
    COMMAND = 'command'


TEXT_MODES = frozenset({
    UIMode.PROJECT_INPUT, UIMode.PROJECT_EDIT,
    UIMode.LABEL_INPUT, UIMode.LABEL_EDIT,
    UIMode.SECTION_INPUT, UIMode.SECTION_EDIT,
    UIMode.SUBTASK_INPUT, UIMode.COMMENT_INPUT, UIMode.COMMENT_EDIT,
    UIMode.COMMAND,
})
CONFIRM_MODES = frozenset({UIMode.PROJECT_DELETE, UIMode.LABEL_DELETE, UIMode.SECTION_DELETE, UIMode.COMMENT_DELETE})
PICKER_MODES = frozenset({UIMode.MOVE_TO_SECTION, UIMode.MOVE_TO_PROJECT, UIMode.RESCHEDULE})

MODE_PROMPTS: Dict[UIMode, str] = {
    UIMode.PROJECT_INPUT: "New project",
    UIMode.PROJECT_EDIT: "Rename project",
    UIMode.LABEL_INPUT: "New label",
    UIMode.LABEL_EDIT: "Rename label",
    UIMode.SECTION_INPUT: "New section",
    UIMode.SECTION_EDIT: "Rename section",
    UIMode.SUBTASK_INPUT: "New subtask",
    UIMode.COMMENT_INPUT: "Comment",
    UIMode.COMMENT_EDIT: "Edit comment",
    UIMode.COMMAND: ":",
    UIMode.PROJECT_DELETE: "Delete project",
    UIMode.LABEL_DELETE: "Delete label",
    UIMode.SECTION_DELETE: "Delete section",
    UIMode.COMMENT_DELETE: "Delete comment",
    UIMode.MOVE_TO_SECTION: "Move to section",
    UIMode.MOVE_TO_PROJECT: "Move to project",
    UIMode.RESCHEDULE: "Reschedule",
}


@dataclass(frozen=True)
class PickerOption:
    label: str
    value: str = ""
    project_id: str = ""
    is_section: bool = False
    indent: int = 0


@dataclass
class Modal:
    """The single active modal sub-state and the data it owns."""
    mode: UIMode = UIMode.NORMAL
    text: str = ""
    target_id: Optional[str] = None
    target_name: str = ""
    owner_id: Optional[str] = None   # project of a section, item of a comment
    options: List[PickerOption] = field(default_factory=list)
    cursor: int = 0

    @property
    def active(self) -> bool:
        return self.mode is not UIMode.NORMAL


FORM_FIELDS = ('content', 'description', 'due_string', 'priority', 'labels')


@dataclass
class TaskForm:
    content: str = ""
    description: str = ""
    due_string: str = ""
    priority: int = 1
    labels: str = ""                 # comma separated while editing
    project_id: str = ""
    project_name: str = ""
    section_id: Optional[str] = None
    section_name: str = ""
    parent_id: Optional[str] = None
    task_id: Optional[str] = None    # set when editing an existing item
    original_due: str = ""
    focus: int = 0

    @property
    def editing(self) -> bool:
        return self.task_id is not None

    @property
    def focused_field(self) -> str:
        return FORM_FIELDS[self.focus]

    def label_list(self) -> List[str]:
        return [x.strip() for x in self.labels.split(',') if x.strip()]


@dataclass(frozen=True)
class LastAction:
    op: str          # 'complete' or 'uncomplete'
    task_id: str


@dataclass(frozen=True)
class SidebarItem:
    kind: str        # 'project' or 'separator'
    id: str = ""
    name: str = ""
    count: int = 0
    favorite: bool = False


@dataclass
class SessionState:
    view: View = View.TODAY
    history: List[View] = field(default_factory=list)
    tab: Tab = Tab.TODAY
    pane: Pane = Pane.MAIN
    modal: Modal = field(default_factory=Modal)
    form: Optional[TaskForm] = None

    cursor: int = 0
    cursor_key: Optional[Tuple[str, str]] = None
    sidebar_cursor: int = 0
    section_cursor: int = 0
    viewport: Viewport = field(default_factory=Viewport)
    sidebar_viewport: Viewport = field(default_factory=Viewport)

    tasks: List[Task] = field(default_factory=list)
    all_tasks: List[Task] = field(default_factory=list)
    completed: List[Task] = field(default_factory=list)
    projects: List[Project] = field(default_factory=list)
    sections: List[Section] = field(default_factory=list)
    all_sections: List[Section] = field(default_factory=list)
    labels: List[Label] = field(default_factory=list)
    comments: Dict[str, List[Comment]] = field(default_factory=dict)
    sidebar: List[SidebarItem] = field(default_factory=list)

    current_project: Optional[Project] = None
    current_label: Optional[Label] = None
    detail_task_id: Optional[str] = None
    show_detail_panel: bool = False
    search_query: str = ""
    quick_add_text: str = ""
    search_results: List[Task] = field(default_factory=list)
    calendar_day: dt.date = field(default_factory=dt.date.today)
    calendar_expanded: bool = False

    selection: Set[str] = field(default_factory=set)
    last_action: Optional[LastAction] = None
    last_fetch: Optional[float] = None
    loading: bool = False
    status: str = ""
    error: Optional[str] = None
    show_hints: bool = True
    quit: bool = False

    @property
    def previous_view(self) -> View:
        return self.history[-1] if self.history else self.tab.view


# -----------------------------
# Messages
# -----------------------------
@dataclass(frozen=True)
class DataLoaded:
    all_tasks: Optional[List[Task]] = None
    projects: Optional[List[Project]] = None
    all_sections: Optional[List[Section]] = None
    labels: Optional[List[Label]] = None
    project_id: Optional[str] = None
    tasks: Optional[List[Task]] = None
    sections: Optional[List[Section]] = None
    completed: Optional[List[Task]] = None


@dataclass(frozen=True)
class ErrorOccurred:
    text: str
    refresh: bool = False


@dataclass(frozen=True)
class ActionDone:
    status: str
    refresh: bool = True


@dataclass(frozen=True)
class CommentsLoaded:
    task_id: str
    comments: List[Comment]
    status: str = ""


@dataclass(frozen=True)
class BulkDone:
    status: str
    succeeded: int
    failed: int
    clear_selection: bool = False
    settled: Tuple[str, ...] = ()
