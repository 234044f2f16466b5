"""Formatted-text fragments for every region of the screen.

Functions here only read the session; they are called by the
prompt_toolkit controls on every redraw.
"""
from __future__ import annotations

import calendar
import datetime as dt
from typing import Dict, List, Optional, Tuple

from prompt_toolkit.utils import get_cwidth

from .display import BlankLine, HeaderLine, ItemLine, PlaceholderLine
from .models import Task, due_display, is_overdue
from .state import FORM_FIELDS, MODE_PROMPTS, CONFIRM_MODES, PICKER_MODES, Pane, Tab, UIMode, View

Fragments = List[Tuple[str, str]]

BASE_STYLE: Dict[str, str] = {
    'tab': '#bcbcbc bg:#262626',
    'tab.active': 'bold #1c1c1c bg:#ffd75f',
    'title': 'bold #ffd75f',
    'header': 'bold #87afff',
    'item': '#f0f0f0',
    'item.cursor': 'reverse',
    'item.selected': 'bold #87ff5f',
    'item.muted': '#808080',
    'placeholder': 'italic #808080',
    'priority.1': 'bold #ff5f5f',
    'priority.2': '#ffaf5f',
    'priority.3': '#5fafff',
    'priority.4': '#808080',
    'due.overdue': 'ansired bold',
    'due.today': 'ansigreen bold',
    'due.future': '#87d7ff',
    'label': '#d787ff',
    'sidebar': 'bg:#1c1c1c #d0d0d0',
    'sidebar.cursor': 'reverse',
    'sidebar.favorite': '#ffd75f',
    'sidebar.count': '#808080',
    'detail': 'bg:#202020 #ffffff',
    'detail.key': '#ffd787',
    'detail.comment': '#d0d0d0',
    'status': 'reverse',
    'status.error': 'bold #ffffff bg:#af0000',
    'hint': '#5fd7af',
    'frame': 'bg:#1c1c1c #f0f0f0',
    'field': '#d7d7d7',
    'field.cursor': 'bold #ffffff bg:#444444',
    'calendar.day': '#d0d0d0',
    'calendar.today': 'bold ansigreen',
    'calendar.cursor': 'reverse',
    'calendar.busy': '#ffd75f',
}

PRIORITY_MARK = {4: "!!!", 3: "!! ", 2: "!  ", 1: "   "}


def _cls(name: str) -> str:
    return f"class:{name}"


def _width(text: str) -> int:
    return sum(get_cwidth(ch) for ch in text)


def _truncate(text: str, maxlen: int) -> str:
    text = (text or "").replace("\n", " ")
    if maxlen <= 0:
        return ""
    if _width(text) <= maxlen:
        return text
    out = []
    used = 0
    for ch in text:
        w = get_cwidth(ch)
        if used + w > maxlen - 1:
            break
        out.append(ch)
        used += w
    return "".join(out) + "…"


# -----------------------------
# Tab bar and titles
# -----------------------------
def tab_bar(session) -> Fragments:
    frags: Fragments = []
    for n, tab in enumerate(Tab, start=1):
        if frags:
            frags.append(("", " "))
        style = 'tab.active' if tab is session.state.tab else 'tab'
        frags.append((_cls(style), f" {n} {tab.title} "))
    return frags


def list_title(session) -> str:
    st = session.state
    base = session.base_view()
    if base in (View.INBOX, View.PROJECT, View.SECTIONS):
        project = session.context_project()
        if project is None:
            return "Select a project"
        return project.name
    if base is View.LABELS:
        return f"@{st.current_label.name}" if st.current_label else "Labels"
    if base is View.CALENDAR_DAY:
        return st.calendar_day.strftime("%A, %B %d")
    if base is View.SEARCH:
        return f"Search: {st.search_query}_"
    if base is View.COMPLETED:
        return "Completed"
    return base.value.replace('_', ' ').title()


# -----------------------------
# Item list
# -----------------------------
def _item_fragments(session, task: Task, depth: int, is_cursor: bool, width: int) -> Fragments:
    st = session.state
    now = session.clock()
    selected = task.id in st.selection
    base = 'item.cursor' if is_cursor else ('item.selected' if selected else 'item')
    mark = "●" if selected else " "
    box = "[x]" if task.checked else "[ ]"
    frags: Fragments = [(_cls(base), f"{'  ' * depth}{mark} {box} ")]
    prio_style = base if is_cursor else f"priority.{5 - task.priority}"
    frags.append((_cls(prio_style), PRIORITY_MARK.get(task.priority, "   ") + " "))
    due = due_display(task, now.date())
    if task.checked and task.completed_moment is not None:
        due = f"done {task.completed_moment:%H:%M}"
    tail = ""
    if task.labels:
        tail += "  " + " ".join(f"@{n}" for n in task.labels)
    room = max(8, width - _width(frags[0][1]) - 4 - _width(due) - _width(tail) - 2)
    frags.append((_cls(base), _truncate(task.content, room)))
    if tail:
        frags.append((_cls(base if is_cursor else 'label'), tail))
    if due:
        if is_cursor:
            due_style = base
        elif task.checked:
            due_style = 'item.muted'
        elif is_overdue(task, now):
            due_style = 'due.overdue'
        elif task.due.day == now.date():
            due_style = 'due.today'
        else:
            due_style = 'due.future'
        frags.append((_cls(due_style), f"  {due}"))
    return frags


def _label_list_fragments(session) -> Fragments:
    st = session.state
    labels = session.label_list()
    counts: Dict[str, int] = {}
    for t in st.all_tasks:
        for n in t.labels:
            counts[n] = counts.get(n, 0) + 1
    frags: Fragments = []
    if not labels:
        return [(_cls('item.muted'), "No labels\n")]
    for i in st.viewport.window(len(labels)):
        label = labels[i]
        style = 'item.cursor' if i == st.cursor else 'item'
        frags.append((_cls(style), f"  @{label.name}"))
        frags.append((_cls('sidebar.count'), f"  ({counts.get(label.name, 0)})\n"))
    return frags


def list_fragments(session, width: int = 100) -> Fragments:
    """Title row followed by the visible window of display lines."""
    st = session.state
    frags: Fragments = [(_cls('title'), f" {list_title(session)}\n")]
    if session.base_view() is View.CALENDAR:
        return frags + calendar_fragments(session)
    if session.in_label_list():
        return frags + _label_list_fragments(session)
    index = session.index
    if not index.lines:
        text = "Loading..." if st.loading else "No tasks"
        frags.append((_cls('item.muted'), f"  {text}\n"))
        return frags
    tasks = session.visible_tasks()
    cursor_line = index.line_for(st.cursor)
    for line_no in st.viewport.window(len(index.lines)):
        line = index.lines[line_no]
        is_cursor = line_no == cursor_line and st.pane is Pane.MAIN
        if isinstance(line, ItemLine):
            frags.extend(_item_fragments(session, tasks[line.index], line.depth, is_cursor, width))
        elif isinstance(line, HeaderLine):
            frags.append((_cls('header'), f" {line.label}"))
        elif isinstance(line, PlaceholderLine):
            style = 'item.cursor' if is_cursor else 'placeholder'
            frags.append((_cls('header'), f" {line.label}"))
            frags.append((_cls(style), "  (empty, press a to add)"))
        elif isinstance(line, BlankLine):
            pass
        frags.append(("", "\n"))
    return frags


# -----------------------------
# Sidebar and detail
# -----------------------------
def sidebar_fragments(session, width: int = 28) -> Fragments:
    st = session.state
    frags: Fragments = [(_cls('title'), " Projects\n")]
    focused = st.pane is Pane.SIDEBAR
    for i in st.sidebar_viewport.window(len(st.sidebar)):
        item = st.sidebar[i]
        if item.kind == 'separator':
            frags.append((_cls('sidebar.count'), " " + "─" * (width - 2) + "\n"))
            continue
        style = 'sidebar.cursor' if (i == st.sidebar_cursor and focused) else 'sidebar'
        star = "★ " if item.favorite else "  "
        count = str(item.count) if item.count else ""
        name = _truncate(item.name, width - len(star) - len(count) - 3)
        frags.append((_cls('sidebar.favorite' if item.favorite and style == 'sidebar' else style), star))
        frags.append((_cls(style), name))
        frags.append((_cls('sidebar.count'), " " * max(1, width - _width(star + name) - len(count) - 1) + count + "\n"))
    if not st.sidebar:
        frags.append((_cls('item.muted'), "  No projects\n"))
    return frags


def detail_fragments(session) -> Fragments:
    st = session.state
    task = session.task_by_id(st.detail_task_id)
    if task is None:
        return [(_cls('item.muted'), "No task selected")]
    project = session.project_by_id(task.project_id)
    section = session.section_by_id(task.section_id)
    rows = [
        ("Project", project.name if project else "-"),
        ("Section", section.name if section else "-"),
        ("Priority", task.priority_label),
        ("Due", (task.due.string or task.due.date) if task.due else "-"),
        ("Labels", ", ".join(task.labels) or "-"),
    ]
    if task.due is not None and task.due.is_recurring:
        rows.append(("Repeats", "yes"))
    frags: Fragments = [(_cls('title'), f"{task.content}\n\n")]
    for key, value in rows:
        frags.append((_cls('detail.key'), f"{key:<9}"))
        frags.append(("", f" {value}\n"))
    if task.description:
        frags.append(("", "\n" + task.description + "\n"))
    comments = st.comments.get(task.id)
    frags.append((_cls('header'), "\nComments\n"))
    if comments is None:
        frags.append((_cls('item.muted'), "  Loading...\n"))
    elif not comments:
        frags.append((_cls('item.muted'), "  None\n"))
    else:
        for c in comments:
            stamp = c.posted_at[:16].replace('T', ' ')
            frags.append((_cls('detail.key'), f"  {stamp}\n"))
            frags.append((_cls('detail.comment'), f"  {c.content}\n"))
    frags.append((_cls('hint'), "\nA comment  E edit last  X delete last  e edit  esc close"))
    return frags


# -----------------------------
# Calendar
# -----------------------------
def calendar_fragments(session) -> Fragments:
    st = session.state
    day = st.calendar_day
    today = session.today
    counts: Dict[dt.date, List[Task]] = {}
    for t in st.tasks:
        d = t.due.day if t.due else None
        if d is not None and d.year == day.year and d.month == day.month:
            counts.setdefault(d, []).append(t)
    frags: Fragments = [(_cls('header'), f" {day.strftime('%B %Y')}\n")]
    cell = 14 if st.calendar_expanded else 5
    frags.append((_cls('item.muted'), " " + "".join(f"{name:<{cell}}" for name in calendar.day_abbr) + "\n"))
    for week in calendar.Calendar().monthdatescalendar(day.year, day.month):
        lines = 3 if st.calendar_expanded else 1
        for row in range(lines):
            frags.append(("", " "))
            for d in week:
                items = counts.get(d, [])
                if d.month != day.month:
                    frags.append(("", " " * cell))
                    continue
                if row == 0:
                    text = f"{d.day:>2}{'*' if items and not st.calendar_expanded else ' '}"
                    if st.calendar_expanded and items:
                        text += f"({len(items)})"
                else:
                    text = _truncate(items[row - 1].content, cell - 1) if len(items) >= row else ""
                style = 'calendar.day'
                if d == day:
                    style = 'calendar.cursor'
                elif d == today:
                    style = 'calendar.today'
                elif items:
                    style = 'calendar.busy'
                frags.append((_cls(style), text.ljust(cell - 1)))
                frags.append(("", " "))
            frags.append(("", "\n"))
    due = counts.get(day, [])
    frags.append((_cls('header'), f"\n {len(due)} due on {day.isoformat()}\n"))
    for t in due[:5]:
        frags.append(("", f"   {t.priority_label} {t.content}\n"))
    return frags


# -----------------------------
# Overlays
# -----------------------------
def modal_fragments(session) -> Fragments:
    st = session.state
    m = st.modal
    prompt = MODE_PROMPTS.get(m.mode, "")
    if m.mode in CONFIRM_MODES:
        return [(_cls('field'), f"{prompt} '{m.target_name}'? "), (_cls('hint'), "(y/n)")]
    if m.mode in PICKER_MODES:
        frags: Fragments = []
        if m.mode is UIMode.MOVE_TO_PROJECT:
            frags.append((_cls('field'), f"Filter: {m.text}_\n\n"))
        options = session.picker_options()
        for i, opt in enumerate(options):
            style = 'field.cursor' if i == m.cursor else 'field'
            frags.append((_cls(style), "    " * opt.indent + opt.label + "\n"))
        if not options:
            frags.append((_cls('item.muted'), "No matches\n"))
        frags.append((_cls('hint'), "\nenter select  esc cancel"))
        return frags
    if m.mode is UIMode.COMMAND:
        return [(_cls('field'), f":{m.text}_")]
    return [(_cls('field'), f"{prompt}: "), (_cls('field.cursor'), f"{m.text}_"), (_cls('hint'), "\n\nenter save  esc cancel")]


def form_fragments(session) -> Fragments:
    form = session.state.form
    if form is None:
        return []
    labels = {
        'content': "Task",
        'description': "Description",
        'due_string': "Due",
        'priority': "Priority",
        'labels': "Labels",
    }
    frags: Fragments = []
    where = form.project_name or "Inbox"
    if form.section_name:
        where += f" / {form.section_name}"
    frags.append((_cls('title'), f"{'Edit task' if form.editing else 'New task'} in {where}\n\n"))
    for i, name in enumerate(FORM_FIELDS):
        focused = i == form.focus
        if name == 'priority':
            value = f"P{5 - form.priority}  (1-4, h/l)"
        else:
            value = getattr(form, name)
        frags.append((_cls('detail.key'), f"{labels[name]:<12}"))
        frags.append((_cls('field.cursor' if focused else 'field'), f"{value}{'_' if focused and name != 'priority' else ''}\n"))
    frags.append((_cls('hint'), "\ntab next field  enter save  esc cancel"))
    return frags


def quick_add_fragments(session) -> Fragments:
    project = session.context_project()
    hint = f" (into {project.name})" if project is not None and not project.inbox_project else ""
    return [
        (_cls('field'), f"Quick add{hint}: "),
        (_cls('field.cursor'), f"{session.state.quick_add_text}_"),
        (_cls('hint'), "\n\nNatural language: 'Call mom tomorrow 5pm #Home @phone p1'"),
    ]


def sections_fragments(session) -> Fragments:
    st = session.state
    project = session.context_project()
    sections = session.project_sections(project.id) if project else []
    frags: Fragments = [(_cls('title'), f"Sections of {project.name if project else '-'}\n\n")]
    for i, s in enumerate(sections):
        style = 'field.cursor' if i == st.section_cursor else 'field'
        frags.append((_cls(style), f"  {s.name}\n"))
    if not sections:
        frags.append((_cls('item.muted'), "  No sections\n"))
    frags.append((_cls('hint'), "\na add  e rename  d delete  J/K reorder  esc back"))
    return frags


HELP_LINES = [
    "Navigation",
    "  j/k, arrows      Move          gg / G     Top / bottom",
    "  ctrl+u / ctrl+d  Half page     tab        Switch pane",
    "  enter            Open          esc        Back",
    "  1-6              Tabs          i t u c p  Inbox Today Upcoming Calendar Projects",
    "  V                Completed items of the last 30 days (x reopens)",
    "",
    "Items",
    "  a  Add            Q  Quick add     e  Edit        s  Subtask",
    "  x  Complete       dd Delete        yy Copy        space  Select",
    "  ! @ # $  Priority P1..P4           < >  Due today / tomorrow",
    "  H / L  Due -1 / +1 day             R  Reschedule",
    "  m  Move to section                 M  Move to project",
    "  A / E / X  Add / edit / delete comment",
    "  ctrl+z  Undo complete or reopen",
    "",
    "Projects, labels, sections",
    "  n  New   e  Rename   d  Delete   f  Favorite   S  Sections",
    "",
    "Calendar",
    "  h/l day  j/k week  [ ] month  t today  v compact/expanded  enter day",
    "",
    "General",
    "  /  Search   :  Command   r  Refresh   D  Default view",
    "  f1 Toggle hints   ?  Help   q  Quit",
    "",
    "Press any key to close.",
]


def help_fragments(session) -> Fragments:
    return [("", "\n".join(HELP_LINES))]


# -----------------------------
# Status and hints
# -----------------------------
def _view_hints(session) -> str:
    st = session.state
    if st.view is View.SEARCH:
        return "type to search  ↑/↓ move  enter open  esc close"
    if st.view is View.CALENDAR:
        return "h/l day  j/k week  [ ] month  t today  v view  enter open"
    if session.in_sidebar():
        return "j/k move  enter open  n new  e rename  d delete  f favorite  tab pane"
    if session.in_label_list():
        return "j/k move  enter open  n new  e rename  d delete"
    if session.base_view() is View.COMPLETED:
        return "x reopen  ctrl+z undo  r refresh  enter open  esc back"
    return "x complete  a add  e edit  dd delete  yy copy  space select  ? help"


def status_fragments(session) -> Fragments:
    st = session.state
    style = 'status.error' if st.error else 'status'
    parts = [st.status or ("Loading..." if st.loading else "")]
    if st.selection:
        parts.append(f"[{len(st.selection)} selected]")
    frags: Fragments = [(_cls(style), " " + "  ".join(p for p in parts if p) + " ")]
    return frags


def hints_fragments(session) -> Fragments:
    if not session.state.show_hints:
        return []
    return [(_cls('hint'), " " + _view_hints(session))]


def overlay_title(session) -> Optional[str]:
    st = session.state
    if st.modal.active:
        return MODE_PROMPTS.get(st.modal.mode, "")
    return {
        View.TASK_FORM: "Task",
        View.QUICK_ADD: "Quick add",
        View.SECTIONS: "Sections",
        View.HELP: "Help",
    }.get(st.view)
