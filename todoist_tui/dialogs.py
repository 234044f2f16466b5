"""Modal sub-states, the task form, quick add, search, sections, command line and calendar keys.

While a modal is active it owns every key until it is submitted or
cancelled. Text modals edit ``Modal.text``; confirmations accept ``y``/``n``;
pickers move a cursor over ``Modal.options``.
"""
from __future__ import annotations

import calendar
import datetime as dt
import logging
from typing import List, Optional

from .actions import RESCHEDULE_OPTIONS
from .config import default_config_path, update_default_view
from .display import ItemLine, PlaceholderLine
from .models import Task
from .state import (
    CONFIRM_MODES,
    OVERLAY_VIEWS,
    PICKER_MODES,
    ActionDone,
    CommentsLoaded,
    Modal,
    Pane,
    PickerOption,
    Tab,
    TaskForm,
    UIMode,
    View,
)

logger = logging.getLogger('todoist_tui')

GOTO_ALIASES = {
    'inbox': Tab.INBOX, 'i': Tab.INBOX,
    'today': Tab.TODAY, 't': Tab.TODAY,
    'upcoming': Tab.UPCOMING, 'u': Tab.UPCOMING,
    'projects': Tab.PROJECTS, 'p': Tab.PROJECTS,
    'labels': Tab.LABELS, 'l': Tab.LABELS,
    'calendar': Tab.CALENDAR, 'c': Tab.CALENDAR, 'cal': Tab.CALENDAR,
}
COMMAND_NAMES = ('goto', 'add', 'complete', 'delete', 'project', 'completed', 'refresh', 'help', 'quit', 'commands')

CALENDAR_STEPS = {'h': -1, 'left': -1, 'l': 1, 'right': 1, 'j': 7, 'down': 7, 'k': -7, 'up': -7}


def edit_text(text: str, key: str) -> Optional[str]:
    """Apply one key to a single-line input; None when the key is not an edit."""
    if key == 'backspace':
        return text[:-1]
    if key == 'space':
        return text + ' '
    if key == 'c-u':
        return ''
    if key == 'c-w':
        return text.rstrip().rpartition(' ')[0]
    if len(key) == 1 and key.isprintable():
        return text + key
    return None


def add_months(day: dt.date, months: int) -> dt.date:
    years, month0 = divmod(day.month - 1 + months, 12)
    year = day.year + years
    last = calendar.monthrange(year, month0 + 1)[1]
    return day.replace(year=year, month=month0 + 1, day=min(day.day, last))


class DialogsMixin:
    """Mixed into ``Session``; relies on its state, client and command helpers."""

    # -----------------------------
    # Modal plumbing
    # -----------------------------
    def _open_modal(self, mode: UIMode, **data) -> None:
        self.state.modal = Modal(mode=mode, **data)

    def _close_modal(self) -> None:
        self.state.modal = Modal()

    def _modal_key(self, key: str):
        st = self.state
        mode = st.modal.mode
        if mode in CONFIRM_MODES:
            if key in ('y', 'Y'):
                return self._confirm()
            if key in ('n', 'N', 'escape'):
                self._close_modal()
                st.status = "Cancelled"
            return []
        if mode in PICKER_MODES:
            return self._picker_key(key)
        if key == 'escape':
            self._close_modal()
            return []
        if key == 'enter':
            return self._submit_text()
        text = edit_text(st.modal.text, key)
        if text is not None:
            st.modal.text = text
        return []

    def _comment_call(self, task_id: str, fn, status: str):
        client = self.client

        def call():
            fn()
            return client.get_comments(task_id)
        return self._remote(call, lambda comments: CommentsLoaded(task_id, comments, status))

    def _submit_text(self):
        st = self.state
        m = st.modal
        text = m.text.strip()
        self._close_modal()
        if m.mode is UIMode.COMMAND:
            return self._run_command(text)
        if not text:
            return []
        client = self.client
        target_id = m.target_id
        owner_id = m.owner_id
        if m.mode is UIMode.PROJECT_INPUT:
            return [self._mutation(lambda: client.create_project(text), f"Created project: {text}")]
        if m.mode is UIMode.PROJECT_EDIT:
            return [self._mutation(lambda: client.update_project(target_id, name=text), f"Renamed project to {text}")]
        if m.mode is UIMode.LABEL_INPUT:
            return [self._mutation(lambda: client.create_label(text), f"Created label: {text}")]
        if m.mode is UIMode.LABEL_EDIT:
            return [self._mutation(lambda: client.update_label(target_id, name=text), f"Renamed label to {text}")]
        if m.mode is UIMode.SECTION_INPUT:
            return [self._mutation(lambda: client.create_section(text, owner_id), f"Created section: {text}")]
        if m.mode is UIMode.SECTION_EDIT:
            return [self._mutation(lambda: client.update_section(target_id, name=text), f"Renamed section to {text}")]
        if m.mode is UIMode.SUBTASK_INPUT:
            parent = self.task_by_id(target_id)
            if parent is None:
                return []
            fields = {'project_id': parent.project_id, 'section_id': parent.section_id, 'parent_id': parent.id}
            return [self._mutation(lambda: client.create_task(text, **fields), "Subtask added")]
        if m.mode is UIMode.COMMENT_INPUT:
            return [self._comment_call(target_id, lambda: client.create_comment(target_id, text), "Comment added")]
        if m.mode is UIMode.COMMENT_EDIT:
            return [self._comment_call(owner_id, lambda: client.update_comment(target_id, text), "Comment updated")]
        logger.warning("No submit handler for %s", m.mode)
        return []

    def _confirm(self):
        st = self.state
        m = st.modal
        self._close_modal()
        client = self.client
        target_id = m.target_id
        if m.mode is UIMode.PROJECT_DELETE:
            if st.current_project is not None and st.current_project.id == target_id:
                st.current_project = None
                st.pane = Pane.SIDEBAR
            return [self._mutation(lambda: client.delete_project(target_id), f"Deleted project: {m.target_name}")]
        if m.mode is UIMode.LABEL_DELETE:
            if st.current_label is not None and st.current_label.name == m.target_name:
                st.current_label = None
            return [self._mutation(lambda: client.delete_label(target_id), f"Deleted label: {m.target_name}")]
        if m.mode is UIMode.SECTION_DELETE:
            return [self._mutation(lambda: client.delete_section(target_id), f"Deleted section: {m.target_name}")]
        if m.mode is UIMode.COMMENT_DELETE:
            return [self._comment_call(m.owner_id, lambda: client.delete_comment(target_id), "Comment deleted")]
        return []

    # -----------------------------
    # Pickers
    # -----------------------------
    def picker_options(self) -> List[PickerOption]:
        m = self.state.modal
        query = m.text.strip().lower()
        if m.mode is not UIMode.MOVE_TO_PROJECT or not query:
            return list(m.options)
        out = []
        for opt in m.options:
            owner = self.project_by_id(opt.project_id)
            if query in opt.label.lower() or (opt.is_section and owner is not None and query in owner.name.lower()):
                out.append(opt)
        return out

    def _picker_key(self, key: str):
        m = self.state.modal
        options = self.picker_options()
        typing = m.mode is UIMode.MOVE_TO_PROJECT
        if key == 'escape':
            self._close_modal()
            return []
        if key in ('up', 'c-k') or (key == 'k' and not typing):
            m.cursor = max(0, m.cursor - 1)
            return []
        if key in ('down', 'c-j') or (key == 'j' and not typing):
            m.cursor = max(0, min(m.cursor + 1, len(options) - 1))
            return []
        if key == 'enter':
            if not options:
                return []
            option = options[min(m.cursor, len(options) - 1)]
            mode = m.mode
            self._close_modal()
            return self._apply_picker(mode, option)
        if typing:
            text = edit_text(m.text, key)
            if text is not None:
                m.text = text
                m.cursor = 0
        return []

    def _apply_picker(self, mode: UIMode, option: PickerOption):
        if mode is UIMode.RESCHEDULE:
            return self.reschedule(option.value)
        if mode is UIMode.MOVE_TO_SECTION:
            return self._move_tasks(option.project_id, option.value or None, option.label)
        if option.is_section:
            owner = self.project_by_id(option.project_id)
            name = f"{owner.name} / {option.label}" if owner else option.label
            return self._move_tasks(option.project_id, option.value, name)
        return self._move_tasks(option.value, None, option.label)

    def _move_tasks(self, project_id: str, section_id: Optional[str], name: str):
        st = self.state
        bulk = bool(st.selection)
        tasks = self._targets()
        if not tasks:
            return []
        client = self.client

        def call(task_id: str):
            if section_id:
                client.move_task(task_id, section_id=section_id)
            else:
                client.move_task(task_id, project_id=project_id)
        for t in tasks:
            t.project_id = project_id
            t.section_id = section_id
        self._apply_filter()
        if bulk:
            ids = [t.id for t in tasks]
            st.selection.clear()
            return [self._bulk("Moved", call, ids, clear_selection=True, suffix=f" to {name}")]
        task_id = tasks[0].id
        return [self._mutation(lambda: call(task_id), f"Moved to {name}")]

    def _open_reschedule(self):
        if not self._targets():
            return []
        self._open_modal(UIMode.RESCHEDULE, options=[PickerOption(label, value) for label, value in RESCHEDULE_OPTIONS])
        return []

    def _open_move_to_section(self):
        tasks = self._targets()
        if not tasks:
            return []
        project_id = tasks[0].project_id
        sections = self.project_sections(project_id)
        if not sections:
            self.state.status = "Project has no sections"
            return []
        options = [PickerOption("(No section)", "", project_id)]
        options.extend(PickerOption(s.name, s.id, project_id, is_section=True) for s in sections)
        self._open_modal(UIMode.MOVE_TO_SECTION, owner_id=project_id, options=options)
        return []

    def move_targets(self) -> List[PickerOption]:
        """Inbox first, then favorites, then the rest, each followed by its sections."""
        st = self.state
        inbox = [p for p in st.projects if p.inbox_project]
        favorites = [p for p in st.projects if p.is_favorite and not p.inbox_project]
        others = [p for p in st.projects if not p.is_favorite and not p.inbox_project]
        options: List[PickerOption] = []
        for project in inbox + favorites + others:
            options.append(PickerOption(project.name, project.id, project.id))
            for s in self.project_sections(project.id):
                options.append(PickerOption(s.name, s.id, project.id, is_section=True, indent=1))
        return options

    def _open_move_to_project(self):
        if not self._targets():
            return []
        self._open_modal(UIMode.MOVE_TO_PROJECT, options=self.move_targets())
        return []

    # -----------------------------
    # Context-dependent edit / delete / new
    # -----------------------------
    def _cursor_label(self):
        labels = self.label_list()
        if not labels:
            return None
        return labels[min(self.state.cursor, len(labels) - 1)]

    def _edit(self):
        if self.in_sidebar():
            project = self.sidebar_project()
            if project is not None:
                self._open_modal(UIMode.PROJECT_EDIT, target_id=project.id, target_name=project.name, text=project.name)
            return []
        if self.in_label_list():
            label = self._cursor_label()
            if label is None:
                return []
            if not label.id:
                self.state.status = f"Label {label.name} cannot be renamed"
                return []
            self._open_modal(UIMode.LABEL_EDIT, target_id=label.id, target_name=label.name, text=label.name)
            return []
        return self._open_edit_form()

    def _delete(self):
        if self.in_sidebar():
            project = self.sidebar_project()
            if project is not None:
                self._open_modal(UIMode.PROJECT_DELETE, target_id=project.id, target_name=project.name)
            return []
        if self.in_label_list():
            label = self._cursor_label()
            if label is None:
                return []
            if not label.id:
                self.state.status = f"Label {label.name} cannot be deleted"
                return []
            self._open_modal(UIMode.LABEL_DELETE, target_id=label.id, target_name=label.name)
            return []
        return self.delete_items()

    def _new(self):
        st = self.state
        if st.tab is Tab.PROJECTS and st.pane is Pane.SIDEBAR:
            self._open_modal(UIMode.PROJECT_INPUT)
            return []
        if self.in_label_list():
            self._open_modal(UIMode.LABEL_INPUT)
            return []
        return self._open_add_form()

    def _open_subtask(self):
        task = self.target_task()
        if task is None:
            return []
        self._open_modal(UIMode.SUBTASK_INPUT, target_id=task.id, target_name=task.content)
        return []

    def _open_add_comment(self):
        task = self.target_task()
        if task is None:
            return []
        self._open_modal(UIMode.COMMENT_INPUT, target_id=task.id, target_name=task.content)
        return []

    def _last_comment(self):
        task = self.target_task()
        if task is None:
            return None, None
        comments = self.state.comments.get(task.id) or []
        if not comments:
            self.state.status = "No comments"
            return task, None
        return task, comments[-1]

    def _open_edit_comment(self):
        task, comment = self._last_comment()
        if comment is not None:
            self._open_modal(UIMode.COMMENT_EDIT, target_id=comment.id, owner_id=task.id, text=comment.content)
        return []

    def _open_delete_comment(self):
        task, comment = self._last_comment()
        if comment is not None:
            self._open_modal(UIMode.COMMENT_DELETE, target_id=comment.id, owner_id=task.id, target_name=comment.content[:40])
        return []

    # -----------------------------
    # Task form
    # -----------------------------
    def _open_add_form(self):
        st = self.state
        if self.in_sidebar() or self.in_label_list():
            return self._new()
        if self.base_view() is View.CALENDAR:
            return []
        form = TaskForm()
        entry = self.cursor_entry()
        project = None
        section = None
        if isinstance(entry, PlaceholderLine):
            section = self.section_by_id(entry.group_id)
        elif isinstance(entry, ItemLine):
            task = self.task_by_id(entry.task_id)
            if task is not None:
                section = self.section_by_id(task.section_id)
                project = self.project_by_id(task.project_id)
        if section is not None:
            project = self.project_by_id(section.project_id)
            form.section_id = section.id
            form.section_name = section.name
        if project is None:
            project = self.context_project() or self.inbox_project()
        if project is not None:
            form.project_id = project.id
            form.project_name = project.name
        base = self.base_view()
        if st.tab is Tab.TODAY:
            form.due_string = "today"
        elif base is View.CALENDAR_DAY:
            form.due_string = st.calendar_day.isoformat()
        if base is View.LABELS and st.current_label is not None:
            form.labels = st.current_label.name
        st.form = form
        self._push_view(View.TASK_FORM)
        return []

    def _open_edit_form(self):
        task = self.target_task()
        if task is None:
            return []
        project = self.project_by_id(task.project_id)
        section = self.section_by_id(task.section_id)
        due = task.due.string if task.due else ""
        self.state.form = TaskForm(
            content=task.content,
            description=task.description,
            due_string=due,
            priority=task.priority,
            labels=", ".join(task.labels),
            project_id=task.project_id,
            project_name=project.name if project else "",
            section_id=task.section_id,
            section_name=section.name if section else "",
            parent_id=task.parent_id,
            task_id=task.id,
            original_due=due,
        )
        self._push_view(View.TASK_FORM)
        return []

    def _form_key(self, key: str):
        st = self.state
        form = st.form
        if form is None:
            self._pop_view()
            return []
        if key == 'escape':
            st.form = None
            self._pop_view()
            return []
        if key == 'enter':
            return self._submit_form()
        if key in ('tab', 'down', 'c-j'):
            form.focus = (form.focus + 1) % 5
            return []
        if key in ('s-tab', 'up', 'c-k'):
            form.focus = (form.focus - 1) % 5
            return []
        name = form.focused_field
        if name == 'priority':
            if key in ('1', '2', '3', '4'):
                form.priority = 5 - int(key)
            elif key in ('l', 'right'):
                form.priority = min(4, form.priority + 1)
            elif key in ('h', 'left'):
                form.priority = max(1, form.priority - 1)
            return []
        text = edit_text(getattr(form, name), key)
        if text is not None:
            setattr(form, name, text)
        return []

    def _submit_form(self):
        st = self.state
        form = st.form
        content = form.content.strip()
        if not content:
            st.status = "Task name is required"
            return []
        client = self.client
        fields = {
            'description': form.description.strip(),
            'priority': form.priority,
            'labels': form.label_list(),
        }
        due = form.due_string.strip()
        if form.editing:
            task_id = form.task_id
            fields['content'] = content
            if due != form.original_due:
                fields['due_string'] = due or 'no date'
            task = self.task_by_id(task_id)
            if task is not None:
                task.content = content
                task.description = fields['description']
                task.priority = form.priority
                task.labels = list(fields['labels'])
            command = self._mutation(lambda: client.update_task(task_id, **fields), "Task updated")
        else:
            fields.update(
                project_id=form.project_id or None,
                section_id=form.section_id,
                parent_id=form.parent_id,
                due_string=due,
            )
            command = self._mutation(lambda: client.create_task(content, **fields), "Task created")
        st.form = None
        self._pop_view()
        return [command]

    # -----------------------------
    # Quick add
    # -----------------------------
    def _open_quick_add(self):
        self.state.quick_add_text = ""
        self._push_view(View.QUICK_ADD)
        return []

    def _quick_add_key(self, key: str):
        st = self.state
        if key == 'escape':
            self._pop_view()
            return []
        if key == 'enter':
            text = st.quick_add_text.strip()
            self._pop_view()
            st.quick_add_text = ""
            return self.quick_add(text)
        text = edit_text(st.quick_add_text, key)
        if text is not None:
            st.quick_add_text = text
        return []

    def quick_add(self, text: str):
        if not text:
            return []
        project = self.context_project()
        if project is not None and not project.inbox_project and '#' not in text:
            text = f"{text} #{project.name}"
        client = self.client
        return [self._mutation(lambda: client.quick_add(text), "Task added")]

    # -----------------------------
    # Search
    # -----------------------------
    def _open_search(self):
        st = self.state
        if st.view is View.SEARCH:
            return []
        self._saved_cursor = (st.cursor, st.cursor_key)
        st.search_query = ""
        st.search_results = []
        st.cursor = 0
        st.cursor_key = None
        self._push_view(View.SEARCH)
        return []

    def _search_key(self, key: str):
        st = self.state
        if key == 'escape':
            self._pop_view()
            st.search_query = ""
            st.cursor, st.cursor_key = self._saved_cursor
            self._apply_filter()
            return []
        if key == 'enter':
            return self._select()
        if key in ('up', 'c-k'):
            return self._move_main(-1)
        if key in ('down', 'c-j'):
            return self._move_main(1)
        text = edit_text(st.search_query, key)
        if text is not None:
            st.search_query = text
            st.cursor = 0
            st.cursor_key = None
            self._apply_filter()
        return []

    # -----------------------------
    # Sections view
    # -----------------------------
    def _open_sections(self):
        project = self.context_project()
        if project is None or self.base_view() not in (View.INBOX, View.PROJECT):
            self.state.status = "Open a project to manage sections"
            return []
        self.state.section_cursor = 0
        self._push_view(View.SECTIONS)
        return []

    def _sections_key(self, key: str):
        st = self.state
        project = self.context_project()
        sections = self.project_sections(project.id) if project else []
        if sections:
            st.section_cursor = max(0, min(st.section_cursor, len(sections) - 1))
        current = sections[st.section_cursor] if sections else None
        if key in ('escape', 'q'):
            self._pop_view()
            return []
        if key in ('j', 'down'):
            st.section_cursor = min(st.section_cursor + 1, max(0, len(sections) - 1))
        elif key in ('k', 'up'):
            st.section_cursor = max(0, st.section_cursor - 1)
        elif key in ('a', 'n') and project is not None:
            self._open_modal(UIMode.SECTION_INPUT, owner_id=project.id, target_name=project.name)
        elif key == 'e' and current is not None:
            self._open_modal(UIMode.SECTION_EDIT, target_id=current.id, owner_id=current.project_id, target_name=current.name, text=current.name)
        elif key == 'd' and current is not None:
            self._open_modal(UIMode.SECTION_DELETE, target_id=current.id, owner_id=current.project_id, target_name=current.name)
        elif key == 'J':
            return self._reorder_section(sections, 1)
        elif key == 'K':
            return self._reorder_section(sections, -1)
        elif key == '?':
            self._push_view(View.HELP)
        return []

    def _reorder_section(self, sections, delta: int):
        st = self.state
        i = st.section_cursor
        j = i + delta
        if not sections or not 0 <= j < len(sections):
            return []
        # Renumber so equal orders still swap.
        for n, s in enumerate(sections, start=1):
            s.section_order = n
        a, b = sections[i], sections[j]
        a.section_order, b.section_order = b.section_order, a.section_order
        st.section_cursor = j
        client = self.client
        a_id, a_order, b_id, b_order = a.id, a.section_order, b.id, b.section_order

        def call():
            client.update_section(a_id, section_order=a_order)
            client.update_section(b_id, section_order=b_order)
        self._apply_filter()
        return [self._mutation(call, f"Moved section {a.name}", refresh=False)]

    # -----------------------------
    # Command line
    # -----------------------------
    def _open_command(self):
        self._open_modal(UIMode.COMMAND)
        return []

    def _run_command(self, text: str):
        st = self.state
        if not text:
            return []
        name, _, arg = text.partition(' ')
        name = name.lower()
        arg = arg.strip()
        if name in ('completed', 'history') or (name in ('goto', 'go', 'g') and arg.lower() == 'completed'):
            return self.open_completed()
        if name in ('goto', 'go', 'g'):
            tab = GOTO_ALIASES.get(arg.lower())
            if tab is None:
                st.status = f"Unknown view: {arg}"
                return []
            return self.switch_tab(tab)
        if name in ('add', 'a'):
            return self.quick_add(arg) if arg else self._open_add_form()
        if name in ('complete', 'done'):
            return self.complete_items()
        if name in ('delete', 'del'):
            return self.delete_items()
        if name in ('project', 'proj'):
            return self._goto_project(arg)
        if name in ('refresh', 'r'):
            return self.refresh(force=True)
        if name in ('quit', 'q'):
            st.quit = True
            return []
        if name in ('help', 'h', '?'):
            self._push_view(View.HELP)
            return []
        if name in ('commands', 'list', 'ls'):
            st.status = "Commands: " + ", ".join(COMMAND_NAMES)
            return []
        st.status = f"Unknown command: {name}"
        return []

    def _goto_project(self, name: str):
        st = self.state
        query = name.lower()
        if not query:
            st.status = "Usage: project <name>"
            return []
        matches = [p for p in st.projects if p.name.lower() == query]
        matches = matches or [p for p in st.projects if p.name.lower().startswith(query)]
        matches = matches or [p for p in st.projects if query in p.name.lower()]
        if not matches:
            st.status = f"Project not found: {name}"
            return []
        project = matches[0]
        if st.view in OVERLAY_VIEWS:
            return []
        self._set_tab(Tab.PROJECTS)
        for i, item in enumerate(st.sidebar):
            if item.id == project.id:
                st.sidebar_cursor = i
        return self._open_project(project)

    # -----------------------------
    # Calendar and settings
    # -----------------------------
    def _calendar_key(self, key: str):
        """Month-grid navigation; None when the key is not a calendar key."""
        st = self.state
        if key in CALENDAR_STEPS:
            st.calendar_day += dt.timedelta(days=CALENDAR_STEPS[key])
            return []
        if key == '[':
            st.calendar_day = add_months(st.calendar_day, -1)
            return []
        if key == ']':
            st.calendar_day = add_months(st.calendar_day, 1)
            return []
        if key == 't':
            st.calendar_day = self.today
            return []
        if key == 'v':
            return self._toggle_calendar_mode()
        if key == 'enter':
            self._push_view(View.CALENDAR_DAY)
            st.cursor = 0
            st.cursor_key = None
            self._apply_filter()
            return []
        return None

    def _toggle_calendar_mode(self):
        st = self.state
        st.calendar_expanded = not st.calendar_expanded
        mode = 'expanded' if st.calendar_expanded else 'compact'
        self.config.ui.calendar_default_view = mode
        st.status = f"Calendar view: {mode}"
        if self.persist_config is None:
            return []
        cfg = self.config
        persist = self.persist_config
        return [self._remote(lambda: persist(cfg), lambda _: ActionDone(f"Calendar view: {mode}", refresh=False))]

    def _set_default_view(self):
        st = self.state
        name = st.tab.value
        path = self.config.path or default_config_path()
        try:
            update_default_view(path, name)
        except OSError as e:
            logger.exception("Saving default view failed")
            st.error = str(e)
            st.status = f"Error: {e}"
            return []
        self.config.ui.default_view = name
        st.status = f"Default view set to {st.tab.title}"
        return []

    def calendar_tasks(self, day: dt.date) -> List[Task]:
        return [t for t in self.state.all_tasks if t.due is not None and t.due.day == day and not t.checked]
