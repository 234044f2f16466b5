"""Item operations: complete, delete, copy, priority and due-date changes, undo."""
from __future__ import annotations

import datetime as dt
import logging
from typing import Callable, Dict, List, Optional

from .bulk import run_bulk
from .display import PlaceholderLine
from .models import Due, Task, relative_day_label
from .state import BulkDone, LastAction, View

logger = logging.getLogger('todoist_tui')

RESCHEDULE_OPTIONS = (
    ("Today", "today"),
    ("Tomorrow", "tomorrow"),
    ("Next week (Mon)", "next_week"),
    ("Weekend (Sat)", "weekend"),
    ("Postpone 1 day", "postpone"),
    ("No date", "no_date"),
)


def days_until(today: dt.date, weekday: int) -> int:
    """Days to the next ``weekday`` (Monday=0), a full week when it is today."""
    return (weekday - today.weekday()) % 7 or 7


class ItemActionsMixin:
    """Mixed into ``Session``; relies on its state, client and command helpers."""

    def selected_tasks(self) -> List[Task]:
        st = self.state
        ordered = [t for t in self.visible_tasks() if t.id in st.selection]
        seen = {t.id for t in ordered}
        # Selected items filtered out of the current view still count.
        ordered.extend(t for t in st.all_tasks if t.id in st.selection and t.id not in seen)
        return ordered

    def _targets(self) -> List[Task]:
        if self.state.selection:
            return self.selected_tasks()
        task = self.target_task()
        return [task] if task is not None else []

    def _drop_tasks(self, ids) -> None:
        st = self.state
        ids = set(ids)
        st.tasks = [t for t in st.tasks if t.id not in ids]
        st.all_tasks = [t for t in st.all_tasks if t.id not in ids]
        st.search_results = [t for t in st.search_results if t.id not in ids]
        if st.detail_task_id in ids:
            self._close_detail()

    def _bulk(self, verb: str, call: Callable[[str], object], ids: List[str], clear_selection: bool = False,
              suffix: str = "", settle: bool = True):
        """Run ``call`` over ``ids``. With ``settle`` the ids that succeeded leave the selection quietly."""

        async def _run():
            report = await run_bulk(verb, call, ids)
            failed = set(report.failed_ids)
            settled = tuple(i for i in ids if i not in failed) if settle else ()
            return BulkDone(report.message + suffix, report.succeeded, report.failed, clear_selection, settled)
        return _run

    # -----------------------------
    # Complete / delete / copy
    # -----------------------------
    def complete_items(self):
        st = self.state
        client = self.client
        if st.selection:
            ids = [t.id for t in self.selected_tasks()]
            if self.base_view() is View.COMPLETED:
                st.status = f"Reopening {len(ids)} items..."
                return [self._bulk("Reopened", client.reopen_task, ids, settle=False)]
            st.status = f"Completing {len(ids)} items..."
            return [self._bulk("Completed", client.close_task, ids)]
        task = self.target_task()
        if task is None:
            return []
        task_id = task.id
        if task.checked:
            st.last_action = LastAction('uncomplete', task_id)
            task.checked = False
            st.completed = [t for t in st.completed if t.id != task_id]
            self._drop_tasks({task_id})
            return [self._mutation(lambda: client.reopen_task(task_id), f"Uncompleted: {task.content}")]
        st.last_action = LastAction('complete', task_id)
        self._settled.add(task_id)
        self._drop_tasks({task_id})
        return [self._mutation(lambda: client.close_task(task_id), f"Completed: {task.content}")]

    def delete_items(self):
        st = self.state
        client = self.client
        if st.selection:
            ids = [t.id for t in self.selected_tasks()]
            st.status = f"Deleting {len(ids)} items..."
            return [self._bulk("Deleted", client.delete_task, ids)]
        task = self.target_task()
        if task is None:
            return []
        task_id = task.id
        self._settled.add(task_id)
        self._drop_tasks({task_id})
        return [self._mutation(lambda: client.delete_task(task_id), f"Deleted: {task.content}")]

    def copy_items(self):
        st = self.state
        if st.selection:
            tasks = self.selected_tasks()
            lines: List[str] = []
            for t in tasks:
                lines.append(t.content)
                if t.description:
                    lines.append(t.description)
            self.copy_text("\n".join(lines))
            st.selection.clear()
            st.status = f"Copied {len(tasks)} items"
            return []
        entry = self.cursor_entry()
        if isinstance(entry, PlaceholderLine):
            members = [t for t in st.tasks if t.section_id == entry.group_id]
            self.copy_text("\n".join([entry.label] + [f"- {t.content}" for t in members]))
            st.status = f"Copied section: {entry.label}"
            return []
        task = self.target_task()
        if task is None:
            return []
        self.copy_text(task.content)
        st.status = f"Copied: {task.content}"
        return []

    def toggle_select(self):
        st = self.state
        task = self.cursor_task()
        if task is None:
            return []
        if task.id in st.selection:
            st.selection.discard(task.id)
        else:
            st.selection.add(task.id)
        st.status = f"{len(st.selection)} selected" if st.selection else "Selection cleared"
        return []

    def undo(self):
        st = self.state
        action = st.last_action
        if action is None:
            st.status = "Nothing to undo"
            return []
        st.last_action = None
        client = self.client
        task_id = action.task_id
        if action.op == 'complete':
            call = client.reopen_task
        else:
            call = client.close_task
        logger.info("Undo %s of %s", action.op, task_id)
        return [self._mutation(lambda: call(task_id), "Undo successful")]

    # -----------------------------
    # Field updates
    # -----------------------------
    def _update_tasks(self, tasks: List[Task], fields: Dict[str, Dict[str, object]], status: str):
        """Send per-item ``update_task`` fields; one call, or a bulk batch for a selection."""
        client = self.client
        # Optimistic edits can move items out of the current view.
        self._apply_filter()
        if len(tasks) == 1:
            task_id = tasks[0].id
            body = fields[task_id]
            return [self._mutation(lambda: client.update_task(task_id, **body), status, refresh=False)]
        ids = [t.id for t in tasks]
        return [self._bulk("Updated", lambda i: client.update_task(i, **fields[i]), ids, settle=False)]

    def set_priority(self, priority: int):
        tasks = self._targets()
        if not tasks:
            return []
        for t in tasks:
            t.priority = priority
        label = f"P{5 - priority}"
        return self._update_tasks(tasks, {t.id: {'priority': priority} for t in tasks}, f"Priority set to {label}")

    def set_due(self, which: str):
        """Due today or tomorrow through the service's natural-language parser."""
        tasks = self._targets()
        if not tasks:
            return []
        day = self.today + dt.timedelta(days=1 if which == 'tomorrow' else 0)
        for t in tasks:
            t.due = Due(date=day.isoformat(), string=which)
        self.state.status = f"Moving to {which}..."
        return self._update_tasks(tasks, {t.id: {'due_string': which} for t in tasks}, f"Due {which}")

    def _set_due_date(self, tasks: List[Task], days: Callable[[Task], dt.date], status: str):
        fields: Dict[str, Dict[str, object]] = {}
        for t in tasks:
            day = days(t)
            body: Dict[str, object] = {'due_date': day.isoformat()}
            recurring = bool(t.due and t.due.is_recurring)
            if recurring:
                body['due_string'] = t.due.string
            fields[t.id] = body
            t.due = Due(date=day.isoformat(), string=t.due.string if recurring else day.isoformat(), is_recurring=recurring)
        return self._update_tasks(tasks, fields, status)

    def _due_or_today(self, task: Task) -> dt.date:
        if task.due is not None and task.due.day is not None:
            return task.due.day
        return self.today

    def move_due(self, days: int):
        tasks = self._targets()
        if not tasks:
            return []
        if len(tasks) == 1:
            target = self._due_or_today(tasks[0]) + dt.timedelta(days=days)
            status = f"Moved to {relative_day_label(target, self.today)}"
        else:
            status = f"Moved {len(tasks)} items by {days:+d} day"
        return self._set_due_date(tasks, lambda t: self._due_or_today(t) + dt.timedelta(days=days), status)

    def clear_due(self, tasks: Optional[List[Task]] = None):
        tasks = tasks if tasks is not None else self._targets()
        if not tasks:
            return []
        for t in tasks:
            t.due = None
        return self._update_tasks(tasks, {t.id: {'due_string': 'no date'} for t in tasks}, "Due date removed")

    def reschedule(self, choice: str):
        tasks = self._targets()
        if not tasks:
            return []
        today = self.today
        if choice == 'no_date':
            return self.clear_due(tasks)
        if choice == 'postpone':
            return self._set_due_date(tasks, lambda t: self._due_or_today(t) + dt.timedelta(days=1), "Postponed 1 day")
        offsets = {
            'today': 0,
            'tomorrow': 1,
            'next_week': days_until(today, 0),
            'weekend': days_until(today, 5),
        }
        if choice not in offsets:
            logger.warning("Unknown reschedule choice %s", choice)
            return []
        target = today + dt.timedelta(days=offsets[choice])
        return self._set_due_date(tasks, lambda t: target, f"Rescheduled to {relative_day_label(target, today)}")

    # -----------------------------
    # Projects
    # -----------------------------
    def toggle_favorite(self):
        if not self.in_sidebar():
            return []
        project = self.sidebar_project()
        if project is None:
            return []
        client = self.client
        project_id = project.id
        favorite = not project.is_favorite
        project.is_favorite = favorite
        self._build_sidebar()
        word = "Added to" if favorite else "Removed from"
        return [self._mutation(lambda: client.update_project(project_id, is_favorite=favorite), f"{word} favorites: {project.name}")]
