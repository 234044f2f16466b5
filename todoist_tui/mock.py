"""In-memory stand-in for ``TodoistClient`` (MOCK_FETCH=1 demo mode)."""
from __future__ import annotations

import datetime as dt
import itertools
import threading
from dataclasses import replace
from typing import Dict, List, Optional

from .api import APIError
from .models import Comment, Due, Label, Project, Section, Task


class MockService:
    def __init__(self, today: Optional[dt.date] = None, seed: bool = True):
        self.today = today or dt.date.today()
        self.projects: Dict[str, Project] = {}
        self.sections: Dict[str, Section] = {}
        self.labels: Dict[str, Label] = {}
        self.tasks: Dict[str, Task] = {}
        self.comments: Dict[str, Comment] = {}
        self._ids = itertools.count(1000)
        # Calls arrive from executor threads.
        self._lock = threading.Lock()
        if seed:
            self._seed()

    def _next_id(self) -> str:
        return str(next(self._ids))

    def _due(self, offset: Optional[int], string: str = "", recurring: bool = False) -> Optional[Due]:
        if offset is None:
            return None
        day = self.today + dt.timedelta(days=offset)
        return Due(date=day.isoformat(), string=string or day.isoformat(), is_recurring=recurring)

    def _seed(self) -> None:
        for p in (
            Project('inbox', 'Inbox', inbox_project=True),
            Project('work', 'Work', is_favorite=True, child_order=1),
            Project('home', 'Home', child_order=2),
        ):
            self.projects[p.id] = p
        for s in (
            Section('work-now', 'This week', 'work', 1),
            Section('work-later', 'Backlog', 'work', 2),
            Section('work-ideas', 'Ideas', 'work', 3),
        ):
            self.sections[s.id] = s
        for lb in (Label('errand', 'green', 'l1'), Label('deep-work', 'blue', 'l2')):
            self.labels[lb.id] = lb
        rows = [
            ('t1', 'Pay rent', 'home', None, None, -1, 4, ['errand']),
            ('t2', 'Review pull requests', 'work', 'work-now', None, 0, 3, ['deep-work']),
            ('t3', 'Write release notes', 'work', 'work-now', None, 1, 2, []),
            ('t4', 'Draft outline', 'work', 'work-now', 't3', None, 1, []),
            ('t5', 'Plan offsite', 'work', 'work-later', None, 6, 1, []),
            ('t6', 'Buy groceries', 'inbox', None, None, 0, 2, ['errand']),
            ('t7', 'Read a book', 'inbox', None, None, None, 1, []),
            ('t8', 'Water plants', 'home', None, None, 2, 1, []),
        ]
        for order, (tid, content, pid, sid, parent, offset, prio, labels) in enumerate(rows):
            self.tasks[tid] = Task(
                id=tid, content=content, project_id=pid, section_id=sid, parent_id=parent,
                due=self._due(offset), priority=prio, labels=list(labels), child_order=order,
            )
        self.tasks['t1'].due = self._due(-1, "every month", recurring=True)
        for tid, content, pid, days_ago, at in (
            ('t9', 'Send invoice', 'work', 0, '08:15'),
            ('t10', 'Renew passport', 'home', 1, '18:30'),
        ):
            day = self.today - dt.timedelta(days=days_ago)
            self.tasks[tid] = Task(
                id=tid, content=content, project_id=pid, child_order=len(self.tasks),
                checked=True, completed_at=f"{day.isoformat()}T{at}:00",
            )
        self.comments['c1'] = Comment('c1', 't2', 'Start with the API changes', posted_at=f"{self.today.isoformat()}T09:00:00Z")

    def _task(self, task_id: str) -> Task:
        task = self.tasks.get(task_id)
        if task is None or task.is_deleted:
            raise APIError(404, "Task not found")
        return task

    # -----------------------------
    # Tasks
    # -----------------------------
    def get_tasks(self, project_id=None, section_id=None, label=None, ids=None) -> List[Task]:
        with self._lock:
            out = []
            for t in self.tasks.values():
                if t.checked or t.is_deleted:
                    continue
                if project_id and t.project_id != project_id:
                    continue
                if section_id and t.section_id != section_id:
                    continue
                if label and label not in t.labels:
                    continue
                if ids and t.id not in ids:
                    continue
                out.append(replace(t, labels=list(t.labels)))
            return out

    def get_tasks_by_filter(self, query: str) -> List[Task]:
        if query.startswith('@'):
            return self.get_tasks(label=query[1:])
        return self.get_tasks()

    def get_task(self, task_id: str) -> Task:
        with self._lock:
            return replace(self._task(task_id))

    def create_task(self, content: str, **fields) -> Task:
        with self._lock:
            due = None
            if fields.get('due_string'):
                due = Due(date=self.today.isoformat(), string=fields['due_string'])
            task = Task(
                id=self._next_id(), content=content,
                project_id=fields.get('project_id') or 'inbox',
                description=fields.get('description') or '',
                section_id=fields.get('section_id'),
                parent_id=fields.get('parent_id'),
                due=due,
                priority=int(fields.get('priority') or 1),
                labels=list(fields.get('labels') or []),
                child_order=len(self.tasks),
            )
            self.tasks[task.id] = task
            return replace(task)

    def update_task(self, task_id: str, **fields) -> Task:
        with self._lock:
            task = self._task(task_id)
            for key in ('content', 'description', 'priority', 'labels'):
                if key in fields:
                    setattr(task, key, fields[key])
            if 'due_date' in fields:
                task.due = Due(date=fields['due_date'], string=fields.get('due_string') or fields['due_date'])
            elif 'due_string' in fields:
                text = fields['due_string']
                if text == 'no date':
                    task.due = None
                elif text == 'today':
                    task.due = Due(date=self.today.isoformat(), string=text)
                elif text == 'tomorrow':
                    task.due = Due(date=(self.today + dt.timedelta(days=1)).isoformat(), string=text)
                else:
                    task.due = Due(date=self.today.isoformat(), string=text)
            return replace(task)

    def close_task(self, task_id: str) -> None:
        with self._lock:
            task = self._task(task_id)
            task.checked = True
            stamp = dt.datetime.combine(self.today, dt.datetime.now().time())
            task.completed_at = stamp.isoformat(timespec='seconds')

    def reopen_task(self, task_id: str) -> None:
        with self._lock:
            task = self.tasks.get(task_id)
            if task is None:
                raise APIError(404, "Task not found")
            task.checked = False
            task.completed_at = None

    def get_completed_tasks(self, since: dt.datetime, until: dt.datetime) -> List[Task]:
        with self._lock:
            out = [
                replace(t, labels=list(t.labels)) for t in self.tasks.values()
                if t.checked and not t.is_deleted and t.completed_moment is not None
                and since.date() <= t.completed_moment.date() <= until.date()
            ]
        return sorted(out, key=lambda t: t.completed_moment, reverse=True)

    def delete_task(self, task_id: str) -> None:
        with self._lock:
            self._task(task_id).is_deleted = True

    def move_task(self, task_id: str, project_id=None, section_id=None, parent_id=None) -> None:
        with self._lock:
            task = self._task(task_id)
            if section_id:
                task.section_id = section_id
                task.project_id = self.sections[section_id].project_id
            elif project_id:
                task.project_id = project_id
                task.section_id = None
            if parent_id:
                task.parent_id = parent_id

    def quick_add(self, text: str) -> Task:
        content, project_id = text, 'inbox'
        if '#' in text:
            content, _, name = text.partition('#')
            content = content.strip()
            for p in self.projects.values():
                if p.name.lower() == name.strip().lower():
                    project_id = p.id
        return self.create_task(content, project_id=project_id)

    # -----------------------------
    # Projects / sections / labels
    # -----------------------------
    def get_projects(self) -> List[Project]:
        with self._lock:
            return [replace(p) for p in self.projects.values()]

    def create_project(self, name: str) -> Project:
        with self._lock:
            p = Project(self._next_id(), name, child_order=len(self.projects))
            self.projects[p.id] = p
            return replace(p)

    def update_project(self, project_id: str, **fields) -> Project:
        with self._lock:
            p = self.projects[project_id]
            for key, value in fields.items():
                setattr(p, key, value)
            return replace(p)

    def delete_project(self, project_id: str) -> None:
        with self._lock:
            self.projects.pop(project_id, None)
            for t in self.tasks.values():
                if t.project_id == project_id:
                    t.is_deleted = True

    def get_sections(self, project_id: Optional[str] = None) -> List[Section]:
        with self._lock:
            return [replace(s) for s in self.sections.values() if not project_id or s.project_id == project_id]

    def create_section(self, name: str, project_id: str) -> Section:
        with self._lock:
            order = 1 + max([s.section_order for s in self.sections.values() if s.project_id == project_id] or [0])
            s = Section(self._next_id(), name, project_id, order)
            self.sections[s.id] = s
            return replace(s)

    def update_section(self, section_id: str, **fields) -> Section:
        with self._lock:
            s = self.sections[section_id]
            for key, value in fields.items():
                setattr(s, key, value)
            return replace(s)

    def delete_section(self, section_id: str) -> None:
        with self._lock:
            self.sections.pop(section_id, None)
            for t in self.tasks.values():
                if t.section_id == section_id:
                    t.is_deleted = True

    def get_labels(self) -> List[Label]:
        with self._lock:
            return [replace(lb) for lb in self.labels.values()]

    def create_label(self, name: str) -> Label:
        with self._lock:
            lb = Label(name, id=self._next_id(), item_order=len(self.labels))
            self.labels[lb.id] = lb
            return replace(lb)

    def update_label(self, label_id: str, **fields) -> Label:
        with self._lock:
            lb = self.labels[label_id]
            old = lb.name
            for key, value in fields.items():
                setattr(lb, key, value)
            for t in self.tasks.values():
                t.labels = [lb.name if n == old else n for n in t.labels]
            return replace(lb)

    def delete_label(self, label_id: str) -> None:
        with self._lock:
            lb = self.labels.pop(label_id, None)
            if lb is not None:
                for t in self.tasks.values():
                    t.labels = [n for n in t.labels if n != lb.name]

    # -----------------------------
    # Comments
    # -----------------------------
    def get_comments(self, task_id: str) -> List[Comment]:
        with self._lock:
            return [replace(c) for c in self.comments.values() if c.item_id == task_id]

    def create_comment(self, task_id: str, content: str) -> Comment:
        with self._lock:
            c = Comment(self._next_id(), task_id, content, posted_at=dt.datetime.now().isoformat(timespec='seconds'))
            self.comments[c.id] = c
            return replace(c)

    def update_comment(self, comment_id: str, content: str) -> Comment:
        with self._lock:
            c = self.comments[comment_id]
            c.content = content
            return replace(c)

    def delete_comment(self, comment_id: str) -> None:
        with self._lock:
            self.comments.pop(comment_id, None)
