"""Entities returned by the task service and the date helpers built on them."""
from __future__ import annotations

import datetime as dt
from dataclasses import dataclass, field
from typing import Dict, List, Optional


# -----------------------------
# Due dates
# -----------------------------
def _parse_timestamp(value: Optional[str]) -> Optional[dt.datetime]:
    """Parse an RFC3339 or floating ISO timestamp into a naive local datetime."""
    if not value or len(value) <= 10:
        return None
    raw = value.strip()
    if raw.endswith('Z'):
        raw = raw[:-1] + '+00:00'
    try:
        parsed = dt.datetime.fromisoformat(raw)
    except ValueError:
        return None
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone().replace(tzinfo=None)
    return parsed


@dataclass
class Due:
    date: str                      # YYYY-MM-DD, may carry a time in older payloads
    string: str = ""
    is_recurring: bool = False
    datetime: Optional[str] = None
    timezone: Optional[str] = None

    @classmethod
    def from_api(cls, raw: Optional[dict]) -> Optional["Due"]:
        if not raw or not raw.get('date'):
            return None
        return cls(
            date=str(raw.get('date') or ''),
            string=raw.get('string') or '',
            is_recurring=bool(raw.get('is_recurring')),
            datetime=raw.get('datetime') or None,
            timezone=raw.get('timezone') or None,
        )

    def to_api(self) -> dict:
        out: Dict[str, object] = {'date': self.date, 'string': self.string, 'is_recurring': self.is_recurring}
        if self.datetime:
            out['datetime'] = self.datetime
        if self.timezone:
            out['timezone'] = self.timezone
        return out

    @property
    def day(self) -> Optional[dt.date]:
        try:
            return dt.date.fromisoformat(self.date[:10])
        except ValueError:
            return None

    @property
    def moment(self) -> Optional[dt.datetime]:
        """Due time when one is set, either in ``datetime`` or a timestamped ``date``."""
        return _parse_timestamp(self.datetime) or _parse_timestamp(self.date)

    @property
    def has_time(self) -> bool:
        return self.moment is not None


# -----------------------------
# Entities
# -----------------------------
@dataclass
class Task:
    id: str
    content: str
    project_id: str = ""
    description: str = ""
    section_id: Optional[str] = None
    parent_id: Optional[str] = None
    due: Optional[Due] = None
    priority: int = 1              # 4 = most urgent (shown as P1)
    labels: List[str] = field(default_factory=list)
    child_order: int = 0
    checked: bool = False
    is_deleted: bool = False
    completed_at: Optional[str] = None

    @classmethod
    def from_api(cls, raw: dict) -> "Task":
        return cls(
            id=str(raw.get('id')),
            content=raw.get('content') or '',
            project_id=str(raw.get('project_id') or ''),
            description=raw.get('description') or '',
            section_id=str(raw['section_id']) if raw.get('section_id') else None,
            parent_id=str(raw['parent_id']) if raw.get('parent_id') else None,
            due=Due.from_api(raw.get('due')),
            priority=int(raw.get('priority') or 1),
            labels=list(raw.get('labels') or []),
            child_order=int(raw.get('child_order') or 0),
            checked=bool(raw.get('checked') or raw.get('completed_at')),
            is_deleted=bool(raw.get('is_deleted')),
            completed_at=raw.get('completed_at'),
        )

    def to_api(self) -> dict:
        return {
            'id': self.id,
            'content': self.content,
            'description': self.description,
            'project_id': self.project_id,
            'section_id': self.section_id,
            'parent_id': self.parent_id,
            'due': self.due.to_api() if self.due else None,
            'priority': self.priority,
            'labels': list(self.labels),
            'child_order': self.child_order,
            'checked': self.checked,
        }

    @property
    def priority_label(self) -> str:
        return f"P{5 - max(1, min(4, self.priority))}"

    @property
    def completed_moment(self) -> Optional[dt.datetime]:
        return _parse_timestamp(self.completed_at)


@dataclass
class Project:
    id: str
    name: str
    color: str = ""
    parent_id: Optional[str] = None
    child_order: int = 0
    is_favorite: bool = False
    inbox_project: bool = False

    @classmethod
    def from_api(cls, raw: dict) -> "Project":
        return cls(
            id=str(raw.get('id')),
            name=raw.get('name') or '',
            color=raw.get('color') or '',
            parent_id=str(raw['parent_id']) if raw.get('parent_id') else None,
            child_order=int(raw.get('child_order') or 0),
            is_favorite=bool(raw.get('is_favorite')),
            inbox_project=bool(raw.get('inbox_project')),
        )


@dataclass
class Section:
    id: str
    name: str
    project_id: str
    section_order: int = 0

    @classmethod
    def from_api(cls, raw: dict) -> "Section":
        return cls(
            id=str(raw.get('id')),
            name=raw.get('name') or '',
            project_id=str(raw.get('project_id') or ''),
            section_order=int(raw.get('section_order') or 0),
        )


@dataclass
class Label:
    name: str
    color: str = ""
    id: str = ""
    item_order: int = 0

    @classmethod
    def from_api(cls, raw: dict) -> "Label":
        return cls(
            name=raw.get('name') or '',
            color=raw.get('color') or '',
            id=str(raw.get('id') or ''),
            item_order=int(raw.get('item_order') or 0),
        )


@dataclass
class Comment:
    id: str
    item_id: str
    content: str
    posted_at: str = ""

    @classmethod
    def from_api(cls, raw: dict) -> "Comment":
        return cls(
            id=str(raw.get('id')),
            item_id=str(raw.get('item_id') or raw.get('task_id') or ''),
            content=raw.get('content') or '',
            posted_at=raw.get('posted_at') or '',
        )


# -----------------------------
# Date helpers
# -----------------------------
def is_overdue(task: Task, now: Optional[dt.datetime] = None) -> bool:
    """Timed items are overdue once their time has passed; dated items from tomorrow on."""
    if task.due is None or task.checked:
        return False
    now = now or dt.datetime.now()
    moment = task.due.moment
    if moment is not None:
        return now > moment
    day = task.due.day
    return day is not None and day < now.date()


def is_due_today(task: Task, today: Optional[dt.date] = None) -> bool:
    if task.due is None:
        return False
    today = today or dt.date.today()
    return task.due.day == today


def due_display(task: Task, today: Optional[dt.date] = None) -> str:
    """Relative, human readable due text ("today", "tomorrow", "3 days ago", "Mon", "Jan 5")."""
    if task.due is None:
        return ""
    today = today or dt.date.today()
    day = task.due.day
    if day is None:
        return task.due.string
    diff = (day - today).days
    if diff < -1:
        text = f"{-diff} days ago"
    elif diff == -1:
        text = "yesterday"
    elif diff == 0:
        text = "today"
    elif diff == 1:
        text = "tomorrow"
    elif diff < 7:
        text = day.strftime('%A')
    else:
        text = f"{day.strftime('%b')} {day.day}"
    moment = task.due.moment
    if moment is not None:
        text += " " + moment.strftime('%I:%M%p').lstrip('0').lower()
    return text


def relative_day_label(day: dt.date, today: dt.date) -> str:
    if day == today:
        return "Today"
    if day == today + dt.timedelta(days=1):
        return "Tomorrow"
    if day == today - dt.timedelta(days=1):
        return "Yesterday"
    return f"{day.strftime('%a, %b')} {day.day}"
