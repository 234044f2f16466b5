"""Display index: turns an item collection plus a grouping policy into display lines.

Every frame derives its lines from scratch. Lines are a tagged union:

- ``ItemLine``        one item, selectable
- ``HeaderLine``      group label, never selectable
- ``PlaceholderLine`` marker for an empty section, selectable, carries the section id
- ``BlankLine``       visual separator between groups

``DisplayIndex.positions`` lists the selectable lines in display order; the
cursor is an index into it. ``DisplayIndex.by_key`` is the inverse lookup used
to keep the cursor on the same item or section across rebuilds.
"""
from __future__ import annotations

import datetime as dt
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Iterable, List, Optional, Sequence, Tuple, Union

from .models import Section, Task, is_overdue, relative_day_label


class Grouping(Enum):
    FLAT = 'flat'
    SECTION = 'section'
    STATUS = 'status'
    DATE = 'date'
    COMPLETED = 'completed'


Key = Tuple[str, str]


@dataclass(frozen=True)
class ItemLine:
    index: int          # position of the item in the backing collection
    task_id: str
    depth: int = 0

    @property
    def key(self) -> Key:
        return ('item', self.task_id)


@dataclass(frozen=True)
class HeaderLine:
    label: str
    group_id: Optional[str] = None


@dataclass(frozen=True)
class PlaceholderLine:
    group_id: str
    label: str

    @property
    def key(self) -> Key:
        return ('section', self.group_id)


@dataclass(frozen=True)
class BlankLine:
    pass


DisplayLine = Union[ItemLine, HeaderLine, PlaceholderLine, BlankLine]
Position = Union[ItemLine, PlaceholderLine]

OVERDUE_LABEL = "Overdue"
TODAY_LABEL = "Today"
NO_DUE_LABEL = "No due date"
UNKNOWN_DATE_LABEL = "Unknown date"


@dataclass
class DisplayIndex:
    lines: List[DisplayLine] = field(default_factory=list)
    positions: List[Position] = field(default_factory=list)
    line_of: List[int] = field(default_factory=list)
    by_key: Dict[Key, int] = field(default_factory=dict)

    def __len__(self) -> int:
        return len(self.positions)

    def at(self, position: int) -> Optional[Position]:
        if 0 <= position < len(self.positions):
            return self.positions[position]
        return None

    def task_id_at(self, position: int) -> Optional[str]:
        entry = self.at(position)
        if isinstance(entry, ItemLine):
            return entry.task_id
        return None

    def line_for(self, position: int) -> Optional[int]:
        if 0 <= position < len(self.line_of):
            return self.line_of[position]
        return None

    def position_for_line(self, line: int) -> Optional[int]:
        """Inverse of ``line_for``; None for headers, blanks and out-of-range rows."""
        if not 0 <= line < len(self.lines):
            return None
        entry = self.lines[line]
        if isinstance(entry, (ItemLine, PlaceholderLine)):
            return self.by_key.get(entry.key)
        return None

    def position_of(self, key: Optional[Key]) -> Optional[int]:
        if key is None:
            return None
        return self.by_key.get(key)


# -----------------------------
# Sorting
# -----------------------------
def bucket_sort_key(task: Task):
    """Due items first by date, untimed before timed on a day, then time and priority."""
    due = task.due
    day = due.day if due else None
    if day is None:
        return (1, dt.date.max, 1, dt.time.min, -task.priority)
    moment = due.moment
    if moment is not None:
        return (0, day, 1, moment.time(), -task.priority)
    return (0, day, 0, dt.time.min, -task.priority)


def sort_bucket(tasks: Iterable[Task]) -> List[Task]:
    return sorted(tasks, key=bucket_sort_key)


def _hierarchical(indexed: List[Tuple[int, Task]]) -> List[Tuple[int, Task, int]]:
    """Order items parent-first, children depth-first under their parent.

    Children whose parent is not part of ``indexed`` are treated as roots.
    """
    present = {t.id for _, t in indexed}
    children: Dict[str, List[Tuple[int, Task]]] = {}
    roots: List[Tuple[int, Task]] = []
    for pair in indexed:
        parent = pair[1].parent_id
        if parent and parent in present and parent != pair[1].id:
            children.setdefault(parent, []).append(pair)
        else:
            roots.append(pair)

    def _key(pair):
        return bucket_sort_key(pair[1]) + (pair[1].child_order,)

    out: List[Tuple[int, Task, int]] = []
    seen = set()

    def _walk(pair: Tuple[int, Task], depth: int) -> None:
        if pair[1].id in seen:
            return
        seen.add(pair[1].id)
        out.append((pair[0], pair[1], depth))
        for child in sorted(children.get(pair[1].id, []), key=_key):
            _walk(child, depth + 1)

    for root in sorted(roots, key=_key):
        _walk(root, 0)
    # Parent cycles leave items unreached; keep them visible as roots.
    for pair in indexed:
        if pair[1].id not in seen:
            _walk(pair, 0)
    return out


# -----------------------------
# Builders
# -----------------------------
class _Builder:
    def __init__(self) -> None:
        self.index = DisplayIndex()

    def blank(self) -> None:
        self.index.lines.append(BlankLine())

    def header(self, label: str, group_id: Optional[str] = None) -> None:
        self.index.lines.append(HeaderLine(label, group_id))

    def select(self, line: Position) -> None:
        self.index.by_key[line.key] = len(self.index.positions)
        self.index.positions.append(line)
        self.index.line_of.append(len(self.index.lines))
        self.index.lines.append(line)

    def item(self, index: int, task: Task, depth: int = 0) -> None:
        self.select(ItemLine(index, task.id, depth))

    def bucket(self, label: Optional[str], members: List[Tuple[int, Task]]) -> None:
        if not members:
            return
        if self.index.lines:
            self.blank()
        if label:
            self.header(label)
        for i, task in sorted(members, key=lambda p: bucket_sort_key(p[1])):
            self.item(i, task)


def _build_flat(tasks: Sequence[Task]) -> DisplayIndex:
    b = _Builder()
    for i, task in enumerate(tasks):
        b.item(i, task)
    return b.index


def _build_sections(tasks: Sequence[Task], sections: Sequence[Section]) -> DisplayIndex:
    b = _Builder()
    ordered = sorted(sections, key=lambda s: s.section_order)
    known = {s.id for s in ordered}
    grouped: Dict[str, List[Tuple[int, Task]]] = {s.id: [] for s in ordered}
    loose: List[Tuple[int, Task]] = []
    for i, task in enumerate(tasks):
        if task.section_id and task.section_id in known:
            grouped[task.section_id].append((i, task))
        else:
            loose.append((i, task))

    for i, task, depth in _hierarchical(loose):
        b.item(i, task, depth)
    for section in ordered:
        if b.index.lines:
            b.blank()
        members = grouped[section.id]
        if not members:
            b.select(PlaceholderLine(section.id, section.name))
            continue
        b.header(section.name, section.id)
        for i, task, depth in _hierarchical(members):
            b.item(i, task, depth)
    return b.index


def _build_status(tasks: Sequence[Task], now: dt.datetime) -> DisplayIndex:
    overdue: List[Tuple[int, Task]] = []
    dated: List[Tuple[int, Task]] = []
    undated: List[Tuple[int, Task]] = []
    for i, task in enumerate(tasks):
        if is_overdue(task, now):
            overdue.append((i, task))
        elif task.due is not None and task.due.day is not None:
            dated.append((i, task))
        else:
            undated.append((i, task))
    b = _Builder()
    b.bucket(OVERDUE_LABEL, overdue)
    b.bucket(TODAY_LABEL, dated)
    b.bucket(NO_DUE_LABEL, undated)
    return b.index


def _build_dates(tasks: Sequence[Task], today: dt.date) -> DisplayIndex:
    by_day: Dict[dt.date, List[Tuple[int, Task]]] = {}
    undated: List[Tuple[int, Task]] = []
    for i, task in enumerate(tasks):
        day = task.due.day if task.due else None
        if day is None:
            undated.append((i, task))
        else:
            by_day.setdefault(day, []).append((i, task))
    b = _Builder()
    for day in sorted(by_day):
        b.bucket(relative_day_label(day, today), by_day[day])
    b.bucket(NO_DUE_LABEL, undated)
    return b.index


def _build_completed(tasks: Sequence[Task], today: dt.date) -> DisplayIndex:
    """Completion-day groups, newest day first and newest item first inside a day."""
    by_day: Dict[dt.date, List[Tuple[int, Task]]] = {}
    unknown: List[Tuple[int, Task]] = []
    for i, task in enumerate(tasks):
        moment = task.completed_moment
        if moment is None:
            unknown.append((i, task))
        else:
            by_day.setdefault(moment.date(), []).append((i, task))
    b = _Builder()
    for day in sorted(by_day, reverse=True):
        if b.index.lines:
            b.blank()
        b.header(relative_day_label(day, today))
        for i, task in sorted(by_day[day], key=lambda p: p[1].completed_moment, reverse=True):
            b.item(i, task)
    if unknown:
        if b.index.lines:
            b.blank()
        b.header(UNKNOWN_DATE_LABEL)
        for i, task in unknown:
            b.item(i, task)
    return b.index


def build_display_index(
    tasks: Sequence[Task],
    grouping: Grouping,
    sections: Optional[Sequence[Section]] = None,
    now: Optional[dt.datetime] = None,
) -> DisplayIndex:
    """Derive display lines and selectable positions for ``tasks``.

    ``ItemLine.index`` always refers to the position inside ``tasks``.
    """
    now = now or dt.datetime.now()
    if grouping is Grouping.SECTION:
        return _build_sections(tasks, sections or [])
    if not tasks:
        return DisplayIndex()
    if grouping is Grouping.STATUS:
        return _build_status(tasks, now)
    if grouping is Grouping.DATE:
        return _build_dates(tasks, now.date())
    if grouping is Grouping.COMPLETED:
        return _build_completed(tasks, now.date())
    return _build_flat(tasks)
