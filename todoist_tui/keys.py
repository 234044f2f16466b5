"""Key table and the two-key sequence state machine.

Keys are canonical strings: printable characters as themselves, ``space``,
``enter``, ``escape``, ``tab``, ``s-tab``, ``backspace``, arrows, ``f1``
and ``c-<letter>`` for control chords.
"""
from __future__ import annotations

import logging
from typing import Dict, Mapping, Optional

logger = logging.getLogger('todoist_tui')

# Actions that fire only when their key is pressed twice in a row (gg, dd, yy).
SEQUENCE_ACTIONS = frozenset({'top', 'delete', 'copy'})

DEFAULT_KEYMAP: Dict[str, str] = {
    # navigation
    'k': 'up', 'up': 'up',
    'j': 'down', 'down': 'down',
    'g': 'top',
    'G': 'bottom',
    'c-u': 'half_up',
    'c-d': 'half_down',
    'pageup': 'half_up',
    'pagedown': 'half_down',
    'h': 'left', 'left': 'left',
    'l': 'right', 'right': 'right',
    'tab': 'switch_pane',
    'enter': 'select',
    'escape': 'back',
    # general
    'q': 'quit',
    '?': 'help',
    'r': 'refresh',
    '/': 'search',
    ':': 'command',
    'f1': 'toggle_hints',
    'D': 'set_default_view',
    'V': 'completed',
    'c-z': 'undo',
    # items
    'a': 'add',
    'Q': 'quick_add',
    'e': 'edit',
    'd': 'delete',
    'x': 'complete',
    'y': 'copy',
    'space': 'toggle_select',
    '!': 'priority1',
    '@': 'priority2',
    '#': 'priority3',
    '$': 'priority4',
    '<': 'due_today',
    '>': 'due_tomorrow',
    'H': 'move_prev_day',
    'L': 'move_next_day',
    'R': 'reschedule',
    's': 'add_subtask',
    'S': 'manage_sections',
    'm': 'move_task',
    'M': 'move_to_project',
    'A': 'add_comment',
    'E': 'edit_comment',
    'X': 'delete_comment',
    'n': 'new',
    'f': 'toggle_favorite',
    # tabs
    '1': 'tab_inbox',
    '2': 'tab_today',
    '3': 'tab_upcoming',
    '4': 'tab_labels',
    '5': 'tab_calendar',
    '6': 'tab_projects',
    'i': 'tab_inbox',
    't': 'tab_today', 'T': 'tab_today',
    'u': 'tab_upcoming', 'U': 'tab_upcoming',
    'p': 'tab_projects', 'P': 'tab_projects',
    'c': 'tab_calendar', 'C': 'tab_calendar',
}

ACTIONS = frozenset(DEFAULT_KEYMAP.values())


def build_keymap(overrides: Optional[Mapping[str, object]] = None) -> Dict[str, str]:
    """Apply ``{action: key}`` (or ``{action: [keys]}``) overrides to the default table.

    An overridden action loses its default keys. Unknown actions are ignored.
    """
    keymap = dict(DEFAULT_KEYMAP)
    for action, keys in (overrides or {}).items():
        if action not in ACTIONS:
            logger.warning("Unknown keymap action %r ignored", action)
            continue
        if isinstance(keys, str):
            keys = [keys]
        if not keys:
            continue
        for key in [k for k, a in keymap.items() if a == action]:
            del keymap[key]
        for key in keys:
            keymap[str(key)] = action
    return keymap


class KeyStateMachine:
    """Translate keys into action names, resolving gg/dd/yy style sequences.

    A key that does not continue a pending sequence cancels it and is then
    looked up on its own.
    """

    def __init__(self, keymap: Optional[Mapping[str, str]] = None):
        self.keymap: Dict[str, str] = dict(keymap or DEFAULT_KEYMAP)
        self.pending: Optional[str] = None

    def reset(self) -> None:
        self.pending = None

    def feed(self, key: str) -> Optional[str]:
        if self.pending is not None:
            starter = self.pending
            self.pending = None
            if key == starter:
                return self.keymap.get(starter)
            logger.debug("Key sequence %r cancelled by %r", starter, key)
        action = self.keymap.get(key)
        if action in SEQUENCE_ACTIONS:
            self.pending = key
            return None
        return action
