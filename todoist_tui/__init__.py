"""Terminal Todoist client with Vim keybindings."""

__version__ = "0.9.9"
