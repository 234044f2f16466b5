from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

MIN_HEIGHT = 5
# Tab bar, title, status line and hint rows around the list.
CHROME_ROWS = 8


def height_for_terminal(rows: int) -> int:
    return max(MIN_HEIGHT, rows - CHROME_ROWS)


@dataclass
class Viewport:
    """Visible window over the display lines of the current view."""
    height: int = 20
    offset: int = 0
    header_rows: int = 1

    def clamp(self, total: int) -> None:
        top = max(0, total - self.height)
        self.offset = max(0, min(self.offset, top))

    def follow(self, line: Optional[int], total: int) -> None:
        """Scroll just enough to keep ``line`` visible."""
        if line is not None:
            if line < self.offset:
                self.offset = line
            elif line >= self.offset + self.height:
                self.offset = line - self.height + 1
        self.clamp(total)

    def resize(self, rows: int, total: int) -> None:
        self.height = height_for_terminal(rows)
        self.clamp(total)

    def scroll(self, delta: int, total: int) -> None:
        self.offset += delta
        self.clamp(total)

    def reset(self) -> None:
        self.offset = 0

    def window(self, total: int) -> range:
        return range(self.offset, min(total, self.offset + self.height))

    def contains(self, line: int) -> bool:
        return self.offset <= line < self.offset + self.height

    def line_at_row(self, row: int) -> int:
        """Display line under a row of the list area (may be out of range)."""
        return row - self.header_rows + self.offset
