"""
Display side of a session.

The session only ever calls append_lines() and clear(); whatever renders
the window reads `lines`. BufferDisplay keeps a bounded scrollback and
hard-wraps to the grid width.
"""

import threading
from collections import deque

from tabshell import config


class BufferDisplay:
    def __init__(self, columns=None, max_lines=None):
        self.columns = config.DISPLAY_COLUMNS if columns is None else columns
        self.lines = deque(maxlen=config.SCROLLBACK_LINES if max_lines is None else max_lines)
        self._lock = threading.Lock()

    def append_lines(self, text):
        wrapped = []
        for line in text.splitlines() or [""]:
            line = line.expandtabs()
            if not line:
                wrapped.append("")
            for i in range(0, len(line), self.columns):
                wrapped.append(line[i:i + self.columns])
        with self._lock:
            self.lines.extend(wrapped)
        self.on_append(wrapped)

    def on_append(self, lines):
        """Hook for renderers; called after every append."""

    def clear(self):
        with self._lock:
            self.lines.clear()

    def text(self):
        with self._lock:
            return "\n".join(self.lines)
