"""The line being typed at the prompt."""


class LineEditor:
    def __init__(self):
        self.buffer = ""
        self.cursor = 0

    def insert(self, text):
        self.buffer = self.buffer[:self.cursor] + text + self.buffer[self.cursor:]
        self.cursor += len(text)

    def backspace(self):
        if self.cursor > 0:
            self.buffer = self.buffer[:self.cursor - 1] + self.buffer[self.cursor:]
            self.cursor -= 1

    def move(self, delta):
        self.cursor = min(max(self.cursor + delta, 0), len(self.buffer))

    def home(self):
        self.cursor = 0

    def end(self):
        self.cursor = len(self.buffer)

    def set(self, text, cursor=None):
        self.buffer = text
        self.cursor = len(text) if cursor is None else cursor

    def take(self):
        """Return the line and start a fresh one."""
        line = self.buffer
        self.set("")
        return line
