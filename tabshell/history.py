"""
Command History & Reverse Search
================================
History keeps the submitted command lines of a session, oldest first,
bounded and without consecutive duplicates.

Reverse search scores every entry, newest first:
  1. the query is a substring of the entry          -> len(query)
  2. same, ignoring case                            -> len(query)
  3. otherwise the longest run of characters shared
     by both, ignoring case                         -> length of that run
Anything scoring 1 or more is a candidate; the best match is the highest
score, and among equal scores the most recent entry.
"""

from collections import deque

from tabshell import config
from tabshell.console_log import log


def longest_common_substring(a, b):
    """Length of the longest contiguous run shared by a and b (O(len(a)*len(b)))."""
    if not a or not b:
        return 0
    best = 0
    previous = [0] * (len(b) + 1)
    for ch in a:
        current = [0] * (len(b) + 1)
        for j, other in enumerate(b, start=1):
            if ch == other:
                current[j] = previous[j - 1] + 1
                if current[j] > best:
                    best = current[j]
        previous = current
    return best


def match_score(query, entry):
    if not query:
        return 0
    if query in entry:
        return len(query)
    lowered_query = query.lower()
    lowered_entry = entry.lower()
    if lowered_query in lowered_entry:
        return len(query)
    return longest_common_substring(lowered_query, lowered_entry)


class CommandHistory:
    def __init__(self, capacity=None):
        self.capacity = config.HISTORY_CAPACITY if capacity is None else capacity
        self._entries = deque(maxlen=self.capacity)

    def __len__(self):
        return len(self._entries)

    def __iter__(self):
        return iter(self._entries)

    @property
    def last(self):
        return self._entries[-1] if self._entries else None

    def add(self, command):
        """Append command; returns False when it was skipped."""
        command = command.strip()
        if not command or command == self.last:
            return False
        self._entries.append(command)
        return True

    def listing(self):
        """Numbered lines for the `history` built-in."""
        return [f"{i:>5}  {command}" for i, command in enumerate(self._entries, start=1)]

    def scored(self, query):
        """(score, entry) for every entry, newest first."""
        return [(match_score(query, entry), entry) for entry in reversed(self._entries)]

    def best_match(self, query):
        best_score, best_entry = 0, None
        for score, entry in self.scored(query):
            if score > best_score:
                best_score, best_entry = score, entry
        return best_entry

    def candidates(self, query):
        """
        Every entry scoring at least 1, best first. Equal scores keep the
        newest first; repeated commands appear once.
        """
        seen = set()
        found = []
        for score, entry in self.scored(query):
            if score >= 1 and entry not in seen:
                seen.add(entry)
                found.append((score, entry))
        found.sort(key=lambda item: item[0], reverse=True)
        return [entry for _, entry in found]

    # ----------------------------------------------------------------------
    # Persistence
    # ----------------------------------------------------------------------

    def load(self, store):
        loaded = 0
        for record in store.read_records():
            if self.add(record):
                loaded += 1
        log(f"Loaded {loaded} history entries", "SYSTEM")
        return loaded

    def save(self, store):
        return store.write_records(self._entries)


class ReverseSearch:
    """Incremental reverse search driven by the line editor."""

    def __init__(self, history, original_line=""):
        self.history = history
        self.original_line = original_line
        self.query = ""
        self._match = None
        self._matched_query = None

    def type(self, ch):
        self.query += ch

    def backspace(self):
        self.query = self.query[:-1]

    def preview(self):
        """The proposed match for the current query, or None."""
        if self._matched_query != self.query:
            self._match = self.history.best_match(self.query)
            self._matched_query = self.query
        return self._match

    def candidates(self):
        return self.history.candidates(self.query)

    def prompt(self):
        return f"(reverse-i-search)'{self.query}': {self.preview() or ''}"
