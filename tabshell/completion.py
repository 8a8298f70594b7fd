"""Filename completion against the session's working directory."""

import os


class Completion:
    """Result of completing the word under the cursor."""

    def __init__(self, line, cursor, matches):
        self.line = line
        self.cursor = cursor
        self.matches = matches

    @property
    def ambiguous(self):
        return len(self.matches) > 1


def token_at(line, cursor):
    """Return (start, token): the run of non-space characters ending at cursor."""
    start = cursor
    while start > 0 and not line[start - 1].isspace():
        start -= 1
    return start, line[start:cursor]


def list_matches(token, cwd):
    try:
        names = os.listdir(cwd)
    except OSError:
        return []
    show_hidden = token.startswith(".")
    return sorted(
        name for name in names
        if name.startswith(token) and (show_hidden or not name.startswith("."))
    )


def complete(line, cursor, cwd):
    start, token = token_at(line, cursor)
    matches = list_matches(token, cwd)
    if not matches:
        return Completion(line, cursor, [])

    if len(matches) == 1:
        replacement = matches[0]
        rest = line[cursor:]
        if not rest.startswith(" "):
            replacement += " "
        new_line = line[:start] + replacement + rest
        return Completion(new_line, start + len(replacement), matches)

    prefix = os.path.commonprefix(matches)
    if len(prefix) > len(token):
        new_line = line[:start] + prefix + line[cursor:]
        return Completion(new_line, start + len(prefix), matches)
    return Completion(line, cursor, matches)


def format_columns(names, width):
    """Lay names out in columns, row by row, no wider than width."""
    if not names:
        return []
    col_width = max(len(name) for name in names) + 2
    per_row = max(1, width // col_width)
    rows = []
    for i in range(0, len(names), per_row):
        row = names[i:i + per_row]
        rows.append("".join(name.ljust(col_width) for name in row).rstrip())
    return rows
