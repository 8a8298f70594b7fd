"""
Errors reported inline in a session. None of them ends the session; the
session prints the message and goes back to the prompt.
"""


class ShellError(Exception):
    pass


class UsageError(ShellError):
    """Malformed built-in, unclosed quote, too many stages."""


class CommandBlocked(ShellError):
    """The session's safety filter refused the line."""


class SpawnError(ShellError):
    """A process could not be created or its image could not be loaded."""


class RedirectionError(ShellError):
    """A redirection target could not be opened."""


class CommandTimeout(ShellError):
    pass


class JobNotFound(ShellError):
    pass
