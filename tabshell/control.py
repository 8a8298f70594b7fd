"""
Interrupt and stop requests for a session.

The input side (key bindings, SIGINT/SIGTSTP handlers) sets the flags; the
supervision loops in the executor, job manager and multiWatch read them at
the top of every iteration and use wait() as their idle tick, so a request
wakes them without waiting out the tick.
"""

import threading


class CancelToken:
    def __init__(self):
        self._interrupt = threading.Event()
        self._stop = threading.Event()
        self._changed = threading.Event()

    def request_interrupt(self):
        self._interrupt.set()
        self._changed.set()

    def request_stop(self):
        self._stop.set()
        self._changed.set()

    def consume_interrupt(self):
        """Return True once per interrupt request."""
        if not self._interrupt.is_set():
            return False
        self._interrupt.clear()
        self._settle()
        return True

    def consume_stop(self):
        if not self._stop.is_set():
            return False
        self._stop.clear()
        self._settle()
        return True

    def reset(self):
        self._interrupt.clear()
        self._stop.clear()
        self._changed.clear()

    def wait(self, timeout):
        """Sleep up to timeout seconds, returning early on any request."""
        return self._changed.wait(timeout)

    def _settle(self):
        if not self._interrupt.is_set() and not self._stop.is_set():
            self._changed.clear()
