"""
Session
=======
One shell per tab. A Session owns the tab's history, job table, working
directory, foreground pipeline and prompt line, and turns submitted lines
into built-in calls, pipelines or multiWatch runs. Output goes to the
session's display; errors are printed there too and never end the session.

SessionManager keeps the open tabs (new / next / close).
"""

import os
import threading

from tabshell import config
from tabshell.completion import complete, format_columns
from tabshell.console_log import log
from tabshell.control import CancelToken
from tabshell.display import BufferDisplay
from tabshell.editor import LineEditor
from tabshell.errors import CommandTimeout, ShellError
from tabshell.executor import NOT_STARTED, STOPPED, TIMED_OUT, PipelineExecutor
from tabshell.history import CommandHistory, ReverseSearch
from tabshell.jobs import JobTable
from tabshell.multiwatch import MultiWatch
from tabshell.parser import BuiltinCommand, CommandParser
from tabshell.secure_store import EncryptedStore

EXIT_SESSION = "EXIT_SESSION"
CLEAR_SCREEN = "CLEAR_SCREEN"

HELP_TEXT = """\
BUILT-INS:
  cd [dir]                 Change directory (home without an argument)
  pwd                      Print working directory
  history                  Show command history
  jobs                     List stopped and background jobs
  fg [id]                  Resume a job in the foreground
  bg [id]                  Resume a stopped job in the background
  kill [id]                Terminate a job
  multiWatch "c1" "c2"...  Run 2-10 commands side by side
  clear                    Clear the screen
  help                     Show this help
  exit                     Close this session

FEATURES:
  cmd1 | cmd2 | ...        Pipes (up to 16 stages)
  cmd < in > out           Redirection
  Ctrl+C / Ctrl+Z          Interrupt / stop the foreground command
  Ctrl+R                   Reverse history search (again: list matches)
  Tab                      Complete file names
  Ctrl+T / Ctrl+W / Ctrl+Tab   New / close / next session"""


class Session:
    def __init__(self, display=None, cwd=None, history=None, store=None,
                 safety_filter=None, executor=None, jobs=None, watch_options=None):
        self.display = display or BufferDisplay()
        self.cwd = os.path.abspath(cwd or os.getcwd())
        self.history = history if history is not None else CommandHistory()
        self.store = store
        self.jobs = jobs or JobTable()
        self.executor = executor or PipelineExecutor()
        self.safety_filter = safety_filter
        self.watch_options = watch_options or {}
        self.token = CancelToken()
        self.editor = LineEditor()
        self.search = None
        self.foreground = None
        self.watch = None
        self.closed = False
        self._running = threading.Lock()
        if self.store is not None:
            self.history.load(self.store)
        log(f"Session ready: {self.cwd}", "SYSTEM")

    def write(self, text):
        self.display.append_lines(text)

    def _error(self, error, prefix="tabshell"):
        log(f"{type(error).__name__}: {error}", "ERROR")
        self.write(f"{prefix}: {error}")

    # ------------------------------------------------------------------
    # Command execution
    # ------------------------------------------------------------------

    def execute(self, cmd_line):
        """
        Run one submitted line.
        Returns: EXIT_SESSION, CLEAR_SCREEN or None
        """
        with self._running:
            if self.closed:
                return EXIT_SESSION
            if not cmd_line.strip():
                return None
            return self._execute(cmd_line)

    def _execute(self, cmd_line):
        self.history.add(cmd_line)
        log(f"Execute: {cmd_line}", "CMD")
        for job in self.jobs.reap():
            self.write(f"[{job.job_id}]  Done  {job.command}")

        try:
            parsed = CommandParser.parse_command(cmd_line, self.safety_filter)
            if isinstance(parsed, BuiltinCommand):
                return self._run_builtin(parsed)
            self._run_pipeline(parsed)
        except ShellError as e:
            self._error(e)
        return None

    def _set_foreground(self, group):
        self.foreground = group

    def _run_pipeline(self, pipeline):
        try:
            result = self.executor.run(pipeline, self.cwd, self.token,
                                       on_start=self._set_foreground)
        finally:
            self.foreground = None

        for message in result.errors:
            self.write(f"tabshell: {message}")
        if result.kind == NOT_STARTED:
            return
        if result.output:
            self.write(result.output)

        if result.kind == STOPPED:
            job = self.jobs.add_stopped(result.group, pipeline.text)
            self.write(f"[{job.job_id}]+ Stopped  {job.command}")
        elif result.kind == TIMED_OUT:
            raise CommandTimeout(result.describe())
        elif not result.output:
            self.write(result.describe())

    def _run_builtin(self, builtin):
        handlers = {
            "cd": self._builtin_cd,
            "pwd": self._builtin_pwd,
            "history": self._builtin_history,
            "jobs": self._builtin_jobs,
            "fg": self._builtin_fg,
            "bg": self._builtin_bg,
            "kill": self._builtin_kill,
            "multiWatch": self._builtin_multiwatch,
            "help": self._builtin_help,
            "clear": self._builtin_clear,
            "exit": self._builtin_exit,
        }
        try:
            return handlers[builtin.name](builtin.args)
        except ShellError as e:
            self._error(e, builtin.name)
        return None

    def _builtin_cd(self, args):
        target = os.path.expanduser(args[0] if args else "~")
        path = os.path.normpath(os.path.join(self.cwd, target))
        if not os.path.isdir(path):
            raise ShellError(f"no such directory: {target}")
        if not os.access(path, os.X_OK):
            raise ShellError(f"permission denied: {target}")
        self.cwd = path
        log(f"CD: {self.cwd}", "CMD")

    def _builtin_pwd(self, args):
        self.write(self.cwd)

    def _builtin_history(self, args):
        self.write("\n".join(self.history.listing()))

    def _builtin_jobs(self, args):
        self.write("\n".join(self.jobs.listing()))

    def _fg_started(self, group):
        self.foreground = group
        self.write(group.command)

    def _builtin_fg(self, args):
        job_id = args[0] if args else None
        try:
            result = self.jobs.foreground(job_id, self.token, on_start=self._fg_started)
        finally:
            self.foreground = None

        if result.output:
            self.write(result.output)
        if result.outcome == TIMED_OUT:
            raise CommandTimeout(result.describe())
        if result.outcome == STOPPED or not result.output:
            self.write(result.describe())

    def _builtin_bg(self, args):
        job = self.jobs.background(args[0] if args else None)
        self.write(f"[{job.job_id}]+ {job.command} &")

    def _builtin_kill(self, args):
        job = self.jobs.kill(args[0] if args else None)
        self.write(f"[{job.job_id}]  Killed  {job.command}")

    def _builtin_multiwatch(self, commands):
        self.watch = MultiWatch(self.write, self.token, self.cwd, **self.watch_options)
        try:
            self.watch.run(commands)
        finally:
            self.watch = None

    def _builtin_help(self, args):
        self.write(HELP_TEXT)

    def _builtin_clear(self, args):
        self.display.clear()
        return CLEAR_SCREEN

    def _builtin_exit(self, args):
        return EXIT_SESSION

    # ------------------------------------------------------------------
    # Prompt and input events
    # ------------------------------------------------------------------

    @property
    def prompt(self):
        base = os.path.basename(self.cwd) or "/"
        return f"{base} > "

    @property
    def prompt_text(self):
        if self.search is not None:
            return self.search.prompt()
        return self.prompt + self.editor.buffer

    @property
    def cursor_offset(self):
        if self.search is not None:
            return len(self.prompt_text)
        return len(self.prompt) + self.editor.cursor

    def on_char(self, ch):
        if self.search is not None:
            self.search.type(ch)
        else:
            self.editor.insert(ch)

    def on_backspace(self):
        if self.search is not None:
            self.search.backspace()
        else:
            self.editor.backspace()

    def on_cursor(self, motion):
        """motion: 'left', 'right', 'home' or 'end'."""
        if self.search is not None:
            self._leave_search(accept=True)
        if motion == "left":
            self.editor.move(-1)
        elif motion == "right":
            self.editor.move(1)
        elif motion == "home":
            self.editor.home()
        elif motion == "end":
            self.editor.end()

    def on_submit(self):
        """
        Enter key. Returns the line to execute, or None when Enter only
        accepted a reverse-search match onto the prompt.
        """
        if self.search is not None:
            self._leave_search(accept=True)
            return None
        line = self.editor.take()
        self.token.reset()
        self.write(self.prompt + line)
        return line

    def on_cancel(self):
        if self.search is not None:
            self._leave_search(accept=False)
        else:
            self.editor.take()

    def on_tab(self):
        result = complete(self.editor.buffer, self.editor.cursor, self.cwd)
        if result.matches:
            self.editor.set(result.line, result.cursor)
        if result.ambiguous:
            self.write("\n".join(format_columns(result.matches, self.display.columns)))
        return result

    def on_search(self):
        """
        First press starts a reverse search; pressing again lists every
        candidate when more than one matches.
        """
        if self.search is None:
            self.search = ReverseSearch(self.history, self.editor.buffer)
            return
        candidates = self.search.candidates()
        if len(candidates) > 1:
            self.write("\n".join(f"  {entry}" for entry in candidates))

    def _leave_search(self, accept):
        match = self.search.preview() if accept else None
        self.editor.set(match if match else self.search.original_line)
        self.search = None

    def request_interrupt(self):
        self.token.request_interrupt()

    def request_stop(self):
        if self.foreground is not None:
            self.token.request_stop()

    # ------------------------------------------------------------------
    # Teardown
    # ------------------------------------------------------------------

    def close(self, wait=None):
        """
        Kill everything this session started and save its history. A command
        still running is interrupted and gets up to wait seconds to tear down
        its own processes before they are killed from here.
        """
        if self.closed:
            return
        self.closed = True
        self.token.request_interrupt()
        wait = config.KILL_GRACE * 4 + 1 if wait is None else wait
        idle = self._running.acquire(timeout=wait)
        try:
            if self.watch is not None:
                self.watch.teardown()
            if self.foreground is not None:
                self.foreground.reap()
            self.jobs.kill_all()
            if self.store is not None:
                self.history.save(self.store)
        finally:
            if idle:
                self._running.release()
        log("Session closed", "SYSTEM")


class SessionManager:
    """The open sessions of the window, one per tab."""

    def __init__(self, display_factory=BufferDisplay, safety_filter=None,
                 persist_history=None):
        self.display_factory = display_factory
        self.safety_filter = safety_filter
        self.persist_history = config.PERSIST_HISTORY if persist_history is None else persist_history
        self.sessions = []
        self.active = -1

    @property
    def current(self):
        return self.sessions[self.active] if self.sessions else None

    def new_session(self, cwd=None):
        store = None
        if self.persist_history:
            store = EncryptedStore(config.HISTORY_FILE, config.KEY_FILE)
        session = Session(self.display_factory(), cwd, store=store,
                          safety_filter=self.safety_filter)
        self.sessions.append(session)
        self.active = len(self.sessions) - 1
        log(f"Session {self.active + 1} opened", "SYSTEM")
        return session

    def next_session(self):
        if self.sessions:
            self.active = (self.active + 1) % len(self.sessions)
        return self.current

    def close_session(self, session=None):
        """Close session (default: the active one). Returns how many remain."""
        session = session or self.current
        if session is None:
            return 0
        index = self.sessions.index(session)
        session.close()
        self.sessions.pop(index)
        if index < self.active or self.active >= len(self.sessions):
            self.active -= 1
        if self.sessions and self.active < 0:
            self.active = 0
        return len(self.sessions)

    def close_all(self):
        while self.sessions:
            self.close_session(self.sessions[-1])
