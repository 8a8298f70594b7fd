"""
MultiWatch
==========
Runs several commands side by side and merges their output into one
stream:

    [14:02:11] ping -c 3 localhost: 64 bytes from ...
    [14:02:11] date: Sun Oct 18 14:02:11 2026
    [14:02:11] date: finished (exit code 0)

Each command writes into its own temporary sink file, so output from a
command that exits quickly is still there to read. The supervisor reads
every sink in turn, checks which processes have finished, and on any exit
path (all done, interrupt, time limit) kills what is left, closes the
sinks and deletes them.
"""

import os
import subprocess
import tempfile
import threading
import time
from datetime import datetime

from tabshell import config
from tabshell.console_log import log
from tabshell.errors import SpawnError, UsageError
from tabshell.executor import SIGNALED, classify, spawn, terminate_process


def timestamp():
    return datetime.now().strftime("%H:%M:%S")


def watch_argv(command):
    """Commands with a pipe go through the sub-shell; the rest run directly."""
    if "|" in command:
        return [config.SUBSHELL, "-c", command]
    return command.split()


class WatchProcess:
    def __init__(self, index, command, sink_path):
        self.index = index
        self.command = command
        self.sink_path = sink_path
        self.proc = None
        self.reader = None
        self.active = False
        self.pending = b""
        self.returncode = None

    @property
    def pid(self):
        return self.proc.pid if self.proc else None

    def __repr__(self):
        return f"WatchProcess({self.index}, {self.command!r}, pid={self.pid})"


class MultiWatch:
    def __init__(self, emit, token=None, cwd=None, timeout=None, tick=None,
                 finish_grace=None, kill_grace=None, sink_dir=None):
        self.emit = emit
        self.token = token
        self.cwd = cwd or os.getcwd()
        self.timeout = config.MULTIWATCH_TIMEOUT if timeout is None else timeout
        self.tick = config.POLL_INTERVAL if tick is None else tick
        self.finish_grace = config.FINISH_GRACE if finish_grace is None else finish_grace
        self.kill_grace = config.KILL_GRACE if kill_grace is None else kill_grace
        self.sink_dir = sink_dir or config.SINK_DIR
        self.watched = []
        self.cancelled = False
        self.timed_out = False
        self._teardown_lock = threading.Lock()
        self._torn_down = False

    def run(self, commands):
        """Watch commands until all finish or the watch is cancelled."""
        if not 1 <= len(commands) <= config.MULTIWATCH_MAX:
            raise UsageError(
                f"multiWatch takes 1 to {config.MULTIWATCH_MAX} commands, got {len(commands)}")
        log(f"multiWatch: {len(commands)} command(s)", "WATCH")
        try:
            self._start(commands)
            self._supervise()
        finally:
            self.teardown()
        return self.watched

    # ------------------------------------------------------------------
    # Start-up
    # ------------------------------------------------------------------

    def _start(self, commands):
        created = int(time.time())
        for index, command in enumerate(commands):
            fd, path = tempfile.mkstemp(
                prefix=f"multiwatch-{os.getpid()}-{index}-{created}-",
                suffix=".out", dir=self.sink_dir)
            watch = WatchProcess(index, command, path)
            self.watched.append(watch)
            try:
                watch.proc = spawn(watch_argv(command), subprocess.DEVNULL,
                                   fd, subprocess.STDOUT, self.cwd)
            except SpawnError as e:
                self._line(watch, str(e))
                continue
            finally:
                os.close(fd)
            watch.reader = open(path, "rb")
            watch.active = True
            log(f"multiWatch [{index}] PID {watch.pid}: {command}", "WATCH")

    # ------------------------------------------------------------------
    # Supervision
    # ------------------------------------------------------------------

    def _supervise(self):
        deadline = time.monotonic() + self.timeout
        while True:
            if self.token is not None and self.token.consume_interrupt():
                self.cancelled = True
                self.emit(f"[{timestamp()}] multiWatch: interrupted")
                return

            got_data = False
            for watch in self.watched:
                if self._read(watch):
                    got_data = True
            if not got_data:
                self._wait(self.tick)

            for watch in self.watched:
                if watch.active and watch.proc.poll() is not None:
                    self._finish(watch)

            if not any(watch.active for watch in self.watched):
                self._wait(self.finish_grace)
                for watch in self.watched:
                    self._read(watch)
                    self._flush(watch)
                return

            if time.monotonic() >= deadline:
                self.timed_out = True
                self.emit(f"[{timestamp()}] multiWatch: stopped after {self.timeout:g}s")
                return

    def _wait(self, seconds):
        if self.token is not None:
            self.token.wait(seconds)
        else:
            time.sleep(seconds)

    def _read(self, watch):
        """Emit the complete lines now in the sink; True if anything was read."""
        if watch.reader is None:
            return False
        data = watch.reader.read(config.READ_CHUNK * 16)
        if not data:
            return False
        lines = (watch.pending + data).split(b"\n")
        watch.pending = lines.pop()
        for line in lines:
            self._line(watch, line.decode("utf-8", errors="replace"))
        return True

    def _flush(self, watch):
        if watch.pending:
            self._line(watch, watch.pending.decode("utf-8", errors="replace"))
            watch.pending = b""

    def _finish(self, watch):
        watch.active = False
        watch.returncode = watch.proc.returncode
        while self._read(watch):
            pass
        self._flush(watch)
        kind, code = classify(watch.returncode)
        if kind == SIGNALED:
            status = f"terminated by signal {code}"
        else:
            status = f"finished (exit code {code})"
        self._line(watch, status)
        log(f"multiWatch [{watch.index}] {status}", "WATCH")

    def _line(self, watch, text):
        self.emit(f"[{timestamp()}] {watch.command}: {text}")

    # ------------------------------------------------------------------
    # Teardown
    # ------------------------------------------------------------------

    def teardown(self):
        """Kill what is still running, close and delete every sink. Idempotent."""
        with self._teardown_lock:
            if self._torn_down:
                return
            self._torn_down = True
            for watch in self.watched:
                try:
                    if watch.proc is not None:
                        if watch.proc.poll() is None:
                            log(f"multiWatch [{watch.index}] terminating PID {watch.pid}", "CLEANUP")
                        watch.returncode = terminate_process(watch.proc, self.kill_grace)
                    watch.active = False
                finally:
                    if watch.reader is not None:
                        watch.reader.close()
                        watch.reader = None
                    try:
                        os.unlink(watch.sink_path)
                    except FileNotFoundError:
                        pass
