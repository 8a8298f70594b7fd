"""
Pipeline Executor
=================
Runs a parsed Pipeline as real processes:

    stage1 --pipe--> stage2 --pipe--> ... stageN --capture pipe--> shell

Every stage is spawned at once, the shell follows the capture pipe with a
readiness selector until all stages exit, the time budget runs out, or the
session asks for an interrupt or stop. Whatever happens, every process that
is not handed to the job table is reaped before run() returns.

The primitives here (spawn, terminate_process, ProcessGroup, supervise) are
shared with the job table and multiWatch.
"""

import os
import selectors
import signal
import subprocess
import time

import psutil

from tabshell import config
from tabshell.console_log import log
from tabshell.errors import RedirectionError, SpawnError

# Outcome of a run
SUCCESS = "success"
FAILED = "failed"
SIGNALED = "signaled"
TIMED_OUT = "timed out"
INTERRUPTED = "interrupted"
STOPPED = "stopped"
NOT_STARTED = "not started"

# Loop result of supervise() when every process has exited
DONE = "done"

# Upper bound on chunks taken from the capture pipe per wake-up, so a
# chatty process cannot keep the loop from checking its token and deadline.
_CHUNKS_PER_READ = 64


# ============================================================================
# PROCESS PRIMITIVES
# ============================================================================

def spawn(argv, stdin=None, stdout=None, stderr=None, cwd=None):
    """Start argv in a new session. OS failures become SpawnError."""
    try:
        return subprocess.Popen(
            argv, stdin=stdin, stdout=stdout, stderr=stderr,
            cwd=cwd, close_fds=True, start_new_session=True
        )
    except FileNotFoundError as e:
        if cwd and e.filename == cwd:
            raise SpawnError(f"working directory is gone: {cwd}") from None
        raise SpawnError(f"command not found: {argv[0]}") from None
    except PermissionError:
        raise SpawnError(f"permission denied: {argv[0]}") from None
    except OSError as e:
        raise SpawnError(f"failed to execute '{argv[0]}': {e.strerror or e}") from None


def _descendants(pid):
    try:
        return psutil.Process(pid).children(recursive=True)
    except psutil.Error:
        return []


def terminate_process(proc, grace=None):
    """
    SIGTERM, then SIGKILL if proc outlives the grace period. proc is always
    reaped; descendants it leaves behind (e.g. the children of sh -c) are
    terminated the same way. Returns proc's exit status.
    """
    grace = config.KILL_GRACE if grace is None else grace
    if proc.poll() is not None:
        return proc.returncode

    children = _descendants(proc.pid)
    proc.terminate()
    # stopped processes act on SIGTERM only after SIGCONT
    proc.send_signal(signal.SIGCONT)
    try:
        proc.wait(timeout=grace)
    except subprocess.TimeoutExpired:
        log(f"PID {proc.pid} survived SIGTERM, sending SIGKILL", "CLEANUP")
        proc.kill()
        proc.wait()

    for child in children:
        try:
            child.terminate()
            child.resume()
        except psutil.NoSuchProcess:
            pass
    if children:
        _, alive = psutil.wait_procs(children, timeout=grace)
        for child in alive:
            try:
                child.kill()
            except psutil.NoSuchProcess:
                pass
    return proc.returncode


def classify(returncode):
    """Map a Popen return code onto (kind, code shown to the user)."""
    if returncode == 0:
        return SUCCESS, 0
    if returncode < 0:
        return SIGNALED, -returncode
    return FAILED, returncode


# ============================================================================
# PROCESS GROUP
# ============================================================================

class ProcessGroup:
    """
    The processes started for one command line plus the pipe their output
    is captured from. A stopped pipeline keeps its group inside its Job so
    that `fg` can keep streaming from the same capture.
    """

    def __init__(self, command):
        self.command = command
        self.procs = []
        self.last_stage_started = False
        self.capture = None
        self._selector = None

    @property
    def leader(self):
        """The last stage: the foreground process signals are sent to."""
        return self.procs[-1] if self.procs else None

    @property
    def pid(self):
        return self.procs[-1].pid if self.procs else None

    @property
    def pids(self):
        return [proc.pid for proc in self.procs]

    def attach_capture(self, fd):
        os.set_blocking(fd, False)
        self.capture = fd
        self._selector = selectors.DefaultSelector()
        self._selector.register(fd, selectors.EVENT_READ)

    def read_available(self, timeout=0.0):
        """
        Wait up to timeout seconds for the capture to become readable, then
        return what it holds. End-of-stream closes the capture.
        """
        if self.capture is None:
            return b""
        if not self._selector.select(timeout):
            return b""

        chunks = []
        for _ in range(_CHUNKS_PER_READ):
            try:
                data = os.read(self.capture, config.READ_CHUNK)
            except BlockingIOError:
                break
            if not data:
                self.close_capture()
                break
            chunks.append(data)
        return b"".join(chunks)

    def close_capture(self):
        if self._selector is not None:
            self._selector.close()
            self._selector = None
        if self.capture is not None:
            os.close(self.capture)
            self.capture = None

    def finished(self):
        """Non-blocking: reap whatever has exited, True once all have."""
        done = [proc.poll() is not None for proc in self.procs]
        return all(done)

    def send_signal(self, sig, everyone=False):
        targets = self.procs if everyone else self.procs[-1:]
        for proc in targets:
            try:
                proc.send_signal(sig)
            except ProcessLookupError:
                pass

    def reap(self, grace=None):
        """Terminate whatever is still alive, reap everything, close the capture."""
        try:
            for proc in self.procs:
                terminate_process(proc, grace)
        finally:
            self.close_capture()


class CapturedOutput:
    """Bytes read from a capture pipe, kept up to a size limit."""

    def __init__(self, limit=None):
        self.limit = config.MAX_CAPTURE_BYTES if limit is None else limit
        self.data = bytearray()
        self.truncated = False

    def add(self, chunk):
        room = self.limit - len(self.data)
        if len(chunk) > room:
            self.truncated = True
            chunk = chunk[:max(room, 0)]
        self.data += chunk

    def __len__(self):
        return len(self.data)

    def text(self):
        text = self.data.decode("utf-8", errors="replace")
        if self.truncated:
            text += "\n[output truncated]"
        return text


def supervise(group, token=None, timeout=None, tick=None):
    """
    Follow a started group until every process exits, the token asks for an
    interrupt or stop, or timeout seconds pass. An interrupt sends SIGINT to
    the leader; a stop sends SIGSTOP to every process of the group.
    Returns: (DONE | INTERRUPTED | STOPPED | TIMED_OUT, CapturedOutput)
    """
    timeout = config.PIPELINE_TIMEOUT if timeout is None else timeout
    tick = config.POLL_INTERVAL if tick is None else tick
    captured = CapturedOutput()
    deadline = time.monotonic() + timeout

    while True:
        if token is not None and token.consume_interrupt():
            log(f"SIGINT -> {group.pid} ({group.command})", "PROCESS")
            group.send_signal(signal.SIGINT)
            outcome = INTERRUPTED
            break
        if token is not None and token.consume_stop():
            log(f"SIGSTOP -> {group.pids} ({group.command})", "PROCESS")
            group.send_signal(signal.SIGSTOP, everyone=True)
            outcome = STOPPED
            break

        if group.capture is not None:
            captured.add(group.read_available(tick))
        elif token is not None:
            token.wait(tick)
        else:
            time.sleep(tick)

        if group.finished():
            outcome = DONE
            break
        if time.monotonic() >= deadline:
            outcome = TIMED_OUT
            break

    for _ in range(_CHUNKS_PER_READ):
        chunk = group.read_available(0)
        if not chunk:
            break
        captured.add(chunk)
    return outcome, captured


# ============================================================================
# PIPELINE EXECUTOR
# ============================================================================

class RunResult:
    """What happened to one pipeline run."""

    def __init__(self, kind, group, output="", code=None, errors=(), timeout=None):
        self.kind = kind
        self.group = group
        self.output = output
        self.code = code
        self.errors = list(errors)
        self.timeout = timeout

    def describe(self):
        """The message shown in place of output when nothing was captured."""
        if self.kind == FAILED:
            return f"failed with exit code {self.code}"
        if self.kind == SIGNALED:
            return f"terminated by signal {self.code}"
        if self.kind == TIMED_OUT:
            return f"timed out after {self.timeout:g}s, terminated"
        if self.kind == INTERRUPTED:
            return "interrupted"
        return ""

    def __repr__(self):
        return f"RunResult({self.kind!r}, code={self.code!r}, bytes={len(self.output)})"


def _open_target(path, cwd, mode, opened):
    full = os.path.join(cwd, os.path.expanduser(path))
    try:
        f = open(full, mode)
    except OSError as e:
        what = "input" if "r" in mode else "output"
        raise RedirectionError(
            f"cannot open {what} file '{path}': {e.strerror or e}") from None
    opened.append(f)
    return f


def _close_fd(fd):
    if fd is not None:
        os.close(fd)


class PipelineExecutor:
    def __init__(self, timeout=None, tick=None, grace=None):
        self.timeout = config.PIPELINE_TIMEOUT if timeout is None else timeout
        self.tick = config.POLL_INTERVAL if tick is None else tick
        self.grace = config.KILL_GRACE if grace is None else grace

    def start(self, pipeline, cwd=None):
        """
        Spawn every stage, last stage first. Stage i writes stdout and
        stderr into the pipe read by stage i+1; the last stage writes into
        the capture pipe unless it redirects its stdout to a file.
        A stage whose redirection or spawn fails is skipped: the stage
        before it writes to the null device and the stage after it reads
        end-of-file.
        Returns: (ProcessGroup, list of error messages)
        """
        cwd = cwd or os.getcwd()
        group = ProcessGroup(pipeline.text)
        errors = []
        stages = list(pipeline)
        last = len(stages) - 1

        try:
            capture_r, capture_w = os.pipe()
        except OSError as e:
            raise SpawnError(f"cannot create pipe: {e.strerror}") from None

        downstream = capture_w   # write end for the stage being spawned; None = /dev/null
        try:
            for index in range(last, -1, -1):
                stage = stages[index]
                in_r = in_w = None
                opened = []
                proc = None
                try:
                    if index > 0:
                        in_r, in_w = os.pipe()
                        stdin = in_r
                    elif stage.input_path:
                        stdin = _open_target(stage.input_path, cwd, "rb", opened)
                    else:
                        stdin = subprocess.DEVNULL

                    stdout = stderr = subprocess.DEVNULL if downstream is None else downstream
                    if index == last and stage.output_path:
                        stdout = _open_target(stage.output_path, cwd, "wb", opened)

                    proc = spawn(stage.argv, stdin, stdout, stderr, cwd)
                except OSError as e:
                    errors.insert(0, f"cannot create pipe: {e.strerror}")
                except (RedirectionError, SpawnError) as e:
                    errors.insert(0, str(e))
                finally:
                    for f in opened:
                        f.close()
                    _close_fd(in_r)
                    if downstream != capture_w:
                        _close_fd(downstream)
                    downstream = None

                if proc is None:
                    _close_fd(in_w)
                    continue
                group.procs.insert(0, proc)
                if index == last:
                    group.last_stage_started = True
                downstream = in_w
        except BaseException:
            if downstream != capture_w:
                _close_fd(downstream)
            os.close(capture_r)
            group.reap(self.grace)
            raise
        finally:
            os.close(capture_w)

        if group.procs:
            group.attach_capture(capture_r)
            log(f"Started {group.pids}: {pipeline.text}", "PROCESS")
        else:
            os.close(capture_r)
        return group, errors

    def run(self, pipeline, cwd=None, token=None, on_start=None):
        """
        Execute the pipeline and wait for it.
        on_start(group) is called once the processes exist, before waiting.
        A STOPPED result carries a live group that the caller must hand to
        the job table; any other result has reaped every process.
        When the last stage could not be started nothing is classified:
        the result is NOT_STARTED and only the stage errors are reported.
        """
        group, errors = self.start(pipeline, cwd)
        if not group.procs:
            return RunResult(NOT_STARTED, group, errors=errors)

        handed_off = False
        try:
            if on_start is not None:
                on_start(group)
            outcome, captured = supervise(group, token, self.timeout, self.tick)
            if outcome == STOPPED:
                handed_off = True
        finally:
            if not handed_off:
                group.reap(self.grace)

        output = captured.text() if len(captured) else ""
        if outcome == DONE:
            if not group.last_stage_started:
                log(f"Pipeline {group.pids} done, last stage never started", "PROCESS")
                return RunResult(NOT_STARTED, group, output, errors=errors)
            kind, code = classify(group.leader.returncode)
            log(f"Pipeline {group.pids} {kind} ({code})", "PROCESS")
            return RunResult(kind, group, output, code, errors)
        if outcome == TIMED_OUT:
            log(f"Pipeline {group.pids} timed out after {self.timeout:g}s", "PROCESS")
            return RunResult(TIMED_OUT, group, output, errors=errors, timeout=self.timeout)
        return RunResult(outcome, group, output, errors=errors)
