"""
Job Control
===========
A job is a pipeline that was stopped while in the foreground. The session's
JobTable keeps it (processes and capture pipe included) until it exits or
is killed:

    Running --stop--> Stopped --fg/bg--> Running --exit--> removed
"""

import signal
from itertools import count

from tabshell import config
from tabshell.console_log import log
from tabshell.errors import JobNotFound
from tabshell.executor import (
    DONE, FAILED, INTERRUPTED, NOT_STARTED, SIGNALED, STOPPED, TIMED_OUT,
    classify, supervise
)

RUNNING = "Running"
STOPPED_STATUS = "Stopped"


class Job:
    def __init__(self, job_id, group, command, status=STOPPED_STATUS):
        self.job_id = job_id
        self.group = group
        self.command = command
        self.status = status

    def __str__(self):
        return f"[{self.job_id}] {self.status:<8} {self.command}"


class FgResult:
    """How a foregrounded job ended (or stopped again)."""

    def __init__(self, job, outcome, output="", code=None):
        self.job = job
        self.outcome = outcome
        self.output = output
        self.code = code

    def describe(self):
        if self.outcome == STOPPED:
            return f"[{self.job.job_id}]+ Stopped  {self.job.command}"
        if self.outcome == TIMED_OUT:
            return f"timed out, job [{self.job.job_id}] terminated"
        if self.outcome == INTERRUPTED:
            return "interrupted"
        if self.code is None:
            return ""
        kind, code = classify(self.code)
        if kind == FAILED:
            return f"failed with exit code {code}"
        if kind == SIGNALED:
            return f"terminated by signal {code}"
        return ""


class JobTable:
    def __init__(self, timeout=None, grace=None):
        self.jobs = {}
        self._ids = count(start=1)
        self.timeout = config.JOB_TIMEOUT if timeout is None else timeout
        self.grace = config.KILL_GRACE if grace is None else grace
        log("Job table initialized", "SYSTEM")

    def __len__(self):
        return len(self.jobs)

    def add_stopped(self, group, command):
        job_id = next(self._ids)
        job = Job(job_id, group, command)
        self.jobs[job_id] = job
        log(f"Job [{job_id}] stopped: PID {group.pid} {command}", "JOB")
        return job

    def reap(self):
        """Non-blocking: drop every job whose processes have all exited."""
        finished = []
        for job_id, job in list(self.jobs.items()):
            if job.group.finished():
                job.group.close_capture()
                del self.jobs[job_id]
                finished.append(job)
                log(f"Job [{job_id}] done: exit {job.group.leader.returncode}", "JOB")
        return finished

    def listing(self):
        """Lines for the `jobs` built-in."""
        self.reap()
        if not self.jobs:
            return ["No jobs."]
        return [str(job) for job in self.jobs.values()]

    def get(self, job_id=None):
        """
        Look a job up by id; without an id, the most recently created job
        still in the table.
        """
        if not self.jobs:
            raise JobNotFound("no current job")
        if job_id is None:
            return self.jobs[max(self.jobs)]
        if job_id not in self.jobs:
            raise JobNotFound(
                f"job {job_id} not found (valid ids: {self._id_range()})")
        return self.jobs[job_id]

    def _id_range(self):
        ids = sorted(self.jobs)
        if len(ids) == 1:
            return str(ids[0])
        return f"{ids[0]}-{ids[-1]}"

    def remove(self, job):
        job.group.close_capture()
        self.jobs.pop(job.job_id, None)

    def resume(self, job):
        if job.status == STOPPED_STATUS:
            job.group.send_signal(signal.SIGCONT, everyone=True)
            job.status = RUNNING
            log(f"Job [{job.job_id}] continued", "JOB")

    def background(self, job_id=None):
        """`bg`: continue a stopped job without waiting for it."""
        self.reap()
        job = self.get(job_id)
        self.resume(job)
        return job

    def foreground(self, job_id=None, token=None, on_start=None):
        """
        `fg`: continue the job if stopped and follow it like a foreground
        pipeline until it exits, stops again, is interrupted or times out.
        The job leaves the table as soon as it is no longer alive.
        """
        self.reap()
        job = self.get(job_id)
        self.resume(job)
        if on_start is not None:
            on_start(job.group)

        outcome = NOT_STARTED
        try:
            outcome, captured = supervise(job.group, token, self.timeout)
        finally:
            if outcome == STOPPED:
                job.status = STOPPED_STATUS
            else:
                job.group.reap(self.grace)
                self.remove(job)

        output = captured.text() if len(captured) else ""
        code = None
        if outcome == DONE and job.group.last_stage_started:
            code = job.group.leader.returncode
        return FgResult(job, outcome, output, code)

    def kill(self, job_id=None):
        self.reap()
        job = self.get(job_id)
        job.group.reap(self.grace)
        self.remove(job)
        log(f"Job [{job.job_id}] killed", "JOB")
        return job

    def kill_all(self):
        killed = len(self.jobs)
        for job in list(self.jobs.values()):
            job.group.reap(self.grace)
            self.remove(job)
        if killed:
            log(f"Killed {killed} job(s)", "CLEANUP")
