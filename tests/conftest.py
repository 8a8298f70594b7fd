import threading
import time

import pytest

from tabshell import config
from tabshell.display import BufferDisplay
from tabshell.executor import PipelineExecutor
from tabshell.jobs import JobTable
from tabshell.session import Session


@pytest.fixture(autouse=True)
def quiet_console(monkeypatch):
    monkeypatch.setattr(config, "CONSOLE_LOG", False)


@pytest.fixture
def sink_dir(tmp_path_factory):
    return str(tmp_path_factory.mktemp("sinks"))


@pytest.fixture
def workdir(tmp_path):
    path = tmp_path / "work"
    path.mkdir()
    return path


@pytest.fixture
def session(workdir, sink_dir):
    s = Session(
        BufferDisplay(columns=200),
        cwd=str(workdir),
        executor=PipelineExecutor(timeout=5.0, grace=0.5),
        jobs=JobTable(timeout=10.0, grace=0.5),
        watch_options={"sink_dir": sink_dir, "timeout": 10.0},
    )
    yield s
    s.close()


def later(delay, action):
    """Run action on another thread after delay seconds, like a key press."""
    timer = threading.Timer(delay, action)
    timer.daemon = True
    timer.start()
    return timer


def wait_for(condition, timeout=5.0):
    """Poll condition until it holds; False if timeout passes first."""
    deadline = time.monotonic() + timeout
    while not condition():
        if time.monotonic() >= deadline:
            return False
        time.sleep(0.01)
    return True
