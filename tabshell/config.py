"""
Shell settings. Every value can be overridden with a TABSHELL_* variable
in the environment, e.g. TABSHELL_PIPELINE_TIMEOUT=30.
"""

import os
import tempfile


def _env_int(name, default):
    value = os.environ.get(f"TABSHELL_{name}")
    return int(value) if value else default


def _env_float(name, default):
    value = os.environ.get(f"TABSHELL_{name}")
    return float(value) if value else default


def _env_path(name, default):
    return os.path.expanduser(os.environ.get(f"TABSHELL_{name}", default))


# Parser
MAX_PIPELINE_STAGES = _env_int("MAX_PIPELINE_STAGES", 16)

# Executor / job control (seconds)
POLL_INTERVAL = _env_float("POLL_INTERVAL", 0.05)
PIPELINE_TIMEOUT = _env_float("PIPELINE_TIMEOUT", 10.0)
JOB_TIMEOUT = _env_float("JOB_TIMEOUT", 30.0)
KILL_GRACE = _env_float("KILL_GRACE", 0.5)
READ_CHUNK = 4096
MAX_CAPTURE_BYTES = _env_int("MAX_CAPTURE_BYTES", 1024 * 1024)

# multiWatch
MULTIWATCH_MIN = 2
MULTIWATCH_MAX = _env_int("MULTIWATCH_MAX", 10)
MULTIWATCH_TIMEOUT = _env_float("MULTIWATCH_TIMEOUT", 120.0)
FINISH_GRACE = _env_float("FINISH_GRACE", 0.2)
SINK_DIR = _env_path("SINK_DIR", tempfile.gettempdir())
SUBSHELL = os.environ.get("TABSHELL_SUBSHELL", "/bin/sh")

# History
HISTORY_CAPACITY = _env_int("HISTORY_CAPACITY", 10000)
HISTORY_FILE = _env_path("HISTORY_FILE", "~/.tabshell_history.enc")
KEY_FILE = _env_path("KEY_FILE", "~/.tabshell.key")
PERSIST_HISTORY = os.environ.get("TABSHELL_PERSIST_HISTORY", "1") != "0"

# Display
DISPLAY_COLUMNS = _env_int("DISPLAY_COLUMNS", 100)
SCROLLBACK_LINES = _env_int("SCROLLBACK_LINES", 5000)

# Console log
CONSOLE_LOG = os.environ.get("TABSHELL_LOG", "1") != "0"
