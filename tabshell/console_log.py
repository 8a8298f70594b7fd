"""Console diagnostics, printed next to the window rather than inside it."""

import sys
from datetime import datetime

from tabshell import config


def log(message, level="INFO"):
    """Log to console for debugging"""
    if not config.CONSOLE_LOG:
        return
    timestamp = datetime.now().strftime("%H:%M:%S")
    print(f"[{timestamp}] [{level}] {message}")
    sys.stdout.flush()
