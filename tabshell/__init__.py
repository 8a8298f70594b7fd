"""
TabShell - an interactive command shell for a terminal-style window.

Each tab runs a Session: pipelines, job control, multiWatch, history search
and filename completion. The tkinter front end lives in tabshell.gui.
"""

__version__ = "1.0.0"
