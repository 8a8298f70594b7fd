"""
TabShell - terminal-style shell window
======================================
Run with:  python main.py

Each tab (Ctrl+T) is its own shell session with pipes, redirection,
job control (Ctrl+Z / fg), multiWatch, reverse search (Ctrl+R) and
Tab completion. Console output is the debug log.
"""

from tabshell.gui import main

if __name__ == "__main__":
    main()
