"""
TabShell window
===============
Minimal terminal-style front end: one output panel and one prompt line,
several sessions switched with the keyboard.

  Enter        run the line            Tab          complete file name
  Ctrl+C       interrupt foreground    Ctrl+Z       stop foreground (job)
  Ctrl+R       reverse search          Escape       cancel line / search
  Ctrl+T       new session             Ctrl+W       close session
  Ctrl+Tab     next session
"""

import signal
import threading
import tkinter as tk
from tkinter import scrolledtext

import psutil

from tabshell import config
from tabshell.console_log import log
from tabshell.display import BufferDisplay
from tabshell.session import CLEAR_SCREEN, EXIT_SESSION, SessionManager


class TkDisplay(BufferDisplay):
    """Session display that asks the window to redraw after every append."""

    def __init__(self, window):
        super().__init__()
        self.window = window

    def on_append(self, lines):
        self.window.root.after(0, self.window.refresh_output)


class ShellWindow:
    def __init__(self, root):
        self.root = root
        self.root.title("TabShell")
        self.root.geometry("1000x650")
        self.root.configure(bg='#0d1117')

        log("Starting TabShell", "SYSTEM")

        self.manager = SessionManager(display_factory=lambda: TkDisplay(self))
        self.workers = {}

        self._setup_gui()
        self._bind_keys()
        self._start_monitor()

        self.root.protocol("WM_DELETE_WINDOW", self.close_immediately)

        self.new_session()
        log("Shell ready", "SYSTEM")

    def _setup_gui(self):
        self.root.grid_rowconfigure(1, weight=1)
        self.root.grid_columnconfigure(0, weight=1)

        header = tk.Frame(self.root, bg='#161b22', height=40)
        header.grid(row=0, column=0, sticky='ew')
        header.grid_propagate(False)

        self.session_label = tk.Label(header, text="", font=('Consolas', 11, 'bold'),
                                      bg='#161b22', fg='#58a6ff')
        self.session_label.pack(side=tk.LEFT, padx=15, pady=8)

        self.stats_label = tk.Label(header, text="", font=('Consolas', 10),
                                    bg='#161b22', fg='#8b949e')
        self.stats_label.pack(side=tk.RIGHT, padx=15)

        self.output_text = scrolledtext.ScrolledText(
            self.root, wrap=tk.CHAR, font=('Cascadia Code', 10),
            bg='#0d1117', fg='#c9d1d9', state=tk.DISABLED,
            relief=tk.FLAT, padx=10, pady=10
        )
        self.output_text.grid(row=1, column=0, sticky='nsew', padx=10, pady=5)

        self.prompt_label = tk.Label(self.root, text="", font=('Cascadia Code', 11),
                                     bg='#161b22', fg='#c9d1d9', anchor='w', padx=10)
        self.prompt_label.grid(row=2, column=0, sticky='ew', padx=10, pady=5)

        self.system_label = tk.Label(self.root, text="CPU: 0% | RAM: 0%",
                                     font=('Consolas', 9), bg='#0d1117', fg='#8b949e', anchor='e')
        self.system_label.grid(row=3, column=0, sticky='ew', padx=15)

    def _bind_keys(self):
        bindings = {
            '<Return>': lambda e: self.submit(),
            '<BackSpace>': lambda e: self._edit(lambda s: s.on_backspace()),
            '<Left>': lambda e: self._edit(lambda s: s.on_cursor("left")),
            '<Right>': lambda e: self._edit(lambda s: s.on_cursor("right")),
            '<Home>': lambda e: self._edit(lambda s: s.on_cursor("home")),
            '<End>': lambda e: self._edit(lambda s: s.on_cursor("end")),
            '<Tab>': lambda e: self._edit(lambda s: s.on_tab()),
            '<Escape>': lambda e: self._edit(lambda s: s.on_cancel()),
            '<Control-r>': lambda e: self._edit(lambda s: s.on_search()),
            '<Control-c>': lambda e: self.session.request_interrupt(),
            '<Control-z>': lambda e: self.session.request_stop(),
            '<Control-t>': lambda e: self.new_session(),
            '<Control-w>': lambda e: self.close_session(),
            '<Control-Tab>': lambda e: self.next_session(),
        }
        for sequence, handler in bindings.items():
            self.root.bind(sequence, lambda e, h=handler: (h(e), "break")[1])
        self.root.bind('<Key>', self._on_key)

    @property
    def session(self):
        return self.manager.current

    def _busy(self, session):
        worker = self.workers.get(id(session))
        return worker is not None and worker.is_alive()

    # ------------------------------------------------------------------
    # Input
    # ------------------------------------------------------------------

    def _on_key(self, event):
        if event.char and event.char.isprintable() and not event.state & 0x4:
            self._edit(lambda s: s.on_char(event.char))

    def _edit(self, action):
        action(self.session)
        self.refresh_prompt()

    def submit(self):
        session = self.session
        if self._busy(session):
            return
        line = session.on_submit()
        self.refresh_prompt()
        if line is None:
            return
        worker = threading.Thread(target=self._execute_thread, args=(session, line), daemon=True)
        self.workers[id(session)] = worker
        worker.start()

    def _execute_thread(self, session, line):
        status = session.execute(line)
        if status == EXIT_SESSION:
            self.root.after(0, lambda: self.close_session(session))
        elif status == CLEAR_SCREEN:
            self.root.after(0, self.refresh_output)
        self.root.after(0, self.refresh_prompt)

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    def new_session(self):
        self.manager.new_session()
        self.session.write("TabShell - type 'help' for the command reference")
        self.refresh_all()

    def next_session(self):
        self.manager.next_session()
        self.refresh_all()

    def close_session(self, session=None):
        session = session or self.session
        if session not in self.manager.sessions:
            return
        session.request_interrupt()
        worker = self.workers.pop(id(session), None)
        if worker is not None:
            worker.join(timeout=config.KILL_GRACE * 4 + 1)
        if self.manager.close_session(session) == 0:
            self.close_immediately()
            return
        self.refresh_all()

    # ------------------------------------------------------------------
    # Rendering
    # ------------------------------------------------------------------

    def refresh_all(self):
        self.refresh_output()
        self.refresh_prompt()

    def refresh_output(self):
        if not self.manager.sessions:
            return
        self.output_text.config(state=tk.NORMAL)
        self.output_text.delete(1.0, tk.END)
        self.output_text.insert(tk.END, self.session.display.text())
        self.output_text.see(tk.END)
        self.output_text.config(state=tk.DISABLED)

    def refresh_prompt(self):
        if not self.manager.sessions:
            return
        session = self.session
        text, offset = session.prompt_text, session.cursor_offset
        self.prompt_label.config(text=text[:offset] + "▏" + text[offset:])
        self.session_label.config(
            text=f"Session {self.manager.active + 1}/{len(self.manager.sessions)}  {session.cwd}")
        self.stats_label.config(text=f"Jobs: {len(session.jobs)}")

    def _start_monitor(self):
        def update():
            try:
                cpu = psutil.cpu_percent(interval=None)
                ram = psutil.virtual_memory().percent
                self.system_label.config(text=f"CPU: {cpu:.0f}% | RAM: {ram:.0f}%")
            except psutil.Error as e:
                log(f"Monitor error: {e}", "WARN")
            self.root.after(2000, update)
        update()

    def close_immediately(self):
        log(f"Closing shell - {len(self.manager.sessions)} session(s) open", "SYSTEM")
        for session in list(self.manager.sessions):
            session.request_interrupt()
        for worker in self.workers.values():
            worker.join(timeout=config.KILL_GRACE * 4 + 1)
        self.manager.close_all()
        self.root.quit()
        self.root.destroy()
        log("Shell terminated", "SYSTEM")


def _install_signal_handlers(window):
    """SIGINT/SIGTSTP sent to the shell act on the active session."""
    def on_interrupt(signum, frame):
        if window.session is not None:
            window.session.request_interrupt()

    def on_stop(signum, frame):
        if window.session is not None:
            window.session.request_stop()

    signal.signal(signal.SIGINT, on_interrupt)
    signal.signal(signal.SIGTSTP, on_stop)

    # Python only runs signal handlers between bytecodes; keep the loop ticking.
    def tick():
        window.root.after(200, tick)
    tick()


def main():
    log("=" * 60, "SYSTEM")
    log("TABSHELL STARTING", "SYSTEM")
    log("=" * 60, "SYSTEM")
    root = tk.Tk()
    window = ShellWindow(root)
    _install_signal_handlers(window)
    root.mainloop()
    log("Shell closed", "SYSTEM")


if __name__ == "__main__":
    main()
