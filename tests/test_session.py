"""Tests for a shell session: built-ins, pipelines, jobs and input events."""

import os
import threading

from tabshell.display import BufferDisplay
from tabshell.session import CLEAR_SCREEN, EXIT_SESSION, Session, SessionManager

from conftest import later, wait_for


def shown(session):
    return list(session.display.lines)


def run(session, line):
    session.display.lines.clear()
    status = session.execute(line)
    return status, shown(session)


class TestBuiltins:
    def test_pwd_and_cd(self, session, workdir):
        (workdir / "sub").mkdir()
        _, out = run(session, "pwd")
        assert out == [str(workdir)]
        run(session, "cd sub")
        assert session.cwd == str(workdir / "sub")
        assert session.prompt == "sub > "
        run(session, "cd ..")
        assert session.cwd == str(workdir)

    def test_cd_missing_directory(self, session, workdir):
        _, out = run(session, "cd nowhere")
        assert out == ["cd: no such directory: nowhere"]
        assert session.cwd == str(workdir)

    def test_cd_does_not_touch_process_cwd(self, session, workdir):
        before = os.getcwd()
        (workdir / "sub").mkdir()
        run(session, "cd sub")
        assert os.getcwd() == before

    def test_history_lists_submitted_lines(self, session):
        run(session, "pwd")
        run(session, "pwd")
        _, out = run(session, "history")
        assert out == ["    1  pwd", "    2  history"]

    def test_jobs_empty(self, session):
        assert run(session, "jobs")[1] == ["No jobs."]

    def test_fg_without_jobs(self, session):
        assert run(session, "fg")[1] == ["fg: no current job"]

    def test_bad_job_id(self, session):
        assert run(session, "kill x")[1] == ["tabshell: kill: job id must be a number, got 'x'"]

    def test_clear_and_exit(self, session):
        session.write("old output")
        assert session.execute("clear") == CLEAR_SCREEN
        assert shown(session) == []
        assert session.execute("exit") == EXIT_SESSION

    def test_help(self, session):
        _, out = run(session, "help")
        assert out[0] == "BUILT-INS:"

    def test_safety_filter_blocks_line(self, workdir):
        session = Session(BufferDisplay(), cwd=str(workdir),
                          safety_filter=lambda line: "blocked" if "rm" in line else None)
        _, out = run(session, "rm -rf x")
        assert out == ["tabshell: refusing to run 'rm -rf x': blocked"]
        session.close()


class TestPipelines:
    def test_output_shown(self, session):
        _, out = run(session, "echo hello | tr a-z A-Z")
        assert out == ["HELLO"]

    def test_runs_in_session_directory(self, session, workdir):
        (workdir / "marker.txt").write_text("")
        _, out = run(session, "ls")
        assert out == ["marker.txt"]

    def test_failure_message_when_no_output(self, session):
        _, out = run(session, "false")
        assert out == ["failed with exit code 1"]

    def test_success_without_output(self, session):
        _, out = run(session, "true")
        assert out == [""]

    def test_unknown_last_stage_reports_only_its_error(self, session):
        _, out = run(session, "seq 1 100000 | nope-cmd")
        assert out == ["tabshell: command not found: nope-cmd"]

    def test_unknown_command(self, session):
        _, out = run(session, "no-such-cmd-xyz")
        assert out == ["tabshell: command not found: no-such-cmd-xyz"]

    def test_parse_error(self, session):
        _, out = run(session, "ls |")
        assert out == ["tabshell: no command specified (stage 2)"]

    def test_timeout_reported(self, session):
        session.executor.timeout = 0.3
        _, out = run(session, "sleep 30")
        assert out == ["tabshell: timed out after 0.3s, terminated"]

    def test_interrupt(self, session):
        later(0.3, session.request_interrupt)
        _, out = run(session, "sleep 30")
        assert out == ["interrupted"]

    def test_submit_clears_stale_interrupt(self, session):
        session.request_interrupt()
        for ch in "sleep 0.2":
            session.on_char(ch)
        _, out = run(session, session.on_submit())
        assert out == [""]

    def test_interrupt_right_after_submit_is_kept(self, session):
        for ch in "sleep 30":
            session.on_char(ch)
        line = session.on_submit()
        session.request_interrupt()
        _, out = run(session, line)
        assert out == ["interrupted"]


class TestJobControl:
    def test_stop_then_fg(self, session):
        later(0.3, session.request_stop)
        _, out = run(session, "sleep 1")
        assert out == ["[1]+ Stopped  sleep 1"]
        assert run(session, "jobs")[1] == ["[1] Stopped  sleep 1"]
        _, out = run(session, "fg")
        assert out[0] == "sleep 1"
        assert run(session, "jobs")[1] == ["No jobs."]

    def test_stop_without_foreground_is_ignored(self, session):
        session.request_stop()
        assert not session.token.consume_stop()

    def test_kill_job(self, session):
        later(0.3, session.request_stop)
        run(session, "sleep 30")
        _, out = run(session, "kill %1")
        assert out == ["[1]  Killed  sleep 30"]

    def test_bg_then_done_notice(self, session):
        later(0.3, session.request_stop)
        run(session, "sleep 1")
        assert run(session, "bg")[1] == ["[1]+ sleep 1 &"]
        session.jobs.get(1).group.leader.wait(timeout=5)
        _, out = run(session, "pwd")
        assert out[0] == "[1]  Done  sleep 1"

    def test_close_kills_jobs(self, session):
        later(0.3, session.request_stop)
        run(session, "sleep 30")
        group = session.jobs.get(1).group
        session.close()
        assert group.finished()
        assert len(session.jobs) == 0


class TestMultiWatch:
    def test_too_few_commands(self, session):
        _, out = run(session, 'multiWatch "date"')
        assert out[0].startswith('tabshell: usage: multiWatch "cmd1" "cmd2"')

    def test_output_interleaved(self, session):
        _, out = run(session, 'multiWatch "echo a" "echo b"')
        assert any(line.endswith("] echo a: a") for line in out)
        assert any(line.endswith("] echo b: b") for line in out)
        assert session.watch is None


class TestInputEvents:
    def test_typing_and_submit(self, session):
        for ch in "pwdx":
            session.on_char(ch)
        session.on_backspace()
        session.on_cursor("home")
        assert session.cursor_offset == len(session.prompt)
        assert session.prompt_text == session.prompt + "pwd"
        assert session.on_submit() == "pwd"
        assert shown(session)[-1] == session.prompt + "pwd"
        assert session.editor.buffer == ""

    def test_escape_clears_line(self, session):
        session.on_char("x")
        session.on_cancel()
        assert session.editor.buffer == ""

    def test_tab_completes(self, session, workdir):
        (workdir / "report.txt").write_text("")
        for ch in "cat re":
            session.on_char(ch)
        session.on_tab()
        assert session.editor.buffer == "cat report.txt "

    def test_tab_lists_ambiguous_matches(self, session, workdir):
        (workdir / "foo.txt").write_text("")
        (workdir / "foobar.txt").write_text("")
        for ch in "cat f":
            session.on_char(ch)
        session.on_tab()
        assert session.editor.buffer == "cat foo"
        assert "foo.txt" in shown(session)[-1]
        assert "foobar.txt" in shown(session)[-1]

    def test_reverse_search_accept(self, session):
        session.execute("echo one")
        session.execute("pwd")
        session.on_search()
        for ch in "ech":
            session.on_char(ch)
        assert session.prompt_text == "(reverse-i-search)'ech': echo one"
        assert session.cursor_offset == len(session.prompt_text)
        assert session.on_submit() is None
        assert session.editor.buffer == "echo one"

    def test_reverse_search_cancel_restores_line(self, session):
        session.execute("echo one")
        session.on_char("l")
        session.on_search()
        session.on_char("e")
        session.on_cancel()
        assert session.search is None
        assert session.editor.buffer == "l"

    def test_second_search_press_lists_candidates(self, session):
        session.execute("echo one")
        session.execute("echo two")
        session.on_search()
        for ch in "echo":
            session.on_char(ch)
        session.display.lines.clear()
        session.on_search()
        assert shown(session) == ["  echo two", "  echo one"]


class TestSessionManager:
    def test_new_next_close(self, tmp_path):
        manager = SessionManager(persist_history=False)
        first = manager.new_session(str(tmp_path))
        second = manager.new_session(str(tmp_path))
        assert manager.current is second
        assert manager.next_session() is first
        assert manager.close_session(first) == 1
        assert manager.current is second
        assert manager.close_session() == 0
        assert manager.current is None

    def test_sessions_have_separate_state(self, tmp_path):
        manager = SessionManager(persist_history=False)
        first = manager.new_session(str(tmp_path))
        second = manager.new_session(str(tmp_path))
        first.execute("pwd")
        assert len(first.history) == 1
        assert len(second.history) == 0
        assert first.jobs is not second.jobs
        manager.close_all()
        assert manager.sessions == []


class TestCloseWhileBusy:
    def start(self, session, line):
        worker = threading.Thread(target=session.execute, args=(line,), daemon=True)
        worker.start()
        return worker

    def close_from_other_thread(self, session):
        closer = threading.Thread(target=session.close, daemon=True)
        closer.start()
        closer.join(timeout=10)
        assert not closer.is_alive()

    def test_close_tears_down_multiwatch(self, session, workdir, sink_dir):
        (workdir / "chatter.sh").write_text("while :; do echo y; done\n")
        worker = self.start(session, 'multiWatch "sh chatter.sh" "sleep 30"')
        assert wait_for(lambda: session.watch is not None
                        and len(session.watch.watched) == 2
                        and all(w.proc is not None for w in session.watch.watched))
        watched = list(session.watch.watched)

        self.close_from_other_thread(session)
        worker.join(timeout=10)

        assert not worker.is_alive()
        assert all(w.proc.returncode is not None for w in watched)
        assert os.listdir(sink_dir) == []
        assert session.watch is None

    def test_close_tears_down_foreground_pipeline(self, session):
        worker = self.start(session, "sleep 30 | sleep 30")
        assert wait_for(lambda: session.foreground is not None)
        group = session.foreground

        self.close_from_other_thread(session)
        worker.join(timeout=10)

        assert not worker.is_alive()
        assert len(group.procs) == 2
        assert all(proc.returncode is not None for proc in group.procs)
        assert group.capture is None
        assert session.foreground is None

    def test_execute_after_close(self, session):
        session.close()
        assert session.execute("pwd") == EXIT_SESSION
