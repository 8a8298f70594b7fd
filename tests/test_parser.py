"""Tests for turning command lines into pipelines and built-in calls."""

import pytest

from tabshell.errors import CommandBlocked, UsageError
from tabshell.parser import BuiltinCommand, CommandParser, Pipeline, Stage


def parse(line, safety_filter=None):
    return CommandParser.parse_command(line, safety_filter)


class TestPipelines:
    def test_single_command(self):
        result = parse("ls -la /tmp")
        assert isinstance(result, Pipeline)
        assert result.stages == [Stage(["ls", "-la", "/tmp"])]

    def test_blank_line(self):
        assert parse("   ") is None

    def test_stages_split_on_pipe(self):
        result = parse("cat notes.txt | grep todo | wc -l")
        assert [stage.argv for stage in result] == [
            ["cat", "notes.txt"], ["grep", "todo"], ["wc", "-l"]]
        assert result.text == "cat notes.txt | grep todo | wc -l"

    def test_redirections_removed_from_argv(self):
        result = parse("sort < in.txt | uniq > out.txt")
        first, last = result.stages
        assert first.argv == ["sort"]
        assert first.input_path == "in.txt"
        assert last.argv == ["uniq"]
        assert last.output_path == "out.txt"

    def test_redirection_on_inner_stage_is_dropped(self):
        result = parse("cat a > x | wc < y")
        first, last = result.stages
        assert first.output_path is None
        assert last.input_path is None

    def test_sixteen_stages_allowed(self):
        line = " | ".join(["cat"] * 16)
        assert len(parse(line)) == 16

    def test_seventeen_stages_rejected(self):
        line = " | ".join(["cat"] * 17)
        with pytest.raises(UsageError, match="too many stages"):
            parse(line)

    def test_empty_stage_rejected(self):
        with pytest.raises(UsageError, match="no command specified"):
            parse("ls | | wc")

    def test_stage_with_only_redirection_rejected(self):
        with pytest.raises(UsageError, match="no command specified"):
            parse("> out.txt")

    def test_missing_redirection_target(self):
        with pytest.raises(UsageError, match="missing file name"):
            parse("cat <")

    def test_safety_filter_blocks_line(self):
        def deny_rm(line):
            return "rm is not allowed" if line.startswith("rm") else None

        with pytest.raises(CommandBlocked, match="rm is not allowed"):
            parse("rm -rf build", deny_rm)
        assert isinstance(parse("ls", deny_rm), Pipeline)


class TestBuiltins:
    def test_cd(self):
        result = parse("cd /tmp")
        assert isinstance(result, BuiltinCommand)
        assert result.name == "cd"
        assert result.args == ["/tmp"]

    def test_builtin_bypasses_pipeline_parsing(self):
        result = parse("history | grep ls")
        assert isinstance(result, BuiltinCommand)
        assert result.name == "history"

    def test_fg_without_id(self):
        assert parse("fg").args == []

    def test_fg_with_id_and_percent_form(self):
        assert parse("fg 3").args == [3]
        assert parse("fg %2").args == [2]

    def test_fg_non_numeric_id(self):
        with pytest.raises(UsageError, match="must be a number"):
            parse("fg abc")

    def test_multiwatch_quoted_commands(self):
        result = parse('multiWatch "echo a" "ls | wc -l"')
        assert result.name == "multiWatch"
        assert result.args == ["echo a", "ls | wc -l"]

    def test_multiwatch_unquoted(self):
        with pytest.raises(UsageError, match="must be quoted"):
            parse("multiWatch echo a")

    def test_multiwatch_unclosed_quote(self):
        with pytest.raises(UsageError, match="unclosed quote"):
            parse('multiWatch "echo a" "echo b')

    def test_multiwatch_needs_two_commands(self):
        with pytest.raises(UsageError, match="usage"):
            parse('multiWatch "echo a"')

    def test_multiwatch_at_most_ten(self):
        line = "multiWatch " + " ".join(['"echo x"'] * 11)
        with pytest.raises(UsageError, match="usage"):
            parse(line)

    def test_command_merely_starting_like_builtin(self):
        assert isinstance(parse("cdrecord -v"), Pipeline)
