"""
Command Parser
==============
Turns a raw command line into either a built-in call or a Pipeline of
Stages. The grammar is deliberately small: whitespace-separated words,
'|' between stages, and '<' / '>' followed by a file name.
"""

from tabshell import config
from tabshell.console_log import log
from tabshell.errors import CommandBlocked, UsageError

BUILTINS = ("cd", "pwd", "history", "jobs", "fg", "bg", "kill",
            "multiWatch", "help", "clear", "exit")


class Stage:
    """One command of a pipeline."""

    def __init__(self, argv, input_path=None, output_path=None):
        self.argv = list(argv)
        self.input_path = input_path
        self.output_path = output_path

    def __eq__(self, other):
        if not isinstance(other, Stage):
            return NotImplemented
        return (self.argv, self.input_path, self.output_path) == \
            (other.argv, other.input_path, other.output_path)

    def __repr__(self):
        return (f"Stage(argv={self.argv!r}, input_path={self.input_path!r}, "
                f"output_path={self.output_path!r})")


class Pipeline:
    def __init__(self, stages, text):
        if not stages:
            raise UsageError("no command specified")
        self.stages = stages
        self.text = text

    def __len__(self):
        return len(self.stages)

    def __iter__(self):
        return iter(self.stages)

    def __repr__(self):
        return f"Pipeline({self.text!r}, stages={len(self.stages)})"


class BuiltinCommand:
    """A built-in and its arguments; runs in the shell itself."""

    def __init__(self, name, args, text):
        self.name = name
        self.args = list(args)
        self.text = text

    def __repr__(self):
        return f"BuiltinCommand({self.name!r}, {self.args!r})"


class CommandParser:
    @staticmethod
    def parse_command(cmd_line, safety_filter=None):
        """
        Parse one submitted line.
        Returns: BuiltinCommand, Pipeline, or None for a blank line.
        """
        line = cmd_line.strip()
        if not line:
            return None

        if safety_filter is not None:
            reason = safety_filter(line)
            if reason:
                raise CommandBlocked(f"refusing to run '{line}': {reason}")

        first = line.split(None, 1)[0]
        if first in BUILTINS:
            return CommandParser._parse_builtin(first, line)

        segments = line.split("|")
        if len(segments) > config.MAX_PIPELINE_STAGES:
            raise UsageError(
                f"too many stages: {len(segments)} "
                f"(at most {config.MAX_PIPELINE_STAGES})")

        last = len(segments) - 1
        stages = []
        for index, segment in enumerate(segments):
            stage = CommandParser._parse_stage(segment, index)
            if stage.input_path and index > 0:
                log(f"Ignoring '< {stage.input_path}' on stage {index + 1}", "WARN")
                stage.input_path = None
            if stage.output_path and index < last:
                log(f"Ignoring '> {stage.output_path}' on stage {index + 1}", "WARN")
                stage.output_path = None
            stages.append(stage)
        return Pipeline(stages, line)

    @staticmethod
    def _parse_stage(segment, index):
        parts = segment.split()
        argv = []
        input_path = output_path = None
        i = 0

        while i < len(parts):
            if parts[i] in ("<", ">"):
                if i + 1 >= len(parts):
                    raise UsageError(f"missing file name after '{parts[i]}'")
                if parts[i] == "<":
                    input_path = parts[i + 1]
                else:
                    output_path = parts[i + 1]
                i += 2
            else:
                argv.append(parts[i])
                i += 1

        if not argv:
            raise UsageError(f"no command specified (stage {index + 1})")
        return Stage(argv, input_path, output_path)

    @staticmethod
    def _parse_builtin(name, line):
        rest = line[len(name):].strip()

        if name == "multiWatch":
            commands = CommandParser.split_quoted(rest)
            if not config.MULTIWATCH_MIN <= len(commands) <= config.MULTIWATCH_MAX:
                raise UsageError(
                    f'usage: multiWatch "cmd1" "cmd2" ... '
                    f"({config.MULTIWATCH_MIN}-{config.MULTIWATCH_MAX} commands)")
            return BuiltinCommand(name, commands, line)

        args = rest.split()
        if name in ("fg", "bg", "kill"):
            if len(args) > 1:
                raise UsageError(f"usage: {name} [job_id]")
            if args:
                args = [CommandParser.parse_job_id(name, args[0])]
        elif name == "cd" and len(args) > 1:
            raise UsageError("usage: cd [dir]")
        return BuiltinCommand(name, args, line)

    @staticmethod
    def parse_job_id(name, token):
        text = token[1:] if token.startswith("%") else token
        if not text.isdigit():
            raise UsageError(f"{name}: job id must be a number, got '{token}'")
        return int(text)

    @staticmethod
    def split_quoted(text):
        """
        Split '"a b" "c | d"' into ['a b', 'c | d'].
        Anything outside double quotes, an unclosed quote, or an empty
        command is a usage error.
        """
        commands = []
        i = 0
        while i < len(text):
            ch = text[i]
            if ch.isspace():
                i += 1
                continue
            if ch != '"':
                raise UsageError(
                    f'multiWatch: commands must be quoted, found {text[i:]!r}')
            end = text.find('"', i + 1)
            if end == -1:
                raise UsageError("multiWatch: unclosed quote")
            command = text[i + 1:end].strip()
            if not command:
                raise UsageError("multiWatch: empty command")
            commands.append(command)
            i = end + 1
        return commands
