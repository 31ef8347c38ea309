"""Comment normalization and the slash-command grammar.

A comment becomes exactly one ``ParsedCommand``:

  /lgtm                      -> SingleCommand("lgtm")
  /__post-merge-cherry-pick  -> BuiltInCommand("__post-merge-cherry-pick")
  /assign @a\\n/merge squash  -> MultiCommand([...], raw_lines=[...])

Multi-line comments never nest: a ``/batch`` or ``/check`` line carrying
sub-commands inside a multi-line comment is dropped with a warning.
"""

from __future__ import annotations

import enum
import logging
import re
import shlex
from dataclasses import dataclass, field
from typing import Union

from prcli_core.errors import EmptyMultiCommandError, NoCommandError, UnknownCommandError

logger = logging.getLogger(__name__)


class CommandName(str, enum.Enum):
    HELP = "help"
    REBASE = "rebase"
    LGTM = "lgtm"
    REMOVE_LGTM = "remove-lgtm"
    CHERRY_PICK = "cherry-pick"
    CHERRYPICK = "cherrypick"
    ASSIGN = "assign"
    MERGE = "merge"
    READY = "ready"
    UNASSIGN = "unassign"
    LABEL = "label"
    UNLABEL = "unlabel"
    CHECK = "check"
    RETEST = "retest"
    CLOSE = "close"
    BATCH = "batch"


POST_MERGE_CHERRY_PICK = "__post-merge-cherry-pick"

BUILTIN_PREFIX = "__"

_NAMES = "|".join(re.escape(n.value) for n in sorted(CommandName, key=lambda n: -len(n.value)))
_REGULAR_RE = re.compile(rf"^/({_NAMES})(?:\s+(.*))?$")
_BUILTIN_RE = re.compile(r"^/(__[a-z0-9][a-z0-9_-]*)(?:\s+(.*))?$")
_LGTM_CANCEL_RE = re.compile(r"^/lgtm[ \t]+cancel[ \t]*$", re.MULTILINE)
_LGTM_VOTE_RE = re.compile(r"^/lgtm\b", re.MULTILINE)
_REMOVE_LGTM_VOTE_RE = re.compile(r"^/remove-lgtm\b", re.MULTILINE)

_ESCAPED_TERMINATORS = ("\\n", "\\r")

# Commands that open a nested command list through their arguments.
MULTI_RUNNERS = frozenset({CommandName.BATCH.value, CommandName.CHECK.value})

CHERRY_PICK_NAMES = frozenset({CommandName.CHERRY_PICK.value, CommandName.CHERRYPICK.value})


# ---------------------------------------------------------------------------
# Parsed command types
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SingleCommand:
    name: str
    args: tuple[str, ...] = ()

    @property
    def display(self) -> str:
        return " ".join(["/" + self.name, *self.args])


@dataclass(frozen=True)
class BuiltInCommand:
    name: str
    args: tuple[str, ...] = ()

    @property
    def display(self) -> str:
        return " ".join(["/" + self.name, *self.args])


@dataclass(frozen=True)
class InvalidCommand:
    """A line of a multi-line comment that is not a recognized command.

    Kept so the execution summary can report it as a failed row.
    """

    raw: str
    error: str

    @property
    def display(self) -> str:
        return self.raw


SubCommand = Union[SingleCommand, BuiltInCommand, InvalidCommand]


@dataclass(frozen=True)
class MultiCommand:
    commands: tuple[SubCommand, ...]
    raw_lines: tuple[str, ...] = field(default=())

    @property
    def display(self) -> str:
        return "\n".join(self.raw_lines)


ParsedCommand = Union[SingleCommand, BuiltInCommand, MultiCommand]


# ---------------------------------------------------------------------------
# Normalization
# ---------------------------------------------------------------------------


def normalize(body: str) -> str:
    """Trim a comment body and drop trailing line terminators.

    Real and backslash-escaped ``\\n``/``\\r`` are removed repeatedly from the
    end until the text is stable. Interior text is untouched.
    """
    text = (body or "").strip()
    while True:
        trimmed = text
        stripped_suffix = True
        while stripped_suffix:
            stripped_suffix = False
            for suffix in _ESCAPED_TERMINATORS:
                if trimmed.endswith(suffix):
                    trimmed = trimmed[: -len(suffix)]
                    stripped_suffix = True
        trimmed = trimmed.strip()
        if trimmed == text:
            return text
        text = trimmed


def apply_aliases(text: str) -> str:
    """Rewrite ``/lgtm cancel`` lines to ``/remove-lgtm``."""
    return _LGTM_CANCEL_RE.sub("/" + CommandName.REMOVE_LGTM.value, text)


def lgtm_vote(body: str) -> str | None:
    """Return ``lgtm``, ``remove-lgtm`` or None for a comment body.

    Any line may carry the vote; a removal wins over an approval.
    """
    text = apply_aliases(normalize(body))
    if _REMOVE_LGTM_VOTE_RE.search(text):
        return CommandName.REMOVE_LGTM.value
    if _LGTM_VOTE_RE.search(text):
        return CommandName.LGTM.value
    return None


def is_command_comment(body: str) -> bool:
    """True when the first non-space character of ``body`` is ``/``."""
    return normalize(body).startswith("/")


def command_lines(text: str) -> list[str]:
    """Return the non-blank lines of ``text`` that start with ``/``."""
    lines = []
    for line in text.splitlines():
        line = line.strip()
        if line.startswith("/"):
            lines.append(line)
    return lines


def is_multi_line(body: str) -> bool:
    return len(command_lines(apply_aliases(normalize(body)))) > 1


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------


def split_args(raw: str | None) -> tuple[str, ...]:
    """Tokenize command arguments shell-style.

    Quoted tokens and ``--flag="a b"`` forms are honoured. Unbalanced quotes
    fall back to plain whitespace splitting.
    """
    if not raw or not raw.strip():
        return ()
    try:
        return tuple(shlex.split(raw))
    except ValueError:
        logger.debug("Unbalanced quotes in %r; splitting on whitespace.", raw)
        return tuple(raw.split())


def parse_line(line: str) -> SingleCommand | BuiltInCommand:
    """Parse one command line. Raises UnknownCommandError."""
    line = line.strip()
    match = _BUILTIN_RE.match(line)
    if match:
        return BuiltInCommand(match.group(1), split_args(match.group(2)))

    match = _REGULAR_RE.match(line)
    if match:
        return SingleCommand(match.group(1), split_args(match.group(2)))

    name = line.split(maxsplit=1)[0].lstrip("/") if line.strip("/") else line
    raise UnknownCommandError(name)


def parse_comment(body: str) -> ParsedCommand:
    """Parse a trigger comment into a single, built-in or multi command."""
    text = apply_aliases(normalize(body))
    lines = command_lines(text)
    if not lines:
        raise NoCommandError("no command found in comment")
    if len(lines) > 1:
        return parse_multi(lines)
    return parse_line(lines[0])


def parse_multi(lines: list[str]) -> MultiCommand:
    """Build a MultiCommand from command lines.

    Unknown lines are kept as InvalidCommand rows; nested multi-command
    runners are dropped. Raises EmptyMultiCommandError when nothing usable
    remains.
    """
    commands: list[SubCommand] = []
    raw_lines: list[str] = []
    for line in lines:
        try:
            command = parse_line(line)
        except UnknownCommandError as exc:
            commands.append(InvalidCommand(raw=line, error=str(exc)))
            raw_lines.append(line)
            continue
        if command.name in MULTI_RUNNERS and command.args:
            logger.warning("Dropping nested multi-command line %r", line)
            continue
        commands.append(command)
        raw_lines.append(line)

    if not any(not isinstance(c, InvalidCommand) for c in commands):
        raise EmptyMultiCommandError()
    return MultiCommand(commands=tuple(commands), raw_lines=tuple(raw_lines))


def parse_sub_commands(args: tuple[str, ...] | list[str]) -> list[SubCommand]:
    """Split ``/batch`` or ``/check`` arguments into sub-commands.

    Every token starting with ``/`` opens a new sub-command. Nested runners
    are dropped with a warning.
    """
    groups: list[list[str]] = []
    for token in args:
        if token.startswith("/"):
            groups.append([token])
        elif groups:
            groups[-1].append(token)
        else:
            logger.warning("Ignoring argument %r before the first sub-command", token)

    commands: list[SubCommand] = []
    for head, *rest in groups:
        line = " ".join([head, *(shlex.quote(a) for a in rest)])
        try:
            command = parse_line(line)
        except UnknownCommandError as exc:
            commands.append(InvalidCommand(raw=" ".join([head, *rest]), error=str(exc)))
            continue
        if command.name in MULTI_RUNNERS:
            logger.warning("Dropping nested %s inside a multi-command", command.display)
            continue
        commands.append(command)
    return commands


def format_command(command: ParsedCommand) -> str:
    """Render a parsed command back to comment text.

    Arguments are shell-quoted, so ``parse_comment(format_command(c)) == c``.
    """
    if isinstance(command, MultiCommand):
        return "\n".join(
            c.raw if isinstance(c, InvalidCommand) else format_command(c) for c in command.commands
        )
    return " ".join(["/" + command.name, *(shlex.quote(a) for a in command.args)])
