"""Tests for comment normalization and command parsing."""

import pytest

from prcli_core.errors import EmptyMultiCommandError, NoCommandError, UnknownCommandError
from prcli_core.parser import (
    BuiltInCommand,
    InvalidCommand,
    MultiCommand,
    SingleCommand,
    format_command,
    is_command_comment,
    is_multi_line,
    normalize,
    parse_comment,
    parse_sub_commands,
    split_args,
)

# ---------------------------------------------------------------------------
# normalize
# ---------------------------------------------------------------------------


class TestNormalize:
    def test_strips_whitespace(self):
        assert normalize("   /lgtm  \n") == "/lgtm"

    def test_strips_escaped_terminators(self):
        assert normalize("/lgtm\\n") == "/lgtm"
        assert normalize("/lgtm\\r\\n") == "/lgtm"

    def test_strips_mixed_terminators_until_stable(self):
        assert normalize("/merge squash \\n \n\\r") == "/merge squash"

    def test_interior_text_untouched(self):
        assert normalize("/label a\\nb") == "/label a\\nb"

    def test_none_body(self):
        assert normalize(None) == ""

    def test_lone_trailing_backslash_kept(self):
        assert normalize("/label bug \\") == "/label bug \\"
        assert normalize("/lgtm\\\\n") == "/lgtm\\"

    def test_tabs_preserved(self):
        assert normalize("/label\ta\tb\n") == "/label\ta\tb"

    @pytest.mark.parametrize(
        "body",
        [
            "",
            "   ",
            "/lgtm",
            "  /lgtm \r\n",
            "/merge squash \\n \n\\r",
            "/lgtm\\r\\n\r\n\\n  \t",
            "/label bug \\",
            "/lgtm\\\\n",
            "/lgtm \\\\\\n",
            "/label a\\nb\\n",
            "/assign @bob\\n/merge\\r\\n",
            "/batch\t/label x\t\\n\t",
            "\\n\\r\n",
            "\\",
        ],
    )
    def test_idempotent(self, body):
        once = normalize(body)
        assert normalize(once) == once


# ---------------------------------------------------------------------------
# split_args
# ---------------------------------------------------------------------------


class TestSplitArgs:
    def test_empty(self):
        assert split_args(None) == ()
        assert split_args("   ") == ()

    def test_plain_tokens(self):
        assert split_args("@alice @bob") == ("@alice", "@bob")

    def test_quoted_tokens(self):
        assert split_args('"needs review" bug') == ("needs review", "bug")

    def test_flag_with_quoted_value(self):
        assert split_args('--reason="a b"') == ("--reason=a b",)

    def test_unbalanced_quotes_fall_back_to_whitespace(self):
        assert split_args('"open quote here') == ('"open', "quote", "here")


# ---------------------------------------------------------------------------
# parse_comment
# ---------------------------------------------------------------------------


class TestParseComment:
    def test_single_command(self):
        assert parse_comment("/lgtm") == SingleCommand("lgtm")

    def test_command_with_args(self):
        assert parse_comment("/merge squash") == SingleCommand("merge", ("squash",))

    def test_longest_name_wins(self):
        assert parse_comment("/remove-lgtm") == SingleCommand("remove-lgtm")
        assert parse_comment("/cherrypick release-1.0") == SingleCommand("cherrypick", ("release-1.0",))

    def test_lgtm_cancel_alias(self):
        assert parse_comment("/lgtm cancel") == SingleCommand("remove-lgtm")

    def test_lgtm_with_other_args_is_not_cancel(self):
        assert parse_comment("/lgtm nice work") == SingleCommand("lgtm", ("nice", "work"))

    def test_builtin(self):
        assert parse_comment("/__post-merge-cherry-pick") == BuiltInCommand("__post-merge-cherry-pick")

    def test_text_before_command_is_ignored(self):
        assert parse_comment("Thanks!\n/lgtm") == SingleCommand("lgtm")

    def test_no_command(self):
        with pytest.raises(NoCommandError):
            parse_comment("looks good to me")

    def test_unknown_command(self):
        with pytest.raises(UnknownCommandError) as excinfo:
            parse_comment("/deploy prod")
        assert excinfo.value.name == "deploy"
        assert str(excinfo.value) == "unknown command: deploy"

    def test_prefix_of_known_name_is_unknown(self):
        with pytest.raises(UnknownCommandError):
            parse_comment("/lgtmx")

    def test_multi_line(self):
        command = parse_comment("/assign @bob\n/label bug\n")
        assert isinstance(command, MultiCommand)
        assert command.commands == (SingleCommand("assign", ("@bob",)), SingleCommand("label", ("bug",)))
        assert command.raw_lines == ("/assign @bob", "/label bug")

    def test_multi_line_keeps_unknown_lines_as_invalid(self):
        command = parse_comment("/lgtm\n/unknown")
        assert command.commands[1] == InvalidCommand(raw="/unknown", error="unknown command: unknown")

    def test_multi_line_drops_nested_runner(self):
        command = parse_comment("/label bug\n/batch /assign @bob")
        assert command.commands == (SingleCommand("label", ("bug",)),)
        assert command.raw_lines == ("/label bug",)

    def test_multi_line_runner_without_args_is_kept(self):
        command = parse_comment("/label bug\n/check")
        assert SingleCommand("check") in command.commands

    def test_multi_line_all_unknown(self):
        with pytest.raises(EmptyMultiCommandError):
            parse_comment("/foo\n/bar")

    def test_is_multi_line(self):
        assert is_multi_line("/lgtm\n/merge")
        assert not is_multi_line("/lgtm\nthanks")

    def test_is_command_comment(self):
        assert is_command_comment("  /help")
        assert not is_command_comment("hello /help")


# ---------------------------------------------------------------------------
# parse_sub_commands
# ---------------------------------------------------------------------------


class TestParseSubCommands:
    def test_splits_on_slash_tokens(self):
        result = parse_sub_commands(("/assign", "@bob", "/label", "bug", "ui"))
        assert result == [SingleCommand("assign", ("@bob",)), SingleCommand("label", ("bug", "ui"))]

    def test_leading_non_command_tokens_ignored(self):
        assert parse_sub_commands(("hello", "/help")) == [SingleCommand("help")]

    def test_unknown_sub_command_is_invalid(self):
        result = parse_sub_commands(("/nope", "x"))
        assert result == [InvalidCommand(raw="/nope x", error="unknown command: nope")]

    def test_nested_runner_dropped(self):
        assert parse_sub_commands(("/check", "/help")) == [SingleCommand("help")]

    def test_quoted_argument_survives(self):
        result = parse_sub_commands(("/label", "needs review"))
        assert result == [SingleCommand("label", ("needs review",))]


# ---------------------------------------------------------------------------
# format_command
# ---------------------------------------------------------------------------


class TestFormatCommand:
    @pytest.mark.parametrize(
        "command",
        [
            SingleCommand("lgtm"),
            SingleCommand("label", ("needs review", "bug")),
            BuiltInCommand("__post-merge-cherry-pick"),
        ],
    )
    def test_parse_of_format_is_identity(self, command):
        assert parse_comment(format_command(command)) == command

    def test_multi(self):
        command = parse_comment("/assign @bob\n/merge squash")
        assert format_command(command) == "/assign @bob\n/merge squash"
