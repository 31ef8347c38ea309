"""Tests for the validator chain."""

import pytest

from prcli_core.errors import PermissionDeniedError, PRNotOpenError, SelfApprovalError, SenderMismatchError
from prcli_core.models import PRState
from prcli_core.parser import SingleCommand
from prcli_core.validator import CommandValidator


# ---------------------------------------------------------------------------
# PR state
# ---------------------------------------------------------------------------


class TestPRState:
    def test_open_pr_passes(self, make_session):
        CommandValidator(make_session()).check_pr_state(SingleCommand("label", ("bug",)))

    def test_closed_pr_rejected(self, client, make_session):
        client.pr.state = PRState.CLOSED
        with pytest.raises(PRNotOpenError) as excinfo:
            CommandValidator(make_session()).check_pr_state(SingleCommand("label", ("bug",)))
        assert "closed" in excinfo.value.comment

    def test_cherry_pick_allowed_on_merged_pr(self, client, make_session):
        client.pr.state = PRState.MERGED
        validator = CommandValidator(make_session())
        validator.check_pr_state(SingleCommand("cherry-pick", ("release-1.0",)))
        validator.check_pr_state(SingleCommand("cherrypick", ("release-1.0",)))

    def test_state_check_can_be_disabled(self, client, make_session):
        client.pr.state = PRState.CLOSED
        session = make_session(trigger="/label bug")
        client.add_comment("alice", "/label bug")
        CommandValidator(session, validate_pr_status=False).validate_single(SingleCommand("label", ("bug",)))


# ---------------------------------------------------------------------------
# Sender authenticity
# ---------------------------------------------------------------------------


class TestSender:
    def test_exact_comment_matches(self, client, make_session):
        client.add_comment("alice", "/lgtm")
        CommandValidator(make_session()).check_sender("/lgtm")

    def test_comment_containing_trigger_matches(self, client, make_session):
        client.add_comment("alice", "Great work!\n/lgtm")
        CommandValidator(make_session()).check_sender("/lgtm")

    def test_normalized_forms_match(self, client, make_session):
        client.add_comment("alice", "/lgtm cancel\\n")
        CommandValidator(make_session()).check_sender("/remove-lgtm")

    def test_sender_case_insensitive(self, client, make_session):
        client.add_comment("Alice", "/lgtm")
        CommandValidator(make_session(sender="alice")).check_sender("/lgtm")

    def test_no_comments_from_sender(self, client, make_session):
        client.add_comment("bob", "/lgtm")
        with pytest.raises(SenderMismatchError, match="did not post any comment"):
            CommandValidator(make_session()).check_sender("/lgtm")

    def test_comment_without_trigger(self, client, make_session):
        client.add_comment("alice", "/merge")
        with pytest.raises(SenderMismatchError, match="containing '/lgtm'"):
            CommandValidator(make_session()).check_sender("/lgtm")

    def test_multi_sender_lists_missing_lines(self, client, make_session):
        client.add_comment("alice", "/assign @bob")
        with pytest.raises(SenderMismatchError) as excinfo:
            CommandValidator(make_session()).check_multi_sender(("/assign @bob", "/label bug"))
        assert "/label bug" in str(excinfo.value)
        assert "/assign @bob" not in str(excinfo.value).split("commands:")[1]

    def test_multi_sender_lines_across_comments(self, client, make_session):
        client.add_comment("alice", "/assign @bob")
        client.add_comment("alice", "/label bug")
        CommandValidator(make_session()).check_multi_sender(("/assign @bob", "/label bug"))

    def test_debug_mode_skips_sender_check(self, client, make_session):
        session = make_session(debug_mode=True)
        validator = CommandValidator(session)
        assert validator.validate_comment_sender is False
        validator.validate_single(SingleCommand("label", ("bug",)))


# ---------------------------------------------------------------------------
# Permission
# ---------------------------------------------------------------------------


class TestPermission:
    def test_author_cannot_lgtm(self, make_session):
        with pytest.raises(SelfApprovalError) as excinfo:
            CommandValidator(make_session(sender="author")).check_permission(SingleCommand("lgtm"))
        assert "as the PR author, you cannot approve your own PR" in excinfo.value.comment

    def test_author_self_approval_allowed_in_debug_mode(self, make_session):
        CommandValidator(make_session(sender="author", debug_mode=True)).check_permission(SingleCommand("lgtm"))

    def test_read_permission_cannot_lgtm(self, make_session):
        with pytest.raises(PermissionDeniedError) as excinfo:
            CommandValidator(make_session(sender="carol")).check_permission(SingleCommand("lgtm"))
        assert "`read`" in excinfo.value.comment
        assert "LGTM Permission Denied" in excinfo.value.comment

    def test_read_permission_cannot_remove_lgtm(self, make_session):
        with pytest.raises(PermissionDeniedError) as excinfo:
            CommandValidator(make_session(sender="carol")).check_permission(SingleCommand("remove-lgtm"))
        assert "Remove LGTM Permission Denied" in excinfo.value.comment

    def test_write_permission_can_lgtm(self, make_session):
        CommandValidator(make_session(sender="bob")).check_permission(SingleCommand("lgtm"))

    def test_author_can_merge(self, client, make_session):
        client.permissions["author"] = "read"
        CommandValidator(make_session(sender="author")).check_permission(SingleCommand("merge"))

    def test_reader_cannot_merge(self, make_session):
        with pytest.raises(PermissionDeniedError) as excinfo:
            CommandValidator(make_session(sender="carol")).check_permission(SingleCommand("ready"))
        assert "merge this PR" in excinfo.value.comment

    def test_reader_cannot_cherry_pick(self, make_session):
        with pytest.raises(PermissionDeniedError) as excinfo:
            CommandValidator(make_session(sender="carol")).check_permission(SingleCommand("cherry-pick", ("v1",)))
        assert "create a cherry-pick PR" in excinfo.value.comment

    def test_other_commands_need_no_permission(self, make_session):
        CommandValidator(make_session(sender="carol")).check_permission(SingleCommand("label", ("bug",)))


# ---------------------------------------------------------------------------
# Chain order
# ---------------------------------------------------------------------------


class TestChainOrder:
    def test_state_checked_before_sender(self, client, make_session):
        client.pr.state = PRState.CLOSED
        with pytest.raises(PRNotOpenError):
            CommandValidator(make_session(sender="carol")).validate_single(SingleCommand("lgtm"))

    def test_sender_checked_before_permission(self, make_session):
        with pytest.raises(SenderMismatchError):
            CommandValidator(make_session(sender="carol")).validate_single(SingleCommand("lgtm"))

    def test_check_sender_false_skips_sender(self, make_session):
        with pytest.raises(PermissionDeniedError):
            CommandValidator(make_session(sender="carol")).validate_single(SingleCommand("lgtm"), check_sender=False)
