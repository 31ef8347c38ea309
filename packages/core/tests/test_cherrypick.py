"""Tests for the cherry-pick scheduler."""

import pytest

from prcli_core.cherrypick import CherryPickScheduler, cherry_pick_branch_name
from prcli_core.errors import CommentedError
from prcli_core.models import CherryPickMode, CherryPickState, CherryPickTask, PRState


def test_branch_name():
    assert cherry_pick_branch_name(12, "release/1.0", "abcdef1234") == "cherry-pick-12-to-release-1-0-abcdef1"


class TestStateMachine:
    def test_forward_transitions(self):
        task = CherryPickTask(1, "v1", CherryPickMode.IMMEDIATE)
        for state in (
            CherryPickState.VALIDATING,
            CherryPickState.APPLYING,
            CherryPickState.PUBLISHING,
            CherryPickState.DONE,
        ):
            task.advance(state)
        assert task.state == CherryPickState.DONE

    def test_no_transition_out_of_terminal_state(self):
        task = CherryPickTask(1, "v1", CherryPickMode.IMMEDIATE)
        task.advance(CherryPickState.REPORTED)
        with pytest.raises(ValueError):
            task.advance(CherryPickState.VALIDATING)

    def test_cannot_skip_states(self):
        task = CherryPickTask(1, "v1", CherryPickMode.IMMEDIATE)
        with pytest.raises(ValueError):
            task.advance(CherryPickState.PUBLISHING)


# ---------------------------------------------------------------------------
# request
# ---------------------------------------------------------------------------


class TestRequest:
    def test_open_pr_is_scheduled(self, client, make_session):
        task = CherryPickScheduler(make_session()).request(("release-1.0",), "alice")
        assert task.mode == CherryPickMode.SCHEDULED
        assert "will cherry-pick upon merge" in client.posted[-1]
        assert client.created_prs == []

    def test_missing_branch(self, client, make_session):
        with pytest.raises(CommentedError):
            CherryPickScheduler(make_session()).request((), "alice")
        assert "Invalid cherry-pick command" in client.posted[-1]

    def test_merged_pr_uses_merge_commit(self, client, make_session, tmp_path):
        from prcli_results.directory import DirectorySink

        client.pr.state = PRState.MERGED
        client.pr.merge_commit_sha = "f" * 40
        client.branches.add("release-1.0")
        task = CherryPickScheduler(make_session(sink=DirectorySink(tmp_path))).request(("release-1.0",), "alice")

        assert task.state == CherryPickState.DONE
        assert task.mode == CherryPickMode.IMMEDIATE
        assert client.picked == [("f" * 40, "cherry-pick-1-to-release-1-0-fffffff")]
        created = client.created_prs[0]
        assert created.base_ref == "release-1.0"
        assert created.head_ref == "cherry-pick-1-to-release-1-0-fffffff"
        assert "Cherry Pick Successful" in client.posted[-1]
        assert (tmp_path / "has-cherry-pick-comments").read_text() == "true\n"

    def test_closed_pr_uses_last_commit(self, client, make_session):
        client.pr.state = PRState.CLOSED
        client.branches.add("v1")
        task = CherryPickScheduler(make_session()).request(("v1",), "alice")
        assert task.mode == CherryPickMode.FROM_LAST_COMMIT
        assert client.picked[0][0] == "c" * 40

    def test_missing_target_branch_is_reported(self, client, make_session):
        client.pr.state = PRState.MERGED
        client.pr.merge_commit_sha = "f" * 40
        with pytest.raises(CommentedError, match="does not exist"):
            CherryPickScheduler(make_session()).request(("nope",), "alice")
        assert "Cherry Pick Failed" in client.posted[-1]
        assert client.created_prs == []

    def test_custom_applier(self, client, make_session):
        calls = []
        client.pr.state = PRState.MERGED
        client.pr.merge_commit_sha = "f" * 40
        client.branches.add("v1")

        def applier(sha, branch):
            calls.append((sha, branch))
            return "1" * 40

        CherryPickScheduler(make_session(), applier=applier).request(("v1",), "alice")
        assert calls and client.picked == []
        assert "1" * 40 in client.posted[-1]


# ---------------------------------------------------------------------------
# post_merge
# ---------------------------------------------------------------------------


class TestPostMerge:
    def test_performs_each_requested_branch(self, client, make_session):
        client.pr.state = PRState.MERGED
        client.pr.merge_commit_sha = "f" * 40
        client.branches.update({"v1", "v2"})
        client.add_comment("alice", "/cherry-pick v1")
        client.add_comment("bob", "/cherrypick v2\n/cherry-pick v1")

        tasks = CherryPickScheduler(make_session()).post_merge()
        assert [(t.target_branch, t.requested_by) for t in tasks] == [("v1", "alice"), ("v2", "bob")]
        assert all(t.state == CherryPickState.DONE for t in tasks)
        assert len(client.created_prs) == 2

    def test_ignores_requests_without_permission(self, client, make_session):
        client.pr.state = PRState.MERGED
        client.branches.add("v1")
        client.add_comment("carol", "/cherry-pick v1")
        assert CherryPickScheduler(make_session()).post_merge() == []

    def test_open_pr_does_nothing(self, client, make_session):
        client.add_comment("alice", "/cherry-pick v1")
        assert CherryPickScheduler(make_session()).post_merge() == []

    def test_failure_of_one_does_not_stop_others(self, client, make_session):
        client.pr.state = PRState.MERGED
        client.branches.add("v2")
        client.add_comment("alice", "/cherry-pick v1\n/cherry-pick v2")
        tasks = CherryPickScheduler(make_session()).post_merge()
        assert [t.state for t in tasks] == [CherryPickState.REPORTED, CherryPickState.DONE]
