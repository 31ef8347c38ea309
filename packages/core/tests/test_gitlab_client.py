"""Tests for the GitLab REST client."""

from unittest.mock import MagicMock

import pytest
import requests

from prcli_core.errors import PlatformError
from prcli_core.models import MergeMethod, PRState, ReviewState
from prcli_core.platforms.gitlab import GitLabClient, _permission_for


def _response(payload=None, status=200, headers=None):
    response = MagicMock()
    response.status_code = status
    response.headers = headers or {}
    response.content = b"{}" if payload is not None else b""
    response.json.return_value = payload
    response.text = str(payload)
    if status >= 400:
        response.raise_for_status.side_effect = requests.HTTPError(f"{status}")
    return response


@pytest.fixture
def session():
    return MagicMock()


def _client(session):
    return GitLabClient("group/sub", "proj", 3, token="tok", session=session)


def _urls(session):
    return [(c.kwargs["method"], c.kwargs["url"]) for c in session.request.call_args_list]


@pytest.mark.parametrize(
    "level,expected",
    [(50, "admin"), (40, "admin"), (30, "write"), (20, "read"), (10, "read"), (5, "none"), (0, "none")],
)
def test_permission_for(level, expected):
    assert _permission_for(level) == expected


class TestTransport:
    def test_project_path_is_encoded(self, session):
        session.request.return_value = _response({"iid": 3, "state": "opened", "author": {"username": "dev"}})
        _client(session).get_pull_request()
        method, url = _urls(session)[0]
        assert method == "GET"
        assert url == "https://gitlab.com/api/v4/projects/group%2Fsub%2Fproj/merge_requests/3"
        assert session.request.call_args.kwargs["headers"]["Authorization"] == "Bearer tok"

    def test_server_error_is_transient(self, session):
        session.request.return_value = _response(status=502, headers={"Retry-After": "5"})
        with pytest.raises(PlatformError) as excinfo:
            _client(session).close()
        assert excinfo.value.transient is True
        assert excinfo.value.status == 502
        assert "retry after 5s" in str(excinfo.value)

    def test_client_error_is_not_transient(self, session):
        session.request.return_value = _response({"message": "forbidden"}, status=403)
        with pytest.raises(PlatformError) as excinfo:
            _client(session).close()
        assert excinfo.value.transient is False
        assert excinfo.value.status == 403

    def test_connection_error_is_transient(self, session):
        session.request.side_effect = requests.ConnectionError("refused")
        with pytest.raises(PlatformError) as excinfo:
            _client(session).close()
        assert excinfo.value.transient is True

    def test_pagination_follows_next_page(self, session):
        session.request.side_effect = [
            _response([{"id": 1, "author": {"username": "a"}, "body": "/lgtm"}], headers={"X-Next-Page": "2"}),
            _response(
                [
                    {"id": 2, "author": {"username": "b"}, "body": "hi"},
                    {"id": 3, "author": {"username": "gitlab"}, "body": "added 1 commit", "system": True},
                ],
                headers={"X-Next-Page": ""},
            ),
        ]
        comments = _client(session).list_comments()
        assert [(c.id, c.author) for c in comments] == [(1, "a"), (2, "b")]
        assert [c.kwargs["params"]["page"] for c in session.request.call_args_list] == ["1", "2"]


class TestGitLabClient:
    def test_pull_request_mapping(self, session):
        session.request.return_value = _response(
            {
                "iid": 3,
                "state": "merged",
                "author": {"username": "dev"},
                "source_branch": "feature",
                "target_branch": "main",
                "sha": "a" * 40,
                "diff_refs": {"base_sha": "b" * 40},
                "merge_commit_sha": "m" * 40,
                "web_url": "https://gitlab.com/group/sub/proj/-/merge_requests/3",
            }
        )
        pr = _client(session).get_pull_request()
        assert pr.state == PRState.MERGED
        assert pr.head_sha == "a" * 40
        assert pr.base_sha == "b" * 40
        assert pr.merge_commit_sha == "m" * 40

    def test_squash_merge(self, session):
        session.request.return_value = _response({})
        _client(session).merge(MergeMethod.SQUASH)
        assert session.request.call_args.kwargs["json"] == {"squash": True}
        assert _urls(session)[-1][1].endswith("/merge_requests/3/merge")

    def test_rebase_merge_rebases_first(self, session):
        session.request.return_value = _response({})
        _client(session).merge(MergeMethod.REBASE)
        assert [url.rsplit("/", 1)[-1] for _, url in _urls(session)] == ["rebase", "merge"]

    def test_approvals_are_reviews(self, session):
        session.request.return_value = _response({"approved_by": [{"user": {"id": 7, "username": "alice"}}]})
        reviews = _client(session).list_reviews()
        assert [(r.id, r.reviewer, r.state) for r in reviews] == [(7, "alice", ReviewState.APPROVED)]

    def test_current_user_is_cached(self, session):
        session.request.return_value = _response({"id": 9, "username": "prcli-bot"})
        client = _client(session)
        assert client.current_user() == "prcli-bot"
        assert client.current_user() == "prcli-bot"
        assert _urls(session) == [("GET", "https://gitlab.com/api/v4/user")]

    def test_approve_posts_note(self, session):
        session.request.side_effect = [
            _response({"id": 9, "username": "prcli-bot"}),
            _response({"approved_by": []}),
            _response({}),
            _response({}),
        ]
        _client(session).submit_review("APPROVE", "approved for alice", "alice")
        assert [url.rsplit("/", 1)[-1] for _, url in _urls(session)] == ["user", "approvals", "approve", "notes"]
        assert session.request.call_args.kwargs["json"] == {"body": "approved for alice"}

    def test_second_approval_only_adds_note(self, session):
        session.request.side_effect = [
            _response({"id": 9, "username": "prcli-bot"}),
            _response({"approved_by": [{"user": {"id": 9, "username": "prcli-bot"}}]}),
            _response({}),
        ]
        client = GitLabClient("group", "proj", 3, token="tok", comment_token="ctok", session=session)
        client.submit_review("APPROVE", "approved for bob", "bob")
        assert [url.rsplit("/", 1)[-1] for _, url in _urls(session)] == ["user", "approvals", "notes"]
        # the marker note is written by the approving identity
        assert session.request.call_args.kwargs["headers"]["Authorization"] == "Bearer tok"

    def test_dismiss_own_approval(self, session):
        session.request.side_effect = [_response({"id": 9, "username": "prcli-bot"}), _response({}), _response({})]
        _client(session).dismiss_review(9, "LGTM removed")
        assert [url.rsplit("/", 1)[-1] for _, url in _urls(session)] == ["user", "unapprove", "notes"]

    def test_cannot_dismiss_other_users_approval(self, session):
        session.request.return_value = _response({"id": 9, "username": "prcli-bot"})
        with pytest.raises(PlatformError, match="cannot revoke"):
            _client(session).dismiss_review(7, "LGTM removed")
        assert [url.rsplit("/", 1)[-1] for _, url in _urls(session)] == ["user"]

    def test_comment_token_used_for_notes(self, session):
        session.request.return_value = _response({})
        GitLabClient("group", "proj", 3, token="tok", comment_token="ctok", session=session).post_comment("hi")
        assert session.request.call_args.kwargs["headers"]["Authorization"] == "Bearer ctok"

    def test_user_permission(self, session):
        session.request.side_effect = [_response([{"id": 11}]), _response({"access_level": 30})]
        assert _client(session).get_user_permission("@alice") == "write"
        assert _urls(session)[1][1].endswith("/members/all/11")

    def test_non_member_has_no_permission(self, session):
        session.request.side_effect = [_response([{"id": 11}]), _response({"message": "404 Not found"}, status=404)]
        assert _client(session).get_user_permission("stranger") == "none"

    def test_unknown_user_has_no_permission(self, session):
        session.request.return_value = _response([])
        assert _client(session).get_user_permission("ghost") == "none"

    def test_request_reviewers_keeps_existing(self, session):
        session.request.side_effect = [
            _response({"reviewers": [{"username": "bob"}]}),
            _response([{"id": 2}]),
            _response([{"id": 3}]),
            _response({}),
        ]
        _client(session).request_reviewers(["@carol", "bob"])
        assert session.request.call_args.kwargs["json"] == {"reviewer_ids": [2, 3]}

    def test_check_runs_from_latest_pipeline(self, session):
        session.request.side_effect = [
            _response([{"id": 90}, {"id": 80}]),
            _response(
                [
                    {"id": 1, "name": "unit", "status": "failed", "web_url": "https://ci/1"},
                    {"id": 2, "name": "lint", "status": "running"},
                ]
            ),
        ]
        checks = _client(session).list_check_runs()
        assert [(c.name, c.status, c.conclusion, c.check_suite_id) for c in checks] == [
            ("unit", "completed", "failure", 90),
            ("lint", "in_progress", None, 90),
        ]

    def test_no_pipeline_no_checks(self, session):
        session.request.return_value = _response([])
        assert _client(session).list_check_runs() == []

    def test_branch_exists(self, session):
        session.request.return_value = _response({"message": "404 Branch Not Found"}, status=404)
        assert _client(session).branch_exists("release/1.0") is False
        assert _urls(session)[0][1].endswith("/repository/branches/release%2F1.0")

    def test_cherry_pick_apply(self, session):
        session.request.return_value = _response({"id": "n" * 40})
        assert _client(session).cherry_pick_apply("s" * 40, "cp") == "n" * 40
        assert session.request.call_args.kwargs["json"] == {"branch": "cp"}

    def test_trigger_workflow_creates_pipeline(self, session):
        session.request.return_value = _response({"id": 5})
        _client(session).trigger_workflow("ci.yml", "main", {"pr_number": 3})
        method, url = _urls(session)[0]
        assert method == "POST"
        assert url.endswith("/projects/group%2Fsub%2Fproj/pipeline")
        assert session.request.call_args.kwargs["json"] == {
            "ref": "main",
            "variables": [{"key": "PR_NUMBER", "value": "3"}],
        }
