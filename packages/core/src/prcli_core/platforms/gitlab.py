"""GitLab merge-request client on the v4 REST API.

GitLab has no review objects with bodies; approvals are per user. Approving
through ``submit_review`` approves once as the token owner and posts the
review body, marker included, as a note under the same identity.
``dismiss_review`` can only revoke the token owner's own approval.
"""

from __future__ import annotations

import logging
from typing import Any
from urllib.parse import quote

import requests

from prcli_core.errors import PlatformError
from prcli_core.models import CheckRun, Comment, Commit, MergeMethod, PRState, PullRequest, Review, ReviewState
from prcli_core.platforms.base import BaseClient

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://gitlab.com/api/v4"

_STATES = {"opened": PRState.OPEN, "locked": PRState.OPEN, "merged": PRState.MERGED, "closed": PRState.CLOSED}

# access_level -> permission vocabulary shared with GitHub
_ACCESS_LEVELS = ((40, "admin"), (30, "write"), (10, "read"))

# GitLab job status -> (check status, conclusion)
_JOB_STATUS = {
    "created": ("queued", None),
    "waiting_for_resource": ("queued", None),
    "preparing": ("queued", None),
    "pending": ("queued", None),
    "running": ("in_progress", None),
    "success": ("completed", "success"),
    "failed": ("completed", "failure"),
    "canceled": ("completed", "cancelled"),
    "skipped": ("completed", "skipped"),
    "manual": ("completed", "neutral"),
    "scheduled": ("queued", None),
}

_RETRYABLE = {429, 500, 502, 503, 504}


def _permission_for(access_level: int) -> str:
    for minimum, permission in _ACCESS_LEVELS:
        if access_level >= minimum:
            return permission
    return "none"


def _parse_retry_after(value: str | None) -> float | None:
    if not value:
        return None
    try:
        parsed = float(value)
    except ValueError:
        return None
    return parsed if parsed >= 0 else None


class GitLabClient(BaseClient):
    def __init__(
        self,
        owner: str,
        repo: str,
        pr_number: int,
        token: str,
        comment_token: str | None = None,
        base_url: str | None = None,
        timeout: float = 30,
        session: requests.Session | None = None,
    ):
        super().__init__(owner, repo, pr_number)
        self.token = token
        self.comment_token = comment_token
        self.base_url = (base_url or DEFAULT_BASE_URL).rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()
        self._project_path = f"/projects/{quote(self.full_name, safe='')}"
        self._mr_path = f"{self._project_path}/merge_requests/{pr_number}"
        self._user_ids: dict[str, int] = {}
        self._me: dict | None = None

    # ---- transport ------------------------------------------------------ #

    def _request(
        self,
        method: str,
        path: str,
        json: dict[str, Any] | None = None,
        params: dict[str, Any] | None = None,
        token: str | None = None,
    ) -> requests.Response:
        headers = {"Accept": "application/json", "Authorization": f"Bearer {token or self.token}"}
        try:
            response = self.session.request(
                method=method,
                url=f"{self.base_url}{path}",
                headers=headers,
                json=json,
                params=params,
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            raise PlatformError(f"{method} {path} failed: {exc}", transient=True) from exc

        if response.status_code in _RETRYABLE:
            retry_after = _parse_retry_after((response.headers or {}).get("Retry-After"))
            suffix = f" (retry after {retry_after:g}s)" if retry_after is not None else ""
            raise PlatformError(
                f"{method} {path} failed: {response.status_code}{suffix}", transient=True, status=response.status_code
            )
        try:
            response.raise_for_status()
        except requests.HTTPError as exc:
            raise PlatformError(
                f"{method} {path} failed: {response.status_code} {response.text[:200]}", status=response.status_code
            ) from exc
        return response

    def _json(self, method: str, path: str, **kwargs) -> Any:
        response = self._request(method, path, **kwargs)
        if not response.content:
            return {}
        return response.json()

    def _paginate(self, path: str, params: dict[str, Any] | None = None) -> list[dict]:
        items: list[dict] = []
        page: str | None = "1"
        while page:
            response = self._request("GET", path, params={**(params or {}), "per_page": 100, "page": page})
            items.extend(response.json())
            page = (response.headers or {}).get("X-Next-Page") or None
        return items

    def _mr(self) -> dict:
        return self._json("GET", self._mr_path)

    def _user_id(self, username: str) -> int:
        username = username.lstrip("@")
        if username not in self._user_ids:
            users = self._json("GET", "/users", params={"username": username})
            if not users:
                raise PlatformError(f"GitLab user {username!r} not found", status=404)
            self._user_ids[username] = users[0]["id"]
        return self._user_ids[username]

    # ---- pull request -------------------------------------------------- #

    def get_pull_request(self) -> PullRequest:
        mr = self._mr()
        return self._to_pull_request(mr)

    @staticmethod
    def _to_pull_request(mr: dict) -> PullRequest:
        diff_refs = mr.get("diff_refs") or {}
        return PullRequest(
            number=mr["iid"],
            state=_STATES.get(mr.get("state", ""), PRState.CLOSED),
            author=(mr.get("author") or {}).get("username", ""),
            head_ref=mr.get("source_branch", ""),
            head_sha=mr.get("sha") or "",
            base_ref=mr.get("target_branch", ""),
            base_sha=diff_refs.get("base_sha") or "",
            draft=bool(mr.get("draft") or mr.get("work_in_progress")),
            title=mr.get("title", ""),
            url=mr.get("web_url", ""),
            merge_commit_sha=mr.get("squash_commit_sha") or mr.get("merge_commit_sha"),
        )

    def merge(self, method: MergeMethod) -> None:
        if method == MergeMethod.REBASE:
            self.rebase()
        self._json("PUT", f"{self._mr_path}/merge", json={"squash": method == MergeMethod.SQUASH})

    def close(self) -> None:
        self._json("PUT", self._mr_path, json={"state_event": "close"})

    def rebase(self) -> None:
        self._json("PUT", f"{self._mr_path}/rebase")

    def available_merge_methods(self) -> list[MergeMethod]:
        project = self._json("GET", self._project_path)
        methods = []
        if project.get("merge_method") in ("ff", "rebase_merge"):
            methods.append(MergeMethod.REBASE)
        if project.get("squash_option", "default_off") != "never":
            methods.append(MergeMethod.SQUASH)
        if project.get("merge_method", "merge") == "merge":
            methods.append(MergeMethod.MERGE)
        return methods

    def create_pull_request(self, title: str, body: str, head: str, base: str) -> PullRequest:
        mr = self._json(
            "POST",
            f"{self._project_path}/merge_requests",
            json={"source_branch": head, "target_branch": base, "title": title, "description": body},
        )
        return self._to_pull_request(mr)

    # ---- conversation -------------------------------------------------- #

    def list_comments(self) -> list[Comment]:
        notes = self._paginate(f"{self._mr_path}/notes", params={"sort": "asc", "order_by": "created_at"})
        return [
            Comment(id=n["id"], author=(n.get("author") or {}).get("username", ""), body=n.get("body") or "")
            for n in notes
            if not n.get("system")
        ]

    def post_comment(self, body: str) -> None:
        self._json("POST", f"{self._mr_path}/notes", json={"body": body}, token=self.comment_token)

    # ---- reviews and permissions --------------------------------------- #

    def _current(self) -> dict:
        if self._me is None:
            self._me = self._json("GET", "/user")
        return self._me

    def current_user(self) -> str:
        return self._current().get("username", "")

    def list_reviews(self) -> list[Review]:
        approvals = self._json("GET", f"{self._mr_path}/approvals")
        return [
            Review(id=entry["user"]["id"], reviewer=entry["user"]["username"], state=ReviewState.APPROVED)
            for entry in approvals.get("approved_by") or []
        ]

    def submit_review(self, event: str, body: str, on_behalf_of: str) -> None:
        # One approval per user: later requests only add the note naming the user.
        if event.upper() == "APPROVE":
            me = self._current().get("id")
            if all(review.id != me for review in self.list_reviews()):
                self._json("POST", f"{self._mr_path}/approve")
        self._json("POST", f"{self._mr_path}/notes", json={"body": body})

    def dismiss_review(self, review_id: int, message: str) -> None:
        if review_id != self._current().get("id"):
            raise PlatformError(f"GitLab cannot revoke approval of user {review_id} with this token", status=403)
        self._json("POST", f"{self._mr_path}/unapprove")
        self.post_comment(message)

    def get_user_permission(self, login: str) -> str:
        try:
            member = self._json("GET", f"{self._project_path}/members/all/{self._user_id(login)}")
        except PlatformError as exc:
            if exc.status == 404:
                return "none"
            raise
        return _permission_for(int(member.get("access_level") or 0))

    def list_requested_reviewers(self) -> list[str]:
        return [r["username"] for r in self._mr().get("reviewers") or []]

    def _set_reviewers(self, usernames: list[str]) -> None:
        ids = [self._user_id(u) for u in usernames]
        self._json("PUT", self._mr_path, json={"reviewer_ids": ids})

    def request_reviewers(self, logins: list[str]) -> None:
        current = self.list_requested_reviewers()
        wanted = current + [u.lstrip("@") for u in logins if u.lstrip("@") not in current]
        self._set_reviewers(wanted)

    def remove_reviewers(self, logins: list[str]) -> None:
        drop = {u.lstrip("@") for u in logins}
        self._set_reviewers([u for u in self.list_requested_reviewers() if u not in drop])

    # ---- labels ---------------------------------------------------------- #

    def list_labels(self) -> list[str]:
        return list(self._mr().get("labels") or [])

    def add_labels(self, labels: list[str]) -> None:
        self._json("PUT", self._mr_path, json={"add_labels": ",".join(labels)})

    def remove_labels(self, labels: list[str]) -> None:
        self._json("PUT", self._mr_path, json={"remove_labels": ",".join(labels)})

    # ---- checks ---------------------------------------------------------- #

    def _latest_pipeline(self) -> dict | None:
        pipelines = self._json("GET", f"{self._mr_path}/pipelines")
        return pipelines[0] if pipelines else None

    def list_check_runs(self) -> list[CheckRun]:
        pipeline = self._latest_pipeline()
        if pipeline is None:
            return []
        checks = []
        for job in self._paginate(f"{self._project_path}/pipelines/{pipeline['id']}/jobs"):
            status, conclusion = _JOB_STATUS.get(job.get("status", ""), ("queued", None))
            checks.append(
                CheckRun(
                    id=job["id"],
                    name=job.get("name", ""),
                    status=status,
                    conclusion=conclusion,
                    url=job.get("web_url", ""),
                    app_slug="gitlab-ci",
                    check_suite_id=pipeline["id"],
                )
            )
        return checks

    def rerun_failed_checks(self, checks: list[CheckRun]) -> list[str]:
        rerun = []
        for pipeline_id in sorted({c.check_suite_id for c in checks if c.check_suite_id}):
            self._json("POST", f"{self._project_path}/pipelines/{pipeline_id}/retry")
            rerun.append(f"pipeline {pipeline_id}")
        return rerun

    # ---- branches and commits ------------------------------------------ #

    def list_commits(self) -> list[Commit]:
        commits = self._paginate(f"{self._mr_path}/commits")
        return [Commit(sha=c["id"], message=c.get("message", ""), parents=c.get("parent_ids") or []) for c in reversed(commits)]

    def branch_exists(self, name: str) -> bool:
        try:
            self._request("GET", f"{self._project_path}/repository/branches/{quote(name, safe='')}")
        except PlatformError as exc:
            if exc.status == 404:
                return False
            raise
        return True

    def create_branch(self, name: str, from_branch: str) -> None:
        self._json("POST", f"{self._project_path}/repository/branches", json={"branch": name, "ref": from_branch})

    def cherry_pick_apply(self, commit_sha: str, branch: str) -> str:
        commit = self._json(
            "POST", f"{self._project_path}/repository/commits/{commit_sha}/cherry_pick", json={"branch": branch}
        )
        return commit.get("id", "")

    # ---- pipelines ------------------------------------------------------- #

    def trigger_workflow(self, workflow: str, ref: str, inputs: dict[str, str]) -> None:
        """Create a pipeline on ``ref``; ``inputs`` become pipeline variables.

        GitLab has no per-file dispatch, so ``workflow`` is only logged.
        """
        variables = [{"key": key.upper(), "value": str(value)} for key, value in inputs.items()]
        pipeline = self._json("POST", f"{self._project_path}/pipeline", json={"ref": ref, "variables": variables})
        logger.info("Created pipeline %s (%s) on %s for MR !%s", pipeline.get("id"), workflow, ref, self.pr_number)
