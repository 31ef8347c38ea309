"""Shared fixtures: an in-memory platform client and session builders."""

from __future__ import annotations

from dataclasses import replace

import pytest

from prcli_core.config import CommandContext
from prcli_core.errors import PlatformError
from prcli_core.models import (
    CheckRun,
    Comment,
    Commit,
    MergeMethod,
    Platform,
    PRState,
    PullRequest,
    Review,
    ReviewState,
)
from prcli_core.platforms.base import BaseClient
from prcli_core.session import PRSession

BOT = "prcli-bot"


class InMemoryClient(BaseClient):
    """BaseClient backed by plain lists; records every write for assertions."""

    def __init__(self, pr: PullRequest | None = None, bot: str = BOT):
        pr = pr or PullRequest(
            number=1,
            state=PRState.OPEN,
            author="author",
            head_ref="feature",
            head_sha="a" * 40,
            base_ref="main",
            base_sha="b" * 40,
            title="Add feature",
            url="https://github.com/owner/repo/pull/1",
        )
        super().__init__("owner", "repo", pr.number)
        self.bot = bot
        self.pr = pr
        self.comments: list[Comment] = []
        self.posted: list[str] = []
        self.reviews: list[Review] = []
        self.permissions: dict[str, str] = {}
        self.check_runs: list[CheckRun] = []
        self.merge_methods = [MergeMethod.REBASE, MergeMethod.SQUASH, MergeMethod.MERGE]
        self.labels: list[str] = []
        self.reviewers: list[str] = []
        self.commits: list[Commit] = [Commit(sha="c" * 40, message="feature")]
        self.branches = {"main", "feature"}
        self.created_prs: list[PullRequest] = []
        self.picked: list[tuple[str, str]] = []
        self.workflows: list[tuple[str, str, dict]] = []
        self.merged_with: MergeMethod | None = None
        self.rebased = False
        self.rerun: list[CheckRun] = []
        self.fail_post = False
        self.fail_merge: PlatformError | None = None
        self.fail_identity = False

    # ---- helpers for tests ------------------------------------------------ #

    def add_comment(self, author: str, body: str) -> None:
        self.comments.append(Comment(id=len(self.comments) + 1, author=author, body=body))

    def add_review(self, reviewer: str, state: ReviewState = ReviewState.APPROVED, body: str = "") -> Review:
        review = Review(id=len(self.reviews) + 100, reviewer=reviewer, state=state, body=body)
        self.reviews.append(review)
        return review

    # ---- BaseClient ------------------------------------------------------- #

    def get_pull_request(self) -> PullRequest:
        return replace(self.pr)

    def merge(self, method: MergeMethod) -> None:
        if self.fail_merge is not None:
            raise self.fail_merge
        self.merged_with = method
        self.pr.state = PRState.MERGED
        self.pr.merge_commit_sha = "d" * 40

    def close(self) -> None:
        self.pr.state = PRState.CLOSED

    def rebase(self) -> None:
        self.rebased = True

    def available_merge_methods(self) -> list[MergeMethod]:
        return list(self.merge_methods)

    def create_pull_request(self, title: str, body: str, head: str, base: str) -> PullRequest:
        created = PullRequest(
            number=100 + len(self.created_prs),
            state=PRState.OPEN,
            author=self.bot,
            head_ref=head,
            base_ref=base,
            title=title,
        )
        self.created_prs.append(created)
        return created

    def list_comments(self) -> list[Comment]:
        return list(self.comments)

    def post_comment(self, body: str) -> None:
        if self.fail_post:
            raise PlatformError("post comment failed: 502", transient=True, status=502)
        self.posted.append(body)
        self.add_comment(self.bot, body)

    def current_user(self) -> str:
        if self.fail_identity:
            raise PlatformError("get authenticated user failed: 403 Resource not accessible", status=403)
        return self.bot

    def list_reviews(self) -> list[Review]:
        return list(self.reviews)

    def submit_review(self, event: str, body: str, on_behalf_of: str) -> None:
        self.add_review(self.bot, ReviewState.APPROVED, body)

    def dismiss_review(self, review_id: int, message: str) -> None:
        for review in self.reviews:
            if review.id == review_id:
                review.state = ReviewState.DISMISSED

    def get_user_permission(self, login: str) -> str:
        return self.permissions.get(login, "none")

    def list_requested_reviewers(self) -> list[str]:
        return list(self.reviewers)

    def request_reviewers(self, logins: list[str]) -> None:
        self.reviewers.extend(u for u in logins if u not in self.reviewers)

    def remove_reviewers(self, logins: list[str]) -> None:
        self.reviewers = [u for u in self.reviewers if u not in logins]

    def list_labels(self) -> list[str]:
        return list(self.labels)

    def add_labels(self, labels: list[str]) -> None:
        self.labels.extend(label for label in labels if label not in self.labels)

    def remove_labels(self, labels: list[str]) -> None:
        self.labels = [label for label in self.labels if label not in labels]

    def list_check_runs(self) -> list[CheckRun]:
        return list(self.check_runs)

    def rerun_failed_checks(self, checks: list[CheckRun]) -> list[str]:
        self.rerun.extend(checks)
        return [c.name for c in checks]

    def list_commits(self) -> list[Commit]:
        return list(self.commits)

    def branch_exists(self, name: str) -> bool:
        return name in self.branches

    def create_branch(self, name: str, from_branch: str) -> None:
        self.branches.add(name)

    def cherry_pick_apply(self, commit_sha: str, branch: str) -> str:
        self.picked.append((commit_sha, branch))
        return "e" * 40

    def trigger_workflow(self, workflow: str, ref: str, inputs: dict[str, str]) -> None:
        self.workflows.append((workflow, ref, inputs))


class SingleApprovalClient(InMemoryClient):
    """Approves once as the token owner and records the user in a note, the way GitLab does."""

    def submit_review(self, event: str, body: str, on_behalf_of: str) -> None:
        if not any(r.reviewer == self.bot for r in self.reviews):
            self.add_review(self.bot)
        self.add_comment(self.bot, body)


def build_context(**overrides) -> CommandContext:
    values = dict(
        platform=Platform.GITHUB,
        owner="owner",
        repo="repo",
        pr_number=1,
        comment_sender="alice",
        trigger_comment="/lgtm",
        token="tok",
    )
    values.update(overrides)
    return CommandContext(**values)


@pytest.fixture
def client():
    client = InMemoryClient()
    client.permissions.update({"alice": "write", "bob": "write", "carol": "read", "author": "write", "admin": "admin"})
    return client


@pytest.fixture
def make_session(client):
    """Build a PRSession on the shared client: ``make_session(sender="bob", lgtm_threshold=2)``."""

    def _make(sender: str = "alice", trigger: str = "/lgtm", sink=None, on=None, **overrides) -> PRSession:
        context = build_context(comment_sender=sender, trigger_comment=trigger, **overrides)
        return PRSession(on or client, context, sink)

    return _make


@pytest.fixture
def single_approval_client(client):
    other = SingleApprovalClient()
    other.permissions.update(client.permissions)
    return other
