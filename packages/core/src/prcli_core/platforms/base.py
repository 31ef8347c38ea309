"""Platform capability interface.

A client is bound to one pull/merge request for its whole lifetime:

    client = create_client(context)      # github | gitlab
    client.get_pull_request()
    client.list_reviews() / submit_review() / dismiss_review()
    client.list_check_runs() / merge()
    client.create_branch() / cherry_pick_apply() / create_pull_request()

Handlers only ever talk to this interface, so adding a platform means
implementing the abstract methods below and registering it in
``prcli_core.platforms.create_client``. All methods raise
``prcli_core.errors.PlatformError`` on failure.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Iterable

if TYPE_CHECKING:
    from prcli_core.models import CheckRun, Comment, Commit, MergeMethod, PullRequest, Review

logger = logging.getLogger(__name__)


class BaseClient(ABC):
    def __init__(self, owner: str, repo: str, pr_number: int):
        self.owner = owner
        self.repo = repo
        self.pr_number = pr_number

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.repo}"

    # ------------------------------------------------------------------ #
    # Pull request                                                         #
    # ------------------------------------------------------------------ #

    @abstractmethod
    def get_pull_request(self) -> PullRequest:
        """Fetch the bound pull request."""

    @abstractmethod
    def merge(self, method: MergeMethod) -> None:
        """Merge with a concrete method (never ``auto``)."""

    @abstractmethod
    def close(self) -> None:
        """Close without merging."""

    @abstractmethod
    def rebase(self) -> None:
        """Update the head branch from the base branch."""

    @abstractmethod
    def available_merge_methods(self) -> list[MergeMethod]:
        """Merge methods the repository allows."""

    @abstractmethod
    def create_pull_request(self, title: str, body: str, head: str, base: str) -> PullRequest:
        """Open a new pull request in the same repository."""

    # ------------------------------------------------------------------ #
    # Conversation                                                         #
    # ------------------------------------------------------------------ #

    @abstractmethod
    def list_comments(self) -> list[Comment]:
        """All comments on the pull request, oldest first."""

    @abstractmethod
    def post_comment(self, body: str) -> None:
        """Post a comment on the pull request."""

    # ------------------------------------------------------------------ #
    # Reviews and permissions                                              #
    # ------------------------------------------------------------------ #

    @abstractmethod
    def current_user(self) -> str:
        """Login of the identity behind the token."""

    @abstractmethod
    def list_reviews(self) -> list[Review]:
        """All reviews on the pull request."""

    @abstractmethod
    def submit_review(self, event: str, body: str, on_behalf_of: str) -> None:
        """Submit a review of type ``event`` (e.g. ``APPROVE``).

        ``on_behalf_of`` is the user who asked for it; platforms that submit
        with the service identity ignore it and rely on the marker in ``body``.
        """

    @abstractmethod
    def dismiss_review(self, review_id: int, message: str) -> None:
        """Dismiss one review."""

    @abstractmethod
    def get_user_permission(self, login: str) -> str:
        """Return ``admin``, ``write``, ``read`` or ``none`` for ``login``."""

    @abstractmethod
    def list_requested_reviewers(self) -> list[str]:
        """Logins currently requested for review."""

    @abstractmethod
    def request_reviewers(self, logins: list[str]) -> None:
        """Add requested reviewers."""

    @abstractmethod
    def remove_reviewers(self, logins: list[str]) -> None:
        """Remove requested reviewers."""

    # ------------------------------------------------------------------ #
    # Labels                                                               #
    # ------------------------------------------------------------------ #

    @abstractmethod
    def list_labels(self) -> list[str]:
        """Labels currently on the pull request."""

    @abstractmethod
    def add_labels(self, labels: list[str]) -> None:
        """Add labels; labels already present are left alone."""

    @abstractmethod
    def remove_labels(self, labels: list[str]) -> None:
        """Remove labels; labels not present are ignored."""

    # ------------------------------------------------------------------ #
    # Checks                                                               #
    # ------------------------------------------------------------------ #

    @abstractmethod
    def list_check_runs(self) -> list[CheckRun]:
        """Check runs reported for the head commit."""

    @abstractmethod
    def rerun_failed_checks(self, checks: list[CheckRun]) -> list[str]:
        """Re-run platform-native CI for ``checks``; return what was re-run."""

    # ------------------------------------------------------------------ #
    # Branches and commits                                                 #
    # ------------------------------------------------------------------ #

    @abstractmethod
    def list_commits(self) -> list[Commit]:
        """Commits of the pull request, oldest first."""

    @abstractmethod
    def branch_exists(self, name: str) -> bool:
        """Return True if ``name`` is a branch of the repository."""

    @abstractmethod
    def create_branch(self, name: str, from_branch: str) -> None:
        """Create ``name`` pointing at the head of ``from_branch``."""

    @abstractmethod
    def cherry_pick_apply(self, commit_sha: str, branch: str) -> str:
        """Apply the changes of ``commit_sha`` on top of ``branch``.

        Returns the SHA of the new commit on ``branch``.
        """

    @abstractmethod
    def trigger_workflow(self, workflow: str, ref: str, inputs: dict[str, str]) -> None:
        """Start a CI run on ``ref`` with ``inputs`` (workflow dispatch or pipeline)."""

    # ------------------------------------------------------------------ #
    # Shared implementations                                               #
    # ------------------------------------------------------------------ #

    def check_user_permissions(self, login: str, required: Iterable[str]) -> tuple[bool, str]:
        """Return ``(allowed, permission)`` for ``login`` against ``required``."""
        permission = self.get_user_permission(login)
        allowed = permission in set(required)
        logger.debug("Permission of %s on %s is %s (allowed=%s)", login, self.full_name, permission, allowed)
        return allowed, permission
