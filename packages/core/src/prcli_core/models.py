"""Platform-neutral data model.

Platform clients map PyGithub objects and GitLab JSON into these types so
validators, the LGTM engine and the merge gate never see platform objects.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime


class Platform(str, enum.Enum):
    GITHUB = "github"
    GITLAB = "gitlab"


class PRState(str, enum.Enum):
    OPEN = "open"
    CLOSED = "closed"
    MERGED = "merged"


class ReviewState(str, enum.Enum):
    APPROVED = "approved"
    CHANGES_REQUESTED = "changes_requested"
    DISMISSED = "dismissed"
    COMMENTED = "commented"


class MergeMethod(str, enum.Enum):
    AUTO = "auto"
    MERGE = "merge"
    SQUASH = "squash"
    REBASE = "rebase"


# Preference order used by ``auto``.
AUTO_MERGE_PRIORITY = (MergeMethod.REBASE, MergeMethod.SQUASH, MergeMethod.MERGE)


class EventKind(str, enum.Enum):
    ISSUE_COMMENT = "issueComment"
    PR_OPENED = "prOpened"
    PR_SYNCHRONIZED = "prSynchronized"
    PR_REOPENED = "prReopened"
    PR_READY_FOR_REVIEW = "prReadyForReview"
    PR_EDITED = "prEdited"


class CherryPickMode(str, enum.Enum):
    IMMEDIATE = "immediate"
    SCHEDULED = "scheduled"
    FROM_LAST_COMMIT = "fromLastCommit"


class CherryPickState(str, enum.Enum):
    RECEIVED = "received"
    VALIDATING = "validating"
    APPLYING = "applying"
    PUBLISHING = "publishing"
    DONE = "done"
    REPORTED = "reported"


@dataclass(frozen=True)
class Repository:
    owner: str
    name: str
    url: str = ""

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.name}"


@dataclass
class PullRequest:
    number: int
    state: PRState
    author: str
    head_ref: str = ""
    head_sha: str = ""
    base_ref: str = ""
    base_sha: str = ""
    draft: bool = False
    title: str = ""
    url: str = ""
    merge_commit_sha: str | None = None

    @property
    def is_open(self) -> bool:
        return self.state == PRState.OPEN


@dataclass
class Comment:
    id: int
    author: str
    body: str
    created_at: datetime | None = None


@dataclass
class User:
    login: str
    permission: str  # admin | write | read | none | robot

    @property
    def is_robot(self) -> bool:
        return self.permission == "robot"


@dataclass
class Review:
    id: int
    reviewer: str
    state: ReviewState
    submitted_at: datetime | None = None
    body: str = ""


@dataclass
class CheckRun:
    name: str
    status: str  # queued | in_progress | completed
    conclusion: str | None = None
    url: str = ""
    app_slug: str = ""
    check_suite_id: int | None = None
    id: int = 0

    @property
    def is_completed(self) -> bool:
        return self.status == "completed"


@dataclass
class Commit:
    sha: str
    message: str = ""
    parents: list[str] = field(default_factory=list)


@dataclass
class MergeDecision:
    allowed: bool
    reason: str = ""
    method: MergeMethod | None = None
    failing_checks: list[CheckRun] = field(default_factory=list)


@dataclass
class CherryPickTask:
    source_pr: int
    target_branch: str
    mode: CherryPickMode
    requested_by: str = ""
    state: CherryPickState = CherryPickState.RECEIVED
    commit_sha: str = ""
    branch_name: str = ""
    created_pr: PullRequest | None = None
    error: str = ""

    _TRANSITIONS = {
        CherryPickState.RECEIVED: (CherryPickState.VALIDATING, CherryPickState.REPORTED),
        CherryPickState.VALIDATING: (CherryPickState.APPLYING, CherryPickState.REPORTED),
        CherryPickState.APPLYING: (CherryPickState.PUBLISHING, CherryPickState.REPORTED),
        CherryPickState.PUBLISHING: (CherryPickState.DONE, CherryPickState.REPORTED),
        CherryPickState.DONE: (),
        CherryPickState.REPORTED: (),
    }

    def advance(self, new_state: CherryPickState) -> None:
        """Move to ``new_state``; transitions are one-shot and forward only."""
        if new_state not in self._TRANSITIONS[self.state]:
            raise ValueError(f"invalid cherry-pick transition {self.state.value} -> {new_state.value}")
        self.state = new_state


@dataclass
class Event:
    """Canonical webhook event, independent of the sending platform."""

    platform: Platform
    kind: EventKind
    repository: Repository
    pull_request: PullRequest
    sender: str
    raw_id: str
    comment: Comment | None = None
    action: str = ""
