"""pydantic schemas for the webhook payloads prcli consumes.

Only the fields the service reads are declared; everything else in a
delivery is ignored. Missing or null fields fall back to their defaults so
the semantic checks in ``prcli_core.events`` decide what is required, while
a value of the wrong type fails validation.
"""

from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationInfo, field_validator


class Payload(BaseModel):
    model_config = ConfigDict(extra="ignore", str_strip_whitespace=True)

    @field_validator("*", mode="before")
    @classmethod
    def _null_is_default(cls, value: Any, info: ValidationInfo) -> Any:
        if value is None:
            return cls.model_fields[info.field_name].get_default(call_default_factory=True)
        return value


# ---------------------------------------------------------------------------
# GitHub
# ---------------------------------------------------------------------------


class GitHubUser(Payload):
    login: str = ""


class GitHubRepository(Payload):
    name: str = ""
    owner: GitHubUser = Field(default_factory=GitHubUser)
    html_url: str = ""


class GitHubIssueLink(Payload):
    url: str = ""
    merged_at: Optional[str] = None


class GitHubIssue(Payload):
    number: int = 0
    state: str = ""
    title: str = ""
    html_url: str = ""
    user: GitHubUser = Field(default_factory=GitHubUser)
    pull_request: Optional[GitHubIssueLink] = None


class GitHubComment(Payload):
    model_config = ConfigDict(str_strip_whitespace=False)

    id: int = 0
    body: str = ""
    user: GitHubUser = Field(default_factory=GitHubUser)


class GitHubRef(Payload):
    ref: str = ""
    sha: str = ""


class GitHubPullRequest(Payload):
    number: int = 0
    state: str = ""
    draft: bool = False
    merged: bool = False
    title: str = ""
    html_url: str = ""
    user: GitHubUser = Field(default_factory=GitHubUser)
    head: GitHubRef = Field(default_factory=GitHubRef)
    base: GitHubRef = Field(default_factory=GitHubRef)


class IssueCommentPayload(Payload):
    """``issue_comment`` delivery."""

    action: str = ""
    issue: GitHubIssue = Field(default_factory=GitHubIssue)
    comment: GitHubComment = Field(default_factory=GitHubComment)
    repository: GitHubRepository = Field(default_factory=GitHubRepository)
    sender: GitHubUser = Field(default_factory=GitHubUser)


class PullRequestPayload(Payload):
    """``pull_request`` delivery."""

    action: str = ""
    number: int = 0
    pull_request: GitHubPullRequest = Field(default_factory=GitHubPullRequest)
    repository: GitHubRepository = Field(default_factory=GitHubRepository)
    sender: GitHubUser = Field(default_factory=GitHubUser)


# ---------------------------------------------------------------------------
# GitLab
# ---------------------------------------------------------------------------


class GitLabUser(Payload):
    username: str = ""


class GitLabProject(Payload):
    path_with_namespace: str = ""
    namespace: str = ""
    path: str = ""
    name: str = ""
    web_url: str = ""


class GitLabCommit(Payload):
    id: str = ""


class GitLabMergeRequest(Payload):
    """Merge request attributes, shared by both hooks."""

    iid: int = 0
    action: str = ""
    state: str = ""
    title: str = ""
    url: str = ""
    web_url: str = ""
    draft: bool = False
    work_in_progress: bool = False
    author: GitLabUser = Field(default_factory=GitLabUser)
    source_branch: str = ""
    target_branch: str = ""
    last_commit: GitLabCommit = Field(default_factory=GitLabCommit)
    merge_commit_sha: Optional[str] = None


class GitLabNote(Payload):
    model_config = ConfigDict(str_strip_whitespace=False)

    id: int = 0
    note: str = ""
    noteable_type: str = ""
    action: str = ""


class NoteHookPayload(Payload):
    """``Note Hook`` delivery."""

    user: GitLabUser = Field(default_factory=GitLabUser)
    project: GitLabProject = Field(default_factory=GitLabProject)
    object_attributes: GitLabNote = Field(default_factory=GitLabNote)
    merge_request: Optional[GitLabMergeRequest] = None


class MergeRequestHookPayload(Payload):
    """``Merge Request Hook`` delivery."""

    user: GitLabUser = Field(default_factory=GitLabUser)
    project: GitLabProject = Field(default_factory=GitLabProject)
    object_attributes: GitLabMergeRequest = Field(default_factory=GitLabMergeRequest)
