"""Webhook payloads -> canonical Event.

Supported inputs:

  GitHub  issue_comment (action "created", comment on a pull request)
  GitHub  pull_request  (configured lifecycle actions; drafts skipped unless ready_for_review)
  GitLab  Note Hook     (note on a merge request)
  GitLab  Merge Request Hook (open / update / reopen)

Deliveries are validated against the schemas in ``prcli_core.payloads``; a
schema failure surfaces as MalformedPayloadError.
"""

from __future__ import annotations

import logging
import uuid
from typing import Mapping, Optional, TypeVar

import pydantic

from prcli_core.errors import (
    ActionNotAllowedError,
    MalformedPayloadError,
    NotAPullRequestError,
    SkippedEventError,
    UnsupportedEventError,
)
from prcli_core.models import Comment, Event, EventKind, Platform, PRState, PullRequest, Repository
from prcli_core.payloads import (
    GitHubRepository,
    GitLabMergeRequest,
    GitLabProject,
    IssueCommentPayload,
    MergeRequestHookPayload,
    NoteHookPayload,
    Payload,
    PullRequestPayload,
)

logger = logging.getLogger(__name__)

DEFAULT_PR_ACTIONS = ("opened", "synchronize", "reopened", "ready_for_review", "edited")

_GITHUB_PR_KINDS = {
    "opened": EventKind.PR_OPENED,
    "synchronize": EventKind.PR_SYNCHRONIZED,
    "reopened": EventKind.PR_REOPENED,
    "ready_for_review": EventKind.PR_READY_FOR_REVIEW,
    "edited": EventKind.PR_EDITED,
}

# GitLab merge request actions, mapped to their GitHub spelling.
_GITLAB_MR_ACTIONS = {
    "open": "opened",
    "update": "synchronize",
    "reopen": "reopened",
}

_GITLAB_STATES = {
    "opened": PRState.OPEN,
    "merged": PRState.MERGED,
    "closed": PRState.CLOSED,
    "locked": PRState.CLOSED,
}

GITLAB_EVENT_TYPES = ("Note Hook", "Merge Request Hook")


def header(headers: Mapping[str, str], name: str) -> str:
    """Case-insensitive header lookup; missing headers read as ""."""
    lowered = name.lower()
    for key, value in headers.items():
        if key.lower() == lowered:
            return (value or "").strip()
    return ""


def detect_platform(headers: Mapping[str, str]) -> tuple[Optional[Platform], str, str]:
    """Return ``(platform, event_type, delivery_id)`` from request headers.

    ``platform`` is None when no known platform header is present. A missing
    delivery ID is replaced by a generated UUID.
    """
    github_event = header(headers, "X-GitHub-Event")
    gitlab_event = header(headers, "X-Gitlab-Event")
    if github_event or header(headers, "X-Hub-Signature-256"):
        platform, event_type, delivery = Platform.GITHUB, github_event, header(headers, "X-GitHub-Delivery")
    elif header(headers, "X-Gitlab-Token") or gitlab_event in GITLAB_EVENT_TYPES:
        platform, event_type = Platform.GITLAB, gitlab_event
        delivery = header(headers, "X-Gitlab-Event-UUID") or header(headers, "X-Gitlab-Delivery")
    else:
        return None, "", ""

    if not delivery:
        delivery = str(uuid.uuid4())
        logger.info("No delivery ID in webhook headers, generated %s", delivery)
    return platform, event_type, delivery


_PayloadT = TypeVar("_PayloadT", bound=Payload)


def _load(schema: type[_PayloadT], payload: bytes | str, event_type: str) -> _PayloadT:
    try:
        return schema.model_validate_json(payload)
    except pydantic.ValidationError as exc:
        error = exc.errors()[0]
        where = ".".join(str(part) for part in error["loc"]) or "body"
        raise MalformedPayloadError(f"invalid {event_type} payload: {where}: {error['msg']}") from exc


def parse_event(
    platform: Platform,
    event_type: str,
    payload: bytes | str,
    delivery_id: str = "",
    allowed_actions: tuple[str, ...] | list[str] = DEFAULT_PR_ACTIONS,
) -> Event:
    """Translate a webhook payload into an Event. Raises EventError subclasses."""
    if platform == Platform.GITHUB:
        if event_type == "ping":
            raise SkippedEventError("ping")
        if event_type == "issue_comment":
            event = parse_github_comment(_load(IssueCommentPayload, payload, event_type), delivery_id)
        elif event_type == "pull_request":
            data = _load(PullRequestPayload, payload, event_type)
            event = parse_github_pull_request(data, delivery_id, allowed_actions)
        else:
            raise UnsupportedEventError(f"unsupported event type: {event_type or 'unknown'}")
    elif platform == Platform.GITLAB:
        if event_type in ("Note Hook", "note"):
            event = parse_gitlab_note(_load(NoteHookPayload, payload, event_type), delivery_id)
        elif event_type in ("Merge Request Hook", "merge_request"):
            data = _load(MergeRequestHookPayload, payload, event_type)
            event = parse_gitlab_merge_request(data, delivery_id, allowed_actions)
        else:
            raise UnsupportedEventError(f"unsupported event type: {event_type or 'unknown'}")
    else:
        raise UnsupportedEventError(f"unsupported platform: {platform}")

    validate_event(event)
    return event


# ---------------------------------------------------------------------------
# GitHub
# ---------------------------------------------------------------------------


def _github_repository(repo: GitHubRepository) -> Repository:
    return Repository(owner=repo.owner.login, name=repo.name, url=repo.html_url)


def parse_github_comment(data: IssueCommentPayload, delivery_id: str = "") -> Event:
    issue = data.issue
    if issue.pull_request is None:
        raise NotAPullRequestError()
    if data.action != "created":
        raise ActionNotAllowedError(f"ignoring issue_comment action {data.action!r} (only 'created' is processed)")

    if issue.pull_request.merged_at:
        state = PRState.MERGED
    else:
        state = PRState.OPEN if issue.state == "open" else PRState.CLOSED
    comment = data.comment
    return Event(
        platform=Platform.GITHUB,
        kind=EventKind.ISSUE_COMMENT,
        repository=_github_repository(data.repository),
        pull_request=PullRequest(
            number=issue.number,
            state=state,
            author=issue.user.login,
            title=issue.title,
            url=issue.html_url,
        ),
        sender=comment.user.login or data.sender.login,
        raw_id=delivery_id,
        comment=Comment(id=comment.id, author=comment.user.login, body=comment.body),
        action=data.action,
    )


def parse_github_pull_request(
    data: PullRequestPayload, delivery_id: str = "", allowed_actions=DEFAULT_PR_ACTIONS
) -> Event:
    action = data.action
    if action not in allowed_actions or action not in _GITHUB_PR_KINDS:
        raise ActionNotAllowedError(f"pull_request action {action!r} is not in the allowed actions")
    pr = data.pull_request
    if pr.draft and action != "ready_for_review":
        raise SkippedEventError("skipping draft pull request")

    state = PRState.MERGED if pr.merged else PRState.OPEN if pr.state == "open" else PRState.CLOSED
    return Event(
        platform=Platform.GITHUB,
        kind=_GITHUB_PR_KINDS[action],
        repository=_github_repository(data.repository),
        pull_request=PullRequest(
            number=pr.number or data.number,
            state=state,
            author=pr.user.login,
            head_ref=pr.head.ref,
            head_sha=pr.head.sha,
            base_ref=pr.base.ref,
            base_sha=pr.base.sha,
            draft=pr.draft,
            title=pr.title,
            url=pr.html_url,
        ),
        sender=data.sender.login,
        raw_id=delivery_id,
        action=action,
    )


# ---------------------------------------------------------------------------
# GitLab
# ---------------------------------------------------------------------------


def _gitlab_repository(project: GitLabProject) -> Repository:
    if "/" in project.path_with_namespace:
        owner, name = project.path_with_namespace.rsplit("/", 1)
    else:
        owner, name = project.namespace, project.path or project.name
    return Repository(owner=owner, name=name, url=project.web_url)


def _gitlab_pull_request(mr: GitLabMergeRequest) -> PullRequest:
    return PullRequest(
        number=mr.iid,
        state=_GITLAB_STATES.get(mr.state, PRState.CLOSED),
        author=mr.author.username,
        head_ref=mr.source_branch,
        head_sha=mr.last_commit.id,
        base_ref=mr.target_branch,
        draft=mr.draft or mr.work_in_progress,
        title=mr.title,
        url=mr.url or mr.web_url,
        merge_commit_sha=mr.merge_commit_sha,
    )


def parse_gitlab_note(data: NoteHookPayload, delivery_id: str = "") -> Event:
    note = data.object_attributes
    if note.noteable_type != "MergeRequest" or data.merge_request is None:
        raise NotAPullRequestError()
    action = note.action or "create"
    if action != "create":
        raise ActionNotAllowedError(f"ignoring note action {action!r} (only 'create' is processed)")

    sender = data.user.username
    return Event(
        platform=Platform.GITLAB,
        kind=EventKind.ISSUE_COMMENT,
        repository=_gitlab_repository(data.project),
        pull_request=_gitlab_pull_request(data.merge_request),
        sender=sender,
        raw_id=delivery_id,
        comment=Comment(id=note.id, author=sender, body=note.note),
        action=action,
    )


def parse_gitlab_merge_request(
    data: MergeRequestHookPayload, delivery_id: str = "", allowed_actions=DEFAULT_PR_ACTIONS
) -> Event:
    attrs = data.object_attributes
    action = _GITLAB_MR_ACTIONS.get(attrs.action)
    if action is None or action not in allowed_actions:
        raise ActionNotAllowedError(f"merge request action {attrs.action!r} is not in the allowed actions")
    pr = _gitlab_pull_request(attrs)
    if pr.draft:
        raise SkippedEventError("skipping draft merge request")
    return Event(
        platform=Platform.GITLAB,
        kind=_GITHUB_PR_KINDS[action],
        repository=_gitlab_repository(data.project),
        pull_request=pr,
        sender=data.user.username,
        raw_id=delivery_id,
        action=action,
    )


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


def validate_event(event: Event) -> None:
    if not event.repository.owner:
        raise MalformedPayloadError("repository owner is required")
    if not event.repository.name:
        raise MalformedPayloadError("repository name is required")
    if event.pull_request.number <= 0:
        raise MalformedPayloadError(f"invalid pull request number: {event.pull_request.number}")
    if not event.sender:
        raise MalformedPayloadError("sender login is required")
    if event.kind == EventKind.ISSUE_COMMENT and (event.comment is None or not event.comment.body.strip()):
        raise MalformedPayloadError("comment body is empty")


def is_command_event(event: Event) -> bool:
    """True for comment events whose body starts with ``/`` after leading whitespace."""
    if event.comment is None:
        return False
    body = event.comment.body.strip()
    return len(body) > 1 and body.startswith("/")
