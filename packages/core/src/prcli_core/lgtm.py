"""LGTM tally, approval and dismissal.

Votes are replayed from two sources:

* Reviews. For each approver the latest review that is not a plain comment
  decides the vote; dismissed reviews cancel it.
* Comments, oldest first. ``/lgtm`` adds the author's vote. ``/remove-lgtm``
  (or ``/lgtm cancel``) takes it away unless the author's latest review is
  still an approval.

The service writes with its own token, so its approvals carry a hidden
marker (``<!-- prcli-lgtm: alice -->``, ``<!-- prcli-lgtm-removed: alice
-->``) naming the user they belong to. Markers count only when a robot
identity wrote them. Robots, the PR author and users without an LGTM
permission never count.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from prcli_core import messages
from prcli_core.checks import failing_checks
from prcli_core.models import CheckRun, Comment, Review, ReviewState
from prcli_core.parser import CommandName, lgtm_vote

if TYPE_CHECKING:
    from prcli_core.session import PRSession

_LOGIN = r"([A-Za-z0-9][A-Za-z0-9_.\-\[\]]*)"
_MARKER_RE = re.compile(rf"<!-- prcli-lgtm(-removed)?: {_LOGIN} -->")

LGTM = CommandName.LGTM.value
REMOVE_LGTM = CommandName.REMOVE_LGTM.value


@dataclass
class LGTMStatus:
    count: int
    threshold: int
    approvers: list[tuple[str, str]] = field(default_factory=list)  # (login, permission)
    failing_checks: list[CheckRun] = field(default_factory=list)
    checks_evaluated: bool = False

    @property
    def needed(self) -> int:
        return max(0, self.threshold - self.count)

    @property
    def ready(self) -> bool:
        return self.count >= self.threshold


@dataclass
class Vote:
    login: str
    approved: bool
    review: Review | None = None  # latest state-changing review


def _order_key(review: Review) -> tuple[float, int]:
    submitted = review.submitted_at.timestamp() if review.submitted_at else 0.0
    return submitted, review.id


def _markers(body: str) -> list[tuple[str, str]]:
    return [(m.group(2), REMOVE_LGTM if m.group(1) else LGTM) for m in _MARKER_RE.finditer(body or "")]


class LGTMEngine:
    def __init__(self, session: PRSession):
        self.session = session
        self.context = session.context

    # ---- tally ---------------------------------------------------------- #

    def approver_of(self, review: Review) -> str:
        """Login a review's vote belongs to."""
        if self.session.is_robot(review.reviewer):
            for login, kind in _markers(review.body):
                if kind == LGTM:
                    return login
        return review.reviewer

    def current_votes(self, reviews: list[Review]) -> dict[str, tuple[str, Review]]:
        """Map lowercased approver -> (login, latest state-changing review)."""
        votes: dict[str, tuple[str, Review]] = {}
        for review in sorted(reviews, key=_order_key):
            if review.state == ReviewState.COMMENTED:
                continue
            login = self.approver_of(review)
            votes[login.lower()] = (login, review)
        return votes

    def comment_votes(self, comment: Comment) -> list[tuple[str, str]]:
        """(login, ``lgtm`` | ``remove-lgtm``) pairs carried by one comment."""
        if self.session.is_robot(comment.author):
            return _markers(comment.body)
        kind = lgtm_vote(comment.body)
        return [(comment.author, kind)] if kind else []

    def tally(self, reviews: list[Review], comments: list[Comment], skip_comment: int | None = None) -> dict[str, Vote]:
        """Replay reviews, then comments, into one vote per lowercased login.

        ``skip_comment`` leaves out the comment that triggered the current
        command, so a user's own ``/lgtm`` does not look like an earlier vote.
        """
        votes = {
            key: Vote(login, review.state == ReviewState.APPROVED, review)
            for key, (login, review) in self.current_votes(reviews).items()
        }
        for comment in comments:
            if skip_comment is not None and comment.id == skip_comment:
                continue
            for login, kind in self.comment_votes(comment):
                vote = votes.setdefault(login.lower(), Vote(login, False))
                if kind == LGTM:
                    vote.approved = True
                elif vote.review is None or vote.review.state != ReviewState.APPROVED:
                    vote.approved = False
        return votes

    def trigger_comment_id(self, comments: list[Comment], sender: str, kind: str) -> int | None:
        """Id of ``sender``'s latest comment when it is the ``kind`` vote being handled."""
        for comment in reversed(comments):
            if comment.author.lower() == sender.lower():
                return comment.id if lgtm_vote(comment.body) == kind else None
        return None

    def approvers(self, votes: dict[str, Vote]) -> list[tuple[str, str]]:
        session = self.session
        result = []
        for key in sorted(votes):
            vote = votes[key]
            if not vote.approved:
                continue
            if session.is_robot(vote.login) or session.is_author(vote.login):
                continue
            permission = session.permission(vote.login)
            if permission not in self.context.lgtm_permissions:
                continue
            result.append((vote.login, permission))
        return result

    def status(self, include_checks: bool = True, removed: str | None = None) -> LGTMStatus:
        """Current tally; ``removed`` drops a vote this job just withdrew."""
        votes = self.tally(self.session.client.list_reviews(), self.session.comments.get())
        if removed:
            votes.pop(removed.lower(), None)
        approvers = self.approvers(votes)
        status = LGTMStatus(count=len(approvers), threshold=self.context.lgtm_threshold, approvers=approvers)
        if include_checks:
            status.failing_checks = failing_checks(
                self.session.client.list_check_runs(),
                self.context.self_check_name,
                self.context.treat_skipped_as_passing,
            )
            status.checks_evaluated = True
        return status

    def _vote_before(self, sender: str, kind: str) -> Vote | None:
        comments = self.session.comments.get()
        votes = self.tally(
            self.session.client.list_reviews(), comments, skip_comment=self.trigger_comment_id(comments, sender, kind)
        )
        return votes.get(sender.lower())

    # ---- operations ----------------------------------------------------- #

    def approve(self, sender: str) -> LGTMStatus | None:
        """Submit an approval for ``sender`` and post the updated status.

        Returns None (after an informational comment) when ``sender``
        already has an active approval.
        """
        session = self.session
        vote = self._vote_before(sender, LGTM)
        if vote is not None and vote.approved:
            session.log.info("%s already approved PR #%s", sender, self.context.pr_number)
            session.post(messages.LGTM_ALREADY_APPROVED.format(login=sender))
            return None

        body = messages.LGTM_APPROVAL.format(
            login=sender,
            permission=session.permission(sender),
            marker=messages.LGTM_MARKER.format(login=sender),
        )
        session.client.submit_review(self.context.lgtm_review_event, body, on_behalf_of=sender)
        session.comments.invalidate()
        session.log.info("Submitted %s review for %s", self.context.lgtm_review_event, sender)

        status = self.status()
        session.post(self.render_status(status, tip=True))
        return status

    def dismiss(self, sender: str) -> LGTMStatus | None:
        """Withdraw ``sender``'s vote; None when there is none."""
        session = self.session
        vote = self._vote_before(sender, REMOVE_LGTM)
        if vote is None or not vote.approved:
            session.post(messages.REMOVE_LGTM_NO_APPROVAL.format(login=sender))
            return None

        if vote.review is not None and vote.review.state == ReviewState.APPROVED:
            session.client.dismiss_review(vote.review.id, messages.REMOVE_LGTM_DISMISS.format(login=sender))
            session.log.info("Dismissed review %s of %s", vote.review.id, sender)
        else:
            session.log.info("Withdrew comment vote of %s", sender)

        status = self.status(include_checks=False, removed=sender)
        session.post(
            messages.REMOVE_LGTM_STATUS.format(
                login=sender,
                count=status.count,
                threshold=status.threshold,
                needed=status.needed,
                marker=messages.LGTM_REMOVED_MARKER.format(login=sender),
            )
        )
        return status

    # ---- rendering ------------------------------------------------------ #

    def render_status(self, status: LGTMStatus, tip: bool = False) -> str:
        users = messages.users_table(status.approvers)
        if status.ready:
            text = messages.LGTM_STATUS_READY.format(count=status.count, threshold=status.threshold, users=users)
        else:
            text = messages.LGTM_STATUS_PENDING.format(
                count=status.count,
                threshold=status.threshold,
                needed=status.needed,
                users=users,
                required=", ".join(self.context.lgtm_permissions),
            )
            if tip:
                text += messages.LGTM_STATUS_TIP

        if status.checks_evaluated:
            if status.failing_checks:
                text += (
                    messages.CHECKS_FAILED_HEADER
                    + messages.check_table(status.failing_checks)
                    + messages.CHECKS_FAILED_FOOTER
                )
            else:
                text += messages.CHECKS_PASSED
        return text
