"""Cherry-pick scheduler.

``/cherry-pick <branch>`` depends on the PR state:

  merged  -> apply the merge commit onto a new branch off <branch>, open a PR
  closed  -> same, from the last commit of the PR
  open    -> only acknowledge; the merge gate schedules the real work
             through the ``/__post-merge-cherry-pick`` built-in

Each request runs through a one-shot state machine
(received -> validating -> applying -> publishing -> done, or -> reported).
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from prcli_core import messages
from prcli_core.errors import CherryPickError, CommentedError, PRCliError
from prcli_core.merge import RESULT_HAS_CHERRY_PICK, scheduled_cherry_picks
from prcli_core.models import CherryPickMode, CherryPickState, CherryPickTask, PRState

if TYPE_CHECKING:
    from prcli_core.session import PRSession


def cherry_pick_branch_name(pr_number: int, target: str, sha: str) -> str:
    safe_target = target.replace("/", "-").replace(".", "-")
    return f"cherry-pick-{pr_number}-to-{safe_target}-{sha[:7]}"


class CherryPickScheduler:
    def __init__(self, session: PRSession, applier=None):
        """``applier`` overrides ``client.cherry_pick_apply`` (e.g. the git CLI picker)."""
        self.session = session
        self.context = session.context
        self._apply = applier or session.client.cherry_pick_apply

    def request(self, args: tuple[str, ...], sender: str) -> CherryPickTask | None:
        """Handle a ``/cherry-pick`` command according to the PR state."""
        session = self.session
        if not args:
            session.post(messages.CHERRY_PICK_INVALID_COMMAND)
            raise CommentedError(CherryPickError("missing target branch"))

        target = args[0]
        pr = session.pull_request
        if pr.state == PRState.OPEN:
            session.post(messages.CHERRY_PICK_SCHEDULED.format(branch=target))
            session.log.info("Cherry-pick of PR #%s to %s scheduled for merge", pr.number, target)
            return CherryPickTask(pr.number, target, CherryPickMode.SCHEDULED, requested_by=sender)
        if pr.state == PRState.MERGED:
            task = CherryPickTask(pr.number, target, CherryPickMode.IMMEDIATE, requested_by=sender)
        elif pr.state == PRState.CLOSED:
            task = CherryPickTask(pr.number, target, CherryPickMode.FROM_LAST_COMMIT, requested_by=sender)
        else:
            session.post(messages.CHERRY_PICK_UNKNOWN_STATE.format(number=pr.number, state=pr.state))
            raise CommentedError(CherryPickError(f"unknown PR state {pr.state}"))

        self.perform(task)
        if task.state != CherryPickState.DONE:
            raise CommentedError(CherryPickError(task.error))
        return task

    def _source_commit(self, task: CherryPickTask) -> str:
        pr = self.session.pull_request
        if task.mode == CherryPickMode.IMMEDIATE and pr.merge_commit_sha:
            return pr.merge_commit_sha
        commits = self.session.client.list_commits()
        if not commits:
            raise CherryPickError(f"PR #{pr.number} has no commits")
        return commits[-1].sha

    def perform(self, task: CherryPickTask) -> CherryPickTask:
        """Run the state machine for one task; failures are commented, not raised."""
        session = self.session
        client = session.client
        pr = session.pull_request
        try:
            task.advance(CherryPickState.VALIDATING)
            if not client.branch_exists(task.target_branch):
                raise CherryPickError(f"target branch '{task.target_branch}' does not exist")
            task.commit_sha = self._source_commit(task)
            task.branch_name = cherry_pick_branch_name(pr.number, task.target_branch, task.commit_sha)

            task.advance(CherryPickState.APPLYING)
            client.create_branch(task.branch_name, task.target_branch)
            new_sha = self._apply(task.commit_sha, task.branch_name)

            task.advance(CherryPickState.PUBLISHING)
            task.created_pr = client.create_pull_request(
                title=messages.CHERRY_PICK_PR_TITLE.format(title=pr.title, branch=task.target_branch),
                body=messages.CHERRY_PICK_PR_BODY.format(
                    number=pr.number, branch=task.target_branch, login=task.requested_by
                ),
                head=task.branch_name,
                base=task.target_branch,
            )
        except PRCliError as exc:
            task.error = str(exc)
            task.advance(CherryPickState.REPORTED)
            session.log.warning("Cherry-pick of PR #%s to %s failed: %s", pr.number, task.target_branch, exc)
            session.post(
                messages.CHERRY_PICK_ERROR.format(
                    number=pr.number, branch=task.target_branch, login=task.requested_by, error=exc
                )
            )
            return task

        task.advance(CherryPickState.DONE)
        session.write_result(RESULT_HAS_CHERRY_PICK, "true")
        session.post(
            messages.CHERRY_PICK_SUCCESS.format(
                number=pr.number,
                branch=task.target_branch,
                new_number=task.created_pr.number,
                login=task.requested_by,
                sha=new_sha or task.commit_sha,
            )
        )
        session.log.info("Cherry-picked PR #%s to %s as #%s", pr.number, task.target_branch, task.created_pr.number)
        return task

    def _may_request(self, login: str) -> bool:
        return self.session.has_lgtm_permission(login) or self.session.is_author(login)

    def post_merge(self) -> list[CherryPickTask]:
        """Perform every cherry-pick requested in the PR's comments."""
        session = self.session
        pr = session.pull_request
        if pr.state == PRState.OPEN:
            session.log.info("PR #%s is still open; skipping post-merge cherry-picks", pr.number)
            return []

        requests: list[tuple[str, str]] = []
        for comment in session.comments.get():
            branches = scheduled_cherry_picks([comment.body])
            if branches and not self._may_request(comment.author):
                session.log.warning("Ignoring cherry-pick request by %s: insufficient permission", comment.author)
                continue
            for branch in branches:
                if branch not in [b for b, _ in requests]:
                    requests.append((branch, comment.author))

        mode = CherryPickMode.IMMEDIATE if pr.state == PRState.MERGED else CherryPickMode.FROM_LAST_COMMIT
        tasks = []
        for branch, requested_by in requests:
            tasks.append(self.perform(CherryPickTask(pr.number, branch, mode, requested_by=requested_by)))
        failed = [t for t in tasks if t.state != CherryPickState.DONE]
        if failed:
            session.log.warning("%d of %d post-merge cherry-picks failed", len(failed), len(tasks))
        return tasks
