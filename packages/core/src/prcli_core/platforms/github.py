from __future__ import annotations

import logging
from contextlib import contextmanager

import requests
from github import Auth, Github, GithubException, InputGitTreeElement

from prcli_core.errors import PlatformError
from prcli_core.models import CheckRun, Comment, Commit, MergeMethod, PRState, PullRequest, Review, ReviewState
from prcli_core.platforms.base import BaseClient

logger = logging.getLogger(__name__)

_REVIEW_STATES = {
    "APPROVED": ReviewState.APPROVED,
    "CHANGES_REQUESTED": ReviewState.CHANGES_REQUESTED,
    "DISMISSED": ReviewState.DISMISSED,
    "COMMENTED": ReviewState.COMMENTED,
}

_TRANSIENT_STATUSES = {429, 500, 502, 503, 504}


def _github(token: str, base_url: str | None, timeout: float) -> Github:
    kwargs = {"auth": Auth.Token(token), "timeout": int(timeout)}
    if base_url:
        kwargs["base_url"] = base_url
    return Github(**kwargs)


@contextmanager
def _translate(action: str):
    """Re-raise PyGithub and transport failures as PlatformError."""
    try:
        yield
    except GithubException as exc:
        message = exc.data.get("message", "") if isinstance(exc.data, dict) else str(exc.data)
        transient = exc.status in _TRANSIENT_STATUSES or (exc.status == 403 and "rate limit" in message.lower())
        raise PlatformError(f"{action} failed: {exc.status} {message}".strip(), transient=transient, status=exc.status) from exc
    except requests.RequestException as exc:
        raise PlatformError(f"{action} failed: {exc}", transient=True) from exc


def to_pull_request(pr) -> PullRequest:
    """Map a PyGithub PullRequest to the platform-neutral model."""
    if pr.merged:
        state = PRState.MERGED
    elif pr.state == "closed":
        state = PRState.CLOSED
    else:
        state = PRState.OPEN
    return PullRequest(
        number=pr.number,
        state=state,
        author=pr.user.login,
        head_ref=pr.head.ref,
        head_sha=pr.head.sha,
        base_ref=pr.base.ref,
        base_sha=pr.base.sha,
        draft=bool(pr.draft),
        title=pr.title or "",
        url=pr.html_url or "",
        merge_commit_sha=pr.merge_commit_sha if pr.merged else None,
    )


class GitHubClient(BaseClient):
    """BaseClient on top of PyGithub.

    ``comment_token`` optionally posts comments under a second identity so the
    bot's own comments can come from a different account than its reviews.
    """

    def __init__(
        self,
        owner: str,
        repo: str,
        pr_number: int,
        token: str,
        comment_token: str | None = None,
        base_url: str | None = None,
        timeout: float = 30,
    ):
        super().__init__(owner, repo, pr_number)
        self._gh = _github(token, base_url, timeout)
        self._comment_gh = _github(comment_token, base_url, timeout) if comment_token else None
        self._repo = None
        self._pull = None
        self._login: str | None = None

    @property
    def repository(self):
        if self._repo is None:
            with _translate(f"get repository {self.full_name}"):
                self._repo = self._gh.get_repo(self.full_name)
        return self._repo

    @property
    def pull(self):
        if self._pull is None:
            with _translate(f"get PR #{self.pr_number}"):
                self._pull = self.repository.get_pull(self.pr_number)
        return self._pull

    # ---- pull request -------------------------------------------------- #

    def get_pull_request(self) -> PullRequest:
        self._pull = None
        return to_pull_request(self.pull)

    def merge(self, method: MergeMethod) -> None:
        with _translate(f"merge PR #{self.pr_number}"):
            status = self.pull.merge(merge_method=method.value)
        if not status.merged:
            raise PlatformError(f"merge PR #{self.pr_number} failed: {status.message}")

    def close(self) -> None:
        with _translate(f"close PR #{self.pr_number}"):
            self.pull.edit(state="closed")

    def rebase(self) -> None:
        with _translate(f"update branch of PR #{self.pr_number}"):
            updated = self.pull.update_branch()
        if not updated:
            raise PlatformError(f"update branch of PR #{self.pr_number} was not accepted")

    def available_merge_methods(self) -> list[MergeMethod]:
        repo = self.repository
        methods = []
        if repo.allow_rebase_merge:
            methods.append(MergeMethod.REBASE)
        if repo.allow_squash_merge:
            methods.append(MergeMethod.SQUASH)
        if repo.allow_merge_commit:
            methods.append(MergeMethod.MERGE)
        return methods

    def create_pull_request(self, title: str, body: str, head: str, base: str) -> PullRequest:
        with _translate(f"create PR {head} -> {base}"):
            created = self.repository.create_pull(title=title, body=body, head=head, base=base)
        return to_pull_request(created)

    # ---- conversation -------------------------------------------------- #

    def list_comments(self) -> list[Comment]:
        with _translate(f"list comments of PR #{self.pr_number}"):
            return [
                Comment(id=c.id, author=c.user.login, body=c.body or "", created_at=c.created_at)
                for c in self.pull.get_issue_comments()
            ]

    def post_comment(self, body: str) -> None:
        with _translate(f"comment on PR #{self.pr_number}"):
            if self._comment_gh is not None:
                self._comment_gh.get_repo(self.full_name).get_issue(self.pr_number).create_comment(body)
            else:
                self.pull.create_issue_comment(body)

    # ---- reviews and permissions --------------------------------------- #

    def current_user(self) -> str:
        if self._login is None:
            with _translate("get authenticated user"):
                self._login = self._gh.get_user().login
        return self._login

    def list_reviews(self) -> list[Review]:
        reviews = []
        with _translate(f"list reviews of PR #{self.pr_number}"):
            for r in self.pull.get_reviews():
                state = _REVIEW_STATES.get((r.state or "").upper())
                if state is None:  # PENDING reviews are invisible to everyone else
                    continue
                reviews.append(
                    Review(id=r.id, reviewer=r.user.login, state=state, submitted_at=r.submitted_at, body=r.body or "")
                )
        return reviews

    def submit_review(self, event: str, body: str, on_behalf_of: str) -> None:
        with _translate(f"submit {event} review on PR #{self.pr_number}"):
            self.pull.create_review(body=body, event=event)

    def dismiss_review(self, review_id: int, message: str) -> None:
        with _translate(f"dismiss review {review_id}"):
            self.pull.get_review(review_id).dismiss(message)

    def get_user_permission(self, login: str) -> str:
        try:
            return self.repository.get_collaborator_permission(login)
        except GithubException as exc:
            if exc.status == 404:
                return "none"
            with _translate(f"get permission of {login}"):
                raise

    def list_requested_reviewers(self) -> list[str]:
        with _translate(f"list requested reviewers of PR #{self.pr_number}"):
            users, _teams = self.pull.get_review_requests()
            return [u.login for u in users]

    def request_reviewers(self, logins: list[str]) -> None:
        with _translate(f"request reviewers on PR #{self.pr_number}"):
            self.pull.create_review_request(reviewers=logins)

    def remove_reviewers(self, logins: list[str]) -> None:
        with _translate(f"remove reviewers on PR #{self.pr_number}"):
            self.pull.delete_review_request(reviewers=logins)

    # ---- labels ---------------------------------------------------------- #

    def list_labels(self) -> list[str]:
        with _translate(f"list labels of PR #{self.pr_number}"):
            return [label.name for label in self.pull.get_labels()]

    def add_labels(self, labels: list[str]) -> None:
        with _translate(f"add labels to PR #{self.pr_number}"):
            self.pull.add_to_labels(*labels)

    def remove_labels(self, labels: list[str]) -> None:
        for label in labels:
            try:
                self.pull.remove_from_labels(label)
            except GithubException as exc:
                if exc.status == 404:
                    logger.debug("Label %s not present on PR #%s", label, self.pr_number)
                    continue
                with _translate(f"remove label {label}"):
                    raise

    # ---- checks ---------------------------------------------------------- #

    def list_check_runs(self) -> list[CheckRun]:
        head_sha = self.pull.head.sha
        with _translate(f"list check runs of {head_sha[:7]}"):
            return [
                CheckRun(
                    id=cr.id,
                    name=cr.name,
                    status=cr.status,
                    conclusion=cr.conclusion,
                    url=cr.html_url or "",
                    app_slug=cr.app.slug if cr.app else "",
                    check_suite_id=cr.check_suite_id,
                )
                for cr in self.repository.get_commit(head_sha).get_check_runs()
            ]

    def rerun_failed_checks(self, checks: list[CheckRun]) -> list[str]:
        """Re-run failed jobs of the GitHub Actions workflow runs behind ``checks``."""
        suite_ids = {c.check_suite_id for c in checks if c.check_suite_id}
        if not suite_ids:
            return []
        rerun = []
        with _translate("list workflow runs"):
            runs = [r for r in self.repository.get_workflow_runs(head_sha=self.pull.head.sha) if r.check_suite_id in suite_ids]
        for run in runs:
            try:
                run.rerun_failed_jobs()
                rerun.append(run.name)
            except GithubException as exc:
                logger.warning("Could not re-run workflow run %s (%s): %s", run.id, run.name, exc.status)
        return rerun

    # ---- branches and commits ------------------------------------------ #

    def list_commits(self) -> list[Commit]:
        with _translate(f"list commits of PR #{self.pr_number}"):
            return [
                Commit(sha=c.sha, message=c.commit.message, parents=[p.sha for p in c.parents])
                for c in self.pull.get_commits()
            ]

    def branch_exists(self, name: str) -> bool:
        try:
            self.repository.get_branch(name)
            return True
        except GithubException as exc:
            if exc.status == 404:
                return False
            with _translate(f"get branch {name}"):
                raise

    def create_branch(self, name: str, from_branch: str) -> None:
        with _translate(f"create branch {name} from {from_branch}"):
            base = self.repository.get_branch(from_branch)
            self.repository.create_git_ref(ref=f"refs/heads/{name}", sha=base.commit.sha)

    def cherry_pick_apply(self, commit_sha: str, branch: str) -> str:
        """Apply one commit onto ``branch`` through the Git Data API.

        The commit's diff against its first parent is replayed on top of the
        branch tree: changed and added blobs are written, removed paths are
        deleted. No three-way merge happens, so a file changed on both sides
        takes the commit's version.
        """
        repo = self.repository
        with _translate(f"cherry-pick {commit_sha[:7]} onto {branch}"):
            source = repo.get_git_commit(commit_sha)
            if not source.parents:
                raise PlatformError(f"commit {commit_sha[:7]} has no parent to diff against")
            parent_sha = source.parents[0].sha
            modes = {entry.path: entry.mode for entry in repo.get_git_tree(commit_sha, recursive=True).tree}

            elements = []
            for f in repo.compare(parent_sha, commit_sha).files:
                if f.status == "renamed" and f.previous_filename:
                    elements.append(InputGitTreeElement(f.previous_filename, "100644", "blob", sha=None))
                if f.status == "removed":
                    elements.append(InputGitTreeElement(f.filename, "100644", "blob", sha=None))
                else:
                    elements.append(InputGitTreeElement(f.filename, modes.get(f.filename, "100644"), "blob", sha=f.sha))

            ref = repo.get_git_ref(f"heads/{branch}")
            target = repo.get_git_commit(ref.object.sha)
            tree = repo.create_git_tree(elements, target.tree)
            message = f"{source.message}\n\n(cherry picked from commit {commit_sha})"
            new_commit = repo.create_git_commit(message, tree, [target])
            ref.edit(new_commit.sha)
        logger.info("Cherry-picked %s onto %s as %s", commit_sha[:7], branch, new_commit.sha[:7])
        return new_commit.sha

    # ---- workflows ------------------------------------------------------- #

    def trigger_workflow(self, workflow: str, ref: str, inputs: dict[str, str]) -> None:
        with _translate(f"dispatch workflow {workflow} on {ref}"):
            dispatched = self.repository.get_workflow(workflow).create_dispatch(ref, inputs)
        if not dispatched:
            raise PlatformError(f"workflow {workflow} did not accept the dispatch on {ref}")
        logger.info("Dispatched workflow %s on %s for PR #%s", workflow, ref, self.pr_number)
