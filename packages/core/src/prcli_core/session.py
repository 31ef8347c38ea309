"""Per-job state shared by validators and handlers.

A PRSession lives exactly as long as one job. It caches the pull request,
the comment list and looked-up permissions so every handler in the job sees
the same data, and it is the only place that knows which identities count
as robots.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from prcli_core.errors import PlatformError
from prcli_core.models import PRState
from prcli_core.parser import BuiltInCommand

if TYPE_CHECKING:
    from prcli_core.config import CommandContext
    from prcli_core.models import Comment, PullRequest
    from prcli_core.platforms.base import BaseClient
    from prcli_results.base import BaseResultSink

logger = logging.getLogger(__name__)

ROBOT_PERMISSION = "robot"


class JobLogger(logging.LoggerAdapter):
    """Prefixes every record with the event correlation ID."""

    def process(self, msg, kwargs):
        event_id = self.extra.get("event_id")
        if event_id:
            return f"[event={event_id}] {msg}", kwargs
        return msg, kwargs


class CommentCache:
    """Comments of one PR, fetched once and re-fetched only after invalidate()."""

    def __init__(self, client: BaseClient):
        self._client = client
        self._comments: list[Comment] | None = None

    def get(self) -> list[Comment]:
        if self._comments is None:
            self._comments = self._client.list_comments()
        return self._comments

    def invalidate(self) -> None:
        self._comments = None


class PRSession:
    def __init__(self, client: BaseClient, context: CommandContext, sink: BaseResultSink | None = None):
        if sink is None:
            from prcli_results.noop import NoOpSink

            sink = NoOpSink()
        self.client = client
        self.context = context
        self.sink = sink
        self.comments = CommentCache(client)
        self.log = JobLogger(logger, {"event_id": context.event_id})
        self._pull_request: PullRequest | None = None
        self._permissions: dict[str, str] = {}
        self._service_login: str | None = None
        self.pending_builtins: list[BuiltInCommand] = []

    # ---- pull request -------------------------------------------------- #

    @property
    def pull_request(self) -> PullRequest:
        if self._pull_request is None:
            self._pull_request = self.client.get_pull_request()
        return self._pull_request

    def mark_state(self, state: PRState) -> None:
        """Record a state change this job produced (open -> merged | closed)."""
        pr = self.pull_request
        if pr.state != PRState.OPEN and pr.state != state:
            raise ValueError(f"PR #{pr.number} cannot move from {pr.state.value} to {state.value}")
        pr.state = state

    def refresh(self) -> None:
        """Drop cached PR data so the next access re-reads it from the platform."""
        self._pull_request = None
        self.comments.invalidate()

    def is_author(self, login: str) -> bool:
        return login.lower() == self.pull_request.author.lower()

    # ---- identities ---------------------------------------------------- #

    @property
    def service_login(self) -> str:
        """Lowercased login behind the token, or "" when it cannot be resolved."""
        if self._service_login is None:
            try:
                self._service_login = (self.client.current_user() or "").lower()
            except PlatformError as exc:
                self.log.warning("Could not resolve the token's login: %s", exc)
                self._service_login = ""
        return self._service_login

    def is_robot(self, login: str) -> bool:
        login = login.lower()
        if login in self.context.robot_accounts or login.endswith("[bot]"):
            return True
        return bool(login) and login == self.service_login

    def permission(self, login: str) -> str:
        key = login.lower()
        if key not in self._permissions:
            if self.is_robot(login):
                self._permissions[key] = ROBOT_PERMISSION
            else:
                self._permissions[key] = self.client.get_user_permission(login)
        return self._permissions[key]

    def has_lgtm_permission(self, login: str) -> bool:
        return self.permission(login) in self.context.lgtm_permissions

    # ---- side effects -------------------------------------------------- #

    def post(self, body: str) -> None:
        self.client.post_comment(body)
        self.comments.invalidate()

    def write_result(self, key: str, value: str) -> None:
        self.sink.write(key, value)

    def schedule_builtin(self, command: BuiltInCommand) -> None:
        """Queue an internal command to run after the current one finishes."""
        if command not in self.pending_builtins:
            self.log.info("Scheduling internal command %s", command.display)
            self.pending_builtins.append(command)
