"""Per-command handlers bound to one PR session."""

from __future__ import annotations

from typing import TYPE_CHECKING, Callable

from prcli_core import messages
from prcli_core.cherrypick import CherryPickScheduler
from prcli_core.errors import CommentedError, PlatformError, PRCliError, UnknownCommandError
from prcli_core.lgtm import LGTMEngine
from prcli_core.merge import MergeGate
from prcli_core.models import PRState
from prcli_core.parser import POST_MERGE_CHERRY_PICK, CommandName
from prcli_core.retest import retest

if TYPE_CHECKING:
    from prcli_core.parser import BuiltInCommand, SingleCommand
    from prcli_core.session import PRSession


def _git_cli_applier(session: PRSession) -> Callable[[str, str], str]:
    def apply(commit_sha: str, branch: str) -> str:
        from prcli_core.platforms.git_cli import GitCLICherryPicker, repository_clone_url

        picker = GitCLICherryPicker(repository_clone_url(session.pull_request.url), session.context.token)
        return picker.apply(commit_sha, branch)

    return apply


def _logins(args: tuple[str, ...]) -> list[str]:
    return [a.lstrip("@") for a in args if a.lstrip("@")]


class PRHandler:
    def __init__(self, session: PRSession):
        self.session = session
        self.context = session.context
        self.client = session.client
        self.lgtm = LGTMEngine(session)
        self.gate = MergeGate(session, self.lgtm)
        applier = _git_cli_applier(session) if self.context.use_git_cli_for_cherry_pick else None
        self.cherry_picker = CherryPickScheduler(session, applier=applier)

        self._handlers: dict[str, Callable[[tuple[str, ...]], object]] = {
            CommandName.HELP.value: self.handle_help,
            CommandName.ASSIGN.value: self.handle_assign,
            CommandName.UNASSIGN.value: self.handle_unassign,
            CommandName.LGTM.value: self.handle_lgtm,
            CommandName.REMOVE_LGTM.value: self.handle_remove_lgtm,
            CommandName.MERGE.value: self.handle_merge,
            CommandName.READY.value: self.handle_merge,
            CommandName.REBASE.value: self.handle_rebase,
            CommandName.CHERRY_PICK.value: self.handle_cherry_pick,
            CommandName.CHERRYPICK.value: self.handle_cherry_pick,
            CommandName.LABEL.value: self.handle_label,
            CommandName.UNLABEL.value: self.handle_unlabel,
            CommandName.RETEST.value: self.handle_retest,
            CommandName.CLOSE.value: self.handle_close,
            CommandName.CHECK.value: self.handle_check,
        }
        self._builtins: dict[str, Callable[[tuple[str, ...]], object]] = {
            POST_MERGE_CHERRY_PICK: self.handle_post_merge_cherry_pick,
        }

    @property
    def sender(self) -> str:
        return self.context.comment_sender

    def handle(self, command: SingleCommand) -> object:
        handler = self._handlers.get(command.name)
        if handler is None:
            raise UnknownCommandError(command.name)
        self.session.log.info("Executing %s for %s", command.display, self.sender)
        return handler(command.args)

    def handle_builtin(self, command: BuiltInCommand) -> object:
        handler = self._builtins.get(command.name)
        if handler is None:
            raise PRCliError(f"unknown built-in command: {command.name}")
        self.session.log.info("Executing built-in %s", command.display)
        return handler(command.args)

    # ---- commands ------------------------------------------------------- #

    def handle_help(self, args):
        self.session.post(
            messages.help_message(
                self.context.lgtm_threshold, self.context.lgtm_permissions, self.context.merge_method.value
            )
        )

    def handle_assign(self, args):
        users = _logins(args)
        if not users:
            raise PRCliError("no users specified, usage: /assign @user1 @user2")
        self.client.request_reviewers(users)
        self.session.post(messages.ASSIGNMENT_GREETING.format(mentions=messages.mentions(users), login=self.sender))
        return users

    def handle_unassign(self, args):
        users = _logins(args)
        if not users:
            raise PRCliError("no users specified, usage: /unassign @user1 @user2")
        self.client.remove_reviewers(users)
        self.session.post(messages.UNASSIGNMENT.format(mentions=messages.mentions(users)))
        return users

    def handle_lgtm(self, args):
        return self.lgtm.approve(self.sender)

    def handle_remove_lgtm(self, args):
        return self.lgtm.dismiss(self.sender)

    def handle_merge(self, args):
        return self.gate.merge(args, self.sender)

    def handle_rebase(self, args):
        try:
            self.client.rebase()
        except PlatformError as exc:
            self.session.post(messages.REBASE_FAILED.format(error=exc))
            raise CommentedError(exc) from exc
        self.session.post(messages.REBASE_SUCCESS)

    def handle_cherry_pick(self, args):
        return self.cherry_picker.request(args, self.sender)

    def handle_label(self, args):
        labels = list(args)
        if not labels:
            raise PRCliError("no labels specified, usage: /label name1 name2")
        self.client.add_labels(labels)
        self.session.post(messages.LABELS_ADDED.format(labels=", ".join(labels), login=self.sender))
        return labels

    def handle_unlabel(self, args):
        labels = list(args)
        if not labels:
            raise PRCliError("no labels specified, usage: /unlabel name1 name2")
        self.client.remove_labels(labels)
        self.session.post(messages.LABELS_REMOVED.format(labels=", ".join(labels), login=self.sender))
        return labels

    def handle_retest(self, args):
        return retest(self.session, args)

    def handle_close(self, args):
        pr = self.session.pull_request
        if not pr.is_open:
            self.session.post(messages.CLOSE_ALREADY_CLOSED.format(number=pr.number))
            return
        self.client.close()
        self.session.mark_state(PRState.CLOSED)
        self.session.post(messages.CLOSE_SUCCESS.format(number=pr.number, login=self.sender))

    def handle_check(self, args):
        """``/check`` without sub-commands: post the LGTM and check-run status."""
        status = self.lgtm.status()
        self.session.post(self.lgtm.render_status(status, tip=True))
        return status

    # ---- built-ins ------------------------------------------------------ #

    def handle_post_merge_cherry_pick(self, args):
        return self.cherry_picker.post_merge()
