"""Validator chain run before any handler.

Order is fixed and the first failure wins:

  1. PR state        - the PR must be open (cherry-pick and built-ins excepted)
  2. Sender          - the comment sender really posted the trigger text
  3. Permission      - command-scoped permission and self-approval rules
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from prcli_core import messages
from prcli_core.errors import PermissionDeniedError, PRNotOpenError, SelfApprovalError, SenderMismatchError
from prcli_core.parser import CHERRY_PICK_NAMES, CommandName, apply_aliases, normalize

if TYPE_CHECKING:
    from prcli_core.parser import SingleCommand
    from prcli_core.session import PRSession

_LGTM_COMMANDS = frozenset({CommandName.LGTM.value, CommandName.REMOVE_LGTM.value})
_AUTHOR_OR_PERMITTED = frozenset({CommandName.MERGE.value, CommandName.READY.value}) | CHERRY_PICK_NAMES


def _canonical(body: str) -> str:
    return apply_aliases(normalize(body))


class CommandValidator:
    def __init__(self, session: PRSession, validate_pr_status: bool = True, validate_comment_sender: bool = True):
        self.session = session
        self.context = session.context
        self.validate_pr_status = validate_pr_status
        self.validate_comment_sender = validate_comment_sender and not session.context.debug_mode

    def validate_single(self, command: SingleCommand, check_sender: bool = True) -> None:
        """Run the full chain for one regular command."""
        if self.validate_pr_status:
            self.check_pr_state(command)
        if check_sender and self.validate_comment_sender:
            self.check_sender(self.context.trigger_comment)
        self.check_permission(command)

    # ---- 1. PR state ---------------------------------------------------- #

    def check_pr_state(self, command: SingleCommand) -> None:
        if command.name in CHERRY_PICK_NAMES:
            return
        pr = self.session.pull_request
        if not pr.is_open:
            raise PRNotOpenError(
                f"PR #{pr.number} is {pr.state.value}, not open",
                comment=messages.PR_NOT_OPEN.format(command=command.display, state=pr.state.value),
            )

    # ---- 2. Sender authenticity ----------------------------------------- #

    def _sender_bodies(self) -> list[str]:
        sender = self.context.comment_sender.lower()
        bodies = [_canonical(c.body) for c in self.session.comments.get() if c.author.lower() == sender]
        if not bodies:
            raise SenderMismatchError(f"comment sender '{self.context.comment_sender}' did not post any comment")
        return bodies

    def check_sender(self, trigger: str) -> None:
        """The sender must have a comment equal to or containing ``trigger``."""
        expected = _canonical(trigger)
        for body in self._sender_bodies():
            if body == expected or expected in body:
                return
        raise SenderMismatchError(
            f"comment sender '{self.context.comment_sender}' did not post a comment containing '{expected}'"
        )

    def check_multi_sender(self, raw_lines: tuple[str, ...] | list[str]) -> None:
        """Every line of a multi-line command must appear in one of the sender's comments."""
        if not self.validate_comment_sender:
            return
        bodies = self._sender_bodies()
        missing = [line for line in raw_lines if not any(_canonical(line) in body for body in bodies)]
        if missing:
            raise SenderMismatchError(
                f"comment sender '{self.context.comment_sender}' did not post comments containing "
                f"the following commands: {', '.join(missing)}"
            )

    # ---- 3. Permission -------------------------------------------------- #

    def check_permission(self, command: SingleCommand) -> None:
        session = self.session
        sender = self.context.comment_sender

        if command.name in _LGTM_COMMANDS:
            if command.name == CommandName.LGTM.value and session.is_author(sender) and not self.context.debug_mode:
                raise SelfApprovalError(
                    "as the PR author, you cannot approve your own PR",
                    comment=messages.LGTM_SELF_APPROVAL.format(login=sender),
                )
            permission = session.permission(sender)
            if permission not in self.context.lgtm_permissions:
                template = (
                    messages.LGTM_PERMISSION_DENIED
                    if command.name == CommandName.LGTM.value
                    else messages.REMOVE_LGTM_PERMISSION_DENIED
                )
                raise PermissionDeniedError(
                    f"user {sender} has permission '{permission}', requires one of {list(self.context.lgtm_permissions)}",
                    comment=template.format(
                        login=sender, permission=permission, required=", ".join(self.context.lgtm_permissions)
                    ),
                )
            return

        if command.name in _AUTHOR_OR_PERMITTED:
            self.check_author_or_permitted(command)

    def check_author_or_permitted(self, command: SingleCommand) -> None:
        session = self.session
        sender = self.context.comment_sender
        permission = session.permission(sender)
        if permission in self.context.lgtm_permissions or session.is_author(sender):
            return
        action = "create a cherry-pick PR" if command.name in CHERRY_PICK_NAMES else "merge this PR"
        required = ", ".join(self.context.lgtm_permissions)
        raise PermissionDeniedError(
            f"user {sender} has permission '{permission}' and is not the PR author",
            comment=messages.MERGE_INSUFFICIENT_PERMISSIONS.format(
                login=sender,
                action=action,
                permission=permission,
                required=required,
                author=session.pull_request.author,
            ),
        )
