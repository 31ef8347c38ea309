"""Merge gate: permission + checks + LGTM + method selection, then merge."""

from __future__ import annotations

import re
from typing import TYPE_CHECKING

from prcli_core import messages
from prcli_core.checks import failing_checks
from prcli_core.errors import CommentedError, MergeNotAllowedError, PlatformError
from prcli_core.models import AUTO_MERGE_PRIORITY, MergeDecision, MergeMethod, PRState
from prcli_core.parser import POST_MERGE_CHERRY_PICK, BuiltInCommand, normalize

if TYPE_CHECKING:
    from prcli_core.lgtm import LGTMEngine, LGTMStatus
    from prcli_core.session import PRSession

CHERRY_PICK_LINE_RE = re.compile(r"^/cherry-?pick\s+(\S+)", re.MULTILINE)

RESULT_MERGE_SUCCESSFUL = "merge-successful"
RESULT_HAS_CHERRY_PICK = "has-cherry-pick-comments"

# MergeDecision.reason values
REASON_NOT_OPEN = "pr-not-open"
REASON_PERMISSION = "insufficient-permission"
REASON_CHECKS = "checks-failing"
REASON_LGTM = "not-enough-lgtm"
REASON_METHOD = "method-unavailable"


def scheduled_cherry_picks(bodies: list[str]) -> list[str]:
    """Target branches requested by ``/cherry-pick <branch>`` lines, de-duplicated in order."""
    branches: list[str] = []
    for body in bodies:
        for branch in CHERRY_PICK_LINE_RE.findall(normalize(body)):
            if branch not in branches:
                branches.append(branch)
    return branches


class MergeGate:
    def __init__(self, session: PRSession, lgtm: LGTMEngine):
        self.session = session
        self.context = session.context
        self.lgtm = lgtm
        self.last_status: LGTMStatus | None = None

    def select_method(self, requested: MergeMethod, available: list[MergeMethod]) -> tuple[MergeMethod | None, str]:
        if requested == MergeMethod.AUTO:
            pr = self.session.pull_request
            for method in AUTO_MERGE_PRIORITY:
                if method not in available:
                    continue
                if method == MergeMethod.REBASE and pr.head_sha and pr.head_sha == pr.base_sha:
                    continue
                return method, ""
            return None, "no merge method is available in this repository"
        if requested not in available:
            return None, f"merge method '{requested.value}' is not allowed in this repository"
        return requested, ""

    def decide(self, requested: MergeMethod, sender: str) -> MergeDecision:
        session = self.session
        pr = session.pull_request
        if not pr.is_open:
            return MergeDecision(False, REASON_NOT_OPEN)

        if not (session.permission(sender) in self.context.lgtm_permissions or session.is_author(sender)):
            return MergeDecision(False, REASON_PERMISSION)

        failing = failing_checks(
            session.client.list_check_runs(), self.context.self_check_name, self.context.treat_skipped_as_passing
        )
        if failing:
            return MergeDecision(False, REASON_CHECKS, failing_checks=failing)

        status = self.lgtm.status(include_checks=False)
        self.last_status = status
        if not status.ready:
            return MergeDecision(False, REASON_LGTM)

        available = session.client.available_merge_methods()
        method, reason = self.select_method(requested, available)
        if method is None:
            return MergeDecision(False, f"{REASON_METHOD}: {reason}")
        return MergeDecision(True, method=method)

    def _refuse(self, decision: MergeDecision, sender: str, available: str = "") -> None:
        session = self.session
        pr = session.pull_request
        status = self.last_status
        if decision.reason == REASON_NOT_OPEN:
            comment = messages.PR_NOT_OPEN.format(command="/merge", state=pr.state.value)
        elif decision.reason == REASON_PERMISSION:
            comment = messages.MERGE_INSUFFICIENT_PERMISSIONS.format(
                login=sender,
                action="merge this PR",
                permission=session.permission(sender),
                required=", ".join(self.context.lgtm_permissions),
                author=pr.author,
            )
        elif decision.reason == REASON_CHECKS:
            comment = messages.MERGE_CHECKS_NOT_PASSING.format(checks=messages.check_table(decision.failing_checks))
        elif decision.reason == REASON_LGTM:
            comment = messages.MERGE_NOT_ENOUGH_LGTM.format(
                count=status.count, threshold=status.threshold, needed=status.needed
            )
        else:
            comment = messages.MERGE_METHOD_UNAVAILABLE.format(
                reason=decision.reason.split(": ", 1)[-1], available=available or "none"
            )
        session.post(comment)
        raise CommentedError(MergeNotAllowedError(f"merge not allowed: {decision.reason}"))

    def merge(self, args: tuple[str, ...], sender: str) -> MergeMethod:
        """Run the gate and merge; post-merge steps follow a successful merge."""
        session = self.session
        requested = self.context.merge_method
        if args:
            try:
                requested = MergeMethod(args[0].lower())
            except ValueError:
                raise MergeNotAllowedError(
                    f"unknown merge method '{args[0]}', expected one of auto, merge, squash, rebase"
                ) from None

        decision = self.decide(requested, sender)
        if not decision.allowed:
            available = ""
            if decision.reason.startswith(REASON_METHOD):
                available = ", ".join(m.value for m in session.client.available_merge_methods())
            self._refuse(decision, sender, available)

        pr = session.pull_request
        try:
            session.client.merge(decision.method)
        except PlatformError as exc:
            session.post(messages.MERGE_FAILED.format(number=pr.number, error=exc))
            raise CommentedError(exc) from exc
        session.mark_state(PRState.MERGED)
        session.log.info("Merged PR #%s with %s", pr.number, decision.method.value)

        self.after_merge()
        status = self.last_status
        approvers = "\n".join(f"- @{login}" for login, _ in status.approvers) or "- none"
        session.post(
            messages.MERGE_SUCCESS.format(
                method=decision.method.value,
                login=sender,
                count=status.count,
                threshold=status.threshold,
                approvers=approvers,
            )
        )
        return decision.method

    def after_merge(self) -> list[str]:
        """Write merge results and schedule post-merge cherry-picks."""
        session = self.session
        session.write_result(RESULT_MERGE_SUCCESSFUL, "true")
        branches = scheduled_cherry_picks([c.body for c in session.comments.get()])
        session.write_result(RESULT_HAS_CHERRY_PICK, "true" if branches else "false")
        if branches:
            session.schedule_builtin(BuiltInCommand(POST_MERGE_CHERRY_PICK))
        return branches
