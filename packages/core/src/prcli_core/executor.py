"""Command executor: validate, dispatch, report.

One executor runs one parsed command against one PR session. Errors are
turned into PR comments here, once; handlers that already posted their own
message raise ``CommentedError`` so nothing is posted twice.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Callable, Optional

from prcli_core import messages
from prcli_core.errors import CommentedError, CommentPostError, PlatformError, PRCliError, is_commented
from prcli_core.handlers import PRHandler
from prcli_core.parser import (
    BuiltInCommand,
    CommandName,
    InvalidCommand,
    MultiCommand,
    SingleCommand,
    parse_sub_commands,
)
from prcli_core.validator import CommandValidator

if TYPE_CHECKING:
    from prcli_core.parser import ParsedCommand, SubCommand
    from prcli_core.session import PRSession

# Sub-commands that only make sense on their own comment.
_NOT_IN_BATCH = frozenset({CommandName.LGTM.value, CommandName.REMOVE_LGTM.value})


class CommandFailedError(PRCliError):
    """Raised by ``execute`` when a command failed and errors are returned to the caller."""


@dataclass
class ExecutionConfig:
    validate_comment_sender: bool = True
    validate_pr_status: bool = True
    debug_mode: bool = False
    post_errors_as_comments: bool = True
    return_errors: bool = False
    stop_on_first_error: bool = False

    @classmethod
    def cli(cls, debug_mode: bool = False) -> ExecutionConfig:
        return cls(
            validate_comment_sender=False,
            validate_pr_status=True,
            debug_mode=debug_mode,
            post_errors_as_comments=True,
            return_errors=True,
            stop_on_first_error=False,
        )

    @classmethod
    def webhook(cls) -> ExecutionConfig:
        return cls(
            validate_comment_sender=True,
            validate_pr_status=True,
            debug_mode=False,
            post_errors_as_comments=True,
            return_errors=False,
            stop_on_first_error=False,
        )


@dataclass
class SubCommandResult:
    command: str
    success: bool
    error: str = ""

    def row(self) -> str:
        if self.success:
            return messages.ROW_SUCCESS.format(display=self.command)
        return messages.ROW_FAILURE.format(display=self.command, error=self.error)


@dataclass
class ExecutionResult:
    command: str
    success: bool
    error: Optional[PRCliError] = None
    results: list[SubCommandResult] = field(default_factory=list)
    duration: float = 0.0


class CommandExecutor:
    """Runs parsed commands for one session.

    ``dispatch_builtin`` receives internal commands scheduled during the run
    (the webhook server enqueues them as new jobs). Without it they run
    inline once the triggering command has finished.
    """

    def __init__(
        self,
        session: PRSession,
        config: ExecutionConfig | None = None,
        metrics=None,
        dispatch_builtin: Callable[[BuiltInCommand], None] | None = None,
    ):
        self.session = session
        self.config = config or ExecutionConfig.webhook()
        self.metrics = metrics
        self.dispatch_builtin = dispatch_builtin
        self.handler = PRHandler(session)
        self.validator = CommandValidator(
            session,
            validate_pr_status=self.config.validate_pr_status,
            validate_comment_sender=self.config.validate_comment_sender and not self.config.debug_mode,
        )

    # ---- entry point ---------------------------------------------------- #

    def execute(self, command: ParsedCommand, trusted: bool = False) -> ExecutionResult:
        """Execute ``command``; built-ins are only accepted when ``trusted``.

        Raises CommandFailedError on failure when the config returns errors.
        """
        if isinstance(command, MultiCommand):
            result = self.execute_multi(command)
        elif isinstance(command, BuiltInCommand):
            if trusted:
                result = self.execute_builtin(command)
            else:
                self.session.log.warning("Refusing built-in %s from an untrusted source", command.display)
                result = ExecutionResult(
                    command.display,
                    False,
                    PRCliError(f"built-in command {command.display} cannot be invoked from a comment"),
                )
        else:
            result = self.execute_single(command)

        self._drain_builtins()

        if not result.success and self.config.return_errors:
            raise CommandFailedError(str(result.error)) from result.error
        return result

    def _drain_builtins(self) -> None:
        session = self.session
        while session.pending_builtins:
            builtin = session.pending_builtins.pop(0)
            if self.dispatch_builtin is not None:
                self.dispatch_builtin(builtin)
                continue
            session.refresh()
            self.execute_builtin(builtin)

    # ---- single --------------------------------------------------------- #

    def execute_single(self, command: SingleCommand) -> ExecutionResult:
        start = time.monotonic()
        try:
            self._run(command, check_sender=True)
        except PRCliError as exc:
            error = self._report(command.display, exc)
            result = ExecutionResult(command.display, False, error)
        else:
            result = ExecutionResult(command.display, True)
        result.duration = time.monotonic() - start
        self._record(command.name, result)
        return result

    def _run(self, command: SingleCommand, check_sender: bool) -> None:
        self.validator.validate_single(command, check_sender=check_sender)
        if command.name in (CommandName.BATCH.value, CommandName.CHECK.value) and command.args:
            result = self._run_sub_commands(command)
            if not result.success:
                raise result.error
            return
        if command.name == CommandName.BATCH.value:
            raise PRCliError("no sub-commands given, usage: /batch /command1 args /command2 args")
        self.handler.handle(command)

    def _report(self, display: str, exc: PRCliError) -> PRCliError:
        """Post ``exc`` on the PR unless it was already posted; return the error to propagate."""
        log = self.session.log
        if is_commented(exc):
            log.info("%s failed: %s", display, exc)
            return exc
        log.warning("%s failed: %s", display, exc)
        if not self.config.post_errors_as_comments:
            return exc
        body = exc.comment or messages.COMMAND_ERROR.format(command=display, error=exc)
        try:
            self.session.post(body)
        except PlatformError as post_exc:
            log.error("Failed to post error comment for %s: %s", display, post_exc)
            chained = CommentPostError(f"command failed: {exc} (and failed to post error comment: {post_exc})")
            chained.__cause__ = exc
            return chained
        return exc

    def report_parse_error(self, trigger: str, exc: PRCliError) -> ExecutionResult:
        """Post a parse failure of ``trigger`` the same way command errors are posted."""
        lines = trigger.strip().splitlines() or [""]
        error = self._report(lines[0].strip(), exc)
        result = ExecutionResult(lines[0].strip(), False, error)
        self._record("unknown", result)
        if self.config.return_errors:
            raise CommandFailedError(str(error)) from error
        return result

    # ---- built-in ------------------------------------------------------- #

    def execute_builtin(self, command: BuiltInCommand) -> ExecutionResult:
        """Run an internal command. No validation and no error comments."""
        start = time.monotonic()
        try:
            self.handler.handle_builtin(command)
        except PRCliError as exc:
            self.session.log.error("Built-in %s failed: %s", command.display, exc)
            result = ExecutionResult(command.display, False, exc)
        else:
            result = ExecutionResult(command.display, True)
        result.duration = time.monotonic() - start
        self._record(command.name, result)
        return result

    # ---- multi ---------------------------------------------------------- #

    def execute_multi(self, command: MultiCommand) -> ExecutionResult:
        start = time.monotonic()
        try:
            self.validator.check_multi_sender(command.raw_lines)
        except PRCliError as exc:
            error = self._report(command.display, exc)
            return ExecutionResult(command.display, False, error, duration=time.monotonic() - start)

        results = self._run_each(command.commands, allow_lgtm=True)
        self.session.post(self._summary(messages.MULTI_HEADER, results))
        result = self._aggregate(command.display, results)
        result.duration = time.monotonic() - start
        self._record("multi", result)
        return result

    def _run_sub_commands(self, command: SingleCommand) -> ExecutionResult:
        """``/batch`` and ``/check`` with sub-commands: run each and post a summary."""
        header = messages.BATCH_HEADER if command.name == CommandName.BATCH.value else messages.CHECK_HEADER
        sub_commands = parse_sub_commands(command.args)
        if not sub_commands:
            raise PRCliError(f"no valid sub-commands found in {command.display}")
        results = self._run_each(sub_commands, allow_lgtm=False)
        self.session.post(self._summary(header, results))
        result = self._aggregate(command.display, results)
        if not result.success:
            # The summary already carries every failure.
            result.error = CommentedError(result.error)
        return result

    def _run_each(self, commands: tuple[SubCommand, ...] | list[SubCommand], allow_lgtm: bool) -> list[SubCommandResult]:
        results: list[SubCommandResult] = []
        for sub in commands:
            outcome = self._run_one(sub, allow_lgtm)
            results.append(outcome)
            if not outcome.success and self.config.stop_on_first_error:
                self.session.log.info("Stopping after first failure: %s", sub.display)
                break
        return results

    def _run_one(self, sub: SubCommand, allow_lgtm: bool) -> SubCommandResult:
        if isinstance(sub, InvalidCommand):
            return SubCommandResult(sub.display, False, sub.error)
        if isinstance(sub, BuiltInCommand) or (not allow_lgtm and sub.name in _NOT_IN_BATCH):
            return SubCommandResult(sub.display, False, messages.NOT_ALLOWED_IN_BATCH)
        if sub.name in (CommandName.BATCH.value, CommandName.CHECK.value) and sub.args:
            return SubCommandResult(sub.display, False, messages.NOT_ALLOWED_IN_BATCH)
        try:
            self._run(sub, check_sender=False)
        except PRCliError as exc:
            self.session.log.warning("Sub-command %s failed: %s", sub.display, exc)
            self._record(sub.name, ExecutionResult(sub.display, False, exc))
            return SubCommandResult(sub.display, False, str(exc))
        self._record(sub.name, ExecutionResult(sub.display, True))
        return SubCommandResult(sub.display, True)

    @staticmethod
    def _summary(header: str, results: list[SubCommandResult]) -> str:
        if any(not r.success for r in results):
            header += messages.SOME_FAILED_SUFFIX
        return "\n".join([header, "", *(r.row() for r in results)])

    @staticmethod
    def _aggregate(display: str, results: list[SubCommandResult]) -> ExecutionResult:
        failed = [r for r in results if not r.success]
        error = None
        if failed:
            error = PRCliError(f"{len(failed)} of {len(results)} commands failed")
        return ExecutionResult(display, not failed, error, results=results)

    # ---- metrics -------------------------------------------------------- #

    def _record(self, name: str, result: ExecutionResult) -> None:
        if self.metrics is None:
            return
        status = "success" if result.success else "failure"
        self.metrics.record_command(self.session.context.platform.value, name, status, result.duration)
