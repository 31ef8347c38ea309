"""Turns a queued Job into platform actions."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Callable, Optional

from prcli_core.errors import ParseError, PRCliError, UnknownCommandError, is_service_failure
from prcli_core.executor import CommandExecutor, ExecutionConfig
from prcli_core.models import EventKind
from prcli_core.parser import parse_comment
from prcli_core.platforms.factory import create_client
from prcli_core.session import JobLogger, PRSession
from prcli_results.factory import build_sink
from prcli_server.worker import Job

if TYPE_CHECKING:
    from prcli_core.config import CommandContext
    from prcli_core.parser import BuiltInCommand
    from prcli_core.platforms.base import BaseClient
    from prcli_server.metrics import Metrics

logger = logging.getLogger(__name__)


class JobProcessor:
    """Runs one job: a comment command, an internal command or a PR lifecycle event.

    ``submit`` enqueues follow-up internal jobs; when it is missing or refuses
    the job, the follow-up runs inline.
    """

    def __init__(
        self,
        base_context: CommandContext,
        webhook_config: dict,
        metrics: Metrics | None = None,
        client_factory: Callable[[CommandContext], BaseClient] = create_client,
        submit: Optional[Callable[[Job], bool]] = None,
    ):
        self.base_context = base_context
        self.webhook_config = webhook_config
        self.metrics = metrics
        self.client_factory = client_factory
        self.submit = submit
        self.passthrough_commands = frozenset(webhook_config.get("passthrough_commands") or ())

    def __call__(self, job: Job) -> bool:
        return self.process(job)

    def process(self, job: Job) -> bool:
        """Return False only for failures of the service itself."""
        context = self.base_context.for_event(job.event)
        log = JobLogger(logger, {"event_id": job.id})

        if job.builtin is None and job.event.kind != EventKind.ISSUE_COMMENT:
            return self.process_pr_event(job, context)

        sender = job.event.sender.lower()
        is_robot = sender in context.robot_accounts or sender.endswith("[bot]")
        if job.builtin is None and is_robot and not context.debug_mode:
            log.info("Ignoring comment from robot account %s", job.event.sender)
            return True

        client = self.client_factory(context)
        session = PRSession(client, context, build_sink(context.results_dir))
        if job.builtin is None and not context.debug_mode and session.is_robot(job.event.sender):
            log.info("Ignoring comment from the service account %s", job.event.sender)
            return True

        executor = CommandExecutor(
            session,
            ExecutionConfig.webhook(),
            metrics=self.metrics,
            dispatch_builtin=lambda command: self._follow_up(job, command),
        )

        if job.builtin is not None:
            result = executor.execute(job.builtin, trusted=True)
            return result.success or not is_service_failure(result.error)

        try:
            command = parse_comment(context.trigger_comment)
        except UnknownCommandError as exc:
            if exc.name in self.passthrough_commands:
                log.info("Leaving /%s to other tooling", exc.name)
                return True
            result = executor.report_parse_error(context.trigger_comment, exc)
            return not is_service_failure(result.error)
        except ParseError as exc:
            result = executor.report_parse_error(context.trigger_comment, exc)
            return not is_service_failure(result.error)

        result = executor.execute(command)
        if not result.success:
            log.info("%s finished with errors: %s", result.command, result.error)
        return result.success or not is_service_failure(result.error)

    def _follow_up(self, job: Job, command: BuiltInCommand) -> None:
        follow_up = Job(event=job.event, builtin=command)
        if self.submit is not None and self.submit(follow_up):
            logger.info("[event=%s] Enqueued internal job %s", job.id, command.display)
            return
        logger.info("[event=%s] Running internal job %s inline", job.id, command.display)
        self.process(follow_up)

    # ---- pull request lifecycle ------------------------------------------ #

    def process_pr_event(self, job: Job, context: CommandContext) -> bool:
        """Dispatch the configured CI workflow for a pull request lifecycle event."""
        event = job.event
        settings = self.webhook_config.get("pr_events") or {}
        platform = event.platform.value
        if not settings.get("enabled") or not settings.get("workflow_file"):
            logger.debug("[event=%s] Pull request events disabled, skipping", job.id)
            return True

        pr = event.pull_request
        inputs = {
            "pr_number": str(pr.number),
            "pr_action": event.action,
            "head_ref": pr.head_ref,
            "head_sha": pr.head_sha,
            "base_ref": pr.base_ref,
            "sender": event.sender,
        }
        inputs.update({str(k): str(v) for k, v in (settings.get("workflow_inputs") or {}).items()})
        ref = settings.get("workflow_ref") or pr.head_ref or "main"
        try:
            self.client_factory(context).trigger_workflow(settings["workflow_file"], ref, inputs)
        except PRCliError as exc:
            logger.error("[event=%s] Failed to trigger %s: %s", job.id, settings["workflow_file"], exc)
            if self.metrics is not None:
                self.metrics.inc("pr_events_total", platform, event.action, "error")
            return False
        if self.metrics is not None:
            self.metrics.inc("pr_events_total", platform, event.action, "success")
        logger.info("[event=%s] Triggered %s for PR #%s (%s)", job.id, settings["workflow_file"], pr.number, event.action)
        return True
