from __future__ import annotations

from typing import TYPE_CHECKING

from prcli_core import messages
from prcli_core.checks import failing_checks, retestable_checks

if TYPE_CHECKING:
    from prcli_core.session import PRSession

# Checks re-run through the platform's own CI API rather than a /test comment.
NATIVE_CI_APPS = frozenset({"github-actions", "gitlab-ci"})

_NON_PIPELINE_CHECKS = (
    "merge conflict",
    "codecov",
    "sonarcloud",
    "license",
    "cla",
    "semantic",
    "dependabot",
    "gitguardian",
    "security",
)
_TASK_SUFFIXES = frozenset({"build", "test", "deploy", "lint", "check", "scan", "analyze"})


def extract_pipeline_name(check_name: str) -> str | None:
    """Pipeline name to put in a ``/test`` comment, or None for non-pipeline checks.

    "Pipelines as Code CI / unit-tests"        -> "unit-tests"
    "CI / unit-tests / build"                  -> "unit-tests"
    "codecov/patch"                            -> None
    """
    name = check_name.strip()
    lowered = name.lower()
    if any(marker in lowered for marker in _NON_PIPELINE_CHECKS):
        return None
    parts = [p.strip() for p in name.split(" / ")]
    if len(parts) >= 2:
        if parts[-1].lower() in _TASK_SUFFIXES and len(parts) >= 3:
            return parts[-2]
        return parts[-1]
    return name or None


def retest(session: PRSession, args: tuple[str, ...]) -> list[str]:
    """Re-run failed checks; return the names that were re-triggered."""
    context = session.context
    checks = session.client.list_check_runs()
    if not failing_checks(checks, context.self_check_name, context.treat_skipped_as_passing):
        session.post(messages.RETEST_ALL_PASSING)
        return []

    if args:
        return _post_test_comments(session, list(args))

    pipelines: list[str] = []
    native = []
    skipped: list[str] = []
    for check in retestable_checks(checks, context.self_check_name):
        if check.app_slug in NATIVE_CI_APPS:
            native.append(check)
            continue
        name = extract_pipeline_name(check.name)
        if name is None:
            skipped.append(check.name)
        elif name not in pipelines:
            pipelines.append(name)

    triggered: list[str] = []
    if pipelines:
        triggered += _post_test_comments(session, pipelines)
    if native:
        rerun = session.client.rerun_failed_checks(native)
        if rerun:
            session.log.info("Re-ran native CI: %s", ", ".join(rerun))
            session.post(messages.RETEST_TRIGGERED.format(names="\n• ".join(rerun)))
        triggered += rerun

    if not triggered:
        message = messages.RETEST_NOTHING
        if skipped:
            message += messages.RETEST_SKIPPED.format(names="\n• ".join(skipped))
        session.post(message)
    return triggered


def _post_test_comments(session: PRSession, names: list[str]) -> list[str]:
    for name in names:
        session.post(messages.RETEST_COMMENT.format(name=name))
        session.log.info("Posted retest comment for %s", name)
    session.post(messages.RETEST_TRIGGERED.format(names="\n• ".join(names)))
    return names
