from __future__ import annotations

from typing import Iterable

from prcli_core.models import CheckRun

_PASSING = {"success"}
_SOFT_PASSING = {"skipped", "neutral"}
_RETESTABLE = {"failure", "timed_out", "cancelled"}


def is_self_check(name: str, self_check_name: str) -> bool:
    """True for the check run this service reports about itself.

    Matches the bare name and pipeline-prefixed forms like ``CI / pr-cli``.
    """
    if not self_check_name:
        return False
    name = name.strip()
    return name == self_check_name or name.endswith("/ " + self_check_name)


def latest_per_name(checks: Iterable[CheckRun]) -> list[CheckRun]:
    """Keep only the most recent run of each check (re-runs supersede)."""
    latest: dict[str, CheckRun] = {}
    for check in checks:
        current = latest.get(check.name)
        if current is None or check.id >= current.id:
            latest[check.name] = check
    return list(latest.values())


def is_passing(check: CheckRun, treat_skipped_as_passing: bool = True) -> bool:
    if not check.is_completed:
        return False
    if check.conclusion in _PASSING:
        return True
    return treat_skipped_as_passing and check.conclusion in _SOFT_PASSING


def failing_checks(
    checks: Iterable[CheckRun], self_check_name: str = "", treat_skipped_as_passing: bool = True
) -> list[CheckRun]:
    """Return the gating check runs that are not passing; pending runs fail."""
    return [
        c
        for c in latest_per_name(checks)
        if not is_self_check(c.name, self_check_name) and not is_passing(c, treat_skipped_as_passing)
    ]


def retestable_checks(checks: Iterable[CheckRun], self_check_name: str = "") -> list[CheckRun]:
    """Completed runs that failed, timed out or were cancelled."""
    return [
        c
        for c in latest_per_name(checks)
        if not is_self_check(c.name, self_check_name) and c.is_completed and c.conclusion in _RETESTABLE
    ]
