"""Abstract result sink interface.

Pipeline integrations read named outcomes (``merge-successful``,
``has-cherry-pick-comments``) after a job finishes. Handlers depend on
BaseResultSink, not on a concrete backend, so the CLI and the webhook server
can choose where results go without touching handler code.
"""

from __future__ import annotations

from abc import ABC, abstractmethod


class BaseResultSink(ABC):
    """Key/value writer for job outcomes.

    Writing the same key twice within a job must leave the last value in
    place. Implementations never raise from ``write``: a failed write is
    logged and dropped.
    """

    @abstractmethod
    def write(self, key: str, value: str) -> None:
        """Record ``value`` under ``key``."""

    @abstractmethod
    def read(self, key: str) -> str | None:
        """Return the value last written under ``key``, or None."""

    def close(self) -> None:
        """Release any resources held by the sink.

        Default is a no-op so callers can always call close() safely.
        """
