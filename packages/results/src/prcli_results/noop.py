"""No-op sink, the default when no results directory is configured."""

from __future__ import annotations

import logging

from prcli_results.base import BaseResultSink

logger = logging.getLogger(__name__)


class NoOpSink(BaseResultSink):
    """Drops every result.

    Using a NoOpSink rather than None lets handlers always call
    sink.write() without conditional checks.
    """

    def write(self, key: str, value: str) -> None:
        logger.debug("No results directory configured; dropping %s=%s", key, value)

    def read(self, key: str) -> str | None:
        return None
