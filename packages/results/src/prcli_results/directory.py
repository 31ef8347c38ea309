"""Filesystem sink: one file per key, as pipeline result directories expect.

Layout::

    <results_dir>/merge-successful            -> "true\\n"
    <results_dir>/has-cherry-pick-comments    -> "true\\n"
"""

from __future__ import annotations

import logging
import re
from pathlib import Path

from prcli_results.base import BaseResultSink

logger = logging.getLogger(__name__)

_KEY_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]*$")


class DirectorySink(BaseResultSink):
    """Writes each result to ``<path>/<key>`` with a trailing newline.

    The directory is created on first write.
    """

    def __init__(self, path: str | Path):
        self.path = Path(path)

    def write(self, key: str, value: str) -> None:
        if not _KEY_RE.match(key):
            logger.warning("Refusing to write result with invalid key %r", key)
            return
        target = self.path / key
        try:
            self.path.mkdir(parents=True, exist_ok=True)
            target.write_text(f"{value}\n")
        except OSError as exc:
            # Never abort a command because a result could not be written.
            logger.warning("Failed to write result %s to %s: %s", key, target, exc)
            return
        logger.info("Wrote result %s=%s to %s", key, value, target)

    def read(self, key: str) -> str | None:
        target = self.path / key
        try:
            return target.read_text().rstrip("\n")
        except FileNotFoundError:
            return None
        except OSError as exc:
            logger.warning("Failed to read result %s from %s: %s", key, target, exc)
            return None
