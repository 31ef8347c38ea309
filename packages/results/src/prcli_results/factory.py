from __future__ import annotations

from prcli_results.base import BaseResultSink


def build_sink(results_dir: str | None) -> BaseResultSink:
    """Return a DirectorySink for ``results_dir``, or a NoOpSink when unset."""
    if results_dir:
        from prcli_results.directory import DirectorySink

        return DirectorySink(results_dir)

    from prcli_results.noop import NoOpSink

    return NoOpSink()
