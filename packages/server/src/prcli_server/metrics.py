"""In-process counters exported in the Prometheus text exposition format."""

from __future__ import annotations

import threading
from collections import defaultdict
from typing import Callable


def _labels(names: tuple[str, ...], values: tuple[str, ...]) -> str:
    if not names:
        return ""
    pairs = []
    for name, value in zip(names, values):
        escaped = str(value).replace("\\", "\\\\").replace('"', '\\"').replace("\n", "\\n")
        pairs.append(f'{name}="{escaped}"')
    return "{" + ",".join(pairs) + "}"


class Metrics:
    """Counters, gauges and duration summaries for the webhook service.

    Gauges for queue depth and active workers are read through callbacks at
    render time so they never go stale.
    """

    _COUNTERS = {
        "webhook_requests_total": (("platform", "event_type", "status"), "Webhook requests by outcome."),
        "command_execution_total": (("platform", "command", "status"), "Executed commands by outcome."),
        "jobs_processed_total": ((), "Jobs completed by the worker pool."),
        "jobs_failed_total": ((), "Jobs that raised or reported failure."),
        "pr_events_total": (("platform", "action", "status"), "Pull request lifecycle events handled."),
    }
    _SUMMARIES = {
        "webhook_processing_seconds": (("platform", "command"), "Webhook handling duration."),
        "command_execution_seconds": (("platform", "command"), "Command execution duration."),
    }

    def __init__(self):
        self._lock = threading.Lock()
        self._counters: dict[str, dict[tuple[str, ...], float]] = {name: defaultdict(float) for name in self._COUNTERS}
        self._summaries: dict[str, dict[tuple[str, ...], list[float]]] = {
            name: defaultdict(lambda: [0.0, 0]) for name in self._SUMMARIES
        }
        self._gauges: dict[str, Callable[[], float]] = {}

    def inc(self, name: str, *labels: str, amount: float = 1) -> None:
        with self._lock:
            self._counters[name][tuple(labels)] += amount

    def observe(self, name: str, seconds: float, *labels: str) -> None:
        with self._lock:
            entry = self._summaries[name][tuple(labels)]
            entry[0] += seconds
            entry[1] += 1

    def gauge(self, name: str, read: Callable[[], float]) -> None:
        self._gauges[name] = read

    def value(self, name: str, *labels: str) -> float:
        with self._lock:
            return self._counters[name].get(tuple(labels), 0)

    # Called by CommandExecutor for every command it runs.
    def record_command(self, platform: str, command: str, status: str, duration: float) -> None:
        self.inc("command_execution_total", platform, command, status)
        self.observe("command_execution_seconds", duration, platform, command)

    def render(self) -> str:
        lines: list[str] = []
        with self._lock:
            for name, (label_names, help_text) in self._COUNTERS.items():
                lines.append(f"# HELP {name} {help_text}")
                lines.append(f"# TYPE {name} counter")
                for values, total in sorted(self._counters[name].items()):
                    lines.append(f"{name}{_labels(label_names, values)} {total:g}")
            for name, (label_names, help_text) in self._SUMMARIES.items():
                lines.append(f"# HELP {name} {help_text}")
                lines.append(f"# TYPE {name} summary")
                for values, (total, count) in sorted(self._summaries[name].items()):
                    labels = _labels(label_names, values)
                    lines.append(f"{name}_sum{labels} {total:g}")
                    lines.append(f"{name}_count{labels} {count}")
        for name, read in sorted(self._gauges.items()):
            lines.append(f"# TYPE {name} gauge")
            lines.append(f"{name} {read():g}")
        return "\n".join(lines) + "\n"
