"""Bounded job queue drained by a fixed set of worker threads."""

from __future__ import annotations

import logging
import queue
import threading
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Callable, Optional

if TYPE_CHECKING:
    from prcli_core.models import Event
    from prcli_core.parser import BuiltInCommand
    from prcli_server.metrics import Metrics

logger = logging.getLogger(__name__)

_STOP = object()


@dataclass
class Job:
    """One unit of work: a webhook event, or an internal command re-entering the executor."""

    event: Event
    received_at: float = field(default_factory=time.time)
    attempt: int = 1
    builtin: Optional[BuiltInCommand] = None

    @property
    def id(self) -> str:
        return self.event.raw_id

    def describe(self) -> str:
        what = self.builtin.display if self.builtin else self.event.kind.value
        return f"{self.event.repository.full_name}#{self.event.pull_request.number} {what}"


class WorkerPool:
    """``worker_count`` threads consuming a queue of at most ``queue_size`` jobs.

    ``process`` returns True on success; exceptions are logged and counted as
    failures so one bad job never kills a worker.
    """

    def __init__(
        self,
        process: Callable[[Job], bool],
        worker_count: int = 10,
        queue_size: int = 100,
        metrics: Metrics | None = None,
    ):
        self._process = process
        self.worker_count = worker_count
        self.capacity = queue_size
        self.metrics = metrics
        self._queue: queue.Queue = queue.Queue(maxsize=queue_size)
        self._threads: list[threading.Thread] = []
        self._closed = threading.Event()
        self._active = 0
        self._active_lock = threading.Lock()

        if metrics is not None:
            metrics.gauge("queue_size", lambda: self.depth)
            metrics.gauge("active_workers", lambda: self.active)

    # ---- state ------------------------------------------------------------ #

    @property
    def depth(self) -> int:
        return self._queue.qsize()

    @property
    def active(self) -> int:
        with self._active_lock:
            return self._active

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    def usage(self) -> float:
        return self.depth / self.capacity if self.capacity else 1.0

    # ---- lifecycle -------------------------------------------------------- #

    def start(self) -> None:
        for i in range(self.worker_count):
            thread = threading.Thread(target=self._run, args=(i,), name=f"prcli-worker-{i}", daemon=True)
            thread.start()
            self._threads.append(thread)
        logger.info("Started %d workers (queue capacity %d)", self.worker_count, self.capacity)

    def submit(self, job: Job) -> bool:
        """Enqueue without blocking. False when the pool is closed or the queue is full."""
        if self.closed:
            logger.warning("Refusing job %s: worker pool is shutting down", job.id)
            return False
        try:
            self._queue.put_nowait(job)
        except queue.Full:
            logger.error("Job queue is full (%d), refusing %s", self.capacity, job.describe())
            return False
        logger.debug("Enqueued job %s (%s)", job.id, job.describe())
        return True

    def shutdown(self, timeout: float = 30.0) -> bool:
        """Stop accepting jobs and drain the queue until ``timeout`` expires.

        Returns True when every queued job finished in time.
        """
        self._closed.set()
        deadline = time.monotonic() + timeout
        while self._queue.unfinished_tasks and time.monotonic() < deadline:
            time.sleep(0.05)
        drained = not self._queue.unfinished_tasks
        if not drained:
            dropped = 0
            while True:
                try:
                    self._queue.get_nowait()
                except queue.Empty:
                    break
                self._queue.task_done()
                dropped += 1
            logger.warning("Shutdown deadline reached: dropped %d queued job(s)", dropped)

        # Busy workers can keep the queue full of stop markers; daemon threads
        # left without one die with the process.
        for _ in self._threads:
            try:
                self._queue.put(_STOP, timeout=max(0.0, deadline - time.monotonic()))
            except queue.Full:
                logger.warning("Could not signal every worker before the shutdown deadline")
                break
        for thread in self._threads:
            thread.join(max(0.0, deadline - time.monotonic()))
        still_running = [t.name for t in self._threads if t.is_alive()]
        if still_running:
            logger.warning("Workers still busy after shutdown deadline: %s", ", ".join(still_running))
        logger.info("Worker pool stopped")
        return drained and not still_running

    # ---- workers ---------------------------------------------------------- #

    def _run(self, worker_id: int) -> None:
        while True:
            job = self._queue.get()
            try:
                if job is _STOP:
                    return
                self._handle(worker_id, job)
            finally:
                self._queue.task_done()

    def _handle(self, worker_id: int, job: Job) -> None:
        with self._active_lock:
            self._active += 1
        start = time.monotonic()
        ok = False
        try:
            logger.info("[event=%s] Worker %d processing %s", job.id, worker_id, job.describe())
            ok = bool(self._process(job))
        except Exception:
            logger.exception("[event=%s] Job failed with an unexpected error", job.id)
        finally:
            with self._active_lock:
                self._active -= 1
        elapsed = time.monotonic() - start
        if self.metrics is not None:
            self.metrics.inc("jobs_processed_total")
            if not ok:
                self.metrics.inc("jobs_failed_total")
        logger.info("[event=%s] Job finished in %.2fs (ok=%s)", job.id, elapsed, ok)
