"""Batch orchestrator: partitions the file list and runs one worker per slice.

Key responsibilities:
- Reset the shared statistics aggregator once, before any worker starts
- Split the input list into contiguous slices, one per worker thread
- Propagate aborts (Ctrl+C, stop-on-error) to every worker
- Publish WorkerFinished per worker and a single RunFinished after the last one
"""

import concurrent.futures
import logging
import os
import threading
import time
from pathlib import Path
from typing import Callable, List, Optional, Sequence

from jxlbatch.domain.events import AbortRequested, RunFinished, WorkerFinished
from jxlbatch.domain.models import ConversionJob, StatsSnapshot
from jxlbatch.infrastructure.encoder import EncoderSupervisor
from jxlbatch.infrastructure.event_bus import EventBus
from jxlbatch.infrastructure.path_safety import PathSafetyAdapter
from jxlbatch.infrastructure.ticker import Ticker
from jxlbatch.pipeline.stats import StatisticsAggregator
from jxlbatch.pipeline.worker import BatchWorker


def partition(files: Sequence[Path], count: int) -> List[List[Path]]:
    """Splits ``files`` into exactly ``max(1, count)`` contiguous slices.

    Every slice holds ``len(files) // count`` items; the last one also takes
    the remainder.
    """
    count = max(1, count)
    files = list(files)
    size = len(files) // count
    slices = [files[i * size:(i + 1) * size] for i in range(count - 1)]
    slices.append(files[(count - 1) * size:])
    return slices


def clamp_thread_count(requested: int, cpu_count: Optional[int] = None) -> int:
    limit = cpu_count if cpu_count is not None else (os.cpu_count() or 1)
    return max(1, min(requested, max(1, limit)))


class ProgressCounter:
    """Completed-file counter shared by all workers."""

    def __init__(self):
        self._lock = threading.Lock()
        self._value = 0

    def increment(self) -> int:
        with self._lock:
            self._value += 1
            return self._value

    @property
    def value(self) -> int:
        with self._lock:
            return self._value


class Orchestrator:
    """Runs a ConversionJob over a list of files with N parallel workers."""

    def __init__(
        self,
        job: ConversionJob,
        aggregator: StatisticsAggregator,
        event_bus: EventBus,
        supervisor_factory: Callable[..., EncoderSupervisor] = EncoderSupervisor,
        ticker_factory: Callable[..., Ticker] = Ticker,
        path_safety_factory: Optional[Callable[[], PathSafetyAdapter]] = None,
        debug: bool = False,
    ):
        self.job = job
        self.aggregator = aggregator
        self.event_bus = event_bus
        self.supervisor_factory = supervisor_factory
        self.ticker_factory = ticker_factory
        self.path_safety_factory = path_safety_factory
        self.debug = debug
        self.logger = logging.getLogger(__name__)

        self.workers: List[BatchWorker] = []
        self.progress = ProgressCounter()
        self._executor: Optional[concurrent.futures.ThreadPoolExecutor] = None
        self._finished_lock = threading.Lock()
        self._finished_count = 0
        self._run_finished = threading.Event()
        self._start_time = 0.0
        self._snapshot: Optional[StatsSnapshot] = None
        self._aborted = False

    @property
    def aborted(self) -> bool:
        return self._aborted

    @property
    def snapshot(self) -> Optional[StatsSnapshot]:
        return self._snapshot

    @property
    def produced_outputs(self) -> List[Path]:
        """Destinations the encoder was started for, across all workers."""
        return [path for worker in self.workers for path in worker.state.outputs]

    def _on_abort_requested(self, event: AbortRequested):
        self.logger.info("Abort requested - stopping all workers...")
        self.abort()

    def _on_stop_on_error(self, worker_index: int):
        self.logger.info(f"Stop on error raised by worker {worker_index} - stopping all workers...")
        self.abort()

    def abort(self):
        """Sets every worker's abort flag. Safe to call repeatedly, from any thread."""
        self._aborted = True
        for worker in self.workers:
            worker.state.request_abort()

    def start(self, files: Sequence[Path], threads: int = 1):
        if self._executor is not None:
            raise RuntimeError("Orchestrator is already running")

        files = [Path(f) for f in files]
        count = clamp_thread_count(threads)
        slices = partition(files, count)

        self.aggregator.reset()
        self.progress = ProgressCounter()
        self._finished_count = 0
        self._snapshot = None
        self._aborted = False
        self._run_finished.clear()
        self.event_bus.subscribe(AbortRequested, self._on_abort_requested)

        self.workers = [
            BatchWorker(
                index=index,
                files=chunk,
                job=self.job,
                aggregator=self.aggregator,
                event_bus=self.event_bus,
                progress=self.progress,
                total=len(files),
                on_stop_on_error=self._on_stop_on_error,
                supervisor_factory=self.supervisor_factory,
                ticker_factory=self.ticker_factory,
                path_safety=self.path_safety_factory() if self.path_safety_factory else None,
                debug=self.debug,
            )
            for index, chunk in enumerate(slices)
        ]

        self.logger.info(
            f"RUN_START: {len(files)} file(s), {len(self.workers)} worker(s) "
            f"(requested {threads}), binary={self.job.binary}, output={self.job.output_dir}"
        )
        self._start_time = time.monotonic()
        self._executor = concurrent.futures.ThreadPoolExecutor(
            max_workers=len(self.workers), thread_name_prefix="jxlbatch-worker",
        )
        for worker in self.workers:
            future = self._executor.submit(worker.run)
            future.add_done_callback(lambda _f, w=worker: self._on_worker_done(w))

    def _on_worker_done(self, worker: BatchWorker):
        with self._finished_lock:
            self._finished_count += 1
            last = self._finished_count == len(self.workers)
        try:
            self.event_bus.publish(WorkerFinished(worker_index=worker.state.index, processed=worker.state.processed))
        finally:
            if last:
                self._finish_run()

    def _finish_run(self):
        elapsed = time.monotonic() - self._start_time
        self.event_bus.unsubscribe(AbortRequested, self._on_abort_requested)
        self._snapshot = self.aggregator.snapshot()
        self.logger.info(
            f"RUN_END: {self._snapshot.count()} outcome(s) in {elapsed:.2f}s (aborted={self._aborted})"
        )
        try:
            self.event_bus.publish(RunFinished(snapshot=self._snapshot, elapsed_seconds=elapsed, aborted=self._aborted))
        finally:
            self._run_finished.set()

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Blocks until every worker finished. False when ``timeout`` expired first."""
        if self._executor is None:
            return True
        if not self._run_finished.wait(timeout):
            return False
        self._executor.shutdown(wait=True)
        self._executor = None
        return True

    def run(self, files: Sequence[Path], threads: int = 1) -> StatsSnapshot:
        self.start(files, threads)
        self.wait()
        return self._snapshot
