import logging
import os
import random
import threading
from pathlib import Path
from typing import Callable, List, Optional, Sequence, Tuple

from jxlbatch.domain.events import LogColor, LogEmitted, ProgressUpdated, StopOnErrorTriggered
from jxlbatch.domain.models import ConversionJob, ConversionResult, FileState, OutcomeCode
from jxlbatch.infrastructure.encoder import EncoderSupervisor
from jxlbatch.infrastructure.event_bus import EventBus
from jxlbatch.infrastructure.path_safety import PathSafetyAdapter
from jxlbatch.infrastructure.ticker import Ticker
from jxlbatch.pipeline.naming import destination_dir, ensure_directory, resolve_destination
from jxlbatch.pipeline.stats import StatisticsAggregator


class WorkerState:
    """Mutable per-worker state: abort flag, tick counter and running totals."""

    def __init__(self, index: int, files: Sequence[Path]):
        self.index = index
        self.files: List[Path] = list(files)
        self.abort_event = threading.Event()
        self.processed = 0
        self.total_input_bytes = 0
        self.total_output_bytes = 0
        self.throughput_sum = 0.0
        self.throughput_samples = 0
        self.file_state = FileState.PENDING
        self.results: List[Tuple[Path, ConversionResult]] = []
        # Destinations handed to the encoder during this run
        self.outputs: List[Path] = []
        self._ticks = 0
        self._lock = threading.Lock()

    def request_abort(self):
        self.abort_event.set()

    @property
    def aborted(self) -> bool:
        return self.abort_event.is_set()

    def tick(self, count: int = 1):
        with self._lock:
            self._ticks += count

    def reset_ticks(self):
        with self._lock:
            self._ticks = 0

    @property
    def ticks(self) -> int:
        with self._lock:
            return self._ticks

    def add_bytes(self, input_bytes: int, output_bytes: int):
        with self._lock:
            self.total_input_bytes += input_bytes
            self.total_output_bytes += output_bytes

    def add_throughput(self, sample: float):
        with self._lock:
            self.throughput_sum += sample
            self.throughput_samples += 1


class BatchWorker:
    """Converts one contiguous slice of the batch, in order, on its own thread."""

    def __init__(
        self,
        index: int,
        files: Sequence[Path],
        job: ConversionJob,
        aggregator: StatisticsAggregator,
        event_bus: EventBus,
        progress=None,
        total: Optional[int] = None,
        on_stop_on_error: Optional[Callable[[int], None]] = None,
        supervisor_factory: Callable[..., EncoderSupervisor] = EncoderSupervisor,
        ticker_factory: Callable[..., Ticker] = Ticker,
        path_safety: Optional[PathSafetyAdapter] = None,
        rng: Optional[random.Random] = None,
        debug: bool = False,
    ):
        self.state = WorkerState(index, files)
        self.job = job
        self.aggregator = aggregator
        self.event_bus = event_bus
        self.progress = progress
        self.total = total if total is not None else len(self.state.files)
        self.on_stop_on_error = on_stop_on_error
        self.supervisor_factory = supervisor_factory
        self.ticker_factory = ticker_factory
        self.path_safety = path_safety or PathSafetyAdapter(enabled=job.policy.process_non_ascii)
        self.rng = rng
        self.debug = debug
        self.logger = logging.getLogger(__name__)

    def _emit(self, message: str, color: LogColor = LogColor.WHITE, code: OutcomeCode = OutcomeCode.INFO):
        self.event_bus.publish(LogEmitted(message=message, color=color, code=code, worker_index=self.state.index))

    def _record(self, path: Path, result: ConversionResult):
        self.state.file_state = result.state
        self.state.results.append((path, result))
        self.aggregator.add_file(path, result.outcome)

    def _advance(self):
        self.state.processed += 1
        completed = self.progress.increment() if self.progress is not None else self.state.processed
        self.event_bus.publish(ProgressUpdated(completed=completed, total=self.total))

    def _announce(self, input_path: Path, position: int):
        if self.job.policy.multithreaded:
            self._emit(f"Processing image(s):\n{input_path}", LogColor.WHITE, OutcomeCode.FILE_IN)
        else:
            self._emit(
                f"Processing image(s) {position}/{len(self.state.files)}:\n{input_path}",
                LogColor.WHITE, OutcomeCode.FILE_IN,
            )

    def run(self) -> int:
        """Processes the slice and returns how many files were handled."""
        state = self.state
        self.logger.info(f"Worker {state.index} started with {len(state.files)} file(s)")
        ticker = self.ticker_factory(state.tick)
        ticker.start()
        self.path_safety.open(f"{os.getpid()}-{state.index}")
        try:
            self._process_slice()
        except Exception:
            self.logger.exception(f"Worker {state.index} stopped by an unexpected error")
        finally:
            ticker.stop()
            self._fold_totals()
            self.path_safety.close()
            self.logger.info(f"Worker {state.index} finished ({state.processed} processed, aborted={state.aborted})")
        return state.processed

    def _process_slice(self):
        state = self.state
        policy = self.job.policy
        supervisor = self.supervisor_factory(
            self.job, state, self.event_bus, path_safety=self.path_safety, debug=self.debug,
        )

        for position, input_path in enumerate(state.files, start=1):
            state.file_state = FileState.PENDING
            if state.aborted:
                self._emit("Aborted\n", LogColor.ERROR)
                self._record(input_path, ConversionResult(
                    outcome=OutcomeCode.ABORTED, state=FileState.ABORTED, continue_batch=False,
                ))
                return

            out_dir = destination_dir(input_path, self.job.base_path, self.job.output_dir, self.job.use_file_list)
            if not ensure_directory(out_dir):
                self._announce(input_path, position)
                self._emit(f"Failed to create subfolder at {out_dir}", LogColor.ERROR, OutcomeCode.OUT_FOLDER_ERR)
                self._emit("Skipping...\n", LogColor.ERROR)
                self._record(input_path, ConversionResult(outcome=OutcomeCode.OUT_FOLDER_ERR, state=FileState.FOLDER_ERROR))
                self._advance()
                continue

            naming = resolve_destination(
                input_path, out_dir, policy.extension, policy.suffix_template, self.job.options, self.rng,
            )
            if naming.exists and not policy.overwrite:
                if policy.silent:
                    self._emit("", LogColor.WHITE, OutcomeCode.FILE_IN)
                    self._emit("", LogColor.WARNING, OutcomeCode.SKIPPED)
                else:
                    self._announce(input_path, position)
                    self._emit("Skipped, output file already exists\n", LogColor.WARNING, OutcomeCode.SKIPPED)
                self._record(input_path, ConversionResult(
                    outcome=OutcomeCode.SKIPPED_ALREADY_EXIST, state=FileState.SKIP_EXISTS, output_path=naming.path,
                ))
                self._advance()
                continue

            self._announce(input_path, position)
            state.file_state = FileState.RUNNING
            state.outputs.append(naming.path)
            result = supervisor.convert(input_path, naming.path)
            self._record(input_path, result)
            self._advance()

            if not result.continue_batch:
                if result.outcome == OutcomeCode.ENCODE_ERR_ABORT:
                    self.logger.warning(f"Worker {state.index}: stop on error after {input_path.name}")
                    self.event_bus.publish(StopOnErrorTriggered(worker_index=state.index, path=input_path))
                    if self.on_stop_on_error is not None:
                        self.on_stop_on_error(state.index)
                return

    def _fold_totals(self):
        state = self.state
        if state.throughput_samples > 0:
            self.aggregator.add_throughput(state.throughput_sum, state.throughput_samples)
        if state.total_input_bytes > 0 and state.total_output_bytes > 0:
            self.aggregator.add_input_bytes(state.total_input_bytes)
            self.aggregator.add_output_bytes(state.total_output_bytes)
