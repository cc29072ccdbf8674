import logging
import os
import queue
import re
import shutil
import subprocess
import threading
import time
from pathlib import Path
from typing import Callable, List, Optional, Tuple, TYPE_CHECKING

from jxlbatch.domain.events import LogColor, LogEmitted
from jxlbatch.domain.models import ConversionJob, ConversionResult, FileState, OutcomeCode
from jxlbatch.infrastructure.event_bus import EventBus
from jxlbatch.infrastructure.path_safety import PathSafetyAdapter
from jxlbatch.infrastructure.ticker import TICKS_PER_SECOND

if TYPE_CHECKING:
    from jxlbatch.pipeline.worker import WorkerState

POLL_INTERVAL_S = 0.1
KILL_GRACE_S = 5.0
READER_JOIN_S = 1.0

THROUGHPUT_MARKER = "mp/s"
JPEG_SUFFIXES = (".jpg", ".jpeg", ".jfif")
QUALITY_FLAGS = ("-d", "-q")

_NON_NUMERIC = re.compile(r"[^0-9.]")

_EXITED = "exited"
_ABORTED = "aborted"
_TIMED_OUT = "timed_out"


def parse_throughput(stderr_lines: List[str]) -> Optional[float]:
    """Extracts the MP/s figure from the encoder's last stderr line.

    The reference tools end with a line like
    ``3840 x 2160, 12.34 MP/s [12.30, 12.40], 1 reps, 8 threads.``; the value is
    whatever sits between the first comma and the first bracket.
    """
    lines = [line.strip() for line in stderr_lines if line and line.strip()]
    if not lines:
        return None
    last = lines[-1]
    if THROUGHPUT_MARKER not in last.lower():
        return None

    start = last.find(",") + 1
    end = last.find("[")
    if end < start:
        end = len(last)
    text = _NON_NUMERIC.sub("", last[start:end])
    try:
        value = float(text)
    except ValueError:
        return None
    return value if value > 0 else None


class EncoderSupervisor:
    """Runs the external encoder for one file at a time and classifies the result."""

    def __init__(self, job: ConversionJob, state: "WorkerState", event_bus: EventBus,
                 path_safety: Optional[PathSafetyAdapter] = None,
                 popen: Optional[Callable[..., subprocess.Popen]] = None,
                 debug: bool = False):
        self.job = job
        self.state = state
        self.event_bus = event_bus
        self.path_safety = path_safety or PathSafetyAdapter()
        self._popen = popen or subprocess.Popen
        self.debug = debug
        self.logger = logging.getLogger(__name__)

    def _emit(self, message: str, color: LogColor = LogColor.WHITE, code: OutcomeCode = OutcomeCode.INFO):
        self.event_bus.publish(LogEmitted(message=message, color=color, code=code, worker_index=self.state.index))

    def build_arguments(self, input_path: Path, output_path: Path) -> List[str]:
        """Input, output, then the dash-prefixed options sorted by key, then custom flags."""
        policy = self.job.policy
        args = [str(input_path), str(output_path)]
        drop_quality = policy.jpeg_transcode and input_path.suffix.lower() in JPEG_SUFFIXES

        for key in sorted(self.job.options):
            if not key.startswith("-"):
                continue
            # Lossless JPEG transcode ignores distance/quality
            if drop_quality and key in QUALITY_FLAGS:
                continue
            args.append(key)
            value = self.job.options[key]
            if value != "":
                args.append(value)

        args.extend(policy.custom_args)
        return args

    def build_command(self, input_path: Path, output_path: Path) -> List[str]:
        return [str(self.job.binary)] + self.build_arguments(input_path, output_path)

    def convert(self, input_path: Path, output_path: Path) -> ConversionResult:
        """Converts one file. The destination folder must already exist."""
        policy = self.job.policy
        filename = input_path.name
        start_time = time.monotonic() if self.debug else None
        stdout_lines: List[str] = []
        stderr_lines: List[str] = []
        return_code: Optional[int] = None

        if self.debug:
            self.logger.info(f"CONVERT_START: {filename} -> {output_path}")

        with self.path_safety.safe_paths(input_path, output_path) as safe:
            cmd = self.build_command(safe.input_path, safe.output_path)
            if self.debug:
                self.logger.debug(f"CONVERT_CMD: {' '.join(cmd)}")
            try:
                process = self._popen(
                    cmd,
                    stdin=subprocess.DEVNULL,
                    stdout=subprocess.PIPE,
                    stderr=subprocess.PIPE,
                    text=True,
                    errors="replace",
                )
            except OSError as e:
                self.logger.error(f"Cannot start {self.job.binary}: {e}")
                stderr_lines.append(f"Cannot start {self.job.binary}: {e}")
                verdict = _EXITED
            else:
                verdict = self._supervise(process, stdout_lines, stderr_lines)
                return_code = process.returncode

        if verdict == _ABORTED:
            self.logger.info(f"CONVERT_ABORTED: {filename}")
            self._emit("Aborted\n", LogColor.ERROR)
            self._remove_if_empty(output_path)
            return ConversionResult(outcome=OutcomeCode.ABORTED, state=FileState.ABORTED, continue_batch=False)

        if verdict == _TIMED_OUT:
            self.logger.warning(f"CONVERT_TIMEOUT: {filename} (limit {policy.timeout_seconds}s)")
            self._emit(
                f"Skipped: Process exceeding set timeout of {policy.timeout_seconds} second(s)\n",
                LogColor.WARNING, OutcomeCode.SKIPPED_TIMEOUT,
            )
            self._remove_if_empty(output_path)
            if policy.copy_on_error:
                self._copy_source(input_path, output_path.parent)
            return ConversionResult(outcome=OutcomeCode.SKIPPED_TIMEOUT, state=FileState.TIMED_OUT)

        have_errors = return_code != 0
        self._report_output(stdout_lines, stderr_lines, have_errors)

        copied_path = None
        if have_errors and policy.copy_on_error:
            copied_path = self._copy_source(input_path, output_path.parent)

        if have_errors and policy.stop_on_error:
            self.logger.info(f"CONVERT_END: {filename} status=abort code={return_code}")
            self._emit("Aborted: Batch set to stop on error\n", LogColor.ERROR)
            self._remove_if_empty(output_path)
            state = FileState.COPIED if copied_path else FileState.NOT_COPIED
            return ConversionResult(outcome=OutcomeCode.ENCODE_ERR_ABORT, state=state, continue_batch=False)

        if not have_errors and not policy.disable_output:
            self._account_bytes(input_path, output_path)

        self._remove_if_empty(output_path)
        output_exists = output_path.exists()

        if have_errors:
            if copied_path is not None:
                outcome, state = OutcomeCode.ENCODE_ERR_COPY, FileState.COPIED
            else:
                outcome, state = OutcomeCode.ENCODE_ERR_SKIP, FileState.NOT_COPIED
        elif not output_exists and not policy.disable_output:
            outcome, state = OutcomeCode.ENCODE_ERR_SKIP, FileState.NOT_COPIED
        else:
            outcome, state = OutcomeCode.OK, FileState.SUCCEEDED
            if output_exists:
                self._emit(f"Output:\n{output_path}\n")

        if outcome == OutcomeCode.OK and policy.keep_date_time and output_exists:
            self._copy_timestamps(input_path, output_path)

        if self.debug and start_time:
            elapsed = time.monotonic() - start_time
            self.logger.info(f"CONVERT_END: {filename} status={outcome.value} code={return_code} elapsed={elapsed:.2f}s")

        return ConversionResult(
            outcome=outcome,
            state=state,
            output_path=output_path if output_exists else copied_path,
        )

    def _supervise(self, process, stdout_lines: List[str], stderr_lines: List[str]) -> str:
        """Polls the process until it exits, the worker aborts, or the timeout elapses."""
        output_queue: "queue.Queue[Optional[Tuple[str, str]]]" = queue.Queue()

        def _reader(stream, channel: str):
            if stream:
                for line in stream:
                    output_queue.put((channel, line))
            output_queue.put(None)

        readers = [
            threading.Thread(target=_reader, args=(process.stdout, "stdout"), daemon=True),
            threading.Thread(target=_reader, args=(process.stderr, "stderr"), daemon=True),
        ]
        for reader in readers:
            reader.start()

        self.state.reset_ticks()
        timeout_ticks = self.job.policy.timeout_seconds * TICKS_PER_SECOND
        verdict = _EXITED

        while True:
            if self.state.aborted:
                self._terminate(process)
                verdict = _ABORTED
                break
            if timeout_ticks > 0 and self.state.ticks > timeout_ticks:
                self._terminate(process)
                verdict = _TIMED_OUT
                break

            try:
                item = output_queue.get(timeout=POLL_INTERVAL_S)
            except queue.Empty:
                if process.poll() is not None:
                    break
                continue

            if item is not None:
                channel, line = item
                (stdout_lines if channel == "stdout" else stderr_lines).append(line)

        if verdict == _EXITED:
            process.wait()

        for reader in readers:
            reader.join(timeout=READER_JOIN_S)
        while True:
            try:
                item = output_queue.get_nowait()
            except queue.Empty:
                break
            if item is not None:
                channel, line = item
                (stdout_lines if channel == "stdout" else stderr_lines).append(line)

        return verdict

    def _terminate(self, process):
        process.terminate()
        try:
            process.wait(timeout=KILL_GRACE_S)
        except subprocess.TimeoutExpired:
            process.kill()
            process.wait()

    def _report_output(self, stdout_lines: List[str], stderr_lines: List[str], have_errors: bool):
        diagnostics = [line.rstrip() for line in stderr_lines if line.strip()]
        if diagnostics:
            if have_errors:
                self._emit("\n".join(diagnostics), LogColor.ERROR, OutcomeCode.ENCODE_ERR_SKIP)
            else:
                self._emit("\n".join(diagnostics), LogColor.OK, OutcomeCode.OK)
            sample = parse_throughput(diagnostics)
            if sample is not None:
                self.state.add_throughput(sample)

        info = "".join(stdout_lines).strip()
        if info:
            self._emit(info)

    def _account_bytes(self, input_path: Path, output_path: Path):
        try:
            input_size = input_path.stat().st_size
            output_size = output_path.stat().st_size
        except OSError:
            return
        self.state.add_bytes(input_size, output_size)

    def _remove_if_empty(self, output_path: Path):
        try:
            if output_path.is_file() and output_path.stat().st_size == 0:
                output_path.unlink()
        except OSError as e:
            self.logger.warning(f"Cannot remove empty output {output_path}: {e}")

    def _copy_source(self, input_path: Path, destination_dir: Path) -> Optional[Path]:
        """Copies the source next to the outputs, never overwriting. None when nothing is there afterwards."""
        target = destination_dir / input_path.name
        self._emit("Copying source file to destination folder instead...", LogColor.WARNING)
        if target.exists():
            self._emit("Cannot copy source file: file already exists on destination folder", LogColor.WARNING)
            return target
        try:
            shutil.copy2(input_path, target)
        except OSError as e:
            self.logger.error(f"Copy on error failed for {input_path}: {e}")
            self._emit("Failed to copy source file to destination folder", LogColor.ERROR)
            return None
        self._emit("File copied.", LogColor.WARNING)
        self._emit(f"Output:\n{target}\n")
        return target

    def _copy_timestamps(self, input_path: Path, output_path: Path):
        try:
            stat = input_path.stat()
            os.utime(output_path, ns=(stat.st_atime_ns, stat.st_mtime_ns))
        except OSError as e:
            self.logger.warning(f"Cannot copy timestamps to {output_path}: {e}")
