import threading
from datetime import datetime
from typing import Dict, Optional

from jxlbatch.domain.models import OutcomeCode, StatsSnapshot


class UIState:
    """Thread-safe counters fed by the log-event stream."""

    def __init__(self):
        self._lock = threading.RLock()

        # Counters by log tag, as the log stream reports them
        self.files_started = 0
        self.encode_errors = 0
        self.folder_errors = 0
        self.skipped_existing = 0
        self.timeouts = 0
        self.log_counts: Dict[OutcomeCode, int] = {}

        # Progress
        self.completed = 0
        self.total = 0
        self.workers_finished = 0

        # Global status
        self.processing_start_time: Optional[datetime] = None
        self.finished = False
        self.aborted = False
        self.snapshot: Optional[StatsSnapshot] = None
        self.elapsed_seconds = 0.0

    def record_log(self, code: OutcomeCode):
        with self._lock:
            self.log_counts[code] = self.log_counts.get(code, 0) + 1
            if code == OutcomeCode.FILE_IN:
                self.files_started += 1
            elif code == OutcomeCode.ENCODE_ERR_SKIP:
                self.encode_errors += 1
            elif code == OutcomeCode.OUT_FOLDER_ERR:
                self.folder_errors += 1
            elif code == OutcomeCode.SKIPPED:
                self.skipped_existing += 1
            elif code == OutcomeCode.SKIPPED_TIMEOUT:
                self.timeouts += 1

    def update_progress(self, completed: int, total: int):
        with self._lock:
            if self.processing_start_time is None:
                self.processing_start_time = datetime.now()
            # Workers report out of order; keep the highest value
            self.completed = max(self.completed, completed)
            self.total = total

    def mark_worker_finished(self):
        with self._lock:
            self.workers_finished += 1

    def mark_finished(self, snapshot: StatsSnapshot, elapsed_seconds: float, aborted: bool):
        with self._lock:
            self.snapshot = snapshot
            self.elapsed_seconds = elapsed_seconds
            self.aborted = aborted
            self.finished = True
