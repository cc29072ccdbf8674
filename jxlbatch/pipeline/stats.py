import threading
from pathlib import Path
from typing import List, Optional, Tuple

from jxlbatch.domain.models import OutcomeCode, OutcomeQuery, StatsSnapshot


class StatisticsAggregator:
    """Run totals shared by every worker; all access goes through one lock."""

    def __init__(self):
        self._lock = threading.Lock()
        self._total_input_bytes = 0
        self._total_output_bytes = 0
        self._throughput_sum = 0.0
        self._throughput_samples = 0
        self._entries: List[Tuple[Path, OutcomeCode]] = []

    def reset(self):
        with self._lock:
            self._total_input_bytes = 0
            self._total_output_bytes = 0
            self._throughput_sum = 0.0
            self._throughput_samples = 0
            self._entries = []

    def add_input_bytes(self, size: int):
        with self._lock:
            self._total_input_bytes += size

    def add_output_bytes(self, size: int):
        with self._lock:
            self._total_output_bytes += size

    def add_throughput(self, total: float, samples: int = 1):
        """Adds ``samples`` MP/s readings whose sum is ``total``."""
        if samples <= 0:
            return
        with self._lock:
            self._throughput_sum += total
            self._throughput_samples += samples

    def add_file(self, path: Path, code: OutcomeCode):
        with self._lock:
            self._entries.append((Path(path), OutcomeCode(code)))

    def is_valid(self) -> bool:
        with self._lock:
            return len(self._entries) > 0

    def snapshot(self) -> StatsSnapshot:
        with self._lock:
            return StatsSnapshot(
                total_input_bytes=self._total_input_bytes,
                total_output_bytes=self._total_output_bytes,
                throughput_sum=self._throughput_sum,
                throughput_samples=self._throughput_samples,
                entries=list(self._entries),
            )

    def files(self, query: OutcomeQuery) -> List[Path]:
        return self.snapshot().files(query)

    def count(self, query: Optional[OutcomeQuery] = None) -> int:
        return self.snapshot().count(query)
