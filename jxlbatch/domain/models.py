from enum import Enum
from pathlib import Path
from typing import Dict, Iterable, Iterator, List, Optional, Tuple, Union
from pydantic import BaseModel, ConfigDict, Field

from jxlbatch.config.models import ConversionPolicy


class OutcomeCode(str, Enum):
    """Closed set of outcome tags.

    INFO, FILE_IN and SKIPPED only tag log lines; every other code is
    recorded once per file attempt.
    """
    INFO = "INFO"
    FILE_IN = "FILE_IN"
    OK = "OK"
    SKIPPED = "SKIPPED"
    SKIPPED_ALREADY_EXIST = "SKIPPED_ALREADY_EXIST"
    SKIPPED_TIMEOUT = "SKIPPED_TIMEOUT"
    OUT_FOLDER_ERR = "OUT_FOLDER_ERR"
    ENCODE_ERR_SKIP = "ENCODE_ERR_SKIP"
    ENCODE_ERR_COPY = "ENCODE_ERR_COPY"
    ABORTED = "ABORTED"
    ENCODE_ERR_ABORT = "ENCODE_ERR_ABORT"

    @property
    def bit(self) -> int:
        return 1 << list(OutcomeCode).index(self)

    def __or__(self, other) -> "OutcomeSet":
        return OutcomeSet([self]) | other

    def __ror__(self, other) -> "OutcomeSet":
        return OutcomeSet([self]) | other


class OutcomeSet:
    """Immutable union of outcome codes, usable wherever a single code is."""

    __slots__ = ("_codes",)

    def __init__(self, codes: Iterable[OutcomeCode] = ()):
        self._codes = frozenset(OutcomeCode(code) for code in codes)

    def __contains__(self, code) -> bool:
        return code in self._codes

    def __or__(self, other) -> "OutcomeSet":
        if isinstance(other, OutcomeCode):
            return OutcomeSet(self._codes | {other})
        if isinstance(other, OutcomeSet):
            return OutcomeSet(self._codes | other._codes)
        return NotImplemented

    __ror__ = __or__

    def __iter__(self) -> Iterator[OutcomeCode]:
        return (code for code in OutcomeCode if code in self._codes)

    def __len__(self) -> int:
        return len(self._codes)

    def __eq__(self, other) -> bool:
        if isinstance(other, OutcomeSet):
            return self._codes == other._codes
        return NotImplemented

    def __hash__(self) -> int:
        return hash(self._codes)

    def __repr__(self) -> str:
        return "OutcomeSet(" + " | ".join(code.value for code in self) + ")"

    @property
    def mask(self) -> int:
        mask = 0
        for code in self._codes:
            mask |= code.bit
        return mask


OutcomeQuery = Union[OutcomeCode, OutcomeSet]

ERROR_OUTCOMES = OutcomeSet([
    OutcomeCode.OUT_FOLDER_ERR,
    OutcomeCode.ENCODE_ERR_SKIP,
    OutcomeCode.ENCODE_ERR_COPY,
    OutcomeCode.ENCODE_ERR_ABORT,
])
SKIP_OUTCOMES = OutcomeSet([
    OutcomeCode.SKIPPED,
    OutcomeCode.SKIPPED_ALREADY_EXIST,
    OutcomeCode.SKIPPED_TIMEOUT,
])
ALL_OUTCOMES = OutcomeSet(OutcomeCode)


def matches(code: OutcomeCode, query: OutcomeQuery) -> bool:
    if isinstance(query, OutcomeSet):
        return code in query
    return code == query


class FileState(str, Enum):
    PENDING = "PENDING"
    SKIP_EXISTS = "SKIP_EXISTS"
    FOLDER_ERROR = "FOLDER_ERROR"
    RUNNING = "RUNNING"
    ABORTED = "ABORTED"
    TIMED_OUT = "TIMED_OUT"
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"
    COPIED = "COPIED"
    NOT_COPIED = "NOT_COPIED"


class ConversionResult(BaseModel):
    """What the supervisor decided for one file."""
    outcome: OutcomeCode
    state: FileState
    continue_batch: bool = True
    output_path: Optional[Path] = None


class ConversionJob(BaseModel):
    """Immutable description of one batch run, shared read-only by all workers."""
    model_config = ConfigDict(frozen=True)

    binary: Path
    output_dir: Path
    base_path: Path
    use_file_list: bool = False
    options: Dict[str, str] = Field(default_factory=dict)
    policy: ConversionPolicy = Field(default_factory=ConversionPolicy)

    @classmethod
    def create(
        cls,
        binary: Path,
        output_dir: Path,
        options: Dict[str, str],
        base_path: Optional[Path] = None,
        use_file_list: bool = False,
    ) -> "ConversionJob":
        """Builds a job, deriving the policy and (if missing) the base path from the options."""
        options = {str(key): str(value) for key, value in options.items()}
        policy = ConversionPolicy.from_options(options)
        if base_path is None:
            if policy.directory_input:
                directory_input = Path(policy.directory_input)
                base_path = directory_input.parent if directory_input.is_file() else directory_input
            else:
                base_path = Path(output_dir)
        return cls(
            binary=Path(binary),
            output_dir=Path(output_dir),
            base_path=Path(base_path),
            use_file_list=use_file_list,
            options=options,
            policy=policy,
        )


class StatsSnapshot(BaseModel):
    """Point-in-time copy of the statistics aggregator."""
    model_config = ConfigDict(frozen=True)

    total_input_bytes: int = 0
    total_output_bytes: int = 0
    throughput_sum: float = 0.0
    throughput_samples: int = 0
    entries: List[Tuple[Path, OutcomeCode]] = Field(default_factory=list)

    @property
    def average_throughput(self) -> float:
        """Mean MP/s over every sample folded in by the workers."""
        if self.throughput_samples <= 0:
            return 0.0
        return self.throughput_sum / self.throughput_samples

    @property
    def delta_percent(self) -> Optional[float]:
        """Relative size change of the output; None without input bytes."""
        if self.total_input_bytes <= 0:
            return None
        return (self.total_output_bytes - self.total_input_bytes) * 100.0 / self.total_input_bytes

    @property
    def is_valid(self) -> bool:
        return len(self.entries) > 0

    def files(self, query: OutcomeQuery) -> List[Path]:
        return [path for path, code in self.entries if matches(code, query)]

    def count(self, query: Optional[OutcomeQuery] = None) -> int:
        if query is None:
            return len(self.entries)
        return sum(1 for _, code in self.entries if matches(code, query))
