"""Domain events for the batch conversion pipeline.

Events flow through the EventBus from the worker threads to whoever renders
them (the terminal UI in the CLI, plain lists in tests), so the pipeline never
imports the UI layer.

See `infrastructure/event_bus.py` for the pub/sub mechanism.
"""

from enum import Enum
from pathlib import Path
from pydantic import BaseModel

from .models import OutcomeCode, StatsSnapshot


class LogColor(str, Enum):
    """Colour hint attached to a log line; renderers map it to a style."""
    WHITE = "WHITE"
    WARNING = "WARNING"
    ERROR = "ERROR"
    STATS = "STATS"
    OK = "OK"


class Event(BaseModel):
    """Base class for all domain events.

    Events are validated Pydantic models. They are not frozen by default.
    """

    pass


class LogEmitted(Event):
    """A line for the conversion log, tagged with the outcome it belongs to.

    Silent mode emits events with an empty message so counters stay exact.
    """

    message: str
    color: LogColor = LogColor.WHITE
    code: OutcomeCode = OutcomeCode.INFO
    worker_index: int = 0


class ProgressUpdated(Event):
    """Emitted after every file, whatever its outcome."""

    completed: int
    total: int


class WorkerFinished(Event):
    """Emitted when a worker has folded its totals and exited."""

    worker_index: int
    processed: int


class StopOnErrorTriggered(Event):
    """Emitted when a failed file stops the whole batch."""

    worker_index: int
    path: Path


class RunFinished(Event):
    """Emitted once, after the last worker finished."""

    snapshot: StatsSnapshot
    elapsed_seconds: float
    aborted: bool = False


class AbortRequested(Event):
    """Ask the orchestrator to abort every worker (Ctrl+C)."""

    pass
