from typing import Callable, Optional

from rich.console import Console
from rich.text import Text

from jxlbatch.domain.events import LogColor, LogEmitted, ProgressUpdated, RunFinished, WorkerFinished
from jxlbatch.infrastructure.event_bus import EventBus
from jxlbatch.ui.state import UIState

COLOR_STYLES = {
    LogColor.WHITE: "white",
    LogColor.WARNING: "rgb(255,255,100)",
    LogColor.ERROR: "rgb(255,150,150)",
    LogColor.STATS: "rgb(255,187,255)",
    LogColor.OK: "rgb(50,255,150)",
}


class UIManager:
    """Subscribes to EventBus, updates UIState and echoes the conversion log."""

    def __init__(self, bus: EventBus, state: UIState, console: Optional[Console] = None,
                 show_worker: bool = False, quiet: bool = False,
                 on_progress: Optional[Callable[[int, int], None]] = None):
        self.bus = bus
        self.state = state
        self.console = console or Console()
        self.show_worker = show_worker
        self.quiet = quiet
        self.on_progress = on_progress
        self._setup_subscriptions()

    def _setup_subscriptions(self):
        self.bus.subscribe(LogEmitted, self.on_log)
        self.bus.subscribe(ProgressUpdated, self.on_progress_updated)
        self.bus.subscribe(WorkerFinished, self.on_worker_finished)
        self.bus.subscribe(RunFinished, self.on_run_finished)

    def on_log(self, event: LogEmitted):
        self.state.record_log(event.code)
        if self.quiet or not event.message.strip():
            return
        # Text, not markup: encoder output contains square brackets
        line = Text()
        if self.show_worker:
            line.append(f"[w{event.worker_index}] ", style="dim")
        line.append(event.message.rstrip("\n"), style=COLOR_STYLES.get(event.color, "white"))
        self.console.print(line)

    def on_progress_updated(self, event: ProgressUpdated):
        self.state.update_progress(event.completed, event.total)
        if self.on_progress is not None:
            self.on_progress(event.completed, event.total)

    def on_worker_finished(self, event: WorkerFinished):
        self.state.mark_worker_finished()

    def on_run_finished(self, event: RunFinished):
        self.state.mark_finished(event.snapshot, event.elapsed_seconds, event.aborted)
