import threading
from typing import Callable, Optional

TICK_INTERVAL_S = 0.01
TICKS_PER_SECOND = int(round(1 / TICK_INTERVAL_S))


class Ticker:
    """Calls ``on_tick`` every ``interval_s`` seconds from a background thread.

    Timeouts count these ticks instead of reading the clock, so a starved
    thread extends the timeout rather than firing it early.
    """

    def __init__(self, on_tick: Callable[[], None], interval_s: float = TICK_INTERVAL_S):
        self.on_tick = on_tick
        self.interval_s = interval_s
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def _run(self):
        while not self._stop_event.wait(self.interval_s):
            self.on_tick()

    def start(self):
        """Starts the tick thread."""
        if self._thread is not None:
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run, daemon=True, name="jxlbatch-ticker")
        self._thread.start()

    def stop(self):
        """Stops the tick thread."""
        self._stop_event.set()
        if self._thread:
            self._thread.join(timeout=1.0)
            self._thread = None
