import logging
from pathlib import Path
from typing import Iterable

class HousekeepingService:
    """Service for cleaning up what failed conversions leave behind."""

    def __init__(self):
        self.logger = logging.getLogger(__name__)

    def remove_empty_outputs(self, outputs: Iterable[Path]) -> int:
        """Removes the given output files that ended up zero-size. Returns how many were removed.

        Only destinations the encoder was started for this run are passed in;
        anything else in the output tree is left alone.
        """
        removed = 0
        for path in outputs:
            path = Path(path)
            try:
                if path.is_file() and path.stat().st_size == 0:
                    path.unlink()
                    removed += 1
            except OSError as e:
                self.logger.debug(f"Housekeeping: cannot remove {path}: {e}")
        if removed:
            self.logger.info(f"Housekeeping: removed {removed} empty output file(s)")
        return removed
