"""Workaround for encoder builds that cannot open non-ASCII paths on Windows.

Names the encoder cannot open are swapped for base64 names. An unsafe
directory is swapped for a per-worker scratch area. Everything is put back
once the process exits.
"""

import base64
import logging
import shutil
import sys
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator, Optional

SCRATCH_DIR_NAME = "jxl-batch-temp"
LATIN1_LIMIT = 0xFF


def is_unsafe(text: str) -> bool:
    """True when the text holds a character outside Latin-1."""
    return any(ord(ch) > LATIN1_LIMIT for ch in text)


def encode_name(stem: str) -> str:
    return base64.urlsafe_b64encode(stem.encode("utf-8")).decode("ascii")


def unique_path(candidate: Path) -> Path:
    """Appends an increasing number to the stem until the path is free."""
    stem = candidate.stem
    counter = 0
    while candidate.exists():
        candidate = candidate.with_name(f"{stem}{counter}{candidate.suffix}")
        counter += 1
    return candidate


@dataclass(frozen=True)
class SafePaths:
    input_path: Path
    output_path: Path


class PathSafetyAdapter:
    """Per-worker non-ASCII path workaround.

    Inactive unless enabled and running on Windows; ``force`` activates it on
    any platform.
    """

    def __init__(self, enabled: bool = False, scratch_root: Optional[Path] = None, force: bool = False):
        self.logger = logging.getLogger(__name__)
        self.active = enabled and (force or sys.platform == "win32")
        self.scratch_root = Path(scratch_root) if scratch_root else Path.cwd() / SCRATCH_DIR_NAME
        self.input_dir: Optional[Path] = None
        self.output_dir: Optional[Path] = None

    def open(self, tag: str) -> bool:
        """Creates this worker's scratch folders. False leaves the workaround off."""
        if not self.active:
            return False
        input_dir = self.scratch_root / "input" / tag
        output_dir = self.scratch_root / "output" / tag
        try:
            input_dir.mkdir(parents=True, exist_ok=True)
            output_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            self.logger.warning(f"Non-ASCII workaround disabled, cannot create scratch folders: {e}")
            return False
        self.input_dir = input_dir
        self.output_dir = output_dir
        return True

    def close(self):
        """Removes this worker's scratch folders."""
        for directory in (self.input_dir, self.output_dir):
            if directory is not None:
                shutil.rmtree(directory, ignore_errors=True)
        self.input_dir = None
        self.output_dir = None

    @contextmanager
    def safe_paths(self, input_path: Path, output_path: Path) -> Iterator[SafePaths]:
        """Yields paths the encoder can open and restores the originals on exit."""
        if not self.active or self.input_dir is None or self.output_dir is None:
            yield SafePaths(input_path, output_path)
            return

        name_unsafe = is_unsafe(input_path.stem)
        out_name_unsafe = is_unsafe(output_path.stem)
        in_dir_unsafe = is_unsafe(str(input_path.parent))
        out_dir_unsafe = is_unsafe(str(output_path.parent))
        if not (name_unsafe or out_name_unsafe or in_dir_unsafe or out_dir_unsafe):
            yield SafePaths(input_path, output_path)
            return

        safe_input_name = input_path.name
        if name_unsafe:
            safe_input_name = encode_name(input_path.stem) + input_path.suffix
        safe_output_name = output_path.name
        if name_unsafe or out_name_unsafe:
            safe_output_name = encode_name(output_path.stem) + output_path.suffix

        run_input = input_path
        renamed_input: Optional[Path] = None
        copied_input: Optional[Path] = None
        try:
            if in_dir_unsafe:
                copied_input = unique_path(self.input_dir / safe_input_name)
                shutil.copy2(input_path, copied_input)
                run_input = copied_input
            elif name_unsafe:
                renamed_input = input_path.with_name(safe_input_name)
                input_path.rename(renamed_input)
                run_input = renamed_input
        except OSError as e:
            self.logger.warning(f"Non-ASCII workaround: cannot stage {input_path}: {e}")
            copied_input = renamed_input = None
            run_input = input_path

        if out_dir_unsafe:
            run_output = unique_path(self.output_dir / safe_output_name)
        else:
            run_output = output_path.with_name(safe_output_name)

        try:
            yield SafePaths(run_input, run_output)
        finally:
            self._restore(input_path, output_path, run_output, renamed_input, copied_input, out_dir_unsafe)

    def _restore(self, input_path: Path, output_path: Path, run_output: Path,
                 renamed_input: Optional[Path], copied_input: Optional[Path], out_dir_unsafe: bool):
        try:
            if renamed_input is not None and renamed_input.exists():
                renamed_input.rename(input_path)
        except OSError as e:
            self.logger.error(f"Non-ASCII workaround: cannot restore {input_path} from {renamed_input}: {e}")

        try:
            if run_output != output_path and run_output.exists():
                if out_dir_unsafe:
                    shutil.copy2(run_output, output_path)
                    run_output.unlink()
                else:
                    run_output.replace(output_path)
        except OSError as e:
            self.logger.error(f"Non-ASCII workaround: cannot move {run_output} to {output_path}: {e}")

        if copied_input is not None:
            try:
                copied_input.unlink()
            except OSError as e:
                self.logger.debug(f"Non-ASCII workaround: cannot remove {copied_input}: {e}")
