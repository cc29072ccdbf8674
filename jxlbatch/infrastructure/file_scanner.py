import os
from pathlib import Path
from typing import Generator, Iterable, List, Optional

class FileScanner:
    """Scans a directory (optionally recursively) for convertible images."""

    def __init__(self, extensions: List[str], recursive: bool = False, exclude_dirs: Optional[Iterable[Path]] = None):
        self.extensions = [(ext if ext.startswith(".") else f".{ext}").lower() for ext in extensions]
        self.recursive = recursive
        self.exclude_dirs = {Path(d).resolve() for d in (exclude_dirs or [])}

    def _is_excluded(self, path: Path) -> bool:
        return path.resolve() in self.exclude_dirs

    def scan(self, root_dir: Path) -> Generator[Path, None, None]:
        """Scans the directory and yields absolute image paths in sorted order."""
        for root, dirs, files in os.walk(str(root_dir)):
            root_path = Path(root)

            # The output folder may live inside the input folder
            if self._is_excluded(root_path):
                dirs[:] = []
                continue

            if self.recursive:
                dirs[:] = sorted(d for d in dirs if not self._is_excluded(root_path / d))
            else:
                dirs[:] = []
            files.sort()

            for file_name in files:
                file_path = root_path / file_name
                if file_path.suffix.lower() not in self.extensions:
                    continue
                if not file_path.is_file():
                    continue
                yield file_path.absolute()


def read_file_list(list_path: Path) -> List[Path]:
    """Reads an explicit input list: one path per line, blanks and '#' comments ignored."""
    files: List[Path] = []
    with open(list_path, "r", encoding="utf-8") as f:
        for line in f:
            entry = line.strip()
            if not entry or entry.startswith("#"):
                continue
            files.append(Path(entry).expanduser().absolute())
    return files
