# /event-training/src/event_training/core/storage.py

"""
Local storage disk used to resolve dataset files and write artifacts.

All relative paths are resolved against a single root directory, so the
paths recorded in artifacts (``models/<id>/<version>.json``) stay portable.
"""

import logging
from pathlib import Path
from typing import List, Union


class LocalDisk:
    """Minimal storage abstraction rooted at a local directory."""

    def __init__(self, root: Union[str, Path]):
        self.root = Path(root)
        self.logger = logging.getLogger(__name__)

    def path(self, relative_path: Union[str, Path]) -> Path:
        """Absolute filesystem path for a storage-relative path."""
        candidate = Path(relative_path)
        if candidate.is_absolute():
            return candidate
        return self.root / candidate

    def exists(self, relative_path: Union[str, Path]) -> bool:
        return self.path(relative_path).exists()

    def make_directory(self, relative_path: Union[str, Path]) -> Path:
        directory = self.path(relative_path)
        directory.mkdir(parents=True, exist_ok=True)
        return directory

    def put(self, relative_path: Union[str, Path], contents: str) -> Path:
        target = self.path(relative_path)
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(contents, encoding="utf-8")
        self.logger.debug("storage.file_written", extra={
            "path": str(target),
            "size_bytes": len(contents)
        })
        return target

    def get(self, relative_path: Union[str, Path]) -> str:
        return self.path(relative_path).read_text(encoding="utf-8")

    def files(self, relative_directory: Union[str, Path], pattern: str = "*") -> List[str]:
        """Storage-relative paths of files in a directory, sorted by name."""
        directory = self.path(relative_directory)
        if not directory.is_dir():
            return []
        return sorted(
            str(Path(relative_directory) / entry.name)
            for entry in directory.glob(pattern)
            if entry.is_file()
        )
