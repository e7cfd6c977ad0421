"""
Document Storage — Named JSON Snapshots on Disk

THIS MODULE DEFINES NO COMMANDS.

Each document is one JSON file under the data directory, read and written
as a whole. Missing or unreadable documents read as None; write failures
raise StorageError so callers can report that a change was not saved.
Writes are serialized by a single lock and replace the file atomically.
"""

from __future__ import annotations

import json
import logging
import os
import threading
from pathlib import Path
from typing import Any, Optional, Union

logger = logging.getLogger(__name__)


class StorageError(RuntimeError):
    """Raised when a document snapshot could not be written."""


class JsonDocumentStore:
    def __init__(self, directory: Union[str, Path]) -> None:
        self._directory = Path(directory)
        self._write_lock = threading.Lock()

    @property
    def directory(self) -> Path:
        return self._directory

    def path_for(self, name: str) -> Path:
        return self._directory / f"{name}.json"

    def read_object(self, name: str) -> Optional[Any]:
        path = self.path_for(name)
        if not path.exists():
            return None
        try:
            with open(path, "r", encoding="utf-8") as handle:
                return json.load(handle)
        except (OSError, ValueError):
            logger.warning("Unreadable document %s; starting empty.", path, exc_info=True)
            return None

    def write_object(self, name: str, data: Any) -> None:
        path = self.path_for(name)
        tmp_path = path.with_suffix(".json.tmp")
        with self._write_lock:
            try:
                self._directory.mkdir(parents=True, exist_ok=True)
                with open(tmp_path, "w", encoding="utf-8") as handle:
                    json.dump(data, handle, indent=2, sort_keys=True)
                os.replace(tmp_path, path)
            except (OSError, TypeError, ValueError) as exc:
                raise StorageError(f"Could not write document {name!r} to {path}") from exc
