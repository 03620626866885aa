"""CustomNameStore — display names for demo directories."""

from __future__ import annotations

import json
import logging
import os
import threading
from pathlib import Path

from .exceptions import StorageError
from .utils import atomic_write_json

logger = logging.getLogger(__name__)


class CustomNameStore:
    """JSON mapping from resolved directory path to a display name.

    Keys are absolute, resolved paths so a prototype nested anywhere in the
    tree can carry its own name. The whole mapping is captured in every
    tree snapshot and written back wholesale by a restore.
    """

    def __init__(self, path: Path | str) -> None:
        self.path = Path(path)
        self._lock = threading.Lock()

    def load(self) -> dict[str, str]:
        """Read the mapping; a missing or unreadable file yields ``{}``."""
        if not self.path.is_file():
            return {}
        try:
            with self.path.open(encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError):
            logger.warning("Cannot read custom names %s", self.path, exc_info=True)
            return {}
        if not isinstance(data, dict):
            return {}
        return {str(k): str(v) for k, v in data.items()}

    def save(self, names: dict[str, str]) -> None:
        """Replace the mapping on disk. Raises ``StorageError`` on failure."""
        with self._lock:
            try:
                atomic_write_json(self.path, dict(names), indent=2)
            except OSError as e:
                msg = f"Failed to save custom names: {e}"
                raise StorageError(msg) from e

    def set(self, key: str, display_name: str) -> dict[str, str]:
        """Set one display name and persist. Return the updated mapping."""
        names = self.load()
        names[key] = display_name
        self.save(names)
        return names

    def rekey(self, old_key: str, new_key: str) -> int:
        """Move display names after a directory was renamed.

        Names of directories nested under *old_key* move along with it.
        Returns how many names were moved.
        """
        names = self.load()
        moved: dict[str, str] = {}
        for key in list(names):
            if key == old_key:
                moved[new_key] = names.pop(key)
            elif key.startswith(old_key + os.sep):
                moved[new_key + key[len(old_key) :]] = names.pop(key)
        if not moved:
            return 0
        names.update(moved)
        self.save(names)
        return len(moved)

    def display_name_for(
        self,
        path: Path | str,
        default: str,
        names: dict[str, str] | None = None,
    ) -> str:
        """Display name for *path*, falling back to *default*."""
        if names is None:
            names = self.load()
        resolved = str(Path(path).resolve())
        return names.get(resolved) or names.get(str(path)) or default
