"""SnapshotBuilder — recursive capture of directory and file metadata."""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import TYPE_CHECKING

from .types import DirectoryNode, FileRecord, SubtreeSnapshot, TreeSnapshot
from .utils import INDEX_FILES, IgnoreRules, find_index_file, isoformat_mtime, utc_now_iso

if TYPE_CHECKING:
    from collections.abc import Callable

    from .names import CustomNameStore
    from .utils import ProjectPaths

logger = logging.getLogger(__name__)


class SnapshotBuilder:
    """Captures the project tree as ``DirectoryNode`` records.

    Only directories are tree nodes; regular files directly under the
    project root are not part of a snapshot. Entries rejected by the
    ignore predicate, symlinks, and anything resolving outside the root
    are skipped. An unreadable directory is logged and left out without
    aborting the rest of the walk.
    """

    def __init__(
        self,
        paths: ProjectPaths,
        names: CustomNameStore,
        *,
        ignore: Callable[[str], bool] | None = None,
        index_files: tuple[str, ...] = INDEX_FILES,
    ) -> None:
        self.paths = paths
        self.names = names
        self.ignore = ignore or IgnoreRules()
        self.index_files = index_files

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def capture_full_snapshot(self, version_id: str | None = None) -> TreeSnapshot:
        """Capture every directory under the root plus the display names."""
        root = self.paths.resolved_root
        directories: list[DirectoryNode] = []
        for entry in self._entries(root):
            if entry.is_dir(follow_symlinks=False):
                node = self._scan(Path(entry.path))
                if node is not None:
                    directories.append(node)

        return TreeSnapshot(
            directories=directories,
            custom_names=self.names.load(),
            timestamp=utc_now_iso(),
            version_id=version_id,
        )

    def capture_subtree(self, path: str | os.PathLike[str]) -> SubtreeSnapshot | None:
        """Capture a single directory, typically right before deleting it.

        Raises ``PathTraversalError`` if *path* is outside the root.
        Returns ``None`` if *path* is not an existing directory.
        """
        resolved = self.paths.resolve(path)
        if not resolved.is_dir() or resolved == self.paths.resolved_root:
            return None
        node = self._scan(resolved)
        if node is None:
            return None
        return SubtreeSnapshot(
            path=str(resolved),
            relative_path=node.relative_path,
            name=resolved.name,
            structure=node,
        )

    # ------------------------------------------------------------------
    # Walk
    # ------------------------------------------------------------------

    def _entries(self, directory: Path) -> list[os.DirEntry[str]]:
        with os.scandir(directory) as it:
            entries = [e for e in it if not self.ignore(e.name) and not e.is_symlink()]
        entries.sort(key=lambda e: e.name)
        return entries

    def _scan(self, directory: Path) -> DirectoryNode | None:
        try:
            relative_path = self.paths.relative(directory)
            entries = self._entries(directory)
            modified_at = isoformat_mtime(directory.stat().st_mtime)
        except OSError:
            logger.warning("Skipping unreadable directory %s", directory, exc_info=True)
            return None

        index_file = find_index_file(directory, self.index_files)
        node = DirectoryNode(
            name=directory.name,
            absolute_path=str(directory),
            relative_path=relative_path,
            has_index=index_file is not None,
            index_file=index_file,
            modified_at=modified_at,
        )

        for entry in entries:
            entry_path = Path(entry.path)
            try:
                if entry.is_dir(follow_symlinks=False):
                    sub = self._scan(entry_path)
                    if sub is not None:
                        node.subdirectories.append(sub)
                elif entry.is_file(follow_symlinks=False):
                    st = entry.stat(follow_symlinks=False)
                    node.files.append(
                        FileRecord(
                            name=entry.name,
                            absolute_path=str(entry_path),
                            relative_path=f"{relative_path}/{entry.name}",
                            size=st.st_size,
                            modified_at=isoformat_mtime(st.st_mtime),
                        )
                    )
            except OSError:
                logger.warning("Skipping unreadable entry %s", entry_path, exc_info=True)
        return node
