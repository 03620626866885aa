"""DirectoryBrowser — prototype detection and cached directory listings."""

from __future__ import annotations

import logging
import os
from typing import TYPE_CHECKING, Any

from .types import FileEntry, FolderEntry
from .utils import INDEX_FILES, IgnoreRules, find_index_file, isoformat_mtime

if TYPE_CHECKING:
    from collections.abc import Callable
    from pathlib import Path

    from .cache import MetadataCache
    from .names import CustomNameStore
    from .utils import ProjectPaths

logger = logging.getLogger(__name__)

_MISSING = object()


class DirectoryBrowser:
    """Read-only views of the project tree for a browsing UI.

    A directory is a *prototype* when it holds one of the landing files in
    ``index_files``. Index lookups and child listings are memoised in the
    metadata cache under the root-relative path, kinds ``"index"`` and
    ``"children"``. Display names are applied on every read, never cached.
    """

    def __init__(
        self,
        paths: ProjectPaths,
        names: CustomNameStore,
        cache: MetadataCache,
        *,
        ignore: Callable[[str], bool] | None = None,
        index_files: tuple[str, ...] = INDEX_FILES,
    ) -> None:
        self.paths = paths
        self.names = names
        self.cache = cache
        self.ignore = ignore or IgnoreRules()
        self.index_files = index_files

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def find_index_file(self, directory: str | os.PathLike[str]) -> str | None:
        """Name of *directory*'s landing file, or ``None``."""
        resolved = self.paths.resolve(directory)
        return self._cached("index", self.paths.relative(resolved), lambda: self._index(resolved))

    def check(self, directory: str | os.PathLike[str]) -> FolderEntry:
        """Prototype status of a single directory.

        Raises ``NotADirectoryError`` when *directory* is not a directory.
        """
        resolved = self.paths.resolve(directory)
        if not resolved.is_dir():
            msg = f"Not a directory: {directory}"
            raise NotADirectoryError(msg)
        index_file = self.find_index_file(resolved)
        modified_at = isoformat_mtime(resolved.stat().st_mtime)
        return self._folder_entry(
            {
                "name": resolved.name,
                "path": str(resolved),
                "relative_path": self.paths.relative(resolved),
                "index_file": index_file,
                "modified_at": modified_at,
            },
            self.names.load(),
        )

    def list_folders(self) -> list[FolderEntry]:
        """Top-level directories, most recently modified first."""
        folders = self.list_subdirectories(self.paths.resolved_root)
        folders.sort(key=lambda f: f.modified_at or "", reverse=True)
        return folders

    def list_subdirectories(self, directory: str | os.PathLike[str]) -> list[FolderEntry]:
        """Immediate child directories of *directory*, by name.

        A missing directory lists as empty.
        """
        resolved = self.paths.resolve(directory)
        children = self._children(resolved)
        names = self.names.load()
        return [self._folder_entry(row, names) for row in children["directories"]]

    def list_files(self, directory: str | os.PathLike[str]) -> list[FileEntry]:
        """Immediate regular files of *directory*, by name."""
        resolved = self.paths.resolve(directory)
        return [FileEntry(**row) for row in self._children(resolved)["files"]]

    def invalidate(self, path: str | os.PathLike[str]) -> None:
        """Forget cached facts about *path* and its parent."""
        self.cache.invalidate(self.paths.relative(path))

    # ------------------------------------------------------------------
    # Scanning
    # ------------------------------------------------------------------

    def _cached(self, kind: str, key: str, compute: Callable[[], Any]) -> Any:
        value = self.cache.get(kind, key, _MISSING)
        if value is _MISSING:
            value = compute()
            self.cache.set(kind, key, value)
            self.cache.persist()
        return value

    def _index(self, directory: Path) -> str | None:
        return find_index_file(directory, self.index_files)

    def _children(self, directory: Path) -> dict[str, list[dict[str, Any]]]:
        key = self.paths.relative(directory)
        return self._cached("children", key, lambda: self._scan_children(directory))

    def _scan_children(self, directory: Path) -> dict[str, list[dict[str, Any]]]:
        listing: dict[str, list[dict[str, Any]]] = {"directories": [], "files": []}
        if not directory.is_dir():
            return listing
        try:
            with os.scandir(directory) as it:
                entries = sorted(
                    (e for e in it if not self.ignore(e.name)), key=lambda e: e.name
                )
        except OSError:
            logger.warning("Cannot list %s", directory, exc_info=True)
            return listing

        for entry in entries:
            try:
                if entry.is_dir():
                    child = directory / entry.name
                    relative_path = self.paths.relative(child)
                    index_file = self.cache.get_or_compute(
                        "index", relative_path, lambda child=child: self._index(child)
                    )
                    listing["directories"].append(
                        {
                            "name": entry.name,
                            "path": str(child),
                            "relative_path": relative_path,
                            "index_file": index_file,
                            "modified_at": isoformat_mtime(entry.stat().st_mtime),
                        }
                    )
                elif entry.is_file():
                    st = entry.stat()
                    listing["files"].append(
                        {
                            "name": entry.name,
                            "path": str(directory / entry.name),
                            "size": st.st_size,
                            "modified_at": isoformat_mtime(st.st_mtime),
                        }
                    )
            except OSError:
                logger.warning("Skipping unreadable entry %s", entry.path, exc_info=True)
        return listing

    def _folder_entry(self, row: dict[str, Any], names: dict[str, str]) -> FolderEntry:
        index_file = row["index_file"]
        url = None
        if index_file:
            prefix = row["relative_path"]
            url = f"/{prefix}/{index_file}" if prefix else f"/{index_file}"
        return FolderEntry(
            name=row["name"],
            path=row["path"],
            display_name=self.names.display_name_for(row["path"], row["name"], names),
            has_index=index_file is not None,
            index_file=url,
            modified_at=row["modified_at"],
        )
