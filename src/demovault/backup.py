"""BackupStore — raw byte copies of files, scoped to one version each."""

from __future__ import annotations

import logging
import os
import shutil
import threading
from pathlib import Path
from typing import TYPE_CHECKING

from .exceptions import PathTraversalError
from .types import BackupRecord
from .utils import sanitize_relative_path

if TYPE_CHECKING:
    from .utils import ProjectPaths

logger = logging.getLogger(__name__)


class BackupStore:
    """Per-version backup storage under ``backup_root/<version_id>/``.

    A file at root-relative path ``a/b.txt`` is kept at
    ``backup_root/<version_id>/<sanitized a/b.txt>``. Every version owns its
    own directory, so evicting one version never touches another's bytes.
    """

    def __init__(self, paths: ProjectPaths, backup_root: Path | str) -> None:
        self.paths = paths
        self.backup_root = Path(backup_root)
        self._owners: dict[Path, str] = {}
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    # Layout
    # ------------------------------------------------------------------

    def version_dir(self, version_id: str) -> Path:
        """Backup directory of *version_id*; rejects ids that are not plain names."""
        if not version_id or "/" in version_id or "\\" in version_id or version_id in (".", ".."):
            msg = f"Invalid version id for backup storage: {version_id!r}"
            raise PathTraversalError(msg)
        return self.backup_root / version_id

    def backup_path_for(self, relative_path: str, version_id: str) -> Path:
        """Where the bytes of *relative_path* live for *version_id*."""
        safe = sanitize_relative_path(relative_path).lstrip("/")
        return self._inside(self.version_dir(version_id), safe, relative_path)

    def _inside(self, version_dir: Path, stored: str, label: str) -> Path:
        candidate = Path(os.path.normpath(version_dir / stored))
        try:
            candidate.relative_to(version_dir)
        except ValueError:
            msg = f"Backup path escapes version directory: {label}"
            raise PathTraversalError(msg) from None
        return candidate

    def has_backup(self, version_id: str) -> bool:
        return self.version_dir(version_id).is_dir()

    def list_backup_versions(self) -> list[str]:
        """Version ids that have a backup directory on disk."""
        if not self.backup_root.is_dir():
            return []
        return sorted(p.name for p in self.backup_root.iterdir() if p.is_dir())

    # ------------------------------------------------------------------
    # Backup
    # ------------------------------------------------------------------

    def backup_file(
        self, path: str | os.PathLike[str], version_id: str
    ) -> BackupRecord | None:
        """Copy one regular file into *version_id*'s backup directory.

        Returns ``None`` when the source is missing or not a regular file.
        Raises ``PathTraversalError`` for paths outside the project root.
        """
        source = self.paths.resolve(path)
        if not source.is_file():
            return None

        relative_path = self.paths.relative(source)
        target = self._claim(self.backup_path_for(relative_path, version_id), relative_path)
        target.parent.mkdir(parents=True, exist_ok=True)
        shutil.copyfile(source, target)
        logger.debug("Backed up %s for version %s", relative_path, version_id)

        return BackupRecord(
            original_absolute_path=str(source),
            relative_path=relative_path,
            backup_absolute_path=str(target),
            backup_relative_path=target.relative_to(self.version_dir(version_id)).as_posix(),
        )

    def backup_tree(self, path: str | os.PathLike[str], version_id: str) -> list[BackupRecord]:
        """Back up every regular file under a directory, best effort."""
        directory = self.paths.resolve(path)
        records: list[BackupRecord] = []
        if not directory.is_dir():
            return records

        for dirpath, dirnames, filenames in os.walk(directory, onerror=_log_walk_error):
            current = Path(dirpath)
            if self._is_backup_dir(current):
                dirnames[:] = []
                continue
            dirnames.sort()
            for name in sorted(filenames):
                file_path = current / name
                if file_path.is_symlink():
                    continue
                try:
                    record = self.backup_file(file_path, version_id)
                except OSError:
                    logger.warning(
                        "Failed to back up %s for version %s",
                        file_path,
                        version_id,
                        exc_info=True,
                    )
                    continue
                if record is not None:
                    records.append(record)
        return records

    def _claim(self, target: Path, relative_path: str) -> Path:
        """Pick a backup path not already holding a different file.

        Sanitising can map two names onto one (``演.txt`` and ``示.txt`` both
        become ``_.txt``); the later file gets a ``~N`` suffix instead of
        overwriting the earlier one's bytes.
        """
        with self._lock:
            candidate = target
            n = 0
            while True:
                owner = self._owners.get(candidate)
                if owner is None or owner == relative_path:
                    self._owners[candidate] = relative_path
                    return candidate
                n += 1
                candidate = target.with_name(f"{target.name}~{n}")

    def _is_backup_dir(self, path: Path) -> bool:
        try:
            path.resolve().relative_to(self.backup_root.resolve())
        except ValueError:
            return False
        return True

    # ------------------------------------------------------------------
    # Restore
    # ------------------------------------------------------------------

    def destination_for(self, record: BackupRecord) -> Path:
        """Restore target: original relative location if kept, else absolute path."""
        if record.original_relative_path:
            return self.paths.resolve(record.original_relative_path)
        return self.paths.resolve(record.original_absolute_path)

    def stored_path(self, record: BackupRecord, version_id: str) -> Path:
        """Location of *record*'s bytes inside *version_id*'s backup directory.

        The recorded backup path is used when it lies under that directory.
        Otherwise (the backup root moved) the path inside the version
        directory is used, falling back to recomputing it from the relative
        path for records that predate it.
        """
        version_dir = self.version_dir(version_id)
        recorded = Path(os.path.normpath(record.backup_absolute_path))
        try:
            recorded.relative_to(version_dir)
        except ValueError:
            if record.backup_relative_path:
                return self._inside(
                    version_dir, record.backup_relative_path, record.relative_path
                )
            return self.backup_path_for(record.relative_path, version_id)
        return recorded

    def restore_file(
        self,
        record: BackupRecord,
        version_id: str,
        destination: str | os.PathLike[str] | None = None,
    ) -> Path:
        """Copy backed-up bytes back into the tree. Return the destination.

        Raises ``FileNotFoundError`` when the backup no longer exists (e.g.
        the version was evicted) and ``OSError`` on copy failure.
        """
        target = (
            self.paths.resolve(destination)
            if destination is not None
            else self.destination_for(record)
        )
        source = self.stored_path(record, version_id)
        if not source.is_file():
            msg = f"Backup missing for {record.relative_path} in version {version_id}"
            raise FileNotFoundError(msg)

        target.parent.mkdir(parents=True, exist_ok=True)
        shutil.copyfile(source, target)
        logger.debug("Restored %s from version %s", target, version_id)
        return target

    # ------------------------------------------------------------------
    # Eviction
    # ------------------------------------------------------------------

    def evict(self, version_id: str) -> bool:
        """Remove *version_id*'s backup directory. Logs failures, never raises."""
        try:
            version_dir = self.version_dir(version_id)
            with self._lock:
                for owned in [p for p in self._owners if version_dir in p.parents]:
                    del self._owners[owned]
            if not version_dir.exists():
                return False
            shutil.rmtree(version_dir)
        except OSError:
            logger.warning("Failed to evict backups of version %s", version_id, exc_info=True)
            return False
        logger.info("Evicted backups of version %s", version_id)
        return True


def _log_walk_error(error: OSError) -> None:
    logger.warning("Skipping unreadable path during backup: %s", error)
