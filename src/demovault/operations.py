"""DirectoryOperations — the mutating actions that feed the version ledger."""

from __future__ import annotations

import logging
import shutil
from pathlib import Path, PurePosixPath
from typing import IO, TYPE_CHECKING

from .exceptions import VaultError
from .types import OperationResult, UploadedFile, VersionAction
from .utils import atomic_write_bytes, validate_name

if TYPE_CHECKING:
    import os
    from collections.abc import Iterable

    from .browse import DirectoryBrowser
    from .ledger import VersionLedger
    from .names import CustomNameStore
    from .snapshot import SnapshotBuilder
    from .utils import ProjectPaths

logger = logging.getLogger(__name__)

CREATE_MODES = ("child", "sibling")

UploadSource = bytes | IO[bytes]


class DirectoryOperations:
    """Create, rename, delete and upload, each recorded as one version.

    Every method validates its input, mutates the disk, invalidates the
    browser cache and records a version. Failures come back as an
    ``OperationResult`` with ``success=False``; nothing here raises for
    bad input or filesystem errors.
    """

    def __init__(
        self,
        paths: ProjectPaths,
        ledger: VersionLedger,
        names: CustomNameStore,
        snapshots: SnapshotBuilder,
        browser: DirectoryBrowser,
    ) -> None:
        self.paths = paths
        self.ledger = ledger
        self.names = names
        self.snapshots = snapshots
        self.browser = browser

    # ------------------------------------------------------------------
    # Create / rename
    # ------------------------------------------------------------------

    def create_directory(
        self,
        parent: str | os.PathLike[str] | None,
        name: str,
        mode: str = "child",
    ) -> OperationResult:
        """Create *name* inside *parent* ("child") or next to it ("sibling").

        An empty *parent* means the project root.
        """
        valid, error = validate_name(name.strip() if name else name)
        if not valid:
            return OperationResult(success=False, message=error)
        if mode not in CREATE_MODES:
            return OperationResult(success=False, message=f"Unknown create mode: {mode}")
        name = name.strip()

        try:
            base = self.paths.resolve(parent) if parent else self.paths.resolved_root
            if mode == "sibling" and base != self.paths.resolved_root:
                base = base.parent
            target = self.paths.resolve(base / name)
        except PermissionError as e:
            return OperationResult(success=False, message=str(e))

        if target.exists():
            return OperationResult(
                success=False, message=f"Directory already exists: {self._rel(target)}"
            )

        try:
            target.mkdir(parents=True)
        except OSError as e:
            return OperationResult(success=False, message=f"Failed to create directory: {e}")
        self.browser.invalidate(target)
        logger.debug("Created directory %s", target)

        return self._record(
            VersionAction.CREATE,
            {"type": "directory", "path": str(target), "name": name},
            OperationResult(
                success=True,
                message=f"Created directory: {self._rel(target)}",
                path=str(target),
            ),
        )

    def rename_directory(
        self, path: str | os.PathLike[str], new_name: str
    ) -> OperationResult:
        """Rename a directory in place; its display names follow it."""
        valid, error = validate_name(new_name.strip() if new_name else new_name)
        if not valid:
            return OperationResult(success=False, message=error)
        new_name = new_name.strip()

        try:
            source = self._existing_directory(path)
            target = self.paths.resolve(source.parent / new_name)
        except (PermissionError, FileNotFoundError) as e:
            return OperationResult(success=False, message=str(e))

        if target.exists():
            return OperationResult(
                success=False, message=f"Target already exists: {self._rel(target)}"
            )

        try:
            source.rename(target)
        except OSError as e:
            return OperationResult(success=False, message=f"Failed to rename directory: {e}")
        try:
            self.names.rekey(str(source), str(target))
        except VaultError:
            logger.warning("Display names not moved for %s", source, exc_info=True)
        self.browser.invalidate(source)
        self.browser.invalidate(target)
        logger.debug("Renamed directory %s -> %s", source, target)

        return self._record(
            VersionAction.RENAME,
            {
                "type": "directory",
                "old_path": str(source),
                "old_name": source.name,
                "new_path": str(target),
                "new_name": new_name,
            },
            OperationResult(
                success=True,
                message=f"Renamed {self._rel(source)} to {self._rel(target)}",
                path=str(target),
                old_path=str(source),
            ),
        )

    # ------------------------------------------------------------------
    # Delete
    # ------------------------------------------------------------------

    def delete_directory(
        self, path: str | os.PathLike[str], *, light: bool = False
    ) -> OperationResult:
        """Delete a directory recursively, recording the deletion.

        By default the directory is snapshotted and backed up before it is
        removed, so the version can be restored. With ``light=True`` only a
        structural snapshot is kept and the version is not restorable.
        """
        try:
            directory = self._existing_directory(path)
        except (PermissionError, FileNotFoundError) as e:
            return OperationResult(success=False, message=str(e))

        details = {"type": "directory", "path": str(directory), "name": directory.name}
        result = OperationResult(
            success=True,
            message=f"Deleted directory: {self._rel(directory)}",
            path=str(directory),
        )

        if not light:
            # Backups must be taken while the files still exist
            result = self._record(VersionAction.DELETE, details, result)
            if not result.success:
                return result
            removed = self._remove(directory)
            if removed is not None:
                return removed
            return result

        try:
            subtree = self.snapshots.capture_subtree(directory)
        except OSError:
            logger.warning("Cannot snapshot %s before delete", directory, exc_info=True)
            subtree = None
        removed = self._remove(directory)
        if removed is not None:
            return removed
        try:
            version = self.ledger.record_delete(details, subtree)
        except VaultError as e:
            return OperationResult(
                success=False,
                message=f"Deleted {self._rel(directory)} but version not recorded: {e}",
                path=str(directory),
            )
        result.version_id = version.id
        return result

    def _remove(self, directory: Path) -> OperationResult | None:
        try:
            shutil.rmtree(directory)
        except OSError as e:
            logger.warning("Failed to delete %s", directory, exc_info=True)
            return OperationResult(
                success=False,
                message=f"Failed to delete directory: {e}",
                path=str(directory),
            )
        finally:
            self.browser.invalidate(directory)
        logger.debug("Deleted directory %s", directory)
        return None

    # ------------------------------------------------------------------
    # Names
    # ------------------------------------------------------------------

    def set_display_name(
        self, path: str | os.PathLike[str], display_name: str | None
    ) -> OperationResult:
        """Attach a display name to a directory (its own name when empty)."""
        try:
            directory = self._existing_directory(path)
        except (PermissionError, FileNotFoundError) as e:
            return OperationResult(success=False, message=str(e))

        name = (display_name or "").strip() or directory.name
        try:
            self.names.set(str(directory), name)
        except VaultError as e:
            return OperationResult(success=False, message=str(e))
        return OperationResult(
            success=True, message=f"Display name set: {name}", path=str(directory)
        )

    # ------------------------------------------------------------------
    # Upload
    # ------------------------------------------------------------------

    def upload_files(
        self,
        target: str | os.PathLike[str] | None,
        files: Iterable[tuple[str, UploadSource]],
        *,
        reupload: bool = False,
        display_name: str | None = None,
    ) -> OperationResult:
        """Write uploaded files under *target* and record the upload.

        Each item is ``(relative_name, content)``; ``relative_name`` may
        contain sub-directories (``"css/site.css"``), which are created.
        A plain upload never overwrites: a clashing name gets a numeric
        suffix. A reupload replaces files in place.
        """
        try:
            target_dir = self.paths.resolve(target) if target else self.paths.resolved_root
        except PermissionError as e:
            return OperationResult(success=False, message=str(e))
        if target_dir.exists() and not target_dir.is_dir():
            return OperationResult(
                success=False, message=f"Not a directory: {self._rel(target_dir)}"
            )

        uploaded: list[UploadedFile] = []
        for relative_name, content in files:
            try:
                uploaded.append(self._write_upload(target_dir, relative_name, content, reupload))
            except (ValueError, OSError) as e:
                logger.warning("Skipping uploaded file %s: %s", relative_name, e)
        if not uploaded:
            return OperationResult(success=False, message="No files uploaded")
        self.browser.invalidate(target_dir)
        for item in uploaded:
            self.browser.invalidate(Path(item.path).parent)

        names = self.names.load()
        label = display_name or self.names.display_name_for(target_dir, target_dir.name, names)
        return self._record(
            VersionAction.REUPLOAD if reupload else VersionAction.UPLOAD,
            {
                "type": "files",
                "target_path": str(target_dir),
                "folder_name": target_dir.name,
                "display_name": label,
                "file_count": len(uploaded),
                "is_reupload": reupload,
                "files": uploaded,
            },
            OperationResult(
                success=True,
                message=f"Uploaded {len(uploaded)} files",
                path=str(target_dir),
                files=uploaded,
            ),
        )

    def _write_upload(
        self,
        target_dir: Path,
        relative_name: str,
        content: UploadSource,
        reupload: bool,
    ) -> UploadedFile:
        parts = PurePosixPath(relative_name.replace("\\", "/").lstrip("/")).parts
        if not parts:
            raise ValueError("empty file name")
        for part in parts:
            valid, error = validate_name(part)
            if not valid:
                raise ValueError(error)

        intended = self.paths.resolve(target_dir.joinpath(*parts))
        destination = intended if reupload else _free_name(intended)
        data = content if isinstance(content, bytes) else content.read()
        atomic_write_bytes(destination, data)
        logger.debug("Uploaded %s", destination)

        requested = self.paths.relative(intended)
        landed = self.paths.relative(destination)
        return UploadedFile(
            path=str(destination),
            original_name=landed,
            size=len(data),
            requested_name=requested if requested != landed else None,
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _existing_directory(self, path: str | os.PathLike[str]) -> Path:
        directory = self.paths.resolve(path)
        if not directory.is_dir():
            msg = f"Directory not found: {path}"
            raise FileNotFoundError(msg)
        if directory == self.paths.resolved_root:
            msg = "Operation not permitted on the project root"
            raise PermissionError(msg)
        return directory

    def _record(
        self,
        action: VersionAction,
        details: dict[str, object],
        result: OperationResult,
    ) -> OperationResult:
        try:
            version = self.ledger.record_change(action, details)
        except VaultError as e:
            logger.warning("Version not recorded for %s", action.value, exc_info=True)
            result.success = False
            result.message = f"{result.message} (version not recorded: {e})"
            return result
        result.version_id = version.id
        return result

    def _rel(self, path: Path) -> str:
        return self.paths.relative(path) or "/"


def _free_name(path: Path) -> Path:
    """*path*, or ``stem_N.suffix`` for the first N that does not exist yet."""
    if not path.exists():
        return path
    n = 1
    while True:
        candidate = path.with_name(f"{path.stem}_{n}{path.suffix}")
        if not candidate.exists():
            return candidate
        n += 1
