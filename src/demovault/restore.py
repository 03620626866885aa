"""RestoreEngine — reconcile the live tree to a recorded version."""

from __future__ import annotations

import filecmp
import logging
import shutil
from typing import TYPE_CHECKING

from .exceptions import InvalidVersionStateError, StorageError
from .types import RestoreOutcome, VersionAction

if TYPE_CHECKING:
    from pathlib import Path

    from .backup import BackupStore
    from .cache import MetadataCache
    from .ledger import VersionLedger
    from .names import CustomNameStore
    from .snapshot import SnapshotBuilder
    from .types import BackupRecord, DirectoryNode, SubtreeSnapshot, TreeSnapshot, Version
    from .utils import ProjectPaths

logger = logging.getLogger(__name__)


class RestoreEngine:
    """Diffs a historical snapshot against the live tree and applies the difference.

    Restores are best effort and not transactional: each directory or file
    is handled on its own, failures are collected in ``errors`` and the
    remaining work continues. Only the target version's own backups are
    used as a content source; files it never backed up are left as they are.
    """

    def __init__(
        self,
        ledger: VersionLedger,
        snapshots: SnapshotBuilder,
        backups: BackupStore,
        paths: ProjectPaths,
        names: CustomNameStore,
        *,
        cache: MetadataCache | None = None,
    ) -> None:
        self.ledger = ledger
        self.snapshots = snapshots
        self.backups = backups
        self.paths = paths
        self.names = names
        self._cache = cache

    def restore(self, version_id: str) -> RestoreOutcome:
        """Bring the live tree back to *version_id*'s snapshot.

        Raises ``VersionNotFoundError`` for an unknown id and
        ``InvalidVersionStateError`` for a version without a tree snapshot,
        both before touching the filesystem. The restore itself is recorded
        as a new ``restore`` version.
        """
        version = self.ledger.get(version_id)
        target = version.snapshot.file_system
        if target is None:
            msg = f"Version {version_id} has no snapshot and cannot be restored"
            raise InvalidVersionStateError(msg)

        logger.info("Restoring version %s (%s)", version_id, version.action.value)
        outcome = RestoreOutcome(version_id=version_id)
        current = self.snapshots.capture_full_snapshot()

        self._restore_custom_names(target, outcome)
        self._reconcile_directories(target, current, outcome)
        self._remove_extra_files(target, current, outcome)
        self._restore_backed_files(version, target, outcome)
        if version.snapshot.directory_snapshot is not None:
            self._restore_directory_snapshot(
                version.snapshot.directory_snapshot, version_id, target, outcome
            )

        if self._cache is not None:
            self._cache.clear()

        restore_version = self.ledger.record_change(
            VersionAction.RESTORE,
            {
                "restored_version_id": version_id,
                "restored_action": version.action.value,
                "restored_timestamp": version.timestamp,
                "restored_items": list(outcome.restored_items),
            },
        )
        outcome.restore_version_id = restore_version.id

        logger.info(
            "Restored version %s: %d items, %d errors",
            version_id,
            len(outcome.restored_items),
            len(outcome.errors),
        )
        return outcome

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    def _restore_custom_names(self, target: TreeSnapshot, outcome: RestoreOutcome) -> None:
        if self.names.load() == target.custom_names:
            return
        try:
            self.names.save(target.custom_names)
        except StorageError as e:
            outcome.errors.append(f"Failed to restore custom names: {e}")
            return
        outcome.restored_items.append("Restored custom names")

    def _reconcile_directories(
        self, target: TreeSnapshot, current: TreeSnapshot, outcome: RestoreOutcome
    ) -> None:
        target_dirs = target.directory_map()
        current_dirs = current.directory_map()

        # Parents sort before their children, so nested extras vanish with them
        for relative_path in sorted(set(current_dirs) - set(target_dirs)):
            try:
                directory = self.paths.resolve(relative_path)
                if not directory.is_dir():
                    continue
                shutil.rmtree(directory)
            except OSError as e:
                logger.warning("Failed to delete directory %s", relative_path, exc_info=True)
                outcome.errors.append(f"Failed to delete directory {relative_path}: {e}")
                continue
            outcome.restored_items.append(f"Deleted directory: {relative_path}")

        for relative_path in sorted(set(target_dirs) - set(current_dirs)):
            try:
                directory = self.paths.resolve(relative_path)
                if directory.is_dir():
                    continue
                directory.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                logger.warning("Failed to recreate directory %s", relative_path, exc_info=True)
                outcome.errors.append(f"Failed to recreate directory {relative_path}: {e}")
                continue
            outcome.restored_items.append(f"Created directory: {relative_path}")

    def _remove_extra_files(
        self, target: TreeSnapshot, current: TreeSnapshot, outcome: RestoreOutcome
    ) -> None:
        target_files = target.file_map()
        for relative_path in sorted(set(current.file_map()) - set(target_files)):
            try:
                file_path = self.paths.resolve(relative_path)
                if not file_path.is_file():
                    continue
                file_path.unlink()
            except OSError as e:
                logger.warning("Failed to delete file %s", relative_path, exc_info=True)
                outcome.errors.append(f"Failed to delete file {relative_path}: {e}")
                continue
            outcome.restored_items.append(f"Deleted file: {relative_path}")

    def _restore_backed_files(
        self, version: Version, target: TreeSnapshot, outcome: RestoreOutcome
    ) -> None:
        target_files = target.file_map()
        for record in version.snapshot.backed_files:
            if record.relative_path not in target_files:
                continue
            self._restore_record(record, version.id, outcome)

    def _restore_record(
        self,
        record: BackupRecord,
        version_id: str,
        outcome: RestoreOutcome,
        destination: Path | None = None,
    ) -> bool:
        try:
            target = destination or self.backups.destination_for(record)
            source = self.backups.stored_path(record, version_id)
            if not source.is_file():
                logger.debug(
                    "Backup of %s gone for version %s", record.relative_path, version_id
                )
                return False
            if target.is_file() and filecmp.cmp(source, target, shallow=False):
                return False
            self.backups.restore_file(record, version_id, destination=target)
        except OSError as e:
            logger.warning(
                "Failed to restore %s from version %s",
                record.relative_path,
                version_id,
                exc_info=True,
            )
            outcome.errors.append(f"Failed to restore file {record.relative_path}: {e}")
            return False
        outcome.restored_items.append(f"Restored file: {self.paths.relative(target)}")
        return True

    def _restore_directory_snapshot(
        self,
        subtree: SubtreeSnapshot,
        version_id: str,
        target: TreeSnapshot,
        outcome: RestoreOutcome,
    ) -> None:
        """Refill a deleted directory from the same version's backups.

        Files whose backup is missing come back as empty placeholders.
        """
        if subtree.relative_path not in target.directory_map():
            return

        records = {
            r.relative_path: r
            for r in self.ledger.get(version_id).snapshot.backed_files
        }
        touched = False
        for node in subtree.structure.walk():
            touched |= self._refill_node(node, version_id, records, outcome)
        if touched:
            outcome.restored_items.append(
                f"Restored directory contents: {subtree.relative_path}"
            )

    def _refill_node(
        self,
        node: DirectoryNode,
        version_id: str,
        records: dict[str, BackupRecord],
        outcome: RestoreOutcome,
    ) -> bool:
        touched = False
        try:
            directory = self.paths.resolve(node.relative_path)
            if not directory.is_dir():
                directory.mkdir(parents=True, exist_ok=True)
                touched = True
        except OSError as e:
            outcome.errors.append(f"Failed to recreate directory {node.relative_path}: {e}")
            return False

        for file in node.files:
            try:
                file_path = self.paths.resolve(file.relative_path)
            except OSError as e:
                outcome.errors.append(f"Failed to restore file {file.relative_path}: {e}")
                continue
            if file_path.exists():
                continue
            record = records.get(file.relative_path)
            if record is not None and self._restore_record(
                record, version_id, outcome, destination=file_path
            ):
                touched = True
                continue
            try:
                file_path.touch()
            except OSError as e:
                outcome.errors.append(f"Failed to create placeholder {file.relative_path}: {e}")
                continue
            outcome.restored_items.append(f"Created placeholder: {file.relative_path}")
            touched = True
        return touched
