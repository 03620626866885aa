"""VersionLedger — one Version per mutating action, with retention."""

from __future__ import annotations

import hmac
import logging
import threading
import time
from typing import TYPE_CHECKING, Any

from .exceptions import AuthenticationError, StorageError, VersionNotFoundError
from .types import (
    BackupRecord,
    Snapshot,
    SubtreeSnapshot,
    UploadedFile,
    Version,
    VersionAction,
    VersionPage,
)
from .utils import utc_now_iso

if TYPE_CHECKING:
    from collections.abc import Callable

    from .backup import BackupStore
    from .cache import MetadataCache
    from .names import CustomNameStore
    from .snapshot import SnapshotBuilder
    from .store import LedgerStore
    from .utils import ProjectPaths

logger = logging.getLogger(__name__)

_UPLOAD_ACTIONS = (VersionAction.UPLOAD, VersionAction.REUPLOAD)
_LEDGER_CACHE_KEY = "ledger"


class VersionLedger:
    """Ordered, persisted history of Version records (newest first).

    ``record_change`` is the single entry point callers use after (or, for
    deletes, right before) mutating the tree. The load → append → persist
    cycle runs under one lock, so concurrent callers cannot lose each
    other's entries.

    Ledger reads go through an optional TTL cache because listings may
    read the ledger on every request; every write clears it.
    """

    def __init__(
        self,
        store: LedgerStore,
        snapshots: SnapshotBuilder,
        backups: BackupStore,
        paths: ProjectPaths,
        names: CustomNameStore,
        *,
        max_versions: int = 100,
        clear_credential: str,
        cache: MetadataCache | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.store = store
        self.snapshots = snapshots
        self.backups = backups
        self.paths = paths
        self.names = names
        self.max_versions = max_versions
        self._clear_credential = clear_credential
        self._cache = cache
        self._clock = clock
        self._lock = threading.RLock()
        self._last_sequence = 0

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def versions(self) -> list[Version]:
        """All versions, newest first."""
        if self._cache is None:
            return self.store.load()
        return list(
            self._cache.get_or_compute(_LEDGER_CACHE_KEY, _LEDGER_CACHE_KEY, self.store.load)
        )

    def get(self, version_id: str) -> Version:
        for version in self.versions():
            if version.id == version_id:
                return version
        msg = f"Version not found: {version_id}"
        raise VersionNotFoundError(msg)

    def list_versions(self, limit: int | None = None) -> VersionPage:
        """Most recent *limit* versions as summaries, plus total and has-more."""
        versions = self.versions()
        total = len(versions)
        page = versions if limit is None else versions[: max(0, limit)]
        return VersionPage(
            versions=[v.summary() for v in page],
            total=total,
            has_more=len(page) < total,
        )

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def record_change(
        self,
        action: VersionAction | str,
        details: dict[str, Any] | None = None,
    ) -> Version:
        """Record one mutating action with a full tree snapshot.

        For ``delete`` the target directory is captured and backed up here,
        so callers must invoke this *before* removing it. For ``upload`` and
        ``reupload`` each file in ``details["files"]`` is backed up, then the
        whole ``details["target_path"]`` directory.
        """
        action = VersionAction(action)
        details = _plain_details(details)

        with self._lock:
            existing = self.store.load()
            version_id = self._next_id(existing)
            directory_snapshot: SubtreeSnapshot | None = None
            backed_files: list[BackupRecord] = []

            if action is VersionAction.DELETE and details.get("path"):
                directory_snapshot, backed = self._capture_before_delete(
                    details["path"], version_id
                )
                backed_files.extend(backed)

            if action in _UPLOAD_ACTIONS and details.get("files"):
                backed_files.extend(self._backup_uploads(details, version_id))

            version = Version(
                id=version_id,
                timestamp=utc_now_iso(),
                action=action,
                details=details,
                snapshot=Snapshot(
                    file_system=self.snapshots.capture_full_snapshot(version_id),
                    directory_snapshot=directory_snapshot,
                    backed_files=backed_files,
                ),
            )
            self._commit(version, existing)

        logger.info(
            "Recorded %s version %s (%d backed files)",
            action.value,
            version_id,
            len(backed_files),
        )
        return version

    def record_delete(
        self,
        details: dict[str, Any],
        directory_snapshot: SubtreeSnapshot | None,
    ) -> Version:
        """Record a delete already captured by the caller.

        Unlike ``record_change("delete", ...)`` this keeps no full tree
        snapshot and no backups: only the display names and the pre-delete
        ``directory_snapshot``. Such versions are listed but not restorable.
        """
        details = _plain_details(details)
        with self._lock:
            existing = self.store.load()
            version_id = self._next_id(existing)
            version = Version(
                id=version_id,
                timestamp=utc_now_iso(),
                action=VersionAction.DELETE,
                details=details,
                snapshot=Snapshot(
                    custom_names=self.names.load(),
                    directory_snapshot=directory_snapshot,
                ),
            )
            self._commit(version, existing)

        logger.info("Recorded delete version %s (snapshot only)", version_id)
        return version

    def clear(self, credential: str) -> int:
        """Wipe the ledger and its backups. Return how many versions were removed.

        Raises ``AuthenticationError`` (and changes nothing) unless
        *credential* matches the configured secret exactly.
        """
        if not hmac.compare_digest(
            (credential or "").encode("utf-8"), self._clear_credential.encode("utf-8")
        ):
            msg = "Invalid credential, version history not cleared"
            raise AuthenticationError(msg)

        with self._lock:
            removed = self.store.clear()
            self._invalidate()
            for version_id in self.backups.list_backup_versions():
                self.backups.evict(version_id)

        logger.info("Cleared version history (%d versions)", removed)
        return removed

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _next_id(self, existing: list[Version]) -> str:
        """Millisecond timestamp, bumped past the newest id already issued."""
        newest = max((_sequence(v.id) for v in existing), default=0)
        sequence = max(int(self._clock() * 1000), newest + 1, self._last_sequence + 1)
        self._last_sequence = sequence
        return str(sequence)

    def _commit(self, version: Version, existing: list[Version]) -> None:
        try:
            self.store.append(version)
        except StorageError:
            self.backups.evict(version.id)
            self._invalidate()
            raise

        overflow = existing[self.max_versions - 1 :]
        if overflow:
            doomed = [v.id for v in overflow]
            try:
                self.store.evict(doomed)
            finally:
                self._invalidate()
            for version_id in doomed:
                self.backups.evict(version_id)
            logger.info("Evicted %d versions past retention limit", len(doomed))
        else:
            self._invalidate()

    def _invalidate(self) -> None:
        if self._cache is not None:
            self._cache.clear()

    def _capture_before_delete(
        self, path: str, version_id: str
    ) -> tuple[SubtreeSnapshot | None, list[BackupRecord]]:
        directory = self.paths.resolve(path)
        if not directory.is_dir():
            return None, []
        try:
            subtree = self.snapshots.capture_subtree(directory)
            backed = self.backups.backup_tree(directory, version_id)
        except OSError:
            logger.warning(
                "Cannot snapshot %s before delete (version %s)",
                directory,
                version_id,
                exc_info=True,
            )
            return None, []
        return subtree, backed

    def _backup_uploads(self, details: dict[str, Any], version_id: str) -> list[BackupRecord]:
        backed: list[BackupRecord] = []
        for info in details["files"]:
            file_path = info.get("path")
            if not file_path:
                continue
            try:
                record = self.backups.backup_file(file_path, version_id)
            except OSError:
                logger.warning(
                    "Failed to back up uploaded file %s (version %s)",
                    file_path,
                    version_id,
                    exc_info=True,
                )
                continue
            if record is None:
                continue
            original_name = info.get("original_name")
            if original_name:
                try:
                    self.paths.resolve(original_name)
                except OSError:
                    logger.warning("Ignoring original name outside root: %s", original_name)
                else:
                    record.original_relative_path = original_name
            backed.append(record)

        target_path = details.get("target_path")
        if target_path:
            try:
                target = self.paths.resolve(target_path)
            except OSError:
                logger.warning("Upload target outside root: %s", target_path)
                return backed
            if target != self.paths.resolved_root and target.is_dir():
                seen = {record.relative_path for record in backed}
                for record in self.backups.backup_tree(target, version_id):
                    if record.relative_path not in seen:
                        backed.append(record)
        return backed


def _sequence(version_id: str) -> int:
    try:
        return int(version_id)
    except ValueError:
        return 0


def _plain_details(details: dict[str, Any] | None) -> dict[str, Any]:
    """Copy *details* with uploaded-file records turned into plain dicts."""
    plain = dict(details or {})
    files = plain.get("files")
    if files:
        plain["files"] = [
            f.to_dict() if isinstance(f, UploadedFile) else dict(f) for f in files
        ]
    return plain
