"""Main DemoVault class — wiring, lifecycle, result-returning API."""

from __future__ import annotations

import logging
import time
from pathlib import Path
from typing import TYPE_CHECKING, Any

from .backup import BackupStore
from .browse import DirectoryBrowser
from .cache import MetadataCache
from .config import VaultConfig
from .exceptions import VaultError
from .ledger import VersionLedger
from .names import CustomNameStore
from .operations import DirectoryOperations
from .restore import RestoreEngine
from .snapshot import SnapshotBuilder
from .store import JsonLedgerStore, SqlLedgerStore
from .types import (
    ClearResult,
    ListVersionsResult,
    RestoreResult,
    Version,
    VersionAction,
)
from .utils import ProjectPaths

if TYPE_CHECKING:
    import os
    from collections.abc import Callable, Iterable

    from .operations import UploadSource
    from .store import LedgerStore
    from .types import FileEntry, FolderEntry, OperationResult

logger = logging.getLogger(__name__)


class DemoVault:
    """Facade wiring the cache, snapshots, backups, ledger and restore engine.

    Library components raise; this class turns ``VaultError`` into result
    objects with ``success=False`` so callers (an HTTP layer, a CLI) can
    forward them as they are.

    Usage::

        with DemoVault("/srv/demos") as vault:
            vault.create_directory(None, "landing")
            page = vault.list_versions(20)
            vault.restore_version(page.versions[-1].id)
    """

    def __init__(
        self,
        root: str | os.PathLike[str],
        *,
        config: VaultConfig | None = None,
        store: LedgerStore | None = None,
        clock: Callable[[], float] = time.time,
        **options: Any,
    ) -> None:
        root_path = Path(root)
        if not root_path.exists():
            msg = f"Project root not found: {root}"
            raise FileNotFoundError(msg)
        if not root_path.is_dir():
            msg = f"Project root is not a directory: {root}"
            raise NotADirectoryError(msg)

        self._closed = False
        self.config = config or VaultConfig(root=root_path, **options)
        self.paths = ProjectPaths(self.config.root)
        ignore = self.config.ignore_rules()

        # 1. Caches: directory scans (with sidecar) and ledger reads
        self.metadata_cache = MetadataCache(
            self.config.metadata_ttl, clock=clock, sidecar_path=self.config.cache_path
        )
        self.metadata_cache.load()
        self.ledger_cache = MetadataCache(self.config.ledger_ttl, clock=clock)

        # 2. Leaf stores
        self.names = CustomNameStore(self.config.custom_names_path)
        self.snapshots = SnapshotBuilder(
            self.paths, self.names, ignore=ignore, index_files=self.config.index_files
        )
        self.backups = BackupStore(self.paths, self.config.backup_root)
        self.store = store or self._create_store()

        # 3. Ledger and restore
        self.ledger = VersionLedger(
            self.store,
            self.snapshots,
            self.backups,
            self.paths,
            self.names,
            max_versions=self.config.max_versions,
            clear_credential=self.config.clear_credential,
            cache=self.ledger_cache,
            clock=clock,
        )
        self.restorer = RestoreEngine(
            self.ledger,
            self.snapshots,
            self.backups,
            self.paths,
            self.names,
            cache=self.metadata_cache,
        )

        # 4. Browsing and mutating operations
        self.browser = DirectoryBrowser(
            self.paths,
            self.names,
            self.metadata_cache,
            ignore=ignore,
            index_files=self.config.index_files,
        )
        self.operations = DirectoryOperations(
            self.paths, self.ledger, self.names, self.snapshots, self.browser
        )
        logger.debug("Vault ready at %s (%s ledger)", self.config.root, self.config.ledger_backend)

    def _create_store(self) -> LedgerStore:
        if self.config.ledger_backend == "sqlite":
            return SqlLedgerStore(self.config.ledger_url)
        return JsonLedgerStore(self.config.ledger_path)

    # ------------------------------------------------------------------
    # Version history
    # ------------------------------------------------------------------

    def list_versions(self, limit: int | None = 50) -> ListVersionsResult:
        """Most recent versions first, without their snapshots."""
        try:
            page = self.ledger.list_versions(limit)
        except VaultError as e:
            return ListVersionsResult(success=False, message=str(e))
        return ListVersionsResult(
            success=True,
            message=f"{len(page.versions)} of {page.total} versions",
            versions=page.versions,
            total=page.total,
            has_more=page.has_more,
        )

    def clear_versions(self, credential: str) -> ClearResult:
        """Wipe the history and every backup, if *credential* is right."""
        try:
            cleared = self.ledger.clear(credential)
        except VaultError as e:
            return ClearResult(success=False, message=str(e))
        return ClearResult(
            success=True, message=f"Cleared {cleared} versions", cleared=cleared
        )

    def restore_version(self, version_id: str) -> RestoreResult:
        """Reconcile the live tree to *version_id*."""
        if not version_id:
            return RestoreResult(success=False, message="Version id is required")
        try:
            outcome = self.restorer.restore(version_id)
        except VaultError as e:
            return RestoreResult(success=False, message=str(e), version_id=version_id)
        return RestoreResult(
            success=True,
            message=f"Restored version {version_id}",
            version_id=outcome.version_id,
            restored_items=outcome.restored_items,
            errors=outcome.errors,
            restore_version_id=outcome.restore_version_id,
        )

    def record_change(
        self, action: VersionAction | str, details: dict[str, Any] | None = None
    ) -> Version:
        """Record a change made outside the vault's own operations.

        Raises ``StorageError`` when the ledger cannot be persisted.
        """
        return self.ledger.record_change(action, details)

    # ------------------------------------------------------------------
    # Directory operations
    # ------------------------------------------------------------------

    def create_directory(
        self,
        parent: str | os.PathLike[str] | None,
        name: str,
        mode: str = "child",
    ) -> OperationResult:
        return self.operations.create_directory(parent, name, mode)

    def rename_directory(self, path: str | os.PathLike[str], new_name: str) -> OperationResult:
        return self.operations.rename_directory(path, new_name)

    def delete_directory(
        self, path: str | os.PathLike[str], *, light: bool = False
    ) -> OperationResult:
        return self.operations.delete_directory(path, light=light)

    def set_display_name(
        self, path: str | os.PathLike[str], display_name: str | None
    ) -> OperationResult:
        return self.operations.set_display_name(path, display_name)

    def upload_files(
        self,
        target: str | os.PathLike[str] | None,
        files: Iterable[tuple[str, UploadSource]],
        *,
        reupload: bool = False,
        display_name: str | None = None,
    ) -> OperationResult:
        return self.operations.upload_files(
            target, files, reupload=reupload, display_name=display_name
        )

    # ------------------------------------------------------------------
    # Browsing
    # ------------------------------------------------------------------

    def list_folders(self) -> list[FolderEntry]:
        return self.browser.list_folders()

    def list_subdirectories(self, path: str | os.PathLike[str]) -> list[FolderEntry]:
        return self.browser.list_subdirectories(path)

    def list_files(self, path: str | os.PathLike[str]) -> list[FileEntry]:
        return self.browser.list_files(path)

    def check(self, path: str | os.PathLike[str]) -> FolderEntry:
        return self.browser.check(path)

    def find_index_file(self, path: str | os.PathLike[str]) -> str | None:
        return self.browser.find_index_file(path)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def close(self) -> None:
        """Wait for the cache sidecar and release the ledger store."""
        if self._closed:
            return
        self._closed = True
        self.metadata_cache.flush(timeout=5)
        close = getattr(self.store, "close", None)
        if close is not None:
            close()

    def __enter__(self) -> DemoVault:
        return self

    def __exit__(self, exc_type: object, exc_val: object, exc_tb: object) -> None:
        self.close()
