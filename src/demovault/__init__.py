"""demovault: version history for directories of demo sites.

Snapshots the tree, backs up file bytes per change, and restores any
recorded state by diffing snapshots against the live filesystem.
"""

__version__ = "0.1.0"

from demovault._vault import DemoVault
from demovault.backup import BackupStore
from demovault.browse import DirectoryBrowser
from demovault.cache import MetadataCache
from demovault.config import VaultConfig
from demovault.exceptions import (
    AuthenticationError,
    InvalidVersionStateError,
    PathTraversalError,
    StorageError,
    VaultError,
    VersionNotFoundError,
)
from demovault.ledger import VersionLedger
from demovault.models import LedgerEntry, LedgerEntryBase
from demovault.names import CustomNameStore
from demovault.operations import DirectoryOperations
from demovault.restore import RestoreEngine
from demovault.snapshot import SnapshotBuilder
from demovault.store import JsonLedgerStore, LedgerStore, SqlLedgerStore
from demovault.types import (
    BackupRecord,
    ClearResult,
    DirectoryNode,
    FileEntry,
    FileRecord,
    FolderEntry,
    ListVersionsResult,
    OperationResult,
    RestoreOutcome,
    RestoreResult,
    Snapshot,
    SubtreeSnapshot,
    TreeSnapshot,
    UploadedFile,
    Version,
    VersionAction,
    VersionPage,
    VersionSummary,
)
from demovault.utils import IgnoreRules, ProjectPaths

__all__ = [
    "AuthenticationError",
    "BackupRecord",
    "BackupStore",
    "ClearResult",
    "CustomNameStore",
    "DemoVault",
    "DirectoryBrowser",
    "DirectoryNode",
    "DirectoryOperations",
    "FileEntry",
    "FileRecord",
    "FolderEntry",
    "IgnoreRules",
    "InvalidVersionStateError",
    "JsonLedgerStore",
    "LedgerEntry",
    "LedgerEntryBase",
    "LedgerStore",
    "ListVersionsResult",
    "MetadataCache",
    "OperationResult",
    "PathTraversalError",
    "ProjectPaths",
    "RestoreEngine",
    "RestoreOutcome",
    "RestoreResult",
    "Snapshot",
    "SnapshotBuilder",
    "SqlLedgerStore",
    "StorageError",
    "SubtreeSnapshot",
    "TreeSnapshot",
    "UploadedFile",
    "VaultConfig",
    "VaultError",
    "Version",
    "VersionAction",
    "VersionLedger",
    "VersionPage",
    "VersionSummary",
    "__version__",
]
