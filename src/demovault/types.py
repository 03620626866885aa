"""Record types: snapshots, backups, versions, and operation results."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import Iterator


class VersionAction(Enum):
    """Kinds of mutating actions recorded in the ledger."""

    CREATE = "create"
    RENAME = "rename"
    DELETE = "delete"
    UPLOAD = "upload"
    REUPLOAD = "reupload"
    RESTORE = "restore"


# =============================================================================
# Tree snapshot records
# =============================================================================


@dataclass
class FileRecord:
    """Metadata of one regular file inside a captured directory."""

    name: str
    absolute_path: str
    relative_path: str
    size: int = 0
    modified_at: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "absolute_path": self.absolute_path,
            "relative_path": self.relative_path,
            "size": self.size,
            "modified_at": self.modified_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> FileRecord:
        return cls(
            name=data["name"],
            absolute_path=data["absolute_path"],
            relative_path=data["relative_path"],
            size=data.get("size", 0),
            modified_at=data.get("modified_at"),
        )


@dataclass
class DirectoryNode:
    """One captured directory with its files and nested directories.

    ``relative_path`` is root-relative with forward slashes and unique
    within a snapshot; it is the key used when diffing two snapshots.
    """

    name: str
    absolute_path: str
    relative_path: str
    has_index: bool = False
    index_file: str | None = None
    files: list[FileRecord] = field(default_factory=list)
    subdirectories: list[DirectoryNode] = field(default_factory=list)
    modified_at: str | None = None

    def walk(self) -> Iterator[DirectoryNode]:
        """Yield this node and every nested node, depth first."""
        yield self
        for sub in self.subdirectories:
            yield from sub.walk()

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "absolute_path": self.absolute_path,
            "relative_path": self.relative_path,
            "has_index": self.has_index,
            "index_file": self.index_file,
            "files": [f.to_dict() for f in self.files],
            "subdirectories": [d.to_dict() for d in self.subdirectories],
            "modified_at": self.modified_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> DirectoryNode:
        return cls(
            name=data["name"],
            absolute_path=data["absolute_path"],
            relative_path=data["relative_path"],
            has_index=data.get("has_index", False),
            index_file=data.get("index_file"),
            files=[FileRecord.from_dict(f) for f in data.get("files", [])],
            subdirectories=[cls.from_dict(d) for d in data.get("subdirectories", [])],
            modified_at=data.get("modified_at"),
        )


@dataclass
class TreeSnapshot:
    """Full capture of the project tree at a point in time."""

    directories: list[DirectoryNode] = field(default_factory=list)
    custom_names: dict[str, str] = field(default_factory=dict)
    timestamp: str = ""
    version_id: str | None = None

    def iter_directories(self) -> Iterator[DirectoryNode]:
        for top in self.directories:
            yield from top.walk()

    def directory_map(self) -> dict[str, DirectoryNode]:
        """Flatten the tree into ``relative_path -> node``."""
        return {node.relative_path: node for node in self.iter_directories()}

    def file_map(self) -> dict[str, FileRecord]:
        """Flatten every captured file into ``relative_path -> record``."""
        return {
            f.relative_path: f for node in self.iter_directories() for f in node.files
        }

    def relative_paths(self) -> set[str]:
        """All directory and file relative paths in the snapshot."""
        return set(self.directory_map()) | set(self.file_map())

    def to_dict(self) -> dict[str, Any]:
        return {
            "directories": [d.to_dict() for d in self.directories],
            "custom_names": dict(self.custom_names),
            "timestamp": self.timestamp,
            "version_id": self.version_id,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TreeSnapshot:
        return cls(
            directories=[DirectoryNode.from_dict(d) for d in data.get("directories", [])],
            custom_names=dict(data.get("custom_names") or {}),
            timestamp=data.get("timestamp", ""),
            version_id=data.get("version_id"),
        )


@dataclass
class SubtreeSnapshot:
    """Capture of a single directory taken right before it is deleted."""

    path: str
    relative_path: str
    name: str
    structure: DirectoryNode

    def to_dict(self) -> dict[str, Any]:
        return {
            "path": self.path,
            "relative_path": self.relative_path,
            "name": self.name,
            "structure": self.structure.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SubtreeSnapshot:
        return cls(
            path=data["path"],
            relative_path=data["relative_path"],
            name=data["name"],
            structure=DirectoryNode.from_dict(data["structure"]),
        )


# =============================================================================
# Backups and versions
# =============================================================================


@dataclass
class BackupRecord:
    """Where a backed-up file came from and where its bytes are kept.

    ``original_relative_path`` preserves a file's pre-move location so a
    later restore can put it back in its original nested directory.
    ``backup_relative_path`` is the stored copy's path inside its version
    directory, kept so the copy can be found again after the backup root
    moves.
    """

    original_absolute_path: str
    relative_path: str
    backup_absolute_path: str
    original_relative_path: str | None = None
    backup_relative_path: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "original_absolute_path": self.original_absolute_path,
            "relative_path": self.relative_path,
            "backup_absolute_path": self.backup_absolute_path,
        }
        if self.original_relative_path is not None:
            data["original_relative_path"] = self.original_relative_path
        if self.backup_relative_path is not None:
            data["backup_relative_path"] = self.backup_relative_path
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> BackupRecord:
        return cls(
            original_absolute_path=data["original_absolute_path"],
            relative_path=data["relative_path"],
            backup_absolute_path=data["backup_absolute_path"],
            original_relative_path=data.get("original_relative_path"),
            backup_relative_path=data.get("backup_relative_path"),
        )


@dataclass
class Snapshot:
    """Per-version snapshot container.

    ``file_system`` is ``None`` for versions written by the dedicated
    delete path, which only keep ``custom_names`` and the pre-delete
    ``directory_snapshot``.
    """

    file_system: TreeSnapshot | None = None
    custom_names: dict[str, str] | None = None
    directory_snapshot: SubtreeSnapshot | None = None
    backed_files: list[BackupRecord] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "file_system": self.file_system.to_dict() if self.file_system else None,
            "custom_names": self.custom_names,
            "directory_snapshot": (
                self.directory_snapshot.to_dict() if self.directory_snapshot else None
            ),
            "backed_files": [b.to_dict() for b in self.backed_files],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Snapshot:
        fs_data = data.get("file_system")
        dir_data = data.get("directory_snapshot")
        return cls(
            file_system=TreeSnapshot.from_dict(fs_data) if fs_data else None,
            custom_names=data.get("custom_names"),
            directory_snapshot=SubtreeSnapshot.from_dict(dir_data) if dir_data else None,
            backed_files=[BackupRecord.from_dict(b) for b in data.get("backed_files") or []],
        )


@dataclass
class Version:
    """One ledger entry, created once per mutating action."""

    id: str
    timestamp: str
    action: VersionAction
    details: dict[str, Any] = field(default_factory=dict)
    snapshot: Snapshot = field(default_factory=Snapshot)

    @property
    def restorable(self) -> bool:
        return self.snapshot.file_system is not None

    def summary(self) -> VersionSummary:
        return VersionSummary(
            id=self.id,
            timestamp=self.timestamp,
            action=self.action,
            details=self.details,
            has_snapshot=self.restorable,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "timestamp": self.timestamp,
            "action": self.action.value,
            "details": self.details,
            "snapshot": self.snapshot.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Version:
        return cls(
            id=str(data["id"]),
            timestamp=data["timestamp"],
            action=VersionAction(data["action"]),
            details=dict(data.get("details") or {}),
            snapshot=Snapshot.from_dict(data.get("snapshot") or {}),
        )


@dataclass
class VersionSummary:
    """Lightweight view of a version with the heavy snapshot stripped."""

    id: str
    timestamp: str
    action: VersionAction
    details: dict[str, Any] = field(default_factory=dict)
    has_snapshot: bool = False


# =============================================================================
# Results
# =============================================================================


@dataclass
class VersionPage:
    """Most-recent-first page of version summaries."""

    versions: list[VersionSummary] = field(default_factory=list)
    total: int = 0
    has_more: bool = False


@dataclass
class RestoreOutcome:
    """What a restore changed, and what it failed to change."""

    version_id: str
    restored_items: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    restore_version_id: str | None = None


@dataclass
class ListVersionsResult:
    """Result of a list_versions operation."""

    success: bool
    message: str
    versions: list[VersionSummary] = field(default_factory=list)
    total: int = 0
    has_more: bool = False


@dataclass
class ClearResult:
    """Result of a clear_versions operation."""

    success: bool
    message: str
    cleared: int = 0


@dataclass
class RestoreResult:
    """Result of a restore_version operation."""

    success: bool
    message: str
    version_id: str | None = None
    restored_items: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    restore_version_id: str | None = None


@dataclass
class FolderEntry:
    """Directory listing entry used by the browser."""

    name: str
    path: str
    display_name: str
    has_index: bool = False
    index_file: str | None = None
    modified_at: str | None = None


@dataclass
class FileEntry:
    """File listing entry used by the browser."""

    name: str
    path: str
    size: int = 0
    modified_at: str | None = None


@dataclass
class UploadedFile:
    """A file placed on disk by an upload, as reported to the ledger.

    ``original_name`` is where the file landed, relative to the root.
    ``requested_name`` is only set when a name clash placed it elsewhere.
    """

    path: str
    original_name: str | None = None
    size: int = 0
    requested_name: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "path": self.path,
            "original_name": self.original_name,
            "size": self.size,
        }
        if self.requested_name is not None:
            data["requested_name"] = self.requested_name
        return data


@dataclass
class OperationResult:
    """Result of a directory operation (create, rename, delete, upload, name)."""

    success: bool
    message: str
    path: str | None = None
    old_path: str | None = None
    version_id: str | None = None
    files: list[UploadedFile] = field(default_factory=list)
