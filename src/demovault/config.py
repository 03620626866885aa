"""VaultConfig — where the vault keeps its state and how it behaves."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from .utils import DEFAULT_IGNORE_NAMES, INDEX_FILES, IgnoreRules

DEFAULT_MAX_VERSIONS = 100
DEFAULT_METADATA_TTL = 5.0
DEFAULT_LEDGER_TTL = 10.0
DEFAULT_CLEAR_CREDENTIAL = "Gw1admin."

LEDGER_BACKENDS = ("json", "sqlite")


@dataclass
class VaultConfig:
    """Configuration for a single project root."""

    root: Path
    """Project root holding the demo directories."""

    backup_dir_name: str = ".versions"
    """Directory under ``root`` holding one backup folder per version."""

    ledger_file: str = "version-history.json"
    """JSON ledger document under ``root`` (``ledger_backend="json"``)."""

    ledger_db_file: str = "version-history.db"
    """SQLite ledger database under ``root`` (``ledger_backend="sqlite"``)."""

    custom_names_file: str = "custom-names.json"
    """Display-name mapping under ``root``."""

    cache_file: str = ".metadata-cache.json"
    """Metadata cache sidecar under ``root``."""

    ledger_backend: str = "json"
    """Either "json" or "sqlite"."""

    max_versions: int = DEFAULT_MAX_VERSIONS
    """Retention limit; older versions are evicted with their backups."""

    metadata_ttl: float = DEFAULT_METADATA_TTL
    """Seconds a cached scan result stays valid."""

    ledger_ttl: float = DEFAULT_LEDGER_TTL
    """Seconds a cached ledger read stays valid."""

    index_files: tuple[str, ...] = INDEX_FILES
    """Landing files that mark a directory as a prototype."""

    ignore_names: frozenset[str] = DEFAULT_IGNORE_NAMES
    """Entry names skipped by tree walks."""

    ignore_patterns: tuple[str, ...] = ()
    """Glob patterns skipped by tree walks."""

    clear_credential: str = DEFAULT_CLEAR_CREDENTIAL
    """Shared secret required to wipe the ledger."""

    def __post_init__(self) -> None:
        self.root = Path(self.root).resolve()
        if self.ledger_backend not in LEDGER_BACKENDS:
            msg = f"Unknown ledger backend: {self.ledger_backend!r}"
            raise ValueError(msg)
        if self.max_versions < 1:
            msg = "max_versions must be at least 1"
            raise ValueError(msg)
        self.ignore_names = frozenset(self.ignore_names)
        self.ignore_patterns = tuple(self.ignore_patterns)
        self.index_files = tuple(self.index_files)

    @property
    def backup_root(self) -> Path:
        return self.root / self.backup_dir_name

    @property
    def ledger_path(self) -> Path:
        return self.root / self.ledger_file

    @property
    def ledger_db_path(self) -> Path:
        return self.root / self.ledger_db_file

    @property
    def ledger_url(self) -> str:
        return f"sqlite:///{self.ledger_db_path}"

    @property
    def custom_names_path(self) -> Path:
        return self.root / self.custom_names_file

    @property
    def cache_path(self) -> Path:
        return self.root / self.cache_file

    def ignore_rules(self) -> IgnoreRules:
        """Walk predicate: configured names and globs plus every sidecar."""
        return IgnoreRules(
            names=self.ignore_names,
            patterns=self.ignore_patterns,
        ).extended(
            self.backup_dir_name,
            self.ledger_file,
            self.ledger_db_file,
            self.ledger_db_file + "-wal",
            self.ledger_db_file + "-shm",
            self.custom_names_file,
            self.cache_file,
        )
