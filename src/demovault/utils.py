"""Path utilities, ignore rules, backup-name sanitising, timestamps."""

from __future__ import annotations

import contextlib
import json
import os
import re
import tempfile
from dataclasses import dataclass, field
from datetime import UTC, datetime
from fnmatch import fnmatchcase
from pathlib import Path
from typing import Any

from .exceptions import PathTraversalError

# =============================================================================
# Defaults
# =============================================================================

# Landing files that make a directory a servable prototype, in priority order
INDEX_FILES = ("index.html", "index.php", "index.htm", "index.aspx", "index.jsp")

# Names never captured in a snapshot (sidecar names are added by VaultConfig)
DEFAULT_IGNORE_NAMES = frozenset(
    {
        "node_modules",
        ".git",
        ".svn",
        ".hg",
        ".vscode",
        ".idea",
        "server.log",
    }
)

# Names Windows refuses for files and directories
RESERVED_NAMES = {
    "CON", "PRN", "AUX", "NUL",
    "COM1", "COM2", "COM3", "COM4", "COM5", "COM6", "COM7", "COM8", "COM9",
    "LPT1", "LPT2", "LPT3", "LPT4", "LPT5", "LPT6", "LPT7", "LPT8", "LPT9",
}

_UNSAFE_BACKUP_CHARS = re.compile(r"[^A-Za-z0-9/._-]")


# =============================================================================
# Ignore Rules
# =============================================================================


@dataclass(frozen=True)
class IgnoreRules:
    """Predicate deciding which directory entries a tree walk skips.

    An entry is ignored when its name is in ``names``, matches any glob in
    ``patterns``, or (with ``hide_dotfiles``) starts with a dot.
    """

    names: frozenset[str] = DEFAULT_IGNORE_NAMES
    patterns: tuple[str, ...] = ()
    hide_dotfiles: bool = True

    def __call__(self, name: str) -> bool:
        if self.hide_dotfiles and name.startswith("."):
            return True
        if name in self.names:
            return True
        return any(fnmatchcase(name, pattern) for pattern in self.patterns)

    def extended(self, *names: str, patterns: tuple[str, ...] = ()) -> IgnoreRules:
        """Return a copy that also ignores *names* and *patterns*."""
        return IgnoreRules(
            names=self.names | frozenset(n for n in names if n),
            patterns=self.patterns + patterns,
            hide_dotfiles=self.hide_dotfiles,
        )


@dataclass
class ProjectPaths:
    """Resolves and validates paths against a single project root."""

    root: Path
    _resolved_root: Path = field(init=False, repr=False)

    def __post_init__(self) -> None:
        self.root = Path(self.root)
        self._resolved_root = self.root.resolve()

    @property
    def resolved_root(self) -> Path:
        return self._resolved_root

    def resolve(self, path: str | os.PathLike[str]) -> Path:
        """Resolve *path* (absolute, or relative to the root) inside the root.

        Raises ``PathTraversalError`` when the result escapes the root.
        """
        candidate = Path(path)
        if not candidate.is_absolute():
            candidate = self._resolved_root / candidate
        resolved = candidate.resolve()
        try:
            resolved.relative_to(self._resolved_root)
        except ValueError:
            raise PathTraversalError(
                f"Path traversal detected: {path} resolves outside project root"
            ) from None
        return resolved

    def relative(self, path: str | os.PathLike[str]) -> str:
        """Root-relative, forward-slash form of *path* ("" for the root)."""
        rel = self.resolve(path).relative_to(self._resolved_root)
        text = rel.as_posix()
        return "" if text == "." else text

    def is_root(self, path: str | os.PathLike[str]) -> bool:
        return self.resolve(path) == self._resolved_root


# =============================================================================
# Helpers
# =============================================================================


def sanitize_relative_path(relative_path: str) -> str:
    """Replace every character outside ``[A-Za-z0-9/._-]`` with ``_``.

    Directory separators are kept, so nesting is preserved.

    Examples:
        sanitize_relative_path("demo/index.html") -> "demo/index.html"
        sanitize_relative_path("演示/a b.txt") -> "__/a_b.txt"
    """
    return _UNSAFE_BACKUP_CHARS.sub("_", relative_path.replace("\\", "/"))


def find_index_file(directory: Path, candidates: tuple[str, ...] = INDEX_FILES) -> str | None:
    """Return the first landing file present in *directory*, if any."""
    for name in candidates:
        if (directory / name).is_file():
            return name
    return None


def isoformat_mtime(mtime: float) -> str:
    """Format a ``st_mtime`` value as an ISO-8601 UTC timestamp."""
    return datetime.fromtimestamp(mtime, tz=UTC).isoformat()


def utc_now_iso() -> str:
    return datetime.now(UTC).isoformat()


def atomic_write_json(path: Path, data: Any, *, indent: int | None = None) -> None:
    """Write *data* as JSON to *path* via tempfile + replace.

    Readers never observe a partially written document. Raises ``OSError``
    (or ``TypeError`` for unserialisable data) on failure.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_path = tempfile.mkstemp(
        dir=str(path.parent), prefix=f".{path.name}.", suffix=".tmp"
    )
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(data, f, ensure_ascii=False, indent=indent)
        Path(tmp_path).replace(path)
    except Exception:
        with contextlib.suppress(OSError):
            Path(tmp_path).unlink()
        raise


def validate_name(name: str) -> tuple[bool, str]:
    """Validate a single directory or file name.

    Returns:
        (is_valid, error_message) - error_message is empty if valid
    """
    if not name or not name.strip():
        return False, "Name cannot be empty"

    if name in (".", ".."):
        return False, f"Invalid name: {name}"

    if "/" in name or "\\" in name:
        return False, f"Name cannot contain path separators: {name}"

    if "\x00" in name:
        return False, "Name contains null bytes"

    for ch in name:
        code = ord(ch)
        if 0x01 <= code <= 0x1F:
            return False, f"Name contains control character: 0x{code:02x}"

    if len(name) > 255:
        return False, "Name too long (max 255 characters)"

    base_name = name.upper().split(".")[0]
    if base_name in RESERVED_NAMES:
        return False, f"Reserved name: {name}"

    return True, ""


def atomic_write_bytes(path: Path, content: bytes) -> None:
    """Write *content* to *path* via tempfile + replace."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_path = tempfile.mkstemp(
        dir=str(path.parent), prefix=f".{path.name}.", suffix=".tmp"
    )
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(content)
        Path(tmp_path).replace(path)
    except Exception:
        with contextlib.suppress(OSError):
            Path(tmp_path).unlink()
        raise
