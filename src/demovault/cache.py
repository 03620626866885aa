"""MetadataCache — short-TTL memoization of directory scans and ledger reads."""

from __future__ import annotations

import json
import logging
import os
import posixpath
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Any

from .utils import atomic_write_json

if TYPE_CHECKING:
    from collections.abc import Callable

logger = logging.getLogger(__name__)

_MISSING = object()


@dataclass
class CacheEntry:
    value: Any
    last_update: float


class MetadataCache:
    """Maps ``(kind, path)`` to a value that stays valid for ``ttl`` seconds.

    ``kind`` separates independent facts about the same directory
    (e.g. "index" for prototype detection, "children" for child listing).
    ``invalidate(path)`` drops every kind for *path* and its parent, which
    is what a mutation of *path* makes stale.

    The clock is injected so tests can advance time without sleeping.
    When ``sidecar_path`` is set, ``persist()`` writes JSON-safe entries to
    disk on a daemon thread without waiting for it.

    Thread-safe via :class:`threading.Lock`.
    """

    def __init__(
        self,
        ttl: float,
        *,
        clock: Callable[[], float] = time.time,
        sidecar_path: Path | str | None = None,
    ) -> None:
        self.ttl = ttl
        self._clock = clock
        self._sidecar_path = Path(sidecar_path) if sidecar_path else None
        self._entries: dict[tuple[str, str], CacheEntry] = {}
        self._lock = threading.Lock()
        self._writer: threading.Thread | None = None
        self._writer_lock = threading.Lock()
        self._dirty = False

    def __len__(self) -> int:
        return len(self._entries)

    # ------------------------------------------------------------------
    # Read / write
    # ------------------------------------------------------------------

    def _fresh(self, entry: CacheEntry) -> bool:
        return self._clock() - entry.last_update < self.ttl

    def get(self, kind: str, path: str, default: Any = None) -> Any:
        """Return the cached value, or *default* when missing or expired."""
        key = (kind, _key_path(path))
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return default
            if not self._fresh(entry):
                del self._entries[key]
                return default
            return entry.value

    def set(self, kind: str, path: str, value: Any) -> None:
        with self._lock:
            self._entries[(kind, _key_path(path))] = CacheEntry(value, self._clock())

    def get_or_compute(self, kind: str, path: str, compute: Callable[[], Any]) -> Any:
        """Read-through lookup: compute and store *path*'s value on a miss."""
        value = self.get(kind, path, _MISSING)
        if value is _MISSING:
            value = compute()
            self.set(kind, path, value)
        return value

    # ------------------------------------------------------------------
    # Invalidation
    # ------------------------------------------------------------------

    def invalidate(self, path: str) -> int:
        """Drop every entry for *path* and its parent. Return count removed."""
        key_path = _key_path(path)
        targets = {key_path, posixpath.dirname(key_path)}
        with self._lock:
            stale = [key for key in self._entries if key[1] in targets]
            for key in stale:
                del self._entries[key]
        return len(stale)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def prune(self) -> int:
        """Drop every expired entry. Return count removed."""
        with self._lock:
            stale = [key for key, entry in self._entries.items() if not self._fresh(entry)]
            for key in stale:
                del self._entries[key]
        return len(stale)

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def _serializable_entries(self) -> list[list[Any]]:
        rows: list[list[Any]] = []
        with self._lock:
            for (kind, path), entry in self._entries.items():
                try:
                    json.dumps(entry.value)
                except (TypeError, ValueError):
                    continue
                rows.append([kind, path, entry.value, entry.last_update])
        return rows

    def persist(self) -> threading.Thread | None:
        """Write the sidecar on a background thread and return immediately.

        At most one writer runs at a time. A request made while it is busy
        marks the cache dirty and the running writer writes again with the
        newer entries, so an older snapshot never lands last.

        The returned thread may be joined by callers that need the write
        to have landed (tests, shutdown).
        """
        if self._sidecar_path is None:
            return None
        with self._writer_lock:
            if self._writer is not None:
                self._dirty = True
                return self._writer
            writer = threading.Thread(target=self._write_loop, daemon=True)
            self._writer = writer
            writer.start()
        return writer

    def _write_loop(self) -> None:
        while True:
            _write_sidecar(self._sidecar_path, self._serializable_entries())
            with self._writer_lock:
                if not self._dirty:
                    self._writer = None
                    return
                self._dirty = False

    def flush(self, timeout: float | None = None) -> None:
        """Wait for pending sidecar writes, if a writer is running."""
        writer = self._writer
        if writer is not None and writer.is_alive():
            writer.join(timeout)

    def load(self) -> int:
        """Load still-fresh entries from the sidecar. Return count loaded."""
        if self._sidecar_path is None or not self._sidecar_path.is_file():
            return 0
        try:
            with self._sidecar_path.open(encoding="utf-8") as f:
                sidecar = json.load(f)
        except (OSError, ValueError):
            logger.warning("Cannot read cache sidecar %s", self._sidecar_path, exc_info=True)
            return 0

        loaded = 0
        with self._lock:
            for kind, path, value, last_update in sidecar.get("entries", []):
                entry = CacheEntry(value, float(last_update))
                if self._fresh(entry):
                    self._entries[(kind, path)] = entry
                    loaded += 1
        return loaded


def _key_path(path: str | os.PathLike[str]) -> str:
    text = os.fspath(path).replace("\\", "/")
    if text != "/" and text.endswith("/"):
        text = text.rstrip("/")
    return text


def _write_sidecar(path: Path, rows: list[list[Any]]) -> None:
    try:
        atomic_write_json(path, {"entries": rows})
    except OSError:
        logger.warning("Failed to write cache sidecar %s", path, exc_info=True)
