"""LedgerStore protocol with JSON-document and SQL implementations.

The ledger is an ordered list of ``Version`` records, newest first. The
``VersionLedger`` only talks to the ``LedgerStore`` protocol, so the JSON
document can be swapped for an embedded database without touching the
restore path.
"""

from __future__ import annotations

import json
import logging
import threading
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from sqlalchemy import delete as sa_delete
from sqlalchemy import event, func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine, select

from .exceptions import StorageError
from .models import LedgerEntry
from .types import Version
from .utils import atomic_write_json

if TYPE_CHECKING:
    from collections.abc import Iterable

    from sqlalchemy import Engine

    from .models import LedgerEntryBase

logger = logging.getLogger(__name__)


@runtime_checkable
class LedgerStore(Protocol):
    """Durable storage for the version ledger.

    ``load`` returns versions newest first. Implementations raise
    ``StorageError`` when the ledger cannot be read or written.
    """

    def load(self) -> list[Version]: ...

    def save(self, versions: list[Version]) -> None: ...

    def append(self, version: Version) -> None:
        """Add *version* as the newest entry."""
        ...

    def evict(self, version_ids: Iterable[str]) -> None:
        """Remove the entries with the given ids."""
        ...

    def clear(self) -> int:
        """Remove every entry. Return how many were removed."""
        ...


# =============================================================================
# JSON document
# =============================================================================


class JsonLedgerStore:
    """Ledger kept as a single ``{"versions": [...]}`` JSON document.

    Writes go through a temp file and an atomic replace, so concurrent
    readers always see a complete, parseable document.
    """

    def __init__(self, path: Path | str) -> None:
        self.path = Path(path)
        self._lock = threading.RLock()

    def _read_document(self) -> list[dict[str, Any]]:
        if not self.path.is_file():
            return []
        try:
            with self.path.open(encoding="utf-8") as f:
                document = json.load(f)
        except (OSError, ValueError) as e:
            msg = f"Cannot read ledger {self.path}: {e}"
            raise StorageError(msg) from e
        return list(document.get("versions") or [])

    def load(self) -> list[Version]:
        with self._lock:
            raw = self._read_document()
        versions: list[Version] = []
        for item in raw:
            try:
                versions.append(Version.from_dict(item))
            except (KeyError, AttributeError, TypeError, ValueError):
                logger.warning("Skipping malformed ledger entry", exc_info=True)
        return versions

    def save(self, versions: list[Version]) -> None:
        document = {"versions": [v.to_dict() for v in versions]}
        with self._lock:
            try:
                atomic_write_json(self.path, document, indent=2)
            except (OSError, TypeError) as e:
                msg = f"Failed to save ledger {self.path}: {e}"
                raise StorageError(msg) from e

    def append(self, version: Version) -> None:
        with self._lock:
            versions = self.load()
            versions.insert(0, version)
            self.save(versions)

    def evict(self, version_ids: Iterable[str]) -> None:
        doomed = set(version_ids)
        if not doomed:
            return
        with self._lock:
            self.save([v for v in self.load() if v.id not in doomed])

    def clear(self) -> int:
        with self._lock:
            count = len(self._read_document())
            self.save([])
        return count


# =============================================================================
# SQL (SQLModel)
# =============================================================================


class SqlLedgerStore:
    """Ledger kept one row per version in a SQL table.

    Defaults to SQLite. ``sequence`` (the numeric version id) orders rows;
    ``payload`` holds the version's full JSON document.
    """

    def __init__(
        self,
        url: str,
        *,
        entry_model: type[LedgerEntryBase] | None = None,
        engine: Engine | None = None,
    ) -> None:
        self.url = url
        self._model: type[LedgerEntryBase] = entry_model or LedgerEntry
        self._engine = engine or _create_engine(url)
        SQLModel.metadata.create_all(self._engine, tables=[self._model.__table__])  # type: ignore[attr-defined]

    @property
    def engine(self) -> Engine:
        return self._engine

    def close(self) -> None:
        self._engine.dispose()

    def _to_row(self, version: Version) -> LedgerEntryBase:
        return self._model(
            version_id=version.id,
            sequence=int(version.id),
            action=version.action.value,
            payload=json.dumps(version.to_dict(), ensure_ascii=False),
            created_at=datetime.fromisoformat(version.timestamp),
        )

    def load(self) -> list[Version]:
        model = self._model
        try:
            with Session(self._engine) as session:
                rows = session.exec(
                    select(model).order_by(model.sequence.desc())  # type: ignore[attr-defined]
                ).all()
                payloads = [row.payload for row in rows]
        except SQLAlchemyError as e:
            msg = f"Cannot read ledger table: {e}"
            raise StorageError(msg) from e

        versions: list[Version] = []
        for payload in payloads:
            try:
                versions.append(Version.from_dict(json.loads(payload)))
            except (KeyError, TypeError, ValueError):
                logger.warning("Skipping malformed ledger row", exc_info=True)
        return versions

    def save(self, versions: list[Version]) -> None:
        try:
            with Session(self._engine) as session:
                session.execute(sa_delete(self._model))
                for version in versions:
                    session.add(self._to_row(version))
                session.commit()
        except SQLAlchemyError as e:
            msg = f"Failed to save ledger table: {e}"
            raise StorageError(msg) from e

    def append(self, version: Version) -> None:
        try:
            with Session(self._engine) as session:
                session.add(self._to_row(version))
                session.commit()
        except SQLAlchemyError as e:
            msg = f"Failed to append version {version.id}: {e}"
            raise StorageError(msg) from e

    def evict(self, version_ids: Iterable[str]) -> None:
        doomed = list(version_ids)
        if not doomed:
            return
        model = self._model
        try:
            with Session(self._engine) as session:
                session.execute(
                    sa_delete(model).where(model.version_id.in_(doomed))  # type: ignore[attr-defined]
                )
                session.commit()
        except SQLAlchemyError as e:
            msg = f"Failed to evict versions: {e}"
            raise StorageError(msg) from e

    def clear(self) -> int:
        model = self._model
        try:
            with Session(self._engine) as session:
                count = session.exec(select(func.count()).select_from(model)).one()
                session.execute(sa_delete(model))
                session.commit()
        except SQLAlchemyError as e:
            msg = f"Failed to clear ledger table: {e}"
            raise StorageError(msg) from e
        return int(count)


def _create_engine(url: str) -> Engine:
    """Engine for *url*; SQLite gets WAL mode and a busy timeout."""
    if url in ("sqlite://", "sqlite:///:memory:"):
        return create_engine(
            url,
            echo=False,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )

    if url.startswith("sqlite:///"):
        Path(url.removeprefix("sqlite:///")).parent.mkdir(parents=True, exist_ok=True)

    engine = create_engine(url, echo=False)

    if url.startswith("sqlite"):

        @event.listens_for(engine, "connect")
        def _set_sqlite_pragma(dbapi_connection: object, connection_record: object) -> None:
            cursor = dbapi_connection.cursor()  # type: ignore[union-attr]
            cursor.execute("PRAGMA journal_mode=WAL")
            result = cursor.fetchone()
            if result[0].lower() != "wal":
                logger.warning("WAL mode not active, got: %s", result[0])
            cursor.execute("PRAGMA busy_timeout=5000")
            cursor.close()

    return engine
