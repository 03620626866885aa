"""Ledger table model for the SQL-backed version store.

Provides ``LedgerEntryBase`` as a non-table base class. Subclass with
``table=True`` and a custom ``__tablename__`` to use a different table name.
"""

from __future__ import annotations

from datetime import UTC, datetime

from sqlalchemy import BigInteger, DateTime, Text
from sqlmodel import Field, SQLModel


class LedgerEntryBase(SQLModel):
    """One persisted version. ``payload`` holds the full JSON document."""

    version_id: str = Field(primary_key=True)
    sequence: int = Field(default=0, index=True, sa_type=BigInteger)
    action: str = Field(default="", index=True)
    payload: str = Field(default="{}", sa_type=Text)
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        sa_type=DateTime(timezone=True),
    )


class LedgerEntry(LedgerEntryBase, table=True):
    """Default ledger table — ``demovault_versions``."""

    __tablename__ = "demovault_versions"
