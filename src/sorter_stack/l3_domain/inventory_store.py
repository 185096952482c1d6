"""
Inventory store: per-color item counts in a SQL database (SQLite by default).

The store is the sole owner of persisted counts. change_count() is an atomic
read-modify-write that never lets a count drop below zero.
"""
from __future__ import annotations

from contextlib import contextmanager
from datetime import datetime, timezone
import logging
import os
import threading
from typing import Dict, Generator

from sqlalchemy import CheckConstraint, Column, DateTime, Integer, String, create_engine, select
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from sorter_stack.l0_core.events import Color

DEFAULT_DATABASE_URL = "sqlite:///colorsorter.sqlite"

Base = declarative_base()

log = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class InventoryRow(Base):
    __tablename__ = "inventory"
    __table_args__ = (CheckConstraint("count >= 0", name="ck_inventory_count_non_negative"),)

    color = Column(String(16), primary_key=True)
    count = Column(Integer, nullable=False, default=0)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)


def get_database_url(default: str = DEFAULT_DATABASE_URL) -> str:
    return os.environ.get("SORTER_DATABASE_URL", "") or default


class InventoryStore:
    """
    SQLAlchemy-backed inventory.

    Every public method opens its own session; change_count() additionally runs
    under a process-wide lock so concurrent callers in this process serialize
    their read-modify-write (SQLite has no SELECT ... FOR UPDATE).
    """

    def __init__(self, database_url: str | None = None, echo: bool = False) -> None:
        self._url = database_url or get_database_url()
        self._engine = create_engine(self._url, echo=echo)
        self._sessions = sessionmaker(bind=self._engine)
        self._write_lock = threading.Lock()

    @property
    def url(self) -> str:
        return self._url

    @contextmanager
    def _session(self) -> Generator[Session, None, None]:
        session = self._sessions()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def initialize(self) -> None:
        """Create the table and seed every color at 0 (existing rows are kept)."""
        Base.metadata.create_all(self._engine)
        with self._session() as session:
            for color in Color:
                if session.get(InventoryRow, color.value) is None:
                    session.add(InventoryRow(color=color.value, count=0, updated_at=_utcnow()))
        log.info("Inventory database initialized (%s)", self._url)

    def get_counts(self) -> Dict[Color, int]:
        counts = {color: 0 for color in Color}
        with self._session() as session:
            for row in session.execute(select(InventoryRow)).scalars():
                color = Color.parse(row.color)
                if color is not None:
                    counts[color] = row.count
        return counts

    def change_count(self, color: Color, delta: int) -> int:
        """Add ``delta`` (may be negative) to ``color``; returns the new count, floored at 0."""
        with self._write_lock, self._session() as session:
            row = session.get(InventoryRow, color.value)
            current = row.count if row is not None else 0
            new_count = max(0, current + delta)
            if row is None:
                session.add(InventoryRow(color=color.value, count=new_count, updated_at=_utcnow()))
            else:
                row.count = new_count
                row.updated_at = _utcnow()
        log.debug("inventory %s: %d -> %d", color.value, current, new_count)
        return new_count

    def dispose(self) -> None:
        self._engine.dispose()
