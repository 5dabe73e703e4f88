"""Generic relational event log backed by SQLAlchemy.

Defaults to a SQLite file under the data directory; any SQLAlchemy URL works.
"""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import List

from sqlalchemy import Column, DateTime, Integer, Text, create_engine, func, select
from sqlalchemy.orm import declarative_base, sessionmaker

logger = logging.getLogger(__name__)

Base = declarative_base()


class EventRow(Base):
    __tablename__ = "generic_events"

    id = Column(Integer, primary_key=True, autoincrement=True)
    event = Column(Text, nullable=False)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)


class SqlEventLog:
    def __init__(self, url: str) -> None:
        self.url = url
        self._engine = None
        self._session_factory = None

    def open(self) -> None:
        if self.url.startswith("sqlite:///"):
            Path(self.url[len("sqlite:///"):]).parent.mkdir(parents=True, exist_ok=True)
        self._engine = create_engine(
            self.url,
            pool_pre_ping=True,
            connect_args={"check_same_thread": False} if "sqlite" in self.url else {},
        )
        Base.metadata.create_all(self._engine)
        self._session_factory = sessionmaker(bind=self._engine, autoflush=False, expire_on_commit=False)

    def close(self) -> None:
        if self._engine is not None:
            self._engine.dispose()
        self._engine = None
        self._session_factory = None

    def _session(self):
        if self._session_factory is None:
            raise RuntimeError("SqlEventLog is not open")
        return self._session_factory()

    def log_event(self, event: str) -> None:
        logger.info("[EventLog] Inserting event row: %s", event)
        with self._session() as db:
            db.add(EventRow(event=event))
            db.commit()

    def recent(self, limit: int = 50) -> List[str]:
        with self._session() as db:
            rows = db.execute(select(EventRow.event).order_by(EventRow.id.desc()).limit(limit)).scalars()
            return list(rows)

    def count(self) -> int:
        with self._session() as db:
            return int(db.execute(select(func.count(EventRow.id))).scalar_one())
