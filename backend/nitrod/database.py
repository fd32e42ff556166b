from __future__ import annotations

import json
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Iterator

from sqlalchemy import create_engine, Column, Integer, String, DateTime, Text, Float
from sqlalchemy.orm import declarative_base, sessionmaker, Session


Base = declarative_base()


def utcnow() -> datetime:
    """Naive UTC timestamp, the form stored in the DateTime columns."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class OperationLog(Base):
    """One control-plane operation: a route apply or a database change."""

    __tablename__ = "operation_log"

    id = Column(Integer, primary_key=True, autoincrement=True)
    recorded_at = Column(DateTime, default=utcnow, nullable=False, index=True)
    operation = Column(String(32), nullable=False, index=True)
    target_kind = Column(String(16), nullable=False, index=True)
    # host for proxy operations, host/database for database operations
    target = Column(String(320), nullable=False, index=True)
    outcome = Column(String(16), nullable=False, index=True)
    error_type = Column(String(32), nullable=True, index=True)
    message = Column(Text, nullable=True)
    error = Column(Text, nullable=True)
    details_json = Column(Text, nullable=True)
    duration_ms = Column(Float, nullable=True)

    @property
    def details(self) -> dict[str, Any]:
        return json.loads(self.details_json) if self.details_json else {}

    @details.setter
    def details(self, value: dict[str, Any] | None) -> None:
        self.details_json = json.dumps(value, default=str) if value else None


class AuditStore:
    """SQLite file holding the operation log."""

    def __init__(self, db_path: str):
        self.db_path = db_path
        self.engine = create_engine(
            f"sqlite:///{db_path}",
            connect_args={"check_same_thread": False},
        )
        self._sessions = sessionmaker(bind=self.engine, autoflush=False, expire_on_commit=False)

    def create_tables(self) -> None:
        Base.metadata.create_all(bind=self.engine)

    @contextmanager
    def session(self) -> Iterator[Session]:
        """Session that commits on success and rolls back on error."""
        session = self._sessions()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()


_stores: dict[str, AuditStore] = {}


def get_store(db_path: str) -> AuditStore:
    store = _stores.get(db_path)
    if store is None:
        store = _stores[db_path] = AuditStore(db_path)
    return store


def init_store(db_path: str) -> AuditStore:
    store = get_store(db_path)
    store.create_tables()
    return store
