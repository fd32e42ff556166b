from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class Operation(str, Enum):
    SITES_APPLY = "sites_apply"
    DATABASE_ADD = "database_add"
    DATABASE_REMOVE = "database_remove"
    DATABASE_IMPORT = "database_import"


class TargetKind(str, Enum):
    PROXY = "proxy"
    DATABASE = "database"


class Outcome(str, Enum):
    SUCCESS = "success"
    FAILURE = "failure"


class OperationRecord(BaseModel):
    """Audit entry as returned by the API."""

    id: int
    recorded_at: datetime
    operation: str
    target_kind: str
    target: str
    outcome: str
    error_type: str | None = None
    message: str | None = None
    error: str | None = None
    details: dict[str, Any] = Field(default_factory=dict)
    duration_ms: float | None = None


class OperationQuery(BaseModel):
    operation: Operation | None = None
    target_kind: TargetKind | None = None
    target: str | None = None
    outcome: Outcome | None = None
    error_type: str | None = None
    since: datetime | None = None
    until: datetime | None = None


class OperationPage(BaseModel):
    records: list[OperationRecord]
    total: int
    page: int
    page_size: int
    pages: int


class CleanupResponse(BaseModel):
    deleted: int
    message: str
