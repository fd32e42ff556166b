from __future__ import annotations

import asyncio
from datetime import datetime

from fastapi import APIRouter, Query

from nitrod.dependencies import get_audit_service
from nitrod.schemas.audit import CleanupResponse, Operation, OperationPage, OperationQuery, Outcome, TargetKind


router = APIRouter(prefix="/api/audit", tags=["audit"])


@router.get("/logs", response_model=OperationPage)
async def list_operations(
    page: int = Query(1, ge=1),
    page_size: int = Query(50, ge=1, le=200),
    operation: Operation | None = Query(None),
    target_kind: TargetKind | None = Query(None),
    target: str | None = Query(None, description="Host or host/database, partial match"),
    outcome: Outcome | None = Query(None),
    error_type: str | None = Query(None, description="connectivity, execution, protocol, ..."),
    since: datetime | None = Query(None),
    until: datetime | None = Query(None),
):
    """Recent applies, database changes and imports, newest first."""
    query = OperationQuery(
        operation=operation,
        target_kind=target_kind,
        target=target,
        outcome=outcome,
        error_type=error_type,
        since=since,
        until=until,
    )
    return await asyncio.to_thread(get_audit_service().query, query, page, page_size)


@router.post("/cleanup", response_model=CleanupResponse)
async def prune_operations(retention_days: int | None = Query(None, ge=1)):
    deleted = await asyncio.to_thread(get_audit_service().prune, retention_days)
    return CleanupResponse(deleted=deleted, message=f"Deleted {deleted} old audit log entries")
