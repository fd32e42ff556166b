from __future__ import annotations

import asyncio
import logging
import time
from contextlib import asynccontextmanager
from datetime import timedelta
from typing import Any, AsyncGenerator

from sqlalchemy import desc

from nitrod.config import Settings
from nitrod.database import OperationLog, get_store, utcnow
from nitrod.schemas.audit import (
    Operation,
    OperationPage,
    OperationQuery,
    OperationRecord,
    Outcome,
    TargetKind,
)


logger = logging.getLogger(__name__)


def _value(item: Any) -> str:
    return str(getattr(item, "value", item))


def _error_type(exc: Exception) -> str:
    if hasattr(exc, "error_type"):
        return exc.error_type
    if isinstance(exc, ValueError):
        return "validation"
    return type(exc).__name__


def _to_record(row: OperationLog) -> OperationRecord:
    return OperationRecord(
        id=row.id,
        recorded_at=row.recorded_at,
        operation=row.operation,
        target_kind=row.target_kind,
        target=row.target,
        outcome=row.outcome,
        error_type=row.error_type,
        message=row.message,
        error=row.error,
        details=row.details,
        duration_ms=row.duration_ms,
    )


class AuditService:
    """Keeps a queryable history of applies and database changes."""

    def __init__(self, settings: Settings):
        self.settings = settings
        self.store = get_store(settings.sqlite_db_path)
        self.store.create_tables()

    def _clip(self, text: str | None) -> str | None:
        limit = self.settings.audit_max_output_length
        if text is None or len(text) <= limit:
            return text
        return f"{text[:limit]}... [truncated]"

    def record(
        self,
        operation: Operation | str,
        target_kind: TargetKind | str,
        target: str,
        outcome: Outcome | str = Outcome.SUCCESS,
        message: str | None = None,
        error: str | None = None,
        error_type: str | None = None,
        details: dict[str, Any] | None = None,
        duration_ms: float | None = None,
    ) -> OperationRecord:
        """Store one operation and mirror it to the log."""
        row = OperationLog(
            recorded_at=utcnow(),
            operation=_value(operation),
            target_kind=_value(target_kind),
            target=target,
            outcome=_value(outcome),
            error_type=error_type,
            message=self._clip(message),
            error=self._clip(error),
            duration_ms=duration_ms,
        )
        row.details = details

        with self.store.session() as session:
            session.add(row)
            session.flush()
            result = _to_record(row)

        extra = {
            "operation": result.operation,
            "target": target,
            "outcome": result.outcome,
            "error_type": error_type,
            "duration_ms": round(duration_ms, 2) if duration_ms is not None else None,
        }
        if result.outcome == Outcome.SUCCESS.value:
            logger.info(f"{result.operation} {target}: {message or 'ok'}", extra=extra)
        else:
            logger.warning(f"{result.operation} {target} failed: {error or message}", extra=extra)
        return result

    async def record_async(self, **kwargs: Any) -> OperationRecord:
        return await asyncio.to_thread(self.record, **kwargs)

    def query(self, query: OperationQuery | None = None, page: int = 1, page_size: int = 50) -> OperationPage:
        """Newest-first page of operations matching ``query``."""
        query = query or OperationQuery()
        with self.store.session() as session:
            rows = session.query(OperationLog)
            if query.operation:
                rows = rows.filter(OperationLog.operation == query.operation.value)
            if query.target_kind:
                rows = rows.filter(OperationLog.target_kind == query.target_kind.value)
            if query.target:
                rows = rows.filter(OperationLog.target.ilike(f"%{query.target}%"))
            if query.outcome:
                rows = rows.filter(OperationLog.outcome == query.outcome.value)
            if query.error_type:
                rows = rows.filter(OperationLog.error_type == query.error_type)
            if query.since:
                rows = rows.filter(OperationLog.recorded_at >= query.since)
            if query.until:
                rows = rows.filter(OperationLog.recorded_at <= query.until)

            total = rows.count()
            selected = (
                rows.order_by(desc(OperationLog.recorded_at), desc(OperationLog.id))
                .offset((page - 1) * page_size)
                .limit(page_size)
                .all()
            )
            records = [_to_record(row) for row in selected]

        return OperationPage(
            records=records,
            total=total,
            page=page,
            page_size=page_size,
            pages=-(-total // page_size),
        )

    def prune(self, retention_days: int | None = None) -> int:
        """Delete operations older than the retention window."""
        days = self.settings.audit_retention_days if retention_days is None else retention_days
        cutoff = utcnow() - timedelta(days=days)
        with self.store.session() as session:
            deleted = session.query(OperationLog).filter(OperationLog.recorded_at < cutoff).delete()
        logger.info("Pruned %d audit entries older than %d days", deleted, days)
        return deleted

    async def _record_quietly(self, **kwargs: Any) -> None:
        """Record without letting a store failure replace the operation's result."""
        try:
            await self.record_async(**kwargs)
        except Exception:
            logger.exception(f"Unable to write {_value(kwargs['operation'])} {kwargs['target']} to the audit log")

    @asynccontextmanager
    async def track(
        self,
        operation: Operation,
        target_kind: TargetKind,
        target: str,
        details: dict[str, Any] | None = None,
    ) -> AsyncGenerator[dict[str, Any], None]:
        """Time the wrapped block and record its outcome.

        The caller may set ``message``, ``outcome``, ``target`` and ``details``
        on the yielded dict. Exceptions are recorded with their ``error_type``
        and re-raised.
        """
        state: dict[str, Any] = {
            "message": None,
            "outcome": Outcome.SUCCESS,
            "target": target,
            "details": details,
        }
        started = time.monotonic()

        try:
            yield state
        except Exception as exc:
            await self._record_quietly(
                operation=operation,
                target_kind=target_kind,
                target=state["target"],
                outcome=Outcome.FAILURE,
                message=state["message"],
                error=str(exc),
                error_type=_error_type(exc),
                details=state["details"],
                duration_ms=(time.monotonic() - started) * 1000,
            )
            raise

        await self._record_quietly(
            operation=operation,
            target_kind=target_kind,
            target=state["target"],
            outcome=state["outcome"],
            message=state["message"],
            details=state["details"],
            duration_ms=(time.monotonic() - started) * 1000,
        )
