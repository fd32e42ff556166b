from __future__ import annotations

import asyncio

from fastapi import APIRouter, HTTPException, Request
from pydantic import ValidationError as PydanticValidationError
from starlette.requests import ClientDisconnect

from nitrod.dependencies import get_audit_service, get_database_service
from nitrod.exceptions import ProtocolError
from nitrod.schemas.audit import Operation, TargetKind
from nitrod.schemas.databases import DatabaseRequest, DatabaseResponse, DatabaseTarget, ImportMessage
from nitrod.services.databases import ImportSession


router = APIRouter(prefix="/api/databases", tags=["databases"])


def _target_name(target: DatabaseTarget) -> str:
    return f"{target.hostname}/{target.database}"


def _details(target: DatabaseTarget) -> dict:
    return {"engine": target.engine.value, "version": target.version, "port": target.port}


async def _run(operation: Operation, target: DatabaseTarget, func) -> DatabaseResponse:
    audit = get_audit_service()
    try:
        async with audit.track(operation, TargetKind.DATABASE, _target_name(target), details=_details(target)) as state:
            message = await asyncio.to_thread(func, target)
            state["message"] = message
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e
    return DatabaseResponse(message=message)


@router.post("", response_model=DatabaseResponse)
async def add_database(request: DatabaseRequest):
    """Create a database (and grant access where the engine needs it)."""
    service = get_database_service()
    return await _run(Operation.DATABASE_ADD, request.database, service.add_database)


@router.post("/remove", response_model=DatabaseResponse)
async def remove_database(request: DatabaseRequest):
    service = get_database_service()
    return await _run(Operation.DATABASE_REMOVE, request.database, service.remove_database)


async def _receive(request: Request, session: ImportSession) -> None:
    """Append every NDJSON message of the request body to the session file."""
    buffer = b""
    try:
        async for part in request.stream():
            buffer += part
            *lines, buffer = buffer.split(b"\n")
            if lines:
                await asyncio.to_thread(_append_lines, session, lines)
    except ClientDisconnect as exc:
        raise ProtocolError("the client disconnected before the import finished") from exc
    await asyncio.to_thread(_append_lines, session, [buffer])


def _append_lines(session: ImportSession, lines: list[bytes]) -> None:
    for line in lines:
        if not line.strip():
            continue
        try:
            message = ImportMessage.model_validate_json(line)
        except PydanticValidationError as exc:
            raise ProtocolError(f"malformed import message {session.messages + 1}: {exc}") from exc
        session.append(message.to_chunk())


@router.post("/import", response_model=DatabaseResponse)
async def import_database(request: Request):
    """Stream a backup into a new database.

    The body is newline-delimited JSON; the first line carries the target
    database and every line carries a base64 ``data`` chunk.
    """
    service = get_database_service()
    audit = get_audit_service()

    try:
        # target is unknown until the first message arrives
        async with audit.track(Operation.DATABASE_IMPORT, TargetKind.DATABASE, "unknown") as state:
            with service.open_import_session() as session:
                try:
                    await _receive(request, session)
                finally:
                    if session.target is not None:
                        state["target"] = _target_name(session.target)
                        state["details"] = {
                            **_details(session.target),
                            "bytes": session.bytes_written,
                            "compressed": session.target.compressed,
                        }
                message = await asyncio.to_thread(service.complete_import, session)
            state["message"] = message
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e

    return DatabaseResponse(message=message)
