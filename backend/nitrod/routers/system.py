from __future__ import annotations

from fastapi import APIRouter

from nitrod.config import get_settings
from nitrod.schemas.system import PingResponse, VersionResponse


router = APIRouter(prefix="/api", tags=["system"])


@router.get("/ping", response_model=PingResponse)
async def ping():
    """Liveness check used by the CLI before every command."""
    return PingResponse()


@router.get("/version", response_model=VersionResponse)
async def version():
    return VersionResponse(version=get_settings().version)
