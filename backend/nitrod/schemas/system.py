from __future__ import annotations

from pydantic import BaseModel


class PingResponse(BaseModel):
    pong: str = "pong"


class VersionResponse(BaseModel):
    version: str
