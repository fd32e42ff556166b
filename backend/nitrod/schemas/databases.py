from __future__ import annotations

from enum import Enum

from pydantic import Base64Bytes, BaseModel, Field


class DatabaseEngine(str, Enum):
    MYSQL = "mysql"
    POSTGRES = "postgres"


class DatabaseTarget(BaseModel):
    """Container and logical database an operation acts on."""

    engine: DatabaseEngine
    version: str = ""
    hostname: str = Field(..., min_length=1)
    port: str = Field(..., min_length=1)
    database: str = Field(..., min_length=1)
    compressed: bool = False


class DatabaseRequest(BaseModel):
    database: DatabaseTarget


class DatabaseResponse(BaseModel):
    message: str


class ImportChunk(BaseModel):
    """One message of a streamed import.

    Only the first message's ``database`` is read; ``data`` is appended from
    every message, the first included.
    """

    database: DatabaseTarget | None = None
    data: bytes = b""


class ImportMessage(BaseModel):
    """Wire form of ``ImportChunk``: one NDJSON line with base64 data."""

    database: DatabaseTarget | None = None
    data: Base64Bytes = b""

    def to_chunk(self) -> ImportChunk:
        return ImportChunk(database=self.database, data=self.data)
