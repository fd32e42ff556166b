from __future__ import annotations

from pydantic import BaseModel, Field


class Upstream(BaseModel):
    dial: str


class RouteHandle(BaseModel):
    handler: str
    upstreams: list[Upstream] | None = None
    root: str | None = None
    hide: list[str] | None = None


class Match(BaseModel):
    host: list[str]


class ServerRoute(BaseModel):
    """One match+handle rule in a Caddy server."""

    handle: list[RouteHandle]
    match: list[Match] | None = None
    terminal: bool = True


class Server(BaseModel):
    listen: list[str]
    routes: list[ServerRoute] = Field(default_factory=list)


class CaddyUpdate(BaseModel):
    """Replacement document for Caddy's ``apps.http.servers`` section."""

    https: Server
    http: Server

    def to_payload(self) -> dict:
        return self.model_dump(exclude_none=True)
