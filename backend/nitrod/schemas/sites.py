from __future__ import annotations

from dataclasses import dataclass, field

from pydantic import BaseModel, Field


@dataclass(frozen=True)
class Site:
    """A hostname-to-backend mapping the proxy should route."""

    hostname: str
    port: int
    upstream: str
    aliases: tuple[str, ...] = field(default_factory=tuple)

    @property
    def hosts(self) -> list[str]:
        return [self.hostname, *self.aliases]


class SiteIn(BaseModel):
    """Site as sent by the CLI, aliases comma-joined."""

    hostname: str = Field(..., min_length=1, max_length=253)
    aliases: str = ""
    port: int = Field(..., ge=1, le=65535)
    upstream: str | None = None

    def to_site(self) -> Site:
        aliases = tuple(a.strip() for a in self.aliases.split(",") if a.strip())
        return Site(
            hostname=self.hostname,
            port=self.port,
            upstream=self.upstream or self.hostname,
            aliases=aliases,
        )


class ApplyRequest(BaseModel):
    sites: list[SiteIn] = Field(default_factory=list)


class ApplyResponse(BaseModel):
    message: str
    error: bool = False
