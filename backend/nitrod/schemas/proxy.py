from __future__ import annotations

from enum import Enum

from pydantic import BaseModel


class ProxyState(str, Enum):
    ABSENT = "absent"
    CREATED = "created"
    RUNNING = "running"


class ProxyPorts(BaseModel):
    http: int = 80
    https: int = 443
    api: int = 5000


class ProxyContainer(BaseModel):
    id: str
    name: str
    state: ProxyState
    ports: ProxyPorts
    volume_name: str | None = None
    network_id: str | None = None
