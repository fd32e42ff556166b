from __future__ import annotations

import logging
import socket
from dataclasses import dataclass

from nitrod.exceptions import DatabaseNotReadyError


logger = logging.getLogger(__name__)


@dataclass
class ProbeResult:
    reachable: bool
    error: str | None = None


def probe(host: str, port: int | str, timeout: float = 3.0) -> ProbeResult:
    """Attempt a TCP connection to (host, port) and close it immediately."""
    try:
        with socket.create_connection((host, int(port)), timeout=timeout):
            return ProbeResult(reachable=True)
    except (OSError, ValueError) as exc:
        return ProbeResult(reachable=False, error=str(exc) or exc.__class__.__name__)


class ReachabilityGate:
    """Decides whether a database target may be acted on.

    With ``inverted`` set, a target that accepts connections is treated as not
    ready and refused; otherwise a target that refuses connections is refused.
    """

    def __init__(self, timeout: float = 3.0, inverted: bool = True, prober=probe):
        self.timeout = timeout
        self.inverted = inverted
        self._probe = prober

    def check(self, host: str, port: str) -> None:
        result = self._probe(host, port, self.timeout)
        logger.debug(
            "Probe %s:%s reachable=%s inverted=%s", host, port, result.reachable, self.inverted
        )
        if self.inverted and result.reachable:
            raise DatabaseNotReadyError(host, port, "the port accepted a connection")
        if not self.inverted and not result.reachable:
            raise DatabaseNotReadyError(host, port, result.error or "connection failed")
