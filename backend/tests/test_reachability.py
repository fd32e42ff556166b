"""Tests for the TCP reachability probe and gate."""

import socket
from unittest.mock import MagicMock, patch

import pytest

from nitrod.exceptions import ConnectivityError, DatabaseNotReadyError
from nitrod.services.reachability import ProbeResult, ReachabilityGate, probe


@pytest.fixture
def listening_port():
    server = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    server.bind(("127.0.0.1", 0))
    server.listen(1)
    yield server.getsockname()[1]
    server.close()


@pytest.fixture
def closed_port():
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    sock.bind(("127.0.0.1", 0))
    port = sock.getsockname()[1]
    sock.close()
    return port


class TestProbe:
    def test_open_port_is_reachable(self, listening_port):
        result = probe("127.0.0.1", listening_port, timeout=1.0)
        assert result.reachable is True
        assert result.error is None

    def test_closed_port_is_unreachable(self, closed_port):
        result = probe("127.0.0.1", str(closed_port), timeout=1.0)
        assert result.reachable is False
        assert result.error

    def test_non_numeric_port_is_unreachable(self):
        result = probe("127.0.0.1", "mysql", timeout=1.0)
        assert result.reachable is False

    def test_timeout_is_passed_through(self):
        with patch("nitrod.services.reachability.socket.create_connection") as mock_connect:
            mock_connect.return_value.__enter__.return_value = MagicMock()
            probe("db.nitro", "3306", timeout=2.5)
        mock_connect.assert_called_once_with(("db.nitro", 3306), timeout=2.5)


class TestReachabilityGate:
    def test_inverted_rejects_reachable(self):
        gate = ReachabilityGate(inverted=True, prober=lambda h, p, t: ProbeResult(reachable=True))
        with pytest.raises(DatabaseNotReadyError) as exc_info:
            gate.check("mysql.nitro", "3306")
        assert "host mysql.nitro using port 3306" in str(exc_info.value)
        assert isinstance(exc_info.value, ConnectivityError)

    def test_inverted_allows_unreachable(self):
        gate = ReachabilityGate(inverted=True, prober=lambda h, p, t: ProbeResult(reachable=False, error="refused"))
        gate.check("mysql.nitro", "3306")

    def test_direct_rejects_unreachable(self):
        gate = ReachabilityGate(inverted=False, prober=lambda h, p, t: ProbeResult(reachable=False, error="refused"))
        with pytest.raises(DatabaseNotReadyError, match="refused"):
            gate.check("mysql.nitro", "3306")

    def test_direct_allows_reachable(self):
        gate = ReachabilityGate(inverted=False, prober=lambda h, p, t: ProbeResult(reachable=True))
        gate.check("mysql.nitro", "3306")

    def test_inverted_gate_against_real_listener(self, listening_port):
        gate = ReachabilityGate(timeout=1.0, inverted=True)
        with pytest.raises(DatabaseNotReadyError):
            gate.check("127.0.0.1", str(listening_port))

    def test_gate_uses_timeout(self):
        prober = MagicMock(return_value=ProbeResult(reachable=False))
        ReachabilityGate(timeout=0.75, prober=prober).check("pg.nitro", "5432")
        prober.assert_called_once_with("pg.nitro", "5432", 0.75)
