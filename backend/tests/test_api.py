"""Tests for the HTTP surface and error mapping."""

import asyncio
import base64
import json
from unittest.mock import MagicMock, patch

import httpx
import pytest
from fastapi.testclient import TestClient
from sqlalchemy.exc import OperationalError

from nitrod.config import Settings
from nitrod.exceptions import ProcessExitError
from nitrod.main import app
from nitrod.routers.databases import _append_lines
from nitrod.services.audit import AuditService
from nitrod.services.caddy import RouteReconciler
from nitrod.services.databases import DatabaseService
from nitrod.services.process import ProcessResult
from nitrod.services.reachability import ProbeResult, ReachabilityGate


class RecordingRunner:
    def __init__(self, fail_on=None):
        self.calls = []
        self.fail_on = fail_on

    def run(self, host, argv, *, check=True):
        self.calls.append(argv)
        if self.fail_on and any(self.fail_on in arg for arg in argv):
            raise ProcessExitError(argv, 1, "ERROR 1044")
        return ProcessResult(exited_cleanly=True, exit_code=0)

    def resolve_binary(self, tool, version):
        return tool.binary

    def stage_file(self, host, local_path):
        return local_path

    def discard_staged(self, host, path):
        pass


@pytest.fixture
def settings(tmp_path):
    return Settings(
        sqlite_db_path=str(tmp_path / "audit.db"),
        import_temp_dir=str(tmp_path),
        caddy_admin_url="http://caddy.test:2019",
        version="2.0.0-test",
    )


@pytest.fixture
def audit(settings):
    return AuditService(settings)


@pytest.fixture
def client():
    return TestClient(app)


def database_service(settings, runner, reachable=False):
    gate = ReachabilityGate(prober=lambda h, p, t: ProbeResult(reachable=reachable))
    return DatabaseService(settings, runner, gate)


MYSQL = {"engine": "mysql", "version": "8.0", "hostname": "mysql-8.0-3306", "port": "3306", "database": "craft"}


class TestSystem:
    def test_ping(self, client):
        response = client.get("/api/ping")
        assert response.status_code == 200
        assert response.json() == {"pong": "pong"}

    def test_version(self, client, settings):
        with patch("nitrod.routers.system.get_settings", return_value=settings):
            response = client.get("/api/version")
        assert response.json() == {"version": "2.0.0-test"}


class TestApply:
    def test_apply_success(self, client, settings, audit):
        posted = []

        def handler(request):
            posted.append(json.loads(request.content))
            return httpx.Response(200)

        reconciler = RouteReconciler(settings, transport=httpx.MockTransport(handler))
        with patch("nitrod.routers.apply.get_route_reconciler", return_value=reconciler), \
                patch("nitrod.routers.apply.get_audit_service", return_value=audit):
            response = client.post(
                "/api/apply",
                json={"sites": [{"hostname": "example.nitro", "aliases": "www.example.nitro", "port": 8080}]},
            )

        assert response.status_code == 200
        assert response.json() == {"message": "Successfully applied changes, sites: 1", "error": False}
        assert posted[0]["https"]["routes"][0]["match"] == [{"host": ["example.nitro", "www.example.nitro"]}]
        assert audit.query().records[0].operation == "sites_apply"

    def test_apply_rejection_is_soft(self, client, settings, audit):
        reconciler = RouteReconciler(settings, transport=httpx.MockTransport(lambda r: httpx.Response(400)))
        with patch("nitrod.routers.apply.get_route_reconciler", return_value=reconciler), \
                patch("nitrod.routers.apply.get_audit_service", return_value=audit):
            response = client.post("/api/apply", json={"sites": []})

        assert response.status_code == 200
        assert response.json() == {"message": "Received 400 response from Caddy API", "error": True}
        assert audit.query().records[0].outcome == "failure"

    def test_strict_rejection_is_502(self, client, settings, audit):
        reconciler = RouteReconciler(settings, transport=httpx.MockTransport(lambda r: httpx.Response(400)))
        with patch("nitrod.routers.apply.get_route_reconciler", return_value=reconciler), \
                patch("nitrod.routers.apply.get_audit_service", return_value=audit):
            response = client.post("/api/apply", params={"strict": "true"}, json={"sites": []})

        assert response.status_code == 502
        assert response.json()["error_type"] == "rejection"
        assert response.json()["detail"] == "Received 400 response from Caddy API"

    def test_apply_unreachable_is_503(self, client, settings, audit):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        reconciler = RouteReconciler(settings, transport=httpx.MockTransport(handler))
        with patch("nitrod.routers.apply.get_route_reconciler", return_value=reconciler), \
                patch("nitrod.routers.apply.get_audit_service", return_value=audit):
            response = client.post("/api/apply", json={"sites": []})

        assert response.status_code == 503
        assert response.json()["error_type"] == "connectivity"
        assert response.json()["code"] == "internal"

    def test_apply_invalid_hostname(self, client):
        reconciler = MagicMock()
        with patch("nitrod.routers.apply.get_route_reconciler", return_value=reconciler):
            response = client.post("/api/apply", json={"sites": [{"hostname": "bad host", "port": 80}]})
        assert response.status_code == 400
        reconciler.apply.assert_not_called()


class TestDatabases:
    def test_add(self, client, settings, audit):
        runner = RecordingRunner()
        with patch("nitrod.routers.databases.get_database_service", return_value=database_service(settings, runner)), \
                patch("nitrod.routers.databases.get_audit_service", return_value=audit):
            response = client.post("/api/databases", json={"database": MYSQL})

        assert response.status_code == 200
        assert response.json() == {"message": 'Database "craft" added to "mysql-8.0-3306" successfully'}
        assert len(runner.calls) == 2

    def test_remove(self, client, settings, audit):
        runner = RecordingRunner()
        with patch("nitrod.routers.databases.get_database_service", return_value=database_service(settings, runner)), \
                patch("nitrod.routers.databases.get_audit_service", return_value=audit):
            response = client.post("/api/databases/remove", json={"database": MYSQL})

        assert response.status_code == 200
        assert runner.calls[0][-1] == "DROP DATABASE IF EXISTS craft;"

    def test_reachable_target_is_503(self, client, settings, audit):
        runner = RecordingRunner()
        service = database_service(settings, runner, reachable=True)
        with patch("nitrod.routers.databases.get_database_service", return_value=service), \
                patch("nitrod.routers.databases.get_audit_service", return_value=audit):
            response = client.post("/api/databases", json={"database": MYSQL})

        assert response.status_code == 503
        body = response.json()
        assert body["error_type"] == "connectivity"
        assert "it does not appear the database is available" in body["detail"]
        assert runner.calls == []
        assert audit.query().records[0].outcome == "failure"
        assert audit.query().records[0].error_type == "connectivity"

    def test_partial_provision_is_500(self, client, settings, audit):
        service = database_service(settings, RecordingRunner(fail_on="GRANT"))
        with patch("nitrod.routers.databases.get_database_service", return_value=service), \
                patch("nitrod.routers.databases.get_audit_service", return_value=audit):
            response = client.post("/api/databases", json={"database": MYSQL})

        assert response.status_code == 500
        assert response.json()["error_type"] == "partial_provision"

    def test_invalid_database_name_is_400(self, client, settings, audit):
        runner = RecordingRunner()
        with patch("nitrod.routers.databases.get_database_service", return_value=database_service(settings, runner)), \
                patch("nitrod.routers.databases.get_audit_service", return_value=audit):
            response = client.post("/api/databases", json={"database": {**MYSQL, "database": "x;drop"}})

        assert response.status_code == 400
        assert runner.calls == []
        assert audit.query().records[0].error_type == "validation"

    def test_audit_store_failure_keeps_result(self, client, settings, audit):
        runner = RecordingRunner()
        locked = OperationalError("INSERT INTO operation_log", {}, Exception("database is locked"))
        with patch("nitrod.routers.databases.get_database_service", return_value=database_service(settings, runner)), \
                patch("nitrod.routers.databases.get_audit_service", return_value=audit), \
                patch.object(audit, "record", side_effect=locked):
            response = client.post("/api/databases", json={"database": MYSQL})

        assert response.status_code == 200
        assert response.json() == {"message": 'Database "craft" added to "mysql-8.0-3306" successfully'}
        assert len(runner.calls) == 2

    def test_unknown_engine_is_422(self, client):
        response = client.post("/api/databases", json={"database": {**MYSQL, "engine": "oracle"}})
        assert response.status_code == 422


def ndjson(*messages):
    return b"".join(json.dumps(m).encode() + b"\n" for m in messages)


def b64(data):
    return base64.b64encode(data).decode()


class TestImport:
    def test_streamed_import(self, client, settings, audit, tmp_path):
        runner = RecordingRunner()
        body = ndjson(
            {"database": MYSQL, "data": b64(b"INSERT ")},
            {"data": b64(b"INTO t;")},
        )
        with patch("nitrod.routers.databases.get_database_service", return_value=database_service(settings, runner)), \
                patch("nitrod.routers.databases.get_audit_service", return_value=audit):
            response = client.post("/api/databases/import", content=body)

        assert response.status_code == 200
        assert response.json() == {"message": 'Imported database "craft"'}
        assert runner.calls[-1][:4] == ["mysql", "-unitro", "-pnitro", "craft"]
        assert [p for p in tmp_path.iterdir() if p.name.startswith("nitro-db-import")] == []
        log = audit.query().records[0]
        assert log.operation == "database_import"
        assert log.details["bytes"] == len(b"INSERT INTO t;")

    def test_lines_written_off_the_event_loop(self, client, settings, audit):
        body = ndjson({"database": MYSQL, "data": b64(b"INSERT INTO t;")})
        with patch("nitrod.routers.databases.get_database_service", return_value=database_service(settings, RecordingRunner())), \
                patch("nitrod.routers.databases.get_audit_service", return_value=audit), \
                patch("nitrod.routers.databases.asyncio.to_thread", wraps=asyncio.to_thread) as to_thread:
            response = client.post("/api/databases/import", content=body)

        assert response.status_code == 200
        assert _append_lines in [c.args[0] for c in to_thread.call_args_list]

    def test_last_line_without_newline(self, client, settings, audit):
        runner = RecordingRunner()
        body = json.dumps({"database": MYSQL, "data": b64(b"SELECT 1;")}).encode()
        with patch("nitrod.routers.databases.get_database_service", return_value=database_service(settings, runner)), \
                patch("nitrod.routers.databases.get_audit_service", return_value=audit):
            response = client.post("/api/databases/import", content=body)
        assert response.status_code == 200

    def test_empty_stream_is_400(self, client, settings, audit):
        runner = RecordingRunner()
        with patch("nitrod.routers.databases.get_database_service", return_value=database_service(settings, runner)), \
                patch("nitrod.routers.databases.get_audit_service", return_value=audit):
            response = client.post("/api/databases/import", content=b"")

        assert response.status_code == 400
        assert response.json()["error_type"] == "protocol"
        assert runner.calls == []
        log = audit.query().records[0]
        assert log.operation == "database_import"
        assert log.outcome == "failure"
        assert log.error_type == "protocol"

    def test_malformed_line_is_400(self, client, settings, audit, tmp_path):
        runner = RecordingRunner()
        body = ndjson({"database": MYSQL, "data": b64(b"x")}) + b"{not json\n"
        with patch("nitrod.routers.databases.get_database_service", return_value=database_service(settings, runner)), \
                patch("nitrod.routers.databases.get_audit_service", return_value=audit):
            response = client.post("/api/databases/import", content=body)

        assert response.status_code == 400
        assert "malformed import message 2" in response.json()["detail"]
        assert runner.calls == []
        assert audit.query().records[0].target == "mysql-8.0-3306/craft"
        assert [p for p in tmp_path.iterdir() if p.name.startswith("nitro-db-import")] == []

    def test_import_failure_cleans_up(self, client, settings, audit, tmp_path):
        runner = RecordingRunner(fail_on="source ")
        body = ndjson({"database": MYSQL, "data": b64(b"INSERT INTO t;")})
        with patch("nitrod.routers.databases.get_database_service", return_value=database_service(settings, runner)), \
                patch("nitrod.routers.databases.get_audit_service", return_value=audit):
            response = client.post("/api/databases/import", content=body)

        assert response.status_code == 500
        assert response.json()["error_type"] == "execution"
        assert [p for p in tmp_path.iterdir() if p.name.startswith("nitro-db-import")] == []


class TestAuditRoutes:
    def test_logs_and_cleanup(self, client, audit):
        audit.record("sites_apply", "proxy", "caddy")
        with patch("nitrod.routers.audit.get_audit_service", return_value=audit):
            logs = client.get("/api/audit/logs", params={"operation": "sites_apply"})
            cleanup = client.post("/api/audit/cleanup")

        assert logs.status_code == 200
        assert logs.json()["total"] == 1
        assert cleanup.json() == {"deleted": 0, "message": "Deleted 0 old audit log entries"}
