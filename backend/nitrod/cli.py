"""
Command line entry point for nitrod.

Usage:
    nitrod serve [--host HOST] [--port PORT]
    nitrod proxy init [--name NAME]
    nitrod proxy ensure --volume VOLUME [--network NETWORK_ID]
    nitrod proxy start
    nitrod ping
    nitrod version
    nitrod apply SITES_JSON
    nitrod db add --engine ENGINE --hostname HOST --port PORT --database NAME
    nitrod db remove --engine ENGINE --hostname HOST --port PORT --database NAME
    nitrod db import FILE [--engine ENGINE] --hostname HOST --port PORT --database NAME

Client commands talk to the daemon on 127.0.0.1:NITRO_API_PORT unless
--api-url is given, and refuse to run against a daemon reporting a
different version unless --force is given.

`db import` detects the engine from the header of an uncompressed dump when
--engine is left out.
"""

from __future__ import annotations

import argparse
import base64
import json
import logging
import sys
from typing import Iterator

import httpx
import uvicorn

from nitrod.config import get_settings
from nitrod.dependencies import get_proxy_manager
from nitrod.exceptions import NitroError
from nitrod.schemas.databases import DatabaseEngine, DatabaseTarget

API_TIMEOUT = 120.0
IMPORT_CHUNK_SIZE = 64 * 1024
COMPRESSED_SUFFIXES = (".gz", ".zip", ".tgz", ".bz2")
DUMP_HEADER_BYTES = 4096
MYSQL_DUMP_MARKERS = (b"MySQL dump", b"MariaDB dump")
POSTGRES_DUMP_MARKERS = (b"PostgreSQL database dump",)


def default_api_url() -> str:
    return f"http://127.0.0.1:{get_settings().nitro_api_port}"


def api_request(client: httpx.Client, method: str, endpoint: str, data: dict | None = None, **kwargs) -> dict:
    """Make an API request and return the JSON response, exiting on failure."""
    try:
        response = client.request(method, endpoint, json=data, **kwargs)
    except httpx.TransportError as e:
        print(f"Connection error: {e}")
        print(f"Make sure nitrod is running at {client.base_url}")
        sys.exit(1)

    if response.is_error:
        try:
            detail = response.json().get("detail", response.text)
        except json.JSONDecodeError:
            detail = response.text
        print(f"Error {response.status_code}: {detail}")
        sys.exit(1)

    return response.json()


def check_version(client: httpx.Client, force: bool = False) -> None:
    """Refuse to continue when the daemon reports a different version."""
    expected = get_settings().version
    reported = api_request(client, "GET", "/api/version").get("version", "")
    if reported == expected:
        return
    if force:
        print(f"Warning: nitrod reports version {reported}, expected {expected}")
        return
    print(f"Version mismatch: nitrod reports {reported}, this CLI is {expected}")
    print("Re-run with --force to continue anyway")
    sys.exit(1)


def load_sites(path: str) -> list[dict]:
    """Read sites from a JSON file holding a list or a {"sites": [...]} object."""
    with open(path) as f:
        data = json.load(f)
    sites = data.get("sites", []) if isinstance(data, dict) else data
    for site in sites:
        if isinstance(site.get("aliases"), list):
            site["aliases"] = ",".join(site["aliases"])
    return sites


def detect_engine(path: str) -> DatabaseEngine:
    """Tell a mysqldump from a pg_dump by the comments at the top of the file."""
    try:
        with open(path, "rb") as f:
            header = f.read(DUMP_HEADER_BYTES)
    except OSError as e:
        raise ValueError(f"unable to read {path} to detect the backup type: {e}") from e

    if any(marker in header for marker in MYSQL_DUMP_MARKERS):
        return DatabaseEngine.MYSQL
    if any(marker in header for marker in POSTGRES_DUMP_MARKERS):
        return DatabaseEngine.POSTGRES
    raise ValueError(f"unable to detect the backup type of {path}, pass --engine")


def iter_import_messages(path: str, target: DatabaseTarget, chunk_size: int = IMPORT_CHUNK_SIZE) -> Iterator[bytes]:
    """Yield the NDJSON import stream for a backup file.

    The first line carries the target database; every line carries a
    base64 chunk of the file. An empty file still sends the target.
    """
    first = True
    with open(path, "rb") as f:
        while True:
            chunk = f.read(chunk_size)
            if not chunk and not first:
                break
            message: dict = {"data": base64.b64encode(chunk).decode("ascii")}
            if first:
                message["database"] = target.model_dump(mode="json")
                first = False
            yield json.dumps(message).encode() + b"\n"
            if not chunk:
                break


# Commands -------------------------------------------------------------------


def serve(host: str | None, port: int | None) -> None:
    settings = get_settings()
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    uvicorn.run(
        "nitrod.main:app",
        host=host or settings.listen_host,
        port=port or int(settings.nitro_api_port),
        log_level=settings.log_level.lower(),
    )


def proxy_command(args: argparse.Namespace) -> None:
    manager = get_proxy_manager()
    try:
        if args.proxy_command == "init":
            proxy = manager.initialize(args.name)
        elif args.proxy_command == "ensure":
            proxy = manager.ensure(args.volume, args.network)
        else:
            proxy = manager.find_and_start()
    except (NitroError, ValueError) as e:
        print(f"Error: {e}")
        sys.exit(1)

    print(f"Proxy: {proxy.name} ({proxy.id[:12]})")
    print(f"State: {proxy.state.value}")
    print(f"Ports: http={proxy.ports.http} https={proxy.ports.https} api={proxy.ports.api}")


def ping(client: httpx.Client) -> None:
    result = api_request(client, "GET", "/api/ping")
    print(result.get("pong", ""))


def version(client: httpx.Client) -> None:
    result = api_request(client, "GET", "/api/version")
    print(f"nitro: {get_settings().version}")
    print(f"nitrod: {result.get('version', 'unknown')}")


def apply(client: httpx.Client, path: str) -> None:
    sites = load_sites(path)
    print(f"Applying {len(sites)} sites...")
    result = api_request(client, "POST", "/api/apply", {"sites": sites})
    print(result["message"])
    if result.get("error"):
        sys.exit(1)


def database_target(args: argparse.Namespace) -> DatabaseTarget:
    compressed = args.compressed
    if compressed is None and getattr(args, "file", None):
        compressed = args.file.endswith(COMPRESSED_SUFFIXES)
    engine = args.engine
    if engine is None:
        if compressed:
            raise ValueError("the engine of a compressed backup cannot be detected, pass --engine")
        engine = detect_engine(args.file)
        print(f"Detected {engine.value} backup")
    return DatabaseTarget(
        engine=DatabaseEngine(engine),
        version=args.engine_version,
        hostname=args.hostname,
        port=str(args.port),
        database=args.database,
        compressed=bool(compressed),
    )


def database_command(client: httpx.Client, args: argparse.Namespace) -> None:
    try:
        target = database_target(args)
    except ValueError as e:
        print(f"Error: {e}")
        sys.exit(1)

    if args.db_command == "add":
        result = api_request(client, "POST", "/api/databases", {"database": target.model_dump(mode="json")})
    elif args.db_command == "remove":
        result = api_request(client, "POST", "/api/databases/remove", {"database": target.model_dump(mode="json")})
    else:
        print(f"Importing {args.file} into {target.database} on {target.hostname}...")
        result = api_request(
            client,
            "POST",
            "/api/databases/import",
            content=iter_import_messages(args.file, target),
            headers={"Content-Type": "application/x-ndjson"},
        )

    print(result["message"])


# Argument parsing -----------------------------------------------------------


def _add_target_arguments(parser: argparse.ArgumentParser, engine_required: bool = True) -> None:
    parser.add_argument("--engine", "-e", required=engine_required, default=None, choices=[e.value for e in DatabaseEngine])
    parser.add_argument("--engine-version", default="", help="Engine version, used to pick the client binary")
    parser.add_argument("--hostname", required=True, help="Database container hostname")
    parser.add_argument("--port", "-p", required=True, help="Database port")
    parser.add_argument("--database", "-d", required=True, help="Database name")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="nitrod",
        description="nitro companion daemon and control client",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument("--api-url", default=None, help="Daemon URL (default: 127.0.0.1:NITRO_API_PORT)")
    parser.add_argument("--force", action="store_true", help="Skip the version check")

    subparsers = parser.add_subparsers(dest="command", required=True)

    # serve
    p_serve = subparsers.add_parser("serve", help="Run the daemon")
    p_serve.add_argument("--host", default=None)
    p_serve.add_argument("--port", type=int, default=None)

    # proxy
    p_proxy = subparsers.add_parser("proxy", help="Manage the proxy container")
    proxy_sub = p_proxy.add_subparsers(dest="proxy_command", required=True)
    p_init = proxy_sub.add_parser("init", help="Create network, volume and proxy")
    p_init.add_argument("--name", "-n", default=None, help="Environment name")
    p_ensure = proxy_sub.add_parser("ensure", help="Create the proxy if needed and start it")
    p_ensure.add_argument("--volume", required=True)
    p_ensure.add_argument("--network", default=None, help="Network id")
    proxy_sub.add_parser("start", help="Start an existing proxy container")

    # client commands
    subparsers.add_parser("ping", help="Check the daemon is alive")
    subparsers.add_parser("version", help="Show CLI and daemon versions")

    p_apply = subparsers.add_parser("apply", help="Replace proxy routes from a sites file")
    p_apply.add_argument("sites_file")

    p_db = subparsers.add_parser("db", help="Manage databases")
    db_sub = p_db.add_subparsers(dest="db_command", required=True)
    for name, help_text in (("add", "Create a database"), ("remove", "Drop a database")):
        p = db_sub.add_parser(name, help=help_text)
        _add_target_arguments(p)
        p.set_defaults(compressed=False)
    p_import = db_sub.add_parser("import", help="Import a backup into a new database")
    p_import.add_argument("file")
    _add_target_arguments(p_import, engine_required=False)
    p_import.add_argument("--compressed", action="store_true", default=None)

    return parser


def main(argv: list[str] | None = None) -> None:
    args = build_parser().parse_args(argv)

    if args.command == "serve":
        serve(args.host, args.port)
        return
    if args.command == "proxy":
        proxy_command(args)
        return

    with httpx.Client(base_url=args.api_url or default_api_url(), timeout=API_TIMEOUT) as client:
        if args.command == "ping":
            ping(client)
        elif args.command == "version":
            version(client)
        else:
            check_version(client, args.force)
            if args.command == "apply":
                apply(client, args.sites_file)
            elif args.command == "db":
                database_command(client, args)


if __name__ == "__main__":
    main()
