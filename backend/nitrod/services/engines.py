"""Database engine command builders.

Each engine exposes the same capabilities: the client binary it needs and the
argument vectors for create, grant (optional), drop and import. Argument
vectors exclude the binary itself.
"""

from __future__ import annotations

import os
import shutil
from abc import ABC, abstractmethod

from nitrod.exceptions import ToolNotFoundError
from nitrod.schemas.databases import DatabaseEngine, DatabaseTarget


class EngineTool(ABC):
    binary: str
    # False when the argv carries no host and only works inside the target container
    names_host: bool = True

    def versioned_candidates(self, version: str) -> list[str]:
        return []

    def resolve_binary(self, version: str = "") -> str:
        """Find the client binary, preferring a version-specific install."""
        for candidate in self.versioned_candidates(version):
            if os.path.isfile(candidate) and os.access(candidate, os.X_OK):
                return candidate

        found = shutil.which(self.binary)
        if not found:
            raise ToolNotFoundError(f"unable to find the {self.binary} client for version {version or 'any'}")
        return found

    @abstractmethod
    def create_args(self, target: DatabaseTarget) -> list[str]:
        ...

    def grant_args(self, target: DatabaseTarget) -> list[str] | None:
        return None

    @abstractmethod
    def drop_args(self, target: DatabaseTarget) -> list[str]:
        ...

    @abstractmethod
    def import_args(self, target: DatabaseTarget, path: str) -> list[str]:
        ...


class MySQLTool(EngineTool):
    binary = "mysql"
    names_host = False

    def create_args(self, target: DatabaseTarget) -> list[str]:
        return ["-uroot", "-pnitro", "-e", f"CREATE DATABASE IF NOT EXISTS {target.database};"]

    def grant_args(self, target: DatabaseTarget) -> list[str] | None:
        return ["-uroot", "-pnitro", "-e", "GRANT ALL PRIVILEGES ON * TO 'nitro'@'%';"]

    def drop_args(self, target: DatabaseTarget) -> list[str]:
        return ["-uroot", "-pnitro", "-e", f"DROP DATABASE IF EXISTS {target.database};"]

    def import_args(self, target: DatabaseTarget, path: str) -> list[str]:
        return ["-unitro", "-pnitro", target.database, "-e", f"source {path}"]


class PostgresTool(EngineTool):
    binary = "psql"

    def versioned_candidates(self, version: str) -> list[str]:
        major = version.split(".")[0] if version else ""
        if not major.isdigit():
            return []
        return [f"/usr/lib/postgresql/{major}/bin/psql", f"/usr/local/pgsql-{major}/bin/psql"]

    def create_args(self, target: DatabaseTarget) -> list[str]:
        return ["--username=nitro", f"--host={target.hostname}", "-c", f"CREATE DATABASE {target.database};"]

    def drop_args(self, target: DatabaseTarget) -> list[str]:
        return ["--username=nitro", f"--host={target.hostname}", "-c", f"DROP DATABASE IF EXISTS {target.database};"]

    def import_args(self, target: DatabaseTarget, path: str) -> list[str]:
        return ["--username=nitro", f"--host={target.hostname}", target.database, "--file", path]


ENGINE_TOOLS: dict[DatabaseEngine, EngineTool] = {
    DatabaseEngine.MYSQL: MySQLTool(),
    DatabaseEngine.POSTGRES: PostgresTool(),
}
