from __future__ import annotations

import logging
import os
import tempfile
from typing import Iterable

from nitrod.config import Settings
from nitrod.exceptions import (
    ExecutionError,
    ImportIOError,
    PartialProvisionError,
    ProtocolError,
    ProvisionStepError,
)
from nitrod.schemas.databases import DatabaseTarget, ImportChunk
from nitrod.services.engines import ENGINE_TOOLS, EngineTool
from nitrod.services.process import CommandRunner
from nitrod.services.reachability import ReachabilityGate
from nitrod.validators import ValidationError, validate_database_name, validate_hostname, validate_port


logger = logging.getLogger(__name__)


class ImportSession:
    """Temp file and target for one streamed import.

    The first message decides the target; data from every message is appended
    in arrival order. The file is removed when the session closes.
    """

    def __init__(self, temp_dir: str | None = None):
        try:
            fd, self.path = tempfile.mkstemp(prefix="nitro-db-import-", suffix=".sql", dir=temp_dir)
        except OSError as exc:
            raise ImportIOError(f"unable to create a temp file for the upload: {exc}") from exc
        try:
            self._file = os.fdopen(fd, "wb")
        except OSError as exc:
            os.close(fd)
            os.remove(self.path)
            raise ImportIOError(f"unable to open the temp file for the upload: {exc}") from exc
        self.target: DatabaseTarget | None = None
        self.messages = 0
        self.bytes_written = 0

    def append(self, chunk: ImportChunk) -> None:
        if self.target is None:
            if chunk.database is None:
                raise ProtocolError("the first import message must describe the database")
            self.target = chunk.database

        try:
            self._file.write(chunk.data)
        except OSError as exc:
            raise ImportIOError(f"unable to write content to the temp file: {exc}") from exc

        self.messages += 1
        self.bytes_written += len(chunk.data)

    def finish(self) -> DatabaseTarget:
        """Flush the upload and return the target it was sent for."""
        if self.messages == 0 or self.target is None:
            raise ProtocolError("the import stream ended before any message was received")
        try:
            self._file.close()
        except OSError as exc:
            raise ImportIOError(f"unable to flush the temp file: {exc}") from exc
        return self.target

    def close(self) -> None:
        if not self._file.closed:
            self._file.close()
        try:
            os.remove(self.path)
        except FileNotFoundError:
            pass

    def __enter__(self) -> "ImportSession":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        try:
            self.close()
        except OSError as cleanup_exc:
            if exc is None:
                raise ImportIOError(f"unable to remove the temp file {self.path}: {cleanup_exc}") from cleanup_exc
            logger.error("Unable to remove import temp file %s: %s", self.path, cleanup_exc)


class DatabaseService:
    """Creates, removes and imports databases in sibling containers."""

    def __init__(
        self,
        settings: Settings,
        runner: CommandRunner,
        gate: ReachabilityGate | None = None,
        tools: dict | None = None,
    ):
        self.settings = settings
        self.runner = runner
        self.gate = gate or ReachabilityGate(
            timeout=settings.reachability_timeout,
            inverted=settings.reachability_inverted,
        )
        self.tools = tools or ENGINE_TOOLS

    # Public operations ---------------------------------------------------

    def add_database(self, target: DatabaseTarget) -> str:
        tool, binary = self._prepare(target)
        self._create(tool, binary, target)
        return f'Database "{target.database}" added to "{target.hostname}" successfully'

    def remove_database(self, target: DatabaseTarget) -> str:
        tool, binary = self._prepare(target)
        try:
            self.runner.run(target.hostname, [binary, *tool.drop_args(target)])
        except ExecutionError as exc:
            raise ProvisionStepError("removing", target.database, target.hostname, exc) from exc
        return f'Removed the database "{target.database}" from "{target.hostname}" successfully'

    def open_import_session(self) -> ImportSession:
        return ImportSession(self.settings.import_temp_dir)

    def import_database(self, chunks: Iterable[ImportChunk]) -> str:
        with self.open_import_session() as session:
            for chunk in chunks:
                session.append(chunk)
            return self.complete_import(session)

    def complete_import(self, session: ImportSession) -> str:
        """Create the target database and restore the uploaded file into it."""
        target = session.finish()
        logger.info(
            "Received %d bytes in %d messages for %s on %s (compressed=%s)",
            session.bytes_written,
            session.messages,
            target.database,
            target.hostname,
            target.compressed,
        )

        tool, binary = self._prepare(target)
        self._create(tool, binary, target)

        staged = self.runner.stage_file(target.hostname, session.path)
        try:
            self.runner.run(target.hostname, [binary, *tool.import_args(target, staged)])
        except ExecutionError as exc:
            raise ProvisionStepError("importing", target.database, target.hostname, exc) from exc
        finally:
            if staged != session.path:
                self.runner.discard_staged(target.hostname, staged)

        return f'Imported database "{target.database}"'

    # Internal helpers ----------------------------------------------------

    def _prepare(self, target: DatabaseTarget) -> tuple[EngineTool, str]:
        """Validate the target, run the reachability gate and find the client."""
        try:
            validate_hostname(target.hostname)
            validate_port(target.port)
            validate_database_name(target.database)
        except ValidationError as exc:
            raise ValueError(f"Invalid database target: {exc}") from exc

        tool = self.tools[target.engine]
        if self.settings.exec_mode == "local" and not tool.names_host:
            raise ExecutionError(
                f"{tool.binary} commands cannot reach \"{target.hostname}\" from the daemon host, "
                "set EXEC_MODE=container to run them inside the database container"
            )

        self.gate.check(target.hostname, target.port)
        return tool, self.runner.resolve_binary(tool, target.version)

    def _create(self, tool: EngineTool, binary: str, target: DatabaseTarget) -> None:
        try:
            self.runner.run(target.hostname, [binary, *tool.create_args(target)])
        except ExecutionError as exc:
            raise ProvisionStepError("creating", target.database, target.hostname, exc) from exc

        grant = tool.grant_args(target)
        if grant is None:
            return
        try:
            self.runner.run(target.hostname, [binary, *grant])
        except ExecutionError as exc:
            raise PartialProvisionError(target.database, target.hostname, exc) from exc
