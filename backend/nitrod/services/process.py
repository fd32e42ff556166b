from __future__ import annotations

import logging
import os
import re
import subprocess
import sys
import tarfile
import tempfile
from dataclasses import dataclass
from typing import Iterable, Protocol

import docker
from docker.errors import DockerException

from nitrod.exceptions import (
    ExecutionError,
    ProcessExitError,
    ProcessStartError,
    ProcessTimeoutError,
    StreamCopyError,
)
from nitrod.services.engines import EngineTool
from nitrod.services.polling import wait_until


logger = logging.getLogger(__name__)

_PASSWORD_FLAG = re.compile(r"^(-p)(.+)$")


@dataclass
class ProcessResult:
    exited_cleanly: bool
    exit_code: int | None
    stdout: str = ""
    stderr: str = ""


def redact(argv: Iterable[str]) -> str:
    """Render argv for logs with inline ``-p<password>`` values masked."""
    return " ".join(_PASSWORD_FLAG.sub(r"\1****", arg) for arg in argv)


class CommandRunner(Protocol):
    """Runs a database client command against a target host."""

    def run(self, host: str, argv: list[str], *, check: bool = True) -> ProcessResult:
        ...

    def resolve_binary(self, tool: EngineTool, version: str) -> str:
        ...

    def stage_file(self, host: str, local_path: str) -> str:
        ...

    def discard_staged(self, host: str, path: str) -> None:
        ...


def _finish(argv: list[str], exit_code: int | None, stdout: str, stderr: str, check: bool) -> ProcessResult:
    result = ProcessResult(
        exited_cleanly=exit_code == 0,
        exit_code=exit_code,
        stdout=stdout,
        stderr=stderr,
    )
    if check and not result.exited_cleanly:
        raise ProcessExitError(argv, exit_code, stderr.strip())
    return result


class LocalProcessRunner:
    """Runs client binaries as local subprocesses."""

    def __init__(self, timeout: float | None = None, show_output: bool = False, log_commands: bool = True):
        self.timeout = timeout
        self.show_output = show_output
        self.log_commands = log_commands

    def run(self, host: str, argv: list[str], *, check: bool = True) -> ProcessResult:
        if self.log_commands:
            logger.debug("Exec: %s", redact(argv))

        pipe = None if self.show_output else subprocess.PIPE
        try:
            proc = subprocess.Popen(argv, stdout=pipe, stderr=pipe)
        except OSError as exc:
            raise ProcessStartError(f"unable to start the command {argv[0]!r}: {exc}") from exc

        with proc:
            try:
                out, err = proc.communicate(timeout=self.timeout)
            except subprocess.TimeoutExpired as exc:
                proc.kill()
                proc.communicate()
                raise ProcessTimeoutError(
                    f"command {argv[0]!r} did not finish within {self.timeout}s"
                ) from exc
            except OSError as exc:
                proc.kill()
                raise StreamCopyError(f"unable to copy the output of {argv[0]!r}: {exc}") from exc

        stdout = out.decode(errors="replace") if out else ""
        stderr = err.decode(errors="replace") if err else ""
        return _finish(argv, proc.returncode, stdout, stderr, check)

    def resolve_binary(self, tool: EngineTool, version: str) -> str:
        return tool.resolve_binary(version)

    def stage_file(self, host: str, local_path: str) -> str:
        return local_path

    def discard_staged(self, host: str, path: str) -> None:
        return None


class ContainerExecRunner:
    """Runs commands inside a container through the Docker exec API.

    ``host`` is the container name or id. Completion is detected by polling
    the exec's ``Running`` flag with exponential backoff.
    """

    staging_dir = "/tmp"

    def __init__(
        self,
        client: docker.DockerClient,
        *,
        wait_timeout: float = 600.0,
        poll_initial_delay: float = 0.05,
        poll_max_delay: float = 2.0,
        show_output: bool = False,
        log_commands: bool = True,
    ):
        self.client = client
        self.wait_timeout = wait_timeout
        self.poll_initial_delay = poll_initial_delay
        self.poll_max_delay = poll_max_delay
        self.show_output = show_output
        self.log_commands = log_commands

    def run(self, host: str, argv: list[str], *, check: bool = True) -> ProcessResult:
        api = self.client.api
        if self.log_commands:
            logger.debug("Exec in %s: %s", host, redact(argv))

        try:
            exec_id = api.exec_create(host, argv, stdout=True, stderr=True, tty=False)["Id"]
            stream = api.exec_start(exec_id, stream=True, demux=True)
        except DockerException as exc:
            raise ProcessStartError(f"unable to start the command {argv[0]!r} in container {host}: {exc}") from exc

        stdout, stderr = self._drain(stream, argv)

        try:
            wait_until(
                lambda: not api.exec_inspect(exec_id).get("Running", False),
                timeout=self.wait_timeout,
                initial_delay=self.poll_initial_delay,
                max_delay=self.poll_max_delay,
                description=f"exec {exec_id[:12]} in {host}",
            )
            info = api.exec_inspect(exec_id)
        except DockerException as exc:
            raise ExecutionError(f"unable to inspect the exec in container {host}: {exc}") from exc

        return _finish(argv, info.get("ExitCode"), stdout, stderr, check)

    def _drain(self, stream, argv: list[str]) -> tuple[str, str]:
        out: list[bytes] = []
        err: list[bytes] = []
        try:
            for chunk_out, chunk_err in stream:
                if chunk_out:
                    out.append(chunk_out)
                    if self.show_output:
                        sys.stdout.buffer.write(chunk_out)
                if chunk_err:
                    err.append(chunk_err)
                    if self.show_output:
                        sys.stderr.buffer.write(chunk_err)
        except (OSError, DockerException) as exc:
            raise StreamCopyError(f"unable to copy the output of {argv[0]!r}: {exc}") from exc
        return b"".join(out).decode(errors="replace"), b"".join(err).decode(errors="replace")

    def resolve_binary(self, tool: EngineTool, version: str) -> str:
        # resolved on the container PATH
        return tool.binary

    def stage_file(self, host: str, local_path: str) -> str:
        """Copy ``local_path`` into the container and wait until it is visible."""
        name = os.path.basename(local_path)
        container_path = f"{self.staging_dir}/{name}"

        with tempfile.TemporaryFile() as archive:
            with tarfile.open(fileobj=archive, mode="w") as tar:
                tar.add(local_path, arcname=name)
            archive.seek(0)
            try:
                copied = self.client.api.put_archive(host, self.staging_dir, archive)
            except DockerException as exc:
                raise ExecutionError(f"unable to copy {name} into container {host}: {exc}") from exc
        if not copied:
            raise ExecutionError(f"unable to copy {name} into container {host}")

        wait_until(
            lambda: self.run(host, ["test", "-e", container_path], check=False).exited_cleanly,
            timeout=self.wait_timeout,
            initial_delay=self.poll_initial_delay,
            max_delay=self.poll_max_delay,
            description=f"{container_path} in {host}",
        )
        return container_path

    def discard_staged(self, host: str, path: str) -> None:
        result = self.run(host, ["rm", "-f", path], check=False)
        if not result.exited_cleanly:
            logger.warning("Unable to remove %s from container %s: exit %s", path, host, result.exit_code)
