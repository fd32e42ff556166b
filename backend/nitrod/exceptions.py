"""Errors raised by the nitrod control plane.

Every error carries an ``error_type`` naming its kind so the HTTP layer can
report it without inspecting messages:

    connectivity  target host/port or the Caddy admin API is unreachable
    rejection     the remote accepted the connection but refused the request
    execution     a client binary or container exec could not run or failed
    io            temp file or stream copy failure
    protocol      malformed, empty or truncated request stream
    not_found     a required container does not exist
"""

from __future__ import annotations


class NitroError(RuntimeError):
    error_type = "internal"


# Connectivity ----------------------------------------------------------------


class ConnectivityError(NitroError):
    error_type = "connectivity"


class ProxyUnreachableError(ConnectivityError):
    pass


class DatabaseNotReadyError(ConnectivityError):
    def __init__(self, hostname: str, port: str, reason: str):
        self.hostname = hostname
        self.port = port
        super().__init__(
            f"it does not appear the database is available on host {hostname} using port {port}: {reason}"
        )


# Rejection -------------------------------------------------------------------


class ProxyRejectedError(NitroError):
    error_type = "rejection"

    def __init__(self, status_code: int, body: str = ""):
        self.status_code = status_code
        self.body = body
        super().__init__(f"Received {status_code} response from Caddy API")


# Execution -------------------------------------------------------------------


class ExecutionError(NitroError):
    error_type = "execution"


class ToolNotFoundError(ExecutionError):
    pass


class ProcessStartError(ExecutionError):
    """The command could not be launched at all."""


class ProcessExitError(ExecutionError):
    """The command started but exited with a nonzero status."""

    def __init__(self, command: list[str], exit_code: int | None, stderr: str = ""):
        self.command = command
        self.exit_code = exit_code
        self.stderr = stderr
        message = f"Exit Status: {exit_code}"
        if stderr:
            message += f"\n{stderr}"
        super().__init__(message)


class ProcessTimeoutError(ExecutionError):
    pass


class CompletionTimeoutError(ExecutionError):
    pass


class StreamCopyError(ExecutionError):
    """Copying a process output stream failed."""

    error_type = "io"


class PartialProvisionError(ExecutionError):
    """The database was created but the privilege grant failed."""

    error_type = "partial_provision"

    def __init__(self, database: str, hostname: str, cause: Exception):
        self.database = database
        self.hostname = hostname
        self.cause = cause
        super().__init__(
            f"database {database!r} was created on {hostname!r} but setting privileges failed: {cause}"
        )


class ProvisionStepError(ExecutionError):
    """A database command failed; names the step and keeps the cause's kind."""

    def __init__(self, step: str, database: str, hostname: str, cause: Exception):
        self.step = step
        self.database = database
        self.hostname = hostname
        self.cause = cause
        self.error_type = getattr(cause, "error_type", ExecutionError.error_type)
        super().__init__(f"error {step} database {database!r} on {hostname!r}: {cause}")


class ProxyContainerError(ExecutionError):
    pass


# I/O and protocol ------------------------------------------------------------


class ImportIOError(NitroError):
    error_type = "io"


class ProtocolError(NitroError):
    error_type = "protocol"


# Lookup ----------------------------------------------------------------------


class ProxyNotFoundError(NitroError, LookupError):
    error_type = "not_found"

    def __init__(self, message: str = "unable to locate the proxy container"):
        super().__init__(message)

