"""Input validation for nitrod.

Database names and hosts end up inside SQL statements and client argument
vectors, so they are restricted to identifier characters before any command
is built.
"""

from __future__ import annotations

import re


class ValidationError(ValueError):
    """Raised when input validation fails."""
    pass


def validate_hostname(hostname: str) -> str:
    """Validate a site hostname, alias or database host.

    Hostnames must be:
    - 1-253 characters long
    - Alphanumeric labels separated by dots, hyphens and underscores allowed
    - Labels cannot start or end with a hyphen

    Returns the validated hostname (lowercased).
    Raises ValidationError if invalid.
    """
    if not hostname or not hostname.strip():
        raise ValidationError("Hostname cannot be empty")

    hostname = hostname.strip().lower()

    if len(hostname) > 253:
        raise ValidationError("Hostname must be 253 characters or less")

    # Allow a leading wildcard label
    check = hostname[2:] if hostname.startswith("*.") else hostname

    for label in check.split("."):
        if not label:
            raise ValidationError(f"Hostname labels cannot be empty: {hostname}")
        if len(label) > 63:
            raise ValidationError("Hostname labels must be 63 characters or less")
        if not re.match(r'^[a-z0-9_]([a-z0-9_-]*[a-z0-9_])?$', label):
            raise ValidationError(f"Invalid hostname format: {hostname}")

    return hostname


def validate_port(port: int | str) -> int:
    """Validate a TCP port number given as int or numeric string."""
    if isinstance(port, str):
        port = port.strip()
        if not port.isdigit():
            raise ValidationError(f"Port must be numeric, got '{port}'")
        port = int(port)

    if not 1 <= port <= 65535:
        raise ValidationError(f"Port must be between 1 and 65535, got {port}")

    return port


def validate_database_name(name: str) -> str:
    """Validate a logical database name.

    Names must be 1-64 characters of letters, digits or underscores so they
    can be used unquoted in CREATE/DROP statements.
    """
    if not name:
        raise ValidationError("Database name cannot be empty")

    name = name.strip()

    if len(name) > 64:
        raise ValidationError("Database name must be 64 characters or less")

    if not re.match(r'^[A-Za-z0-9_]+$', name):
        raise ValidationError(
            "Database name can only contain letters, digits and underscores"
        )

    return name


def validate_container_name(name: str) -> str:
    """Validate a Docker container or volume name.

    Container names must match Docker's naming rules:
    - Alphanumeric, hyphens, underscores, dots
    - Cannot start with hyphen

    Returns validated name.
    Raises ValidationError if invalid.
    """
    if not name:
        raise ValidationError("Container name cannot be empty")

    name = name.strip()

    if not re.match(r'^[a-zA-Z0-9][a-zA-Z0-9_.-]*$', name):
        raise ValidationError(
            "Container name must be alphanumeric with optional "
            "hyphens, underscores, and dots"
        )

    if len(name) > 128:
        raise ValidationError("Container name too long")

    return name
