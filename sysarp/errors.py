"""Error taxonomy for the ops core.

Every failure that crosses a write or auth boundary is one of these types.
The message is meant to be shown to the operator verbatim.
"""

from __future__ import annotations

import re
from typing import Optional

from sysarp.remote.client import RemoteError, RemoteUnavailable


_MISSING_COLUMN_RE = re.compile(r"Could not find the '(.+?)' column")


class OpsError(Exception):
    """Base class for classified, human-readable failures."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationFailure(OpsError):
    """Malformed input. No I/O was attempted."""


class ConnectivityFailure(OpsError):
    """The remote backend could not be reached."""


class SchemaFailure(OpsError):
    """The remote backend rejected a write because a field is missing."""

    def __init__(self, message: str, column: Optional[str] = None):
        super().__init__(message)
        self.column = column


class AuthFailure(OpsError):
    """Bad credential or disallowed account state."""


class NotFound(OpsError):
    """No record with the requested identifier."""


class GenericFailure(OpsError):
    """Unclassified remote error; carries the backend message."""


def classify_write_error(exc: Exception, action: str, table: str) -> OpsError:
    """Map a raw remote failure on a write path to the taxonomy.

    Args:
        exc: The exception raised by the remote client.
        action: Verb used in the message ("save", "update", "delete").
        table: Physical table name, used in schema messages.
    """
    if isinstance(exc, OpsError):
        return exc
    if isinstance(exc, RemoteUnavailable):
        return ConnectivityFailure(
            "Connection error: could not reach the server. "
            "Check your network or whether a firewall is blocking the backend."
        )

    msg = str(exc)
    match = _MISSING_COLUMN_RE.search(msg)
    if match:
        column = match.group(1)
        return SchemaFailure(
            f"Database schema out of date: column '{column}' is missing "
            f"from table '{table}'.",
            column=column,
        )
    if isinstance(exc, RemoteError) and exc.code == "PGRST116":
        return NotFound(f"Record not found in '{table}'.")
    return GenericFailure(f"Failed to {action}: {msg}")
