# SPDX-License-Identifier: Apache-2.0
from __future__ import annotations

"""
Error taxonomy for the task service.

Collaborators (identity resolver, stores) raise these exceptions; lifecycle
operations catch them at their boundary and report them as `Outcome` values
carrying an `ErrorKind`, so callers branch on the kind and never on message text.
"""

from enum import Enum


class ErrorKind(str, Enum):
    """Failure kinds surfaced by lifecycle operations."""

    NOT_FOUND = "NOT_FOUND"
    INVALID_STATE = "INVALID_STATE"
    UNAUTHENTICATED = "UNAUTHENTICATED"
    FORBIDDEN = "FORBIDDEN"
    UPSTREAM_UNAVAILABLE = "UPSTREAM_UNAVAILABLE"

    @property
    def status_code(self) -> int:
        """HTTP status hint for the transport layer."""
        return _STATUS_HINTS[self]


_STATUS_HINTS = {
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.INVALID_STATE: 409,
    ErrorKind.UNAUTHENTICATED: 401,
    ErrorKind.FORBIDDEN: 403,
    ErrorKind.UPSTREAM_UNAVAILABLE: 503,
}


class TaskServiceError(Exception):
    """Base class for all task service errors."""

    kind: ErrorKind

    def __init__(self, message: str = "") -> None:
        super().__init__(message or self.kind.value.lower().replace("_", " "))
        self.message = str(self)


class NotFound(TaskServiceError):
    """The referenced task does not exist."""

    kind = ErrorKind.NOT_FOUND


class InvalidState(TaskServiceError):
    """The transition is not permitted from the task's current status."""

    kind = ErrorKind.INVALID_STATE


class Unauthenticated(TaskServiceError):
    """The caller credential could not be resolved to a user."""

    kind = ErrorKind.UNAUTHENTICATED


class Forbidden(TaskServiceError):
    """The caller is not the poster/assignee required by the operation."""

    kind = ErrorKind.FORBIDDEN


class UpstreamUnavailable(TaskServiceError):
    """
    A collaborator (identity service, broker) failed transiently. Retrying
    later may succeed.
    """

    kind = ErrorKind.UPSTREAM_UNAVAILABLE


_BY_KIND: dict[ErrorKind, type[TaskServiceError]] = {
    cls.kind: cls for cls in (NotFound, InvalidState, Unauthenticated, Forbidden, UpstreamUnavailable)
}


def error_for(kind: ErrorKind, message: str = "") -> TaskServiceError:
    """Build the exception instance matching `kind`."""
    return _BY_KIND[kind](message)
