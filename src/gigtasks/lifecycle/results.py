# SPDX-License-Identifier: Apache-2.0
from __future__ import annotations

from dataclasses import dataclass
from typing import Generic, TypeVar

from ..errors import ErrorKind, TaskServiceError, error_for

T = TypeVar("T")


@dataclass(frozen=True)
class LifecycleError:
    kind: ErrorKind
    message: str

    @classmethod
    def from_exc(cls, exc: TaskServiceError) -> LifecycleError:
        return cls(kind=exc.kind, message=exc.message)


@dataclass(frozen=True)
class Outcome(Generic[T]):
    """
    Result of a lifecycle operation.

    Attributes:
        value: Operation result when `ok` (None for operations without a body).
        error: Failure kind and message when not `ok`.
        notification_pending: The state change committed but its event has not
            been published yet (degraded success; a follow-up will retry).
    """

    value: T | None = None
    error: LifecycleError | None = None
    notification_pending: bool = False

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def kind(self) -> ErrorKind | None:
        return self.error.kind if self.error else None

    @classmethod
    def success(cls, value: T | None = None, *, notification_pending: bool = False) -> Outcome[T]:
        return cls(value=value, notification_pending=notification_pending)

    @classmethod
    def fail(cls, kind: ErrorKind, message: str) -> Outcome[T]:
        return cls(error=LifecycleError(kind=kind, message=message))

    @classmethod
    def from_exc(cls, exc: TaskServiceError) -> Outcome[T]:
        return cls(error=LifecycleError.from_exc(exc))

    def unwrap(self) -> T | None:
        """Return the value or raise the typed exception for the error kind."""
        if self.error is not None:
            raise error_for(self.error.kind, self.error.message)
        return self.value
