# SPDX-License-Identifier: Apache-2.0
from __future__ import annotations

try:
    from importlib.metadata import version as _pkg_version

    __version__ = _pkg_version("gigtasks")
except Exception:  # pragma: no cover
    # source checkout without an installed distribution
    __version__ = "0.0.0"

from .core.config import ServiceConfig
from .errors import ErrorKind, TaskServiceError
from .lifecycle.models import Task, TaskDraft, TaskStatus
from .lifecycle.results import Outcome
from .lifecycle.service import TaskLifecycle
from .service import TaskService

__all__ = [
    "ErrorKind",
    "Outcome",
    "ServiceConfig",
    "Task",
    "TaskDraft",
    "TaskLifecycle",
    "TaskService",
    "TaskServiceError",
    "TaskStatus",
    "__version__",
]
