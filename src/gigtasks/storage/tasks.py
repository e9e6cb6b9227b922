# SPDX-License-Identifier: Apache-2.0
from __future__ import annotations

"""
Task store interface (DB-agnostic).

Responsibilities:
- Persist Task records and assign identifiers to new ones.
- Point lookups and simple multi-key queries (by ids, by poster, all).
- Atomic conditional transitions: a patch is applied only if the stored status
  still equals the status the caller observed. This is what guarantees a single
  winner when two callers race on the same task.
"""

from collections.abc import Iterable, Mapping
from typing import Any, Protocol, runtime_checkable

from ..core.types import TaskId, UserId
from ..lifecycle.models import Task, TaskStatus

__all__ = [
    "TaskStoreError",
    "TaskStore",
]


class TaskStoreError(RuntimeError):
    """Base error for task store operations (corrupt documents, backend failures)."""


@runtime_checkable
class TaskStore(Protocol):
    """
    Async persistence for Task records.

    Notes:
        - `save` assigns `id` when the task has none and inserts it; a task with an
          id is upserted as a whole.
        - `transition` MUST be atomic with respect to concurrent callers.
        - Tasks are never deleted.
    """

    async def save(self, task: Task) -> Task: ...
    async def get(self, task_id: TaskId) -> Task | None: ...
    async def get_by_poster(self, poster_user_id: UserId) -> list[Task]: ...
    async def get_by_ids(self, task_ids: Iterable[TaskId]) -> list[Task]:
        """Return the tasks that exist; unknown ids are dropped. Order unspecified."""
    async def get_all(self) -> list[Task]: ...

    async def transition(self, task_id: TaskId, *, expected: TaskStatus, patch: Mapping[str, Any]) -> Task | None:
        """
        Apply `patch` (snake_case Task fields) iff the stored status equals `expected`.
        Return the updated task, or None when the predicate failed (task missing or
        its status moved on).
        """
