# SPDX-License-Identifier: Apache-2.0
from __future__ import annotations

"""
DB-agnostic storage interfaces and Mongo-style implementations.
"""

from .mongo import MongoOutboxStore, MongoTaskStore
from .outbox import OutboxRecord, OutboxState, OutboxStore
from .tasks import TaskStore, TaskStoreError

__all__ = [
    # tasks
    "TaskStore",
    "TaskStoreError",
    "MongoTaskStore",
    # outbox
    "OutboxRecord",
    "OutboxState",
    "OutboxStore",
    "MongoOutboxStore",
]
