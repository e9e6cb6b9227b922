# SPDX-License-Identifier: Apache-2.0
from __future__ import annotations

"""
Task service wire messages
==========================

Envelope and event payloads published to the broker. Downstream consumers
(payments, notifications) bind to the exchange by routing key.

Design principles:
- Clear separation between the **Envelope** (routing/metadata) and **payload**.
- Pydantic v2 models; payload keys are camelCase, the contract existing
  consumers read.
- All timestamps are **epoch milliseconds** (UTC).
- `Envelope.v` denotes the envelope schema version (here `1`).
"""

import uuid
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from ..core.types import ExternalId, TaskId
from ..lifecycle.models import Task


class RoutingKey(str, Enum):
    """Routing keys of the events emitted by the task lifecycle."""

    TASK_CREATED = "task.created"
    TASK_COMPLETED = "task.completed"
    TASK_CANCELLED = "task.cancelled"


class Envelope(BaseModel):
    """
    Transport envelope carrying routing metadata and a payload.

    Fields:
        v: Envelope schema version.
        routing_key: Event routing key (also used by the broker for routing).
        event_id: Unique id of this event instance (UUID hex).
        dedup_id: Producer-provided id used for at-least-once de-duplication;
                  identical for re-publications of the same transition.
        task_id: Task the event is about.
        ts_ms: Creation timestamp (epoch milliseconds, UTC).
        payload: Event body (camelCase JSON object).
    """

    model_config = ConfigDict(extra="forbid")

    v: int = Field(default=1)
    routing_key: str
    event_id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    dedup_id: str
    task_id: TaskId | None = None
    ts_ms: int
    payload: dict[str, Any] = Field(default_factory=dict)


class _Payload(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="forbid")

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class TaskCompletedEvent(_Payload):
    """Completed task plus the payment-system identities of poster and worker."""

    task: Task
    poster_external_id: ExternalId
    worker_external_id: ExternalId


class TaskCancelledEvent(_Payload):
    """An assigned task was cancelled; the poster is owed a refund."""

    task_id: TaskId
    poster_external_id: ExternalId
