# SPDX-License-Identifier: Apache-2.0
from __future__ import annotations

"""
Event publishing for lifecycle transitions.

`EventPublisher` is the seam the lifecycle calls. The production implementation
writes into the durable outbox; delivery to the broker (with retries) is the
OutboxDispatcher's job, so `publish()` returning means "durably queued".
"""

from collections.abc import Mapping
from typing import Any, Protocol, runtime_checkable

from ..core.time import Clock, SystemClock
from ..core.types import ExchangeName, RoutingKey, TaskId
from ..core.utils import stable_hash
from ..outbox.dispatcher import OutboxDispatcher
from ..protocol.messages import Envelope


@runtime_checkable
class EventPublisher(Protocol):
    async def publish(
        self,
        exchange: ExchangeName,
        routing_key: RoutingKey,
        payload: Mapping[str, Any],
        *,
        task_id: TaskId | None = None,
        dedup_id: str | None = None,
    ) -> None:
        """
        Hand an event to the broker side. `dedup_id` identifies the logical event:
        publishing it again must not produce a second delivery.
        """
        ...


class OutboxEventPublisher:
    """EventPublisher that enqueues envelopes into the outbox (idempotent on dedup id)."""

    def __init__(self, outbox: OutboxDispatcher, *, clock: Clock | None = None) -> None:
        self.outbox = outbox
        self.clock: Clock = clock or SystemClock()

    async def publish(
        self,
        exchange: ExchangeName,
        routing_key: RoutingKey,
        payload: Mapping[str, Any],
        *,
        task_id: TaskId | None = None,
        dedup_id: str | None = None,
    ) -> None:
        dedup = dedup_id or stable_hash({"routing_key": routing_key, "payload": dict(payload)})
        env = Envelope(
            routing_key=routing_key,
            dedup_id=dedup,
            task_id=task_id,
            ts_ms=self.clock.now_ms(),
            payload=dict(payload),
        )
        fp = stable_hash({"exchange": exchange, "routing_key": routing_key, "dedup_id": dedup})
        await self.outbox.enqueue(exchange=exchange, routing_key=routing_key, env=env, fp=fp)
