# SPDX-License-Identifier: Apache-2.0
from __future__ import annotations

from collections.abc import AsyncIterator, Mapping
from dataclasses import dataclass
from enum import Enum
from typing import Any, Protocol, runtime_checkable


class OutboxState(str, Enum):
    pending = "pending"
    retry = "retry"
    sent = "sent"
    failed = "failed"


@dataclass(frozen=True)
class OutboxRecord:
    """A pending/retry outbox record fetched for dispatch."""

    rec_id: Any  # store-specific primary key
    exchange: str
    routing_key: str
    envelope: Mapping[str, Any]
    attempts: int


@runtime_checkable
class OutboxStore(Protocol):
    """
    Minimal persistence contract for the event outbox.

    The store is responsible for durable state transitions and selection ordering.
    """

    async def enqueue(
        self, *, exchange: str, routing_key: str, envelope: Mapping[str, Any], fp: str | None
    ) -> bool:
        """
        Insert a new 'pending' record. Idempotent on `fp`: returns False when a record
        with the same fingerprint already exists.
        """
        ...

    def next_batch(self, *, now_ms: int, limit: int) -> AsyncIterator[OutboxRecord]:
        """
        Yield pending/retry records with next_attempt_at_ms <= now_ms in a stable order.
        Each yielded record must be claimed so it is not yielded twice concurrently.
        """
        ...

    async def mark_sent(self, rec_id: Any) -> None: ...

    async def mark_failed(self, rec_id: Any, *, attempts: int, error: str) -> None: ...

    async def schedule_retry(self, rec_id: Any, *, attempts: int, next_attempt_at_ms: int, error: str) -> None: ...
