# SPDX-License-Identifier: Apache-2.0
from __future__ import annotations

"""
At-least-once outbox dispatcher, storage-agnostic.

The durable egress of the task service: lifecycle events are enqueued into an
OutboxStore, and this dispatcher reads pending/retry records, sends them to the
Bus, and performs state transitions (sent/failed/retry) with exponential backoff
and jitter.

See: gigtasks/storage/outbox.py for the minimal OutboxStore protocol.
"""

import asyncio
from collections.abc import Mapping
from dataclasses import dataclass

from ..core.logging import get_logger
from ..core.time import Clock, SystemClock
from ..core.utils import backoff_ms, jitter_ms
from ..observability.metrics import TaskMetrics
from ..protocol.messages import Envelope
from ..storage.outbox import OutboxRecord, OutboxStore
from ..transport.bus import Bus


@dataclass
class OutboxConfig:
    dispatch_tick_ms: int = 250
    max_batch: int = 200
    max_retry: int = 12
    backoff_min_ms: int = 250
    backoff_max_ms: int = 60_000


class OutboxDispatcher:
    """Delivers outbox records to the bus; `start()` runs the loop, `drain_once()` one pass."""

    def __init__(
        self,
        *,
        store: OutboxStore,
        bus: Bus,
        cfg: OutboxConfig | None = None,
        clock: Clock | None = None,
        metrics: TaskMetrics | None = None,
    ) -> None:
        self.store = store
        self.bus = bus
        self.cfg = cfg or OutboxConfig()
        self.clock: Clock = clock or SystemClock()
        self.metrics = metrics
        self.log = get_logger("outbox")
        self._task: asyncio.Task | None = None
        self._running = False

    # ---- lifecycle

    async def start(self) -> None:
        if self._task is not None:
            return
        self._running = True
        self._task = asyncio.create_task(self._loop(), name="gigtasks-outbox")

    async def stop(self) -> None:
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            finally:
                self._task = None

    # ---- enqueue

    async def enqueue(self, *, exchange: str, routing_key: str, env: Envelope, fp: str | None = None) -> bool:
        """Insert a new outbox record (idempotent on fingerprint). Returns False for duplicates."""
        envelope: Mapping = env.model_dump(mode="json")
        created = await self.store.enqueue(exchange=exchange, routing_key=routing_key, envelope=envelope, fp=fp)
        self.log.debug(
            "outbox.enqueue",
            event="outbox.enqueue",
            routing_key=routing_key,
            task_id=env.task_id,
            duplicate=not created,
        )
        return created

    # ---- loop

    async def drain_once(self) -> int:
        """Process one batch of due records; return how many were attempted."""
        n = 0
        async for ob in self.store.next_batch(now_ms=self.clock.now_ms(), limit=self.cfg.max_batch):
            await self._process_one(ob)
            n += 1
        return n

    async def _loop(self) -> None:
        try:
            while self._running:
                try:
                    n = await self.drain_once()
                except Exception:  # noqa: BLE001
                    self.log.error("outbox.drain.failed", event="outbox.drain_failed", exc_info=True)
                    n = 0
                await self.clock.sleep_ms(0 if n else self.cfg.dispatch_tick_ms)
        except asyncio.CancelledError:
            return

    async def _process_one(self, ob: OutboxRecord) -> None:
        try:
            env = Envelope.model_validate(ob.envelope)
            await self.bus.send(ob.exchange, ob.routing_key, env)
        except Exception as e:  # noqa: BLE001
            await self._on_send_fail(ob, e)
            return
        await self.store.mark_sent(ob.rec_id)
        self._count("sent")
        self.log.debug(
            "outbox.sent",
            event="outbox.sent",
            routing_key=ob.routing_key,
            attempts=ob.attempts + 1,
        )

    def _count(self, result: str) -> None:
        if self.metrics is not None:
            self.metrics.outbox.labels(result=result).inc()

    async def _on_send_fail(self, ob: OutboxRecord, err: Exception) -> None:
        attempts = ob.attempts + 1
        if attempts >= self.cfg.max_retry:
            await self.store.mark_failed(ob.rec_id, attempts=attempts, error=str(err))
            self._count("failed")
            self.log.error(
                "outbox.failed",
                event="outbox.failed",
                routing_key=ob.routing_key,
                attempts=attempts,
                error=str(err),
            )
            return
        base = backoff_ms(attempts, min_ms=self.cfg.backoff_min_ms, max_ms=self.cfg.backoff_max_ms)
        delay = jitter_ms(base)
        await self.store.schedule_retry(
            ob.rec_id,
            attempts=attempts,
            next_attempt_at_ms=self.clock.now_ms() + delay,
            error=str(err),
        )
        self._count("retry")
        self.log.warning(
            "outbox.retry",
            event="outbox.retry",
            routing_key=ob.routing_key,
            attempts=attempts,
            delay_ms=delay,
            error=str(err),
        )
