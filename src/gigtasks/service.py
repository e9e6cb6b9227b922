# SPDX-License-Identifier: Apache-2.0
from __future__ import annotations

"""
Process-level wiring of the task service.

`TaskService` builds the production object graph from a `ServiceConfig` and a
Mongo-style database handle:

    TaskLifecycle ─▶ OutboxEventPublisher ─▶ OutboxDispatcher ─▶ KafkaBus | AmqpBus
          │                                       │
          ├─▶ MongoTaskStore (db.tasks)           └─▶ MongoOutboxStore (db.outbox)
          └─▶ HttpIdentityResolver (user service)

Operations are exposed as attributes of `lifecycle`; `start()`/`stop()` manage the
bus connection and the outbox and follow-up background loops.
"""

import logging

from .core.config import ServiceConfig
from .core.logging import get_logger, swallow
from .core.time import Clock, SystemClock
from .events.publisher import OutboxEventPublisher
from .identity.resolver import HttpIdentityResolver, IdentityResolver
from .lifecycle.service import TaskLifecycle
from .observability.metrics import MetricsService, TaskMetrics
from .outbox.dispatcher import OutboxConfig, OutboxDispatcher
from .storage.mongo import MongoOutboxStore, MongoTaskStore
from .transport.amqp_bus import AmqpBus
from .transport.bus import Bus
from .transport.kafka_bus import KafkaBus


def build_bus(cfg: ServiceConfig) -> Bus:
    if cfg.broker == "amqp":
        return AmqpBus(cfg.amqp_url)
    return KafkaBus(cfg.kafka_bootstrap)


class TaskService:
    def __init__(
        self,
        *,
        db,
        cfg: ServiceConfig | None = None,
        identity: IdentityResolver | None = None,
        bus: Bus | None = None,
        clock: Clock | None = None,
        metrics: TaskMetrics | None = None,
    ) -> None:
        self.db = db
        self.cfg = cfg or ServiceConfig.load()
        self.clock: Clock = clock or SystemClock()
        self.log = get_logger("service")
        self.metrics = metrics or TaskMetrics()
        self.metrics_server: MetricsService | None = None
        if self.cfg.metrics_port:
            self.metrics_server = MetricsService(port=self.cfg.metrics_port, registry=self.metrics.registry)

        self.bus: Bus = bus or build_bus(self.cfg)
        self.task_store = MongoTaskStore(db)
        self.outbox_store = MongoOutboxStore(db, clock=self.clock)
        self.outbox = OutboxDispatcher(
            store=self.outbox_store,
            bus=self.bus,
            cfg=OutboxConfig(
                dispatch_tick_ms=self.cfg.outbox_dispatch_tick_ms,
                max_batch=self.cfg.outbox_max_batch,
                max_retry=self.cfg.outbox_max_retry,
                backoff_min_ms=self.cfg.outbox_backoff_min_ms,
                backoff_max_ms=self.cfg.outbox_backoff_max_ms,
            ),
            clock=self.clock,
            metrics=self.metrics,
        )
        self._owns_identity = identity is None
        self.identity: IdentityResolver = identity or HttpIdentityResolver(
            self.cfg.user_service_url, timeout_sec=self.cfg.identity_timeout_sec
        )
        self.lifecycle = TaskLifecycle(
            store=self.task_store,
            identity=self.identity,
            publisher=OutboxEventPublisher(self.outbox, clock=self.clock),
            cfg=self.cfg,
            clock=self.clock,
            metrics=self.metrics,
        )

    async def start(self) -> None:
        self.log.debug("service.start", event="service.start", broker=self.cfg.broker, exchange=self.cfg.exchange)
        await self.task_store.ensure_indexes()
        await self.outbox_store.ensure_indexes()
        await self.bus.start()
        await self.outbox.start()
        await self.lifecycle.followups.start()
        if self.metrics_server is not None:
            self.metrics_server.start()
        self.log.debug("service.started", event="service.started")

    async def stop(self) -> None:
        """
        Stop background loops and release owned resources.

        Follow-ups still queued in memory are dropped (logged as
        `followup.dropped_on_stop`); their tasks keep the committed state but the
        notification is never sent. Records already in the outbox stay persisted.
        """
        with swallow(logger=self.log, code="followups.stop", msg="follow-up stop failed", level=logging.ERROR):
            await self.lifecycle.followups.stop()
        with swallow(logger=self.log, code="outbox.stop", msg="outbox stop failed", level=logging.ERROR):
            await self.outbox.stop()
        with swallow(logger=self.log, code="bus.stop", msg="bus stop failed", level=logging.ERROR, expected=False):
            await self.bus.stop()
        if self.metrics_server is not None:
            self.metrics_server.stop()
        if self._owns_identity and isinstance(self.identity, HttpIdentityResolver):
            with swallow(logger=self.log, code="identity.close", msg="identity client close failed"):
                await self.identity.aclose()
        self.log.debug("service.stopped", event="service.stopped")
