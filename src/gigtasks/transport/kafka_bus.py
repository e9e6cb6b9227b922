# SPDX-License-Identifier: Apache-2.0
from __future__ import annotations

"""
Kafka-backed implementation of the transport bus using aiokafka.

Mapping of the exchange/routing-key model onto Kafka:
- the exchange name is the topic,
- the message key is the task id, so events of one task stay ordered on one partition,
- the routing key travels in the envelope and in the `routing_key` header,
  which consumers filter on.
"""

import logging

from aiokafka import AIOKafkaProducer

from ..core.logging import get_logger, swallow
from ..core.utils import dumps
from ..protocol.messages import Envelope
from .bus import Bus


class KafkaBus(Bus):
    """Producer-only Kafka bus with idempotence enabled."""

    def __init__(self, bootstrap: str) -> None:
        self.bootstrap = bootstrap
        self._producer: AIOKafkaProducer | None = None
        self.log = get_logger("transport.kafka")

    async def start(self) -> None:
        if self._producer is not None:
            return
        self._producer = AIOKafkaProducer(
            bootstrap_servers=self.bootstrap,
            value_serializer=dumps,
            enable_idempotence=True,
        )
        await self._producer.start()
        self.log.debug("kafka.producer.started", event="bus.kafka.start", bootstrap=self.bootstrap)

    async def stop(self) -> None:
        if self._producer:
            with swallow(
                logger=self.log,
                code="bus.kafka.producer.stop",
                msg="producer stop failed",
                level=logging.WARNING,
                expected=True,
            ):
                await self._producer.stop()
        self._producer = None

    async def send(self, exchange: str, routing_key: str, env: Envelope) -> None:
        if self._producer is None:
            raise RuntimeError("KafkaBus producer is not initialized; call start() first")
        key = env.task_id.encode("utf-8") if env.task_id else None
        await self._producer.send_and_wait(
            exchange,
            env.model_dump(mode="json"),
            key=key,
            headers=[("routing_key", routing_key.encode("utf-8"))],
        )
