# SPDX-License-Identifier: Apache-2.0
from __future__ import annotations

"""
AMQP (RabbitMQ) implementation of the transport bus using aio-pika.

Events are published as persistent JSON messages to a durable topic exchange,
routed by the event's routing key. Publisher confirms are on (aio-pika default),
so `send()` returns only after the broker accepted the message.
"""

import logging
from datetime import UTC, datetime

import aio_pika
from aio_pika import DeliveryMode, ExchangeType, Message

from ..core.logging import get_logger, swallow
from ..core.utils import dumps
from ..protocol.messages import Envelope
from .bus import Bus


class AmqpBus(Bus):
    def __init__(self, url: str, *, connect_timeout_sec: float = 10.0) -> None:
        self.url = url
        self.connect_timeout_sec = connect_timeout_sec
        self._connection: aio_pika.abc.AbstractRobustConnection | None = None
        self._channel: aio_pika.abc.AbstractChannel | None = None
        self._exchanges: dict[str, aio_pika.abc.AbstractExchange] = {}
        self.log = get_logger("transport.amqp")

    async def start(self) -> None:
        if self._connection is not None:
            return
        self._connection = await aio_pika.connect_robust(self.url, timeout=self.connect_timeout_sec)
        self._channel = await self._connection.channel()
        self.log.debug("amqp.connected", event="bus.amqp.start")

    async def stop(self) -> None:
        if self._connection:
            with swallow(
                logger=self.log,
                code="bus.amqp.connection.close",
                msg="connection close failed",
                level=logging.WARNING,
                expected=True,
            ):
                await self._connection.close()
        self._connection = None
        self._channel = None
        self._exchanges.clear()

    async def _exchange(self, name: str) -> aio_pika.abc.AbstractExchange:
        ex = self._exchanges.get(name)
        if ex is None:
            if self._channel is None:
                raise RuntimeError("AmqpBus is not connected; call start() first")
            ex = await self._channel.declare_exchange(name, ExchangeType.TOPIC, durable=True)
            self._exchanges[name] = ex
        return ex

    async def send(self, exchange: str, routing_key: str, env: Envelope) -> None:
        ex = await self._exchange(exchange)
        msg = Message(
            body=dumps(env.model_dump(mode="json")),
            content_type="application/json",
            delivery_mode=DeliveryMode.PERSISTENT,
            message_id=env.dedup_id,
            timestamp=datetime.fromtimestamp(env.ts_ms / 1000.0, tz=UTC),
            headers={"v": env.v, "event_id": env.event_id},
        )
        await ex.publish(msg, routing_key=routing_key)
