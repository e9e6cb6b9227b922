# SPDX-License-Identifier: Apache-2.0
from __future__ import annotations

"""
Transport abstraction over a message broker.

The task service only produces: events go to one topic exchange and are routed
by key. Concrete implementations (Kafka, AMQP) live in their own modules and take
their connection knobs in the constructor, but must satisfy this protocol.
"""

from typing import Protocol, runtime_checkable

from ..protocol.messages import Envelope


@runtime_checkable
class Bus(Protocol):
    """
    Implementations should:
      - provide idempotent `start()`/`stop()`,
      - serialize `Envelope` as compact JSON,
      - raise on send failure so the outbox can retry.
    """

    async def start(self) -> None: ...
    async def stop(self) -> None: ...

    async def send(self, exchange: str, routing_key: str, env: Envelope) -> None: ...
