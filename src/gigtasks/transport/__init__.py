# SPDX-License-Identifier: Apache-2.0
from __future__ import annotations

"""
Transport abstractions and implementations.
"""

from .amqp_bus import AmqpBus
from .bus import Bus
from .kafka_bus import KafkaBus

__all__ = [
    "Bus",
    "AmqpBus",
    "KafkaBus",
]
