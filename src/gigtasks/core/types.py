# SPDX-License-Identifier: Apache-2.0
from __future__ import annotations

"""
gigtasks.core.types
===================

Shared type aliases and small constants used across the codebase.
Keep this module **tiny** and dependency-free.
"""

from typing import Final

# ---- Time & IDs --------------------------------------------------------------

Millis = int
TimestampMs = int  # wall-clock epoch timestamp (ms)

TaskId = str
UserId = int
ExternalId = str
Credential = str
ExchangeName = str
RoutingKey = str

# ---- Constants ---------------------------------------------------------------

# Per-user bid limit bounds applied once, at task creation.
MAX_BIDS_MIN: Final[int] = 1
MAX_BIDS_MAX: Final[int] = 10
MAX_BIDS_DEFAULT: Final[int] = 3

DEFAULT_EXCHANGE: Final[str] = "task-exchange"

# Default digest size used by stable_hash (BLAKE2b).
DEFAULT_BLAKE2_DIGEST_SIZE: Final[int] = 20

# NanoID defaults (URL-safe alphabet).
DEFAULT_NANOID_ALPHABET: Final[str] = "0123456789ABCDEFGHIJKLMNOPQRSTUVWXYZ_abcdefghijklmnopqrstuvwxyz-"
DEFAULT_NANOID_SIZE: Final[int] = 21


__all__ = [
    "Millis",
    "TimestampMs",
    "TaskId",
    "UserId",
    "ExternalId",
    "Credential",
    "ExchangeName",
    "RoutingKey",
    "MAX_BIDS_MIN",
    "MAX_BIDS_MAX",
    "MAX_BIDS_DEFAULT",
    "DEFAULT_EXCHANGE",
    "DEFAULT_BLAKE2_DIGEST_SIZE",
    "DEFAULT_NANOID_ALPHABET",
    "DEFAULT_NANOID_SIZE",
]
