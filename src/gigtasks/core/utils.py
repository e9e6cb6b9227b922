# SPDX-License-Identifier: Apache-2.0
from __future__ import annotations

"""
gigtasks.core.utils
===================

Low-level helpers with **no external dependencies**:
- Stable hashing for JSON-like payloads (outbox fingerprints, dedup ids).
- Compact JSON (de)serialization for broker payloads.
- Jitter utilities for backoff.
- NanoID generator used for task identifiers.
"""

import json
from datetime import datetime
from decimal import Decimal
from hashlib import blake2b
from secrets import choice, randbelow
from typing import Any

from .types import DEFAULT_BLAKE2_DIGEST_SIZE, DEFAULT_NANOID_ALPHABET, DEFAULT_NANOID_SIZE


def _json_default(o: Any) -> Any:
    # Money must never go through float.
    if isinstance(o, Decimal):
        return str(o)
    if isinstance(o, datetime):
        return o.isoformat()
    raise TypeError(f"Object of type {type(o).__name__} is not JSON serializable")


def stable_hash(payload: Any, *, digest_size: int = DEFAULT_BLAKE2_DIGEST_SIZE) -> str:
    """
    Compute a stable hash of an arbitrary JSON-like payload.

    Uses UTF-8 JSON with sorted keys and no whitespace, then BLAKE2b.
    Not a signature; use it for idempotency keys only.
    """
    data = json.dumps(
        payload,
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
        default=_json_default,
    ).encode("utf-8")
    return blake2b(data, digest_size=digest_size).hexdigest()


def dumps(x: Any) -> bytes:
    """Compact JSON dump to UTF-8 bytes. Decimals are written as strings."""
    return json.dumps(x, ensure_ascii=False, separators=(",", ":"), default=_json_default).encode("utf-8")


def loads(b: bytes) -> Any:
    """Inverse of dumps(): parse UTF-8 JSON bytes back to Python objects."""
    return json.loads(b.decode("utf-8"))


def jitter_ms(base_ms: int, *, pct: float = 0.20, floor_ms: int = 0) -> int:
    """
    Apply symmetric jitter around base value:
        result = base_ms + delta, where delta ∈ [-base_ms*pct, +base_ms*pct]

    Examples:
        jitter_ms(1000) -> value in [800..1200] by default
    """
    if base_ms <= 0 or pct <= 0:
        return max(floor_ms, base_ms)
    span = int(base_ms * pct)
    delta = randbelow(2 * span + 1) - span
    return max(floor_ms, base_ms + delta)


def backoff_ms(attempts: int, *, min_ms: int, max_ms: int) -> int:
    """Exponential backoff base (before jitter): min(max, max(min, 2**attempts * 100))."""
    return min(max_ms, max(min_ms, (2**attempts) * 100))


def nanoid(size: int = DEFAULT_NANOID_SIZE, alphabet: str = DEFAULT_NANOID_ALPHABET) -> str:
    """Generate a URL-safe NanoID (cryptographically strong)."""
    if size <= 0:
        raise ValueError("size must be positive")
    if not alphabet:
        raise ValueError("alphabet must be a non-empty string")
    return "".join(choice(alphabet) for _ in range(size))
