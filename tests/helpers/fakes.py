from __future__ import annotations

import asyncio
from typing import Any

from gigtasks.errors import Unauthenticated, UpstreamUnavailable
from gigtasks.protocol.messages import Envelope

POSTER, WORKER, OTHER = 1, 2, 3
TOKENS = {"tok-poster": POSTER, "tok-worker": WORKER, "tok-other": OTHER}
EXTERNAL_IDS = {POSTER: "kc-poster", WORKER: "kc-worker", OTHER: "kc-other"}


class FakeIdentityResolver:
    """
    Token -> user id map plus external ids.

    `external_failures` makes the next N `external_id` calls raise
    UpstreamUnavailable; `delay_sec` slows every call down.
    """

    def __init__(self, tokens: dict[str, int] | None = None, external_ids: dict[int, str] | None = None) -> None:
        self.tokens = dict(tokens or TOKENS)
        self.external_ids = dict(external_ids or EXTERNAL_IDS)
        self.external_failures = 0
        self.resolve_down = False
        self.delay_sec = 0.0
        self.calls: list[tuple[str, Any]] = []

    async def resolve(self, credential: str) -> int:
        self.calls.append(("resolve", credential))
        if self.delay_sec:
            await asyncio.sleep(self.delay_sec)
        if self.resolve_down:
            raise UpstreamUnavailable("user service unreachable")
        uid = self.tokens.get(credential)
        if uid is None:
            raise Unauthenticated("credential does not map to a user")
        return uid

    async def external_id(self, user_id: int, credential: str) -> str:
        self.calls.append(("external_id", user_id))
        if self.delay_sec:
            await asyncio.sleep(self.delay_sec)
        if self.external_failures > 0:
            self.external_failures -= 1
            raise UpstreamUnavailable(f"lookup of user {user_id} failed")
        ext = self.external_ids.get(user_id)
        if ext is None:
            raise UpstreamUnavailable(f"no external identity for user {user_id}")
        return ext


class RecordingBus:
    """Bus that keeps every sent envelope; `fail_times` makes the next N sends raise."""

    def __init__(self) -> None:
        self.sent: list[tuple[str, str, Envelope]] = []
        self.fail_times = 0
        self.started = False

    async def start(self) -> None:
        self.started = True

    async def stop(self) -> None:
        self.started = False

    async def send(self, exchange: str, routing_key: str, env: Envelope) -> None:
        if self.fail_times > 0:
            self.fail_times -= 1
            raise ConnectionError("broker unavailable")
        self.sent.append((exchange, routing_key, env))

    def by_key(self, routing_key: str) -> list[Envelope]:
        return [env for _, rk, env in self.sent if rk == routing_key]


class RecordingPublisher:
    """EventPublisher that records calls; `fail_times` makes the next N publishes raise."""

    def __init__(self) -> None:
        self.published: list[dict[str, Any]] = []
        self.fail_times = 0

    async def publish(self, exchange, routing_key, payload, *, task_id=None, dedup_id=None) -> None:
        if self.fail_times > 0:
            self.fail_times -= 1
            raise ConnectionError("outbox unavailable")
        self.published.append(
            {
                "exchange": exchange,
                "routing_key": routing_key,
                "payload": dict(payload),
                "task_id": task_id,
                "dedup_id": dedup_id,
            }
        )

    def by_key(self, routing_key: str) -> list[dict[str, Any]]:
        return [p for p in self.published if p["routing_key"] == routing_key]
