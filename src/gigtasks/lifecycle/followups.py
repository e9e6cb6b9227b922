# SPDX-License-Identifier: Apache-2.0
from __future__ import annotations

"""
Deferred notification steps.

When a transition has committed but its notification step (external identity
lookups + publish) failed, the lifecycle hands the step to this retrier. Jobs are
retried with exponential backoff and jitter until they succeed or run out of
attempts. Jobs live in process memory only: they may hold the caller's bearer
credential, which must never be persisted.
"""

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from ..core.logging import get_logger, log_context
from ..core.time import Clock, SystemClock
from ..core.types import Credential
from ..core.utils import backoff_ms, jitter_ms
from ..observability.metrics import TaskMetrics
from .models import Task


@dataclass
class FollowUpConfig:
    tick_ms: int = 1000
    max_attempts: int = 8
    backoff_min_ms: int = 500
    backoff_max_ms: int = 120_000


@dataclass
class FollowUp:
    routing_key: str
    task: Task
    credential: Credential | None = None
    attempts: int = 0
    next_attempt_at_ms: int = 0
    last_error: str | None = None

    def __repr__(self) -> str:
        return (
            f"FollowUp(routing_key={self.routing_key!r}, task_id={self.task.id!r}, "
            f"attempts={self.attempts}, next_attempt_at_ms={self.next_attempt_at_ms})"
        )


class FollowUpRetrier:
    def __init__(
        self,
        *,
        run: Callable[[FollowUp], Awaitable[None]],
        cfg: FollowUpConfig | None = None,
        clock: Clock | None = None,
        metrics: TaskMetrics | None = None,
    ) -> None:
        self._run = run
        self.cfg = cfg or FollowUpConfig()
        self.clock: Clock = clock or SystemClock()
        self.metrics = metrics
        self.log = get_logger("lifecycle.followups")
        self._jobs: list[FollowUp] = []
        self._task: asyncio.Task | None = None
        self._running = False

    @property
    def pending(self) -> list[FollowUp]:
        return list(self._jobs)

    def submit(self, job: FollowUp, *, error: str | None = None) -> None:
        """Queue a job whose first (inline) attempt already failed."""
        job.attempts = max(job.attempts, 1)
        job.last_error = error
        job.next_attempt_at_ms = self.clock.now_ms() + self._delay(job.attempts)
        self._jobs.append(job)
        self.log.info(
            "followup.submitted",
            event="followup.submit",
            task_id=job.task.id,
            routing_key=job.routing_key,
            next_attempt_at_ms=job.next_attempt_at_ms,
        )

    def _delay(self, attempts: int) -> int:
        return jitter_ms(backoff_ms(attempts, min_ms=self.cfg.backoff_min_ms, max_ms=self.cfg.backoff_max_ms))

    async def run_due(self) -> int:
        """Run every job that is due; return how many were attempted."""
        now = self.clock.now_ms()
        due = [j for j in self._jobs if j.next_attempt_at_ms <= now]
        for job in due:
            self._jobs.remove(job)
            await self._attempt(job)
        return len(due)

    async def _attempt(self, job: FollowUp) -> None:
        with log_context(task_id=job.task.id, routing_key=job.routing_key):
            try:
                await self._run(job)
            except Exception as e:  # noqa: BLE001
                job.attempts += 1
                job.last_error = str(e)
                if job.attempts >= self.cfg.max_attempts:
                    self.log.error(
                        "followup.exhausted",
                        event="followup.exhausted",
                        attempts=job.attempts,
                        error=job.last_error,
                    )
                    if self.metrics is not None:
                        self.metrics.events.labels(routing_key=job.routing_key, result="exhausted").inc()
                    return
                job.next_attempt_at_ms = self.clock.now_ms() + self._delay(job.attempts)
                self._jobs.append(job)
                self.log.warning(
                    "followup.retry",
                    event="followup.retry",
                    attempts=job.attempts,
                    next_attempt_at_ms=job.next_attempt_at_ms,
                    error=job.last_error,
                )
                return
            self.log.info("followup.done", event="followup.done", attempts=job.attempts + 1)

    # ---- background loop

    async def start(self) -> None:
        if self._task is not None:
            return
        self._running = True
        self._task = asyncio.create_task(self._loop(), name="gigtasks-followups")

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
        if self._jobs:
            self.log.warning(
                "followup.dropped_on_stop",
                event="followup.dropped_on_stop",
                n=len(self._jobs),
                dropped=[f"{j.routing_key}:{j.task.id}" for j in self._jobs],
            )

    async def _loop(self) -> None:
        try:
            while self._running:
                await self.run_due()
                await self.clock.sleep_ms(self.cfg.tick_ms)
        except asyncio.CancelledError:
            return
