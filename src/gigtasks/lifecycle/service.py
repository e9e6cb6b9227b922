# SPDX-License-Identifier: Apache-2.0
from __future__ import annotations

"""
Task lifecycle state machine.

    OPEN ──assign──▶ ASSIGNED ──complete──▶ COMPLETED
      │                 │
      └────cancel───────┴──────cancel─────▶ CANCELLED

Every mutating operation runs in two steps:

1. Validate (identity, ownership, current status) and commit the new status with a
   conditional update. Rule violations are returned as `Outcome.fail(...)` before
   anything is written.
2. Notification: resolve external identities if the event needs them and publish
   the event. This runs only after step 1 committed, each external call under its
   own timeout. A failure here is logged and handed to the FollowUpRetrier; the
   caller gets a successful Outcome with `notification_pending=True`.
"""

import asyncio
from collections.abc import Iterable
from typing import Any

from ..core.config import ServiceConfig
from ..core.logging import get_logger, log_context
from ..core.time import Clock, SystemClock
from ..core.types import DEFAULT_EXCHANGE, Credential, ExternalId, TaskId, UserId
from ..errors import ErrorKind, TaskServiceError, UpstreamUnavailable
from ..events.publisher import EventPublisher
from ..identity.resolver import IdentityResolver
from ..observability.metrics import TaskMetrics
from ..protocol.messages import RoutingKey, TaskCancelledEvent, TaskCompletedEvent
from ..storage.tasks import TaskStore
from .followups import FollowUp, FollowUpConfig, FollowUpRetrier
from .models import Task, TaskDraft, TaskStatus, can_transition
from .results import Outcome

# Bounded re-validation when a cancel loses a race with another transition.
_CANCEL_CAS_ATTEMPTS = 3


class TaskLifecycle:
    """
    Creates tasks and drives them through assign/complete/cancel.

    `store`, `identity` and `publisher` are injected collaborators. The lifecycle
    starts no background work itself; `followups` has its own start()/stop().
    """

    def __init__(
        self,
        *,
        store: TaskStore,
        identity: IdentityResolver,
        publisher: EventPublisher,
        cfg: ServiceConfig | None = None,
        clock: Clock | None = None,
        metrics: TaskMetrics | None = None,
    ) -> None:
        self.store = store
        self.identity = identity
        self.publisher = publisher
        self.clock: Clock = clock or SystemClock()
        self.metrics = metrics or TaskMetrics()

        if cfg is not None:
            self.exchange = cfg.exchange
            self.identity_timeout_sec = cfg.identity_timeout_sec
            self.publish_timeout_sec = cfg.publish_timeout_sec
            fu_cfg = FollowUpConfig(
                tick_ms=cfg.followup_tick_ms,
                max_attempts=cfg.followup_max_attempts,
                backoff_min_ms=cfg.followup_backoff_min_ms,
                backoff_max_ms=cfg.followup_backoff_max_ms,
            )
        else:
            self.exchange = DEFAULT_EXCHANGE
            self.identity_timeout_sec = 5.0
            self.publish_timeout_sec = 5.0
            fu_cfg = FollowUpConfig()

        self.followups = FollowUpRetrier(run=self._run_followup, cfg=fu_cfg, clock=self.clock, metrics=self.metrics)
        self.log = get_logger("lifecycle")

    # ------------------------------------------------------------------ #
    # Mutations
    # ------------------------------------------------------------------ #

    async def create(self, draft: TaskDraft) -> Outcome[Task]:
        """Persist a new OPEN task (bid limit clamped to [1, 10]) and publish `task.created`."""
        task = await self.store.save(Task.from_draft(draft))
        with log_context(task_id=task.id, op="create"):
            self.log.info(
                "task.created",
                event="lifecycle.create.ok",
                poster_user_id=task.poster_user_id,
                max_bids_per_user=task.max_bids_per_user,
            )
            self.metrics.operations.labels(op="create", result="ok").inc()
            pending = await self._notify_or_defer(RoutingKey.TASK_CREATED, task, credential=None)
        return Outcome.success(task, notification_pending=pending)

    async def assign(self, task_id: TaskId, assignee_user_id: UserId) -> Outcome[Task]:
        """OPEN -> ASSIGNED. Exactly one of several concurrent callers wins."""
        with log_context(task_id=task_id, op="assign"):
            task = await self.store.get(task_id)
            if task is None:
                return self._reject("assign", ErrorKind.NOT_FOUND, f"task {task_id} not found")
            if not can_transition(task.status, TaskStatus.ASSIGNED):
                return self._reject("assign", ErrorKind.INVALID_STATE, "not open", status=task.status.value)

            updated = await self.store.transition(
                task_id,
                expected=TaskStatus.OPEN,
                patch={"status": TaskStatus.ASSIGNED, "assigned_user_id": assignee_user_id},
            )
            if updated is None:
                return self._reject("assign", ErrorKind.INVALID_STATE, "not open", reason="concurrent_update")

            # No event on assignment yet; a `task.assigned` routing key would slot in here.
            self.log.info("task.assigned", event="lifecycle.assign.ok", assignee_user_id=assignee_user_id)
            self.metrics.operations.labels(op="assign", result="ok").inc()
            return Outcome.success(updated)

    async def complete(self, task_id: TaskId, credential: Credential) -> Outcome[Task]:
        """ASSIGNED -> COMPLETED by the assigned worker; publishes `task.completed`."""
        with log_context(task_id=task_id, op="complete"):
            try:
                caller = await self._resolve_caller(credential)
            except TaskServiceError as e:
                return self._reject("complete", e.kind, e.message)

            task = await self.store.get(task_id)
            if task is None:
                return self._reject("complete", ErrorKind.NOT_FOUND, f"task {task_id} not found")
            if task.assigned_user_id is None or caller != task.assigned_user_id:
                return self._reject("complete", ErrorKind.FORBIDDEN, "not the assigned worker", user_id=caller)
            if not can_transition(task.status, TaskStatus.COMPLETED):
                return self._reject("complete", ErrorKind.INVALID_STATE, "not assigned", status=task.status.value)

            updated = await self.store.transition(
                task_id, expected=TaskStatus.ASSIGNED, patch={"status": TaskStatus.COMPLETED}
            )
            if updated is None:
                return self._reject("complete", ErrorKind.INVALID_STATE, "not assigned", reason="concurrent_update")

            self.log.info("task.completed", event="lifecycle.complete.ok", user_id=caller)
            self.metrics.operations.labels(op="complete", result="ok").inc()
            pending = await self._notify_or_defer(RoutingKey.TASK_COMPLETED, updated, credential=credential)
            return Outcome.success(updated, notification_pending=pending)

    async def cancel(self, task_id: TaskId, credential: Credential) -> Outcome[None]:
        """
        OPEN/ASSIGNED -> CANCELLED by the poster. Publishes `task.cancelled` (a refund
        signal) only when the task was ASSIGNED at the moment it was cancelled.
        """
        with log_context(task_id=task_id, op="cancel"):
            caller: UserId | None = None
            for _ in range(_CANCEL_CAS_ATTEMPTS):
                task = await self.store.get(task_id)
                if task is None:
                    return self._reject("cancel", ErrorKind.NOT_FOUND, f"task {task_id} not found")
                if caller is None:
                    try:
                        caller = await self._resolve_caller(credential)
                    except TaskServiceError as e:
                        return self._reject("cancel", e.kind, e.message)
                if caller != task.poster_user_id:
                    return self._reject("cancel", ErrorKind.FORBIDDEN, "not the poster", user_id=caller)
                if not can_transition(task.status, TaskStatus.CANCELLED):
                    return self._reject("cancel", ErrorKind.INVALID_STATE, "already finished", status=task.status.value)

                # Captured from the status the update is conditioned on, never from the result.
                was_assigned = task.status is TaskStatus.ASSIGNED
                updated = await self.store.transition(
                    task_id, expected=task.status, patch={"status": TaskStatus.CANCELLED}
                )
                if updated is not None:
                    break
                self.log.debug("task.cancel.raced", event="lifecycle.cancel.cas_retry", observed=task.status.value)
            else:
                return self._reject("cancel", ErrorKind.INVALID_STATE, "task changed concurrently")

            self.metrics.operations.labels(op="cancel", result="ok").inc()
            if not was_assigned:
                self.log.info("task.cancelled", event="lifecycle.cancel.ok", refund=False)
                return Outcome.success(None)

            self.log.info("task.cancelled", event="lifecycle.cancel.ok", refund=True)
            pending = await self._notify_or_defer(RoutingKey.TASK_CANCELLED, updated, credential=credential)
            return Outcome.success(None, notification_pending=pending)

    # ------------------------------------------------------------------ #
    # Reads
    # ------------------------------------------------------------------ #

    async def find_by_id(self, task_id: TaskId) -> Outcome[Task]:
        task = await self.store.get(task_id)
        if task is None:
            return Outcome.fail(ErrorKind.NOT_FOUND, f"task {task_id} not found")
        return Outcome.success(task)

    async def find_all_by_poster(self, poster_user_id: UserId) -> list[Task]:
        return await self.store.get_by_poster(poster_user_id)

    async def find_by_ids(self, task_ids: Iterable[TaskId]) -> list[Task]:
        # Unknown ids are dropped silently.
        return await self.store.get_by_ids(task_ids)

    async def list_all(self) -> list[Task]:
        return await self.store.get_all()

    # ------------------------------------------------------------------ #
    # Internals
    # ------------------------------------------------------------------ #

    def _reject(self, op: str, kind: ErrorKind, message: str, **fields: Any) -> Outcome:
        self.log.info("operation.rejected", event="lifecycle.rejected", kind=kind.value, reason_msg=message, **fields)
        self.metrics.operations.labels(op=op, result=kind.value).inc()
        return Outcome.fail(kind, message)

    async def _resolve_caller(self, credential: Credential) -> UserId:
        try:
            return await asyncio.wait_for(self.identity.resolve(credential), timeout=self.identity_timeout_sec)
        except asyncio.TimeoutError as e:
            raise UpstreamUnavailable("identity resolution timed out") from e

    async def _external_id(self, user_id: UserId | None, credential: Credential | None) -> ExternalId:
        if user_id is None or not credential:
            raise UpstreamUnavailable(f"cannot look up external identity for user {user_id}")
        try:
            return await asyncio.wait_for(
                self.identity.external_id(user_id, credential), timeout=self.identity_timeout_sec
            )
        except asyncio.TimeoutError as e:
            raise UpstreamUnavailable(f"external identity lookup timed out for user {user_id}") from e

    async def _build_payload(self, routing_key: RoutingKey, task: Task, credential: Credential | None) -> dict:
        if routing_key is RoutingKey.TASK_CREATED:
            return task.to_wire()
        if routing_key is RoutingKey.TASK_COMPLETED:
            poster_ext, worker_ext = await asyncio.gather(
                self._external_id(task.poster_user_id, credential),
                self._external_id(task.assigned_user_id, credential),
            )
            return TaskCompletedEvent(
                task=task, poster_external_id=poster_ext, worker_external_id=worker_ext
            ).to_wire()
        if routing_key is RoutingKey.TASK_CANCELLED:
            poster_ext = await self._external_id(task.poster_user_id, credential)
            return TaskCancelledEvent(task_id=task.id, poster_external_id=poster_ext).to_wire()
        raise ValueError(f"unsupported routing key {routing_key!r}")

    async def _notify(self, routing_key: RoutingKey, task: Task, credential: Credential | None) -> None:
        payload = await self._build_payload(routing_key, task, credential)
        try:
            await asyncio.wait_for(
                self.publisher.publish(
                    self.exchange,
                    routing_key.value,
                    payload,
                    task_id=task.id,
                    dedup_id=f"{routing_key.value}:{task.id}",
                ),
                timeout=self.publish_timeout_sec,
            )
        except asyncio.TimeoutError as e:
            raise UpstreamUnavailable(f"publishing {routing_key.value} timed out") from e
        self.log.info("event.published", event="lifecycle.event.published", routing_key=routing_key.value)
        self.metrics.events.labels(routing_key=routing_key.value, result="published").inc()

    async def _notify_or_defer(self, routing_key: RoutingKey, task: Task, *, credential: Credential | None) -> bool:
        """Run the notification step; on failure defer it. Returns True when deferred."""
        try:
            await self._notify(routing_key, task, credential)
            return False
        except Exception as e:  # noqa: BLE001
            # The transition is already durable; never let this surface as a failure.
            self.log.warning(
                "event.deferred",
                event="lifecycle.event.deferred",
                routing_key=routing_key.value,
                error=str(e),
                error_type=e.__class__.__name__,
            )
            self.metrics.events.labels(routing_key=routing_key.value, result="deferred").inc()
            self.followups.submit(
                FollowUp(routing_key=routing_key.value, task=task, credential=credential), error=str(e)
            )
            return True

    async def _run_followup(self, job: FollowUp) -> None:
        await self._notify(RoutingKey(job.routing_key), job.task, job.credential)
