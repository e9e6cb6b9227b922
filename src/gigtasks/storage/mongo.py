# SPDX-License-Identifier: Apache-2.0
from __future__ import annotations

"""
Mongo-style store implementations.

`db` is injected by the application (e.g. a Motor database); only the async
collection API is used: insert_one, find_one, find().sort().limit(), update_one,
find_one_and_update and create_index. `find_one_and_update` is relied upon to
return the matched document (pre-image) or None, which is Mongo's default.
"""

from collections.abc import AsyncIterator, Callable, Iterable, Mapping
from enum import Enum
from typing import Any

from pydantic import ValidationError

from ..core.logging import get_logger
from ..core.time import Clock, SystemClock
from ..core.types import TaskId, UserId
from ..core.utils import nanoid
from ..lifecycle.models import Task, TaskStatus
from .outbox import OutboxRecord, OutboxState
from .tasks import TaskStoreError

# A claimed outbox record becomes due again after this long if its sender died.
_CLAIM_TTL_MS = 30_000


def _plain(v: Any) -> Any:
    return v.value if isinstance(v, Enum) else v


class MongoTaskStore:
    """TaskStore over a Mongo-like `tasks` collection (documents keyed by `id`)."""

    def __init__(self, db, *, collection: str = "tasks", id_factory: Callable[[], str] = nanoid) -> None:
        self.db = db
        self.coll = getattr(db, collection)
        self._new_id = id_factory
        self.log = get_logger("storage.tasks")

    async def ensure_indexes(self) -> None:
        await self.coll.create_index([("id", 1)], unique=True, name="uniq_task_id")
        await self.coll.create_index([("poster_user_id", 1)], name="by_poster")

    def _decode(self, doc: Mapping[str, Any]) -> Task:
        try:
            return Task.from_doc(dict(doc))
        except ValidationError as e:
            raise TaskStoreError(f"corrupt task document id={doc.get('id')!r}: {e}") from e

    async def _decode_many(self, cur) -> list[Task]:
        out: list[Task] = []
        async for doc in cur:
            out.append(self._decode(doc))
        return out

    async def save(self, task: Task) -> Task:
        if task.id is None:
            task = task.model_copy(update={"id": self._new_id()})
            await self.coll.insert_one(task.to_doc())
            self.log.debug("task.inserted", event="store.task.insert", task_id=task.id)
            return task
        await self.coll.update_one({"id": task.id}, {"$set": task.to_doc()}, upsert=True)
        return task

    async def get(self, task_id: TaskId) -> Task | None:
        doc = await self.coll.find_one({"id": task_id})
        return self._decode(doc) if doc else None

    async def get_by_poster(self, poster_user_id: UserId) -> list[Task]:
        return await self._decode_many(self.coll.find({"poster_user_id": poster_user_id}))

    async def get_by_ids(self, task_ids: Iterable[TaskId]) -> list[Task]:
        ids = list(dict.fromkeys(task_ids))
        if not ids:
            return []
        return await self._decode_many(self.coll.find({"id": {"$in": ids}}))

    async def get_all(self) -> list[Task]:
        return await self._decode_many(self.coll.find({}))

    async def transition(self, task_id: TaskId, *, expected: TaskStatus, patch: Mapping[str, Any]) -> Task | None:
        changes = {k: _plain(v) for k, v in patch.items()}
        q = {"id": task_id, "status": expected.value}
        prev = await self.coll.find_one_and_update(q, {"$set": changes})
        if not prev:
            self.log.debug(
                "task.cas.skip", event="store.task.cas_skip", task_id=task_id, expected=expected.value
            )
            return None
        return self._decode({**prev, **changes})


class MongoOutboxStore:
    """OutboxStore over a Mongo-like `outbox` collection; records are keyed by fingerprint."""

    def __init__(self, db, *, collection: str = "outbox", clock: Clock | None = None) -> None:
        self.db = db
        self.coll = getattr(db, collection)
        self.clock: Clock = clock or SystemClock()

    async def ensure_indexes(self) -> None:
        await self.coll.create_index([("fp", 1)], unique=True, name="uniq_outbox_fp")
        await self.coll.create_index([("state", 1), ("next_attempt_at_ms", 1)], name="outbox_due")

    async def enqueue(
        self, *, exchange: str, routing_key: str, envelope: Mapping[str, Any], fp: str | None
    ) -> bool:
        fp = fp or nanoid()
        if await self.coll.find_one({"fp": fp}):
            return False
        now = self.clock.now_dt()
        doc = {
            "fp": fp,
            "exchange": exchange,
            "routing_key": routing_key,
            "envelope": dict(envelope),
            "state": OutboxState.pending.value,
            "attempts": 0,
            "next_attempt_at_ms": self.clock.now_ms(),
            "created_at": now,
            "updated_at": now,
        }
        try:
            await self.coll.insert_one(doc)
        except Exception:
            # Lost a race on the unique fp index: the record exists, which is all we need.
            if await self.coll.find_one({"fp": fp}):
                return False
            raise
        return True

    async def next_batch(self, *, now_ms: int, limit: int) -> AsyncIterator[OutboxRecord]:
        cur = (
            self.coll.find(
                {
                    "state": {"$in": [OutboxState.pending.value, OutboxState.retry.value]},
                    "next_attempt_at_ms": {"$lte": now_ms},
                }
            )
            .sort([("next_attempt_at_ms", 1)])
            .limit(limit)
        )
        due = [doc async for doc in cur]
        for doc in due:
            claimed = await self.coll.find_one_and_update(
                {"fp": doc["fp"], "attempts": doc["attempts"], "next_attempt_at_ms": doc["next_attempt_at_ms"]},
                {"$set": {"next_attempt_at_ms": now_ms + _CLAIM_TTL_MS}},
            )
            if not claimed:
                continue
            yield OutboxRecord(
                rec_id=doc["fp"],
                exchange=doc["exchange"],
                routing_key=doc["routing_key"],
                envelope=doc["envelope"],
                attempts=int(doc.get("attempts", 0)),
            )

    async def mark_sent(self, rec_id: Any) -> None:
        now = self.clock.now_dt()
        await self.coll.update_one(
            {"fp": rec_id}, {"$set": {"state": OutboxState.sent.value, "sent_at": now, "updated_at": now}}
        )

    async def mark_failed(self, rec_id: Any, *, attempts: int, error: str) -> None:
        await self.coll.update_one(
            {"fp": rec_id},
            {
                "$set": {
                    "state": OutboxState.failed.value,
                    "attempts": attempts,
                    "last_error": error,
                    "updated_at": self.clock.now_dt(),
                }
            },
        )

    async def schedule_retry(self, rec_id: Any, *, attempts: int, next_attempt_at_ms: int, error: str) -> None:
        await self.coll.update_one(
            {"fp": rec_id},
            {
                "$set": {
                    "state": OutboxState.retry.value,
                    "attempts": attempts,
                    "last_error": error,
                    "next_attempt_at_ms": next_attempt_at_ms,
                    "updated_at": self.clock.now_dt(),
                }
            },
        )
