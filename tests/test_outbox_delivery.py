from __future__ import annotations

import pytest

from gigtasks.core.utils import stable_hash
from gigtasks.events.publisher import OutboxEventPublisher
from gigtasks.protocol.messages import Envelope
from gigtasks.storage.outbox import OutboxState
from tests.helpers import get_record_by_event

pytestmark = [pytest.mark.outbox]


def _env(clock, task_id="t1", rk="task.created"):
    return Envelope(
        routing_key=rk, dedup_id=f"{rk}:{task_id}", task_id=task_id, ts_ms=clock.now_ms(), payload={"id": task_id}
    )


async def _rows(db):
    return [d async for d in db.outbox.find({})]


@pytest.mark.asyncio
async def test_enqueue_is_idempotent_on_fingerprint(outbox, inmemory_db, clock):
    env = _env(clock)
    assert await outbox.enqueue(exchange="task-exchange", routing_key="task.created", env=env, fp="fp-1") is True
    assert await outbox.enqueue(exchange="task-exchange", routing_key="task.created", env=env, fp="fp-1") is False
    assert len(await _rows(inmemory_db)) == 1


@pytest.mark.asyncio
async def test_publisher_dedups_same_logical_event(outbox, outbox_store, inmemory_db, clock, bus):
    await outbox_store.ensure_indexes()
    pub = OutboxEventPublisher(outbox, clock=clock)
    for _ in range(3):
        await pub.publish(
            "task-exchange", "task.cancelled", {"taskId": "t9"}, task_id="t9", dedup_id="task.cancelled:t9"
        )
    rows = await _rows(inmemory_db)
    assert len(rows) == 1
    assert rows[0]["fp"] == stable_hash(
        {"exchange": "task-exchange", "routing_key": "task.cancelled", "dedup_id": "task.cancelled:t9"}
    )
    assert await outbox.drain_once() == 1
    assert len(bus.sent) == 1


@pytest.mark.asyncio
async def test_transient_send_failure_is_retried_then_sent(outbox, inmemory_db, bus, clock, caplog, metrics):
    bus.fail_times = 1
    await outbox.enqueue(exchange="task-exchange", routing_key="task.created", env=_env(clock), fp="fp-r")

    assert await outbox.drain_once() == 1
    (row,) = await _rows(inmemory_db)
    assert row["state"] == OutboxState.retry.value
    assert row["attempts"] == 1
    assert row["next_attempt_at_ms"] > clock.now_ms()
    assert get_record_by_event(caplog, "outbox.retry").attempts == 1

    # backoff not elapsed: nothing is due
    assert await outbox.drain_once() == 0

    clock.advance(5_000)
    assert await outbox.drain_once() == 1
    (row,) = await _rows(inmemory_db)
    assert row["state"] == OutboxState.sent.value
    assert len(bus.sent) == 1
    assert metrics.value("gigtasks_outbox_total", result="retry") == 1
    assert metrics.value("gigtasks_outbox_total", result="sent") == 1


@pytest.mark.asyncio
async def test_record_fails_after_max_retry(outbox, inmemory_db, bus, clock, caplog):
    bus.fail_times = 100
    await outbox.enqueue(exchange="task-exchange", routing_key="task.created", env=_env(clock), fp="fp-f")

    for _ in range(outbox.cfg.max_retry + 2):
        await outbox.drain_once()
        clock.advance(5_000)

    (row,) = await _rows(inmemory_db)
    assert row["state"] == OutboxState.failed.value
    assert row["attempts"] == outbox.cfg.max_retry
    assert "broker unavailable" in row["last_error"]
    assert get_record_by_event(caplog, "outbox.failed").levelname == "ERROR"
    assert bus.sent == []


@pytest.mark.asyncio
async def test_sent_records_are_not_resent(outbox, bus, clock):
    await outbox.enqueue(exchange="task-exchange", routing_key="task.created", env=_env(clock, "a"), fp="fa")
    await outbox.enqueue(exchange="task-exchange", routing_key="task.created", env=_env(clock, "b"), fp="fb")
    assert await outbox.drain_once() == 2
    clock.advance(60_000)
    assert await outbox.drain_once() == 0
    assert sorted(env.task_id for _, _, env in bus.sent) == ["a", "b"]


@pytest.mark.asyncio
async def test_enqueue_propagates_insert_failure_without_record(outbox_store, inmemory_db, clock):
    env = _env(clock).model_dump(mode="json")
    assert await outbox_store.enqueue(exchange="x", routing_key="task.created", envelope=env, fp="fp-x")
    assert not await outbox_store.enqueue(exchange="x", routing_key="task.created", envelope=env, fp="fp-x")

    inmemory_db.outbox.fail_next_inserts = 1
    with pytest.raises(ConnectionError):
        await outbox_store.enqueue(exchange="x", routing_key="task.created", envelope=env, fp="fp-y")
