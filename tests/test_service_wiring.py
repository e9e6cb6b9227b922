from __future__ import annotations

import asyncio

import pytest

from gigtasks import ServiceConfig, TaskService, TaskStatus
from gigtasks.identity.resolver import HttpIdentityResolver
from gigtasks.service import build_bus
from gigtasks.transport.amqp_bus import AmqpBus
from gigtasks.transport.kafka_bus import KafkaBus
from tests.helpers import WORKER, get_record_by_event, make_draft

pytestmark = [pytest.mark.outbox]

_FAST = {"outbox_dispatch_tick_sec": 0.01, "followup_tick_sec": 0.01}


async def _wait_for(pred, timeout: float = 2.0):
    deadline = asyncio.get_running_loop().time() + timeout
    while not pred():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.01)


def test_build_bus_follows_broker_setting():
    assert isinstance(build_bus(ServiceConfig(broker="kafka")), KafkaBus)
    assert isinstance(build_bus(ServiceConfig(broker="amqp", amqp_url="amqp://mq/")), AmqpBus)


@pytest.mark.asyncio
async def test_default_identity_is_http_and_closed_on_stop(inmemory_db, bus):
    svc = TaskService(db=inmemory_db, cfg=ServiceConfig(**_FAST), bus=bus)
    assert isinstance(svc.identity, HttpIdentityResolver)
    assert svc.metrics_server is None
    await svc.start()
    await svc.stop()
    assert svc.identity._client.is_closed


@pytest.mark.asyncio
async def test_background_loops_deliver_events(inmemory_db, bus, identity, caplog):
    svc = TaskService(db=inmemory_db, cfg=ServiceConfig(**_FAST), bus=bus, identity=identity)
    await svc.start()
    try:
        assert bus.started
        assert get_record_by_event(caplog, "service.started")

        created = await svc.lifecycle.create(make_draft())
        task = created.value
        await _wait_for(lambda: len(bus.sent) == 1)

        assert (await svc.lifecycle.assign(task.id, WORKER)).ok

        # identity hiccup after commit: the follow-up loop publishes later
        identity.external_failures = 1
        done = await svc.lifecycle.complete(task.id, "tok-worker")
        assert done.ok and done.notification_pending
        assert done.value.status is TaskStatus.COMPLETED

        await _wait_for(lambda: len(bus.by_key("task.completed")) == 1)
        (env,) = bus.by_key("task.completed")
        assert env.payload["workerExternalId"] == "kc-worker"
    finally:
        await svc.stop()
    assert not bus.started
    assert svc.metrics.value("gigtasks_outbox_total", result="sent") == 2


@pytest.mark.asyncio
async def test_stop_reports_follow_ups_left_in_memory(inmemory_db, bus, identity, caplog):
    cfg = ServiceConfig(**_FAST, followup_backoff_min_ms=5_000)
    svc = TaskService(db=inmemory_db, cfg=cfg, bus=bus, identity=identity)
    await svc.start()
    try:
        task = (await svc.lifecycle.create(make_draft())).value
        assert (await svc.lifecycle.assign(task.id, WORKER)).ok
        identity.external_failures = 100
        done = await svc.lifecycle.complete(task.id, "tok-worker")
        assert done.notification_pending
        assert len(svc.lifecycle.followups.pending) == 1
    finally:
        await svc.stop()

    rec = get_record_by_event(caplog, "followup.dropped_on_stop")
    assert rec.levelname == "WARNING"
    assert rec.dropped == [f"task.completed:{task.id}"]
    assert bus.by_key("task.completed") == []
