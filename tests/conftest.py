# conftest.py
from __future__ import annotations

import os
import uuid

import pytest

from gigtasks.core.logging import (
    bind_context,
    configure_from_env,
    enable_stdout_logging,
    get_logger,
    log_context,
)
from gigtasks.core.time import ManualClock
from gigtasks.events.publisher import OutboxEventPublisher
from gigtasks.lifecycle.service import TaskLifecycle
from gigtasks.observability.metrics import TaskMetrics
from gigtasks.outbox.dispatcher import OutboxConfig, OutboxDispatcher
from gigtasks.storage.mongo import MongoOutboxStore, MongoTaskStore
from tests.helpers import FakeIdentityResolver, InMemDB, RecordingBus


def pytest_addoption(parser):
    parser.addoption(
        "--log-json",
        action="store_true",
        default=False,
        help="Emit gigtasks logs in JSON format during tests",
    )


@pytest.fixture(scope="session", autouse=True)
def _configure_gigtasks_logging(request):
    configure_from_env()
    prefer_json = request.config.getoption("--log-json")
    if os.getenv("GIGTASKS_LOG_STDOUT", "").lower() not in ("1", "true", "yes", "on"):
        enable_stdout_logging(
            level="DEBUG",
            json_output=prefer_json,
            pretty=not prefer_json,
            route_errors_to_stderr=True,
        )
    bind_context(role="pytest")


@pytest.fixture(scope="session")
def session_run_id():
    return uuid.uuid4().hex[:8]


@pytest.fixture(autouse=True)
def _test_log_context(request, session_run_id):
    log = get_logger("test")
    with log_context(pytest_nodeid=request.node.nodeid, test=request.node.name, test_run=session_run_id):
        log.debug("pytest.test.start", event="pytest.test.start")
        yield


@pytest.fixture
def tlog():
    return get_logger("test")


@pytest.fixture
def inmemory_db():
    """Single injection point for DB."""
    return InMemDB()


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def identity():
    return FakeIdentityResolver()


@pytest.fixture
def bus():
    return RecordingBus()


@pytest.fixture
def metrics():
    return TaskMetrics()


@pytest.fixture
def task_store(inmemory_db):
    return MongoTaskStore(inmemory_db)


@pytest.fixture
def outbox_store(inmemory_db, clock):
    return MongoOutboxStore(inmemory_db, clock=clock)


@pytest.fixture
def outbox(outbox_store, bus, clock, metrics):
    return OutboxDispatcher(
        store=outbox_store,
        bus=bus,
        cfg=OutboxConfig(max_retry=3, backoff_min_ms=100, backoff_max_ms=1_000),
        clock=clock,
        metrics=metrics,
    )


@pytest.fixture
def lifecycle(task_store, identity, outbox, clock, metrics):
    """Lifecycle over the in-memory stores; events land in the outbox until `outbox.drain_once()`."""
    return TaskLifecycle(
        store=task_store,
        identity=identity,
        publisher=OutboxEventPublisher(outbox, clock=clock),
        clock=clock,
        metrics=metrics,
    )
