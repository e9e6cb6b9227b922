# SPDX-License-Identifier: Apache-2.0
from __future__ import annotations

"""
gigtasks.observability.metrics
==============================

Prometheus metrics for the task lifecycle and the outbox.

- `SafeCounter`: counter wrapper validating label names against an allowlist.
- `TaskMetrics`: the service's counters, registered into one CollectorRegistry.
- `MetricsService`: exposition over `prometheus_client.start_http_server()`.

Each `TaskMetrics` owns a fresh registry unless one is passed, so several service
instances (and tests) can coexist in one process.
"""

from collections.abc import Iterable, Mapping, Sequence

import prometheus_client as prom

from ..core.logging import get_logger

__all__ = [
    "MetricsService",
    "SafeCounter",
    "TaskMetrics",
]

_log = get_logger("observability.metrics")


class _LabelChecker:
    __slots__ = ("_allowed",)

    def __init__(self, allowed: Iterable[str] | None) -> None:
        self._allowed = frozenset(allowed or ())

    def validate(self, labels: Mapping[str, str]) -> None:
        if not self._allowed:
            return
        unknown = [k for k in labels if k not in self._allowed]
        if unknown:
            raise ValueError(f"Unknown label(s) for metric: {unknown}; allowed={sorted(self._allowed)}")


class SafeCounter:
    """
    Counter wrapper that validates label names against an allowlist.

    Example:
        cnt = SafeCounter("gigtasks_ops_total", "Operations", label_names=["op", "result"], registry=reg)
        cnt.labels(op="assign", result="ok").inc()
    """

    def __init__(
        self,
        name: str,
        documentation: str,
        *,
        label_names: Sequence[str] | None = None,
        registry: prom.CollectorRegistry,
    ) -> None:
        self._checker = _LabelChecker(label_names or [])
        self._metric = prom.Counter(name, documentation, labelnames=list(label_names or []), registry=registry)

    def labels(self, **labels: str):
        self._checker.validate(labels)
        return self._metric.labels(**labels)


class TaskMetrics:
    """
    Counters:
        gigtasks_operations_total{op, result}      result: ok | <error kind>
        gigtasks_events_total{routing_key, result} result: published | deferred | exhausted
        gigtasks_outbox_total{result}              result: sent | retry | failed
    """

    def __init__(self, registry: prom.CollectorRegistry | None = None) -> None:
        self.registry = registry or prom.CollectorRegistry()
        self.operations = SafeCounter(
            "gigtasks_operations",
            "Task lifecycle operations by outcome",
            label_names=["op", "result"],
            registry=self.registry,
        )
        self.events = SafeCounter(
            "gigtasks_events",
            "Lifecycle events by notification outcome",
            label_names=["routing_key", "result"],
            registry=self.registry,
        )
        self.outbox = SafeCounter(
            "gigtasks_outbox",
            "Outbox deliveries by outcome",
            label_names=["result"],
            registry=self.registry,
        )

    def value(self, name: str, **labels: str) -> float:
        """Current sample value (0.0 when the series does not exist yet)."""
        v = self.registry.get_sample_value(name, labels)
        return float(v) if v is not None else 0.0


class MetricsService:
    """
    Prometheus exposition server bound to `/metrics`.

    prometheus_client has no stop API for the background server, so `stop()` only
    flips the flag; the socket closes with the process.
    """

    def __init__(self, *, address: str = "0.0.0.0", port: int = 8000, registry: prom.CollectorRegistry) -> None:
        self.address = address
        self.port = int(port)
        self.registry = registry
        self._started = False

    def start(self) -> None:
        if self._started:
            return
        prom.start_http_server(self.port, addr=self.address, registry=self.registry)
        _log.info("metrics server started", event="metrics.started", address=self.address, port=self.port)
        self._started = True

    def stop(self) -> None:
        if self._started:
            _log.info("metrics server stopping (no-op)", event="metrics.stopped")
        self._started = False
