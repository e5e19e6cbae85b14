"""
Monitor collaborator interface.

A monitor pushes typed events (``MonitorEvent``) and answers snapshot
requests. Raw collection and anomaly thresholds of a real host are outside
this package; ``SimulatedMonitor`` is the in-process implementation used by
the CLI ``simulate`` command and the tests.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections import deque
from typing import Any

from self_evolution.events import (
    DomainProcessingFailedEvent,
    ErrorDetectedEvent,
    EventBus,
    EventHandler,
    MonitorEvent,
    PerformanceDegradedEvent,
)
from self_evolution.knowledge.schemas import Severity, SystemMetrics

logger = logging.getLogger(__name__)


class Monitor(ABC):
    """Base class for metric/log monitors feeding the controller."""

    def __init__(self) -> None:
        self.bus = EventBus()
        self.is_monitoring = False

    def on(self, event: MonitorEvent, handler: EventHandler) -> str:
        """Subscribe to one monitor event."""
        return self.bus.subscribe(event, handler)

    async def start(self) -> None:
        self.is_monitoring = True
        logger.info("%s started", type(self).__name__)

    async def stop(self) -> None:
        self.is_monitoring = False
        logger.info("%s stopped", type(self).__name__)

    @abstractmethod
    async def get_current_metrics(self) -> SystemMetrics:
        """Take a metrics snapshot now."""


class SimulatedMonitor(Monitor):
    """Monitor whose readings are set by the caller."""

    def __init__(self, metrics: SystemMetrics | None = None) -> None:
        super().__init__()
        self._metrics = metrics or SystemMetrics()
        self._scripted: deque[SystemMetrics] = deque()

    @property
    def metrics(self) -> SystemMetrics:
        return self._metrics

    def set_metrics(self, metrics: SystemMetrics | None = None, **fields: Any) -> SystemMetrics:
        """Replace the current reading, or update individual fields."""
        if metrics is None:
            metrics = self._metrics.model_copy(update=fields)
        self._metrics = metrics
        return metrics

    def queue_metrics(self, *snapshots: SystemMetrics) -> None:
        """Script the next readings returned by ``get_current_metrics``."""
        self._scripted.extend(snapshots)

    async def get_current_metrics(self) -> SystemMetrics:
        if self._scripted:
            self._metrics = self._scripted.popleft()
        return self._metrics

    async def emit_metrics(self, metrics: SystemMetrics | None = None, **fields: Any) -> None:
        snapshot = self.set_metrics(metrics, **fields)
        await self.bus.publish(MonitorEvent.METRICS_COLLECTED, snapshot)

    async def emit_error(
        self,
        message: str,
        stack: str | None = None,
        component: str | None = None,
    ) -> None:
        await self.bus.publish(
            MonitorEvent.ERROR_DETECTED,
            ErrorDetectedEvent(message=message, stack=stack, component=component),
        )

    async def emit_degradation(
        self,
        metric: str,
        value: float | None = None,
        severity: Severity | None = None,
        component: str | None = None,
    ) -> None:
        await self.bus.publish(
            MonitorEvent.PERFORMANCE_DEGRADED,
            PerformanceDegradedEvent(
                metric=metric, value=value, severity=severity, component=component
            ),
        )

    async def emit_processing_failure(
        self,
        item_id: str,
        reason: str = "",
        component: str | None = None,
    ) -> None:
        await self.bus.publish(
            MonitorEvent.DOMAIN_PROCESSING_FAILED,
            DomainProcessingFailedEvent(item_id=item_id, reason=reason, component=component),
        )
