"""
Typed publish/subscribe event bus.

Every event has a name from ``EventName`` or ``MonitorEvent`` and a pydantic
payload. Subscribers may be plain functions or coroutines; ``publish`` awaits
them in subscription order. A subscriber that raises is logged and does not
affect the publisher or other subscribers.
"""

from __future__ import annotations

import inspect
import logging
import uuid
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from self_evolution.knowledge.schemas import (
    Challenge,
    Learning,
    Severity,
    Solution,
    SystemMetrics,
)

logger = logging.getLogger(__name__)

EventHandler = Callable[[BaseModel], Any]


class EventName(str, Enum):
    """Events emitted by the controller for external observers."""

    SYSTEM_INITIALIZED = "system:initialized"
    SYSTEM_STOPPED = "system:stopped"
    KNOWLEDGE_LOADED = "knowledge:loaded"
    CHALLENGE_RECORDED = "challenge:recorded"
    CHALLENGE_ANALYZING = "challenge:analyzing"
    CHALLENGE_READY = "challenge:ready"
    CHALLENGE_FAILED = "challenge:failed"
    SOLUTION_EXECUTING = "solution:executing"
    SOLUTION_COMPLETED = "solution:completed"
    DIAGNOSIS_STARTED = "diagnosis:started"
    DIAGNOSIS_COMPLETED = "diagnosis:completed"
    LEARNING_STARTED = "learning:started"
    LEARNING_COMPLETED = "learning:completed"
    KNOWLEDGE_SHARED = "knowledge:shared"


class MonitorEvent(str, Enum):
    """Events pushed by the Monitor collaborator."""

    METRICS_COLLECTED = "metrics:collected"
    ERROR_DETECTED = "error:detected"
    PERFORMANCE_DEGRADED = "performance:degraded"
    DOMAIN_PROCESSING_FAILED = "domain:processing:failed"


# --- Payload schemas ---


class LifecycleEvent(BaseModel):
    detail: str = ""


class KnowledgeLoadedEvent(BaseModel):
    challenges: int = 0
    solutions: int = 0
    learnings: int = 0
    patterns: int = 0


class ChallengeEvent(BaseModel):
    challenge: Challenge


class ChallengeReadyEvent(BaseModel):
    challenge: Challenge
    solutions: list[Solution] = Field(default_factory=list)
    auto_execute: bool = False


class ChallengeFailedEvent(BaseModel):
    challenge: Challenge
    error: str


class SolutionExecutingEvent(BaseModel):
    challenge: Challenge
    solution: Solution


class SolutionCompletedEvent(BaseModel):
    challenge: Challenge
    solution: Solution
    learning: Learning


class DiagnosisEvent(BaseModel):
    health: dict[str, Any] = Field(default_factory=dict)


class LearningCycleEvent(BaseModel):
    patterns_extracted: int = 0


class KnowledgeSharedEvent(BaseModel):
    target_system: str
    package_size: int
    delivered: bool
    location: str | None = None


class ErrorDetectedEvent(BaseModel):
    message: str = "Unknown error detected"
    stack: str | None = None
    component: str | None = None


class PerformanceDegradedEvent(BaseModel):
    metric: str
    value: float | None = None
    severity: Severity | None = None
    component: str | None = None


class DomainProcessingFailedEvent(BaseModel):
    item_id: str
    reason: str = ""
    component: str | None = None


MetricsCollectedEvent = SystemMetrics


@dataclass
class _Subscriber:
    name: str
    handler: EventHandler


class EventBus:
    """
    In-process pub/sub bus.

    Usage::

        bus = EventBus()
        bus.subscribe(EventName.CHALLENGE_READY, on_ready)
        await bus.publish(EventName.CHALLENGE_READY, ChallengeReadyEvent(...))
    """

    def __init__(self) -> None:
        self._subscribers: dict[str, _Subscriber] = {}

    def subscribe(self, name: str | Enum, handler: EventHandler) -> str:
        """
        Register a handler for one event name.

        Returns:
            Subscription ID for later unsubscribe.
        """
        sub_id = str(uuid.uuid4())
        self._subscribers[sub_id] = _Subscriber(name=_event_key(name), handler=handler)
        return sub_id

    def unsubscribe(self, sub_id: str) -> bool:
        """Remove a subscriber; returns True if it existed."""
        return self._subscribers.pop(sub_id, None) is not None

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    async def publish(self, name: str | Enum, payload: BaseModel) -> None:
        """Deliver a payload to every subscriber of ``name``."""
        key = _event_key(name)
        for sub_id, subscriber in list(self._subscribers.items()):
            if subscriber.name != key:
                continue
            try:
                result = subscriber.handler(payload)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception("Subscriber %s failed handling %s", sub_id, key)

    def clear(self) -> None:
        self._subscribers.clear()


def _event_key(name: str | Enum) -> str:
    return name.value if isinstance(name, Enum) else str(name)
