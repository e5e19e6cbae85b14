"""
Pattern Library — Static and learned remediation templates.

Seeded with a few base patterns; the Learning Engine promotes new ones and
Knowledge Transfer merges patterns received from peers.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable

from self_evolution.knowledge.schemas import (
    Challenge,
    Combinator,
    ComparisonOperator,
    MetricCondition,
    Pattern,
    SolutionTemplate,
    TriggerCondition,
)

logger = logging.getLogger(__name__)

SIMILARITY_THRESHOLD = 0.7


def base_patterns() -> list[Pattern]:
    """Fresh copies of the built-in patterns."""
    return [
        Pattern(
            id="high-cpu-scale",
            name="Scale out under CPU pressure",
            description="Add instances horizontally while CPU usage stays high",
            trigger=TriggerCondition(
                metrics=[
                    MetricCondition(
                        metric="cpu", operator=ComparisonOperator.GT, value=80, duration=300
                    )
                ],
                combinator=Combinator.AND,
            ),
            solution=SolutionTemplate(
                name="Automatic horizontal scale-out",
                steps=["analyze", "scale", "rebalance", "health-check"],
                parameters={"scale_up_count": 2, "cooldown_period": 300},
                expected_outcome="CPU usage drops below 70%",
            ),
            success_rate=0.85,
            usage_count=1,
            origin="base",
        ),
        Pattern(
            id="memory-leak-restart",
            name="Memory leak mitigation",
            description="Gracefully restart when memory usage keeps climbing",
            trigger=TriggerCondition(
                metrics=[
                    MetricCondition(
                        metric="memory", operator=ComparisonOperator.GT, value=85, duration=600
                    )
                ],
                combinator=Combinator.AND,
            ),
            solution=SolutionTemplate(
                name="Graceful restart",
                steps=["snapshot", "drain", "restart", "health-check", "restore"],
                parameters={"grace_period": 30, "health_check_retries": 5},
                expected_outcome="Memory usage returns to its normal range",
            ),
            success_rate=0.9,
            usage_count=1,
            origin="base",
        ),
        Pattern(
            id="processing-queue-parallelize",
            name="Processing queue relief",
            description="Parallelise work when the processing queue backs up",
            trigger=TriggerCondition(
                metrics=[
                    MetricCondition(
                        metric="processing_queue", operator=ComparisonOperator.GT, value=100
                    )
                ],
                combinator=Combinator.AND,
            ),
            solution=SolutionTemplate(
                name="Parallel processing",
                steps=["scale", "prioritize", "optimize"],
                parameters={"worker_count": 5, "batch_size": 10, "priority_algorithm": "fifo"},
                expected_outcome="Queue length falls below 50",
            ),
            success_rate=0.75,
            usage_count=1,
            origin="base",
        ),
    ]


def step_overlap(steps_a: list[str], steps_b: list[str]) -> float:
    """Fraction of step names shared by two remediation step lists."""
    if not steps_a or not steps_b:
        return 0.0
    common = [s for s in steps_a if any(p in s or s in p for p in steps_b)]
    return len(common) / max(len(steps_a), len(steps_b))


def trigger_overlap(pattern_a: Pattern, pattern_b: Pattern) -> float:
    """Fraction of trigger metrics shared by two patterns."""
    metrics_a = pattern_a.trigger.metric_names
    metrics_b = pattern_b.trigger.metric_names
    if not metrics_a or not metrics_b:
        return 0.0
    common = [m for m in metrics_a if m in metrics_b]
    return len(common) / max(len(metrics_a), len(metrics_b))


def same_remediation(pattern_a: Pattern, pattern_b: Pattern) -> bool:
    """Same template name with mostly the same trigger metrics."""
    return (
        pattern_a.solution.name == pattern_b.solution.name
        and trigger_overlap(pattern_a, pattern_b) > SIMILARITY_THRESHOLD
    )


class PatternLibrary:
    """Active set of patterns keyed by id."""

    def __init__(self, patterns: Iterable[Pattern] | None = None, seed_base: bool = True) -> None:
        self._patterns: dict[str, Pattern] = {}
        if seed_base:
            for pattern in base_patterns():
                self.register(pattern)
        for pattern in patterns or []:
            self.register(pattern)

    def __len__(self) -> int:
        return len(self._patterns)

    def __contains__(self, pattern_id: object) -> bool:
        return pattern_id in self._patterns

    def register(self, pattern: Pattern) -> Pattern:
        """Insert or replace a pattern."""
        self._patterns[pattern.id] = pattern
        return pattern

    def get(self, pattern_id: str) -> Pattern | None:
        return self._patterns.get(pattern_id)

    def all(self) -> list[Pattern]:
        return list(self._patterns.values())

    def matching(self, values: dict[str, float]) -> list[Pattern]:
        """Patterns whose trigger fires for the observed values."""
        return [p for p in self._patterns.values() if p.trigger.matches(values)]

    def matching_challenge(self, challenge: Challenge) -> list[Pattern]:
        return self.matching(challenge.context.numeric_values())

    def related_by_steps(self, step_names: list[str], min_overlap: float) -> list[Pattern]:
        """Patterns sharing at least ``min_overlap`` of their step names."""
        return [
            p
            for p in self._patterns.values()
            if step_overlap(step_names, p.solution.steps) >= min_overlap
        ]

    def merge(self, pattern: Pattern) -> Pattern:
        """
        Fold an externally learned pattern into the library.

        Matches by id only, so every incoming id survives the merge.
        """
        existing = self._patterns.get(pattern.id)
        if existing is None:
            inserted = pattern.model_copy(deep=True)
            self.register(inserted)
            logger.info("Inserted pattern %s (%s)", inserted.id, inserted.name)
            return inserted
        existing.absorb(pattern)
        logger.info(
            "Merged pattern %s: success_rate=%.2f usage=%d",
            existing.id,
            existing.success_rate,
            existing.usage_count,
        )
        return existing
