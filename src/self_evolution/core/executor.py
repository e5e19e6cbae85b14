"""
Execution Engine — Runs a solution's steps and measures the effect.

Each run:
  1. Snapshot metrics
  2. Run steps in ascending order, evaluating validation rules (non-fatal)
  3. Snapshot metrics again and compute per-metric improvements
  4. On a raised error, run the rollback plan best-effort

The engine never raises for a failed remediation; the outcome is carried by
the returned ``ExecutionReport`` and its ``Learning``.
"""

from __future__ import annotations

import logging
import time
import uuid
from collections.abc import Awaitable, Callable
from typing import Any

from pydantic import BaseModel, Field

from self_evolution.config import ExecutionConfig
from self_evolution.errors import ExecutionFailure
from self_evolution.knowledge.schemas import (
    Challenge,
    ExecutionStep,
    Learning,
    LearningOutcome,
    Solution,
    SystemMetrics,
    ValidationRule,
)
from self_evolution.monitor import Monitor

logger = logging.getLogger(__name__)

StepHandler = Callable[[ExecutionStep], Awaitable[Any]]

# Metrics where lower is better, mapped to their learning metric key.
IMPROVEMENT_METRICS = {
    "cpu": "cpu_improvement",
    "memory": "memory_improvement",
    "response_time": "response_time_improvement",
    "error_rate": "error_rate_improvement",
}


def new_learning_id() -> str:
    return f"learning_{uuid.uuid4().hex[:12]}"


def calculate_improvement(
    before: SystemMetrics,
    after: SystemMetrics,
    epsilon: float = 0.1,
) -> dict[str, float]:
    """Percentage drop per metric, ``(before - after) / max(before, epsilon) * 100``."""
    improvements = {}
    for field, key in IMPROVEMENT_METRICS.items():
        old = getattr(before, field)
        new = getattr(after, field)
        improvements[key] = (old - new) / max(old, epsilon) * 100
    return improvements


class ValidationResult(BaseModel):
    """Outcome of one validation rule; ``passed`` is None when nothing was observed."""

    step_order: int
    rule: ValidationRule
    observed: Any = None
    passed: bool | None = None


class ExecutionReport(BaseModel):
    """Everything one run produced."""

    challenge_id: str
    solution_id: str
    learning: Learning
    before: SystemMetrics | None = None
    after: SystemMetrics | None = None
    steps_completed: int = 0
    validations: list[ValidationResult] = Field(default_factory=list)
    rolled_back: bool = False
    rollback_failed: bool = False
    execution_time_ms: float = 0.0

    @property
    def outcome(self) -> LearningOutcome:
        return self.learning.outcome

    @property
    def failed_validations(self) -> list[ValidationResult]:
        return [v for v in self.validations if v.passed is False]


async def _noop_step(step: ExecutionStep) -> Any:
    """Default action: nothing to observe."""
    return None


class ExecutionEngine:
    """
    Runs solution steps through registered async action handlers.

    Handlers receive the step and return an observed value, or a mapping
    from validation type (``metric``, ``test``...) to observed value, that
    the step's validation rules are checked against. Actions without a
    registered handler fall back to the default handler.
    """

    def __init__(
        self,
        monitor: Monitor,
        config: ExecutionConfig | None = None,
        default_handler: StepHandler | None = None,
    ) -> None:
        self.monitor = monitor
        self.config = config or ExecutionConfig()
        self._handlers: dict[str, StepHandler] = {}
        self._default_handler = default_handler or _noop_step

    def register_action(self, action: str, handler: StepHandler) -> None:
        self._handlers[action] = handler

    def handler_for(self, action: str) -> StepHandler:
        return self._handlers.get(action, self._default_handler)

    async def run(self, challenge: Challenge, solution: Solution) -> ExecutionReport:
        """Execute ``solution`` against ``challenge`` and record the outcome."""
        started = time.perf_counter()
        lessons: list[str] = []
        affected: list[str] = []
        validations: list[ValidationResult] = []
        metrics: dict[str, float] = {}
        before: SystemMetrics | None = None
        after: SystemMetrics | None = None
        completed = 0
        rolled_back = False
        rollback_failed = False

        try:
            before = await self.monitor.get_current_metrics()

            for step in solution.implementation.ordered_steps():
                observed = await self._run_step(solution, step)
                self._record_component(affected, step.target)
                validations.extend(self._validate(step, observed))
                completed += 1

            after = await self.monitor.get_current_metrics()
            metrics = calculate_improvement(before, after, self.config.improvement_epsilon)

            if self.is_successful(metrics):
                outcome = LearningOutcome.SUCCESS
                lessons.append(f"Successfully resolved: {challenge.description}")
            else:
                outcome = LearningOutcome.PARTIAL
                lessons.append("Solution partially effective, further optimization needed")

        except Exception as exc:
            outcome = LearningOutcome.FAILURE
            lessons.append(f"Execution failed: {exc}")
            logger.warning("Solution %s failed: %s", solution.id, exc)

            rolled_back = True
            rollback_errors = await self._rollback(solution, affected)
            if rollback_errors:
                rollback_failed = True
                lessons.extend(f"Rollback also failed: {error}" for error in rollback_errors)

        for result in validations:
            if result.passed is False:
                lessons.append(
                    f"Validation failed at step {result.step_order}: "
                    f"{result.rule.type.value} {result.rule.operator.value} "
                    f"{result.rule.expected!r} (observed {result.observed!r})"
                )

        elapsed_ms = (time.perf_counter() - started) * 1000
        learning = Learning(
            id=new_learning_id(),
            challenge_id=challenge.id,
            solution_id=solution.id,
            outcome=outcome,
            metrics=metrics,
            lessons=lessons,
            affected_components=affected,
        )
        return ExecutionReport(
            challenge_id=challenge.id,
            solution_id=solution.id,
            learning=learning,
            before=before,
            after=after,
            steps_completed=completed,
            validations=validations,
            rolled_back=rolled_back,
            rollback_failed=rollback_failed,
            execution_time_ms=elapsed_ms,
        )

    def is_successful(self, metrics: dict[str, float]) -> bool:
        return any(v > self.config.success_threshold for v in metrics.values())

    async def _run_step(self, solution: Solution, step: ExecutionStep) -> Any:
        handler = self.handler_for(step.action)
        logger.debug("Step %d: %s %s", step.order, step.action, step.target)
        try:
            return await handler(step)
        except Exception as exc:
            raise ExecutionFailure(solution.id, step.order, str(exc)) from exc

    async def _rollback(self, solution: Solution, affected: list[str]) -> list[ExecutionFailure]:
        """Run every rollback step, even after a failure; returns the errors."""
        errors: list[ExecutionFailure] = []
        for step in solution.implementation.ordered_rollback():
            try:
                await self._run_step(solution, step)
            except ExecutionFailure as exc:
                logger.error("Rollback of %s failed: %s", solution.id, exc)
                errors.append(exc)
                continue
            self._record_component(affected, step.target)
        return errors

    @staticmethod
    def _validate(step: ExecutionStep, observed: Any) -> list[ValidationResult]:
        results = []
        for rule in step.validation:
            value = observed
            if isinstance(observed, dict):
                value = observed.get(rule.type.value)
            passed = None if value is None else rule.check(value)
            if passed is False:
                logger.warning("Validation failed at step %d of %s", step.order, step.target)
            results.append(
                ValidationResult(step_order=step.order, rule=rule, observed=value, passed=passed)
            )
        return results

    @staticmethod
    def _record_component(affected: list[str], target: str) -> None:
        if target not in affected:
            affected.append(target)
