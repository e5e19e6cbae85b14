"""Shared fixtures and record factories."""

import tempfile
from pathlib import Path

import pytest

from self_evolution.config import EvolutionConfig
from self_evolution.core.controller import ChallengeController
from self_evolution.knowledge.schemas import (
    Challenge,
    ChallengeContext,
    ChallengeType,
    ExecutionStep,
    Implementation,
    ImplementationType,
    Learning,
    LearningOutcome,
    Severity,
    Solution,
)
from self_evolution.monitor import SimulatedMonitor
from self_evolution.scheduler import ManualScheduler


@pytest.fixture
def tmp_dir() -> Path:
    """Create a temporary working directory."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def config(tmp_dir: Path) -> EvolutionConfig:
    """In-memory configuration with transfer fallbacks under the temp dir."""
    cfg = EvolutionConfig()
    cfg.knowledge.persist = False
    cfg.knowledge.storage_dir = tmp_dir / "kb"
    cfg.transfer.fallback_dir = tmp_dir / "transfer"
    return cfg


@pytest.fixture
def monitor() -> SimulatedMonitor:
    return SimulatedMonitor()


@pytest.fixture
def scheduler() -> ManualScheduler:
    return ManualScheduler()


@pytest.fixture
def controller(
    config: EvolutionConfig,
    monitor: SimulatedMonitor,
    scheduler: ManualScheduler,
) -> ChallengeController:
    return ChallengeController(config, monitor=monitor, scheduler=scheduler)


def make_challenge(
    challenge_id: str = "challenge_test",
    challenge_type: ChallengeType = ChallengeType.PERFORMANCE,
    severity: Severity = Severity.HIGH,
    metric: str | None = "cpu",
    value: float | None = 90.0,
    **kwargs,
) -> Challenge:
    return Challenge(
        id=challenge_id,
        type=challenge_type,
        severity=severity,
        description=kwargs.pop("description", f"Challenge {challenge_id}"),
        context=ChallengeContext(metric=metric, value=value, component=kwargs.pop("component", None)),
        **kwargs,
    )


def make_solution(
    solution_id: str = "solution_test",
    challenge_id: str = "challenge_test",
    title: str = "Optimize CPU usage",
    actions: tuple[str, ...] = ("analyze", "optimize", "scale"),
    impl_type: ImplementationType = ImplementationType.CODE,
    confidence: float = 0.8,
    **kwargs,
) -> Solution:
    steps = [
        ExecutionStep(order=i, action=action, target="application")
        for i, action in enumerate(actions, start=1)
    ]
    return Solution(
        id=solution_id,
        challenge_id=challenge_id,
        title=title,
        implementation=Implementation(type=impl_type, steps=steps),
        confidence=confidence,
        **kwargs,
    )


def make_learning(
    learning_id: str,
    challenge_id: str = "challenge_test",
    solution_id: str = "solution_test",
    outcome: LearningOutcome = LearningOutcome.SUCCESS,
    metrics: dict[str, float] | None = None,
) -> Learning:
    return Learning(
        id=learning_id,
        challenge_id=challenge_id,
        solution_id=solution_id,
        outcome=outcome,
        metrics=metrics if metrics is not None else {"cpu_improvement": 40.0},
    )
