"""Core loop — generation, evaluation, execution and the challenge controller."""

from self_evolution.core.controller import ChallengeController, SystemHealth
from self_evolution.core.evaluator import RiskEvaluator, risk_score
from self_evolution.core.executor import ExecutionEngine, ExecutionReport
from self_evolution.core.generator import SolutionGenerator

__all__ = [
    "ChallengeController",
    "ExecutionEngine",
    "ExecutionReport",
    "RiskEvaluator",
    "SolutionGenerator",
    "SystemHealth",
    "risk_score",
]
