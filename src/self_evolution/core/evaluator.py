"""
Risk/Confidence Evaluator — Re-scores candidates before they can run.

Generator-assigned confidence is never trusted: every candidate gets

    confidence = w * historical_success + (1 - w) * (1 - risk_score)

with ``w = analysis.historical_weight`` (0.7 by default).
"""

from __future__ import annotations

import logging

from self_evolution.config import AnalysisConfig
from self_evolution.knowledge.schemas import Challenge, Severity, Solution
from self_evolution.learning.engine import LearningEngine

logger = logging.getLogger(__name__)


def risk_score(solution: Solution) -> float:
    """Mean of probability x impact weight over the solution's risks, in [0, 1]."""
    if not solution.risks:
        return 0.0
    total = sum(r.probability * r.impact.weight for r in solution.risks)
    return min(max(total / len(solution.risks), 0.0), 1.0)


class RiskEvaluator:
    """Recomputes confidence from history and risk, and gates auto-execution."""

    def __init__(self, learning: LearningEngine, config: AnalysisConfig | None = None) -> None:
        self.learning = learning
        self.config = config or AnalysisConfig()

    def score(self, solution: Solution) -> float:
        historical = self.learning.calculate_success_rate(solution)
        risk = risk_score(solution)
        weight = self.config.historical_weight
        confidence = weight * historical + (1 - weight) * (1 - risk)
        logger.debug(
            "Scored %s: historical=%.3f risk=%.3f confidence=%.3f",
            solution.id,
            historical,
            risk,
            confidence,
        )
        return min(max(confidence, 0.0), 1.0)

    def rank(self, solutions: list[Solution]) -> list[Solution]:
        """Copies of the candidates with recomputed confidence, best first."""
        rescored = [s.model_copy(update={"confidence": self.score(s)}) for s in solutions]
        return sorted(rescored, key=lambda s: s.confidence, reverse=True)

    def should_auto_execute(self, challenge: Challenge, solution: Solution) -> bool:
        """
        Whether a ranked solution may run without a manual trigger.

        Requires confidence above the gate, a non-critical challenge, and no
        high-impact risk on the solution.
        """
        if challenge.severity == Severity.CRITICAL:
            return False
        if solution.has_high_risk:
            return False
        return solution.confidence > self.config.auto_execute_confidence
