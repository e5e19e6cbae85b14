"""
Learning Engine — Turns execution outcomes into reusable knowledge.

Responsibilities:
- Look up historically successful solutions for a new challenge
- Estimate a solution's success rate from past learnings or patterns
- Distil repeated successes into patterns and promote them
- Keep pattern success rates current as new outcomes arrive
"""

from __future__ import annotations

import hashlib
import logging
from collections import Counter, defaultdict
from typing import Any

from self_evolution.config import LearningConfig
from self_evolution.knowledge.repository import KnowledgeRepository
from self_evolution.knowledge.schemas import (
    Challenge,
    ChallengeContext,
    Combinator,
    ComparisonOperator,
    Learning,
    LearningOutcome,
    MetricCondition,
    Pattern,
    Solution,
    SolutionTemplate,
    TriggerCondition,
)
from self_evolution.learning.patterns import PatternLibrary

logger = logging.getLogger(__name__)

ADAPTED_PREFIX = "Adapted: "
TRIGGER_FRACTION = 0.8
TRIGGER_DURATION_SECONDS = 300


def solution_signature(solution: Solution) -> str:
    """Identity of a remediation independent of the challenge it was proposed for."""
    title = solution.title
    while title.startswith(ADAPTED_PREFIX):
        title = title[len(ADAPTED_PREFIX) :]
    return f"{title.strip().lower()}|{solution.implementation.type.value}"


def context_similarity(context_a: ChallengeContext, context_b: ChallengeContext) -> float:
    """
    Weighted overlap of two detection contexts.

    Each common key scores 1 on an exact match, or min/max for two
    differing numbers; the sum is divided by the larger key count.
    """
    flat_a = context_a.flatten()
    flat_b = context_b.flatten()
    common = [k for k in flat_a if k in flat_b]
    if not common:
        return 0.0

    score = 0.0
    for key in common:
        left, right = flat_a[key], flat_b[key]
        if left == right:
            score += 1.0
        elif _is_number(left) and _is_number(right):
            high = max(abs(left), abs(right))
            if high > 0 and (left >= 0) == (right >= 0):
                score += min(abs(left), abs(right)) / high
    return score / max(len(flat_a), len(flat_b))


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


class LearningEngine:
    """Frequency and score bookkeeping over learnings and patterns."""

    def __init__(
        self,
        repository: KnowledgeRepository,
        library: PatternLibrary | None = None,
        config: LearningConfig | None = None,
    ) -> None:
        self.repository = repository
        self.library = library if library is not None else PatternLibrary()
        self.config = config or LearningConfig()
        self._observed = 0

    # --- Historical lookup ---

    def find_relevant_solutions(
        self,
        challenge: Challenge,
        learnings: list[Learning] | None = None,
    ) -> list[Solution]:
        """
        Solutions that worked on similar past challenges, best first.

        Args:
            challenge: The challenge being analyzed.
            learnings: History to search; defaults to the repository's.

        Returns:
            Distinct solutions ranked by empirical success within the
            relevant learnings.
        """
        history = self.repository.learnings() if learnings is None else learnings
        relevant = self.filter_relevant_learnings(challenge, history)

        solutions: dict[str, Solution] = {}
        for learning in relevant:
            if learning.outcome == LearningOutcome.SUCCESS or (
                learning.outcome == LearningOutcome.PARTIAL
                and self._is_partial_success_acceptable(learning)
            ):
                solution = self.repository.get_solution(learning.solution_id)
                if solution is not None:
                    solutions[solution.id] = solution

        return sorted(
            solutions.values(),
            key=lambda s: self._empirical_success(s, relevant),
            reverse=True,
        )

    def filter_relevant_learnings(
        self,
        challenge: Challenge,
        learnings: list[Learning],
    ) -> list[Learning]:
        """Learnings whose challenge shares type and enough context."""
        relevant = []
        for learning in learnings:
            related = self.repository.get_challenge(learning.challenge_id)
            if related is None or related.type != challenge.type:
                continue
            similarity = context_similarity(challenge.context, related.context)
            if similarity >= self.config.context_similarity:
                relevant.append(learning)
        return relevant

    def _empirical_success(self, solution: Solution, learnings: list[Learning]) -> float:
        own = [l for l in learnings if l.solution_id == solution.id]
        if not own:
            return solution.confidence
        return sum(1 for l in own if l.outcome == LearningOutcome.SUCCESS) / len(own)

    @staticmethod
    def _is_partial_success_acceptable(learning: Learning) -> bool:
        if not learning.metrics:
            return False
        positive = sum(1 for v in learning.metrics.values() if v > 0)
        return positive / len(learning.metrics) > 0.5

    # --- Success-rate estimation ---

    def calculate_success_rate(
        self,
        solution: Solution,
        learnings: list[Learning] | None = None,
    ) -> float:
        """
        Fraction of past executions of similar solutions that worked.

        Partial outcomes count half. Without any history the rate is the
        mean success rate of patterns sharing enough step names, or 0.5.
        """
        history = self.repository.learnings() if learnings is None else learnings
        relevant = [l for l in history if self.is_similar_solution(l.solution_id, solution)]

        if not relevant:
            return self.estimate_success_rate_from_patterns(solution)

        total = sum(l.outcome.score for l in relevant)
        return total / len(relevant)

    def is_similar_solution(self, solution_id: str, solution: Solution) -> bool:
        if solution_id == solution.id:
            return True
        executed = self.repository.get_solution(solution_id)
        return executed is not None and solution_signature(executed) == solution_signature(
            solution
        )

    def estimate_success_rate_from_patterns(self, solution: Solution) -> float:
        related = self.library.related_by_steps(
            solution.implementation.step_names, self.config.pattern_overlap
        )
        if not related:
            return 0.5
        return sum(p.success_rate for p in related) / len(related)

    # --- Pattern extraction ---

    def extract_patterns(self, learnings: list[Learning]) -> list[Pattern]:
        """
        Distil groups of repeated successes into promoted patterns.

        Learnings are grouped by (challenge type, severity, outcome). A group
        with at least ``min_group_size`` members becomes a pattern, which is
        promoted into the library only if its success rate reaches the
        promotion threshold.

        Returns:
            Patterns promoted or refreshed by this pass.
        """
        promoted: list[Pattern] = []

        for key, group in self._group_successful_learnings(learnings).items():
            if len(group) < self.config.min_group_size:
                continue
            candidate = self._create_pattern_from_group(key, group)
            if candidate is None:
                continue
            if candidate.success_rate < self.config.promotion_threshold:
                logger.debug(
                    "Group %s below promotion threshold (%.2f)", key, candidate.success_rate
                )
                continue

            existing = self.library.get(candidate.id)
            if existing is None:
                self.library.register(candidate)
                promoted.append(candidate)
                logger.info("Promoted pattern %s from %d learnings", candidate.id, len(group))
            else:
                existing.trigger = candidate.trigger
                existing.solution = candidate.solution
                existing.success_rate = candidate.success_rate
                existing.usage_count = max(existing.usage_count, candidate.usage_count)
                promoted.append(existing)

        return promoted

    def _group_successful_learnings(
        self, learnings: list[Learning]
    ) -> dict[tuple[str, str, str], list[Learning]]:
        groups: dict[tuple[str, str, str], list[Learning]] = defaultdict(list)
        for learning in learnings:
            if learning.outcome != LearningOutcome.SUCCESS:
                continue
            challenge = self.repository.get_challenge(learning.challenge_id)
            if challenge is None:
                continue
            key = (challenge.type.value, challenge.severity.value, learning.outcome.value)
            groups[key].append(learning)
        return groups

    def _create_pattern_from_group(
        self,
        key: tuple[str, str, str],
        group: list[Learning],
    ) -> Pattern | None:
        best = max(group, key=self._learning_score)
        solution = self.repository.get_solution(best.solution_id)
        if solution is None:
            return None

        challenge_type, severity, _ = key
        digest = hashlib.md5("|".join(key).encode("utf-8")).hexdigest()[:10]

        return Pattern(
            id=f"pattern_{digest}",
            name=f"Auto-resolution for {challenge_type} ({severity})",
            description=solution.description or solution.title,
            trigger=self._extract_common_trigger(group),
            solution=SolutionTemplate(
                name=solution.title,
                steps=solution.implementation.step_names,
                parameters=self._merge_parameters(solution),
                expected_outcome=self._expected_outcome(group),
            ),
            success_rate=self._group_success_rate(group),
            usage_count=len(group),
        )

    def _extract_common_trigger(self, group: list[Learning]) -> TriggerCondition:
        """Thresholds at 80% of the lowest value each member observed."""
        observations: list[dict[str, float]] = []
        focus: set[str] = set()
        for learning in group:
            challenge = self.repository.get_challenge(learning.challenge_id)
            if challenge is None:
                continue
            values = {k: v for k, v in challenge.context.numeric_values().items() if v > 0}
            observations.append(values)
            if challenge.context.metric:
                focus.add(challenge.context.metric)

        if not observations:
            return TriggerCondition()

        shared = set.intersection(*(set(v) for v in observations))
        if focus and focus <= shared:
            shared = focus

        conditions = [
            MetricCondition(
                metric=metric,
                operator=ComparisonOperator.GT,
                value=round(min(v[metric] for v in observations) * TRIGGER_FRACTION, 4),
                duration=TRIGGER_DURATION_SECONDS,
            )
            for metric in sorted(shared)
        ]
        return TriggerCondition(metrics=conditions, combinator=Combinator.AND)

    @staticmethod
    def _merge_parameters(solution: Solution) -> dict[str, Any]:
        params: dict[str, Any] = {}
        for step in solution.implementation.ordered_steps():
            params.update(step.parameters)
        return params

    @staticmethod
    def _expected_outcome(group: list[Learning]) -> str:
        counts: Counter[str] = Counter()
        for learning in group:
            counts.update(k for k, v in learning.metrics.items() if v > 0)
        if not counts:
            return "Problem resolved"
        metric, _ = counts.most_common(1)[0]
        return f"Improves {metric}"

    @staticmethod
    def _group_success_rate(group: list[Learning]) -> float:
        total = sum(l.positive_improvement for l in group)
        return min(total / (len(group) * 100), 1.0)

    @staticmethod
    def _learning_score(learning: Learning) -> float:
        return learning.positive_improvement + learning.outcome.score * 100

    # --- Incremental update ---

    def update_knowledge(self, learning: Learning) -> list[Pattern]:
        """
        Fold one new learning into pattern statistics.

        Every pattern whose trigger matches the originating challenge gets a
        learning-rate update. Every ``extraction_interval``-th learning also
        re-runs extraction over the most recent ``extraction_window``.

        Returns:
            Patterns whose records changed.
        """
        self._observed += 1
        touched: dict[str, Pattern] = {}

        challenge = self.repository.get_challenge(learning.challenge_id)
        if challenge is not None:
            for pattern in self.library.matching_challenge(challenge):
                pattern.record_outcome(learning.outcome.score, self.config.learning_rate)
                touched[pattern.id] = pattern

        if self._observed % self.config.extraction_interval == 0:
            window = self.repository.learnings()[-self.config.extraction_window :]
            for pattern in self.extract_patterns(window):
                touched[pattern.id] = pattern

        return list(touched.values())

    @property
    def observed_count(self) -> int:
        return self._observed
