"""
Knowledge Transfer — Packages and merges knowledge between instances.

Outgoing packages carry generic knowledge always and specialized knowledge
only for compatible targets. Incoming packages are version-checked, then
their patterns are merged into the library, their solutions adapted and
their learnings recorded as transferred.
"""

from __future__ import annotations

import hashlib
import logging
from collections import defaultdict

from pydantic import BaseModel, Field

from self_evolution.config import TransferConfig
from self_evolution.errors import IncompatibleVersion, RecordNotFound
from self_evolution.knowledge.repository import KnowledgeRepository
from self_evolution.knowledge.schemas import (
    Challenge,
    ChallengeType,
    Combinator,
    ComparisonOperator,
    ImplementationType,
    KnowledgeTransferPackage,
    Learning,
    LearningOutcome,
    MetricCondition,
    Pattern,
    Solution,
    SolutionTemplate,
    TriggerCondition,
)
from self_evolution.learning.engine import solution_signature
from self_evolution.learning.patterns import PatternLibrary, same_remediation, trigger_overlap
from self_evolution.transfer.channel import DeliveryReceipt, TransferChannel

logger = logging.getLogger(__name__)

ADAPTED_ID_PREFIX = "adapted_"
IMPROVEMENT_SUFFIX = "_improvement"
PATTERN_IMPROVEMENT_FLOOR = 10.0


class ImportSummary(BaseModel):
    """Counts of what one received package changed."""

    source_system: str
    patterns_inserted: list[str] = Field(default_factory=list)
    patterns_merged: list[str] = Field(default_factory=list)
    challenges_imported: int = 0
    solutions_adapted: list[str] = Field(default_factory=list)
    learnings_recorded: int = 0
    learnings_skipped: int = 0


class PatternDiff(BaseModel):
    unique_to_a: list[Pattern] = Field(default_factory=list)
    unique_to_b: list[Pattern] = Field(default_factory=list)
    common: list[Pattern] = Field(default_factory=list)


def parse_package(raw: str | bytes | dict) -> KnowledgeTransferPackage:
    """Decode a package from its JSON wire form."""
    if isinstance(raw, dict):
        return KnowledgeTransferPackage.model_validate(raw)
    return KnowledgeTransferPackage.model_validate_json(raw)


def similar_patterns(pattern_a: Pattern, pattern_b: Pattern) -> bool:
    return pattern_a.id == pattern_b.id or trigger_overlap(pattern_a, pattern_b) > 0.7


def diff_patterns(patterns_a: list[Pattern], patterns_b: list[Pattern]) -> PatternDiff:
    """Split two pattern sets into unique and common members."""
    diff = PatternDiff()
    for pattern in patterns_a:
        if any(similar_patterns(pattern, other) for other in patterns_b):
            diff.common.append(pattern)
        else:
            diff.unique_to_a.append(pattern)
    for pattern in patterns_b:
        if not any(similar_patterns(pattern, other) for other in patterns_a):
            diff.unique_to_b.append(pattern)
    return diff


class KnowledgeTransfer:
    """Builds, sends and receives ``KnowledgeTransferPackage`` bundles."""

    def __init__(
        self,
        config: TransferConfig,
        library: PatternLibrary,
        channel: TransferChannel | None = None,
    ) -> None:
        self.config = config
        self.library = library
        self.channel = channel or TransferChannel(config)
        self._history: dict[str, list[KnowledgeTransferPackage]] = defaultdict(list)

    @property
    def version(self) -> str:
        return self.config.compatibility_version

    # --- Outgoing ---

    def create_package(
        self,
        target_system: str,
        challenges: list[Challenge],
        solutions: list[Solution],
        learnings: list[Learning],
    ) -> KnowledgeTransferPackage:
        """
        Bundle the knowledge relevant to one target.

        The package is recorded in the per-target transfer history.
        """
        package = KnowledgeTransferPackage(
            version=self.version,
            source_system=self.config.source_system,
            target_system=target_system,
            challenges=[
                c.model_copy(deep=True)
                for c in self.filter_challenges(challenges, target_system)
            ],
            solutions=[
                s.model_copy(deep=True) for s in self.filter_solutions(solutions, target_system)
            ],
            learnings=self.filter_learnings(learnings),
            patterns=self.transferable_patterns(challenges, solutions, learnings),
        )
        self._history[target_system].append(package)
        logger.info(
            "Created package for %s: %d challenges, %d solutions, %d learnings, %d patterns",
            target_system,
            len(package.challenges),
            len(package.solutions),
            len(package.learnings),
            len(package.patterns),
        )
        return package

    def is_domain_compatible(self, target_system: str) -> bool:
        return any(marker in target_system for marker in self.config.domain_targets)

    def is_infrastructure_compatible(self, target_system: str) -> bool:
        return target_system in self.config.infrastructure_targets

    def filter_challenges(self, challenges: list[Challenge], target_system: str) -> list[Challenge]:
        """Generic types always; domain-processing only for domain-compatible targets."""
        relevant = []
        for challenge in challenges:
            if challenge.type.value in self.config.generic_types:
                relevant.append(challenge)
            elif challenge.type == ChallengeType.DOMAIN_PROCESSING and self.is_domain_compatible(
                target_system
            ):
                relevant.append(challenge)
        return relevant

    def filter_solutions(self, solutions: list[Solution], target_system: str) -> list[Solution]:
        relevant = []
        for solution in solutions:
            if solution.confidence < self.config.min_solution_confidence:
                continue
            if (
                solution.implementation.type == ImplementationType.INFRASTRUCTURE
                and not self.is_infrastructure_compatible(target_system)
            ):
                continue
            relevant.append(solution)
        return relevant

    def filter_learnings(self, learnings: list[Learning]) -> list[Learning]:
        """Successful learnings with at least one significant improvement."""
        return [
            l
            for l in learnings
            if l.outcome == LearningOutcome.SUCCESS
            and any(v > self.config.min_learning_improvement for v in l.metrics.values())
        ]

    def is_transferable(self, pattern: Pattern) -> bool:
        return (
            pattern.success_rate > self.config.min_pattern_success
            and pattern.usage_count >= self.config.min_pattern_usage
        )

    def transferable_patterns(
        self,
        challenges: list[Challenge],
        solutions: list[Solution],
        learnings: list[Learning],
    ) -> list[Pattern]:
        """
        Library patterns plus patterns derived from learnings that clear the bar.

        A derived pattern is dropped when a selected library pattern already
        covers the same remediation.
        """
        selected: dict[str, Pattern] = {}
        for pattern in self.library.all():
            if self.is_transferable(pattern):
                selected[pattern.id] = pattern.model_copy(deep=True)
        for pattern in self.derive_patterns(challenges, solutions, learnings):
            if not self.is_transferable(pattern) or pattern.id in selected:
                continue
            if any(same_remediation(pattern, other) for other in selected.values()):
                continue
            selected[pattern.id] = pattern
        return list(selected.values())

    def derive_patterns(
        self,
        challenges: list[Challenge],
        solutions: list[Solution],
        learnings: list[Learning],
    ) -> list[Pattern]:
        """
        Patterns from repeated executions of the same remediation.

        Learnings are grouped by challenge type and solution signature. The
        success rate is the mean outcome score of the group; the trigger
        covers every metric a successful member improved by more than 10%.
        """
        challenge_index = {c.id: c for c in challenges}
        solution_index = {s.id: s for s in solutions}

        groups: dict[tuple[str, str], list[tuple[Learning, Challenge, Solution]]] = defaultdict(list)
        for learning in learnings:
            challenge = challenge_index.get(learning.challenge_id)
            solution = solution_index.get(learning.solution_id)
            if challenge is None or solution is None:
                continue
            key = (challenge.type.value, solution_signature(solution))
            groups[key].append((learning, challenge, solution))

        patterns = []
        for key, members in groups.items():
            pattern = self._pattern_from_members(key, members)
            if pattern is not None:
                patterns.append(pattern)
        return patterns

    def _pattern_from_members(
        self,
        key: tuple[str, str],
        members: list[tuple[Learning, Challenge, Solution]],
    ) -> Pattern | None:
        thresholds: dict[str, float] = {}
        best: tuple[Learning, Challenge, Solution] | None = None

        for learning, challenge, solution in members:
            if learning.outcome != LearningOutcome.SUCCESS:
                continue
            observed = challenge.context.numeric_values()
            for name, value in learning.metrics.items():
                if value <= PATTERN_IMPROVEMENT_FLOOR:
                    continue
                metric = name.removesuffix(IMPROVEMENT_SUFFIX)
                if observed.get(metric, 0) > 0:
                    floor = observed[metric] * 0.8
                    thresholds[metric] = min(thresholds.get(metric, floor), floor)
            if best is None or learning.positive_improvement > best[0].positive_improvement:
                best = (learning, challenge, solution)

        if best is None or not thresholds:
            return None

        learning, challenge, solution = best
        improved = sorted(thresholds)
        digest = hashlib.md5("|".join(key).encode("utf-8")).hexdigest()[:10]
        return Pattern(
            id=f"transfer_{digest}",
            name=f"Improvement pattern: {', '.join(improved)}",
            description=f"{solution.title} improved {', '.join(improved)} on {challenge.type.value}",
            trigger=TriggerCondition(
                metrics=[
                    MetricCondition(
                        metric=m,
                        operator=ComparisonOperator.GT,
                        value=round(thresholds[m], 4),
                        duration=300,
                    )
                    for m in improved
                ],
                combinator=Combinator.OR,
            ),
            solution=SolutionTemplate(
                name=solution.title,
                steps=solution.implementation.step_names,
                expected_outcome=f"Improves {', '.join(improved)}",
            ),
            success_rate=sum(m[0].outcome.score for m in members) / len(members),
            usage_count=len(members),
        )

    async def send_package(self, package: KnowledgeTransferPackage) -> DeliveryReceipt:
        return await self.channel.send(package)

    def history_for(self, target_system: str) -> list[KnowledgeTransferPackage]:
        return list(self._history.get(target_system, []))

    # --- Incoming ---

    def check_version(self, package: KnowledgeTransferPackage) -> None:
        """
        Raises:
            IncompatibleVersion: If the major versions differ.
        """
        local_major = self.version.split(".")[0]
        if package.major_version != local_major:
            raise IncompatibleVersion(package.version, self.version)

    def receive_package(
        self,
        package: KnowledgeTransferPackage,
        repository: KnowledgeRepository,
    ) -> ImportSummary:
        """
        Merge an incoming package into the local library and repository.

        Raises:
            IncompatibleVersion: If the package's major version differs.
        """
        self.check_version(package)
        summary = ImportSummary(source_system=package.source_system)

        for pattern in package.patterns:
            existed = pattern.id in self.library
            merged = self.library.merge(pattern)
            (summary.patterns_merged if existed else summary.patterns_inserted).append(merged.id)

        for challenge in package.challenges:
            if repository.get_challenge(challenge.id) is None:
                repository.add_challenge(
                    challenge.model_copy(
                        deep=True, update={"proposed_solutions": [], "learnings": []}
                    )
                )
                summary.challenges_imported += 1

        id_map: dict[str, str] = {}
        for solution in package.solutions:
            adapted = self.adapt_solution(solution)
            id_map[solution.id] = adapted.id
            if repository.get_solution(adapted.id) is None:
                repository.add_solution(adapted)
                summary.solutions_adapted.append(adapted.id)

        for learning in package.learnings:
            recorded = learning.model_copy(
                update={
                    "solution_id": id_map.get(learning.solution_id, learning.solution_id),
                    "transferred": True,
                    "source_system": package.source_system,
                }
            )
            if repository.has_learning(recorded.id):
                summary.learnings_skipped += 1
                continue
            try:
                repository.append_learning(recorded)
            except RecordNotFound as exc:
                logger.warning("Skipping transferred learning %s: %s", learning.id, exc)
                summary.learnings_skipped += 1
                continue
            summary.learnings_recorded += 1

        logger.info(
            "Received package from %s: %d patterns inserted, %d merged, %d solutions, %d learnings",
            package.source_system,
            len(summary.patterns_inserted),
            len(summary.patterns_merged),
            len(summary.solutions_adapted),
            summary.learnings_recorded,
        )
        return summary

    def adapt_solution(self, solution: Solution) -> Solution:
        """Local copy with a remapped id and discounted confidence."""
        return solution.model_copy(
            deep=True,
            update={
                "id": f"{ADAPTED_ID_PREFIX}{solution.id}",
                "confidence": solution.confidence * self.config.adaptation_penalty,
            },
        )
