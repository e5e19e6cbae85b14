"""Knowledge data schemas — challenges, solutions, learnings and patterns."""

from __future__ import annotations

import re
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Union

from pydantic import BaseModel, ConfigDict, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ChallengeType(str, Enum):
    """Domain category of a detected problem."""

    PERFORMANCE = "performance"
    ERROR = "error"
    SECURITY = "security"
    SCALABILITY = "scalability"
    USABILITY = "usability"
    INTEGRATION = "integration"
    DATA_QUALITY = "data-quality"
    DOMAIN_PROCESSING = "domain-processing"


class Severity(str, Enum):
    """Challenge severity, ordered low < medium < high < critical."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]

    def __lt__(self, other: object) -> bool:
        if not isinstance(other, Severity):
            return NotImplemented
        return self.rank < other.rank

    def __le__(self, other: object) -> bool:
        if not isinstance(other, Severity):
            return NotImplemented
        return self.rank <= other.rank

    def __gt__(self, other: object) -> bool:
        if not isinstance(other, Severity):
            return NotImplemented
        return self.rank > other.rank

    def __ge__(self, other: object) -> bool:
        if not isinstance(other, Severity):
            return NotImplemented
        return self.rank >= other.rank


_SEVERITY_RANK = {
    Severity.LOW: 0,
    Severity.MEDIUM: 1,
    Severity.HIGH: 2,
    Severity.CRITICAL: 3,
}


class ChallengeStatus(str, Enum):
    """Challenge lifecycle states."""

    PENDING = "pending"
    ANALYZING = "analyzing"
    READY = "ready"
    EXECUTING = "executing"
    RESOLVED = "resolved"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (ChallengeStatus.RESOLVED, ChallengeStatus.FAILED)


class ChallengeSource(str, Enum):
    """Where a challenge originated."""

    AUTO = "auto"
    MANUAL = "manual"
    MONITOR = "monitor"


class SystemMetrics(BaseModel):
    """One snapshot of the watched application's health metrics."""

    cpu: float = Field(default=0.0, ge=0.0)
    memory: float = Field(default=0.0, ge=0.0)
    disk_usage: float = Field(default=0.0, ge=0.0)
    network_latency: float = Field(default=0.0, ge=0.0)
    error_rate: float = Field(default=0.0, ge=0.0)
    response_time: float = Field(default=0.0, ge=0.0)
    active_users: int = Field(default=0, ge=0)
    processing_queue: int = Field(default=0, ge=0)


ContextValue = Union[str, int, float, bool, None]


class ChallengeContext(BaseModel):
    """Typed detection context with an escape-hatch ``extra`` map."""

    model_config = ConfigDict(extra="forbid")

    metric: str | None = None
    value: float | None = None
    component: str | None = None
    metrics: SystemMetrics | None = None
    error_message: str | None = None
    stack: str | None = None
    extra: dict[str, ContextValue] = Field(default_factory=dict)

    def numeric_values(self) -> dict[str, float]:
        """Every numeric observation addressable by metric name."""
        values: dict[str, float] = {}
        if self.metrics is not None:
            values.update({k: float(v) for k, v in self.metrics.model_dump().items()})
        if self.metric and self.value is not None:
            values[self.metric] = float(self.value)
        for key, raw in self.extra.items():
            if isinstance(raw, (int, float)) and not isinstance(raw, bool):
                values.setdefault(key, float(raw))
        return values

    def flatten(self) -> dict[str, Any]:
        """Flat key/value view used for context similarity."""
        flat: dict[str, Any] = {}
        for key in ("metric", "value", "component", "error_message"):
            value = getattr(self, key)
            if value is not None:
                flat[key] = value
        if self.metrics is not None:
            flat.update(self.metrics.model_dump())
        for key, value in self.extra.items():
            flat.setdefault(key, value)
        return flat


class ValidationType(str, Enum):
    METRIC = "metric"
    LOG = "log"
    TEST = "test"
    HEALTH_CHECK = "health-check"


class ValidationOperator(str, Enum):
    EQUALS = "equals"
    GREATER = "greater"
    LESS = "less"
    CONTAINS = "contains"
    MATCHES = "matches"


class ValidationRule(BaseModel):
    """Post-condition checked after a step runs."""

    type: ValidationType
    expected: Any = None
    operator: ValidationOperator = ValidationOperator.EQUALS

    def check(self, observed: Any) -> bool:
        """Compare an observed value against the expectation."""
        try:
            if self.operator == ValidationOperator.EQUALS:
                return observed == self.expected
            if self.operator == ValidationOperator.GREATER:
                return float(observed) > float(self.expected)
            if self.operator == ValidationOperator.LESS:
                return float(observed) < float(self.expected)
            if self.operator == ValidationOperator.CONTAINS:
                return str(self.expected) in str(observed)
            if self.operator == ValidationOperator.MATCHES:
                return re.search(str(self.expected), str(observed)) is not None
        except (TypeError, ValueError):
            return False
        return False


class ExecutionStep(BaseModel):
    """One atomic remediation action."""

    order: int = Field(ge=1)
    action: str
    target: str
    parameters: dict[str, Any] = Field(default_factory=dict)
    validation: list[ValidationRule] = Field(default_factory=list)


class ImplementationType(str, Enum):
    CODE = "code"
    CONFIG = "config"
    PROCESS = "process"
    INFRASTRUCTURE = "infrastructure"


class Implementation(BaseModel):
    """How a solution is carried out and undone."""

    type: ImplementationType = ImplementationType.CODE
    steps: list[ExecutionStep] = Field(default_factory=list)
    rollback_plan: list[ExecutionStep] = Field(default_factory=list)
    estimated_duration: int = Field(default=30, ge=0)  # minutes

    def ordered_steps(self) -> list[ExecutionStep]:
        return sorted(self.steps, key=lambda s: s.order)

    def ordered_rollback(self) -> list[ExecutionStep]:
        return sorted(self.rollback_plan, key=lambda s: s.order)

    @property
    def step_names(self) -> list[str]:
        return [s.action for s in self.ordered_steps()]


class Impact(BaseModel):
    """Estimated signed percentage deltas."""

    performance: float = Field(default=0.0, ge=-100.0, le=100.0)
    reliability: float = Field(default=0.0, ge=-100.0, le=100.0)
    user_experience: float = Field(default=0.0, ge=-100.0, le=100.0)
    cost: float = Field(default=0.0, ge=-100.0, le=100.0)
    security: float = Field(default=0.0, ge=-100.0, le=100.0)


class RiskImpact(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @property
    def weight(self) -> float:
        return _IMPACT_WEIGHTS[self]


_IMPACT_WEIGHTS = {RiskImpact.HIGH: 1.0, RiskImpact.MEDIUM: 0.5, RiskImpact.LOW: 0.2}


class Risk(BaseModel):
    description: str
    probability: float = Field(ge=0.0, le=1.0)
    impact: RiskImpact
    mitigation: str = ""


class Solution(BaseModel):
    """A proposed remediation tied to exactly one challenge."""

    id: str
    challenge_id: str
    title: str
    description: str = ""
    implementation: Implementation = Field(default_factory=Implementation)
    confidence: float = Field(default=0.5, ge=0.0, le=1.0)
    estimated_impact: Impact = Field(default_factory=Impact)
    prerequisites: list[str] = Field(default_factory=list)
    risks: list[Risk] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utcnow)
    execution_time: float | None = None  # milliseconds

    @property
    def has_high_risk(self) -> bool:
        return any(r.impact == RiskImpact.HIGH for r in self.risks)


class LearningOutcome(str, Enum):
    SUCCESS = "success"
    FAILURE = "failure"
    PARTIAL = "partial"

    @property
    def score(self) -> float:
        """Numeric outcome used by running success-rate updates."""
        return {"success": 1.0, "partial": 0.5, "failure": 0.0}[self.value]


class Learning(BaseModel):
    """Recorded outcome of executing one solution. Immutable once created."""

    model_config = ConfigDict(frozen=True)

    id: str
    challenge_id: str
    solution_id: str
    outcome: LearningOutcome
    metrics: dict[str, float] = Field(default_factory=dict)
    lessons: list[str] = Field(default_factory=list)
    timestamp: datetime = Field(default_factory=utcnow)
    affected_components: list[str] = Field(default_factory=list)
    transferred: bool = False
    source_system: str | None = None

    @property
    def positive_improvement(self) -> float:
        return sum(v for v in self.metrics.values() if v > 0)


class Challenge(BaseModel):
    """A detected problem instance with a lifecycle."""

    id: str
    type: ChallengeType = ChallengeType.ERROR
    severity: Severity = Severity.MEDIUM
    description: str = ""
    detected_at: datetime = Field(default_factory=utcnow)
    context: ChallengeContext = Field(default_factory=ChallengeContext)
    proposed_solutions: list[Solution] = Field(default_factory=list)
    status: ChallengeStatus = ChallengeStatus.PENDING
    learnings: list[Learning] = Field(default_factory=list)
    source: ChallengeSource = ChallengeSource.AUTO
    occurrences: int = Field(default=1, ge=1)
    last_seen_at: datetime | None = None

    @property
    def is_open(self) -> bool:
        return not self.status.is_terminal


class ComparisonOperator(str, Enum):
    GT = "gt"
    LT = "lt"
    EQ = "eq"
    GTE = "gte"
    LTE = "lte"

    def compare(self, observed: float, threshold: float) -> bool:
        if self is ComparisonOperator.GT:
            return observed > threshold
        if self is ComparisonOperator.LT:
            return observed < threshold
        if self is ComparisonOperator.EQ:
            return observed == threshold
        if self is ComparisonOperator.GTE:
            return observed >= threshold
        return observed <= threshold


class MetricCondition(BaseModel):
    metric: str
    operator: ComparisonOperator
    value: float
    duration: float | None = None  # seconds


class Combinator(str, Enum):
    AND = "AND"
    OR = "OR"


class TriggerCondition(BaseModel):
    """Boolean combination of metric comparisons that activates a pattern."""

    metrics: list[MetricCondition] = Field(default_factory=list)
    combinator: Combinator = Combinator.AND

    def matches(self, values: dict[str, float]) -> bool:
        """Evaluate against observed values; an empty trigger never fires."""
        if not self.metrics:
            return False
        results = (
            c.metric in values and c.operator.compare(values[c.metric], c.value)
            for c in self.metrics
        )
        if self.combinator == Combinator.OR:
            return any(results)
        return all(results)

    @property
    def metric_names(self) -> list[str]:
        return sorted({c.metric for c in self.metrics})


class SolutionTemplate(BaseModel):
    name: str
    steps: list[str] = Field(default_factory=list)
    parameters: dict[str, Any] = Field(default_factory=dict)
    expected_outcome: str = ""


class Pattern(BaseModel):
    """Reusable trigger → remediation rule distilled from successes."""

    id: str
    name: str
    description: str = ""
    trigger: TriggerCondition = Field(default_factory=TriggerCondition)
    solution: SolutionTemplate
    success_rate: float = Field(ge=0.0, le=1.0)
    usage_count: int = Field(default=1, ge=1)
    origin: str = "learned"

    def record_outcome(self, outcome_score: float, learning_rate: float) -> None:
        """Blend one observed outcome into the running success rate."""
        self.success_rate = self.success_rate * (1 - learning_rate) + outcome_score * learning_rate
        self.usage_count += 1

    def absorb(self, other: Pattern) -> None:
        """Merge another observation set of the same pattern (usage-weighted)."""
        total = self.usage_count + other.usage_count
        self.success_rate = (
            self.success_rate * self.usage_count + other.success_rate * other.usage_count
        ) / total
        self.usage_count = total


class KnowledgeTransferPackage(BaseModel):
    """Versioned, immutable export bundle for one target system."""

    model_config = ConfigDict(frozen=True)

    version: str
    source_system: str
    target_system: str
    challenges: list[Challenge] = Field(default_factory=list)
    solutions: list[Solution] = Field(default_factory=list)
    learnings: list[Learning] = Field(default_factory=list)
    patterns: list[Pattern] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utcnow)

    @property
    def major_version(self) -> str:
        return self.version.split(".")[0]
