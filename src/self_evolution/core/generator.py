"""
Solution Generator — Proposes candidate remediations for a challenge.

Four independent strategies are concatenated, then deduplicated:
  1. Pattern-based     (library patterns whose trigger fires)
  2. Template-based    (static table keyed by ``type:metric`` or ``type``)
  3. Historical        (adapted copies of previously successful solutions)
  4. Heuristic catalog (hand-authored remediations per challenge type)
"""

from __future__ import annotations

import hashlib
import logging
import uuid
from typing import Any

from pydantic import BaseModel, Field

from self_evolution.config import LearningConfig
from self_evolution.knowledge.schemas import (
    Challenge,
    ChallengeType,
    ExecutionStep,
    Impact,
    Implementation,
    ImplementationType,
    Pattern,
    Risk,
    Solution,
    ValidationRule,
    utcnow,
)
from self_evolution.learning.engine import ADAPTED_PREFIX
from self_evolution.learning.patterns import PatternLibrary

logger = logging.getLogger(__name__)

TEMPLATE_CONFIDENCE = 0.7


def new_solution_id() -> str:
    return f"solution_{uuid.uuid4().hex[:12]}"


def _steps(*specs: tuple) -> list[ExecutionStep]:
    """Build ordered steps from ``(action, target, parameters[, validation])`` tuples."""
    steps = []
    for order, spec in enumerate(specs, start=1):
        action, target, parameters = spec[0], spec[1], spec[2]
        validation = spec[3] if len(spec) > 3 else []
        steps.append(
            ExecutionStep(
                order=order,
                action=action,
                target=target,
                parameters=parameters,
                validation=[ValidationRule.model_validate(v) for v in validation],
            )
        )
    return steps


class RemediationTemplate(BaseModel):
    """Fixed-step remediation looked up by problem signature."""

    title: str
    implementation: Implementation
    confidence: float = Field(default=TEMPLATE_CONFIDENCE, ge=0.0, le=1.0)
    impact: Impact = Field(
        default_factory=lambda: Impact(performance=25, reliability=25, user_experience=25)
    )


def default_templates() -> dict[str, RemediationTemplate]:
    """Static remediation table keyed by ``type:metric`` or bare ``type``."""
    return {
        "performance:cpu": RemediationTemplate(
            title="Optimize CPU usage",
            implementation=Implementation(
                type=ImplementationType.CODE,
                steps=_steps(
                    ("analyze", "process-list", {"sort_by": "cpu"}),
                    ("optimize", "worker-pool", {"size": "auto"}),
                    ("scale", "compute-resources", {"type": "horizontal"}),
                ),
                rollback_plan=_steps(("scale-down", "compute-resources", {"type": "horizontal"})),
                estimated_duration=20,
            ),
        ),
        "performance:memory": RemediationTemplate(
            title="Fix memory leak",
            implementation=Implementation(
                type=ImplementationType.CODE,
                steps=_steps(
                    ("analyze", "heap-dump", {}),
                    ("patch", "memory-leaks", {"mode": "aggressive"}),
                    ("restart", "application", {"graceful": True}),
                ),
                estimated_duration=20,
            ),
        ),
        "performance:response_time": RemediationTemplate(
            title="Clear and warm response cache",
            implementation=Implementation(
                type=ImplementationType.CONFIG,
                steps=_steps(
                    ("analyze", "slow-endpoints", {"limit": 20}),
                    ("clear", "response-cache", {}),
                    ("warm", "response-cache", {"top_routes": 50}),
                ),
                estimated_duration=10,
            ),
        ),
        "error:error_rate": RemediationTemplate(
            title="Reduce error rate",
            implementation=Implementation(
                type=ImplementationType.CODE,
                steps=_steps(
                    ("analyze", "error-logs", {"limit": 1000}),
                    ("patch", "error-handlers", {}),
                    ("monitor", "error-metrics", {"duration": 3600}),
                ),
                estimated_duration=20,
            ),
        ),
        "domain-processing:processing_queue": RemediationTemplate(
            title="Optimize processing queue",
            implementation=Implementation(
                type=ImplementationType.CODE,
                steps=_steps(
                    ("scale", "processing-workers", {"count": 5}),
                    ("optimize", "processing-settings", {"preset": "fast"}),
                    ("prioritize", "queue", {"algorithm": "fifo"}),
                ),
                rollback_plan=_steps(("scale-down", "processing-workers", {"count": 1})),
                estimated_duration=20,
            ),
        ),
        "error": RemediationTemplate(
            title="Restart failing component",
            implementation=Implementation(
                type=ImplementationType.PROCESS,
                steps=_steps(
                    ("analyze", "error-logs", {"limit": 200}),
                    ("restart", "application", {"graceful": True}),
                    ("health-check", "application", {}),
                ),
                estimated_duration=10,
            ),
        ),
        "scalability": RemediationTemplate(
            title="Scale out capacity",
            implementation=Implementation(
                type=ImplementationType.INFRASTRUCTURE,
                steps=_steps(
                    ("scale", "compute-resources", {"type": "horizontal", "count": 2}),
                    ("rebalance", "load-balancer", {}),
                    ("health-check", "application", {}),
                ),
                rollback_plan=_steps(("scale-down", "compute-resources", {"count": 2})),
                estimated_duration=15,
            ),
        ),
    }


# --- Heuristic catalog ---
# Blueprints are validated into fresh Solution records per challenge.

_CACHING = {
    "title": "In-memory caching layer",
    "description": "Add a fast cache layer in front of expensive reads",
    "implementation": {
        "type": "code",
        "steps": [
            {
                "order": 1,
                "action": "install",
                "target": "redis",
                "parameters": {"version": "latest"},
                "validation": [{"type": "health-check", "expected": "running", "operator": "equals"}],
            },
            {
                "order": 2,
                "action": "configure",
                "target": "cache-layer",
                "parameters": {"ttl": 3600, "max_memory": "1gb"},
                "validation": [{"type": "metric", "expected": 1000, "operator": "less"}],
            },
            {
                "order": 3,
                "action": "deploy",
                "target": "application",
                "parameters": {"cache_enabled": True},
                "validation": [{"type": "test", "expected": "pass", "operator": "equals"}],
            },
        ],
        "rollback_plan": [{"order": 1, "action": "disable", "target": "cache-layer"}],
        "estimated_duration": 30,
    },
    "confidence": 0.85,
    "estimated_impact": {
        "performance": 40,
        "reliability": 10,
        "user_experience": 30,
        "cost": -5,
    },
    "prerequisites": ["redis-available", "memory-sufficient"],
    "risks": [
        {
            "description": "Stale or inconsistent cache entries",
            "probability": 0.2,
            "impact": "medium",
            "mitigation": "TTLs and explicit invalidation",
        }
    ],
}

_ASYNC_OFFLOAD = {
    "title": "Asynchronous job queue",
    "description": "Move heavy operations to background jobs",
    "implementation": {
        "type": "code",
        "steps": [
            {
                "order": 1,
                "action": "implement",
                "target": "job-queue",
                "parameters": {"concurrency": 10},
                "validation": [{"type": "health-check", "expected": "active", "operator": "equals"}],
            },
            {
                "order": 2,
                "action": "migrate",
                "target": "heavy-operations",
                "parameters": {"async": True},
                "validation": [{"type": "metric", "expected": 500, "operator": "less"}],
            },
        ],
        "rollback_plan": [{"order": 1, "action": "revert", "target": "sync-processing"}],
        "estimated_duration": 45,
    },
    "confidence": 0.8,
    "estimated_impact": {
        "performance": 35,
        "reliability": 20,
        "user_experience": 25,
        "cost": -10,
    },
    "prerequisites": ["queue-infrastructure"],
    "risks": [
        {
            "description": "Background jobs fail silently",
            "probability": 0.15,
            "impact": "low",
            "mitigation": "Retries and a dead-letter queue",
        }
    ],
}

_DISTRIBUTED = {
    "title": "Distributed processing",
    "description": "Run processing in parallel across several worker nodes",
    "implementation": {
        "type": "infrastructure",
        "steps": [
            {
                "order": 1,
                "action": "deploy",
                "target": "worker-nodes",
                "parameters": {"count": 3, "type": "processor"},
                "validation": [{"type": "health-check", "expected": 3, "operator": "equals"}],
            },
            {
                "order": 2,
                "action": "configure",
                "target": "load-balancer",
                "parameters": {"algorithm": "round-robin"},
                "validation": [{"type": "metric", "expected": 3, "operator": "equals"}],
            },
        ],
        "rollback_plan": [
            {"order": 1, "action": "scale-down", "target": "worker-nodes", "parameters": {"count": 1}}
        ],
        "estimated_duration": 20,
    },
    "confidence": 0.9,
    "estimated_impact": {
        "performance": 50,
        "reliability": 30,
        "user_experience": 40,
        "cost": -20,
    },
    "prerequisites": ["cluster-available"],
    "risks": [
        {
            "description": "Synchronization issues between nodes",
            "probability": 0.1,
            "impact": "medium",
            "mitigation": "Distributed locks and a coordinator",
        }
    ],
}

_ADAPTIVE_QUALITY = {
    "title": "Adaptive quality control",
    "description": "Lower output quality dynamically while the system is under load",
    "implementation": {
        "type": "code",
        "steps": [
            {
                "order": 1,
                "action": "implement",
                "target": "quality-controller",
                "parameters": {
                    "presets": ["high", "medium", "low"],
                    "triggers": {"cpu": 80, "queue": 50},
                },
                "validation": [{"type": "test", "expected": "pass", "operator": "equals"}],
            }
        ],
        "rollback_plan": [{"order": 1, "action": "disable", "target": "quality-controller"}],
        "estimated_duration": 15,
    },
    "confidence": 0.75,
    "estimated_impact": {
        "performance": 30,
        "reliability": 25,
        "user_experience": -10,
        "cost": 15,
    },
    "prerequisites": ["encoder-supports-presets"],
    "risks": [
        {
            "description": "Degraded quality hurts user experience",
            "probability": 0.3,
            "impact": "medium",
            "mitigation": "Notify users and expose a quality preference",
        }
    ],
}

_CIRCUIT_BREAKER = {
    "title": "Circuit breaker",
    "description": "Trip automatically to stop cascading failures",
    "implementation": {
        "type": "code",
        "steps": [
            {
                "order": 1,
                "action": "implement",
                "target": "circuit-breaker",
                "parameters": {"threshold": 5, "timeout": 60000, "reset_timeout": 120000},
                "validation": [{"type": "test", "expected": "pass", "operator": "equals"}],
            }
        ],
        "rollback_plan": [{"order": 1, "action": "remove", "target": "circuit-breaker"}],
        "estimated_duration": 25,
    },
    "confidence": 0.88,
    "estimated_impact": {
        "performance": 15,
        "reliability": 45,
        "user_experience": 20,
        "security": 5,
    },
    "risks": [
        {
            "description": "Healthy requests get blocked",
            "probability": 0.05,
            "impact": "low",
            "mitigation": "Tune thresholds and monitor trips",
        }
    ],
}

_RETRY_BACKOFF = {
    "title": "Retry with exponential backoff",
    "description": "Retry transient errors automatically",
    "implementation": {
        "type": "code",
        "steps": [
            {
                "order": 1,
                "action": "implement",
                "target": "retry-handler",
                "parameters": {"max_retries": 3, "backoff_multiplier": 2, "initial_delay": 1000},
                "validation": [{"type": "test", "expected": "pass", "operator": "equals"}],
            }
        ],
        "rollback_plan": [{"order": 1, "action": "disable", "target": "retry-handler"}],
        "estimated_duration": 20,
    },
    "confidence": 0.82,
    "estimated_impact": {
        "performance": -5,
        "reliability": 35,
        "user_experience": 25,
    },
    "risks": [
        {
            "description": "Retry storm",
            "probability": 0.1,
            "impact": "medium",
            "mitigation": "Rate limiting and jitter",
        }
    ],
}

_AUTOSCALING = {
    "title": "Automatic scaling",
    "description": "Adjust capacity to load automatically",
    "implementation": {
        "type": "infrastructure",
        "steps": [
            {
                "order": 1,
                "action": "configure",
                "target": "auto-scaler",
                "parameters": {
                    "min_instances": 2,
                    "max_instances": 10,
                    "target_cpu": 70,
                    "scale_up_threshold": 80,
                    "scale_down_threshold": 30,
                },
                "validation": [{"type": "metric", "expected": 70, "operator": "less"}],
            }
        ],
        "rollback_plan": [{"order": 1, "action": "disable", "target": "auto-scaler"}],
        "estimated_duration": 10,
    },
    "confidence": 0.92,
    "estimated_impact": {
        "performance": 40,
        "reliability": 35,
        "user_experience": 30,
        "cost": -15,
    },
    "prerequisites": ["cloud-platform", "scaling-enabled"],
    "risks": [
        {
            "description": "Cost overrun",
            "probability": 0.3,
            "impact": "medium",
            "mitigation": "Budget alerts and an instance cap",
        }
    ],
}

_LOAD_BALANCING = {
    "title": "Advanced load balancing",
    "description": "Spread load by least connections with health checks",
    "implementation": {
        "type": "infrastructure",
        "steps": [
            {
                "order": 1,
                "action": "deploy",
                "target": "load-balancer",
                "parameters": {
                    "algorithm": "least-connections",
                    "health_check": {"interval": 10, "timeout": 5},
                },
                "validation": [{"type": "health-check", "expected": "healthy", "operator": "equals"}],
            }
        ],
        "rollback_plan": [{"order": 1, "action": "revert", "target": "simple-balancing"}],
        "estimated_duration": 15,
    },
    "confidence": 0.86,
    "estimated_impact": {
        "performance": 30,
        "reliability": 40,
        "user_experience": 25,
        "cost": -5,
        "security": 10,
    },
    "prerequisites": ["multiple-instances"],
    "risks": [
        {
            "description": "Session management gets harder",
            "probability": 0.2,
            "impact": "low",
            "mitigation": "Sticky sessions or a shared session store",
        }
    ],
}

HEURISTIC_CATALOG: dict[ChallengeType, list[dict[str, Any]]] = {
    ChallengeType.PERFORMANCE: [_CACHING, _ASYNC_OFFLOAD],
    ChallengeType.DOMAIN_PROCESSING: [_DISTRIBUTED, _ADAPTIVE_QUALITY],
    ChallengeType.ERROR: [_CIRCUIT_BREAKER, _RETRY_BACKOFF],
    ChallengeType.SCALABILITY: [_AUTOSCALING, _LOAD_BALANCING],
}


def solution_key(solution: Solution) -> str:
    """Dedup key: hash of title and implementation type."""
    raw = solution.title + solution.implementation.type.value
    return hashlib.md5(raw.encode("utf-8")).hexdigest()


class SolutionGenerator:
    """
    Rule and template engine producing ranked candidate solutions.

    Usage::

        generator = SolutionGenerator(library)
        candidates = generator.generate(challenge, historical_solutions)
    """

    def __init__(
        self,
        library: PatternLibrary,
        config: LearningConfig | None = None,
        templates: dict[str, RemediationTemplate] | None = None,
    ) -> None:
        self.library = library
        self.config = config or LearningConfig()
        self.templates = templates if templates is not None else default_templates()

    def generate(self, challenge: Challenge, historical: list[Solution] | None = None) -> list[Solution]:
        """
        Run every strategy and return deduplicated candidates, best first.

        Args:
            challenge: The challenge to remediate.
            historical: Previously successful solutions for similar challenges.
        """
        candidates: list[Solution] = []
        candidates.extend(self.from_patterns(challenge))
        candidates.extend(self.from_templates(challenge))
        candidates.extend(self.adapt_historical(challenge, historical or []))
        candidates.extend(self.from_heuristics(challenge))

        ranked = self.deduplicate_and_rank(candidates)
        logger.debug(
            "Generated %d candidates (%d unique) for %s", len(candidates), len(ranked), challenge.id
        )
        return ranked

    # --- Strategy 1: patterns ---

    def from_patterns(self, challenge: Challenge) -> list[Solution]:
        return [
            self._solution_from_pattern(challenge, pattern)
            for pattern in self.library.matching_challenge(challenge)
        ]

    def _solution_from_pattern(self, challenge: Challenge, pattern: Pattern) -> Solution:
        target = challenge.context.component or "application"
        steps = [
            ExecutionStep(
                order=index,
                action=step,
                target=target,
                parameters=dict(pattern.solution.parameters),
            )
            for index, step in enumerate(pattern.solution.steps, start=1)
        ]
        return Solution(
            id=new_solution_id(),
            challenge_id=challenge.id,
            title=pattern.solution.name,
            description=pattern.description or pattern.solution.expected_outcome,
            implementation=Implementation(
                type=ImplementationType.PROCESS, steps=steps, estimated_duration=30
            ),
            confidence=pattern.success_rate,
            estimated_impact=Impact(performance=20, reliability=20, user_experience=20),
        )

    # --- Strategy 2: templates ---

    def template_for(self, challenge: Challenge) -> RemediationTemplate | None:
        """Look up ``type:metric`` first, then bare ``type``."""
        if challenge.context.metric:
            template = self.templates.get(f"{challenge.type.value}:{challenge.context.metric}")
            if template is not None:
                return template
        return self.templates.get(challenge.type.value)

    def from_templates(self, challenge: Challenge) -> list[Solution]:
        template = self.template_for(challenge)
        if template is None:
            return []
        return [
            Solution(
                id=new_solution_id(),
                challenge_id=challenge.id,
                title=template.title,
                description=f"Template-based solution for {challenge.type.value}",
                implementation=template.implementation.model_copy(deep=True),
                confidence=template.confidence,
                estimated_impact=template.impact.model_copy(),
            )
        ]

    def register_template(self, key: str, template: RemediationTemplate) -> None:
        self.templates[key] = template

    # --- Strategy 3: historical adaptation ---

    def adapt_historical(self, challenge: Challenge, historical: list[Solution]) -> list[Solution]:
        eligible = [s for s in historical if s.confidence > self.config.historical_min_confidence]
        return [self._adapt(s, challenge) for s in eligible[: self.config.max_adaptations]]

    def _adapt(self, solution: Solution, challenge: Challenge) -> Solution:
        title = solution.title
        if not title.startswith(ADAPTED_PREFIX):
            title = f"{ADAPTED_PREFIX}{title}"
        return solution.model_copy(
            deep=True,
            update={
                "id": new_solution_id(),
                "challenge_id": challenge.id,
                "title": title,
                "confidence": solution.confidence * self.config.adaptation_penalty,
                "created_at": utcnow(),
                "execution_time": None,
            },
        )

    # --- Strategy 4: heuristic catalog ---

    def from_heuristics(self, challenge: Challenge) -> list[Solution]:
        return [
            Solution.model_validate(
                {**blueprint, "id": new_solution_id(), "challenge_id": challenge.id}
            )
            for blueprint in HEURISTIC_CATALOG.get(challenge.type, [])
        ]

    # --- Ranking ---

    @staticmethod
    def deduplicate_and_rank(solutions: list[Solution]) -> list[Solution]:
        """Keep the highest-confidence candidate per key, sorted descending."""
        unique: dict[str, Solution] = {}
        for solution in solutions:
            key = solution_key(solution)
            current = unique.get(key)
            if current is None or solution.confidence > current.confidence:
                unique[key] = solution
        return sorted(unique.values(), key=lambda s: s.confidence, reverse=True)
