"""Learning package — pattern library and outcome-driven learning engine."""

from self_evolution.learning.engine import LearningEngine, context_similarity, solution_signature
from self_evolution.learning.patterns import PatternLibrary, base_patterns

__all__ = [
    "LearningEngine",
    "PatternLibrary",
    "base_patterns",
    "context_similarity",
    "solution_signature",
]
