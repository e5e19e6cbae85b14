"""
Self-Evolution: closed-loop remediation that learns from its own outcomes.

Watches a running application through a monitor, proposes and ranks
remediations for detected challenges, executes the best one, and distils
the outcomes into reusable patterns shared with peer instances.
"""

__version__ = "0.1.0"
__author__ = "Self-Evolution Contributors"

from self_evolution.config import EvolutionConfig
from self_evolution.core.controller import ChallengeController

__all__ = ["ChallengeController", "EvolutionConfig", "__version__"]
