"""Knowledge package — record schemas, file store and in-memory repository."""

from self_evolution.knowledge.repository import KnowledgeRepository
from self_evolution.knowledge.schemas import (
    Challenge,
    KnowledgeTransferPackage,
    Learning,
    Pattern,
    Solution,
)
from self_evolution.knowledge.store import KnowledgeStore

__all__ = [
    "Challenge",
    "KnowledgeRepository",
    "KnowledgeStore",
    "KnowledgeTransferPackage",
    "Learning",
    "Pattern",
    "Solution",
]
