"""
Knowledge Store — Persistent storage for challenges, solutions, learnings and patterns.

One JSON document per record, keyed by id, grouped under category directories:
- challenges/ → Challenge records
- solutions/  → Solution records
- learnings/  → Learning records
- patterns/   → Pattern records
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import TypeVar

from pydantic import BaseModel, ValidationError

from self_evolution.errors import PersistenceFailure
from self_evolution.knowledge.schemas import Challenge, Learning, Pattern, Solution

logger = logging.getLogger(__name__)

KnowledgeItem = Challenge | Solution | Learning | Pattern
ModelT = TypeVar("ModelT", bound=BaseModel)


class KnowledgeStore:
    """File-backed record store with one directory per category."""

    CATEGORY_DIRS: dict[type[BaseModel], str] = {
        Challenge: "challenges",
        Solution: "solutions",
        Learning: "learnings",
        Pattern: "patterns",
    }

    def __init__(self, storage_dir: Path) -> None:
        self.storage_dir = storage_dir
        self._ensure_directories()

    def _ensure_directories(self) -> None:
        """Create storage directories if they don't exist."""
        for subdir in self.CATEGORY_DIRS.values():
            (self.storage_dir / subdir).mkdir(parents=True, exist_ok=True)

    def category_of(self, item: KnowledgeItem) -> str:
        return self.CATEGORY_DIRS[type(item)]

    def save(self, item: KnowledgeItem) -> str:
        """
        Store a record persistently, overwriting any previous version.

        Returns:
            The record ID.

        Raises:
            PersistenceFailure: If the document cannot be written.
        """
        subdir = self.category_of(item)
        file_path = self.storage_dir / subdir / f"{item.id}.json"
        try:
            file_path.write_text(item.model_dump_json(indent=2), encoding="utf-8")
        except OSError as exc:
            raise PersistenceFailure(subdir, item.id, str(exc)) from exc
        return item.id

    def load(self, model_class: type[ModelT], record_id: str) -> ModelT | None:
        """Load one record by id, or None if absent or unreadable."""
        file_path = self.storage_dir / self.CATEGORY_DIRS[model_class] / f"{record_id}.json"
        if not file_path.exists():
            return None
        return self._read(file_path, model_class)

    def load_all(self, model_class: type[ModelT]) -> list[ModelT]:
        """Load all records of one category."""
        path = self.storage_dir / self.CATEGORY_DIRS[model_class]
        items = []
        for file_path in sorted(path.glob("*.json")):
            item = self._read(file_path, model_class)
            if item is not None:
                items.append(item)
        return items

    def get_stats(self) -> dict[str, int]:
        """Return record counts per category."""
        return {
            subdir: len(list((self.storage_dir / subdir).glob("*.json")))
            for subdir in self.CATEGORY_DIRS.values()
        }

    def _read(self, file_path: Path, model_class: type[ModelT]) -> ModelT | None:
        try:
            data = json.loads(file_path.read_text(encoding="utf-8"))
            return model_class.model_validate(data)
        except (json.JSONDecodeError, ValidationError, OSError) as exc:
            logger.warning("Skipping unreadable record %s: %s", file_path, exc)
            return None
