"""
Knowledge Repository — Owned, indexed in-memory collections.

Holds the live challenge, solution and learning records for one controller
instance. All mutation goes through this interface; there is no module-level
state.
"""

from __future__ import annotations

from collections import defaultdict

from self_evolution.errors import RecordNotFound
from self_evolution.knowledge.schemas import (
    Challenge,
    ChallengeStatus,
    ChallengeType,
    Learning,
    Solution,
)


class KnowledgeRepository:
    """Indexed collections of challenges, solutions and learnings."""

    def __init__(self) -> None:
        self._challenges: dict[str, Challenge] = {}
        self._solutions: dict[str, Solution] = {}
        self._ranked: dict[str, list[str]] = {}
        self._learnings: list[Learning] = []
        self._learning_ids: set[str] = set()
        self._learnings_by_solution: dict[str, list[Learning]] = defaultdict(list)

    # --- Challenges ---

    def add_challenge(self, challenge: Challenge) -> None:
        self._challenges[challenge.id] = challenge
        for solution in challenge.proposed_solutions:
            self._solutions.setdefault(solution.id, solution)
        if challenge.proposed_solutions and challenge.id not in self._ranked:
            self._ranked[challenge.id] = [s.id for s in challenge.proposed_solutions]

    def get_challenge(self, challenge_id: str) -> Challenge | None:
        return self._challenges.get(challenge_id)

    def require_challenge(self, challenge_id: str) -> Challenge:
        challenge = self._challenges.get(challenge_id)
        if challenge is None:
            raise RecordNotFound("Challenge", challenge_id)
        return challenge

    def challenges(self) -> list[Challenge]:
        return list(self._challenges.values())

    def open_challenges(self, challenge_type: ChallengeType | None = None) -> list[Challenge]:
        """Challenges that are neither resolved nor failed."""
        return [
            c
            for c in self._challenges.values()
            if c.is_open and (challenge_type is None or c.type == challenge_type)
        ]

    def count_by_status(self, status: ChallengeStatus) -> int:
        return sum(1 for c in self._challenges.values() if c.status == status)

    # --- Solutions ---

    def set_solutions(self, challenge_id: str, solutions: list[Solution]) -> None:
        """Replace the ranked proposal list of a challenge."""
        challenge = self.require_challenge(challenge_id)
        for solution in solutions:
            self._solutions[solution.id] = solution
        self._ranked[challenge_id] = [s.id for s in solutions]
        challenge.proposed_solutions = list(solutions)

    def add_solution(self, solution: Solution) -> None:
        self._solutions[solution.id] = solution

    def get_solution(self, solution_id: str) -> Solution | None:
        return self._solutions.get(solution_id)

    def solutions_for(self, challenge_id: str) -> list[Solution]:
        """Ranked proposals for a challenge, best first."""
        return [self._solutions[sid] for sid in self._ranked.get(challenge_id, [])]

    def solutions(self) -> list[Solution]:
        return list(self._solutions.values())

    # --- Learnings ---

    def append_learning(self, learning: Learning) -> None:
        """
        Append a learning to history.

        Raises:
            RecordNotFound: If the learning references an unknown challenge
                or solution.
            ValueError: If a learning with the same id was already recorded.
        """
        challenge = self.require_challenge(learning.challenge_id)
        if learning.solution_id not in self._solutions:
            raise RecordNotFound("Solution", learning.solution_id)
        if learning.id in self._learning_ids:
            raise ValueError(f"Learning already recorded: {learning.id}")

        self._learnings.append(learning)
        self._learning_ids.add(learning.id)
        self._learnings_by_solution[learning.solution_id].append(learning)
        if all(existing.id != learning.id for existing in challenge.learnings):
            challenge.learnings.append(learning)

    def learnings(self) -> list[Learning]:
        return list(self._learnings)

    def learnings_for_solution(self, solution_id: str) -> list[Learning]:
        return list(self._learnings_by_solution.get(solution_id, []))

    def has_learning(self, learning_id: str) -> bool:
        return learning_id in self._learning_ids

    def get_stats(self) -> dict[str, int]:
        return {
            "challenges": len(self._challenges),
            "solutions": len(self._solutions),
            "learnings": len(self._learnings),
        }
