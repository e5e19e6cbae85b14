"""Exception taxonomy for the evolution loop."""

from __future__ import annotations


class EvolutionError(Exception):
    """Base class for all Self-Evolution errors."""


class AnalysisFailure(EvolutionError):
    """Solution generation or ranking failed; the challenge becomes failed."""

    def __init__(self, challenge_id: str, reason: str) -> None:
        super().__init__(f"Analysis of {challenge_id} failed: {reason}")
        self.challenge_id = challenge_id
        self.reason = reason


class ExecutionFailure(EvolutionError):
    """A remediation step raised while a solution was executing."""

    def __init__(self, solution_id: str, step_order: int, reason: str) -> None:
        super().__init__(f"Step {step_order} of {solution_id} failed: {reason}")
        self.solution_id = solution_id
        self.step_order = step_order
        self.reason = reason


class IncompatibleVersion(EvolutionError):
    """An incoming transfer package has a different major version."""

    def __init__(self, received: str, expected: str) -> None:
        super().__init__(
            f"Incompatible knowledge version: {received} (local {expected})"
        )
        self.received = received
        self.expected = expected


class DeliveryFailure(EvolutionError):
    """A knowledge package could not be delivered over the network."""

    def __init__(self, target_system: str, reason: str) -> None:
        super().__init__(f"Delivery to {target_system} failed: {reason}")
        self.target_system = target_system
        self.reason = reason


class PersistenceFailure(EvolutionError):
    """A record could not be written to the knowledge store."""

    def __init__(self, category: str, record_id: str, reason: str) -> None:
        super().__init__(f"Could not persist {category}/{record_id}: {reason}")
        self.category = category
        self.record_id = record_id
        self.reason = reason


class RecordNotFound(EvolutionError, KeyError):
    """A challenge or solution id is not known to the repository."""

    def __init__(self, kind: str, record_id: str) -> None:
        super().__init__(f"{kind} not found: {record_id}")
        self.kind = kind
        self.record_id = record_id

    def __str__(self) -> str:
        return f"{self.kind} not found: {self.record_id}"
