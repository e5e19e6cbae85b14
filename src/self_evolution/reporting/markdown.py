"""
Markdown Report Generator.

Summarizes the evolution loop's state: health, challenges by severity,
proposed solutions, recorded learnings and the active pattern library.
"""

from __future__ import annotations

from collections import Counter
from datetime import datetime, timezone
from pathlib import Path

from self_evolution.knowledge.schemas import (
    Challenge,
    Learning,
    LearningOutcome,
    Pattern,
    Severity,
    Solution,
)

SEVERITY_EMOJI = {
    "critical": "🔴",
    "high": "🟠",
    "medium": "🟡",
    "low": "🔵",
}

OUTCOME_EMOJI = {
    "success": "✅",
    "partial": "🟡",
    "failure": "❌",
}


class MarkdownReporter:
    """Generates a Markdown evolution report."""

    def generate(
        self,
        system_name: str,
        challenges: list[Challenge],
        learnings: list[Learning] | None = None,
        patterns: list[Pattern] | None = None,
        solutions: dict[str, list[Solution]] | None = None,
        output_path: Path | None = None,
    ) -> str:
        """
        Generate the full report.

        Args:
            solutions: Ranked proposals keyed by challenge id; defaults to
                each challenge's own ``proposed_solutions``.

        Returns:
            Complete Markdown report as a string.
        """
        learnings = learnings or []
        patterns = patterns or []
        if solutions is None:
            solutions = {c.id: c.proposed_solutions for c in challenges}

        sections = [
            self._header(system_name),
            self._summary(challenges, learnings, patterns),
            self._severity_breakdown(challenges),
            self._challenges(challenges, solutions),
            self._learnings(learnings),
            self._patterns(patterns),
        ]
        report = "\n\n".join(sections) + "\n"

        if output_path:
            output_path.parent.mkdir(parents=True, exist_ok=True)
            output_path.write_text(report, encoding="utf-8")

        return report

    def _header(self, system_name: str) -> str:
        timestamp = datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M UTC")
        return (
            f"# Self-Evolution Report\n\n"
            f"**System:** `{system_name}`\n"
            f"**Date:** {timestamp}\n\n"
            f"---"
        )

    def _summary(
        self,
        challenges: list[Challenge],
        learnings: list[Learning],
        patterns: list[Pattern],
    ) -> str:
        statuses = Counter(c.status.value for c in challenges)
        successes = sum(1 for l in learnings if l.outcome == LearningOutcome.SUCCESS)
        rate = f"{successes / len(learnings):.0%}" if learnings else "n/a"
        return (
            f"## Summary\n\n"
            f"| Metric | Value |\n"
            f"|--------|-------|\n"
            f"| **Challenges** | {len(challenges)} |\n"
            f"| **Resolved** | {statuses.get('resolved', 0)} |\n"
            f"| **Failed** | {statuses.get('failed', 0)} |\n"
            f"| **Open** | {sum(1 for c in challenges if c.is_open)} |\n"
            f"| **Learnings** | {len(learnings)} |\n"
            f"| **Success Rate** | {rate} |\n"
            f"| **Patterns** | {len(patterns)} |"
        )

    def _severity_breakdown(self, challenges: list[Challenge]) -> str:
        if not challenges:
            return "## Challenges\n\n✅ No challenges recorded."

        lines = ["## Severity Breakdown\n"]
        for severity in sorted(Severity, reverse=True):
            count = sum(1 for c in challenges if c.severity == severity)
            if count > 0:
                emoji = SEVERITY_EMOJI[severity.value]
                lines.append(f"{emoji} **{severity.value.capitalize()}**: {'█' * count} ({count})")
        return "\n".join(lines)

    def _challenges(
        self,
        challenges: list[Challenge],
        solutions: dict[str, list[Solution]],
    ) -> str:
        if not challenges:
            return ""

        lines = ["## Challenges\n"]
        ordered = sorted(challenges, key=lambda c: (c.severity, c.detected_at), reverse=True)
        for challenge in ordered:
            emoji = SEVERITY_EMOJI[challenge.severity.value]
            lines.append(f"### {emoji} {challenge.description or challenge.id}\n")
            lines.append(
                f"- **ID:** `{challenge.id}`\n"
                f"- **Type:** {challenge.type.value}\n"
                f"- **Status:** {challenge.status.value}\n"
                f"- **Occurrences:** {challenge.occurrences}\n"
                f"- **Detected:** {challenge.detected_at:%Y-%m-%d %H:%M:%S}"
            )
            proposed = solutions.get(challenge.id, [])
            if proposed:
                lines.append("\n| Rank | Solution | Type | Confidence | Risks |")
                lines.append("|------|----------|------|------------|-------|")
                for rank, solution in enumerate(proposed[:5], start=1):
                    risks = ", ".join(r.impact.value for r in solution.risks) or "none"
                    lines.append(
                        f"| {rank} | {solution.title} | {solution.implementation.type.value} "
                        f"| {solution.confidence:.0%} | {risks} |"
                    )
            lines.append("")
        return "\n".join(lines).rstrip()

    def _learnings(self, learnings: list[Learning]) -> str:
        if not learnings:
            return "## Learnings\n\nNo executions recorded yet."

        lines = [
            "## Learnings\n",
            "| Outcome | Challenge | Solution | Best Improvement | Transferred |",
            "|---------|-----------|----------|------------------|-------------|",
        ]
        for learning in sorted(learnings, key=lambda l: l.timestamp, reverse=True):
            best = max(learning.metrics.items(), key=lambda kv: kv[1], default=None)
            improvement = f"{best[0]} {best[1]:+.1f}%" if best else "-"
            lines.append(
                f"| {OUTCOME_EMOJI[learning.outcome.value]} {learning.outcome.value} "
                f"| `{learning.challenge_id}` | `{learning.solution_id}` "
                f"| {improvement} | {'yes' if learning.transferred else 'no'} |"
            )
        return "\n".join(lines)

    def _patterns(self, patterns: list[Pattern]) -> str:
        if not patterns:
            return "## Patterns\n\nNo patterns in the library."

        lines = [
            "## Patterns\n",
            "| Pattern | Trigger | Steps | Success Rate | Uses | Origin |",
            "|---------|---------|-------|--------------|------|--------|",
        ]
        for pattern in sorted(patterns, key=lambda p: p.success_rate, reverse=True):
            trigger = f" {pattern.trigger.combinator.value} ".join(
                f"{c.metric} {c.operator.value} {c.value:g}" for c in pattern.trigger.metrics
            )
            lines.append(
                f"| {pattern.name} | {trigger or '-'} | {' → '.join(pattern.solution.steps)} "
                f"| {pattern.success_rate:.0%} | {pattern.usage_count} | {pattern.origin} |"
            )
        return "\n".join(lines)
