"""Tests for the challenge controller loop."""

import asyncio
from pathlib import Path

import pytest

from conftest import make_challenge
from self_evolution.config import EvolutionConfig
from self_evolution.core.controller import (
    ChallengeController,
    description_similarity,
)
from self_evolution.errors import EvolutionError, RecordNotFound
from self_evolution.events import EventName
from self_evolution.knowledge.schemas import (
    Challenge,
    ChallengeSource,
    ChallengeStatus,
    ChallengeType,
    Learning,
    LearningOutcome,
    Severity,
    Solution,
    SystemMetrics,
)
from self_evolution.knowledge.store import KnowledgeStore
from self_evolution.monitor import SimulatedMonitor
from self_evolution.scheduler import ManualScheduler


def _collect(controller: ChallengeController, *names: EventName) -> list[tuple[str, object]]:
    """Subscribe to events and record (name, payload) pairs."""
    seen: list[tuple[str, object]] = []
    for name in names:
        controller.bus.subscribe(name, lambda payload, name=name: seen.append((name.value, payload)))
    return seen


class TestDescriptionSimilarity:
    """Test word-set Jaccard similarity."""

    def test_case_insensitive(self) -> None:
        assert description_similarity("High CPU usage", "high cpu USAGE") == 1.0

    def test_partial_overlap(self) -> None:
        assert description_similarity("a b c d", "a b c e") == pytest.approx(3 / 5)

    def test_both_empty(self) -> None:
        assert description_similarity("", "") == 1.0


@pytest.mark.asyncio
class TestDetection:
    """Test challenge recording and deduplication."""

    async def test_duplicate_bumps_occurrences(self, controller: ChallengeController) -> None:
        first = controller.record_challenge(
            "Database connection timeout on orders service", ChallengeType.ERROR, Severity.HIGH
        )
        await controller.drain()
        second = controller.record_challenge(
            "database connection timeout on ORDERS service", ChallengeType.ERROR
        )

        assert second == first
        challenge = controller.repository.get_challenge(first)
        assert challenge.occurrences == 2
        assert challenge.last_seen_at is not None
        assert len(controller.repository.challenges()) == 1

    async def test_below_threshold_is_new(self, controller: ChallengeController) -> None:
        # 4 shared words out of 6 distinct: 0.67 < 0.8
        first = controller.record_challenge("payment gateway timeout on checkout", ChallengeType.ERROR)
        second = controller.record_challenge("payment gateway timeout on login", ChallengeType.ERROR)
        await controller.drain()

        assert first != second
        assert len(controller.repository.challenges()) == 2

    async def test_exact_threshold_is_duplicate(self, controller: ChallengeController) -> None:
        # 4 shared words out of 5 distinct: exactly 0.8
        first = controller.record_challenge("disk usage high on node", ChallengeType.ERROR)
        second = controller.record_challenge("disk usage high on", ChallengeType.ERROR)
        await controller.drain()

        assert second == first
        assert controller.repository.get_challenge(first).occurrences == 2

    async def test_other_type_is_new(self, controller: ChallengeController) -> None:
        first = controller.record_challenge("Slow checkout", ChallengeType.ERROR)
        second = controller.record_challenge("Slow checkout", ChallengeType.PERFORMANCE)
        await controller.drain()
        assert first != second

    async def test_closed_challenge_not_deduplicated(self, controller: ChallengeController) -> None:
        first = controller.record_challenge("Worker crashed", ChallengeType.ERROR)
        await controller.drain()
        controller.repository.get_challenge(first).status = ChallengeStatus.RESOLVED

        second = controller.record_challenge("Worker crashed", ChallengeType.ERROR)
        await controller.drain()
        assert first != second

    async def test_challenge_defaults(self, controller: ChallengeController) -> None:
        challenge_id = controller.record_challenge("Something odd", context={"component": "api"})
        challenge = controller.repository.get_challenge(challenge_id)

        assert challenge_id.startswith("challenge_")
        assert len(challenge_id) == len("challenge_") + 12
        assert challenge.type == ChallengeType.ERROR
        assert challenge.severity == Severity.MEDIUM
        assert challenge.source == ChallengeSource.AUTO
        assert challenge.context.component == "api"
        await controller.drain()

    async def test_metric_thresholds(self, controller: ChallengeController) -> None:
        ids = controller.analyze_metrics(
            SystemMetrics(cpu=85, memory=96, error_rate=12, response_time=1500, processing_queue=60)
        )
        await controller.drain()

        challenges = [controller.repository.get_challenge(i) for i in ids]
        summary = {(c.context.metric, c.type, c.severity) for c in challenges}
        assert summary == {
            ("cpu", ChallengeType.PERFORMANCE, Severity.HIGH),
            ("memory", ChallengeType.PERFORMANCE, Severity.CRITICAL),
            ("error_rate", ChallengeType.ERROR, Severity.CRITICAL),
            ("response_time", ChallengeType.PERFORMANCE, Severity.MEDIUM),
            ("processing_queue", ChallengeType.DOMAIN_PROCESSING, Severity.MEDIUM),
        }
        assert all(c.source == ChallengeSource.MONITOR for c in challenges)
        assert all(c.context.metrics.cpu == 85 for c in challenges)

    async def test_healthy_metrics_record_nothing(self, controller: ChallengeController) -> None:
        assert controller.analyze_metrics(SystemMetrics(cpu=80, memory=85, error_rate=5)) == []

    async def test_monitor_events(
        self, controller: ChallengeController, monitor: SimulatedMonitor
    ) -> None:
        await controller.start()
        await monitor.emit_error("NullPointer in checkout", component="checkout")
        await monitor.emit_degradation("latency", value=2300, severity=Severity.HIGH)
        await monitor.emit_processing_failure("job-42", reason="codec missing")
        await controller.drain()

        by_type = {c.type: c for c in controller.repository.challenges()}
        assert by_type[ChallengeType.ERROR].context.error_message == "NullPointer in checkout"
        assert by_type[ChallengeType.PERFORMANCE].severity == Severity.HIGH
        assert by_type[ChallengeType.DOMAIN_PROCESSING].context.extra["item_id"] == "job-42"
        await controller.stop()

    async def test_stop_unsubscribes_monitor(
        self, controller: ChallengeController, monitor: SimulatedMonitor
    ) -> None:
        await controller.start()
        await controller.stop()
        await monitor.emit_metrics(cpu=99)
        assert controller.repository.challenges() == []


@pytest.mark.asyncio
class TestAnalysis:
    """Test the pending → analyzing → ready lifecycle."""

    async def test_lifecycle_events(self, controller: ChallengeController) -> None:
        seen = _collect(
            controller,
            EventName.CHALLENGE_RECORDED,
            EventName.CHALLENGE_ANALYZING,
            EventName.CHALLENGE_READY,
        )
        statuses = []
        controller.bus.subscribe(
            EventName.CHALLENGE_ANALYZING, lambda e: statuses.append(e.challenge.status)
        )

        challenge_id = controller.record_challenge("Checkout errors", ChallengeType.ERROR)
        assert controller.repository.get_challenge(challenge_id).status == ChallengeStatus.PENDING
        await controller.drain()

        assert [name for name, _ in seen] == [
            "challenge:recorded",
            "challenge:analyzing",
            "challenge:ready",
        ]
        assert statuses == [ChallengeStatus.ANALYZING]
        ready = seen[-1][1]
        assert ready.auto_execute is False
        assert controller.repository.get_challenge(challenge_id).status == ChallengeStatus.READY

    async def test_solutions_ranked_by_recomputed_confidence(
        self, controller: ChallengeController
    ) -> None:
        challenge_id = controller.record_challenge("Checkout errors", ChallengeType.ERROR)
        await controller.drain()

        solutions = controller.repository.solutions_for(challenge_id)
        assert [s.title for s in solutions] == [
            "Restart failing component",
            "Circuit breaker",
            "Retry with exponential backoff",
        ]
        assert solutions[0].confidence == pytest.approx(0.7 * 0.85 + 0.3)
        confidences = [s.confidence for s in solutions]
        assert confidences == sorted(confidences, reverse=True)
        assert controller.repository.get_challenge(challenge_id).proposed_solutions == solutions

    async def test_no_candidates_fails(self, controller: ChallengeController) -> None:
        failures = _collect(controller, EventName.CHALLENGE_FAILED)
        challenge_id = controller.record_challenge("Confusing form", ChallengeType.USABILITY)
        await controller.drain()

        assert controller.repository.get_challenge(challenge_id).status == ChallengeStatus.FAILED
        assert len(failures) == 1
        assert "no candidate solutions" in failures[0][1].error

    async def test_reanalysis_ignored(self, controller: ChallengeController) -> None:
        challenge_id = controller.record_challenge("Checkout errors", ChallengeType.ERROR)
        await controller.drain()
        assert await controller.analyze_challenge(challenge_id) == []
        assert await controller.analyze_challenge("challenge_missing") == []


@pytest.mark.asyncio
class TestExecution:
    """Test manual, automatic and queued execution."""

    async def test_auto_execute_when_running(
        self, controller: ChallengeController, monitor: SimulatedMonitor
    ) -> None:
        completed = _collect(controller, EventName.SOLUTION_COMPLETED)
        await controller.start()
        monitor.queue_metrics(SystemMetrics(error_rate=8), SystemMetrics(error_rate=2))

        challenge_id = controller.record_challenge(
            "Payment gateway errors", ChallengeType.ERROR, Severity.HIGH
        )
        await controller.drain()

        challenge = controller.repository.get_challenge(challenge_id)
        assert challenge.status == ChallengeStatus.RESOLVED
        assert len(completed) == 1
        learning = completed[0][1].learning
        assert learning.outcome == LearningOutcome.SUCCESS
        assert learning.metrics["error_rate_improvement"] == pytest.approx(75.0)
        assert controller.repository.learnings() == [learning]
        await controller.stop()

    async def test_not_running_never_auto_executes(self, controller: ChallengeController) -> None:
        challenge_id = controller.record_challenge(
            "Payment gateway errors", ChallengeType.ERROR, Severity.HIGH
        )
        await controller.drain()
        assert controller.repository.get_challenge(challenge_id).status == ChallengeStatus.READY
        assert controller.repository.learnings() == []

    async def test_critical_cpu_end_to_end(
        self, controller: ChallengeController, monitor: SimulatedMonitor
    ) -> None:
        await controller.start()
        await monitor.emit_metrics(cpu=92)
        await controller.drain()

        [challenge] = controller.repository.challenges()
        assert challenge.type == ChallengeType.PERFORMANCE
        assert challenge.severity == Severity.CRITICAL
        assert challenge.status == ChallengeStatus.READY
        assert controller.repository.learnings() == []

        top = controller.repository.solutions_for(challenge.id)[0]
        assert top.title == "Automatic horizontal scale-out"

        monitor.queue_metrics(SystemMetrics(cpu=92), SystemMetrics(cpu=60))
        report = await controller.execute_solution(challenge.id, top.id)

        assert report.outcome == LearningOutcome.SUCCESS
        assert report.learning.metrics["cpu_improvement"] == pytest.approx(34.78, abs=0.01)
        assert challenge.status == ChallengeStatus.RESOLVED
        assert top.execution_time is not None

        pattern = controller.library.get("high-cpu-scale")
        assert pattern.success_rate == pytest.approx(0.865)
        assert pattern.usage_count == 2
        await controller.stop()

    async def test_no_improvement_marks_failed(self, controller: ChallengeController) -> None:
        challenge_id = controller.record_challenge("Checkout errors", ChallengeType.ERROR)
        await controller.drain()
        top = controller.repository.solutions_for(challenge_id)[0]

        report = await controller.execute_solution(challenge_id, top.id)

        assert report.outcome == LearningOutcome.PARTIAL
        assert controller.repository.get_challenge(challenge_id).status == ChallengeStatus.FAILED

    async def test_unknown_ids(self, controller: ChallengeController) -> None:
        with pytest.raises(RecordNotFound):
            await controller.execute_solution("challenge_missing", "solution_missing")

        challenge_id = controller.record_challenge("Checkout errors", ChallengeType.ERROR)
        await controller.drain()
        with pytest.raises(RecordNotFound):
            await controller.execute_solution(challenge_id, "solution_missing")

    async def test_already_executing(self, controller: ChallengeController) -> None:
        challenge_id = controller.record_challenge("Checkout errors", ChallengeType.ERROR)
        await controller.drain()
        top = controller.repository.solutions_for(challenge_id)[0]
        controller.repository.get_challenge(challenge_id).status = ChallengeStatus.EXECUTING

        with pytest.raises(EvolutionError):
            await controller.execute_solution(challenge_id, top.id)

    async def test_queue_cooldown_between_items(
        self, controller: ChallengeController, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        first = controller.record_challenge("Checkout errors", ChallengeType.ERROR)
        second = controller.record_challenge("Cache miss storm", ChallengeType.PERFORMANCE)
        await controller.drain()

        delays = []
        real_sleep = asyncio.sleep

        async def fake_sleep(delay, *args, **kwargs):
            delays.append(delay)
            await real_sleep(0)

        monkeypatch.setattr(asyncio, "sleep", fake_sleep)
        controller.enqueue(first)
        controller.enqueue(second)
        assert controller.queue_length == 2
        await controller.drain()

        assert delays == [controller.config.execution.cooldown_seconds]
        assert controller.queue_length == 0
        assert len(controller.repository.learnings()) == 2

    async def test_queue_skips_non_ready(self, controller: ChallengeController) -> None:
        challenge_id = controller.record_challenge("Confusing form", ChallengeType.USABILITY)
        await controller.drain()
        assert controller.repository.get_challenge(challenge_id).status == ChallengeStatus.FAILED

        controller.enqueue(challenge_id)
        controller.enqueue("challenge_missing")
        await controller.drain()
        assert controller.repository.learnings() == []


@pytest.mark.asyncio
class TestPeriodicTicks:
    """Test scheduled diagnosis and learning."""

    async def test_jobs_scheduled_on_start(
        self, controller: ChallengeController, scheduler: ManualScheduler
    ) -> None:
        await controller.start()
        assert scheduler.job_names == ["learning-cycle", "self-diagnosis"]

        seen = _collect(controller, EventName.DIAGNOSIS_COMPLETED, EventName.LEARNING_COMPLETED)
        fired = await scheduler.advance(3600)

        assert fired == 3
        assert [name for name, _ in seen] == [
            "learning:completed",
            "learning:completed",
            "diagnosis:completed",
        ]
        await controller.stop()
        assert scheduler.job_names == []

    async def test_low_success_rate_diagnosed(self, controller: ChallengeController) -> None:
        challenge_id = controller.record_challenge("Checkout errors", ChallengeType.ERROR)
        await controller.drain()
        top = controller.repository.solutions_for(challenge_id)[0]
        await controller.execute_solution(challenge_id, top.id)

        health = await controller.perform_self_diagnosis()
        await controller.drain()

        assert health.success_rate == 0.0
        descriptions = [c.description for c in controller.repository.challenges()]
        assert "Low solution success rate detected" in descriptions

    async def test_no_learnings_no_low_rate_challenge(self, controller: ChallengeController) -> None:
        await controller.perform_self_diagnosis()
        assert controller.repository.challenges() == []

    async def test_pending_backlog_diagnosed(self, controller: ChallengeController) -> None:
        controller.config.schedule.max_pending_challenges = 0
        controller.record_challenge("Checkout errors", ChallengeType.ERROR)

        health = await controller.perform_self_diagnosis()
        await controller.drain()

        assert health.pending_challenges == 1
        backlog = [
            c for c in controller.repository.challenges()
            if c.description == "High number of pending challenges"
        ]
        assert len(backlog) == 1
        assert backlog[0].type == ChallengeType.SCALABILITY

    async def test_learning_cycle_without_history(self, controller: ChallengeController) -> None:
        promoted = await controller.perform_learning()
        assert promoted == []


@pytest.mark.asyncio
class TestHealthAndPersistence:
    """Test health reporting and the persistent knowledge base."""

    async def test_health_counts(
        self, controller: ChallengeController, monitor: SimulatedMonitor
    ) -> None:
        await controller.start()
        await monitor.emit_metrics(cpu=92)
        await controller.drain()
        [challenge] = controller.repository.challenges()
        top = controller.repository.solutions_for(challenge.id)[0]
        monitor.queue_metrics(SystemMetrics(cpu=92), SystemMetrics(cpu=60))
        await controller.execute_solution(challenge.id, top.id)

        health = controller.get_system_health()
        assert health.total_challenges == 1
        assert health.resolved_challenges == 1
        assert health.success_rate == 1.0
        assert health.total_learnings == 1
        assert health.is_running is True
        assert health.knowledge_base["patterns"] == 3
        await controller.stop()
        assert controller.get_system_health().is_running is False

    async def test_records_persisted_and_reloaded(
        self, config: EvolutionConfig, tmp_dir: Path
    ) -> None:
        config.knowledge.persist = True
        controller = ChallengeController(config, scheduler=ManualScheduler())
        assert isinstance(controller.store, KnowledgeStore)

        challenge_id = controller.record_challenge("Checkout errors", ChallengeType.ERROR)
        await controller.drain()
        top = controller.repository.solutions_for(challenge_id)[0]
        await controller.execute_solution(challenge_id, top.id)
        await controller.drain()

        store = KnowledgeStore(config.knowledge.storage_dir)
        assert store.load(Challenge, challenge_id).status == ChallengeStatus.FAILED
        assert len(store.load_all(Solution)) == 3
        assert len(store.load_all(Learning)) == 1

        reloaded = ChallengeController(config, scheduler=ManualScheduler())
        await reloaded.load_knowledge_base()

        assert reloaded.repository.get_challenge(challenge_id).status == ChallengeStatus.FAILED
        assert [s.id for s in reloaded.repository.solutions_for(challenge_id)] == [
            s.id for s in controller.repository.solutions_for(challenge_id)
        ]
        assert len(reloaded.repository.learnings()) == 1

    async def test_unfinished_challenges_resumed_on_start(
        self, config: EvolutionConfig, tmp_dir: Path
    ) -> None:
        config.knowledge.persist = True
        store = KnowledgeStore(config.knowledge.storage_dir)
        store.save(
            make_challenge(
                "challenge_pending",
                challenge_type=ChallengeType.ERROR,
                severity=Severity.CRITICAL,
                metric=None,
                value=None,
                description="database connection refused",
            )
        )
        store.save(
            make_challenge(
                "challenge_executing",
                challenge_type=ChallengeType.ERROR,
                severity=Severity.CRITICAL,
                metric=None,
                value=None,
                description="cache cluster unreachable",
                status=ChallengeStatus.EXECUTING,
            )
        )

        controller = ChallengeController(config, scheduler=ManualScheduler())
        failed = _collect(controller, EventName.CHALLENGE_FAILED)
        await controller.start()
        await controller.drain()

        pending = controller.repository.get_challenge("challenge_pending")
        assert pending.status == ChallengeStatus.READY
        assert controller.repository.solutions_for("challenge_pending")
        assert controller.repository.get_challenge("challenge_executing").status == ChallengeStatus.FAILED
        assert [payload.challenge.id for _, payload in failed] == ["challenge_executing"]
        assert store.load(Challenge, "challenge_executing").status == ChallengeStatus.FAILED

        retry_id = controller.record_challenge("cache cluster unreachable", ChallengeType.ERROR)
        assert retry_id != "challenge_executing"
        await controller.stop()
