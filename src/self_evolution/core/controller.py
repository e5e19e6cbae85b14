"""
Challenge Controller — Central coordinator of the evolution loop.

Turns monitor events into challenges and drives each one through:
  pending → analyzing → ready → executing → resolved | failed

Also owns the serialized execution queue, the periodic self-diagnosis and
learning ticks, and knowledge sharing with peer instances.
"""

from __future__ import annotations

import asyncio
import hashlib
import logging
import time
import uuid
from collections import deque
from collections.abc import Coroutine
from typing import Any

from pydantic import BaseModel, Field

from self_evolution.config import EvolutionConfig
from self_evolution.core.evaluator import RiskEvaluator
from self_evolution.core.executor import ExecutionEngine, ExecutionReport
from self_evolution.core.generator import SolutionGenerator
from self_evolution.errors import (
    AnalysisFailure,
    EvolutionError,
    PersistenceFailure,
    RecordNotFound,
)
from self_evolution.events import (
    ChallengeEvent,
    ChallengeFailedEvent,
    ChallengeReadyEvent,
    DiagnosisEvent,
    DomainProcessingFailedEvent,
    ErrorDetectedEvent,
    EventBus,
    EventName,
    KnowledgeLoadedEvent,
    KnowledgeSharedEvent,
    LearningCycleEvent,
    LifecycleEvent,
    MonitorEvent,
    PerformanceDegradedEvent,
    SolutionCompletedEvent,
    SolutionExecutingEvent,
)
from self_evolution.knowledge.repository import KnowledgeRepository
from self_evolution.knowledge.schemas import (
    Challenge,
    ChallengeContext,
    ChallengeSource,
    ChallengeStatus,
    ChallengeType,
    KnowledgeTransferPackage,
    Learning,
    LearningOutcome,
    Pattern,
    Severity,
    Solution,
    SystemMetrics,
    utcnow,
)
from self_evolution.knowledge.store import KnowledgeItem, KnowledgeStore
from self_evolution.learning.engine import LearningEngine
from self_evolution.learning.patterns import PatternLibrary
from self_evolution.monitor import Monitor, SimulatedMonitor
from self_evolution.scheduler import AsyncioScheduler, Scheduler
from self_evolution.transfer.channel import DeliveryReceipt, TransferChannel
from self_evolution.transfer.exchange import ImportSummary, KnowledgeTransfer

logger = logging.getLogger(__name__)

DIAGNOSIS_JOB = "self-diagnosis"
LEARNING_JOB = "learning-cycle"


def description_similarity(text_a: str, text_b: str) -> float:
    """Jaccard similarity of the lower-cased word sets."""
    words_a = set(text_a.lower().split())
    words_b = set(text_b.lower().split())
    if not words_a and not words_b:
        return 1.0
    return len(words_a & words_b) / len(words_a | words_b)


class SystemHealth(BaseModel):
    """Snapshot of the controller's own health."""

    total_challenges: int = 0
    resolved_challenges: int = 0
    pending_challenges: int = 0
    failed_challenges: int = 0
    executing_challenges: int = 0
    success_rate: float = 0.0
    total_learnings: int = 0
    queue_length: int = 0
    is_running: bool = False
    uptime_seconds: float = 0.0
    knowledge_base: dict[str, int] = Field(default_factory=dict)


class ChallengeController:
    """
    Closed-loop controller for detected challenges.

    Coordinates:
    - Detection (monitor events and metric thresholds → challenges)
    - Analysis (generation + ranking of candidate solutions)
    - Execution (serialized queue with cool-down)
    - Learning (outcome bookkeeping and pattern extraction)
    - Transfer (knowledge packages to and from peers)

    Usage::

        controller = ChallengeController(EvolutionConfig(), monitor=monitor)
        await controller.start()
        challenge_id = controller.record_challenge("Checkout latency spike",
                                                   ChallengeType.PERFORMANCE)
        await controller.drain()
        await controller.stop()
    """

    def __init__(
        self,
        config: EvolutionConfig | None = None,
        monitor: Monitor | None = None,
        store: KnowledgeStore | None = None,
        scheduler: Scheduler | None = None,
        bus: EventBus | None = None,
        channel: TransferChannel | None = None,
    ) -> None:
        self.config = config or EvolutionConfig()
        self.monitor = monitor or SimulatedMonitor()
        if store is None and self.config.knowledge.persist:
            store = KnowledgeStore(self.config.knowledge.storage_dir)
        self.store = store
        self.scheduler = scheduler or AsyncioScheduler()
        self.bus = bus or EventBus()

        # Knowledge
        self.repository = KnowledgeRepository()
        self.library = PatternLibrary()

        # Components
        self.learning = LearningEngine(self.repository, self.library, self.config.learning)
        self.generator = SolutionGenerator(self.library, self.config.learning)
        self.evaluator = RiskEvaluator(self.learning, self.config.analysis)
        self.executor = ExecutionEngine(self.monitor, self.config.execution)
        self.transfer = KnowledgeTransfer(self.config.transfer, self.library, channel)

        # State
        self.is_running = False
        self._started_at: float | None = None
        self._queue: deque[str] = deque()
        self._queue_task: asyncio.Task[None] | None = None
        self._tasks: set[asyncio.Task[Any]] = set()
        self._monitor_subscriptions: list[str] = []
        self._persist_lock = asyncio.Lock()

    # --- Lifecycle ---

    async def start(self) -> None:
        """Load knowledge, subscribe to the monitor, schedule ticks and resume unfinished work."""
        if self.is_running:
            return

        await self.load_knowledge_base()
        self._subscribe_monitor()

        schedule = self.config.schedule
        self.scheduler.schedule(
            DIAGNOSIS_JOB, schedule.diagnosis_interval_seconds, self.perform_self_diagnosis
        )
        self.scheduler.schedule(
            LEARNING_JOB, schedule.learning_interval_seconds, self.perform_learning
        )

        await self.monitor.start()
        self.is_running = True
        self._started_at = time.monotonic()
        logger.info("Challenge controller started")
        await self.bus.publish(EventName.SYSTEM_INITIALIZED, LifecycleEvent(detail="started"))
        await self._resume_interrupted()

    async def stop(self) -> None:
        """Stop ticks and monitoring; waits for in-flight work to settle."""
        self.is_running = False
        await self.scheduler.shutdown()

        for sub_id in self._monitor_subscriptions:
            self.monitor.bus.unsubscribe(sub_id)
        self._monitor_subscriptions.clear()
        await self.monitor.stop()

        self._queue.clear()
        await self.drain()
        logger.info("Challenge controller stopped")
        await self.bus.publish(EventName.SYSTEM_STOPPED, LifecycleEvent(detail="stopped"))

    async def drain(self) -> None:
        """Wait until no analysis, persistence or queued execution is pending."""
        while True:
            pending = [t for t in self._tasks if not t.done()]
            if self._queue_task is not None and not self._queue_task.done():
                pending.append(self._queue_task)
            if not pending:
                return
            await asyncio.gather(*pending, return_exceptions=True)

    def _spawn(self, coro: Coroutine[Any, Any, Any]) -> asyncio.Task[Any]:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    # --- Knowledge base ---

    async def load_knowledge_base(self) -> None:
        """Reload persisted records into the repository and pattern library."""
        if self.store is None:
            return

        solutions = await asyncio.to_thread(self.store.load_all, Solution)
        challenges = await asyncio.to_thread(self.store.load_all, Challenge)
        learnings = await asyncio.to_thread(self.store.load_all, Learning)
        patterns = await asyncio.to_thread(self.store.load_all, Pattern)

        for solution in solutions:
            self.repository.add_solution(solution)
        for challenge in challenges:
            self.repository.add_challenge(challenge)
        for learning in sorted(learnings, key=lambda l: l.timestamp):
            if self.repository.has_learning(learning.id):
                continue
            try:
                self.repository.append_learning(learning)
            except RecordNotFound as exc:
                logger.warning("Skipping stored learning %s: %s", learning.id, exc)
        for pattern in patterns:
            self.library.register(pattern)

        loaded = KnowledgeLoadedEvent(
            challenges=len(challenges),
            solutions=len(solutions),
            learnings=len(self.repository.learnings()),
            patterns=len(patterns),
        )
        logger.info(
            "Knowledge base loaded: %d challenges, %d learnings, %d patterns",
            loaded.challenges,
            loaded.learnings,
            loaded.patterns,
        )
        await self.bus.publish(EventName.KNOWLEDGE_LOADED, loaded)

    async def _resume_interrupted(self) -> None:
        """
        Take over challenges a previous run left unfinished.

        Stored ``pending`` challenges are analysed again. Those caught mid
        analysis or execution become ``failed`` so that a fresh detection
        records a new challenge instead of bumping the stale one.
        """
        interrupted: list[Challenge] = []
        for challenge in self.repository.challenges():
            if challenge.status == ChallengeStatus.PENDING:
                self._spawn(self.analyze_challenge(challenge.id))
            elif challenge.status in (ChallengeStatus.ANALYZING, ChallengeStatus.EXECUTING):
                logger.warning(
                    "Challenge %s was interrupted while %s", challenge.id, challenge.status.value
                )
                challenge.status = ChallengeStatus.FAILED
                interrupted.append(challenge)

        if interrupted:
            self._save(*interrupted)
        for challenge in interrupted:
            await self.bus.publish(
                EventName.CHALLENGE_FAILED,
                ChallengeFailedEvent(challenge=challenge, error="interrupted by restart"),
            )

    def _save(self, *items: KnowledgeItem) -> None:
        """Persist snapshots of records in the background."""
        if self.store is None:
            return
        snapshots = [item.model_copy(deep=True) for item in items]
        self._spawn(self._persist(snapshots))

    async def _persist(self, items: list[KnowledgeItem]) -> None:
        # Serialized: snapshots are written in the order they were taken.
        async with self._persist_lock:
            for item in items:
                try:
                    await asyncio.to_thread(self.store.save, item)
                except PersistenceFailure as exc:
                    logger.warning("%s", exc)

    # --- Detection ---

    def record_challenge(
        self,
        description: str = "",
        challenge_type: ChallengeType | str | None = None,
        severity: Severity | str | None = None,
        context: ChallengeContext | dict[str, Any] | None = None,
        source: ChallengeSource | str = ChallengeSource.AUTO,
    ) -> str:
        """
        Record a detected problem and schedule its analysis.

        A near-duplicate of an open challenge of the same type only bumps the
        existing record's occurrence counter.

        Returns:
            The new or existing challenge id.
        """
        ctype = ChallengeType(challenge_type) if challenge_type else ChallengeType.ERROR

        existing = self.find_similar_challenge(ctype, description)
        if existing is not None:
            existing.occurrences += 1
            existing.last_seen_at = utcnow()
            logger.debug("Duplicate of %s (x%d)", existing.id, existing.occurrences)
            self._save(existing)
            return existing.id

        if isinstance(context, dict):
            context = ChallengeContext.model_validate(context)

        detected_at = utcnow()
        challenge = Challenge(
            id=self._challenge_id(ctype, description, detected_at),
            type=ctype,
            severity=Severity(severity) if severity else Severity.MEDIUM,
            description=description,
            detected_at=detected_at,
            context=context or ChallengeContext(),
            source=ChallengeSource(source),
        )
        self.repository.add_challenge(challenge)
        logger.info(
            "Recorded %s challenge %s (%s): %s",
            challenge.type.value,
            challenge.id,
            challenge.severity.value,
            description,
        )

        self._spawn(self._announce_and_analyze(challenge))
        self._save(challenge)
        return challenge.id

    async def _announce_and_analyze(self, challenge: Challenge) -> None:
        await self.bus.publish(EventName.CHALLENGE_RECORDED, ChallengeEvent(challenge=challenge))
        await self.analyze_challenge(challenge.id)

    def find_similar_challenge(self, challenge_type: ChallengeType, description: str) -> Challenge | None:
        """
        An open challenge of the same type whose description reaches the
        similarity threshold. The boundary is inclusive: a Jaccard score of
        exactly 0.8 counts as a duplicate.
        """
        threshold = self.config.detection.similarity_threshold
        for existing in self.repository.open_challenges(challenge_type):
            if description_similarity(existing.description, description) >= threshold:
                return existing
        return None

    def _challenge_id(self, challenge_type: ChallengeType, description: str, detected_at: Any) -> str:
        raw = f"{challenge_type.value}:{description}:{detected_at.isoformat()}"
        challenge_id = f"challenge_{hashlib.md5(raw.encode('utf-8')).hexdigest()[:12]}"
        while self.repository.get_challenge(challenge_id) is not None:
            challenge_id = f"challenge_{uuid.uuid4().hex[:12]}"
        return challenge_id

    def analyze_metrics(self, metrics: SystemMetrics) -> list[str]:
        """Apply the detection thresholds to a metrics snapshot."""
        d = self.config.detection
        recorded = []

        def record(ctype, severity, description, metric, value, component):
            context = ChallengeContext(
                metric=metric, value=value, component=component, metrics=metrics
            )
            recorded.append(
                self.record_challenge(
                    description, ctype, severity, context, source=ChallengeSource.MONITOR
                )
            )

        if metrics.cpu > d.cpu_high:
            record(
                ChallengeType.PERFORMANCE,
                Severity.CRITICAL if metrics.cpu > d.cpu_critical else Severity.HIGH,
                f"High CPU usage detected: {metrics.cpu:g}%",
                "cpu",
                metrics.cpu,
                "system",
            )
        if metrics.memory > d.memory_high:
            record(
                ChallengeType.PERFORMANCE,
                Severity.CRITICAL if metrics.memory > d.memory_critical else Severity.HIGH,
                f"High memory usage detected: {metrics.memory:g}%",
                "memory",
                metrics.memory,
                "system",
            )
        if metrics.error_rate > d.error_rate_high:
            record(
                ChallengeType.ERROR,
                Severity.CRITICAL if metrics.error_rate > d.error_rate_critical else Severity.HIGH,
                f"High error rate detected: {metrics.error_rate:g}%",
                "error_rate",
                metrics.error_rate,
                "application",
            )
        if metrics.response_time > d.response_time_medium:
            record(
                ChallengeType.PERFORMANCE,
                Severity.HIGH if metrics.response_time > d.response_time_high else Severity.MEDIUM,
                f"Slow response time detected: {metrics.response_time:g}ms",
                "response_time",
                metrics.response_time,
                "api",
            )
        if metrics.processing_queue > d.queue_medium:
            record(
                ChallengeType.DOMAIN_PROCESSING,
                Severity.HIGH if metrics.processing_queue > d.queue_high else Severity.MEDIUM,
                f"Processing queue backlog: {metrics.processing_queue} items",
                "processing_queue",
                metrics.processing_queue,
                "processor",
            )
        return recorded

    def _subscribe_monitor(self) -> None:
        handlers = {
            MonitorEvent.METRICS_COLLECTED: self._on_metrics,
            MonitorEvent.ERROR_DETECTED: self._on_error,
            MonitorEvent.PERFORMANCE_DEGRADED: self._on_degraded,
            MonitorEvent.DOMAIN_PROCESSING_FAILED: self._on_processing_failed,
        }
        for event, handler in handlers.items():
            self._monitor_subscriptions.append(self.monitor.on(event, handler))

    def _on_metrics(self, metrics: SystemMetrics) -> None:
        self.analyze_metrics(metrics)

    def _on_error(self, event: ErrorDetectedEvent) -> None:
        self.record_challenge(
            event.message,
            ChallengeType.ERROR,
            Severity.HIGH,
            ChallengeContext(
                error_message=event.message, stack=event.stack, component=event.component
            ),
            source=ChallengeSource.MONITOR,
        )

    def _on_degraded(self, event: PerformanceDegradedEvent) -> None:
        self.record_challenge(
            f"Performance degradation detected: {event.metric}",
            ChallengeType.PERFORMANCE,
            event.severity or Severity.MEDIUM,
            ChallengeContext(metric=event.metric, value=event.value, component=event.component),
            source=ChallengeSource.MONITOR,
        )

    def _on_processing_failed(self, event: DomainProcessingFailedEvent) -> None:
        self.record_challenge(
            f"Domain processing failed: {event.item_id}",
            ChallengeType.DOMAIN_PROCESSING,
            Severity.HIGH,
            ChallengeContext(
                component=event.component,
                extra={"item_id": event.item_id, "reason": event.reason},
            ),
            source=ChallengeSource.MONITOR,
        )

    # --- Analysis ---

    async def analyze_challenge(self, challenge_id: str) -> list[Solution]:
        """
        Generate, rank and store candidate solutions for a pending challenge.

        On failure the challenge becomes ``failed`` and ``challenge:failed``
        is published; nothing is raised to the caller.

        Returns:
            The ranked solutions (empty when analysis did not run or failed).
        """
        challenge = self.repository.get_challenge(challenge_id)
        if challenge is None:
            logger.warning("Cannot analyze unknown challenge %s", challenge_id)
            return []
        if challenge.status != ChallengeStatus.PENDING:
            logger.debug("Challenge %s is %s, not analyzing", challenge_id, challenge.status.value)
            return []

        challenge.status = ChallengeStatus.ANALYZING
        await self.bus.publish(EventName.CHALLENGE_ANALYZING, ChallengeEvent(challenge=challenge))

        try:
            historical = self.learning.find_relevant_solutions(challenge)
            candidates = self.generator.generate(challenge, historical)
            ranked = self.evaluator.rank(candidates)
            if not ranked:
                raise AnalysisFailure(challenge_id, "no candidate solutions")
            self.repository.set_solutions(challenge_id, ranked)
        except Exception as exc:
            failure = (
                exc if isinstance(exc, AnalysisFailure) else AnalysisFailure(challenge_id, str(exc))
            )
            challenge.status = ChallengeStatus.FAILED
            logger.error("%s", failure)
            self._save(challenge)
            await self.bus.publish(
                EventName.CHALLENGE_FAILED,
                ChallengeFailedEvent(challenge=challenge, error=str(failure)),
            )
            return []

        challenge.status = ChallengeStatus.READY
        self._save(challenge, *ranked)

        top = ranked[0]
        auto_execute = self.is_running and self.evaluator.should_auto_execute(challenge, top)
        logger.info(
            "Challenge %s ready: %d solutions, top %r (%.2f)%s",
            challenge_id,
            len(ranked),
            top.title,
            top.confidence,
            ", auto-executing" if auto_execute else "",
        )
        await self.bus.publish(
            EventName.CHALLENGE_READY,
            ChallengeReadyEvent(challenge=challenge, solutions=ranked, auto_execute=auto_execute),
        )
        if auto_execute:
            self.enqueue(challenge_id)
        return ranked

    # --- Execution ---

    def enqueue(self, challenge_id: str) -> None:
        """Queue a ready challenge for execution of its top solution."""
        self._queue.append(challenge_id)
        if self._queue_task is None or self._queue_task.done():
            self._queue_task = asyncio.get_running_loop().create_task(self._process_queue())

    @property
    def queue_length(self) -> int:
        return len(self._queue)

    async def _process_queue(self) -> None:
        while self._queue:
            challenge_id = self._queue.popleft()
            challenge = self.repository.get_challenge(challenge_id)
            solutions = self.repository.solutions_for(challenge_id)
            if challenge is None or not solutions or challenge.status != ChallengeStatus.READY:
                continue

            try:
                await self.execute_solution(challenge_id, solutions[0].id)
            except EvolutionError as exc:
                logger.error("Queued execution of %s failed: %s", challenge_id, exc)

            if self._queue:
                await asyncio.sleep(self.config.execution.cooldown_seconds)

    async def execute_solution(self, challenge_id: str, solution_id: str) -> ExecutionReport:
        """
        Run one proposed solution and record what was learned.

        Raises:
            RecordNotFound: If the challenge or solution id is unknown.
            EvolutionError: If the challenge is already executing.
        """
        challenge = self.repository.require_challenge(challenge_id)
        solution = next(
            (s for s in self.repository.solutions_for(challenge_id) if s.id == solution_id), None
        )
        if solution is None:
            raise RecordNotFound("Solution", solution_id)
        if challenge.status == ChallengeStatus.EXECUTING:
            raise EvolutionError(f"Challenge {challenge_id} is already executing")

        challenge.status = ChallengeStatus.EXECUTING
        logger.info("Executing %r for %s", solution.title, challenge_id)
        await self.bus.publish(
            EventName.SOLUTION_EXECUTING,
            SolutionExecutingEvent(challenge=challenge, solution=solution),
        )

        report = await self.executor.run(challenge, solution)
        learning = report.learning

        solution.execution_time = report.execution_time_ms
        challenge.status = (
            ChallengeStatus.RESOLVED
            if learning.outcome == LearningOutcome.SUCCESS
            else ChallengeStatus.FAILED
        )
        self.repository.append_learning(learning)
        self._save(challenge, solution, learning)

        logger.info(
            "Challenge %s %s (%s)", challenge_id, challenge.status.value, learning.outcome.value
        )
        await self.bus.publish(
            EventName.SOLUTION_COMPLETED,
            SolutionCompletedEvent(challenge=challenge, solution=solution, learning=learning),
        )

        touched = self.learning.update_knowledge(learning)
        if touched:
            self._save(*touched)
        return report

    # --- Periodic ticks ---

    async def perform_self_diagnosis(self) -> SystemHealth:
        """Record challenges about the controller's own effectiveness."""
        await self.bus.publish(EventName.DIAGNOSIS_STARTED, LifecycleEvent(detail="diagnosis"))

        schedule = self.config.schedule
        health = self.get_system_health()
        context = ChallengeContext(
            component="self-evolution",
            extra={
                "success_rate": health.success_rate,
                "pending_challenges": health.pending_challenges,
            },
        )

        if health.total_learnings > 0 and health.success_rate < schedule.min_success_rate:
            self.record_challenge(
                "Low solution success rate detected",
                ChallengeType.PERFORMANCE,
                Severity.MEDIUM,
                context,
            )
        if health.pending_challenges > schedule.max_pending_challenges:
            self.record_challenge(
                "High number of pending challenges",
                ChallengeType.SCALABILITY,
                Severity.MEDIUM,
                context,
            )

        await self.bus.publish(
            EventName.DIAGNOSIS_COMPLETED, DiagnosisEvent(health=health.model_dump())
        )
        return health

    async def perform_learning(self) -> list[Pattern]:
        """Run pattern extraction over the full learning history."""
        await self.bus.publish(EventName.LEARNING_STARTED, LifecycleEvent(detail="learning"))

        patterns = self.learning.extract_patterns(self.repository.learnings())
        if patterns:
            self._save(*patterns)

        logger.info("Learning cycle extracted %d patterns", len(patterns))
        await self.bus.publish(
            EventName.LEARNING_COMPLETED, LearningCycleEvent(patterns_extracted=len(patterns))
        )
        return patterns

    # --- Health ---

    def get_system_health(self) -> SystemHealth:
        learnings = self.repository.learnings()
        successes = sum(1 for l in learnings if l.outcome == LearningOutcome.SUCCESS)
        stats = self.repository.get_stats()
        stats["patterns"] = len(self.library)

        return SystemHealth(
            total_challenges=stats["challenges"],
            resolved_challenges=self.repository.count_by_status(ChallengeStatus.RESOLVED),
            pending_challenges=self.repository.count_by_status(ChallengeStatus.PENDING),
            failed_challenges=self.repository.count_by_status(ChallengeStatus.FAILED),
            executing_challenges=self.repository.count_by_status(ChallengeStatus.EXECUTING),
            success_rate=successes / len(learnings) if learnings else 0.0,
            total_learnings=len(learnings),
            queue_length=len(self._queue),
            is_running=self.is_running,
            uptime_seconds=(
                time.monotonic() - self._started_at if self._started_at is not None else 0.0
            ),
            knowledge_base=stats,
        )

    # --- Knowledge transfer ---

    async def share_knowledge(self, target_system: str) -> DeliveryReceipt:
        """Package knowledge for a peer and deliver it (or write the fallback file)."""
        package = self.transfer.create_package(
            target_system,
            self.repository.challenges(),
            self.repository.solutions(),
            self.repository.learnings(),
        )
        receipt = await self.transfer.send_package(package)
        await self.bus.publish(
            EventName.KNOWLEDGE_SHARED,
            KnowledgeSharedEvent(
                target_system=target_system,
                package_size=len(package.challenges),
                delivered=receipt.delivered,
                location=receipt.location,
            ),
        )
        return receipt

    async def receive_knowledge(self, package: KnowledgeTransferPackage) -> ImportSummary:
        """
        Merge a peer's package into local knowledge.

        Raises:
            IncompatibleVersion: If the package's major version differs.
        """
        summary = self.transfer.receive_package(package, self.repository)

        touched: list[KnowledgeItem] = []
        for pattern_id in summary.patterns_inserted + summary.patterns_merged:
            pattern = self.library.get(pattern_id)
            if pattern is not None:
                touched.append(pattern)
        for solution_id in summary.solutions_adapted:
            solution = self.repository.get_solution(solution_id)
            if solution is not None:
                touched.append(solution)
        imported = {c.id for c in package.challenges}
        touched.extend(c for c in self.repository.challenges() if c.id in imported)
        touched.extend(
            l
            for l in self.repository.learnings()
            if l.transferred and l.source_system == package.source_system
        )
        if touched:
            self._save(*touched)
        return summary
