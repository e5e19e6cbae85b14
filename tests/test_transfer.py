"""Tests for knowledge packaging, delivery and import."""

import json
from pathlib import Path

import httpx
import pytest

from conftest import make_challenge, make_learning, make_solution
from self_evolution.config import EvolutionConfig, TransferConfig
from self_evolution.core.controller import ChallengeController
from self_evolution.errors import IncompatibleVersion
from self_evolution.events import EventName
from self_evolution.knowledge.repository import KnowledgeRepository
from self_evolution.knowledge.schemas import (
    ChallengeType,
    Combinator,
    ImplementationType,
    KnowledgeTransferPackage,
    LearningOutcome,
    Pattern,
    SolutionTemplate,
    SystemMetrics,
)
from self_evolution.learning import PatternLibrary, base_patterns
from self_evolution.monitor import SimulatedMonitor
from self_evolution.scheduler import ManualScheduler
from self_evolution.transfer import (
    KnowledgeTransfer,
    TransferChannel,
    diff_patterns,
    parse_package,
)
from self_evolution.transfer.channel import VERSION_HEADER


@pytest.fixture
def transfer_config(tmp_dir: Path) -> TransferConfig:
    return TransferConfig(fallback_dir=tmp_dir / "transfer")


@pytest.fixture
def transfer(transfer_config: TransferConfig) -> KnowledgeTransfer:
    return KnowledgeTransfer(transfer_config, PatternLibrary())


def _package(version: str = "1.0.0", **kwargs) -> KnowledgeTransferPackage:
    return KnowledgeTransferPackage(
        version=version, source_system="peer-a", target_system="peer-b", **kwargs
    )


class TestFilters:
    """Test what goes into an outgoing package."""

    def test_generic_challenges_always(self, transfer: KnowledgeTransfer) -> None:
        challenges = [
            make_challenge("perf"),
            make_challenge("err", challenge_type=ChallengeType.ERROR),
            make_challenge("ux", challenge_type=ChallengeType.USABILITY),
            make_challenge("domain", challenge_type=ChallengeType.DOMAIN_PROCESSING),
        ]
        assert [c.id for c in transfer.filter_challenges(challenges, "billing")] == ["perf", "err"]
        assert [c.id for c in transfer.filter_challenges(challenges, "domain-encoder")] == [
            "perf",
            "err",
            "domain",
        ]

    def test_solution_confidence_and_infrastructure(self, transfer: KnowledgeTransfer) -> None:
        solutions = [
            make_solution("weak", confidence=0.6),
            make_solution("code", confidence=0.7),
            make_solution("infra", confidence=0.9, impl_type=ImplementationType.INFRASTRUCTURE),
        ]
        assert [s.id for s in transfer.filter_solutions(solutions, "peer")] == ["code"]

        transfer.config.infrastructure_targets = ["cluster-b"]
        assert [s.id for s in transfer.filter_solutions(solutions, "cluster-b")] == ["code", "infra"]

    def test_learnings_need_significant_success(self, transfer: KnowledgeTransfer) -> None:
        learnings = [
            make_learning("big", metrics={"cpu_improvement": 34.8}),
            make_learning("small", metrics={"cpu_improvement": 15.0}),
            make_learning("partial", outcome=LearningOutcome.PARTIAL, metrics={"cpu_improvement": 50.0}),
        ]
        assert [l.id for l in transfer.filter_learnings(learnings)] == ["big"]

    def test_transferable_patterns_threshold(self, transfer: KnowledgeTransfer) -> None:
        # Base patterns have a single use and stay local.
        assert transfer.transferable_patterns([], [], []) == []

        pattern = transfer.library.get("high-cpu-scale")
        pattern.record_outcome(1.0, 0.1)
        assert [p.id for p in transfer.transferable_patterns([], [], [])] == ["high-cpu-scale"]


class TestDerivedPatterns:
    """Test patterns derived from repeated executions."""

    def test_group_by_signature(self, transfer: KnowledgeTransfer) -> None:
        challenges = [make_challenge("c1", value=90), make_challenge("c2", value=95)]
        solutions = [
            make_solution("s1", "c1"),
            make_solution("s2", "c2", title="Adapted: Optimize CPU usage"),
        ]
        learnings = [
            make_learning("l1", "c1", "s1", metrics={"cpu_improvement": 30.0, "memory_improvement": 5.0}),
            make_learning("l2", "c2", "s2", outcome=LearningOutcome.PARTIAL, metrics={"cpu_improvement": 8.0}),
        ]

        [pattern] = transfer.derive_patterns(challenges, solutions, learnings)

        assert pattern.id.startswith("transfer_")
        assert pattern.usage_count == 2
        assert pattern.success_rate == pytest.approx(0.75)
        assert pattern.trigger.combinator == Combinator.OR
        assert [(c.metric, c.value) for c in pattern.trigger.metrics] == [("cpu", 72.0)]
        assert pattern.solution.steps == ["analyze", "optimize", "scale"]
        assert transfer.is_transferable(pattern)

    def test_no_significant_improvement_skipped(self, transfer: KnowledgeTransfer) -> None:
        challenges = [make_challenge("c1")]
        solutions = [make_solution("s1", "c1")]
        learnings = [make_learning("l1", "c1", "s1", metrics={"cpu_improvement": 9.0})]
        assert transfer.derive_patterns(challenges, solutions, learnings) == []


class TestPackages:
    """Test package creation and version checks."""

    def test_create_package_records_history(self, transfer: KnowledgeTransfer) -> None:
        package = transfer.create_package(
            "peer-b",
            [make_challenge("c1")],
            [make_solution("s1", "c1")],
            [make_learning("l1", "c1", "s1")],
        )

        assert package.version == "1.0.0"
        assert package.source_system == "self-evolution-system"
        assert [c.id for c in package.challenges] == ["c1"]
        assert [s.id for s in package.solutions] == ["s1"]
        assert [l.id for l in package.learnings] == ["l1"]
        assert transfer.history_for("peer-b") == [package]
        assert transfer.history_for("other") == []

    def test_wire_round_trip(self, transfer: KnowledgeTransfer) -> None:
        package = transfer.create_package("peer-b", [make_challenge("c1")], [], [])
        decoded = parse_package(package.model_dump_json())
        assert decoded == package
        assert parse_package(json.loads(package.model_dump_json())) == package

    def test_major_version_mismatch_rejected(self, transfer: KnowledgeTransfer) -> None:
        with pytest.raises(IncompatibleVersion) as exc_info:
            transfer.receive_package(_package("2.0.0"), KnowledgeRepository())
        assert exc_info.value.received == "2.0.0"

    def test_minor_version_accepted(self, transfer: KnowledgeTransfer) -> None:
        summary = transfer.receive_package(_package("1.3.0"), KnowledgeRepository())
        assert summary.source_system == "peer-a"
        assert summary.learnings_recorded == 0


class TestReceive:
    """Test merging a received package."""

    def test_import_adapts_and_remaps(self, transfer: KnowledgeTransfer) -> None:
        repository = KnowledgeRepository()
        challenge = make_challenge("c1")
        challenge.proposed_solutions = [make_solution("s1", "c1")]
        package = _package(
            challenges=[challenge],
            solutions=[make_solution("s1", "c1", confidence=0.8)],
            learnings=[make_learning("l1", "c1", "s1"), make_learning("l2", "c1", "s_missing")],
        )

        summary = transfer.receive_package(package, repository)

        assert summary.challenges_imported == 1
        assert summary.solutions_adapted == ["adapted_s1"]
        assert summary.learnings_recorded == 1
        assert summary.learnings_skipped == 1
        assert repository.get_challenge("c1").proposed_solutions == []
        assert repository.get_solution("adapted_s1").confidence == pytest.approx(0.72)

        [learning] = repository.learnings()
        assert learning.solution_id == "adapted_s1"
        assert learning.transferred is True
        assert learning.source_system == "peer-a"

    def test_reimport_skips_duplicates(self, transfer: KnowledgeTransfer) -> None:
        repository = KnowledgeRepository()
        package = _package(
            challenges=[make_challenge("c1")],
            solutions=[make_solution("s1", "c1")],
            learnings=[make_learning("l1", "c1", "s1")],
        )
        transfer.receive_package(package, repository)
        again = transfer.receive_package(package, repository)

        assert again.challenges_imported == 0
        assert again.solutions_adapted == []
        assert again.learnings_skipped == 1
        assert len(repository.learnings()) == 1

    def test_patterns_inserted_and_merged(self, transfer: KnowledgeTransfer) -> None:
        known = base_patterns()[0].model_copy(update={"success_rate": 0.95, "usage_count": 3})
        new = Pattern(
            id="remote-only",
            name="Remote",
            solution=SolutionTemplate(name="Remote fix", steps=["fix"]),
            success_rate=0.9,
            usage_count=2,
        )
        summary = transfer.receive_package(_package(patterns=[known, new]), KnowledgeRepository())

        assert summary.patterns_merged == ["high-cpu-scale"]
        assert summary.patterns_inserted == ["remote-only"]
        assert transfer.library.get("high-cpu-scale").usage_count == 4
        assert "remote-only" in transfer.library

    def test_lookalike_patterns_keep_their_ids(self, transfer: KnowledgeTransfer) -> None:
        first = Pattern(
            id="pattern_a",
            name="Extracted",
            solution=SolutionTemplate(name="Remote fix", steps=["fix"]),
            success_rate=0.9,
            usage_count=3,
        )
        second = first.model_copy(update={"id": "transfer_b", "usage_count": 2})

        summary = transfer.receive_package(_package(patterns=[first, second]), KnowledgeRepository())

        assert summary.patterns_inserted == ["pattern_a", "transfer_b"]
        assert summary.patterns_merged == []
        assert transfer.library.get("pattern_a").usage_count == 3
        assert transfer.library.get("transfer_b").usage_count == 2


class TestDiffPatterns:
    """Test pattern set comparison."""

    def test_diff(self) -> None:
        cpu, memory, queue = base_patterns()
        lookalike = cpu.model_copy(update={"id": "cpu-copy"})

        diff = diff_patterns([cpu, memory], [lookalike, queue])

        assert [p.id for p in diff.common] == ["high-cpu-scale"]
        assert [p.id for p in diff.unique_to_a] == ["memory-leak-restart"]
        assert [p.id for p in diff.unique_to_b] == ["processing-queue-parallelize"]


@pytest.mark.asyncio
class TestChannel:
    """Test HTTP delivery and the file fallback."""

    async def test_delivered_over_http(self, transfer_config: TransferConfig) -> None:
        requests = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(200, json={"ok": True})

        transfer_config.endpoints = {"peer-b": "http://peer-b.local/"}
        channel = TransferChannel(transfer_config, transport=httpx.MockTransport(handler))
        receipt = await channel.send(_package())

        assert receipt.delivered is True
        assert receipt.status_code == 200
        assert receipt.location == "http://peer-b.local/knowledge/import"
        [request] = requests
        assert request.method == "POST"
        assert str(request.url) == "http://peer-b.local/knowledge/import"
        assert request.headers[VERSION_HEADER] == "1.0.0"
        assert parse_package(request.content).target_system == "peer-b"
        assert not (transfer_config.fallback_dir / "peer-b").exists()

    async def test_server_error_falls_back(self, transfer_config: TransferConfig) -> None:
        transfer_config.endpoints = {"peer-b": "http://peer-b.local"}
        channel = TransferChannel(
            transfer_config, transport=httpx.MockTransport(lambda r: httpx.Response(500))
        )
        receipt = await channel.send(_package())

        assert receipt.delivered is False
        assert receipt.error
        assert Path(receipt.location).exists()
        assert [p.target_system for p in channel.load_fallback_packages("peer-b")] == ["peer-b"]

    async def test_connection_error_falls_back(self, transfer_config: TransferConfig) -> None:
        def refuse(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        transfer_config.endpoints = {"peer-b": "http://peer-b.local"}
        channel = TransferChannel(transfer_config, transport=httpx.MockTransport(refuse))
        receipt = await channel.send(_package())

        assert receipt.delivered is False
        assert "connection refused" in receipt.error

    async def test_no_endpoint_writes_file(self, transfer_config: TransferConfig) -> None:
        channel = TransferChannel(transfer_config)
        first = await channel.send(_package())
        second = await channel.send(_package())

        assert first.delivered is False
        assert first.location != second.location
        assert Path(first.location).parent == transfer_config.fallback_dir / "peer-b"
        assert len(channel.load_fallback_packages("peer-b")) == 2
        assert channel.load_fallback_packages("nobody") == []

    async def test_unreadable_fallback_skipped(self, transfer_config: TransferConfig) -> None:
        channel = TransferChannel(transfer_config)
        await channel.send(_package())
        (transfer_config.fallback_dir / "peer-b" / "transfer_0.json").write_text("{oops")
        assert len(channel.load_fallback_packages("peer-b")) == 1


@pytest.mark.asyncio
class TestControllerExchange:
    """Test sharing between two controller instances."""

    async def _source(self, config: EvolutionConfig) -> ChallengeController:
        monitor = SimulatedMonitor()
        source = ChallengeController(config, monitor=monitor, scheduler=ManualScheduler())
        [challenge_id] = source.analyze_metrics(SystemMetrics(cpu=92))
        await source.drain()
        top = source.repository.solutions_for(challenge_id)[0]
        monitor.queue_metrics(SystemMetrics(cpu=92), SystemMetrics(cpu=60))
        await source.execute_solution(challenge_id, top.id)
        return source

    async def test_share_writes_fallback(self, config: EvolutionConfig) -> None:
        source = await self._source(config)
        shared = []
        source.bus.subscribe(EventName.KNOWLEDGE_SHARED, shared.append)

        receipt = await source.share_knowledge("peer-b")

        assert receipt.delivered is False
        assert len(shared) == 1
        assert shared[0].package_size == 1
        [package] = source.transfer.channel.load_fallback_packages("peer-b")
        assert [p.id for p in package.patterns] == ["high-cpu-scale"]
        assert len(package.learnings) == 1

    async def test_round_trip_into_peer(self, config: EvolutionConfig) -> None:
        source = await self._source(config)
        await source.share_knowledge("peer-b")
        [package] = source.transfer.channel.load_fallback_packages("peer-b")

        peer = ChallengeController(config.model_copy(deep=True), scheduler=ManualScheduler())
        summary = await peer.receive_knowledge(package)

        assert summary.patterns_merged == ["high-cpu-scale"]
        merged = peer.library.get("high-cpu-scale")
        assert merged.success_rate == pytest.approx((0.85 + 0.865 * 2) / 3)
        assert merged.usage_count == 3
        assert summary.challenges_imported == 1
        assert summary.learnings_recorded == 1

        [learning] = peer.repository.learnings()
        assert learning.transferred is True
        assert learning.source_system == "self-evolution-system"
        assert learning.solution_id.startswith("adapted_")

    async def test_incompatible_package_rejected(self, controller: ChallengeController) -> None:
        with pytest.raises(IncompatibleVersion):
            await controller.receive_knowledge(_package("2.0.0"))

    async def test_extracted_and_derived_patterns_round_trip(self, config: EvolutionConfig) -> None:
        source = ChallengeController(config, scheduler=ManualScheduler())
        metrics = {"cpu_improvement": 40.0, "response_time_improvement": 35.0}
        for index in range(1, 4):
            challenge_id = f"challenge_{index}"
            source.repository.add_challenge(make_challenge(challenge_id))
            if index == 1:
                source.repository.add_solution(make_solution("solution_cpu", challenge_id))
            source.repository.append_learning(
                make_learning(f"learning_{index}", challenge_id, "solution_cpu", metrics=metrics)
            )

        [extracted] = await source.perform_learning()
        [derived] = source.transfer.derive_patterns(
            source.repository.challenges(),
            source.repository.solutions(),
            source.repository.learnings(),
        )
        assert derived.solution.name == extracted.solution.name
        assert source.transfer.is_transferable(derived)

        package = source.transfer.create_package(
            "peer-b",
            source.repository.challenges(),
            source.repository.solutions(),
            source.repository.learnings(),
        )
        sent = {p.id: p for p in package.patterns}
        assert list(sent) == [extracted.id]

        peer = ChallengeController(config.model_copy(deep=True), scheduler=ManualScheduler())
        summary = await peer.receive_knowledge(parse_package(package.model_dump_json()))

        assert summary.patterns_inserted == list(sent)
        assert summary.patterns_merged == []
        for pattern_id, pattern in sent.items():
            received = peer.library.get(pattern_id)
            assert received.usage_count == pattern.usage_count
            assert received.success_rate == pytest.approx(pattern.success_rate)
