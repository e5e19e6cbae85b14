"""
Self-Evolution CLI — Command-line interface.

Usage:
    self-evolve init
    self-evolve simulate --cpu 92 --after-cpu 60 --execute
    self-evolve health
    self-evolve report --output evolution.md
    self-evolve knowledge stats
    self-evolve knowledge list --category patterns
    self-evolve transfer export peer-system
    self-evolve transfer import .knowledge-transfer/self-evolution-system
"""

from __future__ import annotations

import asyncio
import logging
import sys
from pathlib import Path

import click
from pydantic import ValidationError
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table

from self_evolution import __version__
from self_evolution.config import EvolutionConfig
from self_evolution.core.controller import ChallengeController
from self_evolution.core.executor import ExecutionReport
from self_evolution.errors import IncompatibleVersion
from self_evolution.knowledge.schemas import (
    Challenge,
    ChallengeStatus,
    KnowledgeTransferPackage,
    Learning,
    Pattern,
    Solution,
    SystemMetrics,
)
from self_evolution.knowledge.store import KnowledgeStore
from self_evolution.monitor import SimulatedMonitor
from self_evolution.reporting.markdown import MarkdownReporter
from self_evolution.scheduler import ManualScheduler
from self_evolution.transfer.exchange import parse_package

console = Console()

STATUS_STYLE = {
    "pending": "dim",
    "analyzing": "cyan",
    "ready": "yellow",
    "executing": "blue",
    "resolved": "green",
    "failed": "red",
}


def _configure_logging(cfg: EvolutionConfig) -> None:
    level = logging.DEBUG if cfg.verbose else getattr(logging, cfg.log_level.upper(), logging.INFO)
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=True, show_path=False)],
        force=True,
    )


def _load_config(
    config: str | None,
    storage_dir: str | None = None,
    verbose: bool = False,
) -> EvolutionConfig:
    cfg = EvolutionConfig.load(Path(config) if config else None)
    if storage_dir:
        cfg.knowledge.storage_dir = Path(storage_dir)
    if verbose:
        cfg.verbose = True
    _configure_logging(cfg)
    return cfg


def _config_options(func):
    func = click.option("--verbose", "-v", is_flag=True, help="Verbose output.")(func)
    func = click.option(
        "--storage-dir", type=click.Path(), default=None, help="Knowledge base directory."
    )(func)
    func = click.option(
        "--config", type=click.Path(exists=True), default=None, help="YAML config file."
    )(func)
    return func


@click.group()
@click.version_option(version=__version__, prog_name="self-evolution")
def main() -> None:
    """Self-Evolution: closed-loop remediation that learns from its outcomes."""


@main.command()
@click.option(
    "--output", type=click.Path(), default=".self-evolution.yml", help="Output YAML file path."
)
def init(output: str) -> None:
    """Write a default configuration file."""
    output_path = Path(output)
    EvolutionConfig().to_file(output_path)

    console.print(f"[green]✓[/green] Config written to [bold]{output_path}[/bold]")
    console.print("[dim]Edit this file to tune thresholds, schedules and transfer endpoints.[/dim]")


@main.command()
@_config_options
@click.option("--cpu", type=float, default=0.0, help="CPU usage (%).")
@click.option("--memory", type=float, default=0.0, help="Memory usage (%).")
@click.option("--error-rate", type=float, default=0.0, help="Error rate (%).")
@click.option("--response-time", type=float, default=0.0, help="Response time (ms).")
@click.option("--queue", "processing_queue", type=int, default=0, help="Processing queue length.")
@click.option("--after-cpu", type=float, default=None, help="CPU usage after remediation.")
@click.option("--after-memory", type=float, default=None, help="Memory usage after remediation.")
@click.option("--after-error-rate", type=float, default=None, help="Error rate after remediation.")
@click.option(
    "--after-response-time", type=float, default=None, help="Response time after remediation."
)
@click.option("--execute", is_flag=True, help="Execute the top solution of every ready challenge.")
def simulate(
    config: str | None,
    storage_dir: str | None,
    verbose: bool,
    cpu: float,
    memory: float,
    error_rate: float,
    response_time: float,
    processing_queue: int,
    after_cpu: float | None,
    after_memory: float | None,
    after_error_rate: float | None,
    after_response_time: float | None,
    execute: bool,
) -> None:
    """Feed one metrics snapshot through the loop and show what it decided."""
    cfg = _load_config(config, storage_dir, verbose)

    before = SystemMetrics(
        cpu=cpu,
        memory=memory,
        error_rate=error_rate,
        response_time=response_time,
        processing_queue=processing_queue,
    )
    after = before.model_copy(
        update={
            k: v
            for k, v in {
                "cpu": after_cpu,
                "memory": after_memory,
                "error_rate": after_error_rate,
                "response_time": after_response_time,
            }.items()
            if v is not None
        }
    )

    controller, reports = asyncio.run(_simulate(cfg, before, after, execute))

    console.print(
        Panel.fit(
            f"[bold]Self-Evolution[/bold] simulation\n[dim]{before.model_dump_json()}[/dim]",
            border_style="cyan",
        )
    )
    _print_challenges(controller.repository.challenges(), controller)
    if reports:
        _print_reports(reports)
    _print_health(controller)


async def _simulate(
    cfg: EvolutionConfig,
    before: SystemMetrics,
    after: SystemMetrics,
    execute: bool,
) -> tuple[ChallengeController, list[ExecutionReport]]:
    monitor = SimulatedMonitor()
    controller = ChallengeController(cfg, monitor=monitor, scheduler=ManualScheduler())
    await controller.start()

    await monitor.emit_metrics(before)
    await controller.drain()

    reports: list[ExecutionReport] = []
    if execute:
        for challenge in controller.repository.challenges():
            solutions = controller.repository.solutions_for(challenge.id)
            if challenge.status != ChallengeStatus.READY or not solutions:
                continue
            monitor.queue_metrics(before, after)
            reports.append(await controller.execute_solution(challenge.id, solutions[0].id))

    await controller.stop()
    return controller, reports


@main.command()
@_config_options
def health(config: str | None, storage_dir: str | None, verbose: bool) -> None:
    """Show system health computed from the stored knowledge base."""
    cfg = _load_config(config, storage_dir, verbose)
    controller = ChallengeController(cfg, scheduler=ManualScheduler())
    asyncio.run(controller.load_knowledge_base())
    _print_health(controller)


@main.command()
@_config_options
@click.option("--output", type=click.Path(), default="evolution_report.md", help="Report path.")
def report(config: str | None, storage_dir: str | None, verbose: bool, output: str) -> None:
    """Write a Markdown report of the stored knowledge base."""
    cfg = _load_config(config, storage_dir, verbose)
    controller = ChallengeController(cfg, scheduler=ManualScheduler())
    asyncio.run(controller.load_knowledge_base())

    challenges = controller.repository.challenges()
    MarkdownReporter().generate(
        system_name=cfg.transfer.source_system,
        challenges=challenges,
        learnings=controller.repository.learnings(),
        patterns=controller.library.all(),
        solutions={c.id: controller.repository.solutions_for(c.id) for c in challenges},
        output_path=Path(output),
    )
    console.print(f"  📄 Markdown: [green]{output}[/green]")


@main.group()
def knowledge() -> None:
    """Inspect the persistent knowledge base."""


@knowledge.command()
@click.option(
    "--dir", "storage_dir", type=click.Path(), default=".knowledge-base", help="Storage directory."
)
def stats(storage_dir: str) -> None:
    """Show knowledge base statistics."""
    store = KnowledgeStore(Path(storage_dir))
    s = store.get_stats()

    table = Table(title="🧠 Knowledge Base", border_style="cyan")
    table.add_column("Category", style="bold")
    table.add_column("Count", justify="right")
    for category, count in s.items():
        table.add_row(category.capitalize(), str(count))
    table.add_row("Total", str(sum(s.values())), style="bold")

    console.print(table)


@knowledge.command(name="list")
@click.option(
    "--dir", "storage_dir", type=click.Path(), default=".knowledge-base", help="Storage directory."
)
@click.option(
    "--category",
    type=click.Choice(["challenges", "solutions", "learnings", "patterns", "all"]),
    default="all",
)
def knowledge_list(storage_dir: str, category: str) -> None:
    """List records in the knowledge base."""
    store = KnowledgeStore(Path(storage_dir))

    if category in ("challenges", "all"):
        challenges = store.load_all(Challenge)
        if challenges:
            table = Table(title="Challenges", border_style="red")
            table.add_column("ID")
            table.add_column("Type")
            table.add_column("Severity")
            table.add_column("Status")
            table.add_column("Description")
            for c in challenges:
                table.add_row(
                    c.id,
                    c.type.value,
                    c.severity.value,
                    f"[{STATUS_STYLE[c.status.value]}]{c.status.value}[/]",
                    c.description,
                )
            console.print(table)

    if category in ("solutions", "all"):
        solutions = store.load_all(Solution)
        if solutions:
            table = Table(title="Solutions", border_style="yellow")
            table.add_column("ID")
            table.add_column("Challenge")
            table.add_column("Title")
            table.add_column("Confidence", justify="right")
            for s in solutions:
                table.add_row(s.id, s.challenge_id, s.title, f"{s.confidence:.0%}")
            console.print(table)

    if category in ("learnings", "all"):
        learnings = store.load_all(Learning)
        if learnings:
            table = Table(title="Learnings", border_style="green")
            table.add_column("ID")
            table.add_column("Outcome")
            table.add_column("Solution")
            table.add_column("Improvement")
            for l in learnings:
                metrics = ", ".join(f"{k}={v:+.1f}%" for k, v in l.metrics.items() if v)
                table.add_row(l.id, l.outcome.value, l.solution_id, metrics or "-")
            console.print(table)

    if category in ("patterns", "all"):
        patterns = store.load_all(Pattern)
        if patterns:
            table = Table(title="Patterns", border_style="blue")
            table.add_column("ID")
            table.add_column("Name")
            table.add_column("Success", justify="right")
            table.add_column("Uses", justify="right")
            for p in patterns:
                table.add_row(p.id, p.name, f"{p.success_rate:.0%}", str(p.usage_count))
            console.print(table)


@main.group()
def transfer() -> None:
    """Exchange knowledge with peer instances."""


@transfer.command(name="export")
@_config_options
@click.argument("target_system")
@click.option("--endpoint", type=str, default=None, help="Peer base URL (overrides config).")
def transfer_export(
    config: str | None,
    storage_dir: str | None,
    verbose: bool,
    target_system: str,
    endpoint: str | None,
) -> None:
    """Package the knowledge base for TARGET_SYSTEM and deliver it."""
    cfg = _load_config(config, storage_dir, verbose)
    if endpoint:
        cfg.transfer.endpoints[target_system] = endpoint

    controller = ChallengeController(cfg, scheduler=ManualScheduler())

    async def _export():
        await controller.load_knowledge_base()
        return await controller.share_knowledge(target_system)

    receipt = asyncio.run(_export())
    if receipt.delivered:
        console.print(f"[green]✓[/green] Delivered to [bold]{receipt.location}[/bold]")
    else:
        console.print(f"[yellow]⚠[/yellow] Saved fallback package to [bold]{receipt.location}[/bold]")


@transfer.command(name="import")
@_config_options
@click.argument("source", type=click.Path(exists=True))
def transfer_import(config: str | None, storage_dir: str | None, verbose: bool, source: str) -> None:
    """Import a package file, or every package file in a directory."""
    cfg = _load_config(config, storage_dir, verbose)
    source_path = Path(source)
    if source_path.is_dir():
        files = sorted(source_path.glob("transfer_*.json"))
    else:
        files = [source_path]

    try:
        packages: list[KnowledgeTransferPackage] = [
            parse_package(f.read_text(encoding="utf-8")) for f in files
        ]
    except ValidationError as exc:
        console.print(f"[red]Error:[/red] Invalid transfer package: {exc}")
        sys.exit(1)
    if not packages:
        console.print(f"[dim]No transfer packages found in {source_path}[/dim]")
        return

    controller = ChallengeController(cfg, scheduler=ManualScheduler())

    async def _import():
        await controller.load_knowledge_base()
        summaries = [await controller.receive_knowledge(p) for p in packages]
        await controller.drain()
        return summaries

    try:
        summaries = asyncio.run(_import())
    except IncompatibleVersion as exc:
        console.print(f"[red]Error:[/red] {exc}")
        sys.exit(1)

    table = Table(title="Imported Knowledge", border_style="cyan")
    table.add_column("Source")
    table.add_column("Patterns +", justify="right")
    table.add_column("Patterns merged", justify="right")
    table.add_column("Solutions", justify="right")
    table.add_column("Learnings", justify="right")
    table.add_column("Skipped", justify="right")
    for s in summaries:
        table.add_row(
            s.source_system,
            str(len(s.patterns_inserted)),
            str(len(s.patterns_merged)),
            str(len(s.solutions_adapted)),
            str(s.learnings_recorded),
            str(s.learnings_skipped),
        )
    console.print(table)


# --- Output helpers ---


def _print_challenges(challenges: list[Challenge], controller: ChallengeController) -> None:
    if not challenges:
        console.print("  ✅ No challenges detected.")
        return

    table = Table(title="Challenges", border_style="red")
    table.add_column("ID")
    table.add_column("Type")
    table.add_column("Severity")
    table.add_column("Status")
    table.add_column("Top Solution")
    table.add_column("Confidence", justify="right")
    for c in challenges:
        solutions = controller.repository.solutions_for(c.id)
        top = solutions[0] if solutions else None
        table.add_row(
            c.id,
            c.type.value,
            c.severity.value,
            f"[{STATUS_STYLE[c.status.value]}]{c.status.value}[/]",
            top.title if top else "-",
            f"{top.confidence:.0%}" if top else "-",
        )
    console.print(table)


def _print_reports(reports: list[ExecutionReport]) -> None:
    table = Table(title="Executions", border_style="green")
    table.add_column("Challenge")
    table.add_column("Outcome")
    table.add_column("Improvements")
    table.add_column("Steps", justify="right")
    for r in reports:
        metrics = ", ".join(f"{k}={v:+.1f}%" for k, v in r.learning.metrics.items() if v)
        table.add_row(r.challenge_id, r.outcome.value, metrics or "-", str(r.steps_completed))
    console.print(table)


def _print_health(controller: ChallengeController) -> None:
    h = controller.get_system_health()
    table = Table(title="System Health", border_style="cyan")
    table.add_column("Metric", style="bold")
    table.add_column("Value", justify="right")
    table.add_row("Total challenges", str(h.total_challenges))
    table.add_row("Resolved", str(h.resolved_challenges))
    table.add_row("Pending", str(h.pending_challenges))
    table.add_row("Failed", str(h.failed_challenges))
    table.add_row("Learnings", str(h.total_learnings))
    table.add_row("Success rate", f"{h.success_rate:.0%}")
    table.add_row("Patterns", str(h.knowledge_base.get("patterns", 0)))
    console.print(table)


if __name__ == "__main__":
    main()
