#!/usr/bin/env python3
"""Prompt Chain Engine CLI - runs an idea through the five-stage chain.

Usage:
    # Full run with the default provider
    python main.py --idea "Team task tracker with real-time sync" --project-root ./my_app

    # Offline dry run (stub provider, no MCP servers)
    python main.py --idea ./idea.md --dry-run

    # Show context profile and agent scores only
    python main.py --idea ./idea.md --project-root ./my_app --analyze-only
"""

import asyncio
import logging
import sys
from pathlib import Path
from typing import Optional

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.table import Table

from agents import AgentCoordinator, ChainAgent
from analysis import ContextAnalyzer
from capabilities import MCPServerSelector, ServerRegistry
from catalog import EngineCatalog
from config import settings
from contracts import ChainRun, RunStatus, StageOutcome
from errors import CatalogError, ContextAnalysisError
from gates import QualityGateFramework, default_checkers
from orchestrator import PromptChainEngine, save_run
from providers import get_provider
from scoring import AgentScoringEngine


console = Console()

EXIT_COMPLETED = 0
EXIT_FAILED = 1
EXIT_REMEDIATION = 2


def read_idea(idea: str) -> str:
    """Read the idea from a file, or treat the argument as literal text."""
    path = Path(idea)
    if path.is_file():
        return path.read_text(encoding="utf-8", errors="replace")
    return idea


def setup_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=verbose, show_path=verbose)],
    )
    logging.captureWarnings(True)


def build_engine(catalog: EngineCatalog, provider_name: Optional[str], model: Optional[str], dry_run: bool) -> PromptChainEngine:
    """Wire the engine; a dry run uses the stub provider and no MCP servers."""
    if not dry_run:
        return PromptChainEngine(catalog=catalog, provider=get_provider(provider_name, model), model=model)

    provider = get_provider("stub", model)
    selector = MCPServerSelector(ServerRegistry([]), invoker=None)
    return PromptChainEngine(
        catalog=catalog,
        provider=provider,
        selector=selector,
        coordinator=AgentCoordinator(ChainAgent(provider, selector, model)),
        gates=QualityGateFramework(catalog.gates, default_checkers(), selector),
        model=model,
    )


def print_agents(catalog: EngineCatalog) -> None:
    table = Table(title="Agents")
    table.add_column("Agent")
    table.add_column("Domain")
    table.add_column("Capabilities")
    table.add_column("Stage tags")
    for agent in catalog.agents:
        table.add_row(
            agent.agent_type.value,
            agent.domain.value,
            ", ".join(agent.mcp_capability_tags),
            ", ".join(agent.stage_tags),
        )
    console.print(table)


def print_servers(catalog: EngineCatalog) -> None:
    table = Table(title="MCP Servers")
    table.add_column("Server")
    table.add_column("Capabilities")
    table.add_column("Priority", justify="right")
    table.add_column("Max leases", justify="right")
    table.add_column("Command")
    for server in catalog.servers:
        table.add_row(
            server.id,
            ", ".join(server.capability_tags),
            str(server.priority),
            str(server.max_concurrent_leases),
            " ".join([server.command or "-"] + list(server.args)),
        )
    console.print(table)


def print_analysis(catalog: EngineCatalog, idea: str, project_root: Optional[str]) -> None:
    """Print the context profile and per-stage agent scores."""
    context = ContextAnalyzer().analyze(project_root) if project_root else None
    if context is not None:
        profile = Table(title=f"Context profile ({context.files_scanned} files)")
        profile.add_column("Domain")
        profile.add_column("Score", justify="right")
        for domain, score in sorted(context.domain_scores.items(), key=lambda kv: kv[1], reverse=True):
            profile.add_row(domain.value, f"{score:.3f}")
        console.print(profile)
        if context.framework_hits:
            console.print(f"[dim]Frameworks:[/dim] {', '.join(sorted(context.framework_hits))}")
        if context.unreadable_paths:
            console.print(f"[yellow]Unreadable:[/yellow] {len(context.unreadable_paths)} path(s)")

    engine = AgentScoringEngine(catalog.agents)
    for stage in catalog.stages:
        table = Table(title=f"Agent scores: {stage.id.value}")
        for column in ("Agent", "Stage", "Content", "Context", "Pref", "Total", "Decision"):
            table.add_column(column, justify="left" if column in ("Agent", "Decision") else "right")
        for result in engine.score(stage, idea, context):
            flag = " (boundary)" if result.ambiguous else ""
            table.add_row(
                result.agent_type.value,
                f"{result.stage_requirement:.2f}",
                f"{result.content:.2f}",
                f"{result.context:.2f}",
                f"{result.preference:.2f}",
                f"{result.total:.3f}",
                result.decision.value + flag,
            )
        console.print(table)


def print_outcome(run: ChainRun, outcome: StageOutcome) -> None:
    console.print("\n" + "=" * 60)
    color = "green" if run.status == RunStatus.COMPLETED else "yellow"
    if run.status in (RunStatus.ABORTED, RunStatus.FAILED):
        color = "red"
    console.print(f"[{color}]Status:[/{color}] {run.status.value}")
    console.print(f"[green]Run ID:[/green] {run.run_id}")
    if run.wave_decision:
        console.print(
            f"[green]Wave:[/green] {run.wave_decision.strategy.value} "
            f"(score {run.wave_decision.total:.3f})"
        )

    for output in run.stages:
        report = output.gate_report
        gates = ", ".join(f"{r.gate_id}={r.status.value}" for r in report.results) if report else "-"
        agents = ", ".join(o.agent_type.value for o in output.agent_contributions.outputs) or "-"
        console.print(f"  [bold]{output.stage.value}[/bold]  agents: {agents}  gates: {gates}")

    suggested = {k: v for k, v in run.suggested_agents.items() if v}
    if suggested:
        console.print("\n[bold]Suggested agents:[/bold]")
        for stage, agents in suggested.items():
            console.print(f"  {stage}: {', '.join(a.value for a in agents)}")

    if outcome.remediation:
        console.print(f"\n[yellow]Remediation required at {outcome.remediation.stage.value}:[/yellow]")
        for gate_id, findings in outcome.remediation.findings.items():
            console.print(f"  - {gate_id}: {'; '.join(findings) or 'below threshold'}")

    if run.diagnostics:
        console.print(f"\n[red]Diagnostics:[/red] {run.diagnostics}")


@click.command()
@click.option("--idea", "-i", "idea", required=False, help="Idea text or path to a file containing it")
@click.option("--project-root", "-r", default=None, help="Project directory to analyze for context")
@click.option(
    "--provider", "-p",
    type=click.Choice(["litellm", "anthropic", "openai", "stub"]),
    default=None,
    help=f"Inference provider (default: {settings.default_provider})",
)
@click.option("--model", default=None, help="Model name (e.g. anthropic/claude-sonnet-4-20250514, gpt-4o)")
@click.option("--dry-run", is_flag=True, help="Use the stub provider and no MCP servers")
@click.option("--analyze-only", is_flag=True, help="Print the context profile and agent scores, then exit")
@click.option("--list-agents", is_flag=True, help="List agent descriptors and exit")
@click.option("--list-servers", is_flag=True, help="List MCP servers and exit")
@click.option("--catalog-dir", default=None, help="Directory with catalog JSON overrides")
@click.option("--output", "-o", "output_dir", default=None, help=f"Output directory (default: {settings.output_dir})")
@click.option("--verbose", "-v", is_flag=True, help="Verbose output")
def main(
    idea: Optional[str],
    project_root: Optional[str],
    provider: Optional[str],
    model: Optional[str],
    dry_run: bool,
    analyze_only: bool,
    list_agents: bool,
    list_servers: bool,
    catalog_dir: Optional[str],
    output_dir: Optional[str],
    verbose: bool,
):
    """Prompt Chain Engine: idea -> PRD -> TRD -> features -> user stories.

    Scores and spawns specialist agents per stage, binds MCP capabilities,
    and gates every stage output before moving on.
    """
    setup_logging(verbose)

    try:
        catalog = EngineCatalog(catalog_dir or settings.catalog_dir)
    except CatalogError as e:
        console.print(f"[red]Catalog error:[/red] {e}")
        sys.exit(EXIT_FAILED)

    if list_agents or list_servers:
        if list_agents:
            print_agents(catalog)
        if list_servers:
            print_servers(catalog)
        return

    if not idea:
        console.print("[red]Error: --idea is required[/red]")
        sys.exit(EXIT_FAILED)
    idea_text = read_idea(idea)
    if not idea_text.strip():
        console.print("[red]Error: idea is empty[/red]")
        sys.exit(EXIT_FAILED)

    if analyze_only:
        try:
            print_analysis(catalog, idea_text, project_root)
        except ContextAnalysisError as e:
            console.print(f"[red]Context analysis failed:[/red] {e}")
            sys.exit(EXIT_FAILED)
        return

    console.print(Panel.fit(
        "[bold blue]Prompt Chain Engine[/bold blue]\n"
        "[dim]Idea -> PRD -> TRD -> Features -> User Stories[/dim]",
        border_style="blue",
    ))
    if dry_run:
        console.print("[dim]Dry run: stub provider, no MCP servers[/dim]")
    elif provider or model:
        console.print(f"[dim]Provider:[/dim] {provider or settings.default_provider}  [dim]Model:[/dim] {model or 'default'}")

    engine = build_engine(catalog, provider, model, dry_run)

    async def execute():
        run = engine.start_run(idea_text, project_root)
        if run.status.is_terminal:
            return run, StageOutcome(run_id=run.run_id, stage=run.current_stage, status=run.status,
                                     diagnostics=dict(run.diagnostics))
        return run, await engine.run_to_completion(run)

    with Progress(SpinnerColumn(), TextColumn("[progress.description]{task.description}"), console=console) as progress:
        task = progress.add_task("Running chain...", total=None)
        run, outcome = asyncio.run(execute())
        progress.update(task, completed=True)

    print_outcome(run, outcome)
    output_path = save_run(run, output_dir)
    console.print(f"\n[bold]Output saved to:[/bold] {output_path}")
    console.print("=" * 60)

    if run.status == RunStatus.COMPLETED:
        sys.exit(EXIT_COMPLETED)
    if run.status == RunStatus.AWAITING_REMEDIATION:
        sys.exit(EXIT_REMEDIATION)
    sys.exit(EXIT_FAILED)


if __name__ == "__main__":
    main()
