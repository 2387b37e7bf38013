"""Interactive CLI for the research agent using Typer and Rich."""

import asyncio
import sys

import typer
from rich.console import Console
from rich.markdown import Markdown
from rich.panel import Panel
from rich.table import Table

from research_agent import __version__
from research_agent.agents.planning_agent import PlanningAgent
from research_agent.agents.sifters.critic_agent import CriticAgent
from research_agent.agents.sifters.cross_reference_validator import CrossReferenceValidator, FuzzyMatchConfig
from research_agent.agents.sifters.data_consolidator import DataConsolidator
from research_agent.agents.sifters.source_authority import SourceAuthorityResolver
from research_agent.agents.wide_research.wide_research_agent import WideResearchAgent, WideResearchCallbacks
from research_agent.config.logging import configure_logging, get_logger
from research_agent.config.settings import settings
from research_agent.data_management.kv_store import JsonFileKeyValueStore
from research_agent.data_management.memory_store import MemoryStore
from research_agent.data_management.schemas.wide_research_schema import WideResearchConfig
from research_agent.llm.gemini_client import GeminiInferenceService
from research_agent.llm.inference import InferenceService
from research_agent.llm.rate_limiter import RateLimiter
from research_agent.orchestration.coordinator import ResearchCallbacks, ResearchCoordinator
from research_agent.orchestration.decision_engine import DecisionEngine
from research_agent.orchestration.state_machine import ResearchStateMachine
from research_agent.orchestration.task_executor import ParallelExecutor
from research_agent.tools.serper_client import SerperSearchService
from research_agent.utils.logging import configure_structured_logging

app = typer.Typer(
    help="Research Agent CLI - planned, verified web research with explicit data provenance",
    add_completion=False,
)

console = Console()

logger = get_logger("cli")


def _setup_logging() -> None:
    configure_logging()
    configure_structured_logging(settings.log_level, settings.log_format)


def _inference() -> InferenceService | None:
    """Gemini adapter when a key is configured, otherwise heuristics only."""
    if not settings.gemini_api_key:
        return None
    return GeminiInferenceService(
        api_key=settings.gemini_api_key,
        model_name=settings.gemini_model,
        rate_limiter=RateLimiter(max_rpm=settings.max_rpm, max_tpm=settings.max_tpm),
    )


def _search() -> SerperSearchService:
    return SerperSearchService(api_key=settings.serper_api_key, endpoint=settings.search_endpoint)


async def _memory() -> MemoryStore:
    memory = MemoryStore(JsonFileKeyValueStore(settings.memory_path))
    await memory.load()
    return memory


def _sifters(inference: InferenceService | None) -> tuple[SourceAuthorityResolver, DataConsolidator, CriticAgent]:
    authority = SourceAuthorityResolver()
    validator = CrossReferenceValidator(authority, FuzzyMatchConfig(threshold=settings.fuzzy_threshold))
    consolidator = DataConsolidator(authority, validator)
    critic = CriticAgent(authority, inference=inference, max_sources=settings.critic_max_sources)
    return authority, consolidator, critic


async def _run_research(query: str, deep_verify: bool) -> None:
    inference = _inference()
    memory = await _memory()
    authority, consolidator, critic = _sifters(inference)
    coordinator = ResearchCoordinator(
        planner=PlanningAgent(memory=memory, inference=inference),
        state_machine=ResearchStateMachine(),
        executor=ParallelExecutor(max_concurrency=settings.max_concurrency),
        decision_engine=DecisionEngine(memory=memory),
        memory=memory,
        authority=authority,
        consolidator=consolidator,
        critic=critic,
        search=_search(),
        inference=inference,
        max_iterations=settings.max_iterations,
        task_timeout=settings.task_timeout,
        task_retries=settings.task_retries,
    )
    callbacks = ResearchCallbacks(
        on_state_change=lambda state: console.print(f"[dim]→ {state.value}[/dim]"),
        on_error=lambda error: console.print(f"[yellow]⚠ {error.kind.value}: {error.message}[/yellow]"),
    )

    outcome = await coordinator.run(query, deep_verify=deep_verify, callbacks=callbacks)

    console.print(Markdown(outcome.report))
    status = "[green]✓ Completed[/green]" if outcome.success else f"[yellow]⚠ {outcome.state.value}[/yellow]"
    console.print(
        f"\n{status} | quality {outcome.quality.overall:.1%} | "
        f"{len(outcome.sources)} sources | {outcome.elapsed:.1f}s"
    )


@app.command()
def research(
    query: str = typer.Argument(..., help="Research query"),
    deep_verify: bool = typer.Option(False, "--deep-verify", help="Force thorough claim verification"),
) -> None:
    """
    Run a planned research pass over web search results.

    Args:
        query: Natural-language research query
        deep_verify: Force thorough verification
    """
    _setup_logging()
    logger.info(f"Research command invoked: {query[:80]}")
    asyncio.run(_run_research(query, deep_verify))


async def _run_wide(query: str, config: WideResearchConfig) -> None:
    inference = _inference()
    _, consolidator, _ = _sifters(inference)
    agent = WideResearchAgent(
        search=_search(),
        executor=ParallelExecutor(max_concurrency=config.max_sub_agents),
        inference=inference,
        consolidator=consolidator,
    )
    callbacks = WideResearchCallbacks(
        on_sub_agent_complete=lambda result, index: console.print(
            f"[dim]sub-agent {index + 1}: {len(result.sources)} sources ({result.status})[/dim]"
        ),
    )

    result = await agent.run(query, config, callbacks)

    console.print(Markdown(result.report))
    if result.no_data:
        console.print("\n[red]✗[/red] No data found")
        raise typer.Exit(1)
    console.print(
        f"\n[green]✓[/green] {result.metadata.total_sources} sources from "
        f"{result.metadata.successful_sub_queries}/{result.metadata.sub_queries_executed} sub-queries | "
        f"quality {result.quality.overall:.1%} | {result.timing.total:.1f}s"
    )


@app.command()
def wide(
    query: str = typer.Argument(..., help="Research query"),
    max_sub_agents: int = typer.Option(8, "--max-sub-agents", min=1, max=20, help="Parallel sub-agents"),
    country: str = typer.Option(None, "--country", help="Two-letter country code for search localization"),
) -> None:
    """
    Run wide research: parallel sub-agents over a decomposed query.

    Args:
        query: Research query
        max_sub_agents: Upper bound on sub-agents running at once
        country: Optional country code passed to search
    """
    _setup_logging()
    logger.info(f"Wide research command invoked: {query[:80]}")
    config = WideResearchConfig(
        max_sub_agents=max_sub_agents,
        timeout=settings.task_timeout,
        country=country,
    )
    asyncio.run(_run_wide(query, config))


@app.command()
def memory_stats() -> None:
    """Display what the agent has learned from past runs."""
    _setup_logging()
    memory = asyncio.run(_memory())
    stats = memory.get_stats()

    table = Table(title="Agent Memory", show_header=True, header_style="bold magenta")
    table.add_column("Metric", style="cyan", width=24)
    table.add_column("Value", style="yellow")
    for key, value in stats.items():
        if isinstance(value, float):
            value = f"{value:.2f}"
        elif isinstance(value, list):
            value = ", ".join(v["domain"] if isinstance(v, dict) else str(v) for v in value) or "-"
        table.add_row(key.replace("_", " ").title(), str(value))

    console.print(table)


@app.command()
def status() -> None:
    """
    Display system status and configuration.

    Shows API configuration, executor defaults and logging settings.
    """
    logger.info("Displaying system status")

    table = Table(title="Research Agent Status", show_header=True, header_style="bold magenta")
    table.add_column("Component", style="cyan", width=20)
    table.add_column("Status", style="green", width=15)
    table.add_column("Details", style="yellow")

    python_version = f"Python {sys.version_info.major}.{sys.version_info.minor}.{sys.version_info.micro}"
    table.add_row("Environment", "✓ Ready", python_version)

    gemini_status = "✓ Configured" if settings.gemini_api_key else "⚠ Heuristics only"
    table.add_row(
        "Gemini API",
        gemini_status,
        f"{settings.gemini_model} (RPM: {settings.max_rpm}, TPM: {settings.max_tpm:,})",
    )

    search_status = "✓ Configured" if settings.serper_api_key else "⚠ Not Configured"
    table.add_row("Web Search", search_status, settings.search_endpoint)

    table.add_row(
        "Executor",
        "✓ Active",
        f"Concurrency: {settings.max_concurrency}, Timeout: {settings.task_timeout}s, "
        f"Retries: {settings.task_retries}",
    )
    table.add_row("Memory", "✓ Active", settings.memory_path)
    table.add_row("Logging", "✓ Active", f"Level: {settings.log_level}, Format: {settings.log_format}")

    console.print(table)


@app.command()
def version() -> None:
    """Display version information."""
    console.print(Panel(f"[bold]Research Agent[/bold]\nVersion: {__version__}", border_style="green"))


if __name__ == "__main__":
    app()
