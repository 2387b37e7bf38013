"""Wide research: parallel sub-agents over a decomposed query.

Phases:
1. Planning: decompose the query into sub-queries
2. Searching: one sub-agent per sub-query through the ParallelExecutor
3. Extraction: aggregate sources and items, build verdicts
4. Synthesis: data-only report, or an explicit no-data report
"""

import time
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Optional

from loguru import logger

from research_agent.agents.sifters.data_consolidator import DataConsolidator
from research_agent.agents.sifters.source_authority import SourceAuthorityResolver
from research_agent.agents.wide_research.aggregator import (
    aggregate_extracted_data,
    aggregate_sources,
    calculate_quality,
    create_field_verifications,
    create_verifications,
    cross_reference,
)
from research_agent.agents.wide_research.decomposer import decompose
from research_agent.agents.wide_research.extraction import extract_structured
from research_agent.agents.wide_research.reports import generate_data_report, generate_no_data_report
from research_agent.data_management.schemas.research_schema import SourceRecord
from research_agent.data_management.schemas.wide_research_schema import (
    PhaseTiming,
    SubAgentResult,
    WideResearchConfig,
    WideResearchMetadata,
    WideResearchResult,
)
from research_agent.llm.inference import InferenceService
from research_agent.orchestration.task_executor import ParallelExecutor, TaskError
from research_agent.tools.search import SearchResult, SearchService

PRIMARY_RELIABILITY = 0.8
FALLBACK_RELIABILITY = 0.7
FALLBACK_SOURCE = "hybrid"

PROGRESS_PLANNING = 5
PROGRESS_SEARCH_START = 10
PROGRESS_SEARCH_SPAN = 60
PROGRESS_AGGREGATING = 75
PROGRESS_SYNTHESIS = 85


@dataclass
class WideResearchCallbacks:
    """Optional hooks, all plain callables."""

    on_sub_agent_start: Optional[Callable[[str, int], None]] = None
    on_sub_agent_complete: Optional[Callable[[SubAgentResult, int], None]] = None
    on_progress: Optional[Callable[[float, str], None]] = None
    on_source_found: Optional[Callable[[SourceRecord], None]] = None


class WideResearchAgent:
    """
    Fans a query out to parallel sub-agents and aggregates what they find.

    Attributes:
        search: Primary search service
        executor: Shared executor that bounds sub-agent concurrency
        inference: Optional inference service for structured extraction
        fallback_search: Optional secondary discovery used when primary search is empty
        consolidator: Cross-references source fields and removes near-duplicates
    """

    def __init__(
        self,
        search: SearchService,
        executor: ParallelExecutor,
        inference: Optional[InferenceService] = None,
        fallback_search: Optional[SearchService] = None,
        consolidator: Optional[DataConsolidator] = None,
    ):
        self.search = search
        self.executor = executor
        self.inference = inference
        self.fallback_search = fallback_search
        self.consolidator = consolidator or DataConsolidator(SourceAuthorityResolver())
        self.logger = logger.bind(component="WideResearchAgent")

    async def run(
        self,
        query: str,
        config: Optional[WideResearchConfig] = None,
        callbacks: Optional[WideResearchCallbacks] = None,
    ) -> WideResearchResult:
        """
        Execute wide research for ``query``.

        Args:
            query: Research query
            config: Run tuning, defaults to WideResearchConfig()
            callbacks: Optional progress hooks

        Returns:
            WideResearchResult. ``no_data`` is True when no source was found,
            in which case the report states so and carries no findings.
        """
        config = config or WideResearchConfig()
        callbacks = callbacks or WideResearchCallbacks()
        timing = PhaseTiming()
        started = time.monotonic()

        self._progress(callbacks, PROGRESS_PLANNING, "Planning - Decomposing query")
        phase = time.monotonic()
        sub_queries = decompose(query)
        timing.planning = time.monotonic() - phase
        self.logger.info(f"Decomposed into {len(sub_queries)} sub-queries")

        self._progress(callbacks, PROGRESS_SEARCH_START, f"Searching - {len(sub_queries)} parallel sub-agents")
        phase = time.monotonic()
        sub_results = await self._run_sub_agents(sub_queries, config, callbacks)
        timing.searching = time.monotonic() - phase

        self._progress(callbacks, PROGRESS_AGGREGATING, "Aggregating - Deduplicating and cross-referencing sources")
        phase = time.monotonic()
        sources = aggregate_sources(sub_results, self.consolidator)
        data = aggregate_extracted_data(sub_results)
        consolidated = cross_reference(sources, self.consolidator)
        verifications = create_verifications(sources, data) + create_field_verifications(consolidated, sources)
        timing.extraction = time.monotonic() - phase

        self._progress(callbacks, PROGRESS_SYNTHESIS, "Synthesizing - Generating report")
        phase = time.monotonic()
        no_data = not sources
        if no_data:
            report = generate_no_data_report(query, sub_results)
            self.logger.warning(f"No sources found for '{query[:80]}'")
        else:
            report = generate_data_report(query, sources, data, verifications, consolidated=consolidated)
        timing.synthesis = time.monotonic() - phase
        timing.total = time.monotonic() - started

        quality = calculate_quality(sources, verifications)
        self._progress(callbacks, 100, "Complete")

        metadata = WideResearchMetadata(
            total_sources=len(sources),
            unique_domains=len({s.domain for s in sources}),
            sub_queries_executed=len(sub_queries),
            successful_sub_queries=sum(1 for r in sub_results if r.status == "completed" and r.sources),
            failed_sub_queries=sum(1 for r in sub_results if r.status == "failed"),
        )
        self.logger.info(
            f"Wide research complete: {metadata.total_sources} sources, "
            f"{len(data.companies)} companies, quality {quality.overall:.1%}, {timing.total:.1f}s"
        )

        return WideResearchResult(
            id=f"wide-research-{uuid.uuid4().hex[:8]}",
            query=query,
            sub_results=sub_results,
            aggregated_sources=sources,
            aggregated_data=data,
            report=report,
            quality=quality,
            verifications=verifications,
            consolidated_data=consolidated.data if consolidated else {},
            warnings=consolidated.warnings if consolidated else [],
            timing=timing,
            metadata=metadata,
            no_data=no_data,
        )

    async def _run_sub_agents(
        self,
        sub_queries: list[str],
        config: WideResearchConfig,
        callbacks: WideResearchCallbacks,
    ) -> list[SubAgentResult]:
        self.executor.set_concurrency(config.max_sub_agents)
        indexed = list(enumerate(sub_queries))
        total = len(indexed)

        async def _worker(item: tuple[int, str]) -> SubAgentResult:
            index, sub_query = item
            return await self.execute_sub_agent(sub_query, index, config, callbacks)

        def _on_progress(completed: int, _total: int) -> None:
            progress = PROGRESS_SEARCH_START + completed / total * PROGRESS_SEARCH_SPAN
            self._progress(callbacks, progress, f"Searching - Completed {completed}/{total} sub-queries")

        outcome = await self.executor.execute_all(
            indexed,
            _worker,
            retries=0,
            timeout=config.timeout,
            on_progress=_on_progress,
        )

        errors: dict[int, TaskError] = {e.index: e for e in outcome.errors}
        results = []
        for index, sub_query in indexed:
            result = outcome.results[index]
            if result is None:
                error = errors.get(index)
                result = SubAgentResult(
                    id=f"subagent-{index}",
                    query=sub_query,
                    status="failed",
                    error=str(error.error) if error else "Unknown error",
                    end_time=datetime.now(timezone.utc),
                )
            results.append(result)
        return results

    async def execute_sub_agent(
        self,
        sub_query: str,
        index: int,
        config: WideResearchConfig,
        callbacks: Optional[WideResearchCallbacks] = None,
    ) -> SubAgentResult:
        """
        Search one sub-query, fall back to secondary discovery when empty,
        then extract structured items.

        Search and extraction failures are reported on the result, never raised.
        """
        callbacks = callbacks or WideResearchCallbacks()
        result = SubAgentResult(
            id=f"subagent-{index}",
            query=sub_query,
            status="running",
            start_time=datetime.now(timezone.utc),
        )
        if callbacks.on_sub_agent_start:
            callbacks.on_sub_agent_start(sub_query, index)

        options = {"gl": config.country.lower()} if config.country else None
        primary = await self.search.search(sub_query, max_results=config.max_results_per_query, options=options)
        if primary.success and primary.results:
            result.sources = self._to_sources(primary, PRIMARY_RELIABILITY, "web-search")
        elif self.fallback_search is not None:
            self.logger.debug(f"Sub-agent {index}: primary search empty, trying fallback")
            fallback = await self.fallback_search.search(sub_query, max_results=config.max_results_per_query)
            if fallback.success:
                result.sources = self._to_sources(fallback, FALLBACK_RELIABILITY, FALLBACK_SOURCE)
            else:
                result.error = fallback.error or primary.error
        else:
            result.error = primary.error

        for source in result.sources:
            if callbacks.on_source_found:
                callbacks.on_source_found(source)

        if result.sources:
            result.extracted_data = await extract_structured(sub_query, result.sources, self.inference)

        result.status = "completed" if result.sources or result.error is None else "failed"
        result.end_time = datetime.now(timezone.utc)
        self.logger.debug(
            f"Sub-agent {index}: {len(result.sources)} sources, {len(result.extracted_data.key_facts)} facts"
        )
        if callbacks.on_sub_agent_complete:
            callbacks.on_sub_agent_complete(result, index)
        return result

    @staticmethod
    def _to_sources(search: SearchResult, reliability: float, engine: str) -> list[SourceRecord]:
        return [
            SourceRecord(
                url=hit.url,
                title=hit.title,
                content=hit.snippet,
                reliability=reliability,
                relevance_score=1.0 / hit.position if hit.position > 0 else 0.0,
                source=engine,
            )
            for hit in search.results
        ]

    @staticmethod
    def _progress(callbacks: WideResearchCallbacks, progress: float, phase: str) -> None:
        if callbacks.on_progress:
            callbacks.on_progress(min(progress, 100.0), phase)
