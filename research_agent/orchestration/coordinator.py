"""Research coordinator: drives one run through the lifecycle state machine.

Each state has a phase handler that awaits its work, records results and
quality on the machine and requests the next transition. A handler that
raises is routed through ``handle_error``; the loop then runs whichever
phase the machine landed in. The loop never raises: a run without usable
sources ends with a labeled insufficient-data report.
"""

import asyncio
import math
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional

from loguru import logger
from pydantic import BaseModel, Field

from research_agent.agents.planning_agent import PlanningAgent
from research_agent.agents.sifters.critic_agent import CriticAgent
from research_agent.agents.sifters.data_consolidator import ConsolidatedResult, DataConsolidator
from research_agent.agents.sifters.source_authority import SourceAuthorityResolver
from research_agent.agents.wide_research.aggregator import REALTIME_FRESHNESS, field_claim_text
from research_agent.agents.wide_research.extraction import extract_structured, with_fields
from research_agent.agents.wide_research.reports import (
    generate_data_report,
    generate_insufficient_data_report,
)
from research_agent.data_management.memory_store import MemoryStore
from research_agent.data_management.schemas.memory_schema import SourceUsage
from research_agent.data_management.schemas.research_schema import (
    AgentError,
    QualityScore,
    ResearchPlan,
    ResearchState,
    ResearchStrategy,
    SourceRecord,
)
from research_agent.data_management.schemas.verification_schema import Claim, ClaimVerification
from research_agent.data_management.schemas.wide_research_schema import ExtractedContent
from research_agent.llm.inference import InferenceService
from research_agent.orchestration.actions import Adapt, Fail, ParallelSearch
from research_agent.orchestration.decision_engine import Decision, DecisionEngine
from research_agent.orchestration.state_machine import (
    ANALYZING_DONE_PROGRESS,
    SCRAPING_DONE_PROGRESS,
    ResearchStateMachine,
)
from research_agent.orchestration.task_executor import (
    DEFAULT_RETRIES,
    DEFAULT_TIMEOUT,
    MAX_CONCURRENCY,
    ExecutionMetrics,
    ParallelExecutor,
    TaskError,
    TaskFailedError,
)
from research_agent.tools.search import SearchResult, SearchService
from research_agent.utils.logging import bind_run_context, new_run_id

S = ResearchState

SUCCESS_QUALITY = 0.6
MAX_CLAIMS = 10
MIN_RESULTS_PER_QUERY = 3
MAX_PHASE_RUNS = 40
SEARCH_RELIABILITY = 0.8
MAX_TASK_TIMEOUT = 120.0

# Strategy overrides applied when the decision engine asks to adapt
ADAPT_STRATEGY_CHANGES: dict[str, dict[str, Any]] = {
    "broaden_query": {"approach": "breadth-first"},
    "change_sources": {"source_types": ["news", "official", "financial"]},
    "increase_sources": {"max_sources": 20},
    "deeper_verification": {"verification_level": "thorough"},
    "reduce_parallelism": {"parallelism": 2},
}
NO_RESULTS_CHANGES = ("broaden_query", "change_sources")

StateListener = Callable[[ResearchState], None]


@dataclass
class ResearchCallbacks:
    """Optional hooks, all plain callables invoked synchronously."""

    on_state_change: Optional[StateListener] = None
    on_progress: Optional[Callable[[float], None]] = None
    on_decision: Optional[Callable[[Decision], None]] = None
    on_metrics: Optional[Callable[[ExecutionMetrics], None]] = None
    on_error: Optional[Callable[[AgentError], None]] = None



class ResearchOutcome(BaseModel):
    """Everything a finished run produced."""

    query: str
    state: ResearchState
    success: bool
    report: str
    quality: QualityScore = Field(default_factory=QualityScore)
    plan: Optional[ResearchPlan] = None
    sources: list[SourceRecord] = Field(default_factory=list)
    data: dict[str, Any] = Field(default_factory=dict, description="Fields resolved across sources")
    warnings: list[str] = Field(default_factory=list)
    verifications: list[ClaimVerification] = Field(default_factory=list)
    errors: list[AgentError] = Field(default_factory=list)
    elapsed: float = Field(default=0.0, ge=0.0, description="Seconds")


@dataclass
class _Run:
    query: str
    deep_verify: bool
    callbacks: ResearchCallbacks
    retries: int
    timeout: float
    started: float = field(default_factory=time.monotonic)
    plan: Optional[ResearchPlan] = None
    pending_changes: dict[str, Any] = field(default_factory=dict)
    adapt_reason: str = ""
    sources: list[SourceRecord] = field(default_factory=list)
    extracted: ExtractedContent = field(default_factory=ExtractedContent)
    consolidated: Optional[ConsolidatedResult] = None
    claims: list[Claim] = field(default_factory=list)
    verifications: list[ClaimVerification] = field(default_factory=list)
    attempted_queries: list[str] = field(default_factory=list)
    finished_kinds: set[str] = field(default_factory=set)
    search_rounds: int = 0
    verify_rounds: int = 0
    compile_rounds: int = 0
    report: str = ""


def search_queries(plan: ResearchPlan) -> list[str]:
    """Queries for one search round, derived from the plan's strategy."""
    strategy = plan.strategy
    queries = [plan.query]
    queries += [f"{plan.query} {source_type}" for source_type in strategy.source_types]
    if strategy.verification_level == "thorough":
        queries.append(f"{plan.query} official")
    if strategy.approach == "breadth-first":
        keywords = [w for w in plan.query.split() if len(w) > 3]
        if keywords:
            queries.append(" ".join(keywords))
    return list(dict.fromkeys(queries))[: strategy.parallelism]


def strategy_changes(action: Adapt) -> dict[str, Any]:
    """Map Adapt change tags to ResearchStrategy overrides."""
    changes: dict[str, Any] = {}
    for tag in action.changes:
        if tag.startswith("approach:"):
            changes["approach"] = tag.split(":", 1)[1]
        else:
            changes.update(ADAPT_STRATEGY_CHANGES.get(tag, {}))
    return changes


def progress_changes(adjustments: list[dict[str, Any]], strategy: ResearchStrategy) -> dict[str, Any]:
    """Strategy overrides for progress adjustments that would change ``strategy``."""
    changes: dict[str, Any] = {}
    for adjustment in adjustments:
        if adjustment.get("parallelism") == "increase" and strategy.parallelism < MAX_CONCURRENCY:
            changes["parallelism"] = strategy.parallelism + 1
        if adjustment.get("verification_level") == "thorough" and strategy.verification_level != "thorough":
            changes["verification_level"] = "thorough"
    return changes


def _error_line(error: AgentError) -> str:
    query = error.context.get("query")
    return f'"{query}": {error.message}' if query else error.message


class ResearchCoordinator:
    """
    Wires planner, executor, sifters and memory around the state machine.

    All collaborators are injected. Runs on one coordinator are serialized:
    a second ``run`` waits until the first has finished.
    """

    def __init__(
        self,
        planner: PlanningAgent,
        state_machine: ResearchStateMachine,
        executor: ParallelExecutor,
        decision_engine: DecisionEngine,
        memory: MemoryStore,
        authority: SourceAuthorityResolver,
        consolidator: DataConsolidator,
        critic: CriticAgent,
        search: SearchService,
        inference: Optional[InferenceService] = None,
        max_iterations: int = 3,
        task_timeout: float = DEFAULT_TIMEOUT,
        task_retries: int = DEFAULT_RETRIES,
    ):
        self.planner = planner
        self.state_machine = state_machine
        self.executor = executor
        self.decision_engine = decision_engine
        self.memory = memory
        self.authority = authority
        self.consolidator = consolidator
        self.critic = critic
        self.search = search
        self.inference = inference
        self.max_iterations = max(1, max_iterations)
        self.task_timeout = task_timeout
        self.task_retries = task_retries
        self._stopped = False
        self._running = False
        self._lock = asyncio.Lock()
        self._phases: dict[ResearchState, Callable[[_Run], Awaitable[None]]] = {
            S.IDLE: self._start,
            S.PLANNING: self._planning,
            S.SEARCHING: self._searching,
            S.SCRAPING: self._scraping,
            S.ANALYZING: self._analyzing,
            S.VERIFYING: self._verifying,
            S.COMPILING: self._compiling,
        }
        self.logger = logger.bind(component="ResearchCoordinator")

    @property
    def is_running(self) -> bool:
        return self._running

    async def run(
        self,
        query: str,
        deep_verify: bool = False,
        callbacks: Optional[ResearchCallbacks] = None,
    ) -> ResearchOutcome:
        """
        Research ``query`` end to end.

        Args:
            query: Natural-language research query
            deep_verify: Force thorough verification
            callbacks: Optional observers

        Returns:
            ResearchOutcome. ``success`` is True only for a completed run
            whose overall quality reaches SUCCESS_QUALITY.
        """
        if self._lock.locked():
            self.logger.info(f"Research already in progress, queueing '{query[:80]}'")
        async with self._lock:
            return await self._run(query, deep_verify, callbacks or ResearchCallbacks())

    async def _run(self, query: str, deep_verify: bool, callbacks: ResearchCallbacks) -> ResearchOutcome:
        run = _Run(
            query=query,
            deep_verify=deep_verify,
            callbacks=callbacks,
            retries=self.task_retries,
            timeout=self.task_timeout,
        )
        run_id = new_run_id()
        bind_run_context(run_id, query=query[:80])
        self._stopped = False
        self._running = True
        self.state_machine.reset()
        self.executor.reset()
        unsubscribers = [self.state_machine.subscribe(self._state_listener(run.callbacks))]
        if run.callbacks.on_metrics:
            unsubscribers.append(self.executor.subscribe(run.callbacks.on_metrics))

        self.logger.info(f"Research {run_id} started: '{query[:80]}' (deep_verify={deep_verify})")
        try:
            await self._drive(run)
            return await self._finish(run)
        finally:
            for unsubscribe in unsubscribers:
                unsubscribe()
            self._running = False

    def stop(self) -> int:
        """Stop the current run after its in-flight phase. Returns tasks cancelled."""
        self._stopped = True
        cancelled = self.executor.cancel()
        self.logger.info(f"Stop requested, {cancelled} task(s) cancelled")
        return cancelled

    async def _drive(self, run: _Run) -> None:
        for _ in range(MAX_PHASE_RUNS):
            state = self.state_machine.state
            if state in (S.COMPLETED, S.FAILED):
                return
            if self._stopped:
                self._fail(run, "Research stopped before completion.")
                return
            try:
                await self._phases[state](run)
                await self._review_progress(run)
            except Exception as e:
                self._record_error(run, AgentError.from_exception(e, {"phase": state.value, "query": run.query}))
        self._fail(run, "Research did not converge within the phase limit.")

    def _record_error(self, run: _Run, error: AgentError) -> None:
        self.state_machine.handle_error(error)
        if run.callbacks.on_error:
            run.callbacks.on_error(error)
        decision = self._decide(run)
        if isinstance(decision.action, Fail):
            self._fail(run, decision.action.reason)

    def _fail(self, run: _Run, reason: str) -> None:
        if self.state_machine.state != S.FAILED and not self.state_machine.transition(S.FAILED):
            self.logger.warning(f"Cannot enter failed from {self.state_machine.state.value}: {reason}")
        run.adapt_reason = reason

    def _decide(self, run: _Run) -> Decision:
        self.state_machine.update_context(elapsed_time=time.monotonic() - run.started)
        decision = self.decision_engine.decide(self.state_machine.context)
        if run.callbacks.on_decision:
            run.callbacks.on_decision(decision)
        return decision

    def _adapt_changes(self, run: _Run, action: Adapt) -> dict[str, Any]:
        if "increase_timeout" in action.changes:
            run.timeout = min(run.timeout * 2, MAX_TASK_TIMEOUT)
        return strategy_changes(action)

    async def _review_progress(self, run: _Run) -> None:
        """Apply the decision engine's progress adjustments between phases."""
        if run.plan is None or self.state_machine.state in (S.COMPLETED, S.FAILED):
            return
        self.state_machine.update_context(elapsed_time=time.monotonic() - run.started)
        evaluation = self.decision_engine.evaluate_progress(self.state_machine.context)
        if evaluation.on_track:
            return

        if any(a.get("retry_strategy") == "exponential" for a in evaluation.adjustments):
            run.retries = max(run.retries, self.task_retries + 1)
        changes = progress_changes(evaluation.adjustments, run.plan.strategy)
        if changes:
            run.plan = await self.planner.adapt_plan(run.plan, "; ".join(evaluation.suggestions), changes)
            self._sync_steps(run)
            self.state_machine.update_context(plan=run.plan)

    # ── Phases ──

    async def _start(self, run: _Run) -> None:
        self.state_machine.transition(S.PLANNING)

    async def _planning(self, run: _Run) -> None:
        if run.plan is None:
            run.plan = await self.planner.create_plan(run.query, run.deep_verify)
        elif run.pending_changes:
            run.plan = await self.planner.adapt_plan(run.plan, run.adapt_reason, run.pending_changes)
        run.pending_changes = {}
        self.state_machine.update_context(plan=run.plan)
        self._sync_steps(run)
        self.state_machine.transition(S.SEARCHING)

    async def _searching(self, run: _Run) -> None:
        if run.search_rounds >= self.max_iterations:
            self._fail(run, "No sources could be retrieved for this query.")
            return

        queries = search_queries(run.plan)
        found, errors = await self._run_searches(run, queries, run.plan.strategy.max_sources)
        run.search_rounds += 1

        for source in found:
            self.state_machine.add_result(source)
        run.sources.extend(found)
        if found:
            for step in run.plan.steps:
                if step.kind == "search" and step.status == "failed":
                    self.planner.update_step_status(run.plan, step.id, "pending")
            self._complete_steps(run, "search")
        else:
            for step in run.plan.steps:
                if step.kind == "search" and step.status == "pending":
                    self.planner.update_step_status(run.plan, step.id, "failed")

        for error in errors:
            if self.state_machine.state == S.FAILED:
                return
            self._record_error(run, error)

        state = self.state_machine.state
        if state == S.PLANNING:
            run.pending_changes = dict(ADAPT_STRATEGY_CHANGES["reduce_parallelism"])
            run.adapt_reason = f"Rate limited during search (round {run.search_rounds})"
            return
        if state != S.SEARCHING:
            return

        if run.sources:
            self.state_machine.transition(S.SCRAPING)
            return

        if run.search_rounds >= self.max_iterations:
            self._fail(run, "No sources could be retrieved for this query.")
            return

        decision = self._decide(run)
        action = decision.action if isinstance(decision.action, Adapt) else Adapt(changes=NO_RESULTS_CHANGES)
        run.pending_changes = self._adapt_changes(run, action)
        run.adapt_reason = f"No search results (round {run.search_rounds})"
        self.state_machine.transition(S.PLANNING)

    async def _run_searches(
        self,
        run: _Run,
        queries: list[str],
        max_sources: int,
    ) -> tuple[list[SourceRecord], list[AgentError]]:
        """
        Run ``queries`` through the executor.

        Returns:
            Sources not seen in this run yet, and one classified error per
            failed query
        """
        per_query = max(MIN_RESULTS_PER_QUERY, math.ceil(max_sources / max(len(queries), 1)))
        run.attempted_queries.extend(queries)
        phase = self.state_machine.state.value

        async def _search(query: str) -> SearchResult:
            return await self.search.search(query, max_results=per_query)

        self.executor.set_concurrency(run.plan.strategy.parallelism)
        outcome = await self.executor.execute_all(queries, _search, retries=run.retries, timeout=run.timeout)

        errors = [
            self._task_error(task_error, {"phase": phase, "query": queries[task_error.index]})
            for task_error in outcome.errors
            if not isinstance(task_error.error, asyncio.CancelledError)
        ]
        seen = {s.url for s in run.sources}
        found: list[SourceRecord] = []
        for query, result in zip(queries, outcome.results):
            if result is None:
                continue
            if not result.success:
                errors.append(AgentError.from_message(result.error or "", {"phase": phase, "query": query}))
                continue
            for hit in result.results:
                if hit.url in seen:
                    continue
                seen.add(hit.url)
                found.append(
                    SourceRecord(
                        url=hit.url,
                        title=hit.title,
                        content=hit.snippet,
                        reliability=SEARCH_RELIABILITY,
                        relevance_score=1.0 / hit.position if hit.position > 0 else 0.0,
                        metadata={"query": query},
                    )
                )
        self.logger.info(
            f"Search round: {len(queries)} queries, {len(found)} new sources, {len(errors)} error(s)"
        )
        return found, errors

    @staticmethod
    def _task_error(task_error: TaskError, context: dict[str, Any]) -> AgentError:
        # Classify what the worker raised, not the executor's wrapper
        error = task_error.error
        cause = error.cause if isinstance(error, TaskFailedError) else error
        return AgentError.from_exception(cause, context)

    async def _scraping(self, run: _Run) -> None:
        deduped = self.consolidator.deduplicate_results(run.sources)
        run.sources = self.authority.rank_sources(deduped)[: run.plan.strategy.max_sources]
        self._complete_steps(run, "scrape")
        self.state_machine.update_context(progress=SCRAPING_DONE_PROGRESS)
        self.state_machine.transition(S.ANALYZING)

    async def _analyzing(self, run: _Run) -> None:
        run.sources = with_fields(run.sources)
        run.extracted = await extract_structured(run.query, run.sources, self.inference)
        run.consolidated = self.consolidator.consolidate(run.sources)
        run.claims = self._build_claims(run)

        authorities = [self.authority.authority_of(s.url) for s in run.sources]
        metrics = run.consolidated.quality_metrics
        if run.consolidated.data:
            accuracy = metrics.consistency
        else:
            accuracy = sum(s.reliability for s in run.sources) / len(run.sources)
        self.state_machine.update_quality(
            accuracy=accuracy,
            completeness=min(1.0, len(run.sources) / run.plan.strategy.max_sources),
            freshness=REALTIME_FRESHNESS,
            source_quality=sum(authorities) / len(authorities),
        )
        self._complete_steps(run, "analyze")
        self.state_machine.update_context(progress=ANALYZING_DONE_PROGRESS)
        self.state_machine.transition(S.VERIFYING)

    def _build_claims(self, run: _Run) -> list[Claim]:
        """One claim per resolved field, worded as its source reported it, then key facts."""
        consolidated = run.consolidated
        confidences = consolidated.field_confidences
        claims = [
            Claim(
                text=field_claim_text(consolidated, name),
                sources=[s.url for s in run.sources if s.domain in confidences[name].sources],
                field=name,
            )
            for name, value in consolidated.data.items()
            if value is not None and name in confidences
        ]
        claims += [Claim(text=fact.fact) for fact in run.extracted.key_facts]
        return claims[:MAX_CLAIMS]

    async def _verifying(self, run: _Run) -> None:
        run.verifications = await self.critic.verify_claims(run.claims, run.sources)
        claim_score = (
            sum(v.confidence for v in run.verifications) / len(run.verifications) if run.verifications else 0.0
        )
        self.state_machine.update_quality(claim_verification=claim_score)

        decision = self._decide(run)
        if (
            isinstance(decision.action, ParallelSearch)
            and decision.action.queries
            and run.verify_rounds < self.max_iterations - 1
        ):
            run.verify_rounds += 1
            await self._expand_sources(run, list(decision.action.queries))
            return

        self._complete_steps(run, "verify")
        self.state_machine.transition(S.COMPILING)

    async def _expand_sources(self, run: _Run, queries: list[str]) -> None:
        found, errors = await self._run_searches(run, queries, run.plan.strategy.max_sources)
        found = with_fields(found)
        for source in found:
            self.state_machine.add_result(source)
        run.sources.extend(found)
        for error in errors:
            if self.state_machine.state == S.FAILED:
                break
            self._record_error(run, error)
        # Verdicts are cached per claim text, new sources need a fresh pass
        self.critic.clear_cache()

    async def _compiling(self, run: _Run) -> None:
        decision = self._decide(run)
        action = decision.action

        if isinstance(action, Fail):
            self._fail(run, action.reason)
            return

        if isinstance(action, Adapt) and run.compile_rounds < self.max_iterations - 1:
            run.compile_rounds += 1
            run.plan = await self.planner.adapt_plan(run.plan, decision.reasoning, self._adapt_changes(run, action))
            self._sync_steps(run)
            self.state_machine.update_context(plan=run.plan)
            self.state_machine.transition(S.VERIFYING)
            await self._expand_sources(run, [f"{run.query} sources", f"{run.query} official"])
            return

        self._complete_steps(run, "enrich")
        run.report = generate_data_report(
            run.query, run.sources, run.extracted, run.verifications, mode="Research", consolidated=run.consolidated
        )
        self.state_machine.transition(S.COMPLETED)

    def _complete_steps(self, run: _Run, kind: str) -> None:
        run.finished_kinds.add(kind)
        self._sync_steps(run)

    def _sync_steps(self, run: _Run) -> None:
        """
        Complete the pending steps of finished phases, in dependency order.

        A step whose dependencies are not complete stays pending. Regenerated
        plans are brought back in line with the work already done. The first
        step still ready to run becomes the context's ``current_step``.
        """
        progressed = True
        while progressed:
            progressed = False
            for step in self.planner.get_next_steps(run.plan):
                if step.kind in run.finished_kinds:
                    progressed |= self.planner.update_step_status(run.plan, step.id, "completed")
        ready = self.planner.get_next_steps(run.plan)
        self.state_machine.update_context(current_step=ready[0].id if ready else None)

    # ── Outcome ──

    async def _finish(self, run: _Run) -> ResearchOutcome:
        context = self.state_machine.context
        state = self.state_machine.state
        quality = context.quality

        if not run.report:
            if run.sources:
                run.report = generate_data_report(
                    run.query,
                    run.sources,
                    run.extracted,
                    run.verifications,
                    mode="Research (incomplete)",
                    consolidated=run.consolidated,
                )
            else:
                run.report = generate_insufficient_data_report(
                    run.query,
                    run.attempted_queries,
                    [_error_line(e) for e in context.errors],
                    reason=run.adapt_reason or "No sources could be retrieved for this query.",
                )

        success = state == S.COMPLETED and quality.overall >= SUCCESS_QUALITY
        if run.plan is not None:
            await self.memory.record_outcome(run.query, run.plan, quality, self._source_usage(run), success)

        elapsed = time.monotonic() - run.started
        self.logger.info(
            f"Research finished in {state.value}: {len(run.sources)} sources, "
            f"quality {quality.overall:.1%}, {elapsed:.1f}s"
        )
        consolidated = run.consolidated
        return ResearchOutcome(
            query=run.query,
            state=state,
            success=success,
            report=run.report,
            quality=quality,
            plan=run.plan,
            sources=run.sources,
            data=dict(consolidated.data) if consolidated else {},
            warnings=list(consolidated.warnings) if consolidated else [],
            verifications=run.verifications,
            errors=list(context.errors),
            elapsed=elapsed,
        )

    @staticmethod
    def _source_usage(run: _Run) -> list[SourceUsage]:
        cited = {s.url for v in run.verifications for s in v.sources}
        return [SourceUsage(url=s.url, domain=s.domain, useful=s.url in cited) for s in run.sources]

    @staticmethod
    def _state_listener(callbacks: ResearchCallbacks) -> Callable[[ResearchState, Any], None]:
        last: dict[str, Any] = {"state": None, "progress": None}

        def _listener(state: ResearchState, context: Any) -> None:
            if state != last["state"]:
                last["state"] = state
                if callbacks.on_state_change:
                    callbacks.on_state_change(state)
            if context.progress != last["progress"]:
                last["progress"] = context.progress
                if callbacks.on_progress:
                    callbacks.on_progress(context.progress)

        return _listener
