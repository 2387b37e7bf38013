"""Planning agent: query analysis, strategy selection and step generation.

Analysis is heuristic. For long queries the inference service may contribute
sub-questions; any inference failure leaves the heuristic analysis as is.
"""

import math
import re
from typing import Any, Literal, Optional

from loguru import logger
from pydantic import BaseModel, Field

from research_agent.data_management.memory_store import MemoryStore
from research_agent.data_management.schemas.memory_schema import MemoryKind
from research_agent.data_management.schemas.research_schema import (
    PlanAdaptation,
    PlanPriority,
    PlanStep,
    ResearchPlan,
    ResearchStrategy,
    StepStatus,
)
from research_agent.llm.inference import InferenceService

INFERENCE_MIN_QUERY_LENGTH = 50
MAX_INFERRED_SUB_QUESTIONS = 5
MAX_SUB_QUESTION_STEPS = 3
MAX_ENTITIES = 10
SECONDS_PER_STEP = 5.0
VERIFICATION_DURATION_FACTOR = {"thorough": 1.5, "standard": 1.2, "basic": 1.0}
PARALLELISM = {"complex": 8, "moderate": 5, "simple": 3}

_STOPWORDS = re.compile(
    r"^(what|which|where|when|who|how|the|and|for|with|that|this|from|have|been|will|about|into|over|after|before)$",
    re.IGNORECASE,
)
_COMPARATIVE = re.compile(r"\b(compare|vs|versus|difference|between|better|best|top|ranking)\b", re.IGNORECASE)
_VERIFICATION = re.compile(r"\b(verify|confirm|true|false|fact.?check|is it true|accurate)\b", re.IGNORECASE)
_FACTUAL = re.compile(
    r"\b(list|what are|who are|which|how many|names? of|companies? that|stocks? that)\b", re.IGNORECASE
)
_QUESTION_START = re.compile(r"^(what|who|when|where|how|why)\b", re.IGNORECASE)
_ENTITY = re.compile(r"^[A-Z][a-z]+")
_YEAR = re.compile(r"\b(20\d{2})\b")
_RECENT = re.compile(r"\b(last year|past year|recent|latest|current|this year)\b", re.IGNORECASE)
_QUARTERLY = re.compile(r"\b(quarterly|q[1-4])\b", re.IGNORECASE)
_FINANCIAL_METRICS = re.compile(r"\b(earnings|revenue|financial)\b", re.IGNORECASE)
_NUMBERED_LINE = re.compile(r"^\s*\d+[.)]\s+(.+)$", re.MULTILINE)

SOURCE_HINTS: list[tuple[re.Pattern, tuple[str, ...]]] = [
    (
        re.compile(
            r"\b(stock|market|ipo|listing|trading|shares?|equity|investment|fund|etf|nasdaq|nyse|tasi|nomu|"
            r"tadawul|earnings|quarterly|revenue)\b",
            re.IGNORECASE,
        ),
        ("financial", "official", "regulatory"),
    ),
    (
        re.compile(r"\b(research|study|paper|journal|academic|scientific|publication|thesis)\b", re.IGNORECASE),
        ("academic",),
    ),
    (
        re.compile(
            r"\b(technology|software|app|platform|startup|tech|ai|machine learning|crypto|blockchain)\b",
            re.IGNORECASE,
        ),
        ("news", "official"),
    ),
    (
        re.compile(r"\b(government|regulation|law|policy|compliance|authority|sec|cma|fda)\b", re.IGNORECASE),
        ("official", "regulatory"),
    ),
    (
        re.compile(r"\b(ceo|executive|board|leadership|founder|chairman|director)\b", re.IGNORECASE),
        ("official", "social"),
    ),
]

REGION_HINTS: list[tuple[re.Pattern, str]] = [
    (re.compile(r"\b(saudi|ksa|riyadh|tadawul|tasi)\b", re.IGNORECASE), "SA"),
    (re.compile(r"\b(uae|dubai|abu dhabi|emirates)\b", re.IGNORECASE), "AE"),
    (re.compile(r"\b(usa|united states|american|us market)\b", re.IGNORECASE), "US"),
    (re.compile(r"\b(uk|british|london|ftse)\b", re.IGNORECASE), "UK"),
    (re.compile(r"\b(china|chinese|shanghai|shenzhen)\b", re.IGNORECASE), "CN"),
]

ANALYSIS_PROMPT = """Break the following research query into at most {limit} focused sub-questions.
Return them as a numbered list, one per line, with no other text.

Query: {query}"""

Intent = Literal["factual", "comparative", "exploratory", "verification"]
Complexity = Literal["simple", "moderate", "complex"]


class QueryAnalysis(BaseModel):
    """Heuristic reading of a query."""

    intent: Intent = "exploratory"
    topics: list[str] = Field(default_factory=list, description="Key terms in query order")
    entities: list[str] = Field(default_factory=list)
    timeframe: Optional[str] = None
    region: Optional[str] = None
    complexity: Complexity = "simple"
    suggested_sources: list[str] = Field(default_factory=list)
    sub_questions: list[str] = Field(default_factory=list)


class PlanningAgent:
    """
    Creates and adapts research plans.

    Attributes:
        memory: Memory store consulted for approaches that failed before
        inference: Optional inference service for sub-question generation
    """

    def __init__(self, memory: Optional[MemoryStore] = None, inference: Optional[InferenceService] = None):
        self.memory = memory
        self.inference = inference
        self.logger = logger.bind(component="PlanningAgent")

    async def create_plan(self, query: str, deep_verify: bool = False) -> ResearchPlan:
        """
        Plan research for ``query``.

        Args:
            query: Natural-language research query
            deep_verify: Force thorough verification

        Returns:
            ResearchPlan with strategy, ordered steps and estimates
        """
        analysis = await self.analyze_query(query)
        strategy = self._create_strategy(query, analysis, deep_verify)
        steps = self._generate_steps(analysis, strategy)

        plan = ResearchPlan(
            query=query,
            strategy=strategy,
            steps=steps,
            estimated_duration=self._estimate_duration(steps, strategy),
            priority=self._determine_priority(analysis),
        )
        self.logger.info(
            f"Plan {plan.id} created: {len(steps)} steps, approach={strategy.approach}, "
            f"verification={strategy.verification_level}, ~{plan.estimated_duration:.1f}s"
        )
        return plan

    async def analyze_query(self, query: str) -> QueryAnalysis:
        """
        Analyze a query heuristically, enriched by inference for long queries.

        Args:
            query: Natural-language research query

        Returns:
            QueryAnalysis
        """
        analysis = self._heuristic_analysis(query)
        if self.inference is None or len(query) <= INFERENCE_MIN_QUERY_LENGTH:
            return analysis

        result = await self.inference.complete(
            ANALYSIS_PROMPT.format(limit=MAX_INFERRED_SUB_QUESTIONS, query=query)
        )
        if not result.success or not isinstance(result.result, str):
            self.logger.debug(f"Inference analysis unavailable, using heuristics: {result.error}")
            return analysis

        sub_questions = [q.strip() for q in _NUMBERED_LINE.findall(result.result) if q.strip()]
        if sub_questions:
            analysis.sub_questions = sub_questions[:MAX_INFERRED_SUB_QUESTIONS]
        return analysis

    def _heuristic_analysis(self, query: str) -> QueryAnalysis:
        words = query.split()
        key_terms = [w for w in words if len(w) > 3 and not _STOPWORDS.match(w)]

        if _COMPARATIVE.search(query):
            intent = "comparative"
        elif _VERIFICATION.search(query):
            intent = "verification"
        elif _FACTUAL.search(query) or _QUESTION_START.search(query):
            intent = "factual"
        else:
            intent = "exploratory"

        if len(words) > 15 or " and " in query or " or " in query:
            complexity = "complex"
        elif len(words) > 8 or len(key_terms) > 4:
            complexity = "moderate"
        else:
            complexity = "simple"

        entities = [w for w in words if _ENTITY.match(w) and len(w) > 2][:MAX_ENTITIES]

        sources = ["news"]
        for pattern, hinted in SOURCE_HINTS:
            if pattern.search(query):
                sources.extend(hinted)

        region = next((code for pattern, code in REGION_HINTS if pattern.search(query)), None)

        timeframe = None
        year = _YEAR.search(query)
        if year:
            timeframe = year.group(1)
        if _RECENT.search(query):
            timeframe = "recent"
        if _QUARTERLY.search(query):
            timeframe = "quarterly"

        sub_questions = []
        if complexity == "complex":
            if entities:
                sub_questions.append(f"Who is {entities[0]} and what is their role?")
            if region:
                sub_questions.append(f"What are the regional considerations for {region}?")
            if _FINANCIAL_METRICS.search(query):
                sub_questions.append("What are the key financial metrics?")

        return QueryAnalysis(
            intent=intent,
            topics=key_terms,
            entities=entities,
            timeframe=timeframe,
            region=region,
            complexity=complexity,
            suggested_sources=list(dict.fromkeys(sources)),
            sub_questions=sub_questions,
        )

    def _failed_approaches(self, query: str) -> set[str]:
        if self.memory is None:
            return set()
        return {
            m.approach
            for m in self.memory.find_similar_queries(query)
            if m.kind == MemoryKind.FAILURE and m.approach
        }

    def _create_strategy(self, query: str, analysis: QueryAnalysis, deep_verify: bool) -> ResearchStrategy:
        if analysis.complexity == "simple":
            approach = "breadth-first"
        elif analysis.intent == "verification":
            approach = "depth-first"
        else:
            approach = "hybrid"

        if approach in self._failed_approaches(query):
            approach = "depth-first" if approach == "breadth-first" else "breadth-first"

        if deep_verify or analysis.intent == "verification":
            verification_level = "thorough"
        elif analysis.complexity == "simple":
            verification_level = "basic"
        else:
            verification_level = "standard"

        return ResearchStrategy(
            approach=approach,
            source_types=analysis.suggested_sources,
            verification_level=verification_level,
            max_sources=20 if analysis.complexity == "complex" else 12,
            parallelism=PARALLELISM[analysis.complexity],
        )

    @staticmethod
    def _generate_steps(analysis: QueryAnalysis, strategy: ResearchStrategy) -> list[PlanStep]:
        steps: list[PlanStep] = []

        def _add(kind: str, description: str, dependencies: Optional[list[str]] = None) -> str:
            step_id = f"step-{len(steps) + 1}"
            steps.append(PlanStep(id=step_id, kind=kind, description=description, dependencies=dependencies or []))
            return step_id

        first_search = _add("search", f"Search for: {', '.join(analysis.topics[:3])}")
        for index, question in enumerate(analysis.sub_questions[:MAX_SUB_QUESTION_STEPS], start=1):
            _add("search", f"Sub-query {index}: {question[:50]}")
        if strategy.verification_level == "thorough":
            _add("search", "Deep verify: Crawl official sources")

        last = _add("scrape", "Extract content from discovered sources", [first_search])
        last = _add("analyze", "Analyze and extract key information", [last])
        if strategy.verification_level != "basic":
            last = _add("verify", "Verify claims with cross-references", [last])
        if analysis.complexity != "simple":
            _add("enrich", "Enrich with entity data and context", [last])
        return steps

    @staticmethod
    def _estimate_duration(steps: list[PlanStep], strategy: ResearchStrategy) -> float:
        base = len(steps) * SECONDS_PER_STEP
        factor = VERIFICATION_DURATION_FACTOR[strategy.verification_level]
        return round(base / math.sqrt(strategy.parallelism) * factor, 2)

    @staticmethod
    def _determine_priority(analysis: QueryAnalysis) -> PlanPriority:
        if analysis.intent == "verification" or analysis.complexity == "complex":
            return "high"
        if analysis.complexity == "simple":
            return "low"
        return "medium"

    async def adapt_plan(self, plan: ResearchPlan, reason: str, changes: dict[str, Any]) -> ResearchPlan:
        """
        Return a copy of ``plan`` with strategy ``changes`` applied and logged.

        Steps are regenerated when the approach or verification level changes.

        Args:
            plan: Current plan
            reason: Why the plan is being adapted
            changes: ResearchStrategy fields to override

        Returns:
            New ResearchPlan; the input plan is not modified
        """
        strategy = ResearchStrategy(**{**plan.strategy.model_dump(), **changes})
        adaptation = PlanAdaptation(reason=reason, changes=[f"{k}: {v}" for k, v in changes.items()])
        adapted = plan.model_copy(
            update={"strategy": strategy, "adaptations": [*plan.adaptations, adaptation]},
            deep=True,
        )

        if "approach" in changes or "verification_level" in changes:
            analysis = await self.analyze_query(plan.query)
            adapted.steps = self._generate_steps(analysis, strategy)

        self.logger.info(f"Plan {plan.id} adapted ({reason}): {', '.join(adaptation.changes) or 'no changes'}")
        return adapted

    def update_step_status(
        self,
        plan: ResearchPlan,
        step_id: str,
        status: StepStatus,
        result: Any = None,
    ) -> bool:
        """
        Set a step's status (and result, if given).

        A step can only complete once all of its dependencies have.

        Returns:
            False when the step does not exist or its dependencies are incomplete
        """
        step = plan.get_step(step_id)
        if step is None:
            self.logger.warning(f"Step not found in plan {plan.id}: {step_id}")
            return False
        if status == "completed" and not plan.is_ready(step):
            self.logger.warning(f"Step {step_id} has incomplete dependencies: {', '.join(step.dependencies)}")
            return False
        step.status = status
        if result is not None:
            step.result = result
        return True

    @staticmethod
    def get_next_steps(plan: ResearchPlan) -> list[PlanStep]:
        """Pending steps whose dependencies have all completed."""
        return [s for s in plan.steps if s.status == "pending" and plan.is_ready(s)]
