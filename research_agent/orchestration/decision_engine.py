"""Rule-based selection of the next action for a research run.

Rules are evaluated in descending priority; the first whose condition holds
decides. Confidence blends the rule's priority with current quality, the
error count and the historical expected quality from memory.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Callable, Optional

from loguru import logger

from research_agent.config import decision_rules as rules_cfg
from research_agent.data_management.memory_store import MemoryStore
from research_agent.data_management.schemas.memory_schema import StrategyRecommendation
from research_agent.data_management.schemas.research_schema import (
    AgentError,
    DecisionContext,
    ErrorKind,
    ResearchState,
)
from research_agent.orchestration.actions import (
    Adapt,
    AgentAction,
    Complete,
    Continue,
    Fail,
    ParallelSearch,
    Retry,
)

Condition = Callable[[DecisionContext], bool]
ActionFactory = Callable[[DecisionContext], AgentAction]


@dataclass(frozen=True)
class Rule:
    name: str
    priority: int
    condition: Condition
    action_factory: ActionFactory
    description: str


@dataclass
class Decision:
    action: AgentAction
    reasoning: str
    confidence: float
    alternatives: list[AgentAction] = field(default_factory=list)
    rule: str = ""


@dataclass
class ProgressEvaluation:
    on_track: bool
    suggestions: list[str] = field(default_factory=list)
    adjustments: list[dict[str, Any]] = field(default_factory=list)


@dataclass
class DecisionRecord:
    decision: Decision
    context: DecisionContext
    timestamp: datetime


def _recent_errors(context: DecisionContext) -> list[AgentError]:
    now = datetime.now(timezone.utc)
    return [
        e for e in context.errors
        if (now - e.timestamp).total_seconds() < rules_cfg.RECENT_ERROR_WINDOW_SECONDS
    ]


def _query(context: DecisionContext) -> str:
    return context.plan.query if context.plan else ""


def _verification_searches(context: DecisionContext) -> AgentAction:
    q = _query(context)
    if not q:
        return ParallelSearch(queries=())
    return ParallelSearch(queries=(f"{q} verification", f"{q} sources", f"{q} official"))


def default_rules() -> list[Rule]:
    """The built-in rule set."""
    return [
        Rule(
            "too_many_errors",
            100,
            lambda c: len(c.errors) > rules_cfg.MAX_TOTAL_ERRORS,
            lambda c: Fail(reason="Too many errors accumulated"),
            "Fail after too many errors",
        ),
        Rule(
            "frequent_recent_errors",
            90,
            lambda c: len(_recent_errors(c)) >= rules_cfg.RECENT_ERROR_LIMIT,
            lambda c: Adapt(changes=("reduce_parallelism", "increase_timeout")),
            "Adapt when seeing frequent recent errors",
        ),
        Rule(
            "rate_limited",
            85,
            lambda c: any(e.kind == ErrorKind.RATE_LIMIT for e in _recent_errors(c)),
            lambda c: Retry(target=c.current_step or "current_step"),
            "Retry on a recent rate limit with backoff",
        ),
        Rule(
            "low_compile_quality",
            80,
            lambda c: c.state == ResearchState.COMPILING and c.quality.overall < rules_cfg.LOW_COMPILE_QUALITY,
            lambda c: Adapt(changes=("increase_sources", "deeper_verification")),
            "Adapt strategy when quality is too low",
        ),
        Rule(
            "weak_verification",
            75,
            lambda c: (
                c.state == ResearchState.VERIFYING
                and c.quality.claim_verification < rules_cfg.LOW_CLAIM_VERIFICATION
            ),
            _verification_searches,
            "Search for more verification sources",
        ),
        Rule(
            "no_search_results",
            70,
            lambda c: (
                c.state == ResearchState.SEARCHING
                and not c.results
                and c.elapsed_time > rules_cfg.NO_RESULTS_PATIENCE_SECONDS
            ),
            lambda c: Adapt(changes=("broaden_query", "change_sources")),
            "Adapt search when no results found",
        ),
        Rule(
            "quality_met",
            60,
            lambda c: c.state == ResearchState.COMPILING and c.quality.overall >= rules_cfg.HIGH_COMPILE_QUALITY,
            lambda c: Complete(),
            "Complete when quality threshold met",
        ),
        Rule(
            "progress_full",
            55,
            lambda c: c.progress >= 100,
            lambda c: Complete(),
            "Complete when progress is 100%",
        ),
        Rule(
            "scraping_with_results",
            50,
            lambda c: (
                c.state == ResearchState.SCRAPING
                and bool(c.results)
                and c.progress < rules_cfg.SCRAPING_CONTINUE_BELOW_PROGRESS
            ),
            lambda c: Continue(),
            "Continue scraping with results",
        ),
        Rule(
            "default",
            1,
            lambda c: True,
            lambda c: Continue(),
            "Default: continue execution",
        ),
    ]


class DecisionEngine:
    """
    Chooses the next action from the live decision context.

    Attributes:
        memory: Optional memory store consulted for expected quality,
            recommended approaches and domains to avoid
    """

    def __init__(self, memory: Optional[MemoryStore] = None, rules: Optional[list[Rule]] = None):
        self.memory = memory
        self._rules = list(rules) if rules is not None else default_rules()
        self._history: list[DecisionRecord] = []
        self.logger = logger.bind(component="DecisionEngine")

    def decide(self, context: DecisionContext) -> Decision:
        """
        Pick the action of the highest-priority matching rule.

        Args:
            context: Current decision context

        Returns:
            Decision with action, reasoning, confidence and alternatives
        """
        ordered = self._ordered_rules()
        recommendation = self._recommendation(context)

        for rule in ordered:
            if not rule.condition(context):
                continue
            decision = Decision(
                action=self._enrich(rule.action_factory(context), recommendation),
                reasoning=rule.description,
                confidence=self._confidence(context, rule, recommendation),
                alternatives=self._alternatives(context, rule, ordered),
                rule=rule.name,
            )
            self._history.append(
                DecisionRecord(
                    decision=decision,
                    context=context.model_copy(deep=True),
                    timestamp=datetime.now(timezone.utc),
                )
            )
            self.logger.debug(
                f"Decision {decision.action.type.value} via '{rule.name}' "
                f"(confidence {decision.confidence:.2f})"
            )
            return decision

        return Decision(action=Continue(), reasoning="No matching rule, continuing", confidence=0.5)

    def _ordered_rules(self) -> list[Rule]:
        return sorted(self._rules, key=lambda r: r.priority, reverse=True)

    def _recommendation(self, context: DecisionContext) -> Optional[StrategyRecommendation]:
        if self.memory is None:
            return None
        return self.memory.get_recommendations(_query(context))

    @staticmethod
    def _enrich(action: AgentAction, recommendation: Optional[StrategyRecommendation]) -> AgentAction:
        if isinstance(action, Adapt) and recommendation and recommendation.recommended_approach:
            extra = f"approach:{recommendation.recommended_approach}"
            if extra not in action.changes and "change_approach" not in action.changes:
                return replace(action, changes=(*action.changes, extra))
        return action

    @staticmethod
    def _confidence(
        context: DecisionContext,
        rule: Rule,
        recommendation: Optional[StrategyRecommendation],
    ) -> float:
        confidence = min(rule.priority / 100, 1.0)
        confidence *= context.quality.overall * rules_cfg.QUALITY_CONFIDENCE_WEIGHT + (
            1 - rules_cfg.QUALITY_CONFIDENCE_WEIGHT
        )
        confidence *= 1 - min(len(context.errors) * rules_cfg.ERROR_PENALTY_PER_ERROR, rules_cfg.MAX_ERROR_PENALTY)
        expected = recommendation.expected_quality if recommendation else 0.5
        confidence *= 0.5 + expected * 0.5
        return max(rules_cfg.MIN_DECISION_CONFIDENCE, min(1.0, confidence))

    @staticmethod
    def _alternatives(context: DecisionContext, matched: Rule, ordered: list[Rule]) -> list[AgentAction]:
        return [
            r.action_factory(context)
            for r in ordered
            if r is not matched and r.priority > rules_cfg.ALTERNATIVE_MIN_PRIORITY and r.condition(context)
        ][: rules_cfg.MAX_ALTERNATIVES]

    def evaluate_progress(self, context: DecisionContext) -> ProgressEvaluation:
        """
        Check whether the run is on track and suggest adjustments.

        Args:
            context: Current decision context

        Returns:
            ProgressEvaluation with on-track flag, suggestions and adjustments
        """
        evaluation = ProgressEvaluation(on_track=True)

        expected_progress = (context.elapsed_time / 60) * rules_cfg.EXPECTED_PROGRESS_PER_MINUTE
        if context.progress < expected_progress * rules_cfg.LAGGING_FRACTION:
            evaluation.on_track = False
            evaluation.suggestions.append("Progress is slower than expected")
            evaluation.adjustments.append({"parallelism": "increase"})

        if context.progress > rules_cfg.MIDPOINT_PROGRESS and context.quality.overall < rules_cfg.MIDPOINT_MIN_QUALITY:
            evaluation.on_track = False
            evaluation.suggestions.append("Quality is below threshold at 50% progress")
            evaluation.adjustments.append({"verification_level": "thorough"})

        error_rate = len(context.errors) / max(context.progress / 10, 1)
        if error_rate > rules_cfg.MAX_ERROR_RATE:
            evaluation.on_track = False
            evaluation.suggestions.append("High error rate detected")
            evaluation.adjustments.append({"retry_strategy": "exponential"})

        recommendation = self._recommendation(context)
        if recommendation and recommendation.avoid_sources:
            evaluation.suggestions.append(f"Avoid sources: {', '.join(recommendation.avoid_sources)}")

        return evaluation

    def add_rule(self, rule: Rule) -> None:
        self._rules.append(rule)

    def get_history(self) -> list[DecisionRecord]:
        return list(self._history)

    def clear_history(self) -> None:
        self._history = []
