"""Research lifecycle state machine.

The machine never blocks: an async caller awaits each phase's work and then
requests the next transition. Every mutation notifies subscribers
synchronously after it has been applied.
"""

from dataclasses import dataclass
from typing import Any, Callable, Optional

from loguru import logger

from research_agent.data_management.schemas.research_schema import (
    AgentError,
    DecisionContext,
    ErrorKind,
    QualityScore,
    ResearchState,
)

Guard = Callable[[DecisionContext], bool]
Listener = Callable[[ResearchState, DecisionContext], None]

S = ResearchState

MAX_PLANNING_ERRORS = 3
SCRAPING_DONE_PROGRESS = 30
ANALYZING_DONE_PROGRESS = 50
MIN_CLAIM_VERIFICATION = 0.3
MIN_OVERALL_QUALITY = 0.3

# Progress floor applied on entering a state
ENTRY_PROGRESS = {
    S.PLANNING: 5,
    S.SEARCHING: 15,
    S.SCRAPING: 30,
    S.ANALYZING: 50,
    S.VERIFYING: 70,
    S.COMPILING: 85,
    S.COMPLETED: 100,
}


@dataclass(frozen=True)
class Transition:
    source: ResearchState
    target: ResearchState
    guard: Optional[Guard] = None

    def allows(self, context: DecisionContext) -> bool:
        return self.guard is None or self.guard(context)


TRANSITIONS: tuple[Transition, ...] = (
    Transition(S.IDLE, S.PLANNING),
    Transition(S.PLANNING, S.SEARCHING, lambda c: c.plan is not None),
    Transition(S.PLANNING, S.FAILED, lambda c: len(c.errors) > MAX_PLANNING_ERRORS),
    Transition(S.SEARCHING, S.SCRAPING, lambda c: len(c.results) > 0),
    Transition(S.SEARCHING, S.PLANNING, lambda c: len(c.results) == 0),
    Transition(S.SEARCHING, S.FAILED),
    Transition(S.SCRAPING, S.ANALYZING, lambda c: c.progress >= SCRAPING_DONE_PROGRESS),
    Transition(S.SCRAPING, S.SEARCHING),
    Transition(S.SCRAPING, S.FAILED),
    Transition(S.ANALYZING, S.VERIFYING, lambda c: c.progress >= ANALYZING_DONE_PROGRESS),
    Transition(S.ANALYZING, S.SCRAPING),
    Transition(S.ANALYZING, S.FAILED),
    Transition(S.VERIFYING, S.COMPILING, lambda c: c.quality.claim_verification >= MIN_CLAIM_VERIFICATION),
    Transition(S.VERIFYING, S.COMPILING),
    Transition(S.VERIFYING, S.SEARCHING),
    Transition(S.VERIFYING, S.ANALYZING),
    Transition(S.VERIFYING, S.FAILED),
    Transition(S.COMPILING, S.COMPLETED, lambda c: c.quality.overall >= MIN_OVERALL_QUALITY),
    Transition(S.COMPILING, S.COMPLETED),
    Transition(S.COMPILING, S.VERIFYING),
    Transition(S.COMPILING, S.FAILED),
    Transition(S.FAILED, S.PLANNING),
    Transition(S.FAILED, S.IDLE),
    Transition(S.COMPLETED, S.IDLE),
)


def _recover_planning(error: AgentError) -> ResearchState:
    return S.PLANNING if error.recoverable else S.FAILED


def _recover_searching(error: AgentError) -> ResearchState:
    if error.kind == ErrorKind.RATE_LIMIT:
        return S.PLANNING
    return S.SEARCHING if error.recoverable else S.FAILED


def _recover_scraping(error: AgentError) -> ResearchState:
    if error.kind == ErrorKind.TIMEOUT:
        return S.SCRAPING
    return S.SEARCHING if error.recoverable else S.FAILED


def _recover_analyzing(error: AgentError) -> ResearchState:
    return S.ANALYZING if error.recoverable else S.FAILED


def _recover_verifying(error: AgentError) -> ResearchState:
    # Unrecoverable verification errors still compile with partial verification
    return S.VERIFYING if error.recoverable else S.COMPILING


def _recover_compiling(error: AgentError) -> ResearchState:
    return S.FAILED


ERROR_HANDLERS: dict[ResearchState, Callable[[AgentError], ResearchState]] = {
    S.PLANNING: _recover_planning,
    S.SEARCHING: _recover_searching,
    S.SCRAPING: _recover_scraping,
    S.ANALYZING: _recover_analyzing,
    S.VERIFYING: _recover_verifying,
    S.COMPILING: _recover_compiling,
}


class ResearchStateMachine:
    """
    Guarded transitions over the research lifecycle with per-state recovery.

    Usage:
        machine = ResearchStateMachine()
        machine.transition(ResearchState.PLANNING)
        machine.update_context(plan=plan)
        machine.transition(ResearchState.SEARCHING)
    """

    def __init__(self, transitions: tuple[Transition, ...] = TRANSITIONS):
        self._transitions = transitions
        self._state = S.IDLE
        self._context = DecisionContext()
        self._listeners: list[Listener] = []
        self.logger = logger.bind(component="ResearchStateMachine")

    @property
    def state(self) -> ResearchState:
        return self._state

    @property
    def context(self) -> DecisionContext:
        return self._context

    def transition(self, target: ResearchState) -> bool:
        """
        Move to ``target`` if an edge exists and one of its guards passes.

        Runs the old state's exit hook, switches, runs the new state's entry
        hook and notifies subscribers. A rejected request has no side effects.

        Args:
            target: Requested next state

        Returns:
            True if the transition happened
        """
        edges = [t for t in self._transitions if t.source == self._state and t.target == target]
        if not edges:
            self.logger.warning(f"Invalid transition: no path from {self._state.value} to {target.value}")
            return False
        if not any(edge.allows(self._context) for edge in edges):
            self.logger.debug(f"Transition {self._state.value} -> {target.value} blocked by guard")
            return False

        previous = self._state
        self._on_exit(previous)
        self._state = target
        self._context.state = target
        self._on_enter(target)
        self._notify()

        self.logger.info(
            f"Transition {previous.value} -> {target.value} | progress {self._context.progress:.0f}%"
        )
        return True

    def _on_enter(self, state: ResearchState) -> None:
        if state == S.IDLE:
            self._context.progress = 0
            self._context.errors = []
        elif state == S.PLANNING:
            self._context.progress = ENTRY_PROGRESS[S.PLANNING]
        elif state == S.COMPLETED:
            self._context.progress = ENTRY_PROGRESS[S.COMPLETED]
        elif state in ENTRY_PROGRESS:
            self._context.progress = max(self._context.progress, ENTRY_PROGRESS[state])

    def _on_exit(self, state: ResearchState) -> None:
        self._context.current_step = None

    def handle_error(self, error: AgentError) -> ResearchState:
        """
        Record ``error`` and route to the current state's recovery target.

        States without a handler move to failed on unrecoverable errors and
        stay put otherwise.

        Returns:
            The state after recovery
        """
        self._context.errors = [*self._context.errors, error]
        self.logger.warning(f"Error in {self._state.value}: [{error.kind.value}] {error.message}")

        handler = ERROR_HANDLERS.get(self._state)
        if handler is not None:
            target = handler(error)
        else:
            target = self._state if error.recoverable else S.FAILED

        if target != self._state:
            self.transition(target)
        else:
            self._notify()
        return self._state

    def update_context(self, **updates: Any) -> None:
        """Assign context fields (validated) and notify subscribers."""
        if "progress" in updates:
            updates["progress"] = max(0.0, min(100.0, float(updates["progress"])))
        for name, value in updates.items():
            setattr(self._context, name, value)
        self._notify()

    def update_quality(self, **components: float) -> QualityScore:
        """Replace quality components; overall is recomputed from them."""
        self._context.quality = self._context.quality.merged(**components)
        self.logger.debug(f"Quality updated: overall {self._context.quality.overall:.1%}")
        self._notify()
        return self._context.quality

    def add_result(self, result: Any) -> None:
        self._context.results = [*self._context.results, result]
        self._notify()

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a listener called with (state, context). Returns an unsubscribe callable."""
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def _notify(self) -> None:
        for listener in list(self._listeners):
            listener(self._state, self._context)

    def reset(self) -> None:
        """Return to idle with a zeroed context."""
        self._state = S.IDLE
        self._context = DecisionContext()
        self._notify()

    def can_transition_to(self, target: ResearchState) -> bool:
        return any(
            t.source == self._state and t.target == target and t.allows(self._context)
            for t in self._transitions
        )

    def get_valid_transitions(self) -> list[ResearchState]:
        valid = []
        for t in self._transitions:
            if t.source == self._state and t.target not in valid and t.allows(self._context):
                valid.append(t.target)
        return valid
