"""Actions the decision engine can choose.

``AgentAction`` is a closed union: ``ActionType`` names every variant and each
variant is a frozen dataclass carrying only its own payload.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Union


class ActionType(str, Enum):
    CONTINUE = "continue"
    RETRY = "retry"
    ADAPT = "adapt"
    ESCALATE = "escalate"
    COMPLETE = "complete"
    FAIL = "fail"
    PARALLEL_SEARCH = "parallel_search"
    DEEP_DIVE = "deep_dive"
    VERIFY_CLAIM = "verify_claim"


@dataclass(frozen=True)
class Continue:
    type: ActionType = field(default=ActionType.CONTINUE, init=False)


@dataclass(frozen=True)
class Retry:
    target: str = ""
    type: ActionType = field(default=ActionType.RETRY, init=False)


@dataclass(frozen=True)
class Adapt:
    changes: tuple[str, ...] = ()
    type: ActionType = field(default=ActionType.ADAPT, init=False)


@dataclass(frozen=True)
class Escalate:
    reason: str
    type: ActionType = field(default=ActionType.ESCALATE, init=False)


@dataclass(frozen=True)
class Complete:
    type: ActionType = field(default=ActionType.COMPLETE, init=False)


@dataclass(frozen=True)
class Fail:
    reason: str
    type: ActionType = field(default=ActionType.FAIL, init=False)


@dataclass(frozen=True)
class ParallelSearch:
    queries: tuple[str, ...]
    type: ActionType = field(default=ActionType.PARALLEL_SEARCH, init=False)


@dataclass(frozen=True)
class DeepDive:
    url: str
    type: ActionType = field(default=ActionType.DEEP_DIVE, init=False)


@dataclass(frozen=True)
class VerifyClaim:
    claim: str
    type: ActionType = field(default=ActionType.VERIFY_CLAIM, init=False)


AgentAction = Union[
    Continue,
    Retry,
    Adapt,
    Escalate,
    Complete,
    Fail,
    ParallelSearch,
    DeepDive,
    VerifyClaim,
]

__all__ = [
    "ActionType",
    "AgentAction",
    "Adapt",
    "Complete",
    "Continue",
    "DeepDive",
    "Escalate",
    "Fail",
    "ParallelSearch",
    "Retry",
    "VerifyClaim",
]
