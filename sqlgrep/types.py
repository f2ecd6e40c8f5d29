from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple, Union

Scalar = Union[str, int, float, bool, None]
Row = Dict[str, Any]


# =====================
# Schema metadata
# =====================


@dataclass(frozen=True)
class ColumnMetadata:
    name: str
    type: str = ""
    description: str = ""


@dataclass(frozen=True)
class Relationship:
    type: str
    table: str
    foreign_key: Optional[str] = None


@dataclass(frozen=True)
class TableMetadata:
    name: str
    description: str = ""
    columns: Tuple[ColumnMetadata, ...] = ()
    relationships: Tuple[Relationship, ...] = ()
    model: Optional[str] = None


# =====================
# Query plan
# =====================


class StepKind(str, Enum):
    """Closed set of step kinds the executor knows how to run."""

    RAW_SELECT = "raw_select"


@dataclass(frozen=True)
class QueryStep:
    query: str
    bindings: Tuple[Scalar, ...] = ()
    kind: StepKind = StepKind.RAW_SELECT


@dataclass(frozen=True)
class QueryPlan:
    steps: Tuple[QueryStep, ...] = ()
    summary: Optional[str] = None

    @property
    def is_refusal(self) -> bool:
        return not self.steps


@dataclass(frozen=True)
class QueryLogEntry:
    query: str
    bindings: Tuple[Scalar, ...]
    time: float  # milliseconds

    def to_dict(self) -> Dict[str, Any]:
        return {"query": self.query, "bindings": list(self.bindings), "time": self.time}


@dataclass(frozen=True)
class ExecutedStep:
    step: QueryStep
    results: Tuple[Row, ...] = ()
    queries: Tuple[QueryLogEntry, ...] = ()

    @property
    def query(self) -> str:
        return self.step.query

    @property
    def bindings(self) -> Tuple[Scalar, ...]:
        return self.step.bindings

    def to_dict(self) -> Dict[str, Any]:
        return {
            "query": self.step.query,
            "bindings": list(self.step.bindings),
            "results": [dict(r) for r in self.results],
        }


# =====================
# Conversation
# =====================


@dataclass(frozen=True)
class ConversationMessage:
    role: str  # "user" | "assistant"
    content: str

    def to_dict(self) -> Dict[str, str]:
        return {"role": self.role, "content": self.content}


# =====================
# Final answer
# =====================


@dataclass(frozen=True)
class Answer:
    """
    Final domain result of one question.
    Adapters (HTTP/CLI) serialize it with to_payload() at the boundary.
    """

    summary: str
    plan: QueryPlan
    executed: Tuple[ExecutedStep, ...] = ()
    traces: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def refused(self) -> bool:
        return self.plan.is_refusal

    def to_payload(self, *, debug: bool = False) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"summary": self.summary}

        if debug or self.plan.steps:
            payload["steps"] = [e.to_dict() for e in self.executed]
            payload["results"] = [[dict(r) for r in e.results] for e in self.executed]

        if debug:
            payload["debug"] = {
                "queries": [q.to_dict() for e in self.executed for q in e.queries],
            }
        return payload
