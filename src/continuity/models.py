from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import StrEnum

from src.continuity.collaborators import Cell, HealthStats


class Confidence(StrEnum):
    """Certainty that a live coordination effort exists."""

    none = "none"
    low = "low"
    medium = "medium"
    high = "high"

    @property
    def rank(self) -> int:
        return _RANK[self]

    def at_least(self, other: Confidence) -> bool:
        return self.rank >= other.rank

    @classmethod
    def strongest(cls, *tiers: Confidence) -> Confidence:
        return max(tiers, key=lambda t: t.rank, default=cls.none)


_RANK = {
    Confidence.none: 0,
    Confidence.low: 1,
    Confidence.medium: 2,
    Confidence.high: 3,
}


class ContextType(StrEnum):
    full = "full"
    fallback = "fallback"
    none = "none"


def context_type_for(confidence: Confidence) -> ContextType:
    if confidence.at_least(Confidence.medium):
        return ContextType.full
    if confidence is Confidence.low:
        return ContextType.fallback
    return ContextType.none


# ---------------------------------------------------------------------------
# Structured scan
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SubtaskFact:
    subtask_id: str
    title: str
    status: str  # "spawned" | "completed"
    worker: str | None = None
    files: tuple[str, ...] = ()


@dataclass(frozen=True)
class LastAction:
    tool: str
    timestamp: float | None = None


@dataclass(frozen=True)
class StructuredFacts:
    """What the replayed tool calls say about the coordination effort."""

    epic_id: str | None = None
    epic_title: str | None = None
    project_path: str | None = None
    agent_name: str | None = None
    subtasks: tuple[SubtaskFact, ...] = ()
    last_action: LastAction | None = None

    @property
    def has_swarm_activity(self) -> bool:
        return self.epic_id is not None or bool(self.subtasks)


# ---------------------------------------------------------------------------
# Heuristic scan
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SubtaskCounts:
    closed: int = 0
    in_progress: int = 0
    open: int = 0
    blocked: int = 0

    @property
    def total(self) -> int:
        return self.closed + self.in_progress + self.open + self.blocked


@dataclass(frozen=True)
class SwarmStateSnapshot:
    project_path: str
    epic_id: str | None = None
    epic_title: str | None = None
    subtask_counts: SubtaskCounts = field(default_factory=SubtaskCounts)


@dataclass(frozen=True)
class HeuristicEvidence:
    """Raw, immutable evidence gathered from the health probe and cell store.

    health is None when the probe failed, was unhealthy or is not wired;
    cells is None when the store failed or is not wired.
    """

    now: datetime
    recent_window: timedelta
    project_path: str | None = None
    detection_failed: bool = False
    health: HealthStats | None = None
    cells: tuple[Cell, ...] | None = None


@dataclass(frozen=True)
class HeuristicResult:
    confidence: Confidence
    reasons: tuple[str, ...] = ()
    state: SwarmStateSnapshot | None = None
    reservations: int = 0
    agents: int = 0


# ---------------------------------------------------------------------------
# Fusion / outcome
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class FusedDetection:
    confidence: Confidence
    reasons: tuple[str, ...]

    @property
    def detected(self) -> bool:
        return self.confidence is not Confidence.none


@dataclass(frozen=True)
class DetectionOutcome:
    """Everything one compaction pass concluded."""

    session_id: str
    facts: StructuredFacts
    heuristic: HeuristicResult
    fused: FusedDetection
    context: str | None = None

    @property
    def confidence(self) -> Confidence:
        return self.fused.confidence

    @property
    def context_type(self) -> ContextType:
        return context_type_for(self.fused.confidence)

    @property
    def epic_id(self) -> str:
        if self.facts.epic_id:
            return self.facts.epic_id
        if self.heuristic.state is not None and self.heuristic.state.epic_id:
            return self.heuristic.state.epic_id
        return "unknown"
