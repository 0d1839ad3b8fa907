"""Tests for fusing the heuristic tier with structured facts."""

from __future__ import annotations

import pytest

from src.continuity.fusion import fuse
from src.continuity.models import (
    Confidence,
    ContextType,
    HeuristicResult,
    StructuredFacts,
    SubtaskFact,
    context_type_for,
)

_SUBTASK = SubtaskFact(subtask_id="bd-1.1", title="Token service", status="spawned")


def _heuristic(tier: Confidence, *reasons: str) -> HeuristicResult:
    return HeuristicResult(confidence=tier, reasons=reasons)


class TestConfidence:
    def test_rank_order(self) -> None:
        ranks = [c.rank for c in (Confidence.none, Confidence.low, Confidence.medium,
                                  Confidence.high)]
        assert ranks == sorted(ranks)

    def test_strongest(self) -> None:
        assert Confidence.strongest(Confidence.low, Confidence.high, Confidence.medium) is (
            Confidence.high
        )
        assert Confidence.strongest() is Confidence.none

    def test_context_type(self) -> None:
        assert context_type_for(Confidence.high) is ContextType.full
        assert context_type_for(Confidence.medium) is ContextType.full
        assert context_type_for(Confidence.low) is ContextType.fallback
        assert context_type_for(Confidence.none) is ContextType.none


class TestFuse:
    def test_nothing_stays_none(self) -> None:
        fused = fuse(_heuristic(Confidence.none), StructuredFacts())
        assert fused.confidence is Confidence.none
        assert fused.detected is False

    @pytest.mark.parametrize("tier", [Confidence.none, Confidence.low])
    def test_epic_promotes_weak_tier_to_medium(self, tier: Confidence) -> None:
        fused = fuse(_heuristic(tier), StructuredFacts(epic_id="bd-1"))
        assert fused.confidence is Confidence.medium
        assert "swarm tool calls found in session" in fused.reasons

    @pytest.mark.parametrize(
        "tier", [Confidence.none, Confidence.low, Confidence.medium, Confidence.high]
    )
    def test_subtasks_force_high(self, tier: Confidence) -> None:
        fused = fuse(_heuristic(tier), StructuredFacts(subtasks=(_SUBTASK,)))
        assert fused.confidence is Confidence.high
        assert "1 subtasks spawned" in fused.reasons

    def test_high_heuristic_dominates(self) -> None:
        fused = fuse(_heuristic(Confidence.high, "2 active file reservations"), StructuredFacts())
        assert fused.confidence is Confidence.high
        assert fused.reasons == ("2 active file reservations",)

    def test_epic_never_lowers_high(self) -> None:
        fused = fuse(_heuristic(Confidence.high), StructuredFacts(epic_id="bd-1"))
        assert fused.confidence is Confidence.high

    def test_agent_name_lifts_none(self) -> None:
        fused = fuse(_heuristic(Confidence.none), StructuredFacts(agent_name="CoralReef"))
        assert fused.confidence is Confidence.medium
        assert any("CoralReef" in r for r in fused.reasons)

    def test_agent_name_leaves_low_alone(self) -> None:
        fused = fuse(_heuristic(Confidence.low), StructuredFacts(agent_name="CoralReef"))
        assert fused.confidence is Confidence.low

    def test_heuristic_reasons_kept_first(self) -> None:
        fused = fuse(
            _heuristic(Confidence.low, "3 swarm messages"),
            StructuredFacts(epic_id="bd-1", subtasks=(_SUBTASK,)),
        )
        assert fused.reasons[0] == "3 swarm messages"
        assert fused.confidence is Confidence.high
