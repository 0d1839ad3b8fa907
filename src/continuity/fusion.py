from __future__ import annotations

from src.continuity.models import Confidence, FusedDetection, HeuristicResult, StructuredFacts


def fuse(heuristic: HeuristicResult, facts: StructuredFacts) -> FusedDetection:
    """Combine the heuristic tier with structured facts.

    Structured evidence only ever raises confidence. A missed live effort
    costs far more than an unneeded resumption context.
    """
    confidence = heuristic.confidence
    reasons = list(heuristic.reasons)

    if facts.agent_name and confidence is Confidence.none:
        confidence = Confidence.medium
        reasons.append(f"coordinator {facts.agent_name} registered in session")

    if facts.has_swarm_activity:
        if not confidence.at_least(Confidence.medium):
            confidence = Confidence.medium
            reasons.append("swarm tool calls found in session")
        if facts.subtasks:
            confidence = Confidence.high
            reasons.append(f"{len(facts.subtasks)} subtasks spawned")

    return FusedDetection(confidence=confidence, reasons=tuple(reasons))
