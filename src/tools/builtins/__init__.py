from __future__ import annotations

from typing import TYPE_CHECKING

from src.tools.builtins.review import SwarmReviewFeedbackTool, SwarmReviewTool
from src.tools.registry import ToolRegistry

if TYPE_CHECKING:
    from src.review.gate import ReviewGate


def register_builtins(registry: ToolRegistry, *, review_gate: ReviewGate) -> None:
    """Register all built-in coordinator tools with the registry."""
    registry.register(SwarmReviewTool(review_gate))
    registry.register(SwarmReviewFeedbackTool(review_gate))
