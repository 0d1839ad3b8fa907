"""Tests for the review tools and role-aware tool registry.

Covers:
- BaseTool fail-closed role default
- ToolRegistry role filtering and schema
- swarm_review / swarm_review_feedback argument handling
- Audit session taken from ToolContext
"""

from __future__ import annotations

from unittest.mock import AsyncMock

import pytest

from src.audit.log import EventLog
from src.review.gate import ReviewGate
from src.tools.base import AgentRole, BaseTool, ToolGroup
from src.tools.builtins import register_builtins
from src.tools.builtins.review import SwarmReviewFeedbackTool, SwarmReviewTool
from src.tools.context import ToolContext
from src.tools.registry import ToolRegistry


class _BareStubTool(BaseTool):
    """Tool that does NOT override group/allowed_roles (uses fail-closed defaults)."""

    @property
    def name(self) -> str:
        return "bare_stub"

    @property
    def description(self) -> str:
        return "Bare stub for testing defaults"

    @property
    def parameters(self) -> dict:
        return {"type": "object", "properties": {}}

    async def execute(self, arguments: dict, context: ToolContext | None = None) -> dict:
        return {"ok": True}


@pytest.fixture
def gate(event_log: EventLog) -> ReviewGate:
    return ReviewGate(event_log=event_log, diff_fn=AsyncMock(return_value="+x"))


@pytest.fixture
def registry(gate: ReviewGate) -> ToolRegistry:
    reg = ToolRegistry()
    register_builtins(reg, review_gate=gate)
    return reg


class TestBaseToolDefaults:
    def test_fail_closed(self) -> None:
        tool = _BareStubTool()
        assert tool.allowed_roles == frozenset()
        assert tool.group is ToolGroup.coordination


class TestToolRegistry:
    def test_builtins_registered_for_coordinator(self, registry: ToolRegistry) -> None:
        names = {t.name for t in registry.list_tools(AgentRole.coordinator)}
        assert names == {"swarm_review", "swarm_review_feedback"}
        assert registry.list_tools(AgentRole.worker) == []

    def test_duplicate_rejected(self, registry: ToolRegistry, gate: ReviewGate) -> None:
        with pytest.raises(ValueError, match="already registered"):
            registry.register(SwarmReviewTool(gate))

    def test_bare_tool_unavailable(self) -> None:
        reg = ToolRegistry()
        reg.register(_BareStubTool())
        assert reg.check_role("bare_stub", AgentRole.coordinator) is False

    def test_unknown_tool_has_no_roles(self, registry: ToolRegistry) -> None:
        assert registry.get_effective_roles("nope") == frozenset()
        assert registry.get("nope") is None

    def test_schema(self, registry: ToolRegistry) -> None:
        schema = registry.get_tools_schema(AgentRole.coordinator)
        by_name = {s["function"]["name"]: s for s in schema}
        feedback = by_name["swarm_review_feedback"]
        assert feedback["type"] == "function"
        assert feedback["function"]["parameters"]["properties"]["status"]["enum"] == [
            "approved",
            "needs_changes",
        ]


class TestSwarmReviewTool:
    @pytest.mark.asyncio
    async def test_returns_prompt(self, gate: ReviewGate) -> None:
        result = await SwarmReviewTool(gate).execute(
            {"project_key": "/repo", "epic_id": "bd-1", "task_id": "bd-1.1",
             "files_touched": ["a.py"]}
        )
        assert "review_prompt" in result
        assert result["context"]["files_touched"] == ["a.py"]

    @pytest.mark.asyncio
    async def test_missing_args(self, gate: ReviewGate) -> None:
        result = await SwarmReviewTool(gate).execute({"project_key": "/repo"})
        assert result["error_code"] == "INVALID_ARGS"
        assert "epic_id" in result["message"]

    @pytest.mark.asyncio
    async def test_bad_files(self, gate: ReviewGate) -> None:
        result = await SwarmReviewTool(gate).execute(
            {"project_key": "/repo", "epic_id": "bd-1", "task_id": "bd-1.1",
             "files_touched": "a.py"}
        )
        assert result["error_code"] == "INVALID_ARGS"


class TestSwarmReviewFeedbackTool:
    @pytest.mark.asyncio
    async def test_session_from_context(self, gate: ReviewGate, event_log: EventLog) -> None:
        result = await SwarmReviewFeedbackTool(gate).execute(
            {"project_key": "/repo", "task_id": "bd-1.1", "worker_id": "w1",
             "status": "needs_changes",
             "issues": '[{"file": "a.py", "issue": "typo"}]'},
            ToolContext(session_id="ses-42"),
        )
        assert result["success"] is True
        assert result["remaining_attempts"] == 2
        [event] = event_log.read_session("ses-42")
        assert event.subtype == "review_completed"

    @pytest.mark.asyncio
    async def test_without_context_uses_unknown_session(
        self, gate: ReviewGate, event_log: EventLog
    ) -> None:
        await SwarmReviewFeedbackTool(gate).execute(
            {"project_key": "/repo", "task_id": "bd-1.1", "worker_id": "w1", "status": "approved"}
        )
        assert len(event_log.read_session("unknown")) == 1
        assert gate.is_review_approved("bd-1.1")

    @pytest.mark.asyncio
    async def test_missing_worker(self, gate: ReviewGate) -> None:
        result = await SwarmReviewFeedbackTool(gate).execute(
            {"project_key": "/repo", "task_id": "bd-1.1", "status": "approved"}
        )
        assert result["success"] is False
        assert "worker_id" in result["error"]
