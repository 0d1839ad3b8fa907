"""Tests for the host-facing CoordinationEngine."""

from __future__ import annotations

from pathlib import Path
from unittest.mock import AsyncMock

import pytest

from src.audit.log import EventLog
from src.audit.models import EventType
from src.config.settings import (
    ContinuitySettings,
    CoordinatorSettings,
    EventLogSettings,
    ReviewSettings,
    Settings,
)
from src.continuity.models import Confidence
from src.engine import CoordinationEngine
from src.tools.base import AgentRole
from src.tools.context import ToolContext
from tests.fakes import FakeClock, FakeHealthProbe, FakeSessionHistory, make_health, tool_entry

ISSUES = [{"file": "a.py", "issue": "bug"}]


def _settings(tmp_path: Path, *, rehydrate: bool = True) -> Settings:
    return Settings(
        event_log=EventLogSettings(sessions_dir=tmp_path / "sessions"),
        coordinator=CoordinatorSettings(context_timeout_s=4 * 60 * 60),
        review=ReviewSettings(rehydrate_from_log=rehydrate),
        continuity=ContinuitySettings(project_path="/repo"),
    )


@pytest.fixture
def engine(tmp_path: Path, clock: FakeClock) -> CoordinationEngine:
    return CoordinationEngine(
        settings=_settings(tmp_path),
        diff_fn=AsyncMock(return_value="+x"),
        now_fn=clock,
    )


class TestConstruction:
    def test_event_log_from_settings(self, engine: CoordinationEngine, tmp_path: Path) -> None:
        assert engine.event_log.sessions_dir == tmp_path / "sessions"
        assert engine.review_gate.max_attempts == 3
        assert {t.name for t in engine.tools.list_tools(AgentRole.coordinator)} == {
            "swarm_review",
            "swarm_review_feedback",
        }


class TestRoles:
    def test_unregistered_session_is_worker(self, engine: CoordinationEngine) -> None:
        assert engine.role_for("s1") is AgentRole.worker

    def test_activated_session_is_coordinator(self, engine: CoordinationEngine) -> None:
        engine.activate_coordinator({"is_coordinator": True, "epic_id": "bd-1"}, "s1")
        assert engine.role_for("s1") is AgentRole.coordinator

    def test_expired_session_falls_back_to_worker(
        self, engine: CoordinationEngine, clock: FakeClock
    ) -> None:
        engine.activate_coordinator({"is_coordinator": True}, "s1")
        clock.advance(4 * 60 * 60 + 60)
        assert engine.role_for("s1") is AgentRole.worker


class TestDetectViolation:
    def test_coordinator_edit_recorded_with_context_epic(self, engine: CoordinationEngine) -> None:
        engine.activate_coordinator({"is_coordinator": True, "epic_id": "bd-1"}, "s1")
        result = engine.detect_violation(
            session_id="s1", tool_name="edit", tool_args={"filePath": "src/a.py"}
        )
        assert result.violation_kind == "coordinator_edited_file"
        [event] = engine.event_log.read_session("s1")
        assert event.event_type is EventType.violation
        assert event.epic_id == "bd-1"

    def test_worker_session_never_violates(self, engine: CoordinationEngine) -> None:
        result = engine.detect_violation(
            session_id="w1", tool_name="edit", tool_args={"filePath": "src/a.py"}
        )
        assert result.is_violation is False
        assert engine.event_log.read_session("w1") == []

    def test_explicit_role_overrides_registry(self, engine: CoordinationEngine) -> None:
        result = engine.detect_violation(
            session_id="s1", tool_name="swarm_complete", role="coordinator"
        )
        assert result.violation_kind == "worker_completed_without_review"


class TestPlanning:
    def test_only_coordinators_analyzed(self, engine: CoordinationEngine) -> None:
        todos = {"todos": [{"content": f"Implement part {i}"} for i in range(6)]}
        assert engine.analyze_planning(session_id="s1", tool_name="todowrite",
                                       tool_args=todos) is None
        engine.activate_coordinator({"is_coordinator": True}, "s1")
        analysis = engine.analyze_planning(session_id="s1", tool_name="todowrite", tool_args=todos)
        assert analysis is not None
        assert analysis.looks_like_parallel_work is True

    def test_other_tools_ignored(self, engine: CoordinationEngine) -> None:
        engine.activate_coordinator({"is_coordinator": True}, "s1")
        assert engine.analyze_planning(session_id="s1", tool_name="edit", tool_args={}) is None


class TestCompactionTracking:
    @pytest.mark.asyncio
    async def test_first_tool_call_after_injection_tracked_once(self, tmp_path: Path) -> None:
        history = FakeSessionHistory([
            tool_entry("hive_create_epic", {"epic_title": "A"}, {"epic": {"id": "bd-1"}}),
        ])
        engine = CoordinationEngine(
            settings=_settings(tmp_path),
            session_history=history,
            diff_fn=AsyncMock(return_value=""),
        )
        engine.activate_coordinator({"is_coordinator": True, "epic_id": "bd-1"}, "s1")
        output: list[str] = []
        assert await engine.on_compaction("s1", output) is Confidence.medium
        assert len(output) == 1

        engine.after_tool_call(session_id="s1", tool_name="edit", tool_args={"filePath": "x"})
        engine.after_tool_call(session_id="s1", tool_name="swarm_status")

        tracked = [
            e for e in engine.event_log.read_session("s1") if e.subtype == "tool_call_tracked"
        ]
        assert len(tracked) == 1
        assert tracked[0].payload == {"tool": "edit", "is_violation": True}

    @pytest.mark.asyncio
    async def test_no_tracking_without_injection(self, engine: CoordinationEngine) -> None:
        assert await engine.on_compaction("s1", []) is Confidence.none
        engine.after_tool_call(session_id="s1", tool_name="read")
        assert not any(
            e.subtype == "tool_call_tracked" for e in engine.event_log.read_session("s1")
        )

    @pytest.mark.asyncio
    async def test_health_evidence_through_engine(self, tmp_path: Path) -> None:
        engine = CoordinationEngine(
            settings=_settings(tmp_path),
            health_probe=FakeHealthProbe(make_health(reservations=1)),
            diff_fn=AsyncMock(return_value=""),
        )
        output: list[str] = []
        assert await engine.on_compaction("s1", output) is Confidence.high
        assert "/repo" in output[0]


class TestReview:
    @pytest.mark.asyncio
    async def test_three_strikes_through_engine(self, engine: CoordinationEngine) -> None:
        results = [
            await engine.review_feedback(
                project_key="/repo", task_id="t1", worker_id="w", status="needs_changes",
                issues=ISSUES, session_id="s1",
            )
            for _ in range(3)
        ]
        assert [r["remaining_attempts"] for r in results] == [2, 1, 0]
        assert results[-1]["task_failed"] is True
        assert engine.is_review_approved("t1") is False

    @pytest.mark.asyncio
    async def test_state_rehydrated_on_restart(self, tmp_path: Path) -> None:
        first = CoordinationEngine(settings=_settings(tmp_path), diff_fn=AsyncMock(return_value=""))
        await first.review_feedback(
            project_key="/repo", task_id="t1", worker_id="w", status="needs_changes",
            issues=ISSUES, session_id="s1",
        )
        await first.review_feedback(
            project_key="/repo", task_id="t2", worker_id="w", status="approved", session_id="s1",
        )

        restarted = CoordinationEngine(
            settings=_settings(tmp_path), diff_fn=AsyncMock(return_value="")
        )
        assert restarted.review_gate.remaining_attempts("t1") == 2
        assert restarted.is_review_approved("t2") is True

        fresh = CoordinationEngine(
            settings=_settings(tmp_path, rehydrate=False), diff_fn=AsyncMock(return_value="")
        )
        assert fresh.review_gate.remaining_attempts("t1") == 3

    @pytest.mark.asyncio
    async def test_prepare_review(self, engine: CoordinationEngine) -> None:
        result = await engine.prepare_review(
            project_key="/repo", epic_id="bd-1", task_id="bd-1.1", files_touched=["a.py"]
        )
        assert "+x" in result["review_prompt"]


class TestExecuteTool:
    @pytest.mark.asyncio
    async def test_coordinator_can_call_review(self, engine: CoordinationEngine) -> None:
        result = await engine.execute_tool(
            "swarm_review_feedback",
            {"project_key": "/repo", "task_id": "t1", "worker_id": "w", "status": "approved"},
            ToolContext(session_id="s1", role=AgentRole.coordinator),
        )
        assert result["success"] is True

    @pytest.mark.asyncio
    async def test_worker_denied(self, engine: CoordinationEngine) -> None:
        result = await engine.execute_tool(
            "swarm_review", {}, ToolContext(session_id="w1", role=AgentRole.worker)
        )
        assert result["error_code"] == "TOOL_NOT_ALLOWED"

    @pytest.mark.asyncio
    async def test_missing_context_is_denied(self, engine: CoordinationEngine) -> None:
        result = await engine.execute_tool(
            "swarm_review_feedback",
            {"project_key": "/repo", "task_id": "t1", "worker_id": "w", "status": "approved"},
        )
        assert result["error_code"] == "TOOL_NOT_ALLOWED"
        assert engine.is_review_approved("t1") is False

    def test_tools_schema_follows_session_role(self, engine: CoordinationEngine) -> None:
        assert engine.tools_schema("s1") == []
        engine.activate_coordinator({"is_coordinator": True}, "s1")
        names = {s["function"]["name"] for s in engine.tools_schema("s1")}
        assert names == {"swarm_review", "swarm_review_feedback"}

    @pytest.mark.asyncio
    async def test_unknown_tool(self, engine: CoordinationEngine) -> None:
        result = await engine.execute_tool("nope", {})
        assert result["error_code"] == "UNKNOWN_TOOL"


class TestSessionSummary:
    def test_summary(self, engine: CoordinationEngine) -> None:
        engine.activate_coordinator({"is_coordinator": True, "epic_id": "bd-1"}, "s1")
        engine.detect_violation(session_id="s1", tool_name="edit", tool_args={})
        summary = engine.session_summary("s1")
        assert summary is not None
        assert summary.epic_id == "bd-1"
        assert len(summary.events) == 1
        assert engine.session_summary("empty") is None

    def test_custom_event_log(self, tmp_path: Path) -> None:
        log = EventLog(tmp_path / "elsewhere")
        engine = CoordinationEngine(
            settings=_settings(tmp_path), event_log=log, diff_fn=AsyncMock(return_value="")
        )
        assert engine.event_log is log
