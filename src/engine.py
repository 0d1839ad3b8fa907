"""Host-facing entry points for the coordinator integrity engine.

The host calls these from its plugin hooks: after every tool call, at the
compaction boundary, and when the coordinator uses the review tools. One
engine per host process.
"""

from __future__ import annotations

import time
from collections.abc import Callable, Mapping, Sequence
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

import structlog

from src.audit.log import EventLog
from src.audit.models import CoordinatorSession, EventType
from src.config.settings import Settings
from src.continuity.detector import ContinuityDetector
from src.continuity.models import Confidence
from src.coordinator.context import CoordinatorContext, CoordinatorContextRegistry
from src.coordinator.planning import TodoWriteAnalysis, analyze_todo_write, should_analyze_tool
from src.coordinator.violations import ViolationResult, detect_violation
from src.review.gate import DiffFn, ReviewGate, make_git_diff
from src.tools.base import AgentRole
from src.tools.builtins import register_builtins
from src.tools.context import ToolContext
from src.tools.registry import ToolRegistry

if TYPE_CHECKING:
    from src.continuity.collaborators import CellStore, HealthProbe, Notifier, SessionHistory

logger = structlog.get_logger()


class CoordinationEngine:
    """Wires the event log, context registry, review gate and detector."""

    def __init__(
        self,
        *,
        settings: Settings | None = None,
        event_log: EventLog | None = None,
        cell_store: CellStore | None = None,
        health_probe: HealthProbe | None = None,
        session_history: SessionHistory | None = None,
        notifier: Notifier | None = None,
        project_resolver: Callable[[], str] | None = None,
        diff_fn: DiffFn | None = None,
        now_fn: Callable[[], float] = time.time,
    ) -> None:
        self._settings = settings or Settings()
        self.event_log = event_log or EventLog(self._settings.event_log.sessions_dir)
        self.contexts = CoordinatorContextRegistry(
            timeout_s=self._settings.coordinator.context_timeout_s,
            now_fn=now_fn,
        )
        self.review_gate = ReviewGate(
            event_log=self.event_log,
            cell_store=cell_store,
            notifier=notifier,
            diff_fn=diff_fn or make_git_diff(self._settings.review.git_diff_timeout_s),
            max_attempts=self._settings.review.max_attempts,
            now_fn=now_fn,
        )
        self.detector = ContinuityDetector(
            event_log=self.event_log,
            session_history=session_history,
            health_probe=health_probe,
            cell_store=cell_store,
            project_resolver=project_resolver,
            settings=self._settings.continuity,
            now_fn=lambda: datetime.fromtimestamp(now_fn(), tz=UTC),
        )
        self.tools = ToolRegistry()
        register_builtins(self.tools, review_gate=self.review_gate)
        # Sessions that received resumption context and have not made a tool call since
        self._resumed_sessions: set[str] = set()

        if self._settings.review.rehydrate_from_log:
            self._rehydrate_reviews()

    def _rehydrate_reviews(self) -> None:
        # A corrupt log must not keep the host from starting
        try:
            self.review_gate.rehydrate(self.event_log.read_all())
        except Exception:
            logger.exception("review_rehydrate_failed")

    # ------------------------------------------------------------------
    # Coordinator context
    # ------------------------------------------------------------------

    def activate_coordinator(
        self, fields: Mapping[str, Any], session_id: str | None = None
    ) -> CoordinatorContext:
        return self.contexts.activate(fields, session_id)

    def role_for(self, session_id: str | None) -> AgentRole:
        """A session is a coordinator only while its context is active."""
        if self.contexts.is_active(session_id):
            return AgentRole.coordinator
        return AgentRole.worker

    def _epic_for(self, session_id: str | None) -> str:
        return self.contexts.read(session_id).epic_id or "unknown"

    # ------------------------------------------------------------------
    # Tool call hooks
    # ------------------------------------------------------------------

    def detect_violation(
        self,
        *,
        session_id: str,
        tool_name: str,
        tool_args: Mapping[str, Any] | None = None,
        role: AgentRole | str | None = None,
        epic_id: str | None = None,
        check_no_spawn: bool = False,
    ) -> ViolationResult:
        """Check a tool call; role and epic default to the session's context."""
        return detect_violation(
            session_id=session_id,
            epic_id=epic_id or self._epic_for(session_id),
            tool_name=tool_name,
            tool_args=tool_args,
            role=role if role is not None else self.role_for(session_id),
            check_no_spawn=check_no_spawn,
            event_log=self.event_log,
        )

    def analyze_planning(
        self, *, session_id: str, tool_name: str, tool_args: Mapping[str, Any] | None
    ) -> TodoWriteAnalysis | None:
        """Delegation hint for a coordinator writing an implementation todo list."""
        if not should_analyze_tool(tool_name):
            return None
        if self.role_for(session_id) is not AgentRole.coordinator:
            return None
        analysis = analyze_todo_write(tool_args or {})
        if analysis.looks_like_parallel_work:
            logger.warning(
                "coordinator_planning_inline",
                session_id=session_id,
                file_modifications=analysis.file_modification_count,
                total=analysis.total_count,
            )
        return analysis

    def after_tool_call(
        self,
        *,
        session_id: str,
        tool_name: str,
        tool_args: Mapping[str, Any] | None = None,
        role: AgentRole | str | None = None,
    ) -> ViolationResult:
        """Host hook run after every tool call.

        The first call after a resumption context was injected is tracked
        once, so resumed coordinators can be evaluated on their discipline.
        """
        result = self.detect_violation(
            session_id=session_id,
            tool_name=tool_name,
            tool_args=tool_args,
            role=role,
        )
        if session_id in self._resumed_sessions:
            self._resumed_sessions.discard(session_id)
            self.event_log.record(
                session_id=session_id,
                epic_id=self._epic_for(session_id),
                event_type=EventType.compaction,
                subtype="tool_call_tracked",
                payload={"tool": tool_name, "is_violation": result.is_violation},
            )
        return result

    # ------------------------------------------------------------------
    # Compaction
    # ------------------------------------------------------------------

    async def on_compaction(self, session_id: str, output: list[str]) -> Confidence:
        confidence = await self.detector.on_compaction(session_id, output)
        if confidence.at_least(Confidence.low):
            self._resumed_sessions.add(session_id)
        return confidence

    # ------------------------------------------------------------------
    # Review
    # ------------------------------------------------------------------

    async def review_feedback(
        self,
        *,
        project_key: str,
        task_id: str,
        worker_id: str,
        status: str,
        summary: str | None = None,
        issues: Any = None,
        session_id: str | None = None,
    ) -> dict[str, Any]:
        return await self.review_gate.review_feedback(
            project_key=project_key,
            task_id=task_id,
            worker_id=worker_id,
            status=status,
            summary=summary,
            issues=issues,
            session_id=session_id,
        )

    async def prepare_review(
        self,
        *,
        project_key: str,
        epic_id: str,
        task_id: str,
        files_touched: Sequence[str] | None = None,
    ) -> dict[str, Any]:
        return await self.review_gate.prepare_review(
            project_key=project_key,
            epic_id=epic_id,
            task_id=task_id,
            files_touched=files_touched,
        )

    def is_review_approved(self, task_id: str) -> bool:
        return self.review_gate.is_review_approved(task_id)

    def tools_schema(self, session_id: str | None) -> list[dict]:
        """Function-calling schema of the tools this session's role may call."""
        return self.tools.get_tools_schema(self.role_for(session_id))

    async def execute_tool(
        self, name: str, arguments: dict, context: ToolContext | None = None
    ) -> dict:
        """Dispatch a coordinator tool call, enforcing role access.

        Without a context the caller is treated as a worker.
        """
        context = context or ToolContext()
        tool = self.tools.get(name)
        if tool is None:
            return {"error_code": "UNKNOWN_TOOL", "message": f"Unknown tool: {name}"}
        if not self.tools.check_role(name, context.role):
            logger.warning("tool_denied", tool_name=name, role=context.role.value)
            return {
                "error_code": "TOOL_NOT_ALLOWED",
                "message": f"Tool '{name}' is not available to role '{context.role}'",
            }
        return await tool.execute(arguments, context)

    # ------------------------------------------------------------------
    # Audit
    # ------------------------------------------------------------------

    def session_summary(self, session_id: str) -> CoordinatorSession | None:
        return self.event_log.summarize_session(session_id, self._epic_for(session_id))
