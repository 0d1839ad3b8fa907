"""Review tools: prepare a review prompt and record the verdict."""

from __future__ import annotations

from typing import TYPE_CHECKING

from src.tools.base import AgentRole, BaseTool, ToolGroup

if TYPE_CHECKING:
    from src.review.gate import ReviewGate
    from src.tools.context import ToolContext


def _missing_args(arguments: dict, names: tuple[str, ...]) -> list[str]:
    return [
        name for name in names
        if not isinstance(arguments.get(name), str) or not arguments[name].strip()
    ]


class SwarmReviewTool(BaseTool):
    """Generate an epic-aware review prompt for a completed subtask."""

    def __init__(self, gate: ReviewGate) -> None:
        self._gate = gate

    @property
    def name(self) -> str:
        return "swarm_review"

    @property
    def description(self) -> str:
        return (
            "Generate a review prompt for a worker's completed subtask, including "
            "the epic goal, dependencies, downstream tasks and the git diff."
        )

    @property
    def group(self) -> ToolGroup:
        return ToolGroup.review

    @property
    def allowed_roles(self) -> frozenset[AgentRole]:
        return frozenset({AgentRole.coordinator})

    @property
    def parameters(self) -> dict:
        return {
            "type": "object",
            "properties": {
                "project_key": {"type": "string", "description": "Project path."},
                "epic_id": {"type": "string", "description": "Epic cell ID."},
                "task_id": {"type": "string", "description": "Subtask cell ID."},
                "files_touched": {
                    "type": "array",
                    "items": {"type": "string"},
                    "description": "Files modified by the worker.",
                },
            },
            "required": ["project_key", "epic_id", "task_id"],
        }

    async def execute(
        self, arguments: dict, context: ToolContext | None = None
    ) -> dict:
        missing = _missing_args(arguments, ("project_key", "epic_id", "task_id"))
        if missing:
            return {
                "error_code": "INVALID_ARGS",
                "message": f"Missing or empty arguments: {', '.join(missing)}",
            }
        files = arguments.get("files_touched") or []
        if not isinstance(files, list) or not all(isinstance(f, str) for f in files):
            return {
                "error_code": "INVALID_ARGS",
                "message": "files_touched must be a list of strings.",
            }
        return await self._gate.prepare_review(
            project_key=arguments["project_key"],
            epic_id=arguments["epic_id"],
            task_id=arguments["task_id"],
            files_touched=files,
        )


class SwarmReviewFeedbackTool(BaseTool):
    """Record the coordinator's review verdict for a subtask.

    The audit session comes from context.session_id (injected by the host);
    the tool never derives it.
    """

    def __init__(self, gate: ReviewGate) -> None:
        self._gate = gate

    @property
    def name(self) -> str:
        return "swarm_review_feedback"

    @property
    def description(self) -> str:
        return (
            "Send review feedback to a worker. Tracks attempts (max 3). "
            "After 3 rejections the task is marked blocked."
        )

    @property
    def group(self) -> ToolGroup:
        return ToolGroup.review

    @property
    def allowed_roles(self) -> frozenset[AgentRole]:
        return frozenset({AgentRole.coordinator})

    @property
    def parameters(self) -> dict:
        return {
            "type": "object",
            "properties": {
                "project_key": {"type": "string", "description": "Project path."},
                "task_id": {"type": "string", "description": "Subtask cell ID."},
                "worker_id": {"type": "string", "description": "Worker agent name."},
                "status": {
                    "type": "string",
                    "enum": ["approved", "needs_changes"],
                    "description": "Review verdict.",
                },
                "summary": {"type": "string", "description": "Review summary."},
                "issues": {
                    "type": "string",
                    "description": "JSON array of {file, line?, issue, suggestion?}.",
                },
            },
            "required": ["project_key", "task_id", "worker_id", "status"],
        }

    async def execute(
        self, arguments: dict, context: ToolContext | None = None
    ) -> dict:
        missing = _missing_args(arguments, ("project_key", "task_id", "worker_id"))
        if missing:
            return {
                "success": False,
                "error": f"Missing or empty arguments: {', '.join(missing)}",
            }
        summary = arguments.get("summary")
        return await self._gate.review_feedback(
            project_key=arguments["project_key"],
            task_id=arguments["task_id"],
            worker_id=arguments["worker_id"],
            status=arguments.get("status", ""),
            summary=summary if isinstance(summary, str) else None,
            issues=arguments.get("issues"),
            session_id=context.session_id if context else None,
        )
