from __future__ import annotations

from abc import ABC, abstractmethod
from enum import StrEnum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from src.tools.context import ToolContext


class ToolGroup(StrEnum):
    review = "review"
    coordination = "coordination"


class AgentRole(StrEnum):
    """Who is calling a tool.

    Violation rules only ever apply to the coordinator; workers are free to
    edit, test and reserve.
    """

    coordinator = "coordinator"
    worker = "worker"


class BaseTool(ABC):
    """Abstract base class for coordinator-facing tools."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Unique tool name used in function calling."""
        ...

    @property
    @abstractmethod
    def description(self) -> str:
        """Human-readable description of what the tool does."""
        ...

    @property
    @abstractmethod
    def parameters(self) -> dict:
        """JSON Schema describing the tool's input parameters."""
        ...

    @property
    def group(self) -> ToolGroup:
        """Tool group classification. Conservative default: coordination."""
        return ToolGroup.coordination

    @property
    def allowed_roles(self) -> frozenset[AgentRole]:
        """Roles that may call this tool. Fail-closed: empty by default."""
        return frozenset()

    @abstractmethod
    async def execute(
        self, arguments: dict, context: ToolContext | None = None
    ) -> dict:
        """Execute the tool with given arguments and optional runtime context.

        context is injected by the host with session_id and project_key.
        """
        ...
