from __future__ import annotations

import structlog

from src.tools.base import AgentRole, BaseTool

logger = structlog.get_logger()


class ToolRegistry:
    """Registry for coordinator tools. Provides lookup and role-aware filtering."""

    def __init__(self) -> None:
        self._tools: dict[str, BaseTool] = {}

    def register(self, tool: BaseTool) -> None:
        """Register a tool. Raises ValueError if name already registered."""
        if tool.name in self._tools:
            raise ValueError(f"Tool already registered: {tool.name}")
        if not tool.allowed_roles:
            logger.warning(
                "tool_registered_without_roles",
                tool_name=tool.name,
                msg="Tool has empty allowed_roles (fail-closed default); "
                "no role can call it.",
            )
        self._tools[tool.name] = tool
        logger.info("tool_registered", tool_name=tool.name)

    def get(self, name: str) -> BaseTool | None:
        """Get a tool by name. Returns None if not found."""
        return self._tools.get(name)

    def get_effective_roles(self, tool_name: str) -> frozenset[AgentRole]:
        """Return the roles that may call a tool. Empty for unknown tools."""
        tool = self._tools.get(tool_name)
        if tool is None:
            return frozenset()
        return tool.allowed_roles

    def check_role(self, tool_name: str, role: AgentRole) -> bool:
        """Check if a role may call a tool. False for unknown tools."""
        return role in self.get_effective_roles(tool_name)

    def list_tools(self, role: AgentRole) -> list[BaseTool]:
        """Return tools the given role may call."""
        return [
            tool for tool in self._tools.values()
            if role in self.get_effective_roles(tool.name)
        ]

    def get_tools_schema(self, role: AgentRole) -> list[dict]:
        """Return tools in function calling format, filtered by role.

        Output format:
        [{"type": "function", "function": {"name": ..., "description": ..., "parameters": ...}}]
        """
        return [
            {
                "type": "function",
                "function": {
                    "name": tool.name,
                    "description": tool.description,
                    "parameters": tool.parameters,
                },
            }
            for tool in self.list_tools(role)
        ]
