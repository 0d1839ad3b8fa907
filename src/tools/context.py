from __future__ import annotations

from dataclasses import dataclass

from src.tools.base import AgentRole


@dataclass(frozen=True)
class ToolContext:
    """Runtime context injected into tool execution by the host.

    session_id: host session identifier (audit events are filed under it).
    role: the caller's role; tools consume it, never re-derive it.
    """

    session_id: str = "unknown"
    role: AgentRole = AgentRole.worker
