"""Structured scan: replay completed tool calls into coordination facts.

Pure: no I/O, no clock. Unknown tools and malformed entries are skipped
silently; the replay never fails.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import Any

from src.continuity.collaborators import ToolInvocation
from src.continuity.models import LastAction, StructuredFacts, SubtaskFact

EPIC_CREATE_TOOL = "hive_create_epic"
AGENT_INIT_TOOL = "swarmmail_init"
SPAWN_SUBTASK_TOOL = "swarm_spawn_subtask"
COMPLETE_SUBTASK_TOOL = "swarm_complete"
STATUS_TOOL = "swarm_status"


def _str_or_none(value: Any) -> str | None:
    return value if isinstance(value, str) and value else None


def _str_tuple(value: Any) -> tuple[str, ...]:
    if not isinstance(value, (list, tuple)):
        return ()
    return tuple(item for item in value if isinstance(item, str))


class _ScanState:
    def __init__(self) -> None:
        self.epic_id: str | None = None
        self.epic_title: str | None = None
        self.project_path: str | None = None
        self.agent_name: str | None = None
        self.subtasks: dict[str, SubtaskFact] = {}
        self.last_action: LastAction | None = None

    def freeze(self) -> StructuredFacts:
        return StructuredFacts(
            epic_id=self.epic_id,
            epic_title=self.epic_title,
            project_path=self.project_path,
            agent_name=self.agent_name,
            subtasks=tuple(self.subtasks.values()),
            last_action=self.last_action,
        )


def _on_epic_created(state: _ScanState, call: ToolInvocation) -> None:
    if not isinstance(call.output, Mapping):
        return
    epic = call.output.get("epic")
    if isinstance(epic, Mapping):
        epic_id = _str_or_none(epic.get("id"))
        if epic_id:
            state.epic_id = epic_id
    title = _str_or_none(call.input.get("epic_title"))
    if title:
        state.epic_title = title


def _on_agent_init(state: _ScanState, call: ToolInvocation) -> None:
    if not isinstance(call.output, Mapping):
        return
    agent_name = _str_or_none(call.output.get("agent_name"))
    if agent_name:
        state.agent_name = agent_name
    project_key = _str_or_none(call.output.get("project_key"))
    if project_key:
        state.project_path = project_key


def _on_subtask_spawned(state: _ScanState, call: ToolInvocation) -> None:
    bead_id = _str_or_none(call.input.get("bead_id"))
    title = _str_or_none(call.input.get("subtask_title"))
    if not bead_id or not title:
        return
    worker = None
    if isinstance(call.output, Mapping):
        worker = _str_or_none(call.output.get("worker"))
    state.subtasks[bead_id] = SubtaskFact(
        subtask_id=bead_id,
        title=title,
        status="spawned",
        worker=worker,
        files=_str_tuple(call.input.get("files")),
    )
    epic_id = _str_or_none(call.input.get("epic_id"))
    if epic_id and not state.epic_id:
        state.epic_id = epic_id


def _on_subtask_completed(state: _ScanState, call: ToolInvocation) -> None:
    bead_id = _str_or_none(call.input.get("bead_id"))
    existing = state.subtasks.get(bead_id) if bead_id else None
    if existing is None:
        return
    state.subtasks[existing.subtask_id] = SubtaskFact(
        subtask_id=existing.subtask_id,
        title=existing.title,
        status="completed",
        worker=existing.worker,
        files=existing.files,
    )


def _on_status(state: _ScanState, call: ToolInvocation) -> None:
    epic_id = _str_or_none(call.input.get("epic_id"))
    if epic_id and not state.epic_id:
        state.epic_id = epic_id
    project_key = _str_or_none(call.input.get("project_key"))
    if project_key and not state.project_path:
        state.project_path = project_key


_HANDLERS = {
    EPIC_CREATE_TOOL: _on_epic_created,
    AGENT_INIT_TOOL: _on_agent_init,
    SPAWN_SUBTASK_TOOL: _on_subtask_spawned,
    COMPLETE_SUBTASK_TOOL: _on_subtask_completed,
    STATUS_TOOL: _on_status,
}


def normalize_invocations(entries: Iterable[Any]) -> list[ToolInvocation]:
    """Keep completed calls only; drop anything that is not a usable entry."""
    calls: list[ToolInvocation] = []
    for entry in entries:
        if isinstance(entry, ToolInvocation):
            calls.append(entry)
        elif isinstance(entry, Mapping):
            call = ToolInvocation.from_mapping(entry)
            if call is not None:
                calls.append(call)
    return calls


def structured_facts(invocations: Iterable[ToolInvocation]) -> StructuredFacts:
    """Fold completed tool calls, oldest first, into StructuredFacts."""
    state = _ScanState()
    for call in invocations:
        state.last_action = LastAction(tool=call.tool_name, timestamp=call.end_ts)
        handler = _HANDLERS.get(call.tool_name)
        if handler is None:
            continue
        try:
            handler(state, call)
        except (AttributeError, TypeError, ValueError):
            # Shapes we did not anticipate; the entry simply contributes nothing
            continue
    return state.freeze()
