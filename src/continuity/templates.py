"""Resumption context injected into a compacted coordinator session."""

from __future__ import annotations

from datetime import UTC, datetime

from src.continuity.models import StructuredFacts, SwarmStateSnapshot

COORDINATOR_RESUME_TEMPLATE = """\
## Coordinator Resumption

You are the coordinator of an active swarm. Your context was compacted
but the swarm is still running. Continue coordinating from where you left off.

### What you do
- Monitor worker progress with swarm_status and swarmmail_inbox.
- Review every completed subtask with swarm_review and record the verdict
  with swarm_review_feedback before the task can close.
- Unblock workers by answering their messages and re-planning if needed.
- Spawn remaining subtasks with swarm_spawn_subtask.
- Close the epic once every subtask is closed.

### What you never do
- Edit or write files yourself. Spawn a worker instead.
- Run tests yourself. Workers run tests for their own subtasks.
- Reserve files. Workers reserve the files they edit.
- Close a subtask that has not passed review.

### Review loop
1. Worker reports completion.
2. Run swarm_review for the task and read the diff.
3. Call swarm_review_feedback with approved or needs_changes.
4. A task rejected three times is blocked and needs re-planning.
"""

DETECTION_FALLBACK_TEMPLATE = """\
## Possible Active Swarm

Signals suggest a swarm may have been running before compaction, but the
state could not be reconstructed with confidence.

Before doing anything else:
1. Scan the remaining context for an epic id, spawned subtasks and worker names.
2. Run swarm_status and swarmmail_inbox to confirm what is still in flight.
3. If a swarm is active, resume as coordinator: delegate, review and unblock.
   Do not edit files or run tests yourself.
4. If nothing is active, continue with the user's request normally.
"""


def detected_header(reasons: tuple[str, ...]) -> str:
    return f"[Swarm detected: {', '.join(reasons)}]"


def possible_header(reasons: tuple[str, ...]) -> str:
    return f"[Possible swarm: {', '.join(reasons)}]"


def _format_timestamp(ts: float | None) -> str:
    if ts is None:
        return "unknown time"
    seconds = ts / 1000 if ts > 1e11 else ts
    return datetime.fromtimestamp(seconds, tz=UTC).isoformat()


def render_dynamic_state(
    facts: StructuredFacts,
    snapshot: SwarmStateSnapshot | None,
    project_path: str,
) -> str:
    """Concrete, session-specific state the coordinator needs to act on."""
    epic_id = facts.epic_id or (snapshot.epic_id if snapshot else None) or "unknown"
    epic_title = facts.epic_title or (snapshot.epic_title if snapshot else None)

    lines = ["## Current Swarm State", ""]
    lines.append(f"**Epic:** {epic_id}" + (f" - {epic_title}" if epic_title else ""))
    lines.append(f"**Project:** {project_path}")
    if facts.agent_name:
        lines.append(f"**Coordinator:** {facts.agent_name}")
    lines.append("")

    lines.append("### Immediate actions")
    lines.append(f'1. swarm_status(epic_id="{epic_id}", project_key="{project_path}")')
    lines.append("2. swarmmail_inbox() to read worker messages")
    lines.append("3. Review any subtask reported complete with swarm_review")
    lines.append("4. Spawn workers for subtasks that are still open")
    lines.append("")

    if facts.subtasks:
        lines.append("### Subtasks")
        for subtask in facts.subtasks:
            line = f"- [{subtask.status}] {subtask.subtask_id}: {subtask.title}"
            if subtask.worker:
                line += f" (worker: {subtask.worker})"
            if subtask.files:
                line += f" files: {', '.join(subtask.files)}"
            lines.append(line)
        lines.append("")
    elif snapshot is not None and snapshot.epic_id:
        counts = snapshot.subtask_counts
        lines.append("### Subtasks")
        lines.append(
            f"{counts.total} total: {counts.closed} closed, {counts.in_progress} in progress, "
            f"{counts.open} open, {counts.blocked} blocked"
        )
        lines.append("")

    if facts.last_action is not None:
        lines.append(
            f"**Last action:** {facts.last_action.tool} at "
            f"{_format_timestamp(facts.last_action.timestamp)}"
        )

    return "\n".join(lines).rstrip()


def render_full_context(reasons: tuple[str, ...], dynamic_state: str) -> str:
    return "\n\n".join([detected_header(reasons), dynamic_state, COORDINATOR_RESUME_TEMPLATE])


def render_fallback_context(reasons: tuple[str, ...]) -> str:
    return "\n\n".join([possible_header(reasons), DETECTION_FALLBACK_TEMPLATE])
