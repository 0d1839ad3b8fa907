"""Real-time detection of coordinator policy violations.

Coordinators plan and delegate; workers edit, test and reserve. Every tool
call the host observes is checked against VIOLATION_RULES, an ordered tuple
evaluated top to bottom where the first matching rule wins. Detection never
blocks the call, it only reports and records.
"""

from __future__ import annotations

import re
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

import structlog

from src.audit.models import EventType
from src.tools.base import AgentRole

if TYPE_CHECKING:
    from src.audit.log import EventLog

logger = structlog.get_logger()

FILE_MODIFICATION_TOOLS = frozenset({"edit", "write"})
SHELL_TOOLS = frozenset({"bash"})
RESERVATION_TOOLS = frozenset({"swarmmail_reserve", "agentmail_reserve"})
EPIC_CREATION_TOOLS = frozenset({"hive_create_epic"})
TASK_COMPLETION_TOOLS = frozenset({"swarm_complete", "hive_close"})

TEST_EXECUTION_PATTERNS: tuple[re.Pattern[str], ...] = tuple(
    re.compile(p, re.IGNORECASE)
    for p in (
        r"\bbun\s+test\b",
        r"\bnpm\s+(run\s+)?test",
        r"\byarn\s+(run\s+)?test",
        r"\bpnpm\s+(run\s+)?test",
        r"\bjest\b",
        r"\bvitest\b",
        r"\bmocha\b",
        r"\bava\b",
        r"\btape\b",
        r"\.test\.(ts|js|tsx|jsx)\b",
        r"\.spec\.(ts|js|tsx|jsx)\b",
        r"\bpytest\b",
        r"\bpython3?\s+-m\s+(pytest|unittest)\b",
        r"\btox\b",
        r"\bnox\b",
        r"\btest_\w+\.py\b",
        r"\b\w+_test\.py\b",
        r"\bgo\s+test\b",
        r"\bcargo\s+test\b",
    )
)


@dataclass(frozen=True)
class ToolCall:
    """The observed call a rule is evaluated against."""

    tool_name: str
    tool_args: Mapping[str, Any]
    check_no_spawn: bool = False

    def arg_str(self, *keys: str) -> str:
        for key in keys:
            value = self.tool_args.get(key)
            if isinstance(value, str) and value:
                return value
        return ""

    def arg_list(self, key: str) -> list[Any]:
        value = self.tool_args.get(key)
        if isinstance(value, (list, tuple)):
            return list(value)
        return []


@dataclass(frozen=True)
class ViolationRule:
    """One prioritized policy rule. Static, never mutated at runtime."""

    kind: str
    predicate: Callable[[ToolCall], bool]
    message: str
    payload: Callable[[ToolCall], dict[str, Any]]


@dataclass
class ViolationResult:
    is_violation: bool
    violation_kind: str | None = None
    message: str | None = None
    payload: dict[str, Any] = field(default_factory=dict)


def is_test_command(command: str) -> bool:
    return any(pattern.search(command) for pattern in TEST_EXECUTION_PATTERNS)


VIOLATION_RULES: tuple[ViolationRule, ...] = (
    ViolationRule(
        kind="coordinator_edited_file",
        predicate=lambda call: call.tool_name in FILE_MODIFICATION_TOOLS,
        message=(
            "Coordinator should not edit files directly. "
            "Spawn a worker to implement changes."
        ),
        payload=lambda call: {
            "tool": call.tool_name,
            "file": call.arg_str("filePath", "file_path", "path"),
        },
    ),
    ViolationRule(
        kind="coordinator_ran_tests",
        predicate=lambda call: (
            call.tool_name in SHELL_TOOLS and is_test_command(call.arg_str("command"))
        ),
        message=(
            "Coordinator should not run tests directly. "
            "Workers run tests as part of verifying their own implementation."
        ),
        payload=lambda call: {"tool": call.tool_name, "command": call.arg_str("command")},
    ),
    ViolationRule(
        kind="coordinator_reserved_files",
        predicate=lambda call: call.tool_name in RESERVATION_TOOLS,
        message=(
            "Coordinator should not reserve files. "
            "Workers reserve files before editing to prevent conflicts."
        ),
        payload=lambda call: {"tool": call.tool_name, "paths": call.arg_list("paths")},
    ),
    ViolationRule(
        kind="no_worker_spawned",
        predicate=lambda call: call.tool_name in EPIC_CREATION_TOOLS and call.check_no_spawn,
        message=(
            "Coordinator created a decomposition without spawning workers. "
            "After hive_create_epic, call swarm_spawn_subtask for each subtask."
        ),
        payload=lambda call: {
            "epic_title": call.arg_str("epic_title"),
            "subtask_count": len(call.arg_list("subtasks")),
        },
    ),
    ViolationRule(
        kind="worker_completed_without_review",
        predicate=lambda call: call.tool_name in TASK_COMPLETION_TOOLS,
        message=(
            "Coordinator should not complete worker tasks directly. "
            "Review worker output with swarm_review and swarm_review_feedback."
        ),
        payload=lambda call: {"tool": call.tool_name},
    ),
)


def match_rule(
    call: ToolCall, rules: tuple[ViolationRule, ...] = VIOLATION_RULES
) -> ViolationRule | None:
    """Return the first rule whose predicate matches, or None."""
    for rule in rules:
        if rule.predicate(call):
            return rule
    return None


def detect_violation(
    *,
    session_id: str,
    epic_id: str,
    tool_name: str,
    tool_args: Mapping[str, Any] | None,
    role: AgentRole | str,
    check_no_spawn: bool = False,
    event_log: EventLog | None = None,
    rules: tuple[ViolationRule, ...] = VIOLATION_RULES,
) -> ViolationResult:
    """Check one tool call against the coordinator policy.

    Workers short-circuit before any rule is evaluated. On violation a
    VIOLATION event is appended best-effort; a failed append never changes
    the returned result.

    Raises ValueError for an unknown role and TypeError when tool_args is
    not a mapping (caller contract violations).
    """
    agent_role = AgentRole(role)
    if agent_role is not AgentRole.coordinator:
        return ViolationResult(is_violation=False)

    if tool_args is None:
        tool_args = {}
    if not isinstance(tool_args, Mapping):
        raise TypeError(f"tool_args must be a mapping, got {type(tool_args).__name__}")

    call = ToolCall(tool_name=tool_name, tool_args=tool_args, check_no_spawn=check_no_spawn)
    rule = match_rule(call, rules)
    if rule is None:
        return ViolationResult(is_violation=False)

    payload = rule.payload(call)
    logger.warning(
        "violation_detected",
        session_id=session_id,
        epic_id=epic_id,
        violation_kind=rule.kind,
        tool_name=tool_name,
    )

    if event_log is not None:
        try:
            event_log.record(
                session_id=session_id,
                epic_id=epic_id,
                event_type=EventType.violation,
                subtype=rule.kind,
                payload=payload,
            )
        except Exception:
            logger.exception("violation_capture_failed", violation_kind=rule.kind)

    return ViolationResult(
        is_violation=True,
        violation_kind=rule.kind,
        message=rule.message,
        payload=payload,
    )
