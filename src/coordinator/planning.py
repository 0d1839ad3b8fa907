"""Planning guardrail: spot implementation plans hiding in a todo list.

A coordinator that writes six or more todos which mostly name files to
change is about to do the work itself. The analysis is advisory only; the
todo write still goes through.
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

_SOURCE_EXT = r"\.(ts|js|tsx|jsx|py|rs|go|java|rb|swift|kt)"

FILE_MODIFICATION_PATTERNS: tuple[re.Pattern[str], ...] = tuple(
    re.compile(p, re.IGNORECASE)
    for p in (
        r"\bimplement\b",
        rf"\bcreate\b.*{_SOURCE_EXT}",
        rf"\badd\b.*{_SOURCE_EXT}",
        rf"\bupdate\b.*{_SOURCE_EXT}",
        r"\bmodify\b",
        r"\brefactor\b",
        r"\bextract\b",
        r"\bmigrate\b",
        r"\bconvert\b",
        r"\brewrite\b",
        rf"\bfix\b.*{_SOURCE_EXT}",
        rf"\bwrite\b.*{_SOURCE_EXT}",
        r"src/",
        r"lib/",
        r"packages?/",
        r"components?/",
    )
)

TRACKING_PATTERNS: tuple[re.Pattern[str], ...] = tuple(
    re.compile(p, re.IGNORECASE)
    for p in (
        r"\breview\b",
        r"\bcheck\b",
        r"\bverify\b",
        r"\btest\b.*pass",
        r"\brun\b.*test",
        r"\bdeploy\b",
        r"\bmerge\b",
        r"\bpr\b",
        r"\bpush\b",
        r"\bcommit\b",
    )
)

MIN_TODOS_FOR_ANALYSIS = 6
MIN_FILE_MODIFICATIONS = 4
FILE_MODIFICATION_RATIO = 0.5

TODO_WRITE_TOOLS = frozenset({"todowrite", "TodoWrite"})


@dataclass(frozen=True)
class TodoWriteAnalysis:
    looks_like_parallel_work: bool
    file_modification_count: int
    total_count: int
    warning: str | None = None


def should_analyze_tool(tool_name: str) -> bool:
    return tool_name in TODO_WRITE_TOOLS


def is_file_modification(content: str) -> bool:
    """Implementation-shaped and not tracking-shaped."""
    if not any(p.search(content) for p in FILE_MODIFICATION_PATTERNS):
        return False
    return not any(p.search(content) for p in TRACKING_PATTERNS)


def analyze_todo_write(args: Mapping[str, Any]) -> TodoWriteAnalysis:
    todos = args.get("todos")
    if not isinstance(todos, list):
        return TodoWriteAnalysis(False, 0, 0)
    if len(todos) < MIN_TODOS_FOR_ANALYSIS:
        return TodoWriteAnalysis(False, 0, len(todos))

    file_mods = 0
    for todo in todos:
        if not isinstance(todo, Mapping):
            continue
        content = todo.get("content")
        if isinstance(content, str) and is_file_modification(content):
            file_mods += 1

    ratio = file_mods / len(todos)
    if ratio >= FILE_MODIFICATION_RATIO and file_mods >= MIN_FILE_MODIFICATIONS:
        warning = (
            f"This looks like a multi-file implementation plan "
            f"({file_mods}/{len(todos)} items are file modifications).\n\n"
            "Consider delegating instead:\n"
            "  swarm_decompose -> hive_create_epic -> swarm_spawn_subtask per task\n\n"
            "The todo list is for tracking progress, not for parallelizable "
            f"implementation work. Workers can complete these {file_mods} tasks "
            "in parallel.\n\n"
            "(The todo write continues; this is a suggestion.)"
        )
        return TodoWriteAnalysis(True, file_mods, len(todos), warning)

    return TodoWriteAnalysis(False, file_mods, len(todos))
