from __future__ import annotations

import json
from dataclasses import dataclass
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, TypeAdapter, ValidationError

MAX_REVIEW_ATTEMPTS = 3


class ReviewDecision(StrEnum):
    approved = "approved"
    needs_changes = "needs_changes"


class ReviewIssue(BaseModel):
    """A specific problem found during review."""

    file: str
    line: int | None = None
    issue: str
    suggestion: str | None = None


_ISSUE_LIST = TypeAdapter(list[ReviewIssue])


def parse_issues(raw: Any) -> list[ReviewIssue]:
    """Accept a JSON string or a list of mappings/ReviewIssue.

    Raises ValueError with a caller-facing message on malformed input.
    """
    if raw is None or raw == "":
        return []
    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except json.JSONDecodeError as e:
            raise ValueError("Failed to parse issues JSON") from e
    try:
        return _ISSUE_LIST.validate_python(raw)
    except ValidationError as e:
        raise ValueError(
            "issues must be a list of {file, issue, line?, suggestion?} objects"
        ) from e


@dataclass(frozen=True)
class ReviewStatus:
    """Queryable review state of one task."""

    reviewed: bool
    approved: bool
    blocked: bool
    attempt_count: int
    remaining_attempts: int


@dataclass(frozen=True)
class DependencyInfo:
    id: str
    title: str
    summary: str | None = None


@dataclass(frozen=True)
class DownstreamTask:
    id: str
    title: str


@dataclass
class ReviewPromptContext:
    epic_id: str
    epic_title: str
    task_id: str
    task_title: str
    files_touched: list[str]
    diff: str
    epic_description: str | None = None
    task_description: str | None = None
    completed_dependencies: list[DependencyInfo] | None = None
    downstream_tasks: list[DownstreamTask] | None = None
