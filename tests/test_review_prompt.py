"""Tests for review prompt rendering and issue parsing."""

from __future__ import annotations

import pytest

from src.review.models import (
    DependencyInfo,
    DownstreamTask,
    ReviewIssue,
    ReviewPromptContext,
    parse_issues,
)
from src.review.prompt import generate_review_prompt


def _context(**kwargs) -> ReviewPromptContext:
    defaults = {
        "epic_id": "bd-1",
        "epic_title": "Auth overhaul",
        "task_id": "bd-1.1",
        "task_title": "Token service",
        "files_touched": ["src/token.py"],
        "diff": "+def issue_token(): ...",
    }
    defaults.update(kwargs)
    return ReviewPromptContext(**defaults)


class TestGenerateReviewPrompt:
    def test_minimal_sections(self) -> None:
        prompt = generate_review_prompt(_context())
        assert prompt.startswith("# Code Review: Token service")
        assert "## Epic Goal" in prompt
        assert "- `src/token.py`" in prompt
        assert "```diff\n+def issue_token(): ...\n```" in prompt
        assert "## This Task Builds On" not in prompt
        assert "## Downstream Tasks" not in prompt

    def test_all_six_criteria(self) -> None:
        prompt = generate_review_prompt(_context())
        for n in range(1, 7):
            assert f"{n}. **" in prompt
        assert "(warning only)" in prompt

    def test_response_format(self) -> None:
        prompt = generate_review_prompt(_context())
        assert '"status": "approved" | "needs_changes"' in prompt

    def test_dependencies_and_downstream(self) -> None:
        prompt = generate_review_prompt(
            _context(
                epic_description="Move to JWT",
                completed_dependencies=[DependencyInfo("bd-1.0", "User model", "Added table")],
                downstream_tasks=[DownstreamTask("bd-1.2", "Login endpoint")],
            )
        )
        assert "Move to JWT" in prompt
        assert "- **User model** (bd-1.0)\n  Added table" in prompt
        assert "- **Login endpoint** (bd-1.2)" in prompt


class TestParseIssues:
    def test_empty(self) -> None:
        assert parse_issues(None) == []
        assert parse_issues("") == []

    def test_list_of_mappings(self) -> None:
        [issue] = parse_issues([{"file": "a.py", "issue": "bug", "line": 3}])
        assert issue == ReviewIssue(file="a.py", issue="bug", line=3)

    def test_json_string(self) -> None:
        [issue] = parse_issues('[{"file": "a.py", "issue": "bug", "suggestion": "fix it"}]')
        assert issue.suggestion == "fix it"
        assert issue.line is None

    def test_bad_json(self) -> None:
        with pytest.raises(ValueError, match="Failed to parse issues JSON"):
            parse_issues("{oops")

    def test_wrong_shape(self) -> None:
        with pytest.raises(ValueError, match="issues must be a list"):
            parse_issues({"file": "a.py"})
