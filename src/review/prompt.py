"""Review prompt rendering.

The prompt is epic-aware: besides the diff it shows the epic goal, what the
task builds on and what depends on it, so the reviewer judges integration
and not only local correctness.
"""

from __future__ import annotations

from src.review.models import ReviewPromptContext

_REVIEW_CRITERIA = (
    "1. **Fulfills Requirements**: Does the code implement what the task requires?",
    "2. **Serves Epic Goal**: Does this work contribute to the overall epic objective?",
    "3. **Enables Downstream**: Can downstream tasks use this work as expected?",
    "4. **Type Safety**: Are types correct and complete?",
    "5. **No Critical Bugs**: Are there any obvious bugs or issues?",
    "6. **Test Coverage**: Are there tests for the new code? (warning only)",
)

_RESPONSE_FORMAT = """\
{
  "status": "approved" | "needs_changes",
  "summary": "Brief summary of your review",
  "issues": [
    {
      "file": "path/to/file.py",
      "line": 42,
      "issue": "Description of the problem",
      "suggestion": "How to fix it"
    }
  ]
}"""


def generate_review_prompt(context: ReviewPromptContext) -> str:
    sections: list[str] = [f"# Code Review: {context.task_title}", ""]

    sections.append("## Epic Goal")
    sections.append(f"**{context.epic_title}**")
    if context.epic_description:
        sections.append(context.epic_description)
    sections.append("")

    sections.append("## Task Requirements")
    sections.append(f"**{context.task_title}**")
    if context.task_description:
        sections.append(context.task_description)
    sections.append("")

    if context.completed_dependencies:
        sections.append("## This Task Builds On")
        for dep in context.completed_dependencies:
            sections.append(f"- **{dep.title}** ({dep.id})")
            if dep.summary:
                sections.append(f"  {dep.summary}")
        sections.append("")

    if context.downstream_tasks:
        sections.append("## Downstream Tasks (depend on this)")
        for task in context.downstream_tasks:
            sections.append(f"- **{task.title}** ({task.id})")
        sections.append("")

    sections.append("## Files Modified")
    for path in context.files_touched:
        sections.append(f"- `{path}`")
    sections.append("")

    sections.append("## Code Changes")
    sections.append("```diff")
    sections.append(context.diff)
    sections.append("```")
    sections.append("")

    sections.append("## Review Criteria")
    sections.append("")
    sections.append("Please evaluate the changes against these criteria:")
    sections.append("")
    sections.extend(_REVIEW_CRITERIA)
    sections.append("")

    sections.append("## Response Format")
    sections.append("")
    sections.append("Respond with a JSON object:")
    sections.append("```json")
    sections.append(_RESPONSE_FORMAT)
    sections.append("```")

    return "\n".join(sections)
