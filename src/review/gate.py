"""Bounded-retry review gate between worker completion and task closure.

State per task_id:
    not reviewed -> approved                      (terminal, attempts cleared)
    not reviewed -> needs_changes(attempt) -> ... (loops while attempts remain)
    needs_changes(max_attempts) -> blocked        (terminal, cell marked blocked)

Validation failures come back as {"success": False, "error": ...}; they are
never raised. Audit writes, cell status changes and worker notifications are
best-effort and cannot change the feedback result.
"""

from __future__ import annotations

import asyncio
import subprocess
import time
from collections.abc import Awaitable, Callable, Iterable, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Any

import structlog

from src.audit.models import CoordinatorEvent, EventType
from src.continuity.collaborators import as_cell
from src.infra.errors import ReviewError
from src.review.models import (
    MAX_REVIEW_ATTEMPTS,
    DependencyInfo,
    DownstreamTask,
    ReviewDecision,
    ReviewIssue,
    ReviewPromptContext,
    ReviewStatus,
    parse_issues,
)
from src.review.prompt import generate_review_prompt

if TYPE_CHECKING:
    from src.audit.log import EventLog
    from src.continuity.collaborators import Cell, CellStore, Notifier

logger = structlog.get_logger()

DiffFn = Callable[[str, Sequence[str]], Awaitable[str]]

_NO_DIFF = "(no diff available)"


@dataclass
class _ApprovalRecord:
    approved: bool
    timestamp: float


def epic_id_for_task(task_id: str) -> str:
    """Subtask ids are '<epic>.<n>'; a bare id is its own epic."""
    return task_id.split(".", 1)[0] if "." in task_id else task_id


def _run_git_diff(project_key: str, files: Sequence[str], timeout_s: float) -> str:
    result = subprocess.run(
        ["git", "diff", "HEAD~1", "--", *files],
        cwd=project_key,
        capture_output=True,
        text=True,
        timeout=timeout_s,
        check=False,
    )
    if result.returncode == 0:
        return result.stdout
    staged = subprocess.run(
        ["git", "diff", "--cached", "--", *files],
        cwd=project_key,
        capture_output=True,
        text=True,
        timeout=timeout_s,
        check=False,
    )
    return staged.stdout


def make_git_diff(timeout_s: float = 10.0) -> DiffFn:
    """Diff against the previous commit, falling back to the staged diff."""

    async def diff(project_key: str, files: Sequence[str]) -> str:
        if not Path(project_key).is_dir():
            return ""
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, _run_git_diff, project_key, files, timeout_s)

    return diff


async def _get_cell(store: CellStore, project_key: str, cell_id: str) -> Cell | None:
    raw = await store.get_cell(project_key, cell_id)
    return as_cell(raw) if raw is not None else None


async def _sibling_context(
    store: CellStore, project_key: str, epic_id: str, task_id: str
) -> tuple[list[DependencyInfo], list[DownstreamTask]]:
    # Without a dependency graph: closed siblings are what this builds on,
    # everything still open may depend on it.
    completed: list[DependencyInfo] = []
    downstream: list[DownstreamTask] = []
    siblings = await store.query_cells(project_key, {"parent_id": epic_id})
    for raw in siblings:
        cell = as_cell(raw)
        if cell.cell_id == task_id:
            continue
        if cell.status == "closed":
            completed.append(
                DependencyInfo(id=cell.cell_id, title=cell.title, summary=cell.closed_reason)
            )
        else:
            downstream.append(DownstreamTask(id=cell.cell_id, title=cell.title))
    return completed, downstream


class ReviewGate:
    """Attempt counters and approval flags for every reviewed task.

    One instance per host process; every structure is keyed by task_id.
    """

    def __init__(
        self,
        *,
        event_log: EventLog | None = None,
        cell_store: CellStore | None = None,
        notifier: Notifier | None = None,
        diff_fn: DiffFn | None = None,
        max_attempts: int = MAX_REVIEW_ATTEMPTS,
        now_fn: Callable[[], float] = time.time,
    ) -> None:
        if max_attempts < 1:
            raise ReviewError(f"max_attempts must be >= 1, got {max_attempts}")
        self._event_log = event_log
        self._cell_store = cell_store
        self._notifier = notifier
        self._diff_fn = diff_fn or make_git_diff()
        self._max_attempts = max_attempts
        self._now = now_fn
        self._attempts: dict[str, int] = {}
        self._approvals: dict[str, _ApprovalRecord] = {}
        self._blocked: set[str] = set()

    @property
    def max_attempts(self) -> int:
        return self._max_attempts

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def attempt_count(self, task_id: str) -> int:
        return self._attempts.get(task_id, 0)

    def remaining_attempts(self, task_id: str) -> int:
        return max(0, self._max_attempts - self.attempt_count(task_id))

    def is_review_approved(self, task_id: str) -> bool:
        """Queried by the completion path before a task may close."""
        record = self._approvals.get(task_id)
        return record.approved if record else False

    def is_blocked(self, task_id: str) -> bool:
        return task_id in self._blocked

    def review_status(self, task_id: str) -> ReviewStatus:
        record = self._approvals.get(task_id)
        return ReviewStatus(
            reviewed=record is not None or task_id in self._attempts,
            approved=record.approved if record else False,
            blocked=task_id in self._blocked,
            attempt_count=self.attempt_count(task_id),
            remaining_attempts=self.remaining_attempts(task_id),
        )

    # ------------------------------------------------------------------
    # Direct state changes
    # ------------------------------------------------------------------

    def mark_review_approved(self, task_id: str) -> None:
        self._approvals[task_id] = _ApprovalRecord(approved=True, timestamp=self._now())
        self._attempts.pop(task_id, None)

    def mark_review_rejected(self, task_id: str) -> None:
        self._approvals[task_id] = _ApprovalRecord(approved=False, timestamp=self._now())

    def clear_review_status(self, task_id: str) -> None:
        self._approvals.pop(task_id, None)
        self._attempts.pop(task_id, None)
        self._blocked.discard(task_id)

    # ------------------------------------------------------------------
    # Feedback
    # ------------------------------------------------------------------

    async def review_feedback(
        self,
        *,
        project_key: str,
        task_id: str,
        worker_id: str,
        status: ReviewDecision | str,
        summary: str | None = None,
        issues: Any = None,
        session_id: str | None = None,
    ) -> dict[str, Any]:
        """Record the coordinator's verdict on a worker's output."""
        try:
            decision = ReviewDecision(status)
        except ValueError:
            return {
                "success": False,
                "error": f"status must be 'approved' or 'needs_changes' (got {status!r})",
            }

        try:
            parsed_issues = parse_issues(issues)
        except ValueError as e:
            return {"success": False, "error": str(e)}

        if decision is ReviewDecision.needs_changes and not parsed_issues:
            return {
                "success": False,
                "error": "needs_changes status requires at least one issue",
            }

        audit_session = session_id or "unknown"
        epic_id = epic_id_for_task(task_id)

        if decision is ReviewDecision.approved:
            return await self._approve(
                project_key=project_key,
                task_id=task_id,
                worker_id=worker_id,
                summary=summary,
                issues=parsed_issues,
                session_id=audit_session,
                epic_id=epic_id,
            )
        return await self._request_changes(
            project_key=project_key,
            task_id=task_id,
            issues=parsed_issues,
            session_id=audit_session,
            epic_id=epic_id,
        )

    async def _approve(
        self,
        *,
        project_key: str,
        task_id: str,
        worker_id: str,
        summary: str | None,
        issues: list[ReviewIssue],
        session_id: str,
        epic_id: str,
    ) -> dict[str, Any]:
        if task_id in self._blocked:
            return {
                "success": False,
                "error": (
                    f"Task {task_id} is blocked after {self._max_attempts} review "
                    "attempts and can no longer be approved"
                ),
            }

        attempt = self.attempt_count(task_id) + 1
        self.mark_review_approved(task_id)
        self._record_decision(
            session_id=session_id,
            epic_id=epic_id,
            payload={
                "task_id": task_id,
                "status": ReviewDecision.approved.value,
                "retry_count": 0,
                "attempt": attempt,
                "remaining_attempts": self.remaining_attempts(task_id),
                "issues_count": len(issues),
            },
        )
        logger.info(
            "review_feedback_recorded",
            task_id=task_id,
            status="approved",
            attempt=attempt,
        )

        await self._notify_approval(
            project_key=project_key,
            task_id=task_id,
            worker_id=worker_id,
            summary=summary,
            thread_id=epic_id,
        )
        return {
            "success": True,
            "status": ReviewDecision.approved.value,
            "task_id": task_id,
            "message": "Review approved. Worker can now complete the task.",
        }

    async def _request_changes(
        self,
        *,
        project_key: str,
        task_id: str,
        issues: list[ReviewIssue],
        session_id: str,
        epic_id: str,
    ) -> dict[str, Any]:
        already_blocked = task_id in self._blocked
        if not already_blocked:
            self._attempts[task_id] = min(self.attempt_count(task_id) + 1, self._max_attempts)
            self.mark_review_rejected(task_id)
        attempt = self.attempt_count(task_id)
        remaining = self.remaining_attempts(task_id)

        self._record_decision(
            session_id=session_id,
            epic_id=epic_id,
            payload={
                "task_id": task_id,
                "status": ReviewDecision.needs_changes.value,
                "retry_count": attempt,
                "attempt": attempt,
                "remaining_attempts": remaining,
                "issues_count": len(issues),
            },
        )
        logger.info(
            "review_feedback_recorded",
            task_id=task_id,
            status="needs_changes",
            attempt=attempt,
            remaining_attempts=remaining,
            issues_count=len(issues),
        )

        if remaining <= 0:
            if not already_blocked:
                self._blocked.add(task_id)
                await self._block_cell(project_key, task_id)
                self._record_outcome(
                    session_id=session_id,
                    epic_id=epic_id,
                    payload={"task_id": task_id, "attempts": attempt, "reason": "review_rejected"},
                )
            return {
                "success": True,
                "status": ReviewDecision.needs_changes.value,
                "task_failed": True,
                "task_id": task_id,
                "attempt": attempt,
                "remaining_attempts": 0,
                "message": f"Task failed after {self._max_attempts} review attempts",
            }

        issue_dicts = [issue.model_dump(exclude_none=True) for issue in issues]
        return {
            "success": True,
            "status": ReviewDecision.needs_changes.value,
            "task_failed": False,
            "task_id": task_id,
            "attempt": attempt,
            "remaining_attempts": remaining,
            "issues": issue_dicts,
            "message": f"Review feedback ready. {remaining} attempt(s) remaining.",
            "retry_context": {
                "task_id": task_id,
                "attempt": attempt,
                "max_attempts": self._max_attempts,
                "issues": issue_dicts,
                "next_action": "Use swarm_spawn_retry to spawn a new worker with these issues",
            },
        }

    # ------------------------------------------------------------------
    # Review preparation
    # ------------------------------------------------------------------

    async def prepare_review(
        self,
        *,
        project_key: str,
        epic_id: str,
        task_id: str,
        files_touched: Sequence[str] | None = None,
    ) -> dict[str, Any]:
        """Gather epic context and the diff, and render the review prompt.

        Every lookup degrades to ids and empty context when a collaborator fails.
        """
        files = list(files_touched or [])
        epic_title, epic_description = epic_id, None
        task_title, task_description = task_id, None
        completed: list[DependencyInfo] = []
        downstream: list[DownstreamTask] = []

        store = self._cell_store
        if store is not None:
            try:
                epic = await _get_cell(store, project_key, epic_id)
                if epic is not None:
                    epic_title = epic.title or epic_title
                    epic_description = epic.description
                task = await _get_cell(store, project_key, task_id)
                if task is not None:
                    task_title = task.title or task_title
                    task_description = task.description
                completed, downstream = await _sibling_context(
                    store, project_key, epic_id, task_id
                )
            except Exception as e:
                logger.warning(
                    "review_context_unavailable", task_id=task_id, error=str(e)
                )

        diff = ""
        if files:
            try:
                diff = await self._diff_fn(project_key, files)
            except Exception as e:
                logger.warning("review_diff_failed", task_id=task_id, error=str(e))

        prompt = generate_review_prompt(
            ReviewPromptContext(
                epic_id=epic_id,
                epic_title=epic_title,
                epic_description=epic_description,
                task_id=task_id,
                task_title=task_title,
                task_description=task_description,
                files_touched=files,
                diff=diff or _NO_DIFF,
                completed_dependencies=completed or None,
                downstream_tasks=downstream or None,
            )
        )
        return {
            "review_prompt": prompt,
            "context": {
                "epic_id": epic_id,
                "epic_title": epic_title,
                "task_id": task_id,
                "task_title": task_title,
                "files_touched": files,
                "completed_dependencies": len(completed),
                "downstream_tasks": len(downstream),
                "remaining_attempts": self.remaining_attempts(task_id),
            },
        }

    # ------------------------------------------------------------------
    # Rehydration
    # ------------------------------------------------------------------

    def rehydrate(self, events: Iterable[CoordinatorEvent]) -> int:
        """Rebuild counters and approvals from review_completed decisions.

        Events are replayed in timestamp order; the last verdict per task
        wins. Returns the number of tasks restored.
        """
        reviews = [
            e for e in events
            if e.event_type is EventType.decision and e.subtype == "review_completed"
        ]
        reviews.sort(key=lambda e: e.parsed_timestamp)

        touched: set[str] = set()
        for event in reviews:
            task_id = event.payload.get("task_id")
            if not isinstance(task_id, str) or not task_id:
                continue
            status = event.payload.get("status")
            if status == ReviewDecision.approved.value:
                self._approvals[task_id] = _ApprovalRecord(
                    approved=True, timestamp=event.parsed_timestamp.timestamp()
                )
                self._attempts.pop(task_id, None)
                self._blocked.discard(task_id)
            elif status == ReviewDecision.needs_changes.value:
                recorded = event.payload.get("retry_count")
                if not isinstance(recorded, int) or isinstance(recorded, bool):
                    recorded = self.attempt_count(task_id) + 1
                attempt = max(0, min(recorded, self._max_attempts))
                self._attempts[task_id] = attempt
                self._approvals[task_id] = _ApprovalRecord(
                    approved=False, timestamp=event.parsed_timestamp.timestamp()
                )
                if attempt >= self._max_attempts:
                    self._blocked.add(task_id)
            else:
                continue
            touched.add(task_id)

        logger.info("review_state_rehydrated", tasks=len(touched), events=len(reviews))
        return len(touched)

    # ------------------------------------------------------------------
    # Best-effort side effects
    # ------------------------------------------------------------------

    def _record_decision(self, *, session_id: str, epic_id: str, payload: dict) -> None:
        if self._event_log is None:
            return
        self._event_log.record(
            session_id=session_id,
            epic_id=epic_id,
            event_type=EventType.decision,
            subtype="review_completed",
            payload=payload,
        )

    def _record_outcome(self, *, session_id: str, epic_id: str, payload: dict) -> None:
        if self._event_log is None:
            return
        self._event_log.record(
            session_id=session_id,
            epic_id=epic_id,
            event_type=EventType.outcome,
            subtype="subtask_failed",
            payload=payload,
        )

    async def _block_cell(self, project_key: str, task_id: str) -> None:
        if self._cell_store is None:
            return
        try:
            await self._cell_store.change_cell_status(project_key, task_id, "blocked")
        except Exception as e:
            logger.warning("review_block_cell_failed", task_id=task_id, error=str(e))

    async def _notify_approval(
        self,
        *,
        project_key: str,
        task_id: str,
        worker_id: str,
        summary: str | None,
        thread_id: str,
    ) -> None:
        if self._notifier is None:
            return
        body = (
            "## Review Approved\n\n"
            f"{summary or 'Your work has been approved.'}\n\n"
            "You may now complete the task with `swarm_complete`."
        )
        try:
            await self._notifier.send(
                project_key=project_key,
                from_agent="coordinator",
                to_agents=[worker_id],
                subject=f"APPROVED: {task_id}",
                body=body,
                thread_id=thread_id,
            )
        except Exception as e:
            logger.warning("review_approval_notify_failed", task_id=task_id, error=str(e))
