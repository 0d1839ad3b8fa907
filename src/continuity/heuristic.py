"""Heuristic scan: infer an active coordination effort from indirect signals.

Collection and tiering are separate. collect_heuristic_evidence() talks to
collaborators and freezes whatever it got into HeuristicEvidence;
heuristic_tier() is a pure function of that evidence.
"""

from __future__ import annotations

import os
from collections.abc import Callable
from datetime import datetime, timedelta
from typing import TYPE_CHECKING

import structlog

from src.continuity.collaborators import as_cell, as_health
from src.continuity.models import (
    Confidence,
    HeuristicEvidence,
    HeuristicResult,
    SubtaskCounts,
    SwarmStateSnapshot,
)
from src.infra.errors import ProjectDetectionError

if TYPE_CHECKING:
    from src.continuity.collaborators import Cell, CellStore, HealthProbe

logger = structlog.get_logger()

DETECTION_FAILED_REASON = "Could not detect project, using fallback"


def resolve_project_path(
    override: str | os.PathLike[str] | None,
    resolver: Callable[[], str] | None,
) -> str:
    """Explicit override, then the resolver, then the working directory."""
    if override:
        return str(override)
    path = resolver() if resolver is not None else os.getcwd()
    if not path:
        raise ProjectDetectionError()
    return str(path)


async def collect_heuristic_evidence(
    *,
    now: datetime,
    recent_window: timedelta,
    project_override: str | os.PathLike[str] | None = None,
    project_resolver: Callable[[], str] | None = None,
    health_probe: HealthProbe | None = None,
    cell_store: CellStore | None = None,
) -> HeuristicEvidence:
    """Query every evidence source; each one fails independently."""
    try:
        project_path = resolve_project_path(project_override, project_resolver)
    except Exception:
        logger.warning("swarm_project_detection_failed", exc_info=True)
        return HeuristicEvidence(now=now, recent_window=recent_window, detection_failed=True)

    health = None
    if health_probe is not None:
        try:
            snapshot = as_health(await health_probe.check_health(project_path))
            if snapshot.healthy:
                health = snapshot.stats
        except Exception:
            logger.warning("swarm_health_check_failed", project_path=project_path, exc_info=True)

    cells = None
    if cell_store is not None:
        try:
            raw = await cell_store.query_cells(project_path, {})
            cells = tuple(as_cell(item) for item in raw)
        except Exception:
            logger.warning("swarm_cell_query_failed", project_path=project_path, exc_info=True)

    return HeuristicEvidence(
        now=now,
        recent_window=recent_window,
        project_path=project_path,
        health=health,
        cells=cells,
    )


def _is_epic(cell: Cell) -> bool:
    return cell.cell_type == "epic"


def _state_snapshot(project_path: str, cells: tuple[Cell, ...]) -> SwarmStateSnapshot:
    epic = next(
        (c for c in cells if _is_epic(c) and c.status == "in_progress"),
        None,
    )
    if epic is None:
        return SwarmStateSnapshot(project_path=project_path)

    counts = {"closed": 0, "in_progress": 0, "open": 0, "blocked": 0}
    for cell in cells:
        if cell.parent_id == epic.cell_id and cell.status in counts:
            counts[cell.status] += 1
    return SwarmStateSnapshot(
        project_path=project_path,
        epic_id=epic.cell_id,
        epic_title=epic.title or None,
        subtask_counts=SubtaskCounts(**counts),
    )


def heuristic_tier(evidence: HeuristicEvidence) -> HeuristicResult:
    """Map evidence to a confidence tier; the highest triggered tier wins."""
    triggered: list[Confidence] = []
    reasons: list[str] = []

    def hit(tier: Confidence, reason: str) -> None:
        triggered.append(tier)
        reasons.append(reason)

    if evidence.detection_failed:
        # Failure to look is weak evidence for continuing, never against it
        hit(Confidence.low, DETECTION_FAILED_REASON)
        return HeuristicResult(confidence=Confidence.low, reasons=tuple(reasons))

    reservations = agents = 0
    stats = evidence.health
    if stats is not None:
        reservations, agents = stats.reservations, stats.agents
        if stats.reservations > 0:
            hit(Confidence.high, f"{stats.reservations} active file reservations")
        if stats.agents > 0:
            hit(Confidence.medium, f"{stats.agents} registered agents")
        if stats.messages > 0:
            hit(Confidence.low, f"{stats.messages} swarm messages")

    state = None
    cells = evidence.cells
    if cells is not None:
        in_progress = [c for c in cells if c.status == "in_progress"]
        if in_progress:
            hit(Confidence.high, f"{len(in_progress)} cells in_progress")

        open_subtasks = [c for c in cells if c.status == "open" and c.parent_id]
        if open_subtasks:
            hit(Confidence.medium, f"{len(open_subtasks)} open subtasks")

        unclosed_epics = [c for c in cells if _is_epic(c) and c.status != "closed"]
        if unclosed_epics:
            hit(Confidence.medium, f"{len(unclosed_epics)} unclosed epics")

        cutoff = evidence.now - evidence.recent_window
        recent = [c for c in cells if c.updated_at is not None and c.updated_at > cutoff]
        if recent:
            minutes = int(evidence.recent_window.total_seconds() // 60)
            hit(Confidence.medium, f"{len(recent)} cells updated in last {minutes} minutes")

        if cells:
            hit(Confidence.low, f"{len(cells)} total cells in hive")

        state = _state_snapshot(evidence.project_path or "", cells)

    return HeuristicResult(
        confidence=Confidence.strongest(*triggered),
        reasons=tuple(reasons),
        state=state,
        reservations=reservations,
        agents=agents,
    )
