"""Compaction continuity detector.

Runs at the compaction boundary: replays the session's recent tool calls,
gathers heuristic evidence, fuses both into a confidence tier and, when
there is any evidence at all, appends a resumption context for the
coordinator. A compaction hook must never break the host session, so
on_compaction() always returns normally.
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING, Any

import structlog

from src.audit.models import EventType
from src.config.settings import ContinuitySettings
from src.continuity.fusion import fuse
from src.continuity.heuristic import (
    collect_heuristic_evidence,
    heuristic_tier,
    resolve_project_path,
)
from src.continuity.models import (
    Confidence,
    DetectionOutcome,
    HeuristicResult,
    StructuredFacts,
)
from src.continuity.scan import normalize_invocations, structured_facts
from src.continuity.templates import (
    render_dynamic_state,
    render_fallback_context,
    render_full_context,
)
from src.infra.errors import CollaboratorError
from src.infra.logging import bound_session

if TYPE_CHECKING:
    from src.audit.log import EventLog
    from src.continuity.collaborators import CellStore, HealthProbe, SessionHistory

logger = structlog.get_logger()


def _utc_now() -> datetime:
    return datetime.now(UTC)


class ContinuityDetector:
    """Rebuilds coordinator context after compaction.

    Every collaborator is optional. A missing or failing collaborator only
    removes its evidence from the fusion.
    """

    def __init__(
        self,
        *,
        event_log: EventLog | None = None,
        session_history: SessionHistory | None = None,
        health_probe: HealthProbe | None = None,
        cell_store: CellStore | None = None,
        project_resolver: Callable[[], str] | None = None,
        settings: ContinuitySettings | None = None,
        now_fn: Callable[[], datetime] = _utc_now,
    ) -> None:
        self._event_log = event_log
        self._history = session_history
        self._health_probe = health_probe
        self._cell_store = cell_store
        self._project_resolver = project_resolver
        self._settings = settings or ContinuitySettings()
        self._now = now_fn

    async def on_compaction(self, session_id: str, output: list[str]) -> Confidence:
        """Append at most one resumption context to output.

        Returns the fused confidence; Confidence.none on any internal failure.
        """
        with bound_session(session_id):
            logger.info("compaction_started")
            try:
                outcome = await self.detect(session_id)
                if outcome.context is not None:
                    output.append(outcome.context)
                self._audit(outcome)
                self._log_recommendation(outcome)
            except Exception:
                logger.exception("compaction_hook_failed")
                return Confidence.none
            logger.info(
                "swarm_detection_complete",
                confidence=outcome.confidence.value,
                context_type=outcome.context_type.value,
                reasons=list(outcome.fused.reasons),
                injected=outcome.context is not None,
            )
            return outcome.confidence

    async def detect(self, session_id: str) -> DetectionOutcome:
        """Run both scans, fuse, and render the context. Writes nothing."""
        facts = await self._scan_session(session_id)

        evidence = await collect_heuristic_evidence(
            now=self._now(),
            recent_window=timedelta(seconds=self._settings.recent_window_s),
            project_override=self._settings.project_path,
            project_resolver=self._project_resolver,
            health_probe=self._health_probe,
            cell_store=self._cell_store,
        )
        try:
            heuristic = heuristic_tier(evidence)
        except Exception:
            logger.warning("swarm_heuristic_tier_failed", exc_info=True)
            heuristic = HeuristicResult(confidence=Confidence.none)
        fused = fuse(heuristic, facts)

        context = None
        if fused.confidence.at_least(Confidence.medium):
            project_path = (
                facts.project_path
                or (heuristic.state.project_path if heuristic.state else None)
                or evidence.project_path
                or self._fallback_project_path()
            )
            dynamic = render_dynamic_state(facts, heuristic.state, project_path)
            context = render_full_context(fused.reasons, dynamic)
        elif fused.confidence is Confidence.low:
            context = render_fallback_context(fused.reasons)

        return DetectionOutcome(
            session_id=session_id,
            facts=facts,
            heuristic=heuristic,
            fused=fused,
            context=context,
        )

    async def _scan_session(self, session_id: str) -> StructuredFacts:
        if self._history is None:
            return StructuredFacts()
        limit = self._settings.scan_limit
        try:
            entries = await self._history.list_messages(session_id, limit)
            if not isinstance(entries, Sequence) or isinstance(entries, (str, bytes)):
                raise CollaboratorError(
                    f"session history returned {type(entries).__name__}, expected a sequence"
                )
        except Exception:
            logger.warning("swarm_session_scan_failed", limit=limit, exc_info=True)
            return StructuredFacts()
        calls = normalize_invocations(entries)
        facts = structured_facts(calls[-limit:])
        logger.debug(
            "swarm_session_scanned",
            invocations=len(calls),
            epic_id=facts.epic_id,
            subtasks=len(facts.subtasks),
        )
        return facts

    def _fallback_project_path(self) -> str:
        try:
            return resolve_project_path(self._settings.project_path, self._project_resolver)
        except Exception:
            return "unknown"

    def _audit(self, outcome: DetectionOutcome) -> None:
        if self._event_log is None:
            return
        common: dict[str, Any] = {
            "session_id": outcome.session_id,
            "epic_id": outcome.epic_id,
            "event_type": EventType.compaction,
        }
        self._event_log.record(
            **common,
            subtype="detection_complete",
            payload={
                "confidence": outcome.confidence.value,
                "detected": outcome.fused.detected,
                "reasons": list(outcome.fused.reasons),
                "context_type": outcome.context_type.value,
            },
        )
        if outcome.context is not None:
            self._event_log.record(
                **common,
                subtype="prompt_generated",
                payload={
                    "prompt_length": len(outcome.context),
                    "full_prompt": outcome.context,
                    "context_type": outcome.context_type.value,
                    "confidence": outcome.confidence.value,
                },
            )

    def _log_recommendation(self, outcome: DetectionOutcome) -> None:
        state = outcome.heuristic.state
        open_subtasks = state.subtask_counts.open if state is not None else 0
        signals: list[str] = []
        if open_subtasks >= self._settings.recommend_open_subtasks:
            signals.append(f"{open_subtasks} open subtasks")
        if outcome.heuristic.reservations >= self._settings.recommend_reservations:
            signals.append(f"{outcome.heuristic.reservations} active reservations")
        if outcome.heuristic.agents >= self._settings.recommend_agents:
            signals.append(f"{outcome.heuristic.agents} registered agents")
        if signals:
            logger.info(
                "compaction_recommended",
                epic_id=outcome.epic_id,
                signals=signals,
            )
