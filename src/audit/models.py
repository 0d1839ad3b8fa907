"""Coordinator audit event types.

One CoordinatorEvent is one line of a session's JSONL file. The subtype is
serialized under a type-specific key (decision_type, violation_type,
outcome_type, compaction_type) so downstream evaluation tooling can filter
without knowing the envelope.
"""

from __future__ import annotations

from datetime import UTC, datetime
from enum import StrEnum
from typing import Any, Self

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class EventType(StrEnum):
    decision = "DECISION"
    violation = "VIOLATION"
    outcome = "OUTCOME"
    compaction = "COMPACTION"


SUBTYPE_KEYS: dict[EventType, str] = {
    EventType.decision: "decision_type",
    EventType.violation: "violation_type",
    EventType.outcome: "outcome_type",
    EventType.compaction: "compaction_type",
}

ALLOWED_SUBTYPES: dict[EventType, frozenset[str]] = {
    EventType.decision: frozenset({
        "strategy_selected",
        "worker_spawned",
        "review_completed",
        "decomposition_complete",
        "researcher_spawned",
        "skill_loaded",
        "inbox_checked",
        "blocker_resolved",
        "scope_change_approved",
        "scope_change_rejected",
    }),
    EventType.violation: frozenset({
        "coordinator_edited_file",
        "coordinator_ran_tests",
        "coordinator_reserved_files",
        "no_worker_spawned",
        "worker_completed_without_review",
    }),
    EventType.outcome: frozenset({
        "subtask_success",
        "subtask_retry",
        "subtask_failed",
        "epic_complete",
        "blocker_detected",
    }),
    EventType.compaction: frozenset({
        "detection_complete",
        "prompt_generated",
        "context_injected",
        "resumption_started",
        "tool_call_tracked",
    }),
}


def utc_now_iso() -> str:
    return datetime.now(UTC).isoformat()


def _parse_iso(value: str) -> datetime:
    ts = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=UTC)
    return ts


class CoordinatorEvent(BaseModel):
    """Immutable audit record. Never mutated once written."""

    model_config = ConfigDict(frozen=True)

    session_id: str
    epic_id: str
    timestamp: str = Field(default_factory=utc_now_iso)
    event_type: EventType
    subtype: str
    payload: dict[str, Any] = Field(default_factory=dict)

    @field_validator("timestamp")
    @classmethod
    def _validate_timestamp(cls, value: str) -> str:
        _parse_iso(value)
        return value

    @model_validator(mode="after")
    def _validate_subtype(self) -> Self:
        allowed = ALLOWED_SUBTYPES[self.event_type]
        if self.subtype not in allowed:
            raise ValueError(
                f"{SUBTYPE_KEYS[self.event_type]} '{self.subtype}' is not valid "
                f"for {self.event_type.value} events"
            )
        return self

    def to_record(self) -> dict[str, Any]:
        """Wire form: subtype stored under its type-specific key."""
        return {
            "session_id": self.session_id,
            "epic_id": self.epic_id,
            "timestamp": self.timestamp,
            "event_type": self.event_type.value,
            SUBTYPE_KEYS[self.event_type]: self.subtype,
            "payload": self.payload,
        }

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> CoordinatorEvent:
        """Parse the wire form.

        Raises ValueError (pydantic.ValidationError included) on malformed input.
        """
        event_type = EventType(record.get("event_type"))
        subtype = record.get(SUBTYPE_KEYS[event_type], record.get("subtype"))
        payload = record.get("payload")
        return cls(
            session_id=record.get("session_id"),
            epic_id=record.get("epic_id"),
            timestamp=record.get("timestamp"),
            event_type=event_type,
            subtype=subtype,
            payload=payload if isinstance(payload, dict) else {},
        )

    @property
    def parsed_timestamp(self) -> datetime:
        return _parse_iso(self.timestamp)


class CoordinatorSession(BaseModel):
    """All events of one coordinator session, bounded by first/last timestamp."""

    session_id: str
    epic_id: str
    start_time: str
    end_time: str | None = None
    events: list[CoordinatorEvent] = Field(default_factory=list)
