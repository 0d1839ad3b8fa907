"""Audit module: append-only coordinator event log."""

from src.audit.log import EventLog, sanitize_session_id
from src.audit.models import (
    ALLOWED_SUBTYPES,
    SUBTYPE_KEYS,
    CoordinatorEvent,
    CoordinatorSession,
    EventType,
)

__all__ = [
    "ALLOWED_SUBTYPES",
    "CoordinatorEvent",
    "CoordinatorSession",
    "EventLog",
    "EventType",
    "SUBTYPE_KEYS",
    "sanitize_session_id",
]
