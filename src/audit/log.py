"""Append-only coordinator event log.

Responsibilities:
- One JSONL file per session under the sessions directory
- Session ids sanitized before becoming file names
- One write() per event (a single line append is atomic enough for one host)
- No mutation or deletion of written records
- Best-effort append helper for callers whose primary result must not
  depend on the audit write
"""

from __future__ import annotations

import json
import re
from pathlib import Path
from typing import Any

import structlog

from src.audit.models import CoordinatorEvent, CoordinatorSession, EventType
from src.infra.errors import EventLogError

logger = structlog.get_logger()

_UNSAFE_CHARS = re.compile(r"[\x00-\x1f\x7f/\\:]")
_SESSION_SUFFIX = ".jsonl"


def sanitize_session_id(session_id: str) -> str:
    """Map a session id to a safe file stem.

    Path separators, drive colons and control characters become '_';
    '..' sequences are collapsed so the result never escapes the directory.
    """
    cleaned = _UNSAFE_CHARS.sub("_", session_id or "")
    cleaned = cleaned.replace("..", "_")
    cleaned = cleaned.strip(" .")
    return cleaned or "unknown"


class EventLog:
    """Write coordinator events to per-session JSONL files."""

    def __init__(self, sessions_dir: Path) -> None:
        self._sessions_dir = sessions_dir

    @property
    def sessions_dir(self) -> Path:
        return self._sessions_dir

    def path_for(self, session_id: str) -> Path:
        return self._sessions_dir / f"{sanitize_session_id(session_id)}{_SESSION_SUFFIX}"

    def append(self, event: CoordinatorEvent) -> Path:
        """Append one event as one line.

        Returns: path to the session file.
        Raises: EventLogError if the directory or file cannot be written.
        """
        filepath = self.path_for(event.session_id)
        line = json.dumps(event.to_record(), ensure_ascii=False, default=str) + "\n"
        try:
            filepath.parent.mkdir(parents=True, exist_ok=True)
            with filepath.open("a", encoding="utf-8") as f:
                f.write(line)
        except OSError as e:
            raise EventLogError(f"Failed to append event to {filepath}: {e}") from e

        logger.debug(
            "event_appended",
            path=str(filepath),
            event_type=event.event_type.value,
            subtype=event.subtype,
        )
        return filepath

    def append_safe(self, event: CoordinatorEvent) -> bool:
        """Fire-and-forget append. Failure is logged, never raised."""
        try:
            self.append(event)
        except Exception as e:
            logger.warning(
                "event_append_failed",
                session_id=event.session_id,
                event_type=event.event_type.value,
                subtype=event.subtype,
                error=str(e),
            )
            return False
        return True

    def record(
        self,
        *,
        session_id: str,
        epic_id: str,
        event_type: EventType,
        subtype: str,
        payload: dict[str, Any] | None = None,
    ) -> bool:
        """Build and append an event, best-effort.

        An invalid subtype is a caller bug and still raises ValidationError.
        """
        event = CoordinatorEvent(
            session_id=session_id,
            epic_id=epic_id,
            event_type=event_type,
            subtype=subtype,
            payload=payload or {},
        )
        return self.append_safe(event)

    def read_session(self, session_id: str) -> list[CoordinatorEvent]:
        """Read all events of one session in file order.

        Malformed lines are skipped with a warning; they are never rewritten.
        """
        filepath = self.path_for(session_id)
        if not filepath.is_file():
            return []
        return self._read_file(filepath)

    def session_ids(self) -> list[str]:
        """Sanitized ids of every session that has a log file."""
        if not self._sessions_dir.is_dir():
            return []
        return sorted(p.stem for p in self._sessions_dir.glob(f"*{_SESSION_SUFFIX}"))

    def read_all(self) -> list[CoordinatorEvent]:
        """Read every session file, ordered by event timestamp."""
        events: list[CoordinatorEvent] = []
        if not self._sessions_dir.is_dir():
            return events
        for filepath in sorted(self._sessions_dir.glob(f"*{_SESSION_SUFFIX}")):
            events.extend(self._read_file(filepath))
        events.sort(key=lambda e: e.parsed_timestamp)
        return events

    def summarize_session(self, session_id: str, epic_id: str) -> CoordinatorSession | None:
        """Wrap a session's events with start/end times. None if no events."""
        events = self.read_session(session_id)
        if not events:
            return None
        stamps = sorted(events, key=lambda e: e.parsed_timestamp)
        return CoordinatorSession(
            session_id=session_id,
            epic_id=epic_id,
            start_time=stamps[0].parsed_timestamp.isoformat(),
            end_time=stamps[-1].parsed_timestamp.isoformat(),
            events=events,
        )

    def _read_file(self, filepath: Path) -> list[CoordinatorEvent]:
        try:
            content = filepath.read_text(encoding="utf-8")
        except OSError:
            logger.exception("event_log_read_error", path=str(filepath))
            return []

        events: list[CoordinatorEvent] = []
        for lineno, line in enumerate(content.splitlines(), start=1):
            if not line.strip():
                continue
            try:
                record = json.loads(line)
                events.append(CoordinatorEvent.from_record(record))
            except (ValueError, AttributeError, KeyError) as e:
                logger.warning(
                    "event_log_malformed_line",
                    path=str(filepath),
                    line=lineno,
                    error=str(e),
                )
        return events
