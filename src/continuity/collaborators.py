"""Contracts for the external collaborators the engine reads from.

The issue/cell store, the health probe and the host's session history are
owned elsewhere. The engine only sees them through these Protocols and
normalizes whatever they return into the small frozen records below, so a
collaborator returning odd shapes degrades evidence instead of crashing.
"""

from __future__ import annotations

import json
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from typing import Any, Protocol


@dataclass(frozen=True)
class Cell:
    """A trackable unit of work (task, bug, epic...) in the issue store."""

    cell_id: str
    cell_type: str
    status: str
    title: str = ""
    description: str | None = None
    parent_id: str | None = None
    updated_at: datetime | None = None
    closed_reason: str | None = None

    @classmethod
    def from_mapping(cls, payload: Mapping[str, Any]) -> Cell:
        return cls(
            cell_id=str(payload.get("id") or payload.get("cell_id") or ""),
            cell_type=str(payload.get("type") or payload.get("issue_type") or "task"),
            status=str(payload.get("status") or "open"),
            title=str(payload.get("title") or ""),
            description=_optional_str(payload.get("description")),
            parent_id=_optional_str(payload.get("parent_id") or payload.get("parent")),
            updated_at=parse_timestamp(payload.get("updated_at")),
            closed_reason=_optional_str(payload.get("closed_reason")),
        )


@dataclass(frozen=True)
class HealthStats:
    events: int = 0
    agents: int = 0
    messages: int = 0
    reservations: int = 0


@dataclass(frozen=True)
class HealthSnapshot:
    healthy: bool
    stats: HealthStats | None = None

    @classmethod
    def from_mapping(cls, payload: Mapping[str, Any]) -> HealthSnapshot:
        raw_stats = payload.get("stats")
        stats = None
        if isinstance(raw_stats, Mapping):
            stats = HealthStats(
                events=_as_int(raw_stats.get("events")),
                agents=_as_int(raw_stats.get("agents")),
                messages=_as_int(raw_stats.get("messages")),
                reservations=_as_int(raw_stats.get("reservations")),
            )
        return cls(healthy=bool(payload.get("healthy")), stats=stats)


@dataclass(frozen=True)
class ToolInvocation:
    """One completed tool call replayed from the host session history.

    output is best-effort JSON-decoded: a dict/list when the raw output was
    JSON, otherwise the raw value.
    """

    tool_name: str
    input: Mapping[str, Any] = field(default_factory=dict)
    output: Any = None
    start_ts: float | None = None
    end_ts: float | None = None

    @classmethod
    def from_mapping(cls, payload: Mapping[str, Any]) -> ToolInvocation | None:
        """Normalize a raw history entry. Returns None for unusable entries.

        Accepts both the flat shape (tool_name/input/output/start_ts/end_ts)
        and the nested host shape (tool + state{status,input,output,time}).
        """
        state = payload.get("state")
        if isinstance(state, Mapping):
            if state.get("status", "completed") != "completed":
                return None
            source: Mapping[str, Any] = state
            time_info = state.get("time") if isinstance(state.get("time"), Mapping) else {}
            start = time_info.get("start")
            end = time_info.get("end")
        else:
            if payload.get("status", "completed") != "completed":
                return None
            source = payload
            start = payload.get("start_ts")
            end = payload.get("end_ts")

        tool_name = payload.get("tool_name") or payload.get("tool")
        if not isinstance(tool_name, str) or not tool_name:
            return None
        raw_input = source.get("input")
        return cls(
            tool_name=tool_name,
            input=raw_input if isinstance(raw_input, Mapping) else {},
            output=decode_output(source.get("output")),
            start_ts=_as_float(start),
            end_ts=_as_float(end),
        )


class CellStore(Protocol):
    async def query_cells(
        self, project_key: str, filters: Mapping[str, Any]
    ) -> Sequence[Cell | Mapping[str, Any]]: ...

    async def get_cell(
        self, project_key: str, cell_id: str
    ) -> Cell | Mapping[str, Any] | None: ...

    async def change_cell_status(self, project_key: str, cell_id: str, status: str) -> None: ...


class HealthProbe(Protocol):
    async def check_health(self, project_key: str) -> HealthSnapshot | Mapping[str, Any]: ...


class SessionHistory(Protocol):
    async def list_messages(
        self, session_id: str, limit: int
    ) -> Sequence[ToolInvocation | Mapping[str, Any]]: ...


class Notifier(Protocol):
    async def send(
        self,
        *,
        project_key: str,
        from_agent: str,
        to_agents: Sequence[str],
        subject: str,
        body: str,
        thread_id: str,
    ) -> None: ...


def as_cell(item: Cell | Mapping[str, Any]) -> Cell:
    if isinstance(item, Cell):
        if item.updated_at is None or item.updated_at.tzinfo is not None:
            return item
        return replace(item, updated_at=item.updated_at.replace(tzinfo=UTC))
    return Cell.from_mapping(item)


def as_health(item: HealthSnapshot | Mapping[str, Any]) -> HealthSnapshot:
    if isinstance(item, HealthSnapshot):
        return item
    return HealthSnapshot.from_mapping(item)


def decode_output(raw: Any) -> Any:
    if isinstance(raw, (bytes, bytearray)):
        raw = raw.decode("utf-8", errors="replace")
    if isinstance(raw, str):
        try:
            return json.loads(raw)
        except json.JSONDecodeError:
            return raw
    return raw


def parse_timestamp(value: Any) -> datetime | None:
    """Accept epoch milliseconds, epoch seconds, ISO strings or datetimes."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=UTC)
    if isinstance(value, (int, float)):
        seconds = value / 1000 if value > 1e11 else value
        try:
            return datetime.fromtimestamp(seconds, tz=UTC)
        except (OverflowError, OSError, ValueError):
            return None
    if isinstance(value, str) and value.strip():
        try:
            parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
        except ValueError:
            return None
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)
    return None


def _optional_str(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value)
    return text or None


def _as_int(value: Any) -> int:
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, (int, float)):
        return int(value)
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    return 0


def _as_float(value: Any) -> float | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    return None
