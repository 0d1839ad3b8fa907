"""Session-scoped coordinator context with lazy time-based expiry.

Each session id owns one CoordinatorContext. Calls without a session id use
a single global slot kept for hosts that never pass one. Expiry is checked
only when is_active() is asked; nothing sweeps in the background.
"""

from __future__ import annotations

import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass, replace
from typing import Any

import structlog

from src.infra.errors import ContextError

logger = structlog.get_logger()

DEFAULT_CONTEXT_TIMEOUT_S = 4 * 60 * 60

# Accepted activation keys -> dataclass field
_FIELD_ALIASES = {
    "is_coordinator": "is_coordinator",
    "isCoordinator": "is_coordinator",
    "epic_id": "epic_id",
    "epicId": "epic_id",
    "session_id": "session_id",
    "sessionId": "session_id",
}


@dataclass(frozen=True)
class CoordinatorContext:
    """Snapshot of one session's coordinator state.

    activated_at is a unix timestamp (seconds) set whenever an activation
    call carries is_coordinator=True.
    """

    is_coordinator: bool = False
    epic_id: str | None = None
    session_id: str | None = None
    activated_at: float | None = None


def _normalize_fields(fields: Mapping[str, Any]) -> dict[str, Any]:
    normalized: dict[str, Any] = {}
    for key, value in fields.items():
        target = _FIELD_ALIASES.get(key)
        if target is None:
            raise ContextError(f"Unknown coordinator context field: {key!r}")
        normalized[target] = value
    if "is_coordinator" in normalized and not isinstance(normalized["is_coordinator"], bool):
        raise ContextError("is_coordinator must be a bool")
    return normalized


class CoordinatorContextRegistry:
    """Explicit registry of coordinator contexts keyed by session id.

    One instance per host process; tests build their own so parallel runs
    never share state.
    """

    def __init__(
        self,
        *,
        timeout_s: float = DEFAULT_CONTEXT_TIMEOUT_S,
        now_fn: Callable[[], float] = time.time,
    ) -> None:
        self._timeout_s = timeout_s
        self._now = now_fn
        self._contexts: dict[str, CoordinatorContext] = {}
        self._global = CoordinatorContext()

    @property
    def timeout_s(self) -> float:
        return self._timeout_s

    def activate(
        self, fields: Mapping[str, Any], session_id: str | None = None
    ) -> CoordinatorContext:
        """Merge fields into the session's context and return the new state.

        session_id may come from the argument or from the fields themselves.
        activated_at refreshes only when this call sets is_coordinator=True.
        """
        updates = _normalize_fields(fields)
        key = session_id or updates.get("session_id")
        if key:
            updates["session_id"] = key
        existing = self._contexts.get(key, CoordinatorContext()) if key else self._global

        activated_at = existing.activated_at
        if updates.get("is_coordinator") is True:
            activated_at = self._now()

        merged = replace(existing, **updates, activated_at=activated_at)
        if key:
            self._contexts[key] = merged
        else:
            self._global = merged

        logger.info(
            "coordinator_context_activated",
            session_id=key or "global",
            is_coordinator=merged.is_coordinator,
            epic_id=merged.epic_id,
        )
        return merged

    def read(self, session_id: str | None = None) -> CoordinatorContext:
        """Return the current context (a fresh default if none exists)."""
        if session_id:
            return self._contexts.get(session_id, CoordinatorContext())
        return self._global

    def clear(self, session_id: str | None = None) -> None:
        if session_id:
            self._contexts.pop(session_id, None)
        else:
            self._global = CoordinatorContext()

    def clear_all(self) -> None:
        self._contexts.clear()
        self._global = CoordinatorContext()

    def is_active(self, session_id: str | None = None) -> bool:
        """True if the session is in coordinator mode and not expired.

        An expired entry is deleted as a side effect of this check.
        """
        ctx = self._contexts.get(session_id) if session_id else self._global
        if ctx is None or not ctx.is_coordinator:
            return False

        if ctx.activated_at is not None:
            elapsed = self._now() - ctx.activated_at
            if elapsed > self._timeout_s:
                self.clear(session_id)
                logger.info(
                    "coordinator_context_expired",
                    session_id=session_id or "global",
                    elapsed_s=round(elapsed, 1),
                )
                return False

        return True

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._contexts
