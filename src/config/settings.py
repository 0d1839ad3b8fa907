from __future__ import annotations

import os
from pathlib import Path
from typing import Self

from dotenv import load_dotenv
from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Load .env once at module import so every settings group below sees its vars
load_dotenv()

DEFAULT_SESSIONS_DIR = Path.home() / ".config" / "swarm-tools" / "sessions"


def _default_sessions_dir() -> Path:
    # SWARM_SESSIONS_DIR predates the EVENT_LOG_ prefix and is still honoured
    legacy = os.getenv("SWARM_SESSIONS_DIR")
    return Path(legacy) if legacy else DEFAULT_SESSIONS_DIR


class EventLogSettings(BaseSettings):
    """Append-only audit log settings. Env vars prefixed with EVENT_LOG_."""

    model_config = SettingsConfigDict(env_prefix="EVENT_LOG_")

    sessions_dir: Path = Field(default_factory=_default_sessions_dir)


class CoordinatorSettings(BaseSettings):
    """Coordinator context registry settings. Env vars prefixed with COORDINATOR_."""

    model_config = SettingsConfigDict(env_prefix="COORDINATOR_")

    context_timeout_s: float = Field(4 * 60 * 60, gt=0)  # 4h since activation


class ReviewSettings(BaseSettings):
    """Review gate settings. Env vars prefixed with REVIEW_."""

    model_config = SettingsConfigDict(env_prefix="REVIEW_")

    max_attempts: int = Field(3, ge=1, le=10)
    rehydrate_from_log: bool = True
    git_diff_timeout_s: float = 10.0


class ContinuitySettings(BaseSettings):
    """Compaction continuity detector settings. Env vars prefixed with CONTINUITY_."""

    model_config = SettingsConfigDict(env_prefix="CONTINUITY_")

    scan_limit: int = Field(100, gt=0, le=1000)
    recent_window_s: float = Field(30 * 60, gt=0)  # "recently updated" cells
    project_path: Path | None = None  # None = current working directory
    # Compaction recommendation thresholds (log-only signals)
    recommend_open_subtasks: int = 3
    recommend_reservations: int = 2
    recommend_agents: int = 2

    @field_validator("project_path", mode="before")
    @classmethod
    def _empty_project_path(cls, v: object) -> object:
        if isinstance(v, str) and not v.strip():
            return None
        return v

    @model_validator(mode="after")
    def _validate(self) -> Self:
        for name in ("recommend_open_subtasks", "recommend_reservations", "recommend_agents"):
            value = getattr(self, name)
            if value < 1:
                raise ValueError(f"{name} must be >= 1, got {value}")
        return self


class Settings(BaseSettings):
    """Root settings composing all sub-configurations."""

    model_config = SettingsConfigDict(extra="ignore")

    event_log: EventLogSettings = Field(default_factory=EventLogSettings)
    coordinator: CoordinatorSettings = Field(default_factory=CoordinatorSettings)
    review: ReviewSettings = Field(default_factory=ReviewSettings)
    continuity: ContinuitySettings = Field(default_factory=ContinuitySettings)
    log_json: bool = True
    log_level: str = "INFO"

    @field_validator("log_level")
    @classmethod
    def _validate_log_level(cls, v: str) -> str:
        allowed = {"DEBUG", "INFO", "WARNING", "ERROR"}
        normalized = v.upper()
        if normalized not in allowed:
            msg = f"LOG_LEVEL must be one of {sorted(allowed)} (got '{v}')"
            raise ValueError(msg)
        return normalized


def get_settings() -> Settings:
    """Load and validate settings. Raises ValidationError on invalid values."""
    return Settings()
