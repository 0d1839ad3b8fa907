"""Tests for the engine settings groups and their env prefixes."""

from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import ValidationError

from src.config.settings import (
    DEFAULT_SESSIONS_DIR,
    ContinuitySettings,
    CoordinatorSettings,
    EventLogSettings,
    ReviewSettings,
    Settings,
)


class TestEventLogSettings:
    def test_default_sessions_dir(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("SWARM_SESSIONS_DIR", raising=False)
        monkeypatch.delenv("EVENT_LOG_SESSIONS_DIR", raising=False)
        assert EventLogSettings().sessions_dir == DEFAULT_SESSIONS_DIR

    def test_legacy_env_var_honoured(self, monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
        monkeypatch.delenv("EVENT_LOG_SESSIONS_DIR", raising=False)
        monkeypatch.setenv("SWARM_SESSIONS_DIR", str(tmp_path))
        assert EventLogSettings().sessions_dir == tmp_path

    def test_prefixed_env_var_wins(self, monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
        monkeypatch.setenv("SWARM_SESSIONS_DIR", str(tmp_path / "legacy"))
        monkeypatch.setenv("EVENT_LOG_SESSIONS_DIR", str(tmp_path / "new"))
        assert EventLogSettings().sessions_dir == tmp_path / "new"


class TestCoordinatorSettings:
    def test_default_timeout_is_four_hours(self) -> None:
        assert CoordinatorSettings().context_timeout_s == 4 * 60 * 60

    def test_non_positive_timeout_rejected(self) -> None:
        with pytest.raises(ValidationError):
            CoordinatorSettings(context_timeout_s=0)


class TestReviewSettings:
    def test_defaults(self) -> None:
        s = ReviewSettings()
        assert s.max_attempts == 3
        assert s.rehydrate_from_log is True

    def test_max_attempts_range(self) -> None:
        with pytest.raises(ValidationError):
            ReviewSettings(max_attempts=0)
        with pytest.raises(ValidationError):
            ReviewSettings(max_attempts=11)

    def test_env_prefix(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("REVIEW_REHYDRATE_FROM_LOG", "false")
        assert ReviewSettings().rehydrate_from_log is False


class TestContinuitySettings:
    def test_defaults(self) -> None:
        s = ContinuitySettings()
        assert s.scan_limit == 100
        assert s.recent_window_s == 30 * 60

    def test_blank_project_path_is_none(self) -> None:
        assert ContinuitySettings(project_path="  ").project_path is None

    def test_recommend_threshold_must_be_positive(self) -> None:
        with pytest.raises(ValidationError, match="recommend_agents must be >= 1"):
            ContinuitySettings(recommend_agents=0)

    def test_scan_limit_bounds(self) -> None:
        with pytest.raises(ValidationError):
            ContinuitySettings(scan_limit=0)


class TestRootSettings:
    def test_log_level_normalized(self) -> None:
        assert Settings(log_level="debug").log_level == "DEBUG"

    def test_invalid_log_level_rejected(self) -> None:
        with pytest.raises(ValidationError, match="LOG_LEVEL must be one of"):
            Settings(log_level="TRACE")

    def test_composes_groups(self) -> None:
        s = Settings()
        assert isinstance(s.review, ReviewSettings)
        assert isinstance(s.continuity, ContinuitySettings)
