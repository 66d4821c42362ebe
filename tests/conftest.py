# tests/conftest.py

from __future__ import annotations

from pathlib import Path
from types import SimpleNamespace

import pytest

from routine_alerts.alerts.alert_scheduler import AlertConfig
from routine_alerts.tasks.task_store import TaskStore


@pytest.fixture()
def settings(tmp_path: Path) -> SimpleNamespace:
    """
    Minimal settings object compatible with the from_settings() constructors.

    We intentionally use a SimpleNamespace rather than reading the environment,
    to keep unit tests isolated and deterministic.
    """
    return SimpleNamespace(
        data_dir=tmp_path,
        tasks_db_path=tmp_path / "tasks.sqlite3",
        lookahead_hours=48.0,
        tolerance_hours=1.0,
        probability_threshold=0.4,
        max_concurrency=5,
        task_timeout_seconds=10.0,
        sweep_timeout_seconds=120.0,
        default_location="Maceio",
        alert_timezone="UTC",
        openweather_api_key="test-key",
        openweather_base_url="https://weather.test",
        openweather_onecall_path="/data/3.0/onecall",
        openweather_lang="en",
        forecast_cache_seconds=0.0,
        http_timeout_seconds=2.0,
        fcm_project_id="demo-project",
        fcm_access_token="demo-access-token",
        fcm_service_account_path=None,
        fcm_base_url="https://fcm.test",
    )


@pytest.fixture()
def store(settings: SimpleNamespace) -> TaskStore:
    """Real SQLite store: its queries are part of what we want to test."""
    return TaskStore(settings.tasks_db_path)


@pytest.fixture()
def alert_config() -> AlertConfig:
    return AlertConfig()
