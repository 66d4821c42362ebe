# src/routine_alerts/config.py

"""Settings loaded from environment variables (+ optional .env).

Design goals:
- One Settings object per process, built by the composition root and passed down.
- No secrets required at import time.
- No module-level settings singleton: call get_settings() and hand the result over.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import find_dotenv, load_dotenv

ENV_PREFIX = "ROUTINE"


def _k(suffix: str) -> str:
    """Build env var name with the project prefix."""
    return f"{ENV_PREFIX}_{suffix}"


def _load_dotenv() -> None:
    """Load .env from the working directory; real environment variables win."""
    load_dotenv(find_dotenv(usecwd=True), override=False)


def _env(name: str, default: str = "") -> str:
    v = os.getenv(name)
    return default if v is None else v


def _first_env(*names: str, default: str | None = None) -> str | None:
    for n in names:
        v = os.getenv(n)
        if v is not None and v.strip() != "":
            return v
    return default


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _env_path(name: str, default: Path) -> Path:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return Path(raw).expanduser()


@dataclass(frozen=True, slots=True)
class Settings:
    # ---- App / logging ----
    app_name: str
    log_level: str

    # ---- Local data paths (ignored by git) ----
    data_dir: Path
    tasks_db_path: Path

    # ---- Alert engine ----
    lookahead_hours: float
    sweep_period_minutes: float
    tolerance_hours: float
    probability_threshold: float
    max_concurrency: int
    task_timeout_seconds: float
    sweep_timeout_seconds: float
    default_location: str
    alert_timezone: str

    # ---- Forecast provider (OpenWeather) ----
    openweather_api_key: str | None
    openweather_base_url: str
    openweather_onecall_path: str
    openweather_lang: str
    forecast_cache_seconds: float
    http_timeout_seconds: float

    # ---- Push provider (Firebase Cloud Messaging, HTTP v1) ----
    fcm_project_id: str | None
    fcm_access_token: str | None
    fcm_service_account_path: Path | None
    fcm_base_url: str

    @property
    def sweep_period_seconds(self) -> float:
        return self.sweep_period_minutes * 60.0

    @property
    def push_enabled(self) -> bool:
        if self.fcm_access_token:
            return bool(self.fcm_project_id)
        return self.fcm_service_account_path is not None

    @staticmethod
    def from_env() -> "Settings":
        _load_dotenv()

        app_name = _env(_k("APP_NAME"), "routine-alerts")
        log_level = _env(_k("LOG_LEVEL"), "INFO")

        data_dir = _env_path(_k("DATA_DIR"), Path(".local/routine"))
        tasks_db_path = _env_path(_k("TASKS_DB_PATH"), data_dir / "tasks.sqlite3")

        lookahead_hours = max(0.0, _env_float(_k("LOOKAHEAD_HOURS"), 48.0))
        sweep_period_minutes = max(1.0, _env_float(_k("SWEEP_PERIOD_MINUTES"), 30.0))
        tolerance_hours = max(0.0, _env_float(_k("TOLERANCE_HOURS"), 1.0))
        probability_threshold = min(1.0, max(0.0, _env_float(_k("PROBABILITY_THRESHOLD"), 0.4)))
        max_concurrency = max(1, _env_int(_k("MAX_CONCURRENCY"), 5))
        task_timeout_seconds = max(0.1, _env_float(_k("TASK_TIMEOUT_SECONDS"), 10.0))
        sweep_timeout_seconds = max(0.1, _env_float(_k("SWEEP_TIMEOUT_SECONDS"), 120.0))
        default_location = _env(_k("DEFAULT_LOCATION"), "Maceio").strip() or "Maceio"
        alert_timezone = _env(_k("ALERT_TIMEZONE"), "UTC").strip() or "UTC"

        openweather_api_key = _first_env(_k("OPENWEATHER_API_KEY"), "OPENWEATHER_API_KEY", default=None)
        openweather_base_url = _env(_k("OPENWEATHER_BASE_URL"), "https://api.openweathermap.org")
        openweather_onecall_path = _env(_k("OPENWEATHER_ONECALL_PATH"), "/data/3.0/onecall")
        openweather_lang = _env(_k("OPENWEATHER_LANG"), "en")

        # A cached forecast must never be served beyond one sweep interval.
        sweep_period_seconds = sweep_period_minutes * 60.0
        forecast_cache_seconds = _env_float(_k("FORECAST_CACHE_SECONDS"), sweep_period_seconds)
        forecast_cache_seconds = min(max(0.0, forecast_cache_seconds), sweep_period_seconds)
        http_timeout_seconds = max(0.5, _env_float(_k("HTTP_TIMEOUT_SECONDS"), 7.0))

        fcm_project_id = _first_env(_k("FCM_PROJECT_ID"), default=None)
        fcm_access_token = _first_env(_k("FCM_ACCESS_TOKEN"), default=None)
        # Same variable name as the mobile backend used for firebase-admin.
        sa_path = _first_env(_k("FIREBASE_SERVICE_ACCOUNT_PATH"), "FIREBASE_SERVICE_ACCOUNT_PATH", default=None)
        fcm_service_account_path = Path(sa_path).expanduser() if sa_path else None
        fcm_base_url = _env(_k("FCM_BASE_URL"), "https://fcm.googleapis.com")

        return Settings(
            app_name=app_name,
            log_level=log_level,
            data_dir=data_dir,
            tasks_db_path=tasks_db_path,
            lookahead_hours=lookahead_hours,
            sweep_period_minutes=sweep_period_minutes,
            tolerance_hours=tolerance_hours,
            probability_threshold=probability_threshold,
            max_concurrency=max_concurrency,
            task_timeout_seconds=task_timeout_seconds,
            sweep_timeout_seconds=sweep_timeout_seconds,
            default_location=default_location,
            alert_timezone=alert_timezone,
            openweather_api_key=openweather_api_key,
            openweather_base_url=openweather_base_url.rstrip("/"),
            openweather_onecall_path=openweather_onecall_path,
            openweather_lang=openweather_lang,
            forecast_cache_seconds=forecast_cache_seconds,
            http_timeout_seconds=http_timeout_seconds,
            fcm_project_id=fcm_project_id,
            fcm_access_token=fcm_access_token,
            fcm_service_account_path=fcm_service_account_path,
            fcm_base_url=fcm_base_url.rstrip("/"),
        )


def get_settings() -> Settings:
    return Settings.from_env()
