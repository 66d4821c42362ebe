# src/routine_alerts/cli/bootstrap.py

"""
CLI bootstrap helpers.

This module is the "composition root":
- takes settings once,
- ensures local (gitignored) directories exist,
- wires concrete implementations into AppState (store, forecast client, push sender, scheduler).
"""

from __future__ import annotations

import logging

from ..alerts.alert_scheduler import AlertConfig, AlertScheduler
from ..alerts.dispatcher import NotificationDispatcher
from ..alerts.push import FcmPushSender, LogPushSender
from ..config import Settings, get_settings
from ..core.ports import PushSender
from ..core.state import AppState
from ..tasks.task_store import TaskStore
from ..weather.openweather import OpenWeatherForecastClient

logger = logging.getLogger(__name__)


def _ensure_local_dirs(settings: Settings) -> None:
    settings.data_dir.mkdir(parents=True, exist_ok=True)
    settings.tasks_db_path.parent.mkdir(parents=True, exist_ok=True)


def build_push_sender(settings: Settings) -> PushSender:
    if settings.push_enabled:
        return FcmPushSender.from_settings(settings)
    logger.warning("FCM not configured; alerts will only be logged (dev mode).")
    return LogPushSender()


def create_app_state(*, settings: Settings | None = None) -> AppState:
    """
    Create AppState from the provided settings.

    Keeping settings injectable makes the app easier to test and avoids hidden global config reads.
    If settings is None, falls back to get_settings().
    """
    if settings is None:
        settings = get_settings()

    _ensure_local_dirs(settings)

    store = TaskStore(settings.tasks_db_path)
    dispatcher = NotificationDispatcher(store, build_push_sender(settings))
    state = AppState(settings=settings, task_store=store, dispatcher=dispatcher)

    if not settings.openweather_api_key:
        logger.warning("OpenWeather API key not set; weather alerts are disabled.")
        return state

    state.forecasts = OpenWeatherForecastClient.from_settings(settings)
    state.scheduler = AlertScheduler(
        store,
        state.forecasts,
        dispatcher,
        AlertConfig.from_settings(settings),
    )
    return state
