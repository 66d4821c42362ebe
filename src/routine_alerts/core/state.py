# src/routine_alerts/core/state.py

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from ..tasks.task_store import TaskStore

if TYPE_CHECKING:
    from ..alerts.alert_scheduler import AlertScheduler
    from ..alerts.dispatcher import NotificationDispatcher
    from ..config import Settings
    from .ports import ForecastSource


@dataclass
class AppState:
    # Store Settings on the state for easy access in other modules later.
    settings: Settings
    task_store: TaskStore
    dispatcher: NotificationDispatcher

    # None when the forecast provider is not configured (no API key).
    forecasts: ForecastSource | None = None
    scheduler: AlertScheduler | None = None
