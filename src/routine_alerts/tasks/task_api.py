# src/routine_alerts/tasks/task_api.py

from __future__ import annotations

import logging
import time

from .task_models import Task, TaskCategory
from .task_store import TaskStore

logger = logging.getLogger(__name__)


def schedule_outdoor_task(
    store: TaskStore,
    *,
    user_id: str,
    title: str,
    due_in_hours: float,
    location: str | None = None,
    description: str = "",
    now_ts: float | None = None,
) -> int:
    """
    Convenience helper: create an outdoor task due `due_in_hours` from now.
    """
    if now_ts is None:
        now_ts = time.time()
    due_at = now_ts + max(0.0, float(due_in_hours)) * 3600.0

    return store.add_task(
        user_id=user_id,
        title=title,
        category=TaskCategory.OUTDOOR,
        due_at=due_at,
        location=location,
        description=description,
    )


def reschedule_task(store: TaskStore, task_id: int, *, due_at: float | None) -> Task | None:
    """
    Move a task to a new due time. A previous weather alert no longer applies,
    so the task becomes eligible for the next sweep again.
    """
    if not store.update_task(task_id, due_at=due_at):
        logger.info("reschedule_task: task_id=%s not found", task_id)
        return None
    return store.get_task(task_id)


def register_device(store: TaskStore, *, user_id: str, token: str, default_location: str | None = None) -> None:
    """Register the push token for a user (and optionally their default location)."""
    store.register_device_token(user_id, token)
    if default_location is not None:
        store.set_user_default_location(user_id, default_location)
