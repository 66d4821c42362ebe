# src/routine_alerts/tasks/task_models.py

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum


class TaskCategory(StrEnum):
    """
    Task category.

    Only OUTDOOR tasks are considered by the weather alert scheduler.
    """

    OUTDOOR = "outdoor"
    WORK = "work"
    PERSONAL = "personal"
    STUDY = "study"
    HEALTH = "health"
    OTHER = "other"

    @classmethod
    def from_db(cls, raw: str | None) -> TaskCategory:
        if not raw:
            return cls.OTHER
        value = raw.strip().lower()
        # Label used by the first version of the mobile client.
        if value in ("ao ar livre", "ao_ar_livre"):
            return cls.OUTDOOR
        try:
            return cls(value)
        except Exception:
            return cls.OTHER


@dataclass(slots=True)
class Task:
    id: int
    user_id: str
    title: str
    category: TaskCategory
    due_at: float | None
    location: str | None
    is_completed: bool
    created_at: float
    updated_at: float

    description: str = ""

    # Dedup marker: the due time an alert was delivered for, and when.
    alerted_due_at: float | None = None
    alerted_at: float | None = None

    @property
    def has_valid_marker(self) -> bool:
        """True if an alert was already delivered for the current due time."""
        return self.alerted_due_at is not None and self.alerted_due_at == self.due_at
