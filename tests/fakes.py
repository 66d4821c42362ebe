# tests/fakes.py

from __future__ import annotations

import asyncio
import sqlite3
from collections.abc import Iterable
from dataclasses import dataclass, field, replace

from routine_alerts.core.errors import PushSendError
from routine_alerts.tasks.task_models import Task, TaskCategory
from routine_alerts.weather.models import Forecast, ForecastSample, ResolvedLocation, WeatherCondition

NOW = 1_760_000_000.0
HOUR = 3600.0


def make_task(
    task_id: int = 1,
    *,
    due_in_hours: float | None = 3.0,
    user_id: str = "u1",
    title: str = "Picnic",
    category: TaskCategory = TaskCategory.OUTDOOR,
    location: str | None = "Maceio",
    is_completed: bool = False,
    alerted_due_at: float | None = None,
) -> Task:
    return Task(
        id=task_id,
        user_id=user_id,
        title=title,
        category=category,
        due_at=None if due_in_hours is None else NOW + due_in_hours * HOUR,
        location=location,
        is_completed=is_completed,
        created_at=NOW - 100,
        updated_at=NOW - 100,
        alerted_due_at=alerted_due_at,
    )


def sample(
    hours_from_now: float,
    condition: WeatherCondition = WeatherCondition.CLEAR,
    pop: float | None = None,
) -> ForecastSample:
    return ForecastSample(
        sample_ts=NOW + hours_from_now * HOUR,
        condition=condition,
        precipitation_probability=pop,
    )


class FakeAlertRepo:
    """
    In-memory AlertTaskRepo used for scheduler unit tests.

    This avoids SQLite and makes tests purely about sweep logic:
    eligibility, marker compare-and-set, dispatch decisions.
    """

    def __init__(
        self,
        tasks: Iterable[Task],
        *,
        tokens: dict[str, str] | None = None,
        default_locations: dict[str, str] | None = None,
    ) -> None:
        self.tasks = {t.id: t for t in tasks}
        self.tokens = dict(tokens if tokens is not None else {"u1": "device-token-u1"})
        self.default_locations = dict(default_locations or {})
        self.fail_find = False
        self.find_calls = 0
        self.marker_calls: list[tuple[int, float]] = []

    def find_eligible_outdoor_tasks(self, *, now_ts, horizon_seconds, grace_seconds=0.0, limit=500):
        self.find_calls += 1
        if self.fail_find:
            raise sqlite3.OperationalError("database is locked")
        out = [
            t
            for t in self.tasks.values()
            if t.category == TaskCategory.OUTDOOR
            and not t.is_completed
            and t.due_at is not None
            and now_ts - grace_seconds <= t.due_at <= now_ts + horizon_seconds
            and not t.has_valid_marker
        ]
        out.sort(key=lambda t: (t.due_at, t.id))
        return out[:limit]

    def set_alert_marker(self, task_id, due_snapshot, *, now_ts=None):
        self.marker_calls.append((task_id, due_snapshot))
        t = self.tasks.get(task_id)
        if t is None or t.is_completed or t.due_at != due_snapshot or t.has_valid_marker:
            return False
        self.tasks[task_id] = replace(t, alerted_due_at=due_snapshot, alerted_at=now_ts)
        return True

    def get_user_device_token(self, user_id):
        return self.tokens.get(user_id)

    def get_user_default_location(self, user_id):
        return self.default_locations.get(user_id)

    def reschedule(self, task_id: int, due_at: float) -> None:
        t = self.tasks[task_id]
        self.tasks[task_id] = replace(t, due_at=due_at, alerted_due_at=None, alerted_at=None)


class FakeForecastSource:
    """
    Deterministic ForecastSource.

    - samples per location (or a default set)
    - per-location exceptions
    - optional delay to exercise timeouts / concurrency
    """

    def __init__(
        self,
        samples: Iterable[ForecastSample] = (),
        *,
        by_location: dict[str, list[ForecastSample]] | None = None,
        errors: dict[str, Exception] | None = None,
        delay: float = 0.0,
    ) -> None:
        self.default_samples = list(samples)
        self.by_location = dict(by_location or {})
        self.errors = dict(errors or {})
        self.delay = delay
        self.calls: list[str] = []
        self.in_flight = 0
        self.max_in_flight = 0

    async def get_forecast(self, location: str) -> Forecast:
        self.calls.append(location)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            err = self.errors.get(location)
            if err is not None:
                raise err
            samples = self.by_location.get(location, self.default_samples)
            return Forecast(
                location=ResolvedLocation(name=location, lat=0.0, lon=0.0, country="BR"),
                samples=tuple(sorted(samples, key=lambda s: s.sample_ts)),
            )
        finally:
            self.in_flight -= 1


@dataclass(slots=True)
class SentPush:
    token: str
    title: str
    body: str
    data: dict[str, str]


@dataclass(slots=True)
class FakePushSender:
    """
    Fake PushSender: records sends, or fails every send when fail=True.

    ack_delay simulates a provider that accepted the message but answers slowly:
    the send is recorded first, then the call stalls.
    """

    fail: bool = False
    ack_delay: float = 0.0
    sent: list[SentPush] = field(default_factory=list)
    attempts: int = 0

    async def send(self, *, token: str, title: str, body: str, data: dict[str, str]) -> None:
        self.attempts += 1
        if self.fail:
            raise PushSendError("provider said no")
        self.sent.append(SentPush(token=token, title=title, body=body, data=data))
        if self.ack_delay:
            await asyncio.sleep(self.ack_delay)
