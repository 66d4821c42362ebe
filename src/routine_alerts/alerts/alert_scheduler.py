# src/routine_alerts/alerts/alert_scheduler.py

from __future__ import annotations

"""
Weather alert scheduler.

A periodic sweep that:
- fetches candidate outdoor tasks (due soon, not completed, not yet alerted for this due time),
- fetches a forecast for each task's location and classifies the risk,
- sends one push notification per risky (task, due time),
- records the dedup marker only after a delivered notification.

Per-task failures are contained and logged; a sweep only fails as a whole when
candidates cannot be listed. Sweeps never overlap: a tick that fires while a sweep
is still running is skipped.
"""

import asyncio
import contextlib
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, tzinfo
from enum import StrEnum
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from ..core.errors import DispatchErrorKind, ForecastError, SweepFailed
from ..core.ports import AlertTaskRepo, ForecastSource
from ..tasks.task_models import Task, TaskCategory
from ..weather.models import WeatherCondition
from .dispatcher import AlertMessage, NotificationDispatcher
from .risk_classifier import AlertDecision, RiskReason, classify

logger = logging.getLogger(__name__)


class TaskOutcome(StrEnum):
    ALERTED = "alerted"
    NO_RISK = "no_risk"
    NOT_DELIVERED = "not_delivered"
    CONFLICT = "conflict"
    LOCATION_NOT_FOUND = "location_not_found"
    PROVIDER_UNAVAILABLE = "provider_unavailable"
    PROVIDER_RESPONSE_INVALID = "provider_response_invalid"
    TIMED_OUT = "timed_out"
    CANCELLED = "cancelled"
    FAILED = "failed"

    @classmethod
    def from_forecast_error(cls, err: ForecastError) -> TaskOutcome:
        try:
            return cls(err.kind)
        except ValueError:
            return cls.FAILED


@dataclass(frozen=True, slots=True)
class AlertConfig:
    lookahead_seconds: float = 48 * 3600.0
    tolerance_seconds: float = 3600.0
    probability_threshold: float = 0.4
    max_concurrency: int = 5
    task_timeout_seconds: float = 10.0
    sweep_timeout_seconds: float = 120.0
    default_location: str = "Maceio"
    timezone: str = "UTC"
    batch_limit: int = 500

    @classmethod
    def from_settings(cls, settings: Any) -> AlertConfig:
        return cls(
            lookahead_seconds=float(settings.lookahead_hours) * 3600.0,
            tolerance_seconds=float(settings.tolerance_hours) * 3600.0,
            probability_threshold=float(settings.probability_threshold),
            max_concurrency=int(settings.max_concurrency),
            task_timeout_seconds=float(settings.task_timeout_seconds),
            sweep_timeout_seconds=float(settings.sweep_timeout_seconds),
            default_location=settings.default_location,
            timezone=settings.alert_timezone,
        )


@dataclass(slots=True, frozen=True)
class TaskResult:
    outcome: TaskOutcome
    error_kind: str | None = None


@dataclass(slots=True)
class SweepReport:
    started_at: float
    finished_at: float | None = None
    results: dict[int, TaskResult] = field(default_factory=dict)

    @property
    def candidates(self) -> int:
        return len(self.results)

    def count(self, outcome: TaskOutcome) -> int:
        return sum(1 for r in self.results.values() if r.outcome == outcome)

    def task_ids(self, outcome: TaskOutcome) -> list[int]:
        return sorted(tid for tid, r in self.results.items() if r.outcome == outcome)

    @property
    def alerted(self) -> list[int]:
        return self.task_ids(TaskOutcome.ALERTED)

    @property
    def duration_seconds(self) -> float:
        return max(0.0, (self.finished_at or self.started_at) - self.started_at)


def is_candidate(task: Task, *, now_ts: float, config: AlertConfig) -> bool:
    """
    Eligibility rule for a sweep at now_ts.

    Outdoor, not completed, due within [now - tolerance, now + look-ahead], and
    without a marker for the current due time.
    """
    if task.category != TaskCategory.OUTDOOR or task.is_completed or task.due_at is None:
        return False
    if task.due_at < now_ts - config.tolerance_seconds:
        return False
    if task.due_at > now_ts + config.lookahead_seconds:
        return False
    return not task.has_valid_marker


def resolve_location(task: Task, repo: AlertTaskRepo, default_location: str) -> str:
    """Task location, else the owner's default location, else the global default."""
    loc = (task.location or "").strip()
    if loc:
        return loc
    user_loc = (repo.get_user_default_location(task.user_id) or "").strip()
    if user_loc:
        return user_loc
    return default_location


def _load_tz(name: str) -> tzinfo:
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning("Unknown timezone %r; using UTC for alert messages", name)
        return ZoneInfo("UTC")


_CONDITION_LABELS = {
    WeatherCondition.RAIN: "Rain",
    WeatherCondition.DRIZZLE: "Drizzle",
    WeatherCondition.STORM: "Storms",
}


def build_alert_message(task: Task, decision: AlertDecision, *, tz: tzinfo) -> AlertMessage:
    """Push payload for a positive decision: task title, place, sample time and condition."""
    sample = decision.sample
    if sample is None or task.due_at is None:
        raise ValueError("build_alert_message needs a positive decision and a due time")

    if decision.reason == RiskReason.CONDITION or sample.condition in _CONDITION_LABELS:
        label = _CONDITION_LABELS.get(sample.condition, "Rain")
    else:
        label = "Precipitation"

    place = decision.location_name or task.location or "your area"
    when = datetime.fromtimestamp(sample.sample_ts, tz).strftime("%a %d %b %H:%M")
    due = datetime.fromtimestamp(task.due_at, tz).strftime("%a %d %b %H:%M")

    chance = ""
    if sample.precipitation_probability is not None:
        chance = f" ({round(sample.precipitation_probability * 100)}% chance)"

    return AlertMessage(
        title=f'Weather alert: {label.lower()} possible for "{task.title}"',
        body=f"{label} expected near {place} around {when}{chance}. Scheduled for {due}; check the forecast.",
        data={
            "taskId": str(task.id),
            "type": "weather_alert",
            "dueAt": str(int(task.due_at)),
            "sampleAt": str(int(sample.sample_ts)),
            "condition": sample.condition.value,
            "location": place,
        },
    )


class AlertScheduler:
    def __init__(
        self,
        repo: AlertTaskRepo,
        forecasts: ForecastSource,
        dispatcher: NotificationDispatcher,
        config: AlertConfig | None = None,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._repo = repo
        self._forecasts = forecasts
        self._dispatcher = dispatcher
        self._config = config or AlertConfig()
        self._clock = clock
        self._tz = _load_tz(self._config.timezone)
        self._sweep_lock = asyncio.Lock()
        self._stop_event = asyncio.Event()

    @property
    def config(self) -> AlertConfig:
        return self._config

    @property
    def sweep_running(self) -> bool:
        return self._sweep_lock.locked()

    def stop(self) -> None:
        """
        Make run_forever() return; a sweep already in progress is allowed to finish.

        The request is kept: a stop() issued before run_forever() starts makes it
        return without sweeping.
        """
        self._stop_event.set()

    # ---- one sweep ----

    async def run_sweep(self) -> SweepReport | None:
        """
        Run one sweep over the current candidates.

        Returns None if another sweep is still running (this one is skipped).
        Raises SweepFailed if candidates cannot be listed.
        """
        if self._sweep_lock.locked():
            logger.warning("Sweep already running; skipping this one")
            return None

        async with self._sweep_lock:
            cfg = self._config
            now_ts = self._clock()
            report = SweepReport(started_at=now_ts)

            try:
                found = self._repo.find_eligible_outdoor_tasks(
                    now_ts=now_ts,
                    horizon_seconds=cfg.lookahead_seconds,
                    grace_seconds=cfg.tolerance_seconds,
                    limit=cfg.batch_limit,
                )
            except Exception as e:
                logger.exception("find_eligible_outdoor_tasks failed; sweep aborted")
                raise SweepFailed("cannot list candidate tasks") from e

            tasks = [t for t in found if is_candidate(t, now_ts=now_ts, config=cfg)]
            if len(tasks) != len(found):
                logger.debug("Dropped %d non-candidate tasks returned by repo", len(found) - len(tasks))

            logger.info("Sweep started candidates=%d", len(tasks))

            sem = asyncio.Semaphore(max(1, cfg.max_concurrency))
            deliveries: dict[int, asyncio.Task[TaskResult]] = {}
            jobs = {
                asyncio.create_task(self._run_task(task, sem, deliveries), name=f"weather-alert-{task.id}"): task
                for task in tasks
            }

            try:
                if jobs:
                    _done, pending = await asyncio.wait(jobs, timeout=cfg.sweep_timeout_seconds)
                    if pending:
                        logger.warning(
                            "Sweep timeout after %.1fs; cancelling %d evaluations",
                            cfg.sweep_timeout_seconds,
                            len(pending),
                        )
            finally:
                for job in jobs:
                    if not job.done():
                        job.cancel()
                if jobs:
                    await asyncio.gather(*jobs, return_exceptions=True)
                # A push already handed to the provider is finished before the
                # lock is released, so the next sweep sees its marker.
                if deliveries:
                    await asyncio.gather(*deliveries.values(), return_exceptions=True)

            for job, task in jobs.items():
                if job.cancelled():
                    delivery = deliveries.get(task.id)
                    if delivery is not None and not delivery.cancelled() and delivery.exception() is None:
                        report.results[task.id] = delivery.result()
                    else:
                        report.results[task.id] = TaskResult(TaskOutcome.CANCELLED)
                    continue
                exc = job.exception()
                if exc is not None:
                    logger.error("Evaluation crashed task_id=%s error=%r", task.id, exc)
                    report.results[task.id] = TaskResult(TaskOutcome.FAILED, exc.__class__.__name__)
                    continue
                report.results[task.id] = job.result()

            report.finished_at = self._clock()
            logger.info(
                "Sweep done candidates=%d alerted=%d no_risk=%d not_delivered=%d skipped=%d in %.2fs",
                report.candidates,
                report.count(TaskOutcome.ALERTED),
                report.count(TaskOutcome.NO_RISK),
                report.count(TaskOutcome.NOT_DELIVERED),
                report.candidates
                - report.count(TaskOutcome.ALERTED)
                - report.count(TaskOutcome.NO_RISK)
                - report.count(TaskOutcome.NOT_DELIVERED),
                report.duration_seconds,
            )
            return report

    async def _run_task(
        self,
        task: Task,
        sem: asyncio.Semaphore,
        deliveries: dict[int, asyncio.Task[TaskResult]],
    ) -> TaskResult:
        """
        Evaluate one task inside the concurrency limit.

        The per-task timeout bounds forecast + classification only. Once a push is
        due, dispatch and the marker write run as one shielded unit bounded by the
        sender's own HTTP timeout, so a delivered alert always gets its marker.
        """
        async with sem:
            try:
                decision = await asyncio.wait_for(self.assess_task(task), timeout=self._config.task_timeout_seconds)
            except asyncio.TimeoutError:
                logger.warning(
                    "Evaluation timed out task_id=%s after %.1fs; retry next sweep",
                    task.id,
                    self._config.task_timeout_seconds,
                )
                return TaskResult(TaskOutcome.TIMED_OUT, "timeout")
            except ForecastError as e:
                logger.warning("Skipping task_id=%s error=%s: %s", task.id, e.kind, e)
                return TaskResult(TaskOutcome.from_forecast_error(e), e.kind)
            except Exception as e:
                logger.exception("Evaluation failed task_id=%s error=%s", task.id, e.__class__.__name__)
                return TaskResult(TaskOutcome.FAILED, e.__class__.__name__)

            if not decision.at_risk:
                return TaskResult(TaskOutcome.NO_RISK)

            delivery = asyncio.create_task(self._deliver_contained(task, decision), name=f"weather-push-{task.id}")
            deliveries[task.id] = delivery
            return await asyncio.shield(delivery)

    async def assess_task(self, task: Task) -> AlertDecision:
        """
        Forecast + classification for a single candidate. No side effects.

        Forecast errors propagate; the caller contains them.
        """
        cfg = self._config
        if task.due_at is None:
            return AlertDecision(at_risk=False)

        location = resolve_location(task, self._repo, cfg.default_location)
        forecast = await self._forecasts.get_forecast(location)

        # Daily-only forecasts have one sample per day; widen the window to half the spacing.
        tolerance = max(cfg.tolerance_seconds, forecast.sample_spacing_seconds / 2.0)
        decision = classify(
            task.due_at,
            forecast.samples,
            tolerance_seconds=tolerance,
            probability_threshold=cfg.probability_threshold,
            location_name=forecast.location.display_name,
        )
        if not decision.at_risk:
            logger.debug("No weather risk task_id=%s location=%s", task.id, location)
        return decision

    async def deliver_alert(self, task: Task, decision: AlertDecision) -> TaskResult:
        """Dispatch -> marker for a positive decision, against the due time the task was listed with."""
        if task.due_at is None:
            return TaskResult(TaskOutcome.NO_RISK)
        due_snapshot = task.due_at

        message = build_alert_message(task, decision, tz=self._tz)
        result = await self._dispatcher.dispatch(task.user_id, message)
        if not result.delivered:
            kind = result.provider_error_kind or DispatchErrorKind.PROVIDER_ERROR
            logger.info("Alert not delivered task_id=%s error=%s", task.id, kind.value)
            return TaskResult(TaskOutcome.NOT_DELIVERED, kind.value)

        if self._repo.set_alert_marker(task.id, due_snapshot, now_ts=self._clock()):
            logger.info(
                "Weather alert sent task_id=%s user=%s condition=%s reason=%s",
                task.id,
                task.user_id,
                decision.sample.condition.value if decision.sample else "-",
                decision.reason.value if decision.reason else "-",
            )
            return TaskResult(TaskOutcome.ALERTED)

        logger.info("Alert marker conflict task_id=%s; already handled", task.id)
        return TaskResult(TaskOutcome.CONFLICT, "persistence_conflict")

    async def _deliver_contained(self, task: Task, decision: AlertDecision) -> TaskResult:
        try:
            return await self.deliver_alert(task, decision)
        except Exception as e:
            logger.exception("Delivery failed task_id=%s error=%s", task.id, e.__class__.__name__)
            return TaskResult(TaskOutcome.FAILED, e.__class__.__name__)

    # ---- periodic trigger ----

    async def _sweep_once_logged(self) -> SweepReport | None:
        try:
            return await self.run_sweep()
        except SweepFailed as e:
            logger.error("Sweep failed: %s", e)
            return None

    async def run_forever(self, *, interval_seconds: float) -> None:
        """
        Start a sweep every interval_seconds (wall-clock period, first one immediately).

        A tick that fires while the previous sweep is still running is skipped.
        stop() ends the loop gracefully; cancelling the task also cancels the
        sweep in progress.
        """
        period = float(interval_seconds)
        if period <= 0:
            raise ValueError("interval_seconds must be > 0")

        loop = asyncio.get_running_loop()
        next_tick = loop.time()
        current: asyncio.Task[SweepReport | None] | None = None

        try:
            while not self._stop_event.is_set():
                if current is not None and not current.done():
                    logger.warning("Previous sweep still running; skipping tick")
                else:
                    current = asyncio.create_task(self._sweep_once_logged(), name="weather-alert-sweep")

                next_tick += period
                now = loop.time()
                if next_tick < now:
                    next_tick = now
                with contextlib.suppress(asyncio.TimeoutError):
                    await asyncio.wait_for(self._stop_event.wait(), timeout=next_tick - now)

            logger.info("Scheduler stopping")
            if current is not None and not current.done():
                await current
        finally:
            if current is not None and not current.done():
                current.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await current
